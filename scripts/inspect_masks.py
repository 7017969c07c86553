import os
import argparse
import json
import logging
from dataclasses import dataclass, asdict
from typing import Optional
import yaml
from transformers import HfArgumentParser

from localglobal import build_local_attention_mask, build_global_block_ids, LocalGlobalConfig
from localglobal.utils import load_config, lengths_to_validity, summarize_masks

logging.basicConfig(
    format="%(asctime)s - %(levelname)s - %(name)s - %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
    level=logging.INFO,
)
logger = logging.getLogger("localglobal")

@dataclass
class InspectArgs:
    seq_lengths: str = "512,384"
    max_seq_length: Optional[int] = None
    padding_side: str = "right"
    output_dir: Optional[str] = None

def main():
    # Parse --config first, then dataclass args (so we support YAML or pure CLI)
    ap = argparse.ArgumentParser(add_help=False)
    ap.add_argument("--config", type=str, default=None)
    cfg_args, remaining = ap.parse_known_args()
    cfg = load_config(cfg_args.config)

    parser = HfArgumentParser((LocalGlobalConfig, InspectArgs))
    if cfg:
        merged = {**cfg.get("masks", {}), **cfg.get("inspect", {})}
        mask_cfg, iargs = parser.parse_dict(merged)
    else:
        mask_cfg, iargs = parser.parse_args_into_dataclasses(remaining)

    lengths = [int(x) for x in iargs.seq_lengths.split(",") if x.strip()]
    validity = lengths_to_validity(lengths, max_length=iargs.max_seq_length, padding_side=iargs.padding_side)
    logger.info(f"Validity mask {tuple(validity.shape)} | lengths={lengths} | padding_side={iargs.padding_side}")
    logger.info(f"block_length={mask_cfg.block_length}, global_block_size={mask_cfg.global_block_size}")

    local_mask = build_local_attention_mask(validity, mask_cfg.block_length)
    block_ids, segment_mask = build_global_block_ids(validity, mask_cfg.global_block_size)
    results = summarize_masks(local_mask, block_ids, segment_mask)

    logger.info(f"\n{'='*50}\nLocal/Global Mask Summary:")
    for k, v in results.items():
        logger.info(f"  {k}: {v:.4f}" if isinstance(v, float) else f"  {k}: {v}")
    logger.info(f"{'='*50}\n")

    if iargs.output_dir:
        os.makedirs(iargs.output_dir, exist_ok=True)
        summary_file = os.path.join(iargs.output_dir, "mask_summary.json")
        with open(summary_file, "w") as f:
            json.dump({**results, "lengths": lengths}, f, indent=2)
        with open(os.path.join(iargs.output_dir, "inspect_config.yaml"), "w") as f:
            yaml.dump({"masks": asdict(mask_cfg), "inspect": asdict(iargs)}, f, default_flow_style=False)
        logger.info(f"Saved to {summary_file}")

if __name__ == "__main__":
    main()
