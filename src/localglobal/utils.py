"""
Utility functions for building and inspecting local/global attention masks.
"""

import os
import logging
from typing import Any, Dict, List, Optional

import torch
import yaml

logger = logging.getLogger(__name__)


def load_config(path: Optional[str]) -> Dict[str, Any]:
    """
    Load a YAML config file.

    Args:
        path: Path to the YAML file, or None

    Returns:
        Parsed config dictionary ({} when no file is given or found)
    """
    if not path:
        logger.info("No mask config given, using dataclass defaults and CLI arguments")
        return {}
    if not os.path.exists(path):
        logger.warning(f"Mask config {path!r} does not exist, using dataclass defaults and CLI arguments")
        return {}
    with open(path, "r") as f:
        cfg = yaml.safe_load(f) or {}
    logger.info(f"Read mask config from {path}")
    return cfg


def lengths_to_validity(
    lengths: List[int],
    max_length: Optional[int] = None,
    padding_side: str = "right",
) -> torch.Tensor:
    """
    Build a (B, max_length) validity mask from per-row sequence lengths.

    Args:
        lengths: Number of real tokens in each row
        max_length: Padded length; defaults to max(lengths). Longer rows are truncated.
        padding_side: 'right' puts real tokens first, 'left' puts padding first

    Returns:
        (B, max_length) bool tensor, True = real token
    """
    if padding_side not in ("left", "right"):
        raise ValueError(f"padding_side must be 'left' or 'right', got {padding_side!r}")
    if max_length is None:
        max_length = max(lengths, default=0)

    lengths = torch.clamp(torch.tensor(lengths, dtype=torch.long).view(-1), max=max_length)  # (B,)
    positions = torch.arange(max_length)[None, :]  # (1, S)
    if padding_side == "left":
        # With left padding, real tokens shift right by the padding amount
        return positions >= (max_length - lengths)[:, None]
    return positions < lengths[:, None]


def summarize_masks(
    local_mask: torch.Tensor,
    block_ids: torch.Tensor,
    segment_mask: torch.Tensor,
) -> Dict[str, Any]:
    """
    Compute summary statistics for a set of local/global masks.

    Args:
        local_mask: (B, 1, num_blocks, L, 3L) local attention mask
        block_ids: (B, N) global block ids
        segment_mask: (B, G) global segment mask

    Returns:
        Dictionary with local mask density, mean local keys per attending token,
        active global blocks per row and number of tokens without a global block
    """
    local_mask = local_mask.bool()
    keys_per_query = local_mask.sum(dim=-1)  # (B, 1, num_blocks, L)
    attending = keys_per_query > 0

    num_attending = int(attending.sum().item())
    total_keys = int(keys_per_query.sum().item())
    return {
        "local_mask_shape": list(local_mask.shape),
        "local_density": total_keys / local_mask.numel() if local_mask.numel() > 0 else 0.0,
        "mean_local_keys": total_keys / num_attending if num_attending > 0 else 0.0,
        "num_global_blocks": segment_mask.shape[-1],
        "active_global_blocks": segment_mask.sum(dim=-1).tolist(),
        "unassigned_tokens": (block_ids < 0).sum(dim=-1).tolist(),
    }
