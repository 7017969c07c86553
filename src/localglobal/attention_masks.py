"""
Local/Global Attention Mask Interface for Transformers

Converts the boolean local mask to the additive format expected by eager/SDPA
attention and registers the builder with `transformers.AttentionMaskInterface`
so a model can select it by name.
"""

import logging
from typing import Callable, Optional

import torch
from transformers import AttentionMaskInterface

from .blocks import build_local_attention_mask
from .config import LocalGlobalConfig

logger = logging.getLogger(__name__)


def to_additive_mask(mask: torch.Tensor, dtype: torch.dtype = torch.float32) -> torch.Tensor:
    """
    Convert a boolean mask to an additive mask: 0 for attend, a large negative value for masked.
    """
    min_dtype = 0.7 * torch.finfo(dtype).min  # Use 0.7 to avoid overflow
    return torch.where(mask, torch.tensor(0.0, device=mask.device, dtype=dtype), min_dtype)


def _resolve_block_length(kwargs) -> int:
    block_length = kwargs.get('block_length', None)
    if block_length is not None:
        return block_length
    config = kwargs.get('config', None)
    if config is None:
        raise ValueError("local_global attention mask needs either `block_length` or a model `config`")
    if isinstance(config, LocalGlobalConfig):
        return config.block_length
    return LocalGlobalConfig.from_model_config(config).block_length


def local_global_attention_mask(
    batch_size: int,
    cache_position: torch.Tensor,
    kv_length: int,
    kv_offset: int = 0,
    mask_function: Callable = None,
    attention_mask: Optional[torch.Tensor] = None,
    dtype: torch.dtype = torch.float32,
    **kwargs,
) -> Optional[torch.Tensor]:
    """
    Create the block-local attention mask for eager attention.

    Args:
        batch_size: Batch size (not used, for interface compatibility)
        cache_position: Cache position tensor (not used, for interface compatibility)
        kv_length: Key-value length (not used, for interface compatibility)
        kv_offset: KV offset (not used, for interface compatibility)
        mask_function: Mask function (not used, for interface compatibility)
        attention_mask: (B, N) Binary mask where 1=valid, 0=padding
        dtype: Output dtype
        **kwargs: `block_length`, or the model `config` it is read from

    Returns:
        mask: (B, 1, num_blocks, L, 3L) Additive mask (0 for attend, large negative for mask)
    """
    if attention_mask is None:
        raise ValueError("attention_mask must be provided for local_global attention")
    block_length = _resolve_block_length(kwargs)
    local_mask = build_local_attention_mask(attention_mask, block_length)
    return to_additive_mask(local_mask, dtype=dtype)


def register_local_global_attention():
    # Register the local/global mask builder with Transformers
    AttentionMaskInterface.register("local_global", local_global_attention_mask)
    logger.info("Registered 'local_global' attention mask with transformers.AttentionMaskInterface")
