"""
localglobal: Block-Sparse Local + Transient-Global Attention Masks

A library for the mask and block-partitioning scaffolding of local/global sparse
attention over long sequences: block-local attention masks and global block
assignment with orphan-token handling.
"""

__version__ = "0.1.0"

# Import main modules
from . import blocks
from . import global_blocks
from . import attention_masks
from . import config
from . import utils

# Import commonly used functions and classes
from .blocks import (
    pad_to_multiple,
    split_into_blocks,
    concatenate_3_blocks,
    make_3block_relative_position_ids,
    mask_local_attention_mask,
    build_local_attention_mask,
)

from .global_blocks import (
    build_global_block_ids,
    check_global_block_ids,
    make_side_relative_position_ids,
    build_side_attention_mask,
    create_global_aggregates,
)

from .attention_masks import (
    to_additive_mask,
    local_global_attention_mask,
    register_local_global_attention,
)

from .config import (
    LocalGlobalConfig,
)

# Export all for "from localglobal import *"
__all__ = [
    # Modules
    "blocks",
    "global_blocks",
    "attention_masks",
    "config",
    "utils",
    # Functions
    "pad_to_multiple",
    "split_into_blocks",
    "concatenate_3_blocks",
    "make_3block_relative_position_ids",
    "mask_local_attention_mask",
    "build_local_attention_mask",
    "build_global_block_ids",
    "check_global_block_ids",
    "make_side_relative_position_ids",
    "build_side_attention_mask",
    "create_global_aggregates",
    "to_additive_mask",
    "local_global_attention_mask",
    "register_local_global_attention",
    "LocalGlobalConfig",
]
