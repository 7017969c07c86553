"""
Configuration for local/global block attention masks.
"""

import logging
from dataclasses import dataclass

logger = logging.getLogger(__name__)


@dataclass
class LocalGlobalConfig:
    """
    Block sizes shared by the local and global mask builders.

    Attributes:
        block_length: Local block length L; each token attends to keys closer than L positions
        global_block_size: Number of tokens summarized by one global token
    """
    block_length: int = 128
    global_block_size: int = 16

    def __post_init__(self):
        for name in ("block_length", "global_block_size"):
            value = getattr(self, name)
            if value is None or value <= 0:
                raise ValueError(f"{name} must be a positive integer, got {value!r}")

    @classmethod
    def from_model_config(cls, config) -> "LocalGlobalConfig":
        """
        Read block sizes from a transformers model config.

        An explicit `block_length` attribute wins; otherwise LongT5-style configs
        give block_length = local_radius + 1.
        """
        block_length = getattr(config, "block_length", None)
        if block_length is None:
            local_radius = getattr(config, "local_radius", None)
            if local_radius is None:
                raise ValueError(f"{type(config).__name__} defines neither `block_length` nor `local_radius`")
            block_length = local_radius + 1
        global_block_size = getattr(config, "global_block_size", cls.global_block_size)
        logger.debug(f"Resolved block_length={block_length}, global_block_size={global_block_size} "
                     f"from {type(config).__name__}")
        return cls(block_length=block_length, global_block_size=global_block_size)
