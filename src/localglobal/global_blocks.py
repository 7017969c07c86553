"""
Transient-Global Block Assignment

Every valid token is assigned to a coarse global block of `global_block_size`
tokens; each global block is later summarized into a single global token that
every position may attend to.

Assignment rules:
- Valid tokens are numbered by their running count of valid tokens, and the
  k-th valid token (1-based) goes to block floor((k - 1) / global_block_size)
- Padding tokens get block id -1
- Ids are capped at the number of valid tokens sitting on a raw block-end
  position minus one, which folds a trailing partial block into the block
  before it (orphan tokens)
- num_global_blocks = seq_len // global_block_size, identical across the batch
"""

from typing import Optional

import torch
import torch.nn.functional as F

from .blocks import check_positive

# Set to True only for debugging - adds validation overhead
_DEBUG = False


def _handle_orphan_tokens(block_ids: torch.Tensor, valid: torch.Tensor, global_block_size: int) -> torch.Tensor:
    """
    Merge a trailing partial block into the last full block.

    A valid token sitting at a raw position p with p % global_block_size ==
    global_block_size - 1 marks the end of a block. The number of such block
    ends minus one is the row's ceiling, and every id above it is clamped down
    to it. Rows without any valid block end get ceiling -1, so all their ids
    become -1.
    """
    positions = torch.arange(valid.shape[-1], device=valid.device)  # (N,)
    block_ends = (positions % global_block_size) == global_block_size - 1  # (N,)
    true_block_ends = block_ends[None, :] & valid  # (B, N)
    full_blocks = true_block_ends.sum(dim=-1, keepdim=True) - 1  # (B, 1)
    return torch.minimum(block_ids, full_blocks)


def build_global_block_ids(
    attention_mask: torch.Tensor,
    global_block_size: int,
) -> tuple[torch.Tensor, torch.Tensor]:
    """
    Assign every token a global block id and mark which global blocks each row reaches.

    Args:
        attention_mask: (B, N) validity mask, nonzero = real token
        global_block_size: Number of tokens summarized by one global token

    Returns:
        block_ids: (B, N) long tensor, -1 for padding (and for rows where no
            valid token sits on a raw block-end position)
        segment_mask: (B, N // global_block_size) bool tensor, True for global
            blocks up to the highest id used in the row
    """
    check_positive("global_block_size", global_block_size)
    assert attention_mask.dim() == 2, "attention_mask must be (batch, seq_len)"
    batch_size, seq_len = attention_mask.shape
    device = attention_mask.device

    valid = attention_mask != 0  # (B, N)
    valid_count = torch.cumsum(valid.long(), dim=-1)  # (B, N), inclusive running count

    block_ids = torch.div(valid_count - 1, global_block_size, rounding_mode="floor")
    block_ids = torch.where(valid, block_ids, -1)
    block_ids = _handle_orphan_tokens(block_ids, valid, global_block_size)

    if _DEBUG:
        assert check_global_block_ids(block_ids, global_block_size), \
            "Global block ids violate monotonicity or range"

    num_globals = seq_len // global_block_size
    if num_globals == 0 or batch_size == 0:
        segment_mask = torch.zeros(batch_size, num_globals, dtype=torch.bool, device=device)
        return block_ids, segment_mask

    sequence_block_ids_max = block_ids.amax(dim=-1, keepdim=True)  # (B, 1)
    global_segment_ids = torch.arange(num_globals, device=device)[None, :]  # (1, G)
    segment_mask = global_segment_ids <= sequence_block_ids_max  # (B, G)
    return block_ids, segment_mask


make_global_fixed_block_ids = build_global_block_ids


def check_global_block_ids(block_ids: torch.Tensor, global_block_size: int, verbose: bool = False):
    """
    Check that (B, N) global block ids are well formed.

    For each row:
    - ids of real tokens (>= 0) never decrease along the sequence
    - no id exceeds N // global_block_size - 1

    Block population (a used block holding fewer than `global_block_size`
    tokens) is reported in the verbose dict only. Interior padding or left
    padding that is not a multiple of `global_block_size` legitimately
    produces such blocks.

    Args:
        block_ids: (B, N) ids as returned by build_global_block_ids
        global_block_size: Global block size the ids were built with
        verbose: If True, return per-row diagnostics instead of a single bool

    Returns:
        is_valid: bool or dict with per-row details about violations
    """
    B, N = block_ids.shape
    num_globals = N // global_block_size
    assigned = block_ids >= 0  # (B, N)

    # Monotonicity over assigned tokens: carry the running max of earlier ids
    running_max = torch.cummax(torch.where(assigned, block_ids, -1), dim=-1).values  # (B, N)
    previous_max = torch.cat([
        torch.full((B, 1), -1, dtype=block_ids.dtype, device=block_ids.device),
        running_max[:, :-1],
    ], dim=-1)  # (B, N)
    decreasing = assigned & (block_ids < previous_max)
    is_monotonic = ~decreasing.any(dim=-1)  # (B,)

    in_range = ~(block_ids > num_globals - 1).any(dim=-1)  # (B,)

    # Population of every block: one-hot count, unused blocks are skipped
    safe_ids = torch.where(assigned & (block_ids < num_globals), block_ids, num_globals).long()
    counts = F.one_hot(safe_ids, num_globals + 1)[..., :-1].sum(dim=1)  # (B, G)
    underfilled = (counts > 0) & (counts < global_block_size)
    is_populated = ~underfilled.any(dim=-1)  # (B,)

    is_valid_row = is_monotonic & in_range

    if not verbose:
        return bool(torch.all(is_valid_row).item())

    return {
        'is_valid': is_valid_row,  # (B,)
        'is_monotonic': is_monotonic,  # (B,)
        'in_range': in_range,  # (B,)
        'is_populated': is_populated,  # (B,)
        'block_counts': counts,  # (B, G)
    }


def make_side_relative_position_ids(attention_mask: torch.Tensor, global_block_size: int) -> torch.Tensor:
    """
    Relative position from each token's global block to every global block.

    Returns:
        (B, N, G) long tensor with entry g - block_ids[b, n]
    """
    block_ids, segment_mask = build_global_block_ids(attention_mask, global_block_size)
    global_seq_len = segment_mask.shape[-1]
    global_positions = torch.arange(global_seq_len, device=block_ids.device)  # (G,)
    return global_positions[None, None, :] - block_ids[..., None]  # (B, N, G)


def build_side_attention_mask(attention_mask: torch.Tensor, global_block_size: int) -> torch.Tensor:
    """
    Mask from tokens to global tokens.

    Returns:
        (B, 1, N, G) bool mask, True where the token is real and the global block is active
    """
    _, segment_mask = build_global_block_ids(attention_mask, global_block_size)
    valid = attention_mask != 0
    side_mask = valid[:, :, None] & segment_mask[:, None, :]  # (B, N, G)
    return side_mask.unsqueeze(1)


def create_global_aggregates(
    hidden_states: torch.Tensor,
    block_ids: torch.Tensor,
    num_global_blocks: int,
    dtype: Optional[torch.dtype] = None,
) -> torch.Tensor:
    """
    Sum the hidden states of each global block into one global token.

    Args:
        hidden_states: (B, N, D) token representations
        block_ids: (B, N) global block ids, -1 tokens are dropped
        num_global_blocks: Number of global blocks G
        dtype: Accumulation dtype, defaults to hidden_states.dtype

    Returns:
        (B, G, D) aggregated global representations
    """
    dtype = dtype or hidden_states.dtype
    # Route unassigned tokens to an extra slot and discard it
    block_ids = torch.where(block_ids >= 0, block_ids, num_global_blocks)
    one_hot_block_ids = F.one_hot(block_ids.long(), num_global_blocks + 1)[..., :-1]  # (B, N, G)
    return torch.einsum("...nd,...ng->...gd", hidden_states.to(dtype), one_hot_block_ids.to(dtype))
