"""
Local Block Attention Masks

This module restructures a sequence into fixed-size blocks so that each token
attends only to its own block and the two adjacent blocks, bounded further by an
exact relative-distance cutoff.

The pipeline for a (B, N) validity mask with block length L:
- split into (B, num_blocks, L) blocks, padding the tail with 0
- widen every block to (B, num_blocks, 3L) = [left neighbour | self | right neighbour]
- pair each query in a block with every key in its 3-block window
- drop pairs further apart than L - 1 positions
"""

from typing import Optional

import torch


def check_positive(name: str, value: int):
    if value <= 0:
        raise ValueError(f"{name} must be a positive integer, got {value!r}")


def _pad_along_dim(x: torch.Tensor, dim: int, before: int, after: int, pad_value=0) -> torch.Tensor:
    """Return a new tensor with `before`/`after` slots of `pad_value` around `x` along `dim`."""
    padded_shape = list(x.shape)
    padded_shape[dim] += before + after
    out = x.new_full(padded_shape, pad_value)
    out.narrow(dim, before, x.shape[dim]).copy_(x)
    return out


def pad_to_multiple(x: torch.Tensor, block_length: int, dim: int, pad_value=0) -> torch.Tensor:
    """
    Pad `x` along `dim` up to the next multiple of `block_length`.

    Args:
        x: Input tensor of any dtype
        block_length: Positive block length
        dim: Dimension to pad (negative values count from the end)
        pad_value: Scalar written into the new trailing positions

    Returns:
        Tensor whose size along `dim` is ceil(size / block_length) * block_length.
        `x` itself is returned when no padding is needed.
    """
    check_positive("block_length", block_length)
    dim = dim % x.dim()
    pad_length = -x.shape[dim] % block_length
    if pad_length == 0:
        return x

    # Zero-sized tensors have nothing to copy; build the padded shape directly
    if x.numel() == 0:
        padded_shape = list(x.shape)
        padded_shape[dim] += pad_length
        return torch.full(padded_shape, pad_value, dtype=x.dtype, device=x.device)

    return _pad_along_dim(x, dim, 0, pad_length, pad_value)


def split_into_blocks(x: torch.Tensor, block_length: int, dim: int) -> torch.Tensor:
    """
    Split `dim` of `x` into (num_blocks, block_length), padding with 0 first if needed.

    A (B, N, ...) tensor split along dim=1 becomes (B, ceil(N / L), L, ...).
    """
    check_positive("block_length", block_length)
    dim = dim % x.dim()
    if x.shape[dim] % block_length != 0:
        x = pad_to_multiple(x, block_length, dim, pad_value=0)

    num_blocks = x.shape[dim] // block_length
    output_shape = x.shape[:dim] + (num_blocks, block_length) + x.shape[dim + 1:]

    # reshape refuses some zero-sized targets, so allocate the empty result instead
    if 0 in output_shape:
        return torch.empty(output_shape, dtype=x.dtype, device=x.device)
    return x.reshape(output_shape)


def concatenate_3_blocks(
    x: torch.Tensor,
    block_dim: int,
    sequence_dim: int,
    pad_value=0,
) -> torch.Tensor:
    """
    Concatenate every block with its left and right neighbour.

    Args:
        x: Block-structured tensor, e.g. (B, num_blocks, L, ...)
        block_dim: Dimension enumerating the blocks
        sequence_dim: Within-block dimension to concatenate along
        pad_value: Fill for the missing neighbours of the first and last block

    Returns:
        Tensor with the same number of blocks and a 3x longer `sequence_dim`:
        output block b = [block b-1 | block b | block b+1]
    """
    block_dim = block_dim % x.dim()
    num_blocks = x.shape[block_dim]

    # (..., num_blocks + 2, ...) with one pad block on each side
    x = _pad_along_dim(x, block_dim, 1, 1, pad_value)

    blocks_list = [x.narrow(block_dim, i, num_blocks) for i in range(3)]
    return torch.cat(blocks_list, dim=sequence_dim)


def make_3block_relative_position_ids(block_length: int, device: Optional[torch.device] = None) -> torch.Tensor:
    """
    Relative offsets from each center-block position to every position of the 3-block window.

    Returns:
        (L, 3L) int tensor G with G[i, j] = j - (L + i)
    """
    check_positive("block_length", block_length)
    position_ids = torch.arange(3 * block_length, dtype=torch.int32, device=device)  # (3L,)
    center_position_ids = position_ids[block_length:-block_length]  # (L,)
    return position_ids.unsqueeze(0) - center_position_ids.unsqueeze(1)  # (L, 3L)


def mask_local_attention_mask(local_attention_mask: torch.Tensor, block_length: int) -> torch.Tensor:
    """Keep only pairs closer than `block_length` in a (..., L, 3L) validity-pair mask."""
    relative_position_ids = make_3block_relative_position_ids(block_length, local_attention_mask.device)
    locality_mask = torch.abs(relative_position_ids) < block_length  # (L, 3L)
    locality_mask = locality_mask[None, None, :, :]  # (1, 1, L, 3L)
    return torch.logical_and(local_attention_mask, locality_mask)


def build_local_attention_mask(attention_mask: torch.Tensor, block_length: int) -> torch.Tensor:
    """
    Build the local attention mask for block-local attention.

    Query i of block b is sequence position b*L + i; key j of the same block's
    window is sequence position (b-1)*L + j. An entry is True only if both
    positions are real tokens and |query - key| < L.

    Args:
        attention_mask: (B, N) validity mask, nonzero = attend
        block_length: Local block length L

    Returns:
        mask: (B, 1, num_blocks, L, 3L) bool mask, num_blocks = ceil(N / L)
    """
    check_positive("block_length", block_length)
    assert attention_mask.dim() == 2, "attention_mask must be (batch, seq_len)"

    blocked_attention_mask = split_into_blocks(attention_mask, block_length, dim=1)  # (B, nb, L)
    three_blocked_attention_mask = concatenate_3_blocks(
        blocked_attention_mask, block_dim=1, sequence_dim=2
    )  # (B, nb, 3L)

    blocked_attention_mask = blocked_attention_mask.unsqueeze(-1)  # (B, nb, L, 1)
    three_blocked_attention_mask = three_blocked_attention_mask.unsqueeze(-2)  # (B, nb, 1, 3L)

    # Both endpoints valid, then restrict to the true locality window
    local_attention_mask = torch.logical_and(blocked_attention_mask, three_blocked_attention_mask)
    local_attention_mask = mask_local_attention_mask(local_attention_mask, block_length)  # (B, nb, L, 3L)

    # Singleton head axis, broadcast over attention heads downstream
    return local_attention_mask.unsqueeze(1)


get_local_attention_mask = build_local_attention_mask
