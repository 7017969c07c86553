"""Tests for block padding, splitting, widening and local attention masks."""

import pytest
import torch

from localglobal.blocks import (
    build_local_attention_mask,
    check_positive,
    concatenate_3_blocks,
    make_3block_relative_position_ids,
    pad_to_multiple,
    split_into_blocks,
)


def reference_local_mask(validity: torch.Tensor, block_length: int) -> torch.Tensor:
    """Brute-force local mask straight from sequence positions."""
    B, N = validity.shape
    L = block_length
    num_blocks = -(-N // L)
    out = torch.zeros(B, 1, num_blocks, L, 3 * L, dtype=torch.bool)
    for b in range(B):
        for blk in range(num_blocks):
            for i in range(L):
                q = blk * L + i
                for j in range(3 * L):
                    k = (blk - 1) * L + j
                    if 0 <= q < N and 0 <= k < N and validity[b, q] and validity[b, k] and abs(k - q) < L:
                        out[b, 0, blk, i, j] = True
    return out


def test_pad_to_multiple_pads_tail():
    """Padding appends pad_value after the original data."""
    x = torch.tensor([[1, 2, 3], [4, 5, 6]])
    out = pad_to_multiple(x, block_length=2, dim=1, pad_value=-1)

    expected = torch.tensor([[1, 2, 3, -1], [4, 5, 6, -1]])
    assert torch.equal(out, expected)
    # Input untouched
    assert torch.equal(x, torch.tensor([[1, 2, 3], [4, 5, 6]]))


def test_pad_to_multiple_divisible_returns_input():
    x = torch.ones(2, 4)
    assert pad_to_multiple(x, block_length=2, dim=1) is x


def test_pad_to_multiple_idempotent():
    x = torch.arange(7).view(1, 7)
    once = pad_to_multiple(x, 3, dim=1, pad_value=9)
    twice = pad_to_multiple(once, 3, dim=1, pad_value=9)

    assert once.shape == (1, 9)
    assert torch.equal(once, twice)


def test_pad_to_multiple_negative_dim_and_bool():
    x = torch.tensor([[True, True, True]])
    out = pad_to_multiple(x, block_length=4, dim=-1)

    assert out.dtype == torch.bool
    assert torch.equal(out, torch.tensor([[True, True, True, False]]))


def test_pad_to_multiple_zero_sized():
    """Zero-sized inputs give a pad-filled tensor of the padded shape."""
    x = torch.zeros(0, 5)
    out = pad_to_multiple(x, block_length=4, dim=1, pad_value=0)

    assert out.shape == (0, 8)


@pytest.mark.parametrize("block_length", [0, -3])
def test_pad_to_multiple_rejects_non_positive(block_length):
    with pytest.raises(ValueError):
        pad_to_multiple(torch.ones(1, 4), block_length, dim=1)


@pytest.mark.parametrize("block_length", [1, 2, 3, 5])
@pytest.mark.parametrize("seq_len", [0, 1, 4, 7])
def test_split_into_blocks_shape(block_length, seq_len):
    """num_blocks = ceil(N / L) and num_blocks * L >= N."""
    x = torch.ones(2, seq_len)
    out = split_into_blocks(x, block_length, dim=1)

    num_blocks = -(-seq_len // block_length)
    assert out.shape == (2, num_blocks, block_length)
    assert num_blocks * block_length >= seq_len


def test_split_into_blocks_values():
    x = torch.arange(1, 6).view(1, 5)
    out = split_into_blocks(x, block_length=2, dim=1)

    expected = torch.tensor([[[1, 2], [3, 4], [5, 0]]])
    assert torch.equal(out, expected)


def test_split_into_blocks_trailing_dims():
    """Splitting a middle dim keeps the trailing feature dims."""
    x = torch.randn(2, 6, 3)
    out = split_into_blocks(x, block_length=3, dim=1)

    assert out.shape == (2, 2, 3, 3)
    assert torch.equal(out[:, 1], x[:, 3:6])


def test_split_into_blocks_empty_batch():
    out = split_into_blocks(torch.zeros(0, 5), block_length=2, dim=1)
    assert out.shape == (0, 3, 2)


def test_split_into_blocks_rejects_non_positive():
    with pytest.raises(ValueError):
        split_into_blocks(torch.ones(1, 4), 0, dim=1)


def test_concatenate_3_blocks():
    """Each block is widened to [left | self | right] with zero fill at the edges."""
    x = torch.arange(1, 7).view(1, 3, 2)
    out = concatenate_3_blocks(x, block_dim=1, sequence_dim=2)

    expected = torch.tensor([[
        [0, 0, 1, 2, 3, 4],
        [1, 2, 3, 4, 5, 6],
        [3, 4, 5, 6, 0, 0],
    ]])
    assert torch.equal(out, expected)


def test_concatenate_3_blocks_pad_value():
    x = torch.ones(1, 2, 2)
    out = concatenate_3_blocks(x, block_dim=1, sequence_dim=2, pad_value=-1)

    assert out.shape == (1, 2, 6)
    assert torch.equal(out[0, 0, :2], torch.tensor([-1.0, -1.0]))
    assert torch.equal(out[0, 1, 4:], torch.tensor([-1.0, -1.0]))


def test_concatenate_3_blocks_no_blocks():
    out = concatenate_3_blocks(torch.zeros(2, 0, 4), block_dim=1, sequence_dim=2)
    assert out.shape == (2, 0, 12)


def test_relative_position_ids():
    grid = make_3block_relative_position_ids(2)

    expected = torch.tensor([
        [-2, -1, 0, 1, 2, 3],
        [-3, -2, -1, 0, 1, 2],
    ], dtype=torch.int32)
    assert torch.equal(grid, expected)


@pytest.mark.parametrize("block_length", [1, 3, 8])
def test_relative_position_ids_center_is_zero(block_length):
    grid = make_3block_relative_position_ids(block_length)

    assert grid.shape == (block_length, 3 * block_length)
    for i in range(block_length):
        assert grid[i, block_length + i] == 0


def test_local_mask_all_valid_sequence():
    """Six valid tokens, L=2: query 0 sees only positions 0 and 1."""
    validity = torch.ones(1, 6, dtype=torch.long)
    mask = build_local_attention_mask(validity, block_length=2)

    assert mask.shape == (1, 1, 3, 2, 6)
    assert mask.dtype == torch.bool
    # Window of block 0 covers positions [-2, -1, 0, 1, 2, 3]
    assert mask[0, 0, 0, 0].tolist() == [False, False, True, True, False, False]
    # Query 1 of block 1 (position 3) sees positions 2, 3, 4
    assert mask[0, 0, 1, 1].tolist() == [False, False, True, True, True, False]


@pytest.mark.parametrize("block_length", [1, 2, 3, 4])
def test_local_mask_matches_reference(random_validity, block_length):
    validity = random_validity(3, 11, seed=block_length)
    mask = build_local_attention_mask(validity, block_length)

    assert torch.equal(mask, reference_local_mask(validity, block_length))


def test_local_mask_is_locality_bounded(random_validity):
    block_length = 4
    mask = build_local_attention_mask(random_validity(2, 19), block_length)

    locality = make_3block_relative_position_ids(block_length).abs() < block_length
    assert not (mask & ~locality).any()


def test_local_mask_shorter_than_block():
    """Sequences shorter than the block still work; padding attends nowhere."""
    mask = build_local_attention_mask(torch.tensor([[1, 1, 1]]), block_length=8)

    assert mask.shape == (1, 1, 1, 8, 24)
    assert mask.sum() == 9
    assert not mask[0, 0, 0, 3:].any()


def test_local_mask_all_invalid():
    mask = build_local_attention_mask(torch.zeros(2, 7), block_length=3)

    assert mask.shape == (2, 1, 3, 3, 9)
    assert not mask.any()


def test_local_mask_batch_independence(random_validity):
    validity = random_validity(2, 13, seed=7)
    batched = build_local_attention_mask(validity, block_length=3)

    for b in range(2):
        single = build_local_attention_mask(validity[b:b + 1], block_length=3)
        assert torch.equal(batched[b:b + 1], single)


def test_local_mask_float_validity(random_validity):
    validity = random_validity(2, 9, seed=3)
    as_bool = build_local_attention_mask(validity, block_length=3)
    as_float = build_local_attention_mask(validity.float(), block_length=3)

    assert torch.equal(as_bool, as_float)


@pytest.mark.parametrize("shape, expected", [
    ((0, 6), (0, 1, 3, 2, 6)),
    ((2, 0), (2, 1, 0, 2, 6)),
])
def test_local_mask_empty_inputs(shape, expected):
    mask = build_local_attention_mask(torch.ones(shape), block_length=2)
    assert mask.shape == expected


def test_local_mask_rejects_non_positive_block_length():
    with pytest.raises(ValueError):
        build_local_attention_mask(torch.ones(1, 4), block_length=0)


@pytest.mark.parametrize("value", [0, -1])
def test_check_positive_rejects_non_positive(value):
    with pytest.raises(ValueError, match="global_block_size must be a positive integer"):
        check_positive("global_block_size", value)


def test_check_positive_accepts_positive():
    assert check_positive("block_length", 1) is None
