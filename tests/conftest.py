"""Pytest configuration for all tests."""

import sys
from pathlib import Path

import pytest
import torch

src_root = Path(__file__).resolve().parent.parent / "src"
if str(src_root) not in sys.path:
    sys.path.insert(0, str(src_root))


def _random_validity(batch_size, seq_len, seed=0, p=0.7):
    generator = torch.Generator().manual_seed(seed)
    return torch.rand(batch_size, seq_len, generator=generator) < p


@pytest.fixture
def random_validity():
    """Factory for reproducible random (B, N) boolean validity masks."""
    return _random_validity
