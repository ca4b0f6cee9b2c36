"""
Shared fixtures for the balancing tests.
"""
import sys
from pathlib import Path

import numpy as np
import pytest

# Add parent directory to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from hicscale import SparseSymmetricMatrix


@pytest.fixture
def small_matrix():
    """The 3-bin chain [[10, 5, 0], [5, 8, 3], [0, 3, 6]]."""
    records = [(0, 0, 10), (0, 1, 5), (1, 1, 8), (1, 2, 3), (2, 2, 6)]
    return SparseSymmetricMatrix.from_records(records, 3)


@pytest.fixture
def random_matrix():
    """Sparse random symmetric matrix with a full diagonal and first band."""
    rng = np.random.default_rng(42)
    n = 60
    dense = rng.uniform(1.0, 20.0, size=(n, n))
    keep = rng.random((n, n)) < 0.3
    keep |= np.eye(n, dtype=bool) | np.eye(n, k=1, dtype=bool)
    upper = np.triu(np.where(keep, dense, 0.0))
    return SparseSymmetricMatrix.from_coo(upper)


def balanced_row_sums(matrix, vector):
    """Row sums of the matrix scaled by vector on both sides."""
    v = np.nan_to_num(vector, nan=0.0)
    return v * matrix.multiply(v)
