#!/usr/bin/env python3
"""
contacts.py - Sparse symmetric contact matrix.

A contact map is stored as its upper triangle: a flat list of
(bin_x, bin_y, weight) records. Off-diagonal records stand for both
(x, y) and (y, x). The only traversal needed by the balancer is a
matrix-vector product, done through a SciPy CSR matrix built once.
"""

import logging
from typing import Any, Iterable, Iterator, NamedTuple, Optional

import numpy as np
import pandas as pd
from scipy import sparse

logger = logging.getLogger(__name__)


class ContactRecord(NamedTuple):
    """One observed contact count between two bins."""
    bin_x: int
    bin_y: int
    weight: float


class SparseSymmetricMatrix:
    """
    Immutable view over the upper triangle of a symmetric non-negative
    contact matrix.

    Parameters
    ----------
    bin_x, bin_y : array-like of int
        Bin indices of each contact, in ``[0, n_bins)``.
    weights : array-like of float
        Non-negative contact weights.
    n_bins : int
        Matrix dimension.

    Raises
    ------
    TypeError
        If the inputs cannot be converted to numpy arrays.
    ValueError
        If lengths differ, a weight is negative or not finite, or a bin
        index falls outside ``[0, n_bins)``.
    """

    def __init__(self, bin_x: Any, bin_y: Any, weights: Any, n_bins: int):
        try:
            bin_x = np.array(bin_x, dtype=np.int64).ravel()
            bin_y = np.array(bin_y, dtype=np.int64).ravel()
            weights = np.array(weights, dtype=np.float64).ravel()
        except (TypeError, ValueError) as e:
            raise TypeError(f"Cannot convert contacts to numpy arrays: {e}")

        n_bins = int(n_bins)
        if n_bins <= 0:
            raise ValueError(f"n_bins must be positive (received {n_bins})")
        if not (len(bin_x) == len(bin_y) == len(weights)):
            raise ValueError(
                f"Length mismatch. bin_x: {len(bin_x)}, bin_y: {len(bin_y)}, "
                f"weights: {len(weights)}"
            )
        if not np.all(np.isfinite(weights)):
            raise ValueError("Contact weights must be finite")
        if np.any(weights < 0):
            raise ValueError("Contact weights must be non-negative")
        if len(bin_x) and (
            min(bin_x.min(), bin_y.min()) < 0
            or max(bin_x.max(), bin_y.max()) >= n_bins
        ):
            raise ValueError(
                f"Bin indices must lie in [0, {n_bins})"
            )

        for arr in (bin_x, bin_y, weights):
            arr.setflags(write=False)
        self._bin_x = bin_x
        self._bin_y = bin_y
        self._weights = weights
        self._n_bins = n_bins
        self._off_diagonal = bin_x != bin_y
        self._off_diagonal.setflags(write=False)

        off = self._off_diagonal
        self._csr = sparse.csr_matrix(
            (
                np.concatenate([weights, weights[off]]),
                (np.concatenate([bin_x, bin_y[off]]),
                 np.concatenate([bin_y, bin_x[off]])),
            ),
            shape=(n_bins, n_bins),
        )
        logger.debug(
            f"Built contact matrix with {len(weights)} contacts over "
            f"{n_bins} bins"
        )

    @classmethod
    def from_records(
        cls,
        records: Iterable[Any],
        n_bins: int
    ) -> "SparseSymmetricMatrix":
        """Build from an iterable of ``ContactRecord`` or 3-tuples."""
        rows = [tuple(r) for r in records]
        if not rows:
            return cls([], [], [], n_bins)
        bin_x, bin_y, weights = zip(*rows)
        return cls(bin_x, bin_y, weights, n_bins)

    @classmethod
    def from_pixels(
        cls,
        pixels: pd.DataFrame,
        n_bins: Optional[int] = None,
        weight_column: str = "count"
    ) -> "SparseSymmetricMatrix":
        """
        Build from a pixel table with ``bin1_id``, ``bin2_id`` and a
        weight column, the layout cooler uses for its pixels.

        Parameters
        ----------
        pixels : pd.DataFrame
            Upper-triangle pixel table.
        n_bins : int, optional
            Matrix dimension. Defaults to the largest bin id plus one.
        weight_column : str, optional
            Column holding the contact weights.

        Returns
        -------
        SparseSymmetricMatrix
        """
        missing = {"bin1_id", "bin2_id", weight_column} - set(pixels.columns)
        if missing:
            raise ValueError(f"Pixel table is missing columns: {sorted(missing)}")
        if n_bins is None:
            if pixels.empty:
                raise ValueError("n_bins is required for an empty pixel table")
            n_bins = int(max(pixels["bin1_id"].max(), pixels["bin2_id"].max())) + 1
        return cls(
            pixels["bin1_id"].to_numpy(),
            pixels["bin2_id"].to_numpy(),
            pixels[weight_column].to_numpy(),
            n_bins,
        )

    @classmethod
    def from_coo(cls, mat: Any) -> "SparseSymmetricMatrix":
        """
        Build from a square SciPy sparse or dense matrix. Only the upper
        triangle is read.
        """
        coo = sparse.triu(sparse.coo_matrix(mat), format="coo")
        if coo.shape[0] != coo.shape[1]:
            raise ValueError(f"Expected a square matrix, got {coo.shape}")
        return cls(coo.row, coo.col, coo.data, coo.shape[0])

    @property
    def n_bins(self) -> int:
        return self._n_bins

    @property
    def bin_x(self) -> np.ndarray:
        return self._bin_x

    @property
    def bin_y(self) -> np.ndarray:
        return self._bin_y

    @property
    def weights(self) -> np.ndarray:
        return self._weights

    @property
    def off_diagonal(self) -> np.ndarray:
        """Boolean mask of records with ``bin_x != bin_y``."""
        return self._off_diagonal

    def __len__(self) -> int:
        return len(self._weights)

    def __iter__(self) -> Iterator[ContactRecord]:
        for x, y, w in zip(self._bin_x, self._bin_y, self._weights):
            yield ContactRecord(int(x), int(y), float(w))

    def __repr__(self) -> str:
        return (f"SparseSymmetricMatrix(n_bins={self._n_bins}, "
                f"contacts={len(self)})")

    def multiply(self, vector: Any) -> np.ndarray:
        """
        Multiply the full symmetric matrix by `vector`.

        ``r[p]`` is the sum of ``weight * vector[other endpoint]`` over the
        contacts touching ``p``. Off-diagonal records count in both
        directions, diagonal records once. A new array is returned.

        Parameters
        ----------
        vector : array-like
            Vector of length ``n_bins``.

        Returns
        -------
        np.ndarray
            Matrix-vector product.
        """
        v = np.asarray(vector, dtype=np.float64)
        if v.shape != (self._n_bins,):
            raise ValueError(
                f"Expected a vector of length {self._n_bins}, got shape {v.shape}"
            )
        return np.asarray(self._csr.dot(v), dtype=np.float64)

    def diagonal(self) -> np.ndarray:
        """Summed self-contact weight of each bin."""
        diag = ~self._off_diagonal
        return np.bincount(
            self._bin_x[diag], weights=self._weights[diag],
            minlength=self._n_bins
        ).astype(np.float64)

    def row_sums(self) -> np.ndarray:
        return self.multiply(np.ones(self._n_bins))

    def total_mass(self) -> float:
        """Sum of all matrix entries, off-diagonal records counted twice."""
        return float(self._weights.sum()
                     + self._weights[self._off_diagonal].sum())

    def scale_by(self, vector: Any) -> "SparseSymmetricMatrix":
        """
        Return the matrix with each weight multiplied by
        ``vector[x] * vector[y]``. Contacts touching a NaN bin are dropped.
        """
        v = np.asarray(vector, dtype=np.float64)
        if v.shape != (self._n_bins,):
            raise ValueError(
                f"Expected a vector of length {self._n_bins}, got shape {v.shape}"
            )
        factor = v[self._bin_x] * v[self._bin_y]
        keep = ~np.isnan(factor)
        return SparseSymmetricMatrix(
            self._bin_x[keep], self._bin_y[keep],
            self._weights[keep] * factor[keep], self._n_bins
        )

    def to_pixels(self) -> pd.DataFrame:
        return pd.DataFrame({
            "bin1_id": self._bin_x,
            "bin2_id": self._bin_y,
            "count": self._weights,
        })


def as_contact_matrix(
    contacts: Any,
    n_bins: Optional[int] = None
) -> SparseSymmetricMatrix:
    """
    Coerce supported contact inputs to a ``SparseSymmetricMatrix``.

    Accepts a ``SparseSymmetricMatrix``, a cooler-style pixel DataFrame,
    a SciPy sparse or 2D numpy matrix, or an iterable of
    ``(bin_x, bin_y, weight)`` records (which needs `n_bins`). A square
    numpy array is always read as a dense matrix.
    """
    if isinstance(contacts, SparseSymmetricMatrix):
        if n_bins is not None and contacts.n_bins != n_bins:
            raise ValueError(
                f"Contact matrix has {contacts.n_bins} bins, expected {n_bins}"
            )
        return contacts
    if isinstance(contacts, pd.DataFrame):
        return SparseSymmetricMatrix.from_pixels(contacts, n_bins=n_bins)
    if sparse.issparse(contacts) or (
        isinstance(contacts, np.ndarray) and contacts.ndim == 2
        and contacts.shape[0] == contacts.shape[1]
    ):
        return SparseSymmetricMatrix.from_coo(contacts)
    if n_bins is None:
        raise ValueError("n_bins is required to build a matrix from records")
    return SparseSymmetricMatrix.from_records(contacts, n_bins)
