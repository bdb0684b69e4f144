"""
Count matrix decoding.

Matrices are read from HDF5 into a compressed sparse column matrix (genes x
cells). When integer conversion and layering are both requested, rows are
regrouped by the width of integer type their values need, and the row
permutation is reported alongside the matrix.

Supported layouts:
- sparse group with ``data``, ``indices``, ``indptr`` and a shape (dataset or
  attribute), in CSC (default) or CSR order
- dense dataset, stored as (columns, rows) unless flagged ``transposed``
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Iterator, Optional

import h5py
import numpy as np
import scipy.sparse as sp

from scremote.core.errors import ReleasedMatrixError, UnsupportedSchemaError
from scremote.decode.hdf5 import decode_attr, open_hdf5

logger = logging.getLogger(__name__)

_LAYER_LIMITS = (2**8, 2**16)

_INT32 = np.iinfo(np.int32)


class CountMatrix:
    """
    Sparse count matrix with explicit release.

    Example:
        >>> counts = CountMatrix(sp.csc_matrix(np.eye(3)))
        >>> counts.number_of_rows(), counts.number_of_columns()
        (3, 3)
        >>> counts.column(0)
        array([1., 0., 0.])
        >>> counts.release()
        True
    """

    def __init__(self, matrix: Any, layer_sizes: Optional[list[int]] = None):
        """
        Wrap a matrix.

        Args:
            matrix: Any scipy sparse matrix or 2-D array; stored as CSC.
            layer_sizes: Row counts of consecutive layers; one layer if None.
        """
        self._matrix: Optional[sp.csc_matrix] = sp.csc_matrix(matrix)
        nrow = self._matrix.shape[0]
        if layer_sizes is None:
            layer_sizes = [nrow] if nrow else []
        if sum(layer_sizes) != nrow:
            raise ValueError(f"layer sizes {layer_sizes} do not add up to {nrow} rows")
        self.layer_sizes = tuple(int(x) for x in layer_sizes)

    @property
    def released(self) -> bool:
        return self._matrix is None

    def _require(self) -> sp.csc_matrix:
        if self._matrix is None:
            raise ReleasedMatrixError("count matrix has already been released")
        return self._matrix

    @property
    def shape(self) -> tuple[int, int]:
        return self._require().shape

    def number_of_rows(self) -> int:
        return self._require().shape[0]

    def number_of_columns(self) -> int:
        return self._require().shape[1]

    def is_sparse(self) -> bool:
        return True

    @property
    def dtype(self) -> np.dtype:
        return self._require().dtype

    def row(self, i: int) -> np.ndarray:
        """Dense values of row ``i``."""
        return self._require().getrow(i).toarray().ravel()

    def column(self, j: int) -> np.ndarray:
        """Dense values of column ``j``."""
        return self._require().getcol(j).toarray().ravel()

    def to_scipy(self) -> sp.csc_matrix:
        """The underlying CSC matrix (not a copy)."""
        return self._require()

    def iter_layers(self) -> Iterator[sp.csc_matrix]:
        """
        Yield each layer as its own matrix, cast to the narrowest unsigned
        integer type that holds it when the values are integers.
        """
        matrix = self._require()
        start = 0
        for size in self.layer_sizes:
            block = matrix[start:start + size, :]
            start += size
            if np.issubdtype(block.dtype, np.integer) and block.nnz:
                if block.data.min() >= 0:
                    block = block.astype(_narrowest_unsigned(int(block.data.max())))
            yield block

    def release(self) -> bool:
        """
        Free the matrix storage. Idempotent.

        Returns:
            True if this call released the storage.
        """
        if self._matrix is None:
            return False
        self._matrix = None
        return True

    def __repr__(self) -> str:
        if self._matrix is None:
            return "CountMatrix(released)"
        nrow, ncol = self._matrix.shape
        return f"CountMatrix({nrow} x {ncol}, nnz={self._matrix.nnz}, dtype={self._matrix.dtype})"


@dataclass
class DecodedMatrix:
    """A count matrix plus the original row index of each of its rows."""

    matrix: CountMatrix
    """Decoded counts, possibly with permuted rows."""

    row_ids: np.ndarray
    """``row_ids[i]`` is the original row of matrix row ``i``."""


def _narrowest_unsigned(maximum: int) -> type:
    if maximum < _LAYER_LIMITS[0]:
        return np.uint8
    if maximum < _LAYER_LIMITS[1]:
        return np.uint16
    return np.uint32


def _read_shape(node: h5py.Group) -> tuple[int, int]:
    if "shape" in node:
        shape = node["shape"][()]
    elif "shape" in node.attrs:
        shape = node.attrs["shape"]
    else:
        raise UnsupportedSchemaError(f"no shape found for sparse matrix at '{node.name}'")
    shape = [int(x) for x in np.asarray(shape).ravel()]
    if len(shape) != 2:
        raise UnsupportedSchemaError(f"expected a 2-dimensional shape at '{node.name}'")
    return shape[0], shape[1]


def _is_sparse_group(node: Any) -> bool:
    return isinstance(node, h5py.Group) and all(k in node for k in ("data", "indices", "indptr"))


def _dense_node(node: Any) -> Optional[tuple[h5py.Dataset, bool]]:
    """Locate a dense 2-D dataset and whether it is stored in (rows, columns) order."""
    if isinstance(node, h5py.Dataset):
        return node, bool(decode_attr(node.attrs.get("transposed", 0)))
    if isinstance(node, h5py.Group) and isinstance(node.get("data"), h5py.Dataset):
        data = node["data"]
        flag = node.attrs.get("transposed", data.attrs.get("transposed", 0))
        return data, bool(decode_attr(flag))
    return None


def _read_sparse(node: h5py.Group) -> sp.csc_matrix:
    nrow, ncol = _read_shape(node)
    data = node["data"][()]
    indices = node["indices"][()]
    indptr = node["indptr"][()]
    layout = str(decode_attr(node.attrs.get("layout", "CSC"))).upper()

    if layout == "CSC":
        return sp.csc_matrix((data, indices, indptr), shape=(nrow, ncol))
    if layout == "CSR":
        return sp.csr_matrix((data, indices, indptr), shape=(nrow, ncol)).tocsc()
    raise UnsupportedSchemaError(f"unknown sparse layout '{layout}' at '{node.name}'")


def _dense_values(dataset: h5py.Dataset, transposed: bool) -> np.ndarray:
    values = dataset[()]
    if values.ndim != 2:
        raise UnsupportedSchemaError(
            f"expected a 2-dimensional array at '{dataset.name}', got {values.ndim} dimensions"
        )
    # Stored in column-major order, so HDF5's row-major view is (columns, rows).
    if not transposed:
        values = values.T
    return values


def _read_dense(dataset: h5py.Dataset, transposed: bool) -> sp.csc_matrix:
    return sp.csc_matrix(_dense_values(dataset, transposed))


def _locate(handle: h5py.File, group: Optional[str], dataset: Optional[str]) -> Any:
    path = dataset or group
    if not path:
        return handle
    if path not in handle:
        raise UnsupportedSchemaError(f"no matrix found at '{path}'")
    return handle[path]


def read_matrix_shape(
    content: bytes,
    group: Optional[str] = None,
    dataset: Optional[str] = None,
) -> tuple[int, int]:
    """Read the (rows, columns) shape of a stored matrix without loading its values."""
    with open_hdf5(content) as handle:
        node = _locate(handle, group, dataset)
        if _is_sparse_group(node):
            return _read_shape(node)
        dense = _dense_node(node)
        if dense is None:
            raise UnsupportedSchemaError(f"unrecognized matrix layout at '{node.name}'")
        data, transposed = dense
        first, second = data.shape
        return (first, second) if transposed else (second, first)


def decode_dense_array(
    content: bytes,
    *,
    group: Optional[str] = None,
    dataset: Optional[str] = None,
) -> np.ndarray:
    """
    Read a dense 2-D array (e.g. a reduced dimension) as float64.

    Returns:
        Array in (rows, columns) order, with the same orientation rules as
        ``decode_matrix``.
    """
    with open_hdf5(content) as handle:
        node = _locate(handle, group, dataset)
        dense = _dense_node(node)
        if dense is None:
            raise UnsupportedSchemaError(f"expected a dense array at '{node.name}'")
        values = _dense_values(*dense)
    return np.ascontiguousarray(values, dtype=np.float64)


def _to_integer(matrix: sp.csc_matrix) -> sp.csc_matrix:
    data = np.trunc(np.nan_to_num(matrix.data.astype(np.float64, copy=False), nan=0.0))
    if data.size and (data.min() < _INT32.min or data.max() > _INT32.max):
        raise UnsupportedSchemaError(
            f"counts range from {data.min():g} to {data.max():g}, outside the 32-bit integer range"
        )
    matrix = sp.csc_matrix(
        (data.astype(np.int32), matrix.indices, matrix.indptr),
        shape=matrix.shape,
    )
    matrix.eliminate_zeros()
    return matrix


def layer_rows(matrix: sp.csc_matrix) -> tuple[np.ndarray, list[int]]:
    """
    Group rows by the range of their largest value.

    Rows with a maximum below 2**8 come first, then below 2**16, then the
    rest; order within a group is preserved.

    Returns:
        Tuple of (row permutation, non-empty group sizes).
    """
    nrow = matrix.shape[0]
    if nrow == 0:
        return np.arange(0, dtype=np.int32), []

    maxima = np.asarray(matrix.max(axis=1).todense()).ravel()
    category = np.digitize(maxima, _LAYER_LIMITS)
    order = np.argsort(category, kind="stable").astype(np.int32)
    sizes = [int(x) for x in np.bincount(category, minlength=3) if x]
    return order, sizes


def decode_matrix(
    content: bytes,
    *,
    group: Optional[str] = None,
    dataset: Optional[str] = None,
    force_integer: bool = True,
    layered: bool = True,
) -> DecodedMatrix:
    """
    Decode a count matrix from HDF5.

    Args:
        content: Raw file contents.
        group: Path of a sparse group (or dense group with a ``data`` child).
        dataset: Path of a dense dataset; takes precedence over ``group``.
        force_integer: Truncate values to 32-bit integers.
        layered: Regroup rows by value range; only applies to non-negative
            integer matrices.

    Returns:
        DecodedMatrix whose ``row_ids`` is the identity unless rows were regrouped.

    Raises:
        UnsupportedSchemaError: If the layout is not recognized, or if
            ``force_integer`` is set and a value does not fit in 32 bits.
    """
    with open_hdf5(content) as handle:
        node = _locate(handle, group, dataset)
        if _is_sparse_group(node):
            matrix = _read_sparse(node)
        else:
            dense = _dense_node(node)
            if dense is None:
                raise UnsupportedSchemaError(f"unrecognized matrix layout at '{node.name}'")
            matrix = _read_dense(*dense)

    if matrix.dtype == np.bool_:
        matrix = matrix.astype(np.int32)

    if force_integer:
        matrix = _to_integer(matrix)
    else:
        matrix = matrix.astype(np.float64)

    nrow = matrix.shape[0]
    if force_integer and layered and (matrix.nnz == 0 or matrix.data.min() >= 0):
        row_ids, sizes = layer_rows(matrix)
        matrix = matrix[row_ids, :].tocsc()
        logger.debug("Layered %d rows into groups of %s", nrow, sizes)
        return DecodedMatrix(matrix=CountMatrix(matrix, sizes), row_ids=row_ids)

    return DecodedMatrix(
        matrix=CountMatrix(matrix),
        row_ids=np.arange(nrow, dtype=np.int32),
    )
