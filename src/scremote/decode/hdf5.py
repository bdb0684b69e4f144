"""
HDF5 data frame decoding.

Two group layouts are understood, both with ``column_names`` and a ``data``
subgroup holding one child per column, named by its position:

- plain: ``row_names`` dataset optional, columns are typed datasets
- annotated: the group carries a ``row-count`` attribute, each column dataset
  a ``type`` attribute and optionally a ``missing-value-placeholder``;
  factor columns are groups with ``codes`` and ``levels``

Positions missing from ``data`` are columns stored elsewhere and decode to
None.
"""

from __future__ import annotations

import io
import logging
from contextlib import contextmanager
from typing import Any, Iterator, Optional

import h5py
import numpy as np

from scremote.core.errors import UnsupportedSchemaError
from scremote.decode.coerce import MISSING_INT32
from scremote.decode.frame import Column, RawTable

logger = logging.getLogger(__name__)


@contextmanager
def open_hdf5(content: bytes) -> Iterator[h5py.File]:
    """Open an in-memory HDF5 file for reading."""
    handle = h5py.File(io.BytesIO(content), "r")
    try:
        yield handle
    finally:
        handle.close()


def decode_attr(value: Any) -> Any:
    """Unwrap bytes and scalar arrays that h5py returns for attributes."""
    if isinstance(value, bytes):
        return value.decode("utf-8")
    if isinstance(value, np.ndarray) and value.shape == ():
        return decode_attr(value[()])
    return value


def _is_string(dataset: h5py.Dataset) -> bool:
    return h5py.check_string_dtype(dataset.dtype) is not None


def read_strings(dataset: h5py.Dataset) -> list[Optional[str]]:
    """Read a 1-D string dataset, mapping the missing placeholder to None."""
    values = dataset.asstr()[()]
    values = [values] if isinstance(values, str) else list(values)
    if "missing-value-placeholder" in dataset.attrs:
        placeholder = decode_attr(dataset.attrs["missing-value-placeholder"])
        values = [None if v == placeholder else v for v in values]
    return values


def _read_numbers(dataset: h5py.Dataset, column_type: Optional[str]) -> np.ndarray:
    values = dataset[()]
    if values.ndim != 1:
        raise UnsupportedSchemaError(
            f"expected a 1-dimensional column at '{dataset.name}', got {values.ndim} dimensions"
        )

    if "missing-value-placeholder" not in dataset.attrs:
        return values

    placeholder = dataset.attrs["missing-value-placeholder"]
    if np.issubdtype(np.asarray(placeholder).dtype, np.floating) and np.isnan(placeholder):
        missing = np.isnan(values)
    else:
        missing = values == placeholder

    if not missing.any():
        return values
    if column_type == "boolean":
        values = values.astype(np.int32)
        values[missing] = MISSING_INT32
        return values

    values = values.astype(np.float64)
    values[missing] = np.nan
    return values


def _read_factor(group: h5py.Group) -> list[Optional[str]]:
    levels = read_strings(group["levels"])
    codes = group["codes"][()]
    placeholder = None
    if "missing-value-placeholder" in group["codes"].attrs:
        placeholder = group["codes"].attrs["missing-value-placeholder"]

    output: list[Optional[str]] = []
    for code in codes.tolist():
        if (placeholder is not None and code == placeholder) or code < 0 or code >= len(levels):
            output.append(None)
        else:
            output.append(levels[code])
    return output


def _read_column(node: Any) -> tuple[Column, Optional[str]]:
    if isinstance(node, h5py.Group):
        if "codes" in node and "levels" in node:
            return _read_factor(node), "factor"
        return None, "other"

    column_type = decode_attr(node.attrs.get("type"))
    if _is_string(node):
        return read_strings(node), column_type or "string"
    return _read_numbers(node, column_type), column_type


def decode_hdf5_table(content: bytes, group: Optional[str] = None, *, name: str = "") -> RawTable:
    """
    Decode a data frame stored in an HDF5 file.

    Args:
        content: Raw file contents.
        group: Path of the data frame group; the file root if None.
        name: Table identifier used in log messages.

    Returns:
        RawTable with typed columns and the in-file column types.

    Raises:
        UnsupportedSchemaError: If the group lacks ``column_names``.
    """
    with open_hdf5(content) as handle:
        frame = handle[group] if group else handle
        if "column_names" not in frame:
            raise UnsupportedSchemaError(f"no 'column_names' found in HDF5 data frame '{name}'")

        headers = [h if h is not None else "" for h in read_strings(frame["column_names"])]

        names = None
        if "row_names" in frame:
            names = read_strings(frame["row_names"])

        nrow = None
        if "row-count" in frame.attrs:
            nrow = int(decode_attr(frame.attrs["row-count"]))

        columns: list[Column] = []
        column_types: list[Optional[str]] = []
        data = frame["data"] if "data" in frame else None
        for i in range(len(headers)):
            key = str(i)
            if data is None or key not in data:
                columns.append(None)
                column_types.append("other")
                continue
            values, column_type = _read_column(data[key])
            columns.append(values)
            column_types.append(column_type)

    logger.debug("Decoded HDF5 data frame '%s' with %d columns", name, len(headers))
    return RawTable(
        headers=headers,
        columns=columns,
        row_names=names,
        nrow=nrow,
        column_types=column_types,
    )


def read_string_vector(content: bytes, path: str) -> Optional[list[Optional[str]]]:
    """Read a string dataset at ``path``, or None if it is absent."""
    with open_hdf5(content) as handle:
        if path not in handle:
            return None
        node = handle[path]
        if not isinstance(node, h5py.Dataset) or not _is_string(node):
            return None
        return read_strings(node)
