"""
Column tables.

Decoders produce a ``RawTable`` (headers, column values, optional row names),
which the type coercion step rewrites and ``to_frame()`` turns into a
pandas DataFrame. Tables without row names carry a default RangeIndex.

Column values are one of:
- ``list`` of str/None: a generic string sequence
- ``numpy.ndarray``: a typed numeric (or bool) array
- ``list`` of bool/None: booleans with missing values
- ``None``: dropped
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Optional, Sequence, Union

import numpy as np
import pandas as pd

Column = Union[list, np.ndarray, None]


def _is_boolean_list(values: list) -> bool:
    seen = False
    for x in values:
        if x is None:
            continue
        if not isinstance(x, (bool, np.bool_)):
            return False
        seen = True
    return seen


def as_frame_column(values: Column) -> Any:
    """Convert a decoded column into something pandas stores without guessing."""
    if isinstance(values, np.ndarray):
        return values
    if _is_boolean_list(values):
        return pd.array(values, dtype="boolean")
    return np.array(values, dtype=object)


@dataclass
class RawTable:
    """Decoded but not yet materialized column table."""

    headers: list[str]
    """Column names, parallel to ``columns``."""

    columns: list[Column]
    """Column values; None marks a column that could not be read."""

    row_names: Optional[list[str]] = None
    """Row names, if the source declares them."""

    nrow: Optional[int] = None
    """Row count; inferred from row names or columns when not set."""

    column_types: Optional[list[Optional[str]]] = None
    """Per-column type declared inside the container, if any."""

    def number_of_rows(self) -> int:
        if self.nrow is not None:
            return self.nrow
        if self.row_names is not None:
            return len(self.row_names)
        for column in self.columns:
            if column is not None:
                return len(column)
        return 0

    def to_frame(self) -> pd.DataFrame:
        """
        Materialize as a DataFrame.

        Null columns are omitted; a repeated header keeps its first position
        and its last value.

        Raises:
            ValueError: If a column or the row names disagree with the row count.
        """
        nrow = self.number_of_rows()
        data: dict[str, Any] = {}
        for header, values in zip(self.headers, self.columns):
            if values is None:
                continue
            if len(values) != nrow:
                raise ValueError(
                    f"column '{header}' has {len(values)} entries, expected {nrow}"
                )
            data[header] = as_frame_column(values)

        if self.row_names is not None:
            if len(self.row_names) != nrow:
                raise ValueError(
                    f"{len(self.row_names)} row names supplied for {nrow} rows"
                )
            index = pd.Index(self.row_names, dtype=object)
        else:
            index = pd.RangeIndex(nrow)

        if not data:
            return pd.DataFrame(index=index)
        return pd.DataFrame(data, index=index)


def empty_frame(nrow: int) -> pd.DataFrame:
    """A table with ``nrow`` rows, no columns and no row names."""
    return pd.DataFrame(index=pd.RangeIndex(int(nrow)))


def row_names(df: pd.DataFrame) -> Optional[list]:
    """Row names of a table, or None if it only has positional rows."""
    if isinstance(df.index, pd.RangeIndex):
        return None
    return list(df.index)


def take_rows(df: pd.DataFrame, rows: Sequence[int]) -> pd.DataFrame:
    """Select rows by position, keeping positional tables positional."""
    out = df.iloc[np.asarray(rows, dtype=np.intp)]
    if isinstance(df.index, pd.RangeIndex):
        out = out.reset_index(drop=True)
    return out
