"""
Column type coercion.

Upstream metadata annotates each data frame column with a type (number,
integer, boolean, string, other). Delimited text arrives as strings and
HDF5 booleans arrive as sentinel-coded integers; this module turns them into
the semantic types and drops "other" columns.
"""

from __future__ import annotations

import logging
import re
from typing import Any, Optional, Sequence

import numpy as np

from scremote.decode.frame import Column, RawTable

logger = logging.getLogger(__name__)

MISSING_INT32 = -2147483648
"""Sentinel for a missing value in integer-coded boolean columns."""

_MISSING_STRINGS = frozenset({"", "na", "nan"})

# Plain decimal or scientific notation, or R's "Inf"/"-Inf". Python-only spellings
# such as "1_000" or "infinity" are not numbers here.
_NUMBER_PATTERN = re.compile(
    r"^[+-]?(?:(?:\d+\.?\d*|\.\d+)(?:[eE][+-]?\d+)?|[Ii][Nn][Ff])$",
    re.ASCII,
)


def promote_to_number(values: Sequence[Any]) -> Optional[np.ndarray]:
    """
    Convert a string sequence to float64, all or nothing.

    Empty strings, "NA" and "NaN" (any case) and None become NaN. Only
    decimal and scientific notation parse, plus "Inf" with an optional sign.

    Returns:
        The numeric array, or None if any element is not a number.
    """
    out = np.empty(len(values), dtype=np.float64)
    for i, x in enumerate(values):
        if x is None:
            out[i] = np.nan
            continue
        s = str(x).strip()
        if s.lower() in _MISSING_STRINGS:
            out[i] = np.nan
            continue
        if not _NUMBER_PATTERN.match(s):
            return None
        out[i] = float(s)
    return out


def _strings_to_boolean(values: Sequence[Any]) -> list[Optional[bool]]:
    output: list[Optional[bool]] = []
    for x in values:
        z = str(x).lower() if x is not None else None
        if z == "true":
            output.append(True)
        elif z == "false":
            output.append(False)
        else:
            output.append(None)
    return output


def _numbers_to_boolean(values: np.ndarray) -> list[Optional[bool]]:
    output: list[Optional[bool]] = []
    for x in np.asarray(values).tolist():
        if x is None or x == MISSING_INT32 or (isinstance(x, float) and np.isnan(x)):
            output.append(None)
        else:
            output.append(x != 0)
    return output


def coerce_columns(
    columns: Sequence[Column],
    headers: Sequence[str],
    annotations: Optional[Sequence[dict]],
    *,
    name: str = "",
) -> tuple[list[Column], list[str]]:
    """
    Apply declared column types.

    When there is one annotation per column, each column is converted to its
    declared type and renamed to the declared name. Otherwise type checks are
    skipped and string columns are only promoted to numbers where every entry
    parses.

    Args:
        columns: Decoded column values (None for unreadable columns).
        headers: Column names.
        annotations: Dicts with "name" and "type" keys, one per column.
        name: Table identifier used in log messages.

    Returns:
        Tuple of (columns, headers) with null columns removed.
    """
    columns = list(columns)
    headers = list(headers)

    if annotations is not None and len(annotations) == len(columns):
        for c, anno in enumerate(annotations):
            anno_type = anno.get("type")
            if anno_type == "other":
                columns[c] = None
            if columns[c] is None:
                continue

            current = columns[c]
            if anno_type in ("number", "integer"):
                if isinstance(current, list):
                    numeric = promote_to_number(current)
                    if numeric is not None:
                        current = numeric
            elif anno_type == "boolean":
                if isinstance(current, list):
                    current = _strings_to_boolean(current)
                else:
                    current = _numbers_to_boolean(current)

            headers[c] = anno.get("name", headers[c])
            columns[c] = current
    else:
        logger.warning(
            "skipped type checks due to mismatching column number for '%s'", name
        )
        for c, current in enumerate(columns):
            if isinstance(current, list):
                numeric = promote_to_number(current)
                if numeric is not None:
                    columns[c] = numeric

    kept = [(h, col) for h, col in zip(headers, columns) if col is not None]
    return [col for _, col in kept], [h for h, _ in kept]


def coerce_table(
    table: RawTable,
    annotations: Optional[Sequence[dict]],
    *,
    name: str = "",
) -> RawTable:
    """Return a copy of ``table`` with ``coerce_columns`` applied."""
    columns, headers = coerce_columns(table.columns, table.headers, annotations, name=name)
    return RawTable(
        headers=headers,
        columns=columns,
        row_names=table.row_names,
        nrow=table.number_of_rows(),
    )
