"""
Delimited text table decoding.

The first record holds the column headers. Every value is kept as text;
numeric and boolean conversion happens later in ``coerce_columns``.
"""

from __future__ import annotations

import io
import logging
from typing import Optional

import pandas as pd

from scremote.core.errors import UnsupportedCompressionError
from scremote.decode.frame import RawTable

logger = logging.getLogger(__name__)

_COMPRESSION = {
    "none": None,
    "gz": "gzip",
}


def decode_delimited_table(
    content: bytes,
    *,
    compression: str = "none",
    delimiter: str = ",",
    row_names: bool = False,
    name: str = "",
) -> RawTable:
    """
    Parse a delimited table.

    Records longer than the header are truncated with a warning. Columns that
    come out short (ragged records) cannot be represented and are set to None,
    also with a warning.

    Args:
        content: Raw file contents.
        compression: "gz" or "none".
        delimiter: Field separator.
        row_names: Whether the first column holds row names.
        name: Table identifier used in log messages.

    Returns:
        RawTable with string columns.

    Raises:
        UnsupportedCompressionError: If ``compression`` is not recognized.
    """
    if compression not in _COMPRESSION:
        raise UnsupportedCompressionError(compression)

    n_truncated = 0

    def truncate(fields: list[str]) -> list[str]:
        nonlocal n_truncated
        n_truncated += 1
        return fields[:expected]

    # The python engine only calls on_bad_lines for records that are too long.
    expected = _count_header_fields(content, _COMPRESSION[compression], delimiter)

    try:
        raw = pd.read_csv(
            io.BytesIO(content),
            sep=delimiter,
            header=None,
            dtype=object,
            keep_default_na=False,
            na_filter=False,
            compression=_COMPRESSION[compression],
            engine="python",
            on_bad_lines=truncate,
        )
    except pd.errors.EmptyDataError:
        return RawTable(headers=[], columns=[], nrow=0)

    if n_truncated:
        logger.warning(
            "truncated %d record(s) with more than %d fields in '%s'",
            n_truncated,
            expected,
            name,
        )

    headers = [h if isinstance(h, str) else "" for h in raw.iloc[0].tolist()]
    body = raw.iloc[1:]

    columns: list = []
    for i in range(len(headers)):
        values = body.iloc[:, i].tolist()
        if all(isinstance(x, str) for x in values):
            columns.append(values)
        else:
            logger.warning("failed to parse column %d of the data frame '%s'", i + 1, name)
            columns.append(None)

    names = None
    if row_names and headers:
        headers.pop(0)
        names = columns.pop(0)
        if names is None:
            logger.warning("failed to parse the row names of the data frame '%s'", name)

    return RawTable(headers=headers, columns=columns, row_names=names, nrow=len(body))


def _count_header_fields(content: bytes, compression: Optional[str], delimiter: str) -> int:
    try:
        header = pd.read_csv(
            io.BytesIO(content),
            sep=delimiter,
            header=None,
            dtype=object,
            nrows=1,
            keep_default_na=False,
            compression=compression,
            engine="python",
        )
    except pd.errors.EmptyDataError:
        return 0
    return header.shape[1]
