"""
Decoders for table and matrix payloads.

- Delimited text tables (optionally gzipped)
- HDF5 data frames, plain and annotated
- HDF5 sparse and dense count matrices
- Column type coercion
"""

from scremote.decode.coerce import MISSING_INT32, coerce_columns, coerce_table, promote_to_number
from scremote.decode.delimited import decode_delimited_table
from scremote.decode.frame import RawTable, empty_frame, row_names, take_rows
from scremote.decode.hdf5 import decode_hdf5_table, read_string_vector
from scremote.decode.matrix import (
    CountMatrix,
    DecodedMatrix,
    decode_dense_array,
    decode_matrix,
    layer_rows,
    read_matrix_shape,
)

__all__ = [
    "MISSING_INT32",
    "CountMatrix",
    "DecodedMatrix",
    "RawTable",
    "coerce_columns",
    "coerce_table",
    "decode_delimited_table",
    "decode_hdf5_table",
    "decode_dense_array",
    "decode_matrix",
    "empty_frame",
    "layer_rows",
    "promote_to_number",
    "read_matrix_shape",
    "read_string_vector",
    "row_names",
    "take_rows",
]
