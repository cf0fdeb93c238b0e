"""
usearch-typed - typed Python bindings for the USearch vector search engine

This package provides a Pythonic, type-checked interface to the USearch
approximate nearest neighbor engine, which is built in C++ and exposed via
its C API.

Example:
    >>> from usearch_typed import HighLevel, Float32, Cos
    >>> index = HighLevel[Float32, 4, Cos].try_default()
    >>> index.reserve(1000)
    >>> index.add(1, [0.0, 1.0, 0.0, 1.0])
    >>> index.add(2, [1.0, 0.0, 1.0, 0.0])
    >>> for result in index.search([0.5, 0.5, 0.5, 0.5], 5):
    ...     print(f"Key: {result.key}, Distance: {result.distance}")
"""

from usearch_typed._ffi import MetricKind, ScalarKind, library_path
from usearch_typed.buffers import BorrowedBuffer
from usearch_typed.exceptions import (
    DimensionMismatchError,
    MetricMismatchError,
    NullPointerError,
    ScalarKindMismatchError,
    USearchError,
)
from usearch_typed.highlevel import HighLevel
from usearch_typed.index import Index, IndexOptions
from usearch_typed.matches import Matches, ResultElement
from usearch_typed.metric import (
    IP,
    Cos,
    CustomMetric,
    Divergence,
    Hamming,
    Haversine,
    Jaccard,
    L2sq,
    MetricType,
    Pearson,
    Sorensen,
    Tanimoto,
)
from usearch_typed.quantization import (
    BFloat16,
    Bits,
    Float16,
    Float32,
    Float64,
    Int8,
    VectorType,
    bf16_from_f32s,
    bf16_to_f32s,
    f16_from_i16s,
    f16_to_i16s,
)

__version__ = "0.1.0"
__all__ = [
    "HighLevel",
    "Index",
    "IndexOptions",
    "Matches",
    "ResultElement",
    "BorrowedBuffer",
    "MetricKind",
    "ScalarKind",
    "library_path",
    # metrics
    "MetricType",
    "CustomMetric",
    "IP",
    "L2sq",
    "Cos",
    "Pearson",
    "Haversine",
    "Divergence",
    "Hamming",
    "Jaccard",
    "Tanimoto",
    "Sorensen",
    # scalars
    "VectorType",
    "Float32",
    "Float64",
    "Int8",
    "Bits",
    "Float16",
    "BFloat16",
    "f16_from_i16s",
    "f16_to_i16s",
    "bf16_from_f32s",
    "bf16_to_f32s",
    # errors
    "USearchError",
    "DimensionMismatchError",
    "ScalarKindMismatchError",
    "MetricMismatchError",
    "NullPointerError",
]
