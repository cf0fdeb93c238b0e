"""Quantization adapter: one VectorType per scalar representation.

Every scalar type implements the same capability set against an untyped
Index: ``add``, ``get``, ``search``, ``filtered_search``, ``change_metric``
and ``quant_type``. The subclasses only differ in how caller data is turned
into the buffer the engine expects.

Half-precision vectors are exposed publicly as 16-bit integers. Going
between those integers and the half-precision representation is a pure bit
reinterpretation (``ndarray.view``), never a numeric conversion.
"""

import ctypes
from typing import Any, Callable, Sequence, Union

import numpy as np

from usearch_typed import _ffi
from usearch_typed._ffi import MetricKind, ScalarKind
from usearch_typed.exceptions import DimensionMismatchError
from usearch_typed.matches import Matches
from usearch_typed.trampoline import FilterTrampoline, MetricTrampoline

MAX_KEY = 2**64 - 1

# Reinterpreting casts are only sound if both sides share one layout.
if not (
    np.dtype(np.float16).itemsize == np.dtype(np.int16).itemsize == 2
    and np.dtype(np.float16).alignment == np.dtype(np.int16).alignment
):
    raise ImportError("float16 and int16 must share a 2-byte layout")


def check_key(key: int) -> int:
    """Validate a key and return it as a plain int."""
    key = int(key)
    if not 0 <= key <= MAX_KEY:
        raise ValueError(f"Key must fit in 64 unsigned bits, got {key}")
    return key


def _pointer(array: np.ndarray) -> ctypes.c_void_p:
    return array.ctypes.data_as(ctypes.c_void_p)


# Half-precision helpers


def f16_from_i16s(bits: np.ndarray) -> np.ndarray:
    """Reinterpret ``int16`` storage as ``float16`` values (no copy)."""
    bits = np.asarray(bits)
    if bits.dtype not in (np.int16, np.uint16):
        raise TypeError(f"Expected 16-bit integers, got {bits.dtype}")
    return bits.view(np.float16)


def f16_to_i16s(values: np.ndarray) -> np.ndarray:
    """Reinterpret ``float16`` values as ``int16`` storage (no copy)."""
    values = np.asarray(values)
    if values.dtype != np.float16:
        raise TypeError(f"Expected float16, got {values.dtype}")
    return values.view(np.int16)


def bf16_from_f32s(values: Union[Sequence[float], np.ndarray]) -> np.ndarray:
    """Round ``float32`` values to bfloat16, returned as ``int16`` bits.

    This is a value conversion, provided for callers that hold full
    precision data. Rounds to nearest, ties to even.
    """
    words = np.ascontiguousarray(values, dtype=np.float32).view(np.uint32)
    rounding = ((words >> np.uint32(16)) & np.uint32(1)) + np.uint32(0x7FFF)
    rounded = (words + rounding) >> np.uint32(16)
    # NaN keeps its sign and upper payload bits, made quiet
    nan = (words & np.uint32(0x7FFFFFFF)) > np.uint32(0x7F800000)
    quiet = (words >> np.uint32(16)) | np.uint32(0x0040)
    return np.where(nan, quiet, rounded).astype(np.uint16).view(np.int16)


def bf16_to_f32s(bits: np.ndarray) -> np.ndarray:
    """Widen bfloat16 ``int16`` bits to ``float32`` values (exact)."""
    bits = np.ascontiguousarray(bits)
    if bits.dtype not in (np.int16, np.uint16):
        raise TypeError(f"Expected 16-bit integers, got {bits.dtype}")
    words = bits.view(np.uint16).astype(np.uint32) << np.uint32(16)
    return words.view(np.float32)


class VectorType:
    """Base class of the scalar adapters.

    Attributes:
        dtype: numpy dtype of the public storage
        kind: binary layout the engine should expect
    """

    dtype: Any = None
    kind: ScalarKind = ScalarKind.UNKNOWN

    @classmethod
    def quant_type(cls) -> ScalarKind:
        return cls.kind

    @classmethod
    def storage_length(cls, dimensions: int) -> int:
        """Number of ``dtype`` elements holding one vector."""
        return dimensions

    @classmethod
    def natural_view(cls, array: np.ndarray) -> np.ndarray:
        """View storage in the dtype custom metrics receive."""
        return array

    @classmethod
    def coerce(cls, vector: Any) -> np.ndarray:
        """Convert caller data to an array of ``dtype``."""
        if not isinstance(vector, np.ndarray):
            return np.array(vector, dtype=cls.dtype)
        if vector.dtype != cls.dtype:
            return vector.astype(cls.dtype)
        return vector

    @classmethod
    def as_native(cls, vector: Any, dimensions: int) -> np.ndarray:
        """Validate one vector and make it C-contiguous for the engine."""
        array = cls.coerce(vector)
        expected = cls.storage_length(dimensions)
        if array.ndim != 1 or len(array) != expected:
            raise DimensionMismatchError(
                f"Vector has shape {array.shape}, "
                f"but index expects ({expected},) {cls.__name__} elements"
            )
        return np.ascontiguousarray(array)

    @classmethod
    def output_view(cls, buffer: np.ndarray) -> np.ndarray:
        """View a caller buffer as writable ``dtype`` storage."""
        if not isinstance(buffer, np.ndarray) or buffer.dtype != cls.dtype:
            raise TypeError(
                f"{cls.__name__} output buffer must be a {np.dtype(cls.dtype)} "
                f"numpy array, got {getattr(buffer, 'dtype', type(buffer))}"
            )
        return buffer

    @classmethod
    def _writable(cls, buffer: np.ndarray) -> np.ndarray:
        out = cls.output_view(buffer)
        if not out.flags.writeable or not out.flags.c_contiguous:
            raise ValueError("Output buffer must be writable and C-contiguous")
        return out.reshape(-1)

    # Capability set

    @classmethod
    def add(cls, index: Any, key: int, vector: Any) -> None:
        native = cls.as_native(vector, index.ndim)
        with index._metric_errors():
            _ffi.call(
                index._lib.usearch_add,
                index._handle(),
                check_key(key),
                _pointer(native),
                cls.kind,
            )

    @classmethod
    def get(cls, index: Any, key: int, buffer: np.ndarray) -> int:
        out = cls._writable(buffer)
        length = cls.storage_length(index.ndim)
        slots = out.size // length
        if slots < 1:
            raise DimensionMismatchError(
                f"Buffer holds {out.size} elements, "
                f"but one vector needs {length}"
            )
        found = _ffi.call(
            index._lib.usearch_get,
            index._handle(),
            check_key(key),
            slots,
            _pointer(out),
            cls.kind,
        )
        return int(found)

    @classmethod
    def search(cls, index: Any, query: Any, count: int) -> Matches:
        native = cls.as_native(query, index.ndim)
        keys = np.zeros(count, dtype=np.uint64)
        distances = np.zeros(count, dtype=np.float32)
        with index._metric_errors():
            found = _ffi.call(
                index._lib.usearch_search,
                index._handle(),
                _pointer(native),
                cls.kind,
                count,
                keys.ctypes.data_as(_ffi.KeysPtr),
                distances.ctypes.data_as(_ffi.DistancesPtr),
            )
        return Matches(keys=keys[:found], distances=distances[:found])

    @classmethod
    def filtered_search(
        cls,
        index: Any,
        query: Any,
        count: int,
        predicate: Callable[[int], bool],
    ) -> Matches:
        native = cls.as_native(query, index.ndim)
        keys = np.zeros(count, dtype=np.uint64)
        distances = np.zeros(count, dtype=np.float32)
        with index._metric_errors(), FilterTrampoline(predicate) as bridge:
            found = _ffi.call(
                index._lib.usearch_filtered_search,
                index._handle(),
                _pointer(native),
                cls.kind,
                count,
                bridge.function_pointer,
                bridge.context,
                keys.ctypes.data_as(_ffi.KeysPtr),
                distances.ctypes.data_as(_ffi.DistancesPtr),
            )
        return Matches(keys=keys[:found], distances=distances[:found])

    @classmethod
    def change_metric(
        cls, index: Any, metric: Callable[[np.ndarray, np.ndarray], float]
    ) -> MetricTrampoline:
        """Install ``metric`` as the index's distance function.

        The returned trampoline must be kept alive by the index for as long
        as the engine may compare vectors.
        """
        trampoline = MetricTrampoline(metric, cls, index.ndim)
        _ffi.call(
            index._lib.usearch_change_metric,
            index._handle(),
            trampoline.function_pointer,
            trampoline.context,
            MetricKind.UNKNOWN,
        )
        return trampoline


class Float32(VectorType):
    dtype = np.float32
    kind = ScalarKind.F32


class Float64(VectorType):
    dtype = np.float64
    kind = ScalarKind.F64


class Int8(VectorType):
    dtype = np.int8
    kind = ScalarKind.I8


class Bits(VectorType):
    """Binary vectors packed eight dimensions per byte, MSB first."""

    dtype = np.uint8
    kind = ScalarKind.B1

    @classmethod
    def storage_length(cls, dimensions: int) -> int:
        return (dimensions + 7) // 8

    @classmethod
    def as_native(cls, vector: Any, dimensions: int) -> np.ndarray:
        array = np.asarray(vector)
        if array.dtype == np.bool_:
            if array.ndim != 1 or len(array) != dimensions:
                raise DimensionMismatchError(
                    f"Vector has {array.size} bits, "
                    f"but index expects {dimensions}"
                )
            array = np.packbits(array)
        return super().as_native(array, dimensions)


class _Half(VectorType):
    """16-bit scalars stored as ``int16`` bit patterns."""

    dtype = np.int16
    accepted = (np.dtype(np.int16), np.dtype(np.uint16))

    @classmethod
    def coerce(cls, vector: Any) -> np.ndarray:
        array = np.asarray(vector)
        if array.dtype in cls.accepted:
            return array.view(np.int16)
        if array.dtype.kind in "iu":
            # Bit patterns given as wider integers, e.g. from a list
            if array.size and (
                int(array.min()) < -0x8000 or int(array.max()) > 0xFFFF
            ):
                raise ValueError(
                    f"{cls.__name__} bit patterns must fit in 16 bits, "
                    f"got values in [{array.min()}, {array.max()}]"
                )
            return array.astype(np.uint16).view(np.int16)
        raise TypeError(
            f"{cls.__name__} vectors are 16-bit bit patterns, got {array.dtype}"
        )

    @classmethod
    def output_view(cls, buffer: np.ndarray) -> np.ndarray:
        if isinstance(buffer, np.ndarray) and buffer.dtype in cls.accepted:
            return buffer.view(np.int16)
        raise TypeError(
            f"{cls.__name__} output buffer must hold 16-bit values, "
            f"got {getattr(buffer, 'dtype', type(buffer))}"
        )


class Float16(_Half):
    """IEEE 754 half precision: 1 sign, 5 exponent, 10 mantissa bits."""

    kind = ScalarKind.F16
    accepted = (np.dtype(np.int16), np.dtype(np.uint16), np.dtype(np.float16))

    @classmethod
    def natural_view(cls, array: np.ndarray) -> np.ndarray:
        return array.view(np.float16)


class BFloat16(_Half):
    """Brain floating point: 1 sign, 8 exponent, 7 mantissa bits."""

    kind = ScalarKind.BF16


SCALAR_TYPES = {
    scalar.kind: scalar
    for scalar in (Float32, Float64, Int8, Bits, Float16, BFloat16)
}


def for_kind(kind: ScalarKind) -> type:
    """Get the adapter for a quantization kind."""
    try:
        return SCALAR_TYPES[ScalarKind(kind)]
    except (KeyError, ValueError):
        raise ValueError(f"Unsupported quantization: {kind!r}") from None
