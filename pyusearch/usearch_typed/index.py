"""Untyped Pythonic interface to a USearch index handle."""

import contextlib
import ctypes
import dataclasses
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Iterator, Optional, Union

import numpy as np

from usearch_typed import _ffi, quantization
from usearch_typed._ffi import MetricKind, ScalarKind
from usearch_typed.buffers import BorrowedBuffer
from usearch_typed.exceptions import (
    DimensionMismatchError,
    MetricMismatchError,
    NullPointerError,
    ScalarKindMismatchError,
    USearchError,
)
from usearch_typed.matches import Matches
from usearch_typed.quantization import check_key
from usearch_typed.trampoline import MetricTrampoline

logger = logging.getLogger(__name__)

PathLike = Union[str, Path]


@dataclass
class IndexOptions:
    """Configuration options for a USearch index.

    Attributes:
        dimensions: Number of dimensions per vector. Default: 256
        metric: Builtin distance function, or UNKNOWN for a custom one.
            Default: COS
        quantization: Scalar layout the engine stores. Default: F32
        connectivity: Maximum connections per graph node (M parameter).
            0 lets the engine choose. Default: 0
        expansion_add: Candidate list breadth while indexing.
            Higher = better index quality, slower build. Default: 0
        expansion_search: Candidate list breadth while searching.
            Higher = better recall, slower search. Default: 0
        multi: Allow several vectors under one key. Default: False
    """

    dimensions: int = 256
    metric: MetricKind = MetricKind.COS
    quantization: ScalarKind = ScalarKind.F32
    connectivity: int = 0
    expansion_add: int = 0
    expansion_search: int = 0
    multi: bool = False

    def validate(self) -> None:
        """Validate configuration parameters.

        Raises:
            ValueError: If parameters are out of valid ranges
        """
        if self.dimensions < 1:
            raise ValueError(f"dimensions must be >= 1, got {self.dimensions}")
        if self.connectivity < 0:
            raise ValueError(
                f"connectivity must be >= 0, got {self.connectivity}"
            )
        if self.expansion_add < 0:
            raise ValueError(
                f"expansion_add must be >= 0, got {self.expansion_add}"
            )
        if self.expansion_search < 0:
            raise ValueError(
                f"expansion_search must be >= 0, got {self.expansion_search}"
            )
        self.metric = MetricKind(self.metric)
        quantization.for_kind(self.quantization)
        self.quantization = ScalarKind(self.quantization)

    def to_native(self, metric: Optional[Any] = None) -> _ffi.InitOptions:
        """Pack into ``usearch_init_options_t``."""
        return _ffi.InitOptions(
            metric_kind=self.metric,
            metric=_ffi.address(metric),
            quantization=self.quantization,
            dimensions=self.dimensions,
            connectivity=self.connectivity,
            expansion_add=self.expansion_add,
            expansion_search=self.expansion_search,
            multi=self.multi,
        )

    @classmethod
    def from_native(cls, native: _ffi.InitOptions) -> "IndexOptions":
        return cls(
            dimensions=native.dimensions,
            metric=MetricKind(native.metric_kind),
            quantization=ScalarKind(native.quantization),
            connectivity=native.connectivity,
            expansion_add=native.expansion_add,
            expansion_search=native.expansion_search,
            multi=bool(native.multi),
        )


class Index:
    """Owner of one native index handle.

    This class wraps the USearch C API, handling memory management, error
    handling and type conversions. Vector operations are dispatched to the
    quantization adapter matching ``options.quantization``. HighLevel adds
    type-level checks on top of it.

    Thread Safety:
        The engine synchronizes concurrent add() and search() calls
        internally. reserve() must not overlap with add().

    Example:
        >>> index = Index(IndexOptions(dimensions=3, metric=MetricKind.L2SQ))
        >>> index.reserve(10)
        >>> index.add(42, [0.1, 0.2, 0.3])
        >>> for match in index.search([0.1, 0.2, 0.3], count=1):
        ...     print(f"Key: {match.key}, Distance: {match.distance}")
    """

    def __init__(
        self,
        options: IndexOptions,
        metric: Optional[Callable[[np.ndarray, np.ndarray], float]] = None,
    ):
        """Create an empty index.

        Args:
            options: Index configuration; copied, then validated
            metric: Optional Python distance function replacing the
                builtin metric

        Raises:
            ValueError: If options are invalid
            NullPointerError: If index creation fails
            USearchError: If the engine rejects the options
        """
        self._ptr: Optional[Any] = None
        self._closed = False
        self._metric_fn: Optional[MetricTrampoline] = None
        self._borrowed: Optional[BorrowedBuffer] = None

        self._options = dataclasses.replace(options)
        self._options.validate()
        self._scalar = quantization.for_kind(self._options.quantization)
        self.ndim = self._options.dimensions
        self._lib = _ffi.get_library()

        adapter = MetricTrampoline.adapter if metric is not None else None
        native = self._options.to_native(adapter)
        ptr = _ffi.call(self._lib.usearch_init, ctypes.pointer(native))
        if not ptr:
            raise NullPointerError("Failed to create index (no error message)")
        self._ptr = ptr
        logger.debug("Created index %r", self._options)

        if metric is not None:
            self.change_metric(metric)

    def __del__(self):
        """Clean up resources when index is garbage collected."""
        self.close()

    def __enter__(self):
        """Context manager entry."""
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        """Context manager exit."""
        self.close()
        return False

    def close(self) -> None:
        """Free the native index and drop borrowed buffers.

        This is called automatically when the object is garbage collected
        or when used as a context manager. It's safe to call multiple times.
        """
        if not self._closed and self._ptr:
            _ffi.call(self._lib.usearch_free, self._ptr)
            self._ptr = None
            self._closed = True
            self._release_borrowed()
            self._metric_fn = None
            logger.debug("Freed index")

    def _check_closed(self) -> None:
        """Check if index is closed and raise error if so."""
        if self._closed or not self._ptr:
            raise USearchError("Index is closed")

    def _handle(self) -> Any:
        self._check_closed()
        return self._ptr

    @contextlib.contextmanager
    def _metric_errors(self) -> Iterator[None]:
        """Raise what the custom metric hit during the enclosed native call."""
        metric = self._metric_fn
        if metric is not None:
            metric.discard_pending()
        yield
        if metric is not None:
            metric.raise_pending()

    def _release_borrowed(self) -> None:
        if self._borrowed is not None:
            self._borrowed.release()
            self._borrowed = None

    def _call(self, name: str, *args: Any) -> Any:
        return _ffi.call(getattr(self._lib, name), self._handle(), *args)

    # Vectors

    def add(self, key: int, vector: Any) -> None:
        """Add a vector under ``key``.

        Raises:
            DimensionMismatchError: If vector dimensions don't match
            USearchError: On duplicate keys (unless multi), missing
                capacity, or other engine errors
        """
        self._scalar.add(self, key, vector)

    def get(self, key: int, buffer: np.ndarray) -> int:
        """Copy the vectors stored under ``key`` into ``buffer``.

        Args:
            key: Key to look up
            buffer: Writable array with room for one or more vectors

        Returns:
            Number of vectors written; 0 if the key is absent
        """
        return self._scalar.get(self, key, buffer)

    def get_vector(self, key: int) -> Optional[np.ndarray]:
        """Get a copy of the vector(s) under ``key``, or None if absent.

        Multi-key indexes return a 2D array with one row per vector.
        """
        stored = self.count(key)
        if stored == 0:
            return None
        length = self._scalar.storage_length(self.ndim)
        buffer = np.zeros((stored, length), dtype=self._scalar.dtype)
        found = self.get(key, buffer)
        if self._options.multi:
            return buffer[:found]
        return buffer[0]

    def search(self, query: Any, count: int = 10) -> Matches:
        """Search for the ``count`` approximate nearest neighbors.

        Raises:
            DimensionMismatchError: If query dimensions don't match
            ValueError: If count < 1
        """
        if count < 1:
            raise ValueError(f"count must be >= 1, got {count}")
        return self._scalar.search(self, query, count)

    def filtered_search(
        self,
        query: Any,
        count: int,
        predicate: Callable[[int], bool],
    ) -> Matches:
        """Search, keeping only keys for which ``predicate(key)`` is true.

        The predicate runs on engine threads, possibly for many more keys
        than ``count``; it must be pure and thread-safe.
        """
        if count < 1:
            raise ValueError(f"count must be >= 1, got {count}")
        return self._scalar.filtered_search(self, query, count, predicate)

    def reserve(self, capacity: int) -> None:
        """Grow storage to hold ``capacity`` vectors in total."""
        self._call("usearch_reserve", capacity)

    def remove(self, key: int) -> int:
        """Remove every vector under ``key``; returns how many were removed."""
        return int(self._call("usearch_remove", check_key(key)))

    def rename(self, from_key: int, to_key: int) -> int:
        """Move vectors from one key to another; returns how many moved."""
        return int(
            self._call("usearch_rename", check_key(from_key), check_key(to_key))
        )

    def contains(self, key: int) -> bool:
        return bool(self._call("usearch_contains", check_key(key)))

    def __contains__(self, key: int) -> bool:
        return self.contains(key)

    def count(self, key: int) -> int:
        """Number of vectors stored under ``key``."""
        return int(self._call("usearch_count", check_key(key)))

    # Metric

    def change_metric_kind(self, kind: MetricKind) -> None:
        """Switch to a builtin metric. Stored vectors are not touched."""
        kind = MetricKind(kind)
        self._call("usearch_change_metric_kind", kind)
        self._metric_fn = None
        self._options.metric = kind
        logger.debug("Changed metric to %s", kind.name)

    def change_metric(
        self, metric: Callable[[np.ndarray, np.ndarray], float]
    ) -> None:
        """Switch to a Python distance function. Stored vectors are not touched."""
        self._metric_fn = self._scalar.change_metric(self, metric)
        self._options.metric = MetricKind.UNKNOWN
        logger.debug("Installed %r", self._metric_fn)

    # Accessors

    def size(self) -> int:
        return int(self._call("usearch_size"))

    def __len__(self) -> int:
        return self.size()

    def capacity(self) -> int:
        return int(self._call("usearch_capacity"))

    def dimensions(self) -> int:
        return int(self._call("usearch_dimensions"))

    def connectivity(self) -> int:
        return int(self._call("usearch_connectivity"))

    def expansion_add(self) -> int:
        return int(self._call("usearch_expansion_add"))

    def expansion_search(self) -> int:
        return int(self._call("usearch_expansion_search"))

    def change_expansion_add(self, n: int) -> None:
        self._call("usearch_change_expansion_add", n)
        self._options.expansion_add = n

    def change_expansion_search(self, n: int) -> None:
        self._call("usearch_change_expansion_search", n)
        self._options.expansion_search = n

    def serialized_length(self) -> int:
        """Expected size of the index after serialization, in bytes."""
        return int(self._call("usearch_serialized_length"))

    def memory_usage(self) -> int:
        """Lower bound on the memory consumed by the index, in bytes."""
        return int(self._call("usearch_memory_usage"))

    def hardware_acceleration(self) -> str:
        """Name of the SIMD capability used by the distance kernels."""
        name = self._call("usearch_hardware_acceleration")
        return name.decode("utf-8") if name else ""

    def reset(self) -> None:
        """Erase all members, close files and return memory to the OS."""
        self._call("usearch_reset")
        self._release_borrowed()

    # Persistence

    def _check_metadata(self, native: _ffi.InitOptions, source: str) -> None:
        """Compare the stored configuration with this index."""
        stored = IndexOptions.from_native(native)
        if stored.dimensions != self.ndim:
            raise DimensionMismatchError(
                f"{source} holds {stored.dimensions}-dimensional vectors, "
                f"but index expects {self.ndim}"
            )
        if stored.quantization != self._scalar.kind:
            raise ScalarKindMismatchError(
                f"{source} is quantized as {stored.quantization.name}, "
                f"but index expects {self._scalar.kind.name}"
            )
        expected = self._options.metric
        if expected != MetricKind.UNKNOWN and stored.metric != expected:
            raise MetricMismatchError(
                f"{source} uses {stored.metric.name}, "
                f"but index expects {expected.name}"
            )

    def _after_restore(self) -> None:
        # The engine restores the stored builtin metric on load
        if self._metric_fn is not None:
            self.change_metric(self._metric_fn.metric)

    def _metadata(self, path: PathLike) -> _ffi.InitOptions:
        stored = _ffi.InitOptions()
        _ffi.call(
            self._lib.usearch_metadata, _encode(path), ctypes.pointer(stored)
        )
        return stored

    def save(self, path: PathLike) -> None:
        """Serialize the index to a file."""
        self._call("usearch_save", _encode(path))

    def load(self, path: PathLike) -> None:
        """Load a serialized index from a file into memory.

        Raises:
            DimensionMismatchError, ScalarKindMismatchError,
            MetricMismatchError: If the file was built differently
        """
        self._check_closed()
        self._check_metadata(self._metadata(path), str(path))
        self._call("usearch_load", _encode(path))
        self._release_borrowed()
        self._after_restore()
        logger.debug("Loaded index from %s", path)

    def view(self, path: PathLike) -> None:
        """Memory-map a serialized index file without loading it."""
        self._check_closed()
        self._check_metadata(self._metadata(path), str(path))
        self._call("usearch_view", _encode(path))
        self._release_borrowed()
        self._after_restore()
        logger.debug("Viewing index file %s", path)

    def save_to_buffer(self, buffer: Optional[Any] = None) -> Any:
        """Serialize the index into memory.

        Args:
            buffer: Writable buffer of at least serialized_length() bytes.
                If None, a new bytearray is allocated.

        Returns:
            The buffer holding the serialized index
        """
        length = self.serialized_length()
        if buffer is None:
            buffer = bytearray(length)
        with BorrowedBuffer(buffer, writable=True) as borrowed:
            if borrowed.nbytes < length:
                raise ValueError(
                    f"Buffer holds {borrowed.nbytes} bytes, "
                    f"but the index needs {length}"
                )
            self._call("usearch_save_buffer", borrowed.pointer, length)
        return buffer

    def _buffer_metadata(self, borrowed: BorrowedBuffer) -> _ffi.InitOptions:
        stored = _ffi.InitOptions()
        _ffi.call(
            self._lib.usearch_metadata_buffer,
            borrowed.pointer,
            borrowed.nbytes,
            ctypes.pointer(stored),
        )
        return stored

    def load_from_buffer(self, buffer: Any) -> None:
        """Load a serialized index from memory, copying it."""
        self._check_closed()
        with BorrowedBuffer(buffer) as borrowed:
            self._check_metadata(self._buffer_metadata(borrowed), "Buffer")
            self._call("usearch_load_buffer", borrowed.pointer, borrowed.nbytes)
        self._release_borrowed()
        self._after_restore()

    def view_from_buffer(self, buffer: Any) -> None:
        """Serve the index straight from ``buffer``, without copying.

        The index keeps the buffer export alive until it is reset, reloaded,
        re-viewed or closed. The caller must not modify the contents while
        the view is in use.
        """
        self._check_closed()
        borrowed = BorrowedBuffer(buffer)
        try:
            self._check_metadata(self._buffer_metadata(borrowed), "Buffer")
            self._call("usearch_view_buffer", borrowed.pointer, borrowed.nbytes)
        except Exception:
            borrowed.release()
            raise
        self._release_borrowed()
        self._borrowed = borrowed
        self._after_restore()
        logger.debug("Viewing %d byte buffer", borrowed.nbytes)

    # Properties

    @property
    def options(self) -> IndexOptions:
        """Get the index configuration options."""
        return self._options

    @property
    def scalar(self) -> type:
        """Quantization adapter handling this index's vectors."""
        return self._scalar

    @property
    def multi(self) -> bool:
        return self._options.multi

    @property
    def closed(self) -> bool:
        return self._closed

    def __repr__(self) -> str:
        status = "closed" if self._closed else "open"
        return (
            f"Index(dimensions={self.ndim}, "
            f"metric={self._options.metric.name}, "
            f"quantization={self._options.quantization.name}, "
            f"len={len(self) if not self._closed else '?'}, "
            f"status={status})"
        )


def _encode(path: PathLike) -> bytes:
    return str(Path(path)).encode("utf-8")
