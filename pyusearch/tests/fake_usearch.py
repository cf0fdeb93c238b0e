"""In-process stand-in for libusearch_c used by the unit tests.

It follows the calling convention of the ctypes bindings: pointers arrive as
ctypes objects, filter and metric callbacks are real ctypes function
pointers invoked with their context word, and failures are reported through
the trailing ``char**`` error out-parameter. Search is exact brute force.
"""

import ctypes
import functools
import itertools
import json
import struct
import threading
from collections import Counter
from typing import Any, Dict, List, Optional, Tuple

import numpy as np

from usearch_typed._ffi import MetricKind, ScalarKind, address

MAGIC = b"FAKEUSRC"

DTYPES = {
    ScalarKind.F32: np.float32,
    ScalarKind.F64: np.float64,
    ScalarKind.F16: np.int16,
    ScalarKind.I8: np.int8,
    ScalarKind.B1: np.uint8,
    ScalarKind.BF16: np.int16,
}

# Error strings must outlive the call that reports them
_MESSAGES: Dict[str, bytes] = {}


class FakeEngineError(Exception):
    pass


def _native(func):
    """Report FakeEngineError through the trailing error pointer."""

    @functools.wraps(func)
    def wrapper(self, *args):
        *args, error = args
        self.calls[func.__name__] += 1
        try:
            return func(self, *args)
        except FakeEngineError as exc:
            message = str(exc)
            error[0] = _MESSAGES.setdefault(message, message.encode("utf-8"))
            return 0

    return wrapper


def storage_length(kind: ScalarKind, dimensions: int) -> int:
    return (dimensions + 7) // 8 if kind == ScalarKind.B1 else dimensions


def decode(kind: ScalarKind, raw: np.ndarray) -> np.ndarray:
    """Numeric values of stored scalars, as float64."""
    if kind == ScalarKind.F16:
        return raw.view(np.float16).astype(np.float64)
    if kind == ScalarKind.BF16:
        words = raw.view(np.uint16).astype(np.uint32) << np.uint32(16)
        return words.view(np.float32).astype(np.float64)
    if kind == ScalarKind.B1:
        return np.unpackbits(raw).astype(np.float64)
    return raw.astype(np.float64)


def builtin_distance(kind: MetricKind, a: np.ndarray, b: np.ndarray) -> float:
    if kind == MetricKind.COS:
        norms = np.linalg.norm(a) * np.linalg.norm(b)
        if norms == 0:
            return 0.0 if not a.any() and not b.any() else 1.0
        return float(1.0 - np.dot(a, b) / norms)
    if kind == MetricKind.IP:
        return float(1.0 - np.dot(a, b))
    if kind == MetricKind.L2SQ:
        return float(np.sum((a - b) ** 2))
    if kind == MetricKind.HAMMING:
        return float(np.count_nonzero(a != b))
    if kind in (MetricKind.TANIMOTO, MetricKind.JACCARD):
        union = np.count_nonzero(np.logical_or(a, b))
        if union == 0:
            return 0.0
        return float(1.0 - np.count_nonzero(np.logical_and(a, b)) / union)
    raise FakeEngineError(f"Metric {kind.name} is not supported by the fake")


class FakeIndex:
    def __init__(self, options: Dict[str, Any]):
        self.dimensions = options["dimensions"]
        self.metric_kind = MetricKind(options["metric_kind"])
        self.quantization = ScalarKind(options["quantization"])
        self.connectivity = options["connectivity"] or 16
        self.expansion_add = options["expansion_add"] or 128
        self.expansion_search = options["expansion_search"] or 64
        self.multi = bool(options["multi"])
        self.metric: Optional[Tuple[Any, Any]] = None
        self.keys: List[int] = []
        self.vectors: List[np.ndarray] = []
        self.capacity = 0
        self.immutable = False
        self.lock = threading.RLock()

    @property
    def length(self) -> int:
        return storage_length(self.quantization, self.dimensions)

    @property
    def dtype(self) -> Any:
        return DTYPES[self.quantization]

    def header(self) -> Dict[str, Any]:
        return {
            "dimensions": self.dimensions,
            "metric_kind": int(self.metric_kind),
            "quantization": int(self.quantization),
            "connectivity": self.connectivity,
            "expansion_add": self.expansion_add,
            "expansion_search": self.expansion_search,
            "multi": self.multi,
            "count": len(self.keys),
        }

    def distance(self, first: np.ndarray, second: np.ndarray) -> float:
        if self.metric is not None:
            function, state = self.metric
            return float(function(first.ctypes.data, second.ctypes.data, state))
        return builtin_distance(
            self.metric_kind,
            decode(self.quantization, first),
            decode(self.quantization, second),
        )


def serialize(index: FakeIndex) -> bytes:
    header = json.dumps(index.header()).encode("utf-8")
    keys = np.array(index.keys, dtype=np.uint64).tobytes()
    vectors = b"".join(vector.tobytes() for vector in index.vectors)
    return MAGIC + struct.pack("<I", len(header)) + header + keys + vectors


def parse_header(blob: bytes) -> Tuple[Dict[str, Any], int]:
    if not blob.startswith(MAGIC) or len(blob) < len(MAGIC) + 4:
        raise FakeEngineError("Not a serialized index")
    (size,) = struct.unpack_from("<I", blob, len(MAGIC))
    start = len(MAGIC) + 4
    return json.loads(blob[start : start + size]), start + size


def restore(index: FakeIndex, blob: bytes, immutable: bool) -> None:
    header, offset = parse_header(blob)
    if header["dimensions"] != index.dimensions:
        raise FakeEngineError("Dimension mismatch with the serialized index")
    count = header["count"]
    keys: Any = []
    vectors: Any = []
    if count:
        keys = np.frombuffer(blob, dtype=np.uint64, count=count, offset=offset)
        offset += keys.nbytes
        vectors = np.frombuffer(
            blob, dtype=index.dtype, count=count * index.length, offset=offset
        ).reshape(count, index.length)
    with index.lock:
        index.metric_kind = MetricKind(header["metric_kind"])
        index.metric = None
        index.multi = header["multi"]
        index.keys = [int(key) for key in keys]
        index.vectors = [vector.copy() for vector in vectors]
        index.capacity = max(index.capacity, count)
        index.immutable = immutable


class FakeLibrary:
    """Implements the ``usearch_*`` functions the bindings declare."""

    def __init__(self):
        self.indexes: Dict[int, FakeIndex] = {}
        self.freed: List[int] = []
        self.calls: Counter = Counter()
        self._handles = itertools.count(1)

    def _index(self, handle: int) -> FakeIndex:
        try:
            return self.indexes[handle]
        except KeyError:
            raise FakeEngineError("Invalid index handle") from None

    def _read(self, index: FakeIndex, pointer: Any, kind: int) -> np.ndarray:
        if kind != index.quantization:
            raise FakeEngineError("Scalar kind differs from the index")
        nbytes = index.length * np.dtype(index.dtype).itemsize
        raw = (ctypes.c_char * nbytes).from_address(address(pointer))
        return np.frombuffer(raw, dtype=index.dtype).copy()

    def _rank(self, index: FakeIndex, query: np.ndarray, accept) -> list:
        with index.lock:
            entries = list(zip(index.keys, index.vectors))
        scored = []
        for key, vector in entries:
            if accept(key):
                scored.append((index.distance(query, vector), key))
        scored.sort(key=lambda pair: pair[0])
        return scored

    @staticmethod
    def _write_matches(scored, count, keys_ptr, distances_ptr) -> int:
        found = scored[:count]
        if found:
            keys = np.ctypeslib.as_array(keys_ptr, shape=(count,))
            distances = np.ctypeslib.as_array(distances_ptr, shape=(count,))
            for i, (distance, key) in enumerate(found):
                keys[i] = key
                distances[i] = distance
        return len(found)

    # lifecycle

    @_native
    def usearch_init(self, options_ptr):
        options = options_ptr.contents
        if options.dimensions == 0:
            raise FakeEngineError("Dimensions must be positive")
        if options.metric_kind == MetricKind.UNKNOWN and not options.metric:
            raise FakeEngineError("Unknown metric kind and no custom metric")
        if options.quantization not in DTYPES:
            raise FakeEngineError("Unknown scalar kind")
        handle = next(self._handles)
        self.indexes[handle] = FakeIndex(
            {name: getattr(options, name) for name, _ in options._fields_}
        )
        return handle

    @_native
    def usearch_free(self, handle):
        self.indexes.pop(handle, None)
        self.freed.append(handle)

    @_native
    def usearch_reset(self, handle):
        index = self._index(handle)
        with index.lock:
            index.keys, index.vectors = [], []
            index.capacity = 0
            index.immutable = False

    @_native
    def usearch_reserve(self, handle, capacity):
        index = self._index(handle)
        with index.lock:
            index.capacity = max(index.capacity, capacity)

    # accessors

    @_native
    def usearch_size(self, handle):
        return len(self._index(handle).keys)

    @_native
    def usearch_capacity(self, handle):
        return self._index(handle).capacity

    @_native
    def usearch_dimensions(self, handle):
        return self._index(handle).dimensions

    @_native
    def usearch_connectivity(self, handle):
        return self._index(handle).connectivity

    @_native
    def usearch_expansion_add(self, handle):
        return self._index(handle).expansion_add

    @_native
    def usearch_expansion_search(self, handle):
        return self._index(handle).expansion_search

    @_native
    def usearch_change_expansion_add(self, handle, n):
        self._index(handle).expansion_add = n

    @_native
    def usearch_change_expansion_search(self, handle, n):
        self._index(handle).expansion_search = n

    @_native
    def usearch_memory_usage(self, handle):
        index = self._index(handle)
        itemsize = np.dtype(index.dtype).itemsize
        return 4096 + index.capacity * (8 + index.length * itemsize)

    @_native
    def usearch_hardware_acceleration(self, handle):
        self._index(handle)
        return b"serial"

    # metric

    @_native
    def usearch_change_metric_kind(self, handle, kind):
        if kind == MetricKind.UNKNOWN:
            raise FakeEngineError("Unknown metric kind and no custom metric")
        index = self._index(handle)
        index.metric_kind = MetricKind(kind)
        index.metric = None

    @_native
    def usearch_change_metric(self, handle, function, state, kind):
        index = self._index(handle)
        index.metric = (function, state)
        index.metric_kind = MetricKind(kind)

    # vectors

    @_native
    def usearch_add(self, handle, key, vector_ptr, kind):
        index = self._index(handle)
        vector = self._read(index, vector_ptr, kind)
        with index.lock:
            if index.immutable:
                raise FakeEngineError("Can't add to an immutable index")
            if not index.multi and key in index.keys:
                raise FakeEngineError("Duplicate keys not allowed")
            if len(index.keys) >= index.capacity:
                raise FakeEngineError("Reserve capacity ahead of insertions!")
            neighbor = index.vectors[0] if index.vectors else None
            index.keys.append(key)
            index.vectors.append(vector)
        if neighbor is not None:
            # Linking a new node compares it with existing ones
            index.distance(vector, neighbor)

    @_native
    def usearch_contains(self, handle, key):
        return key in self._index(handle).keys

    @_native
    def usearch_count(self, handle, key):
        return self._index(handle).keys.count(key)

    @_native
    def usearch_get(self, handle, key, slots, vector_ptr, kind):
        index = self._index(handle)
        if kind != index.quantization:
            raise FakeEngineError("Scalar kind differs from the index")
        with index.lock:
            found = [v for k, v in zip(index.keys, index.vectors) if k == key]
        found = found[:slots]
        if found:
            itemsize = np.dtype(index.dtype).itemsize
            nbytes = slots * index.length * itemsize
            raw = (ctypes.c_char * nbytes).from_address(address(vector_ptr))
            out = np.frombuffer(raw, dtype=index.dtype)
            for i, vector in enumerate(found):
                out[i * index.length : (i + 1) * index.length] = vector
        return len(found)

    @_native
    def usearch_search(self, handle, query_ptr, kind, count, keys, distances):
        index = self._index(handle)
        query = self._read(index, query_ptr, kind)
        scored = self._rank(index, query, lambda key: True)
        return self._write_matches(scored, count, keys, distances)

    @_native
    def usearch_filtered_search(
        self, handle, query_ptr, kind, count, predicate, state, keys, distances
    ):
        index = self._index(handle)
        query = self._read(index, query_ptr, kind)
        scored = self._rank(index, query, lambda key: predicate(key, state))
        return self._write_matches(scored, count, keys, distances)

    @_native
    def usearch_remove(self, handle, key):
        index = self._index(handle)
        with index.lock:
            if index.immutable:
                raise FakeEngineError("Can't remove from an immutable index")
            kept = [(k, v) for k, v in zip(index.keys, index.vectors) if k != key]
            removed = len(index.keys) - len(kept)
            index.keys = [k for k, _ in kept]
            index.vectors = [v for _, v in kept]
        return removed

    @_native
    def usearch_rename(self, handle, from_key, to_key):
        index = self._index(handle)
        with index.lock:
            renamed = index.keys.count(from_key)
            index.keys = [to_key if k == from_key else k for k in index.keys]
        return renamed

    # persistence

    @_native
    def usearch_serialized_length(self, handle):
        return len(serialize(self._index(handle)))

    @_native
    def usearch_save(self, handle, path):
        blob = serialize(self._index(handle))
        try:
            with open(path, "wb") as file:
                file.write(blob)
        except OSError as exc:
            raise FakeEngineError(f"Failed to open file: {exc}") from exc

    def _read_file(self, path) -> bytes:
        try:
            with open(path, "rb") as file:
                return file.read()
        except OSError as exc:
            raise FakeEngineError(f"Failed to open file: {exc}") from exc

    @_native
    def usearch_load(self, handle, path):
        restore(self._index(handle), self._read_file(path), immutable=False)

    @_native
    def usearch_view(self, handle, path):
        restore(self._index(handle), self._read_file(path), immutable=True)

    @_native
    def usearch_metadata(self, path, options_ptr):
        header, _ = parse_header(self._read_file(path))
        _fill(options_ptr.contents, header)

    @_native
    def usearch_save_buffer(self, handle, buffer_ptr, length):
        blob = serialize(self._index(handle))
        if length < len(blob):
            raise FakeEngineError("Output buffer is too small")
        ctypes.memmove(address(buffer_ptr), blob, len(blob))

    @_native
    def usearch_load_buffer(self, handle, buffer_ptr, length):
        blob = ctypes.string_at(address(buffer_ptr), length)
        restore(self._index(handle), blob, immutable=False)

    @_native
    def usearch_view_buffer(self, handle, buffer_ptr, length):
        blob = ctypes.string_at(address(buffer_ptr), length)
        restore(self._index(handle), blob, immutable=True)

    @_native
    def usearch_metadata_buffer(self, buffer_ptr, length, options_ptr):
        header, _ = parse_header(ctypes.string_at(address(buffer_ptr), length))
        _fill(options_ptr.contents, header)


def _fill(options, header: Dict[str, Any]) -> None:
    for name, _ in options._fields_:
        if name in header:
            setattr(options, name, header[name])
