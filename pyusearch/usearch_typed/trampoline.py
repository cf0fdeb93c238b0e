"""Bridge Python callables across the FFI boundary.

The engine only calls plain C function pointers that carry one opaque
context word. Each callback signature therefore has a single module-level
adapter (created once, capturing nothing), and every Python callable is
wrapped in a trampoline object that owns a ``py_object`` cell. The address of
that cell is the context word: the adapter reinterprets it as a
``POINTER(py_object)``, recovers the trampoline and invokes it.

The cell must stay alive while the engine may call back:

* ``FilterTrampoline`` is call-scoped and used as a context manager around a
  single native call.
* ``MetricTrampoline`` is index-scoped; the Index keeps the active one and
  replaces it explicitly whenever the metric changes.

Exceptions cannot unwind through native frames, so they are recorded and
re-raised once control is back in Python.
"""

import ctypes
import logging
import threading
from typing import Any, Callable, Optional

import numpy as np

from usearch_typed import _ffi

logger = logging.getLogger(__name__)


def _recover(context: int) -> Any:
    """Turn a context word back into the trampoline that owns it."""
    cell = ctypes.cast(context, ctypes.POINTER(ctypes.py_object))
    return cell.contents.value


def _invoke_filter(key: int, context: int) -> int:
    return _recover(context)(key)


def _invoke_metric(first: int, second: int, context: int) -> float:
    return _recover(context)(first, second)


_FILTER_ADAPTER = _ffi.FilterCallback(_invoke_filter)
_METRIC_ADAPTER = _ffi.MetricCallback(_invoke_metric)


class _Trampoline:
    """Shared state: the context cell and the first pending exception."""

    adapter: Any = None

    def __init__(self) -> None:
        self._cell: Optional[ctypes.py_object] = ctypes.py_object(self)
        self._error: Optional[BaseException] = None
        self._lock = threading.Lock()

    @property
    def function_pointer(self) -> Any:
        return self.adapter

    @property
    def context(self) -> ctypes.c_void_p:
        if self._cell is None:
            raise RuntimeError("Trampoline used outside of its scope")
        return ctypes.c_void_p(ctypes.addressof(self._cell))

    def _record(self, exc: Exception) -> None:
        with self._lock:
            if self._error is None:
                self._error = exc

    def raise_pending(self) -> None:
        """Re-raise the first exception raised by the wrapped callable."""
        with self._lock:
            error, self._error = self._error, None
        if error is not None:
            logger.warning("Native callback raised %r", error)
            raise error

    def release(self) -> None:
        self._cell = None


class FilterTrampoline(_Trampoline):
    """Call-scoped bridge for a ``predicate(key) -> bool``.

    Example:
        >>> with FilterTrampoline(lambda key: key % 2 == 0) as bridge:
        ...     lib.usearch_filtered_search(
        ...         ..., bridge.function_pointer, bridge.context, ...)
    """

    adapter = _FILTER_ADAPTER

    def __init__(self, predicate: Callable[[int], bool]):
        super().__init__()
        self._predicate = predicate

    def __call__(self, key: int) -> int:
        try:
            return 1 if self._predicate(key) else 0
        except Exception as exc:
            # Reject the candidate; surfaced by __exit__
            self._record(exc)
            return 0

    def __enter__(self) -> "FilterTrampoline":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.release()
        if exc_type is None:
            self.raise_pending()
        return False


class MetricTrampoline(_Trampoline):
    """Index-scoped bridge for a custom ``distance(a, b) -> float``.

    The engine hands over two raw vector pointers; they are presented to the
    Python function as read-only numpy views in the scalar's natural dtype.

    The engine compares vectors on the thread that issued ``add`` or
    ``search``, so pending errors are kept per thread: each native call only
    sees the failures of its own comparisons.
    """

    adapter = _METRIC_ADAPTER

    def __init__(self, metric: Callable[..., float], scalar: Any, dimensions: int):
        super().__init__()
        self.metric = metric
        self.scalar = scalar
        self.dimensions = dimensions
        self._length = scalar.storage_length(dimensions)
        self._nbytes = self._length * np.dtype(scalar.dtype).itemsize
        self._pending = threading.local()

    def _record(self, exc: Exception) -> None:
        if getattr(self._pending, "error", None) is None:
            self._pending.error = exc

    def discard_pending(self) -> None:
        """Forget errors left over by an earlier call on this thread."""
        self._pending.error = None

    def raise_pending(self) -> None:
        error = getattr(self._pending, "error", None)
        self._pending.error = None
        if error is not None:
            logger.warning("Native callback raised %r", error)
            raise error

    def _view(self, pointer: int) -> np.ndarray:
        raw = (ctypes.c_char * self._nbytes).from_address(pointer)
        array = np.frombuffer(raw, dtype=self.scalar.dtype, count=self._length)
        array.flags.writeable = False
        return self.scalar.natural_view(array)

    def __call__(self, first: int, second: int) -> float:
        try:
            return float(self.metric(self._view(first), self._view(second)))
        except Exception as exc:
            # Worst possible distance; surfaced after the native call
            self._record(exc)
            return float("inf")

    def __repr__(self) -> str:
        name = getattr(self.metric, "__qualname__", repr(self.metric))
        return (
            f"MetricTrampoline(metric={name}, "
            f"scalar={self.scalar.__name__}, dimensions={self.dimensions})"
        )
