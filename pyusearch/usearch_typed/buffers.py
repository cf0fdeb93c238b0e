"""Borrowed memory buffers handed to the engine.

``view_from_buffer`` makes the engine read index data straight out of a
caller's buffer, without copying. A BorrowedBuffer keeps the buffer export
alive for as long as the Index may read it, so the object cannot be freed or
resized underneath the engine (a viewed ``bytearray`` raises ``BufferError``
on resize). Mutating the contents is still the caller's responsibility.
"""

import ctypes
from typing import Any

import numpy as np


class BorrowedBuffer:
    """A contiguous byte export of a caller's buffer object.

    Args:
        buffer: Any object supporting the buffer protocol
            (bytes, bytearray, memoryview, mmap, numpy array)
        writable: Require a writable buffer (for saving into it)

    Raises:
        TypeError: If the object is not a suitable buffer
        ValueError: If the buffer is empty
    """

    def __init__(self, buffer: Any, writable: bool = False):
        try:
            view = memoryview(buffer)
        except TypeError:
            raise TypeError(
                f"Expected a buffer object, got {type(buffer).__name__}"
            ) from None
        if not view.c_contiguous:
            raise TypeError("Buffer must be C-contiguous")
        if writable and view.readonly:
            raise TypeError("Buffer must be writable")
        if view.nbytes == 0:
            raise ValueError("Buffer is empty")

        self._view = view
        self._array = np.frombuffer(view, dtype=np.uint8)

    @property
    def pointer(self) -> ctypes.c_void_p:
        if self._array is None:
            raise ValueError("Buffer has been released")
        return self._array.ctypes.data_as(ctypes.c_void_p)

    @property
    def nbytes(self) -> int:
        return 0 if self._array is None else self._array.nbytes

    @property
    def released(self) -> bool:
        return self._array is None

    def release(self) -> None:
        """Drop the export. Only safe once the engine stopped reading."""
        self._array = None
        self._view = None

    def __enter__(self) -> "BorrowedBuffer":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.release()
        return False

    def __repr__(self) -> str:
        state = "released" if self.released else f"{self.nbytes} bytes"
        return f"BorrowedBuffer({state})"
