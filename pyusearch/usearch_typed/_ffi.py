"""Low-level FFI bindings to libusearch_c.

This module provides direct ctypes bindings to the USearch C library.
Users should use the high-level HighLevel facade or the Index class instead.
"""

import ctypes
import functools
import logging
import os
import platform
from enum import IntEnum
from pathlib import Path
from typing import Any, Optional

from usearch_typed.exceptions import error_from_message

logger = logging.getLogger(__name__)


# Determine library name based on platform
def _get_library_name() -> str:
    """Get the platform-specific library name."""
    system = platform.system()
    if system == "Linux":
        return "libusearch_c.so"
    elif system == "Darwin":
        return "libusearch_c.dylib"
    elif system == "Windows":
        return "usearch_c.dll"
    else:
        raise RuntimeError(f"Unsupported platform: {system}")


def _find_library() -> Path:
    """Find the USearch C library.

    Search order:
    1. USEARCH_LIB_PATH environment variable (directory or file)
    2. Next to this Python file (for bundled builds)
    3. ../../build (for development)
    4. System library paths

    Returns:
        Path to the library

    Raises:
        FileNotFoundError: If library cannot be found
    """
    lib_name = _get_library_name()

    # 1. Environment variable
    if env_path := os.getenv("USEARCH_LIB_PATH"):
        candidate = Path(env_path)
        if candidate.is_file():
            return candidate
        lib_path = candidate / lib_name
        if lib_path.exists():
            return lib_path

    # 2. Next to this file
    this_dir = Path(__file__).parent
    lib_path = this_dir / lib_name
    if lib_path.exists():
        return lib_path

    # 3. Development location (../../build from usearch_typed/)
    dev_path = this_dir.parent.parent / "build" / lib_name
    if dev_path.exists():
        return dev_path

    # 4. Try system paths (ctypes.util.find_library)
    from ctypes.util import find_library

    if lib_path_str := find_library("usearch_c"):
        return Path(lib_path_str)

    raise FileNotFoundError(
        f"Could not find {lib_name}. "
        "Set USEARCH_LIB_PATH environment variable or ensure library is built."
    )


class MetricKind(IntEnum):
    """Builtin distance functions, numbered as in usearch.h."""

    UNKNOWN = 0
    COS = 1
    IP = 2
    L2SQ = 3
    HAVERSINE = 4
    DIVERGENCE = 5
    PEARSON = 6
    JACCARD = 7
    HAMMING = 8
    TANIMOTO = 9
    SORENSEN = 10


class ScalarKind(IntEnum):
    """Scalar layouts the engine can store, numbered as in usearch.h."""

    UNKNOWN = 0
    F32 = 1
    F64 = 2
    F16 = 3
    I8 = 4
    B1 = 5
    BF16 = 6


# Opaque pointer type
class USearchIndex(ctypes.Structure):
    """Opaque handle to a USearch index (never accessed directly)."""

    pass


USearchIndexPtr = ctypes.POINTER(USearchIndex)
ErrorPtr = ctypes.POINTER(ctypes.c_char_p)


class InitOptions(ctypes.Structure):
    """Mirror of ``usearch_init_options_t``."""

    _fields_ = [
        ("metric_kind", ctypes.c_int),
        ("metric", ctypes.c_void_p),
        ("quantization", ctypes.c_int),
        ("dimensions", ctypes.c_size_t),
        ("connectivity", ctypes.c_size_t),
        ("expansion_add", ctypes.c_size_t),
        ("expansion_search", ctypes.c_size_t),
        ("multi", ctypes.c_bool),
    ]


# Callback prototypes: both carry one opaque context word.
# int filter(usearch_key_t key, void* state)
FilterCallback = ctypes.CFUNCTYPE(ctypes.c_int, ctypes.c_uint64, ctypes.c_void_p)
# usearch_distance_t metric(void const* a, void const* b, void* state)
MetricCallback = ctypes.CFUNCTYPE(
    ctypes.c_float, ctypes.c_void_p, ctypes.c_void_p, ctypes.c_void_p
)

KeysPtr = ctypes.POINTER(ctypes.c_uint64)
DistancesPtr = ctypes.POINTER(ctypes.c_float)


# Function signatures, each followed by a trailing usearch_error_t*
_SIGNATURES = {
    # lifecycle
    "usearch_init": ([ctypes.POINTER(InitOptions)], USearchIndexPtr),
    "usearch_free": ([USearchIndexPtr], None),
    "usearch_reset": ([USearchIndexPtr], None),
    "usearch_reserve": ([USearchIndexPtr, ctypes.c_size_t], None),
    # persistence
    "usearch_serialized_length": ([USearchIndexPtr], ctypes.c_size_t),
    "usearch_save": ([USearchIndexPtr, ctypes.c_char_p], None),
    "usearch_load": ([USearchIndexPtr, ctypes.c_char_p], None),
    "usearch_view": ([USearchIndexPtr, ctypes.c_char_p], None),
    "usearch_metadata": (
        [ctypes.c_char_p, ctypes.POINTER(InitOptions)],
        None,
    ),
    "usearch_save_buffer": (
        [USearchIndexPtr, ctypes.c_void_p, ctypes.c_size_t],
        None,
    ),
    "usearch_load_buffer": (
        [USearchIndexPtr, ctypes.c_void_p, ctypes.c_size_t],
        None,
    ),
    "usearch_view_buffer": (
        [USearchIndexPtr, ctypes.c_void_p, ctypes.c_size_t],
        None,
    ),
    "usearch_metadata_buffer": (
        [ctypes.c_void_p, ctypes.c_size_t, ctypes.POINTER(InitOptions)],
        None,
    ),
    # accessors
    "usearch_size": ([USearchIndexPtr], ctypes.c_size_t),
    "usearch_capacity": ([USearchIndexPtr], ctypes.c_size_t),
    "usearch_dimensions": ([USearchIndexPtr], ctypes.c_size_t),
    "usearch_connectivity": ([USearchIndexPtr], ctypes.c_size_t),
    "usearch_expansion_add": ([USearchIndexPtr], ctypes.c_size_t),
    "usearch_expansion_search": ([USearchIndexPtr], ctypes.c_size_t),
    "usearch_change_expansion_add": (
        [USearchIndexPtr, ctypes.c_size_t],
        None,
    ),
    "usearch_change_expansion_search": (
        [USearchIndexPtr, ctypes.c_size_t],
        None,
    ),
    "usearch_memory_usage": ([USearchIndexPtr], ctypes.c_size_t),
    "usearch_hardware_acceleration": ([USearchIndexPtr], ctypes.c_char_p),
    # metric
    "usearch_change_metric_kind": ([USearchIndexPtr, ctypes.c_int], None),
    "usearch_change_metric": (
        [USearchIndexPtr, MetricCallback, ctypes.c_void_p, ctypes.c_int],
        None,
    ),
    # vectors
    "usearch_add": (
        [USearchIndexPtr, ctypes.c_uint64, ctypes.c_void_p, ctypes.c_int],
        None,
    ),
    "usearch_contains": ([USearchIndexPtr, ctypes.c_uint64], ctypes.c_bool),
    "usearch_count": ([USearchIndexPtr, ctypes.c_uint64], ctypes.c_size_t),
    "usearch_get": (
        [
            USearchIndexPtr,
            ctypes.c_uint64,  # key
            ctypes.c_size_t,  # max vectors
            ctypes.c_void_p,  # output vectors
            ctypes.c_int,  # output scalar kind
        ],
        ctypes.c_size_t,
    ),
    "usearch_search": (
        [
            USearchIndexPtr,
            ctypes.c_void_p,  # query
            ctypes.c_int,  # query scalar kind
            ctypes.c_size_t,  # count
            KeysPtr,
            DistancesPtr,
        ],
        ctypes.c_size_t,
    ),
    "usearch_filtered_search": (
        [
            USearchIndexPtr,
            ctypes.c_void_p,  # query
            ctypes.c_int,  # query scalar kind
            ctypes.c_size_t,  # count
            FilterCallback,
            ctypes.c_void_p,  # filter state
            KeysPtr,
            DistancesPtr,
        ],
        ctypes.c_size_t,
    ),
    "usearch_remove": ([USearchIndexPtr, ctypes.c_uint64], ctypes.c_size_t),
    "usearch_rename": (
        [USearchIndexPtr, ctypes.c_uint64, ctypes.c_uint64],
        ctypes.c_size_t,
    ),
}


def _bind(lib: ctypes.CDLL) -> ctypes.CDLL:
    """Attach argtypes/restype to every exported function we use."""
    for name, (argtypes, restype) in _SIGNATURES.items():
        func = getattr(lib, name)
        func.argtypes = [*argtypes, ErrorPtr]
        func.restype = restype
    return lib


def library_path() -> Path:
    """Get the path of the USearch library that will be loaded."""
    return _find_library()


@functools.lru_cache(maxsize=None)
def get_library() -> ctypes.CDLL:
    """Load the USearch library on first use.

    Raises:
        FileNotFoundError: If the library cannot be found
    """
    path = library_path()
    logger.debug("Loading USearch C library from %s", path)
    return _bind(ctypes.CDLL(str(path)))


# Helper functions


def call(func: Any, *args: Any) -> Any:
    """Call a native function, raising if it reported an error.

    The error out-parameter is appended to ``args``; a non-NULL message
    after the call is turned into a USearchError (or a subclass).
    """
    error = ctypes.c_char_p()
    result = func(*args, ctypes.pointer(error))
    if error.value:
        raise error_from_message(error.value.decode("utf-8"))
    return result


def address(obj: Any) -> Optional[int]:
    """Get the integer address of a ctypes pointer-like value."""
    if obj is None or isinstance(obj, int):
        return obj
    return ctypes.cast(obj, ctypes.c_void_p).value


# Export public interface
__all__ = [
    "DistancesPtr",
    "FilterCallback",
    "InitOptions",
    "KeysPtr",
    "MetricCallback",
    "MetricKind",
    "ScalarKind",
    "USearchIndex",
    "USearchIndexPtr",
    "address",
    "call",
    "get_library",
    "library_path",
]
