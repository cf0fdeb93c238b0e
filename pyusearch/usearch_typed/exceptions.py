"""Exception classes for usearch-typed."""


class USearchError(Exception):
    """Base exception: a native USearch operation failed."""

    pass


class DimensionMismatchError(USearchError):
    """Raised when vector dimensions don't match index dimensions."""

    pass


class ScalarKindMismatchError(USearchError):
    """Raised when a stored index uses a different quantization."""

    pass


class MetricMismatchError(USearchError):
    """Raised when a stored index uses a different builtin metric."""

    pass


class NullPointerError(USearchError):
    """Raised when a NULL pointer is returned from FFI."""

    pass


def error_from_message(message: str) -> USearchError:
    """Pick the exception class matching a native error message."""
    lowered = message.lower()
    if "dimension" in lowered:
        return DimensionMismatchError(message)
    if "scalar" in lowered or "quantization" in lowered:
        return ScalarKindMismatchError(message)
    return USearchError(message)
