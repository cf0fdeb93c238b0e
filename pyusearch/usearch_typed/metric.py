"""Metric capability: marker classes used to specialize HighLevel.

A metric either maps to a builtin kind understood by the engine, or is a
``CustomMetric`` subclass whose ``distance`` is called back from native code.

Example:
    >>> class Manhattan(CustomMetric):
    ...     @staticmethod
    ...     def distance(a, b):
    ...         return float(np.abs(a - b).sum())
    >>> index = HighLevel[Float32, 3, Manhattan].try_default()
"""

from typing import Callable, Optional, Type

import numpy as np

from usearch_typed._ffi import MetricKind

Distance = Callable[[np.ndarray, np.ndarray], float]


class MetricType:
    """Base class for metric markers."""

    kind: MetricKind = MetricKind.UNKNOWN

    @classmethod
    def get_kind(cls) -> MetricKind:
        return cls.kind

    @classmethod
    def custom_metric(cls, scalar: Type) -> Optional[Distance]:
        """Get the Python distance function, or None for builtin metrics."""
        return None

    @classmethod
    def is_custom(cls) -> bool:
        return cls.custom_metric(None) is not None


class IP(MetricType):
    """Inner product distance."""

    kind = MetricKind.IP


class L2sq(MetricType):
    """Squared Euclidean distance."""

    kind = MetricKind.L2SQ


class Cos(MetricType):
    """Cosine distance."""

    kind = MetricKind.COS


class Pearson(MetricType):
    kind = MetricKind.PEARSON


class Haversine(MetricType):
    kind = MetricKind.HAVERSINE


class Divergence(MetricType):
    kind = MetricKind.DIVERGENCE


class Hamming(MetricType):
    """Bitwise Hamming distance, for packed binary vectors."""

    kind = MetricKind.HAMMING


class Jaccard(MetricType):
    kind = MetricKind.JACCARD


class Tanimoto(MetricType):
    kind = MetricKind.TANIMOTO


class Sorensen(MetricType):
    kind = MetricKind.SORENSEN


class CustomMetric(MetricType):
    """Base class for metrics implemented in Python.

    Subclasses override ``distance(a, b)``. The arguments are read-only
    numpy views of the two vectors in the scalar's natural dtype
    (``float16`` for Float16, raw ``int16`` bits for BFloat16, packed
    ``uint8`` for Bits). The function runs on engine threads and must be
    pure and thread-safe.
    """

    kind = MetricKind.UNKNOWN

    @staticmethod
    def distance(a: np.ndarray, b: np.ndarray) -> float:
        raise NotImplementedError

    @classmethod
    def custom_metric(cls, scalar: Type) -> Optional[Distance]:
        if cls.distance is CustomMetric.distance:
            return None
        return cls.distance


BUILTIN_METRICS = {
    metric.kind: metric
    for metric in (
        IP,
        L2sq,
        Cos,
        Pearson,
        Haversine,
        Divergence,
        Hamming,
        Jaccard,
        Tanimoto,
        Sorensen,
    )
}
