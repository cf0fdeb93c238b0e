"""Typed facade over Index.

``HighLevel`` is specialized with a scalar type, a dimension and a metric::

    Index4 = HighLevel[Float32, 4, Cos]

Specializations are validated once, when created, and cached. Every
instance of ``Index4`` owns an Index whose options agree with those
parameters, so individual calls only need the boundary checks performed by
the quantization adapter.
"""

import logging
import os
import threading
from concurrent.futures import ThreadPoolExecutor
from typing import (
    Any,
    Callable,
    Dict,
    Iterable,
    Optional,
    Sequence,
    Tuple,
    Type,
)

import numpy as np

from usearch_typed._ffi import MetricKind
from usearch_typed.exceptions import USearchError
from usearch_typed.index import Index, IndexOptions, PathLike
from usearch_typed.matches import Matches
from usearch_typed.metric import MetricType
from usearch_typed.quantization import VectorType

logger = logging.getLogger(__name__)


class HighLevel:
    """Index wrapper bound to ``(scalar type, dimensions, metric)``.

    Parameters (set by specialization, ``HighLevel[T, D, M]``):
        scalar: The VectorType of indexed vectors
        ndim: The length of the vectors
        metric: The MetricType used to compare vectors

    Example:
        >>> index = HighLevel[Float32, 4, Cos].try_default()
        >>> index.reserve(1000)
        >>> index.add(1, [0.0, 1.0, 0.0, 1.0])
        >>> index.add(2, [1.0, 0.0, 1.0, 0.0])
        >>> results = index.search([0.5, 0.5, 0.5, 0.5], 5).result()
    """

    scalar: Optional[Type[VectorType]] = None
    ndim: Optional[int] = None
    metric: Optional[Type[MetricType]] = None

    _origin: Optional[type] = None
    _specializations: Dict[Tuple[Any, ...], type] = {}
    _specializations_lock = threading.Lock()

    def __class_getitem__(cls, params: Tuple[Any, Any, Any]) -> type:
        if cls.scalar is not None:
            raise TypeError(f"{cls.__name__} is already specialized")
        if not isinstance(params, tuple) or len(params) != 3:
            raise TypeError(
                f"{cls.__name__} takes [scalar, dimensions, metric], "
                f"got {params!r}"
            )
        scalar, ndim, metric = params
        if not (isinstance(scalar, type) and issubclass(scalar, VectorType)):
            raise TypeError(f"Scalar must be a VectorType, got {scalar!r}")
        if scalar.dtype is None:
            raise TypeError(f"{scalar.__name__} is not a concrete scalar type")
        if isinstance(ndim, bool) or not isinstance(ndim, int) or ndim < 1:
            raise TypeError(f"Dimensions must be a positive int, got {ndim!r}")
        if not (isinstance(metric, type) and issubclass(metric, MetricType)):
            raise TypeError(f"Metric must be a MetricType, got {metric!r}")

        key = (cls, scalar, ndim, metric)
        with cls._specializations_lock:
            if key not in cls._specializations:
                name = (
                    f"{cls.__name__}[{scalar.__name__}, {ndim}, "
                    f"{metric.__name__}]"
                )
                cls._specializations[key] = type(
                    name,
                    (cls,),
                    {
                        "scalar": scalar,
                        "ndim": ndim,
                        "metric": metric,
                        "_origin": cls,
                        "__module__": cls.__module__,
                    },
                )
            return cls._specializations[key]

    def __init__(self, index: Index):
        """Wrap an existing Index.

        Prefer the ``new`` and ``try_default`` constructors.

        Raises:
            TypeError: If the class is not specialized, or the index was
                built for another scalar type, dimension or builtin metric
        """
        cls = type(self)
        if cls.scalar is None:
            raise TypeError(
                f"{cls.__name__} must be specialized before use, "
                f"e.g. {cls.__name__}[Float32, 128, Cos]"
            )
        if index.scalar is not cls.scalar or index.ndim != cls.ndim:
            raise TypeError(
                f"{cls.__name__} cannot wrap an index of "
                f"{index.ndim} {index.scalar.__name__} dimensions"
            )
        expected = cls.metric.get_kind()
        if expected != MetricKind.UNKNOWN and index.options.metric != expected:
            raise TypeError(
                f"{cls.__name__} cannot wrap an index using "
                f"{index.options.metric.name}"
            )
        self._index: Optional[Index] = index

    @classmethod
    def _make_index(cls, options: IndexOptions) -> "HighLevel":
        if cls.scalar is None:
            raise TypeError(f"{cls.__name__} must be specialized before use")
        custom = cls.metric.custom_metric(cls.scalar)
        return cls(Index(options, metric=custom))

    @classmethod
    def new(
        cls,
        connectivity: int = 0,
        expansion_add: int = 0,
        expansion_search: int = 0,
        multi: bool = False,
    ) -> "HighLevel":
        """Create an empty index.

        Args:
            connectivity: Connections per graph node (0 = engine default)
            expansion_add: Expansion when adding (0 = engine default)
            expansion_search: Expansion when searching (0 = engine default)
            multi: Allow multiple vectors per key

        Raises:
            USearchError: If the engine rejects the options, e.g. a metric
                that is neither builtin nor has a distance function
        """
        if cls.scalar is None:
            raise TypeError(f"{cls.__name__} must be specialized before use")
        options = IndexOptions(
            dimensions=cls.ndim,
            metric=cls.metric.get_kind(),
            quantization=cls.scalar.quant_type(),
            connectivity=connectivity,
            expansion_add=expansion_add,
            expansion_search=expansion_search,
            multi=multi,
        )
        return cls._make_index(options)

    @classmethod
    def try_default(cls) -> "HighLevel":
        """Create the index with default values."""
        if cls.scalar is None:
            raise TypeError(f"{cls.__name__} must be specialized before use")
        options = IndexOptions()
        options.dimensions = cls.ndim
        options.metric = cls.metric.get_kind()
        options.quantization = cls.scalar.quant_type()
        return cls._make_index(options)

    @property
    def index(self) -> Index:
        """The underlying untyped Index."""
        if self._index is None:
            raise USearchError(
                f"{type(self).__name__} was consumed by change_metric()"
            )
        return self._index

    def change_metric(self, metric: Type[MetricType]) -> "HighLevel":
        """Rebind the distance function, consuming this facade.

        Stored vectors and the graph are kept as they are; only the
        comparison function changes.

        Returns:
            A ``HighLevel[T, D, metric]`` owning the same index
        """
        index = self.index
        custom = metric.custom_metric(self.scalar)
        if custom is not None:
            index.change_metric(custom)
        else:
            index.change_metric_kind(metric.get_kind())
        self._index = None
        return self._origin[self.scalar, self.ndim, metric](index)

    # Vectors

    def reserve(self, capacity: int) -> None:
        """Reserve memory for ``capacity`` vectors, including current ones.

        Call before launching concurrent insertions, never during them.
        """
        self.index.reserve(capacity)

    def add(self, key: int, vector: Any) -> None:
        """Add a vector under ``key``.

        Raises:
            DimensionMismatchError: If the vector length differs from D
            USearchError: On duplicate keys without multi, missing
                capacity, or other engine failures
        """
        self.index.add(key, vector)

    def batch_insert(
        self,
        batch: Iterable[Tuple[int, Any]],
        max_workers: Optional[int] = None,
    ) -> None:
        """Add many vectors from a pool of worker threads.

        Capacity for the whole batch is reserved once up front. All
        insertions run to completion; afterwards the first failure (in
        batch order) is raised. Successful insertions are not rolled back.

        Faster for large batches; for small ones starting the pool costs
        more than a plain loop over add().

        Args:
            batch: (key, vector) pairs
            max_workers: Pool size; defaults to ``os.cpu_count()``
        """
        index = self.index
        pairs: Sequence[Tuple[int, Any]] = list(batch)
        if not pairs:
            return
        index.reserve(index.size() + len(pairs))
        logger.debug("Inserting batch of %d vectors", len(pairs))

        workers = max_workers or os.cpu_count()
        with ThreadPoolExecutor(max_workers=workers) as pool:
            futures = [
                pool.submit(index.add, key, vector) for key, vector in pairs
            ]
        for future in futures:
            future.result()

    def get(self, key: int, buffer: np.ndarray) -> int:
        """Copy the vectors under ``key`` into ``buffer``.

        The buffer length determines how many vectors can be retrieved.

        Returns:
            The number of vectors written; 0 if the key is absent
        """
        return self.index.get(key, buffer)

    def get_vector(self, key: int) -> Optional[np.ndarray]:
        return self.index.get_vector(key)

    def search(self, query: Any, count: int) -> Matches:
        """Find up to ``count`` approximate nearest neighbors of ``query``."""
        return self.index.search(query, count)

    def filtered_search(
        self,
        query: Any,
        count: int,
        predicate: Callable[[int], bool],
    ) -> Matches:
        """Search, returning only keys for which ``predicate(key)`` holds.

        The predicate may run for many more keys than ``count``, on engine
        threads. It must be pure and thread-safe.
        """
        return self.index.filtered_search(query, count, predicate)

    def remove(self, key: int) -> int:
        """Remove all vectors under ``key``; returns how many were removed."""
        return self.index.remove(key)

    def rename(self, from_key: int, to_key: int) -> int:
        return self.index.rename(from_key, to_key)

    def contains(self, key: int) -> bool:
        return self.index.contains(key)

    def __contains__(self, key: int) -> bool:
        return self.contains(key)

    def count(self, key: int) -> int:
        return self.index.count(key)

    # Accessors

    def expansion_add(self) -> int:
        return self.index.expansion_add()

    def expansion_search(self) -> int:
        return self.index.expansion_search()

    def change_expansion_add(self, n: int) -> None:
        """Update the expansion used while indexing. Rarely needed."""
        self.index.change_expansion_add(n)

    def change_expansion_search(self, n: int) -> None:
        self.index.change_expansion_search(n)

    def dimensions(self) -> int:
        return self.index.dimensions()

    def connectivity(self) -> int:
        return self.index.connectivity()

    def size(self) -> int:
        return self.index.size()

    def __len__(self) -> int:
        return self.size()

    def capacity(self) -> int:
        return self.index.capacity()

    def serialized_length(self) -> int:
        return self.index.serialized_length()

    def memory_usage(self) -> int:
        """A lower bound on memory used; off by less than 10% in practice."""
        return self.index.memory_usage()

    def hardware_acceleration(self) -> str:
        return self.index.hardware_acceleration()

    def reset(self) -> None:
        """Erase all members, close files and return memory to the OS."""
        self.index.reset()

    # Persistence

    def save(self, path: PathLike) -> None:
        self.index.save(path)

    def load(self, path: PathLike) -> None:
        """Load an index saved with the same scalar type, D and metric."""
        self.index.load(path)

    def view(self, path: PathLike) -> None:
        """Memory-map a saved index instead of loading it."""
        self.index.view(path)

    def save_to_buffer(self, buffer: Optional[Any] = None) -> Any:
        return self.index.save_to_buffer(buffer)

    def load_from_buffer(self, buffer: Any) -> None:
        self.index.load_from_buffer(buffer)

    def view_from_buffer(self, buffer: Any) -> None:
        """Serve the index from ``buffer`` without copying it.

        The index holds on to the buffer until it is reset, reloaded or
        closed, so the buffer cannot be freed or resized under it. Its
        contents must not be modified while the view is in use.
        """
        self.index.view_from_buffer(buffer)

    # Lifecycle

    def close(self) -> None:
        if self._index is not None:
            self._index.close()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False

    def __repr__(self) -> str:
        if self._index is None:
            return f"{type(self).__name__}(consumed)"
        return f"{type(self).__name__}({self._index!r})"
