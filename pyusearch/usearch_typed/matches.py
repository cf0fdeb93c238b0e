"""Search results."""

from dataclasses import dataclass, field
from typing import Iterator, List

import numpy as np


@dataclass
class ResultElement:
    """A single search result.

    Attributes:
        key: Key of the matched vector
        distance: Distance to the query vector (lower is closer)
    """

    key: int
    distance: float

    def __repr__(self) -> str:
        return f"ResultElement(key={self.key}, distance={self.distance:.6f})"


@dataclass
class Matches:
    """Parallel arrays of keys and distances, closest first.

    Attributes:
        keys: ``uint64`` keys of the matched vectors
        distances: ``float32`` distances, in non-decreasing order
    """

    keys: np.ndarray = field(default_factory=lambda: np.zeros(0, np.uint64))
    distances: np.ndarray = field(
        default_factory=lambda: np.zeros(0, np.float32)
    )

    def __post_init__(self) -> None:
        if len(self.keys) != len(self.distances):
            raise ValueError(
                f"Got {len(self.keys)} keys but {len(self.distances)} distances"
            )

    def __len__(self) -> int:
        return len(self.keys)

    def __iter__(self) -> Iterator[ResultElement]:
        for key, distance in zip(self.keys, self.distances):
            yield ResultElement(key=int(key), distance=float(distance))

    def result(self) -> List[ResultElement]:
        """Convert to a list of (key, distance) pairs."""
        return list(self)
