"""Integration tests against the real libusearch_c, when it is installed."""

import math

import numpy as np
import pytest

from usearch_typed import (
    Cos,
    CustomMetric,
    Float16,
    Float32,
    HighLevel,
    L2sq,
    _ffi,
    f16_to_i16s,
)
from usearch_typed.exceptions import DimensionMismatchError, USearchError


def _library_available() -> bool:
    try:
        _ffi.library_path()
    except FileNotFoundError:
        return False
    return True


pytestmark = pytest.mark.skipif(
    not _library_available(), reason="libusearch_c not found"
)


@pytest.fixture
def engine():
    """Use the real library instead of the in-process fake."""
    return _ffi.get_library()


class Manhattan(CustomMetric):
    @staticmethod
    def distance(a, b):
        return float(np.abs(a.astype(np.float32) - b.astype(np.float32)).sum())


class TestNativeEngine:
    def test_documented_example(self):
        with HighLevel[Float32, 4, Cos].try_default() as index:
            index.reserve(1000)
            index.add(1, [0.0, 1.0, 0.0, 1.0])
            index.add(2, [1.0, 0.0, 1.0, 0.0])

            results = index.search([0.5, 0.5, 0.5, 0.5], 2)
            assert sorted(results.keys.tolist()) == [1, 2]
            expected = 1.0 - 1.0 / math.sqrt(2.0)
            for distance in results.distances:
                assert distance == pytest.approx(expected, abs=1e-3)

    def test_round_trip_and_errors(self):
        with HighLevel[Float32, 3, L2sq].try_default() as index:
            index.reserve(10)
            index.add(7, [1.0, 2.0, 3.0])
            buffer = np.zeros(3, dtype=np.float32)
            assert index.get(7, buffer) == 1
            np.testing.assert_array_equal(buffer, [1.0, 2.0, 3.0])

            with pytest.raises(DimensionMismatchError):
                index.add(8, [1.0, 2.0])
            with pytest.raises(USearchError):
                index.add(7, [1.0, 2.0, 3.0])

    def test_custom_metric(self):
        with HighLevel[Float32, 2, Manhattan].try_default() as index:
            index.reserve(3)
            index.add(1, [0.0, 0.0])
            index.add(2, [1.0, 1.0])
            index.add(3, [5.0, 5.0])

            results = index.search([1.0, 0.0], 3)
            assert results.keys.tolist() == [1, 2, 3]
            assert results.distances.tolist() == pytest.approx([1.0, 1.0, 9.0])

    def test_half_precision(self):
        values = np.array([0.5, -1.0, 2.0, 0.25], dtype=np.float16)
        with HighLevel[Float16, 4, L2sq].try_default() as index:
            index.reserve(1)
            index.add(1, f16_to_i16s(values))
            buffer = np.zeros(4, dtype=np.int16)
            assert index.get(1, buffer) == 1
            np.testing.assert_array_equal(buffer, f16_to_i16s(values))

    def test_batch_insert_and_buffers(self):
        rng = np.random.default_rng(1)
        vectors = rng.random((200, 8), dtype=np.float32)
        Cos8 = HighLevel[Float32, 8, Cos]
        with Cos8.try_default() as index:
            index.batch_insert(enumerate(vectors))
            assert len(index) == 200
            blob = index.save_to_buffer()

        with Cos8.try_default() as viewed:
            viewed.view_from_buffer(blob)
            assert len(viewed) == 200
            assert viewed.search(vectors[5], 1).keys[0] == 5
