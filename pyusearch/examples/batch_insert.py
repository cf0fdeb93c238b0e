"""Batch insertion example for the typed USearch bindings.

This script demonstrates:
- Parallel insertion with batch_insert
- Comparison with a sequential add() loop
- Search performance measurement
"""

import time

import numpy as np

from usearch_typed import Cos, Float32, HighLevel


def main():
    print("USearch Typed Bindings - Batch Insertion Example")
    print("=" * 60)

    # Configuration
    DIMENSIONS = 768
    NUM_VECTORS = 10_000
    K = 10
    NUM_QUERIES = 100

    print("\nConfiguration:")
    print(f"  Dimensions: {DIMENSIONS}")
    print(f"  Total vectors: {NUM_VECTORS:,}")
    print(f"  Search k: {K}")
    print(f"  Search queries: {NUM_QUERIES}")

    Index = HighLevel[Float32, DIMENSIONS, Cos]
    rng = np.random.default_rng(0)
    vectors = rng.random((NUM_VECTORS, DIMENSIONS), dtype=np.float32)

    print("\nSequential add()...")
    with Index.try_default() as index:
        start_time = time.perf_counter()
        index.reserve(NUM_VECTORS)
        for key, vector in enumerate(vectors):
            index.add(key, vector)
        sequential_time = time.perf_counter() - start_time
    print(f"  Total time: {sequential_time:.2f}s")
    print(f"  Average: {NUM_VECTORS / sequential_time:,.0f} vectors/sec")

    print("\nParallel batch_insert()...")
    with Index.try_default() as index:
        start_time = time.perf_counter()
        index.batch_insert(enumerate(vectors))
        batch_time = time.perf_counter() - start_time

        print(f"  Total time: {batch_time:.2f}s")
        print(f"  Average: {NUM_VECTORS / batch_time:,.0f} vectors/sec")
        print(f"  Speedup: {sequential_time / batch_time:.2f}x")
        print(f"  Index size: {len(index):,} vectors")
        print(f"  Memory usage: {index.memory_usage() / 2**20:,.1f} MiB")

        print("\nTesting search performance...")

        # Pre-generate queries to avoid timing RNG
        queries = rng.random((NUM_QUERIES, DIMENSIONS), dtype=np.float32)

        search_times = []

        for q in queries:
            t0 = time.perf_counter()
            results = index.search(q, K)
            t1 = time.perf_counter()

            _ = results.keys[0]
            search_times.append(t1 - t0)

        avg = sum(search_times) / len(search_times)
        min_t = min(search_times)
        max_t = max(search_times)

        print(f"\nSearch performance ({NUM_QUERIES} queries, k={K}):")
        print(f"  Average: {avg * 1000:.2f} ms")
        print(f"  Min: {min_t * 1000:.2f} ms")
        print(f"  Max: {max_t * 1000:.2f} ms")
        print(f"  Throughput: {1 / avg:,.0f} queries/sec")

    print("\n" + "=" * 60)
    print("Example complete!")


if __name__ == "__main__":
    main()
