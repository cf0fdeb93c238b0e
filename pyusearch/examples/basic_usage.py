"""Basic usage example for the typed USearch bindings.

This script demonstrates:
- Creating a typed index
- Adding and reading back vectors
- Filtered search
- Switching to a custom metric
- Saving and viewing an index
"""

import numpy as np

from usearch_typed import Cos, CustomMetric, Float32, HighLevel


class Manhattan(CustomMetric):
    @staticmethod
    def distance(a, b):
        return float(np.abs(a - b).sum())


def main():
    print("USearch Typed Bindings - Basic Usage Example")
    print("=" * 50)

    # Create a 128-dimensional cosine index
    print("\n1. Creating index...")
    index = HighLevel[Float32, 128, Cos].try_default()
    print(f"   Created {type(index).__name__}")
    print(f"   SIMD: {index.hardware_acceleration()}")

    # Add some vectors
    print("\n2. Adding vectors...")
    rng = np.random.default_rng(42)  # For reproducibility
    vectors = rng.random((20, 128), dtype=np.float32)

    index.reserve(len(vectors))
    for key, vector in enumerate(vectors):
        index.add(key, vector)
        if key % 5 == 0:
            print(f"   Added vector {key}")

    print(f"   Total vectors in index: {len(index)}")

    # Read one back
    buffer = np.zeros(128, dtype=np.float32)
    index.get(3, buffer)
    print(f"   Vector 3 round-trips exactly: {np.array_equal(buffer, vectors[3])}")

    # Search for nearest neighbors
    print("\n3. Searching for nearest neighbors...")
    query = rng.random(128, dtype=np.float32)
    for i, result in enumerate(index.search(query, 5), 1):
        print(f"   {i}. Key: {result.key:2d}, Distance: {result.distance:.6f}")

    print("\n4. Only even keys...")
    results = index.filtered_search(query, 3, lambda key: key % 2 == 0)
    print(f"   Keys: {results.keys.tolist()}")

    # Same vectors, different distance function
    print("\n5. Switching to Manhattan distance...")
    index = index.change_metric(Manhattan)
    print(f"   Now {type(index).__name__}")
    for result in index.search(query, 3):
        print(f"   Key: {result.key:2d}, Distance: {result.distance:.3f}")

    # Persistence
    print("\n6. Saving and viewing...")
    blob = index.save_to_buffer()
    print(f"   Serialized {len(blob):,} bytes")
    with HighLevel[Float32, 128, Manhattan].try_default() as viewed:
        viewed.view_from_buffer(blob)
        print(f"   Viewed index holds {len(viewed)} vectors")

    index.close()
    print("\n7. Index closed successfully")

    print("\n" + "=" * 50)
    print("Example complete!")


if __name__ == "__main__":
    main()
