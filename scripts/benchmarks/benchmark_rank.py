#!/usr/bin/env python3
"""Benchmark brute-force embedding search at a few corpus sizes."""

import argparse
import tempfile
import time
from pathlib import Path
from statistics import mean, median

import numpy as np

from recall_db.services.database import Database

def populate(db: Database, count: int, dimension: int, rng: np.random.Generator):
    """Insert ``count`` notes with random embeddings, in committed batches."""
    batch = 500
    for start in range(0, count, batch):
        with db.records.transaction():
            for i in range(start, min(start + batch, count)):
                db.notes_index.insert_with_embedding({"title": f"note {i}"}, rng.normal(size=dimension))

def benchmark_size(count: int, dimension: int, runs: int, top_k: int):
    """Time search over a fresh database holding ``count`` embedded notes."""
    rng = np.random.default_rng(42)
    with tempfile.TemporaryDirectory() as tmp:
        with Database(Path(tmp) / "bench.db", embedding_dimension=dimension) as db:
            t1 = time.perf_counter()
            populate(db, count, dimension, rng)
            print(f"\nInserted {count} notes in {(time.perf_counter()-t1)*1000:.0f}ms")

            times = []
            for i in range(runs):
                query = rng.normal(size=dimension)
                start = time.perf_counter()
                results = db.notes_index.search(query, top_k)
                elapsed = (time.perf_counter() - start) * 1000
                times.append(elapsed)
                print(f"  Run {i+1}: {elapsed:7.1f}ms - {len(results)} results")

    print(f"  Statistics: mean {mean(times):.1f}ms, median {median(times):.1f}ms, "
          f"min {min(times):.1f}ms, max {max(times):.1f}ms")
    return times

def main():
    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument("--sizes", type=int, nargs="+", default=[1000, 5000, 10000])
    parser.add_argument("--dimension", type=int, default=384)
    parser.add_argument("--runs", type=int, default=5)
    parser.add_argument("--top-k", type=int, default=10)
    args = parser.parse_args()

    print("Embedding Search Benchmarks")
    print("=" * 60)
    for size in args.sizes:
        benchmark_size(size, args.dimension, args.runs, args.top_k)

if __name__ == "__main__":
    main()
