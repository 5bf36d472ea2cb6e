#!/usr/bin/env python3
"""
Benchmarks for the response cache.
"""

import logging
import tempfile
import time
from pathlib import Path
from typing import Awaitable, Callable, List

from .cache_store import CacheStore, make_cache_key
from .models import BenchmarkResult


async def run_benchmark(
    name: str,
    operation: Callable[[int], Awaitable[bool]],
    iterations: int
) -> BenchmarkResult:
    """Time `iterations` calls of operation(i); a False return counts as unsuccessful"""
    timings: List[float] = []
    successful = 0
    for i in range(1, iterations + 1):
        logging.debug(f"Benchmark {name} iteration {i}/{iterations}")
        started = time.perf_counter()
        ok = await operation(i)
        timings.append(time.perf_counter() - started)
        if ok:
            successful += 1

    result = BenchmarkResult(
        name=name,
        iterations=iterations,
        successful=successful,
        avg_seconds=sum(timings) / len(timings) if timings else 0.0,
        min_seconds=min(timings, default=0.0),
        max_seconds=max(timings, default=0.0),
    )
    logging.info(
        f"Benchmark {name}: avg {result.avg_seconds:.3f}s, best {result.min_seconds:.3f}s, "
        f"worst {result.max_seconds:.3f}s ({successful}/{iterations} successful)"
    )
    return result


async def benchmark_cache(iterations: int, payload_size: int = 100) -> BenchmarkResult:
    """Put and read back a synthetic payload on a scratch cache"""
    payload = {"workflow_runs": [{"id": i, "name": f"workflow-{i}"} for i in range(payload_size)]}

    with tempfile.TemporaryDirectory(prefix="cca-benchmark-") as root:
        store = CacheStore(Path(root))

        async def round_trip(i: int) -> bool:
            key = make_cache_key("benchmark", {"iteration": i})
            if not await store.put(key, payload):
                return False
            entry = await store.get(key)
            return entry is not None and entry.payload == payload

        return await run_benchmark("cache_round_trip", round_trip, iterations)
