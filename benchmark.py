#!/usr/bin/env python3
"""
dirtytrack performance benchmarks.

Each scenario scales its workload until one run takes TIME_LIMIT_SECONDS,
then reruns it NUM_ITERATIONS times under a profiler and averages the
results. Output is rendered with rich tables.

Usage:
    python benchmark.py            # full run
    python benchmark.py --quick    # shorter time limit
    python benchmark.py --config   # print configuration and exit
"""

import argparse
import gc
import time
import tracemalloc
from dataclasses import dataclass
from typing import Callable, List, TypeVar

import numpy as np
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from dirtytrack import create_observable, get_observable_internals, watch

T = TypeVar("T")

# =============================================================================
# Benchmark Configuration and Metrics
# =============================================================================

TIME_LIMIT_SECONDS = 1.0
STARTING_N = 10
SCALE_FACTOR = 1.5
NUM_ITERATIONS = 3  # Run multiple times to average out GC variance
MAX_N = 2_000_000


@dataclass
class BenchmarkMetrics:
    """Metrics from one benchmark scenario."""

    operation: str
    max_n: int
    operation_time: float
    operations_per_second: float
    memory_peak_kb: int
    memory_allocated_kb: int
    gc_total_collections: int


class BenchmarkProfiler:
    """Profile time, memory and GC activity of a block."""

    def __enter__(self):
        gc.collect()
        tracemalloc.start()
        self.memory_start, _ = tracemalloc.get_traced_memory()
        self.gc_before = sum(gc.get_count())
        self.start_time = time.perf_counter()
        return self

    def __exit__(self, *args):
        self.end_time = time.perf_counter()
        self.gc_after = sum(gc.get_count())
        self.memory_end, self.memory_peak = tracemalloc.get_traced_memory()
        tracemalloc.stop()

    def get_metrics(self, operation: str, n: int, performed: int) -> BenchmarkMetrics:
        elapsed = self.end_time - self.start_time
        return BenchmarkMetrics(
            operation=operation,
            max_n=n,
            operation_time=elapsed,
            operations_per_second=performed / elapsed if elapsed > 0 else 0,
            memory_peak_kb=self.memory_peak // 1024,
            memory_allocated_kb=(self.memory_end - self.memory_start) // 1024,
            gc_total_collections=max(0, self.gc_after - self.gc_before),
        )


def run_adaptive_benchmark(
    operation: str,
    operation_func: Callable[[int], T],
    operations_counter: Callable[[T], int],
    time_limit: float,
    starting_n: int = STARTING_N,
    scale_factor: float = SCALE_FACTOR,
) -> BenchmarkMetrics:
    """Scale the workload to the time limit, then profile and average it."""
    n = starting_n
    while True:
        start = time.perf_counter()
        operation_func(n)
        if time.perf_counter() - start >= time_limit:
            break
        n = int(n * scale_factor) + 1
        if n > MAX_N:
            break

    runs = []
    for _ in range(NUM_ITERATIONS):
        with BenchmarkProfiler() as profiler:
            result = operation_func(n)
        runs.append(profiler.get_metrics(operation, n, operations_counter(result)))

    count = len(runs)
    return BenchmarkMetrics(
        operation=operation,
        max_n=n,
        operation_time=sum(m.operation_time for m in runs) / count,
        operations_per_second=sum(m.operations_per_second for m in runs) / count,
        memory_peak_kb=sum(m.memory_peak_kb for m in runs) // count,
        memory_allocated_kb=sum(m.memory_allocated_kb for m in runs) // count,
        gc_total_collections=sum(m.gc_total_collections for m in runs) // count,
    )


# =============================================================================
# Scenarios
# =============================================================================


def construction_operation(n: int):
    """Track a record holding n nested rows."""
    return create_observable({"rows": [{"id": i, "tags": {i}} for i in range(n)]})


def deep_write_operation(n: int):
    """Write n times at the bottom of a ten level chain."""
    data = leaf = {}
    for _ in range(10):
        leaf["next"] = {}
        leaf = leaf["next"]
    leaf["value"] = 0
    state = create_observable(data)
    bottom = state
    for _ in range(10):
        bottom = bottom["next"]
    for i in range(n):
        bottom["value"] = i + 1
    return n


def fanout_operation(n: int):
    """One shared record reachable from twenty trackers, written n times."""
    shared = {"value": 0}
    trackers = [create_observable({f"t{i}": shared}) for i in range(20)]
    handle = trackers[0]["t0"]
    for i in range(n):
        handle["value"] = i + 1
    return n


def diamond_operation(n: int):
    """A record reachable along two chains of one tracker, written n times."""
    shared = {"value": 0}
    state = create_observable({"left": {"s": shared}, "right": {"s": shared}})
    handle = state["left"]["s"]
    for i in range(n):
        handle["value"] = i + 1
    return n


def append_operation(n: int):
    """Append n items to a tracked list."""
    state = create_observable({"items": []})
    items = state["items"]
    for i in range(n):
        items.append(i)
    return n


def ndarray_operation(n: int):
    """n item writes into a tracked numpy array."""
    state = create_observable({"grid": np.zeros(64)})
    grid = state["grid"]
    for i in range(n):
        grid[i % 64] = i
    return n


def notify_operation(n: int):
    """n writes delivered to a push subscriber, cleaning after each batch."""
    state = create_observable({"value": 0})
    internals = get_observable_internals(state)
    handle = watch(state, lambda paths: internals.mark_clean())
    for i in range(n):
        state["value"] = i + 1
    handle.unsubscribe()
    return n


SCENARIOS = [
    ("Construction", construction_operation, lambda state: len(state["rows"])),
    ("Deep writes", deep_write_operation, int),
    ("Fan-out writes", fanout_operation, int),
    ("Diamond writes", diamond_operation, int),
    ("List appends", append_operation, int),
    ("ndarray writes", ndarray_operation, int),
    ("Push notifications", notify_operation, int),
]


class DirtyTrackBenchmark:
    """Benchmark suite for dirty-path tracking."""

    def __init__(self, time_limit: float = TIME_LIMIT_SECONDS):
        self.console = Console()
        self.time_limit = time_limit
        self.results: List[BenchmarkMetrics] = []

    def run(self):
        start_time = time.time()
        self.console.print(
            Panel(
                "dirtytrack performance benchmarks\n"
                f"{NUM_ITERATIONS} iterations per scenario with GC profiling",
                title="dirtytrack",
                border_style="blue",
            )
        )
        for name, operation, counter in SCENARIOS:
            self.console.print(f"[yellow]Running {name} benchmark...[/yellow]")
            result = run_adaptive_benchmark(name, operation, counter, self.time_limit)
            self.results.append(result)
            self.console.print(
                f"[green]✓[/green] {name}: {result.operations_per_second:,.0f} ops/sec "
                f"(n={result.max_n:,})"
            )
        self._display_results()
        elapsed = time.time() - start_time
        self.console.print(
            f"\n[dim]Benchmark suite completed in {elapsed:.2f} seconds[/dim]"
        )

    def _display_results(self):
        table = Table(title="Results")
        table.add_column("Scenario", style="cyan")
        table.add_column("n", style="magenta", justify="right")
        table.add_column("Ops/sec", style="green", justify="right")
        table.add_column("Time (s)", justify="right")
        table.add_column("Peak (KB)", justify="right")
        table.add_column("Allocated (KB)", justify="right")
        table.add_column("GC", justify="right")
        for result in self.results:
            table.add_row(
                result.operation,
                f"{result.max_n:,}",
                f"{result.operations_per_second:,.0f}",
                f"{result.operation_time:.3f}",
                f"{result.memory_peak_kb:,}",
                f"{result.memory_allocated_kb:,}",
                str(result.gc_total_collections),
            )
        self.console.print()
        self.console.print(table)


def print_config(time_limit: float) -> None:
    console = Console()
    table = Table(title="Benchmark Configuration")
    table.add_column("Setting", style="cyan")
    table.add_column("Value", style="magenta", justify="right")
    table.add_row("Time limit (s)", f"{time_limit}")
    table.add_row("Starting n", f"{STARTING_N}")
    table.add_row("Scale factor", f"{SCALE_FACTOR}")
    table.add_row("Iterations", f"{NUM_ITERATIONS}")
    console.print(table)


def main():
    """Main entry point for the benchmark suite."""
    parser = argparse.ArgumentParser(description="dirtytrack performance benchmarks")
    parser.add_argument(
        "--config", action="store_true", help="Show current benchmark configuration"
    )
    parser.add_argument(
        "--quick",
        action="store_true",
        help="Run quick benchmarks (reduced time limits)",
    )
    args = parser.parse_args()

    time_limit = 0.25 if args.quick else TIME_LIMIT_SECONDS
    if args.config:
        print_config(time_limit)
        return
    if not args.quick:
        print_config(time_limit)
        print()

    DirtyTrackBenchmark(time_limit).run()


if __name__ == "__main__":
    main()
