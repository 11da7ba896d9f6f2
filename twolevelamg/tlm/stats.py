"""Timing and diagnostic reporting for the two-level setup and cycle.

This module provides:
  - A coarse-level setup collector (`TransferStats`) with labeled timers.
  - A finalize helper that derives aggregate size summaries.
  - Compact, human-readable printers for the setup and for coarse solves.

Typical usage
-------------
Within `create_coarse_level_system`:

    stats = TransferStats(n_fine=A.shape[0])
    with stats.timeit("aggregate"):
        ... build aggregates ...
    _finalize_transfer_stats(stats=stats, aggregates=aggregates, ...)
    _print_transfer_summary(stats, print_info=print_info)

Printing is confined to this module. Other modules hand their diagnostics to
the functions below, or to a user callback, and stay silent otherwise.
"""

from __future__ import annotations

from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Any
import time

import numpy as np

from .types import AggregatesMap, InverseOperatorResult


@dataclass(slots=True)
class TransferStats:
    """Coarse-level setup diagnostics.

    Attributes
    ----------
    n_fine
        Fine dimension.
    n_aggregates, n_isolated, n_singleton, n_skipped
        Counts reported by the aggregation procedure.
    n_coarse
        Coarse dimension after renumbering.
    coarse_nnz
        Stored entries of the coarse matrix.
    timings
        Dict mapping timer keys to elapsed seconds.
    extra
        Derived metrics (coarsening ratio, aggregate size min/med/max).
    """

    n_fine: int
    n_aggregates: int | None = None
    n_isolated: int | None = None
    n_singleton: int | None = None
    n_skipped: int | None = None
    n_coarse: int | None = None
    coarse_nnz: int | None = None
    timings: dict[str, float] = field(default_factory=dict)
    extra: dict[str, Any] = field(default_factory=dict)

    @contextmanager
    def timeit(self, key: str):
        """Context manager that accumulates elapsed time under `timings[key]`."""
        t0 = time.perf_counter()
        try:
            yield
        finally:
            self.timings[key] = self.timings.get(key, 0.0) + (time.perf_counter() - t0)


def _finalize_transfer_stats(
    *,
    stats: TransferStats,
    aggregates: AggregatesMap,
    counts: tuple[int, int, int, int],
    n_coarse: int,
    coarse_nnz: int,
) -> None:
    """Store counts and derived aggregate-size metrics on `stats`."""
    stats.n_aggregates, stats.n_isolated, stats.n_singleton, stats.n_skipped = counts
    stats.n_coarse = int(n_coarse)
    stats.coarse_nnz = int(coarse_nnz)
    stats.extra["cr"] = float(stats.n_fine / n_coarse) if n_coarse > 0 else float("inf")

    assignment = aggregates.assignment
    sizes = np.bincount(assignment[assignment >= 0], minlength=n_coarse)
    if sizes.size:
        stats.extra["agg_min"] = float(np.min(sizes))
        stats.extra["agg_med"] = float(np.median(sizes))
        stats.extra["agg_max"] = float(np.max(sizes))


def _fmt(x) -> str:
    """Format a scalar for compact printing."""
    try:
        x = float(x)
    except Exception:
        return str(x)
    ax = abs(x)
    if ax != 0.0 and (ax < 1e-2 or ax >= 1e4):
        return f"{x:.2e}"
    return f"{x:.3g}"


def _fmt_ms(t: float) -> str:
    """Format a duration in seconds as either milliseconds or seconds."""
    return f"{t*1e3:7.1f}ms" if t < 1.0 else f"{t:7.2f}s"


def _print_transfer_summary(
    stats: TransferStats,
    *,
    print_info: bool,
    prefix: str = "TLM",
    indent: str = "",
) -> None:
    """Print the aggregation counts, coarse size and setup timings.

    Parameters
    ----------
    stats
        Finalized stats object.
    print_info
        If False, does nothing.
    prefix
        Short label prefix.
    indent
        Optional indentation string.
    """
    if not print_info:
        return

    n_c = stats.n_coarse if stats.n_coarse is not None else "?"
    cr = _fmt(stats.extra.get("cr", "n/a"))
    print(f"{indent}{prefix:<3}  n={stats.n_fine:<7d} -> {n_c:<7}  cr={cr}  nnz_c={stats.coarse_nnz}")
    print(
        f"{indent}     aggregates={stats.n_aggregates} iso={stats.n_isolated} "
        f"one={stats.n_singleton} skipped={stats.n_skipped}"
    )
    if "agg_min" in stats.extra:
        sizes = "/".join(_fmt(stats.extra[k]) for k in ("agg_min", "agg_med", "agg_max"))
        print(f"{indent}     size (min/med/max): {sizes}")

    order = ["graph", "strength", "aggregate", "renumber", "galerkin"]
    total = 0.0
    print(f"{indent}     timing:")
    for k in order:
        if k in stats.timings:
            v = stats.timings[k]
            total += v
            print(f"{indent}       {k:<11} {_fmt_ms(v)}")
    print(f"{indent}       {'total':<11} {_fmt_ms(total)}")


def _print_coarse_hierarchy(ml, *, print_info: bool, indent: str = "") -> None:
    """Print the recursive AMG hierarchy built on the coarse level."""
    if not print_info:
        return
    print(f"{indent}TLM  coarse solver:")
    for line in str(ml).splitlines():
        print(f"{indent}     {line}")


def _print_coarse_solve(result: InverseOperatorResult, *, print_info: bool, indent: str = "") -> None:
    """Print the diagnostics of one coarse solve."""
    if not print_info:
        return
    status = "converged" if result.converged else "not converged"
    print(
        f"{indent}TLM  coarse solve: it={result.iterations} "
        f"reduction={_fmt(result.reduction)} ({status}) {_fmt_ms(result.elapsed)}"
    )
