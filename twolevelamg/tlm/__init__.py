"""Two-level method internals.

This package contains the building blocks of `twolevelamg.two_level_method`.

Modules
-------
types
    Sentinels, the aggregate map, the aggregation criterion, and result containers.
parallel
    Parallel-information objects (sequential only).
operators
    Assembled matrix operators and their structural graphs.
aggregation
    Strength-of-connection, aggregation with size bounds, and renumbering.
galerkin
    Galerkin coarse operator and aggregate-based vector transfer.
transfer
    Level transfer policies (abstract base and aggregation-based).
smoothers
    Fine-level relaxation smoothers.
coarse
    Coarse solver policy and its one-step AMG solver handle.
stats
    Setup timing and diagnostic reporting.
"""

from __future__ import annotations

from . import aggregation, coarse, galerkin, operators, parallel, smoothers, stats, transfer, types

__all__ = [
    "types",
    "parallel",
    "operators",
    "aggregation",
    "galerkin",
    "transfer",
    "smoothers",
    "coarse",
    "stats",
]
