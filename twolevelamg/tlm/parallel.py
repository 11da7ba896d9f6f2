"""Parallel-information objects.

Every level operation that distinguishes owned rows from overlap rows goes
through one of these objects. Only the sequential variant is provided: all
rows are owned and the communication hooks do nothing. A distributed variant
implements the same members and can be passed wherever a `pinfo`
argument is accepted, without changing the two-level algorithm.
"""

from __future__ import annotations

import numpy as np

from .types import SolverCategory


class SequentialInformation:
    """Parallel information for a single address space."""

    category = SolverCategory.SEQUENTIAL

    def owner_mask(self, n: int) -> np.ndarray:
        """Return a boolean mask of the rows owned by this process (all of them)."""
        return np.ones(n, dtype=bool)

    def project(self, x: np.ndarray) -> None:
        """Zero the entries of x that belong to other processes (none)."""

    def __repr__(self) -> str:
        return "SequentialInformation()"
