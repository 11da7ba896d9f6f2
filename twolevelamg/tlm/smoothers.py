"""Fine-level smoothers.

A smoother performs one relaxation sweep per call:

    smoother.apply(A, x, b)     # x is updated in place

where A is a `MatrixOperator` (or a CSR matrix). `RelaxationSmoother` wraps
the pointwise relaxation methods of `pyamg.relaxation.relaxation`.

Supported smoothers
-------------------
- "gauss_seidel"    : kwargs `sweep` ("forward", "backward", "symmetric")
- "gauss_seidel_nr" : kwargs `sweep`, `omega`
- "jacobi"          : kwargs `omega`
- "sor"             : kwargs `omega` (required), `sweep`
- None              : disable smoothing

Smoothers are also used by name for the recursive coarse AMG, where they are
passed on as PyAMG `(name, kwargs)` specs (see `smoother_spec`).
"""

from __future__ import annotations

from typing import Any

import numpy as np

from pyamg.relaxation.relaxation import gauss_seidel, gauss_seidel_nr, jacobi, sor

SmootherSpec = str | tuple[str, dict[str, Any]]

_RELAXATION = {
    "gauss_seidel": gauss_seidel,
    "gauss_seidel_nr": gauss_seidel_nr,
    "jacobi": jacobi,
    "sor": sor,
}


class RelaxationSmoother:
    """One sweep of a PyAMG pointwise relaxation method.

    Parameters
    ----------
    name
        Key of the relaxation method, see module docstring.
    **kwargs
        Keyword arguments forwarded to the relaxation routine. `iterations`
        is not accepted; the number of sweeps is controlled by the caller.
    """

    def __init__(self, name: str, **kwargs) -> None:
        if name not in _RELAXATION:
            raise ValueError(f"Invalid smoother type: {name!r}")
        if "iterations" in kwargs:
            raise ValueError("a smoother performs exactly one sweep; do not pass iterations")
        if name == "sor" and "omega" not in kwargs:
            raise ValueError("the sor smoother requires omega")
        self.name = name
        self.kwargs = kwargs
        self._relax = _RELAXATION[name]

    def apply(self, A, x: np.ndarray, b: np.ndarray) -> None:
        """Perform one sweep on A x = b, updating x in place.

        A real matrix is promoted to the dtype of complex vectors.
        """
        mat = A.getmat(x.dtype) if hasattr(A, "getmat") else A
        if mat.dtype != x.dtype:
            mat = mat.astype(x.dtype)
        self._relax(mat, x, b, iterations=1, **self.kwargs)

    def spec(self) -> tuple[str, dict[str, Any]]:
        """Return the PyAMG `(name, kwargs)` spec of this smoother."""
        return self.name, dict(self.kwargs)

    def __repr__(self) -> str:
        args = ", ".join(f"{k}={v!r}" for k, v in self.kwargs.items())
        return f"RelaxationSmoother({self.name!r}{', ' if args else ''}{args})"


def make_smoother(smoother: SmootherSpec | RelaxationSmoother | None) -> RelaxationSmoother | None:
    """Return a smoother for a spec.

    Parameters
    ----------
    smoother
        Either a name, a `(name, kwargs)` pair, an existing smoother object
        (returned unchanged), or None to disable smoothing.
    """
    if smoother is None or hasattr(smoother, "apply"):
        return smoother
    if isinstance(smoother, tuple):
        return RelaxationSmoother(smoother[0], **smoother[1])
    return RelaxationSmoother(smoother)


def smoother_spec(smoother: SmootherSpec | RelaxationSmoother | None):
    """Return the PyAMG smoother spec used inside a `MultilevelSolver`."""
    if smoother is None:
        return None
    if isinstance(smoother, RelaxationSmoother):
        return smoother.spec()
    make_smoother(smoother)  # validates the name
    return smoother
