"""Benchmark the two-level preconditioner on Poisson problems.

Run from the repository root:
  python twolevelamg/tests/tlm/bench_twolevel.py --grid 32 64 128 --aggregate standard

Options:
  --steps PRE POST         smoothing sweeps around the coarse correction
  --max-aggregate-size K   split aggregates larger than K
  --print-info             print setup diagnostics of each preconditioner
  --csv out.csv            write a CSV summary
"""

from __future__ import annotations

import argparse
import csv
import time

import numpy as np

from pyamg.gallery import poisson
from pyamg.krylov import fgmres

from twolevelamg import AggregationCriterion, two_level_solver


def _conv_factor(res: list[float]) -> tuple[int, float, float]:
    """Return (iters, conv_factor, final_res)."""
    if len(res) < 2:
        return 0, float("nan"), float("nan")
    iters = len(res) - 1
    r0 = res[0]
    r1 = res[-1]
    if r0 <= 0:
        return iters, float("nan"), float(r1)
    cf = float(np.exp(np.log(r1 / r0) / max(iters, 1)))
    return iters, cf, float(r1)


def _run_one(name, A, b, M, *, tol: float, maxiter: int, restart: int, setup_time: float):
    res: list[float] = []
    t0 = time.perf_counter()
    _, info = fgmres(A, b, tol=tol, restart=restart, maxiter=maxiter, M=M, residuals=res)
    solve_time = time.perf_counter() - t0

    iters, cf, final_res = _conv_factor(res)
    return dict(
        method=name,
        setup_time=setup_time,
        solve_time=solve_time,
        iters=iters,
        conv_factor=cf,
        final_res=final_res,
        info=info,
    )


def main():
    p = argparse.ArgumentParser()
    p.add_argument("--grid", type=int, nargs="+", default=[32, 64])
    p.add_argument("--aggregate", choices=["standard", "naive"], default="standard")
    p.add_argument("--theta", type=float, default=0.0)
    p.add_argument("--steps", type=int, nargs=2, default=[1, 1], metavar=("PRE", "POST"))
    p.add_argument("--max-aggregate-size", type=int, default=0, help="0 means unbounded")
    p.add_argument("--damping", type=float, default=1.0)
    p.add_argument("--tol", type=float, default=1e-8)
    p.add_argument("--maxiter", type=int, default=200)
    p.add_argument("--restart", type=int, default=50)
    p.add_argument("--print-info", action="store_true")
    p.add_argument("--csv", type=str, default="")
    args = p.parse_args()

    criterion = AggregationCriterion(
        theta=args.theta,
        aggregate=args.aggregate,
        max_aggregate_size=args.max_aggregate_size or None,
        prolongation_damping=args.damping,
    )

    rows = []
    for m in args.grid:
        A = poisson((m, m), format="csr")
        n = A.shape[0]
        rng = np.random.default_rng(n)
        b = rng.standard_normal(n)

        print(f"\n=== poisson {m}x{m} (n={n}) ===")
        t0 = time.perf_counter()
        ml = two_level_solver(A, criterion=criterion, pre_steps=args.steps[0],
                              post_steps=args.steps[1], print_info=args.print_info)
        setup_time = time.perf_counter() - t0
        n_coarse = ml.policy.get_coarse_level_operator().shape[0]

        runs = [
            ("none", None, 0.0),
            ("tlm", ml.aspreconditioner(), setup_time),
        ]
        with ml:
            for name, M, st in runs:
                out = _run_one(name, A, b, M, tol=args.tol, maxiter=args.maxiter,
                               restart=args.restart, setup_time=st)
                print(
                    f"{name:>4} | setup={out['setup_time']:.2f}s "
                    f"solve={out['solve_time']:.2f}s iters={out['iters']:3d} "
                    f"cf={out['conv_factor']:.3f} final_res={out['final_res']:.2e}"
                )
                rows.append(dict(case=f"poisson_{m}", n=n, n_coarse=n_coarse, **out))

    if args.csv:
        with open(args.csv, "w", newline="") as fp:
            w = csv.DictWriter(fp, fieldnames=rows[0].keys())
            w.writeheader()
            w.writerows(rows)
        print(f"\nWrote {args.csv}")


if __name__ == "__main__":
    main()
