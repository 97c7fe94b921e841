from __future__ import annotations

from typing import Any, Tuple

import numpy as np
from scipy.optimize import differential_evolution

from ..inference import Objective
from .common import BackendResult, NonFiniteGuard, final_nll, hessian_cov

_PASSTHROUGH = (
    "maxiter",
    "popsize",
    "tol",
    "strategy",
    "mutation",
    "recombination",
    "seed",
    "polish",
)


class ScipyDifferentialEvolutionBackend:
    name = "scipy.differential_evolution"

    def fit_one(
        self,
        *,
        objective: Objective,
        p0: np.ndarray,
        bounds: Tuple[np.ndarray, np.ndarray],
        options: dict[str, Any],
    ) -> BackendResult:
        """Global search with scipy.optimize.differential_evolution.

        Every free parameter needs finite bounds. The seed joins the initial
        population. Each generation is scored in one call through the
        vmapped NLL (scipy's `vectorized=True`); trial points with a
        non-finite NLL score +inf.

        Backend options: maxiter (default 50), popsize, tol, strategy,
        mutation, recombination, seed, polish; cov_method / cov_jitter as in
        backends.common.hessian_cov. Process-based `workers` is not
        supported: the compiled objective cannot be pickled.
        """
        free_names = objective.free_names
        if not free_names:
            return BackendResult(
                theta=np.asarray([], dtype=float),
                message="no free parameters",
                stats={"backend": self.name},
            )
        if "workers" in options:
            raise ValueError(
                "scipy.differential_evolution: 'workers' is not supported; "
                "each generation is already evaluated in one vectorized call."
            )

        lo = np.asarray(bounds[0], dtype=float)
        hi = np.asarray(bounds[1], dtype=float)
        for j, name in enumerate(free_names):
            if not (np.isfinite(lo[j]) and np.isfinite(hi[j])):
                raise ValueError(
                    "scipy.differential_evolution requires finite bounds for all "
                    f"free parameters; {name!r} has ({lo[j]}, {hi[j]})."
                )
            if hi[j] <= lo[j]:
                raise ValueError(f"Invalid bounds for {name!r}: require hi > lo.")

        guard = NonFiniteGuard(float("inf"))

        def fun(x: np.ndarray) -> Any:
            x = np.asarray(x, dtype=float)
            # Polishing evaluates single points; generations arrive as (P, M).
            if x.ndim == 1:
                return float(guard.screen(objective.value(x)))
            return guard.screen(objective.value_batch(x.T))

        kwargs = {k: options[k] for k in _PASSTHROUGH if k in options}
        kwargs.setdefault("maxiter", 50)
        res = differential_evolution(
            fun,
            list(zip(lo, hi)),
            x0=options.get("x0", np.clip(np.asarray(p0, dtype=float), lo, hi)),
            vectorized=True,
            updating="deferred",
            **kwargs,
        )
        guard.report(self.name)

        theta = np.asarray(res.x, dtype=float)
        nll, success, message = final_nll(
            objective, theta, bool(res.success), str(res.message)
        )
        cov = hessian_cov(objective, theta, options) if np.isfinite(nll) else None

        return BackendResult(
            theta=theta,
            cov=cov,
            success=success,
            message=message,
            stats={
                "backend": self.name,
                "fun": nll,
                "nfev": int(getattr(res, "nfev", 0) or 0),
                "nit": int(getattr(res, "nit", 0) or 0),
                "nonfinite_evals": guard.count,
            },
        )
