from __future__ import annotations

import math
from typing import Any, Dict, Tuple

import numpy as np
from scipy.optimize import minimize

from ..inference import Objective
from .common import BackendResult, NonFiniteGuard, final_nll, hessian_cov

# Methods that accept a Hessian-vector product.
_HESSP_METHODS = {"newton-cg", "trust-ncg", "trust-krylov", "trust-constr"}


class ScipyMinimizeBackend:
    name = "scipy.minimize"

    def fit_one(
        self,
        *,
        objective: Objective,
        p0: np.ndarray,
        bounds: Tuple[np.ndarray, np.ndarray],
        options: dict[str, Any],
    ) -> BackendResult:
        """Fit using scipy.optimize.minimize with autodiff derivatives.

        Backend options:
        - method: optimizer name (default: L-BFGS-B)
        - options: dict forwarded to scipy.optimize.minimize
        - nonfinite_value: loss handed to the optimiser for trial points
          whose NLL or gradient is not finite (default: 1e10)
        - cov_method / cov_jitter: see backends.common.hessian_cov
        """
        p0 = np.asarray(p0, dtype=float)
        if p0.shape[0] == 0:
            return BackendResult(
                theta=p0,
                cov=None,
                success=True,
                message="no free parameters",
                stats={"backend": self.name, "fun": objective.value(p0)},
            )

        lo, hi = bounds
        scipy_bounds = [
            (
                float(lo[i]) if math.isfinite(lo[i]) else None,
                float(hi[i]) if math.isfinite(hi[i]) else None,
            )
            for i in range(p0.shape[0])
        ]

        method = str(options.get("method", "L-BFGS-B"))
        guard = NonFiniteGuard(float(options.get("nonfinite_value", 1e10)))

        def fun(v: np.ndarray) -> Tuple[float, np.ndarray]:
            f, g = objective.value_and_grad(v)
            if guard.check(f) and guard.check(g):
                return f, g
            return guard.penalty, np.zeros_like(g)

        kwargs: Dict[str, Any] = {}
        if any(b != (None, None) for b in scipy_bounds):
            kwargs["bounds"] = scipy_bounds
        if method.lower() in _HESSP_METHODS:
            kwargs["hessp"] = objective.hvp

        res = minimize(
            fun,
            p0,
            jac=True,
            method=method,
            options=options.get("options") or {},
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
                "method": method,
                "fun": nll,
                "nfev": int(getattr(res, "nfev", 0) or 0),
                "nit": int(getattr(res, "nit", 0) or 0),
                "nonfinite_evals": guard.count,
            },
        )
