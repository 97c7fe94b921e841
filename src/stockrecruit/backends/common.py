from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Protocol, Tuple

import numpy as np
from warnings import warn

from ..inference import Objective, covariance_from_hessian


@dataclass(frozen=True)
class BackendResult:
    """Normalized result returned by any backend."""

    theta: np.ndarray  # free parameters, shape (P,)
    cov: Optional[np.ndarray] = None  # free-parameter covariance, (P,P)
    success: bool = True
    message: str = ""
    stats: Dict[str, Any] = field(default_factory=dict)


class Backend(Protocol):
    """Backend protocol: minimise one objective."""

    name: str

    def fit_one(
        self,
        *,
        objective: Objective,
        p0: np.ndarray,
        bounds: Tuple[np.ndarray, np.ndarray],
        options: dict[str, Any],
    ) -> BackendResult: ...


def hessian_cov(
    objective: Objective, theta: np.ndarray, options: dict[str, Any]
) -> Optional[np.ndarray]:
    """Covariance from the autodiff Hessian of the NLL at theta.

    Backend options:
    - cov_method: "hessian" (default) or "none"
    - cov_jitter: diagonal jitter added before inversion (default: 0.0)
    """
    cov_method = str(options.get("cov_method", "hessian")).lower()
    if cov_method in ("none", "off", "false"):
        return None
    if cov_method != "hessian":
        raise ValueError(f"Unknown cov_method {cov_method!r}; use 'hessian' or 'none'.")
    if theta.shape[0] == 0:
        return None

    cov = covariance_from_hessian(
        objective.hessian(theta), jitter=float(options.get("cov_jitter", 0.0))
    )
    if cov is None:
        warn(
            "Hessian of the NLL is not finite at the optimum; no covariance available.",
            UserWarning,
        )
    return cov


def final_nll(
    objective: Objective, theta: np.ndarray, success: bool, message: str
) -> Tuple[float, bool, str]:
    """NLL at the returned point; a non-finite one marks the fit as failed."""
    fun = objective.value(theta)
    if np.isfinite(fun):
        return fun, success, message
    return (
        fun,
        False,
        f"NLL is not finite at the returned parameters (optimiser said: {message})",
    )


class NonFiniteGuard:
    """Counts trial points whose NLL is not finite.

    A non-finite NLL is a rejected trial point, not an error: the optimiser
    is handed `penalty` instead and the search continues.
    """

    def __init__(self, penalty: float):
        self.penalty = float(penalty)
        self.count = 0

    def check(self, value: Any) -> bool:
        """True if `value` (an NLL or its gradient) is entirely finite."""
        if np.all(np.isfinite(value)):
            return True
        self.count += 1
        return False

    def screen(self, values: np.ndarray) -> np.ndarray:
        """Replace each non-finite NLL in a batch by the penalty."""
        values = np.asarray(values, dtype=float)
        bad = ~np.isfinite(values)
        self.count += int(np.count_nonzero(bad))
        return np.where(bad, self.penalty, values)

    def report(self, backend_name: str) -> None:
        if self.count:
            warn(
                f"{backend_name}: rejected {self.count} trial point(s) with non-finite NLL.",
                UserWarning,
            )
