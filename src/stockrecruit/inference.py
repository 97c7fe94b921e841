from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Mapping, Optional, Sequence, Tuple

import jax
import jax.numpy as jnp
import numpy as np
from jax.scipy.stats import norm

from .inputs import StockRecruitData


def neg_loglike_lognormal(
    log_r: Any, log_mu: Any, sd: Any, weights: Any
) -> jnp.ndarray:
    """Weighted log-normal negative log-likelihood.

      NLL = -Σ w_i log N(log R_i; log mu_i, sd)

    The density is evaluated on log recruitment, so every expected value
    mu_i must be positive. That is a precondition on the parameters and is
    not checked: a non-positive mu_i gives a non-finite result.
    """
    ll = norm.logpdf(log_r, loc=log_mu, scale=sd)
    return -jnp.sum(weights * ll)


@dataclass(frozen=True)
class Objective:
    """NLL of one model on one observation set, as a function of a flat vector.

    theta holds the free parameters in `free_names` order. value, grad,
    hessian and hvp all differentiate the same jitted NLL; nothing here is
    hand-derived.
    """

    model: Any  # Model
    data: StockRecruitData
    free_names: Tuple[str, ...]
    fixed_map: Dict[str, float] = field(default_factory=dict)

    _fun: Callable[[Any], Any] = field(init=False, repr=False, compare=False)
    _value_and_grad: Callable[[Any], Any] = field(init=False, repr=False, compare=False)
    _hessian: Callable[[Any], Any] = field(init=False, repr=False, compare=False)
    _batch: Callable[[Any], Any] = field(init=False, repr=False, compare=False)
    _hvp: Callable[[Any, Any], Any] = field(init=False, repr=False, compare=False)
    _report: Callable[[Any], Any] = field(init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        model = self.model
        S = jnp.asarray(self.data.S)
        log_r = jnp.log(jnp.asarray(self.data.R))
        weights = jnp.asarray(self.data.weights)
        fixed_inputs = self.data.fixed_values(model.fixed_inputs)
        fixed_map = dict(self.fixed_map)
        free_names = tuple(self.free_names)

        def values(theta):
            out: Dict[str, Any] = dict(fixed_map)
            for j, name in enumerate(free_names):
                out[name] = theta[j]
            return out

        def fun(theta):
            p = values(theta)
            log_mu = model.log_eval(S, params=p, **fixed_inputs)
            sd = jnp.exp(p["log_sd"])
            return neg_loglike_lognormal(log_r, log_mu, sd, weights)

        derived = tuple(model.derived)

        def report(theta):
            p = values(theta)
            return jnp.stack([jnp.asarray(d.func(p), dtype=float) for d in derived])

        def hvp(theta, v):
            return jax.jvp(jax.grad(fun), (theta,), (v,))[1]

        object.__setattr__(self, "free_names", free_names)
        object.__setattr__(self, "_fun", jax.jit(fun))
        object.__setattr__(self, "_value_and_grad", jax.jit(jax.value_and_grad(fun)))
        object.__setattr__(self, "_hessian", jax.jit(jax.hessian(fun)))
        object.__setattr__(self, "_batch", jax.jit(jax.vmap(fun)))
        object.__setattr__(self, "_hvp", jax.jit(hvp))
        object.__setattr__(self, "_report", report)

    # ---- scalar loss and derivatives ---------------------------------------
    def _theta(self, theta: Any) -> jnp.ndarray:
        t = jnp.asarray(theta, dtype=float).reshape((-1,))
        if t.shape != (len(self.free_names),):
            raise ValueError(
                f"Expected {len(self.free_names)} free parameters {self.free_names}; "
                f"got shape {tuple(t.shape)}."
            )
        return t

    def value(self, theta: Any) -> float:
        return float(self._fun(self._theta(theta)))

    def value_batch(self, thetas: Any) -> np.ndarray:
        """NLL at each row of a (M, P) array of free-parameter vectors."""
        t = jnp.asarray(thetas, dtype=float)
        if t.ndim != 2 or t.shape[1] != len(self.free_names):
            raise ValueError(
                f"Expected shape (M, {len(self.free_names)}); got {tuple(t.shape)}."
            )
        return np.asarray(self._batch(t), dtype=float)

    def grad(self, theta: Any) -> np.ndarray:
        return np.asarray(self._value_and_grad(self._theta(theta))[1], dtype=float)

    def value_and_grad(self, theta: Any) -> Tuple[float, np.ndarray]:
        f, g = self._value_and_grad(self._theta(theta))
        return float(f), np.asarray(g, dtype=float)

    def hessian(self, theta: Any) -> np.ndarray:
        return np.asarray(self._hessian(self._theta(theta)), dtype=float)

    def hvp(self, theta: Any, v: Any) -> np.ndarray:
        """Hessian-vector product H(theta) @ v (forward-over-reverse)."""
        return np.asarray(
            self._hvp(self._theta(theta), self._theta(v)), dtype=float
        )

    def __call__(self, theta: Any) -> float:
        return self.value(theta)

    # ---- parameters and reported quantities --------------------------------
    def params(self, theta: Any) -> Dict[str, float]:
        """Return name -> value for every parameter (free and fixed)."""
        t = np.asarray(theta, dtype=float).reshape((-1,))
        out = {n: float(v) for n, v in self.fixed_map.items()}
        for j, name in enumerate(self.free_names):
            out[name] = float(t[j])
        return {n: out[n] for n in self.model.param_names}

    def report(self, theta: Any) -> Dict[str, float]:
        """Evaluate the model's reported quantities (always includes "sd")."""
        vals = np.asarray(self._report(self._theta(theta)), dtype=float)
        return {d.name: float(vals[i]) for i, d in enumerate(self.model.derived)}

    def sdreport(
        self, theta: Any, cov: Optional[np.ndarray] = None
    ) -> Dict[str, Tuple[float, Optional[float]]]:
        """Reported quantities with delta-method standard errors.

        If cov is None it is taken as the inverse Hessian of the NLL at theta.
        The Jacobian of the report is obtained by automatic differentiation.
        """
        t = self._theta(theta)
        if cov is None:
            cov = covariance_from_hessian(self.hessian(t))
        vals = np.asarray(self._report(t), dtype=float)
        names = [d.name for d in self.model.derived]
        if cov is None or len(self.free_names) == 0:
            return {n: (float(vals[i]), None) for i, n in enumerate(names)}

        jac = np.asarray(jax.jacobian(self._report)(t), dtype=float)
        var = np.einsum("ij,jk,ik->i", jac, np.asarray(cov, dtype=float), jac)
        err = np.sqrt(np.clip(var, 0.0, np.inf))
        return {n: (float(vals[i]), float(err[i])) for i, n in enumerate(names)}


def build_objective(
    model: Any,
    data: StockRecruitData,
    *,
    free_names: Optional[Sequence[str]] = None,
    fixed_map: Optional[Mapping[str, float]] = None,
) -> Objective:
    """Build the NLL objective of `model` on `data`.

    Defaults to the model's own free/fixed split (see Model.fix).
    """
    if free_names is None or fixed_map is None:
        default_free, default_fixed = model.free_and_fixed()
        if free_names is None:
            free_names = default_free
        if fixed_map is None:
            fixed_map = default_fixed
    return Objective(
        model=model,
        data=data,
        free_names=tuple(free_names),
        fixed_map=dict(fixed_map),
    )


def covariance_from_hessian(
    hess: np.ndarray, jitter: float = 0.0
) -> Optional[np.ndarray]:
    """Asymptotic MLE covariance: (pseudo-)inverse of the NLL Hessian.

    Returns None when the Hessian is not finite.
    """
    hess = np.asarray(hess, dtype=float)
    if hess.size == 0 or not np.all(np.isfinite(hess)):
        return None
    hess = 0.5 * (hess + hess.T)
    if jitter > 0.0:
        hess = hess + jitter * np.eye(hess.shape[0])
    cov = np.linalg.pinv(hess)
    if not np.all(np.isfinite(cov)):
        return None
    return cov
