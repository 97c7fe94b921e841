from __future__ import annotations

from dataclasses import dataclass, replace
import inspect
from typing import (
    Any,
    Callable,
    Dict,
    List,
    Mapping,
    Optional,
    Sequence,
    Tuple,
)

import jax.numpy as jnp
import numpy as np
from warnings import warn

from .backends import get_backend
from .backends.common import BackendResult
from .inference import Objective, build_objective, neg_loglike_lognormal
from .inputs import StockRecruitData
from .params import (
    DerivedSpec,
    Domain,
    GuessState,
    ParameterSpec,
    ParamView,
    ParamsView,
    _UncContext,
)
from .run import Results, Run
from .util import infer_param_names

Guesser = Callable[[np.ndarray, np.ndarray, GuessState], None]

SD_NAME = "log_sd"


def _sd_from_log(p: Mapping[str, Any]) -> Any:
    return jnp.exp(p[SD_NAME])


@dataclass(frozen=True)
class Model:
    """A recruitment curve plus the log-normal likelihood around it.

    `func(S, ...)` returns expected recruitment mu(S). `log_func`, when
    given, returns log mu(S) directly and is what the likelihood uses;
    otherwise the likelihood takes log(func(...)). Every model carries the
    observation-error parameter `log_sd` and reports `sd = exp(log_sd)`.
    """

    name: str
    func: Callable[..., Any]
    arg_names: Tuple[str, ...]
    param_names: Tuple[str, ...]
    params: Tuple[ParameterSpec, ...]
    fixed_inputs: Tuple[str, ...] = ()
    log_func: Optional[Callable[..., Any]] = None
    guessers: Tuple[Guesser, ...] = ()
    derived: Tuple[DerivedSpec, ...] = ()

    # ---- constructor ----
    @staticmethod
    def from_function(
        func: Callable[..., Any],
        *,
        name: Optional[str] = None,
        log_func: Optional[Callable[..., Any]] = None,
        fixed_inputs: Sequence[str] = (),
        domains: Optional[Mapping[str, Domain]] = None,
    ) -> "Model":
        """Construct a Model from a curve function signature.

        `domains` marks which curve parameters the curve exponentiates
        ("log") versus uses as-is ("real", the default).
        """
        fixed_inputs = tuple(fixed_inputs)
        names = infer_param_names(func, fixed_inputs)
        domains = dict(domains or {})
        unknown = [k for k in domains if k not in names]
        if unknown:
            raise KeyError(f"Unknown parameters in domains: {unknown}")

        sig = inspect.signature(func)
        arg_names = tuple(list(sig.parameters)[1:])
        specs = []
        for n in names:
            p = sig.parameters[n]
            g = None
            if p.default is not inspect._empty:
                d = p.default
                if isinstance(d, (int, float, np.number)) and not isinstance(d, bool):
                    g = float(d)
            specs.append(ParameterSpec(name=n, domain=domains.get(n, "real"), weak_guess=g))
        specs.append(
            ParameterSpec(
                name=SD_NAME,
                domain="log",
                doc="log of the residual standard deviation of log recruitment",
            )
        )
        return Model(
            name=name or getattr(func, "__name__", "model"),
            func=func,
            arg_names=arg_names,
            param_names=names + (SD_NAME,),
            params=tuple(specs),
            fixed_inputs=fixed_inputs,
            log_func=log_func,
            derived=(
                DerivedSpec(
                    name="sd",
                    func=_sd_from_log,
                    doc="residual standard deviation of log recruitment",
                ),
            ),
        )

    # ---- parameter domain ----
    def domain(self) -> Dict[str, Domain]:
        """Return name -> "log" | "real" for every estimated parameter."""
        return {p.name: p.domain for p in self.params}

    def free_and_fixed(self) -> Tuple[List[str], Dict[str, float]]:
        """Split parameters into free names and fixed name->value mapping."""
        return _free_and_fixed(self.params)

    # ---- evaluation ----
    def _values(
        self, params: Optional[Mapping[str, Any]], kwargs: Mapping[str, Any]
    ) -> Dict[str, Any]:
        values: Dict[str, Any] = {}
        if params is not None:
            for k, v in params.items():
                values[k] = v.value if isinstance(v, ParamView) else v
        values.update(kwargs)

        for spec in self.params:
            if spec.fixed and spec.name not in values:
                values[spec.name] = spec.fixed_value
        return values

    def _curve_args(self, values: Mapping[str, Any]) -> Dict[str, Any]:
        missing = [n for n in self.arg_names if n not in values]
        if missing:
            raise TypeError(f"Missing parameter values for: {missing}")
        return {n: values[n] for n in self.arg_names}

    def eval(
        self, S: Any, *, params: Optional[Mapping[str, Any]] = None, **kwargs
    ) -> Any:
        """Expected recruitment mu(S). Fixed inputs (e.g. g) go in kwargs."""
        values = self._values(params, kwargs)
        return self.func(jnp.asarray(S, dtype=float), **self._curve_args(values))

    def log_eval(
        self, S: Any, *, params: Optional[Mapping[str, Any]] = None, **kwargs
    ) -> Any:
        """log mu(S), as entered into the likelihood."""
        values = self._values(params, kwargs)
        args = self._curve_args(values)
        S = jnp.asarray(S, dtype=float)
        if self.log_func is not None:
            return self.log_func(S, **args)
        return jnp.log(self.func(S, **args))

    def nll(
        self,
        data: StockRecruitData,
        *,
        params: Optional[Mapping[str, Any]] = None,
        **kwargs,
    ) -> Any:
        """Weighted log-normal NLL of `data` at the given parameters.

        Fixed inputs not passed explicitly are taken from `data`. The result
        is a 0-d JAX array, so the call can itself be differentiated; use
        float(...) for a Python number.
        """
        values = self._values(params, kwargs)
        unset = [n for n in self.fixed_inputs if n not in values]
        values.update(data.fixed_values(unset))
        if SD_NAME not in values:
            raise TypeError(f"Missing parameter values for: [{SD_NAME!r}]")
        log_mu = self.log_eval(data.S, params=values)
        sd = jnp.exp(values[SD_NAME])
        return neg_loglike_lognormal(
            jnp.log(jnp.asarray(data.R)), log_mu, sd, jnp.asarray(data.weights)
        )

    def report(
        self, *, params: Optional[Mapping[str, Any]] = None, **kwargs
    ) -> Dict[str, Any]:
        """Evaluate the reported quantities ("sd" plus any derive(...) entries)."""
        values = self._values(params, kwargs)
        return {d.name: d.func(values) for d in self.derived}

    def objective(self, data: StockRecruitData) -> Objective:
        """NLL of this model on `data` as a function of the free-parameter vector."""
        return build_objective(self, data)

    # ---- builders (pure; return new model) ----
    def fix(self, **fixed: float) -> "Model":
        """Return a new Model with parameters fixed to values."""
        m = {p.name: p for p in self.params}
        for k, v in fixed.items():
            if k not in m:
                raise KeyError(k)
            m[k] = replace(m[k], fixed=True, fixed_value=float(v))
        return replace(self, params=tuple(m[n] for n in self.param_names))

    def bound(self, **bounds: Tuple[Optional[float], Optional[float]]) -> "Model":
        """Return a new Model with parameter bounds applied."""
        m = {p.name: p for p in self.params}
        for k, b in bounds.items():
            if k not in m:
                raise KeyError(k)
            lo, hi = b
            m[k] = replace(m[k], bounds=(lo, hi))
        return replace(self, params=tuple(m[n] for n in self.param_names))

    def guess(self, **guesses: float) -> "Model":
        """Return a new Model with strong parameter guesses."""
        m = {p.name: p for p in self.params}
        for k, g in guesses.items():
            if k not in m:
                raise KeyError(k)
            m[k] = replace(m[k], guess=float(g))
        return replace(self, params=tuple(m[n] for n in self.param_names))

    def weak_guess(self, **guesses: float) -> "Model":
        """Set weak (low-precedence) guesses.

        Weak guesses are used only if guessers don't provide a value for that parameter.
        Strong guesses set via .guess(...) override guessers.
        """
        m = {p.name: p for p in self.params}
        for k, g in guesses.items():
            if k not in m:
                raise KeyError(k)
            m[k] = replace(m[k], weak_guess=float(g))
        return replace(self, params=tuple(m[n] for n in self.param_names))

    def derive(
        self, name: str, func: Callable[[Mapping[str, Any]], Any], *, doc: str = ""
    ) -> "Model":
        """Return a new Model with an extra reported quantity.

        func must use jax.numpy so its stderr can be propagated.
        """
        if name in self.param_names or name in self.fixed_inputs:
            raise ValueError(
                f"Derived name {name!r} conflicts with an existing parameter."
            )
        if any(d.name == name for d in self.derived):
            raise ValueError(f"Derived quantity {name!r} already exists.")
        return replace(
            self, derived=self.derived + (DerivedSpec(name=name, func=func, doc=doc),)
        )

    def with_guesser(self, fn: Guesser) -> "Model":
        """Return a new Model with `fn` appended to the guesser list."""
        return replace(self, guessers=self.guessers + (fn,))

    def seed(
        self,
        S: Any,
        R: Any = None,
        weights: Any = None,
        *,
        g: Optional[float] = None,
        seed_override: Optional[Mapping[str, float]] = None,
    ) -> ParamsView:
        """Compute parameter seeds without running the optimiser."""
        run = self.fit(
            S, R, weights, g=g, seed_override=seed_override, optimise=False
        )
        return run.results.params

    # ---- fitting ----
    def fit(
        self,
        S: Any,
        R: Any = None,
        weights: Any = None,
        *,
        g: Optional[float] = None,
        backend: str | Sequence[str] = "scipy.minimize",
        seed_override: Optional[Mapping[str, float]] = None,
        optimise: bool = True,
        backend_options: Optional[Dict[str, Any]] = None,
    ) -> Run:
        """Fit the model by maximum likelihood and return a Run.

        S may be a StockRecruitData (then R/weights/g must not be passed),
        or the spawning-biomass array with R, weights and g alongside.

        Backend notes:
        - scipy.minimize uses the autodiff gradient (and Hessian-vector
          products for Newton-type methods)
        - scipy.differential_evolution is a global optimiser (requires finite bounds)
        - backend=("a", "b", ...) runs a backend pipeline, passing results forward as seeds
        """
        data = _as_data(S, R, weights, g)
        backend_options = dict(backend_options or {})

        steps = [backend] if isinstance(backend, str) else [str(b) for b in backend]
        if not steps:
            raise ValueError("backend pipeline cannot be empty.")
        # Fail fast on unknown names.
        for b in steps:
            get_backend(b)

        free_names, fixed_map = self.free_and_fixed()
        objective = build_objective(
            self, data, free_names=free_names, fixed_map=fixed_map
        )

        p0_map = _seed_values(self, data, free_names, seed_override)
        p0 = np.asarray([p0_map[n] for n in free_names], dtype=float)
        bounds = _bounds_for_free(self.params, free_names)
        seed_values = dict(objective.params(p0))
        if not np.isfinite(objective.value(p0)):
            warn(
                "NLL at the seed is not finite; the optimiser has no valid starting point. "
                "Check that S, R > 0 and that the seed gives positive expected recruitment.",
                UserWarning,
            )

        if not optimise:
            r_use = BackendResult(
                theta=p0,
                message="optimise=False (seed only)",
                stats={"backend": "none"},
            )
        else:
            r_use = _run_backends(
                objective=objective,
                p0=p0,
                bounds=bounds,
                options=backend_options,
                steps=steps,
            )

        theta = np.asarray(r_use.theta, dtype=float)
        values = objective.params(theta)
        cov = None if r_use.cov is None else np.asarray(r_use.cov, dtype=float)
        stderrs: Dict[str, Optional[float]] = {n: None for n in self.param_names}
        if cov is not None:
            perr = np.sqrt(np.clip(np.diag(cov), 0.0, np.inf))
            for j, n in enumerate(free_names):
                stderrs[n] = float(perr[j])

        ctx = _UncContext(values=values, cov=cov, free_names=tuple(free_names))
        items: Dict[str, ParamView] = {}
        seed_items: Dict[str, ParamView] = {}
        for spec in self.params:
            n = spec.name
            items[n] = ParamView(
                name=n,
                value=float(values[n]),
                stderr=None if spec.fixed else stderrs[n],
                fixed=spec.fixed,
                bounds=spec.bounds,
                domain=spec.domain,
                _context=ctx,
            )
            seed_items[n] = ParamView(
                name=n,
                value=float(seed_values[n]),
                fixed=spec.fixed,
                bounds=spec.bounds,
                domain=spec.domain,
            )

        # Reported quantities: value + delta-method stderr through the autodiff Jacobian.
        reported = objective.sdreport(theta, cov) if cov is not None else {
            k: (v, None) for k, v in objective.report(theta).items()
        }
        for d in self.derived:
            dv, de = reported[d.name]
            items[d.name] = ParamView(
                name=d.name,
                value=float(dv),
                stderr=de,
                fixed=True,
                derived=True,
            )

        stats = dict(r_use.stats or {})
        stats["free_names"] = tuple(free_names)

        results = Results(
            params=ParamsView(items, _context=ctx),
            seed=ParamsView(seed_items),
            cov=cov,
            nll=objective.value(theta),
            backend=str(stats["backend"]),
            stats=stats,
        )

        return Run(
            model=self,
            results=results,
            backend=results.backend,
            data=data,
            success=bool(r_use.success),
            message=str(r_use.message),
        )


def _as_data(S: Any, R: Any, weights: Any, g: Optional[float]) -> StockRecruitData:
    """Normalize fit(...) inputs to a StockRecruitData."""
    if isinstance(S, StockRecruitData):
        if R is not None or weights is not None or g is not None:
            raise TypeError(
                "If S is StockRecruitData, do not also pass R=, weights= or g=."
            )
        return S
    if R is None:
        raise TypeError("fit() missing required argument: R")
    return StockRecruitData.from_arrays(S, R, weights, g=g)


def _free_and_fixed(
    params: Tuple[ParameterSpec, ...]
) -> Tuple[List[str], Dict[str, float]]:
    """Split parameters into free names and fixed name->value mapping."""
    free: List[str] = []
    fixed: Dict[str, float] = {}
    for p in params:
        if p.fixed:
            if p.fixed_value is None:
                raise ValueError(f"Parameter {p.name} is fixed but has no fixed_value.")
            fixed[p.name] = float(p.fixed_value)
        else:
            free.append(p.name)
    return free, fixed


def _bounds_for_free(
    params: Tuple[ParameterSpec, ...], free_names: List[str]
) -> Tuple[np.ndarray, np.ndarray]:
    """Return (lo, hi) arrays of bounds for free parameters."""
    pmap = {p.name: p for p in params}
    lo: List[float] = []
    hi: List[float] = []
    for n in free_names:
        b = pmap[n].bounds
        if b is None:
            lo.append(-np.inf)
            hi.append(np.inf)
        else:
            lo.append(-np.inf if b[0] is None else float(b[0]))
            hi.append(np.inf if b[1] is None else float(b[1]))
    return (np.array(lo, dtype=float), np.array(hi, dtype=float))


def _run_backends(
    *,
    objective: Objective,
    p0: np.ndarray,
    bounds: Tuple[np.ndarray, np.ndarray],
    options: Dict[str, Any],
    steps: Sequence[str],
) -> BackendResult:
    """Run backends in turn, each starting where the previous one ended.

    Returns the last successful result, or the last result if none succeeded.
    With more than one step, stats["pipeline"] records every step.
    """
    theta = np.asarray(p0, dtype=float)
    chosen: Optional[BackendResult] = None
    records: List[Dict[str, Any]] = []
    for name in steps:
        r = get_backend(name).fit_one(
            objective=objective, p0=theta, bounds=bounds, options=options
        )
        r = replace(r, stats={**r.stats, "backend": name})
        records.append(
            {
                "backend": name,
                "success": r.success,
                "message": r.message,
                "stats": r.stats,
            }
        )
        if r.success or chosen is None or not chosen.success:
            chosen = r
        if np.all(np.isfinite(r.theta)):
            theta = np.asarray(r.theta, dtype=float)

    if chosen is None:
        raise RuntimeError("no backend steps to run.")
    if len(steps) > 1:
        chosen = replace(chosen, stats={**chosen.stats, "pipeline": records})
    return chosen


def _seed_values(
    model: Model,
    data: StockRecruitData,
    free_names: Sequence[str],
    overrides: Optional[Mapping[str, float]] = None,
) -> Dict[str, float]:
    """Starting values for the free parameters.

    Each parameter takes the first available of: the per-call override,
    model.guess(...), the model's guessers, model.weak_guess(...) (or a
    numeric default in the curve signature), the mid-point of finite bounds.
    Seeds outside the bounds are clipped into them.
    """
    specs = {p.name: p for p in model.params}
    overrides = dict(overrides or {})
    for n in overrides:
        if n not in specs:
            raise KeyError(n)

    state = GuessState()
    for fn in model.guessers:
        fn(np.asarray(data.S, dtype=float), np.asarray(data.R, dtype=float), state)
    guessed = state.to_dict()

    seeds: Dict[str, float] = {}
    from_bounds: List[str] = []
    clipped: List[str] = []
    for n in free_names:
        spec = specs[n]
        lo, hi = _bounds_for_free((spec,), [n])
        lo, hi = float(lo[0]), float(hi[0])
        candidates = (overrides.get(n), spec.guess, guessed.get(n), spec.weak_guess)
        value = next((float(c) for c in candidates if c is not None), None)
        if value is None:
            if not (np.isfinite(lo) and np.isfinite(hi)):
                continue
            value = 0.5 * (lo + hi)
            from_bounds.append(n)
        seeds[n] = min(max(value, lo), hi)
        if seeds[n] != value:
            clipped.append(n)

    if from_bounds:
        warn(
            "Using mid-point of bounds as seed for parameters: " + ", ".join(from_bounds),
            UserWarning,
        )
    if clipped:
        warn("Clipped seed values into bounds for: " + ", ".join(clipped), UserWarning)

    missing = [n for n in free_names if n not in seeds]
    if missing:
        raise ValueError(
            "Could not determine initial seeds for parameters: "
            + ", ".join(missing)
            + ". Provide seed_override=..., model.guess(...), a guesser, or finite bounds."
        )
    return seeds
