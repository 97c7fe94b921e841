from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Literal, Mapping, Optional, Sequence, Tuple

import numpy as np
import uncertainties
from uncertainties import unumpy as unp


__all__ = [
    "ParameterSpec",
    "DerivedSpec",
    "ParamView",
    "ParamsView",
    "MultiParamView",
    "GuessState",
]

Domain = Literal["log", "real"]


@dataclass(frozen=True)
class ParameterSpec:
    name: str
    # "log": the optimiser sees log(x) and the curve exponentiates it.
    domain: Domain = "real"
    fixed: bool = False
    fixed_value: Optional[float] = None
    bounds: Optional[Tuple[Optional[float], Optional[float]]] = None
    # Strong guess: overrides guessers
    guess: Optional[float] = None
    # Weak guess: used only if guessers don't provide a value
    weak_guess: Optional[float] = None
    doc: str = ""


@dataclass(frozen=True)
class DerivedSpec:
    """Reported quantity computed from the estimated parameters.

    func receives a name -> value mapping and must be written with
    jax.numpy so the delta-method Jacobian can be taken through it.
    """

    name: str
    func: Any  # Callable[[Mapping[str, Any]], Any]
    doc: str = ""


@dataclass
class _UncContext:
    values: Mapping[str, float]
    cov: Optional[np.ndarray]
    free_names: Tuple[str, ...]
    _cache: Optional[Dict[str, Any]] = field(default=None, init=False, repr=False)

    def _build_cache(self) -> None:
        if self._cache is not None or self.cov is None:
            return
        cov = np.asarray(self.cov, dtype=float)
        n = len(self.free_names)
        if cov.shape != (n, n) or not np.all(np.isfinite(cov)):
            return
        vals = [float(self.values[k]) for k in self.free_names]
        try:
            corr = uncertainties.correlated_values(vals, cov)
        except np.linalg.LinAlgError:
            return
        self._cache = dict(zip(self.free_names, corr))

    def u_for(self, name: str) -> Optional[Any]:
        if name not in self.free_names:
            return None
        self._build_cache()
        if self._cache is None:
            return None
        return self._cache.get(name)

    def u_for_many(self, names: Sequence[str]) -> Optional[np.ndarray]:
        if any(n not in self.free_names for n in names):
            return None
        self._build_cache()
        if self._cache is None:
            return None
        return np.array([self._cache[n] for n in names], dtype=object)


@dataclass(frozen=True)
class ParamView:
    """A single parameter view."""

    name: str
    value: Any
    stderr: Any = None
    fixed: bool = False
    bounds: Optional[Tuple[Optional[float], Optional[float]]] = None
    derived: bool = False
    domain: Domain = "real"
    _context: Optional[_UncContext] = field(default=None, repr=False, compare=False)

    @property
    def error(self) -> Any:
        return self.stderr

    @property
    def u(self):
        """Return an uncertainties ufloat (correlated when a covariance is known)."""
        if self.stderr is None:
            raise ValueError(f"No stderr available for parameter {self.name!r}.")
        if not np.isfinite(float(self.stderr)):
            raise ValueError(f"stderr for {self.name!r} is not finite.")
        if self._context is not None:
            correlated = self._context.u_for(self.name)
            if correlated is not None:
                return correlated
        return uncertainties.ufloat(float(self.value), float(self.stderr))

    def __getitem__(self, key: str) -> Any:
        if key == "value":
            return self.value
        if key in ("error", "stderr"):
            return self.stderr
        if key == "fixed":
            return self.fixed
        if key == "bounds":
            return self.bounds
        if key == "derived":
            return self.derived
        if key == "domain":
            return self.domain
        raise KeyError(key)


@dataclass(frozen=True)
class MultiParamView:
    """View over several parameters at once; value/stderr have shape (len(names),)."""

    names: Tuple[str, ...]
    value: Any
    stderr: Any = None
    _context: Optional[_UncContext] = field(default=None, repr=False, compare=False)

    @property
    def u(self):
        if self.stderr is None:
            raise ValueError("No stderr available for MultiParamView.u.")
        e = np.asarray(self.stderr, dtype=float)
        if not np.all(np.isfinite(e)):
            raise ValueError("MultiParamView.stderr contains non-finite entries.")
        if self._context is not None:
            correlated = self._context.u_for_many(self.names)
            if correlated is not None:
                return correlated
        return unp.uarray(self.value, e)


class ParamsView(Mapping[str, ParamView]):
    """Mapping name -> ParamView, with index and multi-name access."""

    def __init__(
        self,
        items: Mapping[str, ParamView],
        *,
        _context: Optional[_UncContext] = None,
    ):
        self._items = dict(items)
        self._names = tuple(self._items.keys())
        self._context = _context

    def __getitem__(self, key):  # type: ignore[override]
        if isinstance(key, str):
            return self._items[key]

        # ("a", "b") or ["a", "b"]
        if (
            isinstance(key, (tuple, list))
            and key
            and all(isinstance(k, str) for k in key)
        ):
            return self._multi_by_names(tuple(key))

        if isinstance(key, int):
            return self._items[self._names[key]]

        if isinstance(key, slice):
            return self._multi_by_names(self._names[key])

        raise KeyError(key)

    def __iter__(self):
        return iter(self._items)

    def __len__(self):
        return len(self._items)

    def items(self):
        return self._items.items()

    def as_dict(self) -> Dict[str, Any]:
        """Return name->value (extracting .value)."""
        return {k: v.value for k, v in self._items.items()}

    def _multi_by_names(self, names: Sequence[str]) -> MultiParamView:
        names = tuple(names)
        if not names:
            raise ValueError("MultiParamView requires at least one parameter name.")

        views = [self._items[n] for n in names]
        value = np.array([float(pv.value) for pv in views], dtype=float)
        stderr = None
        if all(pv.stderr is not None for pv in views):
            stderr = np.array([float(pv.stderr) for pv in views], dtype=float)

        return MultiParamView(
            names=names,
            value=value,
            stderr=stderr,
            _context=self._context,
        )


class GuessState:
    """Mutable guess state passed to guessers.

    Supports:
        g.log_a = 0.0
        g.is_unset("log_a")
    """

    def __init__(self):
        object.__setattr__(self, "_d", {})

    def __getattr__(self, name: str) -> Any:
        d = object.__getattribute__(self, "_d")
        if name in d:
            return d[name]
        raise AttributeError(name)

    def __setattr__(self, name: str, value: Any) -> None:
        if name == "_d":
            object.__setattr__(self, name, value)
            return
        d = object.__getattribute__(self, "_d")
        d[name] = value

    def is_unset(self, name: str) -> bool:
        d = object.__getattribute__(self, "_d")
        return name not in d

    def to_dict(self) -> Dict[str, Any]:
        return dict(object.__getattribute__(self, "_d"))
