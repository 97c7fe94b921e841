from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Literal, Mapping, Optional

import numpy as np
import uncertainties

from .inputs import StockRecruitData
from .params import ParamsView


@dataclass(frozen=True)
class Results:
    params: ParamsView
    seed: Optional[ParamsView] = None
    cov: Optional[np.ndarray] = None
    nll: float = float("nan")
    backend: str = ""
    # Backend-specific extras (nfev, nonfinite_evals, pipeline records, ...)
    stats: Dict[str, Any] = field(default_factory=dict)

    def __getitem__(self, key):
        """Return ParamView(s) by name: res["log_a"], res["log_a", "log_b"]."""
        if isinstance(key, str):
            return self.params[key]
        if (
            isinstance(key, (tuple, list))
            and key
            and all(isinstance(k, str) for k in key)
        ):
            return self.params[key]
        raise KeyError(key)

    @property
    def n_params(self) -> int:
        """Number of estimated (free) parameters."""
        return len(self.stats.get("free_names", ()))

    def summary(self, digits: int = 4, *, compact: bool = False) -> str:
        """Return a human-readable summary string for the results.

        compact=True uses the shorthand value(err) notation of the
        uncertainties package, e.g. 0.25(6), with the uncertainty rounded
        by the Particle Data Group rule.
        """
        lines = [f"Results(backend={self.backend!r})"]
        lines.append(f"  {'nll':>12s}: {float(self.nll):.{digits}g}")
        for name, pv in self.params.items():
            v = pv.value
            e = pv.error
            tag = " (derived)" if pv.derived else (" (fixed)" if pv.fixed else "")
            if e is None:
                lines.append(f"  {name:>12s}: {float(v):.{digits}g}{tag}")
            elif compact:
                lines.append(
                    f"  {name:>12s}: {uncertainties.ufloat(float(v), float(e)):S}{tag}"
                )
            else:
                lines.append(
                    f"  {name:>12s}: {float(v):.{digits}g} ± {float(e):.{digits}g}{tag}"
                )
        return "\n".join(lines)


@dataclass(frozen=True)
class Run:
    model: Any  # Model
    results: Results
    backend: str
    data: Optional[StockRecruitData] = None
    success: bool = True
    message: str = ""

    def _param_map(self, which: str) -> ParamsView:
        if which == "fit":
            return self.results.params
        if which == "seed":
            if self.results.seed is None:
                raise ValueError("No seed parameters available on this Run.")
            return self.results.seed
        raise ValueError(f"Unknown value for 'which': {which!r}")

    def predict(
        self,
        S: Any,
        *,
        which: Literal["fit", "seed"] = "fit",
        params: Optional[Mapping[str, Any]] = None,
    ) -> np.ndarray:
        """Expected recruitment at `S` using fitted or seed parameters.

        which="fit"  -> use results.params
        which="seed" -> use results.seed
        params=...   -> explicit param mapping; 'which' must be "fit"
        """
        if params is not None and which != "fit":
            raise ValueError("Cannot pass explicit params when which != 'fit'.")
        p = self._param_map(which) if params is None else params
        fixed = {}
        if self.data is not None:
            fixed = self.data.fixed_values(self.model.fixed_inputs)
        values = {k: p[k] for k in self.model.param_names if k in p}
        return np.asarray(self.model.eval(S, params=values, **fixed), dtype=float)

    def nll(self, which: Literal["fit", "seed"] = "fit") -> float:
        """Re-evaluate the NLL of the stored data at fitted or seed parameters."""
        if self.data is None:
            raise ValueError("This Run carries no data.")
        p = self._param_map(which)
        values = {k: p[k] for k in self.model.param_names}
        return float(self.model.nll(self.data, params=values))
