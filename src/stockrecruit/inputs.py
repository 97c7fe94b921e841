from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Mapping, Optional

import numpy as np


@dataclass(frozen=True)
class StockRecruitData:
    """Paired spawning biomass / recruitment observations.

    S, R and weights are aligned 1D float arrays. weights defaults to ones.
    g is the hockey-stick smoothness constant; it is data, never estimated,
    and only the hockey-stick curves read it.

    Positivity of S and R is not checked here: non-positive values simply
    give a non-finite likelihood.
    """

    S: np.ndarray
    R: np.ndarray
    weights: np.ndarray
    g: Optional[float] = None

    label: Optional[str] = None
    meta: Dict[str, Any] = field(default_factory=dict)

    @staticmethod
    def from_arrays(
        S: Any,
        R: Any,
        weights: Optional[Any] = None,
        *,
        g: Optional[float] = None,
        label: Optional[str] = None,
        meta: Optional[Mapping[str, Any]] = None,
    ) -> "StockRecruitData":
        """Build an observation set, broadcasting scalar weights."""
        s = np.asarray(S, dtype=float).reshape(-1)
        r = np.asarray(R, dtype=float).reshape(-1)
        if s.shape != r.shape:
            raise ValueError(
                f"S and R must have the same length; got {s.size} and {r.size}."
            )
        if weights is None:
            w = np.ones_like(s)
        else:
            w = np.asarray(weights, dtype=float)
            if w.shape == ():
                w = np.full_like(s, float(w))
            w = w.reshape(-1)
            if w.shape != s.shape:
                raise ValueError(
                    f"weights must match S/R length {s.size}; got {w.size}."
                )
        return StockRecruitData(
            S=s,
            R=r,
            weights=w,
            g=None if g is None else float(g),
            label=label,
            meta=dict(meta or {}),
        )

    @property
    def n(self) -> int:
        return int(self.S.shape[0])

    def with_weights(self, weights: Any) -> "StockRecruitData":
        """Return a copy with new observation weights."""
        return StockRecruitData.from_arrays(
            self.S, self.R, weights, g=self.g, label=self.label, meta=self.meta
        )

    def fixed_values(self, names: Any) -> Dict[str, float]:
        """Return the fixed data scalars requested by a curve (e.g. ("g",))."""
        out: Dict[str, float] = {}
        for name in names:
            value = getattr(self, name, None)
            if value is None:
                raise TypeError(
                    f"This curve needs fixed input {name!r}; "
                    f"pass it via StockRecruitData.from_arrays(..., {name}=...)."
                )
            out[name] = float(value)
        return out
