from __future__ import annotations

import jax.numpy as jnp
import numpy as np

from ..model import Model
from ._seeding import init_log_sd


def ricker_func(S, a, b):
    """Ricker: mu = a S exp(-b S). a and b are used as-is (any real value)."""
    return a * S * jnp.exp(-b * S)


def ricker(*, name: str = "Ricker") -> Model:
    """Return a Ricker Model.

    a and b are deliberately left untransformed: b may sit near zero or
    change sign during exploratory fits. A non-positive a gives a
    non-finite likelihood, which the fit backends treat as a rejected
    trial point.

    Reported
    --------
    sd : exp(log_sd)
    """
    base = Model.from_function(ricker_func, name=name)

    def init_ricker(S, R, guess):
        """Linear regression of log(R/S) on S: log(R/S) = log(a) - b S."""
        ok = (S > 0) & (R > 0)
        s = S[ok]
        if s.size == 0:
            return
        y = np.log(R[ok] / s)
        if s.size >= 2 and float(np.ptp(s)) > 0:
            slope, intercept = np.polyfit(s, y, 1)
        else:
            slope, intercept = 0.0, float(np.mean(y))
        if guess.is_unset("a"):
            guess.a = float(np.exp(intercept))
        if guess.is_unset("b"):
            guess.b = float(-slope)
        if guess.is_unset("log_sd"):
            resid = y - (intercept + slope * s)
            spread = float(np.std(resid)) if s.size > 2 else 0.0
            if spread > 0:
                guess.log_sd = float(np.log(spread))

    return base.with_guesser(init_ricker).with_guesser(init_log_sd)
