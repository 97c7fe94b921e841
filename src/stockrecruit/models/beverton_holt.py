from __future__ import annotations

import jax.numpy as jnp
import numpy as np

from ..model import Model
from ._seeding import init_log_sd


def beverton_holt_func(S, log_a, log_b):
    """Beverton-Holt: mu = a S / (1 + b S), with a = exp(log_a), b = exp(log_b)."""
    a = jnp.exp(log_a)
    b = jnp.exp(log_b)
    return a * S / (1.0 + b * S)


def beverton_holt(*, name: str = "Beverton-Holt") -> Model:
    """Return a Beverton-Holt Model.

    Parameters in the model
    -----------------------
    log_a  : log of the slope at the origin (recruits per unit biomass)
    log_b  : log of the density-dependence strength
    log_sd : log of the residual sd of log recruitment

    Reported
    --------
    sd : exp(log_sd)
    rmax : asymptotic recruitment a / b
    """
    base = Model.from_function(
        beverton_holt_func,
        name=name,
        domains={"log_a": "log", "log_b": "log"},
    )

    def init_beverton_holt(S, R, guess):
        """Slope from the lowest-biomass points, asymptote from the largest recruitment."""
        if S.size == 0:
            return
        ok = (S > 0) & (R > 0)
        if not np.any(ok):
            return
        s = S[ok]
        r = R[ok]

        # Asymptote a/b: a little above the largest observed recruitment.
        rmax = 1.2 * float(np.max(r))
        # Initial slope: median R/S over the lower half of biomass.
        low = s <= np.median(s)
        a = float(np.median(r[low] / s[low]))
        if guess.is_unset("log_a"):
            guess.log_a = float(np.log(a))
        if guess.is_unset("log_b"):
            guess.log_b = float(np.log(a / rmax))

    return (
        base.with_guesser(init_beverton_holt)
        .with_guesser(init_log_sd)
        .derive(
            "rmax",
            lambda p: jnp.exp(p["log_a"] - p["log_b"]),
            doc="Asymptotic recruitment a / b",
        )
    )
