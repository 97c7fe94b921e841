"""Smooth hockey-stick recruitment curves.

The curve is

    mu(S) = beta * [S + sqrt(delta^2 + g^2/4) - sqrt((S - delta)^2 + g^2/4)]

with g a fixed smoothness constant taken from the data. mu(0) = 0 for any
g, d mu / dS is non-increasing in S, and as g -> 0 the curve converges
(within beta * g / 2) to the broken line 2 * beta * min(S, delta): slope
2 * beta up to the breakpoint delta, flat at 2 * beta * delta above it.

Two parameterisations are offered. `hockey_stick` estimates log_beta and
log_delta, so both stay positive by construction. `hockey_stick_direct`
estimates beta and delta as-is; beta enters the likelihood through
log(beta) and must stay positive along the optimiser's path.
"""

from __future__ import annotations

import jax.numpy as jnp
import numpy as np

from ..model import Model
from ._seeding import init_log_sd


def hockey_stick_shape(S, delta, g):
    """Bracketed term of the smooth hockey stick (mu / beta)."""
    c = g * g / 4.0
    return S + jnp.sqrt(delta * delta + c) - jnp.sqrt((S - delta) ** 2 + c)


# --- log-parameterised -------------------------------------------------------


def hockey_stick_func(S, g, log_beta, log_delta):
    return jnp.exp(log_beta) * hockey_stick_shape(S, jnp.exp(log_delta), g)


def hockey_stick_log_func(S, g, log_beta, log_delta):
    return log_beta + jnp.log(hockey_stick_shape(S, jnp.exp(log_delta), g))


# --- direct -------------------------------------------------------------------


def hockey_stick_direct_func(S, g, beta, delta):
    return beta * hockey_stick_shape(S, delta, g)


def hockey_stick_direct_log_func(S, g, beta, delta):
    return jnp.log(beta) + jnp.log(hockey_stick_shape(S, delta, g))


def _breakpoint_guess(S, R):
    """Breakpoint at median biomass; slope from the points below it."""
    ok = (S > 0) & (R > 0)
    s = S[ok]
    r = R[ok]
    if s.size == 0:
        return None
    delta = float(np.median(s))
    low = s <= delta
    # The broken-line limit has slope 2 * beta.
    beta = 0.5 * float(np.median(r[low] / s[low]))
    return beta, delta


def hockey_stick(*, name: str = "hockey stick") -> Model:
    """Return the log-parameterised smooth hockey-stick Model.

    Parameters in the model
    -----------------------
    log_beta  : log of the slope scale
    log_delta : log of the breakpoint biomass
    log_sd    : log of the residual sd of log recruitment

    Fixed input: g (StockRecruitData.g)
    """
    base = Model.from_function(
        hockey_stick_func,
        name=name,
        log_func=hockey_stick_log_func,
        fixed_inputs=("g",),
        domains={"log_beta": "log", "log_delta": "log"},
    )

    def init_hockey_stick(S, R, guess):
        bd = _breakpoint_guess(S, R)
        if bd is None:
            return
        beta, delta = bd
        if guess.is_unset("log_beta"):
            guess.log_beta = float(np.log(beta))
        if guess.is_unset("log_delta"):
            guess.log_delta = float(np.log(delta))

    return (
        base.with_guesser(init_hockey_stick)
        .with_guesser(init_log_sd)
        .derive("delta", lambda p: jnp.exp(p["log_delta"]), doc="Breakpoint biomass")
    )


def hockey_stick_direct(*, name: str = "hockey stick (direct)") -> Model:
    """Return the directly-parameterised smooth hockey-stick Model.

    Parameters in the model
    -----------------------
    beta   : slope scale (must stay > 0; not enforced)
    delta  : breakpoint biomass
    log_sd : log of the residual sd of log recruitment

    Fixed input: g (StockRecruitData.g)
    """
    base = Model.from_function(
        hockey_stick_direct_func,
        name=name,
        log_func=hockey_stick_direct_log_func,
        fixed_inputs=("g",),
    )

    def init_hockey_stick_direct(S, R, guess):
        bd = _breakpoint_guess(S, R)
        if bd is None:
            return
        beta, delta = bd
        if guess.is_unset("beta"):
            guess.beta = beta
        if guess.is_unset("delta"):
            guess.delta = delta

    return base.with_guesser(init_hockey_stick_direct).with_guesser(init_log_sd)
