import jax.numpy as jnp
import numpy as np

from stockrecruit import models


# Reported quantities get delta-method standard errors through autodiff.
model = models.beverton_holt().derive(
    "s_half",
    lambda p: jnp.exp(-p["log_b"]),
    doc="Biomass giving half of the asymptotic recruitment",
)

rng = np.random.default_rng(0)
S = np.linspace(5.0, 300.0, 35)
R = np.asarray(model.eval(S, log_a=np.log(1.5), log_b=np.log(0.02))) * np.exp(
    rng.normal(0.0, 0.2, size=S.size)
)

res = model.fit(S, R).results
print("s_half:", res["s_half"].value, "±", res["s_half"].stderr)
print("derived:", res["s_half"].derived)

# Correlated uncertainties: log(a / b) from the fitted logs.
ua, ub = res["log_a"].u, res["log_b"].u
print("log(a/b) =", ua - ub)
print("rmax     =", res["rmax"].value, "±", res["rmax"].stderr)
