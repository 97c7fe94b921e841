import numpy as np
from stockrecruit import models


model = models.beverton_holt().bound(
    log_a=(-5.0, 5.0), log_b=(-10.0, 0.0), log_sd=(-5.0, 2.0)
)

rng = np.random.default_rng(5)
S = np.linspace(1.0, 100.0, 50)
R = np.asarray(model.eval(S, log_a=0.5, log_b=-4.0)) * np.exp(
    rng.normal(0.0, 0.3, size=S.size)
)

run_lbfgs = model.fit(S, R)
run_newton = model.fit(S, R, backend_options={"method": "trust-ncg"})
run_de = model.fit(
    S, R, backend="scipy.differential_evolution", backend_options={"seed": 0}
)
run_pipe = model.fit(
    S,
    R,
    backend=("scipy.differential_evolution", "scipy.minimize"),
    backend_options={"seed": 0},
)

for label, run in [
    ("L-BFGS-B", run_lbfgs),
    ("trust-ncg (hvp)", run_newton),
    ("differential evolution", run_de),
    ("pipeline", run_pipe),
]:
    r = run.results
    print(
        f"{label:>24s}: nll={r.nll:.6f} log_a={r['log_a'].value:.4f} "
        f"nfev={r.stats.get('nfev')}"
    )
