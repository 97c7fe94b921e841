import numpy as np
from stockrecruit import StockRecruitData, models


# g is data: the smaller it is, the sharper the bend at delta.
g = 1.0
beta, delta = 0.5, 60.0

rng = np.random.default_rng(2)
S = np.linspace(5.0, 200.0, 40)
mu = models.hockey_stick_func(S, g, np.log(beta), np.log(delta))
R = np.asarray(mu) * np.exp(rng.normal(0.0, 0.2, size=S.size))
data = StockRecruitData.from_arrays(S, R, g=g)

run_log = models.hockey_stick().fit(data)
run_dir = models.hockey_stick_direct().fit(data)

print(run_log.results.summary())
print(run_dir.results.summary())

# Both parameterisations describe the same curve, so their optima agree.
print("nll (log)   :", run_log.results.nll)
print("nll (direct):", run_dir.results.nll)

# Above the breakpoint recruitment levels off near 2 * beta * delta.
res = run_log.results
print("plateau ~", 2.0 * np.exp(res["log_beta"].value) * res["delta"].value)
