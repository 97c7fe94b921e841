import numpy as np
from stockrecruit import StockRecruitData, models


model = models.beverton_holt()

rng = np.random.default_rng(0)
S = np.linspace(5.0, 200.0, 30)
R_true = model.eval(S, log_a=np.log(2.0), log_b=np.log(0.01))
R = np.asarray(R_true) * np.exp(rng.normal(0.0, 0.25, size=S.size))

data = StockRecruitData.from_arrays(S, R, label="simulated stock")
run = model.fit(data)
res = run.results

print("success:", run.success, run.message)
print("a    =", np.exp(res["log_a"].value))
print("b    =", np.exp(res["log_b"].value))
print("rmax =", res["rmax"].value, "±", res["rmax"].stderr)
print("sd   =", res["sd"].value, "±", res["sd"].stderr)
print(res.summary(digits=4))
