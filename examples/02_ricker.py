import numpy as np
from stockrecruit import models


model = models.ricker()

rng = np.random.default_rng(1)
S = rng.uniform(1.0, 40.0, size=40)
R = np.asarray(model.eval(S, a=5.0, b=0.08)) * np.exp(rng.normal(0.0, 0.3, size=S.size))

run = model.fit(S, R)
res = run.results

print(res.summary(compact=True))
print("peak biomass 1/b =", 1.0 / res["b"].value)

# Expected recruitment on a grid, at the fitted and at the seed parameters.
Sg = np.linspace(0.0, 60.0, 7)
print("fit :", run.predict(Sg))
print("seed:", run.predict(Sg, which="seed"))
