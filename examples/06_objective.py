import numpy as np
from stockrecruit import StockRecruitData, models


# The objective alone: NLL, gradient, Hessian and Hessian-vector products
# of the free-parameter vector, all by automatic differentiation.
data = StockRecruitData.from_arrays(
    S=[10.0, 40.0, 80.0, 120.0, 160.0],
    R=[18.0, 45.0, 62.0, 58.0, 71.0],
    weights=[1.0, 1.0, 1.0, 0.5, 1.0],
)
model = models.beverton_holt()
obj = model.objective(data)

theta = np.array([np.log(2.0), np.log(0.02), np.log(0.3)])
print("free :", obj.free_names)
print("nll  :", obj.value(theta))
print("grad :", obj.grad(theta))
print("hess :\n", obj.hessian(theta))
print("H @ v:", obj.hvp(theta, np.array([1.0, 0.0, 0.0])))
print("report:", obj.report(theta))
