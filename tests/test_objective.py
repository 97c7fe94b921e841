import numpy as np
import pytest

from stockrecruit import StockRecruitData, build_objective, models


def _data(g=None):
    S = np.array([0.5, 1.0, 2.0, 3.5, 5.0, 7.0, 9.0])
    R = np.array([0.4, 0.9, 1.3, 1.9, 2.0, 2.1, 1.8])
    w = np.array([1.0, 1.0, 0.5, 1.0, 2.0, 1.0, 1.0])
    return StockRecruitData.from_arrays(S, R, w, g=g)


CASES = [
    (models.beverton_holt, None, [0.2, -1.0, -0.5]),
    (models.ricker, None, [1.1, 0.08, -0.3]),
    (models.hockey_stick, 0.5, [np.log(0.3), np.log(4.0), -0.2]),
    (models.hockey_stick_direct, 0.5, [0.3, 4.0, -0.2]),
]
CASE_IDS = ["beverton_holt", "ricker", "hockey_stick", "hockey_stick_direct"]


def _central_grad(f, x, h=1e-6):
    x = np.asarray(x, dtype=float)
    out = np.empty_like(x)
    for i in range(x.size):
        e = np.zeros_like(x)
        e[i] = h
        out[i] = (f(x + e) - f(x - e)) / (2.0 * h)
    return out


@pytest.mark.parametrize("factory, g, theta", CASES, ids=CASE_IDS)
def test_gradient_matches_finite_differences(factory, g, theta):
    obj = factory().objective(_data(g))
    grad = obj.grad(theta)
    np.testing.assert_allclose(grad, _central_grad(obj.value, theta), rtol=1e-5, atol=1e-7)


@pytest.mark.parametrize("factory, g, theta", CASES, ids=CASE_IDS)
def test_hvp_matches_dense_hessian(factory, g, theta):
    obj = factory().objective(_data(g))
    v = np.array([0.3, -1.2, 0.7])
    np.testing.assert_allclose(obj.hvp(theta, v), obj.hessian(theta) @ v, rtol=1e-10, atol=1e-12)
    hess = obj.hessian(theta)
    np.testing.assert_allclose(hess, hess.T, rtol=1e-10, atol=1e-12)


@pytest.mark.parametrize("factory, g, theta", CASES, ids=CASE_IDS)
def test_objective_value_matches_model_nll(factory, g, theta):
    model = factory()
    data = _data(g)
    obj = model.objective(data)
    params = dict(zip(obj.free_names, theta))

    assert obj.value(theta) == pytest.approx(float(model.nll(data, params=params)), rel=1e-14)
    f, grad = obj.value_and_grad(theta)
    assert f == pytest.approx(obj(theta))
    np.testing.assert_allclose(grad, obj.grad(theta))


def test_parameter_domains():
    assert models.beverton_holt().domain() == {"log_a": "log", "log_b": "log", "log_sd": "log"}
    assert models.ricker().domain() == {"a": "real", "b": "real", "log_sd": "log"}
    assert models.hockey_stick().domain() == {
        "log_beta": "log",
        "log_delta": "log",
        "log_sd": "log",
    }
    assert models.hockey_stick_direct().domain() == {
        "beta": "real",
        "delta": "real",
        "log_sd": "log",
    }


def test_fixed_inputs():
    assert models.beverton_holt().fixed_inputs == ()
    assert models.ricker().fixed_inputs == ()
    assert models.hockey_stick().fixed_inputs == ("g",)
    assert models.hockey_stick_direct().fixed_inputs == ("g",)


def test_report_and_delta_method_stderr():
    obj = models.ricker().objective(_data())
    theta = np.array([1.1, 0.08, -0.3])
    cov = np.diag([0.04, 0.0001, 0.01])

    rep = obj.report(theta)
    assert rep["sd"] == pytest.approx(np.exp(-0.3), rel=1e-14)

    sd, sd_err = obj.sdreport(theta, cov)["sd"]
    assert sd == pytest.approx(np.exp(-0.3), rel=1e-14)
    # d sd / d log_sd = sd
    assert sd_err == pytest.approx(np.exp(-0.3) * 0.1, rel=1e-12)


def test_user_derived_quantity_is_reported():
    model = models.ricker().derive("s_peak", lambda p: 1.0 / p["b"], doc="Biomass at peak")
    obj = model.objective(_data())
    theta = np.array([1.1, 0.08, -0.3])
    cov = np.diag([0.04, 0.0001, 0.01])

    value, err = obj.sdreport(theta, cov)["s_peak"]
    assert value == pytest.approx(12.5)
    # |d(1/b)/db| * stderr(b) = (1/b^2) * 0.01
    assert err == pytest.approx(0.01 / 0.08**2, rel=1e-12)


def test_fixed_parameters_drop_out_of_theta():
    model = models.beverton_holt().fix(log_b=-1.0)
    obj = model.objective(_data())
    assert obj.free_names == ("log_a", "log_sd")
    assert obj.params([0.2, -0.5]) == {"log_a": 0.2, "log_b": -1.0, "log_sd": -0.5}

    full = models.beverton_holt().objective(_data())
    assert obj.value([0.2, -0.5]) == pytest.approx(full.value([0.2, -1.0, -0.5]))


def test_build_objective_accepts_explicit_split():
    model = models.beverton_holt()
    obj = build_objective(
        model, _data(), free_names=["log_a", "log_b"], fixed_map={"log_sd": 0.0}
    )
    assert obj.free_names == ("log_a", "log_b")
    assert obj.grad([0.0, 0.0]).shape == (2,)


def test_wrong_theta_shape_raises():
    obj = models.beverton_holt().objective(_data())
    with pytest.raises(ValueError, match="Expected 3 free parameters"):
        obj.value([0.0, 0.0])


def test_objective_is_reusable_across_points():
    obj = models.beverton_holt().objective(_data())
    a = obj.value([0.0, 0.0, 0.0])
    obj.value([1.0, -2.0, 0.5])
    assert obj.value([0.0, 0.0, 0.0]) == a


@pytest.mark.parametrize("factory, g, theta", CASES, ids=CASE_IDS)
def test_value_batch_matches_pointwise_values(factory, g, theta):
    obj = factory().objective(_data(g))
    thetas = np.array([theta, np.asarray(theta) + 0.05, np.asarray(theta) - 0.1])

    batch = obj.value_batch(thetas)
    assert batch.shape == (3,)
    np.testing.assert_allclose(batch, [obj.value(t) for t in thetas], rtol=1e-12)


def test_value_batch_keeps_nonfinite_rows():
    obj = models.ricker().objective(_data())
    batch = obj.value_batch([[1.1, 0.08, -0.3], [-1.0, 0.08, -0.3]])
    assert np.isfinite(batch[0])
    assert not np.isfinite(batch[1])

    with pytest.raises(ValueError, match="Expected shape"):
        obj.value_batch([1.1, 0.08, -0.3])
