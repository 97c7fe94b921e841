import jax.numpy as jnp
import numpy as np
import pytest

from stockrecruit import Model, StockRecruitData, models

TIGHT = {"options": {"ftol": 1e-14, "gtol": 1e-9, "maxiter": 2000}}


def _simulate(mu, S, sd, seed):
    rng = np.random.default_rng(seed)
    return mu(S) * np.exp(rng.normal(0.0, sd, size=S.shape))


def test_beverton_holt_recovers_parameters():
    S = np.linspace(1.0, 100.0, 60)
    R = _simulate(lambda s: 3.0 * s / (1.0 + 0.02 * s), S, 0.2, seed=0)

    run = models.beverton_holt().fit(S, R)
    res = run.results

    assert run.success
    for name, true in (("log_a", np.log(3.0)), ("log_b", np.log(0.02))):
        pv = res[name]
        assert pv.stderr is not None and pv.stderr < 0.5
        assert abs(pv.value - true) < 4.0 * pv.stderr
    assert res["sd"].value == pytest.approx(0.2, abs=0.06)
    assert res["rmax"].derived


def test_sd_estimate_and_stderr_have_closed_forms_at_optimum():
    S = np.linspace(1.0, 100.0, 60)
    R = _simulate(lambda s: 3.0 * s / (1.0 + 0.02 * s), S, 0.2, seed=1)
    data = StockRecruitData.from_arrays(S, R)
    model = models.beverton_holt()

    run = model.fit(data, backend_options=TIGHT)
    res = run.results
    n = data.n

    resid = np.log(R) - np.log(run.predict(S))
    assert res["sd"].value == pytest.approx(np.sqrt(np.mean(resid**2)), rel=1e-5)

    # The Hessian is block-diagonal in log_sd at the optimum: var(log_sd) = 1 / (2n).
    assert res["log_sd"].stderr == pytest.approx(1.0 / np.sqrt(2.0 * n), rel=1e-3)
    assert res["sd"].stderr == pytest.approx(res["sd"].value / np.sqrt(2.0 * n), rel=1e-3)

    grad = model.objective(data).grad([res["log_a"].value, res["log_b"].value, res["log_sd"].value])
    assert np.max(np.abs(grad)) < 1e-4


def test_ricker_recovers_parameters():
    S = np.linspace(0.5, 20.0, 50)
    R = _simulate(lambda s: 4.0 * s * np.exp(-0.2 * s), S, 0.15, seed=2)

    run = models.ricker().fit(S, R)
    res = run.results

    assert run.success
    assert abs(res["a"].value - 4.0) < 4.0 * res["a"].stderr
    assert abs(res["b"].value - 0.2) < 4.0 * res["b"].stderr
    assert res["sd"].value == pytest.approx(0.15, abs=0.05)


@pytest.mark.parametrize("factory", [models.hockey_stick, models.hockey_stick_direct])
def test_hockey_stick_recovers_breakpoint(factory):
    beta, delta, g = 1.0, 6.0, 0.1
    S = np.linspace(0.5, 15.0, 80)

    def mu(s):
        c = g * g / 4.0
        return beta * (s + np.sqrt(delta**2 + c) - np.sqrt((s - delta) ** 2 + c))

    R = _simulate(mu, S, 0.1, seed=3)
    data = StockRecruitData.from_arrays(S, R, g=g)

    run = factory().fit(data)
    res = run.results

    assert run.success
    assert res["delta"].value == pytest.approx(delta, rel=0.1)
    assert res["sd"].value == pytest.approx(0.1, abs=0.04)


def test_weighted_fit_ignores_zero_weight_outlier():
    S = np.linspace(1.0, 50.0, 30)
    R = 2.0 * S / (1.0 + 0.05 * S)
    R_bad = R.copy()
    R_bad[5] *= 50.0
    w = np.ones_like(S)
    w[5] = 0.0

    model = models.beverton_holt().fix(log_sd=np.log(0.1))
    clean = model.fit(S, R, backend_options=TIGHT).results
    masked = model.fit(S, R_bad, w, backend_options=TIGHT).results

    assert masked["log_a"].value == pytest.approx(clean["log_a"].value, abs=1e-4)
    assert masked["log_b"].value == pytest.approx(clean["log_b"].value, abs=1e-4)


def test_differential_evolution_backend_and_nonfinite_rejection():
    S = np.linspace(0.5, 20.0, 40)
    R = _simulate(lambda s: 4.0 * s * np.exp(-0.2 * s), S, 0.15, seed=4)

    model = models.ricker().bound(a=(-5.0, 10.0), b=(-0.1, 1.0), log_sd=(-5.0, 1.0))
    with pytest.warns(UserWarning, match="non-finite NLL"):
        run = model.fit(
            S,
            R,
            backend="scipy.differential_evolution",
            backend_options={"maxiter": 200, "popsize": 20, "seed": 0, "tol": 1e-8},
        )

    res = run.results
    assert res.backend == "scipy.differential_evolution"
    assert res.stats["nonfinite_evals"] > 0
    assert np.isfinite(res.nll)
    assert res["a"].value == pytest.approx(4.0, rel=0.25)
    assert res.cov is not None


def test_backend_pipeline_records_steps():
    S = np.linspace(0.5, 20.0, 40)
    R = _simulate(lambda s: 4.0 * s * np.exp(-0.2 * s), S, 0.15, seed=5)

    model = models.ricker().bound(a=(0.1, 10.0), b=(0.0, 1.0), log_sd=(-5.0, 1.0))
    run = model.fit(
        S,
        R,
        backend=("scipy.differential_evolution", "scipy.minimize"),
        backend_options={"maxiter": 30, "popsize": 10, "seed": 0},
    )

    assert run.success
    stats = run.results.stats
    assert [p["backend"] for p in stats["pipeline"]] == [
        "scipy.differential_evolution",
        "scipy.minimize",
    ]


def test_newton_method_uses_hessian_vector_products():
    S = np.linspace(1.0, 100.0, 60)
    R = _simulate(lambda s: 3.0 * s / (1.0 + 0.02 * s), S, 0.2, seed=6)

    lbfgs = models.beverton_holt().fit(S, R, backend_options=TIGHT).results
    newton = models.beverton_holt().fit(
        S, R, backend_options={"method": "trust-ncg", "options": {"gtol": 1e-10}}
    ).results

    assert newton.stats["method"] == "trust-ncg"
    assert newton.nll == pytest.approx(lbfgs.nll, abs=1e-6)


def test_fit_that_never_leaves_rejected_seed_fails():
    S = np.linspace(0.5, 20.0, 10)
    R = 4.0 * S * np.exp(-0.2 * S)
    with pytest.warns(UserWarning, match="non-finite NLL"):
        run = models.ricker().fit(S, R, seed_override={"a": -1.0})

    assert run.success is False
    assert "not finite" in run.message
    assert not np.isfinite(run.results.nll)
    assert run.results.cov is None
    assert run.results.stats["nonfinite_evals"] >= 1


def test_nonfinite_gradient_is_counted_as_rejection():
    def root_curve(S, k):
        return S * (1.0 + jnp.sqrt(k))

    S = np.linspace(1.0, 10.0, 12)
    R = 1.5 * S
    # d sqrt(k) / dk is infinite at k = 0 while the NLL itself is finite.
    model = Model.from_function(root_curve).guess(k=0.0, log_sd=0.0)
    assert np.isfinite(model.objective(StockRecruitData.from_arrays(S, R)).value([0.0, 0.0]))

    with pytest.warns(UserWarning, match="rejected"):
        run = model.fit(S, R)
    assert run.results.stats["nonfinite_evals"] >= 1


def test_differential_evolution_rejects_workers():
    S = np.linspace(0.5, 20.0, 10)
    R = 4.0 * S * np.exp(-0.2 * S)
    model = models.ricker().bound(a=(0.1, 10.0), b=(0.0, 1.0), log_sd=(-5.0, 1.0))
    with pytest.raises(ValueError, match="workers"):
        model.fit(
            S,
            R,
            backend="scipy.differential_evolution",
            backend_options={"workers": 2, "updating": "deferred"},
        )


def test_nonfinite_seed_warns():
    S = np.linspace(0.5, 20.0, 10)
    R = 4.0 * S * np.exp(-0.2 * S)
    with pytest.warns(UserWarning, match="seed is not finite"):
        models.ricker().fit(S, R, seed_override={"a": -1.0}, optimise=False)


def test_differential_evolution_requires_finite_bounds():
    S = np.linspace(0.5, 20.0, 10)
    R = 4.0 * S * np.exp(-0.2 * S)
    with pytest.raises(ValueError, match="requires finite bounds"):
        models.ricker().fit(S, R, backend="scipy.differential_evolution")


def test_unknown_backend_raises():
    with pytest.raises(ValueError, match="Unknown backend"):
        models.ricker().fit([1.0, 2.0], [1.0, 1.5], backend="nope")
