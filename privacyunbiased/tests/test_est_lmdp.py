import warnings

import numpy as np
import pandas as pd
import pytest

from privacyunbiased.core import linalg as la
from privacyunbiased.core.design import ModelSpec, NoiseSpec, TransformedTerm
from privacyunbiased.core.exceptions import (
    ModelSpecError,
    NotPositiveDefiniteWarning,
    VarianceMethodError,
)
from privacyunbiased.estimators.base import BootConfig, EstimationResult, SimConfig
from privacyunbiased.estimators.lmdp import LMDP, lmdp, resolve_noise, select_variance_method
from privacyunbiased.sim.montecarlo import TRUE_COEFFICIENTS, simulate_dp_data

FAST_SIM = SimConfig(n_sims=500, seed=1)
FAST_BOOT = BootConfig(n_boot=50, seed=1)

# ---------------------------------------------------------------------
# Scenario: known coefficients, 100,000 rows
# ---------------------------------------------------------------------


@pytest.fixture(scope="module")
def large_fit():
    _, dp = simulate_dp_data(n_obs=100_000, seed=20240601)
    return lmdp("Y ~ X1 + X2 + X3", dp, sim=SimConfig(n_sims=1000, seed=7))


def test_recovers_true_slopes(large_fit):
    for name in ("X1", "X2", "X3"):
        assert abs(large_fit.params[name] - TRUE_COEFFICIENTS[name]) < 0.1
    b0 = large_fit.params["(Intercept)"]
    assert abs(b0 - TRUE_COEFFICIENTS["(Intercept)"]) < 5.0 * large_fit.se["(Intercept)"]


def test_naive_ols_is_attenuated(large_fit):
    naive = large_fit.extra["naive_params"]
    bias = [abs(naive[n] - TRUE_COEFFICIENTS[n]) for n in ("X1", "X2", "X3")]
    assert max(bias) > 0.1


def test_large_fit_metadata(large_fit):
    assert isinstance(large_fit, EstimationResult)
    assert large_fit.variance_method == "simulation"
    assert large_fit.n_draws == 1000
    assert large_fit.n_obs == 100_000
    assert large_fit.positive_definite
    info = large_fit.model_info
    assert info["noise_source"] == "row"
    assert info["noise"] == {"Y": 0.0, "X1": 0.7, "X2": 1.2, "X3": 1.0}
    assert info["dropped_stats"] == {"na": 0, "noise_row": 1}
    assert list(large_fit.params.index) == ["(Intercept)", "X1", "X2", "X3"]


# ---------------------------------------------------------------------
# Zero noise reduces to OLS
# ---------------------------------------------------------------------


def test_zero_noise_override_equals_ols(dp_small):
    private, _ = dp_small
    res = lmdp("Y ~ Z1 + Z2 + Z3", private, noise=0.0, sim=FAST_SIM)
    X = np.column_stack([np.ones(len(private)), private[["Z1", "Z2", "Z3"]].to_numpy()])
    ols = np.linalg.lstsq(X, private["Y"].to_numpy(), rcond=None)[0]
    assert np.allclose(res.params.to_numpy(), ols)
    assert np.allclose(res.params, res.extra["naive_params"])
    assert res.model_info["noise_source"] == "override"
    assert res.n_obs == len(private)
    # the variance comes from the simulation, not the classical OLS formula
    resid = private["Y"].to_numpy() - X @ ols
    classical = np.sum(resid**2) / (len(private) - 4) * np.linalg.inv(X.T @ X)
    assert not np.allclose(res.vcov.to_numpy(), classical)


def test_zero_noise_bootstrap_equals_ols(dp_small):
    private, _ = dp_small
    res = lmdp("Y ~ Z1 + Z2", private, noise=0.0, bootstrap_var=True, boot=FAST_BOOT)
    X = np.column_stack([np.ones(len(private)), private[["Z1", "Z2"]].to_numpy()])
    ols = np.linalg.lstsq(X, private["Y"].to_numpy(), rcond=None)[0]
    assert np.allclose(res.params.to_numpy(), ols)
    assert res.variance_method == "bootstrap"


# ---------------------------------------------------------------------
# Transformed terms
# ---------------------------------------------------------------------


def test_interaction_uses_bootstrap(dp_small):
    _, dp = dp_small
    res = lmdp("Y ~ X1 + X2 + X1:X2", dp, boot=FAST_BOOT)
    assert res.variance_method == "bootstrap"
    assert res.n_draws == 50
    assert list(res.params.index) == ["(Intercept)", "X1", "X2", "X1:X2"]
    assert np.all(res.se > 0.0)


def test_interaction_rejects_simulation(dp_small):
    _, dp = dp_small
    with pytest.raises(VarianceMethodError):
        lmdp("Y ~ X1 + X2 + X1:X2", dp, variance="simulation")


def test_square_term(dp_small):
    _, dp = dp_small
    res = lmdp("Y ~ X1 + X3 + I(X3**2)", dp, boot=FAST_BOOT)
    assert "I(X3^2)" in res.params.index
    assert res.variance_method == "bootstrap"
    # the true model has no curvature in X3
    assert abs(res.params["I(X3^2)"]) < 5.0 * res.se["I(X3^2)"]


def test_spec_and_formula_agree(dp_small):
    _, dp = dp_small
    spec = ModelSpec("Y", ("X1", "X2"), TransformedTerm.interaction("X1", "X2"))
    a = lmdp(spec, dp, boot=FAST_BOOT)
    b = lmdp("Y ~ X1*X2", dp, boot=FAST_BOOT)
    assert np.allclose(a.params.to_numpy(), b.params.to_numpy())
    assert np.allclose(a.vcov.to_numpy(), b.vcov.to_numpy())


# ---------------------------------------------------------------------
# Variance selection and reproducibility
# ---------------------------------------------------------------------


def test_select_variance_method():
    additive = ModelSpec("Y", ("X1",))
    inter = ModelSpec("Y", ("X1", "X2"), TransformedTerm.interaction("X1", "X2"))
    assert select_variance_method(additive) == "simulation"
    assert select_variance_method(additive, bootstrap_var=True) == "bootstrap"
    assert select_variance_method(additive, variance="Bootstrap") == "bootstrap"
    assert select_variance_method(inter) == "bootstrap"
    with pytest.raises(VarianceMethodError):
        select_variance_method(inter, variance="simulation")
    with pytest.raises(ModelSpecError, match="conflicts"):
        select_variance_method(additive, bootstrap_var=True, variance="simulation")
    with pytest.raises(ModelSpecError, match="variance must be one of"):
        select_variance_method(additive, variance="jackknife")


def test_seeded_fit_is_reproducible(dp_small):
    _, dp = dp_small
    a = lmdp("Y ~ X1 + X2", dp, sim=SimConfig(n_sims=300, seed=42))
    b = lmdp("Y ~ X1 + X2", dp, sim=SimConfig(n_sims=300, seed=42, n_jobs=2, chunk_size=1000))
    assert np.array_equal(a.vcov.to_numpy(), b.vcov.to_numpy())


def test_noise_kurtosis_only_affects_squares(dp_small):
    _, dp = dp_small
    g = lmdp("Y ~ X1 + X2", dp, sim=FAST_SIM)
    lap = lmdp("Y ~ X1 + X2", dp, sim=FAST_SIM, noise_kurtosis=6.0)
    assert np.allclose(g.params, lap.params)
    sq_g = lmdp("Y ~ X1 + I(X1^2)", dp, boot=FAST_BOOT)
    sq_l = lmdp("Y ~ X1 + I(X1^2)", dp, boot=FAST_BOOT, noise_kurtosis=6.0)
    assert not np.array_equal(sq_g.params.to_numpy(), sq_l.params.to_numpy())


# ---------------------------------------------------------------------
# Noise resolution
# ---------------------------------------------------------------------


def test_resolve_noise_row(dp_small):
    _, dp = dp_small
    noise, working, source = resolve_noise(dp, ModelSpec("Y", ("X1",)))
    assert source == "row"
    assert noise["X1"] == pytest.approx(0.7)
    assert len(working) == len(dp) - 1


def test_resolve_noise_override_keeps_rows(dp_small):
    _, dp = dp_small
    spec = ModelSpec("Y", ("X1", "X2"))
    noise, working, source = resolve_noise(dp, spec, 0.5)
    assert source == "override"
    assert noise.to_dict() == {"X1": 0.5, "X2": 0.5, "Y": 0.0}
    assert len(working) == len(dp)
    _, dropped, _ = resolve_noise(dp, spec, 0.5, drop_noise_row=True)
    assert len(dropped) == len(dp) - 1


def test_mapping_noise(dp_small):
    _, dp = dp_small
    model = LMDP(ModelSpec("Y", ("X1",)), dp, {"X1": 0.7}, drop_noise_row=True)
    assert np.allclose(model.variances, [0.49])
    assert model.noise_source == "spec"
    res = model.fit(sim=FAST_SIM)
    assert model.results is res
    assert model.params.equals(res.params)


def test_noise_spec_object(dp_small):
    _, dp = dp_small
    noise = NoiseSpec({"X1": 0.7, "X3": 1.0})
    res = lmdp("Y ~ X1 + X3", dp, noise=noise, drop_noise_row=True, sim=FAST_SIM)
    assert res.model_info["noise"] == {"Y": 0.0, "X1": 0.7, "X3": 1.0}


# ---------------------------------------------------------------------
# Positive-definiteness warnings
# ---------------------------------------------------------------------


def test_warns_when_bootstrap_projects(rng):
    n = 400
    df = pd.DataFrame({"y": rng.standard_normal(n), "x": rng.standard_normal(n)})
    with pytest.warns(NotPositiveDefiniteWarning, match="VC matrix not positive definite"):
        res = lmdp("y ~ x", df, noise=3.0, bootstrap_var=True, boot=BootConfig(n_boot=10, seed=1))
    assert not res.positive_definite
    assert res.extra["n_projections"] == 10
    assert not res.extra["moments_positive_definite"]
    assert "False" in res.summary()


def test_warns_when_simulation_projects(dp_small, monkeypatch):
    _, dp = dp_small
    monkeypatch.setattr(la, "is_positive_definite", lambda *args, **kwargs: False)
    with pytest.warns(NotPositiveDefiniteWarning):
        res = lmdp("Y ~ X1 + X2", dp, sim=FAST_SIM)
    assert not res.positive_definite
    assert res.extra["n_projections"] == 1


def test_no_warning_on_regular_fit(dp_small):
    _, dp = dp_small
    with warnings.catch_warnings():
        warnings.simplefilter("error", NotPositiveDefiniteWarning)
        res = lmdp("Y ~ X1 + X2 + X3", dp, sim=FAST_SIM)
    assert res.positive_definite
    assert res.extra["n_projections"] == 0


# ---------------------------------------------------------------------
# Result container
# ---------------------------------------------------------------------


def test_conf_int(dp_small):
    _, dp = dp_small
    res = lmdp("Y ~ X1", dp, sim=FAST_SIM)
    ci = res.conf_int(0.95)
    assert np.allclose(ci["upper"] - res.params, 1.959963984540054 * res.se)
    ci90 = res.conf_int(90)
    assert np.all(ci90["upper"] < ci["upper"])


def test_result_is_read_only(dp_small):
    _, dp = dp_small
    res = lmdp("Y ~ X1", dp, sim=FAST_SIM)
    with pytest.raises(TypeError):
        res.model_info["variance_method"] = "bootstrap"
    with pytest.raises(AttributeError):
        res.positive_definite = False


def test_unfitted_model_raises(dp_small):
    _, dp = dp_small
    model = LMDP.from_formula("Y ~ X1", dp)
    with pytest.raises(RuntimeError, match="not been fitted"):
        _ = model.params
