import numpy as np
import pytest

import privacyunbiased as pu


def test_lazy_exports():
    for name in ("LMDP", "lmdp", "ModelSpec", "NoiseSpec", "SimConfig", "BootConfig", "simulate_dp_data"):
        assert name in dir(pu)
        assert getattr(pu, name) is not None
    with pytest.raises(AttributeError):
        _ = pu.not_a_name


def test_exception_hierarchy():
    assert issubclass(pu.NoiseSpecError, ValueError)
    assert issubclass(pu.MultipleTransformationsError, pu.ModelSpecError)
    assert issubclass(pu.SingularMomentError, np.linalg.LinAlgError)
    assert issubclass(pu.NotPositiveDefiniteWarning, RuntimeWarning)


def test_simulate_dp_data_layout():
    private, dp = pu.simulate_dp_data(50, seed=3)
    assert list(private.columns) == ["Y", "Z1", "Z2", "Z3"]
    assert list(dp.columns) == ["Y", "X1", "X2", "X3"]
    assert len(private) == 50
    assert len(dp) == 51
    assert dp.iloc[0].to_dict() == {"Y": 0.0, "X1": 0.7, "X2": 1.2, "X3": 1.0}
    assert np.allclose(dp["Y"].iloc[1:].to_numpy(), private["Y"].to_numpy())
    again, _ = pu.simulate_dp_data(50, seed=3)
    assert private.equals(again)


def test_simulate_dp_data_custom_noise():
    _, dp = pu.simulate_dp_data(20, seed=1, noise_sd={"X1": 0.0})
    assert dp.loc[0, "X1"] == 0.0


def test_end_to_end_formula_fit():
    _, dp = pu.simulate_dp_data(3_000, seed=8)
    model = pu.LMDP.from_formula("Y ~ X1 + X2 + X3", dp)
    res = model.fit(sim=pu.SimConfig(n_sims=200, seed=1))
    assert res.model_info["Estimator"] == "LMDP"
    assert np.all(np.isfinite(res.params))
    assert np.all(res.se > 0)


def test_bias_study_small():
    table = pu.bias_study(n_reps=5, n_obs=500, seed=1)
    assert list(table.index) == ["(Intercept)", "X1", "X2", "X3"]
    assert {"corrected_mean", "naive_mean", "corrected_rmse", "naive_rmse"} <= set(table.columns)
