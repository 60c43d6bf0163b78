import numpy as np
import pandas as pd
import pytest

from occupancy_closure.config import CoefficientConfig, FitConfig
from occupancy_closure.diagnostics import COEFFICIENT_NAMES, parameter_recovery
from occupancy_closure.fit import (
    _neg_loglike_and_grad,
    design_matrices,
    fit_occupancy,
    parse_formula,
    site_occupancy_posterior,
)
from occupancy_closure.io import OccupancyData, survey_to_data
from occupancy_closure.likelihoods import site_loglike, total_loglike
from occupancy_closure.rng import get_rng
from occupancy_closure.simulate import generate_survey


def _small_data(n_pt: int = 40, n_rep: int = 3, seed: int = 0) -> OccupancyData:
    survey = generate_survey(n_pt, n_rep, CoefficientConfig(), get_rng(seed))
    return survey_to_data(survey)


def test_site_loglike_hand_computed():
    obs = np.array([[1.0, 0.0], [0.0, 0.0], [0.0, np.nan]])
    ll = site_loglike(obs, np.zeros(3), np.zeros((3, 2)))
    # psi = theta = 0.5
    assert np.allclose(np.exp(ll), [0.125, 0.625, 0.75])


def test_site_loglike_finite_at_extremes():
    obs = np.array([[1.0, 0.0], [0.0, 0.0]])
    ll = site_loglike(obs, np.array([-1000.0, 1000.0]), np.full((2, 2), -1000.0))
    assert np.all(np.isfinite(ll))


def test_detection_makes_unoccupied_impossible():
    obs = np.array([[0.0, 1.0]])
    ll_low = total_loglike(obs, np.array([-8.0]), np.zeros((1, 2)))
    ll_high = total_loglike(obs, np.array([8.0]), np.zeros((1, 2)))
    assert ll_high > ll_low


def test_parse_formula():
    assert parse_formula("~ pt_cov + event_cov") == ["pt_cov", "event_cov"]
    assert parse_formula("~1") == []
    assert parse_formula("~ 1 + pt_cov") == ["pt_cov"]
    with pytest.raises(ValueError):
        parse_formula("pt_cov")
    with pytest.raises(ValueError):
        parse_formula("~ pt_cov +")
    with pytest.raises(ValueError):
        parse_formula("~ pt_cov + pt_cov")


def test_design_matrices_shapes_and_broadcast():
    data = _small_data(n_pt=12, n_rep=4)
    design = design_matrices(data, "~ pt_cov", "~ pt_cov + event_cov")
    assert design.x_occ.shape == (12, 2)
    assert design.x_det.shape == (12, 4, 3)
    assert design.names == ["occ[Intercept]", "occ[pt_cov]",
                            "det[Intercept]", "det[pt_cov]", "det[event_cov]"]
    pt = data.site_covs["pt_cov"].to_numpy()
    assert np.allclose(design.x_det[:, :, 1], pt[:, None])


def test_design_matrices_reject_unknown_terms():
    data = _small_data()
    with pytest.raises(ValueError):
        design_matrices(data, "~ event_cov", "~ 1")
    with pytest.raises(ValueError):
        design_matrices(data, "~ 1", "~ wind")


def test_occupancy_data_contract():
    obs = np.zeros((3, 2))
    with pytest.raises(ValueError):
        OccupancyData(obs=obs, site_covs=pd.DataFrame({"pt_cov": [0.0, 1.0]}))
    with pytest.raises(ValueError):
        OccupancyData(obs=obs, site_covs=pd.DataFrame({"pt_cov": [0.0, 1.0, 2.0]}),
                      obs_covs={"event_cov": np.zeros((3, 3))})
    with pytest.raises(ValueError):
        OccupancyData(obs=np.full((3, 2), 2.0), site_covs=pd.DataFrame({"pt_cov": [0.0, 1.0, 2.0]}))
    with pytest.raises(ValueError):
        OccupancyData(obs=obs, site_covs=pd.DataFrame({"x": [0.0, 1.0, 2.0]}),
                      obs_covs={"x": np.zeros((3, 2))})


def test_gradient_matches_finite_differences():
    data = _small_data(n_pt=30, n_rep=3, seed=4)
    design = design_matrices(data, "~ pt_cov", "~ pt_cov + event_cov")
    params = np.array([0.2, 0.7, -0.5, -0.3, 0.4])
    _, grad = _neg_loglike_and_grad(params, data.obs, design)
    step = 1e-6
    numeric = np.zeros_like(params)
    for k in range(params.size):
        e = np.zeros_like(params)
        e[k] = step
        f_plus, _ = _neg_loglike_and_grad(params + e, data.obs, design)
        f_minus, _ = _neg_loglike_and_grad(params - e, data.obs, design)
        numeric[k] = (f_plus - f_minus) / (2 * step)
    assert np.allclose(grad, numeric, rtol=1e-4, atol=1e-5)


def test_fit_result_structure():
    data = _small_data(n_pt=150, n_rep=4, seed=8)
    fit = fit_occupancy(data, rng=get_rng(1))
    frame = fit.as_frame()
    assert list(frame.index) == list(COEFFICIENT_NAMES.values())
    assert set(frame.columns) == {"estimate", "std_error", "lower95", "upper95"}
    assert np.isfinite(fit.loglike)
    assert fit.aic == pytest.approx(2 * 5 - 2 * fit.loglike)
    assert len(fit.restart_losses) == FitConfig().restarts
    summary = fit.as_dict()
    assert summary["occ_formula"] == "~ pt_cov"
    assert set(summary["coefficients"]) == set(fit.names)


def test_intercept_only_fit():
    data = _small_data(n_pt=100, n_rep=4, seed=9)
    fit = fit_occupancy(data, occ_formula="~ 1", det_formula="~ 1", rng=get_rng(0))
    assert fit.names == ["occ[Intercept]", "det[Intercept]"]


def test_posterior_is_one_where_detected():
    data = _small_data(n_pt=120, n_rep=4, seed=12)
    fit = fit_occupancy(data, rng=get_rng(2))
    post = site_occupancy_posterior(fit, data)
    detected = data.obs.max(axis=1) > 0
    assert np.allclose(post[detected], 1.0)
    assert np.all((post >= 0) & (post <= 1))


def test_missing_visits_are_tolerated():
    survey = generate_survey(200, 4, CoefficientConfig(), get_rng(21))
    data = survey_to_data(survey)
    obs = data.obs.copy()
    obs[::5, 3] = np.nan
    event_cov = data.obs_covs["event_cov"].copy()
    event_cov[::5, 3] = np.nan
    holed = OccupancyData(obs=obs, site_covs=data.site_covs, obs_covs={"event_cov": event_cov})
    fit = fit_occupancy(holed, rng=get_rng(0))
    assert np.all(np.isfinite(fit.estimates))


def test_large_sample_recovers_generating_coefficients():
    coefs = CoefficientConfig(alpha_occ=0.0, beta_occ=1.0,
                              alpha_det=-1.0, beta_det_1=-1.0, beta_det_2=0.5)
    survey = generate_survey(4000, 4, coefs, get_rng(31))
    fit = fit_occupancy(survey_to_data(survey), rng=get_rng(32))
    entries = parameter_recovery(fit, coefs)
    assert len(entries) == 5
    for entry in entries:
        assert np.isfinite(entry.std_error)
        assert abs(entry.z_score) < 4.5, entry
        assert abs(entry.estimate - entry.truth) < 0.35, entry
