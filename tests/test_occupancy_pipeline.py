import json
from pathlib import Path

import numpy as np
import pandas as pd
import pytest

from occupancy_closure import plots
from occupancy_closure.config import (
    InvalidConfiguration,
    OccupancyConfig,
    get_default_config,
    load_config,
)
from occupancy_closure.io import load_survey, save_survey, survey_to_data, survey_to_long_frame
from occupancy_closure.rng import get_rng, spawn_rngs
from occupancy_closure.run import main, run_single, run_sweep
from occupancy_closure.simulate import generate

REPO_ROOT = Path(__file__).resolve().parent.parent


def test_default_config_matches_worked_example():
    cfg = get_default_config()
    assert cfg.design.n_pt == 200
    assert cfg.design.n_rep == 4
    assert cfg.coefficients.as_dict() == {
        "alpha_occ": 0.0,
        "beta_occ": 1.0,
        "alpha_det": -1.0,
        "beta_det_1": -1.0,
        "beta_det_2": 0.5,
    }


def test_shipped_yaml_loads():
    cfg = load_config(REPO_ROOT / "configs" / "occupancy_default.yaml")
    assert cfg.design.n_pt == 200
    assert cfg.fit.det_formula == "~ pt_cov + event_cov"


def test_load_config_overrides(tmp_path):
    path = tmp_path / "cfg.yaml"
    path.write_text("seed: 7\ndesign:\n  n_pt: 25\ncoefficients:\n  beta_occ: -0.5\n")
    cfg = load_config(path)
    assert cfg.seed == 7
    assert cfg.design.n_pt == 25
    assert cfg.design.n_rep == 4
    assert cfg.coefficients.beta_occ == -0.5


@pytest.mark.parametrize("text", [
    "design:\n  n_pt: 0\n",
    "design:\n  n_rep: -1\n",
    "coefficients:\n  alpha_occ: .nan\n",
    "coefficients:\n  alpha_det: .inf\n",
    "design:\n  n_pt: many\n",
    "- just\n- a list\n",
])
def test_load_config_rejects_invalid(tmp_path, text):
    path = tmp_path / "bad.yaml"
    path.write_text(text)
    with pytest.raises(InvalidConfiguration):
        load_config(path)


def test_invalid_configuration_is_value_error():
    assert issubclass(InvalidConfiguration, ValueError)


def test_spawned_rngs_independent_and_reproducible():
    a = [r.standard_normal(3) for r in spawn_rngs(5, 2)]
    b = [r.standard_normal(3) for r in spawn_rngs(5, 2)]
    assert np.array_equal(a[0], b[0])
    assert not np.array_equal(a[0], a[1])


def test_survey_roundtrip(tmp_path):
    survey = generate(get_default_config(n_pt=15, n_rep=3, seed=3))
    npz_path = save_survey(survey, tmp_path)
    loaded = load_survey(npz_path)
    for a, b in zip(survey.as_tuple(), loaded.as_tuple()):
        assert np.array_equal(a, b)
    frame = pd.read_csv(tmp_path / "detections.csv")
    assert len(frame) == 15 * 3
    assert list(frame.columns) == ["site", "visit", "pt_cov", "event_cov", "y"]


def test_long_frame_indexing_consistent():
    survey = generate(get_default_config(n_pt=6, n_rep=2, seed=1))
    frame = survey_to_long_frame(survey)
    row = frame[(frame.site == 4) & (frame.visit == 1)].iloc[0]
    assert row.y == survey.obs[4, 1]
    assert row.event_cov == pytest.approx(survey.event_cov[4, 1])
    assert row.pt_cov == pytest.approx(survey.pt_cov[4])


def test_survey_to_data_hides_latent_state():
    survey = generate(get_default_config(n_pt=10, n_rep=2, seed=2))
    data = survey_to_data(survey)
    assert list(data.site_covs.columns) == ["pt_cov"]
    assert list(data.obs_covs) == ["event_cov"]
    assert not hasattr(data, "z")


def test_run_single_writes_outputs(tmp_path):
    cfg = get_default_config(n_pt=80, n_rep=3, seed=11)
    cfg.latent_replicates = 50
    result = run_single(cfg, tmp_path, verbose=False)

    for name in ["REPORT.md", "summary.json", "survey.npz", "detections.csv",
                 "detection_histories.png", "parameter_recovery.png"]:
        assert (tmp_path / name).exists(), name

    summary = json.loads((tmp_path / "summary.json").read_text())
    assert len(summary["recovery"]) == 5
    assert summary["occupancy"]["naive"] <= summary["occupancy"]["true"]
    report = (tmp_path / "REPORT.md").read_text()
    assert "Parameter recovery" in report
    assert "Latent occupancy check" in report
    assert result["fit"]["n_pt"] == 80


def test_run_single_reproducible(tmp_path):
    cfg = get_default_config(n_pt=40, n_rep=3, seed=5)
    cfg.latent_replicates = 20
    r1 = run_single(cfg, tmp_path / "a", verbose=False)
    r2 = run_single(cfg, tmp_path / "b", verbose=False)
    assert r1["occupancy"] == r2["occupancy"]
    est1 = [c["estimate"] for c in r1["fit"]["coefficients"].values()]
    est2 = [c["estimate"] for c in r2["fit"]["coefficients"].values()]
    assert est1 == est2


def test_run_sweep(tmp_path):
    cfg = get_default_config(n_rep=3, seed=2)
    result = run_sweep(cfg, [40, 80], replicates=2, output_dir=tmp_path, verbose=False)
    assert [row["n_pt"] for row in result["sweep"]] == [40, 80]
    assert set(result["sweep"][0]) >= {"alpha_occ", "beta_occ", "alpha_det", "beta_det_1", "beta_det_2"}
    assert (tmp_path / "recovery_sweep.png").exists()
    assert "Recovery sweep" in (tmp_path / "REPORT.md").read_text()


def test_run_sweep_rejects_zero_units(tmp_path):
    with pytest.raises(InvalidConfiguration):
        run_sweep(get_default_config(), [0, 50], replicates=1, output_dir=tmp_path, verbose=False)


@pytest.mark.parametrize("replicates", [0, -2])
def test_run_sweep_rejects_non_positive_replicates(tmp_path, replicates):
    with pytest.raises(InvalidConfiguration):
        run_sweep(get_default_config(n_rep=3), [40, 80], replicates=replicates,
                  output_dir=tmp_path, verbose=False)
    assert not (tmp_path / "recovery_sweep.png").exists()
    assert not (tmp_path / "REPORT.md").exists()


def test_run_sweep_rejects_empty_sizes(tmp_path):
    with pytest.raises(InvalidConfiguration):
        run_sweep(get_default_config(), [], replicates=1, output_dir=tmp_path, verbose=False)


def test_cli_sweep_rejects_zero_replicates(tmp_path):
    with pytest.raises(InvalidConfiguration):
        main(["--sweep", "40,80", "--replicates", "0", "--outdir", str(tmp_path), "--quiet"])


def test_plots_require_matplotlib(tmp_path, monkeypatch):
    monkeypatch.setattr(plots, "HAS_MATPLOTLIB", False)
    with pytest.raises(ImportError):
        plots.ensure_matplotlib()
    with pytest.raises(ImportError):
        plots.plot_recovery_sweep([10, 20], {"beta_occ": [0.2, 0.1]}, tmp_path / "sweep.png")


def test_cli_main(tmp_path):
    result = main(["--n-pt", "50", "--n-rep", "3", "--seed", "9",
                   "--outdir", str(tmp_path), "--quiet"])
    assert result["config"]["design"] == {"n_pt": 50, "n_rep": 3}
    assert (tmp_path / "REPORT.md").exists()


def test_cli_rejects_zero_units(tmp_path):
    with pytest.raises(InvalidConfiguration):
        main(["--n-pt", "0", "--outdir", str(tmp_path), "--quiet"])


def test_config_validate_returns_self():
    cfg = OccupancyConfig()
    assert cfg.validate() is cfg
    cfg.fit.restarts = 0
    with pytest.raises(InvalidConfiguration):
        cfg.validate()
