from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict

import numpy as np
import pandas as pd

from .simulate import SimulatedSurvey


@dataclass
class OccupancyData:
    """Detection table plus covariates, as handed to the fitting routine."""
    obs: np.ndarray
    site_covs: pd.DataFrame
    obs_covs: Dict[str, np.ndarray] = field(default_factory=dict)

    def __post_init__(self):
        obs = np.asarray(self.obs, dtype=float)
        if obs.ndim != 2 or obs.shape[0] == 0 or obs.shape[1] == 0:
            raise ValueError(f"obs must be a non-empty 2-D table, got shape {obs.shape}")
        observed = obs[np.isfinite(obs)]
        if not np.all((observed == 0) | (observed == 1)):
            raise ValueError("obs must contain only 0, 1 or NaN")
        self.obs = obs

        if len(self.site_covs) != obs.shape[0]:
            raise ValueError(
                f"site_covs has {len(self.site_covs)} rows but obs has {obs.shape[0]} units"
            )
        self.site_covs = self.site_covs.reset_index(drop=True)
        for name in self.site_covs.columns:
            if not np.all(np.isfinite(self.site_covs[name].to_numpy(dtype=float))):
                raise ValueError(f"site covariate {name} contains non-finite values")

        covs = {}
        for name, values in self.obs_covs.items():
            arr = np.asarray(values, dtype=float)
            if arr.shape != obs.shape:
                raise ValueError(f"obs covariate {name} has shape {arr.shape}, expected {obs.shape}")
            if not np.all(np.isfinite(arr[np.isfinite(obs)])):
                raise ValueError(f"obs covariate {name} is non-finite at a visited event")
            covs[name] = arr
        self.obs_covs = covs

        overlap = set(self.site_covs.columns) & set(self.obs_covs)
        if overlap:
            raise ValueError(f"Covariate names used at both levels: {sorted(overlap)}")

    @property
    def n_pt(self) -> int:
        return self.obs.shape[0]

    @property
    def n_rep(self) -> int:
        return self.obs.shape[1]


def survey_to_data(survey: SimulatedSurvey) -> OccupancyData:
    """Strip the latent truth and keep what the fit is allowed to see."""
    return OccupancyData(
        obs=survey.obs,
        site_covs=pd.DataFrame({"pt_cov": survey.pt_cov}),
        obs_covs={"event_cov": survey.event_cov},
    )


def survey_to_long_frame(survey: SimulatedSurvey) -> pd.DataFrame:
    site, visit = np.meshgrid(np.arange(survey.n_pt), np.arange(survey.n_rep), indexing="ij")
    return pd.DataFrame({
        "site": site.ravel(),
        "visit": visit.ravel(),
        "pt_cov": np.repeat(survey.pt_cov, survey.n_rep),
        "event_cov": survey.event_cov.ravel(),
        "y": survey.obs.ravel(),
    })


def save_survey(survey: SimulatedSurvey, out_dir: str | Path) -> Path:
    out_dir = Path(out_dir)
    out_dir.mkdir(parents=True, exist_ok=True)
    npz_path = out_dir / "survey.npz"
    np.savez_compressed(
        npz_path,
        z=survey.z,
        obs=survey.obs,
        pt_cov=survey.pt_cov,
        event_cov=survey.event_cov,
        psi=survey.psi,
        theta=survey.theta,
    )
    survey_to_long_frame(survey).to_csv(out_dir / "detections.csv", index=False)
    return npz_path


def load_survey(path: str | Path) -> SimulatedSurvey:
    with np.load(Path(path)) as arr:
        obs = np.asarray(arr["obs"])
        return SimulatedSurvey(
            n_pt=int(obs.shape[0]),
            n_rep=int(obs.shape[1]),
            z=np.asarray(arr["z"]),
            obs=obs,
            pt_cov=np.asarray(arr["pt_cov"]),
            event_cov=np.asarray(arr["event_cov"]),
            psi=np.asarray(arr["psi"]),
            theta=np.asarray(arr["theta"]),
        )
