"""
Synthetic data generator for the closed single-season occupancy model.

Each sampling unit gets a latent occupancy state Z[i] ~ Bernoulli(psi[i]);
each repeat visit gets a raw detection ~ Bernoulli(theta[i, j]). The observed
history is the raw detection masked by Z, so unoccupied units never record a
detection and the state does not change between visits.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Tuple

import numpy as np

from .config import (
    CoefficientConfig,
    InvalidConfiguration,
    OccupancyConfig,
    validate_coefficients,
    validate_design,
)
from .model import detection_probability, occupancy_probability


@dataclass
class SimulatedSurvey:
    """Output of one generator run."""
    n_pt: int
    n_rep: int

    z: np.ndarray  # latent state, (n_pt,)
    obs: np.ndarray  # observed detections, (n_pt, n_rep)
    pt_cov: np.ndarray  # unit covariate, (n_pt,)
    event_cov: np.ndarray  # event covariate, (n_pt, n_rep)

    # Validation aids, never handed to the fit
    psi: np.ndarray
    theta: np.ndarray

    def as_tuple(self) -> Tuple[np.ndarray, np.ndarray, np.ndarray, np.ndarray]:
        return self.z, self.obs, self.pt_cov, self.event_cov

    @property
    def n_detected(self) -> int:
        return int(np.sum(self.obs.max(axis=1) > 0))


def _check_covariate(values: np.ndarray, shape: Tuple[int, ...], name: str) -> np.ndarray:
    arr = np.asarray(values, dtype=float)
    if arr.shape != shape:
        raise InvalidConfiguration(f"{name} has shape {arr.shape}, expected {shape}")
    if not np.all(np.isfinite(arr)):
        raise InvalidConfiguration(f"{name} contains non-finite values")
    return arr


def generate_survey(
    n_pt: int,
    n_rep: int,
    coefficients: CoefficientConfig,
    rng: np.random.Generator,
    pt_cov: Optional[np.ndarray] = None,
    event_cov: Optional[np.ndarray] = None,
) -> SimulatedSurvey:
    """
    Simulate one detection/non-detection survey.

    Parameters
    ----------
    n_pt, n_rep : int
        Number of sampling units and repeat events per unit
    coefficients : CoefficientConfig
        True occupancy and detection coefficients
    rng : np.random.Generator
        Random source; draws are consumed in the order pt_cov, event_cov,
        Z, raw detections
    pt_cov, event_cov : np.ndarray, optional
        Fixed covariates. When given, the corresponding draw is skipped.

    Returns
    -------
    SimulatedSurvey
    """
    validate_design(n_pt, n_rep)
    validate_coefficients(coefficients)
    n_pt, n_rep = int(n_pt), int(n_rep)
    c = coefficients

    if pt_cov is None:
        pt_cov = rng.standard_normal(n_pt)
    else:
        pt_cov = _check_covariate(pt_cov, (n_pt,), "pt_cov")

    if event_cov is None:
        event_cov = rng.standard_normal((n_pt, n_rep))
    else:
        event_cov = _check_covariate(event_cov, (n_pt, n_rep), "event_cov")

    psi = occupancy_probability(pt_cov, c.alpha_occ, c.beta_occ)
    theta = detection_probability(pt_cov, event_cov, c.alpha_det, c.beta_det_1, c.beta_det_2)

    z = draw_latent_state(psi, rng)
    raw = rng.binomial(1, theta)
    obs = raw * z[:, None]

    return SimulatedSurvey(
        n_pt=n_pt,
        n_rep=n_rep,
        z=z,
        obs=obs,
        pt_cov=pt_cov,
        event_cov=event_cov,
        psi=psi,
        theta=theta,
    )


def generate(config: OccupancyConfig, rng: Optional[np.random.Generator] = None) -> SimulatedSurvey:
    """Run the generator for a full configuration."""
    if rng is None:
        rng = np.random.default_rng(config.seed)
    return generate_survey(
        config.design.n_pt,
        config.design.n_rep,
        config.coefficients,
        rng,
    )


def draw_latent_state(psi: np.ndarray, rng: np.random.Generator) -> np.ndarray:
    """Z ~ Bernoulli(psi) elementwise for fixed occupancy probabilities."""
    return rng.binomial(1, np.asarray(psi, dtype=float))


def replicate_latent_means(psi: np.ndarray, rng: np.random.Generator, n_replicates: int) -> np.ndarray:
    """mean(Z) for n_replicates independent redraws of the latent state."""
    if n_replicates < 1:
        raise InvalidConfiguration(f"n_replicates must be >= 1, got {n_replicates}")
    psi = np.asarray(psi, dtype=float)
    draws = draw_latent_state(np.broadcast_to(psi, (n_replicates, psi.size)), rng)
    return draws.mean(axis=1)
