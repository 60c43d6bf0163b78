"""Logistic occupancy and detection sub-models."""

from __future__ import annotations

import numpy as np
from scipy.special import expit, log_expit


def logistic(x: np.ndarray | float) -> np.ndarray:
    """1 / (1 + exp(-x)), stable for any finite input."""
    return expit(np.asarray(x, dtype=float))


def log_logistic(x: np.ndarray | float) -> np.ndarray:
    return log_expit(np.asarray(x, dtype=float))


def occupancy_predictor(pt_cov: np.ndarray, alpha_occ: float, beta_occ: float) -> np.ndarray:
    pt_cov = np.asarray(pt_cov, dtype=float)
    return alpha_occ + beta_occ * pt_cov


def detection_predictor(
    pt_cov: np.ndarray,
    event_cov: np.ndarray,
    alpha_det: float,
    beta_det_1: float,
    beta_det_2: float,
) -> np.ndarray:
    """
    Linear predictor for every unit-event pair.

    The unit term is evaluated once per unit and broadcast across that
    unit's events, so a change in pt_cov[i] shifts every event of unit i
    by the same amount.
    """
    pt_cov = np.asarray(pt_cov, dtype=float)
    event_cov = np.asarray(event_cov, dtype=float)
    if event_cov.ndim != 2 or event_cov.shape[0] != pt_cov.shape[0]:
        raise ValueError(
            f"event_cov shape {event_cov.shape} does not match {pt_cov.shape[0]} units"
        )
    unit_term = alpha_det + beta_det_1 * pt_cov
    return unit_term[:, None] + beta_det_2 * event_cov


def occupancy_probability(pt_cov: np.ndarray, alpha_occ: float, beta_occ: float) -> np.ndarray:
    return logistic(occupancy_predictor(pt_cov, alpha_occ, beta_occ))


def detection_probability(
    pt_cov: np.ndarray,
    event_cov: np.ndarray,
    alpha_det: float,
    beta_det_1: float,
    beta_det_2: float,
) -> np.ndarray:
    return logistic(detection_predictor(pt_cov, event_cov, alpha_det, beta_det_1, beta_det_2))
