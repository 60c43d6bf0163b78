from __future__ import annotations

import numpy as np

from .model import log_logistic


def detection_history_loglike(obs: np.ndarray, mu_det: np.ndarray) -> np.ndarray:
    """
    Log-probability of each unit's detection history given it is occupied.

    Missing visits (NaN in obs) are skipped.
    """
    obs = np.asarray(obs, dtype=float)
    mu_det = np.asarray(mu_det, dtype=float)
    visited = np.isfinite(obs)
    y = np.where(visited, obs, 0.0)
    per_event = y * log_logistic(mu_det) + (1.0 - y) * log_logistic(-mu_det)
    return np.sum(np.where(visited, per_event, 0.0), axis=1)


def site_loglike(obs: np.ndarray, mu_occ: np.ndarray, mu_det: np.ndarray) -> np.ndarray:
    """
    Marginal log-likelihood per unit for the closed occupancy model.

    L_i = psi_i * P(y_i | occupied) + (1 - psi_i) * 1[no detections at i]

    Args:
        obs: Detection table (n_pt, n_rep), 0/1 with NaN for missing visits
        mu_occ: Occupancy linear predictor (n_pt,)
        mu_det: Detection linear predictor (n_pt, n_rep)
    """
    obs = np.asarray(obs, dtype=float)
    mu_occ = np.asarray(mu_occ, dtype=float)
    log_cond = detection_history_loglike(obs, mu_det)
    log_psi = log_logistic(mu_occ)
    log_not_psi = log_logistic(-mu_occ)

    detected = np.nansum(obs, axis=1) > 0
    occupied_term = log_psi + log_cond
    return np.where(detected, occupied_term, np.logaddexp(occupied_term, log_not_psi))


def total_loglike(obs: np.ndarray, mu_occ: np.ndarray, mu_det: np.ndarray) -> float:
    return float(np.sum(site_loglike(obs, mu_occ, mu_det)))
