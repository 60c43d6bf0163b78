from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Dict, List

import numpy as np

from .config import CoefficientConfig
from .fit import Z_95, FitResult
from .simulate import replicate_latent_means

# Coefficient names produced by the default formulas
COEFFICIENT_NAMES = {
    "alpha_occ": "occ[Intercept]",
    "beta_occ": "occ[pt_cov]",
    "alpha_det": "det[Intercept]",
    "beta_det_1": "det[pt_cov]",
    "beta_det_2": "det[event_cov]",
}


def naive_occupancy(obs: np.ndarray) -> float:
    """Fraction of units with at least one detection."""
    obs = np.asarray(obs, dtype=float)
    return float(np.mean(np.nansum(obs, axis=1) > 0))


def true_occupancy(z: np.ndarray) -> float:
    return float(np.mean(np.asarray(z, dtype=float)))


@dataclass
class RecoveryEntry:
    parameter: str
    coefficient: str
    truth: float
    estimate: float
    std_error: float
    z_score: float
    covered: bool


def parameter_recovery(fit: FitResult, coefficients: CoefficientConfig) -> List[RecoveryEntry]:
    """Compare fitted coefficients with the values that generated the data."""
    entries: List[RecoveryEntry] = []
    for param, truth in coefficients.as_dict().items():
        name = COEFFICIENT_NAMES[param]
        if name not in fit.names:
            continue
        est, se = fit.get(name)
        if np.isfinite(se) and se > 0:
            z = (est - truth) / se
            covered = abs(z) <= Z_95
        else:
            z = math.nan
            covered = False
        entries.append(RecoveryEntry(
            parameter=param,
            coefficient=name,
            truth=float(truth),
            estimate=est,
            std_error=se,
            z_score=float(z),
            covered=bool(covered),
        ))
    return entries


def recovery_errors(entries: List[RecoveryEntry]) -> Dict[str, float]:
    return {e.parameter: e.estimate - e.truth for e in entries}


@dataclass
class LatentMeanCheck:
    mean_psi: float
    mean_z: float
    mc_std_error: float
    n_replicates: int

    @property
    def z_score(self) -> float:
        if self.mc_std_error <= 0:
            return 0.0 if self.mean_z == self.mean_psi else math.inf
        return (self.mean_z - self.mean_psi) / self.mc_std_error


def latent_mean_check(psi: np.ndarray, rng: np.random.Generator, n_replicates: int = 500) -> LatentMeanCheck:
    """
    Redraw Z for fixed occupancy probabilities and compare the average
    realised occupancy with mean(psi).
    """
    psi = np.asarray(psi, dtype=float)
    means = replicate_latent_means(psi, rng, n_replicates)
    # Var(mean Z) = sum psi (1 - psi) / n_pt^2 per replicate
    var_one = float(np.sum(psi * (1 - psi))) / psi.size ** 2
    return LatentMeanCheck(
        mean_psi=float(np.mean(psi)),
        mean_z=float(np.mean(means)),
        mc_std_error=math.sqrt(var_one / n_replicates),
        n_replicates=int(n_replicates),
    )
