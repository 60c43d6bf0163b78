"""
Maximum-likelihood refit of the closed occupancy model.

Takes a detection table with unit- and event-level covariates plus one
formula per sub-model, and returns coefficient estimates with Wald
uncertainty. Optimiser problems are reported on the result, not raised.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple

import numpy as np
import pandas as pd
from scipy.optimize import minimize

from .config import FitConfig
from .io import OccupancyData
from .likelihoods import detection_history_loglike, site_loglike, total_loglike
from .model import log_logistic, logistic

Z_95 = 1.959963984540054


def parse_formula(formula: str) -> List[str]:
    """Covariate terms of a one-sided formula such as "~ pt_cov + event_cov"."""
    text = formula.strip()
    if not text.startswith("~"):
        raise ValueError(f"Formula must start with '~': {formula!r}")
    terms = [t.strip() for t in text[1:].split("+")]
    if any(not t for t in terms):
        raise ValueError(f"Empty term in formula {formula!r}")
    covariates = [t for t in terms if t != "1"]
    if len(set(covariates)) != len(covariates):
        raise ValueError(f"Repeated term in formula {formula!r}")
    return covariates


@dataclass
class DesignMatrices:
    occ_terms: List[str]
    det_terms: List[str]
    x_occ: np.ndarray  # (n_pt, k_occ)
    x_det: np.ndarray  # (n_pt, n_rep, k_det)

    @property
    def names(self) -> List[str]:
        return [f"occ[{t}]" for t in self.occ_terms] + [f"det[{t}]" for t in self.det_terms]

    @property
    def k_occ(self) -> int:
        return self.x_occ.shape[1]

    def split(self, params: np.ndarray) -> Tuple[np.ndarray, np.ndarray]:
        return params[: self.k_occ], params[self.k_occ:]

    def predictors(self, params: np.ndarray) -> Tuple[np.ndarray, np.ndarray]:
        b_occ, b_det = self.split(params)
        return self.x_occ @ b_occ, self.x_det @ b_det


def design_matrices(data: OccupancyData, occ_formula: str, det_formula: str) -> DesignMatrices:
    n_pt, n_rep = data.n_pt, data.n_rep

    occ_cols = [np.ones(n_pt)]
    for term in parse_formula(occ_formula):
        if term not in data.site_covs.columns:
            raise ValueError(f"Occupancy term {term!r} is not a site covariate")
        occ_cols.append(data.site_covs[term].to_numpy(dtype=float))

    det_cols = [np.ones((n_pt, n_rep))]
    for term in parse_formula(det_formula):
        if term in data.site_covs.columns:
            site_values = data.site_covs[term].to_numpy(dtype=float)
            det_cols.append(np.broadcast_to(site_values[:, None], (n_pt, n_rep)))
        elif term in data.obs_covs:
            # Missing visits may carry NaN covariates; they are masked in the likelihood
            det_cols.append(np.nan_to_num(data.obs_covs[term], nan=0.0))
        else:
            raise ValueError(f"Detection term {term!r} is not a site or obs covariate")

    return DesignMatrices(
        occ_terms=["Intercept"] + parse_formula(occ_formula),
        det_terms=["Intercept"] + parse_formula(det_formula),
        x_occ=np.column_stack(occ_cols),
        x_det=np.stack(det_cols, axis=-1),
    )


def _occupied_weight(obs: np.ndarray, mu_occ: np.ndarray, mu_det: np.ndarray) -> np.ndarray:
    """P(Z_i = 1 | y_i), equal to 1 wherever a detection was made."""
    ll = site_loglike(obs, mu_occ, mu_det)
    occupied = log_logistic(mu_occ) + detection_history_loglike(obs, mu_det)
    return np.exp(np.clip(occupied - ll, None, 0.0))


def _neg_loglike_and_grad(params: np.ndarray, obs: np.ndarray, design: DesignMatrices) -> Tuple[float, np.ndarray]:
    mu_occ, mu_det = design.predictors(params)
    nll = -total_loglike(obs, mu_occ, mu_det)

    visited = np.isfinite(obs)
    y = np.where(visited, obs, 0.0)
    w = _occupied_weight(obs, mu_occ, mu_det)
    psi = logistic(mu_occ)
    theta = logistic(mu_det)

    g_occ = design.x_occ.T @ (w - psi)
    resid = np.where(visited, w[:, None] * (y - theta), 0.0)
    g_det = np.einsum("ijk,ij->k", design.x_det, resid)
    return nll, -np.concatenate([g_occ, g_det])


def _numerical_hessian(params: np.ndarray, obs: np.ndarray, design: DesignMatrices, step: float = 1e-5) -> np.ndarray:
    k = params.size
    hess = np.zeros((k, k))
    for j in range(k):
        e = np.zeros(k)
        e[j] = step
        _, g_plus = _neg_loglike_and_grad(params + e, obs, design)
        _, g_minus = _neg_loglike_and_grad(params - e, obs, design)
        hess[:, j] = (g_plus - g_minus) / (2 * step)
    return 0.5 * (hess + hess.T)


def _standard_errors(hess: np.ndarray) -> np.ndarray:
    try:
        cov = np.linalg.inv(hess)
    except np.linalg.LinAlgError:
        return np.full(hess.shape[0], np.nan)
    diag = np.diag(cov)
    return np.where(diag > 0, np.sqrt(np.abs(diag)), np.nan)


@dataclass
class FitResult:
    names: List[str]
    estimates: np.ndarray
    std_errors: np.ndarray
    loglike: float
    converged: bool
    message: str
    n_iter: int
    n_pt: int
    occ_formula: str = "~ pt_cov"
    det_formula: str = "~ pt_cov + event_cov"
    restart_losses: List[float] = field(default_factory=list)

    @property
    def aic(self) -> float:
        return 2 * len(self.names) - 2 * self.loglike

    @property
    def lower95(self) -> np.ndarray:
        return self.estimates - Z_95 * self.std_errors

    @property
    def upper95(self) -> np.ndarray:
        return self.estimates + Z_95 * self.std_errors

    def get(self, name: str) -> Tuple[float, float]:
        idx = self.names.index(name)
        return float(self.estimates[idx]), float(self.std_errors[idx])

    def as_frame(self) -> pd.DataFrame:
        return pd.DataFrame({
            "estimate": self.estimates,
            "std_error": self.std_errors,
            "lower95": self.lower95,
            "upper95": self.upper95,
        }, index=pd.Index(self.names, name="coefficient"))

    def as_dict(self) -> Dict[str, object]:
        return {
            "occ_formula": self.occ_formula,
            "det_formula": self.det_formula,
            "coefficients": {
                name: {"estimate": float(est), "std_error": float(se)}
                for name, est, se in zip(self.names, self.estimates, self.std_errors)
            },
            "loglike": float(self.loglike),
            "aic": float(self.aic),
            "converged": bool(self.converged),
            "message": self.message,
            "n_iter": int(self.n_iter),
            "n_pt": int(self.n_pt),
        }


def fit_occupancy(data: OccupancyData,
                  occ_formula: Optional[str] = None,
                  det_formula: Optional[str] = None,
                  cfg: Optional[FitConfig] = None,
                  rng: Optional[np.random.Generator] = None) -> FitResult:
    """
    Fit the closed occupancy model by maximum likelihood.

    Parameters
    ----------
    data : OccupancyData
        Detection table and covariates
    occ_formula, det_formula : str, optional
        One-sided formulas; default to the ones in cfg
    cfg : FitConfig, optional
        Optimiser settings
    rng : Generator, optional
        Random source for jittered restarts

    Returns
    -------
    FitResult
    """
    cfg = cfg or FitConfig()
    occ_formula = occ_formula or cfg.occ_formula
    det_formula = det_formula or cfg.det_formula
    if rng is None:
        rng = np.random.default_rng(0)

    design = design_matrices(data, occ_formula, det_formula)
    obs = data.obs
    k = len(design.names)

    best = None
    losses = []
    for attempt in range(max(1, cfg.restarts)):
        x0 = np.zeros(k) if attempt == 0 else rng.normal(0.0, cfg.start_scale, k)
        result = minimize(
            _neg_loglike_and_grad,
            x0,
            args=(obs, design),
            jac=True,
            method=cfg.method,
            options={"maxiter": cfg.max_iter},
        )
        losses.append(float(result.fun))
        if best is None or result.fun < best.fun:
            best = result

    estimates = np.asarray(best.x, dtype=float)
    hess = _numerical_hessian(estimates, obs, design)
    return FitResult(
        names=design.names,
        estimates=estimates,
        std_errors=_standard_errors(hess),
        loglike=-float(best.fun),
        converged=bool(best.success),
        message=str(best.message),
        n_iter=int(getattr(best, "nit", 0)),
        n_pt=data.n_pt,
        occ_formula=occ_formula,
        det_formula=det_formula,
        restart_losses=losses,
    )


def site_occupancy_posterior(fit: FitResult, data: OccupancyData) -> np.ndarray:
    """P(Z_i = 1 | y_i) at the fitted coefficients."""
    design = design_matrices(data, fit.occ_formula, fit.det_formula)
    mu_occ, mu_det = design.predictors(fit.estimates)
    return _occupied_weight(data.obs, mu_occ, mu_det)
