"""
Configuration for the closed occupancy simulation.

Study design, true coefficients and fitting options are defined here for
reproducibility. Values can be overridden from a YAML file.
"""

from __future__ import annotations

import math
import numbers
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict

import yaml

DEFAULT_RESULTS = Path("results") / "occupancy_closure"


class InvalidConfiguration(ValueError):
    """Raised when design sizes or coefficients cannot define a simulation."""


@dataclass
class DesignConfig:
    """Study design: number of sampling units and repeat visits."""

    n_pt: int = 200
    n_rep: int = 4


@dataclass
class CoefficientConfig:
    """True generating coefficients on the logit scale."""

    # logit(psi) = alpha_occ + beta_occ * pt_cov
    alpha_occ: float = 0.0
    beta_occ: float = 1.0

    # logit(theta) = alpha_det + beta_det_1 * pt_cov + beta_det_2 * event_cov
    alpha_det: float = -1.0
    beta_det_1: float = -1.0
    beta_det_2: float = 0.5

    def as_dict(self) -> Dict[str, float]:
        return {
            "alpha_occ": self.alpha_occ,
            "beta_occ": self.beta_occ,
            "alpha_det": self.alpha_det,
            "beta_det_1": self.beta_det_1,
            "beta_det_2": self.beta_det_2,
        }


@dataclass
class FitConfig:
    """Options for the maximum-likelihood refit."""

    occ_formula: str = "~ pt_cov"
    det_formula: str = "~ pt_cov + event_cov"
    method: str = "L-BFGS-B"
    restarts: int = 3
    max_iter: int = 500
    start_scale: float = 0.5


@dataclass
class PathsConfig:
    output_dir: Path = DEFAULT_RESULTS


@dataclass
class OccupancyConfig:
    """Top-level configuration for one simulate-and-fit run."""

    design: DesignConfig = field(default_factory=DesignConfig)
    coefficients: CoefficientConfig = field(default_factory=CoefficientConfig)
    fit: FitConfig = field(default_factory=FitConfig)
    paths: PathsConfig = field(default_factory=PathsConfig)
    seed: int = 42
    latent_replicates: int = 500

    def validate(self) -> "OccupancyConfig":
        validate_design(self.design.n_pt, self.design.n_rep)
        validate_coefficients(self.coefficients)
        if self.fit.restarts < 1:
            raise InvalidConfiguration(f"fit.restarts must be >= 1, got {self.fit.restarts}")
        if self.latent_replicates < 1:
            raise InvalidConfiguration(f"latent_replicates must be >= 1, got {self.latent_replicates}")
        return self

    @staticmethod
    def from_dict(data: Dict[str, Any]) -> "OccupancyConfig":
        design = data.get("design", {}) or {}
        coefs = data.get("coefficients", {}) or {}
        fit = data.get("fit", {}) or {}
        paths = data.get("paths", {}) or {}
        try:
            cfg = OccupancyConfig(
                design=DesignConfig(
                    n_pt=int(design.get("n_pt", DesignConfig.n_pt)),
                    n_rep=int(design.get("n_rep", DesignConfig.n_rep)),
                ),
                coefficients=CoefficientConfig(
                    alpha_occ=float(coefs.get("alpha_occ", CoefficientConfig.alpha_occ)),
                    beta_occ=float(coefs.get("beta_occ", CoefficientConfig.beta_occ)),
                    alpha_det=float(coefs.get("alpha_det", CoefficientConfig.alpha_det)),
                    beta_det_1=float(coefs.get("beta_det_1", CoefficientConfig.beta_det_1)),
                    beta_det_2=float(coefs.get("beta_det_2", CoefficientConfig.beta_det_2)),
                ),
                fit=FitConfig(
                    occ_formula=str(fit.get("occ_formula", FitConfig.occ_formula)),
                    det_formula=str(fit.get("det_formula", FitConfig.det_formula)),
                    method=str(fit.get("method", FitConfig.method)),
                    restarts=int(fit.get("restarts", FitConfig.restarts)),
                    max_iter=int(fit.get("max_iter", FitConfig.max_iter)),
                    start_scale=float(fit.get("start_scale", FitConfig.start_scale)),
                ),
                paths=PathsConfig(output_dir=Path(paths.get("output_dir", DEFAULT_RESULTS))),
                seed=int(data.get("seed", 42)),
                latent_replicates=int(data.get("latent_replicates", 500)),
            )
        except (TypeError, ValueError) as exc:
            raise InvalidConfiguration(f"Malformed configuration: {exc}") from exc
        return cfg.validate()


def _check_count(name: str, value: Any) -> None:
    if isinstance(value, bool) or not isinstance(value, numbers.Real):
        raise InvalidConfiguration(f"{name} must be an integer, got {value!r}")
    if not math.isfinite(value) or value != math.floor(value):
        raise InvalidConfiguration(f"{name} must be an integer, got {value!r}")
    if value <= 0:
        raise InvalidConfiguration(f"{name} must be positive, got {value!r}")


def validate_design(n_pt: int, n_rep: int) -> None:
    _check_count("n_pt", n_pt)
    _check_count("n_rep", n_rep)


def validate_replicates(replicates: int) -> None:
    _check_count("replicates", replicates)


def validate_coefficients(coefs: CoefficientConfig) -> None:
    for name, value in coefs.as_dict().items():
        if not math.isfinite(value):
            raise InvalidConfiguration(f"{name} must be finite, got {value}")


def get_default_config(n_pt: int = 200, n_rep: int = 4, seed: int = 42) -> OccupancyConfig:
    """Get the worked-example configuration."""
    return OccupancyConfig(design=DesignConfig(n_pt=n_pt, n_rep=n_rep), seed=seed).validate()


def load_config(path: str | Path) -> OccupancyConfig:
    with open(path, "r", encoding="utf-8") as f:
        raw = yaml.safe_load(f) or {}
    if not isinstance(raw, dict):
        raise InvalidConfiguration(f"Config {path} must be a mapping")
    return OccupancyConfig.from_dict(raw)
