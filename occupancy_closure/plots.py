"""
Plotting functions for the closed occupancy example.

Shows the simulated detection histories and how well the refit recovers
the generating coefficients.
"""

from __future__ import annotations

from pathlib import Path
from typing import Dict, List, Optional

import numpy as np

from .diagnostics import RecoveryEntry
from .simulate import SimulatedSurvey

# Check for matplotlib availability
try:
    import matplotlib
    matplotlib.use("Agg")
    import matplotlib.pyplot as plt
    HAS_MATPLOTLIB = True
except ImportError:
    HAS_MATPLOTLIB = False


def ensure_matplotlib():
    if not HAS_MATPLOTLIB:
        raise ImportError("matplotlib required for plotting")


def plot_detection_histories(survey: SimulatedSurvey,
                             output_path: Path,
                             max_units: int = 60) -> None:
    """
    Heatmap of detection histories, with the latent state alongside.

    Units are sorted so that occupied-but-never-detected units sit between
    detected units and truly empty ones.
    """
    ensure_matplotlib()

    n_show = min(max_units, survey.n_pt)
    detected = survey.obs.max(axis=1) > 0
    order = np.lexsort((~detected, -survey.z))[:n_show]

    fig, axes = plt.subplots(1, 2, figsize=(7, 6),
                             gridspec_kw={"width_ratios": [survey.n_rep, 1]})
    axes[0].imshow(survey.obs[order], aspect="auto", cmap="Greys", vmin=0, vmax=1,
                   interpolation="nearest")
    axes[0].set_xlabel("Visit")
    axes[0].set_ylabel("Sampling unit")
    axes[0].set_title("Observed detections")

    axes[1].imshow(survey.z[order][:, None], aspect="auto", cmap="Greens", vmin=0, vmax=1,
                   interpolation="nearest")
    axes[1].set_xticks([])
    axes[1].set_yticks([])
    axes[1].set_title("Z")

    plt.tight_layout()
    plt.savefig(output_path, dpi=150, bbox_inches="tight")
    plt.close(fig)


def plot_parameter_recovery(entries: List[RecoveryEntry], output_path: Path) -> None:
    """Estimates with 95% intervals against the true coefficients."""
    ensure_matplotlib()

    fig, ax = plt.subplots(figsize=(6, 4))
    y = np.arange(len(entries))
    est = np.array([e.estimate for e in entries])
    se = np.array([e.std_error for e in entries])
    truth = np.array([e.truth for e in entries])

    ax.errorbar(est, y, xerr=1.96 * np.nan_to_num(se), fmt="o", color="steelblue",
                capsize=3, label="Estimate ± 95% CI")
    ax.scatter(truth, y, marker="x", color="darkred", zorder=3, label="Truth")
    ax.set_yticks(y)
    ax.set_yticklabels([e.parameter for e in entries])
    ax.axvline(0.0, color="gray", linewidth=0.8, linestyle=":")
    ax.set_xlabel("Coefficient (logit scale)")
    ax.legend(loc="best")

    plt.tight_layout()
    plt.savefig(output_path, dpi=150, bbox_inches="tight")
    plt.close(fig)


def plot_recovery_sweep(n_pt_values: List[int],
                        errors: Dict[str, List[float]],
                        output_path: Path) -> None:
    """Mean absolute recovery error per coefficient against number of units."""
    ensure_matplotlib()

    fig, ax = plt.subplots(figsize=(6, 4))
    for param, values in errors.items():
        ax.plot(n_pt_values, values, marker="o", label=param)

    # 1/sqrt(n) reference through the first point of the worst parameter
    if errors:
        first = max(v[0] for v in errors.values())
        ref = first * np.sqrt(n_pt_values[0] / np.asarray(n_pt_values, dtype=float))
        ax.plot(n_pt_values, ref, "k--", linewidth=1, label=r"$\propto 1/\sqrt{n}$")

    ax.set_xscale("log")
    ax.set_xlabel("Number of sampling units (n_pt)")
    ax.set_ylabel("Mean |estimate - truth|")
    ax.legend(loc="best", fontsize=8)

    plt.tight_layout()
    plt.savefig(output_path, dpi=150, bbox_inches="tight")
    plt.close(fig)


def generate_all_plots(survey: SimulatedSurvey,
                       entries: Optional[List[RecoveryEntry]],
                       output_dir: Path) -> List[Path]:
    output_dir = Path(output_dir)
    output_dir.mkdir(parents=True, exist_ok=True)
    written = [output_dir / "detection_histories.png"]
    plot_detection_histories(survey, written[0])
    if entries:
        written.append(output_dir / "parameter_recovery.png")
        plot_parameter_recovery(entries, written[-1])
    return written
