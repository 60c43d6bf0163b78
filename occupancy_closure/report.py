from __future__ import annotations

import json
from pathlib import Path
from typing import Dict, List

from .config import OccupancyConfig


def _format_table(rows: List[Dict[str, object]], headers: List[str]) -> str:
    lines = ["|" + "|".join(headers) + "|", "|" + "|".join(["---"] * len(headers)) + "|"]
    for row in rows:
        cells = []
        for h in headers:
            value = row.get(h, "")
            cells.append(f"{value:.4f}" if isinstance(value, float) else str(value))
        lines.append("|" + "|".join(cells) + "|")
    return "\n".join(lines)


def write_report(cfg: OccupancyConfig, result: Dict[str, object], output_dir: Path) -> Path:
    output_dir = Path(output_dir)
    output_dir.mkdir(parents=True, exist_ok=True)
    report_path = output_dir / "REPORT.md"
    with open(output_dir / "summary.json", "w", encoding="utf-8") as f:
        json.dump(result, f, indent=2, default=str)

    design = cfg.design
    lines = [
        "# Closed occupancy simulation report",
        "",
        "## How to run",
        "```\npython3 -m occupancy_closure.run --config configs/occupancy_default.yaml\n```",
        "",
        "## Design",
        f"- sampling units (n_pt): {design.n_pt}",
        f"- repeat visits (n_rep): {design.n_rep}",
        f"- seed: {cfg.seed}",
        "",
    ]

    occupancy = result.get("occupancy", {})
    if occupancy:
        lines.extend([
            "## Occupancy",
            f"- true fraction occupied: {occupancy.get('true', float('nan')):.3f}",
            f"- naive fraction (>=1 detection): {occupancy.get('naive', float('nan')):.3f}",
            f"- model-based estimate: {occupancy.get('estimated', float('nan')):.3f}",
            f"- mean psi: {occupancy.get('mean_psi', float('nan')):.3f}",
            "",
        ])

    fit = result.get("fit", {})
    if fit:
        status = "converged" if fit.get("converged") else f"NOT converged ({fit.get('message')})"
        lines.extend([
            "## Refit",
            f"- occupancy formula: `{fit.get('occ_formula')}`",
            f"- detection formula: `{fit.get('det_formula')}`",
            f"- optimiser: {status}",
            f"- log-likelihood: {fit.get('loglike', float('nan')):.3f}, AIC: {fit.get('aic', float('nan')):.3f}",
            "",
        ])

    recovery = result.get("recovery", [])
    if recovery:
        lines.append("## Parameter recovery")
        lines.append(_format_table(recovery, ["parameter", "truth", "estimate", "std_error", "z_score", "covered"]))
        lines.append("")

    latent = result.get("latent_mean", {})
    if latent:
        lines.extend([
            "## Latent occupancy check",
            f"Redrawing Z {latent.get('n_replicates')} times for the same pt_cov draw:",
            f"- mean(psi): {latent.get('mean_psi', float('nan')):.4f}",
            f"- average mean(Z): {latent.get('mean_z', float('nan')):.4f} "
            f"(MC s.e. {latent.get('mc_std_error', float('nan')):.4f})",
            "",
        ])

    sweep = result.get("sweep", [])
    if sweep:
        lines.append("## Recovery sweep (mean |estimate - truth|)")
        headers = ["n_pt", "n_converged"] + [k for k in sweep[0] if k not in {"n_pt", "n_converged"}]
        lines.append(_format_table(sweep, headers))
        lines.append("")

    figures = result.get("figures", [])
    if figures:
        lines.append("## Figures")
        for fig in figures:
            lines.append(f"![{Path(fig).stem}]({Path(fig).name})")
        lines.append("")

    report_path.write_text("\n".join(lines), encoding="utf-8")
    return report_path
