import json
from enum import Enum
from pathlib import Path

import numpy as np
import pandas as pd


def ensure_dir(path):
    p = Path(path)
    p.mkdir(parents=True, exist_ok=True)
    return p


def format_calibration_report(result):
    """Console lines comparing model and market implied vols per instrument.

    One line per instrument, e.g.
    ``1Yx5Y: model 14.20 %, market 14.90 % ( -0.70 %),  modelValue ..., marketValue ...``
    followed by the evaluation count and the calibrated parameters.
    """
    lines = []
    for inst in result.instruments:
        if np.isfinite(inst.model_volatility):
            model_vol = f"{inst.model_volatility * 100:6.2f} %"
            diff = f"{inst.volatility_difference * 100:+6.2f} %"
        else:
            model_vol = "   n/a  "
            diff = "  n/a  "
        lines.append(
            f"{inst.expiry}x{inst.tenor}: model {model_vol}, market {inst.market_volatility * 100:6.2f} % "
            f"({diff}),  modelValue {inst.model_value:12.9f}, marketValue {inst.market_value:12.9f}"
        )
    lines.append(
        f"objective: {result.objective_value:.6e} (start {result.initial_objective_value:.6e}), "
        f"end criteria: {result.end_criteria.value}, iterations: {result.iterations}, "
        f"function evaluations: {result.function_evaluations}"
    )
    lines.append(f"calibrated to: a = {result.a:.6f}, sigma = {result.sigma:.6f}")
    return lines


def save_calibration_result(result, output_dir, prefix="calibration"):
    """Save the per-instrument table (CSV) and the parameters / diagnostics (JSON)."""
    out = ensure_dir(output_dir)
    csv_path = out / f"{prefix}_instruments.csv"
    result.to_frame().to_csv(csv_path, index=False)
    json_path = out / f"{prefix}_params.json"
    with open(json_path, "w", encoding="utf-8") as f:
        json.dump(result.to_dict(), f, indent=2, sort_keys=True, default=float)
    return csv_path, json_path


def curve_nodes_frame(curve, model=None):
    """Curve nodes with zero rates and, given a model, the model discount factors."""
    rows = []
    for node in curve.nodes[1:]:
        row = {
            "time": node.time,
            "discount": node.discount,
            "zero_rate": curve.zero_rate(node.time),
        }
        if model is not None:
            row["model_discount"] = model.discount(node.time)
        rows.append(row)
    return pd.DataFrame(rows)


def save_dataframe(df, output_dir, filename):
    """Save a DataFrame to CSV inside ``output_dir``."""
    out = ensure_dir(output_dir)
    p = out / filename
    df.to_csv(p, index=False)
    return p


def save_config_snapshot(cfg, output_dir):
    """Persist the scalar config fields as JSON (reproducibility)."""
    out = ensure_dir(output_dir)
    path = out / "config_snapshot.json"
    d = {}
    for k, v in cfg.__dict__.items():
        if k == "val_date":
            d[k] = str(v)
        elif isinstance(v, Enum):
            d[k] = v.value
        elif isinstance(v, (int, float, str, bool)):
            d[k] = v
        elif isinstance(v, tuple):
            d[k] = list(v)
    with open(path, "w", encoding="utf-8") as f:
        json.dump(d, f, indent=2, sort_keys=True)
    return path


def maybe_plot_calibration(result, output_dir, filename_png="calibration_vols.png", title=None):
    """Bar chart of market vs model implied vols per instrument.

    If matplotlib is not available, this function does nothing.
    """
    try:
        import matplotlib.pyplot as plt
    except ImportError:
        return None

    df = result.to_frame()
    x = np.arange(len(df))
    fig = plt.figure()
    ax = fig.add_subplot(111)
    ax.bar(x - 0.2, df["market_vol"] * 100, width=0.4, label="market")
    ax.bar(x + 0.2, df["model_vol"] * 100, width=0.4, label="Hull-White")
    ax.set_xticks(x)
    ax.set_xticklabels(df["instrument"], rotation=45, ha="right")
    ax.set_ylabel("Black volatility (%)")
    ax.set_title(title or f"a={result.a:.4f}, sigma={result.sigma:.4f}")
    ax.legend(fontsize=8)
    fig.tight_layout()

    fig_dir = ensure_dir(Path(output_dir) / "figures")
    p = fig_dir / filename_png
    fig.savefig(p, dpi=200)
    plt.close(fig)
    return p


def maybe_plot_curve(curve, output_dir, filename_png="curve.png", t_max=None):
    """Zero-rate and instantaneous-forward curve on a fine grid."""
    try:
        import matplotlib.pyplot as plt
    except ImportError:
        return None

    t = np.linspace(1.0 / 365.0, t_max or curve.max_time, 300)
    zero = [curve.zero_rate(ti) for ti in t]
    fwd = curve.instantaneous_forward(t)

    fig = plt.figure()
    ax = fig.add_subplot(111)
    ax.plot(t, np.asarray(zero) * 100, label="zero rate")
    ax.plot(t, np.asarray(fwd) * 100, label="instantaneous forward", linewidth=1.0)
    ax.set_xlabel("Time (years)")
    ax.set_ylabel("Rate (%)")
    ax.grid(True, alpha=0.3)
    ax.legend(fontsize=8)
    fig.tight_layout()

    fig_dir = ensure_dir(Path(output_dir) / "figures")
    p = fig_dir / filename_png
    fig.savefig(p, dpi=200)
    plt.close(fig)
    return p
