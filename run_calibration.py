from pathlib import Path

import QuantLib as ql

from hw_calibrator.bootstrap import PiecewiseCurveBootstrapper
from hw_calibrator.calibration import CalibrationErrorType, Calibrator
from hw_calibrator.config import AppConfig
from hw_calibrator.curve import CurveHandle, DiscountCurve
from hw_calibrator.instruments import SwapType, VanillaSwap
from hw_calibrator.market import MarketLoader
from hw_calibrator.reporting import (
    curve_nodes_frame,
    format_calibration_report,
    maybe_plot_calibration,
    maybe_plot_curve,
    save_calibration_result,
    save_config_snapshot,
    save_dataframe,
)

# Flat curve implying 1x5 swaps at about 5%
FLAT_RATE = 0.04875825

# (expiry, underlying tenor, Black vol)
FLAT_CURVE_SWAPTIONS = [
    ("1Y", "5Y", 0.1490),
    ("2Y", "4Y", 0.1201),
    ("3Y", "3Y", 0.1070),
    ("4Y", "2Y", 0.0951),
    ("5Y", "1Y", 0.1160),
]


def print_report(result):
    for line in format_calibration_report(result):
        print(line)


def run_flat_curve(cfg, out_dir):
    """Co-terminal calibration on a flat curve, implied-vol residuals."""
    context = cfg.context()
    curve = DiscountCurve.flat_forward(context.settlement_date, FLAT_RATE, cfg.curve_day_counter)
    handle = CurveHandle(curve)

    calib = Calibrator(handle, context, end_criteria=cfg.end_criteria(), sigma_floor=cfg.sigma_floor)
    model, _, result = calib.calibrate_hw(
        FLAT_CURVE_SWAPTIONS,
        CalibrationErrorType.IMPLIED_VOL_ERROR,
        a=cfg.hw_a0,
        sigma=cfg.hw_sigma0,
        **cfg.helper_options(),
    )
    print("Hull-White (analytic formulae) calibration, flat curve")
    print_report(result)

    save_calibration_result(result, out_dir, prefix="flat_curve")
    maybe_plot_calibration(result, out_dir, filename_png="flat_curve_vols.png")
    return model, result


def print_swap_analytics(swap, curve):
    print(f"Swap with fixed rate = {swap.fixed_rate:.6f}")
    print(f"Price = {swap.npv(curve):.6f}")
    print(f"Fair rate = {swap.fair_rate(curve):.8f}")
    print(f"Fixed leg BPS = {swap.fixed_leg_bps(curve):.6f}, float leg BPS = {swap.floating_leg_bps(curve):.6f}")

    atm_rate = swap.fair_rate(curve)
    for label, rate in [("ATM", atm_rate), ("OTM", atm_rate * 1.2), ("ITM", atm_rate * 0.8)]:
        print(f"{label}Swap fixed rate = {rate:.8f}, NPV = {swap.with_fixed_rate(rate).npv(curve):.6f}")
    print()


def run_eonia_curve(cfg, data_dir, out_dir):
    """Bootstrapped Eonia curve, relative-price residuals on the co-terminal grid."""
    context = cfg.context()
    loader = MarketLoader(cfg)
    quotes = loader.load_quotes(data_dir / "eonia_ois.csv")
    vols = loader.load_vols(data_dir / "swaption_vols.csv")

    bootstrapper = PiecewiseCurveBootstrapper(
        interpolation=cfg.interpolation,
        extrapolation=cfg.extrapolation,
        accuracy=cfg.bootstrap_accuracy,
        max_passes=cfg.bootstrap_max_passes,
    )
    curve = bootstrapper.build(context, loader.rate_helpers(quotes, context))
    handle = CurveHandle(curve)

    # 1Y forward-starting 5Y payer swap on 1000 notional
    start = cfg.calendar.advance(context.settlement_date, ql.Period(1, ql.Years), ql.ModifiedFollowing)
    maturity = cfg.calendar.advance(start, ql.Period(5, ql.Years), ql.ModifiedFollowing)
    swap = VanillaSwap.from_dates(SwapType.PAYER, 1000.0, start, maturity, 0.03, curve.time_from_date)
    print_swap_analytics(swap, curve)

    calib = Calibrator(handle, context, end_criteria=cfg.end_criteria(), sigma_floor=cfg.sigma_floor)
    model, _, result = calib.calibrate_hw(
        MarketLoader.coterminal(vols),
        CalibrationErrorType.RELATIVE_PRICE_ERROR,
        a=cfg.hw_a0,
        sigma=cfg.hw_sigma0,
        **cfg.helper_options(),
    )
    print("Hull-White (analytic formulae) calibration, Eonia curve")
    print_report(result)

    t_mat = curve.time_from_date(maturity)
    print(f"\nBond price from HW model: {model.discount(t_mat):.10f}")
    print(f"Bond price from rate curve: {curve.discount(t_mat):.10f}")
    for q in quotes:
        d = cfg.calendar.advance(cfg.val_date, q.tenor, ql.ModifiedFollowing)
        t = curve.time_from_date(d)
        print(f"Curve mat {q.label}: Mkt bond price = {curve.discount(t):.10f}, HW bond price = {model.discount(t):.10f}")

    save_calibration_result(result, out_dir, prefix="eonia_curve")
    save_dataframe(curve_nodes_frame(curve, model), out_dir, "eonia_curve_nodes.csv")
    maybe_plot_calibration(result, out_dir, filename_png="eonia_curve_vols.png")
    maybe_plot_curve(curve, out_dir, filename_png="eonia_curve.png")
    return model, result


def main():
    # -------------------------------------------------------------------------
    # 0. Inputs
    # -------------------------------------------------------------------------
    val_date = ql.Date(15, 2, 2002)
    cfg = AppConfig(val_date)
    cfg.apply_global_settings()

    project_root = Path(__file__).resolve().parent
    data_dir = project_root / "data"
    out_dir = project_root / "outputs"

    # -------------------------------------------------------------------------
    # 1. Flat curve
    # -------------------------------------------------------------------------
    print("--- 1. Flat curve ---")
    run_flat_curve(cfg, out_dir)

    # -------------------------------------------------------------------------
    # 2. Bootstrapped Eonia curve
    # -------------------------------------------------------------------------
    print("\n--- 2. Eonia curve ---")
    run_eonia_curve(cfg, data_dir, out_dir)

    save_config_snapshot(cfg, out_dir)
    print(f"\nOutputs written to: {out_dir}")


if __name__ == "__main__":
    main()
