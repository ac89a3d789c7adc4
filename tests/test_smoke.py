import math
import os

import pytest
import QuantLib as ql

from hw_calibrator import (
    AppConfig,
    CalibrationErrorType,
    Calibrator,
    CurveHandle,
    DiscountCurve,
    InstrumentKind,
    MarketLoader,
    PiecewiseCurveBootstrapper,
)
from hw_calibrator.reporting import curve_nodes_frame, format_calibration_report, save_calibration_result

from conftest import FLAT_CURVE_SWAPTIONS


@pytest.fixture
def cfg():
    cfg = AppConfig(ql.Date(15, 2, 2002))
    cfg.suppress_warnings = True
    cfg.apply_global_settings()
    return cfg


def test_flat_curve_scenario(cfg, tmp_path):
    """Co-terminal calibration on the flat 4.875825% curve.

    Not a check of calibration quality (one-factor Hull-White cannot fit this
    vol set closely); it checks the run completes and improves the fit.
    """
    context = cfg.context()
    curve = DiscountCurve.flat_forward(context.settlement_date, 0.04875825, cfg.curve_day_counter)
    calib = Calibrator(CurveHandle(curve), context, end_criteria=cfg.end_criteria())
    model, helpers, result = calib.calibrate_hw(
        FLAT_CURVE_SWAPTIONS, CalibrationErrorType.IMPLIED_VOL_ERROR, **cfg.helper_options()
    )

    assert math.isfinite(result.a)
    assert result.sigma > 0.0
    assert result.objective_value < result.initial_objective_value
    assert len(format_calibration_report(result)) == len(helpers) + 2
    for inst in result.instruments:
        assert math.isfinite(inst.model_value) and inst.model_value > 0.0
    csv_path, json_path = save_calibration_result(result, tmp_path)
    assert csv_path.exists() and json_path.exists()


def test_shipped_market_data_scenario(cfg, data_dir):
    context = cfg.context()
    loader = MarketLoader(cfg)
    quotes = loader.load_quotes(os.path.join(data_dir, "eonia_ois.csv"))
    vols = loader.load_vols(os.path.join(data_dir, "swaption_vols.csv"))
    assert len(quotes) == 7 and all(q.kind is InstrumentKind.OIS for q in quotes)
    assert len(vols) == 25
    assert all(q.kind is InstrumentKind.SWAPTION_VOL for q in vols)

    coterminal = MarketLoader.coterminal(vols)
    assert [q.label for q in coterminal] == ["1Yx5Y", "2Yx4Y", "3Yx3Y", "4Yx2Y", "5Yx1Y"]
    assert [q.value for q in coterminal] == [0.1148, 0.1108, 0.1070, 0.1021, 0.1000]

    helpers = loader.rate_helpers(quotes, context)
    curve = PiecewiseCurveBootstrapper(interpolation=cfg.interpolation).build(context, helpers)
    for helper in helpers:
        assert abs(helper.quote_error(curve)) < 1e-9

    calib = Calibrator(CurveHandle(curve), context, end_criteria=cfg.end_criteria())
    model, _, result = calib.calibrate_hw(coterminal, CalibrationErrorType.RELATIVE_PRICE_ERROR, **cfg.helper_options())
    assert result.sigma > 0.0
    assert result.objective_value < result.initial_objective_value

    nodes = curve_nodes_frame(curve, model)
    assert (nodes["model_discount"] - nodes["discount"]).abs().max() < 1e-10
