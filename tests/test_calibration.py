from concurrent.futures import ThreadPoolExecutor

import numpy as np
import pytest
import QuantLib as ql

from hw_calibrator.calibration import CalibrationErrorType, Calibrator, SwaptionHelper
from hw_calibrator.curve import DiscountCurve
from hw_calibrator.engines import BlackSwaptionEngine, JamshidianSwaptionEngine
from hw_calibrator.errors import CalibrationNonConvergence
from hw_calibrator.market import InstrumentKind, RateQuote
from hw_calibrator.model import HullWhite
from hw_calibrator.optimization import EndCriteria, EndCriteriaType, LevenbergMarquardt

from conftest import FLAT_CURVE_SWAPTIONS, FLAT_RATE

PAIRS = [("1Y", "5Y"), ("2Y", "4Y"), ("3Y", "3Y"), ("4Y", "2Y"), ("5Y", "1Y")]


@pytest.fixture
def synthetic_vols(flat_handle, context):
    """Black vols of the co-terminal swaptions priced with a=0.05, sigma=0.01."""
    engine = JamshidianSwaptionEngine(HullWhite(flat_handle, a=0.05, sigma=0.01))
    data = []
    for expiry, tenor in PAIRS:
        helper = SwaptionHelper(expiry, tenor, 0.1, flat_handle, engine=engine, valuation_date=context.valuation_date)
        vol = helper.implied_volatility(helper.model_value(), accuracy=1e-14, min_vol=1e-3, max_vol=2.0)
        data.append((expiry, tenor, vol))
    return data


def test_helper_dates_follow_market_conventions(flat_handle, flat_curve):
    helper = SwaptionHelper("1Y", "5Y", 0.149, flat_handle)
    swaption = helper.swaption()
    # 19 Feb 2003 exercise, 21 Feb 2003 start, semiannual payments to 21 Feb 2008
    assert swaption.exercise_time == pytest.approx(flat_curve.time_from_date(ql.Date(19, 2, 2003)))
    assert swaption.swap.start_time == pytest.approx(flat_curve.time_from_date(ql.Date(21, 2, 2003)))
    assert len(swaption.swap.fixed_payment_times) == 10
    assert swaption.strike == pytest.approx(swaption.forward_swap_rate(flat_curve), rel=1e-14)


def test_atm_strike_follows_relinked_curve(flat_handle):
    helper = SwaptionHelper("2Y", "3Y", 0.12, flat_handle)
    before = helper.swaption().strike
    flat_handle.link_to(DiscountCurve.flat_forward(flat_handle.reference_date, 0.03, ql.Actual365Fixed()))
    after = helper.swaption().strike
    assert after < before
    assert helper.market_value() > 0.0


def test_residual_definitions(model, flat_handle):
    engine = JamshidianSwaptionEngine(model)
    values = {}
    for error_type in CalibrationErrorType:
        helper = SwaptionHelper("2Y", "3Y", 0.12, flat_handle, error_type=error_type, engine=engine)
        values[error_type] = helper.calibration_error()
    model_value = helper.model_value()
    market_value = helper.market_value()
    implied = helper.implied_volatility(model_value, accuracy=1e-12, min_vol=1e-6, max_vol=10.0)

    assert values[CalibrationErrorType.PRICE_ERROR] == pytest.approx(model_value - market_value)
    assert values[CalibrationErrorType.RELATIVE_PRICE_ERROR] == pytest.approx((model_value - market_value) / market_value)
    assert values[CalibrationErrorType.IMPLIED_VOL_ERROR] == pytest.approx(implied - 0.12, abs=1e-10)
    assert values[CalibrationErrorType.RELATIVE_IMPLIED_VOL_ERROR] == pytest.approx((implied - 0.12) / 0.12, abs=1e-9)


def test_model_value_needs_engine(flat_handle):
    with pytest.raises(ValueError):
        SwaptionHelper("1Y", "1Y", 0.1, flat_handle).model_value()


def test_synthetic_calibration_recovers_parameters(flat_handle, context, synthetic_vols):
    calib = Calibrator(
        flat_handle,
        context,
        end_criteria=EndCriteria(1000, 100, 1e-12, 1e-16, 1e-14),
    )
    model, _, result = calib.calibrate_hw(synthetic_vols, CalibrationErrorType.IMPLIED_VOL_ERROR, a=0.1, sigma=0.005)

    assert result.converged
    assert result.a == pytest.approx(0.05, abs=1e-4)
    assert result.sigma == pytest.approx(0.01, abs=1e-4)
    assert result.objective_value < 1e-10
    assert result.objective_value < result.initial_objective_value
    assert (model.a, model.sigma) == (result.a, result.sigma)
    assert len(result.instruments) == 5
    for inst in result.instruments:
        assert inst.volatility_difference == pytest.approx(0.0, abs=1e-4)


def test_iteration_limit_is_a_soft_failure(flat_handle, context, synthetic_vols):
    calib = Calibrator(flat_handle, context, end_criteria=EndCriteria(1, 1, 0.0, 0.0, 0.0))
    with pytest.warns(CalibrationNonConvergence):
        model, _, result = calib.calibrate_hw(synthetic_vols, CalibrationErrorType.IMPLIED_VOL_ERROR, a=0.1, sigma=0.005)
    assert not result.converged
    assert result.end_criteria is EndCriteriaType.MAX_ITERATIONS
    assert result.iterations == 1
    assert result.objective_value < result.initial_objective_value
    assert (model.a, model.sigma) == (result.a, result.sigma)


def test_executor_matches_serial(flat_handle, context, synthetic_vols):
    ec = EndCriteria(20, 10, 1e-10, 1e-14, 1e-12)
    serial = Calibrator(flat_handle, context, end_criteria=ec)
    model = HullWhite(flat_handle, a=0.1, sigma=0.005)
    helpers = serial.swaption_helpers(synthetic_vols, CalibrationErrorType.IMPLIED_VOL_ERROR, engine=JamshidianSwaptionEngine(model))

    with ThreadPoolExecutor(max_workers=4) as pool:
        parallel = Calibrator(flat_handle, context, end_criteria=ec, executor=pool)
        x = np.array([0.08, 0.007])
        assert parallel.residual_function(helpers, model)(x) == pytest.approx(
            serial.residual_function(helpers, model)(x), rel=1e-14
        )
        _, _, par_result = parallel.calibrate_hw(synthetic_vols, CalibrationErrorType.IMPLIED_VOL_ERROR, a=0.1, sigma=0.005)
    _, _, ser_result = serial.calibrate_hw(synthetic_vols, CalibrationErrorType.IMPLIED_VOL_ERROR, a=0.1, sigma=0.005)
    assert par_result.a == pytest.approx(ser_result.a, rel=1e-12)
    assert par_result.sigma == pytest.approx(ser_result.sigma, rel=1e-12)
    assert par_result.iterations == ser_result.iterations


def test_residual_evaluation_leaves_model_untouched(flat_handle, context, synthetic_vols):
    calib = Calibrator(flat_handle, context)
    model = HullWhite(flat_handle, a=0.1, sigma=0.005)
    helpers = calib.swaption_helpers(synthetic_vols, CalibrationErrorType.PRICE_ERROR, engine=JamshidianSwaptionEngine(model))
    calib.residual_function(helpers, model)(np.array([0.03, 0.02]))
    assert (model.a, model.sigma) == (0.1, 0.005)


def test_mixed_error_types_rejected(flat_handle, model):
    engine = JamshidianSwaptionEngine(model)
    helpers = [
        SwaptionHelper("1Y", "2Y", 0.1, flat_handle, CalibrationErrorType.PRICE_ERROR, engine=engine),
        SwaptionHelper("2Y", "2Y", 0.1, flat_handle, CalibrationErrorType.IMPLIED_VOL_ERROR, engine=engine),
    ]
    with pytest.raises(ValueError):
        Calibrator(flat_handle).calibrate(helpers, model)
    with pytest.raises(ValueError):
        Calibrator(flat_handle).calibrate([], model)


def test_levenberg_marquardt_on_linear_least_squares():
    # residuals of y = 2x + 1 sampled exactly
    xs = np.linspace(0.0, 1.0, 6)

    def residuals(p):
        return p[0] * xs + p[1] - (2.0 * xs + 1.0)

    result = LevenbergMarquardt().minimize(residuals, [0.0, 0.0], EndCriteria(100, 10, 1e-12, 1e-20, 1e-12))
    assert result.converged
    assert result.x == pytest.approx([2.0, 1.0], abs=1e-8)


def test_lower_bounds_are_respected():
    def residuals(p):
        return np.array([p[0] + 1.0, p[1] - 3.0])

    result = LevenbergMarquardt().minimize(residuals, [1.0, 0.0], lower_bounds=[0.5, -np.inf])
    assert result.x[0] == pytest.approx(0.5)
    assert result.x[1] == pytest.approx(3.0, abs=1e-6)


def test_stationary_objective_stops_after_configured_iterations():
    # cost 1 + x**2: each accepted step shrinks the objective by a relative amount far below 1e-3
    def residuals(p):
        return np.array([1.0, p[0]])

    ec = EndCriteria(100, 2, 0.0, 1e-3, 0.0)
    result = LevenbergMarquardt().minimize(residuals, [1e-3], ec)
    assert result.end_criteria is EndCriteriaType.STATIONARY_FUNCTION_VALUE
    assert result.iterations == 2


def test_black_time_runs_from_valuation_date(flat_handle, flat_curve, context):
    helper = SwaptionHelper("1Y", "5Y", 0.149, flat_handle, valuation_date=context.valuation_date)
    swaption = helper.swaption()
    exercise = ql.Date(19, 2, 2003)
    assert swaption.exercise_time == pytest.approx(flat_curve.time_from_date(exercise))
    assert swaption.volatility_time == pytest.approx(ql.Actual365Fixed().yearFraction(context.valuation_date, exercise))
    assert swaption.volatility_time > swaption.exercise_time

    expected = BlackSwaptionEngine(flat_handle, 0.149).calculate(swaption)
    assert helper.market_value() == pytest.approx(expected, rel=1e-14)
    undated = SwaptionHelper("1Y", "5Y", 0.149, flat_handle)
    assert helper.market_value() > undated.market_value()
    assert helper.implied_volatility(helper.market_value(), accuracy=1e-12) == pytest.approx(0.149, abs=1e-10)


def test_calibrator_passes_valuation_date(flat_handle, context):
    helpers = Calibrator(flat_handle, context).swaption_helpers(FLAT_CURVE_SWAPTIONS, CalibrationErrorType.PRICE_ERROR)
    assert all(h.valuation_date == context.valuation_date for h in helpers)


def test_helpers_from_vol_quotes(flat_handle, context):
    calib = Calibrator(flat_handle, context)
    quotes = [RateQuote(e, v, InstrumentKind.SWAPTION_VOL, underlying=t) for e, t, v in FLAT_CURVE_SWAPTIONS]
    helpers = calib.swaption_helpers(quotes, CalibrationErrorType.IMPLIED_VOL_ERROR)
    assert [h.name for h in helpers] == [q.label for q in quotes]
    assert [h.volatility for h in helpers] == [v for _, _, v in FLAT_CURVE_SWAPTIONS]

    with pytest.raises(ValueError):
        calib.swaption_helpers([RateQuote("1Y", 0.04, InstrumentKind.OIS)], CalibrationErrorType.IMPLIED_VOL_ERROR)
    with pytest.raises(ValueError):
        RateQuote("1Y", 0.149, InstrumentKind.SWAPTION_VOL)


@pytest.fixture
def quantlib_flat_helpers(context):
    """QuantLib swaption helpers (Euribor 6M conventions) on the flat curve."""
    settings = ql.Settings.instance()
    saved = settings.evaluationDate
    settings.evaluationDate = context.valuation_date
    term = ql.YieldTermStructureHandle(ql.FlatForward(context.settlement_date, FLAT_RATE, ql.Actual365Fixed()))
    index = ql.Euribor6M(term)
    helpers = [
        ql.SwaptionHelper(
            ql.Period(expiry),
            ql.Period(tenor),
            ql.QuoteHandle(ql.SimpleQuote(vol)),
            index,
            index.tenor(),
            index.dayCounter(),
            index.dayCounter(),
            term,
            ql.BlackCalibrationHelper.ImpliedVolError,
        )
        for expiry, tenor, vol in FLAT_CURVE_SWAPTIONS
    ]
    yield term, helpers
    settings.evaluationDate = saved


def test_flat_scenario_prices_match_quantlib(quantlib_flat_helpers, flat_handle, context):
    term, ql_helpers = quantlib_flat_helpers
    ql_engine = ql.JamshidianSwaptionEngine(ql.HullWhite(term, 0.05, 0.01))
    engine = JamshidianSwaptionEngine(HullWhite(flat_handle, a=0.05, sigma=0.01))
    helpers = Calibrator(flat_handle, context).swaption_helpers(
        FLAT_CURVE_SWAPTIONS, CalibrationErrorType.IMPLIED_VOL_ERROR, engine=engine
    )
    for ours, theirs in zip(helpers, ql_helpers):
        theirs.setPricingEngine(ql_engine)
        assert ours.market_value() == pytest.approx(theirs.marketValue(), rel=1e-9)
        assert ours.model_value() == pytest.approx(theirs.modelValue(), rel=1e-9)


def test_flat_scenario_calibration_matches_quantlib(quantlib_flat_helpers, flat_handle, context):
    term, ql_helpers = quantlib_flat_helpers
    ql_model = ql.HullWhite(term, 0.1, 0.01)
    ql_engine = ql.JamshidianSwaptionEngine(ql_model)
    for helper in ql_helpers:
        helper.setPricingEngine(ql_engine)
    ql_model.calibrate(ql_helpers, ql.LevenbergMarquardt(), ql.EndCriteria(1000, 100, 1e-10, 1e-12, 1e-12))
    ql_a, ql_sigma = list(ql_model.params())

    calib = Calibrator(flat_handle, context, end_criteria=EndCriteria(1000, 100, 1e-10, 1e-12, 1e-12))
    _, helpers, result = calib.calibrate_hw(FLAT_CURVE_SWAPTIONS, CalibrationErrorType.IMPLIED_VOL_ERROR, a=0.1, sigma=0.01)

    assert result.a == pytest.approx(ql_a, abs=1e-4)
    assert result.sigma == pytest.approx(ql_sigma, abs=1e-5)
    for ours, theirs, (_, _, vol) in zip(helpers, ql_helpers, FLAT_CURVE_SWAPTIONS):
        ql_implied = theirs.impliedVolatility(theirs.modelValue(), 1e-12, 1000, 0.01, 1.0)
        implied = ours.implied_volatility(ours.model_value(), accuracy=1e-12, min_vol=0.01, max_vol=1.0)
        assert implied - vol == pytest.approx(ql_implied - vol, abs=5e-5)
