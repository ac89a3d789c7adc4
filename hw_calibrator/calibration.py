import logging
import math
import warnings
from dataclasses import dataclass
from enum import Enum

import numpy as np
import pandas as pd
import QuantLib as ql

from .black import implied_black_volatility
from .curve import as_handle
from .engines import BlackSwaptionEngine, JamshidianSwaptionEngine
from .errors import CalibrationNonConvergence, NoImpliedVolatility
from .instruments import OptionType, SwapType, Swaption, VanillaSwap
from .market import InstrumentKind, RateQuote
from .model import HullWhite, ModelParameters
from .optimization import EndCriteria, EndCriteriaType, LevenbergMarquardt
from .utils import DateUtils, ValuationContext

logger = logging.getLogger(__name__)


class CalibrationErrorType(Enum):
    """How a helper measures the model/market mismatch."""

    PRICE_ERROR = "price"
    RELATIVE_PRICE_ERROR = "relative_price"
    IMPLIED_VOL_ERROR = "implied_vol"
    RELATIVE_IMPLIED_VOL_ERROR = "relative_implied_vol"


class SwaptionHelper:
    """European swaption quoted by its Black volatility.

    Conventions follow a EUR swaption on Euribor 6M: exercise ``expiry``
    after the curve reference date (modified following), swap start two TARGET
    business days later, semiannual Actual/360 fixed and floating legs.
    Dates are rebuilt on every call from the current curve, so relinking the
    curve handle is picked up immediately. With ``strike=None`` the swaption
    is at the money of the current curve.

    Parameters
    ----------
    expiry, tenor : QuantLib.Period or str
    volatility : float
        Market Black volatility (decimal).
    curve : DiscountCurve or CurveHandle
    error_type : CalibrationErrorType
    engine : PricingEngine, optional
        Model engine, usually a :class:`JamshidianSwaptionEngine`.
    valuation_date : QuantLib.Date, optional
        Date the Black volatility is measured from (Actual/365 Fixed by
        default). Without it the curve reference date is used.
    """

    def __init__(
        self,
        expiry,
        tenor,
        volatility,
        curve,
        error_type=CalibrationErrorType.IMPLIED_VOL_ERROR,
        engine=None,
        strike=None,
        notional=1.0,
        swap_type=SwapType.PAYER,
        calendar=None,
        settlement_days=2,
        fixed_tenor="6M",
        fixed_day_counter=None,
        float_tenor="6M",
        float_day_counter=None,
        implied_vol_accuracy=1e-12,
        implied_vol_max_evaluations=1000,
        implied_vol_bounds=(1e-6, 10.0),
        valuation_date=None,
        volatility_day_counter=None,
        name=None,
    ):
        self.expiry = DateUtils.ensure_period(expiry)
        self.tenor = DateUtils.ensure_period(tenor)
        self.volatility = float(volatility)
        if self.volatility <= 0.0:
            raise ValueError(f"market volatility must be positive, got {volatility}")
        self.curve_handle = as_handle(curve)
        self.error_type = CalibrationErrorType(error_type)
        self.engine = engine
        self.strike = None if strike is None else float(strike)
        self.notional = float(notional)
        self.swap_type = SwapType(swap_type)
        self.calendar = calendar or ql.TARGET()
        self.settlement_days = int(settlement_days)
        self.fixed_tenor = DateUtils.ensure_period(fixed_tenor)
        self.fixed_day_counter = fixed_day_counter or ql.Actual360()
        self.float_tenor = DateUtils.ensure_period(float_tenor)
        self.float_day_counter = float_day_counter or ql.Actual360()
        self.implied_vol_accuracy = float(implied_vol_accuracy)
        self.implied_vol_max_evaluations = int(implied_vol_max_evaluations)
        self.implied_vol_bounds = (float(implied_vol_bounds[0]), float(implied_vol_bounds[1]))
        self.valuation_date = None if valuation_date is None else DateUtils.to_ql_date(valuation_date)
        self.volatility_day_counter = volatility_day_counter or ql.Actual365Fixed()
        self.name = name or f"{DateUtils.label(self.expiry)}x{DateUtils.label(self.tenor)}"

    def set_pricing_engine(self, engine):
        self.engine = engine

    # ------------------------------------------------------------------
    # Instrument
    # ------------------------------------------------------------------
    def swaption(self, curve=None):
        """Underlying :class:`Swaption` on the current (or given) curve."""
        curve = curve or self.curve_handle.current_link
        if curve.reference_date is None:
            raise ValueError(f"{self.name}: curve has no reference date")
        exercise = self.calendar.advance(curve.reference_date, self.expiry, ql.ModifiedFollowing)
        start = self.calendar.advance(exercise, self.settlement_days, ql.Days)
        end = start + self.tenor
        swap = VanillaSwap.from_dates(
            self.swap_type,
            self.notional,
            start,
            end,
            0.0 if self.strike is None else self.strike,
            curve.time_from_date,
            calendar=self.calendar,
            fixed_tenor=self.fixed_tenor,
            fixed_convention=ql.ModifiedFollowing,
            fixed_day_counter=self.fixed_day_counter,
            float_tenor=self.float_tenor,
            float_convention=ql.ModifiedFollowing,
            float_day_counter=self.float_day_counter,
            name=self.name,
        )
        swaption = Swaption(swap, curve.time_from_date(exercise), self._volatility_time(exercise))
        if self.strike is None:
            swaption = Swaption(
                swap.with_fixed_rate(swaption.forward_swap_rate(curve)),
                swaption.exercise_time,
                swaption.volatility_time,
            )
        return swaption

    def _volatility_time(self, exercise):
        if self.valuation_date is None:
            return None
        return float(self.volatility_day_counter.yearFraction(self.valuation_date, exercise))

    # ------------------------------------------------------------------
    # Values
    # ------------------------------------------------------------------
    def black_price(self, volatility, swaption=None):
        swaption = swaption or self.swaption()
        return BlackSwaptionEngine(self.curve_handle, volatility).calculate(swaption)

    def market_value(self, swaption=None):
        return self.black_price(self.volatility, swaption)

    def model_value(self, model=None, swaption=None):
        """Model price with the helper's engine, rebound to ``model`` if given."""
        if self.engine is None:
            raise ValueError(f"{self.name}: no pricing engine set")
        engine = self.engine if model is None else self.engine.with_model(model)
        return engine.calculate(swaption or self.swaption())

    def implied_volatility(
        self,
        target_value,
        accuracy=1e-4,
        max_evaluations=1000,
        min_vol=0.05,
        max_vol=0.50,
        guess=None,
        swaption=None,
    ):
        """Black volatility reproducing ``target_value``.

        Raises
        ------
        NoImpliedVolatility
        """
        swaption = swaption or self.swaption()
        curve = self.curve_handle.current_link
        option_type = OptionType.CALL if swaption.swap_type == SwapType.PAYER else OptionType.PUT
        if guess is None:
            guess = min(max(self.volatility, min_vol), max_vol)
        return implied_black_volatility(
            target_value,
            option_type,
            swaption.strike,
            swaption.forward_swap_rate(curve),
            swaption.volatility_time,
            annuity=swaption.swap.notional * swaption.swap.annuity(curve),
            guess=guess,
            accuracy=accuracy,
            max_evaluations=max_evaluations,
            min_vol=min_vol,
            max_vol=max_vol,
        )

    def calibration_error(self, model=None):
        """Residual of this helper for ``model`` under its error type."""
        swaption = self.swaption()
        model_value = self.model_value(model, swaption)
        if self.error_type is CalibrationErrorType.PRICE_ERROR:
            return model_value - self.market_value(swaption)
        if self.error_type is CalibrationErrorType.RELATIVE_PRICE_ERROR:
            market_value = self.market_value(swaption)
            return (model_value - market_value) / market_value

        min_vol, max_vol = self.implied_vol_bounds
        implied = self.implied_volatility(
            model_value,
            accuracy=self.implied_vol_accuracy,
            max_evaluations=self.implied_vol_max_evaluations,
            min_vol=min_vol,
            max_vol=max_vol,
            swaption=swaption,
        )
        if self.error_type is CalibrationErrorType.IMPLIED_VOL_ERROR:
            return implied - self.volatility
        return (implied - self.volatility) / self.volatility

    def __repr__(self):
        return f"SwaptionHelper({self.name}, vol={self.volatility:.4f}, {self.error_type.name})"


@dataclass(frozen=True)
class InstrumentResult:
    name: str
    expiry: str
    tenor: str
    model_value: float
    market_value: float
    model_volatility: float
    market_volatility: float
    residual: float

    @property
    def volatility_difference(self):
        return self.model_volatility - self.market_volatility


@dataclass(frozen=True)
class CalibrationResult:
    """Outcome of :meth:`Calibrator.calibrate`.

    ``objective_value`` is the sum of squared residuals at ``params``;
    ``converged`` is False only when the iteration limit was hit.
    """

    params: ModelParameters
    error_type: CalibrationErrorType
    iterations: int
    function_evaluations: int
    objective_value: float
    initial_objective_value: float
    end_criteria: EndCriteriaType
    converged: bool
    instruments: tuple

    @property
    def a(self):
        return self.params.a

    @property
    def sigma(self):
        return self.params.sigma

    def to_frame(self):
        rows = []
        for inst in self.instruments:
            rows.append(
                {
                    "instrument": inst.name,
                    "expiry": inst.expiry,
                    "tenor": inst.tenor,
                    "model_value": inst.model_value,
                    "market_value": inst.market_value,
                    "model_vol": inst.model_volatility,
                    "market_vol": inst.market_volatility,
                    "vol_diff": inst.volatility_difference,
                    "residual": inst.residual,
                }
            )
        return pd.DataFrame(rows)

    def to_dict(self):
        return {
            "a": self.a,
            "sigma": self.sigma,
            "error_type": self.error_type.value,
            "iterations": self.iterations,
            "function_evaluations": self.function_evaluations,
            "objective_value": self.objective_value,
            "initial_objective_value": self.initial_objective_value,
            "end_criteria": self.end_criteria.value,
            "converged": self.converged,
        }


class Calibrator:
    """Hull-White calibration to European swaptions.

    Every residual evaluation prices all helpers on an immutable snapshot of
    the model (``model.with_params``), optionally in parallel through
    ``executor`` (a ``concurrent.futures`` executor; thread pools work
    without pickling). The caller's model only receives the final parameters.

    Parameters
    ----------
    curve_handle : CurveHandle or DiscountCurve
    context : ValuationContext, optional
        Calendar and settlement lag of the helpers built by
        :meth:`swaption_helpers`.
    end_criteria : EndCriteria, optional
    optimizer : LevenbergMarquardt, optional
    executor : concurrent.futures.Executor, optional
    sigma_floor : float
        Lower bound on sigma during the search. ``a`` is unbounded.
    """

    def __init__(self, curve_handle, context=None, end_criteria=None, optimizer=None, executor=None, sigma_floor=1e-5):
        self.curve_handle = as_handle(curve_handle)
        self.context = context
        self.end_criteria = end_criteria or EndCriteria()
        self.optimizer = optimizer or LevenbergMarquardt()
        self.executor = executor
        self.sigma_floor = float(sigma_floor)

    def _context(self):
        if self.context is None:
            self.context = ValuationContext(self.curve_handle.reference_date)
        return self.context

    def swaption_helpers(self, vol_data, error_type, engine=None, **helper_kwargs):
        """Build :class:`SwaptionHelper` objects from swaption vol quotes.

        ``vol_data`` holds :class:`RateQuote` objects of kind ``SWAPTION_VOL``
        or ``(expiry, tenor, vol)`` triples. Calendar, settlement lag and the
        volatility valuation date come from the context unless overridden.
        """
        context = self._context()
        options = {
            "calendar": context.calendar,
            "settlement_days": context.settlement_days,
            "valuation_date": context.valuation_date,
        }
        options.update(helper_kwargs)
        helpers = []
        for item in vol_data:
            if isinstance(item, RateQuote):
                if item.kind is not InstrumentKind.SWAPTION_VOL:
                    raise ValueError(f"{item.label}: not a swaption volatility quote ({item.kind.value})")
                expiry, tenor, vol = item.tenor, item.underlying, item.value
            else:
                expiry, tenor, vol = item
            helpers.append(
                SwaptionHelper(expiry, tenor, vol, self.curve_handle, error_type=error_type, engine=engine, **options)
            )
        return helpers

    def residual_function(self, helpers, model):
        """``x -> residuals`` over snapshots of ``model`` with parameters ``x``."""

        def residuals(x):
            snapshot = model.with_params(ModelParameters.from_array(x))
            if self.executor is None:
                return np.array([h.calibration_error(snapshot) for h in helpers])
            return np.array(list(self.executor.map(lambda h: h.calibration_error(snapshot), helpers)))

        return residuals

    def calibrate(self, helpers, model, end_criteria=None):
        """Fit ``model`` (a, sigma) to ``helpers`` with Levenberg-Marquardt.

        The helpers' engines are rebound to parameter snapshots during the
        search; pricing errors abort the calibration. When the iteration
        limit is hit a :class:`CalibrationNonConvergence` warning is issued
        and the best parameters found are still applied.

        Returns
        -------
        CalibrationResult
        """
        helpers = list(helpers)
        if not helpers:
            raise ValueError("no calibration instruments")
        error_types = {h.error_type for h in helpers}
        if len(error_types) != 1:
            raise ValueError(f"helpers mix calibration error types: {sorted(e.value for e in error_types)}")
        error_type = error_types.pop()
        ec = end_criteria or self.end_criteria

        x0 = model.params.as_array()
        x0[1] = max(x0[1], self.sigma_floor)
        logger.info(
            "Calibrating Hull-White to %d swaptions (%s), start a=%.6f sigma=%.6f",
            len(helpers), error_type.value, x0[0], x0[1],
        )
        opt = self.optimizer.minimize(
            self.residual_function(helpers, model),
            x0,
            ec,
            lower_bounds=[-np.inf, self.sigma_floor],
        )

        params = ModelParameters.from_array(opt.x)
        model.set_params(params)
        if not opt.converged:
            warnings.warn(
                CalibrationNonConvergence(
                    f"calibration stopped after {opt.iterations} iterations without meeting the end criteria "
                    f"(objective {opt.cost:.6e}); returning a={params.a:.6f}, sigma={params.sigma:.6f}"
                ),
                stacklevel=2,
            )
        logger.info(
            "Calibrated a=%.6f sigma=%.6f (%s, objective %.6e)",
            params.a, params.sigma, opt.end_criteria.value, opt.cost,
        )

        instruments = tuple(
            self._instrument_result(helper, model, float(residual))
            for helper, residual in zip(helpers, opt.residuals)
        )
        return CalibrationResult(
            params=params,
            error_type=error_type,
            iterations=opt.iterations,
            function_evaluations=opt.function_evaluations,
            objective_value=opt.cost,
            initial_objective_value=opt.initial_cost,
            end_criteria=opt.end_criteria,
            converged=opt.converged,
            instruments=instruments,
        )

    @staticmethod
    def _instrument_result(helper, model, residual):
        swaption = helper.swaption()
        model_value = helper.model_value(model, swaption)
        try:
            implied = helper.implied_volatility(model_value, swaption=swaption)
        except NoImpliedVolatility as exc:
            logger.warning("%s: no implied volatility for the model value (%s)", helper.name, exc)
            implied = math.nan
        return InstrumentResult(
            name=helper.name,
            expiry=DateUtils.label(helper.expiry),
            tenor=DateUtils.label(helper.tenor),
            model_value=model_value,
            market_value=helper.market_value(swaption),
            model_volatility=implied,
            market_volatility=helper.volatility,
            residual=residual,
        )

    def calibrate_hw(self, vol_data, error_type, a=0.1, sigma=0.01, end_criteria=None, **helper_kwargs):
        """Build helpers and a Hull-White model with a Jamshidian engine, then calibrate.

        Returns
        -------
        tuple
            ``(model, helpers, CalibrationResult)``
        """
        model = HullWhite(self.curve_handle, a, sigma)
        engine = JamshidianSwaptionEngine(model)
        helpers = self.swaption_helpers(vol_data, error_type, engine=engine, **helper_kwargs)
        result = self.calibrate(helpers, model, end_criteria)
        return model, helpers, result
