"""Hull-White short-rate calibration engine.

This package provides:
- Discount curve bootstrapping from deposit / OIS quotes
- One-factor Hull-White model with analytic bond and bond-option prices
- Jamshidian and Black swaption engines, Black implied volatility solver
- Levenberg-Marquardt calibration of (a, sigma) to swaption volatilities
- Market data loaders and reporting helpers
"""

from .bootstrap import DepositRateHelper, OISRateHelper, PiecewiseCurveBootstrapper
from .calibration import CalibrationErrorType, CalibrationResult, Calibrator, SwaptionHelper
from .config import AppConfig
from .curve import CurveHandle, DiscountCurve, Extrapolation, Interpolation
from .engines import BlackSwaptionEngine, JamshidianSwaptionEngine
from .instruments import OptionType, Swaption, SwapType, VanillaSwap
from .market import InstrumentKind, MarketLoader, RateQuote
from .model import HullWhite, ModelParameters
from .optimization import EndCriteria, EndCriteriaType, LevenbergMarquardt
from .utils import DateUtils, ValuationContext
