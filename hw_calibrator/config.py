import logging
import warnings

import QuantLib as ql

from .curve import Extrapolation, Interpolation
from .errors import CalibrationNonConvergence
from .optimization import EndCriteria
from .utils import ValuationContext


class AppConfig:
    """Central configuration object.

    All numerical knobs of a calibration run live here so that a run can be
    reproduced from its config snapshot. Nothing is set process-wide in
    QuantLib: dates are turned into times through the explicit
    :class:`ValuationContext` returned by :meth:`context`.

    Parameters
    ----------
    val_date : QuantLib.Date
        Valuation (trade) date; time 0 of bootstrapped curves.
    settlement_days : int
        Spot lag in TARGET business days.

    Notes
    -----
    - ``iv_*`` fields are the report defaults for implied volatilities of
      model prices; the calibration residual itself uses the tighter
      ``residual_iv_*`` fields so that any model price has an implied vol.
    """

    def __init__(self, val_date, settlement_days=2):
        self.val_date = val_date
        self.settlement_days = int(settlement_days)
        self.calendar = ql.TARGET()
        self.curve_day_counter = ql.Actual365Fixed()

        # ----------------
        # Curve bootstrap
        # ----------------
        self.interpolation = Interpolation.CUBIC
        self.extrapolation = Extrapolation.FLAT_FORWARD
        self.bootstrap_accuracy = 1.0e-12
        self.bootstrap_max_passes = 50

        # ----------------
        # Hull-White start point and bounds
        # ----------------
        self.hw_a0 = 0.1
        self.hw_sigma0 = 0.01
        self.sigma_floor = 1.0e-5

        # ----------------
        # Levenberg-Marquardt end criteria
        # ----------------
        self.max_iterations = 400
        self.max_stationary_state_iterations = 100
        self.root_epsilon = 1.0e-8
        self.function_epsilon = 1.0e-8
        self.gradient_norm_epsilon = 1.0e-8

        # ----------------
        # Implied volatilities
        # ----------------
        self.iv_accuracy = 1.0e-4
        self.iv_max_evaluations = 1000
        self.iv_min_vol = 0.05
        self.iv_max_vol = 0.50
        self.residual_iv_accuracy = 1.0e-12
        self.residual_iv_bounds = (1.0e-6, 10.0)

        # ----------------
        # Global flags
        # ----------------
        self.log_level = "INFO"
        self.suppress_warnings = False

    def apply_global_settings(self):
        """Configure logging and warning filters."""
        logging.basicConfig(
            level=getattr(logging, str(self.log_level).upper(), logging.INFO),
            format="%(asctime)s %(levelname)-7s %(name)s: %(message)s",
        )
        if self.suppress_warnings:
            warnings.filterwarnings("ignore")
        else:
            warnings.simplefilter("always", CalibrationNonConvergence)

    def context(self):
        return ValuationContext(
            self.val_date,
            calendar=self.calendar,
            day_counter=self.curve_day_counter,
            settlement_days=self.settlement_days,
        )

    def end_criteria(self):
        return EndCriteria(
            max_iterations=self.max_iterations,
            max_stationary_state_iterations=self.max_stationary_state_iterations,
            root_epsilon=self.root_epsilon,
            function_epsilon=self.function_epsilon,
            gradient_norm_epsilon=self.gradient_norm_epsilon,
        )

    def helper_options(self):
        """Keyword arguments for :class:`SwaptionHelper` residual settings."""
        return {
            "implied_vol_accuracy": self.residual_iv_accuracy,
            "implied_vol_max_evaluations": self.iv_max_evaluations,
            "implied_vol_bounds": self.residual_iv_bounds,
        }
