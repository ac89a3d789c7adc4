"""Error taxonomy of the calibration engine.

Curve construction failures abort the build (no partial curve is returned).
Pricing failures abort the instrument being priced and, when raised inside a
calibration, the whole calibration. Non-convergence of the optimizer is soft:
it is reported through :class:`CalibrationNonConvergence` (a warning) and the
``converged`` flag of the result.
"""


class CalibrationEngineError(Exception):
    """Base class for every error raised by ``hw_calibrator``."""


class CurveError(CalibrationEngineError):
    """Discount curve construction or query failed."""


class AmbiguousNode(CurveError):
    """Two curve nodes (or bootstrap helpers) share the same time."""


class BootstrapFailure(CurveError):
    """The root search for one bootstrap node did not converge.

    Attributes
    ----------
    helper : RateHelper or None
        The instrument whose node could not be solved.
    """

    def __init__(self, message, helper=None):
        super().__init__(message)
        self.helper = helper


class ExtrapolationError(CurveError):
    """A curve was queried beyond its last node with extrapolation disabled."""


class InvalidParameters(CalibrationEngineError, ValueError):
    """Model parameters outside their admissible domain."""


class NumericalInstability(CalibrationEngineError, ArithmeticError):
    """A closed-form evaluation produced a non-finite number."""


class SolverError(CalibrationEngineError):
    """A one-dimensional solver failed (no bracket, too many evaluations)."""


class PricingError(CalibrationEngineError):
    """Pricing of a single instrument failed."""


class CriticalRateNotFound(PricingError):
    """Jamshidian decomposition: no short rate prices the coupon bond at par."""


class NoImpliedVolatility(PricingError):
    """The target price cannot be matched by a volatility in the bounds."""


class CalibrationNonConvergence(UserWarning):
    """The optimizer stopped on the iteration limit before converging."""
