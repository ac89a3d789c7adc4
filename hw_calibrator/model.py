"""One-factor Hull-White model fitted to an initial discount curve.

    dr(t) = (theta(t) - a r(t)) dt + sigma dW(t)

theta(t) is implied analytically from the curve, so the model reprices the
curve exactly whatever (a, sigma) are. Only (a, sigma) are calibrated to
option prices.

References
----------
Brigo, D. and Mercurio, F., Interest Rate Models - Theory and Practice,
section 3.3.2.
"""

import math
from dataclasses import dataclass

import numpy as np

from .black import black_formula
from .curve import as_handle
from .errors import InvalidParameters, NumericalInstability
from .instruments import OptionType

# Below this |x| the ratio (1 - exp(-x)) / x is evaluated by its Taylor series
_TAYLOR_THRESHOLD = 1e-6


def _one_minus_exp_ratio(x):
    """(1 - exp(-x)) / x, stable for x -> 0 and negative x."""
    x = np.asarray(x, dtype=float)
    small = np.abs(x) < _TAYLOR_THRESHOLD
    safe = np.where(small, 1.0, x)
    exact = -np.expm1(-safe) / safe
    series = 1.0 - x / 2.0 + x * x / 6.0
    return np.where(small, series, exact)


@dataclass(frozen=True)
class ModelParameters:
    """Hull-White parameters: mean reversion ``a`` and volatility ``sigma``."""

    a: float
    sigma: float

    def __post_init__(self):
        if not (math.isfinite(self.a) and math.isfinite(self.sigma)):
            raise InvalidParameters(f"non-finite parameters a={self.a}, sigma={self.sigma}")
        if self.sigma < 0.0:
            raise InvalidParameters(f"sigma must be non-negative, got {self.sigma}")

    def as_array(self):
        return np.array([self.a, self.sigma], dtype=float)

    @classmethod
    def from_array(cls, x):
        return cls(float(x[0]), float(x[1]))


class HullWhite:
    """Hull-White model with analytic bond and bond-option prices.

    Parameters
    ----------
    curve : DiscountCurve or CurveHandle
        Initial term structure. A handle is kept (never a copy), so relinking
        it changes the model's fitted drift immediately.
    a, sigma : float
        Initial mean reversion and volatility.
    """

    def __init__(self, curve, a=0.1, sigma=0.01):
        self._handle = as_handle(curve)
        self._params = ModelParameters(float(a), float(sigma))

    # ------------------------------------------------------------------
    # Parameters
    # ------------------------------------------------------------------
    @property
    def params(self):
        return self._params

    @property
    def a(self):
        return self._params.a

    @property
    def sigma(self):
        return self._params.sigma

    @property
    def curve_handle(self):
        return self._handle

    @property
    def curve(self):
        return self._handle.current_link

    def set_params(self, params):
        if not isinstance(params, ModelParameters):
            params = ModelParameters.from_array(params)
        self._params = params

    def with_params(self, params):
        """Snapshot of this model with other parameters (same curve handle)."""
        if not isinstance(params, ModelParameters):
            params = ModelParameters.from_array(params)
        return HullWhite(self._handle, params.a, params.sigma)

    # ------------------------------------------------------------------
    # Analytic building blocks
    # ------------------------------------------------------------------
    def B(self, t, T):
        tau = np.asarray(T, dtype=float) - t
        return tau * _one_minus_exp_ratio(self.a * tau)

    def _variance_factor(self, t):
        """(1 - exp(-2 a t)) / (2 a)."""
        return t * _one_minus_exp_ratio(2.0 * self.a * t)

    def short_rate_variance(self, t):
        """Variance of r(t) seen from time 0."""
        return float(self.sigma ** 2 * self._variance_factor(float(t)))

    @property
    def r0(self):
        """Initial short rate: the curve's instantaneous forward at 0."""
        return self.curve.instantaneous_forward(0.0)

    def A(self, t, T):
        curve = self.curve
        b = self.B(t, T)
        p_t = curve.discount(float(t))
        p_T = curve.discount(T)
        f_t = curve.instantaneous_forward(float(t))
        var = self._variance_factor(float(t))
        return p_T / p_t * np.exp(b * f_t - 0.5 * self.sigma ** 2 * var * b * b)

    def zero_bond_price(self, t, T, r):
        """Price at ``t`` of the zero-coupon bond maturing at ``T`` given r(t) = ``r``.

        ``T`` may be an array; the result then has the same shape.
        """
        scalar = np.ndim(T) == 0
        values = self.A(t, T) * np.exp(-self.B(t, T) * r)
        if not np.all(np.isfinite(values)):
            raise NumericalInstability(
                f"non-finite bond price for a={self.a}, sigma={self.sigma}, t={t}, r={r}"
            )
        return float(values) if scalar else values

    def discount(self, T):
        """Model discount factor P(0, T) (equals the curve's by construction)."""
        return self.zero_bond_price(0.0, T, self.r0)

    def discount_bond_option(self, option_type, strike, maturity, bond_maturity, bond_start=None):
        """European option expiring at ``maturity`` on a zero-coupon bond.

        With ``bond_start`` (``maturity <= bond_start < bond_maturity``) the
        underlying is the forward bond P(T, Tm) / P(T, Ts) and the strike is
        paid at ``bond_start``; the payoff at ``maturity`` is then
        ``max(w (P(T, Tm) - K P(T, Ts)), 0)``.
        """
        option_type = OptionType(option_type)
        maturity = float(maturity)
        bond_maturity = float(bond_maturity)
        bond_start = maturity if bond_start is None else float(bond_start)
        if not maturity <= bond_start < bond_maturity:
            raise ValueError(
                f"need maturity <= bond_start < bond_maturity, got {maturity}, {bond_start}, {bond_maturity}"
            )

        std_dev = (
            self.sigma
            * math.exp(-self.a * (bond_start - maturity))
            * float(self.B(bond_start, bond_maturity))
            * math.sqrt(self._variance_factor(maturity))
        )
        forward = self.curve.discount(bond_maturity)
        strike_value = self.curve.discount(bond_start) * float(strike)
        return black_formula(option_type, strike_value, forward, std_dev)

    def __repr__(self):
        return f"HullWhite(a={self.a:.6g}, sigma={self.sigma:.6g})"

