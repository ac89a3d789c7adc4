"""Black (lognormal) formula and its inversion."""

import math

from scipy.stats import norm

from .errors import NoImpliedVolatility, SolverError
from .instruments import OptionType
from .solvers import newton_safe


def black_formula(option_type, strike, forward, std_dev, discount=1.0):
    """Undiscounted Black price times ``discount``.

    ``std_dev`` is the total standard deviation (vol * sqrt(T)).
    """
    w = int(OptionType(option_type))
    if std_dev <= 0.0 or strike <= 0.0:
        return discount * max(w * (forward - strike), 0.0)
    d1 = math.log(forward / strike) / std_dev + 0.5 * std_dev
    d2 = d1 - std_dev
    return discount * w * (forward * norm.cdf(w * d1) - strike * norm.cdf(w * d2))


def black_formula_std_dev_derivative(strike, forward, std_dev, discount=1.0):
    """Derivative of the Black price with respect to ``std_dev``."""
    if std_dev <= 0.0 or strike <= 0.0:
        return 0.0
    d1 = math.log(forward / strike) / std_dev + 0.5 * std_dev
    return discount * forward * norm.pdf(d1)


def implied_black_volatility(
    target_price,
    option_type,
    strike,
    forward,
    expiry,
    annuity=1.0,
    guess=None,
    accuracy=1e-4,
    max_evaluations=1000,
    min_vol=0.05,
    max_vol=0.50,
):
    """Volatility that makes ``annuity * Black(strike, forward, vol * sqrt(expiry))``
    equal to ``target_price``.

    Raises
    ------
    NoImpliedVolatility
        If the target lies outside the prices reachable in
        ``[min_vol, max_vol]`` or the search does not converge.
    """
    if expiry <= 0.0:
        raise NoImpliedVolatility(f"expiry must be positive, got {expiry}")
    sqrt_t = math.sqrt(expiry)

    def price(vol):
        return black_formula(option_type, strike, forward, vol * sqrt_t, annuity)

    def vega(vol):
        return black_formula_std_dev_derivative(strike, forward, vol * sqrt_t, annuity) * sqrt_t

    low_price = price(min_vol)
    high_price = price(max_vol)
    if not low_price <= target_price <= high_price:
        raise NoImpliedVolatility(
            f"price {target_price:.10g} outside [{low_price:.10g}, {high_price:.10g}] "
            f"attainable for volatilities in [{min_vol}, {max_vol}]"
        )

    try:
        return newton_safe(
            lambda v: price(v) - target_price,
            vega,
            min_vol,
            max_vol,
            accuracy=accuracy,
            max_evaluations=max_evaluations,
            guess=guess,
        )
    except SolverError as exc:
        raise NoImpliedVolatility(str(exc)) from exc
