import logging

import numpy as np
from scipy import optimize

from ..errors import CriticalRateNotFound
from ..instruments import OptionType, SwapType
from .base import PricingEngine

logger = logging.getLogger(__name__)


class JamshidianSwaptionEngine(PricingEngine):
    """Analytic swaption price under Hull-White by Jamshidian's decomposition.

    At expiry T0 the payer swap is worth ``N P(T0, s) - sum c_i P(T0, t_i)``
    (floating leg at par from the start ``s``, fixed coupons ``c_i`` with the
    notional added to the last one). Zero bond prices are decreasing in the
    short rate, so there is a unique r* with
    ``sum c_i P(T0, t_i, r*) / P(T0, s, r*) = N``; the swaption is then a
    portfolio of options on the zero bonds struck at
    ``K_i = P(T0, t_i, r*) / P(T0, s, r*)``: puts for a payer swaption, calls
    for a receiver.

    Parameters
    ----------
    model : HullWhite
    accuracy : float
        Absolute tolerance of the critical-rate search.
    max_evaluations : int
        Iteration limit of the critical-rate search.
    rate_bracket : tuple of float
        Initial short-rate bracket, widened until it contains r*.
    max_rate : float
        Bound on |r| while widening the bracket.
    """

    def __init__(self, model, accuracy=1e-14, max_evaluations=200, rate_bracket=(-0.1, 0.2), max_rate=5.0):
        self.model = model
        self.accuracy = float(accuracy)
        self.max_evaluations = int(max_evaluations)
        self.rate_bracket = (float(rate_bracket[0]), float(rate_bracket[1]))
        self.max_rate = float(max_rate)

    def with_model(self, model):
        """Same engine settings bound to another model (e.g. a parameter snapshot)."""
        return JamshidianSwaptionEngine(
            model,
            accuracy=self.accuracy,
            max_evaluations=self.max_evaluations,
            rate_bracket=self.rate_bracket,
            max_rate=self.max_rate,
        )

    def critical_rate(self, expiry, start, times, amounts, notional):
        """Short rate at ``expiry`` at which the coupon bond is worth ``notional`` at ``start``."""
        model = self.model
        if notional <= 0.0 or np.any(amounts < 0.0) or not np.any(amounts > 0.0):
            raise CriticalRateNotFound(
                f"degenerate cashflows (notional={notional}, amounts={np.round(amounts, 8).tolist()})"
            )

        def excess_value(r):
            bonds = model.zero_bond_price(expiry, times, r)
            return float(np.dot(amounts, bonds)) / model.zero_bond_price(expiry, start, r) - notional

        lo, hi = self.rate_bracket
        f_lo, f_hi = excess_value(lo), excess_value(hi)
        # excess_value is decreasing in r
        while f_lo * f_hi > 0.0:
            width = hi - lo
            if f_lo < 0.0:
                if lo <= -self.max_rate:
                    break
                lo = max(lo - width, -self.max_rate)
                f_lo = excess_value(lo)
            else:
                if hi >= self.max_rate:
                    break
                hi = min(hi + width, self.max_rate)
                f_hi = excess_value(hi)
        if f_lo * f_hi > 0.0:
            raise CriticalRateNotFound(
                f"no short rate in [{-self.max_rate}, {self.max_rate}] prices the coupon bond at par "
                f"(expiry={expiry:.4f})"
            )
        try:
            return optimize.brentq(excess_value, lo, hi, xtol=self.accuracy, maxiter=self.max_evaluations)
        except RuntimeError as exc:
            raise CriticalRateNotFound(f"critical rate search did not converge: {exc}") from exc

    def calculate(self, swaption):
        model = self.model
        swap = swaption.swap
        expiry = swaption.exercise_time
        start = swap.start_time

        times, amounts = swap.fixed_cashflows()
        alive = times > expiry
        times, amounts = times[alive], amounts[alive]
        if len(times) == 0:
            raise CriticalRateNotFound(f"no fixed cashflow after expiry {expiry:.4f}")

        r_star = self.critical_rate(expiry, start, times, amounts, swap.notional)
        strikes = model.zero_bond_price(expiry, times, r_star) / model.zero_bond_price(expiry, start, r_star)

        option_type = OptionType.PUT if swaption.swap_type == SwapType.PAYER else OptionType.CALL
        value = 0.0
        for t_i, c_i, k_i in zip(times, amounts, strikes):
            value += c_i * model.discount_bond_option(option_type, k_i, expiry, t_i, bond_start=start)

        logger.debug("Jamshidian: expiry=%.4f r*=%.8f value=%.10f", expiry, r_star, value)
        return float(value)
