"""Piecewise discount-curve bootstrapping from money-market and OIS quotes."""

import abc
import logging
import math

import numpy as np
import QuantLib as ql
from scipy import optimize

from .curve import DiscountCurve, Extrapolation, Interpolation
from .errors import AmbiguousNode, BootstrapFailure, CalibrationEngineError
from .utils import DateUtils

logger = logging.getLogger(__name__)


class RateHelper(abc.ABC):
    """Bootstrap instrument: a quoted rate and a way to imply it from a curve.

    Times are year fractions on the curve time axis. ``pillar_time`` is the
    node the helper determines (its maturity).
    """

    kind = None

    def __init__(self, quote, pillar_time, name=None):
        self.quote = float(quote)
        self.pillar_time = float(pillar_time)
        self.name = name or f"{self.kind}@{self.pillar_time:.4f}"

    @abc.abstractmethod
    def implied_quote(self, curve):
        """Rate implied by ``curve`` for this instrument."""
        raise NotImplementedError

    def quote_error(self, curve):
        return self.implied_quote(curve) - self.quote

    def __repr__(self):
        return f"{self.__class__.__name__}({self.name}, quote={self.quote:.6f})"


class DepositRateHelper(RateHelper):
    """Simple-compounded deposit: ``(P(s)/P(e) - 1) / tau``."""

    kind = "deposit"

    def __init__(self, quote, start_time, end_time, accrual, name=None):
        super().__init__(quote, end_time, name)
        self.start_time = float(start_time)
        self.accrual = float(accrual)

    @classmethod
    def from_tenor(
        cls,
        quote,
        tenor,
        context,
        convention=ql.ModifiedFollowing,
        day_counter=None,
    ):
        day_counter = day_counter or ql.Actual365Fixed()
        period = DateUtils.ensure_period(tenor)
        start = context.settlement_date
        end = context.calendar.advance(start, period, convention)
        return cls(
            quote,
            context.time(start),
            context.time(end),
            float(day_counter.yearFraction(start, end)),
            name=f"DEPO {DateUtils.label(period)}",
        )

    def implied_quote(self, curve):
        p_start, p_end = curve.discount(np.array([self.start_time, self.pillar_time]))
        return (p_start / p_end - 1.0) / self.accrual


class OISRateHelper(RateHelper):
    """Par overnight-indexed swap rate.

    The compounded overnight leg is worth ``P(s) - P(e)``, the fixed leg
    ``quote * sum(tau_i P(t_i))``.
    """

    kind = "ois"

    def __init__(self, quote, start_time, payment_times, accruals, name=None):
        payment_times = np.asarray(payment_times, dtype=float)
        super().__init__(quote, payment_times[-1], name)
        self.start_time = float(start_time)
        self.payment_times = payment_times
        self.accruals = np.asarray(accruals, dtype=float)

    @classmethod
    def from_tenor(
        cls,
        quote,
        tenor,
        context,
        payment_frequency=ql.Annual,
        convention=ql.ModifiedFollowing,
        day_counter=None,
    ):
        """Build the helper the way an Eonia OIS is quoted (spot start, annual fixed leg)."""
        day_counter = day_counter or ql.Actual360()
        period = DateUtils.ensure_period(tenor)
        start = context.settlement_date
        end = context.calendar.advance(start, period, convention)
        schedule = ql.Schedule(
            start,
            end,
            ql.Period(payment_frequency),
            context.calendar,
            convention,
            convention,
            ql.DateGeneration.Backward,
            False,
        )
        dates = list(schedule)
        times = [context.time(d) for d in dates[1:]]
        accruals = [float(day_counter.yearFraction(d0, d1)) for d0, d1 in zip(dates[:-1], dates[1:])]
        return cls(quote, context.time(start), times, accruals, name=f"OIS {DateUtils.label(period)}")

    def implied_quote(self, curve):
        p = curve.discount(np.concatenate(([self.start_time], self.payment_times)))
        annuity = float(np.dot(self.accruals, p[1:]))
        return (p[0] - p[-1]) / annuity


class PiecewiseCurveBootstrapper:
    """Sequential node-by-node bootstrap of a :class:`DiscountCurve`.

    Each node is parameterised by the continuously compounded forward rate of
    the segment ending at it; ``scipy.optimize.brentq`` solves for the rate
    that reprices the helper. Global interpolations are re-bootstrapped in
    full passes until the nodes stop moving.

    Parameters
    ----------
    interpolation, extrapolation : Interpolation, Extrapolation
        Rules of the resulting curve.
    accuracy : float
        Convergence threshold on the segment forward rates.
    max_passes : int
        Pass limit for global interpolations.
    min_forward_rate, max_forward_rate : float
        Admissible range of the segment forward rate searched for each node.
    """

    def __init__(
        self,
        interpolation=Interpolation.LOG_CUBIC,
        extrapolation=Extrapolation.FLAT_FORWARD,
        accuracy=1e-12,
        max_passes=50,
        min_forward_rate=-1.0,
        max_forward_rate=3.0,
    ):
        self.interpolation = Interpolation(interpolation)
        self.extrapolation = Extrapolation(extrapolation)
        self.accuracy = float(accuracy)
        self.max_passes = int(max_passes)
        self.min_forward_rate = float(min_forward_rate)
        self.max_forward_rate = float(max_forward_rate)

    def _sorted_helpers(self, helpers):
        ordered = sorted(helpers, key=lambda h: h.pillar_time)
        if not ordered:
            raise BootstrapFailure("no instruments given")
        for helper in ordered:
            if helper.pillar_time <= 0.0:
                raise BootstrapFailure(
                    f"{helper.name}: maturity is not after the reference date", helper
                )
        for prev, curr in zip(ordered[:-1], ordered[1:]):
            if abs(curr.pillar_time - prev.pillar_time) < 1e-12:
                raise AmbiguousNode(
                    f"{prev.name} and {curr.name} share the maturity t={curr.pillar_time:.6f}"
                )
        return ordered

    def _curve(self, context, times, dfs):
        return DiscountCurve(
            context.valuation_date if context is not None else None,
            times,
            dfs,
            interpolation=self.interpolation,
            extrapolation=self.extrapolation,
            day_counter=context.day_counter if context is not None else None,
        )

    def _solve_node(self, context, helper, times, dfs, i, guess):
        dt = times[i] - times[i - 1]

        def error(x):
            trial = list(dfs)
            trial[i] = dfs[i - 1] * math.exp(-x * dt)
            return helper.quote_error(self._curve(context, times, trial))

        lo, hi = guess - 0.01, guess + 0.01
        try:
            f_lo, f_hi = error(lo), error(hi)
            # implied quote increases with the segment forward rate
            while f_lo * f_hi > 0.0:
                width = hi - lo
                if f_lo > 0.0:
                    if lo <= self.min_forward_rate:
                        break
                    lo = max(lo - width, self.min_forward_rate)
                    f_lo = error(lo)
                else:
                    if hi >= self.max_forward_rate:
                        break
                    hi = min(hi + width, self.max_forward_rate)
                    f_hi = error(hi)
            if f_lo * f_hi > 0.0:
                raise BootstrapFailure(
                    f"{helper.name}: no discount factor reprices quote {helper.quote:.6f} "
                    f"for forward rates in [{self.min_forward_rate}, {self.max_forward_rate}]",
                    helper,
                )
            x = optimize.brentq(error, lo, hi, xtol=self.accuracy * 1e-2, maxiter=200)
        except BootstrapFailure:
            raise
        except (RuntimeError, ValueError, CalibrationEngineError) as exc:
            raise BootstrapFailure(f"{helper.name}: root search failed ({exc})", helper) from exc
        return x

    def build(self, context, helpers):
        """Bootstrap a curve reproducing every helper's quote.

        Parameters
        ----------
        context : ValuationContext or None
            Supplies the reference date and day counter of the curve.
        helpers : sequence of RateHelper

        Returns
        -------
        DiscountCurve
        """
        helpers = self._sorted_helpers(helpers)
        logger.info(
            "Bootstrapping %d instruments (%s interpolation)",
            len(helpers),
            self.interpolation.value,
        )

        times = [0.0] + [h.pillar_time for h in helpers]
        dfs = [1.0] * len(times)
        rates = [0.03] * len(times)
        solved = 0

        for n_pass in range(1, self.max_passes + 1):
            previous = list(rates)
            for i, helper in enumerate(helpers, start=1):
                if n_pass == 1:
                    # not yet solved nodes: carry the last forward rate flat
                    guess = rates[i - 1] if i > 1 else 0.03
                    for j in range(i, len(times)):
                        rates[j] = guess
                        dfs[j] = dfs[j - 1] * math.exp(-guess * (times[j] - times[j - 1]))
                else:
                    guess = rates[i]
                x = self._solve_node(context, helper, times, dfs, i, guess)
                rates[i] = x
                dfs[i] = dfs[i - 1] * math.exp(-x * (times[i] - times[i - 1]))
                # keep later nodes consistent with their own segment rates
                for j in range(i + 1, len(times)):
                    dfs[j] = dfs[j - 1] * math.exp(-rates[j] * (times[j] - times[j - 1]))
                if n_pass == 1:
                    solved += 1
                    logger.debug(
                        "  %s: t=%.6f quote=%.6f DF=%.10f", helper.name, times[i], helper.quote, dfs[i]
                    )

            if not self.interpolation.is_global:
                break
            change = max(abs(a - b) for a, b in zip(rates[1:], previous[1:]))
            logger.debug("Bootstrap pass %d: max forward change %.3e", n_pass, change)
            if n_pass > 1 and change <= self.accuracy:
                break
        else:
            raise BootstrapFailure(
                f"curve did not converge after {self.max_passes} passes"
            )

        curve = self._curve(context, times, dfs)
        logger.info("Bootstrapped %d nodes up to t=%.4f", solved, curve.max_time)
        return curve
