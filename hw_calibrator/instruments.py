"""Fixed/floating swaps and European swaptions on the curve time axis.

The numerical core works on year fractions. ``from_dates`` constructors
consume QuantLib schedules (dates) and convert them once with a ``time_of``
callable, typically ``DiscountCurve.time_from_date``.
"""

from enum import IntEnum

import numpy as np
import QuantLib as ql

from .utils import DateUtils


class OptionType(IntEnum):
    CALL = 1
    PUT = -1


class SwapType(IntEnum):
    """Payer pays the fixed leg, receiver receives it."""

    PAYER = 1
    RECEIVER = -1


def _schedule_dates(start, end, tenor, calendar, convention):
    schedule = ql.Schedule(
        start,
        end,
        DateUtils.ensure_period(tenor),
        calendar,
        convention,
        convention,
        ql.DateGeneration.Forward,
        False,
    )
    return list(schedule)


class VanillaSwap:
    """Single-curve fixed-for-floating swap (no spread on the floating leg).

    Parameters
    ----------
    swap_type : SwapType
    notional : float
    start_time : float
        Accrual start of both legs.
    fixed_payment_times, fixed_accruals : sequence of float
        Fixed leg payment times and accrual fractions.
    fixed_rate : float
    float_times, float_accruals : sequence of float, optional
        Floating period boundaries ``[start, t1, ..., end]`` and the accrual
        fraction of each period. Default: a single period to the last fixed
        payment.
    """

    def __init__(
        self,
        swap_type,
        notional,
        start_time,
        fixed_payment_times,
        fixed_accruals,
        fixed_rate,
        float_times=None,
        float_accruals=None,
        name=None,
    ):
        self.swap_type = SwapType(swap_type)
        self.notional = float(notional)
        self.start_time = float(start_time)
        self.fixed_payment_times = np.asarray(fixed_payment_times, dtype=float)
        self.fixed_accruals = np.asarray(fixed_accruals, dtype=float)
        self.fixed_rate = float(fixed_rate)
        if len(self.fixed_payment_times) == 0:
            raise ValueError("swap needs at least one fixed payment")
        if len(self.fixed_payment_times) != len(self.fixed_accruals):
            raise ValueError("fixed payment times and accruals differ in length")
        if float_times is None:
            float_times = [self.start_time, self.fixed_payment_times[-1]]
            float_accruals = [self.fixed_payment_times[-1] - self.start_time]
        self.float_times = np.asarray(float_times, dtype=float)
        self.float_accruals = np.asarray(float_accruals, dtype=float)
        self.name = name

    @classmethod
    def from_dates(
        cls,
        swap_type,
        notional,
        start_date,
        maturity_date,
        fixed_rate,
        time_of,
        calendar=None,
        fixed_tenor=ql.Period(1, ql.Years),
        fixed_convention=ql.Unadjusted,
        fixed_day_counter=None,
        float_tenor=ql.Period(6, ql.Months),
        float_convention=ql.ModifiedFollowing,
        float_day_counter=None,
        name=None,
    ):
        """Build the swap from schedules generated with QuantLib.

        Defaults follow a EUR swap against Euribor 6M: annual 30/360
        (European) unadjusted fixed leg, semiannual Actual/360 modified
        following floating leg, TARGET calendar.
        """
        calendar = calendar or ql.TARGET()
        fixed_day_counter = fixed_day_counter or ql.Thirty360(ql.Thirty360.European)
        float_day_counter = float_day_counter or ql.Actual360()
        start = DateUtils.to_ql_date(start_date)
        end = DateUtils.to_ql_date(maturity_date)

        fixed_dates = _schedule_dates(start, end, fixed_tenor, calendar, fixed_convention)
        float_dates = _schedule_dates(start, end, float_tenor, calendar, float_convention)

        return cls(
            swap_type,
            notional,
            time_of(fixed_dates[0]),
            [time_of(d) for d in fixed_dates[1:]],
            [float(fixed_day_counter.yearFraction(d0, d1)) for d0, d1 in zip(fixed_dates[:-1], fixed_dates[1:])],
            fixed_rate,
            float_times=[time_of(d) for d in float_dates],
            float_accruals=[float(float_day_counter.yearFraction(d0, d1)) for d0, d1 in zip(float_dates[:-1], float_dates[1:])],
            name=name,
        )

    @property
    def end_time(self):
        return float(self.fixed_payment_times[-1])

    def with_fixed_rate(self, fixed_rate):
        return VanillaSwap(
            self.swap_type,
            self.notional,
            self.start_time,
            self.fixed_payment_times,
            self.fixed_accruals,
            fixed_rate,
            float_times=self.float_times,
            float_accruals=self.float_accruals,
            name=self.name,
        )

    # ------------------------------------------------------------------
    # Curve analytics
    # ------------------------------------------------------------------
    def annuity(self, curve):
        """sum(tau_i P(t_i)) of the fixed leg (per unit notional)."""
        return float(np.dot(self.fixed_accruals, curve.discount(self.fixed_payment_times)))

    def fixed_leg_npv(self, curve):
        return self.notional * self.fixed_rate * self.annuity(curve)

    def floating_leg_npv(self, curve):
        p = curve.discount(self.float_times)
        forwards = (p[:-1] / p[1:] - 1.0) / self.float_accruals
        return self.notional * float(np.dot(forwards * self.float_accruals, p[1:]))

    def npv(self, curve):
        return int(self.swap_type) * (self.floating_leg_npv(curve) - self.fixed_leg_npv(curve))

    def fair_rate(self, curve):
        return self.floating_leg_npv(curve) / (self.notional * self.annuity(curve))

    def fixed_leg_bps(self, curve):
        """Fixed leg value of one basis point, signed from the holder's side."""
        return -int(self.swap_type) * self.notional * self.annuity(curve) * 1.0e-4

    def floating_leg_bps(self, curve):
        p = curve.discount(self.float_times[1:])
        return int(self.swap_type) * self.notional * float(np.dot(self.float_accruals, p)) * 1.0e-4

    def fixed_cashflows(self):
        """(times, amounts) of the fixed leg including notional at maturity."""
        amounts = self.notional * self.fixed_rate * self.fixed_accruals
        amounts[-1] += self.notional
        return self.fixed_payment_times.copy(), amounts

    def __repr__(self):
        return (
            f"VanillaSwap({self.swap_type.name}, N={self.notional:g}, K={self.fixed_rate:.6f}, "
            f"{self.start_time:.4f}->{self.end_time:.4f})"
        )


class Swaption:
    """European option, exercisable at ``exercise_time``, to enter ``swap``.

    ``exercise_time`` is on the curve time axis. ``volatility_time`` is the
    time to expiry a Black volatility applies to, measured from the valuation
    date; it defaults to ``exercise_time``.
    """

    def __init__(self, swap, exercise_time, volatility_time=None):
        self.swap = swap
        self.exercise_time = float(exercise_time)
        self.volatility_time = self.exercise_time if volatility_time is None else float(volatility_time)
        if self.exercise_time <= 0.0:
            raise ValueError("exercise time must be positive")
        if self.exercise_time > swap.start_time + 1e-12:
            raise ValueError(
                f"exercise at {self.exercise_time:.6f} after swap start {swap.start_time:.6f}"
            )
        if self.volatility_time <= 0.0:
            raise ValueError("volatility time must be positive")

    @property
    def swap_type(self):
        return self.swap.swap_type

    @property
    def strike(self):
        return self.swap.fixed_rate

    def forward_swap_rate(self, curve):
        """Par rate of the underlying, valuing the floating leg at par."""
        p_start, p_end = curve.discount(np.array([self.swap.start_time, self.swap.end_time]))
        return (p_start - p_end) / self.swap.annuity(curve)

    def __repr__(self):
        return f"Swaption({self.swap_type.name}, expiry={self.exercise_time:.4f}, {self.swap!r})"
