"""Discount curve: nodes, interpolation and a relinkable handle."""

import logging
import math
from dataclasses import dataclass
from enum import Enum

import numpy as np
from scipy.interpolate import CubicSpline

from .errors import AmbiguousNode, ExtrapolationError, NumericalInstability
from .utils import DateUtils

logger = logging.getLogger(__name__)


class Interpolation(Enum):
    LOG_LINEAR = "log_linear"
    LOG_CUBIC = "log_cubic"
    CUBIC = "cubic"

    @property
    def is_global(self):
        """Whether moving one node changes the curve between other nodes."""
        return self is not Interpolation.LOG_LINEAR


class Extrapolation(Enum):
    FLAT_FORWARD = "flat_forward"
    NONE = "none"


@dataclass(frozen=True)
class CurveNode:
    time: float
    discount: float


class DiscountCurve:
    """Read-only discount curve over strictly increasing nodes.

    Parameters
    ----------
    reference_date : QuantLib.Date or None
        Date at time 0. Only needed to query the curve by date.
    times, discount_factors : sequence of float
        Node times (year fractions) and discount factors. A node at time 0
        with discount 1 is added when missing.
    interpolation : Interpolation
        ``LOG_CUBIC`` (natural cubic spline over log-discount), ``CUBIC``
        (natural cubic spline over discount factors) or ``LOG_LINEAR``.
    extrapolation : Extrapolation
        Behaviour beyond the last node. ``FLAT_FORWARD`` keeps the
        instantaneous forward of the last node; ``NONE`` raises
        :class:`ExtrapolationError`. Before time 0 the curve is flat (discount 1).
    day_counter : QuantLib.DayCounter or None
        Converts dates to times.
    """

    def __init__(
        self,
        reference_date,
        times,
        discount_factors,
        interpolation=Interpolation.LOG_CUBIC,
        extrapolation=Extrapolation.FLAT_FORWARD,
        day_counter=None,
    ):
        times = [float(t) for t in times]
        dfs = [float(d) for d in discount_factors]
        if len(times) != len(dfs):
            raise ValueError("times and discount factors must have the same length")
        if not times or times[0] > 0.0:
            times.insert(0, 0.0)
            dfs.insert(0, 1.0)
        if times[0] != 0.0 or dfs[0] != 1.0:
            raise ValueError("the first node must be (0, 1)")
        if len(times) < 2:
            raise ValueError("need at least one node after time 0")

        for i in range(1, len(times)):
            if times[i] <= times[i - 1]:
                raise AmbiguousNode(
                    f"curve nodes must be strictly increasing: t={times[i - 1]} then t={times[i]}"
                )
        for t, d in zip(times, dfs):
            if not math.isfinite(d) or d <= 0.0:
                raise NumericalInstability(f"invalid discount factor {d} at t={t}")

        self.reference_date = reference_date
        self.day_counter = day_counter
        self.interpolation = Interpolation(interpolation)
        self.extrapolation = Extrapolation(extrapolation)

        self._times = np.array(times)
        self._dfs = np.array(dfs)
        self._logs = np.log(self._dfs)

        if self.interpolation is Interpolation.LOG_CUBIC:
            self._spline = CubicSpline(self._times, self._logs, bc_type="natural")
        elif self.interpolation is Interpolation.CUBIC:
            self._spline = CubicSpline(self._times, self._dfs, bc_type="natural")
        else:
            self._spline = None

        self._last_forward = float(self._forward_inside(np.array([self._times[-1]]), left=True)[0])

    @classmethod
    def flat_forward(cls, reference_date, rate, day_counter=None):
        """Flat continuously compounded curve at ``rate``."""
        return cls(
            reference_date,
            [0.0, 1.0],
            [1.0, math.exp(-float(rate))],
            interpolation=Interpolation.LOG_LINEAR,
            extrapolation=Extrapolation.FLAT_FORWARD,
            day_counter=day_counter,
        )

    # ------------------------------------------------------------------
    # Inspection
    # ------------------------------------------------------------------
    @property
    def nodes(self):
        return [CurveNode(float(t), float(d)) for t, d in zip(self._times, self._dfs)]

    @property
    def times(self):
        return self._times.copy()

    @property
    def discount_factors(self):
        return self._dfs.copy()

    @property
    def max_time(self):
        return float(self._times[-1])

    def time_from_date(self, d):
        if self.reference_date is None or self.day_counter is None:
            raise ValueError("curve has no reference date / day counter to convert dates")
        return float(self.day_counter.yearFraction(self.reference_date, DateUtils.to_ql_date(d)))

    def _as_times(self, t):
        if hasattr(t, "serialNumber") or hasattr(t, "year"):
            return self.time_from_date(t)
        return t

    # ------------------------------------------------------------------
    # Interpolation
    # ------------------------------------------------------------------
    def _log_inside(self, t):
        if self.interpolation is Interpolation.LOG_CUBIC:
            return self._spline(t)
        if self.interpolation is Interpolation.CUBIC:
            values = self._spline(t)
            if np.any(values <= 0.0):
                raise NumericalInstability("cubic interpolation produced a non-positive discount factor")
            return np.log(values)
        return np.interp(t, self._times, self._logs)

    def _forward_inside(self, t, left=False):
        if self.interpolation is Interpolation.LOG_CUBIC:
            return -self._spline(t, 1)
        if self.interpolation is Interpolation.CUBIC:
            return -self._spline(t, 1) / self._spline(t)
        # piecewise-constant forward; nodes belong to the segment on their right
        # unless ``left`` is requested (used for the last node)
        slopes = -np.diff(self._logs) / np.diff(self._times)
        side = "left" if left else "right"
        idx = np.searchsorted(self._times, t, side=side) - 1
        idx = np.clip(idx, 0, len(slopes) - 1)
        return slopes[idx]

    def _check_range(self, t):
        if self.extrapolation is Extrapolation.NONE and np.any(t > self._times[-1]):
            raise ExtrapolationError(
                f"time {float(np.max(t)):.6f} beyond last node {self.max_time:.6f} "
                "and extrapolation is disabled"
            )

    def log_discount(self, t):
        t = np.atleast_1d(np.asarray(self._as_times(t), dtype=float))
        self._check_range(t)
        t_max = self._times[-1]
        out = np.zeros_like(t)
        inside = (t > 0.0) & (t <= t_max)
        if np.any(inside):
            out[inside] = self._log_inside(t[inside])
        beyond = t > t_max
        if np.any(beyond):
            out[beyond] = self._logs[-1] - self._last_forward * (t[beyond] - t_max)
        return out

    def discount(self, t):
        """Discount factor at time ``t`` (float, array or date)."""
        scalar = np.ndim(t) == 0
        values = np.exp(self.log_discount(t))
        if not np.all(np.isfinite(values)):
            raise NumericalInstability("non-finite discount factor")
        return float(values[0]) if scalar else values

    def instantaneous_forward(self, t):
        """Instantaneous forward rate f(0, t) = -d ln P / dt."""
        scalar = np.ndim(t) == 0
        t = np.atleast_1d(np.asarray(self._as_times(t), dtype=float))
        self._check_range(t)
        t_max = self._times[-1]
        out = np.full_like(t, self._last_forward)
        inside = t <= t_max
        if np.any(inside):
            out[inside] = self._forward_inside(np.maximum(t[inside], 0.0))
        return float(out[0]) if scalar else out

    def zero_rate(self, t):
        """Continuously compounded zero rate."""
        t = float(self._as_times(t))
        if t <= 1e-12:
            return self.instantaneous_forward(0.0)
        return -float(self.log_discount(t)[0]) / t

    def forward_rate(self, t1, t2):
        """Continuously compounded forward rate between ``t1`` and ``t2``."""
        t1 = float(self._as_times(t1))
        t2 = float(self._as_times(t2))
        if t2 <= t1:
            raise ValueError("forward period must be positive")
        l1, l2 = self.log_discount(np.array([t1, t2]))
        return float((l1 - l2) / (t2 - t1))

    def __repr__(self):
        return (
            f"DiscountCurve(nodes={len(self._times)}, interpolation={self.interpolation.value}, "
            f"extrapolation={self.extrapolation.value})"
        )


class CurveHandle:
    """Relinkable, non-owning reference to a :class:`DiscountCurve`.

    Consumers (model, helpers) hold the handle and read ``current_link`` on
    every call, so relinking to a rebuilt curve is seen immediately and nothing
    derived from the old curve survives.
    """

    def __init__(self, curve=None):
        self._curve = curve

    @property
    def empty(self):
        return self._curve is None

    @property
    def current_link(self):
        if self._curve is None:
            raise ValueError("empty curve handle")
        return self._curve

    def link_to(self, curve):
        logger.debug("Curve handle relinked to %r", curve)
        self._curve = curve

    def discount(self, t):
        return self.current_link.discount(t)

    @property
    def reference_date(self):
        return self.current_link.reference_date


def as_handle(curve_or_handle):
    if isinstance(curve_or_handle, CurveHandle):
        return curve_or_handle
    return CurveHandle(curve_or_handle)
