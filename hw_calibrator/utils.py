from dataclasses import dataclass, field

import QuantLib as ql
import pandas as pd


@dataclass(frozen=True)
class ValuationContext:
    """Explicit valuation context (replaces QuantLib's global evaluation date).

    Wraps the calendar / day count services the numerical core needs to turn
    dates into the real-valued time axis it works on.

    Parameters
    ----------
    valuation_date : QuantLib.Date
        Reference date of curves bootstrapped in this context (time 0).
    calendar : QuantLib.Calendar
        Business-day calendar (TARGET by default, as for EUR instruments).
    day_counter : QuantLib.DayCounter
        Day count used for the curve time axis (Actual/365 Fixed).
    settlement_days : int
        Spot lag in business days.
    """

    valuation_date: object
    calendar: object = field(default_factory=ql.TARGET)
    day_counter: object = field(default_factory=ql.Actual365Fixed)
    settlement_days: int = 2

    @property
    def settlement_date(self):
        return self.calendar.advance(self.valuation_date, int(self.settlement_days), ql.Days)

    def year_fraction(self, d1, d2):
        return float(self.day_counter.yearFraction(DateUtils.to_ql_date(d1), DateUtils.to_ql_date(d2)))

    def time(self, d):
        """Year fraction from the valuation date to ``d``."""
        return self.year_fraction(self.valuation_date, d)

    def is_business_day(self, d):
        return bool(self.calendar.isBusinessDay(DateUtils.to_ql_date(d)))

    def advance(self, d, period, convention=ql.Following):
        """Advance ``d`` by ``period`` (Period or string such as '6M')."""
        return self.calendar.advance(
            DateUtils.to_ql_date(d), DateUtils.ensure_period(period), convention
        )


class DateUtils:
    """Small helpers to keep date/period parsing in one place."""

    @staticmethod
    def to_ql_date(d):
        """Convert common Python date representations into QuantLib.Date."""
        if isinstance(d, ql.Date):
            return d
        if isinstance(d, str):
            d = pd.to_datetime(d).date()
        return ql.Date(d.day, d.month, d.year)

    @staticmethod
    def parse_period(s):
        """Parse strings such as '1Mo', '3Mo', '1Yr', '10Yr', '6M', '1Y'."""
        s = str(s).strip().upper()
        s = s.replace("MONTH", "M").replace("MO", "M")
        s = s.replace("YEAR", "Y").replace("YR", "Y")
        if s.endswith("M"):
            return ql.Period(int(s[:-1]), ql.Months)
        if s.endswith("Y"):
            return ql.Period(int(s[:-1]), ql.Years)
        # QuantLib's parser handles the rest ('2W', '10D', ...)
        return ql.Period(s)

    @staticmethod
    def ensure_period(freq_or_period):
        """Convert Frequency/Period/string to QuantLib.Period."""
        if isinstance(freq_or_period, ql.Period):
            return freq_or_period
        if isinstance(freq_or_period, str):
            return DateUtils.parse_period(freq_or_period)
        # QuantLib Frequency is an int enum (e.g. ql.Semiannual)
        return ql.Period(freq_or_period)

    @staticmethod
    def period_in_years(p):
        """Approximate length of a period in years (used for labels/sorting)."""
        p = DateUtils.ensure_period(p)
        n = float(p.length())
        units = p.units()
        if units == ql.Years:
            return n
        if units == ql.Months:
            return n / 12.0
        if units == ql.Weeks:
            return n / 52.0
        return n / 365.0

    @staticmethod
    def label(p):
        """Short label for a period ('5Y', '6M')."""
        return str(DateUtils.ensure_period(p))
