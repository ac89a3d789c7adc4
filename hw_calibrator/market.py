import logging
from dataclasses import dataclass
from enum import Enum

import pandas as pd

from .bootstrap import DepositRateHelper, OISRateHelper
from .utils import DateUtils

logger = logging.getLogger(__name__)


class InstrumentKind(Enum):
    DEPOSIT = "deposit"
    OIS = "ois"
    SWAPTION_VOL = "swaption_vol"

    @classmethod
    def parse(cls, value):
        text = str(value).strip().lower()
        aliases = {
            "depo": cls.DEPOSIT,
            "deposit": cls.DEPOSIT,
            "mm": cls.DEPOSIT,
            "ois": cls.OIS,
            "eonia": cls.OIS,
            "swaption": cls.SWAPTION_VOL,
            "swaption_vol": cls.SWAPTION_VOL,
            "vol": cls.SWAPTION_VOL,
        }
        if text not in aliases:
            raise ValueError(f"unknown instrument kind {value!r}")
        return aliases[text]


@dataclass(frozen=True)
class RateQuote:
    """A single market quote (decimal rate or volatility)."""

    tenor: object
    value: float
    kind: InstrumentKind
    underlying: object = None

    def __post_init__(self):
        object.__setattr__(self, "tenor", DateUtils.ensure_period(self.tenor))
        if self.kind is InstrumentKind.SWAPTION_VOL and self.underlying is None:
            raise ValueError("a swaption volatility quote needs an underlying tenor")
        if self.underlying is not None:
            object.__setattr__(self, "underlying", DateUtils.ensure_period(self.underlying))

    @property
    def label(self):
        if self.underlying is None:
            return DateUtils.label(self.tenor)
        return f"{DateUtils.label(self.tenor)}x{DateUtils.label(self.underlying)}"


def _find_column(columns, *needles):
    return next((c for c in columns if any(n in c.lower() for n in needles)), None)


def _as_decimal(value, percent):
    value = float(value)
    return value / 100.0 if percent else value


class MarketLoader:
    """Load market inputs (curve quotes + swaption volatility grid) from CSV.

    Column names are detected permissively so exports from different sources
    work unchanged. Values are decimals unless the value column name mentions
    a percentage (``rate_pct``, ``vol (%)``); volatility grids in percent are
    recognised by a maximum above 1.
    """

    def __init__(self, cfg):
        self.cfg = cfg

    def load_quotes(self, path, default_kind=InstrumentKind.OIS):
        """Read rate quotes.

        The CSV must contain a tenor column (``tenor``/``maturity``/``pillar``)
        and a value column (``rate``/``quote``/``value``). An optional
        ``type``/``kind``/``instrument`` column selects the helper kind.

        Returns
        -------
        list of RateQuote
        """
        df = pd.read_csv(path)
        col_tenor = _find_column(df.columns, "tenor", "maturity", "pillar")
        col_value = _find_column(df.columns, "rate", "quote", "value")
        col_kind = _find_column(df.columns, "type", "kind", "instrument")
        if col_tenor is None or col_value is None:
            raise ValueError(
                f"{path}: quote CSV needs a tenor column (tenor/maturity/pillar) "
                "and a value column (rate/quote/value)"
            )
        percent = "pct" in col_value.lower() or "%" in col_value

        quotes = []
        for _, row in df.iterrows():
            try:
                if pd.isna(row[col_value]):
                    continue
                kind = InstrumentKind.parse(row[col_kind]) if col_kind is not None else InstrumentKind(default_kind)
                quotes.append(
                    RateQuote(DateUtils.parse_period(row[col_tenor]), _as_decimal(row[col_value], percent), kind)
                )
            except (ValueError, RuntimeError) as exc:
                # QuantLib reports unparsable periods as RuntimeError
                logger.warning("%s: skipping row %s (%s)", path, dict(row), exc)
        logger.info("Loaded %d rate quotes from %s", len(quotes), path)
        return quotes

    def load_vols(self, path):
        """Read a swaption volatility grid (rows: expiry, columns: underlying tenor).

        Returns
        -------
        list of RateQuote
            ``SWAPTION_VOL`` quotes, row by row: ``tenor`` is the expiry,
            ``underlying`` the swap tenor.
        """
        df = pd.read_csv(path)
        if df.empty:
            return []

        df = df.copy()
        df.set_index(df.columns[0], inplace=True)
        values = pd.to_numeric(df.stack(), errors="coerce")
        percent = bool(values.max() > 1.0)

        data = []
        for idx_row, row in df.iterrows():
            for idx_col, val in row.items():
                try:
                    if pd.isna(val):
                        continue
                    data.append(
                        RateQuote(
                            DateUtils.parse_period(idx_row),
                            _as_decimal(val, percent),
                            InstrumentKind.SWAPTION_VOL,
                            underlying=DateUtils.parse_period(idx_col),
                        )
                    )
                except (ValueError, RuntimeError) as exc:
                    logger.warning("%s: skipping cell (%s, %s) = %r (%s)", path, idx_row, idx_col, val, exc)
        logger.info("Loaded %d swaption volatilities from %s", len(data), path)
        return data

    @staticmethod
    def coterminal(vol_quotes):
        """Co-terminal selection of a square grid: expiry i with tenor ``n - i - 1``.

        ``vol_quotes`` is the output of :meth:`load_vols`. Expiries and tenors
        are ordered by length; row ``i`` pairs expiry ``i`` with the tenor in
        column ``n - i - 1`` and the quote stored in that cell.
        """
        grid = {}
        for q in vol_quotes:
            if q.kind is not InstrumentKind.SWAPTION_VOL:
                continue
            grid[(DateUtils.label(q.tenor), DateUtils.label(q.underlying))] = q
        expiries = sorted({k[0] for k in grid}, key=DateUtils.period_in_years)
        tenors = sorted({k[1] for k in grid}, key=DateUtils.period_in_years)
        n = min(len(expiries), len(tenors))

        selected = []
        for i in range(n):
            key = (expiries[i], tenors[n - i - 1])
            if key not in grid:
                raise ValueError(f"volatility grid has no {key[0]}x{key[1]} cell")
            selected.append(grid[key])
        return selected

    @staticmethod
    def rate_helpers(quotes, context):
        """Bootstrap helpers for the deposit and OIS quotes (vol quotes are ignored)."""
        helpers = []
        for q in quotes:
            if q.kind is InstrumentKind.OIS:
                helpers.append(OISRateHelper.from_tenor(q.value, q.tenor, context))
            elif q.kind is InstrumentKind.DEPOSIT:
                helpers.append(DepositRateHelper.from_tenor(q.value, q.tenor, context))
        return helpers
