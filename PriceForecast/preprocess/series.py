"""Boundary types for the price history and their conversion to pandas.

The pipeline consumes an already-fetched :class:`StockData`. Everything
downstream works on the frame returned by :func:`to_frame`: a
:class:`~pandas.DataFrame` indexed by a strictly increasing
:class:`~pandas.DatetimeIndex` with float OHLCV columns.
"""

from __future__ import annotations

import datetime as dt
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional

import numpy as np
import pandas as pd

from PriceForecast.errors import InvalidInputError

DATE_COL = "date"
OPEN_COL = "open"
HIGH_COL = "high"
LOW_COL = "low"
CLOSE_COL = "close"
VOLUME_COL = "volume"
PRICE_COLS = [OPEN_COL, HIGH_COL, LOW_COL, CLOSE_COL, VOLUME_COL]


@dataclass(frozen=True)
class TimeSeriesPoint:
    date: dt.date
    open: float
    high: float
    low: float
    close: float
    volume: float = 0.0

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> "TimeSeriesPoint":
        try:
            ts = pd.Timestamp(payload[DATE_COL])
            close = payload[CLOSE_COL]
        except KeyError as e:
            raise InvalidInputError(f"Time series point is missing field {e.args[0]!r}") from e
        except (TypeError, ValueError) as e:
            raise InvalidInputError(f"Invalid date {payload.get(DATE_COL)!r}") from e
        if pd.isna(ts):
            raise InvalidInputError("Time series point has an empty date")
        return cls(
            date=ts.date(),
            open=payload.get(OPEN_COL, close),
            high=payload.get(HIGH_COL, close),
            low=payload.get(LOW_COL, close),
            close=close,
            volume=payload.get(VOLUME_COL, 0.0),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            DATE_COL: self.date.isoformat(),
            OPEN_COL: self.open,
            HIGH_COL: self.high,
            LOW_COL: self.low,
            CLOSE_COL: self.close,
            VOLUME_COL: self.volume,
        }


@dataclass
class StockData:
    symbol: str
    time_series: List[TimeSeriesPoint] = field(default_factory=list)
    name: str = ""
    last_updated: Optional[str] = None

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> "StockData":
        """Build from the camelCase wire format (``timeSeries``, ``lastUpdated``)."""
        if not isinstance(payload, Mapping) or not payload.get("symbol"):
            raise InvalidInputError("Stock data must include a symbol")
        raw = payload.get("timeSeries") or []
        return cls(
            symbol=str(payload["symbol"]),
            time_series=[TimeSeriesPoint.from_dict(p) for p in raw],
            name=str(payload.get("name") or ""),
            last_updated=payload.get("lastUpdated"),
        )

    @classmethod
    def from_frame(cls, symbol: str, df: pd.DataFrame, name: str = "") -> "StockData":
        """Build from a frame with a ``date`` column or a date index."""
        if DATE_COL in df.columns:
            df = df.set_index(DATE_COL)
        points = []
        for idx, row in df.iterrows():
            close = row[CLOSE_COL]
            points.append(
                TimeSeriesPoint(
                    date=pd.Timestamp(idx).date(),
                    open=row.get(OPEN_COL, close),
                    high=row.get(HIGH_COL, close),
                    low=row.get(LOW_COL, close),
                    close=close,
                    volume=row.get(VOLUME_COL, 0.0),
                )
            )
        return cls(symbol=symbol, time_series=points, name=name)

    def __len__(self) -> int:
        return len(self.time_series)


def to_frame(stock: StockData) -> pd.DataFrame:
    """Validate ``stock`` and return its OHLCV frame indexed by date.

    Raises
    ------
    InvalidInputError
        If the series is empty, contains duplicate dates or has non-numeric
        or non-finite price fields.
    """

    if stock is None or not stock.time_series:
        raise InvalidInputError("Stock data is empty or invalid.")
    records = [
        {DATE_COL: pd.Timestamp(p.date), **{c: getattr(p, c) for c in PRICE_COLS}}
        for p in stock.time_series
    ]
    df = pd.DataFrame.from_records(records)
    for col in PRICE_COLS:
        converted = pd.to_numeric(df[col], errors="coerce")
        bad = converted.isna() | ~np.isfinite(converted.astype(float))
        if bad.any():
            first = df.loc[bad.idxmax(), DATE_COL].date()
            raise InvalidInputError(f"Non-numeric {col!r} value on {first}")
        df[col] = converted.astype(float)
    dup = df[DATE_COL].duplicated()
    if dup.any():
        raise InvalidInputError(f"Duplicate date in time series: {df.loc[dup.idxmax(), DATE_COL].date()}")
    df = df.sort_values(DATE_COL).set_index(DATE_COL)
    return df


def closing_prices(stock: StockData) -> pd.Series:
    """Closing prices of ``stock`` as a float series indexed by date."""
    return to_frame(stock)[CLOSE_COL]


__all__ = [
    "TimeSeriesPoint",
    "StockData",
    "to_frame",
    "closing_prices",
    "DATE_COL",
    "CLOSE_COL",
    "PRICE_COLS",
]
