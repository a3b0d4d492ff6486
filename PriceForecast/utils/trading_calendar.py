"""Trading-day helpers.

Only weekends are skipped; exchange holidays are not modelled.
"""

from __future__ import annotations

import datetime as dt
from typing import List

import pandas as pd


def is_trading_day(day: dt.date) -> bool:
    return day.weekday() < 5


def next_trading_days(last: dt.date | pd.Timestamp, n: int) -> List[dt.date]:
    """Return the ``n`` trading days strictly after ``last``.

    Each step lands on the next weekday after the previous one, so a Friday
    is followed by Monday, Tuesday, Wednesday and so on.
    """

    if n <= 0:
        return []
    start = pd.Timestamp(last).normalize() + pd.Timedelta(days=1)
    return [ts.date() for ts in pd.bdate_range(start=start, periods=n)]


__all__ = ["is_trading_day", "next_trading_days"]
