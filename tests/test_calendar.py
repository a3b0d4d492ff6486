import datetime as dt
import sys
from pathlib import Path

sys.path.append(str(Path(__file__).resolve().parents[1]))

from PriceForecast.utils.trading_calendar import is_trading_day, next_trading_days


def test_friday_rolls_to_monday():
    friday = dt.date(2024, 1, 5)
    days = next_trading_days(friday, 3)
    assert days == [dt.date(2024, 1, 8), dt.date(2024, 1, 9), dt.date(2024, 1, 10)]


def test_weekend_reference():
    saturday = dt.date(2024, 1, 6)
    assert next_trading_days(saturday, 1) == [dt.date(2024, 1, 8)]


def test_no_weekends_and_strictly_increasing():
    days = next_trading_days(dt.date(2024, 2, 28), 30)
    assert len(days) == 30
    assert all(is_trading_day(d) for d in days)
    assert all(a < b for a, b in zip(days, days[1:]))
    assert days[0] > dt.date(2024, 2, 28)


def test_zero_days():
    assert next_trading_days(dt.date(2024, 1, 5), 0) == []
