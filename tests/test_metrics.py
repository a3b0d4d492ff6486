import datetime as dt
import sys
from pathlib import Path

import numpy as np
import pytest

sys.path.append(str(Path(__file__).resolve().parents[1]))

from PriceForecast.models.lstm.predictor import PredictionPoint
from PriceForecast.utils.metrics import backtest_metrics, mae, mape, rmse, smape


def test_basic_metrics():
    y = np.array([100.0, 200.0])
    p = np.array([110.0, 190.0])
    assert mae(y, p) == pytest.approx(10.0)
    assert rmse(y, p) == pytest.approx(10.0)
    assert mape(y, p) == pytest.approx((0.1 + 0.05) / 2)
    assert smape(y, y) == 0.0


def test_backtest_metrics_only_uses_actuals():
    day = dt.date(2024, 1, 1)
    points = [
        PredictionPoint(day, 10.0, actual=12.0),
        PredictionPoint(day, 20.0, actual=20.0),
        PredictionPoint(day, 30.0),
    ]
    out = backtest_metrics(points)
    assert out["count"] == 2
    assert out["mae"] == pytest.approx(1.0)
    assert backtest_metrics(points[2:]) is None
