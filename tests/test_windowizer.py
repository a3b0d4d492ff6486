import sys
from pathlib import Path

import numpy as np
import pytest

sys.path.append(str(Path(__file__).resolve().parents[1]))

from PriceForecast.errors import InsufficientDataError
from PriceForecast.preprocess.windowizer import SampleWindowizer


def test_window_count_and_alignment():
    series = np.arange(20, dtype=float)
    ds = SampleWindowizer(lookback=5, horizon=3).build(series)
    assert len(ds) == 20 - 5 - 3 + 1
    assert ds.X.shape == (13, 5) and ds.Y.shape == (13, 3)
    for i in range(len(ds)):
        np.testing.assert_array_equal(ds.X[i], series[i : i + 5])
        np.testing.assert_array_equal(ds.Y[i], series[i + 5 : i + 8])


def test_too_short_series():
    with pytest.raises(InsufficientDataError, match="need at least 15") as exc:
        SampleWindowizer(lookback=10, horizon=5).build(np.arange(8, dtype=float))
    assert exc.value.required == 15
    assert exc.value.actual == 8


def test_min_samples():
    win = SampleWindowizer(lookback=10, horizon=5, min_samples=10)
    assert win.required_points() == 24
    with pytest.raises(InsufficientDataError, match="need at least 24"):
        win.build(np.arange(20, dtype=float))
    assert len(win.build(np.arange(24, dtype=float))) == 10


def test_split_is_contiguous():
    ds = SampleWindowizer(lookback=3, horizon=1).build(np.arange(13, dtype=float))
    train, val = ds.split(0.2)
    assert len(train) == 8 and len(val) == 2
    # validation holds the most recent windows
    assert train.X[-1, 0] < val.X[0, 0]
    np.testing.assert_array_equal(np.concatenate([train.X, val.X]), ds.X)


def test_split_keeps_one_sample_each():
    ds = SampleWindowizer(lookback=3, horizon=1).build(np.arange(5, dtype=float))
    train, val = ds.split(0.9)
    assert len(train) == 1 and len(val) == 1
    single = SampleWindowizer(lookback=3, horizon=1).build(np.arange(4, dtype=float))
    with pytest.raises(InsufficientDataError):
        single.split(0.2)
