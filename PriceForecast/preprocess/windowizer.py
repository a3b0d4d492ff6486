from __future__ import annotations

from dataclasses import dataclass
from typing import Tuple

import numpy as np
from numpy.lib.stride_tricks import sliding_window_view

from PriceForecast.errors import InsufficientDataError


@dataclass
class WindowedDataset:
    """Input/target pairs cut from a normalized series.

    Attributes
    ----------
    X : np.ndarray
        ``(N, lookback)`` input windows, oldest first.
    Y : np.ndarray
        ``(N, horizon)`` targets following each window.
    """

    X: np.ndarray
    Y: np.ndarray

    @property
    def lookback(self) -> int:
        return self.X.shape[1]

    @property
    def horizon(self) -> int:
        return self.Y.shape[1]

    def __len__(self) -> int:
        return self.X.shape[0]

    def split(self, val_ratio: float) -> Tuple["WindowedDataset", "WindowedDataset"]:
        """Split into a contiguous training prefix and validation suffix.

        Validation is always the most recent part of the history so no
        future information leaks into training. Both parts keep at least one
        sample.
        """

        n = len(self)
        if n < 2:
            raise InsufficientDataError(
                f"Need at least 2 samples for a train/validation split, got {n}",
                required=2,
                actual=n,
            )
        n_train = int(n * (1.0 - val_ratio))
        n_train = min(max(n_train, 1), n - 1)
        return (
            WindowedDataset(self.X[:n_train], self.Y[:n_train]),
            WindowedDataset(self.X[n_train:], self.Y[n_train:]),
        )


class SampleWindowizer:
    """Slide a window of ``lookback`` values with step 1 over a series.

    Each window is paired with the ``horizon`` values that follow it, so a
    series of length ``n`` yields ``n - lookback - horizon + 1`` samples in
    their original order.
    """

    def __init__(self, lookback: int, horizon: int = 1, min_samples: int = 1):
        if lookback < 1 or horizon < 1:
            raise ValueError("lookback and horizon must be positive")
        self.lookback = lookback
        self.horizon = horizon
        self.min_samples = max(1, min_samples)

    def n_samples(self, n_points: int) -> int:
        return max(0, n_points - self.lookback - self.horizon + 1)

    def required_points(self) -> int:
        return self.lookback + self.horizon + self.min_samples - 1

    def build(self, series) -> WindowedDataset:
        arr = np.asarray(series, dtype=np.float32)
        n = arr.shape[0]
        count = self.n_samples(n)
        if count == 0:
            need = self.lookback + self.horizon
            raise InsufficientDataError(
                f"Not enough data points for training: need at least {need}, got {n}",
                required=need,
                actual=n,
            )
        if count < self.min_samples:
            need = self.required_points()
            raise InsufficientDataError(
                f"Not enough samples for training: need at least {need} data points "
                f"to build {self.min_samples} samples, got {n}",
                required=need,
                actual=n,
            )
        windows = sliding_window_view(arr, self.lookback + self.horizon)[:count]
        X = np.ascontiguousarray(windows[:, : self.lookback])
        Y = np.ascontiguousarray(windows[:, self.lookback :])
        return WindowedDataset(X, Y)


__all__ = ["SampleWindowizer", "WindowedDataset"]
