from __future__ import annotations
import numpy as np
from typing import Dict, Iterable, Optional

def smape(y_true: np.ndarray, y_pred: np.ndarray, eps: float = 0.0) -> float:
    denom = (np.abs(y_true) + np.abs(y_pred)) / 2.0
    if eps > 0:
        denom = denom + eps
    mask = denom > 0
    if not np.any(mask):
        return 0.0
    return float(np.mean(np.abs(y_true[mask] - y_pred[mask]) / denom[mask]))

def mae(y_true: np.ndarray, y_pred: np.ndarray) -> float:
    return float(np.mean(np.abs(y_true - y_pred)))

def rmse(y_true: np.ndarray, y_pred: np.ndarray) -> float:
    return float(np.sqrt(np.mean((y_true - y_pred) ** 2)))

def mape(y_true: np.ndarray, y_pred: np.ndarray) -> float:
    mask = y_true != 0
    if not np.any(mask):
        return 0.0
    return float(np.mean(np.abs((y_true[mask] - y_pred[mask]) / y_true[mask])))

def backtest_metrics(points: Iterable) -> Optional[Dict[str, float]]:
    """Error metrics over prediction points that carry an observed ``actual``.

    Returns ``None`` when no point has an actual value (pure forecasts).
    """
    pairs = [(p.actual, p.prediction) for p in points if p.actual is not None]
    if not pairs:
        return None
    y_true = np.array([a for a, _ in pairs], dtype=float)
    y_pred = np.array([b for _, b in pairs], dtype=float)
    return {
        "count": len(pairs),
        "mae": mae(y_true, y_pred),
        "rmse": rmse(y_true, y_pred),
        "mape": mape(y_true, y_pred),
        "smape": smape(y_true, y_pred),
    }
