"""Multi-step prediction by rolling a trained network forward.

Each forward pass consumes the latest ``L`` normalized values and yields the
network's output vector (one value for autoregressive families, ``H``
values for direct multi-step families). The outputs are appended to the
window, the oldest values dropped, and the loop repeats until the requested
horizon is covered. Feeding predictions back accumulates error over long
horizons; that is expected behaviour.
"""

from __future__ import annotations

import datetime as dt
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Union

import numpy as np
import pandas as pd
import torch

from PriceForecast.config.default import PROGRESS
from PriceForecast.errors import InsufficientDataError, ModelRuntimeError
from PriceForecast.models.base_trainer import TrainedModel
from PriceForecast.preprocess.normalizer import denormalize, normalize
from PriceForecast.utils import progress as P
from PriceForecast.utils.cancel import CancelToken
from PriceForecast.utils.progress import ProgressCallback, ProgressEmitter, as_emitter, band_percent
from PriceForecast.utils.trading_calendar import next_trading_days


@dataclass(frozen=True)
class PredictionPoint:
    date: dt.date
    prediction: float
    actual: Optional[float] = None

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {"date": self.date.isoformat(), "prediction": self.prediction}
        if self.actual is not None:
            out["actual"] = self.actual
        return out


def predict(
    model: TrainedModel,
    prices: pd.Series,
    horizon: Optional[int] = None,
    *,
    cancel_token: Optional[CancelToken] = None,
    on_progress: Union[ProgressCallback, ProgressEmitter, None] = None,
    past_days: int = 0,
) -> List[PredictionPoint]:
    """Predict ``horizon`` trading days after the end of ``prices``.

    Parameters
    ----------
    model : TrainedModel
        Trained or loaded model; only borrowed, never modified. Inference runs
        on whatever device the network already lives on.
    prices : pd.Series
        Closing prices indexed by date, ascending.
    horizon : int, optional
        Number of predictions; defaults to the model's ``days_to_predict``.
    past_days : int
        Back-test mode. The input window ends ``past_days`` points before the
        last observation and each prediction carries the observed close when
        one exists.

    Raises
    ------
    InsufficientDataError
        If fewer than ``sequence_length`` points precede the forecast origin.
    CancelledError
        If ``cancel_token`` is cancelled before a prediction step.
    ModelRuntimeError
        If the network was released or produces non-finite values.
    """

    if model.net is None:
        raise ModelRuntimeError(f"Model {model.fingerprint} has been released")
    L = model.input_size
    H = int(horizon or model.config.days_to_predict)
    if H < 1:
        raise InsufficientDataError(f"Prediction horizon must be positive, got {H}")
    token = cancel_token or CancelToken()
    emit = as_emitter(on_progress)

    values = prices.to_numpy(dtype=float)
    n = values.shape[0]
    past_days = max(0, int(past_days))
    end = n - past_days
    if past_days and end - L < 0:
        raise InsufficientDataError(
            f"Not enough historical data to predict {past_days} past days: "
            f"need at least {L + past_days}, got {n}",
            required=L + past_days,
            actual=n,
        )
    if end < L:
        raise InsufficientDataError(
            f"Not enough data points for prediction: need at least {L}, got {n}",
            required=L,
            actual=n,
        )

    window = np.asarray(normalize(values[end - L : end], model.norm), dtype=np.float32)
    dates = next_trading_days(prices.index[end - 1], H)
    lo, hi = PROGRESS["predicting_start"], PROGRESS["predicting_end"]
    out: List[PredictionPoint] = []
    net = model.net
    x = y = None
    try:
        device = next(net.parameters()).device
        net.eval()
        with torch.no_grad():
            while len(out) < H:
                token.raise_if_cancelled()
                x = torch.from_numpy(window[-L:].copy()).to(device).view(1, L, 1)
                try:
                    y = net(x)
                except RuntimeError as exc:
                    raise ModelRuntimeError(f"Prediction failed: {exc}") from exc
                step_vals = y.detach().cpu().numpy().reshape(-1).astype(np.float32)
                x = y = None
                if not np.all(np.isfinite(step_vals)):
                    raise ModelRuntimeError("Model produced non-finite predictions")
                for v in step_vals[: H - len(out)]:
                    i = len(out)
                    actual = float(values[end + i]) if past_days and end + i < n else None
                    out.append(PredictionPoint(dates[i], float(denormalize(v, model.norm)), actual))
                    emit(
                        P.PREDICTING,
                        band_percent(lo, hi, i + 1, H),
                        f"Predicted day {i + 1}/{H}",
                        step=i + 1,
                        total_steps=H,
                    )
                window = np.concatenate([window, step_vals])[-L:]
    finally:
        x = y = net = None
    return out


__all__ = ["PredictionPoint", "predict"]
