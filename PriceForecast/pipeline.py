"""Staged train-then-predict run shared by the job controller, API and CLI.

Each ``run_*`` function takes the :class:`PipelineContext`, performs one
stage and stores its output back on the context. :func:`train_and_predict`
chains them and always releases the model it produced.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import pandas as pd

from PriceForecast.checkpoint.store import CheckpointStore
from PriceForecast.config.default import PROGRESS, TRAIN_CFG
from PriceForecast.errors import CheckpointIOError, InvalidInputError
from PriceForecast.fingerprint import make_fingerprint
from PriceForecast.models.base_trainer import ModelConfig, TrainConfig, TrainedModel, TrainingHistory
from PriceForecast.models.lstm.predictor import PredictionPoint, predict
from PriceForecast.models.registry import ModelRegistry
from PriceForecast.preprocess.series import CLOSE_COL, StockData, to_frame
from PriceForecast.utils import progress as P
from PriceForecast.utils.cancel import CancelToken
from PriceForecast.utils.device import select_device
from PriceForecast.utils.metrics import backtest_metrics
from PriceForecast.utils.params import load_model_params
from PriceForecast.utils.progress import ProgressCallback, ProgressEmitter, as_emitter
from PriceForecast.utils.resources import ResourceTracker

logger = logging.getLogger(__name__)


@dataclass
class PipelineContext:
    stock: StockData
    config: ModelConfig
    fingerprint: str
    store: CheckpointStore | None = None
    train_cfg: TrainConfig = field(default_factory=lambda: TrainConfig(**TRAIN_CFG))
    device: str = "cpu"
    emit: ProgressEmitter = field(default_factory=ProgressEmitter)
    token: CancelToken = field(default_factory=CancelToken)
    tracker: ResourceTracker | None = None
    force_train: bool = False
    prediction_only: bool = False
    predict_past_days: int = 0
    days_to_predict: int | None = None
    prices: pd.Series | None = None
    trainer: Any = None
    model: TrainedModel | None = None
    predictions: List[PredictionPoint] = field(default_factory=list)
    model_data: Dict[str, Any] = field(default_factory=dict)


@dataclass
class AnalysisResult:
    predictions: List[PredictionPoint]
    model_data: Dict[str, Any]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "predictions": [p.to_dict() for p in self.predictions],
            "modelData": self.model_data,
        }


def run_validation(ctx: PipelineContext) -> None:
    """Validate the request and extract the closing-price series."""
    ctx.emit(P.STARTING, PROGRESS["starting"], "Starting analysis...")
    ctx.config.validate()
    if ctx.days_to_predict is not None and ctx.days_to_predict < 1:
        raise InvalidInputError(f"days_to_predict must be a positive integer, got {ctx.days_to_predict!r}")
    frame = to_frame(ctx.stock)
    ctx.prices = frame[CLOSE_COL]
    ctx.emit(P.DATA, PROGRESS["data"], f"Loaded {len(ctx.prices)} data points for {ctx.stock.symbol}")


def run_model_setup(ctx: PipelineContext) -> None:
    """Instantiate the trainer of the requested model family."""
    try:
        trainer_cls = ModelRegistry.get(ctx.config.model_name)
    except ValueError as e:
        raise InvalidInputError(str(e)) from e
    params, source = load_model_params(ctx.config.model_name)
    if source is not None:
        logger.info("Using %s parameter overrides from %s", ctx.config.model_name, source)
    params.update(ctx.config.params or {})
    ctx.trainer = trainer_cls(
        params=params,
        store=ctx.store,
        cfg=ctx.train_cfg,
        device=ctx.device,
        tracker=ctx.tracker,
    )


def run_training(ctx: PipelineContext) -> None:
    """Train the model, reuse its checkpoint, or load it for prediction only."""
    if ctx.prediction_only:
        if ctx.store is None:
            raise CheckpointIOError("No checkpoint store configured")
        ctx.token.raise_if_cancelled()
        ctx.emit(P.LOADING, PROGRESS["loading"], "Loading saved model...")
        model = ctx.store.load(ctx.fingerprint, device=ctx.device)
        model.history = TrainingHistory()
        model.is_existing = True
        ctx.model = model
        ctx.emit(P.LOADED_EXISTING, PROGRESS["loaded"], "Loaded existing model")
        return
    ctx.model = ctx.trainer.train(
        ctx.prices,
        ctx.config,
        ctx.fingerprint,
        on_progress=ctx.emit,
        cancel_token=ctx.token,
        force=ctx.force_train,
        symbol=ctx.stock.symbol,
    )


def run_prediction(ctx: PipelineContext) -> None:
    ctx.predictions = predict(
        ctx.model,
        ctx.prices,
        ctx.days_to_predict,
        cancel_token=ctx.token,
        on_progress=ctx.emit,
        past_days=ctx.predict_past_days,
    )
    model = ctx.model
    data = model.summary()
    data.update(
        {
            "isExistingModel": model.is_existing,
            "history": model.history.to_dict(),
            "checkpointSaved": model.checkpoint_saved,
            "checkpointError": model.checkpoint_error,
        }
    )
    if ctx.predict_past_days:
        data["predictPastDays"] = ctx.predict_past_days
        data["backtest"] = backtest_metrics(ctx.predictions)
    ctx.model_data = data


def train_and_predict(
    stock_data: StockData,
    config: ModelConfig,
    *,
    store: Optional[CheckpointStore] = None,
    fingerprint: Optional[str] = None,
    on_progress: ProgressCallback | ProgressEmitter | None = None,
    cancel_token: Optional[CancelToken] = None,
    force_train: bool = False,
    prediction_only: bool = False,
    predict_past_days: int = 0,
    train_cfg: Optional[TrainConfig] = None,
    device: Optional[str] = None,
    tracker: Optional[ResourceTracker] = None,
    days_to_predict: Optional[int] = None,
) -> AnalysisResult:
    """Run the whole pipeline for one stock and return dated predictions.

    Parameters
    ----------
    stock_data : StockData
        Price history; validated and sorted before use.
    config : ModelConfig
        Window length, horizon, epochs, batch size and model family.
    fingerprint : str, optional
        Checkpoint key; derived from the symbol and ``config`` when omitted.
    prediction_only : bool
        Skip training and predict with the saved checkpoint. A missing
        checkpoint raises :class:`~PriceForecast.errors.CheckpointNotFoundError`.
    predict_past_days : int
        Back-test the last ``predict_past_days`` observations.
    days_to_predict : int, optional
        Prediction horizon; defaults to the model's ``days_to_predict``.

    The trained model is released before returning, whatever the outcome.
    """

    if stock_data is None or not stock_data.time_series:
        raise InvalidInputError("Stock data is empty or invalid.")
    ctx = PipelineContext(
        stock=stock_data,
        config=config,
        fingerprint=fingerprint or make_fingerprint(stock_data.symbol, config),
        store=store,
        train_cfg=train_cfg or TrainConfig(**TRAIN_CFG),
        device=device or select_device(),
        emit=as_emitter(on_progress),
        token=cancel_token or CancelToken(),
        tracker=tracker,
        force_train=force_train,
        prediction_only=prediction_only,
        predict_past_days=max(0, int(predict_past_days or 0)),
        days_to_predict=days_to_predict,
    )
    logger.info("Starting pipeline for %s", ctx.fingerprint)
    try:
        run_validation(ctx)
        if not ctx.prediction_only:
            run_model_setup(ctx)
        run_training(ctx)
        run_prediction(ctx)
        ctx.emit(P.COMPLETED, PROGRESS["completed"], "Analysis complete")
        logger.info("Finished pipeline for %s", ctx.fingerprint)
        return AnalysisResult(predictions=ctx.predictions, model_data=ctx.model_data)
    finally:
        if ctx.model is not None:
            ctx.model.release()
        ctx.model = None
        ctx.trainer = None


def predict_saved(
    model_id: str,
    stock_data: StockData,
    *,
    store: Optional[CheckpointStore] = None,
    days_to_predict: Optional[int] = None,
    predict_past_days: int = 0,
    on_progress: ProgressCallback | ProgressEmitter | None = None,
    cancel_token: Optional[CancelToken] = None,
    device: Optional[str] = None,
) -> AnalysisResult:
    """Predict with the checkpoint ``model_id`` without training."""
    return train_and_predict(
        stock_data,
        ModelConfig(),
        store=store or CheckpointStore(),
        fingerprint=model_id,
        on_progress=on_progress,
        cancel_token=cancel_token,
        prediction_only=True,
        predict_past_days=predict_past_days,
        device=device,
        days_to_predict=days_to_predict,
    )


__all__ = [
    "AnalysisResult",
    "PipelineContext",
    "predict_saved",
    "run_model_setup",
    "run_prediction",
    "run_training",
    "run_validation",
    "train_and_predict",
]
