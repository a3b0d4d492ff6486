from __future__ import annotations

import logging
import threading
from dataclasses import asdict, dataclass, fields, replace
from typing import Any, Dict, List, Optional, Union

import numpy as np
import pandas as pd
import torch
import torch.nn as nn
from torch.utils.data import DataLoader, TensorDataset

from PriceForecast.config.default import LSTM_PARAMS, PROGRESS, STACKED_LSTM_PARAMS, TRAIN_CFG
from PriceForecast.errors import (
    CancelledError,
    CheckpointIOError,
    InsufficientDataError,
    InvalidInputError,
    ModelRuntimeError,
    PipelineError,
)
from PriceForecast.models.base_trainer import (
    BaseModel,
    ModelConfig,
    TrainConfig,
    TrainedModel,
    TrainerState,
    TrainingHistory,
)
from PriceForecast.models.lstm.net import LSTMForecaster
from PriceForecast.models.lstm import predictor
from PriceForecast.preprocess.normalizer import SYMMETRIC, UNIT, fit_params, normalize
from PriceForecast.preprocess.windowizer import SampleWindowizer, WindowedDataset
from PriceForecast.utils import progress as P
from PriceForecast.utils.cancel import CancelToken
from PriceForecast.utils.device import release_device_memory
from PriceForecast.utils.progress import ProgressCallback, ProgressEmitter, as_emitter, band_percent
from PriceForecast.utils.resources import ResourceTracker
from PriceForecast.utils.seed import set_seed

logger = logging.getLogger(__name__)

# seeding and weight init touch global RNG state shared by all worker threads
_INIT_LOCK = threading.Lock()


@dataclass
class LSTMParams:
    """Architecture and optimizer settings of an LSTM model family.

    Attributes
    ----------
    hidden_size : int
        Units per LSTM layer.
    num_layers : int
        Number of stacked LSTM layers.
    dropout : float
        Dropout after the recurrent block (and between LSTM layers when
        ``num_layers > 1``).
    dense_units : int
        Width of the ReLU layer before the output projection. ``0`` projects
        the last hidden state directly.
    batch_norm : bool
        Insert ``BatchNorm1d`` between the recurrent block and the head.
    lr : float
        Adam learning rate.
    weight_decay : float
        Adam weight decay.
    """

    hidden_size: int = 50
    num_layers: int = 1
    dropout: float = 0.0
    dense_units: int = 0
    batch_norm: bool = False
    lr: float = 1e-3
    weight_decay: float = 0.0

    def __post_init__(self):
        if self.hidden_size < 1 or self.num_layers < 1:
            raise InvalidInputError("hidden_size and num_layers must be positive")
        if not 0.0 <= self.dropout < 1.0:
            raise InvalidInputError(f"dropout must be in [0, 1), got {self.dropout}")
        if self.dense_units < 0:
            raise InvalidInputError(f"dense_units must be non-negative, got {self.dense_units}")
        if not self.lr > 0:
            raise InvalidInputError(f"lr must be positive, got {self.lr}")

    @classmethod
    def from_dict(cls, payload: Dict[str, Any]) -> "LSTMParams":
        known = {f.name for f in fields(cls)}
        unknown = sorted(set(payload) - known)
        if unknown:
            raise InvalidInputError(
                f"Unknown model parameter(s): {', '.join(unknown)}. "
                f"Allowed: {', '.join(sorted(known))}"
            )
        try:
            return cls(**payload)
        except TypeError as e:
            raise InvalidInputError(f"Invalid model parameters: {e}") from e


class LSTMTrainer(BaseModel):
    """Single-layer LSTM predicting one step ahead on ``[0, 1]`` data.

    Multi-day forecasts are produced autoregressively by the predictor. The
    class attributes below identify the model family; subclasses change them
    rather than branching on a name.
    """

    name = "lstm"
    normalization = UNIT
    multi_step = False
    default_params = LSTM_PARAMS

    def __init__(
        self,
        params: Union[LSTMParams, Dict[str, Any], None] = None,
        store=None,
        cfg: Optional[TrainConfig] = None,
        device: str = "cpu",
        tracker: Optional[ResourceTracker] = None,
    ):
        if not isinstance(params, LSTMParams):
            params = self.make_params(params)
        super().__init__(
            model_params=asdict(params),
            model_dir=str(store.root) if store is not None else None,
        )
        self.params = params
        self.store = store
        self.cfg = cfg or TrainConfig(**TRAIN_CFG)
        self.device = device
        self.tracker = tracker
        self.state = TrainerState.INITIALIZING

    @classmethod
    def make_params(cls, overrides: Optional[Dict[str, Any]] = None) -> LSTMParams:
        return LSTMParams.from_dict({**cls.default_params, **(overrides or {})})

    def output_size(self, days_to_predict: int) -> int:
        return days_to_predict if self.multi_step else 1

    @classmethod
    def create_network(
        cls, params: Union[LSTMParams, Dict[str, Any]], input_len: int, output_size: int
    ) -> nn.Module:
        if not isinstance(params, LSTMParams):
            params = LSTMParams.from_dict(dict(params))
        return LSTMForecaster(
            input_len,
            output_size,
            hidden_size=params.hidden_size,
            num_layers=params.num_layers,
            dropout=params.dropout,
            dense_units=params.dense_units,
            batch_norm=params.batch_norm,
        )

    def build_network(self, input_len: int, output_size: int) -> nn.Module:
        with _INIT_LOCK:
            set_seed(self.cfg.seed)
            net = self.create_network(self.params, input_len, output_size)
        return net.to(self.device)

    def _track(self, obj, label: str):
        if self.tracker is not None:
            self.tracker.track(obj, label)
        return obj

    # ------------------------------------------------------------------
    def train(
        self,
        prices: Union[pd.Series, np.ndarray, List[float]],
        config: ModelConfig,
        fingerprint: str,
        on_progress: Union[ProgressCallback, ProgressEmitter, None] = None,
        cancel_token: Optional[CancelToken] = None,
        force: bool = False,
        symbol: str = "",
    ) -> TrainedModel:
        """Train (or reuse) the model identified by ``fingerprint``.

        Parameters
        ----------
        prices : pd.Series or array-like
            Closing prices in chronological order.
        config : ModelConfig
            Window length, horizon, epochs and batch size.
        fingerprint : str
            Checkpoint key; an existing checkpoint is reused unless ``force``.
        on_progress : callable, optional
            Receives one :class:`~PriceForecast.utils.progress.ProgressEvent`
            per stage and per epoch.
        cancel_token : CancelToken, optional
            Polled at each epoch start and every ``cancel_check_every``
            batches.

        Raises
        ------
        InsufficientDataError
            If ``len(prices) < sequence_length + days_to_predict``.
        DegenerateDataError
            If all prices are identical.
        CancelledError
            If the token was cancelled; every tensor has been released.
        ModelRuntimeError
            If the loss becomes non-finite or torch fails.
        """

        config = replace(config, model_name=self.name).validate()
        token = cancel_token or CancelToken()
        emit = as_emitter(on_progress)
        L, H = config.sequence_length, config.days_to_predict

        values = np.asarray(prices, dtype=float).reshape(-1)
        n = values.shape[0]
        if n < L + H:
            raise InsufficientDataError(
                f"Not enough data points for training: need at least {L + H}, got {n}",
                required=L + H,
                actual=n,
            )

        net = ds = train_ds = val_ds = model = None
        try:
            token.raise_if_cancelled()
            if not force:
                existing = self._load_existing(fingerprint, emit)
                if existing is not None:
                    self.state = TrainerState.DONE
                    return existing

            self.state = TrainerState.PREPROCESSING
            norm = fit_params(values, self.normalization)
            emit(P.PREPROCESSING, PROGRESS["preprocessing"], "Normalizing data...")

            out_size = self.output_size(H)
            windowizer = SampleWindowizer(L, out_size, self.cfg.min_samples)
            ds = windowizer.build(normalize(values, norm))
            train_ds, val_ds = ds.split(self.cfg.val_ratio)
            ds = None
            emit(
                P.PREPARING,
                PROGRESS["preparing"],
                f"Prepared {len(train_ds)} training and {len(val_ds)} validation samples",
            )

            token.raise_if_cancelled()
            self.state = TrainerState.BUILDING_MODEL
            net = self._track(self.build_network(L, out_size), "network")
            emit(P.TRAINING, PROGRESS["training_start"], "Starting model training...")

            self.state = TrainerState.TRAINING_EPOCHS
            history = self._fit(net, train_ds, val_ds, config, token, emit)
            train_ds = val_ds = None
            net.eval()
            logger.info(
                "Trained %s (%s): loss=%.6f val_loss=%.6f",
                fingerprint, self.name, history.final_loss, history.final_val_loss,
            )

            model = TrainedModel(
                fingerprint=fingerprint,
                model_name=self.name,
                config=config,
                norm=norm,
                net=net,
                output_size=out_size,
                model_params=asdict(self.params),
                history=history,
                data_points=n,
                symbol=symbol,
                final_loss=history.final_loss,
                final_val_loss=history.final_val_loss,
            )
            net = None
            self.save(model, emit)
            self.state = TrainerState.DONE
            return model
        except CancelledError:
            self.state = TrainerState.CANCELLED
            raise
        except Exception:
            self.state = TrainerState.ERROR
            raise
        finally:
            net = ds = train_ds = val_ds = model = None
            release_device_memory(self.device)

    def _load_existing(self, fingerprint: str, emit: ProgressEmitter) -> Optional[TrainedModel]:
        if self.store is None or not self.store.exists(fingerprint):
            return None
        self.state = TrainerState.LOADING_CHECKPOINT
        emit(P.LOADING, PROGRESS["loading"], "Loading existing model...")
        try:
            model = self.store.load(fingerprint, device=self.device)
        except CheckpointIOError as e:
            logger.warning("Checkpoint %s could not be loaded, retraining: %s", fingerprint, e)
            return None
        if model.model_name != self.name:
            logger.info(
                "Checkpoint %s belongs to model '%s', retraining as '%s'",
                fingerprint, model.model_name, self.name,
            )
            model.release()
            return None
        model.history = TrainingHistory()
        model.is_existing = True
        model.checkpoint_saved = True
        emit(P.LOADED_EXISTING, PROGRESS["loaded"], "Loaded existing model")
        return model

    def _fit(
        self,
        net: nn.Module,
        train_ds: WindowedDataset,
        val_ds: WindowedDataset,
        config: ModelConfig,
        token: CancelToken,
        emit: ProgressEmitter,
    ) -> TrainingHistory:
        history = TrainingHistory()
        X_tr = self._track(torch.from_numpy(train_ds.X).unsqueeze(-1), "X_train")
        Y_tr = self._track(torch.from_numpy(train_ds.Y), "Y_train")
        X_va = self._track(torch.from_numpy(val_ds.X).unsqueeze(-1), "X_val")
        Y_va = self._track(torch.from_numpy(val_ds.Y), "Y_val")
        n_train = X_tr.shape[0]
        bs = config.batch_size
        # BatchNorm1d cannot train on a trailing batch of one sample
        drop_last = bool(self.params.batch_norm and n_train > bs and n_train % bs == 1)
        loader = DataLoader(TensorDataset(X_tr, Y_tr), batch_size=bs, shuffle=False, drop_last=drop_last)
        opt = self._track(
            torch.optim.Adam(net.parameters(), lr=self.params.lr, weight_decay=self.params.weight_decay),
            "optimizer",
        )
        loss_fn = nn.MSELoss()
        lo, hi = PROGRESS["training_start"], PROGRESS["training_end"]
        check_every = max(1, self.cfg.cancel_check_every)
        xb = yb = loss = None
        try:
            for ep in range(1, config.epochs + 1):
                token.raise_if_cancelled()
                net.train()
                total = 0.0
                batches = 0
                for b, (xb, yb) in enumerate(loader):
                    if b and b % check_every == 0:
                        token.raise_if_cancelled()
                    xb = xb.to(self.device)
                    yb = yb.to(self.device)
                    opt.zero_grad()
                    loss = loss_fn(net(xb), yb)
                    loss.backward()
                    opt.step()
                    total += float(loss.item())
                    batches += 1
                    xb = yb = loss = None
                train_loss = total / max(batches, 1)

                self.state = TrainerState.EVALUATING
                val_loss = self._evaluate(net, X_va, Y_va, loss_fn, bs)
                if not (np.isfinite(train_loss) and np.isfinite(val_loss)):
                    raise ModelRuntimeError(
                        f"Training diverged at epoch {ep}: loss={train_loss}, val_loss={val_loss}"
                    )
                history.append(train_loss, val_loss)
                self.state = TrainerState.TRAINING_EPOCHS
                logger.debug("Epoch %d/%d loss=%.6f val_loss=%.6f", ep, config.epochs, train_loss, val_loss)
                emit(
                    P.TRAINING,
                    band_percent(lo, hi, ep, config.epochs),
                    f"Epoch {ep}/{config.epochs}",
                    epoch=ep,
                    total_epochs=config.epochs,
                    loss=train_loss,
                    val_loss=val_loss,
                )
        except PipelineError:
            raise
        except (RuntimeError, ValueError) as exc:
            raise ModelRuntimeError(f"Training failed: {exc}") from exc
        finally:
            xb = yb = loss = None
            X_tr = Y_tr = X_va = Y_va = None
            loader = opt = None
            net = train_ds = val_ds = None
        return history

    def _evaluate(self, net: nn.Module, X: torch.Tensor, Y: torch.Tensor, loss_fn, batch_size: int) -> float:
        net.eval()
        total = 0.0
        n = X.shape[0]
        try:
            with torch.no_grad():
                for start in range(0, n, batch_size):
                    xb = X[start : start + batch_size].to(self.device)
                    yb = Y[start : start + batch_size].to(self.device)
                    total += float(loss_fn(net(xb), yb).item()) * xb.shape[0]
                    xb = yb = None
        finally:
            xb = yb = net = None
        return total / max(n, 1)

    # ------------------------------------------------------------------
    def save(
        self,
        model: TrainedModel,
        on_progress: Union[ProgressCallback, ProgressEmitter, None] = None,
    ) -> bool:
        """Persist ``model``; a failed save is recorded on the model, not raised."""
        emit = as_emitter(on_progress)
        if self.store is None:
            model.checkpoint_saved = False
            model.checkpoint_error = "No checkpoint store configured"
            return False
        self.state = TrainerState.SAVING
        emit(P.SAVING, PROGRESS["saving"], "Saving model...")
        try:
            self.store.save(model.fingerprint, model)
        except CheckpointIOError as e:
            logger.warning("Failed to save checkpoint %s: %s", model.fingerprint, e)
            model.checkpoint_saved = False
            model.checkpoint_error = str(e)
            emit(P.SAVE_FAILED, PROGRESS["saved"], f"Model could not be saved: {e}")
            return False
        model.checkpoint_saved = True
        model.checkpoint_error = None
        emit(P.SAVED, PROGRESS["saved"], "Model saved")
        return True

    def load(self, fingerprint: str) -> TrainedModel:
        if self.store is None:
            raise CheckpointIOError("No checkpoint store configured")
        return self.store.load(fingerprint, device=self.device)

    def predict(self, model: TrainedModel, prices, horizon: Optional[int] = None, **kwargs):
        return predictor.predict(model, prices, horizon, **kwargs)


class StackedLSTMTrainer(LSTMTrainer):
    """Two stacked LSTM layers with a dense head emitting all ``H`` days at once.

    Data is scaled to ``[-1, 1]``.
    """

    name = "stacked_lstm"
    normalization = SYMMETRIC
    multi_step = True
    default_params = STACKED_LSTM_PARAMS


__all__ = ["LSTMParams", "LSTMTrainer", "StackedLSTMTrainer"]
