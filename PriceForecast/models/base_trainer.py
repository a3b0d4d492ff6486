from __future__ import annotations
from abc import ABC, abstractmethod
from dataclasses import asdict, dataclass, field, fields
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from PriceForecast.config.default import DEFAULT_MODEL, MODEL_CFG
from PriceForecast.errors import InvalidInputError
from PriceForecast.preprocess.normalizer import NormalizationParams


@dataclass
class TrainConfig:
    seed:int=42
    val_ratio:float=0.2
    min_samples:int=10
    cancel_check_every:int=8


@dataclass
class ModelConfig:
    """Request-level configuration identifying a trained model.

    ``sequence_length``, ``days_to_predict``, ``epochs`` and ``batch_size``
    (together with the symbol) make up the fingerprint. ``params`` overrides
    architecture fields of the model family's defaults.
    """

    sequence_length: int = MODEL_CFG["sequence_length"]
    epochs: int = MODEL_CFG["epochs"]
    batch_size: int = MODEL_CFG["batch_size"]
    days_to_predict: int = MODEL_CFG["days_to_predict"]
    model_name: str = DEFAULT_MODEL
    params: Dict[str, Any] = field(default_factory=dict)

    def validate(self) -> "ModelConfig":
        for name in ("sequence_length", "epochs", "batch_size", "days_to_predict"):
            value = getattr(self, name)
            if isinstance(value, bool) or not isinstance(value, int) or value < 1:
                raise InvalidInputError(f"{name} must be a positive integer, got {value!r}")
        return self

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, payload: Dict[str, Any]) -> "ModelConfig":
        known = {f.name for f in fields(cls)}
        return cls(**{k: v for k, v in payload.items() if k in known})


@dataclass
class TrainingHistory:
    loss: List[float] = field(default_factory=list)
    val_loss: List[float] = field(default_factory=list)

    def append(self, loss: float, val_loss: float) -> None:
        self.loss.append(float(loss))
        self.val_loss.append(float(val_loss))

    @property
    def final_loss(self) -> Optional[float]:
        return self.loss[-1] if self.loss else None

    @property
    def final_val_loss(self) -> Optional[float]:
        return self.val_loss[-1] if self.val_loss else None

    def __len__(self) -> int:
        return len(self.loss)

    def to_dict(self) -> Dict[str, List[float]]:
        return {"loss": list(self.loss), "val_loss": list(self.val_loss)}


def utc_now() -> str:
    return datetime.now(timezone.utc).isoformat()


@dataclass
class TrainedModel:
    """A network together with everything needed to use it.

    The job that produced (or loaded) the model owns it exclusively and
    calls :meth:`release` once it reaches a terminal state.
    """

    fingerprint: str
    model_name: str
    config: ModelConfig
    norm: NormalizationParams
    net: Any
    output_size: int
    model_params: Dict[str, Any] = field(default_factory=dict)
    history: TrainingHistory = field(default_factory=TrainingHistory)
    data_points: int = 0
    symbol: str = ""
    created: str = field(default_factory=utc_now)
    final_loss: Optional[float] = None
    final_val_loss: Optional[float] = None
    is_existing: bool = False
    checkpoint_saved: bool = False
    checkpoint_error: Optional[str] = None

    @property
    def input_size(self) -> int:
        return self.config.sequence_length

    def summary(self) -> Dict[str, Any]:
        """Metadata written next to the checkpoint and returned to callers."""
        return {
            "modelId": self.fingerprint,
            "modelName": self.model_name,
            "symbol": self.symbol,
            "inputSize": self.input_size,
            "outputSize": self.output_size,
            "daysToPredict": self.config.days_to_predict,
            "epochs": self.config.epochs,
            "totalEpochs": self.config.epochs,
            "batchSize": self.config.batch_size,
            "min": self.norm.min,
            "range": self.norm.range,
            "normalization": self.norm.convention,
            "dataPoints": self.data_points,
            "created": self.created,
            "finalLoss": self.final_loss,
            "finalValLoss": self.final_val_loss,
            "params": dict(self.model_params),
        }

    def release(self) -> None:
        self.net = None


class TrainerState(str, Enum):
    INITIALIZING = "initializing"
    PREPROCESSING = "preprocessing"
    LOADING_CHECKPOINT = "loading_checkpoint"
    BUILDING_MODEL = "building_model"
    TRAINING_EPOCHS = "training_epochs"
    EVALUATING = "evaluating"
    SAVING = "saving"
    DONE = "done"
    ERROR = "error"
    CANCELLED = "cancelled"


class BaseModel(ABC):
    def __init__(self, model_params: Dict[str, Any], model_dir: Optional[str]):
        self.model_params = model_params
        self.model_dir = model_dir

    @abstractmethod
    def train(self, *args, **kwargs) -> TrainedModel: ...

    @abstractmethod
    def predict(self, *args, **kwargs): ...

    @abstractmethod
    def save(self, *args, **kwargs) -> None: ...

    @abstractmethod
    def load(self, *args, **kwargs) -> TrainedModel: ...
