"""Progress events emitted by the trainer, predictor and pipeline.

One :class:`ProgressEvent` is emitted per suspension point. ``percent`` is
the position in the whole pipeline (see ``PROGRESS`` in
:mod:`PriceForecast.config.default`), not the position inside a stage.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Optional

# stage names reported on the progress channel
STARTING = "starting"
DATA = "data"
LOADING = "loading"
LOADED_EXISTING = "loaded-existing"
PREPROCESSING = "preprocessing"
PREPARING = "preparing"
TRAINING = "training"
SAVING = "saving"
SAVED = "saved"
SAVE_FAILED = "save-failed"
PREDICTING = "predicting"
COMPLETED = "completed"


@dataclass
class ProgressEvent:
    stage: str
    percent: int
    message: str
    epoch: Optional[int] = None
    total_epochs: Optional[int] = None
    loss: Optional[float] = None
    val_loss: Optional[float] = None
    step: Optional[int] = None
    total_steps: Optional[int] = None
    extra: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        """Wire representation (camelCase keys, ``None`` fields omitted)."""
        out: Dict[str, Any] = {"stage": self.stage, "percent": self.percent, "message": self.message}
        optional = {
            "epoch": self.epoch,
            "totalEpochs": self.total_epochs,
            "loss": self.loss,
            "val_loss": self.val_loss,
            "step": self.step,
            "totalSteps": self.total_steps,
        }
        out.update({k: v for k, v in optional.items() if v is not None})
        out.update(self.extra)
        return out


ProgressCallback = Callable[[ProgressEvent], None]


def band_percent(start: int, end: int, done: int, total: int) -> int:
    """Map ``done`` out of ``total`` units onto the ``[start, end]`` band."""
    if total <= 0:
        return end
    return start + round(min(done, total) / total * (end - start))


class ProgressEmitter:
    """Wrap an optional callback and keep reported percentages non-decreasing."""

    def __init__(self, callback: Optional[ProgressCallback] = None):
        self.callback = callback
        self.last_percent = 0

    def __call__(self, stage: str, percent: int, message: str, **kwargs: Any) -> None:
        if self.callback is None:
            return
        known = {"epoch", "total_epochs", "loss", "val_loss", "step", "total_steps"}
        fields = {k: v for k, v in kwargs.items() if k in known}
        extra = {k: v for k, v in kwargs.items() if k not in known}
        self.last_percent = max(self.last_percent, int(percent))
        self.callback(ProgressEvent(stage, self.last_percent, message, extra=extra, **fields))


def as_emitter(on_progress: "ProgressCallback | ProgressEmitter | None") -> ProgressEmitter:
    """Reuse an emitter handed down by the caller so percentages stay monotonic."""
    if isinstance(on_progress, ProgressEmitter):
        return on_progress
    return ProgressEmitter(on_progress)


__all__ = [
    "ProgressEvent",
    "ProgressCallback",
    "ProgressEmitter",
    "as_emitter",
    "band_percent",
]
