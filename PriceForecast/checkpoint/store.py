"""On-disk checkpoint store.

Layout::

    <root>/<fingerprint>/model.pt     torch.save payload (weights + everything
                                      needed to rebuild the model)
    <root>/<fingerprint>/params.json  metadata sidecar used for listings

``model.pt`` alone is sufficient to rebuild a model; the sidecar only exists
so listings need not unpickle weights. Both files are written to a temporary
file in the same directory, fsynced and renamed over the target, so a reader
never observes a partially written checkpoint.
"""

from __future__ import annotations

import contextlib
import io
import json
import logging
import os
import re
import shutil
import tempfile
import threading
from pathlib import Path
from typing import Any, Dict, List, Optional

import torch

from PriceForecast.config import default as cfg_default
from PriceForecast.errors import CheckpointIOError, CheckpointNotFoundError, InvalidInputError
from PriceForecast.models.base_trainer import ModelConfig, TrainedModel, TrainingHistory, utc_now
from PriceForecast.models.registry import ModelRegistry
from PriceForecast.preprocess.normalizer import NormalizationParams

logger = logging.getLogger(__name__)

FORMAT_VERSION = 1
MODEL_FILE = "model.pt"
META_FILE = "params.json"
FINGERPRINT_RE = re.compile(r"^[A-Za-z0-9][A-Za-z0-9._-]*$")


def _atomic_write(path: Path, data: bytes) -> None:
    fd, tmp = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.", suffix=".tmp")
    try:
        with os.fdopen(fd, "wb") as f:
            f.write(data)
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp, path)
    except BaseException:
        with contextlib.suppress(OSError):
            os.unlink(tmp)
        raise


class CheckpointStore:
    """Save, load, list and delete trained models keyed by fingerprint.

    Operations on one fingerprint are serialized by a per-fingerprint lock;
    different fingerprints proceed in parallel.
    """

    def __init__(self, root: Optional[os.PathLike] = None):
        self.root = Path(root) if root is not None else Path(cfg_default.MODELS_DIR)
        self._locks: Dict[str, threading.Lock] = {}
        self._guard = threading.Lock()

    def _lock(self, fingerprint: str) -> threading.Lock:
        with self._guard:
            return self._locks.setdefault(fingerprint, threading.Lock())

    def path(self, fingerprint: str) -> Path:
        if not isinstance(fingerprint, str) or not FINGERPRINT_RE.match(fingerprint):
            raise InvalidInputError(f"Invalid model id {fingerprint!r}")
        return self.root / fingerprint

    def exists(self, fingerprint: str) -> bool:
        return (self.path(fingerprint) / MODEL_FILE).is_file()

    def save(self, fingerprint: str, model: TrainedModel) -> Path:
        """Write ``model`` under ``fingerprint`` and return its directory.

        Raises
        ------
        CheckpointIOError
            If the network was already released or the files cannot be written.
        """

        directory = self.path(fingerprint)
        if model.net is None:
            raise CheckpointIOError(f"Model {fingerprint} has no network to save")
        meta = model.summary()
        meta["modelId"] = fingerprint
        payload = {
            "format": FORMAT_VERSION,
            "fingerprint": fingerprint,
            "model_name": model.model_name,
            "config": model.config.to_dict(),
            "params": dict(model.model_params),
            "norm": model.norm.to_dict(),
            "output_size": model.output_size,
            "state_dict": {k: v.detach().cpu().clone() for k, v in model.net.state_dict().items()},
            "history": model.history.to_dict(),
            "meta": meta,
        }
        buf = io.BytesIO()
        torch.save(payload, buf)
        with self._lock(fingerprint):
            try:
                directory.mkdir(parents=True, exist_ok=True)
                _atomic_write(directory / MODEL_FILE, buf.getvalue())
                _atomic_write(directory / META_FILE, json.dumps(meta, indent=2).encode("utf-8"))
            except OSError as e:
                raise CheckpointIOError(f"Failed to save model {fingerprint}: {e}") from e
        logger.info("Saved checkpoint %s to %s", fingerprint, directory)
        return directory

    def load(self, fingerprint: str, device: str = "cpu") -> TrainedModel:
        """Rebuild the model saved under ``fingerprint`` on ``device``.

        Raises
        ------
        CheckpointNotFoundError
            If no checkpoint exists.
        CheckpointIOError
            If the checkpoint is corrupt or cannot be rebuilt.
        """

        target = self.path(fingerprint) / MODEL_FILE
        with self._lock(fingerprint):
            if not target.is_file():
                raise CheckpointNotFoundError(f"Model {fingerprint} not found.")
            try:
                payload = torch.load(target, map_location="cpu", weights_only=True)
            except Exception as e:
                raise CheckpointIOError(f"Checkpoint {fingerprint} is unreadable: {e}") from e

        try:
            trainer_cls = ModelRegistry.get(payload["model_name"])
            config = ModelConfig.from_dict(payload["config"])
            net = trainer_cls.create_network(payload["params"], config.sequence_length, int(payload["output_size"]))
            net.load_state_dict(payload["state_dict"])
            net.to(device).eval()
            norm = NormalizationParams.from_dict(payload["norm"])
            history = TrainingHistory(**payload.get("history", {}))
        except (KeyError, TypeError, ValueError, RuntimeError) as e:
            raise CheckpointIOError(f"Checkpoint {fingerprint} cannot be rebuilt: {e}") from e

        meta: Dict[str, Any] = payload.get("meta") or {}
        return TrainedModel(
            fingerprint=fingerprint,
            model_name=payload["model_name"],
            config=config,
            norm=norm,
            net=net,
            output_size=int(payload["output_size"]),
            model_params=dict(payload["params"]),
            history=history,
            data_points=int(meta.get("dataPoints") or 0),
            symbol=meta.get("symbol") or "",
            created=meta.get("created") or utc_now(),
            final_loss=meta.get("finalLoss"),
            final_val_loss=meta.get("finalValLoss"),
            is_existing=True,
            checkpoint_saved=True,
        )

    def delete(self, fingerprint: str) -> None:
        directory = self.path(fingerprint)
        with self._lock(fingerprint):
            if not directory.is_dir():
                raise CheckpointNotFoundError(f"Model {fingerprint} not found.")
            try:
                shutil.rmtree(directory)
            except OSError as e:
                raise CheckpointIOError(f"Failed to delete model {fingerprint}: {e}") from e
        logger.info("Deleted checkpoint %s", fingerprint)

    def list(self) -> List[Dict[str, Any]]:
        """Metadata of every saved model, ordered by model id."""
        if not self.root.is_dir():
            return []
        out = []
        for directory in sorted(p for p in self.root.iterdir() if p.is_dir()):
            sidecar = directory / META_FILE
            if not sidecar.is_file():
                continue
            try:
                with sidecar.open("r", encoding="utf-8") as f:
                    meta = json.load(f)
            except (OSError, ValueError) as e:
                logger.warning("Skipping unreadable model metadata %s: %s", sidecar, e)
                continue
            if not isinstance(meta, dict):
                logger.warning("Skipping malformed model metadata %s", sidecar)
                continue
            meta.setdefault("modelId", directory.name)
            out.append(meta)
        return out


__all__ = ["CheckpointStore", "MODEL_FILE", "META_FILE"]
