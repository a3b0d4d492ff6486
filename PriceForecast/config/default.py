# config/default.py
from __future__ import annotations
import os
from pathlib import Path

# project root = one level above this file's directory (config/)
PROJECT_ROOT = Path(__file__).resolve().parents[1]

# artifact root; PRICEFORECAST_ARTIFACTS relocates it (created lazily by the store)
ARTIFACTS_DIR = Path(os.environ.get("PRICEFORECAST_ARTIFACTS", PROJECT_ROOT / "artifacts")).resolve()

# one sub-directory per model fingerprint
MODELS_DIR = ARTIFACTS_DIR / "models"
# optional per-family parameter overrides (<model>.yaml or <model>.json)
PARAMS_DIR = ARTIFACTS_DIR / "params"

DEFAULT_MODEL = "stacked_lstm"

# architecture defaults per model family
LSTM_PARAMS = dict(
    hidden_size=50, num_layers=1, dropout=0.0,
    dense_units=0, batch_norm=False,
    lr=1e-3, weight_decay=0.0,
)
STACKED_LSTM_PARAMS = dict(
    hidden_size=64, num_layers=2, dropout=0.2,
    dense_units=32, batch_norm=False,
    lr=1e-3, weight_decay=0.0,
)
MODEL_PARAMS = {
    "lstm": LSTM_PARAMS,
    "stacked_lstm": STACKED_LSTM_PARAMS,
}

# request defaults (same as the HTTP layer's)
MODEL_CFG = dict(
    sequence_length=60, epochs=50,
    batch_size=32, days_to_predict=30,
)
TRAIN_CFG = dict(
    seed=42, val_ratio=0.2,
    min_samples=10, cancel_check_every=8,
)
JOB_CFG = dict(
    max_workers=2,
    retention_seconds=600.0,
)

# overall pipeline percent assigned to each stage
PROGRESS = dict(
    starting=5, data=10, loading=15, preprocessing=25, preparing=30,
    training_start=40, training_end=80, loaded=75, saving=85, saved=90,
    predicting_start=90, predicting_end=99, completed=100,
)

API_HOST = os.environ.get("PRICEFORECAST_HOST", "0.0.0.0")
API_PORT = int(os.environ.get("PORT", "5000"))
