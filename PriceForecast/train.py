from __future__ import annotations
import argparse
import json
import logging
import sys
from pathlib import Path

import pandas as pd

from PriceForecast.checkpoint.store import CheckpointStore
from PriceForecast.config.default import DEFAULT_MODEL, MODEL_CFG, TRAIN_CFG
from PriceForecast.models.base_trainer import ModelConfig, TrainConfig
from PriceForecast.models.registry import ModelRegistry
from PriceForecast.pipeline import AnalysisResult, train_and_predict
from PriceForecast.utils.device import select_device
from PriceForecast.utils.io import read_stock_data
from PriceForecast.utils.params import load_model_params
from PriceForecast.utils.progress import ProgressEvent


def log_progress(event: ProgressEvent) -> None:
    logging.info("[%3d%%] %s", event.percent, event.message)


def write_result(result: AnalysisResult, out: str | None) -> None:
    """Write predictions to ``out`` (CSV, metadata as JSON beside it) or print JSON."""
    if out is None:
        print(json.dumps(result.to_dict(), indent=2))
        return
    path = Path(out)
    path.parent.mkdir(parents=True, exist_ok=True)
    pd.DataFrame([p.to_dict() for p in result.predictions]).to_csv(path, index=False)
    with path.with_suffix(".json").open("w", encoding="utf-8") as f:
        json.dump(result.model_data, f, ensure_ascii=False, indent=2)
    logging.info("Predictions written to %s", path)


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(description="Train an LSTM on a price table and forecast future closes")
    parser.add_argument("--data", help="CSV/Excel file with date, open, high, low, close, volume columns")
    parser.add_argument("--symbol", default="STOCK", help="instrument symbol used in the model id")
    parser.add_argument("--sequence-length", type=int, default=MODEL_CFG["sequence_length"])
    parser.add_argument("--epochs", type=int, default=MODEL_CFG["epochs"])
    parser.add_argument("--batch-size", type=int, default=MODEL_CFG["batch_size"])
    parser.add_argument("--days", type=int, default=MODEL_CFG["days_to_predict"], help="trading days to predict")
    families = "; ".join(f"{name}: {desc}" for name, desc in ModelRegistry.describe().items())
    parser.add_argument("--model", default=None, help=f"model family ({families})")
    parser.add_argument("--params", default=None, help="YAML/JSON file with architecture overrides")
    parser.add_argument("--force", action="store_true", help="retrain even if a checkpoint exists")
    parser.add_argument("--past-days", type=int, default=0, help="back-test the last N observations")
    parser.add_argument("--seed", type=int, default=TRAIN_CFG["seed"])
    parser.add_argument("--models-dir", default=None, help="checkpoint directory")
    parser.add_argument("--device", default=None, help="cpu, cuda, mps or 'ask' to choose interactively")
    parser.add_argument("--out", default=None, help="write predictions to this CSV instead of stdout")
    args = parser.parse_args(argv)

    logging.basicConfig(level=logging.INFO, format="%(levelname)s:%(name)s:%(message)s")
    model_name = args.model or DEFAULT_MODEL
    try:
        ModelRegistry.get(model_name)
    except ValueError as e:
        parser.error(str(e))
    if not args.data:
        parser.error("--data is required")

    ask = args.device == "ask"
    device = select_device(None if ask else args.device, interactive=ask)
    try:
        params, source = load_model_params(model_name, args.params)
    except (OSError, ValueError) as e:
        logging.error("Failed to load parameters: %s", e)
        return 1
    if source is not None:
        logging.info("Using %s parameters from %s", model_name, source)

    config = ModelConfig(
        sequence_length=args.sequence_length,
        epochs=args.epochs,
        batch_size=args.batch_size,
        days_to_predict=args.days,
        model_name=model_name,
        params=params,
    )
    try:
        stock = read_stock_data(args.data, args.symbol)
    except (OSError, ValueError) as e:
        logging.error("Failed to read %s: %s", args.data, e)
        return 1
    try:
        result = train_and_predict(
            stock,
            config,
            store=CheckpointStore(args.models_dir),
            on_progress=log_progress,
            force_train=args.force,
            predict_past_days=args.past_days,
            train_cfg=TrainConfig(**{**TRAIN_CFG, "seed": args.seed}),
            device=device,
        )
    except (ValueError, RuntimeError) as e:
        logging.error("Training failed: %s", e)
        return 1
    write_result(result, args.out)
    return 0


if __name__ == "__main__":
    sys.exit(main())
