from __future__ import annotations
import argparse
import json
import logging
import sys

from PriceForecast.checkpoint.store import CheckpointStore
from PriceForecast.pipeline import predict_saved
from PriceForecast.train import log_progress, write_result
from PriceForecast.utils.device import select_device
from PriceForecast.utils.io import read_stock_data


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(description="Forecast with a saved model")
    parser.add_argument("--model-id", default=None, help="saved model id (see --list)")
    parser.add_argument("--list", action="store_true", help="print saved models and exit")
    parser.add_argument("--data", help="CSV/Excel file with date and close columns")
    parser.add_argument("--symbol", default=None, help="symbol; defaults to the saved model's")
    parser.add_argument("--days", type=int, default=None, help="trading days to predict")
    parser.add_argument("--past-days", type=int, default=0, help="back-test the last N observations")
    parser.add_argument("--models-dir", default=None, help="checkpoint directory")
    parser.add_argument("--device", default=None, help="cpu, cuda, mps or 'ask' to choose interactively")
    parser.add_argument("--out", default=None, help="write predictions to this CSV instead of stdout")
    args = parser.parse_args(argv)

    logging.basicConfig(level=logging.INFO, format="%(levelname)s:%(name)s:%(message)s")
    store = CheckpointStore(args.models_dir)
    if args.list:
        print(json.dumps(store.list(), indent=2))
        return 0
    if not args.model_id:
        parser.error("--model-id is required unless --list is given")
    try:
        if not store.exists(args.model_id):
            parser.error(f"Model {args.model_id} not found.")
    except ValueError as e:
        parser.error(str(e))
    if not args.data:
        parser.error("--data is required")

    ask = args.device == "ask"
    device = select_device(None if ask else args.device, interactive=ask)
    symbol = args.symbol or args.model_id.split("_seq")[0]
    try:
        stock = read_stock_data(args.data, symbol)
    except (OSError, ValueError) as e:
        logging.error("Failed to read %s: %s", args.data, e)
        return 1
    try:
        result = predict_saved(
            args.model_id,
            stock,
            store=store,
            days_to_predict=args.days,
            predict_past_days=args.past_days,
            on_progress=log_progress,
            device=device,
        )
    except (ValueError, RuntimeError) as e:
        logging.error("Prediction failed: %s", e)
        return 1
    write_result(result, args.out)
    return 0


if __name__ == "__main__":
    sys.exit(main())
