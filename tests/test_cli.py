import json
import os
import subprocess
import sys
from pathlib import Path

import numpy as np
import pandas as pd

REPO_ROOT = Path(__file__).resolve().parents[1]


def _run(args, tmp_path):
    env = {
        **os.environ,
        "PYTHONPATH": str(REPO_ROOT),
        "PRICEFORECAST_ARTIFACTS": str(tmp_path / "artifacts"),
    }
    return subprocess.run(
        [sys.executable, "-m", *args],
        cwd=tmp_path,
        env=env,
        capture_output=True,
        text=True,
    )


def _write_prices(path: Path, n=80):
    dates = pd.bdate_range("2024-01-01", periods=n)
    close = 30 + np.cos(np.arange(n) / 4)
    pd.DataFrame({"Date": dates.strftime("%Y-%m-%d"), "Close": close, "Volume": 5}).to_csv(path, index=False)


def test_train_unknown_model(tmp_path):
    proc = _run(["PriceForecast.train", "--model", "unknown"], tmp_path)
    assert proc.returncode != 0
    assert "Unknown model 'unknown'" in proc.stderr


def test_predict_unknown_model_id(tmp_path):
    proc = _run(["PriceForecast.predict", "--model-id", "MISSING", "--models-dir", str(tmp_path)], tmp_path)
    assert proc.returncode != 0
    assert "Model MISSING not found." in proc.stderr


def test_train_then_list_and_predict(tmp_path):
    data = tmp_path / "prices.csv"
    _write_prices(data)
    models = tmp_path / "models"
    out = tmp_path / "out" / "pred.csv"
    proc = _run(
        [
            "PriceForecast.train", "--data", str(data), "--symbol", "CLI",
            "--sequence-length", "10", "--epochs", "1", "--batch-size", "16", "--days", "3",
            "--models-dir", str(models), "--device", "cpu", "--out", str(out),
        ],
        tmp_path,
    )
    assert proc.returncode == 0, proc.stderr
    preds = pd.read_csv(out)
    assert len(preds) == 3
    assert list(preds.columns) == ["date", "prediction"]
    meta = json.loads(out.with_suffix(".json").read_text(encoding="utf-8"))
    assert meta["modelId"] == "CLI_seq10_pred3_ep1_bs16"

    listing = _run(["PriceForecast.predict", "--list", "--models-dir", str(models)], tmp_path)
    assert listing.returncode == 0, listing.stderr
    assert [m["modelId"] for m in json.loads(listing.stdout)] == ["CLI_seq10_pred3_ep1_bs16"]

    proc = _run(
        [
            "PriceForecast.predict", "--model-id", "CLI_seq10_pred3_ep1_bs16", "--data", str(data),
            "--days", "5", "--models-dir", str(models), "--device", "cpu",
        ],
        tmp_path,
    )
    assert proc.returncode == 0, proc.stderr
    assert len(json.loads(proc.stdout)["predictions"]) == 5
