import functools
import gc
import sys
from pathlib import Path

import numpy as np
import pandas as pd
import pytest

sys.path.append(str(Path(__file__).resolve().parents[1]))

from PriceForecast.checkpoint.store import CheckpointStore
from PriceForecast.config import default as cfg_default
from PriceForecast.errors import CancelledError, CheckpointNotFoundError, InvalidInputError
from PriceForecast.jobs.controller import JobController, JobStatus
from PriceForecast.models.base_trainer import ModelConfig
from PriceForecast.pipeline import predict_saved, train_and_predict
from PriceForecast.preprocess.series import StockData
from PriceForecast.utils.resources import ResourceTracker

SMALL = {"hidden_size": 8, "dense_units": 4}


@pytest.fixture(autouse=True)
def _isolated_params(tmp_path, monkeypatch):
    monkeypatch.setattr(cfg_default, "PARAMS_DIR", tmp_path / "params")


def _stock(n=200, symbol="TEST"):
    rng = np.random.default_rng(1)
    dates = pd.bdate_range("2023-03-01", periods=n)
    close = 50 + 5 * np.sin(np.arange(n) / 8) + rng.normal(0, 0.2, n)
    df = pd.DataFrame({"date": dates, "close": close, "volume": 1000.0})
    return StockData.from_frame(symbol, df, name="Test Inc")


def _config(**kwargs):
    base = dict(sequence_length=20, epochs=2, batch_size=16, days_to_predict=5, params=dict(SMALL))
    base.update(kwargs)
    return ModelConfig(**base)


def test_train_then_reuse(tmp_path):
    store = CheckpointStore(tmp_path / "models")
    events = []
    result = train_and_predict(_stock(), _config(), store=store, device="cpu", on_progress=events.append)

    out = result.to_dict()
    assert len(out["predictions"]) == 5
    data = out["modelData"]
    assert data["modelId"] == "TEST_seq20_pred5_ep2_bs16"
    assert data["isExistingModel"] is False
    assert len(data["history"]["loss"]) == 2
    assert data["checkpointSaved"] is True
    assert store.exists("TEST_seq20_pred5_ep2_bs16")

    percents = [e.percent for e in events]
    assert percents == sorted(percents)
    assert events[0].stage == "starting" and events[0].percent == 5
    assert events[1].stage == "data" and events[1].percent == 10
    assert events[-1].stage == "completed" and events[-1].percent == 100

    again = train_and_predict(_stock(), _config(), store=store, device="cpu").to_dict()
    assert again["modelData"]["isExistingModel"] is True
    assert again["modelData"]["history"] == {"loss": [], "val_loss": []}
    assert [p["prediction"] for p in again["predictions"]] == pytest.approx(
        [p["prediction"] for p in out["predictions"]], rel=1e-6
    )


def test_non_default_family_in_fingerprint(tmp_path):
    result = train_and_predict(
        _stock(),
        _config(model_name="lstm", params={"hidden_size": 8}),
        store=CheckpointStore(tmp_path),
        device="cpu",
    )
    assert result.model_data["modelId"] == "TEST_seq20_pred5_ep2_bs16_lstm"
    assert result.model_data["normalization"] == "unit"


def test_prediction_only(tmp_path):
    store = CheckpointStore(tmp_path)
    with pytest.raises(CheckpointNotFoundError):
        predict_saved("TEST_seq20_pred5_ep2_bs16", _stock(), store=store, device="cpu")
    train_and_predict(_stock(), _config(), store=store, device="cpu")
    result = predict_saved("TEST_seq20_pred5_ep2_bs16", _stock(), store=store, days_to_predict=8, device="cpu")
    assert len(result.predictions) == 8
    assert result.model_data["isExistingModel"] is True


def test_backtest_metrics(tmp_path):
    result = train_and_predict(
        _stock(), _config(), store=CheckpointStore(tmp_path), device="cpu", predict_past_days=5
    )
    assert all(p.actual is not None for p in result.predictions)
    backtest = result.model_data["backtest"]
    assert backtest["count"] == 5
    assert backtest["mae"] >= 0 and backtest["rmse"] >= backtest["mae"]


def test_invalid_requests(tmp_path):
    store = CheckpointStore(tmp_path)
    with pytest.raises(InvalidInputError, match="Unknown model 'nope'"):
        train_and_predict(_stock(), _config(model_name="nope"), store=store, device="cpu")
    with pytest.raises(InvalidInputError, match="empty"):
        train_and_predict(StockData(symbol="X"), _config(), store=store, device="cpu")
    with pytest.raises(InvalidInputError, match="epochs"):
        train_and_predict(_stock(), _config(epochs=0), store=store, device="cpu")


def test_model_is_released(tmp_path):
    tracker = ResourceTracker()
    train_and_predict(_stock(), _config(), store=CheckpointStore(tmp_path), device="cpu", tracker=tracker)
    gc.collect()
    assert len(tracker) > 0
    assert tracker.alive() == []


def test_cancel_through_controller_releases_everything(tmp_path):
    tracker = ResourceTracker()
    controller = JobController(
        store=CheckpointStore(tmp_path),
        runner=functools.partial(train_and_predict, tracker=tracker),
        max_workers=1,
        device="cpu",
    )
    fp = "TEST_seq20_pred5_ep50_bs16"
    messages = []

    def listener(message):
        messages.append(message)
        if message["type"] == "progress" and message["data"].get("epoch") == 1:
            controller.cancel(fp)

    controller.subscribe(listener)
    handle = controller.start(fp, _config(epochs=50), _stock())
    with pytest.raises(CancelledError):
        handle.result(timeout=60)
    controller.shutdown(wait=True)

    assert controller.status(fp).status is JobStatus.CANCELLED
    statuses = [m for m in messages if m["type"] == "status"]
    assert [m["data"]["stage"] for m in statuses] == ["cancelled"]
    assert messages[-1]["type"] == "status"
    gc.collect()
    assert len(tracker) > 0
    assert tracker.alive() == []
    assert not (tmp_path / fp).exists()
