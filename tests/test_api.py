import sys
import threading
from pathlib import Path

import numpy as np
import pandas as pd
import pytest
from fastapi.testclient import TestClient

sys.path.append(str(Path(__file__).resolve().parents[1]))

from PriceForecast.api.app import create_app
from PriceForecast.config import default as cfg_default
from PriceForecast.errors import CancelledError
from PriceForecast.models.base_trainer import ModelConfig
from PriceForecast.pipeline import AnalysisResult
from PriceForecast.preprocess.series import StockData

MODEL_ID = "TEST_seq10_pred3_ep1_bs16"


@pytest.fixture(autouse=True)
def _isolated_params(tmp_path, monkeypatch):
    monkeypatch.setattr(cfg_default, "PARAMS_DIR", tmp_path / "params")


def _stock_payload(n=120, symbol="TEST"):
    dates = pd.bdate_range("2023-05-01", periods=n)
    close = 20 + 2 * np.sin(np.arange(n) / 5)
    return {
        "symbol": symbol,
        "name": "Test Inc",
        "timeSeries": [
            {"date": d.strftime("%Y-%m-%d"), "open": c, "high": c + 0.5, "low": c - 0.5, "close": c, "volume": 10}
            for d, c in zip(dates, close)
        ],
    }


def _request(**kwargs):
    body = {
        "stockData": _stock_payload(),
        "sequenceLength": 10,
        "epochs": 1,
        "batchSize": 16,
        "daysToPredict": 3,
        "params": {"hidden_size": 8, "dense_units": 4},
    }
    body.update(kwargs)
    return body


@pytest.fixture
def client(tmp_path):
    app = create_app(models_dir=str(tmp_path / "models"), device="cpu")
    with TestClient(app) as c:
        yield c


def test_status(client):
    assert client.get("/api/status").json() == {"status": "Server is running"}


def test_analyze_and_manage_models(client):
    resp = client.post("/api/analyze", json=_request())
    assert resp.status_code == 200, resp.text
    body = resp.json()
    assert body["modelId"] == MODEL_ID
    assert len(body["predictions"]) == 3
    assert body["modelData"]["isExistingModel"] is False
    assert set(body["predictions"][0]) == {"date", "prediction"}

    models = client.get("/api/models").json()["models"]
    assert [m["modelId"] for m in models] == [MODEL_ID]

    job = client.get(f"/api/jobs/{MODEL_ID}").json()
    assert job["status"] == "complete" and job["progress"] == 100

    resp = client.post(f"/api/models/{MODEL_ID}/predict", json={"stockData": _stock_payload(), "daysToPredict": 4})
    assert resp.status_code == 200, resp.text
    assert len(resp.json()["predictions"]) == 4

    assert client.delete(f"/api/models/{MODEL_ID}").status_code == 200
    assert client.delete(f"/api/models/{MODEL_ID}").status_code == 404
    resp = client.post(f"/api/models/{MODEL_ID}/predict", json={"stockData": _stock_payload()})
    assert resp.status_code == 404


def test_empty_stock_data(client):
    resp = client.post("/api/analyze", json=_request(stockData=None))
    assert resp.status_code == 400
    assert resp.json() == {"error": "Stock data is empty or invalid."}
    resp = client.post("/api/analyze", json=_request(stockData={"symbol": "X", "timeSeries": []}))
    assert resp.status_code == 400


def test_invalid_body(client):
    resp = client.post("/api/analyze", json=_request(epochs="many"))
    assert resp.status_code == 400
    assert "epochs" in resp.json()["error"]


def test_insufficient_data(client):
    resp = client.post("/api/analyze", json=_request(stockData=_stock_payload(n=8)))
    assert resp.status_code == 400
    assert "need at least" in resp.json()["error"]


def test_unknown_job(client):
    assert client.get("/api/jobs/NOPE").status_code == 404
    assert client.post("/api/jobs/NOPE/cancel").json() == {"cancelled": False}
    assert client.get("/api/jobs").json() == {"active": [], "jobs": []}


def test_duplicate_request_conflicts(tmp_path):
    release = threading.Event()
    started = threading.Event()

    def runner(stock_data, config, *, fingerprint, cancel_token, **kwargs):
        started.set()
        while not release.wait(0.01):
            cancel_token.raise_if_cancelled()
        return AnalysisResult(predictions=[], model_data={"modelId": fingerprint})

    app = create_app(models_dir=str(tmp_path), device="cpu", runner=runner)
    with TestClient(app) as client:
        config = ModelConfig(sequence_length=10, epochs=1, batch_size=16, days_to_predict=3)
        handle = app.state.controller.start(MODEL_ID, config, StockData(symbol="TEST"))
        assert started.wait(5)

        resp = client.post("/api/analyze", json=_request(params={}))
        assert resp.status_code == 409
        assert resp.json()["status"] == "training"
        assert client.get("/api/jobs").json()["active"] == [MODEL_ID]

        assert client.post(f"/api/jobs/{MODEL_ID}/cancel").json() == {"cancelled": True}
        with pytest.raises(CancelledError):
            handle.result(timeout=5)
        assert client.get(f"/api/jobs/{MODEL_ID}").json()["status"] == "cancelled"


def test_cancelled_run_maps_to_conflict(tmp_path):
    def runner(*args, **kwargs):
        raise CancelledError("Training was canceled")

    with TestClient(create_app(models_dir=str(tmp_path), device="cpu", runner=runner)) as client:
        resp = client.post("/api/analyze", json=_request())
        assert resp.status_code == 409
        assert resp.json() == {"error": "Training was canceled", "status": "cancelled"}


def test_pipeline_failure_maps_to_500(tmp_path):
    def runner(*args, **kwargs):
        raise RuntimeError("weights exploded")

    app = create_app(models_dir=str(tmp_path), device="cpu", runner=runner)
    with TestClient(app, raise_server_exceptions=False) as client:
        resp = client.post("/api/analyze", json=_request())
        assert resp.status_code == 500
        assert resp.json()["error"] == "weights exploded"


def test_websocket_progress(client):
    with client.websocket_connect("/ws") as ws:
        resp = client.post("/api/analyze", json=_request())
        assert resp.status_code == 200
        messages = []
        while True:
            msg = ws.receive_json()
            messages.append(msg)
            if msg["type"] == "status":
                break
    progress = [m for m in messages if m["type"] == "progress"]
    assert progress[0]["data"]["stage"] == "starting"
    assert all(m["modelId"] == MODEL_ID for m in messages)
    percents = [m["data"]["percent"] for m in progress]
    assert percents == sorted(percents)
    assert any(m["data"].get("epoch") == 1 for m in progress)
    assert messages[-1]["data"]["stage"] == "complete"


def test_saved_model_prediction_runs_as_job(client):
    assert client.post("/api/analyze", json=_request()).status_code == 200
    with client.websocket_connect("/ws") as ws:
        resp = client.post(f"/api/models/{MODEL_ID}/predict", json={"stockData": _stock_payload(), "daysToPredict": 2})
        assert resp.status_code == 200, resp.text
        messages = []
        while True:
            msg = ws.receive_json()
            if not messages and msg["data"].get("stage") != "starting":
                continue  # tail of the training run
            messages.append(msg)
            if msg["type"] == "status":
                break
    stages = [m["data"]["stage"] for m in messages if m["type"] == "progress"]
    assert "loading" in stages and "training" not in stages
    assert all(m["modelId"] == MODEL_ID for m in messages)
    assert messages[-1]["data"]["stage"] == "complete"
    assert resp.json()["modelData"]["isExistingModel"] is True
    assert client.get(f"/api/jobs/{MODEL_ID}").json()["status"] == "complete"


def test_saved_model_prediction_conflicts_with_running_job(tmp_path):
    release = threading.Event()
    started = threading.Event()
    calls = []

    def runner(stock_data, config, *, fingerprint, cancel_token, **kwargs):
        calls.append(kwargs)
        started.set()
        while not release.wait(0.01):
            cancel_token.raise_if_cancelled()
        return AnalysisResult(predictions=[], model_data={})

    app = create_app(models_dir=str(tmp_path), device="cpu", runner=runner)
    with TestClient(app) as client:
        (tmp_path / MODEL_ID).mkdir()
        (tmp_path / MODEL_ID / "model.pt").write_bytes(b"")
        config = ModelConfig(sequence_length=10, epochs=1, batch_size=16, days_to_predict=3)
        handle = app.state.controller.start(MODEL_ID, config, StockData(symbol="TEST"))
        assert started.wait(5)

        resp = client.post(f"/api/models/{MODEL_ID}/predict", json={"stockData": _stock_payload()})
        assert resp.status_code == 409
        assert resp.json()["status"] == "training"

        release.set()
        handle.result(timeout=5)
        resp = client.post(f"/api/models/{MODEL_ID}/predict", json={"stockData": _stock_payload(), "predictPastDays": 2})
        assert resp.status_code == 200, resp.text
    assert calls[-1]["prediction_only"] is True
    assert calls[-1]["predict_past_days"] == 2
