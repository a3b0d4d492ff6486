import json
import sys
from pathlib import Path

import pytest

sys.path.append(str(Path(__file__).resolve().parents[1]))

from PriceForecast.config import default as cfg_default
from PriceForecast.utils.params import load_model_params


def test_defaults_without_overrides(tmp_path, monkeypatch):
    monkeypatch.setattr(cfg_default, "PARAMS_DIR", tmp_path)
    params, source = load_model_params("stacked_lstm")
    assert source is None
    assert params == cfg_default.STACKED_LSTM_PARAMS
    params["hidden_size"] = 1
    assert cfg_default.STACKED_LSTM_PARAMS["hidden_size"] == 64


def test_yaml_override_is_merged(tmp_path, monkeypatch):
    monkeypatch.setattr(cfg_default, "PARAMS_DIR", tmp_path)
    (tmp_path / "lstm.yaml").write_text("hidden_size: 16\nlr: 0.01\n", encoding="utf-8")
    params, source = load_model_params("lstm")
    assert source == tmp_path / "lstm.yaml"
    assert params["hidden_size"] == 16 and params["lr"] == 0.01
    assert params["num_layers"] == cfg_default.LSTM_PARAMS["num_layers"]


def test_explicit_json_path(tmp_path):
    path = tmp_path / "custom.json"
    path.write_text(json.dumps({"dropout": 0.1}), encoding="utf-8")
    params, source = load_model_params("stacked_lstm", str(path))
    assert source == path
    assert params["dropout"] == 0.1


def test_broken_artifact_falls_back_to_defaults(tmp_path, monkeypatch, caplog):
    monkeypatch.setattr(cfg_default, "PARAMS_DIR", tmp_path)
    (tmp_path / "lstm.yaml").write_text("- not\n- a mapping\n", encoding="utf-8")
    with caplog.at_level("WARNING"):
        params, source = load_model_params("lstm")
    assert source is None
    assert params == cfg_default.LSTM_PARAMS
    assert "Failed to load lstm params" in caplog.text


def test_explicit_broken_path_raises(tmp_path):
    path = tmp_path / "bad.yaml"
    path.write_text("[1, 2]", encoding="utf-8")
    with pytest.raises(ValueError):
        load_model_params("lstm", str(path))
