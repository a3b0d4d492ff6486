import sys
from pathlib import Path

import pytest

sys.path.append(str(Path(__file__).resolve().parents[1]))

from PriceForecast.config.default import DEFAULT_MODEL
from PriceForecast.models.lstm.trainer import LSTMTrainer, StackedLSTMTrainer
from PriceForecast.models.registry import ModelRegistry


def test_families_registered_under_their_names():
    assert ModelRegistry.available() == ["lstm", "stacked_lstm"]
    assert ModelRegistry.get("lstm") is LSTMTrainer
    assert ModelRegistry.get(None) is ModelRegistry.get(DEFAULT_MODEL) is StackedLSTMTrainer


def test_unknown_family():
    with pytest.raises(ValueError, match="Unknown model 'gru'. Available models: lstm, stacked_lstm"):
        ModelRegistry.get("gru")


def test_name_cannot_be_rebound():
    ModelRegistry.register(LSTMTrainer)
    with pytest.raises(ValueError, match="already registered to LSTMTrainer"):
        ModelRegistry.register(StackedLSTMTrainer, name="lstm")
    assert ModelRegistry.get("lstm") is LSTMTrainer


def test_describe():
    desc = ModelRegistry.describe()
    assert desc["lstm"] == "unit scaling, autoregressive"
    assert desc["stacked_lstm"] == "symmetric scaling, direct multi-step, default"
