import sys
from pathlib import Path

import pytest

sys.path.append(str(Path(__file__).resolve().parents[1]))

from PriceForecast.errors import InvalidInputError
from PriceForecast.fingerprint import make_fingerprint, sanitize_symbol
from PriceForecast.models.base_trainer import ModelConfig


def test_default_family_format():
    config = ModelConfig(sequence_length=60, epochs=50, batch_size=32, days_to_predict=30)
    assert make_fingerprint("AAPL", config) == "AAPL_seq60_pred30_ep50_bs32"


def test_non_default_family_suffix():
    config = ModelConfig(sequence_length=10, epochs=5, batch_size=8, days_to_predict=3, model_name="lstm")
    assert make_fingerprint("MSFT", config) == "MSFT_seq10_pred3_ep5_bs8_lstm"


def test_symbol_is_sanitized():
    assert sanitize_symbol("BRK/B") == "BRK_B"
    assert sanitize_symbol("^GSPC") == "GSPC"
    assert sanitize_symbol("005930.KS") == "005930.KS"
    with pytest.raises(InvalidInputError):
        sanitize_symbol("  ")


def test_params_do_not_change_fingerprint():
    a = ModelConfig(params={"hidden_size": 8})
    b = ModelConfig()
    assert make_fingerprint("X", a) == make_fingerprint("X", b)
