"""Deterministic model identifiers.

A fingerprint names the checkpoint directory of a trained model. It is built
from the symbol and the request fields that change the trained weights::

    AAPL_seq60_pred30_ep50_bs32
    AAPL_seq60_pred30_ep50_bs32_lstm    (non-default model family)
"""

from __future__ import annotations

import re

from PriceForecast.config.default import DEFAULT_MODEL
from PriceForecast.errors import InvalidInputError
from PriceForecast.models.base_trainer import ModelConfig


def sanitize_symbol(symbol: str) -> str:
    cleaned = re.sub(r"[^A-Za-z0-9._-]", "_", str(symbol or "").strip()).lstrip("._-")
    if not cleaned:
        raise InvalidInputError(f"Invalid symbol {symbol!r}")
    return cleaned


def make_fingerprint(symbol: str, config: ModelConfig) -> str:
    fp = (
        f"{sanitize_symbol(symbol)}_seq{config.sequence_length}_pred{config.days_to_predict}"
        f"_ep{config.epochs}_bs{config.batch_size}"
    )
    if config.model_name and config.model_name != DEFAULT_MODEL:
        fp += f"_{config.model_name}"
    return fp


__all__ = ["make_fingerprint", "sanitize_symbol"]
