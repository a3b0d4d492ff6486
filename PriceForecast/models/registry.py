"""Lookup of model families by the name stored in configs and checkpoints.

A family is a :class:`~PriceForecast.models.base_trainer.BaseModel`
subclass carrying ``name``, ``normalization`` and ``multi_step`` class
attributes. Checkpoints record the family name, so a name must keep
pointing at the same trainer for the lifetime of the process.
"""
from __future__ import annotations

from typing import Dict, Optional, Type

from PriceForecast.config.default import DEFAULT_MODEL


class ModelRegistry:
    """Registry mapping model family names to trainer classes."""
    _REGISTRY: Dict[str, Type] = {}

    @classmethod
    def register(cls, trainer_cls: Type, name: Optional[str] = None) -> Type:
        name = name or trainer_cls.name
        current = cls._REGISTRY.get(name)
        if current is not None and current is not trainer_cls:
            raise ValueError(f"Model '{name}' is already registered to {current.__name__}")
        cls._REGISTRY[name] = trainer_cls
        return trainer_cls

    @classmethod
    def get(cls, name: Optional[str] = None):
        """Return the trainer for ``name``; ``None`` means the default family."""
        name = name or DEFAULT_MODEL
        if name not in cls._REGISTRY:
            available = ", ".join(sorted(cls._REGISTRY))
            raise ValueError(
                f"Unknown model '{name}'. Available models: {available}"
            )
        return cls._REGISTRY[name]

    @classmethod
    def available(cls):
        return sorted(cls._REGISTRY)

    @classmethod
    def describe(cls) -> Dict[str, str]:
        """One-line summary per family, e.g. for ``--help`` output."""
        out = {}
        for name in cls.available():
            trainer_cls = cls._REGISTRY[name]
            mode = "direct multi-step" if trainer_cls.multi_step else "autoregressive"
            default = ", default" if name == DEFAULT_MODEL else ""
            out[name] = f"{trainer_cls.normalization} scaling, {mode}{default}"
        return out


# register known trainers
from PriceForecast.models.lstm.trainer import LSTMTrainer, StackedLSTMTrainer
ModelRegistry.register(LSTMTrainer)
ModelRegistry.register(StackedLSTMTrainer)
