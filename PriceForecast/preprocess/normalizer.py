"""Min-max normalization of closing prices.

Two conventions exist and each model family fixes one of them as a class
constant:

``unit``
    ``(v - min) / range``, mapping the training series onto ``[0, 1]``.
``symmetric``
    ``2 * (v - min) / range - 1``, mapping it onto ``[-1, 1]``.

The parameters are fitted once per training run and persisted with the
model. Prediction must reuse them verbatim; re-fitting on the prediction
series would silently shift every output.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass
from typing import Any, Dict, Union

import numpy as np

from PriceForecast.errors import DegenerateDataError, InvalidInputError

UNIT = "unit"
SYMMETRIC = "symmetric"
CONVENTIONS = (UNIT, SYMMETRIC)

ArrayLike = Union[float, np.ndarray, list]


@dataclass(frozen=True)
class NormalizationParams:
    min: float
    range: float
    convention: str = SYMMETRIC

    def __post_init__(self):
        if self.convention not in CONVENTIONS:
            raise ValueError(f"Unknown normalization convention '{self.convention}'")
        if not self.range > 0:
            raise DegenerateDataError(f"Normalization range must be positive, got {self.range}")

    @property
    def max(self) -> float:
        return self.min + self.range

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, payload: Dict[str, Any]) -> "NormalizationParams":
        return cls(
            min=float(payload["min"]),
            range=float(payload["range"]),
            convention=payload.get("convention", SYMMETRIC),
        )


def fit_params(series: ArrayLike, convention: str = SYMMETRIC) -> NormalizationParams:
    """Compute min and range over the full series."""
    arr = np.asarray(series, dtype=float)
    if arr.size == 0:
        raise InvalidInputError("Cannot normalize an empty series")
    if not np.all(np.isfinite(arr)):
        raise InvalidInputError("Cannot normalize a series containing non-finite prices")
    lo = float(arr.min())
    rng = float(arr.max()) - lo
    if rng == 0:
        raise DegenerateDataError(
            f"Cannot normalize data: all closing prices are identical ({lo})."
        )
    return NormalizationParams(min=lo, range=rng, convention=convention)


def _unwrap(values: np.ndarray):
    return float(values) if values.ndim == 0 else values


def normalize(values: ArrayLike, params: NormalizationParams):
    arr = np.asarray(values, dtype=float)
    scaled = (arr - params.min) / params.range
    if params.convention == SYMMETRIC:
        scaled = 2.0 * scaled - 1.0
    return _unwrap(scaled)


def denormalize(values: ArrayLike, params: NormalizationParams):
    arr = np.asarray(values, dtype=float)
    if params.convention == SYMMETRIC:
        arr = (arr + 1.0) / 2.0
    return _unwrap(arr * params.range + params.min)


__all__ = [
    "NormalizationParams",
    "fit_params",
    "normalize",
    "denormalize",
    "UNIT",
    "SYMMETRIC",
]
