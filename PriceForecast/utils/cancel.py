"""Cooperative cancellation token.

A :class:`CancelToken` is handed to the trainer and predictor and polled at
every suspension point (epoch start, every few batches, every prediction
step). Cancelling never interrupts a forward/backward pass in flight.
"""

from __future__ import annotations

import threading

from PriceForecast.errors import CancelledError


class CancelToken:
    def __init__(self) -> None:
        self._event = threading.Event()
        self.reason = "Training was canceled"

    def cancel(self, reason: str | None = None) -> None:
        if reason:
            self.reason = reason
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise CancelledError(self.reason)


__all__ = ["CancelToken"]
