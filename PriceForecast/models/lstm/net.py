from __future__ import annotations

import torch
import torch.nn as nn


class LSTMForecaster(nn.Module):
    """Stacked LSTM over a univariate window followed by a dense head.

    The recurrent state starts from zero for every sequence; nothing is
    carried between batches. ``forward`` accepts ``(B, L)`` or ``(B, L, 1)``
    and returns ``(B, output_size)``.
    """

    def __init__(
        self,
        input_len: int,
        output_size: int,
        hidden_size: int = 50,
        num_layers: int = 1,
        dropout: float = 0.0,
        dense_units: int = 0,
        batch_norm: bool = False,
    ):
        super().__init__()
        self.input_len = input_len
        self.output_size = output_size
        self.lstm = nn.LSTM(
            input_size=1,
            hidden_size=hidden_size,
            num_layers=num_layers,
            batch_first=True,
            dropout=dropout if num_layers > 1 else 0.0,
        )
        self.drop = nn.Dropout(dropout)
        self.norm = nn.BatchNorm1d(hidden_size) if batch_norm else None
        if dense_units > 0:
            self.head = nn.Sequential(
                nn.Linear(hidden_size, dense_units), nn.ReLU(), nn.Linear(dense_units, output_size)
            )
        else:
            self.head = nn.Linear(hidden_size, output_size)

    def forward(self, x: torch.Tensor) -> torch.Tensor:
        if x.ndim == 2:
            x = x.unsqueeze(-1)
        out, _ = self.lstm(x)
        z = self.drop(out[:, -1, :])
        if self.norm is not None:
            z = self.norm(z)
        return self.head(z)
