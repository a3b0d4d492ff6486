"""Utilities for selecting the computation device.

Servers and worker threads must never block on a prompt, so selection is
non-interactive unless ``interactive=True`` is requested (the CLIs expose
this as ``--device ask``).
"""

from __future__ import annotations

import os

import torch


def _mps_available() -> bool:
    return bool(getattr(torch.backends, "mps", None) and torch.backends.mps.is_available())


def auto_device() -> str:
    if torch.cuda.is_available():
        return "cuda"
    if _mps_available():
        return "mps"
    return "cpu"


def select_device(default: str | None = None, interactive: bool = False) -> str:
    """Select a computation device.

    If a default device is supplied via the ``default`` argument or the
    ``DEVICE`` environment variable, that value is returned immediately.
    Otherwise the user is prompted when ``interactive`` is set, and the best
    available device is picked when it is not. When running without a TTY
    (``input`` raises :class:`EOFError`) the prompt falls back to ``'cpu'``.
    """

    default_device = default or os.environ.get("DEVICE")
    if default_device:
        return default_device
    if not interactive:
        return auto_device()

    try:
        while True:
            choice = input("Select compute environment (macOS/gpu/cpu): ").strip().lower()
            if choice == "macos":
                if _mps_available():
                    return "mps"
                print("MPS not available. Please choose another option.")
            elif choice in ("gpu", "cuda"):
                if torch.cuda.is_available():
                    return "cuda"
                print("CUDA GPU not available. Please choose another option.")
            elif choice == "cpu":
                return "cpu"
            else:
                print("Invalid option. Choose from macOS/gpu/cpu.")
    except EOFError:
        return "cpu"


def release_device_memory(device: str | None) -> None:
    """Return cached allocator blocks to the driver after a run ends."""
    if device and str(device).startswith("cuda") and torch.cuda.is_available():
        torch.cuda.empty_cache()
