import json
import logging
from pathlib import Path
from typing import Optional, Tuple

import yaml

from PriceForecast.config import default as cfg_default

logger = logging.getLogger(__name__)


def _override_path(model_name: str) -> Optional[Path]:
    for suffix in (".yaml", ".yml", ".json"):
        path = Path(cfg_default.PARAMS_DIR) / f"{model_name}{suffix}"
        if path.exists():
            return path
    return None


def _read_overrides(path: Path) -> dict:
    with path.open("r", encoding="utf-8") as f:
        if path.suffix == ".json":
            data = json.load(f)
        else:
            data = yaml.safe_load(f)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValueError(f"{path} must contain a mapping of parameter overrides")
    return data


def load_model_params(model_name: str, path: Optional[str] = None) -> Tuple[dict, Optional[Path]]:
    """Return architecture parameters for ``model_name``.

    Preference order:
    1. The file given by ``path`` (YAML or JSON).
    2. ``PARAMS_DIR/<model_name>.yaml|yml|json`` when present.
    3. The defaults in ``MODEL_PARAMS``.

    Overrides are merged onto the defaults. A broken artifact file is logged
    and ignored; an explicit ``path`` that cannot be read raises.

    Returns
    -------
    params : dict
        Parameters for :class:`~PriceForecast.models.lstm.trainer.LSTMParams`.
    source : Path | None
        File the overrides came from, ``None`` when only defaults were used.
    """

    defaults = dict(cfg_default.MODEL_PARAMS.get(model_name, {}))
    if path is not None:
        src = Path(path)
        return {**defaults, **_read_overrides(src)}, src

    src = _override_path(model_name)
    if src is None:
        return defaults, None
    try:
        return {**defaults, **_read_overrides(src)}, src
    except Exception as e:  # pragma: no cover - best effort
        logger.warning("Failed to load %s params from %s: %s", model_name, src, e)
        return defaults, None
