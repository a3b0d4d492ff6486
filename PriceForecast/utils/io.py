"""Input/output helper utilities.

:func:`read_table` loads CSV and Excel files, picking the pandas reader from
the file extension. :func:`read_stock_data` turns such a table (columns
``date, open, high, low, close, volume``; only ``date`` and ``close`` are
required) into the :class:`~PriceForecast.preprocess.series.StockData` the
pipeline consumes.
"""

from __future__ import annotations

from typing import Any, Optional

import pandas as pd

from PriceForecast.errors import InvalidInputError
from PriceForecast.preprocess.series import CLOSE_COL, DATE_COL, StockData


def _read_table(path: str, **kwargs: Any) -> pd.DataFrame:
    """Read a CSV or Excel file into a :class:`~pandas.DataFrame`.

    Parameters
    ----------
    path : str
        Path to the input file. Supported extensions are ``.csv``,
        ``.xls`` and ``.xlsx``.
    **kwargs : Any
        Additional keyword arguments passed to the underlying pandas
        reader.

    Raises
    ------
    ValueError
        If the file extension is not one of the supported types.
    """

    lower = str(path).lower()
    if lower.endswith(".csv"):
        # ``utf-8-sig`` gracefully handles files with or without BOM.
        return pd.read_csv(path, encoding="utf-8-sig", **kwargs)
    if lower.endswith((".xls", ".xlsx")):
        return pd.read_excel(path, **kwargs)
    raise ValueError("Unsupported file type. Use .csv or .xlsx")


def read_table(path: str, **kwargs: Any) -> pd.DataFrame:
    return _read_table(path, **kwargs)


def read_stock_data(path: str, symbol: str, name: Optional[str] = None) -> StockData:
    """Load a price table and wrap it as :class:`StockData` for ``symbol``."""
    df = read_table(path)
    df.columns = [str(c).strip().lower() for c in df.columns]
    missing = [c for c in (DATE_COL, CLOSE_COL) if c not in df.columns]
    if missing:
        raise InvalidInputError(f"{path} is missing column(s): {', '.join(missing)}")
    df[DATE_COL] = pd.to_datetime(df[DATE_COL], errors="coerce")
    if df[DATE_COL].isna().any():
        raise InvalidInputError(f"{path} contains rows with an unparseable date")
    return StockData.from_frame(symbol, df, name=name or symbol)


__all__ = ["read_table", "read_stock_data"]
