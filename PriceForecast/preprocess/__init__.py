from PriceForecast.preprocess.series import (
    StockData,
    TimeSeriesPoint,
    to_frame,
    closing_prices,
    DATE_COL,
    CLOSE_COL,
)
from PriceForecast.preprocess.normalizer import (
    NormalizationParams,
    fit_params,
    normalize,
    denormalize,
    UNIT,
    SYMMETRIC,
)
from PriceForecast.preprocess.windowizer import SampleWindowizer, WindowedDataset

__all__ = [
    "StockData",
    "TimeSeriesPoint",
    "to_frame",
    "closing_prices",
    "DATE_COL",
    "CLOSE_COL",
    "NormalizationParams",
    "fit_params",
    "normalize",
    "denormalize",
    "UNIT",
    "SYMMETRIC",
    "SampleWindowizer",
    "WindowedDataset",
]
