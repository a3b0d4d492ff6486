"""Request bodies of the HTTP API (camelCase, as sent by the web client)."""

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

from PriceForecast.config.default import DEFAULT_MODEL, MODEL_CFG
from PriceForecast.models.base_trainer import ModelConfig
from PriceForecast.preprocess.series import StockData, TimeSeriesPoint


class TimeSeriesPointModel(BaseModel):
    model_config = ConfigDict(extra="ignore")

    date: str = Field(..., description="Trading day, YYYY-MM-DD")
    open: Optional[float] = None
    high: Optional[float] = None
    low: Optional[float] = None
    close: float
    volume: Optional[float] = 0.0


class StockDataModel(BaseModel):
    model_config = ConfigDict(extra="ignore")

    symbol: str = Field(..., min_length=1)
    name: Optional[str] = ""
    lastUpdated: Optional[str] = None
    timeSeries: List[TimeSeriesPointModel] = Field(default_factory=list)

    def to_domain(self) -> StockData:
        points = [
            TimeSeriesPoint.from_dict({k: v for k, v in p.model_dump().items() if v is not None})
            for p in self.timeSeries
        ]
        return StockData(
            symbol=self.symbol,
            time_series=points,
            name=self.name or "",
            last_updated=self.lastUpdated,
        )


class AnalyzeRequest(BaseModel):
    model_config = ConfigDict(extra="ignore", protected_namespaces=())

    stockData: Optional[StockDataModel] = None
    sequenceLength: int = Field(default=MODEL_CFG["sequence_length"], ge=1)
    epochs: int = Field(default=MODEL_CFG["epochs"], ge=1)
    batchSize: int = Field(default=MODEL_CFG["batch_size"], ge=1)
    daysToPredict: int = Field(default=MODEL_CFG["days_to_predict"], ge=1)
    modelName: str = DEFAULT_MODEL
    forceTrain: bool = False
    predictPastDays: int = Field(default=0, ge=0)
    params: Dict[str, Any] = Field(default_factory=dict)

    def to_config(self) -> ModelConfig:
        return ModelConfig(
            sequence_length=self.sequenceLength,
            epochs=self.epochs,
            batch_size=self.batchSize,
            days_to_predict=self.daysToPredict,
            model_name=self.modelName,
            params=dict(self.params),
        )


class PredictRequest(BaseModel):
    model_config = ConfigDict(extra="ignore")

    stockData: Optional[StockDataModel] = None
    daysToPredict: Optional[int] = Field(default=None, ge=1)
    predictPastDays: int = Field(default=0, ge=0)
