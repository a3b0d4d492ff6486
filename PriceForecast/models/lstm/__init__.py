from PriceForecast.models.lstm.net import LSTMForecaster
from PriceForecast.models.lstm.predictor import PredictionPoint, predict
from PriceForecast.models.lstm.trainer import LSTMParams, LSTMTrainer, StackedLSTMTrainer

__all__ = [
    "LSTMForecaster",
    "PredictionPoint",
    "predict",
    "LSTMParams",
    "LSTMTrainer",
    "StackedLSTMTrainer",
]
