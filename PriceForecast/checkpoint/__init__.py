from PriceForecast.checkpoint.store import CheckpointStore, META_FILE, MODEL_FILE

__all__ = ["CheckpointStore", "META_FILE", "MODEL_FILE"]
