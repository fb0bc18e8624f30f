from trendcast.forecaster.model import (
    ForecastResult,
    ModelMetrics,
    TimeSeriesMLP,
    TrainingConfig,
    TuningResult,
)
from trendcast.forecaster.storage import LocalModelStore, MemoryModelStore, ModelStore

__all__ = [
    'ForecastResult',
    'LocalModelStore',
    'MemoryModelStore',
    'ModelMetrics',
    'ModelStore',
    'TimeSeriesMLP',
    'TrainingConfig',
    'TuningResult',
]
