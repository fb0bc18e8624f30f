"""Исключения движка прогнозирования."""

from typing import Optional


class TrendcastError(Exception):
    """Базовое исключение trendcast"""
    pass


class ConfigError(TrendcastError):
    """Исключение для ошибок конфигурации"""
    pass


class InsufficientDataError(TrendcastError):
    """Недостаточно точек ряда для обучения."""

    def __init__(self, required: int, message: Optional[str] = None):
        self.required = required
        super().__init__(
            message or f"Not enough data to train. Need at least {required} data points."
        )


class NotTrainedError(TrendcastError):
    """Модель не обучена."""

    def __init__(self, message: str = "Model must be trained before generating forecasts"):
        super().__init__(message)


class InvalidHorizonError(TrendcastError):
    """Горизонт прогноза вне допустимого диапазона."""

    def __init__(self, horizon: int, low: int = 1, high: int = 20):
        self.horizon = horizon
        super().__init__(
            f"Forecast horizon must be between {low} and {high} years (got {horizon})"
        )


class NoNormalizationParametersError(TrendcastError):
    def __init__(self, message: str = "Normalization parameters not available"):
        super().__init__(message)


class TrainingFailureError(TrendcastError):
    """Ни одна конфигурация не обучилась при подборе гиперпараметров"""
    pass


class PersistenceError(TrendcastError):
    """Ошибка сохранения или загрузки модели."""

    def __init__(self, operation: str, name: str, cause: Exception):
        self.operation = operation
        self.name = name
        self.cause = cause
        super().__init__(f"{operation} failed for model '{name}': {cause}")


class ModelNotFoundError(TrendcastError):
    """Запись модели не найдена"""
    pass
