"""Сессия прогнозирования: обучение, прогноз, сохранение/загрузка и сброс модели.

Ошибки операций не пробрасываются вызывающему коду, а записываются
в state.error. Вызовы одной сессии должны выполняться последовательно.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Sequence

from trendcast.config import (
    DEFAULT_MAX_HORIZON,
    DEFAULT_MIN_POINTS,
    DEFAULT_MOVING_AVERAGE_WINDOWS,
    forecast_settings,
)
from trendcast.errors import InsufficientDataError, InvalidHorizonError, NotTrainedError
from trendcast.forecaster.model import (
    DEFAULT_MODEL_STORAGE_PATH,
    ForecastResult,
    ModelMetrics,
    TimeSeriesMLP,
    TrainingConfig,
    TuningResult,
)
from trendcast.forecaster.storage import LocalModelStore, ModelStore
from trendcast.forecaster.tuning import grid_search, optuna_search
from trendcast.trend_metrics import (
    TimeSeriesPoint,
    as_points,
    dataset_cagr,
    descriptive_statistics,
    multiple_moving_averages,
    points_to_dicts,
    yoy_growth_rate,
)

logger = logging.getLogger(__name__)


@dataclass
class ForecastState:
    is_training: bool = False
    is_trained: bool = False
    is_forecasting: bool = False
    error: Optional[str] = None
    metrics: Optional[ModelMetrics] = None
    forecasts: List[ForecastResult] = field(default_factory=list)
    moving_averages: Dict[str, List[TimeSeriesPoint]] = field(default_factory=dict)
    growth_rates: List[TimeSeriesPoint] = field(default_factory=list)
    cagr: float = 0.0
    statistics: Dict[str, float] = field(default_factory=dict)
    tuning: Optional[TuningResult] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            'is_training': self.is_training,
            'is_trained': self.is_trained,
            'is_forecasting': self.is_forecasting,
            'error': self.error,
            'metrics': self.metrics.to_dict() if self.metrics else None,
            'forecasts': [f.to_dict() for f in self.forecasts],
            'moving_averages': {
                label: points_to_dicts(points) for label, points in self.moving_averages.items()
            },
            'growth_rates': points_to_dicts(self.growth_rates),
            'cagr': self.cagr,
            'statistics': dict(self.statistics),
            'tuning': self.tuning.to_dict() if self.tuning else None,
        }


class ForecastSession:
    """Сессия, владеющая одним экземпляром TimeSeriesMLP."""

    def __init__(self, store: Optional[ModelStore] = None,
                 default_config: Optional[TrainingConfig] = None,
                 min_points: int = DEFAULT_MIN_POINTS,
                 max_horizon: int = DEFAULT_MAX_HORIZON,
                 moving_average_windows: Sequence[int] = tuple(DEFAULT_MOVING_AVERAGE_WINDOWS)):
        self.store = store if store is not None else LocalModelStore(DEFAULT_MODEL_STORAGE_PATH)
        self.default_config = default_config or TrainingConfig()
        self.min_points = min_points
        self.max_horizon = max_horizon
        self.moving_average_windows = list(moving_average_windows)
        self.model: Optional[TimeSeriesMLP] = None
        self.state = ForecastState()
        # Увеличивается при reset(); результаты более ранних вызовов отбрасываются
        self._generation = 0

    @classmethod
    def from_config(cls, config: Dict[str, Any],
                    store: Optional[ModelStore] = None) -> 'ForecastSession':
        """Создание сессии по загруженной конфигурации."""
        settings = forecast_settings(config)
        if store is None:
            store = LocalModelStore(
                config.get('system', {}).get('model_storage_path', DEFAULT_MODEL_STORAGE_PATH)
            )
        return cls(
            store=store,
            default_config=TrainingConfig.from_dict(settings['training']),
            min_points=settings['min_points'],
            max_horizon=settings['max_horizon'],
            moving_average_windows=settings['moving_average_windows'],
        )

    def _check_series(self, series: Iterable[Any]) -> Optional[List[TimeSeriesPoint]]:
        try:
            points = as_points(series)
        except (TypeError, ValueError) as e:
            self.state.error = f"Invalid time series: {str(e)}"
            return None

        if len(points) < self.min_points:
            self.state.error = str(InsufficientDataError(
                self.min_points,
                f"Need at least {self.min_points} data points to train the model"
            ))
            return None
        return points

    async def train_model(self, series: Iterable[Any],
                          config_overrides: Optional[Dict[str, Any]] = None) -> None:
        """Обучение модели и расчет описательных метрик тренда.

        Переопределения конфигурации применяются при создании модели;
        уже созданная модель дообучается со своей конфигурацией.
        """
        points = self._check_series(series)
        if points is None:
            return

        generation = self._generation
        self.state.is_training = True
        self.state.error = None
        self.state.forecasts = []

        try:
            if self.model is None:
                config = self.default_config.replace(**(config_overrides or {}))
                self.model = TimeSeriesMLP(config, store=self.store)
            elif config_overrides:
                logger.warning("Модель уже создана, переопределения конфигурации игнорируются до reset()")
            model = self.model

            growth_rates = yoy_growth_rate(points)
            cagr = dataset_cagr(points)
            moving_averages = multiple_moving_averages(points, self.moving_average_windows)
            statistics = descriptive_statistics(points)

            logger.info(f"Обучение MLP модели на {len(points)} точках")
            metrics = await asyncio.to_thread(model.train, points)
        except Exception as e:
            if generation != self._generation:
                return
            logger.error(f"Ошибка обучения: {str(e)}")
            self.state.is_training = False
            self.state.is_trained = False
            self.state.error = str(e) or 'Training failed'
            return

        if generation != self._generation:
            logger.info("Результат обучения отброшен после reset()")
            return

        self.state.is_training = False
        self.state.is_trained = True
        self.state.metrics = metrics
        self.state.growth_rates = growth_rates
        self.state.cagr = cagr
        self.state.moving_averages = moving_averages
        self.state.statistics = statistics

    async def generate_forecast(self, horizon: int, start_year: int) -> None:
        """Прогноз обученной моделью на horizon лет начиная с start_year."""
        if self.model is None or not self.state.is_trained:
            self.state.error = str(NotTrainedError())
            return

        if not 1 <= horizon <= self.max_horizon:
            self.state.error = str(InvalidHorizonError(horizon, 1, self.max_horizon))
            return

        generation = self._generation
        self.state.is_forecasting = True
        self.state.error = None

        try:
            logger.info(f"Прогноз на {horizon} лет начиная с {start_year}")
            forecasts = await asyncio.to_thread(self.model.forecast, horizon, start_year)
        except Exception as e:
            if generation != self._generation:
                return
            logger.error(f"Ошибка прогноза: {str(e)}")
            self.state.is_forecasting = False
            self.state.error = str(e) or 'Forecast generation failed'
            return

        if generation != self._generation:
            return

        self.state.is_forecasting = False
        self.state.forecasts = forecasts

    async def tune_model(self, series: Iterable[Any],
                         param_grid: Optional[List[Dict[str, Any]]] = None,
                         optuna_config: Optional[Dict[str, Any]] = None) -> None:
        """Подбор гиперпараметров; сохраняются только лучшая конфигурация и ее метрики.

        При заданном optuna_config используется Optuna, иначе перебор по param_grid.
        """
        points = self._check_series(series)
        if points is None:
            return

        generation = self._generation
        self.state.is_training = True
        self.state.error = None

        try:
            if optuna_config is not None:
                result = await asyncio.to_thread(
                    optuna_search, points, optuna_config, self.default_config
                )
            else:
                result = await asyncio.to_thread(
                    grid_search, points, list(param_grid or []), self.default_config
                )
        except Exception as e:
            if generation != self._generation:
                return
            logger.error(f"Ошибка подбора гиперпараметров: {str(e)}")
            self.state.is_training = False
            self.state.error = str(e)
            return

        if generation != self._generation:
            return

        self.state.is_training = False
        self.state.tuning = result

    async def save_model(self, name: str) -> None:
        if self.model is None:
            self.state.error = 'No model to save'
            return

        try:
            await asyncio.to_thread(self.model.save, name)
            logger.info(f"Модель сохранена как: {name}")
        except Exception as e:
            logger.error(f"Ошибка сохранения: {str(e)}")
            self.state.error = str(e)

    async def load_model(self, name: str) -> None:
        """Загрузка модели; сессия считается обученной только при наличии параметров нормализации."""
        generation = self._generation
        model = self.model or TimeSeriesMLP(self.default_config, store=self.store)

        try:
            await asyncio.to_thread(model.load, name)
        except Exception as e:
            if generation != self._generation:
                return
            logger.error(f"Ошибка загрузки: {str(e)}")
            self.state.error = str(e)
            return

        if generation != self._generation:
            return

        self.model = model
        self.state.forecasts = []
        self.state.is_trained = model.is_ready()
        if self.state.is_trained:
            self.state.error = None
            logger.info(f"Модель загружена: {name}")
        else:
            self.state.error = (
                f"Model '{name}' was loaded without normalization parameters; "
                f"retrain before forecasting"
            )

    def reset(self) -> None:
        """Освобождение модели и сброс состояния.

        Выполняющиеся вызовы не прерываются: их результат будет отброшен.
        """
        self._generation += 1
        if self.model is not None:
            self.model.dispose()
            self.model = None
        self.state = ForecastState()
