"""MLP-регрессор для прогнозирования годовых временных рядов."""

import logging
import math
import pickle
import time
import dataclasses
from dataclasses import asdict, dataclass, field, fields
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

import numpy as np
from tensorflow.keras.callbacks import Callback
from tensorflow.keras.layers import Dense, Dropout, Input
from tensorflow.keras.metrics import MeanAbsoluteError, MeanSquaredError
from tensorflow.keras.models import Sequential
from tensorflow.keras.optimizers import Adam
from tensorflow.keras.utils import set_random_seed

from trendcast.errors import (
    InsufficientDataError,
    NoNormalizationParametersError,
    NotTrainedError,
    PersistenceError,
    TrainingFailureError,
)
from trendcast.forecaster.storage import LocalModelStore, ModelStore
from trendcast.trend_metrics import (
    as_points,
    denormalize,
    normalize,
    sort_by_year,
    windowed_dataset,
)

# Константы
ACTIVATIONS = ('relu', 'tanh', 'sigmoid', 'elu', 'softmax', 'linear')
DROPOUT_RATE = 0.2
PROGRESS_LOG_INTERVAL = 10  # эпох
METRICS_SAMPLE_LIMIT = 50
ARTIFACT_FORMAT_VERSION = 1
DEFAULT_MODEL_STORAGE_PATH = './models'

# Настройка логгера
logger = logging.getLogger(__name__)


def parse_hidden_layers(layers: Any) -> Tuple[int, ...]:
    """Размеры скрытых слоев из последовательности или строки вида "64, 32".

    Raises:
        ValueError: Если размер не является целым числом
    """
    if isinstance(layers, str):
        layers = [part.strip() for part in layers.split(',') if part.strip()]
    try:
        return tuple(int(units) for units in layers)
    except (TypeError, ValueError):
        raise ValueError(f"Некорректный формат скрытых слоев: {layers!r}")


@dataclass(frozen=True)
class TrainingConfig:
    """Гиперпараметры модели и обучения."""

    window_size: int = 5
    epochs: int = 100
    batch_size: int = 8
    learning_rate: float = 0.001
    hidden_layers: Tuple[int, ...] = (64, 32, 16)
    activation: str = 'relu'
    # Переопределяет активацию только для второго скрытого слоя
    activation2: Optional[str] = None
    validation_split: float = 0.2
    seed: Optional[int] = None

    def __post_init__(self):
        object.__setattr__(self, 'hidden_layers', parse_hidden_layers(self.hidden_layers))

        if self.window_size < 1:
            raise ValueError(f"window_size должен быть >= 1, получено {self.window_size}")
        if self.epochs < 1:
            raise ValueError(f"epochs должен быть >= 1, получено {self.epochs}")
        if self.batch_size < 1:
            raise ValueError(f"batch_size должен быть >= 1, получено {self.batch_size}")
        if self.learning_rate <= 0:
            raise ValueError(f"learning_rate должен быть > 0, получено {self.learning_rate}")
        if not self.hidden_layers or any(units < 1 for units in self.hidden_layers):
            raise ValueError(f"Некорректные размеры скрытых слоев: {self.hidden_layers}")
        if not 0 <= self.validation_split < 1:
            raise ValueError(f"validation_split должен быть в [0, 1), получено {self.validation_split}")
        for name in ('activation', 'activation2'):
            value = getattr(self, name)
            if value is not None and value not in ACTIVATIONS:
                raise ValueError(f"Неизвестная функция активации {name}={value!r}")
        if self.activation is None:
            raise ValueError("activation не может быть None")

    def layer_activation(self, index: int) -> str:
        """Активация скрытого слоя с индексом index."""
        if index == 1 and self.activation2:
            return self.activation2
        return self.activation

    def replace(self, **overrides) -> 'TrainingConfig':
        unknown = set(overrides) - {f.name for f in fields(self)}
        if unknown:
            raise ValueError(f"Неизвестные параметры конфигурации: {sorted(unknown)}")
        return dataclasses.replace(self, **overrides)

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data['hidden_layers'] = list(self.hidden_layers)
        return data

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> 'TrainingConfig':
        return cls().replace(**(data or {}))


@dataclass
class ModelMetrics:
    loss: float
    val_loss: float
    mae: float
    mse: float
    rmse: float
    mape: float
    r2: float
    accuracy: float
    train_time: float  # мс

    def to_dict(self) -> Dict[str, float]:
        return asdict(self)


@dataclass
class ForecastResult:
    year: int
    value: int
    type: str = field(default='forecast')

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def sample_indices(sample_size: int, total: int) -> List[int]:
    """Равномерно распределенные индексы; первый и последний входят при sample_size > 1."""
    if sample_size == 1:
        return [0]
    return [
        int(math.floor(i / (sample_size - 1) * (total - 1)))
        for i in range(sample_size)
    ]


def round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


class EpochProgressLogger(Callback):
    """Логирование прогресса обучения каждые PROGRESS_LOG_INTERVAL эпох."""

    def on_epoch_end(self, epoch, logs=None):
        if epoch % PROGRESS_LOG_INTERVAL != 0:
            return
        logs = logs or {}
        val_loss = logs.get('val_loss')
        logger.info(
            f"Эпоха {epoch}: loss = {logs.get('loss', float('nan')):.4f}, "
            f"val_loss = {'n/a' if val_loss is None else f'{val_loss:.4f}'}"
        )


class TimeSeriesMLP:
    """MLP (многослойный перцептрон) для прогнозирования временных рядов.

    Повторный вызов train() продолжает обучение уже построенной сети
    (warm start); для обучения с нуля служит train_from_scratch().
    """

    def __init__(self, config: Optional[TrainingConfig] = None,
                 store: Optional[ModelStore] = None, **overrides):
        """Инициализация модели.

        Args:
            config: Базовая конфигурация (по умолчанию TrainingConfig())
            store: Хранилище для save/load (по умолчанию локальный каталог)
            overrides: Переопределения отдельных параметров конфигурации
        """
        base = config or TrainingConfig()
        self.config = base.replace(**overrides) if overrides else base
        self.store = store if store is not None else LocalModelStore(DEFAULT_MODEL_STORAGE_PATH)
        self.model: Optional[Sequential] = None
        self.normalization_params: Optional[Dict[str, float]] = None
        self.last_known_values: List[float] = []
        self.is_trained = False

    def _build_model(self) -> Sequential:
        """Построение архитектуры MLP."""
        if self.config.seed is not None:
            set_random_seed(self.config.seed)

        model = Sequential()
        model.add(Input(shape=(self.config.window_size,)))

        for i, units in enumerate(self.config.hidden_layers):
            model.add(Dense(
                units,
                activation=self.config.layer_activation(i),
                kernel_initializer='he_normal'
            ))
            model.add(Dropout(DROPOUT_RATE))

        # Выходной слой
        model.add(Dense(1, activation='linear', kernel_initializer='he_normal'))

        model.compile(
            optimizer=Adam(learning_rate=self.config.learning_rate),
            loss='mean_squared_error',
            metrics=[MeanAbsoluteError(name='mae'), MeanSquaredError(name='mse')]
        )
        return model

    def _predict(self, inputs: np.ndarray) -> np.ndarray:
        batch = np.asarray(inputs, dtype='float32').reshape(-1, self.config.window_size)
        return np.asarray(self.model.predict_on_batch(batch)).reshape(-1)

    def train(self, data: Iterable[Any]) -> ModelMetrics:
        """Обучение модели на исторических данных.

        Args:
            data: Точки ряда (year, value) в любом порядке

        Returns:
            Метрики обучения

        Raises:
            InsufficientDataError: Если точек не больше window_size
        """
        start_time = time.perf_counter()
        window_size = self.config.window_size

        points = sort_by_year(as_points(data))
        if len(points) <= window_size:
            raise InsufficientDataError(window_size + 1)

        values = [p.value for p in points]
        normalized, min_value, max_value = normalize(values)
        inputs, targets = windowed_dataset(normalized, window_size)

        self.normalization_params = {'min': min_value, 'max': max_value}
        self.last_known_values = [float(v) for v in normalized[-window_size:]]

        if self.model is None:
            self.model = self._build_model()
        elif self.config.seed is not None:
            set_random_seed(self.config.seed)

        history = self._fit(inputs, targets)
        self.is_trained = True

        final = {key: series[-1] for key, series in history.items() if series}
        mse = float(final.get('mse', 0.0))
        mape, r2 = self._sample_accuracy_metrics(inputs, targets)

        metrics = ModelMetrics(
            loss=float(final['loss']),
            val_loss=float(final.get('val_loss', 0.0)),
            mae=float(final.get('mae', 0.0)),
            mse=mse,
            rmse=math.sqrt(mse),
            mape=mape,
            r2=r2,
            accuracy=min(100.0, max(0.0, 100.0 - mape)),
            train_time=(time.perf_counter() - start_time) * 1000,
        )
        logger.info(
            f"Обучение завершено за {metrics.train_time:.0f} мс: "
            f"loss={metrics.loss:.4f}, val_loss={metrics.val_loss:.4f}, r2={metrics.r2:.3f}"
        )
        return metrics

    def train_from_scratch(self, data: Iterable[Any]) -> ModelMetrics:
        """Обучение новой сети, предыдущие веса отбрасываются."""
        self.dispose()
        return self.train(data)

    def _fit(self, inputs: np.ndarray, targets: np.ndarray) -> Dict[str, List[float]]:
        # Валидационная выборка берется с конца, как validation_split в Keras
        split_idx = int(len(inputs) * (1 - self.config.validation_split))
        validation_data = None
        x_train, y_train = inputs, targets
        if self.config.validation_split > 0 and 0 < split_idx < len(inputs):
            x_train, y_train = inputs[:split_idx], targets[:split_idx]
            validation_data = (inputs[split_idx:], targets[split_idx:])

        history = self.model.fit(
            x_train.astype('float32'), y_train.reshape(-1, 1).astype('float32'),
            epochs=self.config.epochs,
            batch_size=self.config.batch_size,
            validation_data=validation_data,
            shuffle=True,
            verbose=0,
            callbacks=[EpochProgressLogger()]
        )
        return history.history

    def _sample_accuracy_metrics(self, inputs: np.ndarray, targets: np.ndarray) -> Tuple[float, float]:
        """MAPE и R² по выборке до METRICS_SAMPLE_LIMIT обучающих примеров.

        Нулевые фактические значения дают нулевую ошибку, но остаются
        в знаменателе среднего. Ошибка расчета дает (0, 0).
        """
        try:
            sample_size = min(len(inputs), METRICS_SAMPLE_LIMIT)
            indices = sample_indices(sample_size, len(inputs))
            predictions = self._predict(inputs[indices])
            actuals = targets[indices]

            nonzero = actuals != 0
            safe_actuals = np.where(nonzero, actuals, 1.0)
            errors = np.where(nonzero, np.abs((actuals - predictions) / safe_actuals) * 100, 0.0)
            mape = float(errors.mean())

            ss_total = float(np.sum((actuals - actuals.mean()) ** 2))
            ss_residual = float(np.sum((actuals - predictions) ** 2))
            r2 = max(0.0, 1 - ss_residual / ss_total) if ss_total != 0 else 0.0
            return mape, r2
        except Exception as e:
            logger.warning(f"Не удалось рассчитать MAPE/R²: {str(e)}")
            return 0.0, 0.0

    def forecast(self, horizon: int, start_year: int) -> List[ForecastResult]:
        """Авторегрессионный прогноз на horizon лет начиная с start_year.

        В скользящее окно возвращается сырое нормализованное предсказание,
        а не округленное выходное значение.

        Raises:
            NotTrainedError: Если модель не обучена
            NoNormalizationParametersError: Если нет параметров нормализации
        """
        if self.model is None or not self.is_trained:
            raise NotTrainedError()
        if self.normalization_params is None or len(self.last_known_values) != self.config.window_size:
            raise NoNormalizationParametersError()

        min_value = self.normalization_params['min']
        max_value = self.normalization_params['max']
        current_window = list(self.last_known_values)
        forecasts = []

        for i in range(horizon):
            predicted = float(self._predict(np.array([current_window]))[0])
            denormalized = float(denormalize([predicted], min_value, max_value)[0])

            forecasts.append(ForecastResult(
                year=start_year + i,
                value=max(0, round_half_up(denormalized))
            ))
            current_window = current_window[1:] + [predicted]

        return forecasts

    def hyperparameter_tuning(self, data: Iterable[Any],
                              param_grid: Sequence[Dict[str, Any]]) -> 'TuningResult':
        """Подбор гиперпараметров перебором по сетке.

        Каждая конфигурация сетки накладывается на текущую и обучается
        в отдельном экземпляре; выбирается минимальный val_loss.

        Raises:
            TrainingFailureError: Если ни одна конфигурация не обучилась
        """
        points = as_points(data)
        best: Optional[TuningResult] = None

        logger.info(f"Запуск подбора гиперпараметров: {len(param_grid)} конфигураций")

        for i, overrides in enumerate(param_grid, start=1):
            candidate = None
            try:
                config = self.config.replace(**overrides)
                logger.info(f"Конфигурация {i}/{len(param_grid)}: {config.to_dict()}")
                candidate = TimeSeriesMLP(config, store=self.store)
                metrics = candidate.train(points)
                logger.info(f"  loss: {metrics.loss:.4f}, val_loss: {metrics.val_loss:.4f}")

                if best is None or metrics.val_loss < best.best_metrics.val_loss:
                    best = TuningResult(best_config=config, best_metrics=metrics)
                    logger.info("  Новая лучшая конфигурация")
            except Exception as e:
                logger.error(f"  Конфигурация {i} завершилась ошибкой: {str(e)}")
            finally:
                if candidate is not None:
                    candidate.dispose()

        if best is None:
            raise TrainingFailureError(
                "Hyperparameter tuning failed - no valid configurations found"
            )

        logger.info(f"Лучшая конфигурация: {best.best_config.to_dict()}")
        return best

    def save(self, name: str) -> None:
        """Сохранение конфигурации, весов, параметров нормализации и окна прогноза.

        Raises:
            NotTrainedError: Если сеть еще не построена
            PersistenceError: При ошибке хранилища
        """
        if self.model is None:
            raise NotTrainedError("No model to save")

        artifact = {
            'format_version': ARTIFACT_FORMAT_VERSION,
            'config': self.config.to_dict(),
            'weights': self.model.get_weights(),
            'normalization_params': self.normalization_params,
            'last_known_values': list(self.last_known_values),
            'is_trained': self.is_trained,
        }
        try:
            self.store.put(name, pickle.dumps(artifact))
        except Exception as e:
            logger.error(f"Ошибка сохранения модели '{name}': {str(e)}")
            raise PersistenceError('save', name, e) from e

    def load(self, name: str) -> None:
        """Загрузка модели, сохраненной через save().

        Артефакт без параметров нормализации загружается, но forecast()
        для него завершится NoNormalizationParametersError.

        Raises:
            PersistenceError: При ошибке хранилища или поврежденном артефакте
        """
        try:
            artifact = pickle.loads(self.store.get(name))
            config = TrainingConfig.from_dict(artifact['config'])
            weights = artifact['weights']
        except Exception as e:
            logger.error(f"Ошибка загрузки модели '{name}': {str(e)}")
            raise PersistenceError('load', name, e) from e

        previous_model, previous_config = self.model, self.config
        self.config = config
        self.model = self._build_model()
        try:
            self.model.set_weights(weights)
        except Exception as e:
            self.model, self.config = previous_model, previous_config
            logger.error(f"Веса модели '{name}' не соответствуют архитектуре: {str(e)}")
            raise PersistenceError('load', name, e) from e

        self.normalization_params = artifact.get('normalization_params')
        self.last_known_values = [float(v) for v in artifact.get('last_known_values') or []]
        self.is_trained = True
        logger.info(f"Модель '{name}' загружена")

    def is_ready(self) -> bool:
        """Готова ли модель к прогнозированию."""
        return (
            self.is_trained
            and self.model is not None
            and self.normalization_params is not None
            and len(self.last_known_values) == self.config.window_size
        )

    def get_config(self) -> TrainingConfig:
        return self.config

    def dispose(self) -> None:
        """Освобождение сети и сброс состояния обучения."""
        self.model = None
        self.normalization_params = None
        self.last_known_values = []
        self.is_trained = False


@dataclass
class TuningResult:
    best_config: TrainingConfig
    best_metrics: ModelMetrics

    def to_dict(self) -> Dict[str, Any]:
        return {
            'best_config': self.best_config.to_dict(),
            'best_metrics': self.best_metrics.to_dict(),
        }
