"""Подбор гиперпараметров: перебор по сетке из конфига и поиск с помощью Optuna."""

import logging
from typing import Any, Dict, Iterable, List, Optional

import optuna
from optuna.samplers import TPESampler
from tensorflow.keras.backend import clear_session

from trendcast.errors import TrainingFailureError
from trendcast.forecaster.model import (
    ModelMetrics,
    TimeSeriesMLP,
    TrainingConfig,
    TuningResult,
)
from trendcast.forecaster.storage import MemoryModelStore
from trendcast.trend_metrics import as_points

DEFAULT_N_TRIALS = 20

logger = logging.getLogger(__name__)


def grid_from_config(config: Dict[str, Any]) -> List[Dict[str, Any]]:
    """Сетка конфигураций из раздела tuning.grid."""
    tuning = config.get('tuning') or {}
    return [dict(candidate) for candidate in tuning.get('grid') or []]


def grid_search(data: Iterable[Any], param_grid: List[Dict[str, Any]],
                base_config: Optional[TrainingConfig] = None) -> TuningResult:
    """Перебор по сетке на отдельном экземпляре модели."""
    tuner = TimeSeriesMLP(base_config, store=MemoryModelStore())
    try:
        return tuner.hyperparameter_tuning(data, param_grid)
    finally:
        tuner.dispose()
        # Освобождение графов кандидатов в бэкенде Keras
        clear_session()


def _create_optuna_study(optuna_config: Dict[str, Any]) -> optuna.Study:
    """Создание объекта Study для Optuna.

    Args:
        optuna_config: Раздел tuning.optuna конфигурации

    Returns:
        Объект Study для оптимизации гиперпараметров
    """
    study_params = {
        'direction': optuna_config.get('direction', 'minimize'),
        'sampler': TPESampler(seed=optuna_config.get('seed')),
    }
    return optuna.create_study(**study_params)


def _suggest_params(trial: optuna.Trial, optuna_config: Dict[str, Any]) -> Dict[str, Any]:
    """Генерация параметров конфигурации для Optuna.

    Диапазон задается словарем {min, max[, step, log]}, список задает
    категориальный выбор. Размеры слоев в списке кодируются строками "64,32".
    """
    ranges = optuna_config.get('ranges', {})
    params: Dict[str, Any] = {}

    for name in ('window_size', 'epochs'):
        if name in ranges:
            bounds = ranges[name]
            if isinstance(bounds, dict):
                params[name] = trial.suggest_int(name, bounds['min'], bounds['max'], step=bounds.get('step', 1))
            else:
                params[name] = trial.suggest_categorical(name, list(bounds))

    if 'learning_rate' in ranges:
        bounds = ranges['learning_rate']
        params['learning_rate'] = trial.suggest_float(
            'learning_rate',
            bounds['min'],
            bounds['max'],
            log=bounds.get('log', True)
        )

    if 'batch_size' in ranges:
        params['batch_size'] = trial.suggest_categorical('batch_size', list(ranges['batch_size']))

    if 'hidden_layers' in ranges:
        choices = [
            layers if isinstance(layers, str) else ','.join(str(units) for units in layers)
            for layers in ranges['hidden_layers']
        ]
        params['hidden_layers'] = trial.suggest_categorical('hidden_layers', choices)

    for name in ('activation', 'activation2'):
        if name in ranges:
            params[name] = trial.suggest_categorical(name, list(ranges[name]))

    # Добавляем фиксированные параметры
    params.update(optuna_config.get('fixed_parameters', {}))
    return params


def optuna_search(data: Iterable[Any], optuna_config: Optional[Dict[str, Any]] = None,
                  base_config: Optional[TrainingConfig] = None) -> TuningResult:
    """Оптимизация гиперпараметров модели с помощью Optuna по val_loss.

    Raises:
        TrainingFailureError: Если ни один trial не завершился успешно
    """
    optuna_config = optuna_config or {}
    base_config = base_config or TrainingConfig()
    points = as_points(data)
    study = _create_optuna_study(optuna_config)

    def objective(trial: optuna.Trial) -> float:
        config = base_config.replace(**_suggest_params(trial, optuna_config))
        model = TimeSeriesMLP(config, store=MemoryModelStore())
        try:
            metrics = model.train(points)
        finally:
            model.dispose()
        trial.set_user_attr('config', config.to_dict())
        trial.set_user_attr('metrics', metrics.to_dict())
        return metrics.val_loss

    n_trials = optuna_config.get('n_trials', DEFAULT_N_TRIALS)
    logger.info(f"Запуск подбора гиперпараметров с помощью Optuna: {n_trials} trials")
    try:
        study.optimize(
            objective,
            n_trials=n_trials,
            timeout=optuna_config.get('timeout'),
            catch=(Exception,)
        )
    finally:
        clear_session()

    completed = [t for t in study.trials if t.state == optuna.trial.TrialState.COMPLETE]
    if not completed:
        raise TrainingFailureError(
            "Hyperparameter tuning failed - no valid configurations found"
        )

    best = study.best_trial
    logger.info(f"Лучший trial #{best.number}: val_loss={best.value:.4f}")
    return TuningResult(
        best_config=TrainingConfig.from_dict(best.user_attrs['config']),
        best_metrics=ModelMetrics(**best.user_attrs['metrics'])
    )
