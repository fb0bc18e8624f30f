"""Загрузка конфигурации и настройка логирования."""

import logging
import os
from logging.handlers import RotatingFileHandler
from typing import Any, Dict, Optional

import yaml

from trendcast.errors import ConfigError

# Константы
DEFAULT_CONFIG_PATH = 'config.yaml'
CONFIG_ENV_VAR = 'TRENDCAST_CONFIG'
DEFAULT_LOG_PATH = 'trendcast.log'
MAX_LOG_SIZE = 5 * 1024 * 1024  # 5 MB
LOG_BACKUP_COUNT = 3
LOG_FORMAT = '%(asctime)s - %(levelname)s - %(message)s'
LOG_DATE_FORMAT = '%Y-%m-%d %H:%M:%S'

DEFAULT_MIN_POINTS = 6
DEFAULT_MAX_HORIZON = 20
DEFAULT_MOVING_AVERAGE_WINDOWS = [3, 5, 10]

# Настройка логгера
logger = logging.getLogger(__name__)


def resolve_config_path(config_path: Optional[str] = None) -> str:
    """Путь к конфигу: аргумент, затем переменная окружения, затем значение по умолчанию."""
    return config_path or os.getenv(CONFIG_ENV_VAR, DEFAULT_CONFIG_PATH)


def load_config(config_path: Optional[str] = None) -> Dict[str, Any]:
    """Загрузка конфигурационного файла.

    Args:
        config_path: Путь к YAML конфигурационному файлу

    Returns:
        Загруженная конфигурация

    Raises:
        FileNotFoundError: Если файл конфигурации не найден
        yaml.YAMLError: Если файл содержит невалидный YAML
        ConfigError: Если отсутствуют обязательные разделы
    """
    path = resolve_config_path(config_path)
    try:
        with open(path, 'r') as f:
            config = yaml.safe_load(f) or {}
    except FileNotFoundError:
        logger.error(f"Файл конфигурации не найден: {path}")
        raise
    except yaml.YAMLError as e:
        logger.error(f"Ошибка парсинга YAML: {str(e)}")
        raise

    validate_config(config)
    return config


def validate_config(config: Dict[str, Any]) -> None:
    """Валидация обязательных параметров конфигурации.

    Raises:
        ConfigError: Если отсутствуют обязательные параметры
    """
    if not isinstance(config, dict):
        raise ConfigError("Конфигурация должна быть словарем")

    if 'system' not in config:
        raise ConfigError("Отсутствует обязательный раздел конфига: system")

    forecast = config.get('forecast') or {}
    if not isinstance(forecast, dict):
        raise ConfigError("Раздел forecast должен быть словарем")

    training = forecast.get('training') or {}
    if not isinstance(training, dict):
        raise ConfigError("Раздел forecast.training должен быть словарем")

    tuning = config.get('tuning') or {}
    if not isinstance(tuning, dict):
        raise ConfigError("Раздел tuning должен быть словарем")

    grid = tuning.get('grid') or []
    if not isinstance(grid, list):
        raise ConfigError("tuning.grid должен быть списком конфигураций")


def forecast_settings(config: Dict[str, Any]) -> Dict[str, Any]:
    """Параметры прогнозирования с подставленными значениями по умолчанию."""
    forecast = config.get('forecast') or {}
    return {
        'min_points': forecast.get('min_points', DEFAULT_MIN_POINTS),
        'max_horizon': forecast.get('max_horizon', DEFAULT_MAX_HORIZON),
        'moving_average_windows': forecast.get(
            'moving_average_windows', DEFAULT_MOVING_AVERAGE_WINDOWS
        ),
        'training': forecast.get('training') or {},
    }


def setup_logging(config: Optional[Dict[str, Any]] = None) -> None:
    """Настройка системы логирования пакета."""
    system = (config or {}).get('system', {})
    root = logging.getLogger('trendcast')
    root.setLevel(getattr(logging, str(system.get('log_level', 'INFO')).upper(), logging.INFO))

    formatter = logging.Formatter(LOG_FORMAT, datefmt=LOG_DATE_FORMAT)

    # Повторная настройка не дублирует обработчики
    for handler in list(root.handlers):
        root.removeHandler(handler)
        handler.close()

    # Файловый обработчик с ротацией
    log_path = system.get('log_path', DEFAULT_LOG_PATH)
    if log_path:
        try:
            file_handler = RotatingFileHandler(
                log_path,
                maxBytes=MAX_LOG_SIZE,
                backupCount=LOG_BACKUP_COUNT
            )
            file_handler.setFormatter(formatter)
            root.addHandler(file_handler)
        except OSError as e:
            logger.warning(f"Не удалось открыть файл логов {log_path}: {str(e)}")

    # Консольный обработчик
    console_handler = logging.StreamHandler()
    console_handler.setFormatter(formatter)
    root.addHandler(console_handler)
