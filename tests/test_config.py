import logging
from logging.handlers import RotatingFileHandler

import pytest
import yaml

from trendcast.config import CONFIG_ENV_VAR, forecast_settings, load_config, setup_logging
from trendcast.errors import ConfigError


def test_load_config(tmp_path):
    path = tmp_path / 'config.yaml'
    path.write_text(
        "system:\n"
        "  log_path: service.log\n"
        "forecast:\n"
        "  max_horizon: 10\n"
        "  training:\n"
        "    window_size: 3\n"
    )

    config = load_config(str(path))
    settings = forecast_settings(config)

    assert config['system']['log_path'] == 'service.log'
    assert settings['max_horizon'] == 10
    assert settings['min_points'] == 6
    assert settings['moving_average_windows'] == [3, 5, 10]
    assert settings['training'] == {'window_size': 3}


def test_load_config_from_env(tmp_path, monkeypatch):
    path = tmp_path / 'env.yaml'
    path.write_text("system: {}\n")
    monkeypatch.setenv(CONFIG_ENV_VAR, str(path))

    assert load_config() == {'system': {}}


def test_load_config_errors(tmp_path):
    with pytest.raises(FileNotFoundError):
        load_config(str(tmp_path / 'missing.yaml'))

    broken = tmp_path / 'broken.yaml'
    broken.write_text("system: [unclosed\n")
    with pytest.raises(yaml.YAMLError):
        load_config(str(broken))

    no_system = tmp_path / 'no_system.yaml'
    no_system.write_text("forecast: {}\n")
    with pytest.raises(ConfigError):
        load_config(str(no_system))


def test_setup_logging_is_idempotent(tmp_path):
    config = {'system': {'log_path': str(tmp_path / 'trendcast.log'), 'log_level': 'DEBUG'}}

    setup_logging(config)
    setup_logging(config)

    root = logging.getLogger('trendcast')
    assert root.level == logging.DEBUG
    assert len(root.handlers) == 2
    assert sum(isinstance(h, RotatingFileHandler) for h in root.handlers) == 1

    for handler in list(root.handlers):
        root.removeHandler(handler)
        handler.close()


def test_empty_sections_use_defaults(tmp_path):
    path = tmp_path / 'empty_sections.yaml'
    path.write_text("system: {}\nforecast:\ntuning:\n")

    config = load_config(str(path))

    assert forecast_settings(config)['training'] == {}
    assert forecast_settings(config)['max_horizon'] == 20


def test_tuning_section_must_be_mapping(tmp_path):
    path = tmp_path / 'bad_tuning.yaml'
    path.write_text("system: {}\ntuning: [1, 2]\n")

    with pytest.raises(ConfigError):
        load_config(str(path))
