import pytest

from trendcast.errors import TrainingFailureError
from trendcast.forecaster.model import TimeSeriesMLP, TrainingConfig
from trendcast.forecaster import tuning
from trendcast.forecaster.tuning import grid_from_config, grid_search, optuna_search


def test_grid_search_skips_failing_candidates(linear_series, fast_config, store):
    tuner = TimeSeriesMLP(fast_config, store=store)
    grid = [
        {'window_size': 10},
        {'window_size': 2, 'hidden_layers': [4]},
    ]

    result = tuner.hyperparameter_tuning(linear_series, grid)

    assert result.best_config.window_size == 2
    assert result.best_config.hidden_layers == (4,)
    # остальные параметры берутся из базовой конфигурации
    assert result.best_config.epochs == fast_config.epochs
    assert result.best_metrics.val_loss >= 0


def test_grid_search_picks_lowest_val_loss(linear_series, fast_config, monkeypatch):
    losses = {2: 0.5, 3: 0.1, 4: 0.3}
    original_train = TimeSeriesMLP.train

    def fake_train(self, data):
        metrics = original_train(self, data)
        metrics.val_loss = losses[self.config.window_size]
        return metrics

    monkeypatch.setattr(TimeSeriesMLP, 'train', fake_train)

    result = grid_search(linear_series, [{'window_size': w} for w in (2, 3, 4)], fast_config)

    assert result.best_config.window_size == 3
    assert result.best_metrics.val_loss == 0.1


def test_grid_search_fails_when_every_candidate_fails(linear_series, fast_config):
    with pytest.raises(TrainingFailureError):
        grid_search(linear_series, [{'window_size': 7}, {'window_size': 9}], fast_config)


def test_grid_search_disposes_candidates(linear_series, fast_config, monkeypatch):
    disposed = []
    original_dispose = TimeSeriesMLP.dispose

    def tracking_dispose(self):
        disposed.append(self.config.window_size)
        original_dispose(self)

    monkeypatch.setattr(TimeSeriesMLP, 'dispose', tracking_dispose)

    grid_search(linear_series, [{'window_size': 2}, {'window_size': 3}], fast_config)

    assert 2 in disposed
    assert disposed.count(3) >= 1


def test_grid_from_config():
    config = {'tuning': {'grid': [{'window_size': 3}, {'epochs': 10}]}}

    assert grid_from_config(config) == [{'window_size': 3}, {'epochs': 10}]
    assert grid_from_config({}) == []


def test_optuna_search(long_series):
    optuna_config = {
        'n_trials': 3,
        'seed': 1,
        'ranges': {
            'window_size': {'min': 2, 'max': 4},
            'hidden_layers': [[8], [8, 4]],
            'activation': ['relu', 'tanh'],
        },
        'fixed_parameters': {'epochs': 3},
    }

    result = optuna_search(long_series, optuna_config, TrainingConfig(seed=3))

    assert 2 <= result.best_config.window_size <= 4
    assert result.best_config.hidden_layers in [(8,), (8, 4)]
    assert result.best_config.epochs == 3


def test_optuna_search_all_trials_fail(linear_series):
    optuna_config = {
        'n_trials': 2,
        'ranges': {'window_size': {'min': 8, 'max': 9}},
        'fixed_parameters': {'epochs': 1},
    }

    with pytest.raises(TrainingFailureError):
        optuna_search(linear_series, optuna_config)


def test_optuna_search_continues_after_runtime_error(long_series, monkeypatch):
    calls = []
    original_train = TimeSeriesMLP.train

    def flaky_train(self, data):
        calls.append(self.config.window_size)
        if len(calls) == 1:
            raise RuntimeError("backend failure")
        return original_train(self, data)

    monkeypatch.setattr(TimeSeriesMLP, 'train', flaky_train)
    optuna_config = {
        'n_trials': 3,
        'seed': 2,
        'ranges': {'window_size': {'min': 2, 'max': 3}},
        'fixed_parameters': {'epochs': 2, 'hidden_layers': [4]},
    }

    result = optuna_search(long_series, optuna_config)

    assert len(calls) == 3
    assert result.best_config.window_size in (2, 3)


def test_searches_clear_backend_session(linear_series, long_series, fast_config, monkeypatch):
    cleared = []
    monkeypatch.setattr(tuning, 'clear_session', lambda: cleared.append(True))

    grid_search(linear_series, [{'window_size': 2}], fast_config)
    assert len(cleared) == 1

    optuna_search(long_series, {'n_trials': 1, 'fixed_parameters': {'epochs': 2}}, fast_config)
    assert len(cleared) == 2


def test_grid_from_config_empty_section():
    assert grid_from_config({'tuning': None}) == []
