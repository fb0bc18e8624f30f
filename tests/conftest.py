from datetime import datetime, timezone

import pytest

from trendcast.forecaster.model import TrainingConfig
from trendcast.forecaster.storage import MemoryModelStore
from trendcast.trend_metrics import TimeSeriesPoint


class FakeConnection:
    """Минимальная имитация asyncpg соединения поверх списка записей."""

    def __init__(self):
        self.rows = []
        self.executed = []

    async def execute(self, query, *args):
        self.executed.append(query)

    async def fetchval(self, query, *args):
        if query.strip().startswith('INSERT'):
            name, data_type, selected_item, config, metrics = args
            row = {
                'id': len(self.rows) + 1,
                'name': name,
                'data_type': data_type,
                'selected_item': selected_item,
                'config': config,
                'metrics': metrics,
                'created_at': datetime(2024, 1, len(self.rows) + 1, tzinfo=timezone.utc),
            }
            self.rows.append(row)
            return row['id']
        if query.strip().startswith('DELETE'):
            for row in self.rows:
                if row['id'] == args[0]:
                    self.rows.remove(row)
                    return row['id']
            return None
        raise AssertionError(f"unexpected query: {query}")

    async def fetchrow(self, query, *args):
        return next((dict(row) for row in self.rows if row['id'] == args[0]), None)

    async def fetch(self, query, *args):
        data_type, selected_item = args
        rows = [
            dict(row) for row in self.rows
            if (data_type is None or row['data_type'] == data_type)
            and (selected_item is None or row['selected_item'] == selected_item)
        ]
        return sorted(rows, key=lambda row: row['created_at'], reverse=True)


class FakeAcquire:
    def __init__(self, conn):
        self.conn = conn

    async def __aenter__(self):
        return self.conn

    async def __aexit__(self, *exc):
        return False


class FakePool:
    def __init__(self):
        self.conn = FakeConnection()

    def acquire(self):
        return FakeAcquire(self.conn)


@pytest.fixture
def fake_pool():
    return FakePool()


@pytest.fixture
def linear_series():
    return [TimeSeriesPoint(2010 + i, 100.0 + 10 * i) for i in range(7)]


@pytest.fixture
def long_series():
    return [{'year': 2000 + i, 'value': 1000 + 35 * i + (i % 3) * 12} for i in range(20)]


@pytest.fixture
def fast_config():
    return TrainingConfig(
        window_size=3,
        epochs=5,
        batch_size=8,
        hidden_layers=(8, 4),
        seed=42,
    )


@pytest.fixture
def store():
    return MemoryModelStore()
