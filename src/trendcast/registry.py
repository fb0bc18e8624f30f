"""Архив обученных моделей в PostgreSQL: конфигурация и метрики без весов."""

import json
import logging
from typing import Any, Dict, List, Optional

import asyncpg

from trendcast.errors import ModelNotFoundError
from trendcast.forecaster.model import ModelMetrics, TrainingConfig

logger = logging.getLogger(__name__)

SCHEMA_SQL = """
    CREATE TABLE IF NOT EXISTS trained_models (
        id SERIAL PRIMARY KEY,
        name TEXT NOT NULL,
        data_type TEXT NOT NULL,
        selected_item TEXT NOT NULL,
        config JSONB NOT NULL,
        metrics JSONB NOT NULL,
        created_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
    )
"""


async def create_db_pool(conn_string: str) -> asyncpg.Pool:
    """Создание пула подключений к PostgreSQL.

    Raises:
        asyncpg.PostgresError: При ошибках подключения к БД
    """
    try:
        return await asyncpg.create_pool(dsn=conn_string)
    except Exception as e:
        logger.error(f"Ошибка создания пула подключений: {str(e)}")
        raise


def _record_to_dict(record) -> Dict[str, Any]:
    item = dict(record)
    for key in ('config', 'metrics'):
        if isinstance(item.get(key), str):
            item[key] = json.loads(item[key])
    if item.get('created_at') is not None:
        item['created_at'] = item['created_at'].isoformat()
    return item


class ModelRegistry:
    """Учет обученных моделей по имени, типу данных и выбранному ряду."""

    def __init__(self, db_pool):
        self.db_pool = db_pool

    async def init_schema(self) -> None:
        async with self.db_pool.acquire() as conn:
            await conn.execute(SCHEMA_SQL)
        logger.info("Схема архива моделей инициализирована")

    async def archive(self, name: str, data_type: str, selected_item: str,
                      config: TrainingConfig, metrics: ModelMetrics) -> int:
        """Сохранение конфигурации и метрик модели.

        Returns:
            ID созданной записи

        Raises:
            ValueError: Если не заданы name, data_type или selected_item
        """
        for field_name, value in (('name', name), ('data_type', data_type),
                                  ('selected_item', selected_item)):
            if not value:
                raise ValueError(f"Не задано обязательное поле {field_name}")

        try:
            async with self.db_pool.acquire() as conn:
                model_id = await conn.fetchval("""
                    INSERT INTO trained_models (
                        name, data_type, selected_item, config, metrics, created_at
                    ) VALUES ($1, $2, $3, $4::jsonb, $5::jsonb, NOW())
                    RETURNING id
                """, name, data_type, selected_item,
                    json.dumps(config.to_dict()), json.dumps(metrics.to_dict()))
        except Exception as e:
            logger.error(f"Ошибка архивации модели {name}: {str(e)}")
            raise

        logger.info(f"Модель {name} заархивирована с ID {model_id}")
        return model_id

    async def get(self, model_id: int) -> Dict[str, Any]:
        """Получение записи модели.

        Raises:
            ModelNotFoundError: Если запись не найдена
        """
        async with self.db_pool.acquire() as conn:
            record = await conn.fetchrow("""
                SELECT id, name, data_type, selected_item, config, metrics, created_at
                FROM trained_models
                WHERE id = $1
            """, model_id)

        if not record:
            raise ModelNotFoundError(f"Model {model_id} not found")
        return _record_to_dict(record)

    async def list_models(self, data_type: Optional[str] = None,
                          selected_item: Optional[str] = None) -> List[Dict[str, Any]]:
        """Список моделей, новые первыми; фильтры необязательны."""
        async with self.db_pool.acquire() as conn:
            records = await conn.fetch("""
                SELECT id, name, data_type, selected_item, config, metrics, created_at
                FROM trained_models
                WHERE ($1::text IS NULL OR data_type = $1)
                  AND ($2::text IS NULL OR selected_item = $2)
                ORDER BY created_at DESC
            """, data_type, selected_item)
        return [_record_to_dict(record) for record in records]

    async def delete(self, model_id: int) -> bool:
        async with self.db_pool.acquire() as conn:
            deleted = await conn.fetchval("""
                DELETE FROM trained_models WHERE id = $1 RETURNING id
            """, model_id)

        if deleted is None:
            logger.warning(f"Модель ID {model_id} не найдена для удаления")
            return False
        logger.info(f"Модель ID {model_id} удалена из архива")
        return True
