import argparse
import asyncio
import json
import logging
from typing import Any, Dict, Optional

from aiohttp import web

from trendcast.config import load_config, setup_logging
from trendcast.errors import ModelNotFoundError
from trendcast.forecaster.tuning import grid_from_config
from trendcast.registry import ModelRegistry, create_db_pool
from trendcast.session import ForecastSession

# Константы
DEFAULT_HOST = '0.0.0.0'
DEFAULT_PORT = 8080

# Настройка логгера
logger = logging.getLogger(__name__)


class BadRequest(Exception):
    """Некорректное тело запроса"""
    pass


class ForecastAPIService:
    """HTTP API над сессией прогнозирования и архивом моделей."""

    def __init__(self, config: Dict[str, Any], session: Optional[ForecastSession] = None,
                 registry: Optional[ModelRegistry] = None):
        """Инициализация сервиса.

        Args:
            config: Загруженная конфигурация
            session: Сессия прогнозирования (по умолчанию создается из конфига)
            registry: Архив моделей (необязателен)
        """
        self.config = config
        self.session = session or ForecastSession.from_config(config)
        self.registry = registry
        self.db_pool = None
        self.app = web.Application()
        self._setup_routes()

    def _setup_routes(self) -> None:
        """Настройка маршрутов API."""
        self.app.router.add_get('/health', self.handle_health_check)
        self.app.router.add_get('/api/v1/state', self.get_state)
        self.app.router.add_post('/api/v1/train', self.train)
        self.app.router.add_post('/api/v1/forecast', self.forecast)
        self.app.router.add_post('/api/v1/tune', self.tune)
        self.app.router.add_post('/api/v1/reset', self.reset)
        self.app.router.add_post('/api/v1/models/{name}/save', self.save_model)
        self.app.router.add_post('/api/v1/models/{name}/load', self.load_model)
        # Архив моделей
        self.app.router.add_get('/api/v1/registry', self.list_archived)
        self.app.router.add_post('/api/v1/registry', self.archive_model)
        self.app.router.add_get('/api/v1/registry/{model_id}', self.show_archived)
        self.app.router.add_delete('/api/v1/registry/{model_id}', self.delete_archived)

    async def _read_json(self, request: web.Request) -> Dict[str, Any]:
        try:
            payload = await request.json()
        except json.JSONDecodeError:
            raise BadRequest("Некорректный JSON")
        if not isinstance(payload, dict):
            raise BadRequest("Тело запроса должно быть JSON объектом")
        return payload

    def _busy(self) -> bool:
        state = self.session.state
        return state.is_training or state.is_forecasting

    def _busy_response(self) -> web.Response:
        return self._error("Session is busy: training or forecasting in progress", 409)

    def _state_response(self) -> web.Response:
        return web.json_response(self.session.state.to_dict())

    @staticmethod
    def _error(message: str, status: int) -> web.Response:
        return web.json_response({"error": message}, status=status)

    @staticmethod
    def _model_id(request: web.Request) -> int:
        try:
            return int(request.match_info['model_id'])
        except ValueError:
            raise BadRequest("ID модели должен быть целым числом")

    async def handle_health_check(self, request: web.Request) -> web.Response:
        """Проверка работоспособности сервиса"""
        return web.json_response({"status": "ok"})

    async def get_state(self, request: web.Request) -> web.Response:
        return self._state_response()

    async def train(self, request: web.Request) -> web.Response:
        """Обучение модели на переданном ряду.

        Тело: {"series": [{"year": ..., "value": ...}], "config": {...}}
        """
        try:
            payload = await self._read_json(request)
            series = payload.get('series')
            if not isinstance(series, list):
                raise BadRequest("Поле series должно быть списком точек")
            overrides = payload.get('config') or {}
            if not isinstance(overrides, dict):
                raise BadRequest("Поле config должно быть объектом")
        except BadRequest as e:
            return self._error(str(e), 400)

        if self._busy():
            return self._busy_response()

        await self.session.train_model(series, overrides)
        return self._state_response()

    async def forecast(self, request: web.Request) -> web.Response:
        """Тело: {"horizon": 10, "start_year": 2021}"""
        try:
            payload = await self._read_json(request)
            horizon = payload.get('horizon')
            start_year = payload.get('start_year')
            if not all(isinstance(v, int) and not isinstance(v, bool) for v in (horizon, start_year)):
                raise BadRequest("horizon и start_year должны быть целыми числами")
        except BadRequest as e:
            return self._error(str(e), 400)

        if self._busy():
            return self._busy_response()

        await self.session.generate_forecast(horizon, start_year)
        return self._state_response()

    async def tune(self, request: web.Request) -> web.Response:
        """Подбор гиперпараметров.

        Тело: {"series": [...], "grid": [{...}]} или {"series": [...], "optuna": {...}};
        без grid и optuna используется сетка из конфига.
        """
        try:
            payload = await self._read_json(request)
            series = payload.get('series')
            if not isinstance(series, list):
                raise BadRequest("Поле series должно быть списком точек")
            grid = payload.get('grid')
            optuna_config = payload.get('optuna')
            if grid is None and optuna_config is None:
                grid = grid_from_config(self.config)
            if grid is not None and not isinstance(grid, list):
                raise BadRequest("Поле grid должно быть списком конфигураций")
        except BadRequest as e:
            return self._error(str(e), 400)

        if self._busy():
            return self._busy_response()

        await self.session.tune_model(series, grid, optuna_config)
        return self._state_response()

    async def reset(self, request: web.Request) -> web.Response:
        self.session.reset()
        return self._state_response()

    async def save_model(self, request: web.Request) -> web.Response:
        if self._busy():
            return self._busy_response()
        await self.session.save_model(request.match_info['name'])
        return self._state_response()

    async def load_model(self, request: web.Request) -> web.Response:
        if self._busy():
            return self._busy_response()
        await self.session.load_model(request.match_info['name'])
        return self._state_response()

    async def archive_model(self, request: web.Request) -> web.Response:
        """Архивация конфигурации и метрик обученной модели.

        Тело: {"name": ..., "data_type": ..., "selected_item": ...}
        """
        if self.registry is None:
            return self._error("Архив моделей не настроен", 503)

        try:
            payload = await self._read_json(request)
            if self.session.model is None or self.session.state.metrics is None:
                raise BadRequest("No trained model to save")
            model_id = await self.registry.archive(
                payload.get('name'),
                payload.get('data_type'),
                payload.get('selected_item'),
                self.session.model.get_config(),
                self.session.state.metrics,
            )
        except (BadRequest, ValueError) as e:
            return self._error(str(e), 400)
        except Exception as e:
            logger.error(f"Ошибка архивации модели: {str(e)}", exc_info=True)
            return self._error("Внутренняя ошибка сервера", 500)

        return web.json_response({"id": model_id}, status=201)

    async def list_archived(self, request: web.Request) -> web.Response:
        if self.registry is None:
            return self._error("Архив моделей не настроен", 503)

        try:
            models = await self.registry.list_models(
                request.query.get('data_type'),
                request.query.get('selected_item'),
            )
        except Exception as e:
            logger.error(f"Ошибка при получении списка моделей: {str(e)}", exc_info=True)
            return self._error("Внутренняя ошибка сервера", 500)

        return web.json_response(models)

    async def show_archived(self, request: web.Request) -> web.Response:
        if self.registry is None:
            return self._error("Архив моделей не настроен", 503)

        try:
            model = await self.registry.get(self._model_id(request))
        except BadRequest as e:
            return self._error(str(e), 400)
        except ModelNotFoundError as e:
            return self._error(str(e), 404)
        except Exception as e:
            logger.error(f"Ошибка при получении информации о модели: {str(e)}", exc_info=True)
            return self._error("Внутренняя ошибка сервера", 500)

        return web.json_response(model)

    async def delete_archived(self, request: web.Request) -> web.Response:
        if self.registry is None:
            return self._error("Архив моделей не настроен", 503)

        try:
            deleted = await self.registry.delete(self._model_id(request))
        except BadRequest as e:
            return self._error(str(e), 400)
        except Exception as e:
            logger.error(f"Ошибка при удалении модели: {str(e)}", exc_info=True)
            return self._error("Внутренняя ошибка сервера", 500)

        if not deleted:
            return self._error("Модель не найдена", 404)
        return web.json_response({"deleted": True})

    async def start(self, host: str = DEFAULT_HOST, port: int = DEFAULT_PORT) -> None:
        """Запуск сервиса."""
        runner = web.AppRunner(self.app)
        try:
            logger.info("Запуск сервиса прогнозирования")

            conn_string = self.config['system'].get('db_conn_string')
            if conn_string and self.registry is None:
                self.db_pool = await create_db_pool(conn_string)
                self.registry = ModelRegistry(self.db_pool)
                await self.registry.init_schema()

            await runner.setup()
            site = web.TCPSite(runner, host, port)
            await site.start()
            logger.info(f"API доступно на http://{host}:{port}")

            while True:
                await asyncio.sleep(3600)
        finally:
            await runner.cleanup()
            if self.db_pool:
                await self.db_pool.close()
            logger.info("Сервис остановлен")


async def main():
    """Основная функция для запуска сервиса."""
    parser = argparse.ArgumentParser(description="API сервис прогнозирования временных рядов")
    parser.add_argument('--config', type=str, default=None, help="Путь к конфигурационному файлу")
    parser.add_argument('--host', type=str, default=DEFAULT_HOST, help="Хост для запуска API")
    parser.add_argument('--port', type=int, default=DEFAULT_PORT, help="Порт для запуска API")
    args = parser.parse_args()

    config = load_config(args.config)
    setup_logging(config)

    service = ForecastAPIService(config)
    try:
        await service.start(args.host, args.port)
    except Exception as e:
        logger.critical(f"Критическая ошибка при работе сервиса: {str(e)}", exc_info=True)
        raise


def run() -> None:
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        logger.info("Получен сигнал прерывания, остановка сервиса")


if __name__ == "__main__":
    run()
