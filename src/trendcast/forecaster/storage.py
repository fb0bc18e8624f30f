"""Хранилища сериализованных моделей (ключ-значение по имени модели)."""

import logging
import os
import re
from typing import Dict, List, Protocol

logger = logging.getLogger(__name__)

MODEL_FILE_SUFFIX = '.pkl'
_NAME_PATTERN = re.compile(r'^[A-Za-z0-9][A-Za-z0-9._-]*$')


class ModelStore(Protocol):
    """Минимальный интерфейс хранилища моделей."""

    def put(self, name: str, data: bytes) -> None:
        ...

    def get(self, name: str) -> bytes:
        ...


def validate_model_name(name: str) -> str:
    """Проверка логического имени модели.

    Raises:
        ValueError: Если имя пустое или содержит недопустимые символы
    """
    if not isinstance(name, str) or not _NAME_PATTERN.match(name):
        raise ValueError(f"Недопустимое имя модели: {name!r}")
    return name


class MemoryModelStore:
    """Хранилище в памяти процесса."""

    def __init__(self):
        self._items: Dict[str, bytes] = {}

    def put(self, name: str, data: bytes) -> None:
        self._items[validate_model_name(name)] = bytes(data)

    def get(self, name: str) -> bytes:
        try:
            return self._items[validate_model_name(name)]
        except KeyError:
            raise FileNotFoundError(f"Модель '{name}' не найдена")

    def names(self) -> List[str]:
        return sorted(self._items)


class LocalModelStore:
    """Хранилище моделей в локальном каталоге: один файл <name>.pkl на модель."""

    def __init__(self, storage_path: str = './models'):
        self.storage_path = storage_path

    def _path(self, name: str) -> str:
        return os.path.join(self.storage_path, f"{validate_model_name(name)}{MODEL_FILE_SUFFIX}")

    def put(self, name: str, data: bytes) -> None:
        path = self._path(name)
        os.makedirs(self.storage_path, exist_ok=True)

        # Запись через временный файл, чтобы не оставить обрезанную модель
        tmp_path = f"{path}.tmp"
        with open(tmp_path, 'wb') as f:
            f.write(data)
        os.replace(tmp_path, path)
        logger.info(f"Модель '{name}' сохранена в {path}")

    def get(self, name: str) -> bytes:
        path = self._path(name)
        with open(path, 'rb') as f:
            return f.read()

    def names(self) -> List[str]:
        if not os.path.isdir(self.storage_path):
            return []
        return sorted(
            filename[:-len(MODEL_FILE_SUFFIX)]
            for filename in os.listdir(self.storage_path)
            if filename.endswith(MODEL_FILE_SUFFIX)
        )
