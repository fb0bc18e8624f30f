"""Прогнозирование годовых временных рядов с помощью MLP."""

__version__ = '0.1.0'
