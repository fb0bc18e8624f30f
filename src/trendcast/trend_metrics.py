"""Числовые утилиты для годовых временных рядов.

Все функции чистые: не хранят состояние и не выполняют ввод-вывод.
"""

from typing import Any, Dict, Iterable, List, NamedTuple, Sequence, Tuple

import numpy as np
import pandas as pd
from sklearn.preprocessing import MinMaxScaler

CONSTANT_SERIES_VALUE = 0.5


class TimeSeriesPoint(NamedTuple):
    year: int
    value: float


def as_points(data: Iterable[Any]) -> List[TimeSeriesPoint]:
    """Приведение входных данных к списку TimeSeriesPoint.

    Принимает TimeSeriesPoint, пары (year, value) и словари с ключами year/value.

    Raises:
        ValueError: Если точка не содержит числовых year/value
    """
    points = []
    for item in data:
        if isinstance(item, dict):
            try:
                year, value = item['year'], item['value']
            except KeyError as e:
                raise ValueError(f"Точка ряда без поля {e}: {item!r}")
        else:
            year, value = item
        if isinstance(year, bool) or isinstance(value, bool):
            raise ValueError(f"Некорректная точка ряда: {item!r}")
        value = float(value)
        if not np.isfinite(value):
            raise ValueError(f"Значение ряда должно быть конечным числом: {item!r}")
        points.append(TimeSeriesPoint(int(year), value))
    return points


def sort_by_year(points: Iterable[TimeSeriesPoint]) -> List[TimeSeriesPoint]:
    # sorted() устойчив: дубликаты годов сохраняют исходный порядок
    return sorted(points, key=lambda p: p.year)


def normalize(values: Sequence[float]) -> Tuple[np.ndarray, float, float]:
    """Min-max нормализация в диапазон [0, 1].

    Для постоянного ряда (max == min) все значения равны 0.5.

    Returns:
        Кортеж (normalized, min, max)

    Raises:
        ValueError: Если ряд пуст
    """
    data = np.asarray(values, dtype=float).reshape(-1, 1)
    if data.size == 0:
        raise ValueError("Нельзя нормализовать пустой ряд")

    scaler = MinMaxScaler()
    normalized = scaler.fit_transform(data).ravel()
    min_value = float(scaler.data_min_[0])
    max_value = float(scaler.data_max_[0])

    if max_value == min_value:
        normalized = np.full(data.shape[0], CONSTANT_SERIES_VALUE)

    return normalized, min_value, max_value


def denormalize(normalized: Sequence[float], min_value: float, max_value: float) -> np.ndarray:
    """Обратное преобразование: value = normalized * (max - min) + min."""
    return np.asarray(normalized, dtype=float) * (max_value - min_value) + min_value


def windowed_dataset(series: Sequence[float], window_size: int) -> Tuple[np.ndarray, np.ndarray]:
    """Построение оконного датасета.

    Для каждого i от window_size до len(series) - 1 вход series[i-window_size:i],
    цель series[i].

    Returns:
        Кортеж (inputs формы (n, window_size), targets формы (n,)),
        где n = max(0, len(series) - window_size)
    """
    if window_size < 1:
        raise ValueError(f"window_size должен быть >= 1, получено {window_size}")

    data = np.asarray(series, dtype=float)
    inputs, targets = [], []
    for i in range(window_size, len(data)):
        inputs.append(data[i - window_size:i])
        targets.append(data[i])

    if not inputs:
        return np.empty((0, window_size)), np.empty((0,))
    return np.array(inputs), np.array(targets)


def moving_average(points: Iterable[TimeSeriesPoint], window: int) -> List[TimeSeriesPoint]:
    """Скользящее среднее по window последовательным точкам (отсортированным по году).

    Точка результата получает год последней точки окна.
    """
    if window < 1:
        raise ValueError(f"Окно скользящего среднего должно быть >= 1, получено {window}")

    ordered = sort_by_year(points)
    if len(ordered) < window:
        return []

    values = pd.Series([p.value for p in ordered], dtype=float)
    averages = values.rolling(window).mean()

    return [
        TimeSeriesPoint(ordered[i].year, float(averages.iloc[i]))
        for i in range(window - 1, len(ordered))
    ]


def multiple_moving_averages(
    points: Iterable[TimeSeriesPoint], windows: Iterable[int]
) -> Dict[str, List[TimeSeriesPoint]]:
    points = list(points)
    return {f"MA{window}": moving_average(points, window) for window in windows}


def yoy_growth_rate(points: Iterable[TimeSeriesPoint]) -> List[TimeSeriesPoint]:
    """Годовой темп роста: (current - previous) / previous * 100.

    Переходы с нулевым предыдущим значением пропускаются.
    """
    ordered = sort_by_year(points)
    growth = []
    for previous, current in zip(ordered, ordered[1:]):
        if previous.value != 0:
            rate = (current.value - previous.value) / previous.value * 100
            growth.append(TimeSeriesPoint(current.year, rate))
    return growth


def cagr(start_value: float, end_value: float, years: float) -> float:
    """Среднегодовой темп роста (CAGR) в процентах; 0 при start <= 0 или years <= 0."""
    if start_value <= 0 or years <= 0:
        return 0.0
    return float((np.power(end_value / start_value, 1 / years) - 1) * 100)


def dataset_cagr(points: Iterable[TimeSeriesPoint]) -> float:
    """CAGR между первой и последней точками ряда по году."""
    ordered = sort_by_year(points)
    if len(ordered) < 2:
        return 0.0
    first, last = ordered[0], ordered[-1]
    return cagr(first.value, last.value, last.year - first.year)


def descriptive_statistics(points: Iterable[TimeSeriesPoint]) -> Dict[str, float]:
    """Описательные статистики ряда (стандартное отклонение по генеральной совокупности)."""
    values = np.array([p.value for p in points], dtype=float)
    if values.size == 0:
        return {'mean': 0.0, 'median': 0.0, 'std_dev': 0.0, 'min': 0.0, 'max': 0.0, 'total': 0.0}

    return {
        'mean': float(values.mean()),
        'median': float(np.median(values)),
        'std_dev': float(values.std(ddof=0)),
        'min': float(values.min()),
        'max': float(values.max()),
        'total': float(values.sum()),
    }


def points_to_dicts(points: Iterable[TimeSeriesPoint]) -> List[Dict[str, Any]]:
    return [{'year': p.year, 'value': p.value} for p in points]
