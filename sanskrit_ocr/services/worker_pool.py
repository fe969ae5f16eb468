"""
Ограниченный пул слотов для обработки страниц.

Один экземпляр на сервис: слоты общие для всех задач, это глобальный
контроль нагрузки на запуск подпроцессов. Страница занимает слот целиком
(растеризация + OCR подряд).

Счётчики in_flight/peak нужны для мониторинга (/health) и тестов.
"""

import asyncio
from contextlib import asynccontextmanager
from typing import AsyncIterator


class WorkerPool:
    """
    Пул из size слотов.

    Args:
        size: максимум страниц в работе одновременно (C)
    """

    def __init__(self, size: int):
        if size < 1:
            raise ValueError(f"Размер пула должен быть >= 1, получено {size}")
        self.size = size
        self._semaphore = asyncio.Semaphore(size)
        self.in_flight = 0
        self.peak = 0
        self.total_acquired = 0

    @asynccontextmanager
    async def slot(self) -> AsyncIterator[None]:
        """Занимает слот на время блока, ожидая освобождения при необходимости."""
        async with self._semaphore:
            self.in_flight += 1
            self.total_acquired += 1
            self.peak = max(self.peak, self.in_flight)
            try:
                yield
            finally:
                self.in_flight -= 1

    def stats(self) -> dict:
        return {
            "size": self.size,
            "in_flight": self.in_flight,
            "peak": self.peak,
            "total_acquired": self.total_acquired,
        }
