"""
Сборка результатов страниц.

Воркеры сдают результаты в произвольном порядке, итог всегда упорядочен
по номеру страницы. Сборка — чистая свёртка над завершёнными результатами.

Политика статуса задачи:
    - Succeeded        — все страницы успешны
    - PartiallyFailed  — есть и успешные, и неуспешные
    - Failed           — успешных нет (или страниц нет вообще)
"""

from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, Optional

from sanskrit_ocr.errors import InternalError
from sanskrit_ocr.schemas import JobStatus, Page, PageStatus


@dataclass(frozen=True)
class PageOutcome:
    """
    Итог обработки одной страницы, который воркер сдаёт агрегатору.

    Attributes:
        index: номер страницы (с 0)
        status: Succeeded, Failed или TimedOut
        text: распознанный текст (только Succeeded)
        error: диагностика (только Failed/TimedOut)
        width: ширина изображения
        height: высота изображения
        processing_time_ms: время обработки страницы
        image_path: изображение страницы внутри workspace
    """

    index: int
    status: PageStatus
    text: Optional[str] = None
    error: Optional[str] = None
    width: int = 0
    height: int = 0
    processing_time_ms: int = 0
    image_path: Optional[Path] = None

    def to_page(self) -> Page:
        return Page(
            index=self.index,
            status=self.status,
            image_path=self.image_path,
            text=self.text,
            error=self.error,
            width=self.width,
            height=self.height,
            processing_time_ms=self.processing_time_ms,
        )


def collect_pages(outcomes: Iterable[PageOutcome], page_count: int) -> list[Page]:
    """
    Упорядочивает результаты по номеру страницы.

    Args:
        outcomes: результаты в любом порядке
        page_count: ожидаемое число страниц

    Returns:
        list[Page]: страницы 0..page_count-1

    Raises:
        InternalError: дубликат, номер вне диапазона или пропуск
    """
    by_index: dict[int, PageOutcome] = {}
    for outcome in outcomes:
        _check_index(outcome.index, page_count)
        if outcome.index in by_index:
            raise InternalError(f"Повторный результат для страницы {outcome.index}")
        by_index[outcome.index] = outcome

    missing = [i for i in range(page_count) if i not in by_index]
    if missing:
        raise InternalError(f"Нет результатов для страниц: {missing}")

    return [by_index[i].to_page() for i in range(page_count)]


def derive_job_status(pages: list[Page]) -> JobStatus:
    """Итоговый статус задачи по статусам страниц."""
    succeeded = sum(1 for p in pages if p.status == PageStatus.SUCCEEDED)
    if pages and succeeded == len(pages):
        return JobStatus.SUCCEEDED
    if succeeded > 0:
        return JobStatus.PARTIALLY_FAILED
    return JobStatus.FAILED


def combine_text(pages: list[Page]) -> str:
    """Текст всех успешных страниц с разделителями, нумерация с 1."""
    parts = []
    for page in pages:
        if page.status != PageStatus.SUCCEEDED or not page.text:
            continue
        if not page.text.strip():
            continue
        parts.append(f"━━━ Page {page.index + 1} ━━━\n{page.text.strip()}")
    return "\n\n".join(parts)


class ResultAggregator:
    """
    Приёмник результатов страниц одной задачи.

    Args:
        page_count: число страниц задачи
    """

    def __init__(self, page_count: int):
        self.page_count = page_count
        self._outcomes: dict[int, PageOutcome] = {}

    @property
    def received(self) -> int:
        return len(self._outcomes)

    @property
    def complete(self) -> bool:
        return len(self._outcomes) == self.page_count

    def has(self, index: int) -> bool:
        return index in self._outcomes

    def add(self, outcome: PageOutcome) -> None:
        """
        Принимает результат страницы.

        Raises:
            InternalError: номер вне диапазона или страница уже сдана
        """
        _check_index(outcome.index, self.page_count)
        if outcome.index in self._outcomes:
            raise InternalError(f"Повторный результат для страницы {outcome.index}")
        self._outcomes[outcome.index] = outcome

    def collect(self, fill_missing: Optional[str] = None) -> list[Page]:
        """
        Возвращает страницы по порядку.

        Args:
            fill_missing: если задано, несданные страницы (задача отменена)
                получают статус Failed с этим сообщением

        Returns:
            list[Page]: страницы 0..page_count-1
        """
        outcomes = list(self._outcomes.values())
        if fill_missing is not None:
            outcomes.extend(
                PageOutcome(index=i, status=PageStatus.FAILED, error=fill_missing)
                for i in range(self.page_count)
                if i not in self._outcomes
            )
        return collect_pages(outcomes, self.page_count)


def _check_index(index: int, page_count: int) -> None:
    if not 0 <= index < page_count:
        raise InternalError(
            f"Номер страницы {index} вне диапазона 0..{page_count - 1}"
        )
