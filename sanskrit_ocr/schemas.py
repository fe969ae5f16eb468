"""
Схемы данных Sanskrit OCR Service.

Включает:
    - Внутренние dataclass'ы пайплайна (задача, страница, вызов утилиты)
    - Статусы задачи и страницы
    - Pydantic модели для API (конфигурация, ответ, результат страницы)
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Optional

from pydantic import BaseModel, Field


# =============================================================================
# Статусы
# =============================================================================


class JobStatus(str, Enum):
    """Статус задачи. Succeeded, PartiallyFailed, Failed, Cancelled — терминальные."""

    PENDING = "Pending"
    RUNNING = "Running"
    SUCCEEDED = "Succeeded"
    PARTIALLY_FAILED = "PartiallyFailed"
    FAILED = "Failed"
    CANCELLED = "Cancelled"

    @property
    def is_terminal(self) -> bool:
        return self not in (JobStatus.PENDING, JobStatus.RUNNING)


class PageStatus(str, Enum):
    """Статус страницы."""

    PENDING = "Pending"
    RASTERIZING = "Rasterizing"
    RECOGNIZING = "Recognizing"
    SUCCEEDED = "Succeeded"
    FAILED = "Failed"
    TIMED_OUT = "TimedOut"


# =============================================================================
# Внутренние dataclass'ы пайплайна
# =============================================================================


# Сигнатуры поддерживаемых форматов: (префикс, тип)
_SIGNATURES = (
    (b"%PDF", "pdf"),
    (b"\x89PNG\r\n\x1a\n", "image"),
    (b"\xff\xd8\xff", "image"),
    (b"II*\x00", "image"),
    (b"MM\x00*", "image"),
)


@dataclass(frozen=True)
class SourceDocument:
    """
    Загруженный документ.

    Attributes:
        filename: имя файла от клиента
        data: содержимое файла
    """

    filename: str
    data: bytes = field(repr=False)

    @property
    def kind(self) -> Optional[str]:
        """'pdf', 'image' или None если формат не распознан."""
        for prefix, kind in _SIGNATURES:
            if self.data.startswith(prefix):
                return kind
        return None

    @property
    def size_bytes(self) -> int:
        return len(self.data)


@dataclass(frozen=True)
class ToolInvocation:
    """
    Описание одного вызова внешней утилиты.

    Attributes:
        tool: имя этапа (split, rasterize, ocr) — для логов и ошибок
        argv: команда и аргументы
        cwd: рабочая директория процесса
        timeout: жёсткий лимит времени в секундах
    """

    tool: str
    argv: tuple[str, ...]
    cwd: Optional[Path]
    timeout: float


@dataclass(frozen=True)
class ToolResult:
    """Успешное завершение утилиты (код выхода 0)."""

    returncode: int
    stdout: str
    stderr: str
    duration_ms: int


@dataclass(frozen=True)
class PageArtifact:
    """
    Файл одной страницы после разбиения.

    Attributes:
        index: номер страницы (с 0), назначается при разбиении
        path: путь к файлу страницы внутри workspace
        is_raster: True если файл уже изображение (растеризация не нужна)
    """

    index: int
    path: Path
    is_raster: bool = False


@dataclass(frozen=True)
class ChunkFile:
    """
    Часть документа после разбиения на диапазоны страниц.

    Attributes:
        filename: имя файла части (chunk_001_pages_1-50.pdf)
        first_page: первая страница диапазона (с 1, как в pdftk)
        last_page: последняя страница диапазона включительно
        file_size: размер файла части в байтах
    """

    filename: str
    first_page: int
    last_page: int
    file_size: int

    @property
    def page_range(self) -> str:
        return f"{self.first_page}-{self.last_page}"


@dataclass
class ChunkReport:
    """Результат разбиения документа на части."""

    total_pages: int
    pages_per_chunk: int
    chunks: list[ChunkFile] = field(default_factory=list)


@dataclass
class Page:
    """
    Страница в результате задачи.

    text заполнен только при успехе, error — только при ошибке.
    """

    index: int
    status: PageStatus = PageStatus.PENDING
    image_path: Optional[Path] = None
    text: Optional[str] = None
    error: Optional[str] = None
    width: int = 0
    height: int = 0
    processing_time_ms: int = 0


@dataclass
class Job:
    """
    Задача распознавания одного документа.

    Статус меняет только оркестратор. После перехода в терминальный
    статус задача не изменяется.
    """

    job_id: str
    source: SourceDocument
    concurrency: int
    ocr_timeout: float
    job_timeout: float
    languages: list[str]
    status: JobStatus = JobStatus.PENDING
    pages: list[Page] = field(default_factory=list)
    created_at: datetime = field(default_factory=datetime.now)
    completed_at: Optional[datetime] = None
    error_kind: Optional[str] = None
    error: Optional[str] = None

    # Прогресс
    stage: str = "queued"
    pages_total: int = 0
    pages_done: int = 0

    @property
    def processing_time_ms(self) -> int:
        end = self.completed_at or datetime.now()
        return int((end - self.created_at).total_seconds() * 1000)


# =============================================================================
# Pydantic модели для API
# =============================================================================


class OCRConfig(BaseModel):
    """
    Параметры задачи от пользователя.

    Все поля необязательны: не указанное берётся из настроек сервиса.

    Attributes:
        languages: языки Tesseract (по умолчанию ["san"])
        concurrency: сколько страниц задачи обрабатывать одновременно
        ocr_timeout_seconds: таймаут распознавания одной страницы
        job_timeout_seconds: таймаут всей задачи
    """

    languages: Optional[list[str]] = Field(
        default=None,
        description="Языки для OCR: ['san'], ['san', 'eng']",
    )
    concurrency: Optional[int] = Field(
        default=None,
        description="Параллелизм страниц в задаче",
        ge=1,
    )
    ocr_timeout_seconds: Optional[float] = Field(
        default=None,
        description="Таймаут OCR одной страницы, сек",
        gt=0,
    )
    job_timeout_seconds: Optional[float] = Field(
        default=None,
        description="Таймаут всей задачи, сек",
        gt=0,
    )


class PageResult(BaseModel):
    """
    Результат для одной страницы.

    Attributes:
        index: номер страницы (начинается с 0)
        status: Succeeded, Failed или TimedOut
        text: распознанный текст (только при успехе)
        error: диагностика (только при ошибке)
        width: ширина изображения в пикселях
        height: высота изображения в пикселях
        processing_time_ms: время обработки страницы в мс
    """

    index: int
    status: PageStatus
    text: Optional[str] = None
    error: Optional[str] = None
    width: int = 0
    height: int = 0
    processing_time_ms: int = 0


class FileInfo(BaseModel):
    """
    Информация о загруженном файле.

    Attributes:
        filename: имя файла
        size_bytes: размер файла в байтах
    """

    filename: str
    size_bytes: int


class JobResponse(BaseModel):
    """
    Ответ API с результатами задачи.

    Attributes:
        job_id: UUID задачи
        status: итоговый (или текущий) статус задачи
        error_kind: класс ошибки уровня задачи (InputError, ToolExecutionError, ...)
        error: сообщение об ошибке уровня задачи
        stage: текущий этап обработки
        pages_done: сколько страниц уже обработано
        total_pages: количество страниц документа
        processing_time_ms: общее время обработки в мс
        pages: результаты по страницам в порядке номеров
        text: текст всех успешных страниц одним блоком
        config_used: параметры, с которыми выполнялась задача
        file_info: информация о файле
    """

    job_id: str
    status: JobStatus
    error_kind: Optional[str] = None
    error: Optional[str] = None
    stage: str
    pages_done: int = 0
    total_pages: int = 0
    processing_time_ms: int = 0
    pages: list[PageResult] = []
    text: str = ""
    config_used: OCRConfig
    file_info: FileInfo


class JobAccepted(BaseModel):
    """Ответ на постановку задачи в фоне."""

    job_id: str
    status: JobStatus


class ChunkInfo(BaseModel):
    """Часть документа в ответе POST /split."""

    filename: str
    page_range: str = Field(..., description="Диапазон страниц, например 1-50")
    file_size: int = Field(..., description="Размер части в байтах")


class SplitResponse(BaseModel):
    """
    Ответ POST /split.

    При ошибке success=False, chunks пустой, error_kind/error заполнены.
    """

    success: bool
    original_filename: str
    total_pages: int = 0
    pages_per_chunk: int = 0
    chunks: list[ChunkInfo] = Field(default_factory=list)
    error_kind: Optional[str] = None
    error: Optional[str] = None
    processing_time_ms: int = 0
