"""
Sanskrit OCR Service — распознавание санскрита в сканах PDF.

Объединяет API и обработку в одном приложении:
    - FastAPI эндпоинты (приём документа, задачи в фоне, прогресс, отмена)
    - Пайплайн: split (pdftk) -> rasterize (pdftoppm) -> OCR (tesseract -l san)
    - Рабочая директория на задачу, удаляется при любом исходе

Страницы обрабатываются параллельно в ограниченном пуле слотов.
"""

from sanskrit_ocr.config import settings
from sanskrit_ocr.schemas import (
    FileInfo,
    JobResponse,
    JobStatus,
    OCRConfig,
    PageResult,
    PageStatus,
)

__all__ = [
    "settings",
    "OCRConfig",
    "JobResponse",
    "JobStatus",
    "PageResult",
    "PageStatus",
    "FileInfo",
]
