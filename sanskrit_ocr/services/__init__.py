"""
Сервисы пайплайна распознавания.

Модули:
    - tool_runner: запуск внешних утилит с таймаутом и остановкой процесса
    - workspace: временная директория задачи со счётчиком ссылок
    - page_splitter: разбиение документа на страницы (pdftk)
    - rasterizer: страница PDF -> PNG (pdftoppm)
    - ocr_executor: распознавание текста (tesseract)
    - worker_pool: глобальный пул слотов для страниц
    - aggregator: сборка результатов страниц по порядку
    - pipeline: оркестратор задачи
    - job_store: реестр задач для фонового режима
    - chunker: разбиение PDF на части по диапазонам страниц
"""

from sanskrit_ocr.services.aggregator import ResultAggregator, collect_pages, derive_job_status
from sanskrit_ocr.services.chunker import split_into_chunks
from sanskrit_ocr.services.ocr_executor import recognize
from sanskrit_ocr.services.page_splitter import split, validate_source
from sanskrit_ocr.services.pipeline import PipelineOrchestrator
from sanskrit_ocr.services.rasterizer import rasterize
from sanskrit_ocr.services.tool_runner import run_tool
from sanskrit_ocr.services.worker_pool import WorkerPool
from sanskrit_ocr.services.workspace import Workspace, WorkspaceManager

__all__ = [
    "PipelineOrchestrator",
    "WorkerPool",
    "WorkspaceManager",
    "Workspace",
    "ResultAggregator",
    "collect_pages",
    "derive_job_status",
    "run_tool",
    "split",
    "split_into_chunks",
    "validate_source",
    "rasterize",
    "recognize",
]
