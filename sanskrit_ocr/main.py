"""
Sanskrit OCR Service — FastAPI приложение.

Принимает скан PDF (или изображение страницы), разбивает на страницы,
растеризует и распознаёт каждую страницу Tesseract (язык san),
возвращает текст по страницам.

Эндпоинты:
    POST   /ocr/execute     — загрузка документа и распознавание (ответ по готовности)
    POST   /jobs            — постановка задачи в фоне, ответ сразу с job_id
    GET    /jobs/stats      — статистика реестра задач
    GET    /jobs/{job_id}   — прогресс и результат задачи
    DELETE /jobs/{job_id}   — отмена задачи
    POST   /split           — разбиение PDF на части по ~500 КБ (pdftk)
    GET    /health          — проверка работоспособности (Tesseract, утилиты, конфиг)

Запуск:
    uvicorn sanskrit_ocr.main:app --host 0.0.0.0 --port 8080
"""

import asyncio
import json
import logging
import os
import shlex
import shutil
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Optional

from fastapi import FastAPI, File, Form, HTTPException, Request, UploadFile
from fastapi.responses import JSONResponse
from starlette.concurrency import run_in_threadpool

from sanskrit_ocr.config import settings
from sanskrit_ocr.errors import InputError, PipelineError, ToolExecutionError
from sanskrit_ocr.schemas import (
    ChunkInfo,
    FileInfo,
    Job,
    JobAccepted,
    JobResponse,
    JobStatus,
    OCRConfig,
    PageResult,
    SourceDocument,
    SplitResponse,
)
from sanskrit_ocr.services.aggregator import combine_text
from sanskrit_ocr.services.chunker import split_into_chunks
from sanskrit_ocr.services.job_store import JobStore
from sanskrit_ocr.services.pipeline import PipelineOrchestrator
from sanskrit_ocr.services.worker_pool import WorkerPool
from sanskrit_ocr.services.workspace import WorkspaceManager

# Настройка логгера
logging.basicConfig(
    level=settings.log_level,
    format="%(asctime)s [Sanskrit-OCR] %(message)s",
    datefmt="%H:%M:%S",
)
logger = logging.getLogger(__name__)

ALLOWED_CONTENT_TYPES = {
    "application/pdf",
    "image/png",
    "image/jpeg",
    "image/tiff",
    # Многие клиенты не указывают тип
    "application/octet-stream",
}


class UnicodeJSONResponse(JSONResponse):
    """JSON ответ с нормальным отображением деванагари (без \\uXXXX экранирования)."""

    def render(self, content) -> bytes:
        return json.dumps(
            content,
            ensure_ascii=False,
            allow_nan=False,
            indent=None,
            separators=(",", ":"),
        ).encode("utf-8")


@asynccontextmanager
async def lifespan(app: FastAPI):
    pool = WorkerPool(settings.max_workers)
    app.state.workspaces = WorkspaceManager(settings.workspace_root)
    app.state.orchestrator = PipelineOrchestrator(settings, pool, workspaces=app.state.workspaces)
    app.state.jobs = JobStore(settings.max_retained_jobs)

    logger.info(f"Запуск Sanskrit OCR Service, пул: {pool.size} слотов")
    yield

    await app.state.jobs.shutdown()
    logger.info("Сервис остановлен")


# FastAPI приложение
app = FastAPI(
    title="Sanskrit OCR Service",
    description="Распознавание санскрита в сканах PDF (pdftk + pdftoppm + Tesseract)",
    version="1.0.0",
    default_response_class=UnicodeJSONResponse,
    lifespan=lifespan,
)


@app.get("/health")
async def health_check(request: Request) -> dict:
    """
    Проверка работоспособности сервиса.

    Проверяет доступность Tesseract и языка san, наличие утилит
    в PATH, и возвращает текущую конфигурацию.

    Returns:
        dict: статус сервиса и информация о системе
    """
    tesseract = await run_in_threadpool(_tesseract_info)
    tools = {
        "split": _tool_available(settings.split_command),
        "rasterize": _tool_available(settings.rasterize_command),
        "ocr": _tool_available(settings.ocr_command),
    }
    healthy = tesseract["available"] and all(tools.values())

    return {
        "status": "ok" if healthy else "degraded",
        "service": "sanskrit-ocr",
        "version": "1.0.0",
        "cpu_count": os.cpu_count(),
        "tesseract": tesseract,
        "tools": tools,
        "pool": request.app.state.orchestrator.pool.stats(),
        "config": {
            "max_file_size_mb": settings.max_file_size_mb,
            "max_workers": settings.max_workers,
            "default_concurrency": settings.default_concurrency,
            "render_dpi": settings.render_dpi,
            "ocr_languages": settings.ocr_languages,
            "ocr_oem": settings.ocr_oem,
            "ocr_psm": settings.ocr_psm,
            "ocr_timeout_seconds": settings.ocr_timeout_seconds,
            "job_timeout_seconds": settings.job_timeout_seconds,
        },
    }


@app.post("/ocr/execute", response_model=JobResponse)
async def execute_ocr(
    request: Request,
    file: UploadFile = File(..., description="PDF или изображение для распознавания"),
    config: Optional[str] = Form(
        default=None,
        description='JSON конфигурация: {"languages": ["san"], "concurrency": 2}',
    ),
) -> JobResponse:
    """
    Выполняет распознавание документа и возвращает результат по готовности.

    Полный пайплайн: split -> rasterize -> OCR, страницы параллельно.
    Ошибки обработки (повреждённый PDF, сбой утилиты) возвращаются
    в поле error_kind/error со статусом Failed, а не HTTP ошибкой.

    Args:
        file: документ (multipart/form-data)
        config: JSON строка с параметрами задачи

    Returns:
        JobResponse: результат по страницам

    Raises:
        HTTPException: при ошибках валидации запроса
    """
    orchestrator: PipelineOrchestrator = request.app.state.orchestrator

    ocr_config = _parse_config(config)
    source = await _validate_and_read_file(file)
    logger.info(f"Получен файл: {source.filename}, конфиг: {ocr_config.model_dump()}")

    job = orchestrator.create_job(source, ocr_config)
    request.app.state.jobs.register(job)
    await orchestrator.run(job)

    return _job_to_response(job)


@app.post("/jobs", response_model=JobAccepted, status_code=202)
async def submit_job(
    request: Request,
    file: UploadFile = File(..., description="PDF или изображение для распознавания"),
    config: Optional[str] = Form(default=None, description="JSON конфигурация задачи"),
) -> JobAccepted:
    """
    Ставит задачу в фон и сразу возвращает job_id.

    Прогресс и результат: GET /jobs/{job_id}.
    """
    orchestrator: PipelineOrchestrator = request.app.state.orchestrator

    ocr_config = _parse_config(config)
    source = await _validate_and_read_file(file)

    job = orchestrator.create_job(source, ocr_config)
    task = asyncio.create_task(orchestrator.run(job))
    request.app.state.jobs.register(job, task)
    logger.info(f"Задача поставлена: job_id={job.job_id}, файл: {source.filename}")

    return JobAccepted(job_id=job.job_id, status=job.status)


@app.get("/jobs/stats")
async def get_jobs_stats(request: Request) -> dict:
    """
    Статистика реестра задач.

    Returns:
        dict: количество задач, по статусам, самая старая/новая
    """
    return request.app.state.jobs.stats()


@app.get("/jobs/{job_id}", response_model=JobResponse)
async def get_job(job_id: str, request: Request) -> JobResponse:
    """
    Прогресс задачи; после завершения — полный результат.

    Raises:
        HTTPException: 404 если задача не найдена
    """
    job = request.app.state.jobs.get_job(job_id)
    if job is None:
        raise HTTPException(
            status_code=404,
            detail=f"Задача с id={job_id} не найдена. "
            "Возможно, она вытеснена из реестра или сервис был перезапущен.",
        )
    return _job_to_response(job)


@app.delete("/jobs/{job_id}", response_model=JobAccepted)
async def cancel_job(job_id: str, request: Request) -> JobAccepted:
    """
    Отменяет задачу: все её подпроцессы останавливаются, workspace удаляется.

    Raises:
        HTTPException: 404 если задача не найдена, 409 если уже завершена
            или выполняется синхронно (/ocr/execute)
    """
    jobs: JobStore = request.app.state.jobs
    record = jobs.get(job_id)
    if record is None:
        raise HTTPException(status_code=404, detail=f"Задача с id={job_id} не найдена")

    if record.job.status.is_terminal:
        raise HTTPException(
            status_code=409,
            detail={
                "error": "job_finished",
                "message": f"Задача уже завершена со статусом {record.job.status.value}",
            },
        )

    # Задачи /ocr/execute выполняются в запросе клиента: отменяет их только разрыв соединения
    if record.task is None:
        raise HTTPException(
            status_code=409,
            detail={
                "error": "not_cancellable",
                "message": "Синхронную задачу /ocr/execute нельзя отменить, используйте POST /jobs",
            },
        )

    jobs.cancel(job_id)

    # Задача ещё не стартовала: её корутина не выполнится вовсе
    if record.job.status == JobStatus.PENDING:
        request.app.state.orchestrator.cancel_pending(record.job)
    elif record.task is not None:
        await asyncio.gather(record.task, return_exceptions=True)

    return JobAccepted(job_id=job_id, status=record.job.status)


@app.post("/split", response_model=SplitResponse)
async def split_pdf(
    request: Request,
    file: UploadFile = File(..., description="PDF для разбиения на части"),
) -> UnicodeJSONResponse:
    """
    Разбивает PDF на части примерно по chunk_target_kb.

    Занимает один слот общего пула на всё время разбиения.
    Сами файлы частей не отдаются: ответ описывает имена, диапазоны
    страниц и размеры.

    Returns:
        SplitResponse: 200 при успехе, 400 если вход не PDF или
        число страниц не определено, 500 при сбое pdftk или workspace
    """
    orchestrator: PipelineOrchestrator = request.app.state.orchestrator
    source = await _validate_and_read_file(file)
    start = datetime.now()

    try:
        async with orchestrator.pool.slot():
            report = await split_into_chunks(
                source,
                request.app.state.workspaces,
                command=settings.split_command,
                timeout=settings.split_timeout_seconds,
                target_kb=settings.chunk_target_kb,
                invoke=orchestrator.invoke,
            )
    except PipelineError as e:
        logger.error(f"Разбиение {source.filename}: {e.kind}: {e.message}")
        response = SplitResponse(
            success=False,
            original_filename=source.filename,
            error_kind=e.kind,
            error=e.stderr if isinstance(e, ToolExecutionError) and e.stderr else e.message,
            processing_time_ms=_elapsed_ms(start),
        )
        status_code = 400 if isinstance(e, InputError) else 500
        return UnicodeJSONResponse(status_code=status_code, content=response.model_dump())

    response = SplitResponse(
        success=True,
        original_filename=source.filename,
        total_pages=report.total_pages,
        pages_per_chunk=report.pages_per_chunk,
        chunks=[
            ChunkInfo(filename=c.filename, page_range=c.page_range, file_size=c.file_size)
            for c in report.chunks
        ],
        processing_time_ms=_elapsed_ms(start),
    )
    return UnicodeJSONResponse(content=response.model_dump())


def _elapsed_ms(start: datetime) -> int:
    return int((datetime.now() - start).total_seconds() * 1000)


def _job_to_response(job: Job) -> JobResponse:
    """Преобразует Job в ответ API."""
    return JobResponse(
        job_id=job.job_id,
        status=job.status,
        error_kind=job.error_kind,
        error=job.error,
        stage=job.stage,
        pages_done=job.pages_done,
        total_pages=job.pages_total,
        processing_time_ms=job.processing_time_ms,
        pages=[
            PageResult(
                index=page.index,
                status=page.status,
                text=page.text,
                error=page.error,
                width=page.width,
                height=page.height,
                processing_time_ms=page.processing_time_ms,
            )
            for page in job.pages
        ],
        text=combine_text(job.pages) if job.status.is_terminal else "",
        config_used=OCRConfig(
            languages=job.languages,
            concurrency=job.concurrency,
            ocr_timeout_seconds=job.ocr_timeout,
            job_timeout_seconds=job.job_timeout,
        ),
        file_info=FileInfo(
            filename=job.source.filename,
            size_bytes=job.source.size_bytes,
        ),
    )


def _tesseract_info() -> dict:
    """Версия Tesseract и установленные языки."""
    import pytesseract

    pytesseract.pytesseract.tesseract_cmd = shlex.split(settings.ocr_command)[0]
    try:
        version = str(pytesseract.get_tesseract_version())
        languages = pytesseract.get_languages(config="")
    except Exception as e:
        return {"available": False, "version": f"error: {e}", "languages": []}

    return {
        "available": True,
        "version": version,
        "languages": languages,
        "sanskrit": "san" in languages,
    }


def _tool_available(command: str) -> bool:
    parts = shlex.split(command)
    return bool(parts) and shutil.which(parts[0]) is not None


def _parse_config(config_json: Optional[str]) -> OCRConfig:
    """
    Парсит JSON конфигурацию из строки.

    Args:
        config_json: JSON строка или None

    Returns:
        OCRConfig: параметры задачи (пустые поля — из настроек)
    """
    if not config_json:
        return OCRConfig()

    try:
        config_dict = json.loads(config_json)
        return OCRConfig(**config_dict)
    except json.JSONDecodeError as e:
        raise HTTPException(
            status_code=400,
            detail={
                "error": "invalid_config",
                "message": f"Некорректный JSON в config: {str(e)}",
            },
        )
    except Exception as e:
        raise HTTPException(
            status_code=400,
            detail={
                "error": "invalid_config",
                "message": f"Ошибка парсинга config: {str(e)}",
            },
        )


async def _validate_and_read_file(file: UploadFile) -> SourceDocument:
    """
    Валидирует и читает загруженный файл.

    Проверяет:
        - Тип файла (PDF, PNG, JPEG, TIFF или application/octet-stream)
        - Размер файла (не больше max_file_size_mb)

    Содержимое (сигнатура, пустой файл) проверяет пайплайн: такие
    ошибки возвращаются как задача со статусом Failed и InputError.

    Args:
        file: загруженный файл

    Returns:
        SourceDocument: документ для пайплайна

    Raises:
        HTTPException: при ошибках валидации
    """
    if file.content_type and file.content_type not in ALLOWED_CONTENT_TYPES:
        raise HTTPException(
            status_code=400,
            detail={
                "error": "invalid_file_type",
                "message": f"Ожидается PDF или изображение, получен: {file.content_type}",
            },
        )

    file_bytes = await file.read()

    max_size = settings.max_file_size_mb * 1024 * 1024
    if len(file_bytes) > max_size:
        raise HTTPException(
            status_code=413,
            detail={
                "error": "file_too_large",
                "message": f"Файл слишком большой: {len(file_bytes)} байт, "
                f"максимум: {settings.max_file_size_mb} МБ",
            },
        )

    return SourceDocument(filename=file.filename or "unknown.pdf", data=file_bytes)


if __name__ == "__main__":
    import uvicorn

    logger.info(f"Запуск Sanskrit OCR Service на {settings.host}:{settings.port}")
    logger.info(f"CPU ядер: {os.cpu_count()}")

    uvicorn.run(
        app,
        host=settings.host,
        port=settings.port,
        log_level="info",
    )
