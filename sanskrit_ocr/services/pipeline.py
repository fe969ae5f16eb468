"""
Оркестратор пайплайна — ядро сервиса.

Жизненный цикл задачи:
    Pending -> Running -> {Succeeded, PartiallyFailed, Failed, Cancelled}

Порядок работы:
    1. Проверка документа (InputError -> Failed, workspace не создаётся)
    2. Workspace задачи
    3. Split: документ -> файлы страниц (pdftk, один вызов)
    4. Для каждой страницы в ограниченном пуле: rasterize -> OCR
    5. Сборка результатов по номерам страниц
    6. Удаление workspace (на любом пути выхода)

Параллелизация:
    - Страницы задачи: не больше job.concurrency одновременно
    - Все задачи вместе: не больше WorkerPool.size одновременно

Два таймаута: на вызов утилиты (страница -> TimedOut) и на всю задачу
(задача -> Cancelled, все подпроцессы останавливаются).

Статус задачи пишет только оркестратор.
"""

import asyncio
import logging
import time
import uuid
from datetime import datetime
from typing import Optional

from sanskrit_ocr.config import Settings
from sanskrit_ocr.errors import (
    InternalError,
    PipelineError,
    ResourceError,
    ToolExecutionError,
    ToolTimeoutError,
)
from sanskrit_ocr.schemas import (
    Job,
    JobStatus,
    OCRConfig,
    Page,
    PageArtifact,
    PageStatus,
    SourceDocument,
)
from sanskrit_ocr.services.aggregator import (
    PageOutcome,
    ResultAggregator,
    derive_job_status,
)
from sanskrit_ocr.services.ocr_executor import recognize
from sanskrit_ocr.services.page_splitter import split, source_suffix, validate_source
from sanskrit_ocr.services.rasterizer import rasterize
from sanskrit_ocr.services.tool_runner import InvokeFn, run_tool
from sanskrit_ocr.services.worker_pool import WorkerPool
from sanskrit_ocr.services.workspace import Workspace, WorkspaceManager

logger = logging.getLogger(__name__)

# Допустимые переходы статуса задачи
_TRANSITIONS = {
    JobStatus.PENDING: {JobStatus.RUNNING, JobStatus.CANCELLED},
    JobStatus.RUNNING: {
        JobStatus.SUCCEEDED,
        JobStatus.PARTIALLY_FAILED,
        JobStatus.FAILED,
        JobStatus.CANCELLED,
    },
}

CANCELLED_PAGE_ERROR = "Задача отменена до завершения страницы"
ABORTED_PAGE_ERROR = "Задача остановлена до завершения страницы"


class PipelineOrchestrator:
    """
    Выполняет задачи распознавания.

    Args:
        config: настройки сервиса
        pool: глобальный пул слотов (общий для всех задач)
        invoke: примитив запуска внешних утилит
        workspaces: менеджер рабочих директорий
    """

    def __init__(
        self,
        config: Settings,
        pool: WorkerPool,
        invoke: InvokeFn = run_tool,
        workspaces: Optional[WorkspaceManager] = None,
    ):
        self.config = config
        self.pool = pool
        self._invoke = invoke
        self._workspaces = workspaces or WorkspaceManager(config.workspace_root)

    @property
    def invoke(self) -> InvokeFn:
        """Примитив запуска утилит (общий с другими операциями сервиса)."""
        return self._invoke

    def create_job(
        self,
        source: SourceDocument,
        overrides: Optional[OCRConfig] = None,
    ) -> Job:
        """
        Создаёт задачу в статусе Pending.

        Args:
            source: загруженный документ
            overrides: параметры от клиента (незаданные берутся из настроек)

        Returns:
            Job: новая задача
        """
        overrides = overrides or OCRConfig()
        return Job(
            job_id=str(uuid.uuid4()),
            source=source,
            concurrency=overrides.concurrency or self.config.default_concurrency,
            ocr_timeout=overrides.ocr_timeout_seconds or self.config.ocr_timeout_seconds,
            job_timeout=overrides.job_timeout_seconds or self.config.job_timeout_seconds,
            languages=overrides.languages or list(self.config.ocr_languages),
        )

    async def run(self, job: Job) -> Job:
        """
        Выполняет задачу до терминального статуса.

        Отмена вызывающей стороной переводит задачу в Cancelled,
        после чего CancelledError пробрасывается дальше.

        Args:
            job: задача в статусе Pending

        Returns:
            Job: та же задача в терминальном статусе
        """
        self._transition(job, JobStatus.RUNNING)

        logger.info("=" * 60)
        logger.info("НОВАЯ ЗАДАЧА OCR")
        logger.info(f"   job_id: {job.job_id}")
        logger.info(f"   Файл: {job.source.filename} ({job.source.size_bytes} байт)")
        logger.info(f"   Языки: {'+'.join(job.languages)}")
        logger.info(
            f"   Параллелизм: {min(job.concurrency, self.pool.size)}, "
            f"таймауты: OCR {job.ocr_timeout:g}с, задача {job.job_timeout:g}с"
        )
        logger.info("=" * 60)

        try:
            await asyncio.wait_for(self._execute(job), timeout=job.job_timeout)
        except asyncio.TimeoutError:
            self._finish(
                job,
                JobStatus.CANCELLED,
                error_kind=ToolTimeoutError.kind,
                error=f"Задача не уложилась в {job.job_timeout:g} с и была остановлена",
            )
        except asyncio.CancelledError:
            if not job.status.is_terminal:
                self._finish(job, JobStatus.CANCELLED, error="Задача отменена")
            self._log_summary(job)
            raise

        self._log_summary(job)
        return job

    def cancel_pending(self, job: Job) -> None:
        """Отменяет задачу, которая ещё не начала выполняться."""
        self._finish(job, JobStatus.CANCELLED, error="Задача отменена")

    async def _execute(self, job: Job) -> None:
        """Основная работа задачи без учёта таймаута задачи."""
        try:
            validate_source(job.source)
            workspace = self._workspaces.acquire(job.job_id)
        except PipelineError as e:
            logger.error(f"   {e.kind}: {e.message}")
            self._finish(job, JobStatus.FAILED, error_kind=e.kind, error=e.message)
            return

        error: Optional[PipelineError] = None
        try:
            job.pages = await self._process(job, workspace)
        except PipelineError as e:
            logger.error(f"   {e.kind}: {e.message}")
            error = e
        except Exception as e:
            logger.exception(f"Непредвиденная ошибка задачи {job.job_id}: {e}")
            error = InternalError(f"{type(e).__name__}: {e}")
        finally:
            cleanup_error = self._release(workspace)

        error = error or cleanup_error
        if error is not None:
            _seal_pages(job, f"{ABORTED_PAGE_ERROR}: {error.kind}")
            self._finish(job, JobStatus.FAILED, error_kind=error.kind, error=_error_text(error))
        else:
            self._finish(job, derive_job_status(job.pages))

    async def _process(self, job: Job, workspace: Workspace) -> list[Page]:
        """Split + обработка страниц. Возвращает страницы по порядку."""
        job.stage = "splitting"
        source_path = workspace.path(f"source{source_suffix(job.source)}")
        try:
            source_path.write_bytes(job.source.data)
        except OSError as e:
            raise ResourceError(f"Не удалось записать документ в workspace: {e}") from e
        workspace.track(source_path)

        artifacts = await split(
            source_path,
            workspace,
            command=self.config.split_command,
            timeout=self.config.split_timeout_seconds,
            invoke=self._invoke,
            is_raster=job.source.kind == "image",
        )

        job.stage = "recognizing"
        job.pages_total = len(artifacts)
        # Заглушки для прогресса: каждую меняет только её воркер
        job.pages = [Page(index=a.index) for a in artifacts]

        ocr_start = time.perf_counter()
        aggregator = ResultAggregator(len(artifacts))
        job_slots = asyncio.Semaphore(min(job.concurrency, self.pool.size))
        tasks = [
            asyncio.create_task(self._run_page(job, workspace, artifact, job_slots))
            for artifact in artifacts
        ]

        try:
            for next_done in asyncio.as_completed(tasks):
                outcome = await next_done
                aggregator.add(outcome)
                job.pages_done = aggregator.received
                logger.info(
                    f"   [{job.pages_done}/{job.pages_total}] стр.{outcome.index + 1}: "
                    f"{outcome.status.value}, {outcome.processing_time_ms}ms"
                )
        except asyncio.CancelledError:
            job.pages = _collect_partial(aggregator, tasks, CANCELLED_PAGE_ERROR)
            raise
        except PipelineError as e:
            job.pages = _collect_partial(aggregator, tasks, f"{ABORTED_PAGE_ERROR}: {e.kind}")
            raise
        finally:
            await _cancel_all(tasks)

        ocr_duration = int((time.perf_counter() - ocr_start) * 1000)
        logger.info(f"   Страницы: {ocr_duration}ms")
        return aggregator.collect()

    async def _run_page(
        self,
        job: Job,
        workspace: Workspace,
        artifact: PageArtifact,
        job_slots: asyncio.Semaphore,
    ) -> PageOutcome:
        """Слот задачи -> слот пула -> rasterize + OCR на одном воркере."""
        async with job_slots:
            async with self.pool.slot():
                with workspace.hold():
                    return await self._process_page(job, workspace, artifact)

    async def _process_page(
        self,
        job: Job,
        workspace: Workspace,
        artifact: PageArtifact,
    ) -> PageOutcome:
        """
        Обрабатывает одну страницу.

        Ошибки утилит остаются на уровне страницы: ненулевой код выхода
        повторяется до page_retries раз, таймаут не повторяется.
        Прочие исключения страницы дают Failed без повтора.
        """
        page = job.pages[artifact.index]
        start = time.perf_counter()
        attempts = self.config.page_retries + 1
        image_path = None
        width = height = 0

        for attempt in range(1, attempts + 1):
            try:
                page.status = PageStatus.RASTERIZING
                image_path, width, height = await rasterize(
                    artifact,
                    workspace,
                    command=self.config.rasterize_command,
                    dpi=self.config.render_dpi,
                    timeout=self.config.rasterize_timeout_seconds,
                    invoke=self._invoke,
                )
                page.image_path = image_path

                page.status = PageStatus.RECOGNIZING
                text = await recognize(
                    image_path,
                    workspace,
                    artifact.index,
                    languages=job.languages,
                    command=self.config.ocr_command,
                    oem=self.config.ocr_oem,
                    psm=self.config.ocr_psm,
                    timeout=job.ocr_timeout,
                    invoke=self._invoke,
                )
            except ToolTimeoutError as e:
                return PageOutcome(
                    index=artifact.index,
                    status=PageStatus.TIMED_OUT,
                    error=e.message,
                    width=width,
                    height=height,
                    processing_time_ms=_elapsed_ms(start),
                    image_path=image_path,
                )
            except ToolExecutionError as e:
                if attempt < attempts:
                    logger.warning(
                        f"   стр.{artifact.index + 1}: {e.tool} упал, "
                        f"повтор {attempt}/{attempts - 1}"
                    )
                    continue
                return PageOutcome(
                    index=artifact.index,
                    status=PageStatus.FAILED,
                    error=e.stderr or e.message,
                    width=width,
                    height=height,
                    processing_time_ms=_elapsed_ms(start),
                    image_path=image_path,
                )
            except PipelineError:
                # InputError, ResourceError, InternalError: уровень задачи
                raise
            except Exception as e:
                logger.exception(
                    f"Непредвиденная ошибка стр.{artifact.index + 1} задачи {job.job_id}: {e}"
                )
                return PageOutcome(
                    index=artifact.index,
                    status=PageStatus.FAILED,
                    error=f"{type(e).__name__}: {e}",
                    width=width,
                    height=height,
                    processing_time_ms=_elapsed_ms(start),
                    image_path=image_path,
                )

            return PageOutcome(
                index=artifact.index,
                status=PageStatus.SUCCEEDED,
                text=text,
                width=width,
                height=height,
                processing_time_ms=_elapsed_ms(start),
                image_path=image_path,
            )

        raise InternalError(f"Страница {artifact.index}: не выполнено ни одной попытки")

    def _release(self, workspace: Workspace) -> Optional[ResourceError]:
        """Освобождает workspace владельца. Ошибку удаления возвращает, а не бросает."""
        try:
            self._workspaces.release(workspace)
        except ResourceError as e:
            logger.error(f"   {e.message}")
            return e
        return None

    def _transition(self, job: Job, status: JobStatus) -> None:
        allowed = _TRANSITIONS.get(job.status, set())
        if status not in allowed:
            raise InternalError(
                f"Недопустимый переход задачи {job.job_id}: "
                f"{job.status.value} -> {status.value}"
            )
        job.status = status

    def _finish(
        self,
        job: Job,
        status: JobStatus,
        error_kind: Optional[str] = None,
        error: Optional[str] = None,
    ) -> None:
        self._transition(job, status)
        job.error_kind = error_kind
        job.error = error
        job.completed_at = datetime.now()
        job.stage = "complete" if status != JobStatus.CANCELLED else "cancelled"

    def _log_summary(self, job: Job) -> None:
        succeeded = sum(1 for p in job.pages if p.status == PageStatus.SUCCEEDED)
        total_chars = sum(len(p.text or "") for p in job.pages)

        logger.info("=" * 60)
        logger.info(f"ЗАДАЧА ЗАВЕРШЕНА: {job.status.value}")
        logger.info(f"   job_id: {job.job_id}")
        logger.info(f"   Страниц: {succeeded}/{len(job.pages)} успешно")
        logger.info(f"   Символов: {total_chars}")
        if job.error:
            logger.info(f"   Ошибка: {job.error_kind or ''} {job.error}")
        logger.info(f"   ИТОГО: {job.processing_time_ms}ms")
        logger.info("=" * 60)


_TERMINAL_PAGE_STATUSES = {PageStatus.SUCCEEDED, PageStatus.FAILED, PageStatus.TIMED_OUT}


def _seal_pages(job: Job, message: str) -> None:
    """Переводит оставшиеся заглушки страниц в Failed."""
    for page in job.pages:
        if page.status not in _TERMINAL_PAGE_STATUSES:
            page.status = PageStatus.FAILED
            page.text = None
            page.error = message


def _error_text(error: PipelineError) -> str:
    # Для утилиты: stderr как есть, если он есть
    if isinstance(error, ToolExecutionError) and error.stderr:
        return error.stderr
    return error.message


def _collect_partial(
    aggregator: ResultAggregator,
    tasks: list[asyncio.Task],
    fill_missing: str,
) -> list[Page]:
    """
    Страницы прерванной задачи: готовые, но ещё не забранные результаты
    сохраняются, остальные получают Failed с fill_missing.
    """
    for task in tasks:
        if not task.done() or task.cancelled() or task.exception() is not None:
            continue
        outcome = task.result()
        if not aggregator.has(outcome.index):
            aggregator.add(outcome)
    return aggregator.collect(fill_missing=fill_missing)


async def _cancel_all(tasks: list[asyncio.Task]) -> None:
    """Отменяет незавершённые задачи страниц и ждёт остановки их подпроцессов."""
    for task in tasks:
        if not task.done():
            task.cancel()
    await asyncio.gather(*tasks, return_exceptions=True)


def _elapsed_ms(start: float) -> int:
    return int((time.perf_counter() - start) * 1000)
