"""
In-memory реестр задач.

Хранит задачи, запущенные в фоне (POST /jobs), чтобы клиент мог
опрашивать прогресс и отменять их.

Особенности:
    - Хранение в памяти (без персистентности)
    - Завершённые задачи сверх лимита вытесняются, начиная со старых
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Optional

from sanskrit_ocr.schemas import Job

logger = logging.getLogger(__name__)


@dataclass
class JobRecord:
    """
    Запись реестра.

    Attributes:
        job: задача (статус пишет только оркестратор)
        task: asyncio задача, выполняющая пайплайн
    """

    job: Job
    task: Optional[asyncio.Task] = None


class JobStore:
    """
    Реестр задач.

    Args:
        max_retained: сколько завершённых задач хранить
    """

    def __init__(self, max_retained: int = 100):
        self.max_retained = max_retained
        self._records: dict[str, JobRecord] = {}

    def register(self, job: Job, task: Optional[asyncio.Task] = None) -> JobRecord:
        """Добавляет задачу в реестр и вытесняет лишние завершённые."""
        record = JobRecord(job=job, task=task)
        self._records[job.job_id] = record
        self._evict()

        logger.info(
            f"Задача зарегистрирована: job_id={job.job_id}, "
            f"всего в реестре={len(self._records)}"
        )
        return record

    def get(self, job_id: str) -> Optional[JobRecord]:
        record = self._records.get(job_id)
        if record is None:
            logger.warning(f"Задача не найдена: {job_id}")
        return record

    def get_job(self, job_id: str) -> Optional[Job]:
        record = self.get(job_id)
        return record.job if record else None

    def cancel(self, job_id: str) -> bool:
        """
        Запрашивает отмену задачи.

        Returns:
            bool: False если задача уже завершена
        """
        record = self._records[job_id]
        if record.job.status.is_terminal:
            return False
        if record.task is not None and not record.task.done():
            record.task.cancel()
        logger.info(f"Запрошена отмена задачи: {job_id}")
        return True

    async def shutdown(self) -> None:
        """Отменяет все незавершённые задачи (при остановке сервиса)."""
        tasks = [
            r.task for r in self._records.values()
            if r.task is not None and not r.task.done()
        ]
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)

    def stats(self) -> dict:
        """
        Статистика реестра.

        Returns:
            dict: {jobs_count, by_status, oldest_job, newest_job}
        """
        if not self._records:
            return {
                "jobs_count": 0,
                "by_status": {},
                "oldest_job": None,
                "newest_job": None,
            }

        jobs = sorted((r.job for r in self._records.values()), key=lambda j: j.created_at)
        by_status: dict[str, int] = {}
        for job in jobs:
            by_status[job.status.value] = by_status.get(job.status.value, 0) + 1

        return {
            "jobs_count": len(jobs),
            "by_status": by_status,
            "oldest_job": {
                "job_id": jobs[0].job_id,
                "created_at": jobs[0].created_at.isoformat(),
            },
            "newest_job": {
                "job_id": jobs[-1].job_id,
                "created_at": jobs[-1].created_at.isoformat(),
            },
        }

    def _evict(self) -> None:
        finished = sorted(
            (r.job for r in self._records.values() if r.job.status.is_terminal),
            key=lambda j: j.created_at,
        )
        excess = len(finished) - self.max_retained
        for job in finished[:max(excess, 0)]:
            del self._records[job.job_id]
            logger.debug(f"Задача вытеснена из реестра: {job.job_id}")
