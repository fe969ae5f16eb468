"""
Рабочие директории задач (workspace).

Каждая задача получает собственную временную директорию. Внутри:
    - source.<ext>   — загруженный документ
    - pages/         — файлы страниц после разбиения
    - page_0000/ ... — директория каждой страницы (изображение, текст)

Директория удаляется ровно один раз — когда счётчик ссылок падает до нуля.
Владелец (оркестратор) держит одну ссылку, каждый воркер страницы — ещё одну
на время своей работы.
"""

import logging
import shutil
import tempfile
import threading
from contextlib import asynccontextmanager, contextmanager
from pathlib import Path
from typing import AsyncIterator, Iterator, Optional

from sanskrit_ocr.errors import InternalError, ResourceError

logger = logging.getLogger(__name__)


class Workspace:
    """
    Временная директория одной задачи.

    Attributes:
        job_id: UUID задачи-владельца
        root: корень директории
        files: пути всех файлов, созданных этапами пайплайна
    """

    def __init__(self, job_id: str, root: Path):
        self.job_id = job_id
        self.root = root
        self.files: set[Path] = set()
        self._refcount = 1
        self._removed = False
        self._lock = threading.Lock()

    @property
    def refcount(self) -> int:
        return self._refcount

    @property
    def removed(self) -> bool:
        return self._removed

    def path(self, *parts: str) -> Path:
        """Путь внутри workspace."""
        return self.root.joinpath(*parts)

    def page_dir(self, index: int) -> Path:
        """Директория страницы: каждый воркер пишет только в свою."""
        directory = self.root / f"page_{index:04d}"
        directory.mkdir(parents=True, exist_ok=True)
        return directory

    def track(self, path: Path) -> Path:
        """Регистрирует созданный файл."""
        with self._lock:
            self.files.add(path)
        return path

    def retain(self) -> None:
        """Добавляет ссылку. Удалённый workspace использовать нельзя."""
        with self._lock:
            if self._removed:
                raise InternalError(
                    f"Workspace {self.root} уже удалён, задача {self.job_id}"
                )
            self._refcount += 1

    def release(self) -> bool:
        """
        Снимает ссылку и удаляет директорию, если ссылок не осталось.

        Повторный вызов после удаления ничего не делает.

        Returns:
            bool: True если этот вызов удалил директорию

        Raises:
            ResourceError: если директорию не удалось удалить
        """
        with self._lock:
            if self._removed:
                return False
            self._refcount -= 1
            if self._refcount > 0:
                return False
            self._removed = True

        try:
            shutil.rmtree(self.root)
        except FileNotFoundError:
            pass
        except OSError as e:
            raise ResourceError(
                f"Не удалось удалить workspace {self.root}: {e}"
            ) from e

        logger.info(f"   Workspace удалён: {self.root} ({len(self.files)} файлов)")
        return True

    @contextmanager
    def hold(self) -> Iterator["Workspace"]:
        """Держит ссылку на workspace на время блока."""
        self.retain()
        try:
            yield self
        finally:
            self.release()


class WorkspaceManager:
    """
    Создаёт и освобождает workspace задач.

    Args:
        root: родительская директория (None = системная временная)
    """

    def __init__(self, root: Optional[str] = None):
        self.root = root

    def acquire(self, job_id: str) -> Workspace:
        """
        Создаёт уникальную директорию для задачи.

        Raises:
            ResourceError: нет места или прав
        """
        try:
            if self.root:
                Path(self.root).mkdir(parents=True, exist_ok=True)
            path = Path(tempfile.mkdtemp(prefix=f"sanskrit-ocr-{job_id}-", dir=self.root))
        except OSError as e:
            raise ResourceError(f"Не удалось создать workspace: {e}") from e

        logger.info(f"   Workspace создан: {path}")
        return Workspace(job_id, path)

    def release(self, workspace: Workspace) -> bool:
        """Снимает ссылку владельца. См. Workspace.release."""
        return workspace.release()

    @asynccontextmanager
    async def session(self, job_id: str) -> AsyncIterator[Workspace]:
        """
        Workspace на время блока: освобождается при любом выходе,
        включая исключения и отмену.
        """
        workspace = self.acquire(job_id)
        try:
            yield workspace
        finally:
            self.release(workspace)
