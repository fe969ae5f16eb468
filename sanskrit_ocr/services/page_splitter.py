"""
Разбиение документа на страницы.

PDF разбивается одним вызовом `pdftk <src> burst` на файлы page_0001.pdf,
page_0002.pdf, ... Изображение (PNG/JPEG/TIFF) считается документом из одной
страницы и утилиту не вызывает.

Это единственный этап, ошибка которого валит всю задачу: без страниц
дальше работать не с чем.
"""

import logging
import re
import time
from pathlib import Path

from sanskrit_ocr.errors import InputError
from sanskrit_ocr.schemas import PageArtifact, SourceDocument
from sanskrit_ocr.services.tool_runner import InvokeFn, build_invocation
from sanskrit_ocr.services.workspace import Workspace

logger = logging.getLogger(__name__)

PAGES_DIR = "pages"
PAGE_PATTERN = "page_%04d.pdf"
_PAGE_FILE_RE = re.compile(r"^page_(\d+)\.pdf$")


def validate_source(source: SourceDocument) -> None:
    """
    Проверяет документ до создания workspace.

    Raises:
        InputError: пустой файл или неподдерживаемый формат
    """
    if not source.data:
        raise InputError(f"Файл '{source.filename}' пустой")

    if source.kind is None:
        raise InputError(
            f"Файл '{source.filename}' не является PDF или изображением "
            "(неизвестная сигнатура)"
        )


def source_suffix(source: SourceDocument) -> str:
    """Расширение файла для сохранения документа в workspace."""
    if source.kind == "pdf":
        return ".pdf"
    suffix = Path(source.filename).suffix.lower()
    return suffix if suffix in (".png", ".jpg", ".jpeg", ".tif", ".tiff") else ".png"


async def split(
    source_path: Path,
    workspace: Workspace,
    command: str,
    timeout: float,
    invoke: InvokeFn,
    is_raster: bool = False,
) -> list[PageArtifact]:
    """
    Разбивает документ на страницы.

    Args:
        source_path: путь к документу внутри workspace
        workspace: workspace задачи
        command: команда утилиты разбиения (pdftk)
        timeout: таймаут вызова
        invoke: примитив запуска утилит
        is_raster: документ — одно изображение

    Returns:
        list[PageArtifact]: страницы с индексами 0..N-1 по порядку

    Raises:
        InputError: файл не читается, пустой или в нём нет страниц
        ToolExecutionError: утилита завершилась с ошибкой
        ToolTimeoutError: превышен таймаут
    """
    if not source_path.is_file():
        raise InputError(f"Файл документа не найден: {source_path}")
    if source_path.stat().st_size == 0:
        raise InputError(f"Файл документа пустой: {source_path}")

    if is_raster:
        logger.info("   Split: изображение, одна страница")
        return [PageArtifact(index=0, path=source_path, is_raster=True)]

    split_start = time.perf_counter()
    pages_dir = workspace.path(PAGES_DIR)
    pages_dir.mkdir(exist_ok=True)

    invocation = build_invocation(
        "split",
        command,
        [source_path, "burst", "output", pages_dir / PAGE_PATTERN],
        cwd=workspace.root,
        timeout=timeout,
    )
    await invoke(invocation)

    # pdftk нумерует страницы с 1; индексы назначаем по номеру файла
    numbered = []
    for path in pages_dir.iterdir():
        match = _PAGE_FILE_RE.match(path.name)
        if match:
            numbered.append((int(match.group(1)), path))
    numbered.sort()

    if not numbered:
        raise InputError(f"В документе нет страниц: {source_path.name}")

    pages = [
        PageArtifact(index=idx, path=workspace.track(path))
        for idx, (_, path) in enumerate(numbered)
    ]

    duration = int((time.perf_counter() - split_start) * 1000)
    logger.info(f"   Split: {len(pages)} страниц за {duration}ms")
    return pages
