"""
Разбиение PDF на части по диапазонам страниц (POST /split).

Порядок:
    1. pdftk <src> dump_data -> NumberOfPages
    2. Страниц в части: цель (chunk_target_kb) / средний размер страницы
    3. pdftk <src> cat a-b output chunk_NNN_pages_a-b.pdf на каждую часть

Части создаются в workspace и удаляются вместе с ним: в ответ попадают
имена, диапазоны и размеры.
"""

import logging
import math
import time
import uuid
from pathlib import Path

from sanskrit_ocr.errors import InputError, ResourceError, ToolExecutionError
from sanskrit_ocr.schemas import ChunkFile, ChunkReport, SourceDocument
from sanskrit_ocr.services.tool_runner import InvokeFn, build_invocation
from sanskrit_ocr.services.workspace import Workspace, WorkspaceManager

logger = logging.getLogger(__name__)

PAGE_COUNT_FIELD = "NumberOfPages:"


def parse_page_count(dump_data: str) -> int:
    """
    Достаёт число страниц из вывода pdftk dump_data.

    Returns:
        int: значение NumberOfPages или 0, если поля нет
    """
    for line in dump_data.splitlines():
        if line.startswith(PAGE_COUNT_FIELD):
            value = line[len(PAGE_COUNT_FIELD):].strip()
            return int(value) if value.isdigit() else 0
    return 0


def pages_per_chunk(file_size_bytes: int, total_pages: int, target_kb: int) -> int:
    """
    Сколько страниц класть в одну часть.

    Средний размер страницы не меньше 1 КБ; в части от 1 до total_pages страниц.
    """
    file_size_kb = file_size_bytes // 1024
    kb_per_page = max(file_size_kb / total_pages, 1.0)
    return min(max(math.floor(target_kb / kb_per_page), 1), total_pages)


def plan_chunks(total_pages: int, per_chunk: int) -> list[tuple[int, int]]:
    """Диапазоны страниц (с 1, включительно) подряд по per_chunk."""
    return [
        (first, min(first + per_chunk - 1, total_pages))
        for first in range(1, total_pages + 1, per_chunk)
    ]


async def count_pages(
    source_path: Path,
    workspace: Workspace,
    command: str,
    timeout: float,
    invoke: InvokeFn,
) -> int:
    """
    Число страниц документа через pdftk dump_data.

    Raises:
        InputError: pdftk не сообщил число страниц
        ToolExecutionError: pdftk завершился с ошибкой
    """
    invocation = build_invocation(
        "split",
        command,
        [source_path, "dump_data"],
        cwd=workspace.root,
        timeout=timeout,
    )
    result = await invoke(invocation)

    total = parse_page_count(result.stdout)
    if total == 0:
        raise InputError("Не удалось определить число страниц PDF")
    return total


async def split_into_chunks(
    source: SourceDocument,
    workspaces: WorkspaceManager,
    command: str,
    timeout: float,
    target_kb: int,
    invoke: InvokeFn,
) -> ChunkReport:
    """
    Разбивает PDF на части примерно по target_kb.

    Args:
        source: загруженный PDF
        workspaces: менеджер рабочих директорий
        command: команда pdftk
        timeout: таймаут каждого вызова pdftk
        target_kb: целевой размер части
        invoke: примитив запуска утилит

    Returns:
        ChunkReport: число страниц и части по порядку

    Raises:
        InputError: не PDF или число страниц не определено
        ToolExecutionError: pdftk упал на анализе или на одной из частей
        ToolTimeoutError: превышен таймаут вызова
        ResourceError: не удалось создать или удалить workspace
    """
    if source.kind != "pdf":
        raise InputError("Разбиение на части поддерживается только для PDF")

    start = time.perf_counter()
    async with workspaces.session(f"split-{uuid.uuid4().hex[:8]}") as workspace:
        source_path = workspace.path("original.pdf")
        try:
            source_path.write_bytes(source.data)
        except OSError as e:
            raise ResourceError(f"Не удалось записать документ в workspace: {e}") from e
        workspace.track(source_path)

        logger.info(f"Анализ PDF '{source.filename}'...")
        total = await count_pages(source_path, workspace, command, timeout, invoke)
        per_chunk = pages_per_chunk(source.size_bytes, total, target_kb)
        ranges = plan_chunks(total, per_chunk)
        logger.info(f"   {total} стр. -> {len(ranges)} частей по ~{per_chunk} стр.")

        report = ChunkReport(total_pages=total, pages_per_chunk=per_chunk)
        for number, (first, last) in enumerate(ranges, start=1):
            filename = f"chunk_{number:03d}_pages_{first}-{last}.pdf"
            chunk_path = workspace.path(filename)

            invocation = build_invocation(
                "split",
                command,
                [source_path, "cat", f"{first}-{last}", "output", chunk_path],
                cwd=workspace.root,
                timeout=timeout,
            )
            await invoke(invocation)

            if not chunk_path.is_file():
                raise ToolExecutionError("split", f"pdftk не создал часть {filename}")
            workspace.track(chunk_path)

            report.chunks.append(
                ChunkFile(
                    filename=filename,
                    first_page=first,
                    last_page=last,
                    file_size=chunk_path.stat().st_size,
                )
            )
            logger.info(f"   Часть {number}: стр. {first}-{last}")

    duration = int((time.perf_counter() - start) * 1000)
    logger.info(f"Разбиение завершено: {len(report.chunks)} частей, {duration}ms")
    return report
