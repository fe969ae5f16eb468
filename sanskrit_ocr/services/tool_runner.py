"""
Запуск внешних утилит (pdftk, pdftoppm, tesseract) как подпроцессов.

Единый примитив для всех этапов: invocation -> ToolResult или исключение.
Повторов здесь нет: политика повторов принадлежит оркестратору.

Гарантии:
    - Таймаут: процесс убивается и дожидается завершения, затем ToolTimeoutError
    - Отмена задачи: процесс убивается до того, как CancelledError уйдёт выше
    - Ненулевой код выхода: ToolExecutionError с stderr как есть
"""

import asyncio
import logging
import shlex
import time
from pathlib import Path
from typing import Awaitable, Callable, Optional, Sequence

from sanskrit_ocr.errors import ToolExecutionError, ToolTimeoutError
from sanskrit_ocr.schemas import ToolInvocation, ToolResult

logger = logging.getLogger(__name__)

# Сигнатура примитива, который получают этапы пайплайна
InvokeFn = Callable[[ToolInvocation], Awaitable[ToolResult]]


def build_invocation(
    tool: str,
    command: str,
    args: Sequence[str],
    cwd: Optional[Path],
    timeout: float,
) -> ToolInvocation:
    """
    Собирает ToolInvocation из строки команды из настроек и аргументов этапа.

    Args:
        tool: имя этапа
        command: команда из настроек, разбирается через shlex
        args: аргументы этапа
        cwd: рабочая директория
        timeout: таймаут в секундах

    Returns:
        ToolInvocation: готовое описание вызова
    """
    argv = tuple(shlex.split(command)) + tuple(str(a) for a in args)
    return ToolInvocation(tool=tool, argv=argv, cwd=cwd, timeout=timeout)


async def run_tool(invocation: ToolInvocation) -> ToolResult:
    """
    Выполняет один вызов внешней утилиты.

    Args:
        invocation: описание вызова

    Returns:
        ToolResult: stdout/stderr успешного процесса

    Raises:
        ToolExecutionError: ненулевой код выхода или утилита не найдена
        ToolTimeoutError: превышен таймаут вызова
    """
    start = time.perf_counter()
    logger.debug(f"   [{invocation.tool}] {shlex.join(invocation.argv)}")

    try:
        process = await asyncio.create_subprocess_exec(
            *invocation.argv,
            stdin=asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
            cwd=str(invocation.cwd) if invocation.cwd else None,
        )
    except FileNotFoundError as e:
        raise ToolExecutionError(
            invocation.tool,
            f"Не удалось запустить {invocation.argv[0]}: {e}. "
            "Проверьте, что утилита установлена.",
        ) from e
    except PermissionError as e:
        raise ToolExecutionError(
            invocation.tool,
            f"Нет прав на запуск {invocation.argv[0]}: {e}",
        ) from e

    try:
        stdout, stderr = await asyncio.wait_for(
            process.communicate(), timeout=invocation.timeout
        )
    except asyncio.TimeoutError:
        await _kill(process)
        logger.warning(
            f"   [{invocation.tool}] таймаут {invocation.timeout:g}с, "
            f"pid={process.pid} остановлен"
        )
        raise ToolTimeoutError(invocation.tool, invocation.timeout)
    except asyncio.CancelledError:
        await _kill(process)
        logger.info(f"   [{invocation.tool}] отменён, pid={process.pid} остановлен")
        raise

    duration_ms = int((time.perf_counter() - start) * 1000)
    stdout_text = stdout.decode("utf-8", errors="replace")
    stderr_text = stderr.decode("utf-8", errors="replace")

    if process.returncode != 0:
        logger.warning(
            f"   [{invocation.tool}] код выхода {process.returncode}: "
            f"{stderr_text.strip()}"
        )
        raise ToolExecutionError(
            invocation.tool,
            f"{invocation.tool} завершился с кодом {process.returncode}: "
            f"{stderr_text.strip()}",
            returncode=process.returncode,
            stderr=stderr_text,
        )

    return ToolResult(
        returncode=process.returncode,
        stdout=stdout_text,
        stderr=stderr_text,
        duration_ms=duration_ms,
    )


async def _kill(process: asyncio.subprocess.Process) -> None:
    """Убивает процесс и ждёт его завершения, чтобы не оставить зомби."""
    if process.returncode is None:
        try:
            process.kill()
        except ProcessLookupError:
            pass
    await process.wait()
