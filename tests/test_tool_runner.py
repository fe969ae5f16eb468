"""Тесты запуска внешних утилит: коды выхода, таймаут, отмена."""

import asyncio
import os
import sys
import time

import pytest

from sanskrit_ocr.errors import PipelineError, ToolExecutionError, ToolTimeoutError
from sanskrit_ocr.services.tool_runner import build_invocation, run_tool


def python_invocation(code: str, timeout: float = 10.0, cwd=None):
    return build_invocation("test", sys.executable, ["-c", code], cwd=cwd, timeout=timeout)


def test_build_invocation_splits_command():
    invocation = build_invocation(
        "ocr", "/usr/bin/env tesseract", ["page.png", 42], cwd=None, timeout=5
    )
    assert invocation.argv == ("/usr/bin/env", "tesseract", "page.png", "42")
    assert invocation.timeout == 5


def test_success_captures_stdout():
    result = asyncio.run(run_tool(python_invocation("print('नमः')")))
    assert result.returncode == 0
    assert result.stdout == "नमः\n"


def test_nonzero_exit_keeps_stderr_verbatim():
    code = "import sys; sys.stderr.write('Error: bad page\\n'); sys.exit(3)"
    with pytest.raises(ToolExecutionError) as exc_info:
        asyncio.run(run_tool(python_invocation(code)))

    assert exc_info.value.returncode == 3
    assert exc_info.value.stderr == "Error: bad page\n"
    assert exc_info.value.kind == "ToolExecutionError"


def test_missing_executable():
    invocation = build_invocation(
        "split", "/nonexistent/pdftk", [], cwd=None, timeout=5
    )
    with pytest.raises(ToolExecutionError) as exc_info:
        asyncio.run(run_tool(invocation))
    assert exc_info.value.returncode is None


def test_timeout_kills_process(tmp_path):
    pid_file = tmp_path / "pid"
    code = (
        "import os, time; "
        f"open({str(pid_file)!r}, 'w').write(str(os.getpid())); "
        "time.sleep(30)"
    )

    start = time.monotonic()
    with pytest.raises(ToolTimeoutError):
        asyncio.run(run_tool(python_invocation(code, timeout=1.0)))

    assert time.monotonic() - start < 10
    pid = int(pid_file.read_text())
    with pytest.raises(ProcessLookupError):
        os.kill(pid, 0)


def test_cancellation_kills_process(tmp_path):
    pid_file = tmp_path / "pid"
    code = (
        "import os, time; "
        f"open({str(pid_file)!r}, 'w').write(str(os.getpid())); "
        "time.sleep(30)"
    )

    async def scenario():
        task = asyncio.create_task(run_tool(python_invocation(code, timeout=60)))
        for _ in range(200):
            if pid_file.exists() and pid_file.read_text():
                break
            await asyncio.sleep(0.05)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

    asyncio.run(scenario())

    pid = int(pid_file.read_text())
    with pytest.raises(ProcessLookupError):
        os.kill(pid, 0)


def test_runs_in_given_cwd(tmp_path):
    code = "import os; print(os.getcwd())"
    result = asyncio.run(run_tool(python_invocation(code, cwd=tmp_path)))
    assert os.path.samefile(result.stdout.strip(), tmp_path)


def test_tool_timeout_is_distinct_from_asyncio_timeout():
    # Таймаут вызова утилиты не должен перехватываться как таймаут задачи
    error = ToolTimeoutError("ocr", 2.5)

    assert isinstance(error, PipelineError)
    assert not isinstance(error, asyncio.TimeoutError)
    assert error.kind == "TimeoutError"
    assert error.tool == "ocr"
