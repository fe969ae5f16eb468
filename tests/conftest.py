"""
Общие фикстуры тестов.

Внешние утилиты подменяются Python-скриптами из tests/fake_tools
через те же строки команд, что и в проде (OCR_SPLIT_COMMAND и т.д.),
поэтому тесты запускают настоящие подпроцессы, таймауты и kill.
"""

import io
import shlex
import sys
from pathlib import Path

import pytest
from PIL import Image
from PIL.PngImagePlugin import PngInfo

from sanskrit_ocr.config import Settings
from sanskrit_ocr.schemas import SourceDocument
from sanskrit_ocr.services.pipeline import PipelineOrchestrator
from sanskrit_ocr.services.worker_pool import WorkerPool

FAKE_TOOLS = Path(__file__).parent / "fake_tools"


def fake_command(name: str) -> str:
    return f"{shlex.quote(sys.executable)} {shlex.quote(str(FAKE_TOOLS / name))}"


def make_pdf(*pages: str) -> bytes:
    """Тестовый "PDF": заголовок и страницы через \\f."""
    return ("%PDF-fake\n" + "\f".join(pages)).encode("utf-8")


def make_png(content: str) -> bytes:
    """PNG с текстом страницы в чанке content."""
    info = PngInfo()
    info.add_itxt("content", content)
    buffer = io.BytesIO()
    Image.new("L", (48, 24), color=255).save(buffer, format="PNG", pnginfo=info)
    return buffer.getvalue()


def pdf_source(*pages: str, filename: str = "granth.pdf") -> SourceDocument:
    return SourceDocument(filename=filename, data=make_pdf(*pages))


@pytest.fixture
def workspace_root(tmp_path: Path) -> Path:
    root = tmp_path / "workspaces"
    root.mkdir()
    return root


@pytest.fixture
def tool_settings(workspace_root: Path) -> Settings:
    return Settings(
        _env_file=None,
        split_command=fake_command("fake_pdftk.py"),
        rasterize_command=fake_command("fake_pdftoppm.py"),
        ocr_command=fake_command("fake_tesseract.py"),
        workspace_root=str(workspace_root),
        max_workers=4,
        default_concurrency=4,
        split_timeout_seconds=30,
        rasterize_timeout_seconds=30,
        ocr_timeout_seconds=30,
        job_timeout_seconds=60,
    )


@pytest.fixture
def make_orchestrator(tool_settings: Settings):
    """Оркестратор со своим пулом: пул создаётся на каждый вызов."""

    def factory(pool_size: int = 4, **kwargs) -> PipelineOrchestrator:
        return PipelineOrchestrator(tool_settings, WorkerPool(pool_size), **kwargs)

    return factory


def leftover_files(root: Path) -> list[Path]:
    return list(root.rglob("*"))
