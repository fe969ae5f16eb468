"""Тесты этапов: split, rasterize, OCR на подменённых утилитах."""

import asyncio

import pytest
from PIL import Image

from conftest import make_pdf, make_png, pdf_source
from sanskrit_ocr.errors import InputError, ToolExecutionError, ToolTimeoutError
from sanskrit_ocr.schemas import PageArtifact, SourceDocument
from sanskrit_ocr.services.ocr_executor import recognize
from sanskrit_ocr.services.page_splitter import split, validate_source
from sanskrit_ocr.services.rasterizer import rasterize
from sanskrit_ocr.services.tool_runner import run_tool
from sanskrit_ocr.services.workspace import WorkspaceManager


@pytest.fixture
def workspace(workspace_root):
    workspace = WorkspaceManager(str(workspace_root)).acquire("stage-test")
    yield workspace
    workspace.release()


def write_source(workspace, data: bytes, name: str = "source.pdf"):
    path = workspace.path(name)
    path.write_bytes(data)
    return path


# --- validate_source ---


def test_validate_source_accepts_pdf_and_images():
    validate_source(pdf_source("a"))
    validate_source(SourceDocument("scan.png", make_png("a")))


@pytest.mark.parametrize("data", [b"", b"GIF89a...", b"hello world"])
def test_validate_source_rejects_bad_input(data):
    with pytest.raises(InputError):
        validate_source(SourceDocument("doc.pdf", data))


# --- split ---


def test_split_orders_pages(workspace, tool_settings):
    pages = [f"पृष्ठ {i}" for i in range(12)]
    source = write_source(workspace, make_pdf(*pages))

    artifacts = asyncio.run(
        split(source, workspace, tool_settings.split_command, 10, run_tool)
    )

    assert [a.index for a in artifacts] == list(range(12))
    assert [a.path.read_text(encoding="utf-8") for a in artifacts] == pages
    assert all(a.path in workspace.files for a in artifacts)


def test_split_failure_carries_stderr(workspace, tool_settings):
    source = write_source(workspace, make_pdf("SPLIT_FAIL"))

    with pytest.raises(ToolExecutionError) as exc_info:
        asyncio.run(split(source, workspace, tool_settings.split_command, 10, run_tool))

    assert exc_info.value.tool == "split"
    assert "open_reader" in exc_info.value.stderr


def test_split_without_pages_is_input_error(workspace, tool_settings):
    source = write_source(workspace, b"%PDF-fake\n")

    with pytest.raises(InputError):
        asyncio.run(split(source, workspace, tool_settings.split_command, 10, run_tool))


def test_split_rejects_missing_or_empty_file(workspace, tool_settings):
    empty = write_source(workspace, b"")

    with pytest.raises(InputError):
        asyncio.run(split(empty, workspace, tool_settings.split_command, 10, run_tool))
    with pytest.raises(InputError):
        asyncio.run(
            split(workspace.path("nope.pdf"), workspace, tool_settings.split_command, 10, run_tool)
        )


def test_split_image_is_single_raster_page(workspace):
    source = write_source(workspace, make_png("a"), name="source.png")

    async def no_tools(invocation):
        raise AssertionError("утилита не должна вызываться")

    artifacts = asyncio.run(split(source, workspace, "pdftk", 10, no_tools, is_raster=True))
    assert artifacts == [PageArtifact(index=0, path=source, is_raster=True)]


# --- rasterize ---


def test_rasterize_writes_into_page_dir(workspace, tool_settings):
    page_file = workspace.path("p.pdf")
    page_file.write_text("श्लोक", encoding="utf-8")
    artifact = PageArtifact(index=2, path=page_file)

    image, width, height = asyncio.run(
        rasterize(artifact, workspace, tool_settings.rasterize_command, 150, 10, run_tool)
    )

    assert image == workspace.page_dir(2) / "page.png"
    assert (width, height) == (64, 32)


def test_rasterize_failure(workspace, tool_settings):
    page_file = workspace.path("p.pdf")
    page_file.write_text("RASTER_FAIL", encoding="utf-8")

    with pytest.raises(ToolExecutionError) as exc_info:
        asyncio.run(
            rasterize(
                PageArtifact(index=0, path=page_file),
                workspace,
                tool_settings.rasterize_command,
                150,
                10,
                run_tool,
            )
        )
    assert exc_info.value.returncode == 99


def test_rasterize_rejects_broken_raster_source(workspace):
    broken = workspace.path("source.png")
    broken.write_bytes(b"\x89PNG\r\n\x1a\nnot really")

    with pytest.raises(ToolExecutionError):
        asyncio.run(
            rasterize(PageArtifact(0, broken, is_raster=True), workspace, "pdftoppm", 150, 10, run_tool)
        )


# --- recognize ---


def test_recognize_returns_raw_text(workspace, tool_settings):
    image = workspace.path("img.png")
    image.write_bytes(make_png("  धर्मक्षेत्रे कुरुक्षेत्रे\n\n"))

    text = asyncio.run(
        recognize(
            image, workspace, 0, ["san"], tool_settings.ocr_command, 1, 3, 10, run_tool
        )
    )

    assert text == "  धर्मक्षेत्रे कुरुक्षेत्रे\n\n"
    assert workspace.page_dir(0) / "text.txt" in workspace.files


def test_recognize_passes_languages(workspace):
    seen = []

    async def capture(invocation):
        seen.append(invocation)
        (workspace.page_dir(1) / "text.txt").write_text("x", encoding="utf-8")

    image = workspace.path("img.png")
    asyncio.run(recognize(image, workspace, 1, ["san", "eng"], "tesseract", 1, 6, 10, capture))

    argv = seen[0].argv
    assert argv[argv.index("-l") + 1] == "san+eng"
    assert argv[argv.index("--psm") + 1] == "6"


def test_recognize_timeout(workspace, tool_settings):
    image = workspace.path("img.png")
    image.write_bytes(make_png("OCR_SLEEP=30"))

    with pytest.raises(ToolTimeoutError):
        asyncio.run(
            recognize(image, workspace, 0, ["san"], tool_settings.ocr_command, 1, 3, 0.5, run_tool)
        )


def test_recognize_rejects_non_utf8_output(workspace, tool_settings):
    image = workspace.path("img.png")
    image.write_bytes(make_png("OCR_BAD_UTF8"))

    with pytest.raises(ToolExecutionError) as exc_info:
        asyncio.run(
            recognize(image, workspace, 0, ["san"], tool_settings.ocr_command, 1, 3, 10, run_tool)
        )
    assert exc_info.value.tool == "ocr"


# --- лимит пикселей Pillow ---


def test_oversized_raster_upload_is_input_error(workspace, monkeypatch):
    # 48x24 > 2 * 100 пикселей: Pillow бросает DecompressionBombError
    monkeypatch.setattr(Image, "MAX_IMAGE_PIXELS", 100)
    source = workspace.path("source.png")
    source.write_bytes(make_png("a"))

    with pytest.raises(InputError):
        asyncio.run(
            rasterize(PageArtifact(0, source, is_raster=True), workspace, "pdftoppm", 150, 10, run_tool)
        )


def test_oversized_rendered_page_is_tool_error(workspace, tool_settings, monkeypatch):
    monkeypatch.setattr(Image, "MAX_IMAGE_PIXELS", 100)
    page_file = workspace.path("p.pdf")
    page_file.write_text("श्लोक", encoding="utf-8")

    with pytest.raises(ToolExecutionError) as exc_info:
        asyncio.run(
            rasterize(
                PageArtifact(index=0, path=page_file),
                workspace,
                tool_settings.rasterize_command,
                150,
                10,
                run_tool,
            )
        )
    assert exc_info.value.tool == "rasterize"
