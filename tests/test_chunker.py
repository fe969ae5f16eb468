"""Тесты разбиения PDF на части (pdftk dump_data + cat)."""

import asyncio

import pytest

from conftest import leftover_files, make_pdf, make_png, pdf_source
from sanskrit_ocr.errors import InputError, ToolExecutionError
from sanskrit_ocr.schemas import SourceDocument
from sanskrit_ocr.services.chunker import (
    pages_per_chunk,
    parse_page_count,
    plan_chunks,
    split_into_chunks,
)
from sanskrit_ocr.services.tool_runner import run_tool
from sanskrit_ocr.services.workspace import WorkspaceManager


def test_parse_page_count():
    dump = "InfoBegin\nInfoKey: Title\nNumberOfPages: 214\nPageMediaBegin\n"
    assert parse_page_count(dump) == 214
    assert parse_page_count("InfoBegin\n") == 0
    assert parse_page_count("NumberOfPages: many\n") == 0


@pytest.mark.parametrize(
    "size_bytes, pages, target_kb, expected",
    [
        # ~10 КБ на страницу: по 50 страниц в части
        (100 * 10 * 1024, 100, 500, 50),
        # Мелкие страницы считаются по 1 КБ, но не больше числа страниц
        (3 * 100, 3, 500, 3),
        # Страница больше цели: всё равно хотя бы одна
        (4 * 2048 * 1024, 4, 500, 1),
    ],
)
def test_pages_per_chunk(size_bytes, pages, target_kb, expected):
    assert pages_per_chunk(size_bytes, pages, target_kb) == expected


def test_plan_chunks_covers_all_pages():
    assert plan_chunks(10, 4) == [(1, 4), (5, 8), (9, 10)]
    assert plan_chunks(3, 3) == [(1, 3)]
    assert plan_chunks(1, 1) == [(1, 1)]


def split(source, workspace_root, tool_settings, target_kb=500):
    return asyncio.run(
        split_into_chunks(
            source,
            WorkspaceManager(str(workspace_root)),
            command=tool_settings.split_command,
            timeout=10,
            target_kb=target_kb,
            invoke=run_tool,
        )
    )


def test_split_into_chunks(workspace_root, tool_settings):
    # 10 страниц по ~1.1 КБ, цель 2 КБ: по 2 страницы в части
    pages = [f"{i}" + "x" * 1100 for i in range(10)]

    report = split(pdf_source(*pages), workspace_root, tool_settings, target_kb=2)

    assert report.total_pages == 10
    assert report.pages_per_chunk == 2
    assert [c.page_range for c in report.chunks] == ["1-2", "3-4", "5-6", "7-8", "9-10"]
    assert report.chunks[0].filename == "chunk_001_pages_1-2.pdf"
    assert report.chunks[-1].filename == "chunk_005_pages_9-10.pdf"
    assert all(c.file_size > 2200 for c in report.chunks)
    assert leftover_files(workspace_root) == []


def test_small_document_is_single_chunk(workspace_root, tool_settings):
    report = split(pdf_source("क", "ख", "ग"), workspace_root, tool_settings)

    assert report.total_pages == 3
    assert [c.page_range for c in report.chunks] == ["1-3"]


def test_split_rejects_non_pdf(workspace_root, tool_settings):
    with pytest.raises(InputError):
        split(SourceDocument("scan.png", make_png("a")), workspace_root, tool_settings)
    assert leftover_files(workspace_root) == []


def test_split_without_pages(workspace_root, tool_settings):
    with pytest.raises(InputError):
        split(SourceDocument("empty.pdf", make_pdf()), workspace_root, tool_settings)
    assert leftover_files(workspace_root) == []


@pytest.mark.parametrize(
    "directive, stderr",
    [
        ("SPLIT_FAIL", "Error: Unexpected Exception in open_reader()\n"),
        ("CAT_FAIL", "Error: Invalid page range\n"),
    ],
)
def test_pdftk_failure_keeps_stderr(workspace_root, tool_settings, directive, stderr):
    with pytest.raises(ToolExecutionError) as exc_info:
        split(pdf_source("क", directive), workspace_root, tool_settings)

    assert exc_info.value.stderr == stderr
    assert leftover_files(workspace_root) == []
