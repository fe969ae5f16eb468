"""
Распознавание текста страницы через Tesseract.

Один вызов tesseract на изображение страницы:
    tesseract page.png page_0003/text -l san --oem 1 --psm 3

Tesseract сам дописывает .txt к выходному имени. Текст возвращается
как есть, без обрезки и нормализации.
"""

import logging
from pathlib import Path

from sanskrit_ocr.errors import ToolExecutionError
from sanskrit_ocr.services.tool_runner import InvokeFn, build_invocation
from sanskrit_ocr.services.workspace import Workspace

logger = logging.getLogger(__name__)

TEXT_BASENAME = "text"


async def recognize(
    image_path: Path,
    workspace: Workspace,
    index: int,
    languages: list[str],
    command: str,
    oem: int,
    psm: int,
    timeout: float,
    invoke: InvokeFn,
) -> str:
    """
    Распознаёт текст на изображении страницы.

    Args:
        image_path: изображение страницы
        workspace: workspace задачи
        index: номер страницы (определяет директорию для вывода)
        languages: языки Tesseract, объединяются через "+"
        command: команда OCR (tesseract)
        oem: режим движка Tesseract
        psm: режим сегментации страницы
        timeout: жёсткий таймаут вызова
        invoke: примитив запуска утилит

    Returns:
        str: распознанный текст страницы

    Raises:
        ToolExecutionError: ненулевой код выхода, нет выходного файла или он не в UTF-8
        ToolTimeoutError: превышен таймаут, процесс остановлен
    """
    page_dir = workspace.page_dir(index)
    output_base = page_dir / TEXT_BASENAME
    lang_string = "+".join(languages)

    invocation = build_invocation(
        "ocr",
        command,
        [image_path, output_base, "-l", lang_string, "--oem", oem, "--psm", psm],
        cwd=page_dir,
        timeout=timeout,
    )
    await invoke(invocation)

    text_path = output_base.with_suffix(".txt")
    try:
        text = text_path.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as e:
        raise ToolExecutionError(
            "ocr",
            f"Не удалось прочитать результат OCR страницы {index}: {e}",
        ) from e

    workspace.track(text_path)
    logger.debug(f"   OCR стр.{index}: {len(text)} симв.")
    return text
