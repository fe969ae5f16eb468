"""
Растеризация страницы PDF в PNG через pdftoppm.

Один вызов утилиты на страницу, результат пишется в директорию страницы:
    page_0003/page.png

Готовое изображение проверяется через Pillow (заголовок читается,
размеры попадают в результат страницы).
"""

import logging
from pathlib import Path

from PIL import Image, UnidentifiedImageError

from sanskrit_ocr.errors import InputError, ToolExecutionError
from sanskrit_ocr.schemas import PageArtifact
from sanskrit_ocr.services.tool_runner import InvokeFn, build_invocation
from sanskrit_ocr.services.workspace import Workspace

logger = logging.getLogger(__name__)

IMAGE_BASENAME = "page"


async def rasterize(
    page: PageArtifact,
    workspace: Workspace,
    command: str,
    dpi: int,
    timeout: float,
    invoke: InvokeFn,
) -> tuple[Path, int, int]:
    """
    Превращает файл страницы в изображение для OCR.

    Args:
        page: файл страницы после разбиения
        workspace: workspace задачи
        command: команда растеризации (pdftoppm)
        dpi: разрешение рендеринга
        timeout: таймаут вызова
        invoke: примитив запуска утилит

    Returns:
        tuple: (путь к изображению, ширина, высота)

    Raises:
        InputError: загруженное изображение превышает лимит пикселей Pillow
        ToolExecutionError: утилита упала или не создала читаемое изображение
        ToolTimeoutError: превышен таймаут
    """
    if page.is_raster:
        try:
            width, height = read_image_size(page.path)
        except Image.DecompressionBombError as e:
            raise InputError(f"Изображение слишком большое для распознавания: {e}") from e
        return page.path, width, height

    page_dir = workspace.page_dir(page.index)
    output_base = page_dir / IMAGE_BASENAME

    invocation = build_invocation(
        "rasterize",
        command,
        ["-png", "-r", dpi, "-singlefile", page.path, output_base],
        cwd=page_dir,
        timeout=timeout,
    )
    await invoke(invocation)

    # -singlefile: pdftoppm не добавляет номер страницы к имени
    image_path = output_base.with_suffix(".png")
    if not image_path.is_file():
        raise ToolExecutionError(
            "rasterize",
            f"pdftoppm не создал изображение страницы {page.index}",
        )
    workspace.track(image_path)

    try:
        width, height = read_image_size(image_path)
    except Image.DecompressionBombError as e:
        raise ToolExecutionError(
            "rasterize",
            f"Страница {page.index} при {dpi} dpi превышает лимит пикселей: {e}",
        ) from e
    return image_path, width, height


def read_image_size(path: Path) -> tuple[int, int]:
    """
    Проверяет изображение и возвращает его размеры.

    Image.DecompressionBombError не перехватывается: слишком большое
    изображение вызывающая сторона классифицирует сама.

    Raises:
        ToolExecutionError: файл не является изображением
    """
    try:
        with Image.open(path) as img:
            width, height = img.size
            img.verify()
    except (UnidentifiedImageError, OSError, SyntaxError) as e:
        raise ToolExecutionError(
            "rasterize",
            f"Некорректное изображение {path.name}: {e}",
        ) from e
    return width, height
