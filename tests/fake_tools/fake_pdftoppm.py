"""
Заменитель pdftoppm для тестов:
`fake_pdftoppm.py -png -r <dpi> -singlefile <page.pdf> <out_base>`.

Пишет <out_base>.png — настоящий PNG, текст страницы кладётся
в tEXt чанк "content" (его читает fake_tesseract).

Директивы в тексте страницы:
    RASTER_FAIL    — stderr + код выхода 99
    RASTER_SLEEP=N — пауза N секунд
"""

import re
import sys
import time
from pathlib import Path

from PIL import Image
from PIL.PngImagePlugin import PngInfo


def main() -> int:
    args = sys.argv[1:]
    page_path, out_base = args[-2], args[-1]

    content = Path(page_path).read_text(encoding="utf-8")

    sleep = re.search(r"RASTER_SLEEP=([\d.]+)", content)
    if sleep:
        time.sleep(float(sleep.group(1)))

    if "RASTER_FAIL" in content:
        print("Syntax Error: Couldn't read xref table", file=sys.stderr)
        return 99

    info = PngInfo()
    info.add_itxt("content", content)
    Image.new("L", (64, 32), color=255).save(f"{out_base}.png", pnginfo=info)
    return 0


if __name__ == "__main__":
    sys.exit(main())
