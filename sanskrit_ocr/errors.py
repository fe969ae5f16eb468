"""
Таксономия ошибок пайплайна.

Каждая ошибка несёт поле kind — имя, которое попадает в ответ API
(error_kind). Ошибки уровня страницы записываются в страницу,
ошибки уровня задачи переводят задачу в Failed.
"""

from typing import Optional


class PipelineError(Exception):
    """Базовая ошибка пайплайна."""

    kind = "PipelineError"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class InputError(PipelineError):
    """Исходный документ пустой, повреждён или не поддерживается."""

    kind = "InputError"


class ToolExecutionError(PipelineError):
    """
    Внешняя утилита завершилась с ненулевым кодом.

    Attributes:
        tool: имя этапа (split, rasterize, ocr)
        returncode: код выхода (None если процесс не удалось запустить)
        stderr: диагностика утилиты как есть
    """

    kind = "ToolExecutionError"

    def __init__(
        self,
        tool: str,
        message: str,
        returncode: Optional[int] = None,
        stderr: str = "",
    ):
        super().__init__(message)
        self.tool = tool
        self.returncode = returncode
        self.stderr = stderr


class ToolTimeoutError(PipelineError):
    """Вызов утилиты или вся задача не уложились в таймаут."""

    kind = "TimeoutError"

    def __init__(self, tool: str, timeout: float):
        super().__init__(f"{tool}: превышен таймаут {timeout:g} с, процесс остановлен")
        self.tool = tool
        self.timeout = timeout


class ResourceError(PipelineError):
    """Не удалось создать или удалить рабочую директорию задачи."""

    kind = "ResourceError"


class InternalError(PipelineError):
    """Непредвиденная ошибка оркестрации."""

    kind = "InternalError"
