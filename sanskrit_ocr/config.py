"""
Конфигурация Sanskrit OCR Service.

Все значения читаются из .env файла (или переменных окружения).
Для каждого параметра задан рабочий дефолт, .env нужен только для переопределения.

Единый префикс: OCR_
Документация по параметрам: .env.example
"""

import os
from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Настройки Sanskrit OCR Service.

    Читает переменные с префиксом OCR_ из .env файла.
    Объединяет все параметры: сервер, лимиты API, внешние утилиты, таймауты.
    """

    model_config = SettingsConfigDict(
        env_prefix="OCR_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # --- Сервер ---
    host: str = "0.0.0.0"
    port: int = 8080
    log_level: str = "INFO"

    # --- API: лимиты ---
    max_file_size_mb: int = 50

    # --- Пул воркеров ---
    # Глобальное число слотов C: сколько страниц обрабатывается одновременно
    # во всех задачах вместе
    max_workers: int = Field(default_factory=lambda: os.cpu_count() or 4, ge=1)
    # Параллелизм одной задачи, если клиент не указал свой
    default_concurrency: int = Field(default=4, ge=1)

    # --- Внешние утилиты ---
    # Строка команды разбирается через shlex: "pdftk" или "/usr/bin/python fake.py"
    split_command: str = "pdftk"
    rasterize_command: str = "pdftoppm"
    ocr_command: str = "tesseract"

    # --- Таймауты (секунды) ---
    split_timeout_seconds: float = Field(default=120.0, gt=0)
    rasterize_timeout_seconds: float = Field(default=60.0, gt=0)
    ocr_timeout_seconds: float = Field(default=300.0, gt=0)
    job_timeout_seconds: float = Field(default=3600.0, gt=0)

    # --- Rasterize: PDF страница -> PNG ---
    render_dpi: int = 300

    # --- OCR: Tesseract ---
    ocr_languages: list[str] = ["san"]
    ocr_oem: int = 1
    ocr_psm: int = 3

    # Повторный запуск страницы после ненулевого кода выхода утилиты
    page_retries: int = Field(default=0, ge=0)

    # --- Разбиение на части (POST /split) ---
    # Целевой размер части в КБ, страниц в части = цель / средний размер страницы
    chunk_target_kb: int = Field(default=500, ge=1)

    # --- Workspace ---
    # None = системная временная директория
    workspace_root: Optional[str] = None

    # --- Хранилище задач ---
    max_retained_jobs: int = Field(default=100, ge=1)


# Глобальный экземпляр настроек
settings = Settings()
