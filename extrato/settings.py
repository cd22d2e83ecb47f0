# extrato/settings.py
# Role: Process configuration read from environment variables (and a .env file).

"""
Runtime settings.

Values come from the environment; a local .env file is loaded first so
developers can keep OPENAI_API_KEY / API_KEY out of their shell profile.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from typing import Optional

from dotenv import load_dotenv

from db import DEFAULT_DATABASE_URL

DEFAULT_MODEL = "gpt-4.1-mini"
DEFAULT_BATCH_SIZE = 80
DEFAULT_INVESTMENT_INCOME_SLUG = "investimentos-rendimentos"


def _env_truthy(name: str, default: str = "0") -> bool:
    v = os.getenv(name, default)
    return str(v).strip().lower() in ("1", "true", "yes", "y", "on")


def _env_int(name: str, default: int) -> int:
    raw = (os.getenv(name) or "").strip()
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        raise ValueError(f"{name} must be an integer, got {raw!r}")


def _env_float(name: str, default: float) -> float:
    raw = (os.getenv(name) or "").strip()
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError:
        raise ValueError(f"{name} must be a number, got {raw!r}")


def _env_str(name: str) -> Optional[str]:
    value = (os.getenv(name) or "").strip()
    return value or None


@dataclass
class Settings:
    database_url: str = DEFAULT_DATABASE_URL

    # Shared API key expected in the x-api-key header; None disables the check (dev mode)
    api_key: Optional[str] = None

    openai_api_key: Optional[str] = None
    openai_model: str = DEFAULT_MODEL
    classifier_batch_size: int = DEFAULT_BATCH_SIZE
    classifier_timeout_seconds: float = 120.0
    classifier_max_retries: int = 2
    # Upper bound for a whole classification run (checked between batches)
    classifier_deadline_seconds: float = 900.0

    investment_income_slug: str = DEFAULT_INVESTMENT_INCOME_SLUG

    frontend_origin: str = "http://localhost:5173"
    max_upload_bytes: int = 10 * 1024 * 1024
    log_level: str = "INFO"
    seed_on_startup: bool = True

    @classmethod
    def from_env(cls, dotenv: bool = True) -> "Settings":
        if dotenv:
            load_dotenv()

        batch_size = _env_int("CLASSIFIER_BATCH_SIZE", DEFAULT_BATCH_SIZE)
        if batch_size < 1:
            raise ValueError("CLASSIFIER_BATCH_SIZE must be >= 1")

        return cls(
            database_url=_env_str("DATABASE_URL") or DEFAULT_DATABASE_URL,
            api_key=_env_str("API_KEY"),
            openai_api_key=_env_str("OPENAI_API_KEY"),
            openai_model=_env_str("OPENAI_MODEL") or DEFAULT_MODEL,
            classifier_batch_size=batch_size,
            classifier_timeout_seconds=_env_float("CLASSIFIER_TIMEOUT_SECONDS", 120.0),
            classifier_max_retries=_env_int("CLASSIFIER_MAX_RETRIES", 2),
            classifier_deadline_seconds=_env_float("CLASSIFIER_DEADLINE_SECONDS", 900.0),
            investment_income_slug=_env_str("INVESTMENT_INCOME_SLUG") or DEFAULT_INVESTMENT_INCOME_SLUG,
            frontend_origin=_env_str("FRONTEND_ORIGIN") or "http://localhost:5173",
            max_upload_bytes=_env_int("MAX_UPLOAD_BYTES", 10 * 1024 * 1024),
            log_level=(_env_str("LOG_LEVEL") or "INFO").upper(),
            seed_on_startup=_env_truthy("SEED_ON_STARTUP", "1"),
        )


def configure_logging(level: str = "INFO") -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
