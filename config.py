"""
Configuration

Settings are read from the environment. Logging goes through structlog.
"""
import logging
import os
from dataclasses import dataclass, field
from typing import List

import structlog


def _split(value: str) -> List[str]:
    return [part.strip() for part in value.split(",") if part.strip()]


@dataclass(frozen=True)
class Settings:
    database_url: str = ""
    database_name: str = "cart_service"
    storage: str = "memory"
    auth_service_url: str = "http://localhost:3001/api/auth"
    auth_mode: str = "remote"
    http_timeout: float = 5.0
    log_level: str = "INFO"
    log_format: str = "json"
    cors_origins: List[str] = field(default_factory=lambda: ["*"])
    port: int = 8000

    @classmethod
    def from_env(cls) -> "Settings":
        database_url = os.getenv("DATABASE_URL", "")
        return cls(
            database_url=database_url,
            database_name=os.getenv("DATABASE_NAME", "cart_service"),
            storage=os.getenv("CART_STORAGE", "mongo" if database_url else "memory").lower(),
            auth_service_url=os.getenv("AUTH_SERVICE_URL", "http://localhost:3001/api/auth").rstrip("/"),
            auth_mode=os.getenv("AUTH_MODE", "remote").lower(),
            http_timeout=float(os.getenv("HTTP_TIMEOUT", "5.0")),
            log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
            log_format=os.getenv("LOG_FORMAT", "json").lower(),
            cors_origins=_split(os.getenv("CORS_ORIGINS", "*")),
            port=int(os.getenv("PORT", "8000")),
        )


def configure_logging(level: str = "INFO", fmt: str = "json") -> None:
    numeric = logging.getLevelName(level)
    if not isinstance(numeric, int):
        numeric = logging.INFO
    renderer = (
        structlog.dev.ConsoleRenderer()
        if fmt == "console"
        else structlog.processors.JSONRenderer()
    )
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.format_exc_info,
            renderer,
        ],
        wrapper_class=structlog.make_filtering_bound_logger(numeric),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=False,
    )
