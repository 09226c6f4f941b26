"""Configuración de logging estructurado para la aplicación."""

from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any

_MAX_BYTES = 10 * 1024 * 1024
_BACKUP_COUNT = 5


class JSONFormatter(logging.Formatter):
    """Serializa cada registro como una línea JSON, incluyendo los campos de `extra`."""

    _RESERVED = frozenset(
        logging.LogRecord(
            name="", level=0, pathname="", lineno=0, msg="", args=None, exc_info=None
        ).__dict__
    ) | {"message", "asctime", "taskName"}

    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(
                timespec="milliseconds"
            ),
            "level": record.levelname,
            "logger": record.name,
            "event": record.getMessage(),
        }

        for key, value in record.__dict__.items():
            if key in self._RESERVED:
                continue
            payload[key] = value

        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)

        return json.dumps(payload, ensure_ascii=False, default=str)


def _rotating_handler(path: Path) -> RotatingFileHandler:
    path.parent.mkdir(parents=True, exist_ok=True)
    handler = RotatingFileHandler(
        path,
        maxBytes=_MAX_BYTES,
        backupCount=_BACKUP_COUNT,
        encoding="utf-8",
    )
    handler.setFormatter(JSONFormatter())
    return handler


def configure_logging(
    level: int = logging.INFO,
    *,
    log_file: str | None = None,
    per_logger_files: dict[str, str] | None = None,
) -> None:
    """Configura stdout en JSON y, opcionalmente, archivos rotativos."""
    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    root_logger.handlers.clear()

    handler = logging.StreamHandler()
    handler.setFormatter(JSONFormatter())
    root_logger.addHandler(handler)

    if log_file:
        try:
            root_logger.addHandler(_rotating_handler(Path(log_file)))
        except OSError:
            root_logger.exception(
                "logging.file_handler_failed", extra={"log_file": log_file}
            )

    for logger_name, file_path in (per_logger_files or {}).items():
        try:
            logging.getLogger(logger_name).addHandler(_rotating_handler(Path(file_path)))
        except OSError:
            root_logger.exception(
                "logging.dedicated_handler_failed",
                extra={"target_logger": logger_name, "file": file_path},
            )


def resolve_log_level(value: str | int | None, *, default: int = logging.INFO) -> int:
    """Convierte valores configurables a constantes numéricas de logging."""
    if isinstance(value, int):
        return value
    if isinstance(value, str):
        candidate = value.strip()
        if not candidate:
            return default
        if candidate.isdigit():
            return int(candidate)
        mapped = logging.getLevelName(candidate.upper())
        if isinstance(mapped, int):
            return mapped
    return default


def get_logger(name: str) -> logging.Logger:
    """Retorna un logger hijo con el nombre solicitado."""
    return logging.getLogger(name)


def log_event(
    logger: logging.Logger, message: str, *, level: int = logging.INFO, **extra: Any
) -> None:
    """Helper para enviar eventos con campos adicionales en formato JSON."""
    logger.log(level, message, extra=extra or None)
