"""Audit logging for the reservations service.

Each service writes ``<log_dir>/<service>.log``. Request lines come from
the HTTP middleware; booking, cancellation, conflict and scan events come
from the ``roombook`` core loggers, which share the same file handler.
"""
from __future__ import annotations

import logging
from pathlib import Path
from time import perf_counter
from typing import Optional

from fastapi import FastAPI, Request

from .config import get_settings

AUDIT_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(message)s"
CORE_LOGGER = "roombook"


def _log_dir() -> Path:
    path = Path(get_settings().log_dir)
    path.mkdir(parents=True, exist_ok=True)
    return path


def _status_level(status_code: int) -> int:
    if status_code >= 500:
        return logging.ERROR
    if status_code >= 400:
        return logging.WARNING
    return logging.INFO


def build_audit_logger(service_name: str) -> logging.Logger:
    logger = logging.getLogger(f"audit.{service_name}")
    if logger.handlers:
        return logger

    handler = logging.FileHandler(_log_dir() / f"{service_name}.log")
    handler.setFormatter(logging.Formatter(AUDIT_FORMAT, datefmt="%Y-%m-%d %H:%M:%S"))
    logger.setLevel(logging.INFO)
    logger.addHandler(handler)

    core = logging.getLogger(CORE_LOGGER)
    if core.level == logging.NOTSET:
        core.setLevel(logging.INFO)
    core.addHandler(handler)
    return logger


def add_audit_middleware(app: FastAPI, service_name: str) -> None:
    logger = build_audit_logger(service_name)

    @app.middleware("http")
    async def audit_logger(request: Request, call_next):  # type: ignore[override]
        started = perf_counter()
        response = await call_next(request)
        elapsed_ms = (perf_counter() - started) * 1000
        client_ip: Optional[str] = request.client.host if request.client else None
        target = request.url.path
        if request.url.query:
            target = f"{target}?{request.url.query}"
        logger.log(
            _status_level(response.status_code),
            "%s %s | status=%s | identity=%s | client=%s | duration=%.2fms",
            request.method,
            target,
            response.status_code,
            getattr(request.state, "identity_id", None) or "anonymous",
            client_ip or "unknown",
            elapsed_ms,
        )
        return response
