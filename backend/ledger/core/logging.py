# Structured JSON logging for the API and the payout jobs.
# Every request gets one line with route, status, latency and a request id;
# domain code logs dotted event names (payout.batch.created, ...) with
# extra= fields that land as top-level JSON keys.

from __future__ import annotations

import json
import logging
import os
from datetime import datetime, timezone
from time import monotonic
from typing import Any
from uuid import uuid4

from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware


REQUEST_ID_HEADER = "X-Request-ID"

# Attributes every LogRecord carries; anything else came in through extra=.
_RECORD_ATTRS = set(vars(logging.makeLogRecord({}))) | {"message", "asctime", "taskName"}

# Request fields are emitted even when empty so log queries can rely on them.
_REQUEST_FIELDS = ("request_id", "route", "method", "status_code", "duration_ms", "error_code")


class JsonLogFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        for key, value in record.__dict__.items():
            if key in _RECORD_ATTRS:
                continue
            if value is None and key not in _REQUEST_FIELDS:
                continue
            payload[key] = value
        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)
        # Decimals, dates and enums are rendered as strings.
        return json.dumps(payload, separators=(",", ":"), ensure_ascii=True, default=str)


def get_structured_logger(name: str) -> logging.Logger:
    logger = logging.getLogger(name)
    if logger.handlers:
        return logger
    handler = logging.StreamHandler()
    handler.setFormatter(JsonLogFormatter())
    logger.addHandler(handler)
    logger.setLevel(os.getenv("LOG_LEVEL", "INFO").upper())
    logger.propagate = False
    return logger


logger = get_structured_logger("ledger.api")


def _request_fields(request: Request, started: float) -> dict[str, Any]:
    route = request.scope.get("route")
    return {
        "request_id": getattr(request.state, "request_id", None),
        "route": getattr(route, "path", None) or request.url.path,
        "path": request.url.path,
        "method": request.method,
        "duration_ms": round((monotonic() - started) * 1000.0, 2),
    }


class APILoggingMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):
        started = monotonic()
        request.state.request_id = request.headers.get(REQUEST_ID_HEADER) or uuid4().hex
        try:
            response = await call_next(request)
        except Exception:
            logger.exception(
                "request.failed",
                extra={
                    **_request_fields(request, started),
                    "status_code": 500,
                    "error_code": "unhandled_exception",
                },
            )
            raise

        response.headers[REQUEST_ID_HEADER] = request.state.request_id
        logger.info(
            "request.completed",
            extra={
                **_request_fields(request, started),
                "status_code": response.status_code,
                "error_code": response.headers.get("X-Error-Code"),
            },
        )
        return response
