"""Logging configuration"""

import logging
import time
import uuid
from collections.abc import Awaitable, Callable
from contextvars import ContextVar
from typing import Any

from fastapi import Request, Response
from rich.console import Console
from rich.logging import RichHandler

from chatvibes.api.core.config import Settings

SENSITIVE_KEYS = ("password", "token", "secret", "key", "authorization")
REDACTED = "[REDACTED]"

correlation_id_var: ContextVar[str] = ContextVar("correlation_id", default="-")

logger = logging.getLogger(__name__)


class CorrelationIdFilter(logging.Filter):
    """Attach the current request's correlation id to every record."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.correlation_id = correlation_id_var.get()
        return True


def setup_logging(settings: Settings) -> None:
    """Configure application logging with Rich handler"""

    level = getattr(logging, settings.log_level, logging.INFO)

    console = Console(force_terminal=True, width=120)
    rich_handler = RichHandler(
        console=console,
        show_time=True,
        show_level=True,
        show_path=False,
        markup=False,
        rich_tracebacks=True,
        tracebacks_show_locals=False,
        tracebacks_width=120,
    )
    rich_handler.setFormatter(
        logging.Formatter(fmt="[%(correlation_id)s] %(message)s", datefmt="[%Y-%m-%d %H:%M:%S]")
    )
    rich_handler.addFilter(CorrelationIdFilter())

    # force=True: uvicorn configures the root logger first
    logging.basicConfig(
        level=level,
        format="%(message)s",
        datefmt="[%Y-%m-%d %H:%M:%S]",
        handlers=[rich_handler],
        force=True,
    )

    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("asyncpg").setLevel(logging.WARNING)

    logger.info(f"Logging: {settings.log_level} | Env: {settings.environment}")


def redact_sensitive(data: Any) -> Any:
    """Return a copy of *data* with credential-looking keys masked.

    Matching is a case-insensitive substring test, so ``apiKey`` and
    ``refresh_token`` are both caught. Nested dicts and lists are walked.
    """
    if isinstance(data, dict):
        return {
            k: REDACTED
            if any(s in str(k).lower() for s in SENSITIVE_KEYS)
            else redact_sensitive(v)
            for k, v in data.items()
        }
    if isinstance(data, list):
        return [redact_sensitive(item) for item in data]
    return data


async def correlation_id_middleware(
    request: Request, call_next: Callable[[Request], Awaitable[Response]]
) -> Response:
    """Tag the request with a correlation id and log its completion."""
    correlation_id = (
        request.headers.get("x-correlation-id")
        or request.headers.get("x-request-id")
        or str(uuid.uuid4())
    )
    token = correlation_id_var.set(correlation_id)
    start = time.perf_counter()
    try:
        response = await call_next(request)
        duration_ms = int((time.perf_counter() - start) * 1000)
        log = logger.warning if response.status_code >= 400 else logger.info
        log(
            f"{request.method} {request.url.path} -> {response.status_code} ({duration_ms}ms)"
        )
        response.headers["X-Correlation-ID"] = correlation_id
        return response
    finally:
        correlation_id_var.reset(token)
