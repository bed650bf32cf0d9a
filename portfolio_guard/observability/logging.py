# Portfolio Guard - AI Access-Control & Context-Assembly Engine
# Copyright (c) 2026 George Scott Foley
# ORCID: 0009-0006-4957-0540
# Email: Georgescottfoley@proton.me
# Licensed under the MIT License - see LICENSE file for details

"""
Structured Logging

Every log line carries the context of the call that produced it: the
request id, the chat session, the client IP and, for admin calls, the
actor. Two output formats are supported:

- json:  one object per line for log shippers (production)
- human: aligned, optionally colored lines (development)

Admin mutations (reflinks, blacklist, content sources) are written to a
dedicated audit logger so they can be routed separately.
"""

import json
import logging
import sys
import traceback
from contextvars import ContextVar
from dataclasses import asdict, dataclass, replace
from datetime import UTC, datetime
from typing import Any

from pydantic import BaseModel


@dataclass(frozen=True)
class LogContext:
    request_id: str | None = None
    session_id: str | None = None
    client_ip: str | None = None
    actor: str | None = None

    def fields(self) -> dict[str, str]:
        return {k: v for k, v in asdict(self).items() if v}


_context: ContextVar[LogContext] = ContextVar("log_context", default=LogContext())


def set_request_context(
    request_id: str | None = None,
    session_id: str | None = None,
    client_ip: str | None = None,
    actor: str | None = None,
):
    """Merge the given values into the current context; None leaves a field as is."""
    updates = {
        name: value
        for name, value in (
            ("request_id", request_id),
            ("session_id", session_id),
            ("client_ip", client_ip),
            ("actor", actor),
        )
        if value
    }
    if updates:
        _context.set(replace(_context.get(), **updates))


def clear_request_context():
    _context.set(LogContext())


def get_request_context() -> dict[str, str | None]:
    return asdict(_context.get())


# ============================================================
# MASKING
# ============================================================

REDACTED = "[REDACTED]"

# Key fragments that mark a secret
_SECRET_MARKERS = (
    "password",
    "secret",
    "admin_token",
    "x-admin-token",
    "api_key",
    "authorization",
    "webhook_url",
    "smtp_",
    "email",
)

_MAX_DEPTH = 8


def _is_secret(key: str) -> bool:
    key = key.lower()
    if key in ("smtp_host", "smtp_port"):
        return False
    return any(marker in key for marker in _SECRET_MARKERS)


def mask_sensitive_data(data: Any, _depth: int = 0) -> Any:
    """
    Return a copy of data with secret-looking values replaced.

    Dict keys are matched against known secret names. Pydantic models
    are dumped first. Token counters (tokens, token_limit, ...) are
    left alone; only admin tokens are secrets here.
    """
    if _depth > _MAX_DEPTH:
        return "[TRUNCATED]"
    if isinstance(data, BaseModel):
        data = data.model_dump(mode="json")
    if isinstance(data, dict):
        return {
            k: REDACTED if _is_secret(str(k)) else mask_sensitive_data(v, _depth + 1)
            for k, v in data.items()
        }
    if isinstance(data, list | tuple):
        return [mask_sensitive_data(v, _depth + 1) for v in data]
    if isinstance(data, str) and data.startswith("Bearer "):
        return f"Bearer {REDACTED}"
    return data


# ============================================================
# FORMATTERS
# ============================================================

# Attributes every LogRecord has; anything else came in through extra=
_STANDARD_ATTRS = frozenset(vars(logging.makeLogRecord({}))) | {"message", "asctime"}


def _extra_fields(record: logging.LogRecord) -> dict[str, Any]:
    return {k: v for k, v in vars(record).items() if k not in _STANDARD_ATTRS}


class JSONFormatter(logging.Formatter):
    """Single-line JSON, context fields at the top level."""

    def __init__(self, mask_sensitive: bool = True):
        super().__init__()
        self.mask_sensitive = mask_sensitive

    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "location": f"{record.module}:{record.funcName}:{record.lineno}",
        }
        payload.update(_context.get().fields())

        if record.exc_info and record.exc_info[0] is not None:
            exc_type, exc, tb = record.exc_info
            payload["error"] = {
                "type": exc_type.__name__,
                "message": str(exc),
                "trace": "".join(traceback.format_exception(exc_type, exc, tb)),
            }

        extra = _extra_fields(record)
        if extra:
            payload["extra"] = mask_sensitive_data(extra) if self.mask_sensitive else extra

        return json.dumps(payload, default=str)


class HumanFormatter(logging.Formatter):
    """Readable one-liners with short context tags, colored by level."""

    COLORS = {
        logging.DEBUG: "\033[36m",
        logging.INFO: "\033[32m",
        logging.WARNING: "\033[33m",
        logging.ERROR: "\033[31m",
        logging.CRITICAL: "\033[35m",
    }
    RESET = "\033[0m"

    def __init__(self, use_colors: bool = True):
        super().__init__()
        self.use_colors = use_colors

    def _tags(self) -> str:
        ctx = _context.get()
        tags = []
        if ctx.request_id:
            tags.append(f"req={ctx.request_id[:8]}")
        if ctx.client_ip:
            tags.append(f"ip={ctx.client_ip}")
        if ctx.session_id:
            tags.append(f"session={ctx.session_id[:8]}")
        if ctx.actor:
            tags.append(f"actor={ctx.actor}")
        return f"[{' '.join(tags)}] " if tags else ""

    def format(self, record: logging.LogRecord) -> str:
        when = datetime.fromtimestamp(record.created, UTC).strftime("%H:%M:%S.%f")[:-3]
        level = f"{record.levelname:8}"
        if self.use_colors and record.levelno in self.COLORS:
            level = f"{self.COLORS[record.levelno]}{level}{self.RESET}"

        line = f"{when} {level} {record.name}: {self._tags()}{record.getMessage()}"
        if record.exc_info:
            line += "\n" + self.formatException(record.exc_info)
        return line


def configure_logging(
    level: str = "INFO",
    format: str = "json",  # "json" or "human"
    mask_sensitive: bool = True,
    use_colors: bool = True,
):
    """
    Install a single stdout handler on the root logger.

    Args:
        level: Logging level name
        format: "json" for production, "human" for development
        mask_sensitive: Redact secrets in extra fields (json only)
        use_colors: Color the level name (human only)
    """
    formatter: logging.Formatter
    if format == "json":
        formatter = JSONFormatter(mask_sensitive=mask_sensitive)
    else:
        formatter = HumanFormatter(use_colors=use_colors and sys.stdout.isatty())

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(formatter)

    root = logging.getLogger()
    root.handlers = [handler]
    root.setLevel(level.upper())

    for noisy in ("httpx", "httpcore", "asyncio", "uvicorn.access"):
        logging.getLogger(noisy).setLevel(logging.WARNING)

    return root


# ============================================================
# AUDIT
# ============================================================


class AuditLogger:
    """
    Records admin mutations.

    Each entry names the action, the resource it touched and who did
    it (the actor from the request context, "system" otherwise).
    """

    def __init__(self, name: str = "portfolio_guard.audit"):
        self._logger = logging.getLogger(name)

    def log(
        self,
        action: str,
        resource_type: str,
        resource_id: str | None = None,
        details: dict[str, Any] | None = None,
        success: bool = True,
    ):
        actor = _context.get().actor or "system"
        self._logger.info(
            f"AUDIT: {actor} {action} {resource_type} {resource_id or ''}".rstrip(),
            extra={
                "audit": {
                    "action": action,
                    "resource_type": resource_type,
                    "resource_id": resource_id,
                    "actor": actor,
                    "success": success,
                    "details": mask_sensitive_data(details or {}),
                }
            },
        )

    def create(self, resource_type: str, resource_id: str, details: dict | None = None):
        self.log("create", resource_type, resource_id, details)

    def update(self, resource_type: str, resource_id: str, details: dict | None = None):
        self.log("update", resource_type, resource_id, details)

    def delete(self, resource_type: str, resource_id: str, details: dict | None = None):
        self.log("delete", resource_type, resource_id, details)


audit_logger = AuditLogger()


def log_request_end(
    method: str,
    path: str,
    request_id: str,
    status_code: int,
    duration_ms: float,
):
    """Log request completion; 4xx at WARNING, 5xx at ERROR."""
    if status_code >= 500:
        level = logging.ERROR
    elif status_code >= 400:
        level = logging.WARNING
    else:
        level = logging.INFO

    logging.getLogger("portfolio_guard.request").log(
        level,
        f"{method} {path} -> {status_code} ({duration_ms:.1f}ms)",
        extra={"status_code": status_code, "duration_ms": round(duration_ms, 1)},
    )


__all__ = [
    "LogContext",
    "set_request_context",
    "clear_request_context",
    "get_request_context",
    "configure_logging",
    "JSONFormatter",
    "HumanFormatter",
    "AuditLogger",
    "audit_logger",
    "log_request_end",
    "mask_sensitive_data",
]
