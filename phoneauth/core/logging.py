"""
Centralized logging for phoneauth.

- Stdlib logging + structlog (JSON in production, dev console otherwise).
- Sensitive fields redaction, phone masking.
- Context (request_id, client_ip, user_agent) via contextvars.
- ASGI middleware for request context & access logs.
- Audit logger for auth/security events.
"""

from __future__ import annotations

import logging
import sys
import time
import uuid
from contextlib import contextmanager
from contextvars import ContextVar, Token
from typing import Any, Dict, Optional, Tuple

import structlog

from phoneauth.core.config import settings

# ---------- Context vars ----------
_ctx_request_id: ContextVar[str] = ContextVar("request_id", default="")
_ctx_client_ip: ContextVar[str] = ContextVar("client_ip", default="")
_ctx_user_agent: ContextVar[str] = ContextVar("user_agent", default="")

_CONFIGURED = False

# ---------- Secrets redaction ----------
_SECRET_KEYS = ("secret", "password", "token", "api_key", "digest", "salt")
# plaintext OTP keys; matched whole so OTP_CODE_LENGTH or error_code stay readable
_SECRET_EXACT_KEYS = ("code", "otp_code", "dev_code", "devcode", "otp_dev_code")


def _mask_secret_value(v: Any) -> Any:
    s = str(v)
    if len(s) <= 6:
        return "***"
    return s[:3] + "***" + s[-3:]


def redact_secrets(data: Any) -> Any:
    if isinstance(data, dict):
        out: Dict[str, Any] = {}
        for k, v in data.items():
            lk = str(k).lower()
            if lk in _SECRET_EXACT_KEYS or any(x in lk for x in _SECRET_KEYS):
                out[k] = _mask_secret_value(v)
            else:
                out[k] = redact_secrets(v)
        return out
    if isinstance(data, list):
        return [redact_secrets(v) for v in data]
    if isinstance(data, tuple):
        return tuple(redact_secrets(v) for v in data)
    return data


def mask_phone(phone: Optional[str]) -> str:
    """'+15551234567' -> '+1******4567'."""
    if not phone:
        return ""
    if len(phone) <= 6:
        return "***"
    return phone[:2] + "*" * (len(phone) - 6) + phone[-4:]


# ---------- structlog processors ----------
def _inject_context(_, __, event_dict):
    rid = _ctx_request_id.get()
    cip = _ctx_client_ip.get()
    ua = _ctx_user_agent.get()
    if rid:
        event_dict.setdefault("request_id", rid)
    if cip:
        event_dict.setdefault("client_ip", cip)
    if ua:
        event_dict.setdefault("user_agent", ua)
    return event_dict


def _redact_processor(_, __, event_dict):
    return redact_secrets(event_dict)


def _add_app(_, __, event_dict):
    event_dict["app"] = settings.APP_NAME
    event_dict["version"] = settings.VERSION
    return event_dict


def _configure_structlog(json_output: bool) -> None:
    processors = [
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        _inject_context,
        _redact_processor,
        _add_app,
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
    ]
    renderer = structlog.processors.JSONRenderer() if json_output else structlog.dev.ConsoleRenderer()
    processors.append(renderer)

    structlog.configure(
        processors=processors,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )


# ---------- Public API ----------
def setup_logging() -> None:
    """Configure stdlib root logging and structlog once per process."""
    global _CONFIGURED
    if _CONFIGURED:
        return

    level = (settings.LOG_LEVEL or "INFO").upper()
    logging.basicConfig(format="%(message)s", stream=sys.stdout, level=level)
    for name in ("uvicorn", "uvicorn.error", "uvicorn.access"):
        logging.getLogger(name).propagate = False

    json_output = settings.is_production or settings.LOG_FORMAT.lower() == "json"
    _configure_structlog(json_output and not settings.DEBUG)

    get_logger(__name__).info(
        "logging_initialized",
        level=level,
        environment=settings.ENVIRONMENT,
        settings=settings.dump_settings_safe(),
    )
    _CONFIGURED = True


def get_logger(name: str):
    return structlog.get_logger(name)


@contextmanager
def bound_context(
    request_id: Optional[str] = None,
    client_ip: Optional[str] = None,
    user_agent: Optional[str] = None,
):
    tokens: list[Tuple[ContextVar[str], Token]] = []
    if request_id is not None:
        tokens.append((_ctx_request_id, _ctx_request_id.set(request_id)))
    if client_ip is not None:
        tokens.append((_ctx_client_ip, _ctx_client_ip.set(client_ip)))
    if user_agent is not None:
        tokens.append((_ctx_user_agent, _ctx_user_agent.set(user_agent)))
    try:
        yield
    finally:
        for var, tok in reversed(tokens):
            var.reset(tok)


def current_request_id() -> str:
    return _ctx_request_id.get()


# ---------- Audit Logger ----------
class AuditLogger:
    def __init__(self):
        self.logger = get_logger("audit")

    def log_auth_success(self, user_id: int | str, ip_address: str | None, user_agent: str | None) -> None:
        self.logger.info("auth_success", user_id=user_id, ip_address=ip_address, user_agent=user_agent)

    def log_auth_failure(self, username: str, ip_address: str | None, reason: str) -> None:
        self.logger.warning("auth_failure", username=username, ip_address=ip_address, reason=reason)

    def log_security_event(self, event: str, details: dict[str, Any]) -> None:
        self.logger.warning("security_event", action=event, **redact_secrets(details))

    def log_system_event(self, event: str, details: dict[str, Any] | None = None) -> None:
        self.logger.info("system_event", action=event, **redact_secrets(details or {}))


audit_logger = AuditLogger()


# ---------- ASGI middleware ----------
class LoggingContextMiddleware:
    """
    - Generates/reads X-Request-ID
    - Binds request context
    - Logs start/end with duration and status
    """

    def __init__(self, app):
        self.app = app

    async def __call__(self, scope, receive, send):
        if scope["type"] != "http":
            return await self.app(scope, receive, send)

        headers = {k.decode().lower(): v.decode() for k, v in scope.get("headers", [])}
        request_id = headers.get("x-request-id") or headers.get("x-correlation-id") or str(uuid.uuid4())
        client = scope.get("client") or ("", 0)
        client_ip = client[0] if isinstance(client, (list, tuple)) and client else ""
        user_agent = headers.get("user-agent", "")
        path = scope.get("path", "")
        method = scope.get("method", "")

        start = time.perf_counter()
        status_code_holder = {"code": 500}

        async def _send(message):
            if message["type"] == "http.response.start":
                status_code_holder["code"] = message.get("status", 200)
                message.setdefault("headers", [])
                message["headers"] = list(message["headers"]) + [(b"x-request-id", request_id.encode())]
            await send(message)

        with bound_context(request_id=request_id, client_ip=client_ip, user_agent=user_agent):
            lg = get_logger("http")
            lg.debug("request_start", method=method, path=path)
            try:
                await self.app(scope, receive, _send)
            finally:
                dur_ms = (time.perf_counter() - start) * 1000.0
                lg.info(
                    "request_end",
                    method=method,
                    path=path,
                    status=status_code_holder["code"],
                    duration_ms=round(dur_ms, 2),
                )


__all__ = [
    "setup_logging",
    "get_logger",
    "bound_context",
    "current_request_id",
    "redact_secrets",
    "mask_phone",
    "AuditLogger",
    "audit_logger",
    "LoggingContextMiddleware",
]
