"""
Structured logging for the SSO engine.

Provides:
- JSON structured logging for production environments
- Human-readable colored logging for development
- Flow context (provider_id, flow_id) propagation
- Redaction of secrets, tokens and PKCE material
"""

import json
import logging
import os
import re
import sys
from contextvars import ContextVar
from datetime import datetime, timezone
from typing import Any, Dict, Optional

# Context variables for flow tracking
provider_id_var: ContextVar[Optional[str]] = ContextVar("provider_id", default=None)
flow_id_var: ContextVar[Optional[str]] = ContextVar("flow_id", default=None)

# Patterns for sensitive data that should be redacted
SENSITIVE_PATTERNS: list[re.Pattern] = [
    re.compile(r'client[_-]?secret["\']?\s*[:=]\s*["\']?[^\s,&}"\']+', re.IGNORECASE),
    re.compile(r'code[_-]?verifier["\']?\s*[:=]\s*["\']?[^\s,&}"\']+', re.IGNORECASE),
    re.compile(r'(?:access|refresh|id)[_-]?token["\']?\s*[:=]\s*["\']?[\w.~+/-]+', re.IGNORECASE),
    re.compile(r'device[_-]?code["\']?\s*[:=]\s*["\']?[\w.~-]+', re.IGNORECASE),
    re.compile(r'(?<![\w-])code=[\w.~-]+', re.IGNORECASE),
    re.compile(r'bearer\s+[\w.~+/-]+', re.IGNORECASE),
    re.compile(r'authorization["\']?\s*[:=]\s*["\']?[^\s,}]+', re.IGNORECASE),
    re.compile(r'eyJ[\w-]*\.[\w-]*\.[\w-]*', re.IGNORECASE),  # JWTs
]

REDACTED = "[REDACTED]"

# Fields to exclude from extra data in JSON logs
EXCLUDED_RECORD_ATTRS = frozenset({
    "name", "msg", "args", "created", "filename", "funcName",
    "levelname", "levelno", "lineno", "module", "msecs",
    "pathname", "process", "processName", "relativeCreated",
    "stack_info", "exc_info", "exc_text", "thread", "threadName",
    "provider_id", "flow_id", "message", "taskName",
})


def redact_sensitive_data(message: str) -> str:
    """
    Redact sensitive data from log messages.

    Args:
        message: The log message to sanitize

    Returns:
        Message with sensitive data replaced with [REDACTED]
    """
    if not message:
        return message

    result = message
    for pattern in SENSITIVE_PATTERNS:
        result = pattern.sub(REDACTED, result)
    return result


def clean_idp_text(value: Optional[str], limit: int) -> Optional[str]:
    """Redact and truncate free text supplied by an identity provider."""
    if not value:
        return None
    return redact_sensitive_data(value)[:limit]


def short_id(value: Optional[str], length: int = 8) -> str:
    """Return a log-safe prefix of an opaque identifier such as a state."""
    if not value:
        return "-"
    return f"{value[:length]}..."


class FlowContextFilter(logging.Filter):
    """Add flow context to all log records."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.provider_id = provider_id_var.get() or "-"
        record.flow_id = flow_id_var.get() or "-"
        return True


class SensitiveDataFilter(logging.Filter):
    """Filter sensitive data from log messages."""

    def filter(self, record: logging.LogRecord) -> bool:
        if record.msg:
            record.msg = redact_sensitive_data(str(record.msg))
        if record.args:
            if isinstance(record.args, dict):
                record.args = {
                    k: redact_sensitive_data(v) if isinstance(v, str) else v
                    for k, v in record.args.items()
                }
            else:
                record.args = tuple(
                    redact_sensitive_data(arg) if isinstance(arg, str) else arg
                    for arg in record.args
                )
        return True


class JSONFormatter(logging.Formatter):
    """
    JSON formatter for structured logging in production.

    Outputs logs as single-line JSON objects:
    {
        "timestamp": "2024-01-15T10:30:00.123456Z",
        "level": "INFO",
        "logger": "sso_engine.auth.sso.manager",
        "message": "Authorization flow started",
        "service": "sso-engine",
        "provider_id": "okta",
        "flow_id": "Xy12ab...",
        "extra": {...}
    }
    """

    def __init__(self, service_name: str = "sso-engine"):
        super().__init__()
        self.service_name = service_name

    def format(self, record: logging.LogRecord) -> str:
        log_data: Dict[str, Any] = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "service": self.service_name,
            "provider_id": getattr(record, "provider_id", "-"),
            "flow_id": getattr(record, "flow_id", "-"),
        }

        if record.levelno >= logging.ERROR:
            log_data["source"] = {
                "file": record.pathname,
                "line": record.lineno,
                "function": record.funcName,
            }

        if record.exc_info:
            log_data["exception"] = redact_sensitive_data(
                self.formatException(record.exc_info)
            )

        extra_fields = {
            k: v for k, v in record.__dict__.items()
            if k not in EXCLUDED_RECORD_ATTRS and not k.startswith("_")
        }
        if extra_fields:
            log_data["extra"] = extra_fields

        return json.dumps(log_data, default=str, ensure_ascii=False)


class DevelopmentFormatter(logging.Formatter):
    """
    Human-readable formatter with colors for development.

    Format: [timestamp] LEVEL    [provider] [flow] logger - message
    """

    COLORS: Dict[str, str] = {
        "DEBUG": "\033[36m",     # Cyan
        "INFO": "\033[32m",      # Green
        "WARNING": "\033[33m",   # Yellow
        "ERROR": "\033[31m",     # Red
        "CRITICAL": "\033[35m",  # Magenta
    }
    RESET = "\033[0m"
    BOLD = "\033[1m"
    DIM = "\033[2m"

    def format(self, record: logging.LogRecord) -> str:
        color = self.COLORS.get(record.levelname, "")
        reset = self.RESET if color else ""

        provider_id = getattr(record, "provider_id", "-")
        flow_id = getattr(record, "flow_id", "-")
        timestamp = datetime.now().strftime("%Y-%m-%d %H:%M:%S.%f")[:-3]

        formatted = (
            f"{self.DIM}[{timestamp}]{self.RESET} "
            f"{color}{self.BOLD}{record.levelname:8}{reset} "
            f"{self.DIM}[{provider_id:>8}] [{flow_id[:11]:>11}]{self.RESET} "
            f"{record.name} - {record.getMessage()}"
        )

        extra_fields = {
            k: v for k, v in record.__dict__.items()
            if k not in EXCLUDED_RECORD_ATTRS and not k.startswith("_")
        }
        if extra_fields:
            formatted += f" {self.DIM}{extra_fields}{self.RESET}"

        if record.exc_info:
            formatted += f"\n{redact_sensitive_data(self.formatException(record.exc_info))}"

        return formatted


def get_log_level() -> int:
    """
    Get log level from environment variable.

    Returns:
        Logging level integer (e.g., logging.INFO)
    """
    level_name = os.environ.get("LOG_LEVEL", "INFO").upper()
    level = getattr(logging, level_name, None)
    if not isinstance(level, int):
        return logging.INFO
    return level


def should_use_json_format() -> bool:
    """Use JSON when LOG_FORMAT_JSON is set or ENVIRONMENT is production."""
    force_json = os.environ.get("LOG_FORMAT_JSON", "").lower() in ("true", "1", "yes")
    if force_json:
        return True
    return os.environ.get("ENVIRONMENT", "development").lower() in ("production", "prod")


def setup_logging(
    service_name: str = "sso-engine",
    log_level: Optional[int] = None,
    force_json: bool = False,
) -> logging.Logger:
    """
    Configure structured logging for the application.

    Should be called once at startup by the process embedding the engine.

    Args:
        service_name: Name of the service for log identification
        log_level: Override log level (defaults to LOG_LEVEL env var)
        force_json: Force JSON output even in development

    Returns:
        Configured root logger
    """
    level = log_level if log_level is not None else get_log_level()
    use_json = force_json or should_use_json_format()

    root_logger = logging.getLogger()
    root_logger.setLevel(level)

    # Remove existing handlers to avoid duplicate logs
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(level)
    handler.addFilter(FlowContextFilter())
    handler.addFilter(SensitiveDataFilter())

    if use_json:
        handler.setFormatter(JSONFormatter(service_name))
    else:
        handler.setFormatter(DevelopmentFormatter())

    root_logger.addHandler(handler)

    # httpx logs full request URLs, which carry codes and states
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    logging.getLogger("asyncio").setLevel(logging.WARNING)

    root_logger.info(
        "Logging configured",
        extra={
            "log_level": logging.getLevelName(level),
            "format": "json" if use_json else "development",
            "service": service_name,
        },
    )

    return root_logger


def set_flow_context(
    provider_id: Optional[str] = None,
    flow_id: Optional[str] = None,
) -> None:
    """
    Set flow context for the current async context.

    Args:
        provider_id: Provider handling the flow
        flow_id: Log-safe flow identifier (never a full state or device code)
    """
    if provider_id is not None:
        provider_id_var.set(provider_id)
    if flow_id is not None:
        flow_id_var.set(flow_id)


def clear_flow_context() -> None:
    """Clear flow context after an operation completes."""
    provider_id_var.set(None)
    flow_id_var.set(None)
