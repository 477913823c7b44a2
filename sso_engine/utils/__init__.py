"""Utility modules for the SSO engine."""

from .logging import (
    setup_logging,
    set_flow_context,
    clear_flow_context,
    short_id,
    clean_idp_text,
    JSONFormatter,
    DevelopmentFormatter,
    FlowContextFilter,
    SensitiveDataFilter,
    redact_sensitive_data,
)

__all__ = [
    "setup_logging",
    "set_flow_context",
    "clear_flow_context",
    "short_id",
    "clean_idp_text",
    "JSONFormatter",
    "DevelopmentFormatter",
    "FlowContextFilter",
    "SensitiveDataFilter",
    "redact_sensitive_data",
]
