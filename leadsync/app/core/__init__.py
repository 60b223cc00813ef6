"""Core utilities for the sync engine."""

from leadsync.app.core.config import Settings, settings
from leadsync.app.core.http_client import create_rate_limited_client
from leadsync.app.core.logging import get_log_context, get_logger, setup_logging

__all__ = [
    "Settings",
    "settings",
    "create_rate_limited_client",
    "get_logger",
    "get_log_context",
    "setup_logging",
]
