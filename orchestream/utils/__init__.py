"""Utility helpers for Orchestream."""

from orchestream.utils.logging_setup import (
    log_exception,
    setup_logging,
    setup_logging_from_config,
)

__all__ = [
    "log_exception",
    "setup_logging",
    "setup_logging_from_config",
]
