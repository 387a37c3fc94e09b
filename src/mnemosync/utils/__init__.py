"""Shared utilities for Mnemosync."""

from mnemosync.utils.logging import LogContext, RedactingFilter, level_for_flags, setup_logging

__all__ = ["LogContext", "RedactingFilter", "level_for_flags", "setup_logging"]
