"""
Core Utilities Package

This package contains utility functions and helpers used throughout the application.

Modules:
    - time: Epoch-millisecond clock and timestamp rendering
"""

from core.utils.time import current_utc_datetime, now_ms, ms_to_iso

__all__ = ["current_utc_datetime", "now_ms", "ms_to_iso"]
