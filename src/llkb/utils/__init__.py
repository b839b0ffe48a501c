"""Shared utilities for LLKB.

Contains cross-cutting utilities used by multiple modules.
"""

from llkb.utils.time import days_between, ensure_utc, utc_now

__all__ = ["days_between", "ensure_utc", "utc_now"]
