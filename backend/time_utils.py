"""
Time utilities for the task placement engine.

This module provides a single source of truth for time operations,
ensuring consistency across all services and keeping tests deterministic.
"""

from datetime import date, datetime, timezone
from typing import Optional


def utc_now() -> datetime:
    """
    Get current UTC time.
    Single source of truth for "now" throughout the application.

    Returns:
        timezone-aware datetime in UTC
    """
    return datetime.now(timezone.utc)


def is_overdue(due_date: Optional[date], status: str) -> bool:
    """
    Check if a task is overdue.

    A task is overdue if it has a due date before today and is not
    in 'COMPLETED' or 'CANCELLED' status.

    Args:
        due_date: The task's due date
        status: The task's status

    Returns:
        True if task is overdue, False otherwise
    """
    if not due_date or status in ("COMPLETED", "CANCELLED"):
        return False
    return due_date < utc_now().date()
