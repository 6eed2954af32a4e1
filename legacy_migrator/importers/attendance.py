"""Attendance import, restricted to a check-in window."""

from typing import Any, Optional

from sqlalchemy import DateTime, and_, column, or_

from ..models.migration import MigrationConfig
from .base import EntityImporter


class AttendanceImporter(EntityImporter):
    """
    Attendance rows inside ``config.attendance_window``.

    A row is in the window when its check-in time is, or when it has no
    check-in and was created inside the window.
    """

    def source_filter(self, config: MigrationConfig) -> Optional[Any]:
        start, end = config.attendance_window
        check_in = column("checkIn", DateTime)
        created_at = column("createdAt", DateTime)
        window = or_(
            and_(check_in >= start, check_in <= end),
            and_(check_in.is_(None), created_at >= start, created_at <= end),
        )
        base = super().source_filter(config)
        if base is not None:
            return and_(base, window)
        return window
