"""
Filter Windows
==============

Date windows behind the three named task filters.

    today     strictly after today-2 and strictly before today+2, not Done
    upcoming  yesterday .. today+7 (inclusive), not Done
    all       unbounded

The "today" label reads like a +/-1 day window, but the query has
always used the +/-2 day strict bounds; that behavior is kept as is.
"""

from dataclasses import dataclass
from datetime import date, timedelta
from typing import Optional

from taskflow.models.task import FilterKey, Task, TaskStatus


@dataclass(frozen=True)
class FilterWindow:
    """Bounds on a task's due date.  ``after``/``before`` are exclusive."""

    after: Optional[date] = None
    before: Optional[date] = None
    start: Optional[date] = None
    end: Optional[date] = None
    exclude_done: bool = False

    def contains(self, task: Task) -> bool:
        if self.exclude_done and task.status is TaskStatus.DONE:
            return False
        due = task.due_date.date()
        if self.after is not None and not due > self.after:
            return False
        if self.before is not None and not due < self.before:
            return False
        if self.start is not None and due < self.start:
            return False
        if self.end is not None and due > self.end:
            return False
        return True


def filter_window(filter_key: FilterKey, today: date) -> FilterWindow:
    """Window for *filter_key* evaluated on the calendar day *today*."""
    if filter_key is FilterKey.TODAY:
        return FilterWindow(
            after=today - timedelta(days=2),
            before=today + timedelta(days=2),
            exclude_done=True,
        )
    if filter_key is FilterKey.UPCOMING:
        return FilterWindow(
            start=today - timedelta(days=1),
            end=today + timedelta(days=7),
            exclude_done=True,
        )
    return FilterWindow()
