"""
Scheduling Rules
================

Status, completion and delay rules, expressed as ``TaskPatch`` objects
so the same patch can be committed online or queued offline.
"""

from datetime import datetime

from taskflow.models.task import Task, TaskStatus
from taskflow.schemas.task import TaskPatch
from taskflow.utils.helpers import add_days

# Quick "push by N days" choices offered to users.
DELAY_OPTIONS = (1, 2, 7, 14)


def status_patch(task: Task, status: TaskStatus, now: datetime) -> TaskPatch:
    """
    Build the patch for moving *task* to *status*.

    Completing a repeating task reschedules it ``repeat_every_days``
    from now and puts it back to To do; ``completed_date`` is left alone.
    Completing any other task stamps ``completed_date``.  Leaving Done
    clears ``completed_date``.
    """
    if status is TaskStatus.DONE:
        if task.repeats:
            return TaskPatch(
                status=TaskStatus.TODO,
                due_date=add_days(now, task.repeat_every_days),
            )
        return TaskPatch(status=TaskStatus.DONE, completed_date=now)

    if task.completed_date is not None:
        return TaskPatch(status=status, completed_date=None)
    return TaskPatch(status=status)


def delay_patch(task: Task, days: int) -> TaskPatch:
    """Push the due date forward by *days*, anchored on the current due date."""
    if days <= 0:
        raise ValueError("Delay must be a positive number of days")
    return TaskPatch(due_date=add_days(task.due_date, days))
