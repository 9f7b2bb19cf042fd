# model.py
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional


class TaskStatus(str, Enum):
    NONE = "none"
    OK = "ok"
    ERROR = "error"
    SKIPPED = "skipped"
    CANCELLED = "cancelled"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class TaskResult:
    """
    Outcome of one task dispatch.

    Created when the task starts and finalized by exactly one of
    ok/fail/skip/cancel. A finalized result is never reopened.
    """
    task_id: str
    status: TaskStatus = TaskStatus.NONE
    started_at: datetime = field(default_factory=_utcnow)
    ended_at: Optional[datetime] = None
    message: str = ""
    error: Optional[BaseException] = None
    output: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def start(cls, task_id: str) -> TaskResult:
        return cls(task_id=task_id)

    @property
    def finished(self) -> bool:
        return self.status is not TaskStatus.NONE

    @property
    def duration(self) -> Optional[float]:
        if self.ended_at is None:
            return None
        return (self.ended_at - self.started_at).total_seconds()

    def _finish(
        self,
        status: TaskStatus,
        message: str = "",
        error: Optional[BaseException] = None,
    ) -> TaskResult:
        if self.finished:
            raise RuntimeError(
                f"task result for '{self.task_id}' already finalized as {self.status.value}"
            )
        self.status = status
        self.message = message
        self.error = error
        self.ended_at = _utcnow()
        return self

    def ok(self, message: str = "") -> TaskResult:
        return self._finish(TaskStatus.OK, message)

    def fail(self, error: BaseException, message: str = "") -> TaskResult:
        return self._finish(TaskStatus.ERROR, message or str(error), error)

    def skip(self, message: str = "") -> TaskResult:
        return self._finish(TaskStatus.SKIPPED, message)

    def cancel(self, error: BaseException | None = None, message: str = "") -> TaskResult:
        return self._finish(
            TaskStatus.CANCELLED, message or (str(error) if error else "cancelled"), error
        )
