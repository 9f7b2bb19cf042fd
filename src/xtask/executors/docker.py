# executors/docker.py
from __future__ import annotations

from ..errors import ExecutionError
from ..model import TaskResult
from .base import TaskContext


def run_docker(ctx: TaskContext) -> TaskResult:
    result = TaskResult.start(ctx.task.id)
    return result.fail(ExecutionError("docker task not implemented", task=ctx.task.id))
