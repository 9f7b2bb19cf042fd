# executors/shell.py
from __future__ import annotations

import subprocess

from ..cancel import race
from ..errors import ExecutionError, ProcessExitError, TaskCancelledError, XTaskError
from ..logging import get_logger
from ..model import TaskResult
from ..shells import build_command
from .base import TaskContext

log = get_logger(__name__)


def terminate_process(proc: subprocess.Popen) -> None:
    if proc.poll() is not None:
        return
    proc.terminate()
    try:
        proc.wait(timeout=5)
    except subprocess.TimeoutExpired:
        proc.kill()


def run_shell(ctx: TaskContext) -> TaskResult:
    task = ctx.task
    result = TaskResult.start(task.id)

    # tasks that only group their needs
    if not (task.run or "").strip():
        return result.ok("nothing to run")

    try:
        argv = build_command(ctx.shell, task.run or "", [*task.args, *ctx.args], ctx.locator, ctx.env)
    except XTaskError as e:
        e.task = e.task or task.id
        return result.fail(e)

    if not ctx.cwd.is_dir():
        return result.fail(ExecutionError(f"working directory not found: {ctx.cwd}", task=task.id))

    log.debug("task %s: %s", task.id, argv[:-1] if len(argv) > 1 else argv)
    try:
        proc = subprocess.Popen(argv, cwd=str(ctx.cwd), env=ctx.env.to_dict())
    except OSError as e:
        return result.fail(ExecutionError(f"failed to start {argv[0]}: {e}", task=task.id))

    try:
        code = race(proc.wait, ctx.token, on_cancel=lambda: terminate_process(proc))
    except TaskCancelledError as e:
        e.task = task.id
        return result.cancel(e)

    result.output["exit_code"] = code
    if code != 0:
        return result.fail(
            ProcessExitError(f"Task {task.id} failed with exit code {code}", task=task.id, exit_code=code)
        )
    return result.ok()
