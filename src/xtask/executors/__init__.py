# executors/__init__.py
from __future__ import annotations

from typing import Callable, Dict

from ..errors import UnsupportedExecutorError
from ..logging import get_logger
from ..model import TaskResult
from ..shells import SUPPORTED_SHELLS, normalize_shell_name
from .base import TaskContext, scheme_of
from .docker import run_docker
from .scp import run_scp
from .shell import run_shell
from .ssh import run_ssh
from .tmpl import run_template

log = get_logger(__name__)

Executor = Callable[[TaskContext], TaskResult]

EXECUTORS: Dict[str, Executor] = {
    "ssh": run_ssh,
    "scp": run_scp,
    "tmpl": run_template,
    "docker": run_docker,
}


def select_executor(uses: str) -> Executor:
    """
    Pick the backend for a ``uses`` selector.

    A known scheme (``ssh``, ``scp``, ``tmpl``, ``docker``) selects a remote
    or template backend; an empty selector or a supported interpreter name
    selects the shell backend.
    """
    scheme = scheme_of(uses)
    if scheme in EXECUTORS:
        return EXECUTORS[scheme]
    if not uses or normalize_shell_name(uses) in SUPPORTED_SHELLS:
        return run_shell
    raise UnsupportedExecutorError(
        f"unsupported task executor: {uses}",
        details={"supported": ", ".join([*EXECUTORS, *SUPPORTED_SHELLS])},
    )


def dispatch(ctx: TaskContext) -> TaskResult:
    try:
        executor = select_executor(ctx.uses)
    except UnsupportedExecutorError as e:
        e.task = ctx.task.id
        return TaskResult.start(ctx.task.id).fail(e)
    log.debug("task %s dispatched to %s", ctx.task.id, executor.__name__)
    return executor(ctx)


__all__ = ["EXECUTORS", "TaskContext", "dispatch", "select_executor"]
