# runner.py
from __future__ import annotations

import shutil
import subprocess
from pathlib import Path
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence

from .cancel import CancelToken, race
from .dag import check_acyclic, resolve_order
from .environment import RunSettings, SideChannel, build_run_environment, build_task_environment
from .envmap import IS_WINDOWS, RunEnvironment
from .errors import (
    ConfigError,
    DelegationError,
    ExecutionError,
    TaskCancelledError,
    TaskFailedError,
    XTaskError,
)
from .executors import TaskContext, dispatch
from .executors.shell import terminate_process
from .expand import expand
from .lifecycle import find_delegate, is_default_app, missing_hook_error, resolve_hooks
from .loader import load_document, merge_imports, resolve_task_files
from .logging import get_logger
from .model import TaskResult, TaskStatus
from .schema import Document, Host, TaskDefinition
from .shells import ExecutableLocator
from .ui.console import Console, get_console

log = get_logger(__name__)

DEFAULT_TARGET = "default"
_FALSE_VALUES = ("", "0", "false", "no", "off")


class Workflow:
    """
    One loaded xtaskfile and the environment resolved for it.

    A workflow loaded through delegation keeps a reference to the workflow
    that loaded it; the reference only stops a second delegation.
    """

    def __init__(
        self,
        document: Document,
        env: RunEnvironment,
        settings: RunSettings,
        *,
        parent: Optional[Workflow] = None,
        locator: Optional[ExecutableLocator] = None,
        token: Optional[CancelToken] = None,
        console: Optional[Console] = None,
    ):
        self.document = document
        self.env = env
        self.settings = settings
        self.parent = parent
        self.locator = locator or ExecutableLocator()
        self.token = token or CancelToken()
        self.console = console or get_console()
        self.console.masker.add_env(env)

    @classmethod
    def load(
        cls,
        file: str | Path,
        *,
        context: Optional[str] = None,
        overrides: Optional[Mapping[str, str]] = None,
        dotenv: Sequence[str] = (),
        parent: Optional[Workflow] = None,
        base_env: Optional[RunEnvironment] = None,
        locator: Optional[ExecutableLocator] = None,
        token: Optional[CancelToken] = None,
        console: Optional[Console] = None,
        argv: Optional[Sequence[str]] = None,
    ) -> Workflow:
        """
        Load an xtaskfile and resolve its run environment.

        Args:
            file: Path of the xtaskfile
            context: Context name (e.g. "production")
            overrides: KEY=VALUE pairs applied over the workflow env
            dotenv: Extra dotenv files
            parent: Workflow that delegated to this one
            base_env: Environment to start from (defaults to os.environ)
            locator: Interpreter locator shared with the parent
            token: Cancellation token shared with the parent
            console: Output console
            argv: Positional arguments for ``$1`` style expansion

        Returns:
            Workflow
        """
        path = Path(file).resolve()
        document = load_document(path)
        env, settings = build_run_environment(
            document,
            path,
            context=context,
            overrides=overrides,
            dotenv=dotenv,
            base=base_env,
            argv=argv,
        )

        options = settings.expand_options()

        def expand_ref(text: str) -> str:
            return expand(text, env, options)

        document = merge_imports(document, settings.root_dir, expand_ref)
        tasks = resolve_task_files(document.tasks, settings.root_dir, expand_ref)
        document = document.model_copy(update={"tasks": tasks})

        log.debug("loaded %s (%d tasks)", path, len(tasks))
        return cls(
            document,
            env,
            settings,
            parent=parent,
            locator=locator,
            token=token,
            console=console,
        )

    # ------------------------------------------------------------------
    # Accessors
    # ------------------------------------------------------------------

    @property
    def file(self) -> Path:
        return self.settings.file

    @property
    def root_dir(self) -> Path:
        return self.settings.root_dir

    @property
    def tasks(self) -> Dict[str, TaskDefinition]:
        return self.document.tasks

    @property
    def hosts(self) -> Dict[str, Host]:
        return self.document.hosts

    @property
    def values(self) -> Dict[str, Any]:
        return self.document.values

    def list_tasks(self) -> List[TaskDefinition]:
        return sorted(self.tasks.values(), key=lambda t: t.id)

    # ------------------------------------------------------------------
    # Direct targets
    # ------------------------------------------------------------------

    def run(self, targets: Iterable[str] | None = None, args: Sequence[str] = ()) -> List[TaskResult]:
        """
        Run ``targets`` and their dependencies, one task at a time.

        Exports a task writes to the side channel are carried to the tasks
        after it. The workflow's own environment is never modified, so
        nothing a task exports survives the run.

        Raises:
            CycleError / TaskNotFoundError: before anything runs
            TaskFailedError: the first task that fails (carries its result)
            TaskCancelledError: cancellation or a task timeout
        """
        targets = list(targets or []) or [DEFAULT_TARGET]
        file = str(self.file)
        check_acyclic(self.tasks, file=file)
        ordered = resolve_order(targets, self.tasks, file=file)

        carry = self.env.clone()
        results: List[TaskResult] = []
        with SideChannel() as channel:
            for task in ordered:
                self.token.raise_if_cancelled()
                result = self._run_task(task, carry, channel, args)
                results.append(result)

                if result.status is TaskStatus.ERROR:
                    raise self._failure(result)
                if result.status is TaskStatus.CANCELLED:
                    err = result.error if isinstance(result.error, TaskCancelledError) else TaskCancelledError(
                        result.message, task=task.id
                    )
                    err.result = result
                    raise err
                if result.status is TaskStatus.OK:
                    channel.collect(carry, self.settings.expand_options())

        return results

    def _failure(self, result: TaskResult) -> TaskFailedError:
        err = result.error
        if isinstance(err, XTaskError):
            failure = TaskFailedError(
                err.message,
                task=err.task or result.task_id,
                file=err.file,
                host=err.host,
                details=dict(err.details),
                result=result,
            )
        else:
            failure = TaskFailedError(str(err), task=result.task_id, result=result)
        failure.__cause__ = err
        return failure

    def _task_cwd(self, task: TaskDefinition, env: RunEnvironment) -> Path:
        raw = task.cwd
        if not raw:
            return self.root_dir
        if "$" in raw or (IS_WINDOWS and "%" in raw):
            raw = expand(raw, env, self.settings.expand_options())
        p = Path(raw).expanduser()
        if not p.is_absolute():
            p = self.root_dir / p
        return p

    def _skip_reason(self, task: TaskDefinition, env: RunEnvironment) -> Optional[str]:
        if task.predicate is None:
            return None
        value = expand(task.predicate, env, self.settings.expand_options())
        if value.strip().lower() in _FALSE_VALUES:
            return f"condition '{task.predicate}' is false"
        return None

    def _run_task(
        self,
        task: TaskDefinition,
        carry: RunEnvironment,
        channel: SideChannel,
        args: Sequence[str],
    ) -> TaskResult:
        env = build_task_environment(carry, task, self.settings)
        channel.bind(env)

        reason = self._skip_reason(task, env)
        if reason:
            self.console.print_task_skipped(task.display_name, reason)
            return TaskResult.start(task.id).skip(reason)

        self.console.masker.add_env(env)
        self.console.print_task_start(task.display_name)

        token = self.token.child(task.timeout)
        try:
            ctx = TaskContext(
                task=task,
                env=env,
                settings=self.settings,
                token=token,
                locator=self.locator,
                cwd=self._task_cwd(task, env),
                hosts=self.hosts,
                values=self.values,
                args=list(args),
            )
            return dispatch(ctx)
        finally:
            token.close()

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def run_lifecycle(
        self,
        action: str,
        app: Optional[str] = None,
        context: Optional[str] = None,
        args: Sequence[str] = (),
    ) -> List[TaskResult]:
        """
        Run the before/primary/after hooks of ``action`` for ``app``.

        When a named app has no primary hook here, the app directories are
        searched for the app's own xtaskfile and the action runs there as
        that file's default app.
        """
        context = context or self.settings.context
        plan = resolve_hooks(self.tasks, action, app, context)
        if plan.primary is not None:
            return self.run(plan.targets, args)

        if is_default_app(app) or self.parent is not None:
            raise missing_hook_error(plan, file=str(self.file))

        delegate = find_delegate(self.settings.app_dirs, str(app), context, self.root_dir)
        if delegate is None:
            raise DelegationError(
                f"no task or app config found for app '{app}' (action {action})",
                file=str(self.file),
                details={
                    "tried": ", ".join(plan.candidates.get("primary", [])),
                    "app_dirs": ", ".join(self.settings.app_dirs),
                },
            )

        child = Workflow.load(
            delegate,
            context=context,
            parent=self,
            base_env=self.env,
            locator=self.locator,
            token=self.token,
            console=self.console,
            argv=self.settings.argv,
        )
        return child.run_lifecycle(action, "", context, args)

    # ------------------------------------------------------------------
    # Exec
    # ------------------------------------------------------------------

    def exec(self, argv: Sequence[str]) -> int:
        """Run an arbitrary command with the resolved environment, in the workflow root."""
        if not argv:
            raise ConfigError("exec needs a command to run", file=str(self.file))

        env = self.env.clone()
        exe = shutil.which(argv[0], path=env.get_path()) or argv[0]
        try:
            proc = subprocess.Popen([exe, *argv[1:]], cwd=str(self.root_dir), env=env.to_dict())
        except OSError as e:
            raise ExecutionError(f"failed to start {argv[0]}: {e}", file=str(self.file)) from e
        return race(proc.wait, self.token, on_cancel=lambda: terminate_process(proc))
