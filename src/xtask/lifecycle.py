# lifecycle.py
"""
Lifecycle hook resolution.

A lifecycle action (install, deploy, test, ...) has three slots: before,
primary and after. Each slot is filled by the first task id that exists,
from the most specific name (app and context) to the most generic.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Iterable, List, Mapping, Optional

from .errors import HookNotFoundError
from .loader import first_config_in
from .logging import get_logger
from .schema import TaskDefinition

log = get_logger(__name__)

DEFAULT_APP = "default"

LIFECYCLE_ACTIONS = (
    "install",
    "deploy",
    "destroy",
    "test",
    "pack",
    "upgrade",
    "uninstall",
    "audit",
)


def is_default_app(app: Optional[str]) -> bool:
    return not app or app == DEFAULT_APP


def hook_candidates(action: str, app: Optional[str], context: str) -> Dict[str, List[str]]:
    """
    Candidate ids per slot, most specific first.

    The default app falls back to the bare action for its primary slot; a
    named app does not, so a missing ``action:app`` can trigger delegation.
    """
    name = DEFAULT_APP if is_default_app(app) else app

    def slot(suffix: str, bare: bool) -> List[str]:
        tail = f":{suffix}" if suffix else ""
        ids = [f"{action}:{name}:{context}{tail}", f"{action}:{name}{tail}"]
        if bare:
            ids.append(f"{action}{tail}")
        return ids

    return {
        "before": slot("before", True),
        "primary": slot("", is_default_app(app)),
        "after": slot("after", True),
    }


@dataclass
class HookPlan:
    action: str
    app: str
    context: str
    before: Optional[str] = None
    primary: Optional[str] = None
    after: Optional[str] = None
    candidates: Dict[str, List[str]] = field(default_factory=dict)

    @property
    def targets(self) -> List[str]:
        return [t for t in (self.before, self.primary, self.after) if t]


def _first_present(ids: Iterable[str], tasks: Mapping[str, TaskDefinition]) -> Optional[str]:
    for task_id in ids:
        if task_id in tasks:
            return task_id
    return None


def resolve_hooks(
    tasks: Mapping[str, TaskDefinition],
    action: str,
    app: Optional[str] = None,
    context: str = "default",
) -> HookPlan:
    """
    Fill the before/primary/after slots for ``action``.

    The returned plan may have no primary hook; callers decide whether that
    is an error or a reason to delegate.
    """
    candidates = hook_candidates(action, app, context)
    plan = HookPlan(
        action=action,
        app=DEFAULT_APP if is_default_app(app) else str(app),
        context=context,
        before=_first_present(candidates["before"], tasks),
        primary=_first_present(candidates["primary"], tasks),
        after=_first_present(candidates["after"], tasks),
        candidates=candidates,
    )
    log.debug("lifecycle %s app=%s context=%s -> %s", action, plan.app, context, plan.targets)
    return plan


def missing_hook_error(plan: HookPlan, file: str | None = None) -> HookNotFoundError:
    return HookNotFoundError(
        f"no task found for lifecycle action '{plan.action}' (app={plan.app}, context={plan.context})",
        file=file,
        details={"tried": ", ".join(plan.candidates.get("primary", []))},
    )


def find_delegate(
    app_dirs: Iterable[str],
    app: str,
    context: str,
    base_dir: str | Path,
) -> Optional[Path]:
    """
    Find the config file of ``app`` in the app directories.

    Directories are searched last-declared first. A directory named after the
    app is tried as ``<dir>/<context>`` then ``<dir>``; any other directory
    as ``<dir>/<app>``.
    """
    for raw in reversed(list(app_dirs)):
        d = Path(raw.rstrip("*").rstrip("/\\") or ".")
        if not d.is_absolute():
            d = Path(base_dir) / d

        if d.name.lower() == app.lower():
            search = [d / context, d]
        else:
            search = [d / app]

        for directory in search:
            if not directory.is_dir():
                continue
            found = first_config_in(directory)
            if found is not None:
                log.debug("delegating app %s to %s", app, found)
                return found.resolve()
    return None
