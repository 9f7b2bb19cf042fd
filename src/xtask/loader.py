# loader.py
from __future__ import annotations

import os
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

import yaml
from pydantic import ValidationError

from .errors import ConfigError, EnvFileNotFoundError
from .logging import get_logger
from .schema import Document, Host, TaskDefinition

log = get_logger(__name__)

CONFIG_NAMES = ("xtaskfile", "xtaskfile.yaml", "xtaskfile.yml")
TASK_FILE_SUFFIXES = (".task.yaml", ".task.yml")


# ----------------------------------------------------------------------
# Discovery
# ----------------------------------------------------------------------

def first_config_in(directory: Path) -> Optional[Path]:
    for name in CONFIG_NAMES:
        candidate = directory / name
        if candidate.is_file():
            return candidate
    return None


def find_config_file(
    file: str | None = None,
    directory: str | None = None,
    cwd: str | Path | None = None,
) -> Path:
    """
    Locate the xtaskfile to load.

    Args:
        file: Explicit file (or directory holding one)
        directory: Directory to search, relative to ``cwd``
        cwd: Base directory (defaults to the process working directory)

    Returns:
        Absolute path of the config file

    Raises:
        ConfigError: If no file is found
    """
    base = Path(cwd) if cwd else Path(os.getcwd())

    if file:
        p = Path(file).expanduser()
        if not p.is_absolute():
            p = base / p
        if p.is_dir():
            found = first_config_in(p)
            if found is None:
                raise ConfigError(f"no xtaskfile found in {p}", file=str(p))
            p = found
        if not p.is_file():
            raise ConfigError(f"config file not found: {p}", file=str(p))
        return p.resolve()

    if directory:
        d = Path(directory).expanduser()
        if not d.is_absolute():
            d = base / d
        found = first_config_in(d)
        if found is None:
            raise ConfigError(f"no xtaskfile found in {d}", file=str(d))
        return found.resolve()

    searched: List[str] = []
    for d in (base, Path.home()):
        found = first_config_in(d)
        if found is not None:
            return found.resolve()
        searched.append(str(d))

    raise ConfigError(
        "no xtaskfile found",
        details={"names": ", ".join(CONFIG_NAMES), "searched": ", ".join(searched)},
    )


# ----------------------------------------------------------------------
# Parsing
# ----------------------------------------------------------------------

def read_yaml(path: str | Path) -> Any:
    p = Path(path)
    try:
        with p.open("r", encoding="utf-8") as fh:
            return yaml.safe_load(fh)
    except FileNotFoundError as e:
        raise ConfigError(f"config file not found: {p}", file=str(p)) from e
    except yaml.YAMLError as e:
        raise ConfigError(f"malformed YAML: {e}", file=str(p)) from e


def _format_validation_error(e: ValidationError) -> str:
    lines = []
    for err in e.errors():
        loc = ".".join(str(x) for x in err.get("loc", ()))
        msg = err.get("msg", "invalid value")
        if err.get("type") == "extra_forbidden":
            msg = "unknown key"
        lines.append(f"  {loc}: {msg}" if loc else f"  {msg}")
    return "\n".join(lines)


def parse_document(data: Any, source: str = "<string>") -> Document:
    if data is None:
        data = {}
    if not isinstance(data, dict):
        raise ConfigError("config document must be a mapping", file=source)
    try:
        return Document.model_validate(data)
    except ValidationError as e:
        raise ConfigError(
            f"invalid configuration:\n{_format_validation_error(e)}", file=source
        ) from e


def load_document(path: str | Path) -> Document:
    return parse_document(read_yaml(path), source=str(path))


def load_task_file(path: str | Path, task_id: str) -> TaskDefinition:
    data = read_yaml(path)
    if not isinstance(data, dict):
        raise ConfigError("task file must hold a single task mapping", file=str(path), task=task_id)
    try:
        task = TaskDefinition.model_validate(data)
    except ValidationError as e:
        raise ConfigError(
            f"invalid task file:\n{_format_validation_error(e)}", file=str(path), task=task_id
        ) from e
    return task.model_copy(update={"id": task_id})


# ----------------------------------------------------------------------
# Imports
# ----------------------------------------------------------------------

def uri_to_path(uri: str, root_dir: str | Path) -> Path:
    if uri.startswith("file://"):
        uri = uri[len("file://"):]
    p = Path(uri).expanduser()
    if not p.is_absolute():
        p = Path(root_dir) / p
    return p


def _namespaced(task: TaskDefinition, namespace: str, sibling_ids: set[str]) -> TaskDefinition:
    needs = [f"{namespace}:{n}" if n in sibling_ids else n for n in task.needs]
    return task.model_copy(update={"id": f"{namespace}:{task.id}", "needs": needs})


def merge_imports(
    document: Document,
    root_dir: str | Path,
    expand: Callable[[str], str] = lambda s: s,
) -> Document:
    """
    Merge tasks and hosts from imported documents. Local definitions win.
    """
    if not document.imports:
        return document

    tasks: Dict[str, TaskDefinition] = dict(document.tasks)
    hosts: Dict[str, Host] = dict(document.hosts)

    for spec in document.imports:
        path = uri_to_path(expand(spec.uri), root_dir)
        if not path.is_file():
            if spec.optional:
                log.debug("skipping optional import %s", path)
                continue
            raise EnvFileNotFoundError(f"import file not found: {path}", file=str(path))

        log.debug("importing tasks from %s", path)
        imported = load_document(path)
        imported_ids = set(imported.tasks)
        for task in imported.tasks.values():
            if spec.namespace:
                task = _namespaced(task, spec.namespace, imported_ids)
            if task.id not in tasks:
                tasks[task.id] = task
        for name, host in imported.hosts.items():
            hosts.setdefault(name, host)

    return document.model_copy(update={"tasks": tasks, "hosts": hosts})


def is_task_file_reference(run: str | None) -> bool:
    if not run:
        return False
    text = run.strip()
    return "\n" not in text and text.endswith(TASK_FILE_SUFFIXES)


def resolve_task_files(
    tasks: Dict[str, TaskDefinition],
    root_dir: str | Path,
    expand: Callable[[str], str] = lambda s: s,
) -> Dict[str, TaskDefinition]:
    """Replace tasks whose ``run`` names a ``*.task.yaml`` file with that file's task."""
    out: Dict[str, TaskDefinition] = {}
    for task_id, task in tasks.items():
        if is_task_file_reference(task.run):
            path = uri_to_path(expand(task.run.strip()), root_dir)
            if not path.is_file():
                raise EnvFileNotFoundError(
                    f"task file not found: {path}", task=task_id, file=str(path)
                )
            task = load_task_file(path, task_id)
        out[task_id] = task
    return out
