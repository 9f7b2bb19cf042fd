# environment.py
"""
Builds the run and task environments.

Precedence, low to high:
  process environment -> platform defaults -> reserved XTASK_* keys ->
  config.prepend-paths -> config.env -> dotenv files -> workflow env ->
  secrets -> caller overrides -> task dotenv -> task env ->
  exports from earlier tasks in the same run
"""

from __future__ import annotations

import getpass
import os
import platform
import socket
import sys
import tempfile
from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterable, List, Mapping, Optional, Sequence, Tuple

from . import __version__
from .envfiles import EnvDocument, read_env_files
from .envmap import IS_WINDOWS, RunEnvironment
from .errors import XTaskError
from .expand import ExpandOptions, expand
from .logging import get_logger
from .paths import user_cache_dir, user_config_dir, user_data_dir, user_state_dir
from .schema import Document, TaskDefinition

log = get_logger(__name__)

DEFAULT_CONTEXT = "default"
DEFAULT_APPS_DIR = "./.xtask/apps"
DEFAULT_ETC_DIR = "./.xtask/etc"

ENV_EXPORT_KEY = "XTASK_ENV"
PATH_EXPORT_KEY = "XTASK_PATH"

RESERVED_KEYS = (
    "XTASK_FILE",
    "XTASK_DIR",
    "XTASK_CONTEXT",
    "XTASK_SHELL",
    "XTASK_ETC_DIR",
    "XTASK_CONFIG_HOME",
    "XTASK_DATA_HOME",
    "XTASK_CACHE_HOME",
    "XTASK_STATE_HOME",
    "XTASK_APPS_DIRS",
    "XTASK_VERSION",
    ENV_EXPORT_KEY,
    PATH_EXPORT_KEY,
)


def default_shell() -> str:
    return "powershell" if IS_WINDOWS else "bash"


@dataclass
class RunSettings:
    """Values resolved once per loaded workflow and shared by its tasks."""
    file: Path
    root_dir: Path
    context: str = DEFAULT_CONTEXT
    shell: str = field(default_factory=default_shell)
    substitution: bool = True
    etc_dir: Optional[Path] = None
    app_dirs: List[str] = field(default_factory=list)
    argv: Optional[Sequence[str]] = None

    def expand_options(self) -> ExpandOptions:
        return ExpandOptions(
            windows_vars=IS_WINDOWS,
            command_substitution=self.substitution,
            argv=self.argv,
            cwd=str(self.root_dir),
        )


# ----------------------------------------------------------------------
# Platform defaults
# ----------------------------------------------------------------------

_ARCH_NAMES = {
    "x86_64": "amd64",
    "amd64": "amd64",
    "aarch64": "arm64",
    "arm64": "arm64",
    "i386": "386",
    "i686": "386",
}


def platform_name() -> str:
    if IS_WINDOWS:
        return "windows"
    if sys.platform == "darwin":
        return "darwin"
    return sys.platform.rstrip("0123456789") or "linux"


def arch_name() -> str:
    machine = platform.machine().lower()
    return _ARCH_NAMES.get(machine, machine)


def _set_default(env: RunEnvironment, key: str, value: str) -> None:
    if not env.get(key):
        env.set(key, value)


def apply_platform_defaults(env: RunEnvironment) -> None:
    """Fill in home, user, host and XDG directory keys that the OS left unset."""
    home = env.get("HOME") or env.get("USERPROFILE") or str(Path.home())
    _set_default(env, "HOME", home)

    try:
        user = getpass.getuser()
    except (KeyError, OSError):
        user = ""
    if user:
        _set_default(env, "USER", user)
    _set_default(env, "HOSTNAME", socket.gethostname())

    plat = platform_name()
    _set_default(env, "OS_PLATFORM", plat)
    _set_default(env, "OS_ARCH", arch_name())
    ostype = {"linux": "linux-gnu", "windows": "windows", "darwin": "darwin"}.get(plat, plat)
    _set_default(env, "OSTYPE", ostype)

    h = Path(home)
    if IS_WINDOWS:
        roaming = env.get("APPDATA") or str(h / "AppData" / "Roaming")
        local = env.get("LOCALAPPDATA") or str(h / "AppData" / "Local")
        _set_default(env, "XDG_CONFIG_HOME", roaming)
        _set_default(env, "XDG_DATA_HOME", local)
        _set_default(env, "XDG_CACHE_HOME", str(Path(local) / "Cache"))
        _set_default(env, "XDG_STATE_HOME", str(Path(local) / "State"))
        _set_default(env, "XDG_BIN_HOME", str(Path(local) / "Programs" / "bin"))
        _set_default(env, "SHELL", "powershell.exe")
    else:
        _set_default(env, "XDG_CONFIG_HOME", str(h / ".config"))
        _set_default(env, "XDG_DATA_HOME", str(h / ".local" / "share"))
        _set_default(env, "XDG_CACHE_HOME", str(h / ".cache"))
        _set_default(env, "XDG_STATE_HOME", str(h / ".local" / "state"))
        _set_default(env, "XDG_BIN_HOME", str(h / ".local" / "bin"))


# ----------------------------------------------------------------------
# Layers
# ----------------------------------------------------------------------

def apply_map(
    env: RunEnvironment,
    values: Mapping[str, str],
    options: ExpandOptions,
    *,
    secret: bool = False,
) -> None:
    """Expand each value against the accumulating table, then store it."""
    for key, raw in values.items():
        env.set(key, expand(raw, env, options), secret=secret)


def _os_matches(selector: Optional[str]) -> bool:
    if not selector:
        return True
    s = selector.lower()
    plat = platform_name()
    if s == "windows":
        return plat == "windows"
    if s in ("posix", "unix"):
        return plat != "windows"
    return s == plat


def apply_prepend_paths(env: RunEnvironment, document: Document, settings: RunSettings) -> None:
    options = settings.expand_options()
    for entry in document.config.prepend_paths:
        if not _os_matches(entry.os):
            continue
        p = Path(expand(entry.path, env, options)).expanduser()
        if not p.is_absolute():
            p = settings.root_dir / p
        env.prepend_path(str(p))


def _context_names(context: str) -> List[str]:
    if context == DEFAULT_CONTEXT:
        return [".env.shared?", ".env?", ".env.default?"]
    return [".env.shared?", f".env.{context}?"]


def dotenv_candidates(
    context: str,
    config_home: Path,
    etc_dir: Optional[Path],
    root_dir: Path,
    extra: Iterable[str] = (),
) -> List[str]:
    """
    Ordered dotenv files for a run: the user config home, the etc dir, the
    workflow root, then files the document or caller name explicitly.
    """
    names = _context_names(context)
    out: List[str] = []
    for directory in (config_home, etc_dir):
        if directory is not None and directory.is_dir():
            out.extend(str(directory / n) for n in names)
    out.extend(str(root_dir / n) for n in names)
    for f in extra:
        if f not in out:
            out.append(f)
    return out


def load_dotenv_files(
    env: RunEnvironment,
    paths: Iterable[str],
    root_dir: Path,
    options: ExpandOptions,
) -> EnvDocument:
    """Read every file, merge them, then expand the merged table left to right."""
    expanded: List[str] = []
    for p in paths:
        value = expand(p, env, options)
        if value not in expanded:
            expanded.append(value)
    doc = read_env_files(expanded, root_dir=root_dir)
    apply_map(env, dict(doc.items()), options)
    return doc


def _resolve_dir(value: str, env: RunEnvironment, settings: RunSettings) -> Path:
    p = Path(expand(value, env, settings.expand_options())).expanduser()
    if not p.is_absolute():
        p = settings.root_dir / p
    return p


def build_run_environment(
    document: Document,
    file: str | Path,
    *,
    context: Optional[str] = None,
    overrides: Optional[Mapping[str, str]] = None,
    dotenv: Sequence[str] = (),
    base: Optional[RunEnvironment] = None,
    argv: Optional[Sequence[str]] = None,
) -> Tuple[RunEnvironment, RunSettings]:
    """
    Compose the environment shared by every task of one run.

    Args:
        document: Parsed xtaskfile
        file: Path of the xtaskfile; its directory is the workflow root
        context: Context name (falls back to config.context, then "default")
        overrides: Caller-supplied KEY=VALUE pairs, applied last
        dotenv: Extra dotenv files supplied by the caller
        base: Environment to start from instead of the process environment
        argv: Positional arguments for ``$1`` style expansion

    Returns:
        (environment, settings)
    """
    path = Path(file).resolve()
    env = base.clone() if base is not None else RunEnvironment.from_os_environ()
    apply_platform_defaults(env)

    settings = RunSettings(
        file=path,
        root_dir=path.parent,
        context=context or document.config.context or DEFAULT_CONTEXT,
        shell=document.config.shell or default_shell(),
        substitution=document.config.substitution,
        argv=argv,
    )

    config_home = user_config_dir(env)
    env.set("XTASK_FILE", str(path))
    env.set("XTASK_DIR", str(settings.root_dir))
    env.set("XTASK_CONTEXT", settings.context)
    env.set("XTASK_SHELL", settings.shell)
    env.set("XTASK_VERSION", __version__)
    env.set("XTASK_CONFIG_HOME", str(config_home))
    env.set("XTASK_DATA_HOME", str(user_data_dir(env)))
    env.set("XTASK_CACHE_HOME", str(user_cache_dir(env)))
    env.set("XTASK_STATE_HOME", str(user_state_dir(env)))

    settings.etc_dir = _resolve_dir(document.config.dirs.etc or DEFAULT_ETC_DIR, env, settings)
    env.set("XTASK_ETC_DIR", str(settings.etc_dir))
    settings.app_dirs = [
        str(_resolve_dir(d, env, settings)) for d in (document.config.dirs.apps or [DEFAULT_APPS_DIR])
    ]
    env.set("XTASK_APPS_DIRS", os.pathsep.join(settings.app_dirs))

    options = settings.expand_options()
    try:
        apply_prepend_paths(env, document, settings)
        apply_map(env, document.config.env, options)

        candidates = dotenv_candidates(
            settings.context,
            config_home,
            settings.etc_dir,
            settings.root_dir,
            [*document.dotenv, *dotenv],
        )
        load_dotenv_files(env, candidates, settings.root_dir, options)

        apply_map(env, document.env, options)
        apply_map(env, document.secrets, options, secret=True)
        apply_map(env, overrides or {}, options)
    except XTaskError as e:
        e.file = e.file or str(path)
        raise

    log.debug("run environment for %s has %d keys", path, len(env))
    return env, settings


def build_task_environment(
    carry: RunEnvironment,
    task: TaskDefinition,
    settings: RunSettings,
) -> RunEnvironment:
    """Clone the carried run environment and layer the task's dotenv and env on top."""
    env = carry.clone()
    options = settings.expand_options()
    try:
        if task.dotenv:
            load_dotenv_files(env, task.dotenv, settings.root_dir, options)
        apply_map(env, task.env, options)
    except XTaskError as e:
        e.task = e.task or task.id
        raise
    return env


# ----------------------------------------------------------------------
# Side channel
# ----------------------------------------------------------------------

def _is_exportable(key: str) -> bool:
    upper = key.upper()
    if upper.startswith("XTASK_"):
        return upper.endswith("_EXE")
    return True


class SideChannel:
    """
    A pair of private temp files a task can append to.

    Lines written to the ``XTASK_ENV`` file are dotenv entries merged into the
    environment carried to later tasks. Lines written to the ``XTASK_PATH``
    file are directories prepended to PATH; the last line ends up first.
    Both files are removed on close.
    """

    def __init__(self) -> None:
        self.env_file: Optional[Path] = None
        self.path_file: Optional[Path] = None

    def open(self) -> SideChannel:
        fd, name = tempfile.mkstemp(prefix="xtask-env-", suffix=".env")
        os.close(fd)
        self.env_file = Path(name)
        fd, name = tempfile.mkstemp(prefix="xtask-path-", suffix=".txt")
        os.close(fd)
        self.path_file = Path(name)
        return self

    def close(self) -> None:
        for p in (self.env_file, self.path_file):
            if p is not None:
                p.unlink(missing_ok=True)
        self.env_file = None
        self.path_file = None

    def __enter__(self) -> SideChannel:
        return self.open()

    def __exit__(self, *exc) -> None:
        self.close()

    def bind(self, env: RunEnvironment) -> None:
        if self.env_file is None or self.path_file is None:
            raise RuntimeError("side channel is not open")
        env.set(ENV_EXPORT_KEY, str(self.env_file))
        env.set(PATH_EXPORT_KEY, str(self.path_file))

    def collect(self, carry: RunEnvironment, options: ExpandOptions) -> None:
        """Merge exported entries into ``carry`` and reset both files."""
        if self.env_file is None or self.path_file is None:
            raise RuntimeError("side channel is not open")

        text = self.env_file.read_text(encoding="utf-8")
        if text.strip():
            doc = EnvDocument.parse(text, source=str(self.env_file))
            for key, raw in doc.items():
                if not _is_exportable(key):
                    log.debug("ignoring reserved export %s", key)
                    continue
                carry.set(key, expand(raw, carry, options))

        for line in self.path_file.read_text(encoding="utf-8").splitlines():
            entry = line.strip()
            if not entry:
                continue
            if os.path.isdir(entry):
                carry.prepend_path(entry)
            else:
                log.debug("ignoring exported path %s (not a directory)", entry)

        self.env_file.write_text("", encoding="utf-8")
        self.path_file.write_text("", encoding="utf-8")
