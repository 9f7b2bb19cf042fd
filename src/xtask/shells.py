# shells.py
from __future__ import annotations

import os
import shlex
import shutil
from dataclasses import dataclass, field
from pathlib import PureWindowsPath
from typing import Dict, List, Mapping, Optional, Sequence, Tuple

from .envmap import RunEnvironment
from .errors import ExecutionError, UnsupportedExecutorError


@dataclass(frozen=True)
class ShellPreset:
    """How to hand a script (inline or as a file) to one interpreter."""
    name: str
    inline: Tuple[str, ...]
    file: Tuple[str, ...] = ()
    extensions: Tuple[str, ...] = ()
    # inline args become positional parameters ($1...) after a $0 placeholder
    posix_args: bool = False
    # inline args are passed straight after the script (python, ruby, node)
    trailing_args: bool = False
    # file extensions that need extra flags before the file
    file_overrides: Dict[str, Tuple[str, ...]] = field(default_factory=dict)


_PWSH_FLAGS = ("-NoProfile", "-NoLogo", "-NonInteractive", "-ExecutionPolicy", "Bypass")

PRESETS: Dict[str, ShellPreset] = {
    "bash": ShellPreset(
        "bash",
        inline=("--noprofile", "--norc", "-eo", "pipefail", "-c"),
        file=("--noprofile", "--norc", "-eo", "pipefail"),
        extensions=(".sh", ".bash"),
        posix_args=True,
    ),
    "sh": ShellPreset("sh", inline=("-e", "-c"), file=("-e",), extensions=(".sh",), posix_args=True),
    "zsh": ShellPreset(
        "zsh", inline=("-e", "-c"), file=("-e",), extensions=(".zsh", ".sh"), posix_args=True
    ),
    "pwsh": ShellPreset("pwsh", inline=(*_PWSH_FLAGS, "-Command"), file=(*_PWSH_FLAGS, "-File"), extensions=(".ps1",)),
    "powershell": ShellPreset(
        "powershell", inline=(*_PWSH_FLAGS, "-Command"), file=(*_PWSH_FLAGS, "-File"), extensions=(".ps1",)
    ),
    "cmd": ShellPreset("cmd", inline=("/D", "/E:ON", "/V:OFF", "/S", "/C"), file=("/D", "/C"), extensions=(".cmd", ".bat")),
    "python": ShellPreset("python", inline=("-c",), extensions=(".py",), trailing_args=True),
    "ruby": ShellPreset("ruby", inline=("-e",), extensions=(".rb",), trailing_args=True),
    "node": ShellPreset(
        "node",
        inline=("-e",),
        extensions=(".js", ".mjs", ".cjs", ".ts"),
        trailing_args=True,
        file_overrides={".ts": ("--experimental-transform-types",)},
    ),
    "deno": ShellPreset("deno", inline=("eval", "--ext=ts"), file=("run", "-A"), extensions=(".ts", ".js")),
    "bun": ShellPreset("bun", inline=("-e",), file=("run",), extensions=(".ts", ".js")),
}

SUPPORTED_SHELLS = tuple(PRESETS)


def normalize_shell_name(shell: str) -> str:
    # either separator, whatever the host platform
    name = PureWindowsPath(shell.strip()).name.lower()
    for suffix in (".exe", ".cmd"):
        if name.endswith(suffix):
            name = name[: -len(suffix)]
    if name in ("python3", "py"):
        name = "python"
    return name


def get_preset(shell: str) -> ShellPreset:
    name = normalize_shell_name(shell)
    preset = PRESETS.get(name)
    if preset is None:
        raise UnsupportedExecutorError(
            f"unsupported task executor: {shell}",
            details={"supported": ", ".join(SUPPORTED_SHELLS)},
        )
    return preset


class ExecutableLocator:
    """
    Finds interpreter executables.

    Lookup order: ``XTASK_<NAME>_EXE`` in the task environment, paths
    registered on this locator, then the PATH of the task environment.
    """

    def __init__(self, paths: Optional[Mapping[str, str]] = None):
        self._paths: Dict[str, str] = dict(paths or {})

    @staticmethod
    def env_key(name: str) -> str:
        return f"XTASK_{normalize_shell_name(name).upper()}_EXE"

    def register(self, name: str, path: str) -> None:
        self._paths[normalize_shell_name(name)] = path

    def find(self, name: str, env: Optional[RunEnvironment] = None) -> Optional[str]:
        if env is not None:
            override = env.get(self.env_key(name))
            if override:
                return override

        registered = self._paths.get(normalize_shell_name(name))
        if registered:
            return registered

        search = env.get_path() if env is not None else None
        candidates = [name]
        if name == "python":
            candidates.append("python3")
        for candidate in candidates:
            found = shutil.which(candidate, path=search)
            if found:
                return found
        return None

    def require(self, name: str, env: Optional[RunEnvironment] = None) -> str:
        found = self.find(name, env)
        if not found:
            raise ExecutionError(
                f"executable not found: {name}",
                details={"hint": f"install {name} or set {self.env_key(name)}"},
            )
        return found


def _quote_inline(preset: ShellPreset, args: Sequence[str]) -> str:
    if preset.name in ("pwsh", "powershell"):
        return " ".join("'" + a.replace("'", "''") + "'" for a in args)
    if preset.name == "cmd":
        return " ".join(f'"{a}"' if " " in a else a for a in args)
    return " ".join(shlex.quote(a) for a in args)


def script_file_reference(preset: ShellPreset, script: str) -> Optional[List[str]]:
    """
    Tokens of a single-line script that starts with a file the interpreter
    runs directly (``./deploy.sh --fast``), else None.
    """
    text = script.strip()
    if not text or "\n" in text:
        return None
    try:
        tokens = shlex.split(text, posix=os.name != "nt")
    except ValueError:
        return None
    if tokens and tokens[0].lower().endswith(preset.extensions):
        return tokens
    return None


def build_command(
    shell: str,
    script: str,
    args: Sequence[str],
    locator: ExecutableLocator,
    env: Optional[RunEnvironment] = None,
) -> List[str]:
    """
    Build the argv that runs ``script`` with ``shell``.

    Args:
        shell: Interpreter name (bash, pwsh, python, ...)
        script: Inline script text or a single-line file reference
        args: Extra arguments for the script
        locator: Resolves the interpreter executable
        env: Task environment used for executable lookup

    Returns:
        argv list ready for subprocess
    """
    preset = get_preset(shell)
    exe = locator.require(preset.name, env)
    args = list(args)

    tokens = script_file_reference(preset, script)
    if tokens is not None:
        path, rest = tokens[0], tokens[1:]
        ext = os.path.splitext(path)[1].lower()
        flags = preset.file_overrides.get(ext, preset.file)
        return [exe, *flags, path, *rest, *args]

    if preset.posix_args:
        return [exe, *preset.inline, script, preset.name, *args] if args else [exe, *preset.inline, script]
    if preset.trailing_args:
        return [exe, *preset.inline, script, *args]
    if args:
        script = f"{script.rstrip()} {_quote_inline(preset, args)}"
    return [exe, *preset.inline, script]
