# expand.py
"""
Shell-style variable expansion.

Supported forms:
  - ``$$`` and ``\\$``: a literal ``$``
  - ``$NAME`` and ``${NAME}``
  - ``${NAME:-default}``, ``${NAME:default}``: default when unset or empty
  - ``${NAME:=default}``: default, assigned back to the source
  - ``${NAME:?message}``: error when unset or empty
  - ``$1`` / ``${1}``: positional process argument (when enabled)
  - ``$(cmd args)``: command substitution (when enabled)
  - ``%NAME%``: Windows form (when enabled)

Values are looked up through a ``VariableSource`` so callers decide where
variables live (a run environment, a plain dict, os.environ).
"""

from __future__ import annotations

import os
import shlex
import subprocess
import sys
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Mapping, MutableMapping, Optional, Protocol, Sequence

from .errors import CommandSubstitutionError, ExpansionError, ExpansionSyntaxError


class VariableSource(Protocol):
    """Lookup/assign/enumerate capability consumed by the expander."""

    def get(self, key: str) -> Optional[str]: ...

    def set(self, key: str, value: str) -> None: ...

    def keys(self) -> Iterable[str]: ...


class MappingSource:
    """Adapts a plain mutable mapping (dict, os.environ) to ``VariableSource``."""

    def __init__(self, data: MutableMapping[str, str]):
        self.data = data

    def get(self, key: str) -> Optional[str]:
        return self.data.get(key)

    def set(self, key: str, value: str) -> None:
        self.data[key] = value

    def keys(self) -> Iterable[str]:
        return list(self.data.keys())


SHELL_SUBSTITUTION_FLAGS: Dict[str, List[str]] = {
    "bash": ["--noprofile", "--norc", "-e", "-o", "pipefail", "-c"],
    "sh": ["-e", "-c"],
    "zsh": ["-e", "-c"],
    "powershell": ["-NoLogo", "-NoProfile", "-NonInteractive", "-ExecutionPolicy", "Bypass", "-Command"],
    "pwsh": ["-NoLogo", "-NoProfile", "-NonInteractive", "-ExecutionPolicy", "Bypass", "-Command"],
}


@dataclass
class ExpandOptions:
    windows_vars: bool = False
    posix_vars: bool = True
    unix_args: bool = True
    command_substitution: bool = False
    shell_expansion: bool = False
    shell: str = ""
    shell_args: List[str] = field(default_factory=list)
    argv: Optional[Sequence[str]] = None
    cwd: Optional[str] = None


def _is_name_char(c: str) -> bool:
    return c.isascii() and (c.isalnum() or c == "_")


def is_identifier(key: str) -> bool:
    if not key:
        return False
    if not (key[0].isascii() and (key[0].isalpha() or key[0] == "_")):
        return False
    return all(_is_name_char(c) for c in key)


def _find_closing(text: str, start: int, opener: str, closer: str) -> int:
    depth = 0
    for j in range(start, len(text)):
        c = text[j]
        if c == opener:
            depth += 1
        elif c == closer:
            if depth == 0:
                return j
            depth -= 1
    return -1


def _default_shell() -> str:
    return "powershell.exe" if os.name == "nt" else "bash"


class _Expander:
    def __init__(self, source: VariableSource, options: ExpandOptions):
        self.source = source
        self.options = options
        self.known: List[str] = []

    # ------------------------------------------------------------------
    # Scanner
    # ------------------------------------------------------------------

    def expand(self, text: str) -> str:
        o = self.options
        out: List[str] = []
        i, n = 0, len(text)

        while i < n:
            c = text[i]
            nxt = text[i + 1] if i + 1 < n else ""

            if c in ("$", "\\") and nxt == "$":
                out.append("$")
                i += 2
                continue

            if c == "$":
                if o.command_substitution and nxt == "(":
                    end = _find_closing(text, i + 2, "(", ")")
                    if end < 0:
                        raise ExpansionSyntaxError(
                            f"unterminated command substitution, missing ')': {text[i:]}"
                        )
                    out.append(self._substitute(text[i + 2:end]))
                    i = end + 1
                    continue

                if o.posix_vars and nxt == "{":
                    end = _find_closing(text, i + 2, "{", "}")
                    if end < 0:
                        raise ExpansionSyntaxError(
                            f"unterminated variable, missing '}}': {text[i:]}"
                        )
                    token = text[i + 2:end]
                    if not token:
                        raise ExpansionSyntaxError("empty variable name in '${}'")
                    out.append(self._interpolate(token))
                    i = end + 1
                    continue

                if o.posix_vars and nxt and _is_name_char(nxt):
                    j = i + 1
                    while j < n and _is_name_char(text[j]):
                        j += 1
                    out.append(self._lookup(text[i + 1:j]))
                    i = j
                    continue

            if o.windows_vars and c == "%":
                end = text.find("%", i + 1)
                if end < 0:
                    raise ExpansionSyntaxError(
                        f"unterminated windows variable, missing '%': {text[i:]}"
                    )
                key = text[i + 1:end]
                if not key:
                    raise ExpansionSyntaxError("empty windows variable name '%%'")
                out.append(self.source.get(key) or "")
                i = end + 1
                continue

            out.append(c)
            i += 1

        return "".join(out)

    # ------------------------------------------------------------------
    # Variables
    # ------------------------------------------------------------------

    def _positional(self, key: str) -> str:
        argv = self.options.argv if self.options.argv is not None else sys.argv
        index = int(key)
        return argv[index] if index < len(argv) else ""

    def _lookup(self, key: str) -> str:
        if self.options.unix_args and key.isdigit():
            return self._positional(key)
        if not is_identifier(key):
            raise ExpansionError(f"invalid variable name: {key}")
        return self.source.get(key) or ""

    def _interpolate(self, token: str) -> str:
        key, op, arg = token, "", ""
        colon = token.find(":")
        if colon >= 0:
            key, rest = token[:colon], token[colon + 1:]
            if rest[:1] in ("-", "=", "?"):
                op, arg = rest[0], rest[1:]
            else:
                op, arg = "-", rest

        if not key:
            raise ExpansionSyntaxError(f"empty variable name in '${{{token}}}'")

        if self.options.unix_args and key.isdigit():
            return self._positional(key)

        if not is_identifier(key):
            raise ExpansionError(f"invalid variable name: {key}")

        value = self.source.get(key)
        if value:
            return value

        if op in ("-", "="):
            default = self.expand(arg) if ("$" in arg or "%" in arg) else arg
            if op == "=":
                self.source.set(key, default)
                if key not in self.known:
                    self.known.append(key)
            return default

        if op == "?":
            raise ExpansionError(arg or f"{key}: parameter null or not set")

        return ""

    # ------------------------------------------------------------------
    # Command substitution
    # ------------------------------------------------------------------

    def _child_env(self) -> Dict[str, str]:
        env = dict(os.environ)
        for key in list(self.source.keys()) + self.known:
            value = self.source.get(key)
            if value is not None:
                env[key] = value
        return env

    def _substitute(self, expression: str) -> str:
        o = self.options
        if not expression.strip():
            raise ExpansionSyntaxError("empty command substitution '$()'")

        if o.shell_expansion:
            shell = o.shell or _default_shell()
            name = os.path.basename(shell).lower()
            if name.endswith(".exe"):
                name = name[:-4]
            flags = list(o.shell_args) or SHELL_SUBSTITUTION_FLAGS.get(name, [])
            argv = [shell, *flags, expression]
        else:
            try:
                tokens = shlex.split(expression, posix=True)
            except ValueError as e:
                raise ExpansionSyntaxError(
                    f"command substitution failed to parse: {expression}: {e}"
                ) from e
            argv = [self.expand(t) for t in tokens]
            if not argv:
                raise ExpansionSyntaxError("empty command substitution '$()'")

        try:
            proc = subprocess.run(
                argv,
                capture_output=True,
                text=True,
                env=self._child_env(),
                cwd=o.cwd or None,
            )
        except OSError as e:
            raise CommandSubstitutionError(
                f"command substitution failed: {e}", command=expression
            ) from e

        if proc.returncode != 0:
            raise CommandSubstitutionError(
                f"command substitution failed with exit code {proc.returncode}: {expression}",
                command=expression,
                exit_code=proc.returncode,
                stderr=proc.stderr or "",
            )

        return proc.stdout.rstrip()


# ----------------------------------------------------------------------
# Public API
# ----------------------------------------------------------------------

def expand(
    text: str,
    source: VariableSource | Mapping[str, str] | None = None,
    options: ExpandOptions | None = None,
) -> str:
    """
    Expand ``text`` against ``source``.

    Args:
        text: Input string
        source: A ``VariableSource``, a plain mutable mapping, or None for os.environ
        options: Feature toggles (defaults to POSIX variables and positional args)

    Returns:
        The expanded string

    Raises:
        ExpansionSyntaxError: Unterminated or empty tokens
        ExpansionError: Invalid identifiers or a triggered ``:?``
        CommandSubstitutionError: A failed ``$(...)``
    """
    options = options or ExpandOptions()
    if "$" not in text and not (options.windows_vars and "%" in text):
        return text

    if source is None:
        source = MappingSource(os.environ)
    elif not hasattr(source, "set"):
        source = MappingSource(source)  # type: ignore[arg-type]

    return _Expander(source, options).expand(text)  # type: ignore[arg-type]
