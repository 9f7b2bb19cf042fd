# executors/base.py
from __future__ import annotations

import sys
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, TextIO
from urllib.parse import SplitResult, parse_qs, urlsplit

from ..cancel import CancelToken
from ..environment import RunSettings
from ..envmap import RunEnvironment
from ..expand import expand
from ..schema import Host, TaskDefinition
from ..shells import ExecutableLocator


_TRUTHY = ("1", "true", "yes", "on")


def is_truthy(value: Optional[str]) -> bool:
    return (value or "").strip().lower() in _TRUTHY


def scheme_of(uses: str) -> str:
    if "://" in uses:
        return uses.split("://", 1)[0].lower()
    return uses.strip().lower()


@dataclass
class TaskContext:
    """Everything a backend needs to run one task."""
    task: TaskDefinition
    env: RunEnvironment
    settings: RunSettings
    token: CancelToken
    locator: ExecutableLocator
    cwd: Path
    hosts: Dict[str, Host] = field(default_factory=dict)
    values: Dict[str, Any] = field(default_factory=dict)
    args: List[str] = field(default_factory=list)
    stdout: TextIO = field(default_factory=lambda: sys.stdout)
    stderr: TextIO = field(default_factory=lambda: sys.stderr)

    @property
    def uses(self) -> str:
        return (self.task.uses or "").strip()

    @property
    def scheme(self) -> str:
        return scheme_of(self.uses)

    @property
    def shell(self) -> str:
        return self.uses or self.env.get("XTASK_SHELL") or self.settings.shell

    @property
    def uri(self) -> SplitResult:
        uses = self.uses
        if "://" not in uses:
            uses = f"{uses}://"
        return urlsplit(self.expand(uses))

    def query(self) -> Dict[str, str]:
        return {k: v[-1] for k, v in parse_qs(self.uri.query, keep_blank_values=True).items()}

    def option(self, name: str, env_key: str) -> bool:
        """True when the selector query or the task environment enables ``name``."""
        q = self.query()
        if name in q and (q[name] == "" or is_truthy(q[name])):
            return True
        return is_truthy(self.env.get(env_key))

    def expand(self, text: str) -> str:
        return expand(text, self.env, self.settings.expand_options())

    def resolve_path(self, value: str) -> Path:
        p = Path(self.expand(value)).expanduser()
        if not p.is_absolute():
            p = self.cwd / p
        return p

    def file_pairs(self) -> List[tuple[str, str]]:
        """``source:destination`` entries from ``with.files`` (destination may be empty)."""
        raw = self.task.with_.get("files") or []
        if isinstance(raw, str):
            raw = [raw]
        pairs = []
        for item in raw:
            text = str(item)
            src, sep, dest = text.partition(":")
            if sep and len(src) == 1 and dest[:1] in ("\\", "/"):
                # drive letter, split on the next colon
                rest_src, sep2, dest2 = dest.partition(":")
                src, dest = f"{src}:{rest_src}", dest2 if sep2 else ""
            pairs.append((src.strip(), dest.strip()))
        return pairs
