# envfiles.py
from __future__ import annotations

import io
import re
from pathlib import Path
from typing import Dict, Iterable, Iterator, List, Optional, Tuple

from dotenv import dotenv_values

from .errors import EnvFileNotFoundError
from .logging import get_logger

log = get_logger(__name__)

_BACKTICK_VALUE = re.compile(r"^(\s*(?:export\s+)?[^\s=#]+\s*=[ \t]*)`([^`]*)`(?=[ \t]*(?:#.*)?$)", re.MULTILINE)


def _backticks_to_double_quotes(text: str) -> str:
    """Rewrite backtick-quoted values as literal double-quoted ones for the dotenv lexer."""

    def quote(m: re.Match) -> str:
        value = m.group(2).replace("\\", "\\\\").replace('"', '\\"')
        return f'{m.group(1)}"{value}"'

    return _BACKTICK_VALUE.sub(quote, text)


class EnvDocument:
    """
    Ordered KEY=value entries read from one or more dotenv files.

    Merging overwrites values by key; a key keeps the position where it was
    first seen.
    """

    def __init__(self, entries: Iterable[Tuple[str, str]] = ()):
        self._entries: Dict[str, str] = {}
        for k, v in entries:
            self._entries[k] = v

    @classmethod
    def parse(cls, text: str, source: str = "<string>") -> EnvDocument:
        values = dotenv_values(stream=io.StringIO(_backticks_to_double_quotes(text)), interpolate=False)
        log.debug("parsed %d dotenv entries from %s", len(values), source)
        return cls((k, v if v is not None else "") for k, v in values.items())

    @classmethod
    def load(cls, path: str | Path) -> EnvDocument:
        p = Path(path)
        try:
            text = p.read_text(encoding="utf-8")
        except FileNotFoundError as e:
            raise EnvFileNotFoundError(f"dotenv file not found: {p}", file=str(p)) from e
        return cls.parse(text, source=str(p))

    def get(self, key: str) -> Optional[str]:
        return self._entries.get(key)

    def merge(self, other: EnvDocument) -> None:
        for k, v in other.items():
            self._entries[k] = v

    def items(self) -> List[Tuple[str, str]]:
        return list(self._entries.items())

    def keys(self) -> List[str]:
        return list(self._entries.keys())

    def __iter__(self) -> Iterator[str]:
        return iter(self.keys())

    def __len__(self) -> int:
        return len(self._entries)


def split_optional(path: str) -> Tuple[str, bool]:
    """Strip the trailing ``?`` that marks a file as optional."""
    if path.endswith("?"):
        return path[:-1], True
    return path, False


def read_env_files(paths: Iterable[str], root_dir: str | Path | None = None) -> EnvDocument:
    """
    Read and merge dotenv files in order, before any expansion.

    Relative paths resolve against ``root_dir``. Files marked optional with a
    trailing ``?`` are skipped when absent; a missing required file raises.
    """
    merged = EnvDocument()
    for raw in paths:
        path, optional = split_optional(raw)
        p = Path(path).expanduser()
        if root_dir is not None and not p.is_absolute():
            p = Path(root_dir) / p

        if not p.is_file():
            if optional:
                log.debug("skipping optional dotenv file %s", p)
                continue
            raise EnvFileNotFoundError(f"dotenv file not found: {p}", file=str(p))

        log.debug("loading dotenv file %s", p)
        merged.merge(EnvDocument.load(p))
    return merged
