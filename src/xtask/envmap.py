# envmap.py
from __future__ import annotations

import copy
import os
from typing import Dict, Iterator, List, Mapping, Optional, Set, Tuple

IS_WINDOWS = os.name == "nt"


class RunEnvironment:
    """
    Insertion-ordered key/value table used as the environment of a run or task.

    Keys are case-insensitive on Windows (the first spelling seen is kept) and
    case-sensitive elsewhere. A parallel set tracks which keys hold secrets.
    """

    def __init__(
        self,
        values: Mapping[str, str] | None = None,
        *,
        case_sensitive: bool | None = None,
        path_key: str | None = None,
    ):
        self.case_sensitive = (not IS_WINDOWS) if case_sensitive is None else case_sensitive
        self.path_key = path_key or ("Path" if IS_WINDOWS else "PATH")
        self.path_sep = ";" if self.path_key == "Path" else os.pathsep
        self._data: Dict[str, str] = {}
        self._index: Dict[str, str] = {}
        self._secrets: Set[str] = set()
        for k, v in (values or {}).items():
            self.set(k, v)

    @classmethod
    def from_os_environ(cls) -> RunEnvironment:
        return cls(dict(os.environ))

    # ------------------------------------------------------------------
    # Keys
    # ------------------------------------------------------------------

    def _norm(self, key: str) -> str:
        return key if self.case_sensitive else key.casefold()

    def _actual(self, key: str) -> Optional[str]:
        return self._index.get(self._norm(key))

    def get(self, key: str, default: Optional[str] = None) -> Optional[str]:
        actual = self._actual(key)
        if actual is None:
            return default
        return self._data[actual]

    def set(self, key: str, value: str, *, secret: bool = False) -> None:
        actual = self._actual(key)
        if actual is None:
            actual = key
            self._index[self._norm(key)] = key
        self._data[actual] = value
        if secret:
            self._secrets.add(self._norm(key))

    def update(self, values: Mapping[str, str]) -> None:
        for k, v in values.items():
            self.set(k, v)

    def has(self, key: str) -> bool:
        return self._actual(key) is not None

    def __contains__(self, key: object) -> bool:
        return isinstance(key, str) and self.has(key)

    def delete(self, key: str) -> None:
        actual = self._index.pop(self._norm(key), None)
        if actual is not None:
            del self._data[actual]
        self._secrets.discard(self._norm(key))

    def keys(self) -> List[str]:
        return list(self._data.keys())

    def items(self) -> List[Tuple[str, str]]:
        return list(self._data.items())

    def __iter__(self) -> Iterator[str]:
        return iter(self.keys())

    def __len__(self) -> int:
        return len(self._data)

    def __repr__(self) -> str:
        return f"RunEnvironment({len(self)} keys, {len(self._secrets)} secret)"

    # ------------------------------------------------------------------
    # Secrets
    # ------------------------------------------------------------------

    def mark_secret(self, key: str) -> None:
        if self.has(key):
            self._secrets.add(self._norm(key))

    def is_secret(self, key: str) -> bool:
        return self._norm(key) in self._secrets

    def secret_values(self) -> List[str]:
        values = []
        for key, value in self._data.items():
            if self._norm(key) in self._secrets and value:
                values.append(value)
        return values

    # ------------------------------------------------------------------
    # PATH helpers
    # ------------------------------------------------------------------

    def get_path(self) -> str:
        return self.get(self.path_key) or ""

    def set_path(self, value: str) -> None:
        self.set(self.path_key, value)

    def split_path(self) -> List[str]:
        return [p for p in self.get_path().split(self.path_sep) if p]

    def _same_path(self, a: str, b: str) -> bool:
        if self.case_sensitive:
            return a == b
        return a.casefold() == b.casefold()

    def has_path(self, entry: str) -> bool:
        return any(self._same_path(entry, p) for p in self.split_path())

    def prepend_path(self, entry: str) -> None:
        parts = self.split_path()
        if parts and self._same_path(parts[0], entry):
            return
        parts = [p for p in parts if not self._same_path(p, entry)]
        self.set_path(self.path_sep.join([entry, *parts]))

    def append_path(self, entry: str) -> None:
        if self.has_path(entry):
            return
        self.set_path(self.path_sep.join([*self.split_path(), entry]))

    # ------------------------------------------------------------------
    # Copies
    # ------------------------------------------------------------------

    def clone(self) -> RunEnvironment:
        return copy.deepcopy(self)

    def to_dict(self) -> Dict[str, str]:
        return dict(self._data)
