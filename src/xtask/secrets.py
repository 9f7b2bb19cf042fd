# secrets.py
from __future__ import annotations

from typing import Iterable, Set

from .envmap import RunEnvironment

MASK = "****"


class SecretMasker:
    """Replaces known secret values in text before it is printed."""

    def __init__(self, values: Iterable[str] = ()):
        self._values: Set[str] = set()
        for v in values:
            self.add(v)

    def add(self, value: str) -> None:
        if value and value.strip():
            self._values.add(value)

    def add_env(self, env: RunEnvironment) -> None:
        for value in env.secret_values():
            self.add(value)

    def __len__(self) -> int:
        return len(self._values)

    def mask(self, text: str) -> str:
        # longer values first so a secret containing another is masked whole
        for value in sorted(self._values, key=len, reverse=True):
            text = text.replace(value, MASK)
        return text
