# errors.py
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, ClassVar, Dict, List, Optional, TYPE_CHECKING

if TYPE_CHECKING:
    from .model import TaskResult


@dataclass(eq=False)
class XTaskError(Exception):
    """
    Structured runner error with enough context for:
      - clean CLI output
      - annotating the failing task, file or host
      - debugging without full tracebacks
    """
    message: str
    task: str | None = None
    file: str | None = None
    host: str | None = None
    details: Dict[str, Any] = field(default_factory=dict)

    kind: ClassVar[str] = "error"

    def __post_init__(self) -> None:
        Exception.__init__(self, self.message)

    def __str__(self) -> str:
        lines = [self.message]
        if self.task:
            lines.append(f"task={self.task}")
        if self.file:
            lines.append(f"file={self.file}")
        if self.host:
            lines.append(f"host={self.host}")
        for k, v in self.details.items():
            lines.append(f"{k}={v}")
        return "\n".join(lines)

    @property
    def title(self) -> str:
        return self.kind.replace("_", " ").capitalize() + " error"


# ----------------------------------------------------------------------
# Configuration
# ----------------------------------------------------------------------

class ConfigError(XTaskError):
    kind = "config"


class UnsupportedExecutorError(ConfigError):
    kind = "config"


# ----------------------------------------------------------------------
# Resolution
# ----------------------------------------------------------------------

class ResolutionError(XTaskError):
    kind = "resolution"


class TaskNotFoundError(ResolutionError):
    pass


@dataclass(eq=False)
class CycleError(ResolutionError):
    ids: List[str] = field(default_factory=list)

    @classmethod
    def from_ids(cls, ids: List[str], file: str | None = None) -> CycleError:
        listing = "\n".join(f" - {i}" for i in ids)
        return cls(f"cyclical task dependencies detected:\n{listing}", file=file, ids=list(ids))


class HookNotFoundError(ResolutionError):
    pass


class DelegationError(ResolutionError):
    pass


# ----------------------------------------------------------------------
# Environment
# ----------------------------------------------------------------------

class EnvError(XTaskError):
    kind = "environment"


class EnvFileNotFoundError(EnvError):
    pass


class ExpansionSyntaxError(EnvError):
    pass


class ExpansionError(EnvError):
    pass


@dataclass(eq=False)
class CommandSubstitutionError(ExpansionError):
    command: str = ""
    exit_code: Optional[int] = None
    stderr: str = ""

    def __str__(self) -> str:
        text = super().__str__()
        if self.stderr:
            text = f"{text}\n{self.stderr.rstrip()}"
        return text


# ----------------------------------------------------------------------
# Execution
# ----------------------------------------------------------------------

class ExecutionError(XTaskError):
    kind = "execution"


@dataclass(eq=False)
class ProcessExitError(ExecutionError):
    exit_code: int = 1


class AuthenticationError(ExecutionError):
    pass


class TransferError(ExecutionError):
    pass


@dataclass(eq=False)
class TaskFailedError(ExecutionError):
    result: Optional["TaskResult"] = None


@dataclass(eq=False)
class TaskCancelledError(XTaskError):
    timed_out: bool = False
    result: Optional["TaskResult"] = None

    kind: ClassVar[str] = "cancelled"
