__version__ = "0.1.0"

from .errors import XTaskError
from .model import TaskResult, TaskStatus
from .runner import Workflow

__all__ = ["__version__", "Workflow", "TaskResult", "TaskStatus", "XTaskError"]
