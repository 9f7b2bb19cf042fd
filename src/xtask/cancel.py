# cancel.py
from __future__ import annotations

import threading
from concurrent.futures import FIRST_COMPLETED, Future, InvalidStateError, ThreadPoolExecutor, wait
from typing import Callable, List, Optional, TypeVar

from .errors import TaskCancelledError

T = TypeVar("T")


class CancelToken:
    """
    Cooperative cancellation signal shared by the runner and every backend.

    Child tokens fire when their parent fires, and optionally after a
    deadline (task timeouts).
    """

    def __init__(self, parent: Optional[CancelToken] = None):
        self._event = threading.Event()
        self._lock = threading.Lock()
        self._callbacks: List[Callable[[], None]] = []
        self._timer: Optional[threading.Timer] = None
        self._parent = parent
        self.reason: str = ""
        self.timed_out = False
        if parent is not None:
            parent.add_callback(self._from_parent)

    def _from_parent(self) -> None:
        if self._parent is not None:
            self.cancel(self._parent.reason, timed_out=self._parent.timed_out)

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self, reason: str = "cancelled", *, timed_out: bool = False) -> None:
        with self._lock:
            if self._event.is_set():
                return
            self.reason = reason
            self.timed_out = timed_out
            self._event.set()
            callbacks = list(self._callbacks)
            self._callbacks.clear()
        for cb in callbacks:
            cb()

    def add_callback(self, cb: Callable[[], None]) -> None:
        with self._lock:
            if not self._event.is_set():
                self._callbacks.append(cb)
                return
        cb()

    def remove_callback(self, cb: Callable[[], None]) -> None:
        with self._lock:
            if cb in self._callbacks:
                self._callbacks.remove(cb)

    def wait(self, timeout: float | None = None) -> bool:
        return self._event.wait(timeout)

    def child(self, timeout: float | None = None) -> CancelToken:
        token = CancelToken(parent=self)
        if timeout:
            token._timer = threading.Timer(
                timeout,
                token.cancel,
                args=(f"timed out after {timeout:g}s",),
                kwargs={"timed_out": True},
            )
            token._timer.daemon = True
            token._timer.start()
        return token

    def close(self) -> None:
        """Stop the deadline timer and detach from the parent."""
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
        if self._parent is not None:
            self._parent.remove_callback(self._from_parent)

    def error(self, message: str | None = None) -> TaskCancelledError:
        return TaskCancelledError(message or self.reason or "cancelled", timed_out=self.timed_out)

    def raise_if_cancelled(self) -> None:
        if self.cancelled:
            raise self.error()


def race(
    fn: Callable[[], T],
    token: CancelToken,
    on_cancel: Optional[Callable[[], None]] = None,
) -> T:
    """
    Run ``fn`` on a worker thread and wait for it or for cancellation.

    If ``fn`` finishes first its result (or exception) is returned. If the
    token fires first, ``on_cancel`` runs (to interrupt the work) and the
    token's TaskCancelledError is raised.
    """
    token.raise_if_cancelled()

    cancelled: Future = Future()

    def _fire() -> None:
        try:
            cancelled.set_result(None)
        except InvalidStateError:
            pass

    pool = ThreadPoolExecutor(max_workers=1, thread_name_prefix="xtask-race")
    try:
        work = pool.submit(fn)
        token.add_callback(_fire)
        try:
            wait([work, cancelled], return_when=FIRST_COMPLETED)
        finally:
            token.remove_callback(_fire)

        if work.done():
            return work.result()

        if on_cancel is not None:
            on_cancel()
        raise token.error()
    finally:
        pool.shutdown(wait=False)
