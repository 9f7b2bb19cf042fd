# executors/ssh.py
from __future__ import annotations

import time
from typing import Optional, TextIO

import paramiko

from ..cancel import race
from ..errors import ExecutionError, ProcessExitError, TaskCancelledError, XTaskError
from ..logging import get_logger
from ..model import TaskResult
from ..schema import Host
from . import remote
from .base import TaskContext

log = get_logger(__name__)

RECV_CHUNK = 32 * 1024
POLL_INTERVAL = 0.05


def _pump(chan, out: TextIO, err: TextIO) -> int:
    while True:
        if chan.recv_ready():
            out.write(chan.recv(RECV_CHUNK).decode("utf-8", errors="replace"))
            out.flush()
        elif chan.recv_stderr_ready():
            err.write(chan.recv_stderr(RECV_CHUNK).decode("utf-8", errors="replace"))
            err.flush()
        elif chan.exit_status_ready() or chan.closed:
            break
        else:
            time.sleep(POLL_INTERVAL)
    return chan.recv_exit_status()


class RemoteCommand:
    """One command on one host; ``interrupt`` may be called from another thread."""

    def __init__(self, ctx: TaskContext, host: Host, command: str):
        self.ctx = ctx
        self.host = host
        self.command = command
        self.client: Optional[paramiko.SSHClient] = None
        self.chan = None
        self.interrupted = False

    def run(self) -> int:
        self.client = remote.connect(self.host, self.ctx.env)
        try:
            chan = self.client.get_transport().open_session()
            self.chan = chan
            if self.interrupted:
                raise self.ctx.token.error()
            chan.get_pty()
            for key in self.ctx.task.env:
                value = self.ctx.env.get(key)
                if value is not None:
                    chan.set_environment_variable(key, value)
            chan.exec_command(self.command)
            return _pump(chan, self.ctx.stdout, self.ctx.stderr)
        finally:
            self.client.close()

    def interrupt(self) -> None:
        self.interrupted = True
        chan = self.chan
        if chan is not None and not chan.closed:
            try:
                chan.send(b"\x03")
            except (OSError, EOFError, paramiko.SSHException) as e:
                log.debug("interrupt to %s failed: %s", self.host.label, e)
            chan.close()
        elif self.client is not None:
            self.client.close()


def run_ssh(ctx: TaskContext) -> TaskResult:
    task = ctx.task
    result = TaskResult.start(task.id)

    command = (task.run or "").strip()
    if not command:
        return result.fail(ExecutionError("ssh task has no command to run", task=task.id))

    try:
        hosts = remote.resolve_targets(ctx)
    except XTaskError as e:
        return result.fail(e)

    for host in hosts:
        ctx.stdout.write(f"[{host.label}]\n")
        cmd = RemoteCommand(ctx, host, command)
        try:
            code = race(cmd.run, ctx.token, on_cancel=cmd.interrupt)
        except TaskCancelledError as e:
            e.task, e.host = task.id, host.label
            return result.cancel(e)
        except XTaskError as e:
            e.task = e.task or task.id
            e.host = e.host or host.label
            return result.fail(e)
        except (paramiko.SSHException, OSError) as e:
            return result.fail(
                ExecutionError(f"ssh session failed: {e}", task=task.id, host=host.label)
            )

        if code != 0:
            return result.fail(
                ProcessExitError(
                    f"Task {task.id} failed on {host.label} with exit code {code}",
                    task=task.id,
                    host=host.label,
                    exit_code=code,
                )
            )

    return result.ok()
