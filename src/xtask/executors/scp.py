# executors/scp.py
from __future__ import annotations

import posixpath
from typing import List, Tuple

import paramiko

from ..errors import ConfigError, TaskCancelledError, TransferError, XTaskError
from ..logging import get_logger
from ..model import TaskResult
from ..schema import Host
from . import remote
from .base import TaskContext

log = get_logger(__name__)

DIRECTIONS = ("upload", "download")


def transfer_direction(ctx: TaskContext) -> str:
    direction = ctx.uri.path.strip("/").lower() or "upload"
    if direction not in DIRECTIONS:
        raise ConfigError(
            f"unknown scp direction: {direction} (expected upload or download)", task=ctx.task.id
        )
    return direction


def _copy_to_host(ctx: TaskContext, host: Host, direction: str, pairs: List[Tuple[str, str]]) -> None:
    client = remote.connect(host, ctx.env)
    try:
        sftp = client.open_sftp()
        try:
            for src, dest in pairs:
                ctx.token.raise_if_cancelled()
                if direction == "upload":
                    local = ctx.resolve_path(src)
                    target = ctx.expand(dest) if dest else local.name
                    log.debug("upload %s -> %s:%s", local, host.label, target)
                    with open(local, "rb") as fh, sftp.open(target, "wb") as out:
                        remote.copy_stream(fh, out, ctx.token)
                else:
                    source = ctx.expand(src)
                    local = ctx.resolve_path(dest or posixpath.basename(source))
                    local.parent.mkdir(parents=True, exist_ok=True)
                    log.debug("download %s:%s -> %s", host.label, source, local)
                    with sftp.open(source, "rb") as fh, open(local, "wb") as out:
                        remote.copy_stream(fh, out, ctx.token)
        finally:
            sftp.close()
    finally:
        client.close()


def run_scp(ctx: TaskContext) -> TaskResult:
    task = ctx.task
    result = TaskResult.start(task.id)

    pairs = ctx.file_pairs()
    if not pairs:
        return result.fail(ConfigError("scp task needs 'with.files' entries", task=task.id))
    bad = [s for s, _ in pairs if not s]
    if bad:
        return result.fail(ConfigError("scp file entry has an empty source", task=task.id))

    try:
        direction = transfer_direction(ctx)
        hosts = remote.resolve_targets(ctx)
    except XTaskError as e:
        return result.fail(e)

    for host in hosts:
        try:
            _copy_to_host(ctx, host, direction, pairs)
        except TaskCancelledError as e:
            e.task, e.host = task.id, host.label
            return result.cancel(e)
        except XTaskError as e:
            e.task = e.task or task.id
            e.host = e.host or host.label
            return result.fail(e)
        except (OSError, paramiko.SSHException) as e:
            return result.fail(
                TransferError(f"{direction} failed: {e}", task=task.id, host=host.label)
            )

    result.output["files"] = len(pairs)
    return result.ok()
