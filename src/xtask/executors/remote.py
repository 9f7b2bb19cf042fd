# executors/remote.py
from __future__ import annotations

import os
from typing import BinaryIO, Dict, List

import paramiko

from ..cancel import CancelToken
from ..envmap import RunEnvironment
from ..errors import AuthenticationError, ConfigError, ExecutionError
from ..logging import get_logger
from ..schema import Host
from .base import TaskContext

log = get_logger(__name__)

CONNECT_TIMEOUT = 30.0
COPY_CHUNK = 32 * 1024


# ----------------------------------------------------------------------
# Targets
# ----------------------------------------------------------------------

def resolve_targets(ctx: TaskContext) -> List[Host]:
    """
    Hosts a remote task runs against, in order.

    The selector URI host wins; otherwise the task's ``hosts`` list (host
    names or group names); otherwise every declared host.
    """
    uri = ctx.uri
    if uri.hostname:
        try:
            port = uri.port or 22
        except ValueError as e:
            raise ConfigError(f"invalid port in selector: {ctx.uses}", task=ctx.task.id) from e
        return [
            Host(
                name=uri.hostname,
                host=uri.hostname,
                port=port,
                user=uri.username or None,
                password=uri.password or None,
                identity=ctx.query().get("identity") or None,
            )
        ]

    if ctx.task.hosts:
        found: Dict[str, Host] = {}
        for name in ctx.task.hosts:
            if name in ctx.hosts:
                found.setdefault(name, ctx.hosts[name])
                continue
            members = [h for h in ctx.hosts.values() if name in h.groups]
            if not members:
                raise ConfigError(f"unknown host or group: {name}", task=ctx.task.id)
            for h in members:
                found.setdefault(h.label, h)
        targets = list(found.values())
    else:
        targets = list(ctx.hosts.values())

    if not targets:
        raise ConfigError("no target hosts for remote task", task=ctx.task.id)
    return targets


# ----------------------------------------------------------------------
# Connections
# ----------------------------------------------------------------------

def agent_available() -> bool:
    try:
        return bool(paramiko.Agent().get_keys())
    except paramiko.SSHException:
        return False


def connect(host: Host, env: RunEnvironment, timeout: float = CONNECT_TIMEOUT) -> paramiko.SSHClient:
    """
    Open an SSH connection to ``host``.

    Authentication order: password (only when no identity file is given),
    then a running agent, then the identity file. The password field names
    an environment variable that is read from ``env``.
    """
    password = env.get(host.password) if host.password else None
    identity = os.path.expanduser(host.identity) if host.identity else None

    kwargs = {
        "hostname": host.host,
        "port": host.port,
        "username": host.user or env.get("USER") or None,
        "timeout": timeout,
        "allow_agent": False,
        "look_for_keys": False,
    }
    if password and not identity:
        kwargs["password"] = password
    elif agent_available():
        kwargs["allow_agent"] = True
    elif identity:
        kwargs["key_filename"] = identity
        if password:
            kwargs["passphrase"] = password
    else:
        raise AuthenticationError("no authentication method provided", host=host.label)

    client = paramiko.SSHClient()
    client.set_missing_host_key_policy(paramiko.AutoAddPolicy())
    log.debug("connecting to %s@%s:%s", kwargs["username"], host.host, host.port)
    try:
        client.connect(**kwargs)
    except paramiko.AuthenticationException as e:
        client.close()
        raise AuthenticationError(f"authentication failed: {e}", host=host.label) from e
    except (paramiko.SSHException, OSError) as e:
        client.close()
        raise ExecutionError(f"connection failed: {e}", host=host.label) from e
    return client


# ----------------------------------------------------------------------
# Streams
# ----------------------------------------------------------------------

class CancellableReader:
    """File wrapper that checks the cancel token before every read."""

    def __init__(self, fh: BinaryIO, token: CancelToken):
        self.fh = fh
        self.token = token

    def read(self, size: int = -1) -> bytes:
        self.token.raise_if_cancelled()
        return self.fh.read(size)


def copy_stream(src: BinaryIO, dest: BinaryIO, token: CancelToken, chunk: int = COPY_CHUNK) -> int:
    reader = CancellableReader(src, token)
    total = 0
    while True:
        data = reader.read(chunk)
        if not data:
            return total
        dest.write(data)
        total += len(data)
