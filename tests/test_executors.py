import io
import shutil
import threading

import paramiko
import pytest

from xtask.cancel import CancelToken
from xtask.envmap import RunEnvironment
from xtask.errors import (
    AuthenticationError,
    ConfigError,
    ExecutionError,
    ProcessExitError,
    TaskCancelledError,
    UnsupportedExecutorError,
)
from xtask.executors import dispatch, remote, select_executor
from xtask.executors.docker import run_docker
from xtask.executors.scp import run_scp
from xtask.executors.shell import run_shell
from xtask.executors.ssh import run_ssh
from xtask.executors.tmpl import run_template
from xtask.model import TaskStatus
from xtask.schema import Host

from conftest import make_context

requires_sh = pytest.mark.skipif(shutil.which("sh") is None, reason="sh not installed")


# ----------------------------------------------------------------------
# Fakes
# ----------------------------------------------------------------------

class FakeChannel:
    def __init__(self, output=b"", exit_code=0, block=False):
        self.output = output
        self.exit_code = exit_code
        self.block = block
        self.closed = False
        self.sent = []
        self.env = {}
        self.command = None

    def get_pty(self):
        pass

    def set_environment_variable(self, key, value):
        self.env[key] = value

    def exec_command(self, command):
        self.command = command

    def recv_ready(self):
        return bool(self.output)

    def recv(self, n):
        data, self.output = self.output[:n], self.output[n:]
        return data

    def recv_stderr_ready(self):
        return False

    def exit_status_ready(self):
        return not self.block

    def recv_exit_status(self):
        return -1 if self.closed else self.exit_code

    def send(self, data):
        self.sent.append(data)

    def close(self):
        self.closed = True


class _RemoteFile(io.BytesIO):
    def __init__(self, files, path):
        super().__init__()
        self._files = files
        self._path = path

    def close(self):
        if not self.closed:
            self._files[self._path] = self.getvalue()
        super().close()


class FakeSFTP:
    def __init__(self, files=None):
        self.files = files if files is not None else {}

    def open(self, path, mode="r"):
        if "w" in mode:
            return _RemoteFile(self.files, path)
        return io.BytesIO(self.files[path])

    def close(self):
        pass


class FakeClient:
    def __init__(self, channel=None, sftp=None):
        self.channel = channel or FakeChannel()
        self.sftp = sftp or FakeSFTP()
        self.closed = False

    def get_transport(self):
        return self

    def open_session(self):
        return self.channel

    def open_sftp(self):
        return self.sftp

    def close(self):
        self.closed = True


@pytest.fixture
def fake_ssh(monkeypatch):
    """Replaces remote.connect; returns the list of (host, client) pairs opened."""
    state = {"client": FakeClient(), "opened": []}

    def connect(host, env, timeout=remote.CONNECT_TIMEOUT):
        state["opened"].append(host.label)
        return state["client"]

    monkeypatch.setattr(remote, "connect", connect)
    return state


# ----------------------------------------------------------------------
# Selection
# ----------------------------------------------------------------------

def test_select_executor():
    assert select_executor("") is run_shell
    assert select_executor("python") is run_shell
    assert select_executor("pwsh.exe") is run_shell
    assert select_executor("ssh://web") is run_ssh
    assert select_executor("scp") is run_scp
    assert select_executor("tmpl://values.yaml") is run_template
    assert select_executor("docker://alpine") is run_docker
    with pytest.raises(UnsupportedExecutorError, match="unsupported task executor: cobol"):
        select_executor("cobol")


def test_dispatch_reports_unsupported_as_failure(tmp_path):
    result = dispatch(make_context(tmp_path, {"uses": "cobol", "run": "x"}))
    assert result.status is TaskStatus.ERROR
    assert isinstance(result.error, UnsupportedExecutorError)
    assert result.error.task == "t"


def test_docker_is_not_implemented(tmp_path):
    result = dispatch(make_context(tmp_path, {"uses": "docker://alpine", "run": "true"}))
    assert result.status is TaskStatus.ERROR
    assert result.error.message == "docker task not implemented"


# ----------------------------------------------------------------------
# Shell
# ----------------------------------------------------------------------

@requires_sh
def test_shell_success_with_args(tmp_path):
    ctx = make_context(tmp_path, {"uses": "sh", "run": 'echo "$1" > out.txt'})
    ctx.args = ["hello"]
    result = run_shell(ctx)
    assert result.status is TaskStatus.OK
    assert (tmp_path / "out.txt").read_text() == "hello\n"
    assert result.output["exit_code"] == 0


@requires_sh
def test_shell_exit_code(tmp_path):
    result = run_shell(make_context(tmp_path, {"uses": "sh", "run": "exit 3"}))
    assert result.status is TaskStatus.ERROR
    assert isinstance(result.error, ProcessExitError)
    assert result.error.exit_code == 3
    assert result.error.message == "Task t failed with exit code 3"


@requires_sh
def test_shell_timeout_cancels(tmp_path):
    token = CancelToken().child(0.2)
    result = run_shell(make_context(tmp_path, {"uses": "sh", "run": "sleep 5"}, token=token))
    assert result.status is TaskStatus.CANCELLED
    assert isinstance(result.error, TaskCancelledError)
    assert result.error.timed_out
    assert result.duration < 5


@requires_sh
def test_shell_missing_cwd(tmp_path):
    ctx = make_context(tmp_path, {"uses": "sh", "run": "true"})
    ctx.cwd = tmp_path / "nope"
    result = run_shell(ctx)
    assert result.status is TaskStatus.ERROR
    assert "working directory not found" in result.message


def test_shell_without_script_succeeds(tmp_path):
    assert run_shell(make_context(tmp_path, {"needs": ["x"]})).status is TaskStatus.OK


# ----------------------------------------------------------------------
# Targets and connections
# ----------------------------------------------------------------------

HOSTS = {
    "web1": {"host": "10.0.0.1", "groups": ["web"]},
    "web2": {"host": "10.0.0.2", "groups": ["web"]},
    "db": {"host": "10.0.0.3"},
}


def test_targets_from_selector_uri(tmp_path):
    ctx = make_context(tmp_path, {"uses": "ssh://ops@example.com:2200?identity=~/.ssh/id", "run": "x"})
    [host] = remote.resolve_targets(ctx)
    assert (host.host, host.port, host.user, host.identity) == ("example.com", 2200, "ops", "~/.ssh/id")


def test_targets_by_name_and_group(tmp_path):
    ctx = make_context(tmp_path, {"uses": "ssh", "run": "x", "hosts": ["db", "web"]}, hosts=HOSTS)
    assert [h.label for h in remote.resolve_targets(ctx)] == ["db", "web1", "web2"]


def test_targets_default_to_all_hosts(tmp_path):
    ctx = make_context(tmp_path, {"uses": "ssh", "run": "x"}, hosts=HOSTS)
    assert len(remote.resolve_targets(ctx)) == 3


def test_targets_unknown_and_empty(tmp_path):
    with pytest.raises(ConfigError, match="unknown host or group: cache"):
        remote.resolve_targets(make_context(tmp_path, {"uses": "ssh", "hosts": ["cache"]}, hosts=HOSTS))
    with pytest.raises(ConfigError, match="no target hosts"):
        remote.resolve_targets(make_context(tmp_path, {"uses": "ssh"}))


class RecordingSSHClient:
    last = None

    def __init__(self):
        self.kwargs = None
        RecordingSSHClient.last = self

    def set_missing_host_key_policy(self, policy):
        self.policy = policy

    def connect(self, **kwargs):
        self.kwargs = kwargs
        if kwargs.get("password") == "wrong":
            raise paramiko.AuthenticationException("denied")

    def close(self):
        pass


@pytest.fixture
def recording_client(monkeypatch):
    monkeypatch.setattr(remote.paramiko, "SSHClient", RecordingSSHClient)
    monkeypatch.setattr(remote, "agent_available", lambda: False)
    return RecordingSSHClient


def test_connect_password_from_env(recording_client):
    env = RunEnvironment({"DEPLOY_PW": "pw", "USER": "me"}, case_sensitive=True)
    remote.connect(Host(host="h", password="DEPLOY_PW"), env)
    kwargs = recording_client.last.kwargs
    assert kwargs["password"] == "pw"
    assert kwargs["username"] == "me"
    assert kwargs["allow_agent"] is False
    assert isinstance(recording_client.last.policy, paramiko.AutoAddPolicy)


def test_connect_identity_with_passphrase(recording_client):
    env = RunEnvironment({"KEY_PW": "phrase"}, case_sensitive=True)
    remote.connect(Host(host="h", user="u", identity="/keys/id", password="KEY_PW"), env)
    kwargs = recording_client.last.kwargs
    assert kwargs["key_filename"] == "/keys/id"
    assert kwargs["passphrase"] == "phrase"
    assert "password" not in kwargs


def test_connect_prefers_agent_over_identity(recording_client, monkeypatch):
    monkeypatch.setattr(remote, "agent_available", lambda: True)
    remote.connect(Host(host="h", identity="/keys/id"), RunEnvironment())
    kwargs = recording_client.last.kwargs
    assert kwargs["allow_agent"] is True
    assert "key_filename" not in kwargs


def test_connect_without_credentials(recording_client):
    with pytest.raises(AuthenticationError, match="no authentication method provided"):
        remote.connect(Host(name="web", host="h"), RunEnvironment())


def test_connect_authentication_failure(recording_client):
    env = RunEnvironment({"PW": "wrong"}, case_sensitive=True)
    with pytest.raises(AuthenticationError) as exc:
        remote.connect(Host(name="web", host="h", password="PW"), env)
    assert exc.value.host == "web"


def test_copy_stream_stops_when_cancelled():
    token = CancelToken()
    token.cancel()
    with pytest.raises(TaskCancelledError):
        remote.copy_stream(io.BytesIO(b"data"), io.BytesIO(), token)


# ----------------------------------------------------------------------
# SSH
# ----------------------------------------------------------------------

def test_ssh_runs_command_on_each_host(tmp_path, fake_ssh):
    fake_ssh["client"] = FakeClient(FakeChannel(output=b"hello\n"))
    ctx = make_context(
        tmp_path,
        {"uses": "ssh", "run": "uptime", "hosts": ["web"], "env": {"APP": "api"}},
        env={"APP": "api"},
        hosts=HOSTS,
    )
    result = run_ssh(ctx)
    assert result.status is TaskStatus.OK
    assert fake_ssh["opened"] == ["web1", "web2"]
    chan = fake_ssh["client"].channel
    assert chan.command == "uptime"
    assert chan.env == {"APP": "api"}
    out = ctx.stdout.getvalue()
    assert "[web1]" in out and "hello" in out
    assert fake_ssh["client"].closed


def test_ssh_exit_code_names_host(tmp_path, fake_ssh):
    fake_ssh["client"] = FakeClient(FakeChannel(exit_code=2))
    result = run_ssh(make_context(tmp_path, {"uses": "ssh", "run": "false"}, hosts={"db": {"host": "db"}}))
    assert result.status is TaskStatus.ERROR
    assert result.error.host == "db"
    assert "failed on db with exit code 2" in result.error.message


def test_ssh_without_command(tmp_path, fake_ssh):
    result = run_ssh(make_context(tmp_path, {"uses": "ssh"}, hosts=HOSTS))
    assert result.status is TaskStatus.ERROR
    assert fake_ssh["opened"] == []


def test_ssh_cancellation_interrupts_remote_command(tmp_path, fake_ssh):
    chan = FakeChannel(block=True)
    fake_ssh["client"] = FakeClient(chan)
    token = CancelToken()
    threading.Timer(0.2, token.cancel, args=("interrupted by user",)).start()

    result = run_ssh(make_context(tmp_path, {"uses": "ssh", "run": "sleep 100"}, hosts=HOSTS, token=token))

    assert result.status is TaskStatus.CANCELLED
    assert chan.sent == [b"\x03"]
    assert chan.closed
    # the first host was interrupted; no other host was contacted
    assert fake_ssh["opened"] == ["web1"]


def test_ssh_connection_error_is_a_failure(tmp_path, monkeypatch):
    def refuse(host, env, timeout=remote.CONNECT_TIMEOUT):
        raise ExecutionError("connection failed: refused", host=host.label)

    monkeypatch.setattr(remote, "connect", refuse)
    result = run_ssh(make_context(tmp_path, {"uses": "ssh", "run": "x"}, hosts={"db": {"host": "db"}}))
    assert result.status is TaskStatus.ERROR
    assert result.error.task == "t"
    assert result.error.host == "db"


# ----------------------------------------------------------------------
# SCP
# ----------------------------------------------------------------------

def test_scp_upload(tmp_path, fake_ssh):
    (tmp_path / "app.tar").write_bytes(b"payload")
    ctx = make_context(
        tmp_path,
        {"uses": "scp", "with": {"files": ["app.tar:/srv/app.tar", "app.tar"]}},
        hosts={"db": {"host": "db"}},
    )
    result = run_scp(ctx)
    assert result.status is TaskStatus.OK
    files = fake_ssh["client"].sftp.files
    assert files["/srv/app.tar"] == b"payload"
    assert files["app.tar"] == b"payload"


def test_scp_download_from_selector_host(tmp_path, fake_ssh):
    fake_ssh["client"] = FakeClient(sftp=FakeSFTP({"/var/log/app.log": b"log line\n"}))
    ctx = make_context(
        tmp_path,
        {"uses": "scp://deploy@web/download", "with": {"files": ["/var/log/app.log:logs/app.log"]}},
    )
    result = run_scp(ctx)
    assert result.status is TaskStatus.OK
    assert fake_ssh["opened"] == ["web"]
    assert (tmp_path / "logs" / "app.log").read_bytes() == b"log line\n"


def test_scp_rejects_unknown_direction(tmp_path, fake_ssh):
    ctx = make_context(tmp_path, {"uses": "scp://web/sideways", "with": {"files": ["a:b"]}})
    result = run_scp(ctx)
    assert result.status is TaskStatus.ERROR
    assert "unknown scp direction" in result.message


def test_scp_needs_files(tmp_path, fake_ssh):
    result = run_scp(make_context(tmp_path, {"uses": "scp://web"}))
    assert result.status is TaskStatus.ERROR


def test_scp_cancelled(tmp_path, fake_ssh):
    (tmp_path / "a").write_bytes(b"x")
    token = CancelToken()
    token.cancel()
    ctx = make_context(tmp_path, {"uses": "scp://web", "with": {"files": ["a:b"]}}, token=token)
    assert run_scp(ctx).status is TaskStatus.CANCELLED
