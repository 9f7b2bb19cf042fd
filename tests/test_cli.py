import click
import pytest
from click.testing import CliRunner

from xtask import __version__
from xtask.cli import cli, parse_env_pairs, split_run_args

from conftest import requires_posix, write_xtaskfile

XTASKFILE = """
config:
  shell: sh
tasks:
  build:
    desc: Build the project
    run: echo build >> log.txt
  test:
    needs: [build]
    run: echo test >> log.txt
  default:
    needs: [test]
  greet: echo "$WHO" > who.txt
  args: echo "$1" > args.txt
  broken: exit 3
  deploy: echo deployed > deployed.txt
"""


@pytest.fixture
def xtaskfile(project):
    return str(write_xtaskfile(project, XTASKFILE))


def invoke(*args):
    return CliRunner().invoke(cli, list(args))


def test_split_run_args():
    assert split_run_args(["a", "b"]) == (["a", "b"], [])
    assert split_run_args(["a", "--", "x", "--flag"]) == (["a"], ["x", "--flag"])
    assert split_run_args(["a", "--flag", "x"]) == (["a"], ["--flag", "x"])
    assert split_run_args([]) == ([], [])


def test_parse_env_pairs():
    assert parse_env_pairs(["A=1", "B=x=y", "C="]) == {"A": "1", "B": "x=y", "C": ""}
    with pytest.raises(click.BadParameter):
        parse_env_pairs(["NOVALUE"])


def test_version():
    result = invoke("--version")
    assert result.exit_code == 0
    assert __version__ in result.output


def test_ls_lists_tasks_with_descriptions(xtaskfile):
    result = invoke("-f", xtaskfile, "ls")
    assert result.exit_code == 0, result.output
    lines = result.output.splitlines()
    assert lines[0] == "args"
    assert "build    Build the project" in lines
    assert invoke("-f", xtaskfile, "list").output == result.output


@requires_posix
def test_run_default(xtaskfile, project):
    result = invoke("-f", xtaskfile, "run")
    assert result.exit_code == 0, result.output
    assert "RESULTS" in result.output
    assert "build: OK" in result.output
    assert (project / "log.txt").read_text() == "build\ntest\n"


@requires_posix
def test_run_with_env_override(xtaskfile, project):
    result = invoke("-f", xtaskfile, "-e", "WHO=cli", "run", "greet")
    assert result.exit_code == 0, result.output
    assert (project / "who.txt").read_text() == "cli\n"


@requires_posix
def test_run_passes_trailing_args(xtaskfile, project):
    result = invoke("-f", xtaskfile, "run", "args", "--", "hello")
    assert result.exit_code == 0, result.output
    assert (project / "args.txt").read_text() == "hello\n"


@requires_posix
def test_run_failure_exits_nonzero(xtaskfile):
    result = invoke("-f", xtaskfile, "run", "broken")
    assert result.exit_code == 1
    assert "Execution error" in result.output
    assert "exit code 3" in result.output


def test_unknown_task(xtaskfile):
    result = invoke("-f", xtaskfile, "run", "nope")
    assert result.exit_code == 1
    assert "unknown task: nope" in result.output


def test_bad_env_override(xtaskfile):
    result = invoke("-f", xtaskfile, "-e", "NOVALUE", "ls")
    assert result.exit_code == 2


def test_missing_config(tmp_path):
    empty = tmp_path / "empty"
    empty.mkdir()
    result = invoke("-d", str(empty), "ls")
    assert result.exit_code == 1
    assert "no xtaskfile found" in result.output


@requires_posix
def test_exec_returns_child_exit_code(xtaskfile):
    result = invoke("-f", xtaskfile, "exec", "sh", "-c", "exit 3")
    assert result.exit_code == 3


@requires_posix
def test_lifecycle_command_and_alias(xtaskfile, project):
    result = invoke("-f", xtaskfile, "up")
    assert result.exit_code == 0, result.output
    assert (project / "deployed.txt").read_text() == "deployed\n"


@requires_posix
def test_runlc(xtaskfile, project):
    result = invoke("-f", xtaskfile, "lc", "build")
    assert result.exit_code == 0, result.output
    assert (project / "log.txt").read_text() == "build\n"


def test_lifecycle_without_hook(xtaskfile):
    result = invoke("-f", xtaskfile, "install")
    assert result.exit_code == 1
    assert "no task found for lifecycle action 'install'" in result.output
