import os
import shutil
import textwrap
from pathlib import Path

import pytest

from xtask.ui.console import Console, set_console

requires_bash = pytest.mark.skipif(shutil.which("bash") is None, reason="bash not installed")
requires_posix = pytest.mark.skipif(os.name == "nt", reason="POSIX shell semantics")


@pytest.fixture(autouse=True)
def isolated_env(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> Path:
    """Keep user dotenv files and inherited XTASK_* keys out of every test."""
    home = tmp_path / "home"
    home.mkdir()
    for key in list(os.environ):
        if key.startswith("XTASK_"):
            monkeypatch.delenv(key, raising=False)
    monkeypatch.setenv("HOME", str(home))
    monkeypatch.setenv("XTASK_CONFIG_HOME", str(home / "config"))
    monkeypatch.setenv("XTASK_DATA_HOME", str(home / "data"))
    set_console(Console())
    return home


@pytest.fixture
def project(tmp_path: Path) -> Path:
    root = tmp_path / "project"
    root.mkdir()
    return root


def make_context(root: Path, task: dict, *, env=None, hosts=None, values=None, token=None, locator=None):
    """TaskContext for a single task without loading a workflow."""
    import io

    from xtask.cancel import CancelToken
    from xtask.environment import RunSettings
    from xtask.envmap import RunEnvironment
    from xtask.executors import TaskContext
    from xtask.schema import Document, TaskDefinition
    from xtask.shells import ExecutableLocator

    base = {"PATH": os.environ.get("PATH", ""), "HOME": str(root)}
    base.update(env or {})
    doc_hosts = Document.model_validate({"hosts": hosts or {}}).hosts
    return TaskContext(
        task=TaskDefinition.model_validate({"id": "t", **task}),
        env=RunEnvironment(base, case_sensitive=True, path_key="PATH"),
        settings=RunSettings(file=root / "xtaskfile", root_dir=root, shell="bash"),
        token=token or CancelToken(),
        locator=locator or ExecutableLocator(),
        cwd=root,
        hosts=doc_hosts,
        values=values or {},
        stdout=io.StringIO(),
        stderr=io.StringIO(),
    )


def write_xtaskfile(directory: Path, content: str, name: str = "xtaskfile") -> Path:
    directory.mkdir(parents=True, exist_ok=True)
    path = directory / name
    path.write_text(textwrap.dedent(content).lstrip(), encoding="utf-8")
    return path
