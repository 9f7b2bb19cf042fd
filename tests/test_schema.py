import pytest
from pydantic import ValidationError

from xtask.errors import ConfigError
from xtask.loader import parse_document
from xtask.schema import Host, TaskDefinition, parse_duration


def test_task_shorthand_and_ids():
    doc = parse_document({"tasks": {"hello": "echo hi", "empty": None, "full": {"run": "x", "needs": "hello"}}})
    assert doc.tasks["hello"].run == "echo hi"
    assert doc.tasks["hello"].id == "hello"
    assert doc.tasks["empty"].run is None
    assert doc.tasks["full"].needs == ["hello"]


def test_task_aliases():
    doc = parse_document(
        {"tasks": {"t": {"description": "does t", "if": "$GO", "with": {"files": ["a:b"]}, "timeout": "1m30s"}}}
    )
    task = doc.tasks["t"]
    assert task.desc == "does t"
    assert task.predicate == "$GO"
    assert task.with_ == {"files": ["a:b"]}
    assert task.timeout == 90.0


def test_env_accepts_list_of_pairs():
    doc = parse_document({"env": ["A=1", "B=x=y", {"C": 3}, {"D": True}]})
    assert doc.env == {"A": "1", "B": "x=y", "C": "3", "D": "true"}


def test_env_rejects_bad_entry():
    with pytest.raises(ConfigError):
        parse_document({"env": ["NOEQUALS"]})


def test_unknown_keys_are_reported():
    with pytest.raises(ConfigError) as exc:
        parse_document({"tasks": {"t": {"runs": "typo"}}})
    assert "unknown key" in exc.value.message
    assert "tasks.t.runs" in exc.value.message


def test_document_must_be_a_mapping():
    with pytest.raises(ConfigError):
        parse_document(["not", "a", "mapping"])


def test_hosts_from_list_and_map():
    doc = parse_document({"hosts": ["deploy@web1:2222", {"host": "db1", "groups": "db"}]})
    assert doc.hosts["web1"].user == "deploy"
    assert doc.hosts["web1"].port == 2222
    assert doc.hosts["db1"].groups == ["db"]

    doc = parse_document({"hosts": {"web": {"host": "10.0.0.5", "user": "ops"}, "bare": None}})
    assert doc.hosts["web"].host == "10.0.0.5"
    assert doc.hosts["web"].label == "web"
    assert doc.hosts["bare"].host == "bare"


def test_host_string_parsing():
    host = Host.model_validate("root@example.com")
    assert host.user == "root"
    assert host.host == "example.com"
    assert host.port == 22


def test_config_block():
    doc = parse_document(
        {"config": {"shell": "sh", "substitution": False, "dirs": {"apps": "./apps"}, "prepend-paths": ["bin"]}}
    )
    assert doc.config.shell == "sh"
    assert doc.config.substitution is False
    assert doc.config.dirs.apps == ["./apps"]
    assert doc.config.prepend_paths[0].path == "bin"


@pytest.mark.parametrize(
    "value,expected",
    [(None, None), ("", None), (5, 5.0), ("2.5", 2.5), ("250ms", 0.25), ("1h", 3600.0), ("1m30s", 90.0)],
)
def test_parse_duration(value, expected):
    assert parse_duration(value) == expected


def test_parse_duration_rejects_garbage():
    with pytest.raises(ValueError):
        parse_duration("soon")
    with pytest.raises(ValidationError):
        TaskDefinition(id="t", timeout="10 minutes")
