import os

from xtask.envmap import RunEnvironment


def posix_env(**values):
    return RunEnvironment(values, case_sensitive=True, path_key="PATH")


def test_case_insensitive_keeps_first_spelling():
    env = RunEnvironment(case_sensitive=False)
    env.set("Path", "a")
    assert env.get("PATH") == "a"
    env.set("PATH", "b")
    assert env.keys() == ["Path"]
    assert env.get("path") == "b"


def test_case_sensitive_keys_are_distinct():
    env = RunEnvironment(case_sensitive=True)
    env.set("a", "1")
    assert env.get("A") is None
    assert "a" in env
    assert "A" not in env


def test_insertion_order_is_preserved():
    env = posix_env(B="2", A="1")
    env.set("C", "3")
    env.set("B", "22")
    assert env.keys() == ["B", "A", "C"]


def test_delete_and_default():
    env = posix_env(A="1")
    env.delete("A")
    assert env.get("A", "fallback") == "fallback"
    env.delete("never-set")


def test_prepend_path_moves_existing_entry_to_front():
    sep = os.pathsep
    env = posix_env(PATH=sep.join(["/usr/bin", "/bin"]))
    env.prepend_path("/opt/bin")
    assert env.split_path() == ["/opt/bin", "/usr/bin", "/bin"]
    env.prepend_path("/opt/bin")
    assert env.split_path() == ["/opt/bin", "/usr/bin", "/bin"]
    env.prepend_path("/bin")
    assert env.split_path() == ["/bin", "/opt/bin", "/usr/bin"]


def test_append_path_skips_duplicates():
    env = posix_env(PATH="/usr/bin")
    env.append_path("/usr/bin")
    env.append_path("/opt/bin")
    assert env.split_path() == ["/usr/bin", "/opt/bin"]
    assert env.has_path("/opt/bin")


def test_windows_path_key_uses_semicolons():
    env = RunEnvironment({"Path": r"C:\Windows"}, case_sensitive=False, path_key="Path")
    env.prepend_path(r"C:\Tools")
    assert env.get("PATH") == r"C:\Tools;C:\Windows"


def test_clone_is_independent():
    env = posix_env(A="1")
    env.set("TOKEN", "s3cret", secret=True)
    copy = env.clone()
    copy.set("A", "2")
    copy.prepend_path("/x")
    assert env.get("A") == "1"
    assert env.get_path() == ""
    assert copy.is_secret("TOKEN")


def test_secret_values():
    env = posix_env()
    env.set("TOKEN", "abc", secret=True)
    env.set("PLAIN", "xyz")
    assert env.secret_values() == ["abc"]
    env.delete("TOKEN")
    assert env.secret_values() == []
