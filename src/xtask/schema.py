# schema.py
"""Pydantic models for the xtaskfile document."""

from __future__ import annotations

import re
from typing import Annotated, Any, Dict, List, Optional

from pydantic import (
    AliasChoices,
    BaseModel,
    BeforeValidator,
    ConfigDict,
    Field,
    field_validator,
    model_validator,
)


# ----------------------------------------------------------------------
# Coercion helpers
# ----------------------------------------------------------------------

def to_str(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def _env_map(value: Any) -> Dict[str, str]:
    if value is None:
        return {}
    if isinstance(value, dict):
        return {str(k): to_str(v) for k, v in value.items()}
    if isinstance(value, list):
        out: Dict[str, str] = {}
        for item in value:
            if isinstance(item, dict):
                out.update({str(k): to_str(v) for k, v in item.items()})
            elif isinstance(item, str) and "=" in item:
                k, v = item.split("=", 1)
                out[k.strip()] = v
            else:
                raise ValueError(f"expected KEY=VALUE entry, got {item!r}")
        return out
    raise ValueError("expected a mapping or a list of KEY=VALUE entries")


def _str_list(value: Any) -> List[str]:
    if value is None:
        return []
    if isinstance(value, (str, int, float)):
        return [to_str(value)]
    if isinstance(value, list):
        return [to_str(v) for v in value]
    raise ValueError("expected a string or a list of strings")


def _optional_str(value: Any) -> Optional[str]:
    if value is None:
        return None
    return to_str(value)


EnvMap = Annotated[Dict[str, str], BeforeValidator(_env_map)]
StrList = Annotated[List[str], BeforeValidator(_str_list)]
OptStr = Annotated[Optional[str], BeforeValidator(_optional_str)]


_DURATION_PART = re.compile(r"(\d+(?:\.\d+)?)(ns|us|µs|ms|s|m|h)")
_DURATION_UNITS = {
    "ns": 1e-9,
    "us": 1e-6,
    "µs": 1e-6,
    "ms": 1e-3,
    "s": 1.0,
    "m": 60.0,
    "h": 3600.0,
}


def parse_duration(value: Any) -> Optional[float]:
    """
    Parse a timeout into seconds.

    Accepts numbers (seconds), numeric strings, and unit strings such as
    ``90s``, ``1m30s``, ``1.5h`` or ``250ms``. Empty values mean no timeout.
    """
    if value is None or value == "":
        return None
    if isinstance(value, bool):
        raise ValueError(f"invalid duration: {value!r}")
    if isinstance(value, (int, float)):
        return float(value)

    text = str(value).strip()
    try:
        return float(text)
    except ValueError:
        pass

    total = 0.0
    pos = 0
    for m in _DURATION_PART.finditer(text):
        if m.start() != pos:
            break
        total += float(m.group(1)) * _DURATION_UNITS[m.group(2)]
        pos = m.end()
    if pos != len(text) or pos == 0:
        raise ValueError(f"invalid duration: {text!r}")
    return total


Duration = Annotated[Optional[float], BeforeValidator(parse_duration)]


class _Model(BaseModel):
    model_config = ConfigDict(extra="forbid", populate_by_name=True)


# ----------------------------------------------------------------------
# Document parts
# ----------------------------------------------------------------------

class ImportSpec(_Model):
    uri: str
    optional: bool = False
    namespace: Optional[str] = None

    @model_validator(mode="before")
    @classmethod
    def _from_string(cls, data: Any) -> Any:
        if isinstance(data, str):
            return {"uri": data}
        return data


class PrependPath(_Model):
    path: str
    os: Optional[str] = None

    @model_validator(mode="before")
    @classmethod
    def _from_string(cls, data: Any) -> Any:
        if isinstance(data, str):
            return {"path": data}
        return data


class Dirs(_Model):
    etc: Optional[str] = None
    apps: StrList = Field(default_factory=list)


class ConfigBlock(_Model):
    prepend_paths: List[PrependPath] = Field(default_factory=list, alias="prepend-paths")
    env: EnvMap = Field(default_factory=dict)
    dirs: Dirs = Field(default_factory=Dirs)
    shell: Optional[str] = None
    substitution: bool = True
    context: Optional[str] = None


_HOST_RE = re.compile(r"^(?:(?P<user>[^@]+)@)?(?P<host>[^:@]+)(?::(?P<port>\d+))?$")


def parse_host_string(text: str) -> Dict[str, Any]:
    """Split ``user@host:port`` into its parts."""
    m = _HOST_RE.match(text.strip())
    if not m:
        raise ValueError(f"invalid host: {text!r}")
    data: Dict[str, Any] = {"host": m.group("host")}
    if m.group("user"):
        data["user"] = m.group("user")
    if m.group("port"):
        data["port"] = int(m.group("port"))
    return data


class Host(_Model):
    """
    A remote target.

    ``password`` names an environment variable holding the password; it is
    resolved against the environment of the task that connects.
    """
    name: str = ""
    host: str
    port: int = 22
    user: Optional[str] = None
    identity: Optional[str] = None
    password: Optional[str] = None
    groups: StrList = Field(default_factory=list)
    meta: Dict[str, Any] = Field(default_factory=dict)
    os: Optional[str] = None

    @model_validator(mode="before")
    @classmethod
    def _normalize(cls, data: Any) -> Any:
        if isinstance(data, str):
            data = parse_host_string(data)
        if isinstance(data, dict) and isinstance(data.get("host"), str):
            parsed = parse_host_string(data["host"])
            data = {**parsed, **{k: v for k, v in data.items() if k != "host"}}
        return data

    @property
    def label(self) -> str:
        return self.name or self.host


class TaskDefinition(_Model):
    model_config = ConfigDict(extra="forbid", populate_by_name=True, frozen=True)

    id: str = ""
    name: OptStr = None
    desc: OptStr = Field(default=None, validation_alias=AliasChoices("desc", "description"))
    help: OptStr = None
    env: EnvMap = Field(default_factory=dict)
    dotenv: StrList = Field(default_factory=list)
    cwd: OptStr = None
    timeout: Duration = None
    run: OptStr = None
    uses: OptStr = None
    args: StrList = Field(default_factory=list)
    needs: StrList = Field(default_factory=list)
    hosts: StrList = Field(default_factory=list)
    with_: Dict[str, Any] = Field(default_factory=dict, alias="with")
    predicate: OptStr = Field(default=None, alias="if")

    @model_validator(mode="before")
    @classmethod
    def _from_string(cls, data: Any) -> Any:
        if isinstance(data, str):
            return {"run": data}
        if data is None:
            return {}
        return data

    @property
    def display_name(self) -> str:
        return self.name or self.id


class Document(_Model):
    name: OptStr = None
    imports: List[ImportSpec] = Field(default_factory=list)
    app: OptStr = None
    context: StrList = Field(default_factory=list)
    version: OptStr = None
    config: ConfigBlock = Field(default_factory=ConfigBlock)
    env: EnvMap = Field(default_factory=dict)
    secrets: EnvMap = Field(default_factory=dict)
    dotenv: StrList = Field(default_factory=list)
    tasks: Dict[str, TaskDefinition] = Field(default_factory=dict)
    hosts: Dict[str, Host] = Field(default_factory=dict)
    values: Dict[str, Any] = Field(default_factory=dict)

    @field_validator("config", mode="before")
    @classmethod
    def _config_default(cls, value: Any) -> Any:
        return {} if value is None else value

    @field_validator("tasks", mode="before")
    @classmethod
    def _task_ids(cls, value: Any) -> Any:
        if value is None:
            return {}
        if not isinstance(value, dict):
            raise ValueError("tasks must be a mapping of id to task")
        out: Dict[str, Any] = {}
        for key, spec in value.items():
            key = str(key)
            if spec is None:
                spec = {}
            if isinstance(spec, str):
                spec = {"run": spec}
            if isinstance(spec, dict):
                spec = {**spec, "id": spec.get("id") or key}
            out[key] = spec
        return out

    @field_validator("hosts", mode="before")
    @classmethod
    def _host_table(cls, value: Any) -> Any:
        if value is None:
            return {}
        out: Dict[str, Any] = {}
        if isinstance(value, list):
            for item in value:
                if isinstance(item, str):
                    data = parse_host_string(item)
                    data["name"] = item.split("@")[-1].split(":")[0]
                elif isinstance(item, dict):
                    data = dict(item)
                    if not data.get("name"):
                        data["name"] = parse_host_string(str(data.get("host", "")))["host"]
                else:
                    raise ValueError(f"invalid host entry: {item!r}")
                out[data["name"]] = data
            return out
        if isinstance(value, dict):
            for name, item in value.items():
                if isinstance(item, str):
                    data = parse_host_string(item)
                elif isinstance(item, dict):
                    data = dict(item)
                    data.setdefault("host", str(name))
                elif item is None:
                    data = {"host": str(name)}
                else:
                    raise ValueError(f"invalid host entry for {name!r}")
                data["name"] = str(name)
                out[str(name)] = data
            return out
        raise ValueError("hosts must be a list or a mapping")
