# executors/tmpl.py
from __future__ import annotations

from pathlib import Path
from typing import Any, Dict, Optional

import jinja2
import yaml

from ..errors import ConfigError, EnvFileNotFoundError, ExecutionError, XTaskError
from ..logging import get_logger
from ..model import TaskResult
from .base import TaskContext

log = get_logger(__name__)

TEMPLATE_EXTENSIONS = (".tmpl", ".tpl", ".j2", ".jinja")


def default_destination(source: str) -> str:
    for ext in TEMPLATE_EXTENSIONS:
        if source.endswith(ext):
            return source[: -len(ext)]
    return source + ".out"


def load_values(ctx: TaskContext) -> Dict[str, Any]:
    values: Dict[str, Any] = dict(ctx.values)
    uri = ctx.uri
    ref = f"{uri.netloc}{uri.path}"
    if not ref:
        return values

    path = ctx.resolve_path(ref)
    if not path.is_file():
        raise EnvFileNotFoundError(f"values file not found: {path}", task=ctx.task.id, file=str(path))
    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    except yaml.YAMLError as e:
        raise ConfigError(f"malformed values file: {e}", task=ctx.task.id, file=str(path)) from e
    if not isinstance(data, dict):
        raise ConfigError("values file must hold a mapping", task=ctx.task.id, file=str(path))
    values.update(data)
    return values


def render(
    content: str,
    ctx: TaskContext,
    values: Dict[str, Any],
    *,
    use_env: bool = True,
    use_template: bool = True,
    source: Optional[str] = None,
) -> str:
    """Apply the env interpolation pass, then the Jinja2 pass."""
    if use_env:
        content = ctx.expand(content)
    if use_template:
        engine = jinja2.Environment(
            undefined=jinja2.StrictUndefined,
            keep_trailing_newline=True,
            autoescape=False,
        )
        try:
            template = engine.from_string(content)
            content = template.render(env=ctx.env.to_dict(), values=values)
        except jinja2.TemplateError as e:
            raise ExecutionError(f"template error: {e}", task=ctx.task.id, file=source) from e
    return content


def run_template(ctx: TaskContext) -> TaskResult:
    task = ctx.task
    result = TaskResult.start(task.id)

    pairs = ctx.file_pairs()
    if not pairs:
        return result.fail(ConfigError("tmpl task needs 'with.files' entries", task=task.id))

    use_env = not ctx.option("disable-env-tmpl", "XTASK_DISABLE_ENV_TMPL")
    use_template = not ctx.option("disable-tmpl", "XTASK_DISABLE_TMPL")

    written = []
    try:
        values = load_values(ctx)
        for src, dest in pairs:
            ctx.token.raise_if_cancelled()
            source = ctx.resolve_path(src)
            target = ctx.resolve_path(dest) if dest else Path(default_destination(str(source)))
            if not source.is_file():
                raise EnvFileNotFoundError(f"template not found: {source}", task=task.id, file=str(source))

            text = source.read_text(encoding="utf-8")
            out = render(text, ctx, values, use_env=use_env, use_template=use_template, source=str(source))
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_text(out, encoding="utf-8")
            log.debug("rendered %s -> %s", source, target)
            written.append(str(target))
    except XTaskError as e:
        e.task = e.task or task.id
        if e.kind == "cancelled":
            return result.cancel(e)
        return result.fail(e)
    except OSError as e:
        return result.fail(ExecutionError(f"template write failed: {e}", task=task.id))

    result.output["files"] = written
    return result.ok()
