# cli.py
from __future__ import annotations

import signal
import sys
from contextlib import contextmanager
from typing import Any, Callable, Dict, Iterator, List, Sequence, Tuple

import click

from . import __version__
from .cancel import CancelToken
from .errors import TaskCancelledError, XTaskError
from .lifecycle import LIFECYCLE_ACTIONS
from .loader import find_config_file
from .logging import get_logger, set_level
from .runner import Workflow
from .ui.console import Console, get_console, set_console

log = get_logger(__name__)

LIFECYCLE_HELP = {
    "install": "Run the install lifecycle for APPS (default app when omitted).",
    "deploy": "Run the deploy lifecycle for APPS.",
    "destroy": "Run the destroy lifecycle for APPS.",
    "test": "Run the test lifecycle for APPS.",
    "pack": "Run the pack lifecycle for APPS.",
    "upgrade": "Run the upgrade lifecycle for APPS.",
    "uninstall": "Run the uninstall lifecycle for APPS.",
    "audit": "Run the audit lifecycle for APPS.",
}

PASSTHROUGH = {"ignore_unknown_options": True, "allow_interspersed_args": False}


def parse_env_pairs(values: Sequence[str]) -> Dict[str, str]:
    """
    Parse repeated ``--env KEY=VALUE`` options.

    Raises:
        click.BadParameter: If an entry has no ``=`` or an empty key
    """
    out: Dict[str, str] = {}
    for item in values:
        key, sep, value = item.partition("=")
        if not sep or not key.strip():
            raise click.BadParameter(f"expected KEY=VALUE, got {item!r}", param_hint="--env")
        out[key.strip()] = value
    return out


def split_run_args(tokens: Sequence[str]) -> Tuple[List[str], List[str]]:
    """
    Split ``run`` arguments into task names and script arguments.

    Task names end at ``--`` or at the first token starting with ``-``.
    """
    targets: List[str] = []
    for i, token in enumerate(tokens):
        if token == "--":
            return targets, list(tokens[i + 1:])
        if token.startswith("-"):
            return targets, list(tokens[i:])
        targets.append(token)
    return targets, []


@contextmanager
def cancel_on_interrupt(token: CancelToken) -> Iterator[None]:
    """First Ctrl-C cancels the run token; a second one interrupts for real."""

    def handler(signum, frame):
        if token.cancelled:
            raise KeyboardInterrupt
        token.cancel("interrupted by user")

    try:
        previous = signal.signal(signal.SIGINT, handler)
    except ValueError:
        # not on the main thread
        log.debug("cannot install SIGINT handler outside the main thread")
        yield
        return
    try:
        yield
    finally:
        signal.signal(signal.SIGINT, previous)


def _load_workflow(ctx: click.Context) -> Workflow:
    obj = ctx.obj
    path = find_config_file(obj["file"], obj["dir"])
    return Workflow.load(
        path,
        context=obj["context"],
        overrides=obj["env"],
        dotenv=obj["dotenv"],
        token=obj["token"],
        console=get_console(),
    )


def _guarded(ctx: click.Context, fn: Callable[[], Any]) -> Any:
    console = get_console()
    with cancel_on_interrupt(ctx.obj["token"]):
        try:
            return fn()
        except TaskCancelledError as e:
            console.print_error("Cancelled", str(e))
            sys.exit(130)
        except XTaskError as e:
            console.print_error(e.title, str(e))
            if ctx.obj.get("debug", False):
                console.print_exception(e)
            sys.exit(1)
        except KeyboardInterrupt:
            console.print_info("\nInterrupted by user")
            sys.exit(130)
        except Exception as e:
            console.print_exception(e)
            sys.exit(1)


@click.group()
@click.option(
    "--debug",
    is_flag=True,
    default=False,
    help="Enable debug mode (show stack traces and detailed output)",
)
@click.option("-f", "--file", "file", default=None, envvar="XTASK_FILE", help="Path to the xtaskfile")
@click.option("-d", "--dir", "directory", default=None, help="Directory holding the xtaskfile")
@click.option("-c", "--context", default=None, envvar="XTASK_CONTEXT", help="Context name (e.g. production)")
@click.option("-E", "--dotenv", multiple=True, help="Extra dotenv file (repeatable, trailing ? = optional)")
@click.option("-e", "--env", "env_pairs", multiple=True, metavar="KEY=VALUE", help="Environment override (repeatable)")
@click.version_option(__version__, prog_name="xtask")
@click.pass_context
def cli(ctx, debug, file, directory, context, dotenv, env_pairs):
    """xtask: cross-platform lifecycle task runner."""
    console = Console(debug=debug)
    set_console(console)
    if debug:
        set_level("DEBUG")
    ctx.ensure_object(dict)
    ctx.obj.update(
        debug=debug,
        file=file,
        dir=directory,
        context=context,
        dotenv=list(dotenv),
        env=parse_env_pairs(env_pairs),
        token=CancelToken(),
    )


@cli.command(context_settings=PASSTHROUGH)
@click.argument("tokens", nargs=-1, type=click.UNPROCESSED)
@click.pass_context
def run(ctx, tokens):
    """Run TASKS and their dependencies; arguments after -- go to the scripts."""
    console = get_console()
    targets, args = split_run_args(tokens)

    def body() -> None:
        wf = _load_workflow(ctx)
        console.print_run_started(str(wf.file), wf.settings.context, targets or ["default"])
        results = wf.run(targets, args)
        console.print_results(results)

    _guarded(ctx, body)


@cli.command("ls")
@click.pass_context
def ls(ctx):
    """List tasks with their descriptions."""
    console = get_console()
    _guarded(ctx, lambda: console.print_task_list(_load_workflow(ctx).list_tasks()))


@cli.command("exec", context_settings=PASSTHROUGH)
@click.argument("command", nargs=-1, required=True, type=click.UNPROCESSED)
@click.pass_context
def exec_command(ctx, command):
    """Run COMMAND with the resolved environment, skipping task resolution."""
    code = _guarded(ctx, lambda: _load_workflow(ctx).exec(list(command)))
    sys.exit(code)


def _run_lifecycle(ctx: click.Context, action: str, apps: Sequence[str]) -> None:
    console = get_console()

    def body() -> None:
        wf = _load_workflow(ctx)
        results = []
        for app in apps or [None]:
            results.extend(wf.run_lifecycle(action, app))
        console.print_results(results)

    _guarded(ctx, body)


def _lifecycle_command(action: str, help_text: str) -> click.Command:
    @click.command(name=action, help=help_text)
    @click.argument("apps", nargs=-1)
    @click.pass_context
    def command(ctx, apps):
        _run_lifecycle(ctx, action, apps)

    return command


for _action in LIFECYCLE_ACTIONS:
    cli.add_command(_lifecycle_command(_action, LIFECYCLE_HELP[_action]))

cli.add_command(cli.commands["deploy"], "up")
cli.add_command(cli.commands["destroy"], "down")
cli.add_command(ls, "list")


@cli.command("runlc")
@click.argument("action")
@click.argument("apps", nargs=-1)
@click.pass_context
def runlc(ctx, action, apps):
    """Run the lifecycle ACTION (e.g. build) for APPS."""
    _run_lifecycle(ctx, action, apps)


cli.add_command(runlc, "lc")
cli.add_command(runlc, "lifecycle")


if __name__ == "__main__":
    cli()
