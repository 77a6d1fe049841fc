# cli.py
from __future__ import annotations

import runpy
import shlex
import sys
from pathlib import Path

import click

from pipeshell import dsl
from pipeshell.config import configure
from pipeshell.errors import CommandNotFound, CompositionError, ShellError
from pipeshell.model import Filter
from pipeshell.runner import summarize
from pipeshell.shell import Shell
from pipeshell.ui.console import Console, get_console, set_console


def load_pipeline(path: str | Path, shell: Shell) -> Filter:
    """
    Load a pipeline from a python file path.

    The file must define either:
      - pipeline(shell) -> Filter
      - PIPELINE = Filter
    """
    pl_path = Path(path).expanduser().resolve()
    if not pl_path.exists():
        raise FileNotFoundError(f"Pipeline file not found: {pl_path}")
    if pl_path.suffix != ".py":
        raise ValueError(f"Pipeline must be a .py file, got: {pl_path.name}")

    globals_dict = runpy.run_path(str(pl_path), run_name=f"pipeshell_pipeline_{pl_path.stem}")

    chain = None
    if "pipeline" in globals_dict and callable(globals_dict["pipeline"]):
        chain = globals_dict["pipeline"](shell)
    elif "PIPELINE" in globals_dict:
        chain = globals_dict["PIPELINE"]

    if not isinstance(chain, Filter):
        raise TypeError(
            "Pipeline file must return/define a Filter. "
            "Define pipeline(shell) -> Filter or PIPELINE = Filter."
        )
    return chain


def build_chain(stages: tuple[str, ...], input_path: str | None, output: str | None, append: str | None) -> Filter:
    """Each --stage is split into argv with shlex; no other shell syntax is understood."""
    filters = []
    for stage in stages:
        argv = shlex.split(stage)
        if not argv:
            raise CompositionError("empty --stage")
        filters.append(dsl.command(argv[0], *argv[1:]))
    return apply_redirects(dsl.pipeline(*filters), input_path, output, append)


def apply_redirects(chain: Filter, input_path: str | None, output: str | None, append: str | None) -> Filter:
    """--input, --output and --append on top of a built or loaded chain."""
    if input_path:
        chain = dsl.redirect_input(chain, input_path)
    if output and append:
        raise CompositionError("use only one of --output and --append")
    if output:
        chain = dsl.redirect_output(chain, output)
    elif append:
        chain = dsl.redirect_append(chain, append)
    return chain


@click.group()
@click.option(
    "--debug",
    is_flag=True,
    default=False,
    help="Enable debug mode (show stack traces and detailed output)",
)
@click.option("--verbose", "-v", is_flag=True, default=False, help="Report spawns and directory changes on stderr")
@click.pass_context
def cli(ctx, debug, verbose):
    """pipeshell: run external-process pipelines without a shell."""
    settings = configure(debug=debug, verbose=verbose or debug)
    console = Console(debug=settings.debug, verbose=settings.verbose)
    set_console(console)
    ctx.ensure_object(dict)
    ctx.obj["debug"] = debug


@cli.command()
@click.option("--stage", "-s", "stages", multiple=True, help='One pipeline stage, e.g. -s "grep -v #" (repeatable)')
@click.option("--pipeline", "pipeline_file", default=None, help="Python file defining pipeline(shell) or PIPELINE")
@click.option("--input", "input_path", default=None, help="Read the first stage's stdin from this file")
@click.option("--output", default=None, help="Write the last stage's stdout to this file (truncate)")
@click.option("--append", default=None, help="Append the last stage's stdout to this file")
@click.option("--cwd", default=None, help="Working directory for every stage")
@click.pass_context
def run(ctx, stages, pipeline_file, input_path, output, append, cwd):
    """Run a pipeline and report each stage's exit status."""
    console = get_console()

    if bool(stages) == bool(pipeline_file):
        console.print_error(
            "Nothing to run",
            "Give either one or more --stage options or --pipeline.",
            suggestion='Example:\n  pipeshell run -s "cat /etc/hosts" -s "grep -v #"',
        )
        sys.exit(2)

    try:
        shell = Shell(cwd)
        if pipeline_file:
            chain = apply_redirects(load_pipeline(pipeline_file, shell), input_path, output, append)
        else:
            chain = build_chain(stages, input_path, output, append)

        console.print_debug(f"pipeline: {chain}")
        if console.verbose:
            console.print_pipeline_started((s.describe() for s in chain.stages()), shell.cwd)
        jobs = shell.execute(chain)
        shell.wait_all(jobs)

        results = summarize(jobs)
        if console.verbose:
            console.print_results(results)

        if not all(j.status.ok for j in jobs):
            for label, status in results.items():
                if status != "exited(0)":
                    click.echo(f"{label}: {status}", err=True)
            sys.exit(1)

    except KeyboardInterrupt:
        console.print_info("\nInterrupted by user")
        sys.exit(130)
    except ShellError as e:
        console.print_error(type(e).__name__, e.message, details=[f"{k}={v}" for k, v in _error_details(e)])
        if ctx.obj.get("debug", False):
            import traceback
            traceback.print_exc()
        sys.exit(1)
    except Exception as e:
        console.print_exception(e)
        sys.exit(1)


def _error_details(e: ShellError):
    stage = getattr(e, "stage", None)
    if stage is not None:
        yield "stage", stage
    command = getattr(e, "command", None)
    if command:
        yield "command", command
    yield from e.details.items()


@cli.command()
@click.argument("name")
def which(name):
    """Print the executable NAME resolves to."""
    try:
        click.echo(Shell().which(name))
    except CommandNotFound as e:
        get_console().print_error("Command not found", e.message)
        sys.exit(1)


@cli.command()
@click.option("--system", is_flag=True, default=False, help="Also list sys_* commands found on the system path")
def commands(system):
    """List defined commands and aliases."""
    shell = Shell()
    if system:
        shell.registry.install_system_commands()
    for name in shell.registry.names():
        spec = shell.registry.get(name)
        if spec.is_alias:
            click.echo(f"{name} -> {spec.target} {' '.join(spec.args)}".rstrip())
        else:
            click.echo(f"{name} = {spec.path or name}")


if __name__ == "__main__":
    cli()
