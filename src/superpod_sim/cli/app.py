"""Command line entry point for the simulator."""

from __future__ import annotations

import shlex

import typer

from superpod_sim.cli.render import Renderer
from superpod_sim.cli.repl import run_repl
from superpod_sim.config import get_settings
from superpod_sim.core.completion import get_completions
from superpod_sim.core.session import TerminalSession
from superpod_sim.errors import SimulatorError
from superpod_sim.logging_utils import configure_logging

app = typer.Typer(
    name="superpod-sim",
    help="Practice DGX SuperPOD administration against a simulated cluster.",
    add_completion=False,
    no_args_is_help=False,
)


def _open_session(node: str | None) -> TerminalSession:
    try:
        session = TerminalSession()
    except SimulatorError as exc:
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(1) from exc
    if node is not None:
        if session.store.cluster.find_node(node) is None:
            typer.echo(f"Error: unknown node {node!r}", err=True)
            raise typer.Exit(1)
        session.context.current_node = node
    return session


@app.callback(invoke_without_command=True)
def main_callback(ctx: typer.Context) -> None:
    if ctx.invoked_subcommand is None:
        shell(node=None)


@app.command()
def shell(node: str | None = typer.Option(None, "--node", "-n", help="Node to log in to")) -> None:
    """Start the interactive terminal."""
    settings = get_settings()
    configure_logging(profile="shell", level=settings.log_level)
    session = _open_session(node)
    renderer = Renderer()
    cluster = session.store.cluster
    renderer.welcome(cluster.name, session.context.current_node, len(cluster.nodes))
    exit_code = run_repl(session, renderer, history_file=settings.history_file)
    raise typer.Exit(exit_code)


@app.command(context_settings={"allow_interspersed_args": False, "ignore_unknown_options": True})
def run(
    words: list[str] = typer.Argument(..., help="Command line to run, e.g. nvidia-smi -L"),  # noqa: B008
    node: str | None = typer.Option(None, "--node", "-n", help="Node to run on"),
) -> None:
    """Run one command and print its output."""
    configure_logging(level=get_settings().log_level)
    session = _open_session(node)
    line = words[0] if len(words) == 1 else shlex.join(words)
    result = session.submit(line)
    if result.output:
        typer.echo(result.output)
    raise typer.Exit(result.exit_code)


@app.command()
def complete(line: str = typer.Argument("", help="Partial command line")) -> None:
    """Print tab completions for a partial command line."""
    result = get_completions(line)
    for candidate in result.completions:
        typer.echo(candidate)


def main() -> None:
    app()


if __name__ == "__main__":
    main()
