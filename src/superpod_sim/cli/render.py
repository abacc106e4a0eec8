"""Terminal renderer for the simulator."""

from __future__ import annotations

from rich.console import Console
from rich.text import Text

from superpod_sim.simulators.builtins import CLEAR_SCREEN


class Renderer:
    """Prints simulator output through rich, keeping the tools' ANSI colors."""

    def __init__(self, console: Console | None = None) -> None:
        self.console: Console = console or Console(highlight=False)

    def welcome(self, cluster: str, node: str, nodes: int) -> None:
        self.console.print(
            f"[bold green]DGX SuperPOD simulator[/bold green] - cluster [cyan]{cluster}[/cyan] "
            f"({nodes} nodes), logged in to [cyan]{node}[/cyan]"
        )
        self.console.print("[dim]Type 'help' for the available commands, 'exit' to leave.[/dim]")

    def output(self, text: str, exit_code: int = 0) -> None:
        """Render one command's output; failed commands are tinted red."""
        if text == CLEAR_SCREEN:
            self.console.clear()
            return
        if not text:
            return
        rendered = Text.from_ansi(text)
        if exit_code:
            rendered.stylize("red")
        self.console.print(rendered, soft_wrap=True)

    def goodbye(self) -> None:
        self.console.print("[dim]logout[/dim]")
