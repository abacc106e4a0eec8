"""Simulator contract shared by every tool."""

from __future__ import annotations

from abc import ABC, abstractmethod
from datetime import datetime, timedelta
from typing import ClassVar

from superpod_sim.cluster.models import GPU, DGXNode
from superpod_sim.core.definitions import render_help
from superpod_sim.core.flags import FlagSchema
from superpod_sim.core.types import CommandContext, CommandResult, ParsedCommand, SimulatorMetadata


class BaseSimulator(ABC):
    """One CLI tool family rendered from cluster state.

    Tools without a REPL never set ``prompt`` on their results.
    """

    name: ClassVar[str]
    version: ClassVar[str] = "1.0"
    description: ClassVar[str] = ""
    commands: ClassVar[tuple[str, ...]] = ()
    subcommands: ClassVar[dict[str, tuple[str, ...]]] = {}

    def get_metadata(self) -> SimulatorMetadata:
        return SimulatorMetadata(
            name=self.name,
            version=self.version,
            description=self.description,
            commands=self.commands or (self.name,),
            subcommands=dict(self.subcommands),
        )

    @abstractmethod
    def execute(self, cmd: ParsedCommand, ctx: CommandContext) -> CommandResult:
        """Run one single-shot invocation."""

    def execute_interactive(self, line: str, ctx: CommandContext) -> CommandResult:
        _ = ctx
        return CommandResult.error(f"{self.name}: interactive mode is not supported ({line.strip()})")

    def help_result(self, command: str | None = None, *, title: str | None = None) -> CommandResult:
        return CommandResult.ok(render_help(command or self.name, title=title))

    def version_result(self) -> CommandResult:
        return CommandResult.ok(f"{self.name} version {self.version}")

    @staticmethod
    def wants_help(cmd: ParsedCommand) -> bool:
        return cmd.has_flag("help", "h") or cmd.subcommand == "help"

    @staticmethod
    def wants_version(cmd: ParsedCommand) -> bool:
        return cmd.has_flag("version")

    @staticmethod
    def current_node(ctx: CommandContext) -> DGXNode | None:
        return ctx.node()

    @staticmethod
    def validate(schema: FlagSchema, cmd: ParsedCommand) -> ParsedCommand | CommandResult:
        """Return the normalized command or an error result."""
        check = schema.check(cmd)
        if check.error is not None:
            return CommandResult.error(check.error)
        return check.command


def report_clock(ctx: CommandContext, *, hours: int = 2) -> datetime:
    """Deterministic "now" for tools that print a timestamp."""
    cluster = ctx.cluster
    base = cluster.boot_time if cluster is not None else datetime(2024, 6, 15, 8, 0, 0)
    return base + timedelta(hours=hours)


def has_fallen_off_bus(gpu: GPU) -> bool:
    return any(error.code == 79 for error in gpu.xid_errors)
