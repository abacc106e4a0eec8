"""Simulator registry and dispatch."""

from __future__ import annotations

import time
from collections.abc import Callable
from typing import TYPE_CHECKING

from loguru import logger

from superpod_sim.core.types import CommandContext, CommandResult, ParsedCommand, SimulatorMetadata

if TYPE_CHECKING:
    from superpod_sim.simulators.base import BaseSimulator


class SimulatorRegistry:
    """Maps base command names to simulator instances."""

    def __init__(self) -> None:
        self._simulators: dict[str, BaseSimulator] = {}

    def register(self, simulator: BaseSimulator) -> None:
        metadata = simulator.get_metadata()
        for command in metadata.commands:
            if command in self._simulators:
                logger.warning("registry.replace command={} simulator={}", command, metadata.name)
            self._simulators[command] = simulator

    def has(self, name: str) -> bool:
        return name in self._simulators

    def get(self, name: str) -> BaseSimulator | None:
        return self._simulators.get(name)

    def names(self) -> list[str]:
        return sorted(self._simulators)

    def metadata(self) -> list[SimulatorMetadata]:
        seen: dict[int, SimulatorMetadata] = {}
        for simulator in self._simulators.values():
            seen.setdefault(id(simulator), simulator.get_metadata())
        return sorted(seen.values(), key=lambda item: item.name)

    def known_subcommands(self) -> dict[str, tuple[str, ...]]:
        """Subcommand words per registered command, used by the parser."""
        known: dict[str, tuple[str, ...]] = {}
        for name, simulator in self._simulators.items():
            known[name] = simulator.get_metadata().subcommands.get(name, ())
        return known

    def execute(self, cmd: ParsedCommand, ctx: CommandContext) -> CommandResult:
        simulator = self._simulators.get(cmd.base_command)
        if simulator is None:
            return CommandResult.error(f"{cmd.base_command}: command not found")
        return self._call(cmd.base_command, cmd.raw, lambda: simulator.execute(cmd, ctx))

    def execute_interactive(self, name: str, line: str, ctx: CommandContext) -> CommandResult:
        simulator = self._simulators.get(name)
        if simulator is None:
            return CommandResult.error(f"{name}: command not found")
        return self._call(name, line, lambda: simulator.execute_interactive(line, ctx))

    @staticmethod
    def _call(name: str, line: str, invoke: Callable[[], CommandResult]) -> CommandResult:
        logger.debug("simulator.call.start name={} line={!r}", name, line)
        start = time.monotonic()
        try:
            result = invoke()
        except Exception as exc:
            logger.exception("simulator.call.error name={}", name)
            return CommandResult.error(f"{name}: internal error: {exc}")
        duration = (time.monotonic() - start) * 1000
        logger.debug("simulator.call.end name={} exit_code={} duration={:.3f}ms", name, result.exit_code, duration)
        return result
