"""Core data types of the command engine."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from superpod_sim.cluster.models import ClusterConfig, DGXNode
    from superpod_sim.cluster.store import ClusterStore

FlagValue = str | bool


@dataclass(frozen=True)
class ParsedCommand:
    """Structured form of one input line."""

    base_command: str
    subcommand: str | None = None
    flags: dict[str, FlagValue] = field(default_factory=dict)
    positional_args: tuple[str, ...] = ()
    raw: str = ""
    # Position among positional_args where each flag value was read.
    value_slots: dict[str, int] = field(default_factory=dict)

    @property
    def words(self) -> list[str]:
        """Subcommand followed by positional arguments."""
        head = [self.subcommand] if self.subcommand else []
        return [*head, *self.positional_args]

    def has_flag(self, *names: str) -> bool:
        return any(name in self.flags for name in names)

    def flag(self, *names: str) -> FlagValue | None:
        for name in names:
            if name in self.flags:
                return self.flags[name]
        return None

    def flag_str(self, *names: str) -> str | None:
        value = self.flag(*names)
        return value if isinstance(value, str) else None


@dataclass(frozen=True)
class CommandResult:
    """Output of one simulator call.

    ``prompt`` is set only while an interactive tool session is active.
    """

    output: str
    exit_code: int = 0
    prompt: str | None = None

    @classmethod
    def ok(cls, output: str = "", *, prompt: str | None = None) -> CommandResult:
        return cls(output=output, exit_code=0, prompt=prompt)

    @classmethod
    def error(cls, output: str, *, exit_code: int = 1, prompt: str | None = None) -> CommandResult:
        return cls(output=output, exit_code=exit_code, prompt=prompt)


@dataclass
class CommandContext:
    """Per-session state handed to every simulator call."""

    current_node: str
    current_path: str = "/root"
    environment: dict[str, str] = field(default_factory=dict)
    history: list[str] = field(default_factory=list)
    store: ClusterStore | None = None

    @property
    def cluster(self) -> ClusterConfig | None:
        return self.store.cluster if self.store is not None else None

    def node(self) -> DGXNode | None:
        cluster = self.cluster
        if cluster is None:
            return None
        return cluster.find_node(self.current_node)


@dataclass(frozen=True)
class SimulatorMetadata:
    """Static description of a simulator used by help and completion."""

    name: str
    version: str
    description: str
    commands: tuple[str, ...]
    subcommands: dict[str, tuple[str, ...]] = field(default_factory=dict)
