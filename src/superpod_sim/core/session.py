"""Terminal session: routes each entered line to the right simulator."""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass

from loguru import logger

from superpod_sim.cluster.factory import build_cluster
from superpod_sim.cluster.store import ClusterStore
from superpod_sim.config import Settings, get_settings
from superpod_sim.core.parser import parse
from superpod_sim.core.registry import SimulatorRegistry
from superpod_sim.core.types import CommandContext, CommandResult
from superpod_sim.simulators import build_default_registry


@dataclass(frozen=True)
class SessionResult:
    """What the terminal shows after one submitted line."""

    line: str
    output: str
    exit_code: int
    prompt: str
    tool: str | None = None

    @property
    def in_tool(self) -> bool:
        return self.tool is not None


SessionListener = Callable[[SessionResult], None]


class TerminalSession:
    """One learner's terminal.

    While an interactive tool (cmsh, nvsm) holds the prompt, every line goes
    to that same simulator instance until it returns a result without one.
    """

    def __init__(
        self,
        store: ClusterStore | None = None,
        registry: SimulatorRegistry | None = None,
        context: CommandContext | None = None,
        *,
        settings: Settings | None = None,
    ) -> None:
        settings = settings or get_settings()
        self.store = store or ClusterStore(factory=lambda: build_cluster(settings))
        self.registry = registry or build_default_registry()
        if context is None:
            nodes = self.store.cluster.nodes
            default = settings.default_node or (nodes[0].id if nodes else "localhost")
            context = CommandContext(current_node=default, store=self.store)
        elif context.store is None:
            context.store = self.store
        self.context = context
        self.tools_used: set[str] = set()
        self._active_tool: str | None = None
        self._tool_prompt: str | None = None
        self._listeners: list[SessionListener] = []

    @property
    def active_tool(self) -> str | None:
        return self._active_tool

    @property
    def prompt(self) -> str:
        if self._tool_prompt is not None:
            return self._tool_prompt
        path = self.context.current_path
        display = "~" + path.removeprefix("/root") if path == "/root" or path.startswith("/root/") else path
        node = self.context.node()
        hostname = node.hostname if node is not None else self.context.current_node
        return f"root@{hostname}:{display}# "

    def add_listener(self, listener: SessionListener) -> None:
        self._listeners.append(listener)

    def remove_listener(self, listener: SessionListener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    def submit(self, line: str) -> SessionResult:
        text = line.strip()
        if not text:
            return SessionResult(line=line, output="", exit_code=0, prompt=self.prompt, tool=self._active_tool)

        self.context.history.append(text)
        with logger.contextualize(node=self.context.current_node):
            tool, result = self._dispatch(text)
        self._track_prompt(tool, result)

        session_result = SessionResult(
            line=text,
            output=result.output,
            exit_code=result.exit_code,
            prompt=self.prompt,
            tool=self._active_tool,
        )
        logger.debug("session.submit tool={} exit_code={} in_tool={}", tool, result.exit_code, session_result.in_tool)
        for listener in list(self._listeners):
            listener(session_result)
        return session_result

    def reset(self) -> None:
        """Restore the healthy cluster and leave any interactive tool."""
        self.store.reset()
        self._active_tool = None
        self._tool_prompt = None

    def _dispatch(self, text: str) -> tuple[str, CommandResult]:
        if self._active_tool is not None:
            tool = self._active_tool
            return tool, self.registry.execute_interactive(tool, text, self.context)
        cmd = parse(text, self.registry.known_subcommands())
        result = self.registry.execute(cmd, self.context)
        if self.registry.has(cmd.base_command):
            self.tools_used.add(cmd.base_command)
        return cmd.base_command, result

    def _track_prompt(self, tool: str, result: CommandResult) -> None:
        if result.prompt is None:
            self._active_tool = None
            self._tool_prompt = None
        else:
            self._active_tool = tool
            self._tool_prompt = result.prompt
