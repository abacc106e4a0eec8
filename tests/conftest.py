from __future__ import annotations

from collections.abc import Callable

import pytest

from superpod_sim.cluster.factory import build_cluster
from superpod_sim.cluster.store import ClusterStore
from superpod_sim.config import Settings, get_settings
from superpod_sim.core.parser import parse
from superpod_sim.core.registry import SimulatorRegistry
from superpod_sim.core.session import TerminalSession
from superpod_sim.core.types import CommandContext, CommandResult
from superpod_sim.simulators import build_default_registry

Runner = Callable[[str], CommandResult]

_SETTINGS_ENV = (
    "CLUSTER_NAME",
    "NODE_COUNT",
    "SYSTEM_TYPE",
    "NODE_PREFIX",
    "HEADNODE",
    "DEFAULT_NODE",
    "HISTORY_FILE",
    "LOG_LEVEL",
)


@pytest.fixture(autouse=True)
def _clean_settings(monkeypatch: pytest.MonkeyPatch) -> None:
    for name in _SETTINGS_ENV:
        monkeypatch.delenv(f"SUPERPOD_{name}", raising=False)
    get_settings.cache_clear()


@pytest.fixture
def settings() -> Settings:
    return Settings(_env_file=None)


@pytest.fixture
def store(settings: Settings) -> ClusterStore:
    return ClusterStore(factory=lambda: build_cluster(settings))


@pytest.fixture
def ctx(store: ClusterStore) -> CommandContext:
    return CommandContext(current_node="dgx-node01", store=store)


@pytest.fixture
def registry() -> SimulatorRegistry:
    return build_default_registry()


@pytest.fixture
def run(registry: SimulatorRegistry, ctx: CommandContext) -> Runner:
    def _run(line: str) -> CommandResult:
        return registry.execute(parse(line, registry.known_subcommands()), ctx)

    return _run


@pytest.fixture
def session(store: ClusterStore, registry: SimulatorRegistry, settings: Settings) -> TerminalSession:
    return TerminalSession(store=store, registry=registry, settings=settings)
