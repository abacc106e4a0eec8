from collections.abc import Callable

import pytest

from superpod_sim.cluster.factory import build_cluster
from superpod_sim.cluster.store import ClusterStore
from superpod_sim.config import Settings
from superpod_sim.core.formatting import strip_ansi
from superpod_sim.core.parser import parse
from superpod_sim.core.registry import SimulatorRegistry
from superpod_sim.core.types import CommandContext, CommandResult
from superpod_sim.simulators.infiniband import ib_standard

Runner = Callable[[str], CommandResult]


@pytest.fixture
def degraded_run(registry: SimulatorRegistry, settings: Settings) -> Runner:
    cluster = build_cluster(settings)
    port = cluster.nodes[0].hcas[1].ports[0]
    port.state = "Down"
    port.physical_state = "Disabled"
    port.link_downed = 3
    cluster.nodes[0].hcas[2].ports[0].symbol_errors = 12
    ctx = CommandContext(current_node="dgx-node01", store=ClusterStore(cluster))

    def _run(line: str) -> CommandResult:
        return registry.execute(parse(line, registry.known_subcommands()), ctx)

    return _run


def test_ibstat_all_adapters(run: Runner) -> None:
    output = run("ibstat").output
    assert output.startswith("CA 'mlx5_0'")
    assert output.count("CA '") == 8
    assert "\t\tRate: 400" in output
    assert "\t\tState: Active" in output
    assert "CA type: MT4129" in output


def test_ibstat_list_and_single_adapter(run: Runner) -> None:
    assert run("ibstat -l").output.splitlines() == [f"mlx5_{idx}" for idx in range(8)]
    single = run("ibstat mlx5_3").output
    assert single.count("CA '") == 1
    assert "\t\tBase lid: 4" in single

    missing = run("ibstat mlx5_9")
    assert missing.exit_code == 1
    assert "'mlx5_9' IB device can't be found" in missing.output


def test_ib_standard_names() -> None:
    assert ib_standard(400) == "NDR"
    assert ib_standard(200) == "HDR"
    assert ib_standard(100) == "EDR"
    assert ib_standard(800) == "XDR"
    assert ib_standard(40) == "QDR"


def test_ibportstate(run: Runner) -> None:
    output = run("ibportstate 1 1").output
    assert "# Port info: Lid 1 port 1" in output
    assert "LinkSpeedActive:" in output
    assert "100 Gbps (NDR)" in output
    assert "CA:" in output
    assert run("ibportstate").exit_code == 0
    assert run("ibportstate 99 1").exit_code == 1


def test_ibporterrors_healthy_and_degraded(run: Runner, degraded_run: Runner) -> None:
    healthy = run("ibporterrors").output
    assert healthy.startswith("Errors for:")
    assert "Warning" not in healthy

    output = strip_ansi(degraded_run("ibporterrors").output)
    assert "Critical: Link has gone down 3 times" in output
    assert "Warning: Symbol errors detected - check cable quality" in output
    only = degraded_run("ibporterrors -C mlx5_2").output
    assert "mlx5_1" not in only


def test_iblinkinfo(run: Runner, degraded_run: Runner) -> None:
    output = run("iblinkinfo -v").output
    assert "rate 400 Gb/s (NDR) InfiniBand status OK" in output
    assert "Symbol errors:" in output
    assert "status Critical" in degraded_run("iblinkinfo").output


def test_ibdev2netdev(run: Runner, degraded_run: Runner) -> None:
    lines = run("ibdev2netdev").output.splitlines()
    assert lines[0] == "mlx5_0 port 1 ==> ibp26s0 (Up)"
    assert len(lines) == 8
    assert "mlx5_1 port 1 ==> ibp60s0 (Down)" in degraded_run("ibdev2netdev").output
    assert "ConnectX-7" in run("ibdev2netdev -v").output


def test_perfquery(run: Runner) -> None:
    base = run("perfquery").output
    assert base.startswith("# Port counters: Lid 1 port 1 (mlx5_0)")
    assert "PortUnicastXmitPkts" not in base
    extended = run("perfquery -x 2").output
    assert "Lid 2 port 1 (mlx5_1)" in extended
    assert "PortUnicastXmitPkts" in extended
    assert run("perfquery 2").output == run("perfquery 2").output


def test_version(run: Runner) -> None:
    assert run("ibstat --version").output == "ibstat 5.9-0"
