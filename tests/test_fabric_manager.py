from collections.abc import Callable

from superpod_sim.cluster.store import ClusterStore
from superpod_sim.core.formatting import strip_ansi
from superpod_sim.core.types import CommandResult

Runner = Callable[[str], CommandResult]


def _plain(run: Runner, line: str) -> str:
    return strip_ansi(run(line).output)


def test_status_of_a_healthy_fabric(run: Runner) -> None:
    status = _plain(run, "nv-fabricmanager status")
    assert status.startswith("NVIDIA Fabric Manager Status")
    assert "Running" in status
    assert "Healthy" in status
    assert "Fully Connected (NVSwitch)" in status


def test_stop_degrades_the_fabric(run: Runner) -> None:
    assert "NVIDIA Fabric Manager stopped." in _plain(run, "nv-fabricmanager stop")
    status = _plain(run, "nv-fabricmanager status")
    assert "Stopped" in status
    assert "Degraded" in status
    assert run("systemctl is-active nvidia-fabricmanager").output == "inactive"
    assert "Diagnostic Summary: WARNINGS" in _plain(run, "nv-fabricmanager diag")

    run("systemctl start nvidia-fabricmanager")
    assert "Healthy" in _plain(run, "nv-fabricmanager status")
    assert "Diagnostic Summary: PASSED" in _plain(run, "nv-fabricmanager diag")


def test_query_nvswitch(run: Runner, store: ClusterStore) -> None:
    output = _plain(run, "nv-fabricmanager query nvswitch")
    assert "Total NVSwitches: 4" in output
    assert "0000:05:00.0" in output
    assert "All NVSwitches operational." in output

    links = [link.model_dump() for link in store.get_gpu("dgx-node01", 0).nvlinks]
    links[0]["status"] = "Down"
    store.update_gpu("dgx-node01", 0, nvlinks=links)
    assert "1 NVSwitch(es) degraded." in _plain(run, "nv-fabricmanager query nvswitch")
    assert "Inactive NVLinks: 1" in _plain(run, "nv-fabricmanager query nvlink")


def test_topology_and_config(run: Runner) -> None:
    topology = _plain(run, "nv-fabricmanager query topology")
    assert "NVSwitch 0: Connected to GPUs [0, 1, 2, 3, 4, 5, 6, 7]" in topology
    assert _plain(run, "nv-fabricmanager config show").startswith(
        "Configuration file: /etc/nvidia-fabricmanager/fabricmanager.cfg"
    )
    assert "[SW0] [SW1] [SW2] [SW3]" in _plain(run, "nv-fabricmanager topo")


def test_usage_errors(run: Runner) -> None:
    assert run("nv-fabricmanager --version").output == "Fabric Manager version is : 535.129.03"
    assert run("nv-fabricmanager").output.startswith("nv-fabricmanager - NVIDIA Fabric Manager CLI")

    unknown = run("nv-fabricmanager statsu")
    assert unknown.exit_code == 1
    assert unknown.output.startswith("Unknown subcommand: statsu")
    assert "status" in unknown.output

    assert run("nv-fabricmanager query").exit_code == 1
