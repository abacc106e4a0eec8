import re
from collections.abc import Callable

import pytest

from superpod_sim.cluster.store import ClusterStore
from superpod_sim.core.formatting import strip_ansi
from superpod_sim.core.parser import parse
from superpod_sim.core.types import CommandContext, CommandResult
from superpod_sim.simulators import build_default_registry

Runner = Callable[[str], CommandResult]

TABLE_COMMANDS = (
    "nvidia-smi",
    "nvidia-smi topo -m",
    "dcgmi discovery -l",
    "dcgmi health -c",
    "dcgmi diag -r 1",
    "ipmitool sdr",
    "sinfo",
    "sinfo -N -l",
    "squeue",
    "sacct",
    "sacctmgr show account",
    "cmsh device list",
    "cmsh category list",
    "nvsm show health --detailed",
    "lspci",
    "ibstat",
    "iblinkinfo",
    "nvidia-bug-report.sh",
)

_MARKDOWN_RULE = re.compile(r"\| -+\|")


@pytest.fixture
def faulted(store: ClusterStore) -> ClusterStore:
    store.add_xid_error("dgx-node01", 3, 79)
    return store


def test_fallen_gpu_is_visible_everywhere(run: Runner, faulted: ClusterStore) -> None:
    _ = faulted
    assert "GPU00000000:5D:00.0: GPU is lost" in run("nvidia-smi").output
    assert "Device is in error state (XID 79)" in run("lspci -v -s 5d:00.0").output
    assert "NVRM: Xid (PCI:0000:5d:00.0): 79" in run("journalctl -b").output
    assert "OEM GPU3 | XID 79 GPU has fallen off the bus" in run("ipmitool sel elist").output
    assert "* GPU 3: XID 79 (GPU has fallen off the bus)" in run("nvidia-bug-report.sh").output
    assert "Fail - GPU 3" in run("dcgmi diag -r 2").output
    assert "Overall system health: Critical" in strip_ansi(run("nvsm show health").output)


def test_fault_stays_on_its_node(run: Runner, ctx: CommandContext, faulted: ClusterStore) -> None:
    _ = faulted
    ctx.current_node = "dgx-node02"
    assert "GPU is lost" not in run("nvidia-smi").output
    assert "Xid" not in run("journalctl -b").output
    assert "Overall system health: Healthy" in strip_ansi(run("nvsm show health").output)


@pytest.mark.parametrize("line", TABLE_COMMANDS)
def test_tables_have_no_separator_rows(run: Runner, line: str) -> None:
    output = strip_ansi(run(line).output)
    assert "+--" not in output
    assert not _MARKDOWN_RULE.search(output)


@pytest.mark.parametrize("line", TABLE_COMMANDS)
def test_fresh_clusters_render_identically(line: str) -> None:
    outputs = []
    for _ in range(2):
        ctx = CommandContext(current_node="dgx-node01", store=ClusterStore())
        fresh = build_default_registry()
        outputs.append(fresh.execute(parse(line, fresh.known_subcommands()), ctx).output)
    assert outputs[0] == outputs[1]


def _nvsm_line(run: Runner, check: str) -> str:
    output = strip_ansi(run("nvsm show health --detailed").output)
    return next(line for line in output.splitlines() if line.startswith(check))


def test_nvlink_ecc_xid_reads_the_same_everywhere(run: Runner, store: ClusterStore) -> None:
    store.add_xid_error("dgx-node01", 0, 78)
    assert "18:00.0" in run("journalctl -k").output
    assert "NVLink ECC Error" in run("journalctl -k").output
    assert "!!! Device is in error state (XID 78): NVLink ECC Error" in run("lspci -v -s 18:00.0").output
    assert _nvsm_line(run, "GPU XID error check [GPU0]").endswith(" Critical")


def test_informational_xid_keeps_the_node_healthy(run: Runner, store: ClusterStore) -> None:
    store.add_xid_error("dgx-node01", 0, 62)
    assert "!!!" not in run("lspci -v -s 18:00.0").output
    assert "Overall system health: Healthy" in strip_ansi(run("nvsm show health").output)


def test_uncatalogued_xid_uses_its_recorded_severity(run: Runner, store: ClusterStore) -> None:
    store.add_xid_error("dgx-node01", 0, 150, severity="Critical")
    assert "!!! Device is in error state (XID 150): Unknown XID 150" in run("lspci -v -s 18:00.0").output
    assert _nvsm_line(run, "GPU XID error check [GPU0]").endswith(" Critical")
    assert "Unknown XID 150" in run("journalctl -k").output


def test_healthy_node_has_no_lspci_annotations(run: Runner) -> None:
    output = run("lspci -v").output
    assert "3D controller" in output
    assert "!!!" not in output
