from collections.abc import Callable

from superpod_sim.cluster.store import ClusterStore
from superpod_sim.core.types import CommandResult

Runner = Callable[[str], CommandResult]


def test_lspci_lists_gpus_hcas_switches_and_nvme(run: Runner) -> None:
    lines = run("lspci").output.splitlines()
    assert sum("3D controller" in line for line in lines) == 8
    assert sum("Infiniband controller" in line for line in lines) == 8
    assert sum("Bridge" in line for line in lines) == 4
    assert sum("Non-Volatile memory controller" in line for line in lines) == 2
    assert lines == sorted(lines)


def test_lspci_vendor_and_slot_filters(run: Runner) -> None:
    nvidia = run("lspci -d 10de:").output.splitlines()
    assert len(nvidia) == 12
    assert all("NVIDIA" in line for line in nvidia)

    slot = run("lspci -s 18:00.0").output
    assert slot == "0000:18:00.0 3D controller: NVIDIA Corporation GH100 [H100 SXM5 80GB] (rev a1)"


def test_lspci_numeric_output(run: Runner) -> None:
    line = run("lspci -nn -s 18:00.0").output
    assert "3D controller [0302]" in line
    assert line.endswith("[10de:2330]")
    assert run("lspci -n -s 18:00.0").output == "0000:18:00.0 0302: 10de:2330 (rev a1)"


def test_lspci_kernel_driver(run: Runner) -> None:
    output = run("lspci -k -s 18:00.0").output
    assert "Kernel driver in use: nvidia" in output
    assert "Subsystem" not in output


def test_lspci_link_status(run: Runner, store: ClusterStore) -> None:
    assert "LnkSta:\tSpeed 16GT/s, Width x16 (ok)" in run("lspci -vv -s 18:00.0").output
    store.update_gpu("dgx-node01", 0, pcie_link_width=8)
    assert "Width x8 (downgraded)" in run("lspci -vv -s 18:00.0").output


def test_lspci_verbose_flags_fallen_gpu(run: Runner, store: ClusterStore) -> None:
    store.add_xid_error("dgx-node01", 0, 79)
    output = run("lspci -v -s 18:00.0").output
    assert "!!! Device is in error state (XID 79): GPU has fallen off the bus" in output


def test_journalctl_header_and_boot_log(run: Runner) -> None:
    lines = run("journalctl -b").output.splitlines()
    assert lines[0].startswith("-- Logs begin at Sat 2024-06-15 08:00:00 UTC")
    assert "Linux version" in lines[1]
    assert any("NVRM: All 8 GPUs initialized successfully" in line for line in lines)


def test_journalctl_unit_filter(run: Runner) -> None:
    lines = run("journalctl -u slurmd.service").output.splitlines()[1:]
    assert len(lines) == 3
    assert any("gres/gpu count: 8" in line for line in lines)
    assert all("slurmd[2315]" in line for line in lines)


def test_journalctl_priority_filter(run: Runner, store: ClusterStore) -> None:
    assert run("journalctl -p err").output.endswith("-- No entries --")

    bad = run("journalctl -p bogus")
    assert bad.exit_code == 1
    assert bad.output == "Failed to parse priority value: bogus"

    store.add_xid_error("dgx-node01", 0, 79)
    errors = run("journalctl -p 3").output.splitlines()[1:]
    assert len(errors) == 3
    assert "Xid (PCI:0000:18:00.0): 79" in errors[0]


def test_journalctl_grep_lines_and_kernel(run: Runner) -> None:
    ready = run('journalctl -g "GPU Ready"').output.splitlines()[1:]
    assert len(ready) == 8

    tail = run("journalctl -k -n 5").output.splitlines()[1:]
    assert len(tail) == 5
    assert all(" kernel: " in line for line in tail)

    newest_first = run("journalctl -r -n 2").output.splitlines()[1:]
    assert "Reached target Multi-User System." in newest_first[0]


def test_journalctl_thermal_event(run: Runner, store: ClusterStore) -> None:
    store.update_gpu("dgx-node01", 2, temperature=95)
    output = run("journalctl -k -p warning").output
    assert "GPU 0000:3a:00.0: temperature (95C) exceeds slowdown threshold" in output
