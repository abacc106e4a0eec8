from collections.abc import Callable

from superpod_sim.cluster.store import ClusterStore
from superpod_sim.core.types import CommandResult

Runner = Callable[[str], CommandResult]


def test_status_of_a_running_unit(run: Runner) -> None:
    result = run("systemctl status nvsm-core")
    assert result.exit_code == 0
    lines = result.output.splitlines()
    assert lines[0] == "● nvsm-core.service - NVSM Core Service"
    assert "loaded (/lib/systemd/system/nvsm-core.service; enabled; vendor preset: enabled)" in lines[1]
    assert "Active: active (running) since Sat 2024-06-15 08:00:14 UTC; 1h 59min ago" in lines[2]
    assert "Main PID: 2042 (nvsm-core)" in result.output


def test_stop_then_is_active(run: Runner, store: ClusterStore) -> None:
    assert run("systemctl is-active slurmd").output == "active"
    assert run("systemctl stop slurmd").exit_code == 0
    assert store.get_node("dgx-node01").service_active == {"slurmd": False}

    inactive = run("systemctl is-active slurmd")
    assert (inactive.output, inactive.exit_code) == ("inactive", 3)
    assert run("systemctl is-active -q slurmd").output == ""

    status = run("systemctl status slurmd.service")
    assert status.exit_code == 3
    assert "Active: inactive (dead)" in status.output

    run("systemctl start slurmd")
    assert run("systemctl is-active slurmd").exit_code == 0


def test_service_state_is_per_node(run: Runner) -> None:
    run("systemctl stop nvidia-dcgm")
    run("ssh dgx-node02")
    assert run("systemctl is-active nvidia-dcgm").output == "active"


def test_enable_and_disable(run: Runner) -> None:
    enabled = run("systemctl enable opensm").output
    assert enabled == (
        "Created symlink /etc/systemd/system/multi-user.target.wants/opensm.service"
        " → /lib/systemd/system/opensm.service."
    )
    assert run("systemctl is-enabled opensm").output == "enabled"
    assert run("systemctl enable opensm").output == ""

    removed = run("systemctl disable opensm").output
    assert removed == "Removed /etc/systemd/system/multi-user.target.wants/opensm.service."
    disabled = run("systemctl is-enabled opensm")
    assert (disabled.output, disabled.exit_code) == ("disabled", 1)


def test_unknown_units_and_verbs(run: Runner) -> None:
    status = run("systemctl status frobd")
    assert (status.output, status.exit_code) == ("Unit frobd.service could not be found.", 4)

    start = run("systemctl start frobd")
    assert start.exit_code == 5
    assert start.output == "Failed to start frobd.service: Unit frobd.service not found."

    verb = run("systemctl stats slurmd")
    assert verb.exit_code == 1
    assert verb.output.startswith("Unknown command verb stats.")

    assert run("systemctl restart").output == "Too few arguments."


def test_list_units_hides_inactive_without_all(run: Runner) -> None:
    listing = run("systemctl").output
    assert "slurmd.service" in listing
    assert "slurmctld.service" not in listing
    assert "10 loaded units listed." in listing

    everything = run("systemctl list-units -a").output
    assert "slurmctld.service" in everything
    assert "13 loaded units listed." in everything


def test_stop_is_journaled(run: Runner) -> None:
    assert "Stopped NVIDIA fabric manager service." not in run("journalctl -u nvidia-fabricmanager").output
    run("systemctl stop nvidia-fabricmanager")
    assert "Stopped NVIDIA fabric manager service." in run("journalctl -u nvidia-fabricmanager").output


def test_dmesg_is_relative_to_boot(run: Runner) -> None:
    lines = run("dmesg").output.splitlines()
    assert lines[0].startswith("[    0.000000] Linux version")
    assert all(line.startswith("[") for line in lines)
    assert "systemd" not in run("dmesg").output

    stamped = run("dmesg -T").output.splitlines()
    assert stamped[0].startswith("[Sat Jun 15 08:00:00 2024] Linux version")


def test_dmesg_level_filter(run: Runner, store: ClusterStore) -> None:
    assert run("dmesg --level=err").output == ""
    store.add_xid_error("dgx-node01", 3, 79)
    errors = run("dmesg --level=err,crit").output
    assert "NVRM: Xid (PCI:0000:5d:00.0): 79" in errors
    assert "Linux version" not in errors

    bad = run("dmesg --level=loud")
    assert (bad.output, bad.exit_code) == ("dmesg: unknown level 'loud'", 1)
