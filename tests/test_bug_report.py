from collections.abc import Callable

from superpod_sim.cluster.store import ClusterStore
from superpod_sim.core.types import CommandResult

Runner = Callable[[str], CommandResult]

SECTIONS = (
    "System Information",
    "GPU Summary",
    "Driver Information",
    "XID Error History",
    "NVLink Summary",
    "ECC Memory Status",
    "GPU Details",
    "Recommendations",
)


def test_healthy_report(run: Runner) -> None:
    result = run("nvidia-bug-report.sh")
    assert result.exit_code == 0
    for title in SECTIONS:
        assert title in result.output
    assert "No XID errors recorded" in result.output
    assert "No issues detected. System appears healthy." in result.output
    assert "Output written to /tmp/nvidia-bug-report.log.gz" in result.output
    assert "Compressed size: 2816 KB" in result.output


def test_custom_output_file(run: Runner) -> None:
    result = run("nvidia-bug-report.sh -o /tmp/x.log.gz")
    assert result.exit_code == 0
    assert "Output written to /tmp/x.log.gz" in result.output


def test_no_compress(run: Runner) -> None:
    output = run("nvidia-bug-report.sh --no-compress --output-file /tmp/report.log.gz").output
    assert "Output written to /tmp/report.log" in output
    assert ".gz" not in output
    assert "Uncompressed size" in output


def test_safe_mode_skips_gpu_queries(run: Runner) -> None:
    output = run("nvidia-bug-report.sh --safe-mode").output
    assert "Running in safe mode" in output
    assert "  - nvidia-smi -q" not in output
    assert "  - dcgmi discovery -l" not in output
    assert "  - journalctl -b" in output


def test_verbose_numbers_steps(run: Runner) -> None:
    output = run("nvidia-bug-report.sh -v").output
    assert "[1/12] nvidia-smi -q ... done" in output


def test_extra_system_data(run: Runner) -> None:
    output = run("nvidia-bug-report.sh --extra-system-data").output
    assert "dmidecode" in output
    assert "nvidia_peermem" in output
    assert "Infiniband controller" in output
    assert "Compressed size: 3328 KB" in output


def test_version(run: Runner) -> None:
    assert run("nvidia-bug-report.sh --version").output == "nvidia-bug-report.sh Version: 535.104.05"


def test_faults_show_up_in_history_and_recommendations(run: Runner, store: ClusterStore) -> None:
    store.add_xid_error("dgx-node01", 2, 79)
    store.update_gpu("dgx-node01", 5, ecc_errors={"double_bit": 3})
    output = run("nvidia-bug-report.sh").output
    assert "XID 79: GPU has fallen off the bus [Critical]" in output
    assert "* GPU 2: XID 79 (GPU has fallen off the bus)" in output
    assert "* GPU 5: 3 double-bit ECC errors - drain the node and reset the GPU" in output
    assert "Unreachable (fallen off the bus)" in output
    assert "No issues detected" not in output


def test_power_near_limit_is_recommended(run: Runner, store: ClusterStore) -> None:
    store.update_gpu("dgx-node01", 0, power_draw=690.0, power_limit=700.0)
    output = run("nvidia-bug-report.sh").output
    assert "* GPU 0 is near power limit (690.0 W / 700.0 W)" in output
    assert "No issues detected" not in output


def test_unexplained_non_ok_gpu_gets_a_diagnostic(run: Runner, store: ClusterStore) -> None:
    store.update_gpu("dgx-node01", 3, health_status="Critical")
    output = run("nvidia-bug-report.sh").output
    assert "* GPU 3 is in a non-OK state (Critical) - run 'dcgmi diag -r 3' for a full diagnostic" in output
    assert "No issues detected" not in output


def test_informational_xid_needs_no_action(run: Runner, store: ClusterStore) -> None:
    store.add_xid_error("dgx-node01", 1, 62)
    output = run("nvidia-bug-report.sh").output
    assert "XID 62: Spurious Host Interrupt [Informational]" in output
    assert "No issues detected. System appears healthy." in output
