from collections.abc import Callable

from superpod_sim.cluster.store import ClusterStore
from superpod_sim.core.formatting import strip_ansi
from superpod_sim.core.registry import SimulatorRegistry
from superpod_sim.core.types import CommandContext, CommandResult
from superpod_sim.simulators.nvsm import NvsmState, health_checks, transition

Runner = Callable[[str], CommandResult]


def test_interactive_prompt_and_cd(run: Runner, registry: SimulatorRegistry, ctx: CommandContext) -> None:
    assert run("nvsm").prompt == "nvsm> "

    moved = registry.execute_interactive("nvsm", "cd /", ctx)
    assert moved.prompt == "nvsm(/)> "

    child = registry.execute_interactive("nvsm", "cd systems/localhost/gpus", ctx)
    assert child.prompt == "nvsm(/systems/localhost/gpus)> "
    listing = registry.execute_interactive("nvsm", "show", ctx)
    assert "GPU7" in listing.output
    assert "Verbs:" in listing.output

    up = registry.execute_interactive("nvsm", "cd ..", ctx)
    assert up.prompt == "nvsm> "

    assert registry.execute_interactive("nvsm", "exit", ctx).prompt is None


def test_cd_to_missing_target_keeps_state(ctx: CommandContext) -> None:
    node = ctx.node()
    assert node is not None
    state, result = transition(NvsmState(), "cd nowhere", node, ctx)
    assert result.exit_code == 1
    assert "Target 'nowhere' does not exist" in result.output
    assert "gpus" in result.output
    assert state == NvsmState()
    assert result.prompt == "nvsm> "


def test_show_gpu_target(ctx: CommandContext) -> None:
    node = ctx.node()
    assert node is not None
    _, result = transition(NvsmState(), "show gpus/GPU3", node, ctx)
    assert "PCIAddress = 0000:5d:00.0" in result.output
    assert "HealthStatus = Healthy" in result.output


def test_detailed_health_lines_are_seventy_columns(run: Runner) -> None:
    output = run("nvsm show health --detailed").output
    leader_lines = [line for line in output.splitlines() if "..." in line]
    assert leader_lines
    assert all(len(strip_ansi(line)) == 70 for line in leader_lines)
    assert "Overall system health: Healthy" in strip_ansi(output)


def test_summary_is_truncated(run: Runner) -> None:
    output = strip_ansi(run("nvsm show health").output)
    assert "more checks (use --detailed to see all)" in output
    assert "GPU ECC status [GPU0]" not in output


def test_double_bit_ecc_is_critical(run: Runner, store: ClusterStore) -> None:
    store.update_gpu("dgx-node01", 0, ecc_errors={"double_bit": 2})
    output = strip_ansi(run("nvsm show health --detailed").output)
    line = next(line for line in output.splitlines() if line.startswith("GPU ECC status [GPU0]"))
    assert line.endswith(" Critical")
    assert "Overall system health: Critical" in output


def test_reported_health_counts_toward_overall(run: Runner, store: ClusterStore) -> None:
    store.update_gpu("dgx-node01", 5, health_status="Warning")
    assert "Overall system health: Warning" in strip_ansi(run("nvsm show health").output)


def test_check_order_starts_with_system_checks(ctx: CommandContext) -> None:
    node = ctx.node()
    assert node is not None
    checks = health_checks(node)
    assert checks[0].description == "Verify installed DIMM memory sticks"
    assert checks[1].description == "Number of logical CPU cores [224]"
    assert all(check.status == "OK" for check in checks)


def test_dump_health(run: Runner) -> None:
    result = run("nvsm dump health")
    assert result.exit_code == 0
    assert result.prompt is None
    assert "/tmp/nvsm-health-dgx-node01-20240615100000.tar.xz" in result.output


def test_unknown_one_shot_command(run: Runner) -> None:
    assert run("nvsm frobnicate").exit_code == 1
