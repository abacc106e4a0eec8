from collections.abc import Callable

from superpod_sim.core.types import CommandContext, CommandResult
from superpod_sim.simulators.builtins import CLEAR_SCREEN

Runner = Callable[[str], CommandResult]


def test_hostname_follows_current_node(run: Runner, ctx: CommandContext) -> None:
    assert run("hostname").output == "dgx-node01"
    ctx.current_node = "dgx-node04"
    assert run("hostname").output == "dgx-node04"


def test_ssh_switches_node(run: Runner, ctx: CommandContext) -> None:
    result = run("ssh root@dgx-node02")
    assert result.exit_code == 0
    assert result.output.startswith("Welcome to Ubuntu 22.04.3 LTS")
    assert ctx.current_node == "dgx-node02"
    assert run("hostname").output == "dgx-node02"


def test_ssh_rejects_unknown_host(run: Runner, ctx: CommandContext) -> None:
    result = run("ssh gpu-box")
    assert result.exit_code == 255
    assert result.output == "ssh: Could not resolve hostname gpu-box: Name or service not known"
    assert ctx.current_node == "dgx-node01"
    assert run("ssh").exit_code == 255


def test_history(run: Runner, ctx: CommandContext) -> None:
    ctx.history.extend(["nvidia-smi", "sinfo", "history"])
    assert run("history").output.splitlines() == ["    1  nvidia-smi", "    2  sinfo", "    3  history"]
    assert run("history 1").output == "    3  history"
    assert run("history lots").exit_code == 1


def test_pwd_echo_and_clear(run: Runner, ctx: CommandContext) -> None:
    assert run("pwd").output == "/root"
    assert run("echo $HOSTNAME").output == "dgx-node01"
    assert run('echo "hello there" $USER $MISSING').output == "hello there root "
    ctx.environment["SLURM_JOB_ID"] = "1001"
    assert run("echo ${SLURM_JOB_ID}").output == "1001"
    assert run("clear").output == CLEAR_SCREEN


def test_help(run: Runner) -> None:
    listing = run("help").output
    assert listing.startswith("Available commands:")
    assert "nvidia-smi" in listing
    assert "perfquery" in listing

    detail = run("help nvidia-smi").output
    assert detail.startswith("nvidia-smi - NVIDIA System Management Interface")
    assert "Usage: nvidia-smi" in detail
    assert "-L, --list-gpus" in detail

    assert run("help frobnicate").output == "No help available for frobnicate"
