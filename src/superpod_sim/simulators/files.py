"""Navigating and reading the node filesystem: cd, ls and cat."""

from __future__ import annotations

from collections.abc import Callable
from datetime import datetime

from superpod_sim.cluster.models import ClusterConfig, DGXNode
from superpod_sim.core import filesystem
from superpod_sim.core.flags import FlagSchema, FlagSpec
from superpod_sim.core.types import CommandContext, CommandResult, ParsedCommand
from superpod_sim.simulators.base import BaseSimulator
from superpod_sim.simulators.cmsh import HEADNODE_IP
from superpod_sim.simulators.pci_tools import journal_entries

FileRenderer = Callable[[DGXNode, ClusterConfig], str]

_LS_FLAGS = FlagSchema(
    "ls",
    [
        FlagSpec("l"),
        FlagSpec("a", aliases=("all",)),
        FlagSpec("la", aliases=("al",)),
        FlagSpec("help"),
    ],
)

_CAT_FLAGS = FlagSchema("cat", [FlagSpec("number", aliases=("n",)), FlagSpec("help")])

BASHRC = """\
# ~/.bashrc: executed by bash(1) for non-login shells.
export PATH=/cm/shared/apps/slurm/current/bin:$PATH
export HISTSIZE=5000
alias ll='ls -alF'
alias gpus='nvidia-smi --query-gpu=index,name,temperature.gpu,utilization.gpu --format=csv'
"""

TRAIN_SBATCH = """\
#!/bin/bash
#SBATCH --job-name=train
#SBATCH --partition=batch
#SBATCH --nodes=2
#SBATCH --gpus-per-node=8
#SBATCH --time=04:00:00

srun python train.py --epochs 10
"""

NCCL_TEST_SBATCH = """\
#!/bin/bash
#SBATCH --job-name=nccl-test
#SBATCH --nodes=2
#SBATCH --gpus-per-node=8
#SBATCH --exclusive

srun all_reduce_perf -b 8 -e 8G -f 2 -g 1
"""

BURN_IN_SBATCH = """\
#!/bin/bash
#SBATCH --job-name=burn-in
#SBATCH --nodes=1
#SBATCH --gpus-per-node=8

dcgmi diag -r 3
"""

CGROUP_CONF = """\
CgroupAutomount=yes
ConstrainCores=yes
ConstrainDevices=yes
ConstrainRAMSpace=yes
"""

FABRICMANAGER_CFG = """\
LOG_LEVEL=4
LOG_FILE_NAME=/var/log/nvidia-fabricmanager.log
LOG_APPEND_TO_LOG=1
DAEMONIZE=1
BIND_INTERFACE_IP=127.0.0.1
STARTING_TCP_PORT=16000
FABRIC_MODE=0
FABRIC_MODE_RESTART=0
STATE_FILE_NAME=/var/tmp/fabricmanager.state
FM_CMD_BIND_INTERFACE=127.0.0.1
FM_CMD_PORT_NUMBER=6666
FM_STAY_RESIDENT_ON_FAILURES=0
ACCESS_LINK_FAILURE_MODE=0
TRUNK_LINK_FAILURE_MODE=0
NVSWITCH_FAILURE_MODE=0
ABORT_CUDA_JOBS_ON_FM_EXIT=1
"""


def _hosts(node: DGXNode, cluster: ClusterConfig) -> str:
    _ = node
    lines = ["127.0.0.1\tlocalhost", f"{HEADNODE_IP}\t{cluster.headnode}"]
    lines += [f"{item.management_ip}\t{item.hostname}" for item in cluster.nodes]
    return "\n".join(lines) + "\n"


def _os_release(node: DGXNode, cluster: ClusterConfig) -> str:
    _ = cluster
    version = node.os_version.split()[1] if len(node.os_version.split()) > 1 else node.os_version
    return (
        f'PRETTY_NAME="{node.os_version}"\nNAME="Ubuntu"\nVERSION_ID="{version.rsplit(".", 1)[0]}"\n'
        f'VERSION="{version} LTS (Jammy Jellyfish)"\nID=ubuntu\nID_LIKE=debian\n'
    )


def _slurm_conf(node: DGXNode, cluster: ClusterConfig) -> str:
    _ = node
    lines = [
        f"ClusterName={cluster.name}",
        f"SlurmctldHost={cluster.headnode}",
        "AuthType=auth/munge",
        "GresTypes=gpu",
        "SchedulerType=sched/backfill",
        "SelectType=select/cons_tres",
        "SelectTypeParameters=CR_Core_Memory",
        "ProctrackType=proctrack/cgroup",
        "TaskPlugin=task/affinity,task/cgroup",
        "SlurmdLogFile=/var/log/slurm/slurmd.log",
        "SlurmctldLogFile=/var/log/slurm/slurmctld.log",
        "",
    ]
    lines += [
        f"NodeName={item.hostname} CPUs={item.logical_cores} Sockets={item.cpu_count} "
        f"CoresPerSocket={item.cores_per_socket} ThreadsPerCore=2 RealMemory={item.ram_total * 1000} "
        f"Gres=gpu:{len(item.gpus)} State=UNKNOWN"
        for item in cluster.nodes
    ]
    lines.append("")
    lines += [
        f"PartitionName={partition.name} Nodes={','.join(partition.nodes)} "
        f"Default={'YES' if partition.default else 'NO'} MaxTime={partition.max_time} State={partition.state.upper()}"
        for partition in cluster.partitions
    ]
    return "\n".join(lines) + "\n"


def _gres_conf(node: DGXNode, cluster: ClusterConfig) -> str:
    _ = node
    lines = ["AutoDetect=nvml"]
    lines += [
        f"NodeName={item.hostname} Name=gpu File=/dev/nvidia[0-{len(item.gpus) - 1}]"
        for item in cluster.nodes
        if item.gpus
    ]
    return "\n".join(lines) + "\n"


def _topology_conf(node: DGXNode, cluster: ClusterConfig) -> str:
    _ = node
    hostnames = [item.hostname for item in cluster.nodes]
    leaves = [hostnames[idx : idx + 4] for idx in range(0, len(hostnames), 4)]
    lines = [f"SwitchName=leaf{idx:02d} Nodes={','.join(group)}" for idx, group in enumerate(leaves, start=1)]
    lines.append(f"SwitchName=spine01 Switches=leaf[01-{len(leaves):02d}]")
    return "\n".join(lines) + "\n"


def _cpuinfo(node: DGXNode, cluster: ClusterConfig) -> str:
    _ = cluster
    blocks = []
    threads = node.cpu_count * node.cores_per_socket
    for cpu in range(node.logical_cores):
        core = cpu % threads
        blocks.append(
            f"processor\t: {cpu}\nvendor_id\t: GenuineIntel\nmodel name\t: {node.cpu_model}\n"
            f"physical id\t: {core // node.cores_per_socket}\ncore id\t\t: {core % node.cores_per_socket}\n"
            f"cpu cores\t: {node.cores_per_socket}\n"
        )
    return "\n".join(blocks)


def _meminfo(node: DGXNode, cluster: ClusterConfig) -> str:
    _ = cluster
    total = node.ram_total * 1024 * 1024
    free = (node.ram_total - node.ram_used) * 1024 * 1024
    return f"MemTotal:       {total} kB\nMemFree:        {free} kB\nMemAvailable:   {free} kB\n"


def _driver_version(node: DGXNode, cluster: ClusterConfig) -> str:
    _ = cluster
    return (
        f"NVRM version: NVIDIA UNIX x86_64 Kernel Module  {node.nvidia_driver_version}  "
        "Thu Oct 26 20:37:45 UTC 2023\nGCC version:  gcc version 11.4.0 (Ubuntu 11.4.0-1ubuntu1~22.04)\n"
    )


def _journal_file(*, kernel_only: bool = False, unit: str | None = None) -> FileRenderer:
    def render(node: DGXNode, cluster: ClusterConfig) -> str:
        entries = journal_entries(node, cluster)
        if kernel_only:
            entries = [entry for entry in entries if entry.is_kernel]
        if unit is not None:
            entries = [entry for entry in entries if entry.unit == unit]
        return "".join(f"{entry.render(node.hostname)}\n" for entry in entries)

    return render


def _slurmd_log(node: DGXNode, cluster: ClusterConfig) -> str:
    entries = [entry for entry in journal_entries(node, cluster) if entry.unit == "slurmd"]
    return "".join(f"[{entry.timestamp:%Y-%m-%dT%H:%M:%S}.000] {entry.message}\n" for entry in entries)


def _static(text: str) -> FileRenderer:
    return lambda node, cluster: text


FILES: dict[str, FileRenderer] = {
    "/etc/hosts": _hosts,
    "/etc/os-release": _os_release,
    "/etc/nvidia-fabricmanager/fabricmanager.cfg": _static(FABRICMANAGER_CFG),
    "/etc/slurm/cgroup.conf": _static(CGROUP_CONF),
    "/etc/slurm/gres.conf": _gres_conf,
    "/etc/slurm/slurm.conf": _slurm_conf,
    "/etc/slurm/topology.conf": _topology_conf,
    "/proc/cpuinfo": _cpuinfo,
    "/proc/meminfo": _meminfo,
    "/proc/driver/nvidia/version": _driver_version,
    "/root/.bashrc": _static(BASHRC),
    "/root/train.sbatch": _static(TRAIN_SBATCH),
    "/root/jobs/burn-in.sbatch": _static(BURN_IN_SBATCH),
    "/root/jobs/nccl-test.sbatch": _static(NCCL_TEST_SBATCH),
    "/var/log/syslog": _journal_file(),
    "/var/log/kern.log": _journal_file(kernel_only=True),
    "/var/log/nvidia-fabricmanager.log": _journal_file(unit="nvidia-fabricmanager"),
    "/var/log/slurm/slurmd.log": _slurmd_log,
    # slurmctld runs on the head node.
    "/var/log/slurm/slurmctld.log": _static(""),
}


def read_file(path: str, node: DGXNode, cluster: ClusterConfig) -> str | None:
    renderer = FILES.get(path)
    return renderer(node, cluster) if renderer is not None else None


class FilesSimulator(BaseSimulator):
    """The shell's view of the simulated node filesystem."""

    name = "files"
    version = "9.1"
    description = "Filesystem navigation"
    commands = ("cd", "ls", "cat")

    def execute(self, cmd: ParsedCommand, ctx: CommandContext) -> CommandResult:
        if cmd.base_command == "cd":
            return self._cd(cmd, ctx)
        if cmd.base_command == "ls":
            return self._ls(cmd, ctx)
        return self._cat(cmd, ctx)

    @staticmethod
    def _cd(cmd: ParsedCommand, ctx: CommandContext) -> CommandResult:
        words = cmd.words
        if len(words) > 1:
            return CommandResult.error("-bash: cd: too many arguments")
        target = words[0] if words else filesystem.HOME
        echo = target == "-"
        if echo:
            target = ctx.environment.get("OLDPWD", ctx.current_path)
        path = filesystem.resolve(target, ctx.current_path)
        if not filesystem.exists(path):
            return CommandResult.error(f"-bash: cd: {target}: No such file or directory")
        if not filesystem.is_dir(path):
            return CommandResult.error(f"-bash: cd: {target}: Not a directory")
        ctx.environment["OLDPWD"] = ctx.current_path
        ctx.current_path = path
        return CommandResult.ok(path if echo else "")

    def _ls(self, cmd: ParsedCommand, ctx: CommandContext) -> CommandResult:
        checked = self.validate(_LS_FLAGS, cmd)
        if isinstance(checked, CommandResult):
            return checked
        cmd = checked
        if cmd.has_flag("help"):
            return self.help_result("ls")
        long = cmd.has_flag("l", "la")
        hidden = cmd.has_flag("a", "la")

        targets = cmd.words or ["."]
        blocks: list[str] = []
        errors: list[str] = []
        for target in targets:
            path = filesystem.resolve(target, ctx.current_path)
            if not filesystem.exists(path):
                errors.append(f"ls: cannot access '{target}': No such file or directory")
                continue
            if filesystem.is_dir(path):
                names = filesystem.list_dir(path, hidden=hidden)
                if hidden:
                    names = [".", "..", *names]
                listing = self._long(path, names, ctx) if long else "  ".join(names)
                blocks.append(f"{target}:\n{listing}" if len(targets) > 1 else listing)
            else:
                parent = filesystem.resolve("..", path)
                blocks.append(self._long(parent, [target], ctx, paths=[path]) if long else target)
        output = "\n".join([*errors, "\n\n".join(blocks)] if blocks else errors)
        return CommandResult(output, exit_code=2 if errors else 0)

    @staticmethod
    def _long(directory: str, names: list[str], ctx: CommandContext, *, paths: list[str] | None = None) -> str:
        node, cluster = ctx.node(), ctx.cluster
        stamp = cluster.boot_time if cluster is not None else datetime(2024, 6, 15, 8, 0, 0)
        lines = []
        for idx, name in enumerate(names):
            path = paths[idx] if paths else filesystem.resolve(name, directory)
            if filesystem.is_dir(path):
                mode, links, size = "drwxr-xr-x", 2 + len(filesystem.SIMULATED_PATHS[path]), 4096
            else:
                text = read_file(path, node, cluster) if node is not None and cluster is not None else None
                mode, links, size = "-rw-r--r--", 1, len((text or "").encode())
            lines.append(f"{mode} {links:>2} root root {size:>7} {stamp:%b %d %H:%M} {name}")
        if paths is None:
            lines.insert(0, f"total {4 * len(names)}")
        return "\n".join(lines)

    def _cat(self, cmd: ParsedCommand, ctx: CommandContext) -> CommandResult:
        checked = self.validate(_CAT_FLAGS, cmd)
        if isinstance(checked, CommandResult):
            return checked
        cmd = checked
        if cmd.has_flag("help"):
            return self.help_result("cat")
        if not cmd.words:
            return CommandResult.error("cat: missing file operand")

        node, cluster = ctx.node(), ctx.cluster
        lines: list[str] = []
        exit_code = 0
        for target in cmd.words:
            path = filesystem.resolve(target, ctx.current_path)
            text = read_file(path, node, cluster) if node is not None and cluster is not None else None
            if filesystem.is_dir(path):
                lines.append(f"cat: {target}: Is a directory")
            elif text is None or not filesystem.is_file(path):
                lines.append(f"cat: {target}: No such file or directory")
            else:
                lines.extend(text.splitlines())
                continue
            exit_code = 1

        if cmd.has_flag("number"):
            number = 0
            for idx, line in enumerate(lines):
                if not line.startswith("cat: "):
                    number += 1
                    lines[idx] = f"{number:>6}\t{line}"
        return CommandResult("\n".join(lines), exit_code=exit_code)
