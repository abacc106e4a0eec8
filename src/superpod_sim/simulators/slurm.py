"""Slurm client commands: sinfo, squeue, scontrol, sbatch, srun, scancel, sacct and sacctmgr."""

from __future__ import annotations

import math
import re
import shlex
from collections.abc import Callable, Iterable, Sequence
from dataclasses import dataclass, field, replace
from datetime import timedelta

from superpod_sim.cluster.factory import gpu_family
from superpod_sim.cluster.models import ClusterConfig, DGXNode, SlurmJob, SlurmNodeState, SlurmPartition
from superpod_sim.cluster.store import ClusterStore
from superpod_sim.core.flags import FlagSchema, FlagSpec, format_suggestion, suggest
from superpod_sim.core.parser import is_flag, parse, split_words
from superpod_sim.core.types import CommandContext, CommandResult, ParsedCommand
from superpod_sim.errors import ClusterStateError, JobNotFoundError, NodeNotFoundError
from superpod_sim.simulators.base import BaseSimulator, report_clock

SLURM_VERSION = "23.02.6"
CONTROLLER_DOWN = "slurm_load_partitions: Unable to contact slurm controller (connect failure)"

_COMPACT_STATES: dict[str, str] = {"idle": "idle", "alloc": "alloc", "mix": "mix", "drain": "drain", "down": "down"}
_LONG_STATES: dict[str, str] = {
    "idle": "idle",
    "alloc": "allocated",
    "mix": "mixed",
    "drain": "drained",
    "down": "down",
}
_JOB_CODES: dict[str, str] = {
    "PENDING": "PD",
    "RUNNING": "R",
    "COMPLETED": "CD",
    "CANCELLED": "CA",
    "FAILED": "F",
}
_FORMAT_HEADERS: dict[str, str] = {
    "P": "PARTITION",
    "a": "AVAIL",
    "l": "TIMELIMIT",
    "D": "NODES",
    "t": "STATE",
    "T": "STATE",
    "N": "NODELIST",
    "n": "HOSTNAMES",
    "G": "GRES",
    "c": "CPUS",
    "z": "S:C:T",
    "m": "MEMORY",
    "d": "TMP_DISK",
    "w": "WEIGHT",
    "f": "AVAIL_FEATURES",
    "E": "REASON",
    "u": "USER",
    "H": "TIMESTAMP",
    "F": "NODES(A/I/O/T)",
    "C": "CPUS(A/I/O/T)",
}
# Specifiers that only make sense per node; their presence switches sinfo to one row per node.
_NODE_FIELDS = frozenset("nGczmEuH")
_FORMAT_TOKEN = re.compile(r"%(\.?)(\d*)([A-Za-z])")

SINFO_DEFAULT = "%9P %.5a %.10l %.6D %.6t %N"
SINFO_LONG = "%9P %.5a %.10l %.6D %.11T %N"
SINFO_NODE = "%N %.6D %.9P %.6t"
SINFO_NODE_LONG = "%N %.6D %.9P %.11T %.4c %.8z %.6m %.8d %.6w %.8f %20E"
SINFO_REASONS = "%20E %9u %19H %N"
SINFO_SUMMARY = "%9P %.5a %.10l %.16F %N"

_SINFO_FLAGS = FlagSchema(
    "sinfo",
    [
        FlagSpec("Node", aliases=("N",)),
        FlagSpec("long", aliases=("l",)),
        FlagSpec("format", aliases=("o",), takes_value=True),
        FlagSpec("partition", aliases=("p",), takes_value=True),
        FlagSpec("states", aliases=("t",), takes_value=True),
        FlagSpec("nodes", aliases=("n",), takes_value=True),
        FlagSpec("list-reasons", aliases=("R",)),
        FlagSpec("summarize", aliases=("s",)),
        FlagSpec("noheader", aliases=("h",)),
        FlagSpec("help"),
        FlagSpec("version", aliases=("V",)),
    ],
)
_SQUEUE_FLAGS = FlagSchema(
    "squeue",
    [
        FlagSpec("user", aliases=("u",), takes_value=True),
        FlagSpec("partition", aliases=("p",), takes_value=True),
        FlagSpec("states", aliases=("t",), takes_value=True),
        FlagSpec("jobs", aliases=("j",), takes_value=True),
        FlagSpec("nodelist", aliases=("w",), takes_value=True),
        FlagSpec("me"),
        FlagSpec("long", aliases=("l",)),
        FlagSpec("noheader", aliases=("h",)),
        FlagSpec("help"),
        FlagSpec("version", aliases=("V",)),
    ],
)
_SCONTROL_FLAGS = FlagSchema(
    "scontrol",
    [
        FlagSpec("oneliner", aliases=("o",)),
        FlagSpec("details", aliases=("d",)),
        FlagSpec("help", aliases=("h",)),
        FlagSpec("version", aliases=("V",)),
    ],
)
_SUBMIT_SPECS = [
    FlagSpec("gres", takes_value=True),
    FlagSpec("gpus", aliases=("G",), takes_value=True),
    FlagSpec("gpus-per-node", takes_value=True),
    FlagSpec("nodes", aliases=("N",), takes_value=True),
    FlagSpec("ntasks", aliases=("n",), takes_value=True),
    FlagSpec("ntasks-per-node", takes_value=True),
    FlagSpec("cpus-per-task", aliases=("c",), takes_value=True),
    FlagSpec("partition", aliases=("p",), takes_value=True),
    FlagSpec("job-name", aliases=("J",), takes_value=True),
    FlagSpec("time", aliases=("t",), takes_value=True),
    FlagSpec("account", aliases=("A",), takes_value=True),
    FlagSpec("output", aliases=("o",), takes_value=True),
    FlagSpec("error", aliases=("e",), takes_value=True),
    FlagSpec("nodelist", aliases=("w",), takes_value=True),
    FlagSpec("exclusive"),
    FlagSpec("help", aliases=("h",)),
    FlagSpec("version", aliases=("V",)),
]
_SBATCH_FLAGS = FlagSchema("sbatch", [*_SUBMIT_SPECS, FlagSpec("wrap", takes_value=True)])
_SRUN_FLAGS = FlagSchema("srun", [*_SUBMIT_SPECS, FlagSpec("pty")])
_SCANCEL_FLAGS = FlagSchema(
    "scancel",
    [
        FlagSpec("user", aliases=("u",), takes_value=True),
        FlagSpec("partition", aliases=("p",), takes_value=True),
        FlagSpec("help", aliases=("h",)),
        FlagSpec("version", aliases=("V",)),
    ],
)
_SACCT_FLAGS = FlagSchema(
    "sacct",
    [
        FlagSpec("jobs", aliases=("j",), takes_value=True),
        FlagSpec("allusers", aliases=("a",)),
        FlagSpec("user", aliases=("u",), takes_value=True),
        FlagSpec("starttime", aliases=("S",), takes_value=True),
        FlagSpec("noheader", aliases=("n",)),
        FlagSpec("help", aliases=("h",)),
        FlagSpec("version", aliases=("V",)),
    ],
)
_SACCTMGR_FLAGS = FlagSchema(
    "sacctmgr",
    [
        FlagSpec("parsable", aliases=("p",)),
        FlagSpec("noheader", aliases=("n",)),
        FlagSpec("immediate", aliases=("i",)),
        FlagSpec("help", aliases=("h",)),
        FlagSpec("version", aliases=("V",)),
    ],
)

_SCONTROL_COMMANDS = ("show", "update", "ping", "version")
_SCONTROL_ENTITIES = ("node", "nodes", "partition", "partitions", "job", "jobs", "config")
_SACCTMGR_COMMANDS = ("show", "list", "add", "create", "modify", "delete", "remove")
_SACCTMGR_ENTITIES = ("association", "assoc", "account", "qos", "cluster", "user")
COMMIT_PROMPT = "Would you like to commit changes? (You have 30 seconds to decide)\n(N/y): y"
SACCTMGR_USAGE = (
    "Usage: sacctmgr [options] <command> [entity] [specs]\n"
    "  Valid commands: show, list, add, modify, delete\n"
    "  Valid entities: assoc, account, qos, cluster, user"
)


def compress_hostlist(names: Iterable[str]) -> str:
    """Collapse ``dgx-node01,dgx-node02`` into ``dgx-node[01-02]``."""
    groups: dict[str, list[str]] = {}
    loose: list[str] = []
    for name in names:
        match = re.match(r"^(.*?)(\d+)$", name)
        if match is None:
            loose.append(name)
            continue
        groups.setdefault(match.group(1), []).append(match.group(2))

    parts: list[str] = []
    for prefix, digits in groups.items():
        ordered = sorted(set(digits), key=int)
        if len(ordered) == 1:
            parts.append(f"{prefix}{ordered[0]}")
            continue
        ranges: list[str] = []
        start = prev = ordered[0]
        for item in ordered[1:]:
            if int(item) == int(prev) + 1 and len(item) == len(prev):
                prev = item
                continue
            ranges.append(start if start == prev else f"{start}-{prev}")
            start = prev = item
        ranges.append(start if start == prev else f"{start}-{prev}")
        parts.append(f"{prefix}[{','.join(ranges)}]")
    return ",".join([*parts, *loose])


def split_launch_line(raw: str, schema: FlagSchema) -> tuple[str, list[str]]:
    """Separate a launcher's own options from the program it runs."""
    tokens = split_words(raw)
    idx = 1
    while idx < len(tokens) and is_flag(tokens[idx]):
        name = tokens[idx].lstrip("-")
        spec = schema.lookup(name)
        idx += 1
        if spec is not None and spec.takes_value and "=" not in name and idx < len(tokens):
            idx += 1
    return shlex.join(tokens[:idx]), tokens[idx:]


def gres_string(node: DGXNode, *, used: bool = False) -> str:
    family = gpu_family(node.gpus[0].name) if node.gpus else "gpu"
    count = sum(1 for gpu in node.gpus if gpu.allocated_job_id is not None) if used else len(node.gpus)
    return f"gpu:{family}:{count}"


def _allocated(node: DGXNode) -> int:
    return sum(1 for gpu in node.gpus if gpu.allocated_job_id is not None)


def _compact_state(node: DGXNode) -> str:
    if node.slurm_state == "drain" and _allocated(node):
        return "drng"
    return _COMPACT_STATES[node.slurm_state]


def _long_state(node: DGXNode) -> str:
    if node.slurm_state == "drain" and _allocated(node):
        return "draining"
    return _LONG_STATES[node.slurm_state]


def _format_cell(value: str, width: str, right: bool) -> str:
    if not width:
        return value
    size = int(width)
    value = value[:size]
    return value.rjust(size) if right else value.ljust(size)


def render_format(fmt: str, rows: Sequence[dict[str, str]], *, header: bool = True) -> str:
    """Render rows through a sinfo-style ``%[.][width]X`` format string."""

    def line(values: Callable[[str], str]) -> str:
        out: list[str] = []
        cursor = 0
        for match in _FORMAT_TOKEN.finditer(fmt):
            out.append(fmt[cursor : match.start()])
            right, width, key = match.groups()
            out.append(_format_cell(values(key), width, bool(right)))
            cursor = match.end()
        out.append(fmt[cursor:])
        return "".join(out).rstrip()

    lines: list[str] = []
    if header:
        lines.append(line(lambda key: _FORMAT_HEADERS.get(key, key.upper())))
    for row in rows:
        rendered = line(lambda key, row=row: row.get(key, "N/A"))
        if rendered not in lines[1 if header else 0 :]:
            lines.append(rendered)
    return "\n".join(lines)


def _fixed_table(headers: Sequence[str], rows: Iterable[Sequence[str]], widths: Sequence[int], *, left: int = 0) -> str:
    """Slurm accounting layout: fixed columns, ``+`` on truncation, dashed rule under the header."""

    def cell(value: str, idx: int) -> str:
        size = widths[idx]
        if len(value) > size:
            value = value[: size - 1] + "+"
        return value.ljust(size) if idx < left else value.rjust(size)

    def line(values: Sequence[str]) -> str:
        return " ".join(cell(value, idx) for idx, value in enumerate(values))

    body = [line(headers), " ".join("-" * size for size in widths)]
    body.extend(line(row) for row in rows)
    return "\n".join(body)


def _parsable(headers: Sequence[str], rows: Iterable[Sequence[str]]) -> str:
    return "\n".join("|".join(values) + "|" for values in [headers, *rows])


@dataclass
class _Accounting:
    """slurmdbd records; not part of the hardware state."""

    accounts: dict[str, tuple[str, str]] = field(
        default_factory=lambda: {
            "root": ("default root account", "root"),
            "compute": ("gpu compute", "compute"),
            "research": ("research projects", "research"),
            "training": ("model training", "training"),
        }
    )
    users: dict[str, tuple[str, str]] = field(
        default_factory=lambda: {
            "root": ("root", "Administrator"),
            "admin": ("compute", "Operator"),
            "alice": ("research", "None"),
            "bob": ("training", "None"),
        }
    )
    qos: dict[str, int] = field(default_factory=lambda: {"normal": 50, "high": 100, "low": 10})

    def associations(self, cluster: str) -> list[list[str]]:
        limits = {"compute": "gres/gpu=64", "research": "gres/gpu=32", "training": "gres/gpu=16"}
        qos = {"compute": "normal,high", "training": "normal,low"}
        user_limits = {"admin": "gres/gpu=16", "alice": "gres/gpu=8", "bob": "gres/gpu=8"}
        rows: list[list[str]] = []
        for account in self.accounts:
            rows.append([cluster, account, "", "", "1", limits.get(account, ""), "", qos.get(account, "normal")])
            for user, (default_account, _) in self.users.items():
                if default_account == account:
                    rows.append(
                        [cluster, account, user, "", "1", "", user_limits.get(user, ""), qos.get(account, "normal")]
                    )
        return rows


class SlurmSimulator(BaseSimulator):
    """Workload manager client commands backed by the shared cluster store."""

    name = "slurm"
    version = SLURM_VERSION
    description = "Slurm workload manager commands"
    commands = ("sinfo", "squeue", "scontrol", "sbatch", "srun", "scancel", "sacct", "sacctmgr")
    subcommands = {"scontrol": _SCONTROL_COMMANDS, "sacctmgr": _SACCTMGR_COMMANDS}

    def __init__(self) -> None:
        self._accounting = _Accounting()

    def execute(self, cmd: ParsedCommand, ctx: CommandContext) -> CommandResult:
        handlers: dict[str, tuple[FlagSchema, Callable[[ParsedCommand, CommandContext], CommandResult]]] = {
            "sinfo": (_SINFO_FLAGS, self._sinfo),
            "squeue": (_SQUEUE_FLAGS, self._squeue),
            "scontrol": (_SCONTROL_FLAGS, self._scontrol),
            "sbatch": (_SBATCH_FLAGS, self._sbatch),
            "srun": (_SRUN_FLAGS, self._srun),
            "scancel": (_SCANCEL_FLAGS, self._scancel),
            "sacct": (_SACCT_FLAGS, self._sacct),
            "sacctmgr": (_SACCTMGR_FLAGS, self._sacctmgr),
        }
        entry = handlers.get(cmd.base_command)
        if entry is None:
            return CommandResult.error(f"{cmd.base_command}: command not found")
        schema, handler = entry
        if cmd.base_command == "srun" and cmd.raw:
            own, program = split_launch_line(cmd.raw, schema)
            cmd = replace(parse(own), subcommand=None, positional_args=tuple(program), raw=cmd.raw)
        checked = self.validate(schema, cmd)
        if isinstance(checked, CommandResult):
            return checked
        cmd = checked
        if cmd.has_flag("help"):
            return self.help_result(cmd.base_command)
        if cmd.has_flag("version"):
            return CommandResult.ok(f"slurm {SLURM_VERSION}")
        if ctx.store is None:
            return CommandResult.error(CONTROLLER_DOWN)
        return handler(cmd, ctx)

    # sinfo

    def _sinfo(self, cmd: ParsedCommand, ctx: CommandContext) -> CommandResult:
        store = _store(ctx)
        cluster = store.cluster
        partitions = cluster.partitions
        wanted = cmd.flag_str("partition")
        if wanted:
            names = set(wanted.split(","))
            partitions = [item for item in partitions if item.name in names]
        states = set((cmd.flag_str("states") or "").lower().split(",")) - {""}
        only_nodes = set((cmd.flag_str("nodes") or "").split(",")) - {""}

        fmt = cmd.flag_str("format")
        if fmt is None:
            if cmd.has_flag("list-reasons"):
                fmt = SINFO_REASONS
            elif cmd.has_flag("summarize"):
                fmt = SINFO_SUMMARY
            elif cmd.has_flag("Node"):
                fmt = SINFO_NODE_LONG if cmd.has_flag("long") else SINFO_NODE
            else:
                fmt = SINFO_LONG if cmd.has_flag("long") else SINFO_DEFAULT
        per_node = cmd.has_flag("Node") or bool(_NODE_FIELDS & {m.group(3) for m in _FORMAT_TOKEN.finditer(fmt)})

        rows: list[dict[str, str]] = []
        for partition in partitions:
            members = [
                node
                for node in cluster.nodes
                if node.hostname in partition.nodes or node.id in partition.nodes
            ]
            if states:
                members = [node for node in members if node.slurm_state in states or _long_state(node) in states]
            if only_nodes:
                members = [node for node in members if node.hostname in only_nodes or node.id in only_nodes]
            if cmd.has_flag("list-reasons"):
                members = [node for node in members if node.slurm_reason]
            if per_node:
                rows.extend(self._sinfo_fields(cluster, partition, [node]) for node in members)
            elif cmd.has_flag("summarize"):
                if members:
                    rows.append(self._sinfo_fields(cluster, partition, members))
            else:
                grouped: dict[str, list[DGXNode]] = {}
                for node in members:
                    grouped.setdefault(_compact_state(node), []).append(node)
                rows.extend(self._sinfo_fields(cluster, partition, group) for group in grouped.values())

        output = render_format(fmt, rows, header=not cmd.has_flag("noheader"))
        if cmd.has_flag("long"):
            output = f"{report_clock(ctx):%a %b %d %H:%M:%S %Y}\n{output}"
        return CommandResult.ok(output)

    @staticmethod
    def _sinfo_fields(cluster: ClusterConfig, partition: SlurmPartition, nodes: list[DGXNode]) -> dict[str, str]:
        first = nodes[0]
        counts = {"A": 0, "I": 0, "O": 0}
        for node in nodes:
            if node.slurm_state in ("alloc", "mix"):
                counts["A"] += 1
            elif node.slurm_state == "idle":
                counts["I"] += 1
            else:
                counts["O"] += 1
        cpus = first.logical_cores
        reason_stamp = cluster.boot_time + timedelta(hours=2)
        return {
            "P": partition.name + ("*" if partition.default else ""),
            "a": partition.state,
            "l": partition.max_time,
            "D": str(len(nodes)),
            "t": _compact_state(first),
            "T": _long_state(first),
            "N": compress_hostlist(node.hostname for node in nodes),
            "n": ",".join(node.hostname for node in nodes),
            "G": gres_string(first),
            "c": str(cpus),
            "z": f"{first.cpu_count}:{first.cores_per_socket}:2",
            "m": str(first.ram_total * 1000),
            "d": "0",
            "w": "1",
            "f": f"dgx,{gpu_family(first.gpus[0].name) if first.gpus else 'cpu'}",
            "E": first.slurm_reason or "none",
            "u": "root" if first.slurm_reason else "(null)",
            "H": f"{reason_stamp:%Y-%m-%dT%H:%M:%S}" if first.slurm_reason else "Unknown",
            "F": f"{counts['A']}/{counts['I']}/{counts['O']}/{len(nodes)}",
            "C": f"0/{cpus * len(nodes)}/0/{cpus * len(nodes)}",
        }

    # squeue

    def _squeue(self, cmd: ParsedCommand, ctx: CommandContext) -> CommandResult:
        jobs = [job for job in _store(ctx).cluster.jobs if job.state in ("PENDING", "RUNNING")]
        user = "root" if cmd.has_flag("me") else cmd.flag_str("user")
        if user:
            jobs = [job for job in jobs if job.user in user.split(",")]
        if partition := cmd.flag_str("partition"):
            jobs = [job for job in jobs if job.partition in partition.split(",")]
        if states := cmd.flag_str("states"):
            wanted = {item.upper() for item in states.split(",")}
            jobs = [job for job in jobs if job.state in wanted or _JOB_CODES[job.state] in wanted]
        if ids := cmd.flag_str("jobs"):
            jobs = [job for job in jobs if str(job.job_id) in ids.split(",")]
        if nodelist := cmd.flag_str("nodelist"):
            jobs = [job for job in jobs if set(job.nodes) & set(nodelist.split(","))]

        lines = []
        if not cmd.has_flag("noheader"):
            lines.append(
                f"{'JOBID':>18} {'PARTITION':>9} {'NAME':>8} {'USER':>8} {'ST':>2} {'TIME':>10} {'NODES':>6} "
                "NODELIST(REASON)"
            )
        for job in jobs:
            where = compress_hostlist(job.nodes) if job.state == "RUNNING" else "(Resources)"
            lines.append(
                f"{job.job_id:>18} {job.partition:>9.9} {job.name:>8.8} {job.user:>8.8} "
                f"{_JOB_CODES[job.state]:>2} {self._elapsed(job, ctx):>10} {max(len(job.nodes), 1):>6} {where}"
            )
        return CommandResult.ok("\n".join(lines))

    @staticmethod
    def _elapsed(job: SlurmJob, ctx: CommandContext) -> str:
        if job.state != "RUNNING":
            return "0:00"
        seconds = max(0, int((report_clock(ctx, hours=3) - job.submit_time).total_seconds()))
        hours, rest = divmod(seconds, 3600)
        minutes, secs = divmod(rest, 60)
        return f"{hours}:{minutes:02d}:{secs:02d}" if hours else f"{minutes}:{secs:02d}"

    # scontrol

    def _scontrol(self, cmd: ParsedCommand, ctx: CommandContext) -> CommandResult:
        words = cmd.words
        if not words:
            return CommandResult.error("scontrol: error: no command specified\n" + self.help_result("scontrol").output)
        command, args = words[0].lower(), words[1:]
        store = _store(ctx)
        if command == "show":
            return self._scontrol_show(store, args, ctx, oneliner=cmd.has_flag("oneliner"))
        if command == "update":
            return self._scontrol_update(store, args)
        if command == "ping":
            return CommandResult.ok(f"Slurmctld(primary) at {store.cluster.headnode} is UP")
        if command == "version":
            return CommandResult.ok(f"slurm {SLURM_VERSION}")
        hint = format_suggestion(suggest(command, _SCONTROL_COMMANDS))
        message = f"invalid keyword: {command}"
        return CommandResult.error(f"{message}\n{hint}" if hint else message)

    def _scontrol_show(
        self, store: ClusterStore, args: list[str], ctx: CommandContext, *, oneliner: bool
    ) -> CommandResult:
        if not args:
            return CommandResult.error("scontrol: error: show requires an entity (node, partition, job, config)")
        entity, target = args[0].lower(), (args[1] if len(args) > 1 else None)
        cluster = store.cluster
        if entity in ("node", "nodes"):
            nodes = cluster.nodes
            if target:
                node = cluster.find_node(target)
                if node is None:
                    return CommandResult.error(f"Node {target} not found")
                nodes = [node]
            blocks = [self._node_record(cluster, node) for node in nodes]
        elif entity in ("partition", "partitions"):
            partitions = cluster.partitions
            if target:
                partitions = [item for item in partitions if item.name == target]
                if not partitions:
                    return CommandResult.error(f"Partition {target} not found")
            blocks = [self._partition_record(cluster, item) for item in partitions]
        elif entity in ("job", "jobs"):
            jobs = cluster.jobs
            if target:
                try:
                    jobs = [store.get_job(int(target))]
                except (ValueError, JobNotFoundError):
                    return CommandResult.error("slurm_load_jobs error: Invalid job id specified")
            if not jobs:
                return CommandResult.ok("No jobs in the system")
            blocks = [self._job_record(cluster, job) for job in jobs]
        elif entity == "config":
            return CommandResult.ok(self._config(cluster, ctx))
        else:
            hint = format_suggestion(suggest(entity, _SCONTROL_ENTITIES))
            message = f"invalid entity: {entity} for keyword: show"
            return CommandResult.error(f"{message}\n{hint}" if hint else message)

        if oneliner:
            return CommandResult.ok("\n".join(" ".join(" ".join(line.split()) for line in block) for block in blocks))
        return CommandResult.ok("\n\n".join("\n".join(block) for block in blocks))

    @staticmethod
    def _node_record(cluster: ClusterConfig, node: DGXNode) -> list[str]:
        used = _allocated(node)
        cpus = node.logical_cores
        family = gpu_family(node.gpus[0].name) if node.gpus else "gpu"
        member_of = [item.name for item in cluster.partitions if node.hostname in item.nodes or node.id in item.nodes]
        cpu_alloc = cpus if node.slurm_state == "alloc" else cpus * used // max(len(node.gpus), 1)
        record = [
            f"NodeName={node.hostname} Arch=x86_64 CoresPerSocket={node.cores_per_socket}",
            f"   CPUAlloc={cpu_alloc} CPUEfctv={cpus} CPUTot={cpus} CPULoad=0.01",
            f"   AvailableFeatures=dgx,{family}",
            f"   ActiveFeatures=dgx,{family}",
            f"   Gres={gres_string(node)}",
            f"   GresUsed={gres_string(node, used=True)}",
            f"   NodeAddr={node.hostname} NodeHostName={node.hostname} Version={SLURM_VERSION}",
            f"   OS=Linux {node.kernel_version} #35-Ubuntu SMP",
            f"   RealMemory={node.ram_total * 1000} AllocMem=0 FreeMem={(node.ram_total - node.ram_used) * 1000} "
            f"Sockets={node.cpu_count} Boards=1",
            f"   State={_long_state(node).upper()} ThreadsPerCore=2 TmpDisk=0 Weight=1 Owner=N/A MCS_label=N/A",
            f"   Partitions={','.join(member_of)}",
            f"   BootTime={cluster.boot_time:%Y-%m-%dT%H:%M:%S} SlurmdStartTime={cluster.boot_time:%Y-%m-%dT%H:%M}:42",
            f"   CfgTRES=cpu={cpus},mem={node.ram_total}G,billing={cpus},gres/gpu={len(node.gpus)}",
            f"   AllocTRES={f'gres/gpu={used}' if used else ''}",
        ]
        if node.slurm_reason:
            record.append(f"   Reason={node.slurm_reason} [root@{cluster.boot_time:%Y-%m-%d}T10:00:00]")
        return record

    @staticmethod
    def _partition_record(cluster: ClusterConfig, partition: SlurmPartition) -> list[str]:
        members = [node for node in cluster.nodes if node.hostname in partition.nodes or node.id in partition.nodes]
        cpus = sum(node.logical_cores for node in members)
        max_time = "UNLIMITED" if partition.max_time == "infinite" else partition.max_time
        return [
            f"PartitionName={partition.name}",
            "   AllowGroups=ALL AllowAccounts=ALL AllowQos=ALL",
            f"   Default={'YES' if partition.default else 'NO'} QoS=N/A",
            f"   MaxNodes=UNLIMITED MaxTime={max_time} MinNodes=0",
            f"   Nodes={compress_hostlist(node.hostname for node in members)}",
            f"   State={partition.state.upper()} TotalCPUs={cpus} TotalNodes={len(members)}",
            f"   TRES=cpu={cpus},gres/gpu={sum(len(node.gpus) for node in members)}",
        ]

    @staticmethod
    def _job_record(cluster: ClusterConfig, job: SlurmJob) -> list[str]:
        reason = "None" if job.state != "PENDING" else "Resources"
        gpus = job.gpus_per_node * max(len(job.nodes), 1)
        return [
            f"JobId={job.job_id} JobName={job.name}",
            f"   UserId={job.user}(0) GroupId={job.user}(0) Account={job.account}",
            f"   JobState={job.state} Reason={reason} Dependency=(null)",
            f"   SubmitTime={job.submit_time:%Y-%m-%dT%H:%M:%S} TimeLimit={job.time_limit}",
            f"   Partition={job.partition} NodeList={compress_hostlist(job.nodes) if job.nodes else '(null)'}",
            f"   NumNodes={max(len(job.nodes), 1)} TRES=node={max(len(job.nodes), 1)},gres/gpu={gpus}",
            f"   Command={job.script or '(null)'}",
            f"   TresPerNode=gres/gpu:{job.gpus_per_node}",
        ]

    @staticmethod
    def _config(cluster: ClusterConfig, ctx: CommandContext) -> str:
        pairs = [
            ("AccountingStorageType", "accounting_storage/slurmdbd"),
            ("AccountingStorageTRES", "cpu,mem,energy,node,billing,gres/gpu"),
            ("ClusterName", cluster.name),
            ("GresTypes", "gpu"),
            ("JobAcctGatherType", "jobacct_gather/cgroup"),
            ("ProctrackType", "proctrack/cgroup"),
            ("SchedulerType", "sched/backfill"),
            ("SelectType", "select/cons_tres"),
            ("SelectTypeParameters", "CR_CORE_MEMORY"),
            ("SlurmctldHost[0]", cluster.headnode),
            ("SlurmctldPort", "6817"),
            ("SlurmdPort", "6818"),
            ("SLURM_VERSION", SLURM_VERSION),
            ("TaskPlugin", "task/cgroup,task/affinity"),
        ]
        body = "\n".join(f"{key} = {value}" for key, value in pairs)
        return f"Configuration data as of {report_clock(ctx):%Y-%m-%dT%H:%M:%S}\n{body}"

    @staticmethod
    def _scontrol_update(store: ClusterStore, args: list[str]) -> CommandResult:
        settings: dict[str, str] = {}
        for arg in args:
            key, sep, value = arg.partition("=")
            if not sep:
                return CommandResult.error(f"scontrol: error: Invalid input: {arg}\nRequest aborted")
            settings[key.lower()] = value
        target = settings.get("nodename")
        if target is None:
            return CommandResult.error("scontrol: error: update requires nodename=<node>")
        requested = settings.get("state", "").lower()
        reason = settings.get("reason")
        if not requested:
            return CommandResult.error("scontrol: error: update requires state=<state>")
        if requested in ("drain", "down") and not reason:
            return CommandResult.error(
                "You must specify a reason when DOWNING or DRAINING a node. Request denied"
            )

        for name in target.split(","):
            try:
                node = store.get_node(name)
            except NodeNotFoundError:
                return CommandResult.error(f"slurm_update error: Invalid node name specified ({name})")
            if requested in ("resume", "undrain", "idle"):
                used = _allocated(node)
                state: SlurmNodeState = "idle" if used == 0 else "alloc" if used == len(node.gpus) else "mix"
                store.set_slurm_state(node.id, state)
            elif requested in ("drain", "down"):
                store.set_slurm_state(node.id, "drain" if requested == "drain" else "down", reason)
            else:
                return CommandResult.error(f"scontrol: error: Invalid node state specified: {requested}")
        return CommandResult.ok("")

    # sbatch / srun

    def _submission(self, cmd: ParsedCommand, store: ClusterStore, tool: str) -> tuple[int, int, str] | CommandResult:
        """Validate resource flags and return (nodes, gpus per node, partition)."""
        partition = cmd.flag_str("partition") or next(
            (item.name for item in store.cluster.partitions if item.default), "gpu"
        )
        if partition not in {item.name for item in store.cluster.partitions}:
            return CommandResult.error(f"{tool}: error: invalid partition specified: {partition}")
        try:
            nodes = int(cmd.flag_str("nodes") or "1")
        except ValueError:
            return CommandResult.error(f"{tool}: error: invalid node count `{cmd.flag_str('nodes')}'")

        members = store.partition_nodes(partition)
        per_node_limit = max((len(node.gpus) for node in members), default=0)
        family = gpu_family(members[0].gpus[0].name) if members and members[0].gpus else "gpu"

        per_node = 0
        if gres := cmd.flag_str("gres"):
            parts = gres.split(":")
            if parts[0] != "gpu" or len(parts) not in (2, 3) or not parts[-1].isdigit():
                return CommandResult.error(f"{tool}: error: Invalid generic resource (gres) specification")
            if len(parts) == 3 and parts[1] != family:
                return CommandResult.error(f"{tool}: error: Invalid generic resource (gres) specification")
            per_node = int(parts[-1])
        elif value := cmd.flag_str("gpus-per-node"):
            if not value.split(":")[-1].isdigit():
                return CommandResult.error(f"{tool}: error: Invalid generic resource (gres) specification")
            per_node = int(value.split(":")[-1])
        elif value := cmd.flag_str("gpus"):
            if not value.split(":")[-1].isdigit():
                return CommandResult.error(f"{tool}: error: Invalid generic resource (gres) specification")
            per_node = math.ceil(int(value.split(":")[-1]) / max(nodes, 1))

        if per_node > per_node_limit or nodes > len(members) or nodes < 1:
            return CommandResult.error(
                f"{tool}: error: Batch job submission failed: Requested node configuration is not available"
            )
        return nodes, per_node, partition

    def _sbatch(self, cmd: ParsedCommand, ctx: CommandContext) -> CommandResult:
        store = _store(ctx)
        words = cmd.words
        script = words[0] if words else ("--wrap" if cmd.has_flag("wrap") else "")
        if not script:
            return CommandResult.error("sbatch: error: Batch job submission failed: no script specified")
        request = self._submission(cmd, store, "sbatch")
        if isinstance(request, CommandResult):
            return request
        nodes, per_node, partition = request
        job = store.submit_job(
            name=cmd.flag_str("job-name") or (script.rsplit("/", 1)[-1] if script != "--wrap" else "wrap"),
            gpus_per_node=per_node,
            node_count=nodes,
            partition=partition,
            script=cmd.flag_str("wrap") or script,
        )
        return CommandResult.ok(f"Submitted batch job {job.job_id}")

    def _srun(self, cmd: ParsedCommand, ctx: CommandContext) -> CommandResult:
        store = _store(ctx)
        words = cmd.words
        if not words:
            return CommandResult.error("srun: fatal: No command given to execute.")
        request = self._submission(cmd, store, "srun")
        if isinstance(request, CommandResult):
            return request
        nodes, per_node, partition = request
        executable = " ".join(words)
        job = store.submit_job(
            name=cmd.flag_str("job-name") or words[0],
            gpus_per_node=per_node,
            node_count=nodes,
            partition=partition,
            script=executable,
        )
        if job.state == "PENDING":
            return CommandResult.ok(
                f"srun: Requested partition configuration not available now\n"
                f"srun: job {job.job_id} queued and waiting for resources"
            )
        if words[0] == "hostname":
            output = "\n".join(job.nodes)
        else:
            output = f"srun: job {job.job_id} step 0 ran '{executable}' on {compress_hostlist(job.nodes)}"
        store.end_job(job.job_id, "COMPLETED")
        return CommandResult.ok(output)

    # scancel / sacct

    def _scancel(self, cmd: ParsedCommand, ctx: CommandContext) -> CommandResult:
        store = _store(ctx)
        words = cmd.words
        if user := cmd.flag_str("user"):
            for job in store.cluster.jobs:
                if job.user == user and job.state in ("PENDING", "RUNNING"):
                    store.cancel_job(job.job_id)
            return CommandResult.ok("")
        if not words:
            return CommandResult.error("scancel: error: No job identification provided")
        for word in words:
            try:
                job = store.get_job(int(word.split(".")[0]))
            except (ValueError, JobNotFoundError):
                return CommandResult.error(f"scancel: error: Kill job error on job id {word}: Invalid job id specified")
            if job.state not in ("PENDING", "RUNNING"):
                return CommandResult.error(
                    f"scancel: error: Kill job error on job id {word}: Job/step already completing or completed"
                )
            store.cancel_job(job.job_id)
        return CommandResult.ok("")

    def _sacct(self, cmd: ParsedCommand, ctx: CommandContext) -> CommandResult:
        jobs = _store(ctx).cluster.jobs
        if ids := cmd.flag_str("jobs"):
            jobs = [job for job in jobs if str(job.job_id) in ids.split(",")]
        if user := cmd.flag_str("user"):
            jobs = [job for job in jobs if job.user == user]
        nodes = ctx.cluster.nodes if ctx.cluster else []
        cpus_per_node = nodes[0].logical_cores if nodes else 224
        per_gpu = cpus_per_node // max(len(nodes[0].gpus), 1) if nodes else 28
        rows = []
        for job in jobs:
            cpus = (per_gpu * job.gpus_per_node if job.gpus_per_node else cpus_per_node) * len(job.nodes)
            exit_code = "0:0" if job.state != "CANCELLED" else "0:15"
            rows.append([str(job.job_id), job.name, job.partition, job.account, str(cpus), job.state, exit_code])
        table = _fixed_table(
            ["JobID", "JobName", "Partition", "Account", "AllocCPUS", "State", "ExitCode"],
            rows,
            [12, 10, 10, 10, 10, 10, 8],
            left=1,
        )
        if cmd.has_flag("noheader"):
            table = "\n".join(table.splitlines()[2:])
        return CommandResult.ok(table)

    # sacctmgr

    def _sacctmgr(self, cmd: ParsedCommand, ctx: CommandContext) -> CommandResult:
        words = cmd.words
        if not words:
            return CommandResult.error(f"sacctmgr: error: no command given\n{SACCTMGR_USAGE}")
        command, args = words[0].lower(), words[1:]
        if command in ("show", "list"):
            return self._sacctmgr_show(args, ctx, parsable=cmd.has_flag("parsable"))
        if command in ("add", "create"):
            return self._sacctmgr_add(args)
        if command in ("delete", "remove"):
            return self._sacctmgr_delete(args)
        if command == "modify":
            return CommandResult.ok(" Modified records...\n" + COMMIT_PROMPT)
        hint = format_suggestion(suggest(command, _SACCTMGR_COMMANDS))
        message = f"sacctmgr: error: Invalid command: {command}"
        return CommandResult.error("\n".join(filter(None, [message, hint, SACCTMGR_USAGE])))

    def _sacctmgr_show(self, args: list[str], ctx: CommandContext, *, parsable: bool) -> CommandResult:
        entity = args[0].lower() if args else ""
        cluster = _store(ctx).cluster
        accounting = self._accounting
        if entity in ("assoc", "association", "associations"):
            headers = ["Cluster", "Account", "User", "Partition", "Share", "GrpTRES", "MaxTRES", "QOS"]
            rows = accounting.associations(cluster.name)
            widths = [10, 10, 10, 10, 9, 13, 13, 20]
        elif entity in ("account", "accounts"):
            headers = ["Account", "Descr", "Org"]
            rows = [[name, descr, org] for name, (descr, org) in accounting.accounts.items()]
            widths = [10, 20, 20]
        elif entity == "qos":
            headers = ["Name", "Priority", "GraceTime", "Preempt", "MaxWall"]
            rows = [[name, str(priority), "00:00:00", "", ""] for name, priority in accounting.qos.items()]
            widths = [10, 10, 10, 10, 11]
        elif entity in ("cluster", "clusters"):
            headers = ["Cluster", "ControlHost", "ControlPort", "RPC", "Share", "QOS"]
            rows = [[cluster.name, "10.141.0.1", "6817", "9984", "1", "normal"]]
            widths = [10, 15, 12, 5, 9, 20]
        elif entity in ("user", "users"):
            headers = ["User", "Def Acct", "Admin"]
            rows = [[name, account, admin] for name, (account, admin) in accounting.users.items()]
            widths = [10, 10, 13]
        else:
            hint = format_suggestion(suggest(entity, _SACCTMGR_ENTITIES)) if entity else ""
            message = f"sacctmgr: error: Unknown entity '{entity}'" if entity else "sacctmgr: error: No entity given"
            return CommandResult.error("\n".join(filter(None, [message, hint, SACCTMGR_USAGE])))
        if parsable:
            return CommandResult.ok(_parsable(headers, rows))
        return CommandResult.ok(_fixed_table(headers, rows, widths))

    def _sacctmgr_add(self, args: list[str]) -> CommandResult:
        entity = args[0].lower() if args else ""
        names = [arg for arg in args[1:] if "=" not in arg]
        specs = {key.lower(): value for key, _, value in (arg.partition("=") for arg in args[1:] if "=" in arg)}
        if entity == "account":
            for name in names:
                record = (specs.get("description", name), specs.get("organization", name))
                self._accounting.accounts.setdefault(name, record)
            title = "Account(s)"
        elif entity == "user":
            for name in names:
                self._accounting.users.setdefault(name, (specs.get("account", "compute"), "None"))
            title = "User(s)"
        else:
            return CommandResult.error(f"sacctmgr: error: Can not add entity '{entity}'\n{SACCTMGR_USAGE}")
        lines = [f" Adding {title}", *(f"  {name}" for name in names), f"add {entity} completed successfully"]
        return CommandResult.ok("\n".join(lines))

    def _sacctmgr_delete(self, args: list[str]) -> CommandResult:
        if len(args) < 2:
            return CommandResult.error(f"sacctmgr: error: delete requires an entity and a name\n{SACCTMGR_USAGE}")
        entity, name = args[0].lower(), args[-1].split("=")[-1]
        table = {"account": self._accounting.accounts, "user": self._accounting.users}.get(entity)
        if table is None or name not in table:
            return CommandResult.error(" Nothing deleted")
        del table[name]
        return CommandResult.ok(f" Deleting {entity}s...\n  {name}")


def _store(ctx: CommandContext) -> ClusterStore:
    if ctx.store is None:
        raise ClusterStateError("no cluster store attached to the session")
    return ctx.store
