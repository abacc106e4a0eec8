"""dcgmi, the DCGM command line client."""

from __future__ import annotations

from superpod_sim.cluster.health import (
    ecc_status,
    nvlink_status,
    pcie_status,
    temperature_status,
    worst,
    xid_status,
)
from superpod_sim.cluster.models import GPU, DGXNode, HealthStatus
from superpod_sim.cluster.xid import xid_description, xid_severity
from superpod_sim.core.flags import FlagSchema, FlagSpec, format_suggestion, suggest
from superpod_sim.core.formatting import aligned_columns, pipe_table
from superpod_sim.core.types import CommandContext, CommandResult, ParsedCommand
from superpod_sim.simulators.base import BaseSimulator, has_fallen_off_bus

DCGM_VERSION = "3.3.5"
NO_HOST_ENGINE = (
    "Error: unable to establish a connection to the specified host: localhost\n"
    "Error: Unable to connect to host engine. Cannot connect to DCGM daemon (nv-hostengine)."
)
ALL_GPUS_GROUP = "DCGM_ALL_SUPPORTED_GPUS"

_DIAG_LEVELS = {"1": 1, "short": 1, "2": 2, "medium": 2, "3": 3, "long": 3}
_HEALTH_LABELS: dict[HealthStatus, str] = {"OK": "Healthy", "Warning": "Warning", "Critical": "Failure"}
_INCIDENT_LABELS: dict[HealthStatus, str] = {"OK": "Info", "Warning": "Warning", "Critical": "Error"}

_SCHEMAS: dict[str, FlagSchema] = {
    "discovery": FlagSchema("dcgmi discovery", [FlagSpec("l", aliases=("list",)), FlagSpec("c", aliases=("compute",))]),
    "group": FlagSchema(
        "dcgmi group",
        [FlagSpec("l", aliases=("list",)), FlagSpec("g", aliases=("group",), takes_value=True)],
        lenient=True,
    ),
    "health": FlagSchema(
        "dcgmi health",
        [
            FlagSpec("g", aliases=("group",), takes_value=True),
            FlagSpec("c", aliases=("check",)),
            FlagSpec("s", aliases=("set",), takes_value=True),
            FlagSpec("f", aliases=("fetch",)),
            FlagSpec("j", aliases=("json",)),
        ],
    ),
    "diag": FlagSchema(
        "dcgmi diag",
        [
            FlagSpec("r", aliases=("run",), takes_value=True),
            FlagSpec("g", aliases=("group",), takes_value=True),
            FlagSpec("i", aliases=("gpuList",), takes_value=True),
            FlagSpec("j", aliases=("json",)),
        ],
        lenient=True,
    ),
    "stats": FlagSchema("dcgmi stats", [], lenient=True),
    "dmon": FlagSchema("dcgmi dmon", [], lenient=True),
}

# DCGM field id -> (column header, getter)
_DMON_FIELDS = {
    "150": ("TMPTR", lambda gpu: str(gpu.temperature)),
    "155": ("POWER", lambda gpu: f"{gpu.power_draw:.3f}"),
    "203": ("GPUTL", lambda gpu: str(gpu.utilization)),
    "204": ("MCUTL", lambda gpu: str(round(100 * gpu.memory_used / max(gpu.memory_total, 1)))),
    "252": ("FBUSD", lambda gpu: str(gpu.memory_used)),
    "156": ("TOTEC", lambda gpu: str(int(gpu.power_draw * 3600))),
    "100": ("SMCLK", lambda gpu: str(gpu.sm_clock)),
    "101": ("MMCLK", lambda gpu: str(gpu.memory_clock)),
}
_DMON_DEFAULT = ("150", "155", "203", "252")


def _gpu_findings(gpu: GPU) -> list[tuple[HealthStatus, str]]:
    """Incidents the DCGM health watches would raise for one GPU."""
    findings: list[tuple[HealthStatus, str]] = []
    thermal = temperature_status(gpu.temperature)
    if thermal != "OK":
        findings.append((thermal, f"Thermal: GPU temperature {gpu.temperature}C exceeds the slowdown threshold"))
    memory = ecc_status(gpu.ecc_errors)
    if memory != "OK":
        findings.append(
            (
                memory,
                f"Memory: {gpu.ecc_errors.worst_double_bit} uncorrectable and "
                f"{gpu.ecc_errors.worst_single_bit} correctable ECC errors",
            )
        )
    for error in gpu.xid_errors:
        severity = xid_severity(error)
        status: HealthStatus = "OK" if severity == "Informational" else severity
        findings.append((status, f"Driver: XID {error.code} - {xid_description(error)} ({severity})"))
    for link in gpu.nvlinks:
        status = nvlink_status(link)
        if status != "OK":
            findings.append((status, f"NVLink: link {link.link_id} is {link.status}"))
    if pcie_status(gpu) != "OK":
        findings.append(("Warning", f"PCIe: link degraded to Gen{gpu.pcie_link_speed // 4} x{gpu.pcie_link_width}"))
    return findings


class DcgmiSimulator(BaseSimulator):
    """Discovery, health checks, diagnostics and monitoring through DCGM."""

    name = "dcgmi"
    version = DCGM_VERSION
    description = "NVIDIA Data Center GPU Manager"
    commands = ("dcgmi",)
    subcommands = {"dcgmi": ("discovery", "group", "health", "diag", "stats", "dmon")}

    def execute(self, cmd: ParsedCommand, ctx: CommandContext) -> CommandResult:
        action = cmd.subcommand or (cmd.positional_args[0] if cmd.positional_args else None)
        if action is None and cmd.has_flag("version", "v"):
            return CommandResult.ok(f"dcgmi version: {DCGM_VERSION}")
        if action is None or self.wants_help(cmd):
            return self.help_result(title="dcgmi - NVIDIA Data Center GPU Manager (DCGM) command line interface")

        schema = _SCHEMAS.get(action)
        if schema is None:
            hint = format_suggestion(suggest(action, _SCHEMAS))
            message = f"Error: Unknown subsystem '{action}'. Run 'dcgmi --help' for usage."
            return CommandResult.error(f"{message}\n{hint}" if hint else message)
        checked = self.validate(schema, cmd)
        if isinstance(checked, CommandResult):
            return checked

        node = self.current_node(ctx)
        if node is None:
            return CommandResult.error(NO_HOST_ENGINE)

        handler = {
            "discovery": self._discovery,
            "group": self._group,
            "health": self._health,
            "diag": self._diag,
            "stats": self._stats,
            "dmon": self._dmon,
        }[action]
        return handler(checked, node)

    @staticmethod
    def _group_gpus(cmd: ParsedCommand, node: DGXNode) -> list[GPU] | CommandResult:
        group = cmd.flag_str("g") or "0"
        if group != "0":
            return CommandResult.error(f"Error: The specified group id {group} does not exist.")
        return list(node.gpus)

    @staticmethod
    def _discovery(cmd: ParsedCommand, node: DGXNode) -> CommandResult:
        if not cmd.has_flag("l", "c"):
            return CommandResult.error("Missing required flag: -l (list) or -c (compute hierarchy)")
        if cmd.has_flag("c"):
            rows = [[f"GPU {gpu.id}", f"GPU {gpu.id}", "EntityID: " + str(gpu.id)] for gpu in node.gpus]
            return CommandResult.ok(pipe_table(["Instance Hierarchy", "GPU", "Entity"], rows))

        lines = [f"{len(node.gpus)} GPU(s) found.", "Device Information"]
        for gpu in node.gpus:
            lines.append(f"GPU {gpu.id}: Name: {gpu.name}")
            lines.append(f"       PCI Bus ID: 0000{gpu.pci_address.upper()}")
            lines.append(f"       Device UUID: {gpu.uuid}")
        switches = len({link.remote_device for gpu in node.gpus for link in gpu.nvlinks})
        lines.append(f"{switches} NvSwitch(es) found.")
        return CommandResult.ok("\n".join(lines))

    def _group(self, cmd: ParsedCommand, node: DGXNode) -> CommandResult:
        if not cmd.has_flag("l"):
            return CommandResult.error("Missing required flag: -l (only listing groups is supported)")
        ids = ",".join(str(gpu.id) for gpu in node.gpus)
        rows = [["Group ID", "0"], ["Group Name", ALL_GPUS_GROUP], ["Entities", f"GPU {ids}"]]
        return CommandResult.ok("1 group found.\n" + pipe_table(["Field", "Value"], rows))

    def _health(self, cmd: ParsedCommand, node: DGXNode) -> CommandResult:
        if cmd.has_flag("s"):
            return CommandResult.ok(f"Health monitor systems set successfully ({cmd.flag_str('s')}).")
        if not cmd.has_flag("c", "f"):
            return CommandResult.error("Missing required flag: -c (check) or -s (set watches)")
        gpus = self._group_gpus(cmd, node)
        if isinstance(gpus, CommandResult):
            return gpus

        per_gpu = {gpu.id: _gpu_findings(gpu) for gpu in gpus}
        overall = worst(status for findings in per_gpu.values() for status, _ in findings)
        lines = [
            f"Health monitoring report for group {cmd.flag_str('g') or '0'} ({ALL_GPUS_GROUP})",
            f"Overall Health: {_HEALTH_LABELS[overall]}",
            "",
        ]
        for gpu in gpus:
            findings = per_gpu[gpu.id]
            lines.append(f"GPU {gpu.id}: {_HEALTH_LABELS[worst(status for status, _ in findings)]}")
            lines.extend(f"  - {_INCIDENT_LABELS[status]}: {detail}" for status, detail in findings if status != "OK")
        return CommandResult.ok("\n".join(lines))

    def _diag(self, cmd: ParsedCommand, node: DGXNode) -> CommandResult:
        raw_level = cmd.flag_str("r")
        if raw_level is None:
            return CommandResult.error("Missing required flag: -r <level>\nUsage: dcgmi diag -r 1|2|3 [-g groupId]")
        level = _DIAG_LEVELS.get(raw_level.lower())
        if level is None:
            return CommandResult.error(
                f"Error: Invalid value '{raw_level}' for -r: diag mode must be 1, 2, 3, short, medium or long."
            )
        gpus = self._group_gpus(cmd, node)
        if isinstance(gpus, CommandResult):
            return gpus

        tests: list[tuple[str, str, list[str]]] = [
            ("Deployment", "Denylist", []),
            ("Deployment", "NVML Library", []),
            ("Deployment", "CUDA Main Library", []),
            ("Deployment", "Permissions and OS Blocks", []),
            ("Deployment", "Persistence Mode", [f"GPU {g.id}" for g in gpus if not g.persistence_mode]),
            ("Deployment", "Environment Variables", []),
            ("Deployment", "Page Retirement/Row Remap", [f"GPU {g.id}" for g in gpus if g.ecc_errors.double_bit]),
            ("Deployment", "Graphics Processes", []),
            ("Deployment", "Inforom", []),
        ]
        if level >= 2:
            tests += [
                (
                    "Integration",
                    "PCIe",
                    [f"GPU {g.id}" for g in gpus if has_fallen_off_bus(g) or pcie_status(g) != "OK"],
                ),
                (
                    "Integration",
                    "NVLink",
                    [f"GPU {g.id}" for g in gpus if any(link.status != "Active" for link in g.nvlinks)],
                ),
                ("Hardware", "GPU Memory", [f"GPU {g.id}" for g in gpus if ecc_status(g.ecc_errors) == "Critical"]),
            ]
        if level >= 3:
            tests += [
                ("Hardware", "Diagnostic", [f"GPU {g.id}" for g in gpus if xid_status(g) == "Critical"]),
                ("Stress", "Targeted Stress", []),
                (
                    "Stress",
                    "Targeted Power",
                    [f"GPU {g.id}" for g in gpus if temperature_status(g.temperature) == "Critical"],
                ),
                ("Stress", "Memory Bandwidth", [f"GPU {g.id}" for g in gpus if ecc_status(g.ecc_errors) != "OK"]),
                ("Stress", "EUD", []),
            ]

        rows: list[list[str]] = []
        failures = 0
        category = ""
        for group, test, failed in tests:
            if group != category:
                rows.append([group, ""])
                category = group
            if failed:
                failures += 1
                rows.append([f"  {test}", f"Fail - {', '.join(failed)}"])
            else:
                rows.append([f"  {test}", "Pass"])

        lines = [
            f"Running level {level} diagnostic. Please wait...",
            f"Successfully ran diagnostic for group {cmd.flag_str('g') or '0'}.",
            "",
            pipe_table(["Diagnostic", "Result"], rows),
        ]
        if failures:
            lines += ["", f"{failures} test(s) failed. Run 'nvidia-bug-report.sh' and review the failing GPUs."]
        return CommandResult.ok("\n".join(lines))

    @staticmethod
    def _stats(cmd: ParsedCommand, node: DGXNode) -> CommandResult:
        group = cmd.flag_str("g") or "0"
        if cmd.has_flag("e", "enable"):
            return CommandResult.ok(f"Successfully started process watches on group {group}.")
        if cmd.has_flag("d", "disable"):
            return CommandResult.ok(f"Successfully stopped process watches on group {group}.")
        job = cmd.flag_str("j", "jobstats")
        if job is not None:
            gpus = [gpu for gpu in node.gpus if str(gpu.allocated_job_id) == job]
            if not gpus:
                return CommandResult.error(f"Error: No data for job {job}. Was job recording started?")
            rows = [
                [f"GPU {gpu.id}", f"{gpu.power_draw:.1f} W", f"{gpu.utilization} %", f"{gpu.memory_used} MiB"]
                for gpu in gpus
            ]
            table = pipe_table(["GPU", "Avg Power", "Avg SM Util", "Max Memory"], rows)
            return CommandResult.ok(f"Job statistics for {job}\n{table}")
        # No action: report the watch state.
        return CommandResult.ok(
            f"Process watches on group {group} are disabled.\n"
            "Use -e to enable, -d to disable or -j <job> for job statistics."
        )

    @staticmethod
    def _dmon(cmd: ParsedCommand, node: DGXNode) -> CommandResult:
        fields = [item.strip() for item in (cmd.flag_str("e") or ",".join(_DMON_DEFAULT)).split(",") if item.strip()]
        unknown = [item for item in fields if item not in _DMON_FIELDS]
        if unknown:
            return CommandResult.error(f"Error: Unsupported field id(s): {', '.join(unknown)}")
        selected = cmd.flag_str("i")
        gpus = [gpu for gpu in node.gpus if selected is None or str(gpu.id) in selected.split(",")]
        samples = cmd.flag_str("c") or "1"
        count = int(samples) if samples.isdigit() and int(samples) > 0 else 1

        rows: list[list[str]] = [
            ["#Entity", *(_DMON_FIELDS[item][0] for item in fields)],
            ["ID", *("" for _ in fields)],
        ]
        for _ in range(count):
            for gpu in gpus:
                rows.append([f"GPU {gpu.id}", *(_DMON_FIELDS[item][1](gpu) for item in fields)])
        return CommandResult.ok(aligned_columns(rows, gap=3))
