"""nvidia-smi."""

from __future__ import annotations

from collections.abc import Callable

from superpod_sim.cluster.health import TEMP_CRITICAL_C, temperature_status
from superpod_sim.cluster.models import GPU, DGXNode
from superpod_sim.core.flags import FlagSchema, FlagSpec, format_suggestion, suggest
from superpod_sim.core.formatting import aligned_columns
from superpod_sim.core.types import CommandContext, CommandResult, ParsedCommand
from superpod_sim.simulators.base import BaseSimulator, has_fallen_off_bus, report_clock

NO_DRIVER = (
    "NVIDIA-SMI has failed because it couldn't communicate with the NVIDIA driver. "
    "Make sure that the latest NVIDIA driver is installed and running."
)
INVALID_ARGS = "Invalid combination of input arguments. Please run 'nvidia-smi -h' for help."

_MAIN_FLAGS = FlagSchema(
    "nvidia-smi",
    [
        FlagSpec("L", aliases=("list-gpus",)),
        FlagSpec("q", aliases=("query",)),
        FlagSpec("d", aliases=("display",), takes_value=True),
        FlagSpec("i", aliases=("id",), takes_value=True),
        FlagSpec("query-gpu", takes_value=True),
        FlagSpec("format", takes_value=True),
        FlagSpec("h", aliases=("help",)),
        FlagSpec("version"),
    ],
)
_TOPO_FLAGS = FlagSchema("nvidia-smi topo", [FlagSpec("m", aliases=("matrix",)), FlagSpec("h", aliases=("help",))])
_NVLINK_FLAGS = FlagSchema(
    "nvidia-smi nvlink",
    [
        FlagSpec("s", aliases=("status",)),
        FlagSpec("e", aliases=("errorcounters",)),
        FlagSpec("i", aliases=("id",), takes_value=True),
        FlagSpec("h", aliases=("help",)),
    ],
)

# field -> (header unit, getter)
_QUERY_FIELDS: dict[str, tuple[str, Callable[[GPU, DGXNode], str]]] = {
    "index": ("", lambda gpu, node: str(gpu.id)),
    "name": ("", lambda gpu, node: gpu.name),
    "uuid": ("", lambda gpu, node: gpu.uuid),
    "serial": ("", lambda gpu, node: gpu.serial),
    "pci.bus_id": ("", lambda gpu, node: _bus_id(gpu)),
    "driver_version": ("", lambda gpu, node: node.nvidia_driver_version),
    "vbios_version": ("", lambda gpu, node: gpu.vbios_version),
    "persistence_mode": ("", lambda gpu, node: "Enabled" if gpu.persistence_mode else "Disabled"),
    "temperature.gpu": ("", lambda gpu, node: str(gpu.temperature)),
    "power.draw": ("W", lambda gpu, node: f"{gpu.power_draw:.2f}"),
    "power.limit": ("W", lambda gpu, node: f"{gpu.power_limit:.2f}"),
    "memory.total": ("MiB", lambda gpu, node: str(gpu.memory_total)),
    "memory.used": ("MiB", lambda gpu, node: str(gpu.memory_used)),
    "memory.free": ("MiB", lambda gpu, node: str(gpu.memory_total - gpu.memory_used)),
    "utilization.gpu": ("%", lambda gpu, node: str(gpu.utilization)),
    "utilization.memory": ("%", lambda gpu, node: str(_memory_utilization(gpu))),
    "clocks.sm": ("MHz", lambda gpu, node: str(gpu.sm_clock)),
    "clocks.mem": ("MHz", lambda gpu, node: str(gpu.memory_clock)),
    "pcie.link.gen.current": ("", lambda gpu, node: str(_pcie_gen(gpu.pcie_link_speed))),
    "pcie.link.width.current": ("", lambda gpu, node: str(gpu.pcie_link_width)),
    "ecc.errors.corrected.volatile.total": ("", lambda gpu, node: str(gpu.ecc_errors.single_bit)),
    "ecc.errors.uncorrected.volatile.total": ("", lambda gpu, node: str(gpu.ecc_errors.double_bit)),
    "ecc.errors.corrected.aggregate.total": ("", lambda gpu, node: str(gpu.ecc_errors.aggregated.single_bit)),
    "ecc.errors.uncorrected.aggregate.total": ("", lambda gpu, node: str(gpu.ecc_errors.aggregated.double_bit)),
    "mig.mode.current": ("", lambda gpu, node: "Enabled" if gpu.mig_mode else "Disabled"),
}
_QUERY_ALIASES = {
    "gpu_name": "name",
    "gpu_uuid": "uuid",
    "gpu_bus_id": "pci.bus_id",
}

_DISPLAY_SECTIONS = ("TEMPERATURE", "ECC", "POWER", "MEMORY", "CLOCK", "PCI", "UTILIZATION", "PERFORMANCE")


def _bus_id(gpu: GPU) -> str:
    # nvidia-smi prints an 8-digit PCI domain.
    return f"0000{gpu.pci_address.upper()}" if gpu.pci_address.count(":") == 2 else gpu.pci_address


def _memory_utilization(gpu: GPU) -> int:
    return gpu.memory_used * 100 // gpu.memory_total if gpu.memory_total else 0


def _pcie_gen(speed_gts: int) -> int:
    return {2: 1, 5: 2, 8: 3, 16: 4, 32: 5, 64: 6}.get(speed_gts, 4)


def _cell(text: str, width: int) -> str:
    return text.ljust(width)[:width]


def _lost_gpu_line(gpu: GPU) -> str:
    return (
        f"Unable to determine the device handle for GPU{_bus_id(gpu)}: GPU is lost. "
        "Reboot the system to recover this GPU"
    )


class NvidiaSmiSimulator(BaseSimulator):
    """Renders nvidia-smi views of the current node's GPUs."""

    name = "nvidia-smi"
    version = "535.129.03"
    description = "NVIDIA System Management Interface"
    commands = ("nvidia-smi",)
    subcommands = {"nvidia-smi": ("topo", "nvlink")}

    def execute(self, cmd: ParsedCommand, ctx: CommandContext) -> CommandResult:
        if cmd.subcommand == "topo":
            return self._topo(cmd, ctx)
        if cmd.subcommand == "nvlink":
            return self._nvlink(cmd, ctx)
        stray = cmd.subcommand or (cmd.positional_args[0] if cmd.positional_args else None)
        if stray is not None:
            hint = format_suggestion(suggest(stray, self.subcommands["nvidia-smi"]))
            message = f"Invalid command '{stray}'. {INVALID_ARGS}"
            return CommandResult.error(f"{message}\n{hint}" if hint else message)

        checked = self.validate(_MAIN_FLAGS, cmd)
        if isinstance(checked, CommandResult):
            return checked
        cmd = checked
        if cmd.has_flag("h"):
            return self.help_result()
        if cmd.positional_args:
            return CommandResult.error(INVALID_ARGS)

        node = self.current_node(ctx)
        if node is None:
            return CommandResult.error(NO_DRIVER)
        if cmd.has_flag("version"):
            return CommandResult.ok(self._version(node))

        gpus = self._select(cmd, node)
        if isinstance(gpus, CommandResult):
            return gpus

        if cmd.has_flag("query-gpu"):
            return self._query_gpu(cmd, node, gpus)
        if cmd.has_flag("L"):
            return CommandResult.ok("\n".join(f"GPU {gpu.id}: {gpu.name} (UUID: {gpu.uuid})" for gpu in gpus))
        if cmd.has_flag("q"):
            return self._query(cmd, ctx, node, gpus)
        return CommandResult.ok(self._status_table(ctx, node, gpus))

    @staticmethod
    def _select(cmd: ParsedCommand, node: DGXNode) -> list[GPU] | CommandResult:
        raw = cmd.flag_str("i")
        if raw is None:
            return list(node.gpus)
        if not raw.isdigit():
            return CommandResult.error(INVALID_ARGS)
        index = int(raw)
        for gpu in node.gpus:
            if gpu.id == index:
                return [gpu]
        return CommandResult.error("No devices were found")

    @staticmethod
    def _version(node: DGXNode) -> str:
        driver = node.nvidia_driver_version
        return "\n".join(
            [
                f"NVIDIA-SMI version  : {driver}",
                f"NVML version        : {driver.rsplit('.', 1)[0]}",
                f"DRIVER version      : {driver}",
                f"CUDA Version        : {node.cuda_version}",
            ]
        )

    def _status_table(self, ctx: CommandContext, node: DGXNode, gpus: list[GPU]) -> str:
        rule = "|" + "=" * 77 + "|"
        split_rule = "|" + "=" * 31 + "|" + "=" * 22 + "|" + "=" * 22 + "|"
        thin_rule = "|" + "-" * 31 + "|" + "-" * 22 + "|" + "-" * 22 + "|"
        header = (
            f" NVIDIA-SMI {node.nvidia_driver_version}   Driver Version: {node.nvidia_driver_version}"
            f"   CUDA Version: {node.cuda_version}"
        )
        lines = [_lost_gpu_line(gpu) for gpu in gpus if has_fallen_off_bus(gpu)]
        lines += [
            report_clock(ctx).strftime("%a %b %d %H:%M:%S %Y"),
            rule,
            f"|{_cell(header, 77)}|",
            split_rule,
            "| GPU  Name        Persistence-M | Bus-Id        Disp.A | Volatile Uncorr. ECC |",
            "| Fan  Temp  Perf  Pwr:Usage/Cap |         Memory-Usage | GPU-Util  Compute M. |",
            split_rule,
        ]
        visible = [gpu for gpu in gpus if not has_fallen_off_bus(gpu)]
        for gpu in visible:
            persistence = "On" if gpu.persistence_mode else "Off"
            lines.append(
                "|"
                + _cell(f"{gpu.id:>4}  {gpu.name[:20]:<20}  {persistence:>3}", 31)
                + "|"
                + _cell(f" {_bus_id(gpu)} Off", 22)
                + "|"
                + f"{gpu.ecc_errors.double_bit:>21} "
                + "|"
            )
            lines.append(
                "|"
                + _cell(
                    f" N/A  {gpu.temperature:>3}C    P0  {int(gpu.power_draw):>4}W / {int(gpu.power_limit):>4}W", 31
                )
                + "|"
                + f"{gpu.memory_used:>8}MiB / {gpu.memory_total}MiB ".rjust(22)
                + "|"
                + f"{gpu.utilization:>6}%      Default ".rjust(22)
                + "|"
            )
            lines.append(thin_rule)
        if not visible:
            lines.append(f"|{_cell('  No devices were found', 77)}|")

        lines += [
            "",
            rule,
            f"|{_cell(' Processes:', 77)}|",
            f"|{_cell('  GPU   GI   CI        PID   Type   Process name                  GPU Memory', 77)}|",
            f"|{_cell('        ID   ID                                                   Usage', 77)}|",
            rule,
        ]
        running = [gpu for gpu in visible if gpu.allocated_job_id is not None]
        for gpu in running:
            pid = 20000 + (gpu.allocated_job_id or 0)
            row = f"  {gpu.id:>3}   N/A  N/A  {pid:>9}      C   python3{'':23}{gpu.memory_used:>7}MiB"
            lines.append(f"|{_cell(row, 77)}|")
        if not running:
            lines.append(f"|{_cell('  No running processes found', 77)}|")
        lines.append(rule)
        return "\n".join(lines)

    def _query(self, cmd: ParsedCommand, ctx: CommandContext, node: DGXNode, gpus: list[GPU]) -> CommandResult:
        wanted: tuple[str, ...] = _DISPLAY_SECTIONS
        display = cmd.flag_str("d")
        if display is not None:
            wanted = tuple(part.strip().upper() for part in display.split(",") if part.strip())
            unknown = [part for part in wanted if part not in _DISPLAY_SECTIONS]
            if unknown:
                hint = format_suggestion(suggest(unknown[0], _DISPLAY_SECTIONS))
                message = f"Invalid display type '{unknown[0]}'. {INVALID_ARGS}"
                return CommandResult.error(f"{message}\n{hint}" if hint else message)

        lines = [
            "",
            "==============NVSMI LOG==============",
            "",
            f"{'Timestamp':<38}: {report_clock(ctx).strftime('%a %b %d %H:%M:%S %Y')}",
            f"{'Driver Version':<38}: {node.nvidia_driver_version}",
            f"{'CUDA Version':<38}: {node.cuda_version}",
            "",
            f"{'Attached GPUs':<38}: {len(node.gpus)}",
        ]
        for gpu in gpus:
            lines.append(f"GPU {_bus_id(gpu)}")
            if has_fallen_off_bus(gpu):
                lines.append(f"    {_lost_gpu_line(gpu)}")
                continue
            if display is None:
                lines.extend(self._identity_block(gpu))
            for section in wanted:
                lines.extend(self._section(section, gpu))
            lines.append("")
        return CommandResult.ok("\n".join(lines).rstrip())

    @staticmethod
    def _identity_block(gpu: GPU) -> list[str]:
        return [
            f"    {'Product Name':<34}: {gpu.name}",
            f"    {'Persistence Mode':<34}: {'Enabled' if gpu.persistence_mode else 'Disabled'}",
            f"    {'MIG Mode':<34}",
            f"        {'Current':<30}: {'Enabled' if gpu.mig_mode else 'Disabled'}",
            f"    {'Serial Number':<34}: {gpu.serial}",
            f"    {'GPU UUID':<34}: {gpu.uuid}",
            f"    {'Minor Number':<34}: {gpu.id}",
            f"    {'VBIOS Version':<34}: {gpu.vbios_version}",
        ]

    @staticmethod
    def _section(section: str, gpu: GPU) -> list[str]:
        def row(label: str, value: object, depth: int = 2) -> str:
            pad = "    " * depth
            return f"{pad}{label:<{38 - len(pad)}}: {value}"

        if section == "TEMPERATURE":
            return [
                "    Temperature",
                row("GPU Current Temp", f"{gpu.temperature} C"),
                row("GPU T.Limit Temp", f"{TEMP_CRITICAL_C - gpu.temperature} C"),
                row("GPU Shutdown Temp", "92 C"),
                row("GPU Slowdown Temp", f"{TEMP_CRITICAL_C} C"),
                row("GPU Max Operating Temp", "87 C"),
                row("Memory Current Temp", f"{gpu.temperature + 6} C"),
            ]
        if section == "ECC":
            ecc = gpu.ecc_errors
            return [
                "    ECC Mode",
                row("Current", "Enabled"),
                row("Pending", "Enabled"),
                "    ECC Errors",
                "        Volatile",
                row("DRAM Correctable", ecc.single_bit, 3),
                row("DRAM Uncorrectable", ecc.double_bit, 3),
                "        Aggregate",
                row("DRAM Correctable", ecc.aggregated.single_bit, 3),
                row("DRAM Uncorrectable", ecc.aggregated.double_bit, 3),
                "    Remapped Rows",
                row("Correctable Error", ecc.aggregated.single_bit),
                row("Uncorrectable Error", ecc.aggregated.double_bit),
                row("Pending", "Yes" if ecc.double_bit else "No"),
                row("Remapping Failure Occurred", "Yes" if any(e.code == 64 for e in gpu.xid_errors) else "No"),
            ]
        if section == "POWER":
            return [
                "    GPU Power Readings",
                row("Power Draw", f"{gpu.power_draw:.2f} W"),
                row("Current Power Limit", f"{gpu.power_limit:.2f} W"),
                row("Default Power Limit", f"{gpu.power_limit:.2f} W"),
            ]
        if section == "MEMORY":
            return [
                "    FB Memory Usage",
                row("Total", f"{gpu.memory_total} MiB"),
                row("Reserved", "551 MiB"),
                row("Used", f"{gpu.memory_used} MiB"),
                row("Free", f"{gpu.memory_total - gpu.memory_used} MiB"),
            ]
        if section == "CLOCK":
            throttled = temperature_status(gpu.temperature) != "OK"
            return [
                "    Clocks",
                row("SM", f"{gpu.sm_clock} MHz"),
                row("Memory", f"{gpu.memory_clock} MHz"),
                "    Clocks Event Reasons",
                row("HW Slowdown", "Active" if throttled else "Not Active"),
                row("HW Thermal Slowdown", "Active" if throttled else "Not Active"),
                row("SW Power Cap", "Not Active"),
            ]
        if section == "PCI":
            return [
                "    PCI",
                row("Bus Id", _bus_id(gpu)),
                "        GPU Link Info",
                row("PCIe Generation Current", _pcie_gen(gpu.pcie_link_speed), 3),
                row("Link Width Current", f"{gpu.pcie_link_width}x", 3),
            ]
        if section == "UTILIZATION":
            return [
                "    Utilization",
                row("Gpu", f"{gpu.utilization} %"),
                row("Memory", f"{_memory_utilization(gpu)} %"),
            ]
        return ["    Performance State", row("State", "P0")]

    @staticmethod
    def _query_gpu(cmd: ParsedCommand, node: DGXNode, gpus: list[GPU]) -> CommandResult:
        fmt = cmd.flag_str("format")
        if fmt is None:
            return CommandResult.error("Field 'format' is required with --query-gpu. Try --format=csv")
        options = [part.strip() for part in fmt.split(",")]
        if options[0] != "csv":
            return CommandResult.error(f"Invalid format '{fmt}'. Only csv is supported.")
        noheader = "noheader" in options
        nounits = "nounits" in options

        query = cmd.flag_str("query-gpu") or ""
        fields = [_QUERY_ALIASES.get(part.strip(), part.strip()) for part in query.split(",")]
        for field_name in fields:
            if field_name not in _QUERY_FIELDS:
                hint = format_suggestion(suggest(field_name, _QUERY_FIELDS))
                message = f'Field "{field_name}" is not a valid field to query.'
                return CommandResult.error(f"{message}\n{hint}" if hint else message)

        lines: list[str] = []
        if not noheader:
            headers = []
            for field_name in fields:
                unit = _QUERY_FIELDS[field_name][0]
                headers.append(f"{field_name} [{unit}]" if unit and not nounits else field_name)
            lines.append(", ".join(headers))
        for gpu in gpus:
            values = []
            for field_name in fields:
                unit, getter = _QUERY_FIELDS[field_name]
                value = getter(gpu, node)
                values.append(f"{value} {unit}" if unit and not nounits else value)
            lines.append(", ".join(values))
        return CommandResult.ok("\n".join(lines))

    def _topo(self, cmd: ParsedCommand, ctx: CommandContext) -> CommandResult:
        checked = self.validate(_TOPO_FLAGS, cmd)
        if isinstance(checked, CommandResult):
            return checked
        node = self.current_node(ctx)
        if node is None:
            return CommandResult.error(NO_DRIVER)
        if not checked.has_flag("m"):
            return CommandResult.ok(
                "Usage: nvidia-smi topo -m\n  -m, --matrix    Display the GPUDirect communication matrix."
            )

        gpu_count = len(node.gpus)
        labels = [f"GPU{gpu.id}" for gpu in node.gpus] + [f"NIC{hca.id}" for hca in node.hcas]
        rows: list[list[str]] = [["", *labels, "CPU Affinity", "NUMA Affinity"]]
        half = max(gpu_count // 2, 1)
        for row_idx, label in enumerate(labels):
            cells = []
            for col_idx in range(len(labels)):
                if row_idx == col_idx:
                    cells.append("X")
                elif row_idx < gpu_count and col_idx < gpu_count:
                    links = sum(1 for link in node.gpus[row_idx].nvlinks if link.status == "Active")
                    cells.append(f"NV{links}")
                elif (row_idx % gpu_count if gpu_count else 0) == (col_idx % gpu_count if gpu_count else 0):
                    cells.append("PXB")
                else:
                    cells.append("SYS")
            numa = 0 if (row_idx % max(gpu_count, 1)) < half else 1
            cpus = f"{numa * node.cores_per_socket}-{(numa + 1) * node.cores_per_socket - 1}"
            if row_idx < gpu_count:
                rows.append([label, *cells, cpus, str(numa)])
            else:
                rows.append([label, *cells, "", ""])
        legend = [
            "",
            "Legend:",
            "",
            "  X    = Self",
            "  SYS  = Connection traversing PCIe as well as the SMP interconnect between NUMA nodes",
            "  PXB  = Connection traversing multiple PCIe bridges (without traversing the PCIe Host Bridge)",
            "  NV#  = Connection traversing a bonded set of # NVLinks",
            "",
            "NIC Legend:",
            "",
            *(f"  NIC{hca.id}: {hca.device_name}" for hca in node.hcas),
        ]
        return CommandResult.ok(aligned_columns(rows, gap=1) + "\n" + "\n".join(legend))

    def _nvlink(self, cmd: ParsedCommand, ctx: CommandContext) -> CommandResult:
        checked = self.validate(_NVLINK_FLAGS, cmd)
        if isinstance(checked, CommandResult):
            return checked
        node = self.current_node(ctx)
        if node is None:
            return CommandResult.error(NO_DRIVER)
        gpus = self._select(checked, node)
        if isinstance(gpus, CommandResult):
            return gpus
        if not checked.has_flag("s", "e"):
            return CommandResult.ok(
                "Usage: nvidia-smi nvlink [-i <index>] -s | -e\n"
                "  -s, --status          Display link state.\n"
                "  -e, --errorcounters   Display error counters."
            )

        lines: list[str] = []
        for gpu in gpus:
            lines.append(f"GPU {gpu.id}: {gpu.name} (UUID: {gpu.uuid})")
            for link in gpu.nvlinks:
                if checked.has_flag("e"):
                    lines.append(f"\t Link {link.link_id}: Replay Errors: {link.replay_errors}")
                    lines.append(f"\t Link {link.link_id}: Recovery Errors: {link.recovery_errors}")
                    lines.append(f"\t Link {link.link_id}: CRC Errors: {link.crc_errors}")
                elif link.status == "Active":
                    lines.append(f"\t Link {link.link_id}: {link.speed:.3f} GB/s")
                else:
                    lines.append(f"\t Link {link.link_id}: <inactive>")
        return CommandResult.ok("\n".join(lines))
