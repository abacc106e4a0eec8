"""ipmitool against the node BMC."""

from __future__ import annotations

from datetime import datetime, timedelta

from superpod_sim.cluster.health import TEMP_CRITICAL_C, TEMP_WARNING_C, temperature_status
from superpod_sim.cluster.models import BMCSensor, ClusterConfig, DGXNode
from superpod_sim.cluster.xid import xid_description
from superpod_sim.core.flags import FlagSchema, FlagSpec, format_suggestion, suggest
from superpod_sim.core.formatting import key_value_block
from superpod_sim.core.types import CommandContext, CommandResult, ParsedCommand
from superpod_sim.simulators.base import BaseSimulator

IPMITOOL_VERSION = "1.8.19"

_FLAGS = FlagSchema(
    "ipmitool",
    [
        FlagSpec("I", takes_value=True),
        FlagSpec("H", takes_value=True),
        FlagSpec("U", takes_value=True),
        FlagSpec("P", takes_value=True),
        FlagSpec("E"),
        FlagSpec("C", takes_value=True),
        FlagSpec("V", aliases=("version",)),
        FlagSpec("h", aliases=("help",)),
        FlagSpec("v"),
    ],
)

_SENSOR_TYPES = {
    "temperature": "degrees C",
    "fan": "RPM",
    "power supply": "Watts",
    "power": "Watts",
}
_COMMANDS = ("sdr", "sensor", "chassis", "power", "mc", "sel", "lan", "fru")


def _sensors(node: DGXNode) -> list[BMCSensor]:
    """Static BMC sensors followed by the live GPU temperatures."""
    gpu_sensors = [
        BMCSensor(
            name=f"GPU{gpu.id} Temp",
            reading=float(gpu.temperature),
            unit="degrees C",
            upper_non_critical=TEMP_WARNING_C,
            upper_critical=TEMP_CRITICAL_C,
        )
        for gpu in node.gpus
    ]
    return [*node.bmc.sensors, *gpu_sensors]


def _sensor_status(sensor: BMCSensor) -> str:
    if sensor.reading is None:
        return "ns"
    if sensor.name.startswith("GPU") and sensor.unit == "degrees C":
        # GPU sensors share the driver's thresholds.
        return {"OK": "ok", "Warning": "nc", "Critical": "cr"}[temperature_status(sensor.reading)]
    if sensor.upper_critical is not None and sensor.reading >= sensor.upper_critical:
        return "cr"
    if sensor.lower_critical is not None and sensor.reading <= sensor.lower_critical:
        return "cr"
    if sensor.upper_non_critical is not None and sensor.reading >= sensor.upper_non_critical:
        return "nc"
    return "ok"


def _reading(sensor: BMCSensor) -> str:
    if sensor.reading is None:
        return "no reading"
    value = f"{sensor.reading:g}"
    return f"{value} {sensor.unit}"


def _threshold(value: float | None) -> str:
    return "na" if value is None else f"{value:.3f}"


class IpmitoolSimulator(BaseSimulator):
    """Sensor, event log and chassis views served by the BMC."""

    name = "ipmitool"
    version = IPMITOOL_VERSION
    description = "IPMI utility for BMC management"
    commands = ("ipmitool",)
    subcommands = {"ipmitool": _COMMANDS}

    def execute(self, cmd: ParsedCommand, ctx: CommandContext) -> CommandResult:
        checked = self.validate(_FLAGS, cmd)
        if isinstance(checked, CommandResult):
            return checked
        cmd = checked
        if cmd.has_flag("V"):
            return CommandResult.ok(f"ipmitool version {IPMITOOL_VERSION}")
        if cmd.has_flag("h"):
            return self.help_result()

        words = cmd.words
        if not words:
            return CommandResult.error("No command provided!\n" + self.help_result().output)

        node = self._target_node(cmd, ctx)
        if isinstance(node, CommandResult):
            return node

        command, args = words[0], words[1:]
        if command == "sdr":
            return self._sdr(node, args)
        if command == "sensor":
            return self._sensor(node, args)
        if command == "chassis":
            return self._chassis(node, args)
        if command == "power":
            return self._chassis(node, ["power", *args])
        if command == "mc":
            return self._mc(node, args)
        if command == "sel":
            return self._sel(node, args, ctx.cluster)
        if command == "lan":
            return self._lan(node, args)
        if command == "fru":
            return self._fru(node)

        hint = format_suggestion(suggest(command, _COMMANDS))
        message = f"Invalid command: {command}"
        return CommandResult.error(f"{message}\n{hint}" if hint else message)

    def _target_node(self, cmd: ParsedCommand, ctx: CommandContext) -> DGXNode | CommandResult:
        host = cmd.flag_str("H")
        cluster = ctx.cluster
        if host is None:
            node = self.current_node(ctx)
            if node is None:
                return CommandResult.error(
                    "Could not open device at /dev/ipmi0 or /dev/ipmi/0 or /dev/ipmidev/0: No such file or directory"
                )
            return node
        if cluster is not None:
            for node in cluster.nodes:
                if host in (node.bmc.ip_address, node.hostname, f"{node.hostname}-bmc"):
                    return node
        return CommandResult.error(f"Error: Unable to establish IPMI v2 / RMCP+ session to {host}")

    @staticmethod
    def _sdr(node: DGXNode, args: list[str]) -> CommandResult:
        sensors = _sensors(node)
        if args and args[0] == "type":
            wanted = " ".join(args[1:]).lower()
            unit = _SENSOR_TYPES.get(wanted)
            if unit is None:
                known = ", ".join(name.title() for name in _SENSOR_TYPES)
                return CommandResult.error(f"Invalid SDR type '{' '.join(args[1:])}'. Sensor types: {known}")
            sensors = [sensor for sensor in sensors if sensor.unit == unit]
        elif args and args[0] not in ("list", "elist"):
            return CommandResult.error(f"Invalid SDR command: {args[0]}")

        width = max(len(sensor.name) for sensor in sensors) if sensors else 16
        lines = [
            f"{sensor.name.ljust(width)} | {_reading(sensor).ljust(17)} | {_sensor_status(sensor)}"
            for sensor in sensors
        ]
        return CommandResult.ok("\n".join(lines))

    @staticmethod
    def _sensor(node: DGXNode, args: list[str]) -> CommandResult:
        if args and args[0] != "list":
            return CommandResult.error(f"Invalid sensor command: {args[0]}")
        sensors = _sensors(node)
        width = max(len(sensor.name) for sensor in sensors)
        lines = []
        for sensor in sensors:
            reading = "na" if sensor.reading is None else f"{sensor.reading:.3f}"
            cells = [
                sensor.name.ljust(width),
                reading.ljust(10),
                sensor.unit.ljust(10),
                _sensor_status(sensor).ljust(6),
                "na".ljust(9),
                _threshold(sensor.lower_critical).ljust(9),
                "na".ljust(9),
                _threshold(sensor.upper_non_critical).ljust(9),
                _threshold(sensor.upper_critical).ljust(9),
                "na",
            ]
            lines.append(" | ".join(cells))
        return CommandResult.ok("\n".join(lines))

    @staticmethod
    def _chassis(node: DGXNode, args: list[str]) -> CommandResult:
        power = node.bmc.power_state
        if args[:2] == ["power", "status"] or args == ["power"]:
            return CommandResult.ok(f"Chassis Power is {power}")
        if args and args[0] == "power":
            return CommandResult.error(
                f"Chassis power control '{' '.join(args[1:])}' is not permitted from this console"
            )
        if args and args[0] != "status":
            return CommandResult.error(f"Invalid chassis command: {args[0]}")
        fan_fault = any(
            sensor.unit == "RPM" and _sensor_status(sensor) == "cr" for sensor in node.bmc.sensors
        )
        pairs = [
            ("System Power", power),
            ("Power Overload", "false"),
            ("Power Interlock", "inactive"),
            ("Main Power Fault", "false"),
            ("Power Control Fault", "false"),
            ("Power Restore Policy", "always-on"),
            ("Last Power Event", ""),
            ("Chassis Intrusion", "inactive"),
            ("Front-Panel Lockout", "inactive"),
            ("Drive Fault", "false"),
            ("Cooling/Fan Fault", str(fan_fault).lower()),
        ]
        return CommandResult.ok(key_value_block(pairs))

    @staticmethod
    def _mc(node: DGXNode, args: list[str]) -> CommandResult:
        if args[:1] != ["info"]:
            return CommandResult.error("Usage: ipmitool mc info")
        pairs = [
            ("Device ID", "32"),
            ("Device Revision", "1"),
            ("Firmware Revision", node.bmc.firmware_version),
            ("IPMI Version", "2.0"),
            ("Manufacturer ID", "5703"),
            ("Manufacturer Name", node.bmc.manufacturer),
            ("Product ID", "4660 (0x1234)"),
            ("Product Name", node.system_type),
            ("Device Available", "yes"),
            ("Provides Device SDRs", "yes"),
        ]
        return CommandResult.ok(key_value_block(pairs))

    @staticmethod
    def _sel_entries(node: DGXNode, cluster: ClusterConfig | None) -> list[tuple[datetime, str, str]]:
        """(time, sensor, event) tuples, oldest first."""
        boot = cluster.boot_time if cluster is not None else datetime(2024, 6, 15, 8, 0, 0)
        entries: list[tuple[datetime, str, str]] = [(boot, "Event Logging Disabled #0x07", "Log area reset/cleared")]
        for gpu in node.gpus:
            status = temperature_status(gpu.temperature)
            if status != "OK":
                event = "Upper Critical going high" if status == "Critical" else "Upper Non-critical going high"
                entries.append(
                    (
                        boot + timedelta(hours=1, minutes=gpu.id),
                        f"Temperature GPU{gpu.id} Temp",
                        f"{event} ({gpu.temperature} C)",
                    )
                )
            if gpu.ecc_errors.worst_double_bit:
                entries.append(
                    (boot + timedelta(hours=1, minutes=30 + gpu.id), f"Memory GPU{gpu.id}", "Uncorrectable ECC")
                )
            for error in gpu.xid_errors:
                entries.append((error.timestamp, f"OEM GPU{gpu.id}", f"XID {error.code} {xid_description(error)}"))
        return sorted(entries, key=lambda item: item[0])

    def _sel(self, node: DGXNode, args: list[str], cluster: ClusterConfig | None) -> CommandResult:
        entries = self._sel_entries(node, cluster)
        action = args[0] if args else "list"
        if action == "info":
            pairs = [
                ("Version", "1.5 (v1.5, v2 compliant)"),
                ("Entries", str(len(entries))),
                ("Free Space", f"{(1024 - len(entries)) * 16} bytes"),
                ("Percent Used", f"{len(entries) * 100 // 1024}%"),
                ("Overflow", "false"),
            ]
            return CommandResult.ok("SEL Information\n" + key_value_block(pairs))
        if action not in ("list", "elist"):
            return CommandResult.error(f"Invalid SEL command: {action}")
        lines = []
        for index, (stamp, sensor, event) in enumerate(entries, start=1):
            label = sensor if action == "elist" else sensor.split(" ", 1)[0]
            lines.append(f"{index:>4x} | {stamp:%m/%d/%Y | %H:%M:%S} | {label} | {event} | Asserted")
        return CommandResult.ok("\n".join(lines) if lines else "SEL has no entries")

    @staticmethod
    def _lan(node: DGXNode, args: list[str]) -> CommandResult:
        if args[:1] != ["print"]:
            return CommandResult.error("Usage: ipmitool lan print [channel]")
        gateway = node.bmc.ip_address.rsplit(".", 1)[0] + ".1"
        pairs = [
            ("Set in Progress", "Set Complete"),
            ("IP Address Source", "Static Address"),
            ("IP Address", node.bmc.ip_address),
            ("Subnet Mask", "255.255.0.0"),
            ("MAC Address", node.bmc.mac_address.lower()),
            ("Default Gateway IP", gateway),
            ("802.1q VLAN ID", "Disabled"),
            ("Cipher Suite Priv Max", "aaaaXXaaaXXaaXX"),
        ]
        return CommandResult.ok(key_value_block(pairs))

    @staticmethod
    def _fru(node: DGXNode) -> CommandResult:
        product = node.system_type.replace("-", " ")
        pairs = [
            ("FRU Device Description", "Builtin FRU Device (ID 0)"),
            (" Chassis Type", "Rack Mount Chassis"),
            (" Board Mfg", "NVIDIA"),
            (" Board Product", product),
            (" Board Serial", f"1654922{node.hostname[-2:]}0001"),
            (" Product Manufacturer", "NVIDIA"),
            (" Product Name", product),
            (" Product Serial", f"1654922{node.hostname[-2:]}0000"),
        ]
        return CommandResult.ok(key_value_block(pairs))
