"""Bright Cluster Manager shell (cmsh) with mode-based navigation."""

from __future__ import annotations

from dataclasses import dataclass, replace

from superpod_sim.cluster.models import ClusterConfig, DGXNode
from superpod_sim.core.flags import FlagSchema, FlagSpec, format_suggestion, suggest
from superpod_sim.core.formatting import json_records, pipe_table
from superpod_sim.core.parser import split_words
from superpod_sim.core.types import CommandContext, CommandResult, ParsedCommand
from superpod_sim.simulators.base import BaseSimulator

CMSH_VERSION = "10.3.0"
MODES = ("device", "category", "softwareimage", "partition")
VERBS = ("list", "use", "show", "home", "help", "exit", "quit")
BANNER = '\nCluster Management Shell (cmsh)\nType "help" for available commands.\n'
NO_SELECTION = 'Error: No object selected. Use "use <object>" first.'

HEADNODE_IP = "10.141.0.1"
HEADNODE_MAC = "FA:16:3E:C4:28:1C"
_DEVICE_WIDTHS = (19, 12, 13, 18)
_DEVICE_OVERRIDES = {"hostname": "Hostname (key)"}
_SOFTWARE_IMAGES = ("baseos-image-v10", "maintenance-image")
_PARAMETER_WIDTH = 32

HELP_TEXT = """
Cluster Management Shell (cmsh) Commands

Modes:
  device         Enter device management mode
  category       Enter category management mode
  softwareimage  Enter software image mode
  partition      Enter partition management mode

Commands (within modes):
  list           List objects in current mode
  list -d {}     JSON output
  use <object>   Select an object to work with
  show           Show details of selected object
  home           Return to the top level
  exit           Leave the current mode; at the top level, leave the shell

Examples:
  device -> list -> use dgx-node01 -> show
"""

_FLAGS = FlagSchema(
    "cmsh",
    [
        FlagSpec("command", aliases=("c",), takes_value=True),
        FlagSpec("d", takes_value=True, help="JSON output of list"),
        FlagSpec("f", takes_value=True, help="Field selection of list"),
        FlagSpec("help", aliases=("h",)),
        FlagSpec("version", aliases=("v",)),
    ],
)


@dataclass(frozen=True)
class CmshState:
    """Where the user is inside cmsh."""

    user: str = "root"
    headnode: str = "dgx-headnode"
    mode: str = ""
    selected: str | None = None

    @property
    def prompt(self) -> str:
        if not self.mode:
            return f"[{self.user}@{self.headnode}]% "
        if self.selected:
            return f"[{self.user}@{self.headnode}->{self.mode}[{self.selected}]]% "
        return f"[{self.user}@{self.headnode}->{self.mode}]% "


def category_of(node: DGXNode) -> str:
    return node.system_type.lower()


def _parameter_table(pairs: list[tuple[str, object]]) -> str:
    lines = ["", f"{'Parameter'.ljust(_PARAMETER_WIDTH)}Value", f"{'-' * 31} {'-' * 40}"]
    lines.extend(f"{key.ljust(_PARAMETER_WIDTH)}{value}" for key, value in pairs)
    return "\n".join(lines) + "\n"


def _categories(cluster: ClusterConfig) -> dict[str, int]:
    counts: dict[str, int] = {"headnode": 1}
    for node in cluster.nodes:
        counts[category_of(node)] = counts.get(category_of(node), 0) + 1
    counts.setdefault("dgx-gb200", 0)
    return counts


def _list(state: CmshState, args: list[str], cluster: ClusterConfig) -> str:
    mode = state.mode or "device"
    if mode == "device":
        if "-d" in args and "{}" in args:
            records = [
                {"hostname": node.hostname, "ip_address": node.management_ip, "category": category_of(node)}
                for node in cluster.nodes
            ]
            return json_records(records, _DEVICE_OVERRIDES)
        rows = [[cluster.headnode, "internalnet", HEADNODE_IP, HEADNODE_MAC, "headnode"]]
        rows.extend(
            [node.hostname, "internalnet", node.management_ip, node.management_mac, category_of(node)]
            for node in cluster.nodes
        )
        return pipe_table(["Name (key)", "Network", "IP", "Mac", "Category"], rows, widths=_DEVICE_WIDTHS)
    if mode == "category":
        rows = [[name, str(count)] for name, count in _categories(cluster).items()]
        return pipe_table(["Name (key)", "Nodes"], rows, widths=(14,))
    if mode == "softwareimage":
        kernel = cluster.nodes[0].kernel_version if cluster.nodes else ""
        rows = [
            [_SOFTWARE_IMAGES[0], f"/cm/images/{_SOFTWARE_IMAGES[0]}", kernel, str(len(cluster.nodes))],
            [_SOFTWARE_IMAGES[1], f"/cm/images/{_SOFTWARE_IMAGES[1]}", kernel, "0"],
        ]
        return pipe_table(["Name (key)", "Path", "Kernel version", "Nodes"], rows, widths=(21, 31, 20))
    rows = [[item.name, str(len(item.nodes))] for item in cluster.partitions]
    return pipe_table(["Name (key)", "Nodes"], rows, widths=(11,))


def _show(state: CmshState, cluster: ClusterConfig) -> CommandResult:
    if not state.selected:
        return CommandResult.error(NO_SELECTION, prompt=state.prompt)
    target = state.selected
    missing = CommandResult.error(f"Error: Object '{target}' not found.", prompt=state.prompt)

    if state.mode == "device":
        if target == cluster.headnode:
            pairs: list[tuple[str, object]] = [
                ("Hostname", cluster.headnode),
                ("Category", "headnode"),
                ("IP", HEADNODE_IP),
                ("MAC", HEADNODE_MAC),
                ("Status", "UP"),
            ]
            return CommandResult.ok(_parameter_table(pairs), prompt=state.prompt)
        node = cluster.find_node(target)
        if node is None:
            return missing
        pairs = [
            ("Hostname", node.hostname),
            ("Category", category_of(node)),
            ("IP", node.management_ip),
            ("MAC", node.management_mac),
            ("Status", "DOWN" if node.health_status == "Critical" else "UP"),
            ("GPU Count", len(node.gpus)),
            ("Slurm state", node.slurm_state),
            ("Software image", _SOFTWARE_IMAGES[0]),
            ("Kernel version", node.kernel_version),
        ]
        return CommandResult.ok(_parameter_table(pairs), prompt=state.prompt)

    if state.mode == "category":
        counts = _categories(cluster)
        if target not in counts:
            return missing
        pairs = [
            ("Name", target),
            ("Software image", _SOFTWARE_IMAGES[0]),
            ("Slurm client", "yes"),
            ("Slurm submit", "yes"),
            ("Assign to role", "default"),
            ("Nodes", counts[target]),
        ]
        return CommandResult.ok(_parameter_table(pairs), prompt=state.prompt)

    if state.mode == "softwareimage":
        if target not in _SOFTWARE_IMAGES:
            return missing
        kernel = cluster.nodes[0].kernel_version if cluster.nodes else ""
        pairs = [("Name", target), ("Path", f"/cm/images/{target}"), ("Kernel version", kernel)]
        return CommandResult.ok(_parameter_table(pairs), prompt=state.prompt)

    for partition in cluster.partitions:
        if partition.name == target:
            pairs = [
                ("Name", partition.name),
                ("Default", "yes" if partition.default else "no"),
                ("Max time", partition.max_time),
                ("Nodes", ",".join(partition.nodes)),
            ]
            return CommandResult.ok(_parameter_table(pairs), prompt=state.prompt)
    return missing


def transition(state: CmshState, line: str, cluster: ClusterConfig | None) -> tuple[CmshState, CommandResult]:
    """Apply one interactive line and return the next state and its result.

    A result without a prompt means the shell has ended.
    """
    words = split_words(line.strip())
    if not words:
        return state, CommandResult.ok(prompt=state.prompt)
    verb, args = words[0].lower(), words[1:]

    if verb in ("exit", "quit"):
        root = CmshState(user=state.user, headnode=state.headnode)
        if state.mode:
            return root, CommandResult.ok(prompt=root.prompt)
        return root, CommandResult.ok()
    if verb == "home":
        state = replace(state, mode="", selected=None)
        return state, CommandResult.ok(prompt=state.prompt)
    if verb == "help":
        return state, CommandResult.ok(HELP_TEXT, prompt=state.prompt)
    if verb in MODES:
        state = replace(state, mode=verb, selected=None)
        if args:
            return transition(state, " ".join(args), cluster)
        return state, CommandResult.ok(prompt=state.prompt)
    if verb == "use":
        if not args:
            return state, CommandResult.error("use: missing object name", prompt=state.prompt)
        state = replace(state, mode=state.mode or "device", selected=args[0])
        return state, CommandResult.ok(prompt=state.prompt)

    if cluster is None:
        return state, CommandResult.error("Unable to connect to the cluster management daemon", prompt=state.prompt)
    if verb == "list":
        return state, CommandResult.ok(_list(state, args, cluster), prompt=state.prompt)
    if verb == "show":
        return state, _show(state, cluster)

    message = f"{verb}: Command not found."
    hint = format_suggestion(suggest(verb, (*MODES, *VERBS)))
    return state, CommandResult.error(f"{message}\n{hint}" if hint else message, prompt=state.prompt)


class CmshSimulator(BaseSimulator):
    """cmsh; keeps its navigation state between interactive lines."""

    name = "cmsh"
    version = CMSH_VERSION
    description = "Cluster Management Shell"
    commands = ("cmsh",)
    subcommands = {"cmsh": MODES}

    def __init__(self) -> None:
        self.state = CmshState()

    def execute(self, cmd: ParsedCommand, ctx: CommandContext) -> CommandResult:
        checked = self.validate(_FLAGS, cmd)
        if isinstance(checked, CommandResult):
            return checked
        cmd = checked
        if cmd.has_flag("help"):
            return self.help_result(title="Cluster Management Shell (cmsh)")
        if cmd.has_flag("version"):
            return CommandResult.ok(f"cmsh version {CMSH_VERSION}")

        headnode = ctx.cluster.headnode if ctx.cluster is not None else "dgx-headnode"
        if script := cmd.flag_str("command"):
            return self._run_script([part for part in script.split(";") if part.strip()], ctx, headnode)

        words = split_words(cmd.raw)[1:] if cmd.raw else cmd.words
        if not words:
            self.state = CmshState(headnode=headnode)
            return CommandResult.ok(BANNER, prompt=self.state.prompt)
        if words[0] not in MODES:
            return CommandResult.error(f"cmsh: unknown command '{words[0]}'. Run 'cmsh --help' for usage.")
        return self._run_script([" ".join(words)], ctx, headnode)

    def execute_interactive(self, line: str, ctx: CommandContext) -> CommandResult:
        self.state, result = transition(self.state, line, ctx.cluster)
        return result

    @staticmethod
    def _run_script(lines: list[str], ctx: CommandContext, headnode: str) -> CommandResult:
        """Run lines against a throwaway state; the result never carries a prompt."""
        state = CmshState(headnode=headnode)
        outputs: list[str] = []
        exit_code = 0
        for line in lines:
            state, result = transition(state, line, ctx.cluster)
            if result.output:
                outputs.append(result.output)
            exit_code = exit_code or result.exit_code
            if result.prompt is None:
                break
        return CommandResult(output="\n".join(outputs), exit_code=exit_code)
