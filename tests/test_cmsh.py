import json
from collections.abc import Callable

from superpod_sim.cluster.store import ClusterStore
from superpod_sim.core.registry import SimulatorRegistry
from superpod_sim.core.types import CommandContext, CommandResult
from superpod_sim.simulators.cmsh import CmshSimulator, CmshState, transition

Runner = Callable[[str], CommandResult]


def test_entering_cmsh_shows_root_prompt(run: Runner) -> None:
    result = run("cmsh")
    assert result.exit_code == 0
    assert "Cluster Management Shell (cmsh)" in result.output
    assert result.prompt == "[root@dgx-headnode]% "


def test_device_navigation(run: Runner, registry: SimulatorRegistry, ctx: CommandContext) -> None:
    run("cmsh")

    def send(line: str) -> CommandResult:
        return registry.execute_interactive("cmsh", line, ctx)

    assert send("device").prompt == "[root@dgx-headnode->device]% "
    listing = send("list")
    assert listing.output.splitlines()[0].startswith("Name (key)")
    assert "dgx-node08" in listing.output
    assert "dgx-headnode" in listing.output

    selected = send("use dgx-node01")
    assert selected.prompt is not None
    assert "[dgx-node01]" in selected.prompt

    shown = send("show")
    assert "Parameter" in shown.output
    assert "Value" in shown.output
    assert "dgx-node01" in shown.output
    assert "Status" in shown.output

    home = send("home")
    assert home.prompt == "[root@dgx-headnode]% "

    ended = send("exit")
    assert ended.prompt is None


def test_list_json_uses_capitalized_keys(ctx: CommandContext) -> None:
    state, _ = transition(CmshState(), "device", ctx.cluster)
    _, result = transition(state, "list -d {}", ctx.cluster)
    records = json.loads(result.output)
    assert len(records) == 8
    assert list(records[0]) == ["Hostname (key)", "IPAddress", "Category"]
    assert records[0]["Hostname (key)"] == "dgx-node01"
    assert records[0]["Category"] == "dgx-h100"


def test_use_at_root_implies_device_mode(ctx: CommandContext) -> None:
    state, result = transition(CmshState(), "use dgx-node02", ctx.cluster)
    assert state.mode == "device"
    assert result.prompt == "[root@dgx-headnode->device[dgx-node02]]% "


def test_show_without_selection_and_unknown_object(ctx: CommandContext) -> None:
    state, result = transition(CmshState(mode="device"), "show", ctx.cluster)
    assert result.exit_code == 1
    assert "No object selected" in result.output

    state, _ = transition(state, "use dgx-node99", ctx.cluster)
    _, missing = transition(state, "show", ctx.cluster)
    assert missing.exit_code == 1
    assert "dgx-node99" in missing.output


def test_critical_node_shows_down(ctx: CommandContext, store: ClusterStore) -> None:
    store.add_xid_error("dgx-node03", 0, 79)
    state, _ = transition(CmshState(), "use dgx-node03", ctx.cluster)
    _, result = transition(state, "show", ctx.cluster)
    status = next(line for line in result.output.splitlines() if line.startswith("Status"))
    assert status.split()[-1] == "DOWN"


def test_other_modes_list(ctx: CommandContext) -> None:
    for mode, expected in (("category", "dgx-h100"), ("softwareimage", "baseos-image-v10"), ("partition", "debug")):
        state, _ = transition(CmshState(), mode, ctx.cluster)
        _, result = transition(state, "list", ctx.cluster)
        assert expected in result.output
        assert "+--" not in result.output


def test_unknown_verb_suggests(ctx: CommandContext) -> None:
    _, result = transition(CmshState(), "devcie", ctx.cluster)
    assert result.exit_code == 1
    assert "Did you mean 'device'?" in result.output
    assert result.prompt == "[root@dgx-headnode]% "


def test_same_state_renders_the_same(ctx: CommandContext) -> None:
    outputs = []
    for simulator in (CmshSimulator(), CmshSimulator()):
        simulator.state = CmshState()
        simulator.execute_interactive("device", ctx)
        outputs.append(simulator.execute_interactive("list", ctx).output)
    assert outputs[0] == outputs[1]


def test_one_shot_scripts(run: Runner) -> None:
    result = run('cmsh -c "device; list"')
    assert result.exit_code == 0
    assert result.prompt is None
    assert "dgx-node01" in result.output

    inline = run("cmsh device list -d {}")
    assert inline.prompt is None
    assert json.loads(inline.output)[0]["Hostname (key)"] == "dgx-node01"

    assert run("cmsh bogus").exit_code == 1


def test_exit_inside_a_mode_returns_to_the_top_level(ctx: CommandContext) -> None:
    state, _ = transition(CmshState(), "device", ctx.cluster)
    state, _ = transition(state, "use dgx-node02", ctx.cluster)
    state, result = transition(state, "exit", ctx.cluster)
    assert state == CmshState()
    assert result.prompt == "[root@dgx-headnode]% "

    _, result = transition(state, "quit", ctx.cluster)
    assert result.prompt is None
