from superpod_sim.config import Settings
from superpod_sim.core.session import SessionResult, TerminalSession


def test_prompt_and_history(session: TerminalSession) -> None:
    assert session.prompt == "root@dgx-node01:~# "
    result = session.submit("  nvidia-smi -L  ")
    assert result.line == "nvidia-smi -L"
    assert result.exit_code == 0
    assert result.tool is None
    assert session.context.history == ["nvidia-smi -L"]
    assert session.tools_used == {"nvidia-smi"}

    session.submit("history")
    assert session.submit("history").output.endswith("    3  history")


def test_unknown_command_is_not_counted(session: TerminalSession) -> None:
    result = session.submit("frobnicate --now")
    assert result.exit_code == 1
    assert result.output == "frobnicate: command not found"
    assert session.tools_used == set()


def test_empty_line_is_a_no_op(session: TerminalSession) -> None:
    result = session.submit("   ")
    assert result.output == ""
    assert result.exit_code == 0
    assert result.prompt == "root@dgx-node01:~# "
    assert session.context.history == []


def test_interactive_tool_holds_the_prompt(session: TerminalSession) -> None:
    entered = session.submit("cmsh")
    assert entered.in_tool is True
    assert entered.prompt == "[root@dgx-headnode]% "
    assert session.active_tool == "cmsh"

    # Lines go to cmsh, not the shell router.
    listing = session.submit("device")
    assert listing.prompt == "[root@dgx-headnode->device]% "
    assert "dgx-node01" in session.submit("list").output

    back = session.submit("exit")
    assert back.in_tool is True
    assert back.prompt == "[root@dgx-headnode]% "

    left = session.submit("exit")
    assert left.in_tool is False
    assert left.prompt == "root@dgx-node01:~# "
    assert session.active_tool is None
    assert session.tools_used == {"cmsh"}


def test_ssh_changes_prompt(session: TerminalSession) -> None:
    result = session.submit("ssh dgx-node03")
    assert result.prompt == "root@dgx-node03:~# "
    assert session.submit("hostname").output == "dgx-node03"


def test_path_outside_home_is_shown_in_full(session: TerminalSession) -> None:
    session.context.current_path = "/var/log"
    assert session.prompt == "root@dgx-node01:/var/log# "
    session.context.current_path = "/root/jobs"
    assert session.prompt == "root@dgx-node01:~/jobs# "


def test_listeners(session: TerminalSession) -> None:
    seen: list[SessionResult] = []
    session.add_listener(seen.append)
    session.submit("hostname")
    session.remove_listener(seen.append)
    session.submit("pwd")
    assert [item.line for item in seen] == ["hostname"]
    assert seen[0].output == "dgx-node01"


def test_reset_restores_cluster_and_leaves_tool(session: TerminalSession) -> None:
    session.store.add_xid_error("dgx-node01", 0, 79)
    session.submit("nvsm")
    assert session.active_tool == "nvsm"

    session.reset()
    assert session.active_tool is None
    assert session.prompt == "root@dgx-node01:~# "
    assert session.store.get_node("dgx-node01").gpus[0].xid_errors == []


def test_default_node_from_settings(monkeypatch) -> None:
    monkeypatch.setenv("SUPERPOD_DEFAULT_NODE", "dgx-node05")
    session = TerminalSession()
    assert session.prompt == "root@dgx-node05:~# "


REPLAY = (
    "cmsh",
    "device",
    "list",
    "use dgx-node02",
    "show",
    "exit",
    "category list",
    "quit",
    "nvsm",
    "cd systems/localhost/gpus",
    "show GPU3",
    "show health --detailed",
    "exit",
    "nvsm show health",
)


def test_interactive_replay_is_deterministic(settings: Settings) -> None:
    def transcript() -> list[tuple[str, int, str]]:
        session = TerminalSession(settings=settings)
        return [(result.output, result.exit_code, result.prompt) for result in map(session.submit, REPLAY)]

    first = transcript()
    assert first == transcript()
    assert first[7][2] == "root@dgx-node01:~# "
    assert first[-1][1] == 0
