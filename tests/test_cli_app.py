import importlib

import pytest
from typer.testing import CliRunner

cli_app_module = importlib.import_module("superpod_sim.cli.app")


@pytest.fixture(autouse=True)
def _quiet_logging(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(cli_app_module, "configure_logging", lambda **_kwargs: None)


def test_run_prints_output_and_exit_code() -> None:
    runner = CliRunner()
    result = runner.invoke(cli_app_module.app, ["run", "nvidia-smi -L"])
    assert result.exit_code == 0
    assert result.output.startswith("GPU 0: NVIDIA H100 80GB HBM3")

    missing = runner.invoke(cli_app_module.app, ["run", "foo"])
    assert missing.exit_code == 1
    assert "foo: command not found" in missing.output


def test_run_accepts_separate_words() -> None:
    runner = CliRunner()
    result = runner.invoke(cli_app_module.app, ["run", "sinfo", "-p", "debug"])
    assert result.exit_code == 0
    assert "dgx-node[01-02]" in result.output


def test_run_on_other_node() -> None:
    runner = CliRunner()
    result = runner.invoke(cli_app_module.app, ["run", "--node", "dgx-node02", "hostname"])
    assert result.exit_code == 0
    assert result.output.strip() == "dgx-node02"

    unknown = runner.invoke(cli_app_module.app, ["run", "--node", "dgx-node99", "hostname"])
    assert unknown.exit_code == 1


def test_complete_command() -> None:
    runner = CliRunner()
    result = runner.invoke(cli_app_module.app, ["complete", "nvidia-s"])
    assert result.exit_code == 0
    assert result.output.splitlines() == ["nvidia-smi"]


def test_shell_invokes_repl(monkeypatch: pytest.MonkeyPatch) -> None:
    called: dict[str, object] = {}

    def _fake_run_repl(session, renderer, *, history_file=None) -> int:
        _ = renderer
        called["node"] = session.context.current_node
        called["history_file"] = history_file
        return 0

    monkeypatch.setattr(cli_app_module, "run_repl", _fake_run_repl)
    runner = CliRunner()
    result = runner.invoke(cli_app_module.app, ["shell", "--node", "dgx-node03"])
    assert result.exit_code == 0
    assert called == {"node": "dgx-node03", "history_file": None}


def test_no_subcommand_starts_shell(monkeypatch: pytest.MonkeyPatch) -> None:
    called = {"run": False}

    def _fake_run_repl(session, renderer, *, history_file=None) -> int:
        _ = (session, renderer, history_file)
        called["run"] = True
        return 0

    monkeypatch.setattr(cli_app_module, "run_repl", _fake_run_repl)
    result = CliRunner().invoke(cli_app_module.app, [])
    assert result.exit_code == 0
    assert called["run"] is True
