from collections.abc import Iterator

import pytest
from loguru import logger

from superpod_sim import logging_utils
from superpod_sim.core.session import TerminalSession


@pytest.fixture
def fresh_logging(monkeypatch: pytest.MonkeyPatch) -> Iterator[None]:
    monkeypatch.setattr(logging_utils, "_CONFIGURED_PROFILE", None)
    yield
    logger.remove()


def test_resolve_level(monkeypatch: pytest.MonkeyPatch) -> None:
    assert logging_utils.resolve_level() == "WARNING"
    assert logging_utils.resolve_level("info") == "INFO"
    monkeypatch.setenv("SUPERPOD_LOG_LEVEL", "debug")
    assert logging_utils.resolve_level("info") == "DEBUG"


@pytest.mark.usefixtures("fresh_logging")
def test_records_carry_the_session_node(capsys: pytest.CaptureFixture[str], session: TerminalSession) -> None:
    logging_utils.configure_logging(level="DEBUG")
    logger.info("outside")
    session.submit("ssh dgx-node02")
    session.submit("hostname")

    err = capsys.readouterr().err
    assert "| - | " in err
    assert "| dgx-node02 | superpod_sim.core.registry:" in err


@pytest.mark.usefixtures("fresh_logging")
def test_same_profile_is_configured_once(capsys: pytest.CaptureFixture[str]) -> None:
    logging_utils.configure_logging(level="INFO")
    logging_utils.configure_logging(level="INFO")
    logger.info("profile-marker-7f3a")
    assert capsys.readouterr().err.count("profile-marker-7f3a") == 1
