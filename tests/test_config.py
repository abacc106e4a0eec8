from pathlib import Path

import pytest

from superpod_sim.cluster.factory import build_cluster
from superpod_sim.config import Settings, get_settings


def test_defaults(settings: Settings) -> None:
    assert settings.cluster_name == "dgx-cluster"
    assert settings.node_count == 8
    assert settings.system_type == "DGX-H100"
    assert settings.default_node is None
    assert settings.history_file is None
    assert settings.log_level == "WARNING"


def test_environment_overrides(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("SUPERPOD_NODE_COUNT", "2")
    monkeypatch.setenv("SUPERPOD_NODE_PREFIX", "gpu")
    monkeypatch.setenv("SUPERPOD_HISTORY_FILE", "/tmp/superpod-history")
    settings = Settings(_env_file=None)
    assert settings.node_count == 2
    assert settings.history_file == Path("/tmp/superpod-history")

    cluster = build_cluster(settings)
    assert [node.hostname for node in cluster.nodes] == ["gpu01", "gpu02"]


def test_env_file(tmp_path: Path) -> None:
    env_file = tmp_path / ".env"
    env_file.write_text("SUPERPOD_CLUSTER_NAME=lab-pod\nSUPERPOD_LOG_LEVEL=DEBUG\n", encoding="utf-8")
    settings = Settings(_env_file=env_file)
    assert settings.cluster_name == "lab-pod"
    assert settings.log_level == "DEBUG"


def test_get_settings_is_cached(monkeypatch: pytest.MonkeyPatch) -> None:
    first = get_settings()
    assert get_settings() is first

    monkeypatch.setenv("SUPERPOD_CLUSTER_NAME", "other")
    assert get_settings().cluster_name == "dgx-cluster"
    get_settings.cache_clear()
    assert get_settings().cluster_name == "other"
