import pytest

from superpod_sim.cluster.factory import build_cluster
from superpod_sim.cluster.store import ClusterStore
from superpod_sim.config import Settings
from superpod_sim.errors import (
    ConfigurationError,
    GpuNotFoundError,
    InsufficientResourcesError,
    JobNotFoundError,
    NodeNotFoundError,
    ServiceNotFoundError,
)


def test_default_cluster_shape(store: ClusterStore) -> None:
    cluster = store.cluster
    assert [node.hostname for node in cluster.nodes][:2] == ["dgx-node01", "dgx-node02"]
    assert len(cluster.nodes) == 8
    node = store.get_node("dgx-node01")
    assert len(node.gpus) == 8
    assert len(node.hcas) == 8
    assert node.gpus[0].pci_address == "0000:18:00.0"
    assert {partition.name for partition in cluster.partitions} == {"gpu", "debug"}
    assert cluster.headnode == "dgx-headnode"


def test_unknown_node_and_gpu(store: ClusterStore) -> None:
    with pytest.raises(NodeNotFoundError):
        store.get_node("dgx-node99")
    with pytest.raises(GpuNotFoundError):
        store.get_gpu("dgx-node01", 8)
    with pytest.raises(JobNotFoundError):
        store.get_job(42)


def test_hot_gpu_turns_gpu_and_node_critical(store: ClusterStore) -> None:
    gpu = store.update_gpu("dgx-node01", 0, temperature=95)
    assert gpu.health_status == "Critical"
    assert store.get_node("dgx-node01").health_status == "Critical"
    assert store.get_node("dgx-node02").health_status == "OK"


def test_explicit_health_cannot_hide_a_fault(store: ClusterStore) -> None:
    gpu = store.update_gpu("dgx-node01", 1, temperature=95, health_status="OK")
    assert gpu.health_status == "Critical"

    marked = store.update_gpu("dgx-node01", 2, health_status="Warning")
    assert marked.health_status == "Warning"


def test_double_bit_ecc_is_critical(store: ClusterStore) -> None:
    gpu = store.update_gpu("dgx-node01", 2, ecc_errors={"double_bit": 1})
    assert gpu.ecc_errors.double_bit == 1
    assert gpu.health_status == "Critical"


def test_xid_79_uses_catalogue_description(store: ClusterStore) -> None:
    error = store.add_xid_error("dgx-node03", 5, 79)
    assert error.description == "GPU has fallen off the bus"
    assert error.severity == "Critical"
    gpu = store.get_gpu("dgx-node03", 5)
    assert [item.code for item in gpu.xid_errors] == [79]
    assert gpu.health_status == "Critical"


def test_full_node_job_allocates_then_releases(store: ClusterStore) -> None:
    job = store.submit_job(name="train", gpus_per_node=8)
    assert job.job_id == 1001
    assert job.state == "RUNNING"
    node_id = job.nodes[0]
    assert store.get_node(node_id).slurm_state == "alloc"
    assert store.free_gpus(node_id) == []

    cancelled = store.cancel_job(job.job_id)
    assert cancelled.state == "CANCELLED"
    assert store.get_node(node_id).slurm_state == "idle"
    assert len(store.free_gpus(node_id)) == 8


def test_partial_job_leaves_node_mixed(store: ClusterStore) -> None:
    job = store.submit_job(name="small", gpus_per_node=2)
    assert store.get_node(job.nodes[0]).slurm_state == "mix"
    assert store.cluster.next_job_id == 1002


def test_over_allocation_is_rejected(store: ClusterStore) -> None:
    with pytest.raises(InsufficientResourcesError):
        store.allocate_gpus_for_job("dgx-node01", 7, 9)


def test_job_pends_when_partition_is_full(store: ClusterStore) -> None:
    first = store.submit_job(name="a", gpus_per_node=8, partition="debug")
    second = store.submit_job(name="b", gpus_per_node=8, partition="debug")
    third = store.submit_job(name="c", gpus_per_node=8, partition="debug")
    assert first.state == second.state == "RUNNING"
    assert third.state == "PENDING"
    assert third.nodes == []


def test_drained_node_is_not_scheduled(store: ClusterStore) -> None:
    store.set_slurm_state("dgx-node01", "drain", "bad gpu")
    job = store.submit_job(name="a", gpus_per_node=8)
    assert "dgx-node01" not in job.nodes
    assert store.get_node("dgx-node01").slurm_reason == "bad gpu"


def test_reset_restores_a_healthy_cluster(store: ClusterStore) -> None:
    store.add_xid_error("dgx-node01", 0, 79)
    store.submit_job(name="a", gpus_per_node=4)
    store.reset()
    assert store.get_gpu("dgx-node01", 0).xid_errors == []
    assert store.cluster.jobs == []
    assert all(node.health_status == "OK" for node in store.cluster.nodes)


def test_invalid_settings_raise_configuration_error() -> None:
    with pytest.raises(ConfigurationError):
        build_cluster(Settings(_env_file=None, system_type="DGX-Z9"))
    with pytest.raises(ConfigurationError):
        build_cluster(Settings(_env_file=None, node_count=0))


def test_alternate_system_type() -> None:
    cluster = build_cluster(Settings(_env_file=None, system_type="DGX-A100", node_count=2))
    assert len(cluster.nodes) == 2
    assert "A100" in cluster.nodes[0].gpus[0].name


def test_service_state_overrides_and_reset(store: ClusterStore) -> None:
    store.set_service_state("dgx-node01", "nvidia-fabricmanager.service", active=False)
    store.set_service_state("dgx-node01", "opensm", enabled=True)
    node = store.get_node("dgx-node01")
    assert node.service_active == {"nvidia-fabricmanager": False}
    assert node.service_enabled == {"opensm": True}
    assert store.get_node("dgx-node02").service_active == {}

    with pytest.raises(ServiceNotFoundError):
        store.set_service_state("dgx-node01", "frobd", active=True)

    store.reset()
    assert store.get_node("dgx-node01").service_active == {}
