"""Single source of truth for cluster state and its mutators."""

from __future__ import annotations

from collections.abc import Callable
from datetime import datetime, timedelta
from typing import Any

from loguru import logger

from superpod_sim.cluster.health import derive_gpu_health, derive_node_health, worst
from superpod_sim.cluster.models import (
    GPU,
    ClusterConfig,
    DGXNode,
    JobState,
    SlurmJob,
    SlurmNodeState,
    XIDError,
    XidSeverity,
)
from superpod_sim.cluster.services import lookup_service
from superpod_sim.cluster.xid import lookup_xid
from superpod_sim.errors import (
    GpuNotFoundError,
    InsufficientResourcesError,
    JobNotFoundError,
    NodeNotFoundError,
    ServiceNotFoundError,
)

_SCHEDULABLE: frozenset[str] = frozenset({"idle", "mix"})


class ClusterStore:
    """Owns the cluster model; simulators read it and call the named mutators."""

    def __init__(self, cluster: ClusterConfig | None = None, *, factory: Callable[[], ClusterConfig] | None = None):
        if factory is None:
            from superpod_sim.cluster.factory import build_cluster

            factory = build_cluster
        self._factory = factory
        self._cluster = cluster if cluster is not None else factory()

    @property
    def cluster(self) -> ClusterConfig:
        return self._cluster

    def get_node(self, node_id: str) -> DGXNode:
        node = self._cluster.find_node(node_id)
        if node is None:
            raise NodeNotFoundError(node_id)
        return node

    def get_gpu(self, node_id: str, gpu_id: int) -> GPU:
        node = self.get_node(node_id)
        for gpu in node.gpus:
            if gpu.id == gpu_id:
                return gpu
        raise GpuNotFoundError(f"{node_id}: GPU {gpu_id}")

    def get_job(self, job_id: int) -> SlurmJob:
        for job in self._cluster.jobs:
            if job.job_id == job_id:
                return job
        raise JobNotFoundError(str(job_id))

    def free_gpus(self, node_id: str) -> list[GPU]:
        return [gpu for gpu in self.get_node(node_id).gpus if gpu.allocated_job_id is None]

    def reset(self) -> None:
        self._cluster = self._factory()
        logger.info("store.reset cluster={}", self._cluster.name)

    def update_gpu(self, node_id: str, gpu_id: int, **changes: Any) -> GPU:
        """Apply ``changes`` to one GPU, keeping health consistent with its faults."""
        node = self.get_node(node_id)
        current = self.get_gpu(node_id, gpu_id)
        explicit_health = changes.pop("health_status", None)
        updated = GPU.model_validate({**current.model_dump(), **changes})
        derived = derive_gpu_health(updated)
        updated.health_status = worst([derived, explicit_health]) if explicit_health else derived
        self._replace_gpu(node, updated)
        logger.info("store.gpu.updated node={} gpu={} fields={}", node.id, gpu_id, sorted(changes))
        return updated

    def add_xid_error(
        self,
        node_id: str,
        gpu_id: int,
        code: int,
        *,
        timestamp: datetime | None = None,
        pid: int | None = None,
        description: str | None = None,
        severity: XidSeverity | None = None,
    ) -> XIDError:
        gpu = self.get_gpu(node_id, gpu_id)
        info = lookup_xid(code)
        error = XIDError(
            code=code,
            timestamp=timestamp or self._default_fault_time(gpu),
            description=description or (info.description if info else f"Unknown XID {code}"),
            severity=severity or (info.severity if info else "Warning"),
            pid=pid,
        )
        self.update_gpu(node_id, gpu_id, xid_errors=[*gpu.xid_errors, error])
        logger.info("store.xid.added node={} gpu={} code={}", node_id, gpu_id, code)
        return error

    def set_slurm_state(self, node_id: str, state: SlurmNodeState, reason: str | None = None) -> DGXNode:
        node = self.get_node(node_id)
        updated = node.model_copy(update={"slurm_state": state, "slurm_reason": reason})
        self._replace_node(updated)
        logger.info("store.slurm.state node={} state={} reason={}", node.id, state, reason)
        return updated

    def set_service_state(
        self, node_id: str, service: str, *, active: bool | None = None, enabled: bool | None = None
    ) -> DGXNode:
        """Start, stop, enable or disable one systemd unit on a node."""
        node = self.get_node(node_id)
        info = lookup_service(service)
        if info is None:
            raise ServiceNotFoundError(f"{node_id}: {service}")
        update: dict[str, Any] = {}
        if active is not None:
            update["service_active"] = {**node.service_active, info.name: active}
        if enabled is not None:
            update["service_enabled"] = {**node.service_enabled, info.name: enabled}
        updated = node.model_copy(update=update)
        self._replace_node(updated)
        logger.info("store.service.state node={} service={} active={} enabled={}", node.id, info.name, active, enabled)
        return updated

    def allocate_gpus_for_job(self, node_id: str, job_id: int, count: int) -> list[int]:
        """Reserve ``count`` free GPUs on a node and return their indices."""
        free = self.free_gpus(node_id)
        if count > len(free):
            raise InsufficientResourcesError(f"{node_id}: requested {count} GPUs, {len(free)} free")
        taken = [gpu.id for gpu in free[:count]]
        for gpu_id in taken:
            self.update_gpu(node_id, gpu_id, allocated_job_id=job_id)
        self._sync_allocation_state(node_id)
        logger.info("store.gpu.allocated node={} job={} gpus={}", node_id, job_id, taken)
        return taken

    def deallocate_gpus_for_job(self, job_id: int) -> int:
        released = 0
        for node in list(self._cluster.nodes):
            held = [gpu.id for gpu in node.gpus if gpu.allocated_job_id == job_id]
            for gpu_id in held:
                self.update_gpu(node.id, gpu_id, allocated_job_id=None)
            if held:
                self._sync_allocation_state(node.id)
            released += len(held)
        logger.info("store.gpu.released job={} count={}", job_id, released)
        return released

    def submit_job(
        self,
        *,
        name: str,
        gpus_per_node: int,
        node_count: int = 1,
        partition: str = "gpu",
        user: str = "root",
        script: str = "",
        submit_time: datetime | None = None,
    ) -> SlurmJob:
        """Create a job, allocating GPUs immediately when enough nodes are free."""
        job_id = self._cluster.next_job_id
        members = self.partition_nodes(partition)
        candidates = [
            node.id
            for node in members
            if node.slurm_state in _SCHEDULABLE and len(self.free_gpus(node.id)) >= max(gpus_per_node, 1)
        ]
        chosen = candidates[:node_count] if len(candidates) >= node_count else []
        job = SlurmJob(
            job_id=job_id,
            name=name,
            user=user,
            partition=partition,
            state="RUNNING" if chosen else "PENDING",
            nodes=chosen,
            gpus_per_node=gpus_per_node,
            submit_time=submit_time or self._cluster.boot_time + timedelta(hours=3, minutes=len(self._cluster.jobs)),
            script=script,
        )
        self._cluster = self._cluster.model_copy(
            update={"jobs": [*self._cluster.jobs, job], "next_job_id": job_id + 1}
        )
        for node_id in chosen:
            if gpus_per_node:
                self.allocate_gpus_for_job(node_id, job_id, gpus_per_node)
            else:
                self.set_slurm_state(node_id, "alloc")
        logger.info("store.job.submitted job={} state={} nodes={}", job_id, job.state, chosen)
        return job

    def cancel_job(self, job_id: int) -> SlurmJob:
        return self.end_job(job_id, "CANCELLED")

    def end_job(self, job_id: int, state: JobState = "COMPLETED") -> SlurmJob:
        """Move a job to a terminal state and release its GPUs."""
        job = self.get_job(job_id)
        ended = job.model_copy(update={"state": state})
        self._cluster = self._cluster.model_copy(
            update={"jobs": [ended if item.job_id == job_id else item for item in self._cluster.jobs]}
        )
        self.deallocate_gpus_for_job(job_id)
        for node_id in job.nodes:
            self._sync_allocation_state(node_id)
        logger.info("store.job.ended job={} state={}", job_id, state)
        return ended

    def _default_fault_time(self, gpu: GPU) -> datetime:
        return self._cluster.boot_time + timedelta(hours=2, minutes=7 * len(gpu.xid_errors) + gpu.id)

    def partition_nodes(self, partition: str) -> list[DGXNode]:
        for item in self._cluster.partitions:
            if item.name == partition:
                return [node for node in self._cluster.nodes if node.id in item.nodes]
        return []

    def _sync_allocation_state(self, node_id: str) -> None:
        node = self.get_node(node_id)
        if node.slurm_state in ("drain", "down"):
            return
        used = sum(1 for gpu in node.gpus if gpu.allocated_job_id is not None)
        if used == 0:
            state: SlurmNodeState = "idle"
        elif used == len(node.gpus):
            state = "alloc"
        else:
            state = "mix"
        if state != node.slurm_state:
            self.set_slurm_state(node_id, state)

    def _replace_gpu(self, node: DGXNode, gpu: GPU) -> None:
        gpus = [gpu if item.id == gpu.id else item for item in node.gpus]
        updated = node.model_copy(update={"gpus": gpus})
        updated.health_status = derive_node_health(updated)
        self._replace_node(updated)

    def _replace_node(self, node: DGXNode) -> None:
        nodes = [node if item.id == node.id else item for item in self._cluster.nodes]
        self._cluster = self._cluster.model_copy(update={"nodes": nodes})
