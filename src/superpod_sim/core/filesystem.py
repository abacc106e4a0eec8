"""Directory tree of the simulated node filesystem."""

from __future__ import annotations

import posixpath

HOME = "/root"

# Every directory of the tree and its entries; entries that are not keys are files.
SIMULATED_PATHS: dict[str, tuple[str, ...]] = {
    "/": ("bin", "boot", "cm", "dev", "etc", "home", "opt", "proc", "root", "sys", "tmp", "usr", "var"),
    "/bin": (),
    "/boot": (),
    "/cm": ("images", "shared"),
    "/cm/images": ("baseos-image-v10", "maintenance-image"),
    "/cm/images/baseos-image-v10": (),
    "/cm/images/maintenance-image": (),
    "/cm/shared": (),
    "/dev": (),
    "/etc": ("hosts", "nvidia-fabricmanager", "os-release", "slurm", "systemd"),
    "/etc/nvidia-fabricmanager": ("fabricmanager.cfg",),
    "/etc/slurm": ("cgroup.conf", "gres.conf", "slurm.conf", "topology.conf"),
    "/etc/systemd": ("system",),
    "/etc/systemd/system": (),
    "/home": ("alice", "bob"),
    "/home/alice": (),
    "/home/bob": (),
    "/opt": ("nvidia",),
    "/opt/nvidia": (),
    "/proc": ("cpuinfo", "driver", "meminfo"),
    "/proc/driver": ("nvidia",),
    "/proc/driver/nvidia": ("version",),
    "/root": (".bashrc", "jobs", "train.sbatch"),
    "/root/jobs": ("burn-in.sbatch", "nccl-test.sbatch"),
    "/sys": (),
    "/tmp": (),
    "/usr": ("bin", "lib", "share"),
    "/usr/bin": (),
    "/usr/lib": (),
    "/usr/share": (),
    "/var": ("log", "spool"),
    "/var/log": ("kern.log", "nvidia-fabricmanager.log", "slurm", "syslog"),
    "/var/log/slurm": ("slurmctld.log", "slurmd.log"),
    "/var/spool": (),
}


def resolve(path: str, cwd: str = HOME) -> str:
    """Absolute, normalized form of ``path``; ``~`` is the root home."""
    if path == "~" or path.startswith("~/"):
        path = HOME + path[1:]
    resolved = posixpath.normpath(posixpath.join(cwd, path))
    # normpath keeps a leading "//".
    return "/" + resolved.lstrip("/")


def is_dir(path: str) -> bool:
    return path in SIMULATED_PATHS


def is_file(path: str) -> bool:
    parent, name = posixpath.split(path)
    return not is_dir(path) and name in SIMULATED_PATHS.get(parent, ())


def exists(path: str) -> bool:
    return is_dir(path) or is_file(path)


def list_dir(path: str, *, hidden: bool = False) -> list[str]:
    return sorted(name for name in SIMULATED_PATHS.get(path, ()) if hidden or not name.startswith("."))
