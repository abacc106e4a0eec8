from collections.abc import Callable

from superpod_sim.cluster.store import ClusterStore
from superpod_sim.core.types import CommandResult
from superpod_sim.simulators.slurm import compress_hostlist

Runner = Callable[[str], CommandResult]


def test_compress_hostlist() -> None:
    assert compress_hostlist(["dgx-node01", "dgx-node02", "dgx-node03"]) == "dgx-node[01-03]"
    assert compress_hostlist(["dgx-node01", "dgx-node03"]) == "dgx-node[01,03]"
    assert compress_hostlist(["dgx-node05"]) == "dgx-node05"


def test_sinfo_default_view(run: Runner) -> None:
    lines = run("sinfo").output.splitlines()
    assert lines[0].split() == ["PARTITION", "AVAIL", "TIMELIMIT", "NODES", "STATE", "NODELIST"]
    assert lines[1].split() == ["gpu*", "up", "infinite", "8", "idle", "dgx-node[01-08]"]
    assert lines[2].split() == ["debug", "up", "2:00:00", "2", "idle", "dgx-node[01-02]"]


def test_sinfo_node_long_view(run: Runner) -> None:
    output = run("sinfo -N -l").output
    assert "idle" in output
    assert "S:C:T" in output
    assert output.count("dgx-node01") == 2


def test_sinfo_custom_format(run: Runner) -> None:
    lines = run('sinfo -o "%n %G"').output.splitlines()
    assert lines[0] == "HOSTNAMES GRES"
    assert "dgx-node01 gpu:h100:8" in lines
    assert len(lines) == 9


def test_sinfo_groups_nodes_by_state(run: Runner, store: ClusterStore) -> None:
    store.set_slurm_state("dgx-node03", "drain", "bad gpu")
    output = run("sinfo -p gpu").output
    assert "drain dgx-node03" in output
    assert "idle dgx-node[01-02,04-08]" in output
    reasons = run("sinfo -R").output
    assert "bad gpu" in reasons


def test_squeue_shows_running_and_pending(run: Runner, store: ClusterStore) -> None:
    header = ["JOBID", "PARTITION", "NAME", "USER", "ST", "TIME", "NODES", "NODELIST(REASON)"]
    assert run("squeue").output.split() == header
    assert run("sbatch --gres=gpu:8 -p debug a.sh").output == "Submitted batch job 1001"
    run("sbatch --gres=gpu:8 -p debug b.sh")
    run("sbatch --gres=gpu:8 -p debug c.sh")
    lines = run("squeue").output.splitlines()
    assert len(lines) == 4
    assert lines[1].split()[4] == "R"
    assert lines[3].split()[4] == "PD"
    assert lines[3].endswith("(Resources)")
    assert len(run("squeue -t PD -h").output.splitlines()) == 1


def test_scontrol_show_node(run: Runner) -> None:
    output = run("scontrol show node dgx-node01").output
    assert output.startswith("NodeName=dgx-node01 ")
    assert "Gres=gpu:h100:8" in output
    assert "State=IDLE" in output
    assert run("scontrol show node dgx-node42").exit_code == 1


def test_scontrol_update_drains_node(run: Runner, store: ClusterStore) -> None:
    result = run('scontrol update nodename=dgx-node01 state=drain reason="bad gpu"')
    assert result.exit_code == 0
    node = store.get_node("dgx-node01")
    assert node.slurm_state == "drain"
    assert node.slurm_reason == "bad gpu"
    assert "Reason=bad gpu" in run("scontrol show node dgx-node01").output

    run("scontrol update nodename=dgx-node01 state=resume")
    assert store.get_node("dgx-node01").slurm_state == "idle"


def test_scontrol_drain_requires_reason(run: Runner, store: ClusterStore) -> None:
    result = run("scontrol update nodename=dgx-node02 state=drain")
    assert result.exit_code == 1
    assert "You must specify a reason" in result.output
    assert store.get_node("dgx-node02").slurm_state == "idle"


def test_sbatch_allocates_gpus(run: Runner, store: ClusterStore) -> None:
    assert run("sbatch --gres=gpu:8 train.sh").output == "Submitted batch job 1001"
    job = store.get_job(1001)
    assert job.name == "train.sh"
    assert store.get_node(job.nodes[0]).slurm_state == "alloc"
    assert "GresUsed=gpu:h100:8" in run(f"scontrol show node {job.nodes[0]}").output


def test_sbatch_rejects_bad_requests(run: Runner) -> None:
    partition = run("sbatch -p nope train.sh")
    assert partition.exit_code == 1
    assert "invalid partition specified: nope" in partition.output
    assert run("sbatch --gres=gpu:16 train.sh").exit_code == 1
    assert run("sbatch --gres=gpu:a100:1 train.sh").exit_code == 1
    assert "no script specified" in run("sbatch -N 1").output


def test_srun_runs_and_completes(run: Runner, store: ClusterStore) -> None:
    result = run("srun -N 2 hostname")
    assert result.output.splitlines() == ["dgx-node01", "dgx-node02"]
    job = store.get_job(1001)
    assert job.state == "COMPLETED"
    assert all(node.slurm_state == "idle" for node in store.cluster.nodes)


def test_srun_keeps_program_flags(run: Runner) -> None:
    output = run("srun --gres=gpu:1 nvidia-smi -L").output
    assert "ran 'nvidia-smi -L'" in output


def test_scancel_and_sacct(run: Runner, store: ClusterStore) -> None:
    run("sbatch --gres=gpu:4 train.sh")
    assert run("scancel 1001").exit_code == 0
    assert store.get_job(1001).state == "CANCELLED"
    again = run("scancel 1001")
    assert again.exit_code == 1
    assert "already completing or completed" in again.output
    assert run("scancel 4242").exit_code == 1

    lines = run("sacct").output.splitlines()
    assert lines[0].split()[:3] == ["JobID", "JobName", "Partition"]
    assert lines[2].split()[0] == "1001"
    assert "CANCELLED" in lines[2]
    assert lines[2].split()[-1] == "0:15"


def test_sacctmgr_associations_and_accounts(run: Runner) -> None:
    assoc = run("sacctmgr show assoc").output
    assert "Cluster" in assoc
    assert "gres/gpu=64" in assoc

    added = run("sacctmgr -i add account vision description=cv organization=research")
    assert added.output.splitlines()[0] == " Adding Account(s)"
    accounts = run("sacctmgr -p show account").output.splitlines()
    assert accounts[0] == "Account|Descr|Org|"
    assert "vision|cv|research|" in accounts


def test_sacctmgr_starts_from_seed_accounts(run: Runner) -> None:
    output = run("sacctmgr list account").output
    assert "vision" not in output
    for account in ("root", "compute", "research", "training"):
        assert account in output


def test_sacctmgr_unknown_command(run: Runner) -> None:
    result = run("sacctmgr shwo assoc")
    assert result.exit_code == 1
    assert "Usage: sacctmgr" in result.output
