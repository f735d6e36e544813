"""Shared fixtures for building fake cgroup v2 and procfs trees."""

import os
import types
from collections.abc import Callable, Iterable
from pathlib import Path

import pytest

from cgroup_exporter.collectors import slurm

SLURM_ROOT = "/system.slice/slurmstepd.scope"

PASSWD = {0: "root", 1000: "alice", 1001: "bob"}


@pytest.fixture
def cgroup_root(tmp_path: Path) -> Path:
    """Empty directory standing in for /sys/fs/cgroup."""
    root = tmp_path / "cgroup"
    root.mkdir()
    (root / "cgroup.procs").write_text("")
    return root


@pytest.fixture
def proc_root(tmp_path: Path) -> Path:
    """Empty directory standing in for /proc."""
    root = tmp_path / "proc"
    root.mkdir()
    return root


@pytest.fixture
def make_cgroup(cgroup_root: Path) -> Callable[..., Path]:
    """Factory creating a cgroup directory with interface files.

    Every directory along the path gets a ``cgroup.procs`` file, as on a
    real cgroup2 mount. ``memory`` accepts the keys usage, limit, file,
    anon, swap_usage and swap_limit; limits may be the string "max".
    """

    def _make(
        group: str,
        procs: Iterable[int] = (),
        cpu: dict[str, int] | None = None,
        memory: dict[str, int | str] | None = None,
        memory_events: dict[str, int] | None = None,
        cpuset: str | None = None,
    ) -> Path:
        path = cgroup_root
        for part in group.strip("/").split("/"):
            path = path / part
            path.mkdir(exist_ok=True)
            procs_file = path / "cgroup.procs"
            if not procs_file.exists():
                procs_file.write_text("")

        (path / "cgroup.procs").write_text("".join(f"{pid}\n" for pid in procs))

        if cpu is not None:
            (path / "cpu.stat").write_text(
                "".join(f"{key} {value}\n" for key, value in cpu.items())
                + "nr_periods 0\nnr_throttled 0\n",
            )
        if memory is not None:
            (path / "memory.current").write_text(f"{memory.get('usage', 0)}\n")
            (path / "memory.max").write_text(f"{memory.get('limit', 'max')}\n")
            (path / "memory.stat").write_text(
                f"anon {memory.get('anon', 0)}\n"
                f"file {memory.get('file', 0)}\n"
                "kernel 0\nshmem 0\nsock 0\npgfault 12\n",
            )
            (path / "memory.swap.current").write_text(f"{memory.get('swap_usage', 0)}\n")
            (path / "memory.swap.max").write_text(f"{memory.get('swap_limit', 'max')}\n")
        if memory_events is not None:
            (path / "memory.events").write_text(
                "".join(f"{key} {value}\n" for key, value in memory_events.items()),
            )
        if cpuset is not None:
            (path / "cpuset.cpus").write_text(f"{cpuset}\n")
        return path

    return _make


@pytest.fixture
def make_process(proc_root: Path) -> Callable[..., Path]:
    """Factory creating a /proc/<pid> entry with cgroup, exe and status."""

    def _make(
        pid: int,
        group: str,
        exe: str = "/usr/bin/python3",
        uid: int = 1000,
        real_uid: int | None = None,
    ) -> Path:
        path = proc_root / str(pid)
        path.mkdir()
        (path / "cgroup").write_text(f"0::{group}\n")
        os.symlink(exe, path / "exe")
        real = uid if real_uid is None else real_uid
        (path / "status").write_text(
            f"Name:\t{os.path.basename(exe)}\n"
            f"Pid:\t{pid}\n"
            f"Uid:\t{real}\t{uid}\t{uid}\t{uid}\n"
            f"Gid:\t{real}\t{uid}\t{uid}\t{uid}\n",
        )
        return path

    return _make


@pytest.fixture
def fake_passwd(monkeypatch: pytest.MonkeyPatch) -> dict[int, str]:
    """Replace the password database lookup with a fixed table."""

    def _getpwuid(uid: int) -> types.SimpleNamespace:
        if uid not in PASSWD:
            msg = f"getpwuid(): uid not found: {uid}"
            raise KeyError(msg)
        return types.SimpleNamespace(pw_name=PASSWD[uid])

    monkeypatch.setattr(slurm.pwd, "getpwuid", _getpwuid)
    return PASSWD


@pytest.fixture
def slurm_job(make_cgroup, make_process, fake_passwd) -> dict[str, str]:
    """A Slurm node running job 42 with one task and one step daemon.

    Task 0 of step 0 holds a ``sleep`` wrapper followed by two python
    workers owned by alice (uid 1000). The step's ``slurm`` group and the
    node-level ``system`` group hold slurmstepd processes owned by root.
    """
    job = f"{SLURM_ROOT}/job_42"
    task = f"{job}/step_0/user/task_0"
    step_daemon = f"{job}/step_0/slurm"
    system = f"{SLURM_ROOT}/system"

    make_cgroup(SLURM_ROOT, cpuset="0-7")
    make_cgroup(system, procs=[100], cpu={"usage_usec": 1, "user_usec": 1, "system_usec": 0})
    make_cgroup(
        job,
        cpu={"usage_usec": 7_500_000, "user_usec": 7_000_000, "system_usec": 500_000},
        memory={"usage": 4096, "limit": 8192, "file": 1024, "swap_usage": 0, "swap_limit": 0},
        memory_events={"low": 0, "high": 0, "max": 0, "oom": 2, "oom_kill": 1},
        cpuset="0-1",
    )
    make_cgroup(f"{job}/step_0")
    make_cgroup(step_daemon, procs=[200])
    make_cgroup(
        task,
        procs=[300, 301, 302],
        cpu={"usage_usec": 7_400_000, "user_usec": 7_000_000, "system_usec": 400_000},
        memory={"usage": 3072, "limit": "max", "file": 512},
        memory_events={"oom": 0},
    )

    make_process(100, system, exe="/usr/sbin/slurmstepd", uid=0)
    make_process(200, step_daemon, exe="/usr/sbin/slurmstepd", uid=0)
    make_process(300, task, exe="/usr/bin/sleep", uid=0)
    make_process(301, task, exe="/usr/bin/python3", uid=1000)
    make_process(302, task, exe="/usr/bin/python3", uid=1000)

    return {"root": SLURM_ROOT, "job": job, "task": task}
