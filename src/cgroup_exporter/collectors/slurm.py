"""Slurm cgroup naming conventions.

Slurm places job processes in cgroups named
``.../job_<jobid>/step_<step>/user/task_<task>``. This module derives the
accounting groups a process belongs to from its cgroup path, extracts the
job/step/task identity from a group name, and determines the user owning a
job from its member processes.
"""

import posixpath
import pwd
import re
from collections.abc import Iterable
from pathlib import Path
from typing import NamedTuple

import structlog

from .. import procfs

logger = structlog.get_logger(__name__)

JOB_PATTERN = re.compile(r"/job_([0-9]+)(/step_([^/]+)(/user/task_([0-9]+|special))?)?$")

# Executables Slurm runs inside job cgroups that do not represent the job owner
WRAPPER_EXECUTABLES = ("sleep", "slurmstepd")


class JobIdentity(NamedTuple):
    """Job, step and task ids parsed from a group name.

    Step and task are empty strings for groups above that level. Task may be
    the literal ``special``.
    """

    job_id: str
    step: str = ""
    task: str = ""


def is_job_root(path: str) -> bool:
    """Whether a configured root path holds Slurm job cgroups."""
    return "slurm" in path


def match_job(name: str) -> JobIdentity | None:
    """Parse the job identity from a group name.

    Examples:
        "/slurm/job_42" -> JobIdentity("42", "", "")
        "/slurm/job_42/step_0/user/task_3" -> JobIdentity("42", "0", "3")
        "/user.slice/user-1000.slice" -> None

    Args:
        name: Group name (cgroup path).

    Returns:
        The identity, or None if the name is not job-shaped.
    """
    match = JOB_PATTERN.search(name)
    if match is None:
        return None
    return JobIdentity(
        job_id=match.group(1),
        step=match.group(3) or "",
        task=match.group(5) or "",
    )


def get_names(pid_path: str, root: str) -> list[str]:
    """Derive the accounting groups for a process's cgroup path.

    Under a job root, a path below a ``job_<id>`` directory is accounted both
    at its full path and at the job level, so that job totals are available
    next to the per-step and per-task groups. Any other path maps to itself.

    Args:
        pid_path: cgroup membership path of the process.
        root: Configured root path the process was found under.

    Returns:
        One or two group names, without duplicates.
    """
    names = [pid_path]

    if is_job_root(root):
        dirs = pid_path.split("/")
        for index, directory in enumerate(dirs):
            if directory.startswith("job_"):
                job_name = "/".join(dirs[: index + 1])
                if job_name != pid_path:
                    names.append(job_name)
                break

    logger.debug("Get names from path", names=names, pid_path=pid_path, root=root)
    return names


def is_excluded(name: str, root: str) -> bool:
    """Whether a group under a job root is Slurm bookkeeping.

    The ``system`` group holds slurmstepd infrastructure and groups ending
    in ``/slurm`` hold the step daemons; neither contains user workload.
    """
    if not is_job_root(root):
        return False
    if posixpath.basename(name) == "system":
        logger.debug("Skip system cgroup", name=name)
        return True
    if name.endswith("/slurm"):
        logger.debug("Skip slurm cgroup", name=name)
        return True
    return False


def resolve_job_owner(
    pids: Iterable[int],
    proc_root: str | Path = procfs.DEFAULT_PROC_ROOT,
) -> tuple[str, str] | None:
    """Determine the user running a job.

    Picks the first process that is not a Slurm wrapper (see
    ``WRAPPER_EXECUTABLES``) as representative of the job. If every process
    is a wrapper, the last one examined is used. The effective uid of the
    representative is resolved to a username via the password database.

    Args:
        pids: Member process ids of the job, in discovery order.
        proc_root: procfs mountpoint.

    Returns:
        Tuple of (uid, username) as strings, or None if any step fails.
    """
    candidate: int | None = None
    for pid in pids:
        candidate = pid
        try:
            exe = procfs.executable(pid, proc_root)
        except procfs.ProcError as err:
            logger.error("Unable to read process executable", pid=pid, err=str(err))
            return None
        if posixpath.basename(exe) not in WRAPPER_EXECUTABLES:
            break

    if candidate is None:
        logger.warning("No processes to resolve job owner from")
        return None

    try:
        uid = str(procfs.uids(candidate, proc_root).effective)
    except procfs.ProcError as err:
        logger.error("Unable to get proc status for PID", pid=candidate, err=str(err))
        return None

    try:
        username = pwd.getpwuid(int(uid)).pw_name
    except KeyError:
        logger.error("Error looking up slurm uid", uid=uid)
        return None

    return uid, username
