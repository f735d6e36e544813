"""Process information from a procfs mount.

Only the handful of per-process facts the collectors need are exposed:
cgroup v2 membership, executable path and user ids. The procfs root is a
parameter so that a non-default mount can be used.
"""

import os
from pathlib import Path
from typing import NamedTuple

DEFAULT_PROC_ROOT = "/proc"


class ProcError(Exception):
    """Raised when information about a process cannot be read."""


class UIDs(NamedTuple):
    """The four user ids reported in ``/proc/<pid>/status``."""

    real: int
    effective: int
    saved: int
    filesystem: int


def _proc_path(pid: int, proc_root: str | Path, *parts: str) -> Path:
    return Path(proc_root, str(pid), *parts)


def pid_group_path(pid: int, proc_root: str | Path = DEFAULT_PROC_ROOT) -> str:
    """Return the cgroup v2 membership path of a process.

    Reads the unified hierarchy entry (``0::<path>``) from
    ``/proc/<pid>/cgroup``.

    Args:
        pid: Process id.
        proc_root: procfs mountpoint.

    Returns:
        Absolute cgroup path of the process.

    Raises:
        ProcError: If the file cannot be read or has no unified entry.
    """
    path = _proc_path(pid, proc_root, "cgroup")
    try:
        content = path.read_text()
    except OSError as err:
        msg = f"unable to read {path}: {err}"
        raise ProcError(msg) from err

    for line in content.splitlines():
        hierarchy_id, _, rest = line.partition(":")
        _controllers, sep, group = rest.partition(":")
        if hierarchy_id == "0" and sep:
            return group

    msg = f"no cgroup v2 entry for pid {pid} in {path}"
    raise ProcError(msg)


def executable(pid: int, proc_root: str | Path = DEFAULT_PROC_ROOT) -> str:
    """Return the absolute path of a process's executable.

    Raises:
        ProcError: If the ``exe`` link cannot be read.
    """
    path = _proc_path(pid, proc_root, "exe")
    try:
        return os.readlink(path)
    except OSError as err:
        msg = f"unable to read {path}: {err}"
        raise ProcError(msg) from err


def uids(pid: int, proc_root: str | Path = DEFAULT_PROC_ROOT) -> UIDs:
    """Return the real, effective, saved and filesystem uids of a process.

    Raises:
        ProcError: If ``/proc/<pid>/status`` cannot be read or parsed.
    """
    path = _proc_path(pid, proc_root, "status")
    try:
        content = path.read_text()
    except OSError as err:
        msg = f"unable to read {path}: {err}"
        raise ProcError(msg) from err

    for line in content.splitlines():
        key, _, value = line.partition(":")
        if key != "Uid":
            continue
        fields = value.split()
        if len(fields) != len(UIDs._fields) or not all(
            field.isascii() and field.isdigit() for field in fields
        ):
            msg = f"invalid Uid line {line!r} in {path}"
            raise ProcError(msg)
        return UIDs(*(int(field) for field in fields))

    msg = f"no Uid line in {path}"
    raise ProcError(msg)
