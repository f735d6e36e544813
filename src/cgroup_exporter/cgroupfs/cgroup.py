"""Read-only access to a cgroup v2 hierarchy.

Provides a small handle for a single cgroup directory under the unified
hierarchy mountpoint: member process listing and counter retrieval. No
method writes to the cgroup filesystem.
"""

import os
from pathlib import Path

import structlog

from .types import MAX_VALUE, CgroupStats, CPUStat, MemoryEvents, MemoryStat

logger = structlog.get_logger(__name__)

DEFAULT_MOUNTPOINT = "/sys/fs/cgroup"

PROCS_FILE = "cgroup.procs"
CPUSET_FILE = "cpuset.cpus"


class CgroupError(Exception):
    """Raised when a cgroup cannot be loaded or read."""


class InvalidFormatError(CgroupError):
    """Raised when a cgroup interface file has unexpected contents."""


def _parse_uint(value: str, path: Path) -> int:
    if value == "max":
        return MAX_VALUE
    if not (value.isascii() and value.isdigit()):
        msg = f"invalid value {value!r} in {path}"
        raise InvalidFormatError(msg)
    return int(value)


class Cgroup:
    """Handle for one cgroup v2 group.

    The group is identified by its absolute path relative to the hierarchy
    mountpoint (e.g. ``/system.slice/slurmstepd.scope/job_42``).
    """

    def __init__(self, group: str, mountpoint: str | Path = DEFAULT_MOUNTPOINT):
        """Initialize the handle without touching the filesystem.

        Args:
            group: Absolute cgroup path below the mountpoint.
            mountpoint: Mountpoint of the unified hierarchy.

        Raises:
            CgroupError: If the group path is not absolute.
        """
        if not group.startswith("/"):
            msg = f"invalid group path {group!r}: must be absolute"
            raise CgroupError(msg)

        self.group = group
        self.mountpoint = Path(mountpoint)
        self.path = self.mountpoint / group.lstrip("/")

    @classmethod
    def load(cls, group: str, mountpoint: str | Path = DEFAULT_MOUNTPOINT) -> "Cgroup":
        """Load an existing cgroup.

        Args:
            group: Absolute cgroup path below the mountpoint.
            mountpoint: Mountpoint of the unified hierarchy.

        Returns:
            Handle for the group.

        Raises:
            CgroupError: If the path is invalid or the group does not exist.
        """
        cgroup = cls(group, mountpoint)
        if not cgroup.path.is_dir():
            msg = f"cgroup {group} does not exist under {cgroup.mountpoint}"
            raise CgroupError(msg)
        return cgroup

    def __repr__(self) -> str:
        return f"Cgroup({self.group!r}, mountpoint={str(self.mountpoint)!r})"

    def _read_procs_file(self, directory: Path) -> list[int]:
        procs_path = directory / PROCS_FILE
        try:
            content = procs_path.read_text()
        except OSError as err:
            msg = f"unable to read {procs_path}: {err}"
            raise CgroupError(msg) from err
        return [_parse_uint(line, procs_path) for line in content.split()]

    def procs(self, recursive: bool = False) -> list[int]:
        """List the process ids that are members of this group.

        Args:
            recursive: Also include the members of all descendant groups.

        Returns:
            Process ids in directory walk order.

        Raises:
            CgroupError: If the group's own member list cannot be read.
        """
        pids = self._read_procs_file(self.path)
        if not recursive:
            return pids

        for dirpath, dirnames, _ in os.walk(self.path):
            dirnames.sort()
            for dirname in dirnames:
                child = Path(dirpath) / dirname
                try:
                    pids.extend(self._read_procs_file(child))
                except CgroupError as err:
                    # Descendant groups come and go with job steps
                    if child.exists():
                        raise
                    logger.debug("Cgroup vanished while listing", path=str(child), err=str(err))
        return pids

    def _read_single(self, filename: str) -> int | None:
        path = self.path / filename
        try:
            content = path.read_text().strip()
        except FileNotFoundError:
            return None
        except OSError as err:
            msg = f"unable to read {path}: {err}"
            raise CgroupError(msg) from err
        return _parse_uint(content, path)

    def _read_keyed(self, filename: str) -> dict[str, int] | None:
        path = self.path / filename
        try:
            content = path.read_text()
        except FileNotFoundError:
            return None
        except OSError as err:
            msg = f"unable to read {path}: {err}"
            raise CgroupError(msg) from err

        values: dict[str, int] = {}
        for line in content.splitlines():
            parts = line.split()
            if not parts:
                continue
            if len(parts) != 2:  # noqa: PLR2004
                msg = f"invalid line {line!r} in {path}"
                raise InvalidFormatError(msg)
            values[parts[0]] = _parse_uint(parts[1], path)
        return values

    def _memory_stat(self) -> MemoryStat | None:
        usage = self._read_single("memory.current")
        if usage is None:
            return None

        data: dict[str, int] = dict(self._read_keyed("memory.stat") or {})
        data["usage"] = usage
        data["usage_limit"] = self._read_single("memory.max") or 0
        data["swap_usage"] = self._read_single("memory.swap.current") or 0
        data["swap_limit"] = self._read_single("memory.swap.max") or 0
        return MemoryStat.model_validate(data)

    def stat(self) -> CgroupStats:
        """Read the aggregated counters of this group.

        Controllers that are not enabled for the group leave their section
        as None.

        Returns:
            Validated counters.

        Raises:
            CgroupError: If an interface file exists but cannot be read.
            InvalidFormatError: If an interface file is malformed.
        """
        cpu = self._read_keyed("cpu.stat")
        events = self._read_keyed("memory.events")
        return CgroupStats(
            cpu=CPUStat.model_validate(cpu) if cpu is not None else None,
            memory=self._memory_stat(),
            memory_events=(
                MemoryEvents.model_validate(events) if events is not None else None
            ),
        )

    @property
    def cpuset_path(self) -> Path:
        """Path of the group's ``cpuset.cpus`` file (may not exist)."""
        return self.path / CPUSET_FILE
