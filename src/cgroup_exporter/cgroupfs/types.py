"""Raw counter types for the cgroup v2 filesystem.

Pydantic models representing the counters read from cgroup interface files
with minimal processing. Field names follow the kernel's keys where a keyed
file is the source; single-value files are mapped onto descriptive names.
"""

from pydantic import BaseModel

# Value used for "max" in limit files (memory.max, memory.swap.max)
MAX_VALUE = 2**64 - 1


class CPUStat(BaseModel):
    """Counters from ``cpu.stat``. All values are in microseconds."""

    usage_usec: int = 0
    user_usec: int = 0
    system_usec: int = 0


class MemoryStat(BaseModel):
    """Memory counters for a cgroup.

    ``usage``, ``usage_limit``, ``swap_usage`` and ``swap_limit`` come from
    ``memory.current``, ``memory.max``, ``memory.swap.current`` and
    ``memory.swap.max``; ``file`` is the page cache from ``memory.stat``.
    All values are in bytes.
    """

    usage: int = 0
    usage_limit: int = 0
    swap_usage: int = 0
    swap_limit: int = 0

    # memory.stat
    file: int = 0


class MemoryEvents(BaseModel):
    """Event counters from ``memory.events``. Only the OOM count is kept."""

    oom: int = 0


class CgroupStats(BaseModel):
    """Aggregated counters for a cgroup.

    A section is None when the corresponding controller files are not
    present in the group directory.
    """

    cpu: CPUStat | None = None
    memory: MemoryStat | None = None
    memory_events: MemoryEvents | None = None
