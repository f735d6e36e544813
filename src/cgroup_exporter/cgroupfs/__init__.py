"""cgroup v2 filesystem access package.

Provides a read-only handle for groups of the unified hierarchy that returns
raw, validated counters with minimal processing. Unit conversions and
identity inference are handled by collector modules.

Exports:
    Cgroup: Handle for a single group (load, member listing, counters).
    CgroupError: Raised when a group cannot be loaded or read.
    InvalidFormatError: Raised for malformed interface files.
    types: Module containing Pydantic models for raw counters.
    DEFAULT_MOUNTPOINT: Default mountpoint of the unified hierarchy.
"""

from . import types
from .cgroup import DEFAULT_MOUNTPOINT, Cgroup, CgroupError, InvalidFormatError

__all__ = [
    "DEFAULT_MOUNTPOINT",
    "Cgroup",
    "CgroupError",
    "InvalidFormatError",
    "types",
]
