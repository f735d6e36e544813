"""Parsing of cgroup cpuset range lists.

The kernel reports the CPUs assigned to a cgroup in ``cpuset.cpus`` using a
compact list format such as ``0-3,7``. This module expands that notation into
explicit CPU ids.
"""

from pathlib import Path

import structlog

logger = structlog.get_logger(__name__)


class CPUSetParseError(ValueError):
    """Raised when a cpuset list cannot be parsed."""


def _parse_cpu_id(value: str, cpuset: str) -> int:
    # Plain decimal digits only; int() would also accept "+1", " 1" and "1_0"
    if not (value.isascii() and value.isdigit()):
        msg = f"invalid CPU id {value!r} in cpuset {cpuset!r}"
        raise CPUSetParseError(msg)
    return int(value)


def parse_cpuset(cpuset: str) -> list[str]:
    """Expand a cpuset list into individual CPU ids.

    Items are separated by commas and are either a single CPU id or an
    inclusive ``start-end`` range. Ids are returned in input order with
    ranges expanded ascending.

    Examples:
        "" -> []
        "0,2-4" -> ["0", "2", "3", "4"]
        "8-9,1" -> ["8", "9", "1"]

    Args:
        cpuset: Contents of a cpuset file without the trailing newline.

    Returns:
        List of CPU ids as canonical decimal strings.

    Raises:
        CPUSetParseError: If an item is not an integer or a valid range.
    """
    if not cpuset.strip():
        return []

    cpus: list[str] = []
    for item in cpuset.split(","):
        boundaries = item.split("-")
        if len(boundaries) == 1:
            start = end = _parse_cpu_id(boundaries[0], cpuset)
        elif len(boundaries) == 2:  # noqa: PLR2004
            start = _parse_cpu_id(boundaries[0], cpuset)
            end = _parse_cpu_id(boundaries[1], cpuset)
            if end < start:
                msg = f"reversed CPU range {item!r} in cpuset {cpuset!r}"
                raise CPUSetParseError(msg)
        else:
            msg = f"invalid CPU range {item!r} in cpuset {cpuset!r}"
            raise CPUSetParseError(msg)

        cpus.extend(str(cpu) for cpu in range(start, end + 1))

    return cpus


def read_cpus(path: str | Path) -> list[str] | None:
    """Read and parse a cpuset file.

    Args:
        path: Path to a ``cpuset.cpus`` style file.

    Returns:
        Parsed CPU ids, or None if the file does not exist.

    Raises:
        OSError: If the file exists but cannot be read.
        CPUSetParseError: If the file contents are malformed.
    """
    cpuset_path = Path(path)
    if not cpuset_path.is_file():
        return None

    try:
        data = cpuset_path.read_text()
    except OSError:
        logger.exception("Error reading cpuset", cpuset=str(cpuset_path))
        raise

    try:
        return parse_cpuset(data.rstrip("\n"))
    except CPUSetParseError as err:
        logger.error("Error parsing cpu set", cpuset=str(cpuset_path), err=str(err))
        raise
