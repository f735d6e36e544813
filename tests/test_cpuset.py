"""Tests for cpuset list parsing."""

import pytest

from cgroup_exporter import cpuset

# ---------------------------------------------------------------------------
# parse_cpuset
# ---------------------------------------------------------------------------


def test_parse_cpuset_empty_string_returns_empty_list():
    """Empty input is not an error and yields no CPUs."""
    assert cpuset.parse_cpuset("") == []


def test_parse_cpuset_whitespace_only_returns_empty_list():
    """Whitespace-only input (an empty file with newline) yields no CPUs."""
    assert cpuset.parse_cpuset("  ") == []


def test_parse_cpuset_single_cpu():
    """A single id is returned as-is."""
    assert cpuset.parse_cpuset("3") == ["3"]


def test_parse_cpuset_mixed_singles_and_ranges():
    """Ranges are expanded inclusively alongside single ids."""
    assert cpuset.parse_cpuset("0,2-4") == ["0", "2", "3", "4"]


def test_parse_cpuset_preserves_input_order():
    """Items keep input order; only ranges are expanded ascending."""
    assert cpuset.parse_cpuset("8-9,1") == ["8", "9", "1"]


@pytest.mark.parametrize(
    ("value", "expected_count"),
    [
        ("0-3,7", 5),
        ("0-63", 64),
        ("1,3,5,7", 4),
        ("4-4", 1),
        ("0-1,10-12,20", 6),
    ],
)
def test_parse_cpuset_length_is_sum_of_spans(value: str, expected_count: int):
    """The number of CPUs equals the sum of every item's span."""
    assert len(cpuset.parse_cpuset(value)) == expected_count


def test_parse_cpuset_ids_are_canonical():
    """Leading zeros are dropped so ids are canonical integer strings."""
    assert cpuset.parse_cpuset("007,01-02") == ["7", "1", "2"]


@pytest.mark.parametrize(
    "value",
    ["a", "1-b", "x-3", "1-2-3", "4-2", "-1", "1,,2", "0-3,", "1_0", "+1", "1-1_0", " 2", "\u0663"],
)
def test_parse_cpuset_malformed_raises(value: str):
    """Malformed items raise CPUSetParseError."""
    with pytest.raises(cpuset.CPUSetParseError):
        cpuset.parse_cpuset(value)


def test_parse_error_is_value_error():
    """CPUSetParseError can be handled as a ValueError."""
    assert issubclass(cpuset.CPUSetParseError, ValueError)


# ---------------------------------------------------------------------------
# read_cpus
# ---------------------------------------------------------------------------


def test_read_cpus_missing_file_returns_none(tmp_path):
    """A group without a cpuset file has no CPU information."""
    assert cpuset.read_cpus(tmp_path / "cpuset.cpus") is None


def test_read_cpus_strips_trailing_newline(tmp_path):
    """The kernel's trailing newline does not break parsing."""
    path = tmp_path / "cpuset.cpus"
    path.write_text("0-1,4\n")
    assert cpuset.read_cpus(path) == ["0", "1", "4"]


def test_read_cpus_empty_file_returns_empty_list(tmp_path):
    """An empty cpuset file yields an empty list rather than None."""
    path = tmp_path / "cpuset.cpus"
    path.write_text("\n")
    assert cpuset.read_cpus(path) == []


def test_read_cpus_malformed_file_raises(tmp_path):
    """Malformed file contents propagate as CPUSetParseError."""
    path = tmp_path / "cpuset.cpus"
    path.write_text("0-x\n")
    with pytest.raises(cpuset.CPUSetParseError):
        cpuset.read_cpus(path)


def test_read_cpus_directory_treated_as_missing(tmp_path):
    """A directory at the cpuset path is not a cpuset file."""
    path = tmp_path / "cpuset.cpus"
    path.mkdir()
    assert cpuset.read_cpus(path) is None
