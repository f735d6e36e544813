"""cgroup v2 metrics collector.

Discovers the processes below each configured root cgroup, maps them onto
accounting groups (with Slurm job/step/task awareness), reads the counters of
every group concurrently and generates Prometheus metrics for CPU, memory,
swap and job ownership.
"""

import concurrent.futures
import threading
from collections.abc import Iterator, Sequence
from dataclasses import dataclass, field
from pathlib import Path

import structlog
from prometheus_client.core import GaugeMetricFamily
from prometheus_client.metrics_core import Metric

from .. import cgroupfs, cpuset, procfs
from . import slurm

logger = structlog.get_logger(__name__)

DEFAULT_MAX_WORKERS = 32
DEFAULT_COLLECT_TIMEOUT = 30.0

USEC_PER_SECOND = 1_000_000.0

GROUP_LABELS = ["cgroup", "jobid", "step", "task"]


@dataclass
class CgroupMetric:
    """Resource snapshot for a single accounting group.

    CPU values are cumulative seconds and memory values are bytes. Resource
    fields are only meaningful when ``err`` is false. The ``*_available``
    flags tell a zero counter apart from a controller that was not readable.
    """

    name: str

    # Identity
    job: bool = False
    job_id: str = ""
    step: str = ""
    task: str = ""
    uid: str = ""
    username: str = ""

    # CPU
    cpu_user: float = 0.0
    cpu_system: float = 0.0
    cpu_total: float = 0.0
    cpus: int = 0
    cpu_list: list[str] = field(default_factory=list)

    # Memory and swap
    memory_rss: float = 0.0
    memory_cache: float = 0.0
    memory_used: float = 0.0
    memory_total: float = 0.0
    memory_fail_count: float = 0.0
    memsw_used: float = 0.0
    memsw_total: float = 0.0

    cpu_available: bool = False
    memory_available: bool = False
    memory_events_available: bool = False

    err: bool = False

    @property
    def is_job_level(self) -> bool:
        """Whether this is the job aggregate group (no step or task)."""
        return self.job and not self.step and not self.task

    @property
    def labels(self) -> list[str]:
        """Label values matching ``GROUP_LABELS``."""
        return [self.name, self.job_id, self.step, self.task]


@dataclass
class _SampleBatch:
    """Samples produced for one root; closed once the root's deadline passes."""

    samples: list[CgroupMetric] = field(default_factory=list)
    closed: bool = False


class CgroupV2Collector:
    """Collects per-group resource samples from a cgroup v2 hierarchy.

    Roots are processed one after another. Within a root, each discovered
    group is read by a task on the collector's thread pool; tasks append
    their sample to the root's batch under this collector's lock. Groups
    that are still being read when the collection timeout elapses are
    reported as failed and their late results are dropped.

    The pool lives as long as the collector, so a read stalled in the
    kernel holds one of ``max_workers`` threads rather than a new thread
    per pass. A group whose previous read has not returned yet is reported
    as failed without being submitted again.

    Every call to ``collect`` re-derives the groups and identities from the
    current state of the hierarchy; no samples are kept between calls.
    """

    def __init__(
        self,
        paths: Sequence[str],
        cgroup_root: str | Path = cgroupfs.DEFAULT_MOUNTPOINT,
        proc_root: str | Path = procfs.DEFAULT_PROC_ROOT,
        max_workers: int = DEFAULT_MAX_WORKERS,
        timeout: float | None = DEFAULT_COLLECT_TIMEOUT,
    ):
        """Initialize the collector.

        Args:
            paths: Root cgroup paths to collect, relative to the mountpoint.
            cgroup_root: Mountpoint of the unified cgroup hierarchy.
            proc_root: procfs mountpoint.
            max_workers: Maximum number of groups read concurrently.
            timeout: Seconds to wait for the groups of one root, or None to
                wait indefinitely.

        Raises:
            ValueError: If no paths are given, max_workers is not positive
                or timeout is not positive.
        """
        if not paths:
            msg = "paths cannot be empty"
            raise ValueError(msg)
        if max_workers <= 0:
            msg = "max_workers must be positive"
            raise ValueError(msg)
        if timeout is not None and timeout <= 0:
            msg = "timeout must be positive"
            raise ValueError(msg)

        self.paths = list(paths)
        self.cgroup_root = Path(cgroup_root)
        self.proc_root = Path(proc_root)
        self._timeout = timeout
        self._executor = concurrent.futures.ThreadPoolExecutor(
            max_workers=max_workers,
            thread_name_prefix="cgroup-collect",
        )

        # Guards the current root's sample batch and the in-flight names
        self._lock = threading.Lock()
        # Groups submitted to the pool whose read has not returned yet
        self._in_flight: set[str] = set()
        # Serialises collection passes from concurrent scrapes
        self._pass_lock = threading.Lock()

    def close(self) -> None:
        """Stop the worker pool without waiting for stalled reads."""
        self._executor.shutdown(wait=False, cancel_futures=True)
        logger.debug("Closed cgroup collector", paths=",".join(self.paths))

    def get_metrics(self, name: str, pids: Sequence[int]) -> CgroupMetric:
        """Read the counters and identity of one accounting group.

        Args:
            name: Group name (cgroup path relative to the mountpoint).
            pids: Member process ids, used to find the job owner.

        Returns:
            The group's sample, with ``err`` set if the group could not be
            loaded or its counters could not be read.
        """
        metric = CgroupMetric(name=name)
        logger.debug("Loading cgroup", path=name)

        try:
            control = cgroupfs.Cgroup.load(name, self.cgroup_root)
        except cgroupfs.CgroupError as err:
            logger.error("Failed to load cgroups", path=name, err=str(err))
            metric.err = True
            return metric

        try:
            stats = control.stat()
        except cgroupfs.CgroupError as err:
            logger.error("Failed to get cgroup stats", path=name, err=str(err))
            metric.err = True
            return metric
        if stats is None:
            logger.error("Cgroup stats are nil", path=name)
            metric.err = True
            return metric

        if stats.cpu is not None:
            metric.cpu_available = True
            metric.cpu_user = stats.cpu.user_usec / USEC_PER_SECOND
            metric.cpu_system = stats.cpu.system_usec / USEC_PER_SECOND
            metric.cpu_total = stats.cpu.usage_usec / USEC_PER_SECOND

        if stats.memory is not None:
            # usage minus page cache; anon + swapcached + file is not reliable
            # across kernel and Slurm versions
            metric.memory_available = True
            metric.memory_rss = float(stats.memory.usage - stats.memory.file)
            metric.memory_cache = float(stats.memory.file)
            metric.memory_used = float(stats.memory.usage)
            metric.memory_total = float(stats.memory.usage_limit)
            metric.memsw_used = float(stats.memory.swap_usage)
            metric.memsw_total = float(stats.memory.swap_limit)

        if stats.memory_events is not None:
            metric.memory_events_available = True
            metric.memory_fail_count = float(stats.memory_events.oom)

        try:
            cpus = cpuset.read_cpus(control.cpuset_path)
        except (OSError, cpuset.CPUSetParseError):
            cpus = None
        if cpus is not None:
            metric.cpus = len(cpus)
            metric.cpu_list = cpus

        identity = slurm.match_job(name)
        logger.debug("Matched job identity", name=name, identity=identity)
        if identity is not None:
            metric.job = True
            metric.job_id, metric.step, metric.task = identity
            owner = slurm.resolve_job_owner(pids, self.proc_root)
            if owner is not None:
                metric.uid, metric.username = owner

        return metric

    def _map_processes(self, path: str, pids: Sequence[int]) -> dict[str, dict[int, None]]:
        """Map the processes of a root onto accounting groups.

        Both mappings are insertion-ordered: groups in order of first
        appearance and, per group, pids in discovery order without
        duplicates.
        """
        groups: dict[str, dict[int, None]] = {}
        for pid in pids:
            try:
                pid_path = procfs.pid_group_path(pid, self.proc_root)
            except procfs.ProcError as err:
                logger.error("Error getting PID group path", path=path, pid=pid, err=str(err))
                continue

            for name in slurm.get_names(pid_path, path):
                if slurm.is_excluded(name, path):
                    continue
                groups.setdefault(name, {})[pid] = None
        return groups

    def _collect_group(self, name: str, pids: list[int], batch: _SampleBatch) -> None:
        try:
            metric = self.get_metrics(name, pids)
        except Exception:
            logger.exception("Unexpected error collecting cgroup", path=name)
            metric = CgroupMetric(name=name, err=True)

        with self._lock:
            self._in_flight.discard(name)
            if batch.closed:
                logger.warning("Discarding late cgroup sample", path=name)
                return
            batch.samples.append(metric)

    def _collect_root(self, path: str) -> list[CgroupMetric]:
        logger.debug("Loading cgroup", path=path, root=str(self.cgroup_root))
        try:
            control = cgroupfs.Cgroup.load(path, self.cgroup_root)
            processes = control.procs(recursive=True)
        except cgroupfs.CgroupError as err:
            logger.error("Error loading cgroup", path=path, err=str(err))
            return [CgroupMetric(name=path, err=True)]
        logger.debug("Found processes", path=path, processes=len(processes))

        groups = self._map_processes(path, processes)
        if not groups:
            return []

        batch = _SampleBatch()
        futures: dict[concurrent.futures.Future, str] = {}
        with self._lock:
            for name, pids in groups.items():
                if name in self._in_flight:
                    logger.error("Cgroup read from a previous pass still pending", path=name)
                    batch.samples.append(CgroupMetric(name=name, err=True))
                    continue
                self._in_flight.add(name)
                future = self._executor.submit(self._collect_group, name, list(pids), batch)
                futures[future] = name

        _, pending = concurrent.futures.wait(futures, timeout=self._timeout)

        with self._lock:
            collected = {metric.name for metric in batch.samples}
            for future in pending:
                name = futures[future]
                # Queued reads that never started are dropped
                if future.cancel():
                    self._in_flight.discard(name)
                if name in collected:
                    continue
                logger.error("Timed out collecting cgroup", path=name, timeout=self._timeout)
                batch.samples.append(CgroupMetric(name=name, err=True))
            batch.closed = True
            return list(batch.samples)

    def collect(self) -> list[CgroupMetric]:
        """Run one collection pass over all configured roots.

        Never raises for unreadable kernel or process state: failures are
        reported as samples with ``err`` set.

        Returns:
            Samples of all roots, in no particular order.
        """
        with self._pass_lock:
            metrics: list[CgroupMetric] = []
            for path in self.paths:
                metrics.extend(self._collect_root(path))
            logger.debug("Collected cgroups", samples=len(metrics))
            return metrics


# (attribute, metric name, help)
_GROUP_GAUGES = (
    ("cpu_user", "cgroup_cpu_user_seconds", "Cumulative CPU user seconds for cgroup"),
    ("cpu_system", "cgroup_cpu_system_seconds", "Cumulative CPU system seconds for cgroup"),
    ("cpu_total", "cgroup_cpu_total_seconds", "Cumulative CPU total seconds for cgroup"),
    ("cpus", "cgroup_cpus", "Number of CPUs in the cgroup"),
    ("memory_rss", "cgroup_memory_rss_bytes", "Memory RSS used in bytes"),
    ("memory_cache", "cgroup_memory_cache_bytes", "Memory cache used in bytes"),
    ("memory_used", "cgroup_memory_used_bytes", "Memory used in bytes"),
    ("memory_total", "cgroup_memory_total_bytes", "Memory total given to cgroup in bytes"),
    ("memory_fail_count", "cgroup_memory_fail_count", "Memory fail count"),
    ("memsw_used", "cgroup_memsw_used_bytes", "Swap used in bytes"),
    ("memsw_total", "cgroup_memsw_total_bytes", "Swap total given to cgroup in bytes"),
)


def generate_metrics(metrics: list[CgroupMetric]) -> Iterator[Metric]:
    """Generate Prometheus metrics from cgroup samples.

    Every sample yields a collection error indicator. Samples that were read
    successfully also yield the per-group CPU, memory and swap gauges, a
    ``cgroup_cpu_info`` entry when the group has a cpuset, and job-level
    groups yield the ``cgroup_uid`` and ``cgroup_info`` identity metrics.

    Args:
        metrics: Samples from one collection pass.

    Yields:
        Prometheus Metric objects.
    """
    collect_error = GaugeMetricFamily(
        "cgroup_exporter_collect_error",
        "Indicates collection error, 0=no error, 1=error",
        labels=["cgroup"],
    )
    uid = GaugeMetricFamily(
        "cgroup_uid",
        "Uid number of user running this job",
        labels=["jobid", "username"],
    )
    info = GaugeMetricFamily(
        "cgroup_info",
        "User slice information",
        labels=["cgroup", "username", "uid", "jobid"],
    )
    cpu_info = GaugeMetricFamily(
        "cgroup_cpu_info",
        "Information about the cgroup CPUs",
        labels=["cgroup", "cpus", "jobid"],
    )
    gauges = [
        (attribute, GaugeMetricFamily(name, documentation, labels=GROUP_LABELS))
        for attribute, name, documentation in _GROUP_GAUGES
    ]

    for metric in metrics:
        collect_error.add_metric([metric.name], 1 if metric.err else 0)
        if metric.err:
            continue

        if metric.is_job_level:
            uid.add_metric([metric.job_id, metric.username], float(metric.uid or 0))
            info.add_metric([metric.name, metric.username, metric.uid, metric.job_id], 1)

        for attribute, family in gauges:
            family.add_metric(metric.labels, float(getattr(metric, attribute)))

        # cpu_list is only populated for groups with a cpuset
        if metric.cpu_list:
            cpu_info.add_metric([metric.name, ",".join(metric.cpu_list), metric.job_id], 1)

    yield collect_error
    yield uid
    yield info
    for _, family in gauges:
        yield family
    yield cpu_info
