"""cgroup Prometheus Exporter.

Prometheus exporter that reports per-group CPU, memory and swap usage from
the cgroup v2 hierarchy of a compute node, with Slurm job, step, task and
owner awareness.
"""

__version__ = "0.1.0"
