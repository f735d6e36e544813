"""Collectors package for cgroup metrics.

Contains the cgroup v2 collector and the Slurm naming conventions it relies
on. The collector provides a fetch callable and a generate_metrics function
that are composed with the CgroupCollector class.
"""
