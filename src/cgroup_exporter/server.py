"""HTTP server for the cgroup Prometheus exporter."""

import contextlib
import json
import logging
import os
import pathlib
from collections.abc import AsyncIterator, Callable

import prometheus_client
import prometheus_client.core
import pydantic
import starlette.applications
import starlette.requests
import starlette.responses
import starlette.routing
import structlog

from . import cgroupfs, collector, procfs
from .collectors import cgroupv2

CONFIG_ENV_VAR = "CGROUP_EXPORTER_CONFIG_PATH"
logger = structlog.get_logger(__name__)


class ExporterConfig(pydantic.BaseModel):
    """Configuration for the cgroup Prometheus exporter."""

    paths: list[str] = pydantic.Field(
        default_factory=lambda: ["/system.slice/slurmstepd.scope"],
        description="Root cgroup paths to collect, relative to cgroup_root",
        min_length=1,
    )
    cgroup_root: str = pydantic.Field(
        cgroupfs.DEFAULT_MOUNTPOINT,
        description="Mountpoint of the unified cgroup hierarchy",
    )
    proc_root: str = pydantic.Field(
        procfs.DEFAULT_PROC_ROOT,
        description="Mountpoint of procfs",
    )
    collect_proc_max_exec: int = pydantic.Field(
        100,
        description="Max length of process executable to record",
        gt=0,
    )
    max_workers: int = pydantic.Field(
        cgroupv2.DEFAULT_MAX_WORKERS,
        description="Maximum number of cgroups read concurrently",
        gt=0,
    )
    collect_timeout: pydantic.PositiveFloat | None = pydantic.Field(
        cgroupv2.DEFAULT_COLLECT_TIMEOUT,
        description="Seconds to wait for the cgroups of one root, null to wait forever",
    )
    port: int = pydantic.Field(9306, description="HTTP server port", gt=0, lt=65536)
    metrics_path: str = pydantic.Field(
        "/metrics",
        description="URL path for metrics endpoint",
    )
    log_level: str = pydantic.Field("INFO", description="Logging level")

    @pydantic.field_validator("paths")
    @classmethod
    def _paths_absolute(cls, paths: list[str]) -> list[str]:
        for path in paths:
            if not path.startswith("/"):
                msg = f"cgroup path must be absolute: {path!r}"
                raise ValueError(msg)
        return paths


def configure_logging(log_level_name: str) -> None:
    """Configure structlog for logfmt output."""
    log_level = getattr(logging, log_level_name.upper(), logging.INFO)
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.EventRenamer("msg"),
            structlog.processors.format_exc_info,
            structlog.processors.LogfmtRenderer(
                key_order=("timestamp", "level", "msg"),
            ),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(log_level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )


def load_config(config_path: str) -> ExporterConfig:
    """Load configuration from JSON file."""
    path = pathlib.Path(config_path)
    if not path.exists():
        msg = f"Configuration file not found: {config_path}"
        raise FileNotFoundError(msg)

    with path.open("r") as f:
        data = json.load(f)

    return ExporterConfig(**data)


def create_registry_with_collectors(
    cgroup_collector: cgroupv2.CgroupV2Collector,
) -> prometheus_client.core.CollectorRegistry:
    """Create a Prometheus registry with the cgroup collector.

    Creates a custom registry (not the global one) so that only cgroup
    metrics and scrape metadata are exposed.

    Args:
        cgroup_collector: Collector walking the configured cgroup roots.

    Returns:
        Configured Prometheus registry.
    """
    registry = prometheus_client.core.CollectorRegistry()

    scrape_collector = collector.CgroupCollector(
        fetcher=cgroup_collector.collect,
        generator=cgroupv2.generate_metrics,
        scraper_description=f"cgroupfs {cgroup_collector.cgroup_root}",
    )
    registry.register(scrape_collector)
    logger.info(
        "Registered collector",
        collector="cgroupv2",
        paths=",".join(cgroup_collector.paths),
    )

    return registry


def create_starlette_app(
    metrics_path: str,
    registry: prometheus_client.core.CollectorRegistry,
    on_shutdown: Callable[[], None] | None = None,
) -> starlette.applications.Starlette:
    """Create a Starlette application for serving Prometheus metrics.

    Args:
        metrics_path: URL path for metrics endpoint (e.g., "/metrics").
        registry: Prometheus collector registry.
        on_shutdown: Called once when the application shuts down.

    Returns:
        Configured Starlette application.
    """

    def metrics_endpoint(
        request: starlette.requests.Request,
    ) -> starlette.responses.Response:
        """Generate and serve Prometheus metrics."""
        metrics_output = prometheus_client.generate_latest(registry)
        logger.info(
            "HTTP request",
            client_ip=request.client.host if request.client else "unknown",
            method=request.method,
            path=request.url.path,
        )
        return starlette.responses.PlainTextResponse(
            content=metrics_output,
            media_type="text/plain; version=0.0.4; charset=utf-8",
        )

    routes = [
        starlette.routing.Route(metrics_path, metrics_endpoint, methods=["GET"]),
    ]

    @contextlib.asynccontextmanager
    async def lifespan(_app: starlette.applications.Starlette) -> AsyncIterator[None]:
        yield
        if on_shutdown is not None:
            on_shutdown()

    return starlette.applications.Starlette(routes=routes, lifespan=lifespan)


def create_exporter(config: ExporterConfig) -> starlette.applications.Starlette:
    """Construct the exporter ASGI app from validated config."""
    cgroup_collector = cgroupv2.CgroupV2Collector(
        paths=config.paths,
        cgroup_root=config.cgroup_root,
        proc_root=config.proc_root,
        max_workers=config.max_workers,
        timeout=config.collect_timeout,
    )
    logger.info(
        "Created cgroup collector",
        cgroup_root=config.cgroup_root,
        proc_root=config.proc_root,
    )

    registry = create_registry_with_collectors(cgroup_collector)

    return create_starlette_app(
        metrics_path=config.metrics_path,
        registry=registry,
        on_shutdown=cgroup_collector.close,
    )


def create_app(config_path: str | None = None) -> starlette.applications.Starlette:
    """Create the exporter ASGI app using a config path or environment default."""
    resolved_path = config_path or os.environ.get(CONFIG_ENV_VAR, "/config.json")
    config = load_config(resolved_path)
    configure_logging(config.log_level)
    return create_exporter(config)
