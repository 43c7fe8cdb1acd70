from __future__ import annotations

from contextlib import ExitStack
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Mapping, Optional, Union

from .api.client import DatadogClient, make_client, resolve_proxies
from .api.endpoints import Endpoint, resolve_endpoints
from .config import HandlerConfig, load_handler_config
from .events import Event, build_event, emit_event
from .hostname import select_hostname
from .logging import get_logger
from .metrics import (
    CONVERGENCE_TIME_METRIC,
    MetricPoint,
    build_metrics,
    cache_file_path,
    emit_metrics,
    write_detailed_resource_metrics,
)
from .model import RunStatus
from .tags import build_tags, send_tags

LOG = get_logger(__name__)

ClientFactory = Callable[[Endpoint, float], DatadogClient]


@dataclass(frozen=True)
class EndpointDelivery:
    url: str
    metrics: bool = False
    event: bool = False
    tags: bool = False
    tag_attempts: int = 0
    error: Optional[str] = None


@dataclass(frozen=True)
class ReportSummary:
    """What one report pass computed and how each endpoint fared. Informational only."""

    hostname: str
    tags: List[str]
    event: Event
    points: List[MetricPoint]
    deliveries: List[EndpointDelivery] = field(default_factory=list)


class DatadogHandler:
    """
    Report handler run once at the end of a Chef run.

    Construction validates credentials and raises ConfigError when the primary
    endpoint cannot be used. report() never raises.
    """

    def __init__(
        self,
        config: Union[HandlerConfig, Mapping[Any, Any], None] = None,
        client_factory: Optional[ClientFactory] = None,
    ) -> None:
        self.config = load_handler_config(config)
        self.endpoints = resolve_endpoints(self.config)
        factory = client_factory or make_client
        self.clients: List[DatadogClient] = [factory(ep, self.config.timeout) for ep in self.endpoints]

    def report(self, run_status: RunStatus, environ: Optional[Mapping[str, str]] = None) -> Optional[ReportSummary]:
        try:
            return self._report(run_status, environ)
        except Exception:
            LOG.exception("Datadog report failed; the Chef run result is unaffected")
            return None

    def _report(self, run_status: RunStatus, environ: Optional[Mapping[str, str]]) -> ReportSummary:
        proxies = resolve_proxies(environ)
        hostname = select_hostname(run_status.node, self.config)
        points = build_metrics(hostname, run_status, self.config)
        tags = build_tags(run_status.node, self.config)
        event = build_event(hostname, run_status, self.config.notify_on_failure, tags)

        if self.config.cache_resource_details and run_status.elapsed_time is not None:
            details = [p for p in points if p.name == CONVERGENCE_TIME_METRIC]
            write_detailed_resource_metrics(details, cache_file_path(self.config.cache_dir))

        deliveries: List[EndpointDelivery] = []
        with ExitStack() as stack:
            for client in self.clients:
                stack.enter_context(client.scoped_proxies(proxies))
            for client in self.clients:
                deliveries.append(self._deliver(client, hostname, points, event, tags))
        return ReportSummary(hostname=hostname, tags=tags, event=event, points=points, deliveries=deliveries)

    def _deliver(
        self,
        client: DatadogClient,
        hostname: str,
        points: List[MetricPoint],
        event: Event,
        tags: List[str],
    ) -> EndpointDelivery:
        progress: Dict[str, Any] = {"url": client.url}
        try:
            progress["metrics"] = emit_metrics(client, points, hostname)
            progress["event"] = emit_event(client, event)
            tag_update = send_tags(client, hostname, tags, retries=self.config.tags_submission_retries)
            progress["tags"] = tag_update.ok
            progress["tag_attempts"] = tag_update.attempts
        except Exception as e:
            LOG.error(
                "Could not deliver Chef report to Datadog endpoint",
                extra={"endpoint": client.url, "host": hostname, "error": str(e)},
            )
            LOG.error("Data to be submitted was:")
            LOG.error(event.title)
            LOG.error(event.text)
            LOG.error("Tags to be set for this run:")
            LOG.error(", ".join(tags))
            progress["error"] = str(e)
        return EndpointDelivery(**progress)

    def close(self) -> None:
        for client in self.clients:
            client.close()
