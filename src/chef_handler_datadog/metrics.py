from __future__ import annotations

import json
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence

from .api.client import DatadogClient
from .config import HandlerConfig
from .logging import get_logger
from .model import RunStatus
from .util.errors import DeliveryError

LOG = get_logger(__name__)

CONVERGENCE_TIME_METRIC = "chef.resources.convergence_time"
TOTAL_METRIC = "chef.resources.total"
UPDATED_METRIC = "chef.resources.updated"
ELAPSED_METRIC = "chef.resources.elapsed_time"
RUN_SUCCESS_METRIC = "chef.run.success"
RUN_FAILURE_METRIC = "chef.run.failure"


@dataclass(frozen=True)
class MetricPoint:
    name: str
    value: float
    host: str
    tags: List[str] = field(default_factory=list)
    metric_type: str = "gauge"

    def to_series(self, timestamp: int) -> Dict[str, Any]:
        return {
            "metric": self.name,
            "points": [[timestamp, self.value]],
            "type": self.metric_type,
            "host": self.host,
            "tags": list(self.tags),
        }

    def to_detail(self) -> Dict[str, Any]:
        return {"name": self.name, "value": self.value, "tags": list(self.tags)}


def resource_class_for(cookbook: Optional[str], config: HandlerConfig) -> str:
    if cookbook and cookbook in config.resource_class_map:
        return config.resource_class_map[cookbook]
    return config.default_resource_class


def collect_resource_metrics(hostname: str, run_status: RunStatus, config: HandlerConfig) -> List[MetricPoint]:
    """
    One convergence-time point per resource in the run, in resource order.
    """
    points: List[MetricPoint] = []
    for resource in run_status.all_resources:
        tags = [
            f"resource_name:{resource.name}",
            f"cookbook:{resource.cookbook_name or ''}",
            f"recipe:{resource.recipe_name or ''}",
            f"resource_class:{resource_class_for(resource.cookbook_name, config)}",
        ]
        points.append(MetricPoint(CONVERGENCE_TIME_METRIC, resource.elapsed_time, hostname, tags))
    return points


def run_counter(hostname: str, run_status: RunStatus) -> MetricPoint:
    name = RUN_SUCCESS_METRIC if run_status.success else RUN_FAILURE_METRIC
    return MetricPoint(name, 1, hostname, metric_type="count")


def build_metrics(hostname: str, run_status: RunStatus, config: HandlerConfig) -> List[MetricPoint]:
    """
    Points to submit for this run.

    A run that failed while compiling has no elapsed time and no resource list;
    only the failure counter is reported for it.
    """
    if run_status.elapsed_time is None:
        LOG.warning("Error during compile phase, no detailed Datadog metrics available.", extra={"host": hostname})
        return [run_counter(hostname, run_status)]

    points = collect_resource_metrics(hostname, run_status, config)
    points.extend(
        [
            MetricPoint(TOTAL_METRIC, len(run_status.all_resources), hostname),
            MetricPoint(UPDATED_METRIC, len(run_status.updated_resources), hostname),
            MetricPoint(ELAPSED_METRIC, run_status.elapsed_time, hostname),
            run_counter(hostname, run_status),
        ]
    )
    return points


def cache_file_path(cache_dir: Path, now: Optional[float] = None) -> Path:
    ts = int(now if now is not None else time.time())
    return cache_dir / f"chef-metrics-{ts}.json"


def write_detailed_resource_metrics(details: Sequence[MetricPoint], path: Path) -> Optional[Path]:
    """
    Dump per-resource metrics to path for offline inspection. Failures are logged.
    """
    if not details:
        LOG.warning("No metrics to be written. Not creating file")
        return None
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(json.dumps([p.to_detail() for p in details]), encoding="utf-8")
    except OSError as e:
        LOG.error("Could not save the metrics to the file", extra={"path": str(path), "error": str(e)})
        return None
    LOG.info("Saved metrics to file", extra={"path": str(path)})
    return path


def emit_metrics(client: DatadogClient, points: Sequence[MetricPoint], hostname: str) -> bool:
    """
    Submit all points as one series batch. Returns False on any delivery problem.
    """
    if not points:
        return True
    timestamp = int(time.time())
    try:
        resp = client.submit_metrics([p.to_series(timestamp) for p in points])
    except DeliveryError as e:
        LOG.error("Could not send metrics to Datadog", extra={"endpoint": client.url, "error": str(e)})
        return False
    if not resp.ok:
        LOG.warning(
            "Could not submit metrics to Datadog (HTTP call failed)",
            extra={"endpoint": client.url, "status": resp.status, "host": hostname},
        )
        return False
    LOG.debug("Submitted Chef metrics back to Datadog", extra={"endpoint": client.url, "host": hostname})
    return True
