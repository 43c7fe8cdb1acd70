from __future__ import annotations

from dataclasses import dataclass, field
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any, Dict, List, Optional, Sequence

from .api.client import DatadogClient
from .logging import get_logger
from .model import Resource, RunStatus
from .util.errors import DeliveryError

LOG = get_logger(__name__)

EVENT_TYPE = "config_management.run"
SOURCE_TYPE_NAME = "chef"
BLOCK = "\n$$$\n"
FAILED_RESOURCE_LIMIT = 5
COMPILE_FAILURE_TEXT = "Chef was unable to complete a run, an error during compilation may have occurred."


@dataclass(frozen=True)
class Event:
    title: str
    text: str
    alert_type: str
    priority: str
    host: str
    tags: List[str] = field(default_factory=list)

    def to_payload(self) -> Dict[str, Any]:
        return {
            "title": self.title,
            "text": self.text,
            "alert_type": self.alert_type,
            "priority": self.priority,
            "host": self.host,
            "tags": list(self.tags),
            "aggregation_key": self.host,
            "event_type": EVENT_TYPE,
            "source_type_name": SOURCE_TYPE_NAME,
        }


def pluralize(number: Any, noun: str) -> str:
    try:
        value = Decimal(str(number))
        if 0 <= value <= 1:
            return f"less than 1 {noun}"
        rounded = int(value.quantize(Decimal(1), rounding=ROUND_HALF_UP))
    except (InvalidOperation, ValueError):
        LOG.warning(f"Cannot make {number} more legible")
        return f"{number} {noun}s"
    if rounded == 1:
        return f"{rounded} {noun}"
    return f"{rounded} {noun}s"


def defined_at(resource: Resource) -> str:
    location = resource.source_location()
    if location is None:
        return "dynamically defined"
    path, line = location
    if resource.cookbook_name and resource.recipe_name:
        return f"{resource.cookbook_name}::{resource.recipe_name} line {line}"
    return f"{path} line {line}"


def updated_resource_list(run_status: RunStatus) -> str:
    """
    Updated resources as a delimited block, only the last few when the run failed.
    """
    resources = run_status.updated_resources
    if not resources:
        return ""
    if run_status.failed:
        resources = resources[-FAILED_RESOURCE_LIMIT:]
    lines = "".join(f"- {r} ({defined_at(r)})\n" for r in resources)
    return f"{BLOCK}{lines}{BLOCK}"


def build_event(
    hostname: str,
    run_status: RunStatus,
    failure_notifications: Optional[Sequence[str]] = None,
    tags: Optional[Sequence[str]] = None,
) -> Event:
    tag_list = list(tags or [])
    if run_status.elapsed_time is None:
        return Event(
            title=f"Chef failed during compile phase on {hostname} ",
            text=COMPILE_FAILURE_TEXT,
            alert_type="error",
            priority="normal",
            host=hostname,
            tags=tag_list,
        )

    run_time = pluralize(run_status.elapsed_time, "second")
    text = (
        f"Chef updated {len(run_status.updated_resources)} resources out of "
        f"{len(run_status.all_resources)} resources total."
    )
    text += updated_resource_list(run_status)

    if run_status.success:
        return Event(
            title=f"Chef completed in {run_time} on {hostname} ",
            text=text,
            alert_type="success",
            priority="low",
            host=hostname,
            tags=tag_list,
        )

    if failure_notifications:
        text += f"\nAlerting: {' '.join(failure_notifications)}\n"
    text += f"{BLOCK}{run_status.formatted_exception or ''}{BLOCK}"
    backtrace = "\n".join(run_status.backtrace)
    text += f"{BLOCK}{backtrace}{BLOCK}"
    return Event(
        title=f"Chef failed in {run_time} on {hostname} ",
        text=text,
        alert_type="error",
        priority="normal",
        host=hostname,
        tags=tag_list,
    )


def emit_event(client: DatadogClient, event: Event) -> bool:
    try:
        resp = client.create_event(event.to_payload())
    except DeliveryError as e:
        LOG.error("Could not send event to Datadog", extra={"endpoint": client.url, "error": str(e)})
        return False
    if resp.body is None:
        LOG.warning(
            "Could not determine whether chef run was successfully submitted to Datadog",
            extra={"endpoint": client.url, "status": resp.status},
        )
        return resp.ok
    if not resp.ok:
        LOG.warning(
            "Could not submit event to Datadog (HTTP call failed)",
            extra={"endpoint": client.url, "status": resp.status},
        )
        return False
    event_obj = resp.body.get("event")
    event_url = event_obj.get("url") if isinstance(event_obj, dict) else None
    LOG.debug(
        "Successfully submitted Chef event to Datadog",
        extra={"endpoint": client.url, "host": event.host, "event_url": event_url},
    )
    return True
