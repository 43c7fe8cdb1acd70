from __future__ import annotations

import re
import time
from dataclasses import dataclass
from typing import Callable, Iterable, List, Optional

from .api.client import TAG_SOURCE, DatadogClient
from .config import HandlerConfig
from .logging import get_logger
from .model import NodeInfo
from .util.errors import DeliveryError

LOG = get_logger(__name__)

RETRY_INTERVAL_SECONDS = 2


@dataclass(frozen=True)
class TagUpdate:
    attempts: int
    ok: bool


def _unique(tags: Iterable[str]) -> List[str]:
    seen = set()
    out: List[str] = []
    for tag in tags:
        if tag in seen:
            continue
        seen.add(tag)
        out.append(tag)
    return out


def env_tags(node: NodeInfo, scope_prefix: str = "") -> List[str]:
    if node.environment is None:
        return []
    return [f"{scope_prefix}env:{node.environment}"]


def role_tags(node: NodeInfo, scope_prefix: str = "") -> List[str]:
    return [f"{scope_prefix}role:{role}" for role in node.roles]


def policy_tags(node: NodeInfo, scope_prefix: str = "") -> List[str]:
    tags: List[str] = []
    if node.policy_group is not None:
        tags.append(f"{scope_prefix}policy_group:{node.policy_group}")
    if node.policy_name is not None:
        tags.append(f"{scope_prefix}policy_name:{node.policy_name}")
    return tags


def node_tags(node: NodeInfo, tag_prefix: str, blacklist: Optional[str] = None) -> List[str]:
    pattern = re.compile(blacklist, re.IGNORECASE) if blacklist else None
    out: List[str] = []
    for tag in node.tags:
        if pattern is not None and pattern.search(tag):
            continue
        out.append(f"{tag_prefix}{tag}")
    return out


def build_tags(node: NodeInfo, config: HandlerConfig) -> List[str]:
    """
    Host tags for the node: env, roles, policy (when enabled), then free-form
    tags minus blacklisted ones. Duplicates collapse onto their first position.
    """
    scope = config.scope_prefix
    tags = env_tags(node, scope) + role_tags(node, scope)
    if config.send_policy_tags:
        tags += policy_tags(node, scope)
    tags += node_tags(node, config.tag_prefix, config.tags_blacklist_regex)
    return _unique(tags)


def send_tags(
    client: DatadogClient,
    hostname: str,
    tags: List[str],
    retries: int = 0,
    sleep: Optional[Callable[[float], None]] = None,
) -> TagUpdate:
    """
    Replace the host's chef-sourced tags. A 404 means Datadog does not know the
    host yet; that case is retried up to `retries` times, 2 seconds apart.

    Returns the number of attempts made and whether the last one was accepted.
    """
    pause = sleep if sleep is not None else time.sleep
    attempts = 0
    remaining = retries
    while True:
        attempts += 1
        try:
            resp = client.update_host_tags(hostname, tags, source=TAG_SOURCE)
        except DeliveryError as e:
            LOG.error(
                "Could not update tags in Datadog",
                extra={"endpoint": client.url, "host": hostname, "error": str(e)},
            )
            return TagUpdate(attempts=attempts, ok=False)
        if resp.not_found and remaining > 0:
            remaining -= 1
            LOG.info(
                "Host not yet known to Datadog, retrying tag update",
                extra={"endpoint": client.url, "host": hostname, "retries_left": remaining},
            )
            pause(RETRY_INTERVAL_SECONDS)
            continue
        break

    if resp.ok:
        LOG.debug(
            "Successfully updated host tags",
            extra={"endpoint": client.url, "host": hostname, "tags": tags},
        )
    elif resp.not_found:
        LOG.warning(
            "Host still unknown to Datadog after tag update retries",
            extra={"endpoint": client.url, "host": hostname, "attempts": attempts, "tags": tags},
        )
    else:
        LOG.warning(
            "Could not submit tags to Datadog",
            extra={"endpoint": client.url, "host": hostname, "status": resp.status, "tags": tags},
        )
    return TagUpdate(attempts=attempts, ok=resp.ok)
