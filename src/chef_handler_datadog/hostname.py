from __future__ import annotations

from .config import HandlerConfig
from .model import NodeInfo


def select_hostname(node: NodeInfo, config: HandlerConfig) -> str:
    """
    Pick the hostname every series, event and tag update is attached to.
    Order: explicit config hostname, cloud instance id (unless disabled), node name.
    """
    if config.hostname:
        return config.hostname
    if config.use_ec2_instance_id and node.cloud_instance_id:
        return node.cloud_instance_id
    return node.name
