from __future__ import annotations

import re
import traceback
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Tuple

_SOURCE_LINE_RE = re.compile(r"^(?P<file>.+?):(?P<line>\d+)(?::.*)?$")


@dataclass(frozen=True)
class NodeInfo:
    """
    The subset of a Chef node the handler reads. Optional attributes are None
    when the node does not expose them.
    """

    name: str
    cloud_instance_id: Optional[str] = None
    environment: Optional[str] = None
    roles: List[str] = field(default_factory=list)
    tags: List[str] = field(default_factory=list)
    policy_name: Optional[str] = None
    policy_group: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "NodeInfo":
        name = data.get("name")
        if not isinstance(name, str) or not name:
            raise ValueError("Node document requires a non-empty 'name'")
        return cls(
            name=name,
            cloud_instance_id=_opt_str(data.get("cloud_instance_id")),
            environment=_opt_str(data.get("environment")),
            roles=[str(r) for r in data.get("roles") or []],
            tags=[str(t) for t in data.get("tags") or []],
            policy_name=_opt_str(data.get("policy_name")),
            policy_group=_opt_str(data.get("policy_group")),
        )


@dataclass(frozen=True)
class Resource:
    name: str
    resource_type: Optional[str] = None
    cookbook_name: Optional[str] = None
    recipe_name: Optional[str] = None
    source_line: Optional[str] = None
    elapsed_time: float = 0.0

    def __str__(self) -> str:
        if self.resource_type:
            return f"{self.resource_type}[{self.name}]"
        return self.name

    def source_location(self) -> Optional[Tuple[str, int]]:
        """
        Split source_line ("recipes/default.rb:12:in `from_file'") into (file, line).
        """
        if not self.source_line:
            return None
        match = _SOURCE_LINE_RE.match(self.source_line)
        if not match:
            return None
        return match.group("file"), int(match.group("line"))

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Resource":
        return cls(
            name=str(data.get("name", "")),
            resource_type=_opt_str(data.get("resource_type")),
            cookbook_name=_opt_str(data.get("cookbook_name")),
            recipe_name=_opt_str(data.get("recipe_name")),
            source_line=_opt_str(data.get("source_line")),
            elapsed_time=float(data.get("elapsed_time") or 0.0),
        )


@dataclass(frozen=True)
class RunException:
    """
    Failure carried by a RunStatus. Hosts that catch a Python exception build
    one with RunException.from_exception(exc); RunStatus.from_dict reads it from JSON.
    """

    type_name: str
    message: str
    backtrace: List[str] = field(default_factory=list)

    @classmethod
    def from_exception(cls, exc: BaseException) -> "RunException":
        frames = [f"{fs.filename}:{fs.lineno}:in `{fs.name}'" for fs in traceback.extract_tb(exc.__traceback__)]
        return cls(type_name=type(exc).__name__, message=str(exc), backtrace=frames)


@dataclass(frozen=True)
class RunStatus:
    """
    Read-only view of a finished run. elapsed_time is None when the run failed
    before resources were compiled.
    """

    node: NodeInfo
    success: bool
    elapsed_time: Optional[float] = None
    all_resources: List[Resource] = field(default_factory=list)
    updated_resources: List[Resource] = field(default_factory=list)
    exception: Optional[RunException] = None

    @property
    def failed(self) -> bool:
        return not self.success

    @property
    def formatted_exception(self) -> Optional[str]:
        if self.exception is None:
            return None
        return f"{self.exception.type_name}: {self.exception.message}"

    @property
    def backtrace(self) -> List[str]:
        if self.exception is None:
            return []
        return list(self.exception.backtrace)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "RunStatus":
        node_raw = data.get("node")
        if not isinstance(node_raw, Mapping):
            raise ValueError("Run status document requires a 'node' object")
        exc_raw = data.get("exception")
        exception = None
        if isinstance(exc_raw, Mapping):
            exception = RunException(
                type_name=str(exc_raw.get("type") or "RuntimeError"),
                message=str(exc_raw.get("message") or ""),
                backtrace=[str(b) for b in exc_raw.get("backtrace") or []],
            )
        elapsed = data.get("elapsed_time")
        all_resources = [Resource.from_dict(r) for r in data.get("all_resources") or []]
        # Updated resources may be given by name instead of repeated in full.
        by_name: Dict[str, Resource] = {str(r): r for r in all_resources}
        updated: List[Resource] = []
        for item in data.get("updated_resources") or []:
            if isinstance(item, str):
                updated.append(by_name.get(item) or Resource(name=item))
            else:
                updated.append(Resource.from_dict(item))
        success = data.get("success")
        return cls(
            node=NodeInfo.from_dict(node_raw),
            success=bool(success) if success is not None else exception is None,
            elapsed_time=float(elapsed) if elapsed is not None else None,
            all_resources=all_resources,
            updated_resources=updated,
            exception=exception,
        )


def _opt_str(value: Any) -> Optional[str]:
    if value is None:
        return None
    text = str(value)
    return text if text else None
