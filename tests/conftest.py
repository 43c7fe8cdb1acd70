from __future__ import annotations

from typing import Any, Dict, List, Optional

import pytest

from chef_handler_datadog.api.client import DatadogClient
from chef_handler_datadog.api.endpoints import Endpoint
from chef_handler_datadog.model import NodeInfo, Resource, RunException, RunStatus

NOT_JSON = object()


class FakeResponse:
    def __init__(self, status_code: int, body: Any = None) -> None:
        self.status_code = status_code
        self._body = body

    def json(self) -> Any:
        if self._body is NOT_JSON:
            raise ValueError("not json")
        return self._body


def _kind(url: str) -> str:
    if "/api/v1/series" in url:
        return "series"
    if "/api/v1/events" in url:
        return "events"
    if "/api/v1/tags/hosts/" in url:
        return "tags"
    raise AssertionError(f"unexpected url {url}")


_DEFAULTS = {
    "series": (202, {"status": "ok"}),
    "events": (202, {"status": "ok", "event": {"id": 1, "url": "https://app.datadoghq.com/event/event?id=1"}}),
    "tags": (201, {"host": "h", "tags": []}),
}


class FakeSession:
    """
    Stands in for requests.Session. Responses are queued per kind
    (series/events/tags); an exception in the queue is raised instead.
    """

    def __init__(self) -> None:
        self.calls: List[Dict[str, Any]] = []
        self.queues: Dict[str, List[Any]] = {"series": [], "events": [], "tags": []}
        self.closed = False

    def queue(self, kind: str, *items: Any) -> "FakeSession":
        self.queues[kind].extend(items)
        return self

    def request(self, method: str, url: str, **kwargs: Any) -> FakeResponse:
        kind = _kind(url)
        self.calls.append({"kind": kind, "method": method, "url": url, **kwargs})
        if self.queues[kind]:
            item = self.queues[kind].pop(0)
        else:
            item = _DEFAULTS[kind]
        if isinstance(item, BaseException):
            raise item
        status, body = item
        return FakeResponse(status, body)

    def kinds(self) -> List[str]:
        return [c["kind"] for c in self.calls]

    def close(self) -> None:
        self.closed = True


@pytest.fixture
def endpoint() -> Endpoint:
    return Endpoint(url="https://app.datadoghq.com", api_key="api-123", application_key="app-456")


@pytest.fixture
def session() -> FakeSession:
    return FakeSession()


@pytest.fixture
def client(endpoint: Endpoint, session: FakeSession) -> DatadogClient:
    return DatadogClient(endpoint, session=session)  # type: ignore[arg-type]


class ClientRecorder:
    """client_factory for DatadogHandler that keeps the fake session of every endpoint."""

    def __init__(self) -> None:
        self.sessions: List[FakeSession] = []

    def __call__(self, endpoint: Endpoint, timeout: float) -> DatadogClient:
        session = FakeSession()
        self.sessions.append(session)
        return DatadogClient(endpoint, timeout=timeout, session=session)  # type: ignore[arg-type]


@pytest.fixture
def recorder() -> ClientRecorder:
    return ClientRecorder()


def make_run_status(
    node: Optional[NodeInfo] = None,
    *,
    success: bool = True,
    elapsed_time: Optional[float] = 5,
    all_resources: Optional[List[Resource]] = None,
    updated_resources: Optional[List[Resource]] = None,
    exception: Optional[RunException] = None,
) -> RunStatus:
    return RunStatus(
        node=node or NodeInfo(name="chef.handler.datadog.test", environment="testing"),
        success=success,
        elapsed_time=elapsed_time,
        all_resources=all_resources or [],
        updated_resources=updated_resources or [],
        exception=exception,
    )


@pytest.fixture
def run_status_factory():
    return make_run_status
