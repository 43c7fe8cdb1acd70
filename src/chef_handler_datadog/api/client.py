from __future__ import annotations

import os
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Any, Dict, Iterator, List, Mapping, Optional
from urllib.parse import quote

import requests
from requests.adapters import HTTPAdapter

from ..config import DEFAULT_TIMEOUT
from ..logging import get_logger
from ..util.errors import map_requests_error
from .endpoints import Endpoint

LOG = get_logger(__name__)

PROXY_ENV_VAR = "DATADOG_PROXY"
TAG_SOURCE = "chef"
USER_AGENT = "chef-handler-datadog-python"


@dataclass(frozen=True)
class ApiResponse:
    """
    HTTP status plus parsed JSON body. body is None when the response was not JSON.
    """

    status: int
    body: Optional[Dict[str, Any]]

    @property
    def ok(self) -> bool:
        return 200 <= self.status < 300

    @property
    def not_found(self) -> bool:
        return self.status == 404


def resolve_proxies(environ: Optional[Mapping[str, str]] = None) -> Optional[Dict[str, str]]:
    """
    Return a requests proxies mapping when DATADOG_PROXY is set, else None.
    """
    env = os.environ if environ is None else environ
    proxy = (env.get(PROXY_ENV_VAR) or "").strip()
    if not proxy:
        return None
    return {"http": proxy, "https": proxy}


class DatadogClient:
    """
    Minimal client for the Datadog v1 series, events and host tags endpoints.
    One instance per configured endpoint.
    """

    def __init__(
        self,
        endpoint: Endpoint,
        timeout: float = DEFAULT_TIMEOUT,
        session: Optional[requests.Session] = None,
    ) -> None:
        self.endpoint = endpoint
        self.timeout = timeout
        self.proxies: Optional[Dict[str, str]] = None
        self.session = session if session is not None else _make_session()

    @property
    def url(self) -> str:
        return self.endpoint.url

    def _request(
        self,
        method: str,
        path: str,
        *,
        payload: Any = None,
        params: Optional[Dict[str, str]] = None,
        with_app_key: bool = False,
    ) -> ApiResponse:
        headers = {"DD-API-KEY": self.endpoint.api_key}
        if with_app_key:
            headers["DD-APPLICATION-KEY"] = self.endpoint.application_key
        try:
            resp = self.session.request(
                method,
                f"{self.endpoint.url}{path}",
                json=payload,
                params=params,
                headers=headers,
                timeout=self.timeout,
                proxies=self.proxies,
            )
        except Exception as e:
            mapped = map_requests_error(e, f"{method} {self.endpoint.url}{path} failed")
            if mapped:
                raise mapped from e
            raise
        try:
            body = resp.json()
        except ValueError:
            body = None
        if body is not None and not isinstance(body, dict):
            body = {"data": body}
        return ApiResponse(status=resp.status_code, body=body)

    def submit_metrics(self, series: List[Dict[str, Any]]) -> ApiResponse:
        return self._request("POST", "/api/v1/series", payload={"series": series})

    def create_event(self, event: Dict[str, Any]) -> ApiResponse:
        return self._request("POST", "/api/v1/events", payload=event)

    def update_host_tags(self, host: str, tags: List[str], source: str = TAG_SOURCE) -> ApiResponse:
        """
        Replace the host's tags for the given source only; tags from other sources are kept.
        """
        return self._request(
            "PUT",
            f"/api/v1/tags/hosts/{quote(host, safe='')}",
            payload={"tags": list(tags)},
            params={"source": source},
            with_app_key=True,
        )

    @contextmanager
    def scoped_proxies(self, proxies: Optional[Dict[str, str]]) -> Iterator["DatadogClient"]:
        """
        Route requests through proxies for the duration of the block, then restore.
        """
        previous = self.proxies
        if proxies:
            self.proxies = dict(proxies)
        try:
            yield self
        finally:
            self.proxies = previous

    def close(self) -> None:
        self.session.close()


def _make_session() -> requests.Session:
    session = requests.Session()
    session.headers.update({"User-Agent": USER_AGENT, "Content-Type": "application/json"})
    # One run talks to each endpoint a handful of times; a small pool is enough.
    adapter = HTTPAdapter(pool_connections=1, pool_maxsize=2)
    session.mount("https://", adapter)
    session.mount("http://", adapter)
    return session


def make_client(endpoint: Endpoint, timeout: float = DEFAULT_TIMEOUT) -> DatadogClient:
    return DatadogClient(endpoint, timeout=timeout)
