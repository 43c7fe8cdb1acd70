from __future__ import annotations

import pytest
import requests

from chef_handler_datadog.api.client import DatadogClient, resolve_proxies
from chef_handler_datadog.util.errors import DeliveryError, ExitCode, as_exit_code, map_requests_error
from conftest import NOT_JSON


def test_resolve_proxies_from_environment() -> None:
    assert resolve_proxies({}) is None
    assert resolve_proxies({"DATADOG_PROXY": "  "}) is None
    assert resolve_proxies({"DATADOG_PROXY": "http://proxy:3128"}) == {
        "http": "http://proxy:3128",
        "https": "http://proxy:3128",
    }


def test_scoped_proxies_restored_after_block(client, session) -> None:
    proxies = {"http": "http://proxy:3128", "https": "http://proxy:3128"}
    with client.scoped_proxies(proxies):
        client.submit_metrics([])
    client.submit_metrics([])
    assert session.calls[0]["proxies"] == proxies
    assert session.calls[1]["proxies"] is None
    assert client.proxies is None


def test_scoped_proxies_restored_on_error(client) -> None:
    with pytest.raises(RuntimeError):
        with client.scoped_proxies({"https": "http://proxy:3128"}):
            raise RuntimeError("boom")
    assert client.proxies is None


def test_update_host_tags_quotes_hostname(client, session) -> None:
    client.update_host_tags("host/with space", ["a:b"])
    assert session.calls[0]["url"].endswith("/api/v1/tags/hosts/host%2Fwith%20space")


def test_timeout_passed_to_session(endpoint, session) -> None:
    c = DatadogClient(endpoint, timeout=3.0, session=session)
    c.create_event({"title": "t"})
    assert session.calls[0]["timeout"] == 3.0


def test_non_json_body_is_none(client, session) -> None:
    session.queue("events", (202, NOT_JSON))
    resp = client.create_event({"title": "t"})
    assert resp.ok
    assert resp.body is None


def test_not_found_flag(client, session) -> None:
    session.queue("tags", (404, {"errors": ["Not Found"]}))
    resp = client.update_host_tags("h", [])
    assert resp.not_found
    assert not resp.ok


def test_transport_errors_become_delivery_errors(client, session) -> None:
    session.queue("series", requests.ConnectionError("refused"))
    with pytest.raises(DeliveryError):
        client.submit_metrics([])


def test_other_errors_propagate(client, session) -> None:
    session.queue("series", KeyError("bug"))
    with pytest.raises(KeyError):
        client.submit_metrics([])


def test_map_requests_error_and_exit_codes() -> None:
    assert isinstance(map_requests_error(requests.Timeout("slow"), "ctx"), DeliveryError)
    assert isinstance(map_requests_error(ConnectionRefusedError("refused"), "ctx"), DeliveryError)
    assert map_requests_error(KeyError("x"), "ctx") is None
    assert as_exit_code(DeliveryError("x")) == int(ExitCode.DELIVERY_ERROR)


def test_close_closes_session(client, session) -> None:
    client.close()
    assert session.closed
