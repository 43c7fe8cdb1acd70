from __future__ import annotations

import pytest
import requests

from chef_handler_datadog.events import (
    COMPILE_FAILURE_TEXT,
    Event,
    build_event,
    defined_at,
    emit_event,
    pluralize,
)
from chef_handler_datadog.model import Resource, RunException
from conftest import NOT_JSON


@pytest.mark.parametrize(
    "number, expected",
    [
        (0, "less than 1 second"),
        (0.5, "less than 1 second"),
        (1, "less than 1 second"),
        (1.4, "1 second"),
        (1.5, "2 seconds"),
        (2, "2 seconds"),
        (2.5, "3 seconds"),
        (8, "8 seconds"),
    ],
)
def test_pluralize(number, expected) -> None:
    assert pluralize(number, "second") == expected


def test_pluralize_falls_back_for_non_numbers() -> None:
    assert pluralize("soon", "second") == "soon seconds"


def test_defined_at_variants() -> None:
    full = Resource(name="x", cookbook_name="nginx", recipe_name="default", source_line="/c/nginx/recipes/default.rb:12:in `from_file'")
    file_only = Resource(name="x", source_line="/tmp/recipe.rb:7")
    dynamic = Resource(name="x", cookbook_name="nginx", recipe_name="default")
    assert defined_at(full) == "nginx::default line 12"
    assert defined_at(file_only) == "/tmp/recipe.rb line 7"
    assert defined_at(dynamic) == "dynamically defined"


def test_successful_run_event(run_status_factory) -> None:
    status = run_status_factory(elapsed_time=5)
    event = build_event("h", status, tags=["env:testing"])
    assert event.title == "Chef completed in 5 seconds on h "
    assert event.text == "Chef updated 0 resources out of 0 resources total."
    assert event.alert_type == "success"
    assert event.priority == "low"
    assert event.tags == ["env:testing"]


def test_updated_resources_listed_in_full_on_success(run_status_factory) -> None:
    resources = [Resource(name=f"r{i}", resource_type="file") for i in range(7)]
    status = run_status_factory(elapsed_time=8, all_resources=resources, updated_resources=resources)
    event = build_event("h", status)
    assert event.title == "Chef completed in 8 seconds on h "
    assert event.text.startswith("Chef updated 7 resources out of 7 resources total.\n$$$\n")
    for i in range(7):
        assert f"- file[r{i}] (dynamically defined)\n" in event.text
    assert event.text.endswith("\n$$$\n")


def test_failed_run_event(run_status_factory) -> None:
    resources = [Resource(name=n) for n in ["whiskers", "paws", "ears", "nose", "tail", "fur"]]
    exc = RunException(
        type_name="Chef::Exceptions::UnsupportedAction",
        message="Something awry.",
        backtrace=["whiskers.rb:2", "paws.rb:1", "file.rb:2", "file.rb:1"],
    )
    status = run_status_factory(
        success=False,
        elapsed_time=2,
        all_resources=resources,
        updated_resources=resources,
        exception=exc,
    )
    event = build_event("h", status, failure_notifications=["@alice", "@bob"])

    assert event.title == "Chef failed in 2 seconds on h "
    assert event.alert_type == "error"
    assert event.priority == "normal"
    # Only the last five updated resources are listed on failure
    assert "- whiskers " not in event.text
    for name in ["paws", "ears", "nose", "tail", "fur"]:
        assert f"- {name} (dynamically defined)\n" in event.text
    assert "\nAlerting: @alice @bob\n" in event.text
    assert "\n$$$\nChef::Exceptions::UnsupportedAction: Something awry.\n$$$\n" in event.text
    assert event.text.endswith("\n$$$\nwhiskers.rb:2\npaws.rb:1\nfile.rb:2\nfile.rb:1\n$$$\n")


def test_failed_run_without_handles_has_no_alerting_line(run_status_factory) -> None:
    status = run_status_factory(success=False, elapsed_time=3, exception=RunException("RuntimeError", "boom"))
    assert "Alerting:" not in build_event("h", status).text


def test_compile_failure_event(run_status_factory) -> None:
    status = run_status_factory(success=False, elapsed_time=None, exception=RunException("NameError", "x"))
    event = build_event("h", status, failure_notifications=["@alice"], tags=["env:testing"])
    assert event.title == "Chef failed during compile phase on h "
    assert event.text == COMPILE_FAILURE_TEXT
    assert event.alert_type == "error"
    assert event.priority == "normal"
    assert event.tags == ["env:testing"]


def test_emit_event_payload(client, session) -> None:
    event = Event(title="t", text="body", alert_type="success", priority="low", host="h", tags=["env:x"])
    assert emit_event(client, event) is True
    call = session.calls[0]
    assert call["method"] == "POST"
    assert call["url"] == "https://app.datadoghq.com/api/v1/events"
    assert call["json"]["source_type_name"] == "chef"
    assert call["json"]["event_type"] == "config_management.run"
    assert call["json"]["tags"] == ["env:x"]
    assert call["json"]["host"] == "h"
    assert "DD-APPLICATION-KEY" not in call["headers"]


@pytest.mark.parametrize(
    "response, expected",
    [
        ((500, {"errors": ["oops"]}), False),
        ((202, NOT_JSON), True),
        ((502, NOT_JSON), False),
        (requests.Timeout("slow"), False),
    ],
)
def test_emit_event_never_raises(client, session, response, expected) -> None:
    session.queue("events", response)
    event = Event(title="t", text="body", alert_type="success", priority="low", host="h")
    assert emit_event(client, event) is expected
