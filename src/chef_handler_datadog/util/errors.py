from __future__ import annotations

from enum import IntEnum


class ExitCode(IntEnum):
    OK = 0
    CONFIG_ERROR = 2
    DELIVERY_ERROR = 4
    RUNTIME_ERROR = 5


class HandlerError(Exception):
    """Base error for the Datadog report handler."""


class ConfigError(HandlerError):
    """Raised for configuration or argument issues."""


class DeliveryError(HandlerError):
    """Raised when a single call to a Datadog endpoint fails at the transport level."""


def as_exit_code(exc: BaseException) -> int:
    if isinstance(exc, (ConfigError, ValueError)):
        return int(ExitCode.CONFIG_ERROR)
    if isinstance(exc, DeliveryError):
        return int(ExitCode.DELIVERY_ERROR)
    if isinstance(exc, HandlerError):
        return int(ExitCode.RUNTIME_ERROR)
    return 1


def _requests_error_types() -> tuple[type[BaseException], ...]:
    from requests.exceptions import RequestException

    return (RequestException,)


def is_requests_error(exc: BaseException) -> bool:
    """
    Return True if the exception comes from the requests/urllib3 transport stack.
    """
    if isinstance(exc, _requests_error_types()):
        return True
    module = exc.__class__.__module__
    return module.startswith("requests.") or module.startswith("urllib3.")


def map_requests_error(exc: BaseException, context: str) -> DeliveryError | None:
    """
    Wrap transport errors with DeliveryError so callers handle one type.
    """
    if isinstance(exc, (ConnectionError, TimeoutError)) or is_requests_error(exc):
        return DeliveryError(f"{context}: {exc}")
    return None
