from __future__ import annotations

from dataclasses import dataclass
from typing import List

from ..config import HandlerConfig
from ..logging import get_logger
from ..util.errors import ConfigError

LOG = get_logger(__name__)

DEFAULT_URL = "https://app.datadoghq.com"
APP_KEY_HELP = (
    "You need an application key to let Chef tag your nodes in Datadog. "
    "Visit https://app.datadoghq.com/account/settings#api to create one and "
    "update your datadog attributes in the datadog cookbook."
)


@dataclass(frozen=True)
class Endpoint:
    url: str
    api_key: str
    application_key: str

    def __repr__(self) -> str:
        return f"Endpoint(url={self.url!r})"


def primary_url(config: HandlerConfig) -> str:
    if config.url:
        return config.url.rstrip("/")
    if config.site:
        return f"https://app.{config.site}"
    return DEFAULT_URL


def resolve_endpoints(config: HandlerConfig) -> List[Endpoint]:
    """
    Return the primary endpoint followed by every valid extra endpoint, in order.

    Missing primary credentials raise ConfigError. Extra endpoints with missing
    credentials are dropped with a warning.
    """
    url = primary_url(config)
    if not config.api_key:
        raise ConfigError("Missing Datadog API key")
    if not config.application_key:
        LOG.warning(APP_KEY_HELP)
        raise ConfigError("Missing Datadog Application Key")

    endpoints = [Endpoint(url=url, api_key=config.api_key, application_key=config.application_key)]
    for idx, extra in enumerate(config.extra_endpoints):
        extra_url = (extra.get("api_url") or extra.get("url") or url).rstrip("/")
        api_key = extra.get("api_key")
        application_key = extra.get("application_key")
        if not api_key:
            LOG.warning(
                "Dropping extra endpoint without an API key",
                extra={"endpoint": extra_url, "index": idx},
            )
            continue
        if not application_key:
            LOG.warning(
                "Dropping extra endpoint without an application key",
                extra={"endpoint": extra_url, "index": idx},
            )
            continue
        endpoints.append(Endpoint(url=extra_url, api_key=api_key, application_key=application_key))
    return endpoints
