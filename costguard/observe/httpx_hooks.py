"""httpx response hooks that feed provider responses to a BudgetGuard.

Usage:
    client = httpx.Client()
    install(client, guard)
    client.post("https://api.openai.com/v1/chat/completions", json=...)  # charged to guard

Works with httpx.Client (sync hook, guard.observe_sync) and httpx.AsyncClient
(async hook, guard.observe). Soft-mode BudgetExceededError propagates out of the
request call that tripped the budget.
"""

import json
import logging
from typing import Any, Iterable, Optional, Tuple, Union

import httpx

from costguard.core.attributor import model_hint_from_request
from costguard.core.guard import BudgetGuard

logger = logging.getLogger(__name__)

KNOWN_PROVIDER_HOSTS = ("api.openai.com", "api.anthropic.com")
SOURCE = "httpx"

_UNPARSED = object()


def is_provider_host(url: httpx.URL, hosts: Iterable[str]) -> bool:
    host = (url.host or "").lower()
    return any(host == h or host.endswith("." + h) for h in hosts)


def _should_inspect(response: httpx.Response, hosts: Tuple[str, ...]) -> bool:
    if not is_provider_host(response.request.url, hosts):
        return False
    content_type = response.headers.get("content-type", "").lower()
    # Streams are accounted chunk by chunk by the caller, not here.
    if "text/event-stream" in content_type:
        return False
    return "json" in content_type


def _request_body(request: httpx.Request) -> Optional[bytes]:
    try:
        return request.content
    except httpx.RequestNotRead:
        return None


def _parse_body(response: httpx.Response) -> Any:
    try:
        return json.loads(response.content)
    except ValueError:
        return _UNPARSED


def _observe_sync(guard: BudgetGuard, response: httpx.Response) -> None:
    url = str(response.request.url)
    hint = model_hint_from_request(url, _request_body(response.request))
    payload = _parse_body(response)
    if payload is _UNPARSED:
        if not guard.enabled:
            return
        logger.debug("Unparseable provider response from %s, charging conservative estimate", url)
        guard.record_sync(guard.attributor.attribute_unparsed(hint, url, SOURCE))
        return
    guard.observe_sync(payload, model_hint=hint, source_url=url, source=SOURCE)


async def _observe_async(guard: BudgetGuard, response: httpx.Response) -> None:
    url = str(response.request.url)
    hint = model_hint_from_request(url, _request_body(response.request))
    payload = _parse_body(response)
    if payload is _UNPARSED:
        if not guard.enabled:
            return
        logger.debug("Unparseable provider response from %s, charging conservative estimate", url)
        await guard.record(guard.attributor.attribute_unparsed(hint, url, SOURCE))
        return
    await guard.observe(payload, model_hint=hint, source_url=url, source=SOURCE)


def install(
    client: Union[httpx.Client, httpx.AsyncClient],
    guard: BudgetGuard,
    extra_hosts: Optional[Iterable[str]] = None,
) -> None:
    """Attach a response hook to client that charges provider responses to guard.

    Args:
        client: httpx.Client or httpx.AsyncClient
        guard: Guard receiving the observed responses
        extra_hosts: Additional hosts to treat as providers (e.g. an Azure or self-hosted gateway)
    """
    hosts = KNOWN_PROVIDER_HOSTS + tuple(h.lower() for h in (extra_hosts or ()))

    if isinstance(client, httpx.AsyncClient):

        async def async_hook(response: httpx.Response) -> None:
            if not _should_inspect(response, hosts):
                return
            await response.aread()
            await _observe_async(guard, response)

        client.event_hooks["response"].append(async_hook)
        return

    def hook(response: httpx.Response) -> None:
        if not _should_inspect(response, hosts):
            return
        response.read()
        _observe_sync(guard, response)

    client.event_hooks["response"].append(hook)
