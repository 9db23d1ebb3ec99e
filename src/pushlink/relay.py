"""
Sinks that deliver push requests.

A peer hands every encrypted push request to a PushSink. Two HTTP sinks are
provided: PushProxy posts straight to the push service after checking the
endpoint host against an allowlist, and RelayClient posts the relay JSON
form to a remote PushProxy. ``create_relay_app`` exposes a PushProxy as an
aiohttp application.
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from typing import Iterable, Optional
from urllib.parse import urlsplit

import aiohttp
from aiohttp import web

from .config import RelayConfig
from .payload import PushRequest
from .types import DeliveryFailureError, UnknownEndpointError

logger = logging.getLogger(__name__)

RELAY_PATH = "/push-proxy"


class PushSink(ABC):
    """Interface for delivering push requests."""

    @abstractmethod
    async def deliver(self, request: PushRequest) -> None:
        """
        Deliver one push request.

        Raises:
            UnknownEndpointError: If the endpoint is not acceptable
            DeliveryFailureError: If delivery failed
        """
        ...


def is_endpoint_allowed(endpoint: str, allowlist: Iterable[str]) -> bool:
    """
    Check an endpoint host against an allowlist.

    Entries are exact hostnames or "*.suffix" wildcards. A wildcard matches
    strict subdomains of the suffix only: "*.googleapis.com" accepts
    "fcm.googleapis.com" but neither "googleapis.com" nor
    "evilgoogleapis.com".

    Args:
        endpoint: Push endpoint URL
        allowlist: Allowlist entries

    Returns:
        True if the endpoint is an http(s) URL on an allowed host
    """
    try:
        parts = urlsplit(endpoint)
        hostname = parts.hostname
    except ValueError:
        return False

    if parts.scheme not in ("http", "https") or not hostname:
        return False

    hostname = hostname.lower()
    for entry in allowlist:
        entry = entry.strip().lower()
        if not entry:
            continue
        if entry.startswith("*."):
            if hostname.endswith(entry[1:]):
                return True
        elif hostname == entry:
            return True
    return False


class PushProxy(PushSink):
    """
    Forwards push requests to push services on an allowlist.

    Example usage:
        ```python
        proxy = PushProxy(RelayConfig.default_push_services())
        await proxy.deliver(request)
        ```
    """

    def __init__(self, config: Optional[RelayConfig] = None) -> None:
        self._config = config or RelayConfig.from_env()

    @property
    def config(self) -> RelayConfig:
        return self._config

    def sanitize_endpoint(self, endpoint: str) -> str:
        """
        Return the endpoint if it may be forwarded to.

        Raises:
            UnknownEndpointError: If the endpoint is invalid or not allowed
        """
        if not is_endpoint_allowed(endpoint, self._config.allowlist):
            logger.warning(
                f"Rejected endpoint {endpoint}; allowed hosts are: {', '.join(self._config.allowlist)}"
            )
            raise UnknownEndpointError(endpoint)
        return endpoint

    async def deliver(self, request: PushRequest) -> None:
        endpoint = self.sanitize_endpoint(request.endpoint)
        timeout = aiohttp.ClientTimeout(total=self._config.timeout.total_seconds())

        try:
            async with aiohttp.ClientSession(timeout=timeout) as session:
                async with session.post(endpoint, data=request.body, headers=request.headers) as response:
                    text = await response.text()
                    logger.debug(f"Push service responded {response.status} for {endpoint}")
                    if response.status >= 400:
                        raise DeliveryFailureError(
                            f"Push service responded {response.status}: {text[:200]}",
                            status=response.status,
                        )
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            logger.error(f"Error sending push notification to {endpoint}: {e}")
            raise DeliveryFailureError(f"Failed to send push notification: {e}") from e


class RelayClient(PushSink):
    """Posts push requests to a remote relay in the relay JSON form."""

    def __init__(self, config: RelayConfig) -> None:
        if not config.proxy_url:
            raise ValueError("RelayClient requires a proxy_url")
        self._config = config

    async def deliver(self, request: PushRequest) -> None:
        timeout = aiohttp.ClientTimeout(total=self._config.timeout.total_seconds())

        try:
            async with aiohttp.ClientSession(timeout=timeout) as session:
                async with session.post(self._config.proxy_url, json=request.to_relay_json()) as response:
                    if response.status == 400:
                        raise UnknownEndpointError(request.endpoint)
                    if response.status >= 400:
                        raise DeliveryFailureError(
                            f"Relay responded {response.status}",
                            status=response.status,
                        )
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            logger.error(f"Error posting to relay {self._config.proxy_url}: {e}")
            raise DeliveryFailureError(f"Failed to reach relay: {e}") from e


def create_relay_app(proxy: PushProxy) -> web.Application:
    """
    Build an aiohttp application serving ``POST /push-proxy``.

    Malformed requests and disallowed endpoints answer 400, delivery
    failures answer 502.
    """

    async def handle_push(request: web.Request) -> web.Response:
        try:
            data = await request.json()
        except ValueError:
            return web.json_response({"error": "Invalid JSON"}, status=400)
        if not isinstance(data, dict):
            return web.json_response({"error": "Invalid request"}, status=400)

        try:
            push_request = PushRequest.from_relay_json(data)
        except DeliveryFailureError as e:
            return web.json_response({"error": str(e)}, status=400)

        try:
            await proxy.deliver(push_request)
        except UnknownEndpointError:
            return web.json_response({"error": "Invalid endpoint"}, status=400)
        except DeliveryFailureError:
            # Push service errors, 4xx included, are upstream failures
            return web.json_response({"error": "Failed to send push notification"}, status=502)

        return web.json_response({"success": True})

    app = web.Application()
    app.router.add_post(RELAY_PATH, handle_push)
    return app
