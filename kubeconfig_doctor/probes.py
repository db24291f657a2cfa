"""Network probes: raw TCP reachability and API server identity checks."""

from __future__ import annotations

import asyncio
import contextlib
import logging
from dataclasses import dataclass
from enum import Enum
from urllib.parse import urlsplit

import httpx

from kubeconfig_doctor.client import (
    ClientConfig,
    ClientConfigError,
    ServerVersion,
    build_client,
    fetch_version,
)

logger = logging.getLogger(__name__)


class ReachabilityStatus(str, Enum):
    NOT_CONFIGURED = "not configured"
    REACHABLE = "reachable"
    UNREACHABLE = "unreachable"


@dataclass(frozen=True)
class Reachability:
    status: ReachabilityStatus
    url: str | None = None
    target: str | None = None
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.status is not ReachabilityStatus.UNREACHABLE


class IdentityStatus(str, Enum):
    CONNECTED = "connected"
    REJECTED = "rejected"
    UNREACHABLE = "unreachable"
    MISCONFIGURED = "misconfigured"


@dataclass(frozen=True)
class IdentityResult:
    status: IdentityStatus
    version: ServerVersion | None = None
    status_code: int | None = None
    error: BaseException | None = None

    @property
    def server_up(self) -> bool:
        """True when an HTTP response came back that was not a server fault."""
        return self.status in (IdentityStatus.CONNECTED, IdentityStatus.REJECTED)


def target_address(url: str) -> tuple[str, int]:
    """Host and port of ``url``; 443 for https and 80 otherwise when no port is given."""
    parts = urlsplit(url)
    if not parts.hostname:
        raise ValueError(f"no host in URL {url!r}")
    port = parts.port
    if port is None:
        port = 443 if parts.scheme == "https" else 80
    return parts.hostname, port


async def probe_reachable(url: str | None, timeout: float) -> Reachability:
    """Open a bare TCP connection to the URL's host and port.

    No TLS handshake and no HTTP exchange happen; this only tells whether
    something accepts connections there.
    """
    if not url:
        return Reachability(ReachabilityStatus.NOT_CONFIGURED)

    try:
        host, port = target_address(url)
    except ValueError as exc:
        return Reachability(ReachabilityStatus.UNREACHABLE, url=url, error=str(exc))

    target = f"{host}:{port}"
    try:
        _, writer = await asyncio.wait_for(asyncio.open_connection(host, port), timeout)
    except asyncio.TimeoutError:
        logger.info(f"Timed out connecting to {target} after {timeout:g}s")
        return Reachability(
            ReachabilityStatus.UNREACHABLE,
            url=url,
            target=target,
            error=f"timed out after {timeout:g}s",
        )
    except OSError as exc:
        logger.info(f"Cannot connect to {target}: {exc}")
        return Reachability(ReachabilityStatus.UNREACHABLE, url=url, target=target, error=str(exc))

    writer.close()
    with contextlib.suppress(OSError):
        await writer.wait_closed()
    return Reachability(ReachabilityStatus.REACHABLE, url=url, target=target)


def classify_status(status_code: int) -> IdentityStatus:
    if 200 <= status_code < 300:
        return IdentityStatus.CONNECTED
    if 400 <= status_code < 500:
        return IdentityStatus.REJECTED
    return IdentityStatus.UNREACHABLE


def _timed_out(timeout: float) -> IdentityResult:
    logger.info(f"API request did not complete within {timeout:g}s")
    return IdentityResult(
        IdentityStatus.UNREACHABLE, error=TimeoutError(f"no answer within {timeout:g}s")
    )


async def _fetch_identity(
    config: ClientConfig,
    timeout: float,
    transport: httpx.AsyncBaseTransport | None,
) -> IdentityResult:
    try:
        client = await build_client(config, timeout, transport=transport)
    except ClientConfigError as exc:
        return IdentityResult(IdentityStatus.MISCONFIGURED, error=exc)

    async with client:
        try:
            version = await fetch_version(client)
        except httpx.HTTPStatusError as exc:
            code = exc.response.status_code
            return IdentityResult(classify_status(code), status_code=code, error=exc)
        except httpx.HTTPError as exc:
            return IdentityResult(IdentityStatus.UNREACHABLE, error=exc)
        except ValueError as exc:
            # 2xx without version JSON: something answered, but not an API server
            return IdentityResult(IdentityStatus.UNREACHABLE, error=exc)

    return IdentityResult(IdentityStatus.CONNECTED, version=version, status_code=200)


async def probe_identity(
    config: ClientConfig,
    timeout: float,
    transport: httpx.AsyncBaseTransport | None = None,
) -> IdentityResult:
    """Fetch the server version with full credentials.

    4xx means the server is up but refused us; transport failures and 5xx
    mean it could not be reached. ``timeout`` bounds the whole probe,
    credential plugins included.
    """
    try:
        return await asyncio.wait_for(_fetch_identity(config, timeout, transport), timeout)
    except asyncio.TimeoutError:
        return _timed_out(timeout)


async def _fetch_root(
    config: ClientConfig,
    timeout: float,
    transport: httpx.AsyncBaseTransport | None,
) -> IdentityResult:
    try:
        client = await build_client(config.without_credentials(), timeout, transport=transport)
    except ClientConfigError as exc:
        return IdentityResult(IdentityStatus.MISCONFIGURED, error=exc)

    async with client:
        try:
            response = await client.get("/")
        except httpx.HTTPError as exc:
            return IdentityResult(IdentityStatus.UNREACHABLE, error=exc)

    code = response.status_code
    error = None
    if code >= 500:
        error = httpx.HTTPStatusError(
            f"server error {code}", request=response.request, response=response
        )
    status = IdentityStatus.CONNECTED if code < 400 else classify_status(code)
    return IdentityResult(status, status_code=code, error=error)


async def probe_anonymous(
    config: ClientConfig,
    timeout: float,
    transport: httpx.AsyncBaseTransport | None = None,
) -> IdentityResult:
    """Request ``/`` with every credential cleared.

    Any status below 500 proves the API server process answers, even though
    an anonymous request is normally refused with 401 or 403.
    """
    try:
        return await asyncio.wait_for(_fetch_root(config, timeout, transport), timeout)
    except asyncio.TimeoutError:
        return _timed_out(timeout)
