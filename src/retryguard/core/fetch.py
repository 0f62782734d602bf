"""Guarded HTTP fetch with SSRF protection and a hard timeout.

``guarded_fetch`` performs exactly one request. Before any network traffic
the URL is validated: only http/https, no loopback or internal hostnames,
and neither the literal host nor any address it resolves to may be
non-public. IPv6 addresses that carry an IPv4 address (mapped, compatible,
6to4, NAT64) are judged by the IPv4 address they carry. Validation and the
request share one ``timeout``; expiry cancels whichever is in flight and
raises FetchTimeoutError.

The hostname is resolved once for validation and again by httpx when it
connects. A DNS server that answers differently between the two lookups
(DNS rebinding) is not detected here; pin resolution in the transport when
fetching hostnames an attacker controls.

Retries are not performed here; compose with ``execute_with_retry``:

    response = await execute_with_retry(
        lambda: guarded_fetch(url, 10.0, raise_for_status=True),
        RetryConfig(max_attempts=3),
    )
"""

from __future__ import annotations

import asyncio
import ipaddress
import logging
import socket
from typing import Any, Optional, Union
from urllib.parse import urlparse

import httpx

from retryguard.core.cancellation import CancellationToken, run_cancellable
from retryguard.core.errors.fetch import (
    FetchError,
    FetchTimeoutError,
    UrlValidationError,
)
from retryguard.core.observability import audit_log, redact_secrets

logger = logging.getLogger(__name__)

IPAddress = Union[ipaddress.IPv4Address, ipaddress.IPv6Address]

MAX_URL_LENGTH = 2048
DNS_TIMEOUT = 5.0  # upper bound for one resolution, in seconds

BLOCKED_HOSTS = frozenset({"localhost", "ip6-localhost", "ip6-loopback"})
BLOCKED_HOST_SUFFIXES = (".local", ".internal", ".localhost")

# Not global, but not flagged by the ipaddress properties either
_EXTRA_BLOCKED_NETWORKS = (
    ipaddress.ip_network("100.64.0.0/10"),  # carrier-grade NAT
    ipaddress.ip_network("192.0.0.0/24"),  # IETF protocol assignments
)
_NAT64_PREFIX = ipaddress.ip_network("64:ff9b::/96")


def _embedded_ipv4(ip: ipaddress.IPv6Address) -> Optional[ipaddress.IPv4Address]:
    """Return the IPv4 address an IPv6 transition address delivers to."""
    if ip.ipv4_mapped is not None:
        return ip.ipv4_mapped
    if ip.sixtofour is not None:
        return ip.sixtofour
    packed = ip.packed
    # NAT64 (64:ff9b::a.b.c.d) and IPv4-compatible (::a.b.c.d, excluding :: and ::1)
    if ip in _NAT64_PREFIX or (packed[:12] == bytes(12) and int(ip) > 1):
        return ipaddress.IPv4Address(packed[12:])
    return None


def _is_blocked_address(ip: IPAddress) -> bool:
    if isinstance(ip, ipaddress.IPv6Address):
        ip = _embedded_ipv4(ip) or ip
    return (
        ip.is_unspecified
        or ip.is_loopback
        or ip.is_link_local
        or ip.is_private
        or ip.is_multicast
        or ip.is_reserved
        or any(ip in network for network in _EXTRA_BLOCKED_NETWORKS if network.version == ip.version)
    )


def is_private_ip(ip_str: str) -> bool:
    """Check if an IP address is private, reserved or otherwise non-public.

    Args:
        ip_str: IP address as string (IPv4 or IPv6, optionally with a
            ``%zone`` suffix).

    Returns:
        True if the address must not be fetched, or is not a valid IP.
    """
    try:
        ip = ipaddress.ip_address(ip_str.split("%", 1)[0])
    except ValueError:
        # Unparseable input is never trusted
        return True
    return _is_blocked_address(ip)


def _addresses(addr_info: list) -> list[str]:
    return sorted({str(info[4][0]) for info in addr_info})


def _resolution_failed(hostname: str, reason: str) -> UrlValidationError:
    return UrlValidationError(hostname, f"DNS resolution {reason}", error_code="INVALID_URL")


def _lookup(hostname: str) -> list[str]:
    """Resolve *hostname* with the system resolver (blocking)."""
    try:
        return _addresses(socket.getaddrinfo(hostname, None, socket.AF_UNSPEC, socket.SOCK_STREAM))
    except OSError as e:
        raise _resolution_failed(hostname, f"failed: {e}") from e


async def _lookup_async(hostname: str, timeout: float) -> list[str]:
    """Resolve *hostname* on the running loop.

    Raises:
        asyncio.TimeoutError: Resolution took longer than *timeout*.
        UrlValidationError: The resolver reported an error.
    """
    loop = asyncio.get_running_loop()
    try:
        addr_info = await asyncio.wait_for(
            loop.getaddrinfo(hostname, None, family=socket.AF_UNSPEC, type=socket.SOCK_STREAM),
            timeout=timeout,
        )
    except asyncio.TimeoutError:
        raise
    except OSError as e:
        raise _resolution_failed(hostname, f"failed: {e}") from e
    return _addresses(addr_info)


def _check_url(url: str) -> Optional[str]:
    """Check everything that needs no DNS.

    Returns:
        The normalized hostname when it still has to be resolved, or
        ``None`` for an IP literal that already passed.
    """
    if len(url) > MAX_URL_LENGTH:
        raise UrlValidationError(
            url,
            f"URL too long: {len(url)} chars (max {MAX_URL_LENGTH})",
            error_code="INVALID_URL",
        )

    try:
        parsed = urlparse(url)
        hostname = parsed.hostname
    except ValueError as e:
        raise UrlValidationError(url, f"Failed to parse URL: {e}", error_code="INVALID_URL") from e

    if parsed.scheme not in ("http", "https"):
        raise UrlValidationError(
            url,
            f"Invalid scheme: {parsed.scheme!r}. Only http/https allowed.",
            error_code="INVALID_URL",
        )
    if not hostname:
        raise UrlValidationError(url, "No hostname in URL", error_code="INVALID_URL")

    try:
        literal = ipaddress.ip_address(hostname.split("%", 1)[0])
    except ValueError:
        literal = None
    if literal is not None:
        if _is_blocked_address(literal):
            raise UrlValidationError(url, f"Blocked private IP address: {hostname}", error_code="BLOCKED_HOST")
        return None

    try:
        hostname = hostname.encode("idna").decode("ascii")
    except UnicodeError:
        pass
    hostname = hostname.lower().rstrip(".")
    if hostname in BLOCKED_HOSTS or hostname.endswith(BLOCKED_HOST_SUFFIXES):
        raise UrlValidationError(url, f"Blocked internal host: {hostname}", error_code="BLOCKED_HOST")
    return hostname


def _check_resolved(url: str, hostname: str, resolved_ips: list[str]) -> None:
    blocked = [ip for ip in resolved_ips if is_private_ip(ip)]
    if blocked:
        raise UrlValidationError(
            url,
            f"Hostname {hostname} resolves to blocked private IP: {blocked[0]}",
            error_code="BLOCKED_HOST",
        )


def validate_url(url: str, resolve_dns: bool = True) -> None:
    """Validate URL for safe fetching (SSRF protection).

    Resolution here blocks on the system resolver; use
    :func:`validate_url_async` inside an event loop.

    Args:
        url: The URL to validate.
        resolve_dns: Whether to resolve the hostname and validate resolved IPs.

    Raises:
        UrlValidationError: If the URL is malformed or targets a blocked host.
    """
    hostname = _check_url(url)
    if resolve_dns and hostname:
        _check_resolved(url, hostname, _lookup(hostname))


async def validate_url_async(url: str, resolve_dns: bool = True) -> None:
    """Async URL validation for safe fetching (SSRF protection).

    Args:
        url: The URL to validate.
        resolve_dns: Whether to resolve the hostname and validate resolved IPs.

    Raises:
        UrlValidationError: If the URL is malformed, targets a blocked host,
            or the hostname cannot be resolved within DNS_TIMEOUT.
    """
    hostname = _check_url(url)
    if resolve_dns and hostname:
        try:
            resolved = await _lookup_async(hostname, DNS_TIMEOUT)
        except asyncio.TimeoutError as e:
            raise _resolution_failed(hostname, f"timed out after {DNS_TIMEOUT}s") from e
        _check_resolved(url, hostname, resolved)


async def _send(
    client: Optional[httpx.AsyncClient],
    method: str,
    url: str,
    request_kwargs: dict[str, Any],
) -> httpx.Response:
    if client is not None:
        return await client.request(method, url, **request_kwargs)
    async with httpx.AsyncClient(follow_redirects=False) as owned:
        return await owned.request(method, url, **request_kwargs)


async def _validated_send(
    url: str,
    resolve_dns: bool,
    dns_timeout: float,
    client: Optional[httpx.AsyncClient],
    method: str,
    request_kwargs: dict[str, Any],
) -> httpx.Response:
    hostname = _check_url(url)
    if resolve_dns and hostname:
        _check_resolved(url, hostname, await _lookup_async(hostname, dns_timeout))
    return await _send(client, method, url, request_kwargs)


async def guarded_fetch(
    url: str,
    timeout: Optional[float] = None,
    *,
    method: str = "GET",
    client: Optional[httpx.AsyncClient] = None,
    cancel_token: Optional[CancellationToken] = None,
    resolve_dns: Optional[bool] = None,
    raise_for_status: bool = False,
    **request_kwargs: Any,
) -> httpx.Response:
    """Fetch *url* once, refusing private targets and bounding the wait.

    Args:
        url: Absolute http(s) URL.
        timeout: Seconds for validation plus the request (defaults to the
            ``fetch_timeout`` setting).
        method: HTTP method.
        client: Optional shared AsyncClient; a private one is created and
            closed otherwise.
        cancel_token: Optional token that aborts the in-flight request.
        resolve_dns: Resolve the hostname and reject private resolved IPs
            (defaults to the ``resolve_dns`` setting).
        raise_for_status: Raise ``httpx.HTTPStatusError`` for non-2xx replies.
        **request_kwargs: Passed to ``AsyncClient.request`` (headers, json, ...).

    Returns:
        The response.

    Raises:
        UrlValidationError: URL rejected before any network call.
        FetchTimeoutError: No response within ``timeout``, including a
            stalled DNS lookup (code ETIMEDOUT).
        FetchError: Transport-level failure.
        OperationCancelledError: The cancellation token fired.
        httpx.HTTPStatusError: Non-2xx response with ``raise_for_status``.
    """
    if timeout is None or resolve_dns is None:
        from retryguard.config import get_settings

        settings = get_settings()
        timeout = settings.fetch_timeout if timeout is None else timeout
        resolve_dns = settings.resolve_dns if resolve_dns is None else resolve_dns
    if timeout <= 0:
        raise ValueError(f"timeout must be > 0, got {timeout}")

    if cancel_token is not None:
        cancel_token.raise_if_cancelled(phase="fetch")

    send = _validated_send(url, resolve_dns, min(DNS_TIMEOUT, timeout), client, method, request_kwargs)
    try:
        response = await run_cancellable(
            asyncio.wait_for(send, timeout=timeout),
            cancel_token,
            phase="fetch",
        )
    except UrlValidationError as e:
        logger.warning("Blocked fetch: %s", e.reason)
        audit_log("fetch_blocked", url=redact_secrets(url), reason=e.reason, error_code=e.error_code)
        raise
    except (asyncio.TimeoutError, httpx.TimeoutException) as e:
        logger.warning("Fetch timed out after %.2fs", timeout)
        audit_log("fetch_timeout", url=redact_secrets(url), timeout_seconds=timeout)
        raise FetchTimeoutError(
            f"Request timed out after {timeout}s",
            timeout_seconds=timeout,
            url=url,
        ) from e
    except httpx.TransportError as e:
        raise FetchError(
            f"Fetch failed: {redact_secrets(str(e)) or type(e).__name__}",
            code=type(e).__name__,
        ) from e

    if raise_for_status:
        response.raise_for_status()
    return response
