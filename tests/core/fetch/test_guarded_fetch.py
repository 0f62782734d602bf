"""Unit tests for guarded fetch and URL validation.

Tests cover:
- Private/reserved IP detection (IPv4, IPv6, IPv4-in-IPv6 forms)
- URL validation (scheme, length, blocked names, literal IPs, DNS results)
- guarded_fetch with httpx.MockTransport: success, SSRF rejection with no
  network call, timeout (including stalled DNS), transport errors, status
  errors, cancellation
- Composition with execute_with_retry
"""

import asyncio
import json
from unittest.mock import AsyncMock, patch

import httpx
import pytest

from retryguard.config import RetrySettings, set_settings
from retryguard.core.cancellation import CancellationToken
from retryguard.core.errors import (
    FetchError,
    FetchTimeoutError,
    OperationCancelledError,
    UrlValidationError,
)
from retryguard.core.fetch import (
    MAX_URL_LENGTH,
    guarded_fetch,
    is_private_ip,
    validate_url,
    validate_url_async,
)
from retryguard.core.resilience import (
    FailureKind,
    RetryConfig,
    classify_failure,
    execute_with_retry,
)

PUBLIC_IP = "93.184.216.34"


def _client(handler) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


@pytest.fixture
def public_dns():
    """Resolve every hostname to a public address."""
    with patch(
        "retryguard.core.fetch._lookup_async",
        new=AsyncMock(return_value=[PUBLIC_IP]),
    ) as mock_resolve:
        yield mock_resolve


class TestIsPrivateIp:
    """Tests for is_private_ip."""

    @pytest.mark.parametrize(
        "ip",
        [
            "127.0.0.1",
            "10.1.2.3",
            "172.16.5.4",
            "192.168.1.1",
            "169.254.169.254",
            "0.0.0.0",
            "::1",
            "fe80::1",
            "fc00::1",
            "ff02::1",
            "::ffff:127.0.0.1",
            "::ffff:10.0.0.1",
            "::",
            "::127.0.0.1",
            "64:ff9b::7f00:1",
            "2002:7f00:1::",
            "2002:a00:1::",
            "100.64.0.1",
            "fe80::1%eth0",
        ],
    )
    def test_private(self, ip):
        """Non-public addresses, including IPv6 forms of them, are blocked."""
        assert is_private_ip(ip) is True

    @pytest.mark.parametrize(
        "ip",
        [
            "8.8.8.8",
            PUBLIC_IP,
            "2001:4860:4860::8888",
            "::ffff:8.8.8.8",
            "64:ff9b::808:808",
            "2002:808:808::",
        ],
    )
    def test_public(self, ip):
        """Public addresses are allowed."""
        assert is_private_ip(ip) is False

    def test_invalid_is_treated_as_private(self):
        """Unparseable input is treated as dangerous."""
        assert is_private_ip("not-an-ip") is True


class TestValidateUrl:
    """Tests for validate_url / validate_url_async."""

    @pytest.mark.parametrize(
        "url",
        ["ftp://example.com/file", "file:///etc/passwd", "javascript:alert(1)", "example.com/path"],
    )
    def test_invalid_scheme(self, url):
        """Only http and https are accepted."""
        with pytest.raises(UrlValidationError) as exc_info:
            validate_url(url, resolve_dns=False)
        assert exc_info.value.error_code == "INVALID_URL"

    def test_missing_hostname(self):
        """A URL without a host is rejected."""
        with pytest.raises(UrlValidationError, match="No hostname"):
            validate_url("http:///path", resolve_dns=False)

    def test_too_long(self):
        """Overlong URLs are rejected."""
        url = "https://example.com/" + "a" * MAX_URL_LENGTH
        with pytest.raises(UrlValidationError, match="too long"):
            validate_url(url, resolve_dns=False)

    @pytest.mark.parametrize(
        "url",
        [
            "http://localhost:8080/",
            "http://LOCALHOST/",
            "http://printer.local/",
            "http://metadata.google.internal/computeMetadata/v1/",
            "http://app.localhost/",
            "http://127.0.0.1/x",
            "http://10.0.0.1/",
            "http://169.254.169.254/latest/meta-data/",
            "http://[::1]/",
            "http://[::ffff:127.0.0.1]/",
            "http://[::]:8080/admin",
            "http://[64:ff9b::7f00:1]/",
            "http://0.0.0.0:8000/",
            "http://localhost./",
        ],
    )
    def test_blocked_hosts(self, url):
        """Loopback, internal names, and private literals are blocked."""
        with pytest.raises(UrlValidationError) as exc_info:
            validate_url(url, resolve_dns=False)
        assert exc_info.value.error_code == "BLOCKED_HOST"

    def test_public_literal_ip_allowed(self):
        """A public IP literal passes without DNS."""
        validate_url(f"https://{PUBLIC_IP}/data")

    def test_hostname_resolving_to_private_ip(self):
        """Hostnames resolving to private addresses are blocked."""
        with patch("retryguard.core.fetch._lookup", return_value=[PUBLIC_IP, "10.0.0.5"]):
            with pytest.raises(UrlValidationError) as exc_info:
                validate_url("https://sneaky.example.com/")
        assert exc_info.value.error_code == "BLOCKED_HOST"
        assert "10.0.0.5" in exc_info.value.reason

    @pytest.mark.asyncio
    async def test_async_resolution_checked(self):
        """The async validator checks every resolved address."""
        with patch(
            "retryguard.core.fetch._lookup_async",
            new=AsyncMock(return_value=["192.168.0.10"]),
        ):
            with pytest.raises(UrlValidationError) as exc_info:
                await validate_url_async("https://rebind.example.com/")
        assert exc_info.value.error_code == "BLOCKED_HOST"

    @pytest.mark.asyncio
    async def test_async_resolution_skipped(self):
        """resolve_dns=False skips resolution entirely."""
        with patch("retryguard.core.fetch._lookup_async", new=AsyncMock()) as mock_resolve:
            await validate_url_async("https://api.example.com/", resolve_dns=False)
        mock_resolve.assert_not_called()

    @pytest.mark.asyncio
    async def test_async_resolution_timeout(self, monkeypatch):
        """A resolver that never answers fails validation after DNS_TIMEOUT."""

        async def stalled_getaddrinfo(*args, **kwargs):
            await asyncio.sleep(10)

        monkeypatch.setattr(asyncio.get_running_loop(), "getaddrinfo", stalled_getaddrinfo)
        monkeypatch.setattr("retryguard.core.fetch.DNS_TIMEOUT", 0.05)

        with pytest.raises(UrlValidationError, match="timed out"):
            await validate_url_async("https://stalled.example.com/")


class TestGuardedFetch:
    """Tests for guarded_fetch."""

    @pytest.mark.asyncio
    async def test_success(self, public_dns):
        """A public URL is fetched exactly once."""
        requests: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            requests.append(request)
            return httpx.Response(200, json={"ok": True})

        async with _client(handler) as client:
            response = await guarded_fetch("https://api.example.com/v1/items", 5.0, client=client)

        assert response.status_code == 200
        assert response.json() == {"ok": True}
        assert len(requests) == 1
        public_dns.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_request_kwargs_forwarded(self, public_dns):
        """Method, headers and body are passed to the client."""
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(201)

        async with _client(handler) as client:
            await guarded_fetch(
                "https://api.example.com/v1/items",
                5.0,
                method="POST",
                client=client,
                headers={"X-Test": "1"},
                json={"name": "widget"},
            )

        assert seen[0].method == "POST"
        assert seen[0].headers["X-Test"] == "1"
        assert json.loads(seen[0].read()) == {"name": "widget"}

    @pytest.mark.asyncio
    async def test_private_address_rejected_without_network_call(self):
        """Loopback targets fail before any request is made."""
        calls = [0]

        def handler(request: httpx.Request) -> httpx.Response:
            calls[0] += 1
            return httpx.Response(200)

        async with _client(handler) as client:
            with patch("retryguard.core.fetch.audit_log") as mock_audit:
                with pytest.raises(UrlValidationError):
                    await guarded_fetch("http://127.0.0.1/x", 1.0, client=client)

        assert calls[0] == 0
        assert mock_audit.call_args.args[0] == "fetch_blocked"

    @pytest.mark.asyncio
    async def test_unspecified_ipv6_rejected_without_network_call(self):
        """The IPv6 unspecified address reaches local listeners and is refused."""
        calls: list[str] = []

        def handler(request: httpx.Request) -> httpx.Response:
            calls.append(str(request.url))
            return httpx.Response(200)

        async with _client(handler) as client:
            with pytest.raises(UrlValidationError) as exc_info:
                await guarded_fetch("http://[::]:8080/admin", 1.0, client=client)

        assert calls == []
        assert exc_info.value.error_code == "BLOCKED_HOST"

    @pytest.mark.asyncio
    async def test_stalled_dns_bounded_by_fetch_timeout(self, monkeypatch):
        """A hanging resolver counts against the fetch timeout and is transient."""

        async def stalled_getaddrinfo(*args, **kwargs):
            await asyncio.sleep(10)

        loop = asyncio.get_running_loop()
        monkeypatch.setattr(loop, "getaddrinfo", stalled_getaddrinfo)
        calls = [0]

        def handler(request: httpx.Request) -> httpx.Response:
            calls[0] += 1
            return httpx.Response(200)

        started = loop.time()
        async with _client(handler) as client:
            with pytest.raises(FetchTimeoutError) as exc_info:
                await guarded_fetch("https://stalled.example.com/", 0.05, client=client)

        assert loop.time() - started < 1.0
        assert calls[0] == 0
        assert exc_info.value.code == "ETIMEDOUT"
        assert classify_failure(exc_info.value).kind == FailureKind.TRANSIENT

    @pytest.mark.asyncio
    async def test_dns_limit_shorter_than_fetch_timeout(self, monkeypatch):
        """The per-lookup DNS limit also surfaces as a fetch timeout."""

        async def stalled_getaddrinfo(*args, **kwargs):
            await asyncio.sleep(10)

        monkeypatch.setattr(asyncio.get_running_loop(), "getaddrinfo", stalled_getaddrinfo)
        monkeypatch.setattr("retryguard.core.fetch.DNS_TIMEOUT", 0.05)

        with pytest.raises(FetchTimeoutError):
            await guarded_fetch("https://stalled.example.com/", 5.0)

    @pytest.mark.asyncio
    async def test_timeout(self, public_dns):
        """A slow response raises FetchTimeoutError with code ETIMEDOUT."""

        async def slow_handler(request: httpx.Request) -> httpx.Response:
            await asyncio.sleep(10)
            return httpx.Response(200)

        async with _client(slow_handler) as client:
            with pytest.raises(FetchTimeoutError) as exc_info:
                await guarded_fetch("https://slow.example.com/", 0.05, client=client)

        assert exc_info.value.code == "ETIMEDOUT"
        assert exc_info.value.timeout_seconds == 0.05
        assert exc_info.value.url == "https://slow.example.com/"

    @pytest.mark.asyncio
    async def test_default_timeout_from_settings(self, public_dns):
        """Without a timeout the fetch_timeout setting applies."""
        set_settings(RetrySettings(fetch_timeout=0.05))

        async def slow_handler(request: httpx.Request) -> httpx.Response:
            await asyncio.sleep(10)
            return httpx.Response(200)

        async with _client(slow_handler) as client:
            with pytest.raises(FetchTimeoutError) as exc_info:
                await guarded_fetch("https://slow.example.com/", client=client)
        assert exc_info.value.timeout_seconds == 0.05

    @pytest.mark.asyncio
    async def test_invalid_timeout(self):
        """Non-positive timeouts are rejected."""
        with pytest.raises(ValueError):
            await guarded_fetch("https://example.com/", 0)

    @pytest.mark.asyncio
    async def test_transport_error(self, public_dns):
        """Transport failures become FetchError chained from httpx."""

        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        async with _client(handler) as client:
            with pytest.raises(FetchError) as exc_info:
                await guarded_fetch("https://down.example.com/", 1.0, client=client)

        assert not isinstance(exc_info.value, FetchTimeoutError)
        assert isinstance(exc_info.value.__cause__, httpx.ConnectError)
        assert exc_info.value.code == "ConnectError"

    @pytest.mark.asyncio
    async def test_status_returned_by_default(self, public_dns):
        """Non-2xx responses are returned unless raise_for_status is set."""

        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(503)

        async with _client(handler) as client:
            response = await guarded_fetch("https://api.example.com/", 1.0, client=client)
            assert response.status_code == 503

            with pytest.raises(httpx.HTTPStatusError):
                await guarded_fetch("https://api.example.com/", 1.0, client=client, raise_for_status=True)

    @pytest.mark.asyncio
    async def test_cancellation(self, public_dns):
        """Cancelling the token aborts the in-flight request."""
        token = CancellationToken()

        async def slow_handler(request: httpx.Request) -> httpx.Response:
            await asyncio.sleep(10)
            return httpx.Response(200)

        asyncio.get_running_loop().call_later(0.01, token.cancel)
        async with _client(slow_handler) as client:
            with pytest.raises(OperationCancelledError) as exc_info:
                await guarded_fetch("https://slow.example.com/", 5.0, client=client, cancel_token=token)
        assert exc_info.value.phase == "fetch"

    @pytest.mark.asyncio
    async def test_precancelled_token(self):
        """A cancelled token prevents validation and the request."""
        token = CancellationToken()
        token.cancel()
        with pytest.raises(OperationCancelledError):
            await guarded_fetch("https://api.example.com/", 1.0, cancel_token=token)


class TestFetchWithRetry:
    """guarded_fetch composed with execute_with_retry."""

    @pytest.mark.asyncio
    async def test_retries_server_errors(self, public_dns, sleep_recorder):
        """A 503 followed by a 200 succeeds on the second attempt."""
        statuses = [503, 200]

        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(statuses.pop(0))

        async with _client(handler) as client:
            response = await execute_with_retry(
                lambda: guarded_fetch("https://api.example.com/", 1.0, client=client, raise_for_status=True),
                RetryConfig(max_attempts=3, initial_delay=0.5, max_delay=4.0, jitter=0.0),
                sleep_func=sleep_recorder,
            )

        assert response.status_code == 200
        assert sleep_recorder.delays == [0.5]

    @pytest.mark.asyncio
    async def test_timeouts_are_retried(self, public_dns, sleep_recorder):
        """Fetch timeouts are transient and retried until success."""
        attempts = [0]

        async def handler(request: httpx.Request) -> httpx.Response:
            attempts[0] += 1
            if attempts[0] == 1:
                await asyncio.sleep(10)
            return httpx.Response(200)

        async with _client(handler) as client:
            response = await execute_with_retry(
                lambda: guarded_fetch("https://api.example.com/", 0.05, client=client),
                RetryConfig(max_attempts=2, initial_delay=0.1, max_delay=1.0, jitter=0.0),
                sleep_func=sleep_recorder,
            )

        assert response.status_code == 200
        assert attempts[0] == 2
