"""Network egress guard for http nodes.

Outbound URLs are checked in a fixed order, each failure with its own message:

1. the URL parses and names a host
2. the scheme is http or https
3. the host is not loopback, private, link-local or unspecified
   (independent of the allowlist)
4. the host is in the PATCH_ALLOWED_HOSTS allowlist (exact match)
5. an explicit port is not a common non-web service port

Timeouts are handled with an abort signal that outlives the call it guards,
so the runner can also abort an in-flight call when a run is cancelled.
"""

import asyncio
import ipaddress
import logging
import urllib.parse
from typing import Any, Awaitable, Callable, List, Optional, TypeVar

from .config import get_settings
from .exceptions import NodeTimeoutError, RunCancelledError, SecurityError

logger = logging.getLogger("gearpatch.security")

ALLOWED_SCHEMES = {"http", "https"}

BLOCKED_PORTS = frozenset({22, 23, 25, 53, 135, 139, 445})

PRIVATE_IPV4_RANGES = [
    ipaddress.ip_network("127.0.0.0/8"),  # Loopback
    ipaddress.ip_network("10.0.0.0/8"),
    ipaddress.ip_network("172.16.0.0/12"),  # 172.16.0.0 - 172.31.255.255
    ipaddress.ip_network("192.168.0.0/16"),
    ipaddress.ip_network("169.254.0.0/16"),  # Link-local, cloud metadata endpoints
]

PRIVATE_IPV6_RANGES = [
    ipaddress.ip_network("::1/128"),
    ipaddress.ip_network("fc00::/7"),  # Unique local
]

UNSPECIFIED_IPV4 = ipaddress.ip_address("0.0.0.0")

DEFAULT_TIMEOUT_MS = 30000


def is_private_host(hostname: str) -> bool:
    host = hostname.lower()
    if host == "localhost":
        return True
    try:
        ip = ipaddress.ip_address(host)
    except ValueError:
        return False
    # ::ffff:10.0.0.1 reaches the same place as 10.0.0.1
    if ip.version == 6 and ip.ipv4_mapped is not None:
        ip = ip.ipv4_mapped
    if ip.version == 4:
        return ip == UNSPECIFIED_IPV4 or any(ip in net for net in PRIVATE_IPV4_RANGES)
    return any(ip in net for net in PRIVATE_IPV6_RANGES)


def validate_http_url(url: str, allowed_hosts: Optional[List[str]] = None) -> None:
    """Validate an outbound URL against the egress policy.

    Args:
        url: URL an http node wants to call
        allowed_hosts: Allowlist override; defaults to PATCH_ALLOWED_HOSTS

    Raises:
        SecurityError: If any check fails
    """
    try:
        parsed = urllib.parse.urlsplit(url)
    except ValueError:
        raise SecurityError(f"Invalid URL: {url}") from None
    if not parsed.scheme:
        raise SecurityError(f"Invalid URL: {url}")

    scheme = parsed.scheme.lower()
    if scheme not in ALLOWED_SCHEMES:
        raise SecurityError(f"Protocol not allowed: {scheme}:. Only http: and https: are permitted.")

    hostname = parsed.hostname
    if not hostname:
        raise SecurityError(f"Invalid URL: {url}")
    try:
        port = parsed.port
    except ValueError:
        raise SecurityError(f"Invalid URL: {url}") from None

    if is_private_host(hostname):
        raise SecurityError(f"Private network access forbidden: {hostname}")

    hosts = allowed_hosts if allowed_hosts is not None else get_settings().allowed_hosts()
    if hostname not in {h.lower() for h in hosts}:
        raise SecurityError(f"Host not allowed: {hostname}. Allowed hosts: {', '.join(hosts)}")

    if port is not None and port in BLOCKED_PORTS:
        raise SecurityError(f"Port not allowed: {port}. Common service ports are blocked.")


class AbortSignal:
    """Flag plus listeners; flips once and stays aborted."""

    def __init__(self, timeout_ms: Optional[int] = None):
        self.aborted = False
        self.reason: Optional[str] = None
        self.timeout_ms = timeout_ms
        self._listeners: List[Callable[[], Any]] = []

    def add_listener(self, callback: Callable[[], Any]) -> Callable[[], None]:
        """Register a callback for abort. Returns a function that removes it."""
        if self.aborted:
            callback()
            return lambda: None
        self._listeners.append(callback)

        def remove() -> None:
            if callback in self._listeners:
                self._listeners.remove(callback)
        return remove

    def _fire(self, reason: str) -> None:
        if self.aborted:
            return
        self.aborted = True
        self.reason = reason
        listeners, self._listeners = self._listeners, []
        for cb in listeners:
            cb()


class TimeoutController:
    def __init__(self, timeout_ms: int = DEFAULT_TIMEOUT_MS):
        if timeout_ms < 0:
            raise ValueError("timeout_ms must be >= 0")
        self.timeout_ms = timeout_ms
        self.signal = AbortSignal(timeout_ms)
        loop = asyncio.get_running_loop()
        self._handle: Optional[asyncio.TimerHandle] = loop.call_later(timeout_ms / 1000, self._expire)

    def _expire(self) -> None:
        self._handle = None
        logger.debug("Timeout controller expired after %sms", self.timeout_ms)
        self.signal._fire("timeout")

    def abort(self) -> None:
        self.clear()
        self.signal._fire("aborted")

    def clear(self) -> None:
        """Cancel the pending timer, e.g. once the guarded call has finished."""
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None


def create_timeout_controller(ms: int = DEFAULT_TIMEOUT_MS) -> TimeoutController:
    """Must be called from inside a running event loop."""
    return TimeoutController(ms)


T = TypeVar("T")


async def run_with_signal(awaitable: Awaitable[T], signal: AbortSignal) -> T:
    """Await `awaitable`, cancelling it as soon as `signal` aborts.

    Raises NodeTimeoutError when the signal aborted on its timer and
    RunCancelledError when it was aborted manually. Cancellation of the
    calling task itself propagates unchanged.
    """
    task = asyncio.ensure_future(awaitable)
    remove = signal.add_listener(task.cancel)
    try:
        return await task
    except asyncio.CancelledError:
        current = asyncio.current_task()
        if signal.aborted and (current is None or current.cancelling() == 0):
            if signal.reason == "timeout":
                raise NodeTimeoutError(signal.timeout_ms) from None
            raise RunCancelledError() from None
        raise
    finally:
        remove()
