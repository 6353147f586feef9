"""Checker service - performs one HTTP probe against a monitored URL."""
import asyncio
import errno
import socket
import time
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Iterator, Optional

import httpx

from ..utils.db_utils import utcnow

TIMEOUT_MESSAGE = "Request timeout"
DNS_MESSAGE = "DNS resolution failed"
REFUSED_MESSAGE = "Connection refused"

# Fragments resolvers put in their error text when the name lookup fails
_DNS_HINTS = (
    "name or service not known",
    "nodename nor servname",
    "temporary failure in name resolution",
    "getaddrinfo failed",
    "no address associated with hostname",
)


@dataclass(frozen=True)
class CheckResult:
    """Outcome of a single probe."""
    status_code: Optional[int]  # None for transport-level failures
    response_time_ms: int
    is_up: bool
    error_message: Optional[str] = None
    checked_at: datetime = field(default_factory=utcnow)


class CheckerService:
    """Issues exactly one HTTP request per check and classifies the outcome.

    Any HTTP status is a valid response; only 2xx counts as up. Transport
    failures never raise out of ``check``.
    """

    def __init__(
        self,
        timeout_ms: int = 10000,
        client_factory: Optional[Callable[[], httpx.AsyncClient]] = None,
    ):
        self.timeout_ms = timeout_ms
        self._client_factory = client_factory or (
            lambda: httpx.AsyncClient(follow_redirects=True)
        )

    async def check(self, monitor) -> CheckResult:
        """Probe ``monitor.url`` with ``monitor.method``."""
        method = (getattr(monitor, "method", None) or "GET").upper()
        timeout = httpx.Timeout(self.timeout_ms / 1000)
        started = time.perf_counter()

        try:
            async with self._client_factory() as client:
                # Probe-level deadline covers redirects and body download too
                response = await asyncio.wait_for(
                    client.request(method, monitor.url, timeout=timeout),
                    timeout=self.timeout_ms / 1000,
                )
        except (asyncio.TimeoutError, httpx.TimeoutException):
            return self._failure(started, TIMEOUT_MESSAGE)
        except httpx.TransportError as e:
            return self._failure(started, _classify_transport_error(e))
        except (httpx.HTTPError, httpx.InvalidURL) as e:
            # Unencodable URLs, too many redirects and other non-transport errors
            return self._failure(started, _describe(e))

        return CheckResult(
            status_code=response.status_code,
            response_time_ms=_elapsed_ms(started),
            is_up=200 <= response.status_code < 300,
        )

    def _failure(self, started: float, message: str) -> CheckResult:
        return CheckResult(
            status_code=None,
            response_time_ms=_elapsed_ms(started),
            is_up=False,
            error_message=message,
        )


def _elapsed_ms(started: float) -> int:
    return max(0, int((time.perf_counter() - started) * 1000))


def _iter_causes(exc: BaseException) -> Iterator[BaseException]:
    """Walk the __cause__/__context__ chain, descending into exception groups."""
    seen = set()
    stack = [exc]
    while stack:
        current = stack.pop()
        if current is None or id(current) in seen:
            continue
        seen.add(id(current))
        yield current
        stack.extend(getattr(current, "exceptions", ()) or ())
        stack.append(current.__cause__)
        stack.append(current.__context__)


def _classify_transport_error(exc: httpx.TransportError) -> str:
    if isinstance(exc, httpx.TimeoutException):
        return TIMEOUT_MESSAGE

    for cause in _iter_causes(exc):
        if isinstance(cause, socket.gaierror):
            return DNS_MESSAGE
        if isinstance(cause, ConnectionRefusedError):
            return REFUSED_MESSAGE
        if isinstance(cause, OSError) and cause.errno == errno.ECONNREFUSED:
            return REFUSED_MESSAGE
        if isinstance(cause, (TimeoutError, asyncio.TimeoutError)):
            return TIMEOUT_MESSAGE

    text = str(exc).lower()
    if any(hint in text for hint in _DNS_HINTS):
        return DNS_MESSAGE
    if "refused" in text:
        return REFUSED_MESSAGE
    return _describe(exc)


def _describe(exc: Exception) -> str:
    text = str(exc)
    return text if text else type(exc).__name__
