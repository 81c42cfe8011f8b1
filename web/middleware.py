"""
Raw ASGI middleware: rate limiting, body size cap, access logging and
security headers.

Written against the ASGI interface directly instead of BaseHTTPMiddleware so
the response status is visible without wrapping the request stream.
"""

import json
import time
from typing import Any, Dict, Iterable, List, Optional, Tuple

from starlette.types import ASGIApp, Message, Receive, Scope, Send

from userforge.safety.rate_limiter import RateLimitDecision, RateLimiter
from userforge.utils.exceptions import RateLimitError
from userforge.utils.logger import get_logger

from .models import error_envelope

logger = get_logger(__name__)

API_PREFIX = "/api"
DOCS_PREFIX = "/api-docs"

PAYLOAD_TOO_LARGE_MESSAGE = "Request body too large"

# (method, path) -> limiter name, applied on top of the general "api" limiter
ROUTE_LIMITS: Dict[Tuple[str, str], str] = {
    ("POST", "/api/auth/login"): "auth",
    ("POST", "/api/auth/register"): "create_account",
    ("PATCH", "/api/auth/update-password"): "password",
}

CONTENT_SECURITY_POLICY = "; ".join([
    "default-src 'self'",
    "style-src 'self' 'unsafe-inline' https://fonts.googleapis.com",
    "font-src 'self' https://fonts.gstatic.com",
    "script-src 'self'",
    "img-src 'self' data: https:",
])

SECURITY_HEADERS: List[Tuple[bytes, bytes]] = [
    (b"x-content-type-options", b"nosniff"),
    (b"x-frame-options", b"SAMEORIGIN"),
    (b"referrer-policy", b"no-referrer"),
    (b"x-dns-prefetch-control", b"off"),
    (b"cross-origin-opener-policy", b"same-origin"),
    (b"x-xss-protection", b"0"),
]


def _header(scope: Scope, name: bytes) -> Optional[str]:
    for key, value in scope.get("headers") or []:
        if key.lower() == name:
            return value.decode("latin-1")
    return None


def client_address(scope: Scope, trusted_hops: int = 0) -> str:
    """
    Address of the client that reached our outermost trusted proxy.

    Each proxy appends the address it received the request from to
    X-Forwarded-For, so with ``trusted_hops`` proxies in front of us the
    client is that many entries from the right. Entries further left are
    supplied by the client and never used. With no trusted proxies the peer
    address is used and the header is ignored.
    """
    if trusted_hops > 0:
        forwarded = _header(scope, b"x-forwarded-for")
        if forwarded:
            hops = [hop.strip() for hop in forwarded.split(",") if hop.strip()]
            if hops:
                return hops[-min(trusted_hops, len(hops))]
    client = scope.get("client")
    return client[0] if client else "unknown"


async def _send_json(
    send: Send,
    status: int,
    content: Dict[str, Any],
    headers: Iterable[Tuple[bytes, bytes]] = (),
) -> None:
    body = json.dumps(content).encode("utf-8")
    await send({
        "type": "http.response.start",
        "status": status,
        "headers": [
            (b"content-type", b"application/json"),
            (b"content-length", str(len(body)).encode()),
        ] + list(headers),
    })
    await send({"type": "http.response.body", "body": body})


def _with_headers(send: Send, extra: Iterable[Tuple[bytes, bytes]]) -> Send:
    """Wrap ``send`` so the response start message carries ``extra`` headers"""
    extra = list(extra)

    async def wrapped(message: Message) -> None:
        if message["type"] == "http.response.start":
            headers = list(message.get("headers") or [])
            present = {k.lower() for k, _ in headers}
            headers.extend((k, v) for k, v in extra if k not in present)
            message["headers"] = headers
        await send(message)

    return wrapped


def _rate_limit_headers(decision: RateLimitDecision) -> List[Tuple[bytes, bytes]]:
    return [
        (b"ratelimit-limit", str(decision.limit).encode()),
        (b"ratelimit-remaining", str(decision.remaining).encode()),
        (b"ratelimit-reset", str(decision.reset_after).encode()),
    ]


class RateLimitMiddlewareASGI:
    """Applies the configured limiters per client address"""

    def __init__(self, app: ASGIApp, limiters: Dict[str, RateLimiter], trusted_hops: int = 0):
        self.app = app
        self.limiters = limiters
        self.trusted_hops = trusted_hops

    def _applicable(self, method: str, path: str) -> List[RateLimiter]:
        applicable = []
        if (path == API_PREFIX or path.startswith(API_PREFIX + "/")) and "api" in self.limiters:
            applicable.append(self.limiters["api"])
        name = ROUTE_LIMITS.get((method, path.rstrip("/") or "/"))
        if name and name in self.limiters:
            applicable.append(self.limiters[name])
        return applicable

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope.get("type") != "http":
            await self.app(scope, receive, send)
            return

        limiters = self._applicable(scope.get("method", "GET"), scope.get("path") or "")
        if not limiters:
            await self.app(scope, receive, send)
            return

        key = client_address(scope, self.trusted_hops)
        decision: Optional[RateLimitDecision] = None
        for limiter in limiters:
            decision = limiter.hit(key)
            if not decision.allowed:
                exc = RateLimitError(limiter.rule.message, retry_after=decision.retry_after)
                await self._reject(exc, decision, send)
                return

        status_holder: Dict[str, int] = {}
        inner_send = _with_headers(send, _rate_limit_headers(decision))

        async def send_wrapper(message: Message) -> None:
            if message["type"] == "http.response.start":
                status_holder["status"] = message["status"]
            await inner_send(message)

        await self.app(scope, receive, send_wrapper)

        status = status_holder.get("status")
        if status is not None and status < 400:
            for limiter in limiters:
                if limiter.rule.skip_successful:
                    limiter.release(key)

    async def _reject(self, exc: RateLimitError, decision: RateLimitDecision, send: Send) -> None:
        await _send_json(
            send,
            exc.status_code,
            error_envelope(exc.message, retryAfter=exc.retry_after),
            headers=[(b"retry-after", str(exc.retry_after).encode())] + _rate_limit_headers(decision),
        )


class BodySizeLimitMiddlewareASGI:
    """
    Rejects request bodies larger than ``max_bytes`` with 413.

    The body is read up front and replayed to the application, so chunked
    uploads without Content-Length are capped too.
    """

    def __init__(self, app: ASGIApp, max_bytes: int = 10 * 1024):
        self.app = app
        self.max_bytes = max_bytes

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope.get("type") != "http":
            await self.app(scope, receive, send)
            return

        declared = _header(scope, b"content-length")
        if declared is not None and declared.strip().isdigit() and int(declared) > self.max_bytes:
            await self._reject(scope, send)
            return

        chunks: List[bytes] = []
        size = 0
        more_body = True
        while more_body:
            message = await receive()
            if message["type"] != "http.request":
                # Client went away; let the application see the disconnect
                await self.app(scope, _replay([message], receive), send)
                return
            chunk = message.get("body", b"")
            size += len(chunk)
            if size > self.max_bytes:
                await self._reject(scope, send)
                return
            chunks.append(chunk)
            more_body = message.get("more_body", False)

        body_message = {"type": "http.request", "body": b"".join(chunks), "more_body": False}
        await self.app(scope, _replay([body_message], receive), send)

    async def _reject(self, scope: Scope, send: Send) -> None:
        logger.info("Request body too large", path=scope.get("path"), limit=self.max_bytes)
        await _send_json(send, 413, error_envelope(PAYLOAD_TOO_LARGE_MESSAGE))


def _replay(messages: List[Message], receive: Receive) -> Receive:
    """Receive that yields ``messages`` first, then falls through to ``receive``"""
    pending = list(messages)

    async def replayed() -> Message:
        if pending:
            return pending.pop(0)
        return await receive()

    return replayed


class AccessLogMiddlewareASGI:
    """Logs one line per HTTP request with status and duration"""

    def __init__(self, app: ASGIApp, trusted_hops: int = 0):
        self.app = app
        self.trusted_hops = trusted_hops

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope.get("type") != "http":
            await self.app(scope, receive, send)
            return

        start = time.perf_counter()
        status_holder: Dict[str, int] = {"status": 500}

        async def send_wrapper(message: Message) -> None:
            if message["type"] == "http.response.start":
                status_holder["status"] = message["status"]
            await send(message)

        try:
            await self.app(scope, receive, send_wrapper)
        finally:
            logger.info(
                "Request completed",
                method=scope.get("method"),
                path=scope.get("path"),
                status=status_holder["status"],
                duration_ms=round((time.perf_counter() - start) * 1000, 2),
                client=client_address(scope, self.trusted_hops),
            )


class SecurityHeadersMiddlewareASGI:
    """
    Adds conservative security headers to every HTTP response.

    The interactive docs pull Swagger UI from a CDN, so they are served
    without the Content-Security-Policy header.
    """

    def __init__(self, app: ASGIApp, hsts: bool = False):
        self.app = app
        self.headers = list(SECURITY_HEADERS)
        if hsts:
            self.headers.append((b"strict-transport-security", b"max-age=15552000; includeSubDomains"))
        self.api_headers = self.headers + [(b"content-security-policy", CONTENT_SECURITY_POLICY.encode())]

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope.get("type") != "http":
            await self.app(scope, receive, send)
            return
        path = scope.get("path") or ""
        headers = self.headers if path.startswith(DOCS_PREFIX) else self.api_headers
        await self.app(scope, receive, _with_headers(send, headers))
