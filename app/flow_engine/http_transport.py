"""
HTTP transport used by request nodes.

The executor only depends on the HttpTransport protocol; HttpxTransport is
the default implementation on top of httpx.AsyncClient. Transports must be
safe to call concurrently and must honor the cancel event.
"""

import asyncio
import json
import logging
import socket
import ssl
import time
from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Protocol

import httpx

from app.flow_engine.errors import ErrorCode, ExecutionError
from app.flow_engine.request_validator import sanitize_url

logger = logging.getLogger(__name__)

DEFAULT_USER_AGENT = 'gassapi-flow-runner/1.0'


@dataclass
class HttpRequest:
    method: str
    url: str
    headers: Dict[str, str] = field(default_factory=dict)
    body: Any = None
    timeout: int = 30000  # ms


@dataclass
class HttpResponse:
    status: int
    headers: Dict[str, str] = field(default_factory=dict)
    body: Any = None
    response_time: int = 0  # ms

    def to_dict(self) -> Dict[str, Any]:
        return {
            'status': self.status,
            'headers': dict(self.headers),
            'body': self.body,
            'response_time': self.response_time,
        }


class HttpTransport(Protocol):
    async def send(self, request: HttpRequest,
                   cancel_event: Optional[asyncio.Event] = None) -> HttpResponse:
        ...


def _root_causes(error: BaseException):
    seen = set()
    current: Optional[BaseException] = error
    while current is not None and id(current) not in seen:
        seen.add(id(current))
        yield current
        current = current.__cause__ or current.__context__


def classify_transport_error(error: Exception) -> ErrorCode:
    """Map an httpx exception onto the transport error codes."""
    if isinstance(error, httpx.TimeoutException):
        return ErrorCode.TIMEOUT_ERROR
    if isinstance(error, (httpx.InvalidURL, httpx.UnsupportedProtocol)):
        return ErrorCode.INVALID_URL

    for cause in _root_causes(error):
        if isinstance(cause, ssl.SSLError):
            return ErrorCode.SSL_ERROR
        if isinstance(cause, socket.gaierror):
            return ErrorCode.DNS_ERROR

    text = str(error).lower()
    if 'ssl' in text or 'certificate' in text:
        return ErrorCode.SSL_ERROR
    if any(marker in text for marker in (
        'name or service not known',
        'nodename nor servname',
        'temporary failure in name resolution',
        'getaddrinfo failed',
        'no address associated',
    )):
        return ErrorCode.DNS_ERROR
    return ErrorCode.NETWORK_ERROR


def decode_body(response: httpx.Response) -> Any:
    """JSON when the response says so (or parses as JSON), text otherwise."""
    if not response.content:
        return None
    content_type = response.headers.get('content-type', '')
    text = response.text
    if 'json' in content_type or text[:1] in ('{', '['):
        try:
            return json.loads(text)
        except ValueError:
            pass
    return text


class HttpxTransport:
    """
    HttpTransport on httpx.

    Usage:
        transport = HttpxTransport()
        response = await transport.send(HttpRequest('GET', 'https://api/x'), cancel_event)

    When no client is injected a short-lived AsyncClient is opened per
    request, so the transport is not tied to a single event loop.
    """

    def __init__(self, client: Optional[httpx.AsyncClient] = None,
                 user_agent: str = DEFAULT_USER_AGENT, verify: bool = True):
        self._client = client
        self.user_agent = user_agent
        self.verify = verify

    async def send(self, request: HttpRequest,
                   cancel_event: Optional[asyncio.Event] = None) -> HttpResponse:
        """
        Send a request.

        Raises:
            ExecutionError: NETWORK_ERROR, TIMEOUT_ERROR, SSL_ERROR, DNS_ERROR,
                INVALID_URL, or FLOW_TIMEOUT when cancelled
        """
        if cancel_event is not None and cancel_event.is_set():
            raise ExecutionError("Request cancelled before sending", ErrorCode.FLOW_TIMEOUT)

        if cancel_event is None:
            return await self._send(request)

        send_task = asyncio.ensure_future(self._send(request))
        cancel_task = asyncio.ensure_future(cancel_event.wait())
        try:
            await asyncio.wait({send_task, cancel_task}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            for task in (send_task, cancel_task):
                if not task.done():
                    task.cancel()

        if send_task.done() and not send_task.cancelled():
            return send_task.result()

        logger.info(f"Request cancelled: {request.method} {sanitize_url(request.url)}")
        raise ExecutionError(
            "Request cancelled",
            ErrorCode.FLOW_TIMEOUT,
            context={'url': sanitize_url(request.url)},
        )

    async def _send(self, request: HttpRequest) -> HttpResponse:
        headers = dict(request.headers)
        if not any(name.lower() == 'user-agent' for name in headers):
            headers['User-Agent'] = self.user_agent

        kwargs: Dict[str, Any] = {'headers': headers}
        body = request.body
        if isinstance(body, (dict, list)):
            if not any(name.lower() == 'content-type' for name in headers):
                headers['Content-Type'] = 'application/json'
            kwargs['content'] = json.dumps(body).encode('utf-8')
        elif isinstance(body, str):
            kwargs['content'] = body.encode('utf-8')
        elif isinstance(body, bytes):
            kwargs['content'] = body
        elif body is not None:
            kwargs['content'] = json.dumps(body).encode('utf-8')

        timeout = httpx.Timeout(max(request.timeout, 1) / 1000)
        safe_url = sanitize_url(request.url)
        logger.debug(f"HTTP {request.method} {safe_url}")

        started = time.monotonic()
        try:
            if self._client is not None:
                response = await self._client.request(
                    request.method, request.url, timeout=timeout, **kwargs
                )
            else:
                async with httpx.AsyncClient(verify=self.verify, follow_redirects=True) as client:
                    response = await client.request(
                        request.method, request.url, timeout=timeout, **kwargs
                    )
        except (httpx.HTTPError, httpx.InvalidURL) as e:
            code = classify_transport_error(e)
            logger.warning(f"HTTP {request.method} {safe_url} failed: {code.value} {e}")
            raise ExecutionError(
                f"{type(e).__name__}: {e}" if str(e) else type(e).__name__,
                code,
                cause=e,
                context={'url': safe_url, 'method': request.method},
            )

        elapsed = int((time.monotonic() - started) * 1000)
        logger.debug(f"HTTP {request.method} {safe_url} -> {response.status_code} in {elapsed}ms")

        return HttpResponse(
            status=response.status_code,
            headers=dict(response.headers.items()),
            body=decode_body(response),
            response_time=elapsed,
        )
