"""
Tests for the httpx transport
"""

import asyncio
import json
import socket

import httpx
import pytest

from app.flow_engine.errors import ErrorCode, ExecutionError
from app.flow_engine.http_transport import (
    DEFAULT_USER_AGENT,
    HttpRequest,
    HttpxTransport,
    classify_transport_error,
)


def make_transport(handler):
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return HttpxTransport(client=client)


class TestHttpxTransport:
    """Test request and response handling"""

    @pytest.mark.asyncio
    async def test_json_body_and_headers(self):
        """dict bodies are sent as JSON with a User-Agent"""
        seen = {}

        def handler(request):
            seen['content_type'] = request.headers.get('content-type')
            seen['user_agent'] = request.headers.get('user-agent')
            seen['body'] = json.loads(request.content)
            return httpx.Response(201, json={'id': 7})

        transport = make_transport(handler)

        response = await transport.send(HttpRequest('POST', 'https://api.test/items', body={'name': 'x'}))

        assert response.status == 201
        assert response.body == {'id': 7}
        assert seen == {'content_type': 'application/json', 'user_agent': DEFAULT_USER_AGENT, 'body': {'name': 'x'}}

    @pytest.mark.asyncio
    async def test_explicit_headers_kept(self):
        """Caller headers are not overridden"""
        seen = {}

        def handler(request):
            seen['content_type'] = request.headers.get('content-type')
            seen['user_agent'] = request.headers.get('user-agent')
            return httpx.Response(200)

        transport = make_transport(handler)
        headers = {'Content-Type': 'application/vnd.api+json', 'User-Agent': 'custom'}

        response = await transport.send(HttpRequest('PUT', 'https://api.test/x', headers=headers, body=[1]))

        assert seen == {'content_type': 'application/vnd.api+json', 'user_agent': 'custom'}
        assert response.body is None

    @pytest.mark.asyncio
    async def test_text_body(self):
        """Non-JSON responses come back as text"""
        transport = make_transport(lambda request: httpx.Response(200, text='pong'))

        response = await transport.send(HttpRequest('GET', 'https://api.test/ping'))

        assert response.body == 'pong'
        assert response.to_dict()['status'] == 200

    @pytest.mark.asyncio
    async def test_error_status_is_a_response(self):
        """4xx and 5xx are returned, not raised"""
        transport = make_transport(lambda request: httpx.Response(503, json={'error': 'down'}))

        response = await transport.send(HttpRequest('GET', 'https://api.test/x'))

        assert response.status == 503
        assert response.body == {'error': 'down'}

    @pytest.mark.asyncio
    async def test_timeout_classified(self):
        def handler(request):
            raise httpx.ConnectTimeout('timed out', request=request)

        transport = make_transport(handler)

        with pytest.raises(ExecutionError) as exc:
            await transport.send(HttpRequest('GET', 'https://api.test/slow'))

        assert exc.value.code == ErrorCode.TIMEOUT_ERROR

    @pytest.mark.asyncio
    async def test_connect_error_classified(self):
        def handler(request):
            raise httpx.ConnectError('connection refused', request=request)

        transport = make_transport(handler)

        with pytest.raises(ExecutionError) as exc:
            await transport.send(HttpRequest('GET', 'https://api.test/x?token=secret'))

        assert exc.value.code == ErrorCode.NETWORK_ERROR
        assert 'secret' not in exc.value.context['url']

    @pytest.mark.asyncio
    async def test_cancel_event(self):
        """Setting the cancel event aborts an in-flight request"""
        async def handler(request):
            await asyncio.sleep(5)
            return httpx.Response(200)

        transport = make_transport(handler)
        cancel_event = asyncio.Event()

        async def cancel_soon():
            await asyncio.sleep(0.01)
            cancel_event.set()

        asyncio.ensure_future(cancel_soon())

        with pytest.raises(ExecutionError) as exc:
            await transport.send(HttpRequest('GET', 'https://api.test/slow'), cancel_event)

        assert exc.value.code == ErrorCode.FLOW_TIMEOUT

    @pytest.mark.asyncio
    async def test_caller_cancellation_reaches_request(self):
        """Without a cancel event, cancelling the caller stops the request"""
        started = asyncio.Event()
        seen = {}

        async def handler(request):
            started.set()
            try:
                await asyncio.sleep(5)
            except asyncio.CancelledError:
                seen['cancelled'] = True
                raise
            return httpx.Response(200)

        transport = make_transport(handler)
        task = asyncio.ensure_future(transport.send(HttpRequest('GET', 'https://api.test/slow')))
        await started.wait()

        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

        assert seen == {'cancelled': True}

    @pytest.mark.asyncio
    async def test_already_cancelled(self):
        transport = make_transport(lambda request: httpx.Response(200))
        cancel_event = asyncio.Event()
        cancel_event.set()

        with pytest.raises(ExecutionError) as exc:
            await transport.send(HttpRequest('GET', 'https://api.test/x'), cancel_event)

        assert exc.value.code == ErrorCode.FLOW_TIMEOUT


class TestClassifyTransportError:
    """Test error code mapping"""

    def test_dns_failure_by_cause(self):
        error = httpx.ConnectError('lookup failed')
        error.__cause__ = socket.gaierror(-2, 'Name or service not known')

        assert classify_transport_error(error) == ErrorCode.DNS_ERROR

    def test_dns_failure_by_message(self):
        error = httpx.ConnectError('[Errno -3] Temporary failure in name resolution')

        assert classify_transport_error(error) == ErrorCode.DNS_ERROR

    def test_ssl_failure(self):
        error = httpx.ConnectError('[SSL: CERTIFICATE_VERIFY_FAILED] certificate verify failed')

        assert classify_transport_error(error) == ErrorCode.SSL_ERROR

    def test_read_timeout(self):
        assert classify_transport_error(httpx.ReadTimeout('slow')) == ErrorCode.TIMEOUT_ERROR

    def test_unsupported_protocol(self):
        assert classify_transport_error(httpx.UnsupportedProtocol('nope')) == ErrorCode.INVALID_URL
