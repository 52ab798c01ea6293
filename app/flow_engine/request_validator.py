"""
Request validation and URL helpers for HTTP request nodes.

Checks run on the interpolated request before anything is sent; failures
mark the node as error without touching the network.
"""

import ipaddress
import json
import re
from typing import Any, Dict, Mapping
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

from app.flow_engine.errors import ErrorCode, ExecutionError

ALLOWED_METHODS = ('GET', 'POST', 'PUT', 'DELETE', 'PATCH', 'HEAD', 'OPTIONS')
ALLOWED_SCHEMES = ('http', 'https')
MAX_URL_LENGTH = 8192

SENSITIVE_PARAMS = ('token', 'key', 'secret', 'password', 'passwd', 'auth', 'signature', 'credential')

# RFC 7230 token characters
HEADER_NAME_PATTERN = re.compile(r"^[!#$%&'*+\-.^_`|~0-9A-Za-z]+$")

LOCAL_HOSTNAMES = ('localhost', 'localhost.localdomain', 'ip6-localhost')


def validate_method(method: Any) -> str:
    normalized = str(method or '').strip().upper()
    if normalized not in ALLOWED_METHODS:
        raise ExecutionError(
            f"Unsupported HTTP method: {method!r}",
            ErrorCode.INVALID_METHOD,
            context={'allowed': list(ALLOWED_METHODS)},
        )
    return normalized


def is_private_host(host: str) -> bool:
    """True for localhost names and loopback/private/link-local addresses."""
    host = (host or '').strip('[]').lower()
    if host in LOCAL_HOSTNAMES or host.endswith('.localhost'):
        return True
    try:
        address = ipaddress.ip_address(host)
    except ValueError:
        return False
    return address.is_private or address.is_loopback or address.is_link_local or address.is_reserved


def validate_url(url: Any, allow_private: bool = True) -> str:
    """
    Validate an interpolated URL.

    Args:
        url: URL text (already interpolated)
        allow_private: Whether localhost and private networks may be called

    Returns:
        The stripped URL
    """
    if not isinstance(url, str) or not url.strip():
        raise ExecutionError("URL is empty", ErrorCode.INVALID_URL)

    url = url.strip()
    if len(url) > MAX_URL_LENGTH:
        raise ExecutionError("URL is too long", ErrorCode.INVALID_URL, context={'length': len(url)})

    if '{{' in url:
        raise ExecutionError(
            "URL still contains template variables",
            ErrorCode.VARIABLE_INTERPOLATION_ERROR,
            context={'url': sanitize_url(url)},
        )

    try:
        parts = urlsplit(url)
        hostname = parts.hostname
        parts.port  # raises on a malformed port
    except ValueError as e:
        raise ExecutionError(f"Malformed URL: {e}", ErrorCode.INVALID_URL, cause=e)

    if parts.scheme.lower() not in ALLOWED_SCHEMES:
        raise ExecutionError(
            f"Only http and https URLs are supported, got {parts.scheme or 'none'!r}",
            ErrorCode.INVALID_URL,
            context={'url': sanitize_url(url)},
        )

    if not hostname:
        raise ExecutionError("URL has no host", ErrorCode.INVALID_URL, context={'url': sanitize_url(url)})

    if any(ch.isspace() for ch in url):
        raise ExecutionError("URL contains whitespace", ErrorCode.INVALID_URL, context={'url': sanitize_url(url)})

    if not allow_private and is_private_host(hostname):
        raise ExecutionError(
            f"Requests to private or local hosts are disabled: {hostname}",
            ErrorCode.INVALID_URL,
            context={'host': hostname},
        )

    return url


def validate_headers(headers: Any) -> Dict[str, str]:
    if headers is None:
        return {}
    if not isinstance(headers, Mapping):
        raise ExecutionError("Headers must be an object", ErrorCode.INVALID_HEADERS)

    result = {}
    for name, value in headers.items():
        if not isinstance(name, str) or not HEADER_NAME_PATTERN.match(name):
            raise ExecutionError(f"Invalid header name: {name!r}", ErrorCode.INVALID_HEADERS)
        if value is None:
            continue
        if not isinstance(value, str):
            value = str(value)
        if '\r' in value or '\n' in value:
            raise ExecutionError(
                f"Header {name} contains a line break",
                ErrorCode.INVALID_HEADERS,
                context={'header': name},
            )
        result[name] = value
    return result


def validate_body(body: Any) -> Any:
    if body is None or isinstance(body, (str, bytes)):
        return body
    try:
        json.dumps(body)
    except (TypeError, ValueError) as e:
        raise ExecutionError(f"Body is not JSON serializable: {e}", ErrorCode.INVALID_BODY, cause=e)
    return body


def sanitize_url(url: str) -> str:
    """Mask userinfo and sensitive query parameters before logging."""
    try:
        parts = urlsplit(url)
    except ValueError:
        return '<invalid url>'

    netloc = parts.netloc
    if '@' in netloc:
        netloc = '***@' + netloc.rsplit('@', 1)[1]

    query = parts.query
    if query:
        pairs = []
        for key, value in parse_qsl(query, keep_blank_values=True):
            if any(marker in key.lower() for marker in SENSITIVE_PARAMS):
                value = '***'
            pairs.append((key, value))
        query = urlencode(pairs, safe='*')

    return urlunsplit((parts.scheme, netloc, parts.path, query, parts.fragment))


SENSITIVE_HEADERS = ('authorization', 'cookie', 'api-key', 'apikey')


def sanitize_headers(headers: Dict[str, str]) -> Dict[str, str]:
    """Mask credential-bearing header values before they are recorded."""
    sanitized = {}
    for name, value in headers.items():
        lowered = name.lower()
        if any(marker in lowered for marker in SENSITIVE_HEADERS + SENSITIVE_PARAMS):
            value = '***'
        sanitized[name] = value
    return sanitized
