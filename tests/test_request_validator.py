"""
Tests for request validation helpers
"""

import pytest

from app.flow_engine.errors import ErrorCode, ExecutionError
from app.flow_engine.request_validator import (
    is_private_host,
    sanitize_headers,
    sanitize_url,
    validate_body,
    validate_headers,
    validate_method,
    validate_url,
)


class TestValidateMethod:
    """Test HTTP method checks"""

    def test_normalizes_case(self):
        assert validate_method(' patch ') == 'PATCH'

    def test_rejects_unknown(self):
        with pytest.raises(ExecutionError) as exc:
            validate_method('BREW')

        assert exc.value.code == ErrorCode.INVALID_METHOD


class TestValidateUrl:
    """Test URL checks"""

    def test_valid(self):
        assert validate_url('  https://api.example.com/v1?q=1 ') == 'https://api.example.com/v1?q=1'

    @pytest.mark.parametrize('url', [
        '',
        None,
        'ftp://example.com/file',
        'https://',
        'example.com/no-scheme',
        'https://exa mple.com/',
        'https://example.com:99999/',
        'https://example.com/' + 'a' * 9000,
    ])
    def test_invalid(self, url):
        with pytest.raises(ExecutionError) as exc:
            validate_url(url)

        assert exc.value.code == ErrorCode.INVALID_URL

    def test_leftover_template(self):
        """Unresolved tokens are an interpolation failure"""
        with pytest.raises(ExecutionError) as exc:
            validate_url('https://{{host}}/x')

        assert exc.value.code == ErrorCode.VARIABLE_INTERPOLATION_ERROR

    def test_private_hosts(self):
        """Private targets pass unless disabled"""
        assert validate_url('http://localhost:8080/health') == 'http://localhost:8080/health'

        for url in ('http://127.0.0.1/', 'http://10.0.0.5/', 'http://[::1]/', 'http://api.localhost/'):
            with pytest.raises(ExecutionError) as exc:
                validate_url(url, allow_private=False)
            assert exc.value.code == ErrorCode.INVALID_URL

    def test_is_private_host(self):
        assert is_private_host('192.168.1.10') is True
        assert is_private_host('169.254.169.254') is True
        assert is_private_host('8.8.8.8') is False
        assert is_private_host('example.com') is False


class TestValidateHeaders:
    """Test header checks"""

    def test_values_stringified(self):
        """Non-string values become text and None drops the header"""
        assert validate_headers({'X-Page': 2, 'X-None': None}) == {'X-Page': '2'}

    def test_none(self):
        assert validate_headers(None) == {}

    @pytest.mark.parametrize('headers', [
        ['X-A', '1'],
        {'Bad Header': '1'},
        {'X-Inject': 'a\r\nSet-Cookie: x=1'},
    ])
    def test_invalid(self, headers):
        with pytest.raises(ExecutionError) as exc:
            validate_headers(headers)

        assert exc.value.code == ErrorCode.INVALID_HEADERS


class TestValidateBody:
    """Test body checks"""

    def test_passthrough(self):
        assert validate_body({'a': [1, 2]}) == {'a': [1, 2]}
        assert validate_body('raw') == 'raw'
        assert validate_body(None) is None

    def test_not_serializable(self):
        with pytest.raises(ExecutionError) as exc:
            validate_body({'when': object()})

        assert exc.value.code == ErrorCode.INVALID_BODY


class TestSanitizeUrl:
    """Test secret masking for logs"""

    def test_masks_query_secrets(self):
        sanitized = sanitize_url('https://api.test/x?api_key=abc&page=2&access_token=t')

        assert 'abc' not in sanitized
        assert 'api_key=***' in sanitized
        assert 'page=2' in sanitized

    def test_masks_userinfo(self):
        assert sanitize_url('https://user:pw@api.test/x') == 'https://***@api.test/x'


class TestSanitizeHeaders:
    """Test header masking for debug output"""

    def test_masks_credentials(self):
        sanitized = sanitize_headers({
            'authorization': 'Basic dXNlcjpwdw==',
            'Set-Cookie': 'sid=1',
            'X-Auth-Token': 't',
            'Content-Type': 'application/json',
        })

        assert sanitized == {
            'authorization': '***',
            'Set-Cookie': '***',
            'X-Auth-Token': '***',
            'Content-Type': 'application/json',
        }
