"""
Tests for the safe path resolver
"""

from app.flow_engine.path_resolver import (
    MAX_PATH_DEPTH,
    MISSING,
    is_reserved_key,
    resolve_path,
    split_path,
)


class TestSplitPath:
    """Test path parsing"""

    def test_dotted_and_indexed(self):
        """Dots, numeric and quoted indices"""
        assert split_path("a.items[0]['x-y'].b") == ['a', 'items', 0, 'x-y', 'b']

    def test_double_quoted_key(self):
        assert split_path('h["content-type"]') == ['h', 'content-type']

    def test_malformed_paths(self):
        """Malformed paths split to nothing"""
        assert split_path('a..b') == []
        assert split_path('a.') == []
        assert split_path('[0]') == []
        assert split_path('a.[0]') == []
        assert split_path('a[') == []


class TestResolvePath:
    """Test lookups"""

    def test_nested_lookup(self):
        data = {'login': {'response': {'body': {'token': 'abc'}}}}

        assert resolve_path(data, 'login.response.body.token') == 'abc'

    def test_list_index_and_length(self):
        """Lists support indices and length"""
        data = {'items': [10, 20, 30]}

        assert resolve_path(data, 'items[2]') == 30
        assert resolve_path(data, 'items.1') == 20
        assert resolve_path(data, 'items.length') == 3

    def test_missing_returns_sentinel(self):
        """Absent keys and out-of-range indices give MISSING"""
        data = {'items': [1]}

        assert resolve_path(data, 'nope') is MISSING
        assert resolve_path(data, 'items[5]') is MISSING
        assert resolve_path(data, 'items[0].x') is MISSING
        assert not MISSING

    def test_none_value_is_found(self):
        """A stored None is a value, not a miss"""
        assert resolve_path({'a': None}, 'a') is None

    def test_reserved_keys_rejected(self):
        """Prototype-style and dunder keys never resolve"""
        data = {'__proto__': {'x': 1}, 'constructor': 1, 'obj': {'prototype': 2}}

        assert resolve_path(data, '__proto__.x') is MISSING
        assert resolve_path(data, 'constructor') is MISSING
        assert resolve_path(data, 'obj.prototype') is MISSING
        assert resolve_path({'a': 'text'}, 'a.__class__') is MISSING

    def test_no_attribute_access(self):
        """Objects are opaque"""
        class Thing:
            secret = 'x'

        assert resolve_path({'t': Thing()}, 't.secret') is MISSING

    def test_depth_limit(self):
        """Paths deeper than the limit are refused"""
        data = current = {}
        for _ in range(MAX_PATH_DEPTH + 1):
            current['n'] = {}
            current = current['n']

        assert resolve_path(data, '.'.join(['n'] * MAX_PATH_DEPTH)) == {'n': {}}
        assert resolve_path(data, '.'.join(['n'] * (MAX_PATH_DEPTH + 1))) is MISSING

    def test_is_reserved_key(self):
        assert is_reserved_key('__init__') is True
        assert is_reserved_key('prototype') is True
        assert is_reserved_key('name') is False
        assert is_reserved_key(0) is False
