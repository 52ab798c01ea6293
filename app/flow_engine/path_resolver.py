"""
Safe dotted-path lookup into JSON-like data.

Shared by the variable interpolator and the expression evaluator.

Supported paths:
- user.name
- items[0].id
- headers['content-type']
"""

import re
from typing import Any, List, Union

MAX_PATH_DEPTH = 20

RESERVED_KEYS = frozenset({'__proto__', 'constructor', 'prototype'})

# name | [123] | ['key'] | ["key"]
_SEGMENT_PATTERN = re.compile(
    r"""\s*(?:
        (?P<name>[^.\[\]\s]+)
      | \[\s*(?P<index>-?\d+)\s*\]
      | \[\s*'(?P<squote>[^']*)'\s*\]
      | \[\s*"(?P<dquote>[^"]*)"\s*\]
    )\s*""",
    re.VERBOSE,
)


class _Missing:
    """Sentinel for a path that does not resolve."""

    _instance = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self):
        return 'MISSING'

    def __bool__(self):
        return False


MISSING = _Missing()


def is_reserved_key(key: Union[str, int]) -> bool:
    """True for keys that must never be traversed."""
    if not isinstance(key, str):
        return False
    return key in RESERVED_KEYS or (key.startswith('__') and key.endswith('__'))


def split_path(path: str) -> List[Union[str, int]]:
    """
    Split a path expression into segments.

    Returns an empty list when the path is malformed.
    """
    if not isinstance(path, str):
        return []

    segments: List[Union[str, int]] = []
    pos = 0
    expect_segment = True
    length = len(path)

    while pos < length:
        if not expect_segment:
            if path[pos] == '.':
                pos += 1
                expect_segment = True
                continue
            if path[pos] != '[':
                return []

        match = _SEGMENT_PATTERN.match(path, pos)
        if not match or match.end() == pos:
            return []

        if match.group('name') is not None:
            if not expect_segment:
                return []
            segments.append(match.group('name'))
        elif match.group('index') is not None:
            if expect_segment:
                return []
            segments.append(int(match.group('index')))
        else:
            key = match.group('squote')
            if key is None:
                key = match.group('dquote')
            if expect_segment:
                return []
            segments.append(key)

        pos = match.end()
        expect_segment = False

    if expect_segment:
        return []
    return segments


def resolve_segments(data: Any, segments: List[Union[str, int]]) -> Any:
    """Walk already-split segments through data."""
    if not segments or len(segments) > MAX_PATH_DEPTH:
        return MISSING

    current = data
    for segment in segments:
        if is_reserved_key(segment):
            return MISSING

        if isinstance(current, dict):
            if segment in current:
                current = current[segment]
            elif isinstance(segment, int) and str(segment) in current:
                current = current[str(segment)]
            else:
                return MISSING
        elif isinstance(current, (list, tuple)):
            if isinstance(segment, str):
                if segment == 'length':
                    current = len(current)
                    continue
                if not segment.isdigit():
                    return MISSING
                segment = int(segment)
            if 0 <= segment < len(current):
                current = current[segment]
            else:
                return MISSING
        else:
            # No attribute access on arbitrary objects
            return MISSING

    return current


def resolve_path(data: Any, path: str) -> Any:
    """
    Resolve a dotted path against data.

    Args:
        data: Root mapping
        path: Path such as "user.items[0].name"

    Returns:
        The resolved value, or MISSING when any segment is absent,
        reserved, or the path is malformed or too deep
    """
    return resolve_segments(data, split_path(path.strip() if isinstance(path, str) else path))
