"""
Variable Interpolator - Resolves {{path}} references in node templates

Supports:
- {{baseUrl}} - Flow or environment variable
- Nested paths: {{user.profile.email}}
- Array access: {{items[0].id}}, {{headers['x-request-id']}}
- Node output: {{login.response.body.token}}, {{login.data.status}}

Substitution never raises. Tokens that do not resolve (missing paths,
reserved keys such as __proto__) are left untouched so callers can detect
them with find_unresolved().
"""

import json
import re
from typing import Any, Dict, List, Mapping, Optional
import logging

from app.flow_engine.path_resolver import MISSING, resolve_path

logger = logging.getLogger(__name__)


class VariableInterpolator:
    """
    Template substitution over a variables mapping.

    Examples:
        interpolate("{{host}}/users", {"host": "http://api"}) -> "http://api/users"
        resolve_value("{{count}}", {"count": 3}) -> 3 (int)
    """

    # Pattern to match {{variable.path}}
    VARIABLE_PATTERN = re.compile(r'\{\{([^{}]+)\}\}')

    def interpolate(self, text: Any, variables: Mapping[str, Any]) -> Any:
        """
        Replace every resolvable {{path}} token in text.

        Non-string input is returned unchanged.
        """
        if not isinstance(text, str) or '{{' not in text:
            return text

        def replace_var(match):
            value = resolve_path(variables, match.group(1))
            if value is MISSING:
                return match.group(0)
            return self._to_text(value)

        return self.VARIABLE_PATTERN.sub(replace_var, text)

    def resolve_value(self, value: Any, variables: Mapping[str, Any]) -> Any:
        """
        Resolve a template keeping the referenced value's type.

        If the ENTIRE string is a single variable reference, return the actual
        value. Otherwise behave like interpolate_object().

        Examples:
            "{{amount}}" -> 1000 (int)
            "Amount: {{amount}}" -> "Amount: 1000" (string)
        """
        if isinstance(value, str):
            match = self.VARIABLE_PATTERN.fullmatch(value.strip())
            if match:
                resolved = resolve_path(variables, match.group(1))
                return value if resolved is MISSING else resolved
            return self.interpolate(value, variables)
        return self.interpolate_object(value, variables)

    def interpolate_object(self, obj: Any, variables: Mapping[str, Any]) -> Any:
        """Recursively interpolate every string leaf, preserving structure."""
        if isinstance(obj, str):
            return self.interpolate(obj, variables)
        elif isinstance(obj, dict):
            return {k: self.interpolate_object(v, variables) for k, v in obj.items()}
        elif isinstance(obj, (list, tuple)):
            return [self.interpolate_object(item, variables) for item in obj]
        else:
            return obj

    def interpolate_headers(self, headers: Optional[Mapping[str, Any]],
                            variables: Mapping[str, Any]) -> Dict[str, str]:
        """Interpolate header names and values; values are rendered as text."""
        result = {}
        for name, value in (headers or {}).items():
            key = self.interpolate(str(name), variables)
            result[key] = self.interpolate(value if isinstance(value, str) else self._to_text(value), variables)
        return result

    def interpolate_url(self, url: str, variables: Mapping[str, Any]) -> str:
        return self.interpolate(url or '', variables).strip()

    def interpolate_body(self, body: Any, variables: Mapping[str, Any]) -> Any:
        """
        Interpolate a request body.

        Structured bodies keep value types for whole-token leaves so that
        {"count": "{{count}}"} sends a number when count is a number.
        """
        if isinstance(body, str):
            return self.interpolate(body, variables)
        if isinstance(body, dict):
            return {k: self.interpolate_body(v, variables) if not isinstance(v, str)
                    else self.resolve_value(v, variables)
                    for k, v in body.items()}
        if isinstance(body, (list, tuple)):
            return [self.interpolate_body(v, variables) if not isinstance(v, str)
                    else self.resolve_value(v, variables)
                    for v in body]
        return body

    def extract_variables(self, template: Any) -> List[str]:
        """
        List referenced paths in order of first appearance.

        Walks nested dicts/lists the same way interpolate_object() does.
        """
        found: List[str] = []

        def collect(val):
            if isinstance(val, str):
                for match in self.VARIABLE_PATTERN.finditer(val):
                    path = match.group(1).strip()
                    if path and path not in found:
                        found.append(path)
            elif isinstance(val, dict):
                for k, v in val.items():
                    collect(k)
                    collect(v)
            elif isinstance(val, (list, tuple)):
                for item in val:
                    collect(item)

        collect(template)
        return found

    def has_variables(self, template: Any) -> bool:
        return isinstance(template, str) and '{{' in template and \
            self.VARIABLE_PATTERN.search(template) is not None

    def find_unresolved(self, value: Any, variables: Mapping[str, Any]) -> List[str]:
        """
        Validate that all variables in value can be resolved.

        Returns:
            List of unresolved variable paths (empty if all valid)
        """
        unresolved = []
        for path in self.extract_variables(value):
            if resolve_path(variables, path) is MISSING:
                unresolved.append(path)
        if unresolved:
            logger.debug(f"Unresolved variables: {unresolved}")
        return unresolved

    def _to_text(self, value: Any) -> str:
        if isinstance(value, str):
            return value
        if value is None:
            return 'null'
        if isinstance(value, bool):
            return 'true' if value else 'false'
        if isinstance(value, (dict, list, tuple)):
            return json.dumps(value, default=str)
        return str(value)


# Module-level helpers for callers that do not need an instance
_default = VariableInterpolator()


def interpolate(text: Any, variables: Mapping[str, Any]) -> Any:
    return _default.interpolate(text, variables)


def interpolate_object(obj: Any, variables: Mapping[str, Any]) -> Any:
    return _default.interpolate_object(obj, variables)


def extract_variables(template: Any) -> List[str]:
    return _default.extract_variables(template)


def has_variables(template: Any) -> bool:
    return _default.has_variables(template)
