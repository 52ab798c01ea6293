"""
Flow Model - Immutable description of a flow graph

A flow is a set of nodes (HTTP request, delay, condition, variable set)
connected by outcome-typed edges. Documents come from the REST layer or the
persistence source as plain dicts:

{
    "id": "flow-1",
    "name": "Login and fetch profile",
    "nodes": [
        {"id": "login", "type": "http_request",
         "data": {"method": "POST", "url": "{{baseUrl}}/login"}},
        {"id": "check", "type": "condition",
         "data": {"expression": "login.response.status == 200"}}
    ],
    "edges": [{"source": "login", "target": "check", "type": "success"}]
}
"""

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional, Tuple, Union

from app.flow_engine.errors import ErrorCode, FlowPlanningError

logger = logging.getLogger(__name__)

DEFAULT_HTTP_TIMEOUT_MS = 30000
MAX_DELAY_MS = 300000


class NodeKind(str, Enum):
    """Discriminator for flow nodes"""
    HTTP_REQUEST = "http_request"
    DELAY = "delay"
    CONDITION = "condition"
    VARIABLE_SET = "variable_set"


class EdgeType(str, Enum):
    """Outcome that makes an edge eligible"""
    SUCCESS = "success"
    ERROR = "error"
    TRUE = "true"
    FALSE = "false"
    ALWAYS = "always"


@dataclass(frozen=True)
class HttpRequestNode:
    id: str
    method: str = "GET"
    url: str = ""
    headers: Dict[str, Any] = field(default_factory=dict)
    body: Any = None
    timeout: int = DEFAULT_HTTP_TIMEOUT_MS
    expected_status: Optional[int] = None
    response_variable: Optional[str] = None
    extract: Dict[str, str] = field(default_factory=dict)
    name: Optional[str] = None
    kind: NodeKind = field(default=NodeKind.HTTP_REQUEST, init=False)


@dataclass(frozen=True)
class DelayNode:
    id: str
    duration_ms: int = 0
    name: Optional[str] = None
    kind: NodeKind = field(default=NodeKind.DELAY, init=False)


@dataclass(frozen=True)
class ConditionNode:
    id: str
    expression: str = ""
    name: Optional[str] = None
    kind: NodeKind = field(default=NodeKind.CONDITION, init=False)


@dataclass(frozen=True)
class VariableSetNode:
    id: str
    variable: str = ""
    value_template: Any = None
    name: Optional[str] = None
    kind: NodeKind = field(default=NodeKind.VARIABLE_SET, init=False)


FlowNode = Union[HttpRequestNode, DelayNode, ConditionNode, VariableSetNode]


@dataclass(frozen=True)
class FlowEdge:
    id: str
    source: str
    target: str
    type: EdgeType = EdgeType.SUCCESS
    label: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> 'FlowEdge':
        source = data.get('source')
        target = data.get('target')
        if not isinstance(source, str) or not isinstance(target, str):
            raise FlowPlanningError(
                "Edge requires string 'source' and 'target'",
                ErrorCode.FLOW_VALIDATION_ERROR,
                context={'edge': data.get('id')},
            )

        raw_type = data.get('type') or EdgeType.SUCCESS.value
        try:
            edge_type = EdgeType(str(raw_type).lower())
        except ValueError:
            raise FlowPlanningError(
                f"Unknown edge type: {raw_type}",
                ErrorCode.FLOW_VALIDATION_ERROR,
                context={'edge': data.get('id')},
            )

        return cls(
            id=str(data.get('id') or f"{source}->{target}"),
            source=source,
            target=target,
            type=edge_type,
            label=data.get('label'),
        )

    def to_dict(self) -> Dict[str, Any]:
        data = {
            'id': self.id,
            'source': self.source,
            'target': self.target,
            'type': self.type.value,
        }
        if self.label is not None:
            data['label'] = self.label
        return data


@dataclass(frozen=True)
class FlowConfig:
    id: str
    name: str
    nodes: Tuple[FlowNode, ...] = ()
    edges: Tuple[FlowEdge, ...] = ()
    is_active: bool = True
    description: Optional[str] = None
    variables: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> 'FlowConfig':
        """
        Build a FlowConfig from a JSON document.

        Raises:
            FlowPlanningError: If the document or any node is malformed
        """
        if not isinstance(data, Mapping):
            raise FlowPlanningError("Flow document must be an object", ErrorCode.FLOW_VALIDATION_ERROR)

        # Some clients nest the graph under flow_data
        graph = data.get('flow_data') if isinstance(data.get('flow_data'), Mapping) else data

        raw_nodes = graph.get('nodes') or []
        raw_edges = graph.get('edges') or []
        if not isinstance(raw_nodes, list) or not isinstance(raw_edges, list):
            raise FlowPlanningError("'nodes' and 'edges' must be lists", ErrorCode.FLOW_VALIDATION_ERROR)

        nodes = tuple(node_from_dict(n) for n in raw_nodes)
        edges = tuple(FlowEdge.from_dict(e) for e in raw_edges)

        variables = data.get('variables') or {}
        if not isinstance(variables, Mapping):
            variables = {}

        return cls(
            id=str(data.get('id') or ''),
            name=str(data.get('name') or data.get('id') or 'unnamed flow'),
            nodes=nodes,
            edges=edges,
            is_active=bool(data.get('isActive', data.get('is_active', True))),
            description=data.get('description'),
            variables=dict(variables),
        )

    def node_ids(self) -> List[str]:
        return [node.id for node in self.nodes]

    def get_node(self, node_id: str) -> Optional[FlowNode]:
        for node in self.nodes:
            if node.id == node_id:
                return node
        return None

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'name': self.name,
            'description': self.description,
            'isActive': self.is_active,
            'variables': dict(self.variables),
            'nodes': [node_to_dict(n) for n in self.nodes],
            'edges': [e.to_dict() for e in self.edges],
        }


def _first(data: Mapping[str, Any], *keys: str, default: Any = None) -> Any:
    for key in keys:
        if key in data and data[key] is not None:
            return data[key]
    return default


def _as_int(value: Any, node_id: str, field_name: str) -> int:
    if isinstance(value, bool):
        raise _invalid_node(node_id, f"'{field_name}' must be a number")
    try:
        return int(value)
    except (TypeError, ValueError):
        raise _invalid_node(node_id, f"'{field_name}' must be a number")


def _invalid_node(node_id: Optional[str], message: str) -> FlowPlanningError:
    return FlowPlanningError(
        f"Invalid node {node_id!r}: {message}",
        ErrorCode.FLOW_VALIDATION_ERROR,
        context={'node_id': node_id},
    )


def node_from_dict(data: Mapping[str, Any]) -> FlowNode:
    """
    Parse one node document into its typed node.

    Node settings may sit at the top level or under "data" / "config".
    """
    if not isinstance(data, Mapping):
        raise FlowPlanningError("Node must be an object", ErrorCode.FLOW_VALIDATION_ERROR)

    node_id = data.get('id')
    if not isinstance(node_id, str) or not node_id:
        raise _invalid_node(node_id, "missing 'id'")

    raw_kind = data.get('kind') or data.get('type')
    try:
        kind = NodeKind(str(raw_kind).lower())
    except ValueError:
        raise _invalid_node(node_id, f"unknown node type {raw_kind!r}")

    settings: Dict[str, Any] = {}
    for key in ('config', 'data'):
        if isinstance(data.get(key), Mapping):
            settings.update(data[key])
    for key, value in data.items():
        if key not in ('id', 'type', 'kind', 'data', 'config', 'position'):
            settings.setdefault(key, value)

    name = _first(settings, 'name', 'label')

    if kind == NodeKind.HTTP_REQUEST:
        method = _first(settings, 'method')
        url = _first(settings, 'url')
        if not url or not method:
            raise _invalid_node(node_id, "HTTP request requires 'url' and 'method'")

        headers = _first(settings, 'headers', default={})
        if not isinstance(headers, Mapping):
            raise _invalid_node(node_id, "'headers' must be an object")

        extract = _first(settings, 'extract', 'extractVariables', default={})
        if not isinstance(extract, Mapping):
            raise _invalid_node(node_id, "'extract' must be an object")

        expected = _first(settings, 'expectedStatus', 'expected_status')
        response_variable = _first(settings, 'responseVariable', 'response_variable')
        if response_variable is None and settings.get('saveResponse'):
            response_variable = f"{node_id}_response"

        return HttpRequestNode(
            id=node_id,
            method=str(method).upper(),
            url=str(url),
            headers=dict(headers),
            body=_first(settings, 'body'),
            timeout=_as_int(_first(settings, 'timeout', default=DEFAULT_HTTP_TIMEOUT_MS), node_id, 'timeout'),
            expected_status=_as_int(expected, node_id, 'expectedStatus') if expected is not None else None,
            response_variable=response_variable,
            extract={str(k): str(v) for k, v in extract.items()},
            name=name,
        )

    if kind == NodeKind.DELAY:
        duration = _as_int(_first(settings, 'durationMs', 'duration_ms', 'duration', 'delay', default=0),
                           node_id, 'durationMs')
        if duration < 0:
            raise _invalid_node(node_id, "delay must be >= 0")
        if duration > MAX_DELAY_MS:
            raise _invalid_node(node_id, f"delay must be <= {MAX_DELAY_MS} ms")
        return DelayNode(id=node_id, duration_ms=duration, name=name)

    if kind == NodeKind.CONDITION:
        expression = _first(settings, 'expression', 'condition')
        if not isinstance(expression, str) or not expression.strip():
            raise _invalid_node(node_id, "condition requires an 'expression'")
        return ConditionNode(id=node_id, expression=expression, name=name)

    variable = _first(settings, 'variable', 'variableName', 'variable_name')
    if not isinstance(variable, str) or not variable.strip():
        raise _invalid_node(node_id, "variable_set requires a 'variable' name")
    return VariableSetNode(
        id=node_id,
        variable=variable.strip(),
        value_template=_first(settings, 'valueTemplate', 'value_template', 'value'),
        name=name,
    )


def node_to_dict(node: FlowNode) -> Dict[str, Any]:
    """Serialize a node back to its document form."""
    if isinstance(node, HttpRequestNode):
        data = {
            'method': node.method,
            'url': node.url,
            'headers': dict(node.headers),
            'body': node.body,
            'timeout': node.timeout,
        }
        if node.expected_status is not None:
            data['expectedStatus'] = node.expected_status
        if node.response_variable:
            data['responseVariable'] = node.response_variable
        if node.extract:
            data['extract'] = dict(node.extract)
    elif isinstance(node, DelayNode):
        data = {'durationMs': node.duration_ms}
    elif isinstance(node, ConditionNode):
        data = {'expression': node.expression}
    else:
        data = {'variable': node.variable, 'value': node.value_template}

    if node.name:
        data['name'] = node.name
    return {'id': node.id, 'type': node.kind.value, 'data': data}
