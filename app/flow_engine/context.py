"""
Execution Context - Per-run mutable state

One ExecutionContext is created per execute() call and discarded once the
result is built. It owns flow variables, node results, the execution path,
accumulated errors and (in debug mode) the debug trace.
"""

import logging
import time
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional
from uuid import uuid4

from app.flow_engine.errors import ExecutionError

logger = logging.getLogger(__name__)


class NodeStatus(str, Enum):
    """Outcome of a single node"""
    SUCCESS = "success"
    ERROR = "error"
    SKIPPED = "skipped"


@dataclass(frozen=True)
class NodeExecutionResult:
    node_id: str
    status: NodeStatus
    response: Optional[Dict[str, Any]] = None
    data: Any = None
    error: Optional[ExecutionError] = None
    execution_time: int = 0
    timestamp: datetime = field(default_factory=datetime.utcnow)

    @property
    def succeeded(self) -> bool:
        return self.status == NodeStatus.SUCCESS

    def to_dict(self) -> Dict[str, Any]:
        return {
            'node_id': self.node_id,
            'status': self.status.value,
            'response': self.response,
            'data': self.data,
            'error': self.error.to_dict() if self.error else None,
            'execution_time': self.execution_time,
            'timestamp': self.timestamp.isoformat(),
        }


@dataclass
class VariableChange:
    timestamp: datetime
    variable: str
    old_value: Any
    new_value: Any
    node_id: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            'timestamp': self.timestamp.isoformat(),
            'variable': self.variable,
            'old_value': self.old_value,
            'new_value': self.new_value,
            'node_id': self.node_id,
        }


@dataclass
class DebugInfo:
    """Detailed trace, collected only in debug mode."""
    execution_id: str = field(default_factory=lambda: str(uuid4()))
    start_time: datetime = field(default_factory=datetime.utcnow)
    end_time: Optional[datetime] = None
    node_execution_times: Dict[str, int] = field(default_factory=dict)
    variable_changes: List[VariableChange] = field(default_factory=list)
    request_details: Dict[str, Dict[str, Any]] = field(default_factory=dict)
    error_stack: List[ExecutionError] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'execution_id': self.execution_id,
            'start_time': self.start_time.isoformat(),
            'end_time': self.end_time.isoformat() if self.end_time else None,
            'node_execution_times': dict(self.node_execution_times),
            'variable_changes': [c.to_dict() for c in self.variable_changes],
            'request_details': dict(self.request_details),
            'error_stack': [e.to_dict() for e in self.error_stack],
        }


class ExecutionContext:
    """
    Mutable state for one flow run.

    Variables are only written through set(), which the executor
    calls for variable_set nodes and declared response extraction.
    """

    def __init__(
        self,
        variables: Optional[Dict[str, Any]] = None,
        max_execution_time: Optional[int] = None,
        debug_mode: bool = False,
    ):
        self.variables: Dict[str, Any] = dict(variables or {})
        self.node_results: Dict[str, NodeExecutionResult] = {}
        self.execution_path: List[str] = []
        self.errors: List[ExecutionError] = []
        self.start_time = datetime.utcnow()
        self.max_execution_time = max_execution_time
        self.debug: Optional[DebugInfo] = DebugInfo(start_time=self.start_time) if debug_mode else None
        self._started = time.monotonic()

    @property
    def debug_mode(self) -> bool:
        return self.debug is not None

    def elapsed_ms(self) -> int:
        return int((time.monotonic() - self._started) * 1000)

    def get(self, variable: str, default: Any = None) -> Any:
        return self.variables.get(variable, default)

    def set(self, variable: str, value: Any, node_id: Optional[str] = None):
        """Assign a flow variable, recording the change in debug mode."""
        old_value = self.variables.get(variable)
        self.variables[variable] = value
        logger.debug(f"Variable set: {variable} (node {node_id})")
        if self.debug is not None:
            self.debug.variable_changes.append(VariableChange(
                timestamp=datetime.utcnow(),
                variable=variable,
                old_value=old_value,
                new_value=value,
                node_id=node_id,
            ))

    def get_node_result(self, node_id: str) -> Optional[NodeExecutionResult]:
        return self.node_results.get(node_id)

    def record(self, result: NodeExecutionResult, completed: bool = True):
        """
        Store a node result.

        Args:
            result: The node's result
            completed: Whether the node actually ran (appends to the path)
        """
        if result.node_id in self.node_results:
            logger.warning(f"Node {result.node_id} already has a result; keeping the first one")
            return

        self.node_results[result.node_id] = result
        if completed and result.node_id not in self.execution_path:
            self.execution_path.append(result.node_id)
        if result.error is not None:
            self.add_error(result.error)
        if self.debug is not None and completed:
            self.debug.node_execution_times[result.node_id] = result.execution_time

    def add_error(self, error: ExecutionError):
        self.errors.append(error)
        if self.debug is not None:
            self.debug.error_stack.append(error)

    def record_request(self, node_id: str, details: Dict[str, Any]):
        if self.debug is not None:
            self.debug.request_details[node_id] = details

    def node_scope(self) -> Dict[str, Any]:
        """
        Finished nodes addressable by id in templates and expressions.

        {{login.status}}, {{login.data.token}}, {{login.output.token}},
        {{login.response.body.token}}
        """
        scope = {}
        for node_id, result in self.node_results.items():
            scope[node_id] = {
                'status': result.status.value,
                'data': result.data,
                'output': result.data,
                'response': result.response,
                'error': result.error.message if result.error else None,
            }
        return scope

    def scope(self) -> Dict[str, Any]:
        """Lookup scope for interpolation and expressions. Variables win over node ids."""
        nodes = self.node_scope()
        return {
            'variables': dict(self.variables),
            'nodes': nodes,
            **nodes,
            **self.variables,
        }
