"""
Flow Engine - Graph-shaped HTTP flow execution

Runs flows made of HTTP requests, delays, conditions and variable
assignments. The executor lives in app.flow_engine.executor; this package
root only exposes the model and error types so that leaf modules (such as the
expression evaluator) can import them without pulling in the executor.
"""

from app.flow_engine.errors import (
    ErrorCode,
    ExecutionError,
    ExpressionError,
    ExpressionValidationError,
    FlowPlanningError,
)
from app.flow_engine.models import (
    ConditionNode,
    DelayNode,
    EdgeType,
    FlowConfig,
    FlowEdge,
    FlowNode,
    HttpRequestNode,
    NodeKind,
    VariableSetNode,
)

__all__ = [
    'ErrorCode',
    'ExecutionError',
    'ExpressionError',
    'ExpressionValidationError',
    'FlowPlanningError',
    'ConditionNode',
    'DelayNode',
    'EdgeType',
    'FlowConfig',
    'FlowEdge',
    'FlowNode',
    'HttpRequestNode',
    'NodeKind',
    'VariableSetNode',
]
