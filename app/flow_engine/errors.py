"""
Error taxonomy for flow execution.

Every failure the engine can report carries an ErrorCode. Node-level errors
end up in NodeExecutionResult.error, planning errors abort the run before any
node executes.
"""

from enum import Enum
from typing import Any, Dict, Optional
from datetime import datetime


class ErrorCode(str, Enum):
    """Error codes for flow execution failures"""
    # Transport
    NETWORK_ERROR = "NETWORK_ERROR"
    TIMEOUT_ERROR = "TIMEOUT_ERROR"
    SSL_ERROR = "SSL_ERROR"
    DNS_ERROR = "DNS_ERROR"

    # Request validation
    INVALID_URL = "INVALID_URL"
    INVALID_METHOD = "INVALID_METHOD"
    INVALID_HEADERS = "INVALID_HEADERS"
    INVALID_BODY = "INVALID_BODY"

    # Interpolation
    VARIABLE_INTERPOLATION_ERROR = "VARIABLE_INTERPOLATION_ERROR"

    # Planning
    FLOW_VALIDATION_ERROR = "FLOW_VALIDATION_ERROR"
    FLOW_CIRCULAR_DEPENDENCY = "FLOW_CIRCULAR_DEPENDENCY"

    # Execution
    FLOW_TIMEOUT = "FLOW_TIMEOUT"
    UNEXPECTED_STATUS = "UNEXPECTED_STATUS"
    EXECUTION_ERROR = "EXECUTION_ERROR"

    # Expressions
    CONDITION_EVALUATION_ERROR = "CONDITION_EVALUATION_ERROR"
    UNSAFE_EXPRESSION = "UNSAFE_EXPRESSION"


class ExecutionError(Exception):
    """
    Structured error raised or recorded during flow execution.

    Attributes:
        code: ErrorCode identifying the failure class
        message: Human readable message
        status_code: HTTP status related to the failure, if any
        cause: Underlying exception, if any
        context: Extra key/value details (never secrets)
        node_id: Node that produced the error, if any
    """

    def __init__(
        self,
        message: str,
        code: ErrorCode,
        status_code: Optional[int] = None,
        cause: Optional[BaseException] = None,
        context: Optional[Dict[str, Any]] = None,
        node_id: Optional[str] = None,
    ):
        self.message = message
        self.code = ErrorCode(code)
        self.status_code = status_code
        self.cause = cause
        self.context = context or {}
        self.node_id = node_id
        self.timestamp = datetime.utcnow()
        super().__init__(message)

    def __str__(self):
        return f"[{self.code.value}] {self.message}"

    def with_node(self, node_id: str) -> 'ExecutionError':
        """Attach the originating node id and return self."""
        self.node_id = node_id
        return self

    def to_dict(self) -> Dict[str, Any]:
        data = {
            'code': self.code.value,
            'message': self.message,
            'timestamp': self.timestamp.isoformat(),
        }
        if self.node_id:
            data['node_id'] = self.node_id
        if self.status_code is not None:
            data['status_code'] = self.status_code
        if self.context:
            data['context'] = self.context
        if self.cause is not None:
            data['cause'] = f"{type(self.cause).__name__}: {self.cause}"
        return data


class FlowPlanningError(ExecutionError):
    """Fatal error found while validating or planning a flow."""
    pass


class ExpressionError(ExecutionError):
    """Error raised by the safe expression evaluator."""
    pass


class ExpressionValidationError(ExpressionError):
    """Expression rejected before evaluation (empty or over the length cap)."""
    pass
