"""
Step Processor - Executes individual flow nodes

Handles:
- Interpolating node templates against the run scope
- Validating requests before dispatch
- Per-kind execution (http_request, delay, condition, variable_set)
- Turning failures into error results
"""

import asyncio
import logging
import time
from typing import Any, Awaitable, Callable, Dict, Optional

from app.expressions import SafeExpressionEvaluator
from app.flow_engine.context import ExecutionContext, NodeExecutionResult, NodeStatus
from app.flow_engine.errors import ErrorCode, ExecutionError
from app.flow_engine.http_transport import HttpRequest, HttpTransport
from app.flow_engine.models import (
    ConditionNode,
    DelayNode,
    FlowNode,
    HttpRequestNode,
    NodeKind,
    VariableSetNode,
)
from app.flow_engine.path_resolver import MISSING, is_reserved_key, resolve_path
from app.flow_engine.request_validator import (
    sanitize_headers,
    sanitize_url,
    validate_body,
    validate_headers,
    validate_method,
    validate_url,
)
from app.flow_engine.variable_resolver import VariableInterpolator

logger = logging.getLogger(__name__)

DEFAULT_MAX_DELAY_MS = 30000


class StepProcessor:
    """
    Processes individual nodes in a flow.

    Responsibilities:
    - Resolve templates using VariableInterpolator
    - Dispatch by node kind
    - Record request/response details in debug mode
    - Handle errors gracefully: process() never raises ExecutionError
    """

    def __init__(
        self,
        transport: HttpTransport,
        evaluator: Optional[SafeExpressionEvaluator] = None,
        interpolator: Optional[VariableInterpolator] = None,
        max_delay_ms: int = DEFAULT_MAX_DELAY_MS,
        allow_private_urls: bool = True,
    ):
        """
        Initialize step processor.

        Args:
            transport: HTTP transport used by request nodes
            evaluator: Expression evaluator for condition nodes
            interpolator: Template interpolator
            max_delay_ms: Upper bound applied to delay nodes
            allow_private_urls: Whether request nodes may call local/private hosts
        """
        self.transport = transport
        self.evaluator = evaluator or SafeExpressionEvaluator()
        self.interpolator = interpolator or VariableInterpolator()
        self.max_delay_ms = max_delay_ms
        self.allow_private_urls = allow_private_urls

        self._handlers: Dict[NodeKind, Callable[..., Awaitable[NodeExecutionResult]]] = {
            NodeKind.HTTP_REQUEST: self._process_http_request,
            NodeKind.DELAY: self._process_delay,
            NodeKind.CONDITION: self._process_condition,
            NodeKind.VARIABLE_SET: self._process_variable_set,
        }

    async def process(
        self,
        node: FlowNode,
        context: ExecutionContext,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> NodeExecutionResult:
        """
        Execute one node.

        Returns:
            NodeExecutionResult with status success or error
        """
        started = time.monotonic()
        handler = self._handlers.get(node.kind)

        try:
            if handler is None:
                raise ExecutionError(f"Unsupported node kind: {node.kind}", ErrorCode.FLOW_VALIDATION_ERROR)
            result = await handler(node, context, cancel_event, started)
        except ExecutionError as e:
            e.with_node(node.id)
            logger.warning(f"Node {node.id} failed: {e}")
            return NodeExecutionResult(
                node_id=node.id,
                status=NodeStatus.ERROR,
                error=e,
                execution_time=self._elapsed(started),
            )
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.exception(f"Unexpected error in node {node.id}")
            error = ExecutionError(
                f"Unexpected error: {e}",
                ErrorCode.EXECUTION_ERROR,
                cause=e,
                node_id=node.id,
            )
            return NodeExecutionResult(
                node_id=node.id,
                status=NodeStatus.ERROR,
                error=error,
                execution_time=self._elapsed(started),
            )

        logger.info(f"Node {node.id} ({node.kind.value}) completed in {result.execution_time}ms")
        return result

    def _check_resolved(self, node_id: str, template: Any, scope: Dict[str, Any]):
        unresolved = self.interpolator.find_unresolved(template, scope)
        if unresolved:
            raise ExecutionError(
                f"Unresolved variable(s): {', '.join(unresolved)}",
                ErrorCode.VARIABLE_INTERPOLATION_ERROR,
                context={'variables': unresolved},
                node_id=node_id,
            )

    async def _process_http_request(self, node: HttpRequestNode, context: ExecutionContext,
                                    cancel_event: Optional[asyncio.Event], started: float) -> NodeExecutionResult:
        scope = context.scope()
        self._check_resolved(node.id, [node.url, node.headers, node.body], scope)

        request = HttpRequest(
            method=validate_method(node.method),
            url=validate_url(self.interpolator.interpolate_url(node.url, scope),
                             allow_private=self.allow_private_urls),
            headers=validate_headers(self.interpolator.interpolate_headers(node.headers, scope)),
            body=validate_body(self.interpolator.interpolate_body(node.body, scope)),
            timeout=node.timeout,
        )

        request_details = {
            'method': request.method,
            'url': sanitize_url(request.url),
            'headers': sanitize_headers(request.headers),
            'body': request.body,
            'timeout': request.timeout,
        }
        context.record_request(node.id, {'request': request_details})

        response = await self.transport.send(request, cancel_event)
        response_data = response.to_dict()
        context.record_request(node.id, {'request': request_details, 'response': response_data})

        self._store_response(node, response_data, context)

        if node.expected_status is not None:
            status_ok = response.status == node.expected_status
        else:
            status_ok = 200 <= response.status < 300

        if not status_ok:
            expected = node.expected_status if node.expected_status is not None else '2xx'
            error = ExecutionError(
                f"Unexpected status {response.status} (expected {expected})",
                ErrorCode.UNEXPECTED_STATUS,
                status_code=response.status,
                context={'expected': expected},
                node_id=node.id,
            )
            logger.warning(f"Node {node.id} failed: {error}")
            # The request was sent, so the response stays on the result
            return NodeExecutionResult(
                node_id=node.id,
                status=NodeStatus.ERROR,
                response=response_data,
                data=response.body,
                error=error,
                execution_time=self._elapsed(started),
            )

        return NodeExecutionResult(
            node_id=node.id,
            status=NodeStatus.SUCCESS,
            response=response_data,
            data=response.body,
            execution_time=self._elapsed(started),
        )

    def _store_response(self, node: HttpRequestNode, response_data: Dict[str, Any],
                        context: ExecutionContext):
        """Apply the node's declared response outputs to flow variables."""
        if node.response_variable:
            context.set(node.response_variable, response_data['body'], node_id=node.id)

        for variable, path in node.extract.items():
            value = resolve_path(response_data, path)
            if value is MISSING:
                logger.warning(f"Node {node.id}: extract path '{path}' not found for variable '{variable}'")
                continue
            context.set(variable, value, node_id=node.id)

    async def _process_delay(self, node: DelayNode, context: ExecutionContext,
                             cancel_event: Optional[asyncio.Event], started: float) -> NodeExecutionResult:
        duration = min(node.duration_ms, self.max_delay_ms)
        if duration < node.duration_ms:
            logger.info(f"Delay node {node.id} capped from {node.duration_ms}ms to {duration}ms")

        if cancel_event is None:
            await asyncio.sleep(duration / 1000)
        else:
            try:
                await asyncio.wait_for(cancel_event.wait(), timeout=duration / 1000)
            except asyncio.TimeoutError:
                pass
            else:
                raise ExecutionError("Delay cancelled", ErrorCode.FLOW_TIMEOUT)

        return NodeExecutionResult(
            node_id=node.id,
            status=NodeStatus.SUCCESS,
            data={'requested_ms': node.duration_ms, 'delayed_ms': duration},
            execution_time=self._elapsed(started),
        )

    async def _process_condition(self, node: ConditionNode, context: ExecutionContext,
                                 cancel_event: Optional[asyncio.Event], started: float) -> NodeExecutionResult:
        value = self.evaluator.evaluate(node.expression, context.scope())

        if not isinstance(value, bool):
            raise ExecutionError(
                f"Condition must evaluate to a boolean, got {type(value).__name__}",
                ErrorCode.CONDITION_EVALUATION_ERROR,
                context={'expression': node.expression[:100]},
            )

        logger.info(f"Condition {node.id} evaluated to {value}")
        return NodeExecutionResult(
            node_id=node.id,
            status=NodeStatus.SUCCESS,
            data={'result': value, 'expression': node.expression},
            execution_time=self._elapsed(started),
        )

    async def _process_variable_set(self, node: VariableSetNode, context: ExecutionContext,
                                    cancel_event: Optional[asyncio.Event], started: float) -> NodeExecutionResult:
        if is_reserved_key(node.variable) or not node.variable:
            raise ExecutionError(
                f"Variable name {node.variable!r} is not allowed",
                ErrorCode.VARIABLE_INTERPOLATION_ERROR,
            )

        scope = context.scope()
        self._check_resolved(node.id, node.value_template, scope)
        value = self.interpolator.resolve_value(node.value_template, scope)

        context.set(node.variable, value, node_id=node.id)

        return NodeExecutionResult(
            node_id=node.id,
            status=NodeStatus.SUCCESS,
            data={'variable': node.variable, 'value': value},
            execution_time=self._elapsed(started),
        )

    def _elapsed(self, started: float) -> int:
        return int((time.monotonic() - started) * 1000)
