"""
Flow Executor - Main orchestrator for flow execution

Responsibilities:
- Seed the run context from environment variables and overrides
- Ask the planner for parallel groups (planning errors end the run as failed)
- Run each group behind a barrier, bounded by max_concurrency
- Route along success/error/true/false/always edges
- Enforce max execution time with a watchdog that cancels in-flight nodes
- Build the FlowExecutionResult (never raises to the caller)
"""

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Any, Dict, List, Mapping, Optional, Union

from app.flow_engine.branching import BranchingHandler
from app.flow_engine.context import ExecutionContext, NodeExecutionResult, NodeStatus
from app.flow_engine.errors import ErrorCode, ExecutionError, FlowPlanningError
from app.flow_engine.http_transport import HttpTransport, HttpxTransport
from app.flow_engine.models import FlowConfig, FlowNode, NodeKind
from app.flow_engine.planner import DependencyAnalyzer, FlowExecutionPlan
from app.flow_engine.reporter import FlowExecutionResult, FlowExecutionStatus, build_result
from app.flow_engine.step_processor import DEFAULT_MAX_DELAY_MS, StepProcessor

logger = logging.getLogger(__name__)

DEFAULT_MAX_EXECUTION_TIME_MS = 600000
DEFAULT_MAX_CONCURRENCY = 5


@dataclass
class ExecutionOptions:
    timeout: Optional[int] = DEFAULT_MAX_EXECUTION_TIME_MS  # ms, None or <= 0 disables
    stop_on_error: bool = False
    parallel: bool = True
    max_concurrency: int = DEFAULT_MAX_CONCURRENCY
    debug_mode: bool = False

    @classmethod
    def from_dict(cls, data: Optional[Mapping[str, Any]]) -> 'ExecutionOptions':
        """Accepts snake_case and camelCase keys."""
        data = data or {}

        def pick(*keys, default=None):
            for key in keys:
                if data.get(key) is not None:
                    return data[key]
            return default

        timeout = pick('timeout', 'maxExecutionTime', 'max_execution_time', default=DEFAULT_MAX_EXECUTION_TIME_MS)
        max_concurrency = pick('maxConcurrency', 'max_concurrency', default=DEFAULT_MAX_CONCURRENCY)
        try:
            timeout = int(timeout)
            max_concurrency = max(1, int(max_concurrency))
        except (TypeError, ValueError):
            raise ValueError("timeout and maxConcurrency must be numbers")

        return cls(
            timeout=timeout,
            stop_on_error=bool(pick('stopOnError', 'stop_on_error', default=False)),
            parallel=bool(pick('parallel', default=True)),
            max_concurrency=max_concurrency,
            debug_mode=bool(pick('debugMode', 'debug_mode', 'debug', default=False)),
        )


class _RunState:
    """Bookkeeping shared by the node tasks of one run."""

    def __init__(self):
        self.cancel_event = asyncio.Event()
        self.stopped = False
        self.timed_out = False
        self.in_flight: Dict[str, float] = {}


class FlowExecutor:
    """
    Runs flows.

    Usage:
        executor = FlowExecutor(transport=HttpxTransport())
        result = await executor.execute(
            flow_config,
            environment_variables={'baseUrl': 'https://api.example.com'},
            options=ExecutionOptions(stop_on_error=True),
        )
    """

    def __init__(
        self,
        transport: Optional[HttpTransport] = None,
        analyzer: Optional[DependencyAnalyzer] = None,
        processor: Optional[StepProcessor] = None,
        max_delay_ms: int = DEFAULT_MAX_DELAY_MS,
        allow_private_urls: bool = True,
    ):
        self.analyzer = analyzer or DependencyAnalyzer()
        self.step_processor = processor or StepProcessor(
            transport=transport or HttpxTransport(),
            max_delay_ms=max_delay_ms,
            allow_private_urls=allow_private_urls,
        )

    async def execute(
        self,
        flow: Union[FlowConfig, Mapping[str, Any]],
        environment_variables: Optional[Mapping[str, Any]] = None,
        options: Optional[ExecutionOptions] = None,
        override_variables: Optional[Mapping[str, Any]] = None,
    ) -> FlowExecutionResult:
        """
        Execute a flow.

        Args:
            flow: FlowConfig or its JSON document
            environment_variables: Variables of the selected environment
            options: Execution options
            override_variables: Caller values that win over the environment

        Returns:
            FlowExecutionResult; planning errors produce status 'failed'
        """
        options = options or ExecutionOptions()

        variables: Dict[str, Any] = {}
        if isinstance(flow, FlowConfig):
            variables.update(flow.variables)
        variables.update(environment_variables or {})
        variables.update(override_variables or {})

        context = ExecutionContext(
            variables=variables,
            max_execution_time=options.timeout,
            debug_mode=options.debug_mode,
        )

        try:
            config = flow if isinstance(flow, FlowConfig) else FlowConfig.from_dict(flow)
        except FlowPlanningError as e:
            logger.error(f"Invalid flow document: {e}")
            context.add_error(e)
            flow_id = str(flow.get('id', '')) if isinstance(flow, Mapping) else ''
            return build_result(flow_id, FlowExecutionStatus.FAILED, context, total_nodes=0)

        if not isinstance(flow, FlowConfig):
            # Flow defaults sit below environment and overrides
            for name, value in config.variables.items():
                context.variables.setdefault(name, value)

        logger.info(f"Executing flow {config.id} ({config.name}) with {len(config.nodes)} nodes")

        try:
            plan = self.analyzer.create_plan(config)
        except FlowPlanningError as e:
            logger.error(f"Planning failed for flow {config.id}: {e}")
            context.add_error(e)
            return build_result(config.id, FlowExecutionStatus.FAILED, context,
                                total_nodes=len(config.nodes), flow_name=config.name)

        state = _RunState()
        runner = asyncio.ensure_future(self._run_groups(config, plan, context, options, state))
        limit = options.timeout / 1000 if options.timeout and options.timeout > 0 else None

        try:
            done, _ = await asyncio.wait({runner}, timeout=limit)
            if runner not in done:
                state.timed_out = True
                logger.warning(f"Flow {config.id} exceeded {options.timeout}ms, cancelling in-flight nodes")
                # Cooperative signal first, then hard cancellation
                state.cancel_event.set()
                runner.cancel()
                try:
                    await runner
                except asyncio.CancelledError:
                    if not runner.cancelled():
                        raise
            elif runner.exception() is not None:
                error = runner.exception()
                logger.error(f"Flow {config.id} aborted by unexpected error: {error}")
                context.add_error(ExecutionError(
                    f"Unexpected executor error: {error}", ErrorCode.EXECUTION_ERROR, cause=error
                ))
                state.stopped = True
        finally:
            if not runner.done():
                state.cancel_event.set()
                runner.cancel()

        return self._finish(config, plan, context, state)

    async def _run_groups(self, config: FlowConfig, plan: FlowExecutionPlan,
                          context: ExecutionContext, options: ExecutionOptions, state: _RunState):
        nodes = {node.id: node for node in config.nodes}
        branching = BranchingHandler(config)
        semaphore = asyncio.Semaphore(options.max_concurrency)

        for index, group in enumerate(plan.execution_order):
            if state.stopped or state.cancel_event.is_set():
                break

            runnable: List[FlowNode] = []
            for node_id in group:
                if branching.should_run(node_id, context.node_results):
                    runnable.append(nodes[node_id])
                else:
                    context.record(NodeExecutionResult(node_id=node_id, status=NodeStatus.SKIPPED),
                                   completed=False)

            logger.debug(f"Group {index}: running {[n.id for n in runnable]}")

            # Assignments first, one at a time, in declaration order
            assignments = [n for n in runnable if n.kind == NodeKind.VARIABLE_SET]
            others = [n for n in runnable if n.kind != NodeKind.VARIABLE_SET]

            for node in assignments:
                if state.stopped:
                    break
                await self._run_node(node, context, options, state, branching)

            if state.stopped:
                break

            if options.parallel and len(others) > 1:
                async def bounded(node):
                    async with semaphore:
                        if state.stopped:
                            return
                        await self._run_node(node, context, options, state, branching)

                await asyncio.gather(*(bounded(node) for node in others))
            else:
                for node in others:
                    if state.stopped:
                        break
                    await self._run_node(node, context, options, state, branching)

    async def _run_node(self, node: FlowNode, context: ExecutionContext, options: ExecutionOptions,
                        state: _RunState, branching: BranchingHandler):
        state.in_flight[node.id] = time.monotonic()
        try:
            result = await self.step_processor.process(node, context, state.cancel_event)
        except asyncio.CancelledError:
            if state.cancel_event.is_set():
                context.record(self._timeout_result(node.id, state), completed=False)
            raise
        finally:
            state.in_flight.pop(node.id, None)

        if state.cancel_event.is_set() and result.error is not None \
                and result.error.code == ErrorCode.FLOW_TIMEOUT:
            # Transport noticed the cancel signal before the task was cancelled
            context.record(NodeExecutionResult(
                node_id=node.id,
                status=NodeStatus.SKIPPED,
                error=result.error,
                execution_time=result.execution_time,
            ), completed=False)
            return

        context.record(result)

        if result.status == NodeStatus.ERROR and options.stop_on_error \
                and not branching.has_error_edge(node.id):
            logger.warning(f"Stopping flow after node {node.id} failed")
            state.stopped = True

    def _timeout_result(self, node_id: str, state: _RunState) -> NodeExecutionResult:
        started = state.in_flight.get(node_id)
        elapsed = int((time.monotonic() - started) * 1000) if started else 0
        return NodeExecutionResult(
            node_id=node_id,
            status=NodeStatus.SKIPPED,
            error=ExecutionError(
                "Node cancelled: flow execution time exceeded",
                ErrorCode.FLOW_TIMEOUT,
                node_id=node_id,
            ),
            execution_time=elapsed,
        )

    def _finish(self, config: FlowConfig, plan: FlowExecutionPlan,
                context: ExecutionContext, state: _RunState) -> FlowExecutionResult:
        not_run = [node.id for node in config.nodes if node.id not in context.node_results]
        skipped_nodes: List[str] = []

        if state.timed_out:
            # Unstarted nodes are listed, not given results
            skipped_nodes = not_run
            context.add_error(ExecutionError(
                f"Flow execution exceeded {context.max_execution_time}ms",
                ErrorCode.FLOW_TIMEOUT,
                context={'not_started': not_run},
            ))
            status = FlowExecutionStatus.TIMEOUT
        else:
            for node_id in not_run:
                context.record(NodeExecutionResult(node_id=node_id, status=NodeStatus.SKIPPED),
                               completed=False)
            if state.stopped:
                status = FlowExecutionStatus.FAILED
            elif any(r.status == NodeStatus.ERROR for r in context.node_results.values()):
                status = FlowExecutionStatus.COMPLETED_WITH_ERRORS
            else:
                status = FlowExecutionStatus.COMPLETED

        result = build_result(
            config.id,
            status,
            context,
            total_nodes=len(config.nodes),
            flow_name=config.name,
            skipped_nodes=skipped_nodes,
            warnings=plan.warnings,
        )
        logger.info(
            f"Flow {config.id} finished: {status.value} in {result.execution_time}ms "
            f"(path: {' -> '.join(result.execution_path) or 'none'})"
        )
        return result
