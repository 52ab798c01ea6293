"""
Flow Execution Service - Runs flows with the in-process flow engine

Resolves flows and environments through a FlowSource, runs the
FlowExecutor, tracks telemetry and renders a text summary.
"""

import logging
from typing import Any, Dict, Mapping, Optional, Protocol, Tuple, Union

from app.expressions import SafeExpressionEvaluator
from app.flow_engine.errors import ExecutionError, FlowPlanningError
from app.flow_engine.executor import (
    DEFAULT_MAX_CONCURRENCY,
    DEFAULT_MAX_EXECUTION_TIME_MS,
    ExecutionOptions,
    FlowExecutor,
)
from app.flow_engine.models import FlowConfig
from app.flow_engine.planner import DependencyAnalyzer, FlowValidationResult
from app.flow_engine.reporter import FlowExecutionResult, format_execution_result
from app.flow_engine.step_processor import DEFAULT_MAX_DELAY_MS
from app.utils.telemetry import TelemetryService

logger = logging.getLogger(__name__)


class FlowSource(Protocol):
    """Lookups the service needs from persistence."""

    def get_flow_config(self, flow_id: str) -> Optional[FlowConfig]:
        ...

    def get_environment_variables(self, environment_id: str) -> Optional[Dict[str, Any]]:
        ...


class FlowNotFoundError(LookupError):
    pass


class EnvironmentNotFoundError(LookupError):
    pass


class FlowExecutionService:
    """
    Service to execute flows.

    Usage:
        service = FlowExecutionService(source=FlowStore())
        result, summary = await service.execute_flow(
            'flow-uuid',
            environment_id='env-uuid',
            override_variables={'userId': 42},
            options={'stopOnError': True},
        )
    """

    def __init__(
        self,
        source: Optional[FlowSource] = None,
        executor: Optional[FlowExecutor] = None,
        telemetry: Optional[TelemetryService] = None,
        default_timeout_ms: int = DEFAULT_MAX_EXECUTION_TIME_MS,
        default_max_concurrency: int = DEFAULT_MAX_CONCURRENCY,
    ):
        """
        Initialize service.

        Args:
            source: Flow/environment lookup (required for execution by id)
            executor: FlowExecutor (created with the default transport if not provided)
            telemetry: Telemetry sink
            default_timeout_ms: Max execution time when options do not set one
            default_max_concurrency: Group concurrency when options do not set one
        """
        self.source = source
        self.executor = executor or FlowExecutor()
        self.telemetry = telemetry or TelemetryService(enabled=False)
        self.default_timeout_ms = default_timeout_ms
        self.default_max_concurrency = default_max_concurrency
        self.analyzer = DependencyAnalyzer()
        self.expressions = SafeExpressionEvaluator()

    @classmethod
    def from_config(cls, config: Mapping[str, Any], source: Optional[FlowSource] = None) -> 'FlowExecutionService':
        executor = FlowExecutor(
            max_delay_ms=config.get('FLOW_MAX_DELAY_MS', DEFAULT_MAX_DELAY_MS),
            allow_private_urls=config.get('FLOW_ALLOW_PRIVATE_URLS', True),
        )
        return cls(
            source=source,
            executor=executor,
            telemetry=TelemetryService.from_config(config),
            default_timeout_ms=config.get('FLOW_MAX_EXECUTION_TIME_MS', DEFAULT_MAX_EXECUTION_TIME_MS),
            default_max_concurrency=config.get('FLOW_MAX_CONCURRENCY', DEFAULT_MAX_CONCURRENCY),
        )

    def build_options(self, options: Union[ExecutionOptions, Mapping[str, Any], None]) -> ExecutionOptions:
        """Apply service defaults to caller options."""
        if isinstance(options, ExecutionOptions):
            return options
        merged = {'timeout': self.default_timeout_ms, 'maxConcurrency': self.default_max_concurrency}
        merged.update({k: v for k, v in (options or {}).items() if v is not None})
        return ExecutionOptions.from_dict(merged)

    async def execute_flow(
        self,
        flow_id_or_config: Union[str, FlowConfig, Mapping[str, Any]],
        environment_id: Optional[str] = None,
        override_variables: Optional[Mapping[str, Any]] = None,
        options: Union[ExecutionOptions, Mapping[str, Any], None] = None,
    ) -> Tuple[FlowExecutionResult, str]:
        """
        Execute a stored flow (by id) or an inline flow document.

        Args:
            flow_id_or_config: Flow id, FlowConfig, or flow JSON document
            environment_id: Environment whose variables seed the run
            override_variables: Values that win over the environment
            options: ExecutionOptions or their JSON form

        Returns:
            (FlowExecutionResult, human-readable summary)

        Raises:
            FlowNotFoundError: unknown flow id
            EnvironmentNotFoundError: unknown environment id
            ValueError: malformed options
        """
        flow = self._resolve_flow(flow_id_or_config)
        environment_variables = self._resolve_environment(environment_id)
        execution_options = self.build_options(options)

        flow_label = flow.id if isinstance(flow, FlowConfig) else flow.get('id', 'inline')
        logger.info(f"Starting flow execution for flow: {flow_label}")

        result = await self.executor.execute(
            flow,
            environment_variables=environment_variables,
            options=execution_options,
            override_variables=override_variables,
        )

        self._track(result, environment_id)
        return result, format_execution_result(result)

    def validate_flow(self, document: Union[FlowConfig, Mapping[str, Any]]) -> FlowValidationResult:
        """Validate a flow document without executing it."""
        try:
            config = document if isinstance(document, FlowConfig) else FlowConfig.from_dict(document)
        except FlowPlanningError as e:
            return FlowValidationResult(valid=False, errors=[e])
        return self.analyzer.validate(config)

    def plan_flow(self, document: Union[FlowConfig, Mapping[str, Any]]):
        """
        Build the execution plan for a flow document.

        Raises:
            FlowPlanningError: invalid document or graph
        """
        config = document if isinstance(document, FlowConfig) else FlowConfig.from_dict(document)
        return self.analyzer.create_plan(config)

    def test_expression(self, expression: Any) -> Dict[str, Any]:
        return self.expressions.test_expression(expression)

    def _resolve_flow(self, flow_id_or_config):
        if isinstance(flow_id_or_config, (FlowConfig, Mapping)):
            return flow_id_or_config

        if self.source is None:
            raise FlowNotFoundError(f"No flow source configured to load flow {flow_id_or_config}")

        config = self.source.get_flow_config(str(flow_id_or_config))
        if config is None:
            raise FlowNotFoundError(f"Flow not found: {flow_id_or_config}")
        return config

    def _resolve_environment(self, environment_id: Optional[str]) -> Dict[str, Any]:
        if not environment_id:
            return {}

        variables = self.source.get_environment_variables(environment_id) if self.source else None
        if variables is None:
            raise EnvironmentNotFoundError(f"Environment not found: {environment_id}")
        return variables

    def _track(self, result: FlowExecutionResult, environment_id: Optional[str]):
        summary = result.summary
        self.telemetry.track_flow_execution(
            flow_id=result.flow_id,
            status=result.status.value,
            execution_time_ms=result.execution_time,
            total_nodes=summary.total_nodes,
            failed_nodes=summary.failed_nodes,
            environment_id=environment_id,
        )
        for error in result.errors:
            if isinstance(error, ExecutionError) and error.node_id:
                self.telemetry.track_node_error(
                    flow_id=result.flow_id,
                    node_id=error.node_id,
                    error_code=error.code.value,
                    error_message=error.message,
                )
