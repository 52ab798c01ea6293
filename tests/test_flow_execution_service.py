"""
Tests for FlowExecutionService
"""

from unittest.mock import Mock

import pytest

from app.flow_engine.executor import ExecutionOptions, FlowExecutor
from app.flow_engine.models import FlowConfig
from app.flow_engine.reporter import FlowExecutionStatus
from app.services.flow_execution_service import (
    EnvironmentNotFoundError,
    FlowExecutionService,
    FlowNotFoundError,
)
from app.utils.telemetry import TelemetryService
from flow_builders import edge, flow_doc, http_node

API = 'https://api.test'


def stored_flow():
    return FlowConfig.from_dict(flow_doc(
        [http_node('login', '{{baseUrl}}/login', method='POST', extract={'token': 'body.token'}),
         http_node('me', '{{baseUrl}}/me', headers={'Authorization': 'Bearer {{token}}'})],
        [edge('login', 'me')],
        variables={'baseUrl': 'https://default.test'},
    ))


@pytest.fixture
def source():
    source = Mock()
    source.get_flow_config.return_value = stored_flow()
    source.get_environment_variables.return_value = {'baseUrl': API}
    return source


@pytest.fixture
def telemetry():
    return Mock(spec=TelemetryService)


@pytest.fixture
def service(source, telemetry, transport):
    return FlowExecutionService(
        source=source,
        executor=FlowExecutor(transport=transport),
        telemetry=telemetry,
    )


class TestExecuteFlow:
    """Test running flows through the service"""

    @pytest.mark.asyncio
    async def test_stored_flow_with_environment(self, service, source, transport):
        """Environment variables override flow defaults"""
        transport.add('POST', f'{API}/login', body={'token': 'abc'})
        transport.add('GET', f'{API}/me', body={'id': 1})

        result, summary = await service.execute_flow('flow-1', environment_id='env-1')

        source.get_flow_config.assert_called_once_with('flow-1')
        source.get_environment_variables.assert_called_once_with('env-1')
        assert result.status == FlowExecutionStatus.COMPLETED
        assert transport.requests[1].headers['Authorization'] == 'Bearer abc'
        assert 'Status: COMPLETED' in summary

    @pytest.mark.asyncio
    async def test_overrides_win(self, service, transport):
        transport.add('POST', 'https://override.test/login', body={'token': 't'})
        transport.add('GET', 'https://override.test/me', body={})

        result, _ = await service.execute_flow(
            'flow-1',
            environment_id='env-1',
            override_variables={'baseUrl': 'https://override.test'},
        )

        assert transport.urls() == ['https://override.test/login', 'https://override.test/me']
        assert result.status == FlowExecutionStatus.COMPLETED

    @pytest.mark.asyncio
    async def test_inline_document(self, service, source, transport):
        """Documents run without touching the source"""
        transport.add('GET', f'{API}/ping', body='pong')

        result, _ = await service.execute_flow(flow_doc([http_node('ping', f'{API}/ping')]))

        source.get_flow_config.assert_not_called()
        assert result.execution_path == ['ping']

    @pytest.mark.asyncio
    async def test_unknown_flow(self, service, source):
        source.get_flow_config.return_value = None

        with pytest.raises(FlowNotFoundError):
            await service.execute_flow('missing')

    @pytest.mark.asyncio
    async def test_unknown_environment(self, service, source):
        source.get_environment_variables.return_value = None

        with pytest.raises(EnvironmentNotFoundError):
            await service.execute_flow('flow-1', environment_id='nope')

    @pytest.mark.asyncio
    async def test_flow_id_without_source(self, transport):
        service = FlowExecutionService(executor=FlowExecutor(transport=transport))

        with pytest.raises(FlowNotFoundError):
            await service.execute_flow('flow-1')

    @pytest.mark.asyncio
    async def test_malformed_options(self, service):
        with pytest.raises(ValueError):
            await service.execute_flow('flow-1', options={'timeout': 'forever'})

    @pytest.mark.asyncio
    async def test_telemetry(self, service, telemetry, transport):
        """Runs and node failures are tracked"""
        transport.add('POST', f'{API}/login', status=500)

        result, _ = await service.execute_flow('flow-1', environment_id='env-1')

        assert result.status == FlowExecutionStatus.COMPLETED_WITH_ERRORS
        telemetry.track_flow_execution.assert_called_once()
        kwargs = telemetry.track_flow_execution.call_args.kwargs
        assert kwargs['status'] == 'completed_with_errors'
        assert kwargs['environment_id'] == 'env-1'
        telemetry.track_node_error.assert_any_call(
            flow_id='flow-1',
            node_id='login',
            error_code='UNEXPECTED_STATUS',
            error_message=result.get_node_result('login').error.message,
        )


class TestOptions:
    """Test option defaults"""

    def test_service_defaults_applied(self):
        service = FlowExecutionService(default_timeout_ms=1234, default_max_concurrency=2)

        options = service.build_options({'stopOnError': True})

        assert options.timeout == 1234
        assert options.max_concurrency == 2
        assert options.stop_on_error is True

    def test_caller_values_win(self):
        service = FlowExecutionService(default_timeout_ms=1234)

        assert service.build_options({'timeout': 50, 'maxConcurrency': None}).timeout == 50

    def test_options_object_passthrough(self):
        service = FlowExecutionService()
        options = ExecutionOptions(timeout=10)

        assert service.build_options(options) is options

    def test_from_config(self):
        config = {
            'FLOW_MAX_EXECUTION_TIME_MS': 9000,
            'FLOW_MAX_CONCURRENCY': 3,
            'FLOW_MAX_DELAY_MS': 100,
            'FLOW_ALLOW_PRIVATE_URLS': False,
            'TELEMETRY_ENABLED': False,
        }

        service = FlowExecutionService.from_config(config)

        assert service.default_timeout_ms == 9000
        assert service.default_max_concurrency == 3
        assert service.executor.step_processor.allow_private_urls is False
        assert service.telemetry.enabled is False


class TestValidation:
    """Test validate, plan and expression checks"""

    def test_validate_valid(self, service):
        result = service.validate_flow(flow_doc([http_node('a', f'{API}/a')]))

        assert result.valid is True

    def test_validate_malformed(self, service):
        """Parse failures come back as an invalid result"""
        result = service.validate_flow({'id': 'f', 'nodes': [{'id': 'x', 'type': 'teleport'}]})

        assert result.valid is False
        assert result.errors[0].code.value == 'FLOW_VALIDATION_ERROR'

    def test_plan(self, service):
        plan = service.plan_flow(flow_doc(
            [http_node('a', f'{API}/a'), http_node('b', f'{API}/b')],
            [edge('a', 'b')],
        ))

        assert plan.execution_order == [['a'], ['b']]

    def test_expression(self, service):
        assert service.test_expression('a.b == 1')['valid'] is True
        assert service.test_expression('a = 1')['valid'] is False
