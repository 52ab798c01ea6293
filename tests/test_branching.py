"""
Tests for BranchingHandler
"""

from app.flow_engine.branching import BranchingHandler
from app.flow_engine.context import NodeExecutionResult, NodeStatus
from app.flow_engine.errors import ErrorCode, ExecutionError
from app.flow_engine.models import FlowConfig
from flow_builders import condition_node, edge, flow_doc, http_node

API = 'https://api.test'


def handler(edges, extra_nodes=()):
    nodes = [http_node('src', f'{API}/src'), http_node('dst', f'{API}/dst')]
    nodes += [http_node(n, f'{API}/{n}') for n in extra_nodes]
    return BranchingHandler(FlowConfig.from_dict(flow_doc(nodes, edges)))


def ok(node_id, data=None):
    return NodeExecutionResult(node_id=node_id, status=NodeStatus.SUCCESS, data=data)


def failed(node_id):
    return NodeExecutionResult(
        node_id=node_id,
        status=NodeStatus.ERROR,
        error=ExecutionError("boom", ErrorCode.NETWORK_ERROR),
    )


def skipped(node_id):
    return NodeExecutionResult(node_id=node_id, status=NodeStatus.SKIPPED)


class TestBranchingHandler:
    """Test edge eligibility"""

    def test_start_node_always_runs(self):
        """Nodes without incoming edges run"""
        branching = handler([edge('src', 'dst')])

        assert branching.is_start_node('src') is True
        assert branching.should_run('src', {}) is True

    def test_success_edge(self):
        """success edges follow successful sources"""
        branching = handler([edge('src', 'dst')])

        assert branching.should_run('dst', {'src': ok('src')}) is True

    def test_success_edge_after_failure_without_error_edge(self):
        """A failure with no error edge keeps the success path going"""
        branching = handler([edge('src', 'dst')])

        assert branching.should_run('dst', {'src': failed('src')}) is True

    def test_error_edge_takes_over(self):
        """With an error edge, success edges close on failure"""
        branching = handler([edge('src', 'dst'), edge('src', 'fallback', 'error')], extra_nodes=['fallback'])
        results = {'src': failed('src')}

        assert branching.has_error_edge('src') is True
        assert branching.should_run('dst', results) is False
        assert branching.should_run('fallback', results) is True

    def test_error_edge_closed_on_success(self):
        branching = handler([edge('src', 'dst', 'error')])

        assert branching.should_run('dst', {'src': ok('src')}) is False

    def test_true_false_edges(self):
        """Condition results pick the branch"""
        config = FlowConfig.from_dict(flow_doc(
            [condition_node('check', 'true'), http_node('yes', f'{API}/y'), http_node('no', f'{API}/n')],
            [edge('check', 'yes', 'true'), edge('check', 'no', 'false')],
        ))
        branching = BranchingHandler(config)
        results = {'check': ok('check', {'result': False})}

        assert branching.should_run('yes', results) is False
        assert branching.should_run('no', results) is True
        assert [e.target for e in branching.eligible_edges('check', results)] == ['no']

    def test_true_edge_closed_on_condition_error(self):
        """Failed conditions open neither branch"""
        branching = handler([edge('src', 'dst', 'true')])

        assert branching.should_run('dst', {'src': failed('src')}) is False

    def test_always_edge(self):
        """always edges open on success and failure"""
        branching = handler([edge('src', 'dst', 'always')])

        assert branching.should_run('dst', {'src': ok('src')}) is True
        assert branching.should_run('dst', {'src': failed('src')}) is True

    def test_skipped_source_closes_every_edge(self):
        """Skipped sources propagate the skip"""
        branching = handler([edge('src', 'dst', 'always')])

        assert branching.should_run('dst', {'src': skipped('src')}) is False
        assert branching.should_run('dst', {}) is False

    def test_any_eligible_incoming_edge(self):
        """One open incoming edge is enough"""
        branching = handler([edge('src', 'dst'), edge('other', 'dst')], extra_nodes=['other'])
        results = {'src': skipped('src'), 'other': ok('other')}

        assert branching.should_run('dst', results) is True
