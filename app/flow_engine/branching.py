"""
Branching Logic - Decide which nodes a run reaches

Edges are outcome-typed:
- success: source succeeded (or failed without any error edge of its own)
- error:   source failed
- true / false: source is a condition that succeeded with that result
- always:  source ran, whatever the outcome

A node runs when it has no incoming edges (start node) or when at least one
incoming edge is eligible. Edges out of skipped nodes are never eligible.
"""

import logging
from typing import Dict, List, Mapping

from app.flow_engine.context import NodeExecutionResult, NodeStatus
from app.flow_engine.models import EdgeType, FlowConfig, FlowEdge

logger = logging.getLogger(__name__)


class BranchingHandler:
    """
    Edge routing for one flow.

    Usage:
        branching = BranchingHandler(flow_config)
        if branching.should_run(node_id, context.node_results):
            ...
    """

    def __init__(self, config: FlowConfig):
        self.incoming: Dict[str, List[FlowEdge]] = {node.id: [] for node in config.nodes}
        self.outgoing: Dict[str, List[FlowEdge]] = {node.id: [] for node in config.nodes}

        for edge in config.edges:
            if edge.target in self.incoming:
                self.incoming[edge.target].append(edge)
            if edge.source in self.outgoing:
                self.outgoing[edge.source].append(edge)

    def is_start_node(self, node_id: str) -> bool:
        return not self.incoming.get(node_id)

    def has_error_edge(self, node_id: str) -> bool:
        return any(edge.type == EdgeType.ERROR for edge in self.outgoing.get(node_id, []))

    def is_edge_eligible(self, edge: FlowEdge, results: Mapping[str, NodeExecutionResult]) -> bool:
        """
        Check whether an edge lets its target run.

        Args:
            edge: The edge to check
            results: Node results recorded so far

        Returns:
            True if the edge's condition holds
        """
        source = results.get(edge.source)
        if source is None or source.status == NodeStatus.SKIPPED:
            return False

        if edge.type == EdgeType.ALWAYS:
            return True

        if edge.type == EdgeType.ERROR:
            return source.status == NodeStatus.ERROR

        if edge.type == EdgeType.SUCCESS:
            if source.status == NodeStatus.SUCCESS:
                return True
            # A failure with no error edge keeps the normal path going
            return not self.has_error_edge(edge.source)

        # true / false need a condition that evaluated cleanly
        if source.status != NodeStatus.SUCCESS or not isinstance(source.data, dict):
            return False
        result = source.data.get('result')
        if edge.type == EdgeType.TRUE:
            return result is True
        return result is False

    def should_run(self, node_id: str, results: Mapping[str, NodeExecutionResult]) -> bool:
        """Start nodes always run; others need one eligible incoming edge."""
        if self.is_start_node(node_id):
            return True

        for edge in self.incoming[node_id]:
            if self.is_edge_eligible(edge, results):
                logger.debug(f"Node {node_id} reached via {edge.type.value} edge from {edge.source}")
                return True

        logger.debug(f"Node {node_id} has no eligible incoming edge")
        return False

    def eligible_edges(self, node_id: str, results: Mapping[str, NodeExecutionResult]) -> List[FlowEdge]:
        """Outgoing edges of node_id that would currently be followed."""
        return [edge for edge in self.outgoing.get(node_id, []) if self.is_edge_eligible(edge, results)]
