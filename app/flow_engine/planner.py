"""
Dependency Analyzer / Execution Planner

Turns a FlowConfig into an ordered list of parallel groups:

1. Structural validation (non-empty, unique ids, edges point at real nodes)
2. Cycle detection (three-color DFS, reports the exact cycle)
3. Topological grouping (Kahn's algorithm, groups keep declaration order)
4. Estimates and risk assessment

Every edge type is an ordering dependency: the target of an error edge still
has to wait for its source to finish.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Set

from app.flow_engine.errors import ErrorCode, ExecutionError, FlowPlanningError
from app.flow_engine.models import (
    DEFAULT_HTTP_TIMEOUT_MS,
    DelayNode,
    FlowConfig,
    FlowNode,
    HttpRequestNode,
    VariableSetNode,
)

logger = logging.getLogger(__name__)

LONG_RUNNING_DELAY_MS = 10000
LONG_RUNNING_HTTP_TIMEOUT_MS = 60000

WHITE, GRAY, BLACK = 0, 1, 2


@dataclass
class NodeDependencies:
    node_id: str
    depends_on: List[str] = field(default_factory=list)
    depended_by: List[str] = field(default_factory=list)
    depth: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            'node_id': self.node_id,
            'depends_on': list(self.depends_on),
            'depended_by': list(self.depended_by),
            'depth': self.depth,
        }


@dataclass
class FlowGraphAnalysis:
    start_nodes: List[str] = field(default_factory=list)
    end_nodes: List[str] = field(default_factory=list)
    isolated_nodes: List[str] = field(default_factory=list)
    unreachable_nodes: List[str] = field(default_factory=list)
    cycles: List[List[str]] = field(default_factory=list)
    max_depth: int = 0
    dependencies: Dict[str, NodeDependencies] = field(default_factory=dict)

    @property
    def has_cycles(self) -> bool:
        return bool(self.cycles)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'start_nodes': list(self.start_nodes),
            'end_nodes': list(self.end_nodes),
            'isolated_nodes': list(self.isolated_nodes),
            'unreachable_nodes': list(self.unreachable_nodes),
            'cycles': [list(c) for c in self.cycles],
            'has_cycles': self.has_cycles,
            'max_depth': self.max_depth,
            'dependencies': {k: v.to_dict() for k, v in self.dependencies.items()},
        }


@dataclass
class RiskAssessment:
    has_cycles: bool = False
    has_long_running_nodes: bool = False
    has_external_dependencies: bool = False
    has_concurrent_variable_writes: bool = False

    def to_dict(self) -> Dict[str, bool]:
        return {
            'has_cycles': self.has_cycles,
            'has_long_running_nodes': self.has_long_running_nodes,
            'has_external_dependencies': self.has_external_dependencies,
            'has_concurrent_variable_writes': self.has_concurrent_variable_writes,
        }


@dataclass
class FlowValidationResult:
    valid: bool
    errors: List[ExecutionError] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'valid': self.valid,
            'errors': [e.to_dict() for e in self.errors],
            'warnings': list(self.warnings),
        }


@dataclass
class FlowExecutionPlan:
    flow_id: str
    execution_order: List[List[str]]
    parallel_groups: List[List[str]]
    estimated_execution_time: int
    risk_assessment: RiskAssessment
    resource_requirements: Dict[str, int] = field(default_factory=dict)
    warnings: List[str] = field(default_factory=list)
    analysis: Optional[FlowGraphAnalysis] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            'flow_id': self.flow_id,
            'execution_order': [list(g) for g in self.execution_order],
            'parallel_groups': [list(g) for g in self.parallel_groups],
            'estimated_execution_time': self.estimated_execution_time,
            'risk_assessment': self.risk_assessment.to_dict(),
            'resource_requirements': dict(self.resource_requirements),
            'warnings': list(self.warnings),
            'analysis': self.analysis.to_dict() if self.analysis else None,
        }


def node_weight(node: FlowNode) -> int:
    """Nominal duration of a node in ms, used for the critical path."""
    if isinstance(node, HttpRequestNode):
        return node.timeout or DEFAULT_HTTP_TIMEOUT_MS
    if isinstance(node, DelayNode):
        return node.duration_ms
    return 0


def node_writes(node: FlowNode) -> Set[str]:
    """Variables a node assigns when it runs."""
    if isinstance(node, VariableSetNode):
        return {node.variable}
    if isinstance(node, HttpRequestNode):
        writes = set(node.extract.keys())
        if node.response_variable:
            writes.add(node.response_variable)
        return writes
    return set()


class DependencyAnalyzer:
    """
    Validates flow graphs and builds execution plans.

    Usage:
        analyzer = DependencyAnalyzer()
        plan = analyzer.create_plan(flow_config)
        for group in plan.execution_order:
            ...
    """

    def structural_errors(self, config: FlowConfig) -> List[ExecutionError]:
        """Empty flow, duplicate ids and dangling edge references."""
        errors: List[ExecutionError] = []

        if not config.nodes:
            errors.append(FlowPlanningError(
                "Flow has no nodes", ErrorCode.FLOW_VALIDATION_ERROR
            ))
            return errors

        seen: Set[str] = set()
        for node in config.nodes:
            if node.id in seen:
                errors.append(FlowPlanningError(
                    f"Duplicate node id: {node.id}",
                    ErrorCode.FLOW_VALIDATION_ERROR,
                    context={'node_id': node.id},
                ))
            seen.add(node.id)

        for edge in config.edges:
            missing = [end for end in (edge.source, edge.target) if end not in seen]
            if missing:
                errors.append(FlowPlanningError(
                    f"Edge {edge.id} references unknown node(s): {', '.join(missing)}",
                    ErrorCode.FLOW_VALIDATION_ERROR,
                    context={'edge_id': edge.id, 'missing': missing},
                ))

        return errors

    def _adjacency(self, config: FlowConfig) -> Dict[str, List[str]]:
        """Successor lists in declaration order, parallel edges collapsed."""
        successors: Dict[str, List[str]] = {node.id: [] for node in config.nodes}
        for edge in config.edges:
            targets = successors.get(edge.source)
            if targets is not None and edge.target in successors and edge.target not in targets:
                targets.append(edge.target)
        return successors

    def _predecessors(self, config: FlowConfig) -> Dict[str, List[str]]:
        predecessors: Dict[str, List[str]] = {node.id: [] for node in config.nodes}
        for edge in config.edges:
            sources = predecessors.get(edge.target)
            if sources is not None and edge.source in predecessors and edge.source not in sources:
                sources.append(edge.source)
        return predecessors

    def find_cycles(self, config: FlowConfig) -> List[List[str]]:
        """
        Three-color DFS over the edge graph.

        Returns:
            One node-id list per back edge found, in path order, e.g.
            ['a', 'b', 'c'] for a -> b -> c -> a
        """
        successors = self._adjacency(config)
        color = {node_id: WHITE for node_id in successors}
        cycles: List[List[str]] = []

        for root in successors:
            if color[root] != WHITE:
                continue

            # Iterative DFS; stack holds (node, next successor index)
            path: List[str] = [root]
            stack = [(root, 0)]
            color[root] = GRAY

            while stack:
                node_id, index = stack[-1]
                targets = successors[node_id]

                if index >= len(targets):
                    color[node_id] = BLACK
                    stack.pop()
                    path.pop()
                    continue

                stack[-1] = (node_id, index + 1)
                target = targets[index]

                if color[target] == WHITE:
                    color[target] = GRAY
                    stack.append((target, 0))
                    path.append(target)
                elif color[target] == GRAY:
                    cycle = path[path.index(target):]
                    logger.warning(f"Cycle detected in flow {config.id}: {' -> '.join(cycle + [target])}")
                    cycles.append(list(cycle))

        return cycles

    def topological_groups(self, config: FlowConfig) -> List[List[str]]:
        """
        Kahn's algorithm, one group per wave of zero in-degree nodes.

        Nodes left over (cycles) are not returned.
        """
        successors = self._adjacency(config)
        in_degree = {node_id: 0 for node_id in successors}
        for targets in successors.values():
            for target in targets:
                in_degree[target] += 1

        order = [node.id for node in config.nodes]
        ready = [node_id for node_id in order if in_degree[node_id] == 0]
        groups: List[List[str]] = []

        while ready:
            groups.append(ready)
            released: Set[str] = set()
            for node_id in ready:
                for target in successors[node_id]:
                    in_degree[target] -= 1
                    if in_degree[target] == 0:
                        released.add(target)
            ready = [node_id for node_id in order if node_id in released]

        return groups

    def analyze(self, config: FlowConfig) -> FlowGraphAnalysis:
        """Graph facts used by validation, planning and authoring tools."""
        successors = self._adjacency(config)
        predecessors = self._predecessors(config)

        start_nodes = [n for n in successors if not predecessors[n]]
        end_nodes = [n for n in successors if not successors[n]]
        isolated = [n for n in start_nodes if not successors[n]] if len(successors) > 1 else []

        reachable: Set[str] = set()
        pending = list(start_nodes)
        while pending:
            node_id = pending.pop()
            if node_id in reachable:
                continue
            reachable.add(node_id)
            pending.extend(successors[node_id])
        unreachable = [n for n in successors if n not in reachable]

        depth: Dict[str, int] = {}
        for index, group in enumerate(self.topological_groups(config)):
            for node_id in group:
                depth[node_id] = index

        dependencies = {
            node_id: NodeDependencies(
                node_id=node_id,
                depends_on=list(predecessors[node_id]),
                depended_by=list(successors[node_id]),
                depth=depth.get(node_id, -1),
            )
            for node_id in successors
        }

        return FlowGraphAnalysis(
            start_nodes=start_nodes,
            end_nodes=end_nodes,
            isolated_nodes=isolated,
            unreachable_nodes=unreachable,
            cycles=self.find_cycles(config),
            max_depth=max(depth.values()) if depth else 0,
            dependencies=dependencies,
        )

    def validate(self, config: FlowConfig) -> FlowValidationResult:
        """
        Validate a flow without raising.

        Returns:
            FlowValidationResult with planning errors and non-fatal warnings
        """
        errors = self.structural_errors(config)
        if errors:
            return FlowValidationResult(valid=False, errors=errors)

        analysis = self.analyze(config)
        for cycle in analysis.cycles:
            errors.append(self._cycle_error(cycle))

        return FlowValidationResult(
            valid=not errors,
            errors=errors,
            warnings=self._warnings(config, analysis),
        )

    def create_plan(self, config: FlowConfig) -> FlowExecutionPlan:
        """
        Build the execution plan.

        Raises:
            FlowPlanningError: FLOW_VALIDATION_ERROR for structural problems,
                FLOW_CIRCULAR_DEPENDENCY (context['cycle']) for cycles
        """
        errors = self.structural_errors(config)
        if errors:
            first = errors[0]
            if len(errors) > 1:
                first.context['additional_errors'] = [e.message for e in errors[1:]]
            raise first

        analysis = self.analyze(config)
        if analysis.cycles:
            raise self._cycle_error(analysis.cycles[0], analysis.cycles)

        groups = self.topological_groups(config)
        nodes = {node.id: node for node in config.nodes}
        warnings = self._warnings(config, analysis)
        concurrent_writes = self._concurrent_writes(groups, nodes)
        for group_index, variable in concurrent_writes:
            warnings.append(
                f"Variable '{variable}' is written by more than one node in group {group_index}; "
                f"assignments run in declaration order"
            )

        plan = FlowExecutionPlan(
            flow_id=config.id,
            execution_order=groups,
            parallel_groups=[g for g in groups if len(g) > 1],
            estimated_execution_time=self._critical_path(config, nodes),
            risk_assessment=RiskAssessment(
                has_cycles=False,
                has_long_running_nodes=any(self._is_long_running(n) for n in config.nodes),
                has_external_dependencies=any(isinstance(n, HttpRequestNode) for n in config.nodes),
                has_concurrent_variable_writes=bool(concurrent_writes),
            ),
            resource_requirements={
                'http_requests': sum(1 for n in config.nodes if isinstance(n, HttpRequestNode)),
                'delays_ms': sum(n.duration_ms for n in config.nodes if isinstance(n, DelayNode)),
                'max_parallelism': max((len(g) for g in groups), default=0),
            },
            warnings=warnings,
            analysis=analysis,
        )

        logger.info(
            f"Planned flow {config.id}: {len(config.nodes)} nodes in {len(groups)} groups, "
            f"estimated {plan.estimated_execution_time}ms"
        )
        return plan

    def _cycle_error(self, cycle: List[str], cycles: Optional[List[List[str]]] = None) -> FlowPlanningError:
        context = {'cycle': list(cycle)}
        if cycles and len(cycles) > 1:
            context['cycles'] = [list(c) for c in cycles]
        return FlowPlanningError(
            f"Circular dependency detected: {' -> '.join(cycle + cycle[:1])}",
            ErrorCode.FLOW_CIRCULAR_DEPENDENCY,
            context=context,
        )

    def _warnings(self, config: FlowConfig, analysis: FlowGraphAnalysis) -> List[str]:
        warnings = []
        for node_id in analysis.isolated_nodes:
            warnings.append(f"Node {node_id} is not connected to any other node")
        for node_id in analysis.unreachable_nodes:
            warnings.append(f"Node {node_id} is not reachable from any start node")
        if not config.is_active:
            warnings.append("Flow is marked inactive")
        return warnings

    def _critical_path(self, config: FlowConfig, nodes: Dict[str, FlowNode]) -> int:
        """Longest weighted path through the DAG."""
        predecessors = self._predecessors(config)
        finish: Dict[str, int] = {}
        for group in self.topological_groups(config):
            for node_id in group:
                earliest = max((finish[p] for p in predecessors[node_id]), default=0)
                finish[node_id] = earliest + node_weight(nodes[node_id])
        return max(finish.values(), default=0)

    def _is_long_running(self, node: FlowNode) -> bool:
        if isinstance(node, DelayNode):
            return node.duration_ms >= LONG_RUNNING_DELAY_MS
        if isinstance(node, HttpRequestNode):
            return node.timeout >= LONG_RUNNING_HTTP_TIMEOUT_MS
        return False

    def _concurrent_writes(self, groups: List[List[str]], nodes: Dict[str, FlowNode]) -> List[tuple]:
        conflicts = []
        for index, group in enumerate(groups):
            owners: Dict[str, int] = {}
            for node_id in group:
                for variable in node_writes(nodes[node_id]):
                    owners[variable] = owners.get(variable, 0) + 1
            for variable, count in owners.items():
                if count > 1:
                    conflicts.append((index, variable))
        return conflicts
