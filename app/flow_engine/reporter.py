"""
Result Reporter - Structured and human-readable flow results
"""

import json
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from app.flow_engine.context import DebugInfo, ExecutionContext, NodeExecutionResult, NodeStatus
from app.flow_engine.errors import ExecutionError

VALUE_PREVIEW_LENGTH = 50


class FlowExecutionStatus(str, Enum):
    """Final status of a run"""
    COMPLETED = "completed"
    COMPLETED_WITH_ERRORS = "completed_with_errors"
    FAILED = "failed"
    TIMEOUT = "timeout"


@dataclass
class FlowResultSummary:
    total_nodes: int = 0
    successful_nodes: int = 0
    failed_nodes: int = 0
    skipped_nodes: int = 0
    success_rate: float = 0.0
    execution_time: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            'total_nodes': self.total_nodes,
            'successful_nodes': self.successful_nodes,
            'failed_nodes': self.failed_nodes,
            'skipped_nodes': self.skipped_nodes,
            'success_rate': self.success_rate,
            'execution_time': self.execution_time,
        }


@dataclass
class FlowExecutionResult:
    flow_id: str
    status: FlowExecutionStatus
    execution_time: int = 0
    node_results: List[NodeExecutionResult] = field(default_factory=list)
    errors: List[ExecutionError] = field(default_factory=list)
    variables: Dict[str, Any] = field(default_factory=dict)
    execution_path: List[str] = field(default_factory=list)
    skipped_nodes: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)
    total_nodes: int = 0
    flow_name: Optional[str] = None
    debug_info: Optional[DebugInfo] = None

    @property
    def summary(self) -> FlowResultSummary:
        return summarize(self)

    def get_node_result(self, node_id: str) -> Optional[NodeExecutionResult]:
        for result in self.node_results:
            if result.node_id == node_id:
                return result
        return None

    def to_dict(self) -> Dict[str, Any]:
        data = {
            'flow_id': self.flow_id,
            'flow_name': self.flow_name,
            'status': self.status.value,
            'execution_time': self.execution_time,
            'node_results': [r.to_dict() for r in self.node_results],
            'errors': [e.to_dict() for e in self.errors],
            'variables': self.variables,
            'execution_path': list(self.execution_path),
            'skipped_nodes': list(self.skipped_nodes),
            'warnings': list(self.warnings),
            'summary': self.summary.to_dict(),
        }
        # Heavy payloads only in debug mode
        if self.debug_info is not None:
            data['debug_info'] = self.debug_info.to_dict()
        return data


def build_result(
    flow_id: str,
    status: FlowExecutionStatus,
    context: ExecutionContext,
    total_nodes: int,
    flow_name: Optional[str] = None,
    skipped_nodes: Optional[List[str]] = None,
    warnings: Optional[List[str]] = None,
) -> FlowExecutionResult:
    """Freeze an ExecutionContext into a FlowExecutionResult."""
    debug_info = context.debug
    if debug_info is not None:
        debug_info.end_time = datetime.utcnow()

    return FlowExecutionResult(
        flow_id=flow_id,
        flow_name=flow_name,
        status=status,
        execution_time=context.elapsed_ms(),
        node_results=list(context.node_results.values()),
        errors=list(context.errors),
        variables=dict(context.variables),
        execution_path=list(context.execution_path),
        skipped_nodes=list(skipped_nodes or []),
        warnings=list(warnings or []),
        total_nodes=total_nodes,
        debug_info=debug_info,
    )


def summarize(result: FlowExecutionResult) -> FlowResultSummary:
    successful = sum(1 for r in result.node_results if r.status == NodeStatus.SUCCESS)
    failed = sum(1 for r in result.node_results if r.status == NodeStatus.ERROR)
    skipped = sum(1 for r in result.node_results if r.status == NodeStatus.SKIPPED) + len(result.skipped_nodes)
    total = max(result.total_nodes, successful + failed + skipped)
    attempted = successful + failed

    return FlowResultSummary(
        total_nodes=total,
        successful_nodes=successful,
        failed_nodes=failed,
        skipped_nodes=skipped,
        success_rate=round(successful / attempted * 100, 1) if attempted else 0.0,
        execution_time=result.execution_time,
    )


def _preview(value: Any) -> str:
    if isinstance(value, str):
        text = value
    else:
        try:
            text = json.dumps(value, default=str)
        except (TypeError, ValueError):
            text = str(value)
    if len(text) > VALUE_PREVIEW_LENGTH:
        return text[:VALUE_PREVIEW_LENGTH] + '...'
    return text


STATUS_LABELS = {
    FlowExecutionStatus.COMPLETED: 'COMPLETED',
    FlowExecutionStatus.COMPLETED_WITH_ERRORS: 'COMPLETED WITH ERRORS',
    FlowExecutionStatus.FAILED: 'FAILED',
    FlowExecutionStatus.TIMEOUT: 'TIMEOUT',
}


def format_execution_result(result: FlowExecutionResult) -> str:
    """
    Render a result as plain text for logs, CLIs and agent tools.

    Sections: header, node counts, execution path, errors, final variables
    and, when present, the debug trace.
    """
    summary = summarize(result)
    title = result.flow_name or result.flow_id
    lines = [
        f"Flow execution: {title}",
        f"Status: {STATUS_LABELS[result.status]}",
        f"Execution time: {result.execution_time}ms",
        "",
        f"Nodes: {summary.total_nodes} total, {summary.successful_nodes} succeeded, "
        f"{summary.failed_nodes} failed, {summary.skipped_nodes} skipped "
        f"({summary.success_rate}% success rate)",
    ]

    if result.execution_path:
        lines.append(f"Execution path: {' -> '.join(result.execution_path)}")

    if result.node_results:
        lines.append("")
        lines.append("Node results:")
        for node in result.node_results:
            line = f"  - {node.node_id}: {node.status.value} ({node.execution_time}ms)"
            if node.response and 'status' in node.response:
                line += f" HTTP {node.response['status']}"
            if node.error is not None:
                line += f" [{node.error.code.value}] {node.error.message}"
            lines.append(line)

    if result.skipped_nodes:
        lines.append(f"Not started: {', '.join(result.skipped_nodes)}")

    if result.errors:
        lines.append("")
        lines.append(f"Errors ({len(result.errors)}):")
        for error in result.errors:
            where = f" at {error.node_id}" if error.node_id else ""
            lines.append(f"  - [{error.code.value}]{where}: {error.message}")

    if result.warnings:
        lines.append("")
        lines.append("Warnings:")
        for warning in result.warnings:
            lines.append(f"  - {warning}")

    if result.variables:
        lines.append("")
        lines.append("Final variables:")
        for name, value in result.variables.items():
            lines.append(f"  {name} = {_preview(value)}")

    debug = result.debug_info
    if debug is not None:
        lines.append("")
        lines.append(f"Debug (execution {debug.execution_id}):")
        for node_id, elapsed in debug.node_execution_times.items():
            lines.append(f"  {node_id}: {elapsed}ms")
        for change in debug.variable_changes:
            lines.append(
                f"  set {change.variable}: {_preview(change.old_value)} -> {_preview(change.new_value)}"
                + (f" (by {change.node_id})" if change.node_id else "")
            )
        for node_id, details in debug.request_details.items():
            request = details.get('request', {})
            response = details.get('response')
            status = f" -> {response['status']} in {response['response_time']}ms" if response else ""
            lines.append(f"  {node_id}: {request.get('method')} {request.get('url')}{status}")

    return "\n".join(lines)
