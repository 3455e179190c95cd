"""
Sanity checks over parsed analyses. Problems are reported in a
ValidationResult, never raised.
"""
from __future__ import annotations

from typing import Optional

from tracescope.core.models import (
    CallTraceAnalysis,
    StructLogAnalysis,
    TransferNetwork,
    ValidationResult,
)

LARGE_STEP_COUNT = 10_000
LARGE_CALL_COUNT = 1_000
LARGE_NETWORK_NODES = 100
LARGE_NETWORK_EDGES = 500


def validate_call_trace_analysis(analysis: CallTraceAnalysis) -> ValidationResult:
    result = ValidationResult()

    if analysis.stats.total_calls <= 0:
        result.errors.append("Invalid total_calls: must be greater than 0")
    if analysis.stats.total_gas <= 0:
        result.errors.append("Invalid total_gas: must be greater than 0")

    if not analysis.nodes:
        result.warnings.append("Empty call list")

    ids = set()
    for i, node in enumerate(analysis.nodes):
        if not node.id:
            result.errors.append(f"Call {i}: missing id")
        elif node.id in ids:
            result.errors.append(f"Call {i}: duplicate id {node.id!r}")
        ids.add(node.id)
        if not node.from_address:
            result.errors.append(f"Call {i}: missing from address")
        if not node.to_address:
            result.errors.append(f"Call {i}: missing to address")
        if node.gas_used < 0:
            result.errors.append(f"Call {i}: invalid gas usage")
        if node.value_wei < 0:
            result.errors.append(f"Call {i}: invalid value")

    for i, node in enumerate(analysis.nodes):
        if node.parent_id is not None and node.parent_id not in ids:
            result.warnings.append(f"Call {i}: parent_id references non-existent call")

    if len(analysis.nodes) > LARGE_CALL_COUNT:
        result.warnings.append(f"Large dataset detected (>{LARGE_CALL_COUNT:,} calls)")
    result.warnings.extend(analysis.warnings)
    return result


def validate_struct_log_analysis(analysis: StructLogAnalysis) -> ValidationResult:
    result = ValidationResult()

    if analysis.summary.total_steps <= 0:
        result.errors.append("Invalid total_steps: must be greater than 0")
    if analysis.summary.total_gas_cost <= 0:
        result.errors.append("Invalid total_gas_cost: must be greater than 0")

    if not analysis.steps:
        result.warnings.append("Empty steps list")

    for i, step in enumerate(analysis.steps):
        if step.gas_cost < 0:
            result.errors.append(f"Step {i}: invalid gas cost")
        if not step.op:
            result.errors.append(f"Step {i}: missing opcode")

    if len(analysis.steps) > LARGE_STEP_COUNT:
        result.warnings.append(f"Large dataset detected (>{LARGE_STEP_COUNT:,} steps)")
    result.warnings.extend(analysis.warnings)
    return result


def validate_network(network: TransferNetwork) -> ValidationResult:
    result = ValidationResult()

    for address, node in network.nodes.items():
        if not address:
            result.errors.append("Node with empty address")
        elif node.address != address:
            result.errors.append(f"Node {address}: key does not match address {node.address}")

    for (src, dst), edge in network.edges.items():
        if src not in network.nodes:
            result.errors.append(f"Edge {src}->{dst}: invalid source node")
        if dst not in network.nodes:
            result.errors.append(f"Edge {src}->{dst}: invalid target node")
        if edge.value < 0 or edge.count <= 0:
            result.errors.append(f"Edge {src}->{dst}: invalid value or count")

    if len(network.nodes) > LARGE_NETWORK_NODES:
        result.warnings.append(f"Large network detected (>{LARGE_NETWORK_NODES} nodes)")
    if len(network.edges) > LARGE_NETWORK_EDGES:
        result.warnings.append(f"Large network detected (>{LARGE_NETWORK_EDGES} edges)")
    return result


def validate_transaction_analysis(
    call_analysis: Optional[CallTraceAnalysis] = None,
    struct_analysis: Optional[StructLogAnalysis] = None,
) -> ValidationResult:
    """Both checks combined, messages prefixed with their source."""
    result = ValidationResult()
    if struct_analysis is not None:
        part = validate_struct_log_analysis(struct_analysis)
        result.errors.extend(f"StructLog: {e}" for e in part.errors)
        result.warnings.extend(f"StructLog: {w}" for w in part.warnings)
    if call_analysis is not None:
        part = validate_call_trace_analysis(call_analysis)
        result.errors.extend(f"CallTrace: {e}" for e in part.errors)
        result.warnings.extend(f"CallTrace: {w}" for w in part.warnings)
    if call_analysis is None and struct_analysis is None:
        result.warnings.append("No trace data provided")
    return result
