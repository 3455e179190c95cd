"""
callTracer output -> flat node list, logs, token transfers and gas per
function category.

Traversal is an explicit-stack pre-order walk so deeply nested traces do not
hit the recursion limit, and the parser keeps no state between calls.
"""
from __future__ import annotations

import logging
from collections import Counter
from typing import Any, Dict, List, Mapping, Optional, Tuple

from tracescope.core.dto import CallTraceNode, LogEntry, StateChange, TokenTransfer
from tracescope.core.enums import FunctionCategory, Severity
from tracescope.core.errors import EmptyTraceError
from tracescope.core.models import (
    Advisory,
    CallHierarchyNode,
    CallSuccessRate,
    CallTraceAnalysis,
    CallTraceStats,
    ContractGas,
    InteractionPatterns,
    ValueTransfer,
)
from tracescope.parsers.hexutil import hex_slice_to_int, parse_quantity, preview, short
from tracescope.registry.signatures import (
    DEFAULT_REGISTRY,
    TRANSFER_FROM_SELECTOR,
    TRANSFER_SELECTOR,
    SignatureRegistry,
)

logger = logging.getLogger(__name__)

NOT_AVAILABLE = "N/A"
CREATE_CALL_TYPES = frozenset({"CREATE", "CREATE2"})

# Advisory thresholds for a single transaction
CALL_FAILURE_RATE_PERCENT = 10.0
COMPLEXITY_SCORE_LIMIT = 50.0
GAS_PER_CALL_LIMIT = 50_000


def _children(call: Mapping[str, Any]) -> List[Mapping[str, Any]]:
    calls = call.get("calls")
    if not isinstance(calls, list):
        return []
    return [c for c in calls if isinstance(c, dict)]


def _classify(
    call: Mapping[str, Any],
    call_type: str,
    registry: SignatureRegistry,
) -> Tuple[str, str, Optional[str]]:
    """(function_name, category, selector) for one call frame."""
    if not call.get("to") or call_type in CREATE_CALL_TYPES:
        return "Contract Creation", FunctionCategory.CONTRACT_CREATION.value, None

    input_data = call.get("input") or "0x"
    if input_data == "0x":
        return "ETH Transfer", FunctionCategory.OTHER.value, None
    if len(input_data) < 10:
        return NOT_AVAILABLE, FunctionCategory.OTHER.value, None

    selector = input_data[:10].lower()
    info = registry.function_info(selector)
    return info.name, info.category, selector


def _decode_known_call(
    selector: str,
    input_data: str,
    from_address: str,
    gas_used: int,
    function_name: str,
    category: str,
    contract_name: str,
    tx_hash: str,
) -> Tuple[Optional[TokenTransfer], StateChange]:
    if selector == TRANSFER_SELECTOR and len(input_data) >= 138:
        to_param = "0x" + input_data[34:74].lower()
        amount = hex_slice_to_int(input_data, 74, 138)
        sender = from_address
    elif selector == TRANSFER_FROM_SELECTOR and len(input_data) >= 202:
        sender = "0x" + input_data[34:74].lower()
        to_param = "0x" + input_data[98:138].lower()
        amount = hex_slice_to_int(input_data, 138, 202)
    else:
        return None, StateChange(
            contract_name=contract_name,
            function_name=function_name,
            change_type=category,
            gas_used=gas_used,
        )

    transfer = TokenTransfer(
        from_address=sender,
        to_address=to_param,
        amount=amount,
        gas_used=gas_used,
        tx_hash=tx_hash,
    )
    change = StateChange(
        contract_name=contract_name,
        function_name=function_name,
        change_type="transfer",
        gas_used=gas_used,
        from_address=sender,
        to_address=to_param,
        amount=amount,
    )
    return transfer, change


def parse_call_trace(
    trace: Any,
    tx_hash: str = "",
    registry: SignatureRegistry = DEFAULT_REGISTRY,
) -> CallTraceAnalysis:
    """
    Flatten a callTracer tree.

    Gas per function category is attributed from each node's exclusive gas
    (gasUsed minus its children's gasUsed), so category totals add up to the
    root call's gasUsed.

    Raises:
        EmptyTraceError: when the trace is missing or not an object
    """
    if not trace or not isinstance(trace, dict):
        raise EmptyTraceError(f"no call trace to parse for {tx_hash or 'transaction'}")

    analysis = CallTraceAnalysis(tx_hash=tx_hash)
    gas_by_category: Dict[str, int] = {}

    # (call, parent_id, depth, parent_to)
    stack: List[Tuple[Mapping[str, Any], Optional[str], int, Optional[str]]] = [(trace, None, 0, None)]
    counter = 0

    while stack:
        call, parent_id, depth, parent_to = stack.pop()
        node_id = f"node_{counter}"
        counter += 1

        call_type = str(call.get("type") or NOT_AVAILABLE).upper()
        from_address = str(call.get("from") or NOT_AVAILABLE).lower()
        raw_to = call.get("to")
        to_address = str(raw_to).lower() if raw_to else NOT_AVAILABLE

        if parent_to and raw_to:
            analysis.contract_interactions.add(f"{parent_to}->{to_address}")

        contract_name = registry.contract_name(raw_to)
        is_known = registry.is_known_contract(raw_to)
        input_data = call.get("input") or "0x"
        function_name, category, selector = _classify(call, call_type, registry)

        children = _children(call)
        if isinstance(call.get("calls"), list) and len(children) != len(call["calls"]):
            analysis.warnings.append(f"{node_id}: skipped malformed sub-call entries")

        gas_used = parse_quantity(call.get("gasUsed"))
        children_gas = sum(parse_quantity(c.get("gasUsed")) for c in children)
        self_gas = max(0, gas_used - children_gas)
        gas_by_category[category] = gas_by_category.get(category, 0) + self_gas

        if is_known and selector is not None:
            transfer, change = _decode_known_call(
                selector,
                input_data,
                from_address,
                gas_used,
                function_name,
                category,
                contract_name,
                tx_hash,
            )
            if transfer is not None:
                analysis.transfers.append(transfer)
            analysis.state_changes.append(change)

        error = call.get("error")
        if error:
            logger.debug("%s %s reverted: %s", tx_hash, node_id, error)

        analysis.nodes.append(
            CallTraceNode(
                id=node_id,
                parent_id=parent_id,
                call_type=call_type,
                depth=depth,
                from_address=from_address,
                to_address=to_address,
                value_wei=parse_quantity(call.get("value")),
                gas_used=gas_used,
                self_gas=self_gas,
                input_prefix=preview(input_data),
                output_prefix=preview(call.get("output") or ""),
                error=str(error) if error else None,
                contract_name=contract_name,
                function_category=category,
                function_name=function_name,
                selector=selector,
                is_known_contract=is_known,
            )
        )

        # reversed so the first child is visited next (pre-order)
        for child in reversed(children):
            stack.append((child, node_id, depth + 1, to_address if raw_to else None))

    analysis.logs = _extract_logs(trace, registry, analysis.warnings)
    analysis.gas_by_function_category = gas_by_category

    nodes = analysis.nodes
    analysis.stats = CallTraceStats(
        total_calls=len(nodes),
        known_contract_calls=sum(1 for n in nodes if n.is_known_contract),
        max_call_depth=max((n.depth for n in nodes), default=0),
        total_gas=nodes[0].gas_used if nodes else 0,
        summed_call_gas=sum(n.gas_used for n in nodes),
        errors=sum(1 for n in nodes if n.error),
    )
    logger.debug(
        "parsed call trace %s: %d calls, %d transfers, %d logs",
        tx_hash, len(nodes), len(analysis.transfers), len(analysis.logs),
    )
    return analysis


def _extract_logs(trace: Mapping[str, Any], registry: SignatureRegistry, warnings: List[str]) -> List[LogEntry]:
    out: List[LogEntry] = []
    stack: List[Mapping[str, Any]] = [trace]
    index = 0

    while stack:
        call = stack.pop()
        logs = call.get("logs")
        if isinstance(logs, list):
            for log in logs:
                if not isinstance(log, dict):
                    warnings.append("skipped malformed log entry")
                    continue
                out.append(_decode_log(log, index, registry))
                index += 1
        stack.extend(reversed(_children(call)))

    return out


def _decode_log(log: Mapping[str, Any], index: int, registry: SignatureRegistry) -> LogEntry:
    address = str(log.get("address") or NOT_AVAILABLE).lower()
    topics = [str(t) for t in (log.get("topics") or [])]
    data = log.get("data") or "0x"
    topic0 = topics[0].lower() if topics else NOT_AVAILABLE

    decoder = registry.event_decoder(topic0) if topics else None
    if decoder is None:
        return LogEntry(
            log_index=index,
            address=address,
            contract_name=registry.contract_name(address),
            topic0=topic0,
            event_name="Unknown",
        )

    try:
        fields = decoder.decode(topics, data)
    except (ValueError, TypeError, IndexError) as exc:
        logger.debug("failed to decode %s log %d: %s", decoder.name, index, exc)
        return LogEntry(
            log_index=index,
            address=address,
            contract_name=registry.contract_name(address),
            topic0=topic0,
            event_name=decoder.name,
            details=f"Event (Decode Error: {exc})",
        )

    is_transfer = decoder.name == "Transfer"
    is_approval = decoder.name == "Approval"
    if is_transfer:
        details = f"Transfer: {fields['value']} from {short(fields['from'])} to {short(fields['to'])}"
    elif is_approval:
        details = f"Approval: {short(fields['owner'])} approved {fields['value']} for {short(fields['spender'])}"
    else:
        details = decoder.name

    return LogEntry(
        log_index=index,
        address=address,
        contract_name=registry.contract_name(address),
        topic0=topic0,
        event_name=decoder.name,
        decoded_fields=fields,
        is_transfer=is_transfer,
        is_approval=is_approval,
        details=details,
    )


# ---- Derived views over a parsed trace ----

def call_hierarchy(analysis: CallTraceAnalysis) -> List[CallHierarchyNode]:
    """Re-nest the flat node list; returns the root nodes."""
    by_id: Dict[str, CallHierarchyNode] = {}
    roots: List[CallHierarchyNode] = []
    for node in analysis.nodes:
        by_id[node.id] = CallHierarchyNode(node=node)
    for node in analysis.nodes:
        item = by_id[node.id]
        parent = by_id.get(node.parent_id) if node.parent_id else None
        if parent is None:
            roots.append(item)
        else:
            parent.children.append(item)
    return roots


def gas_attribution(analysis: CallTraceAnalysis) -> List[ContractGas]:
    """Exclusive gas per target contract, most expensive first."""
    totals: Dict[str, List[Any]] = {}
    for node in analysis.nodes:
        entry = totals.setdefault(node.to_address, [node.contract_name, 0, 0])
        entry[1] += node.self_gas
        entry[2] += 1

    total_gas = analysis.stats.total_gas
    out = [
        ContractGas(
            address=address,
            contract_name=name,
            gas_used=gas,
            call_count=count,
            percentage=(gas / total_gas * 100) if total_gas else 0.0,
        )
        for address, (name, gas, count) in totals.items()
    ]
    out.sort(key=lambda c: c.gas_used, reverse=True)
    return out


def value_transfers(analysis: CallTraceAnalysis) -> List[ValueTransfer]:
    moving = [n for n in analysis.nodes if n.value_wei > 0]
    out = [
        ValueTransfer(
            from_address=n.from_address,
            to_address=n.to_address,
            value_wei=n.value_wei,
            gas_used=n.gas_used,
            success=not n.error,
            step=i,
        )
        for i, n in enumerate(moving)
    ]
    out.sort(key=lambda v: v.value_wei, reverse=True)
    return out


def call_success_rates(analysis: CallTraceAnalysis) -> List[CallSuccessRate]:
    stats: Dict[str, List[Any]] = {}
    for node in analysis.nodes:
        entry = stats.setdefault(node.to_address, [node.contract_name, 0, 0])
        entry[1] += 1
        if not node.error:
            entry[2] += 1

    return [
        CallSuccessRate(
            address=address,
            contract_name=name,
            total_calls=total,
            successful_calls=ok,
            failed_calls=total - ok,
            success_rate=ok / total * 100,
        )
        for address, (name, total, ok) in stats.items()
    ]


def interaction_patterns(analysis: CallTraceAnalysis) -> InteractionPatterns:
    nodes = analysis.nodes
    if not nodes:
        return InteractionPatterns(0, None, 0, 0.0, 0, 0.0, 0, 0.0)

    per_contract = Counter(n.to_address for n in nodes)
    most_active, most_active_count = per_contract.most_common(1)[0]
    unique = len(per_contract)
    avg_depth = sum(n.depth for n in nodes) / len(nodes)
    failed = sum(1 for n in nodes if n.error)

    return InteractionPatterns(
        unique_contracts=unique,
        most_active_contract=most_active,
        most_active_call_count=most_active_count,
        average_depth=avg_depth,
        failed_calls=failed,
        failure_rate=failed / len(nodes) * 100,
        total_value_wei=sum(n.value_wei for n in nodes),
        complexity_score=unique * avg_depth + failed,
    )


def suggestions(analysis: CallTraceAnalysis) -> List[Advisory]:
    if not analysis.nodes:
        return []
    patterns = interaction_patterns(analysis)
    out: List[Advisory] = []

    if patterns.failure_rate > CALL_FAILURE_RATE_PERCENT:
        out.append(Advisory("high_call_failure_rate", Severity.HIGH, {"failure_rate": patterns.failure_rate}))

    if patterns.complexity_score > COMPLEXITY_SCORE_LIMIT:
        out.append(
            Advisory(
                "complex_interaction",
                Severity.MEDIUM,
                {"unique_contracts": patterns.unique_contracts, "average_depth": patterns.average_depth},
            )
        )

    avg_gas = analysis.stats.total_gas / analysis.stats.total_calls
    if avg_gas > GAS_PER_CALL_LIMIT:
        out.append(Advisory("high_gas_per_call", Severity.MEDIUM, {"average_gas": avg_gas}))

    return out
