from __future__ import annotations

from dataclasses import asdict, is_dataclass
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, List

from tracescope.core.models import (
    Advisory,
    BlockReport,
    SupplyAnalysis,
    TransactionReport,
    TransferNetwork,
)
from tracescope.parsers.call_trace_parser import (
    call_success_rates,
    gas_attribution,
    interaction_patterns,
    suggestions,
    value_transfers,
)


def _dec_to_str(x: Decimal) -> str:
    # keep as string for JSON precision safety
    return format(x, "f")


def _plain(obj: Any) -> Any:
    """Record -> JSON-ready structure (Decimal as string, enums by value)."""
    if is_dataclass(obj) and not isinstance(obj, type):
        obj = asdict(obj)
    if isinstance(obj, dict):
        return {(k if isinstance(k, str) else str(k)): _plain(v) for k, v in obj.items()}
    if isinstance(obj, (list, tuple)):
        return [_plain(v) for v in obj]
    if isinstance(obj, (set, frozenset)):
        return sorted(_plain(v) for v in obj)
    if isinstance(obj, Decimal):
        return _dec_to_str(obj)
    if isinstance(obj, Enum):
        return obj.value
    return obj


def advisory_to_dict(a: Advisory) -> Dict[str, Any]:
    return {
        "code": a.code,
        "severity": a.severity.value,
        "message": a.message(),
        "params": _plain(a.params),
    }


def _advisories(items: List[Advisory]) -> List[Dict[str, Any]]:
    return [advisory_to_dict(a) for a in items]


def network_to_dict(n: TransferNetwork) -> Dict[str, Any]:
    return {
        "nodes": [_plain(node) for node in n.nodes.values()],
        "edges": [
            {
                "from": e.from_address,
                "to": e.to_address,
                "value": e.value,
                "count": e.count,
            }
            for e in n.edges.values()
        ],
        "total_volume": n.total_volume,
        "density": n.density,
        "truncated": n.truncated,
    }


def transaction_report_to_dict(r: TransactionReport) -> Dict[str, Any]:
    call = r.call
    out: Dict[str, Any] = {
        "tx_hash": r.tx_hash,
        "network": r.network,
        "call_trace": {
            "stats": _plain(call.stats),
            "calls": [_plain(node) for node in call.nodes],
            "logs": [_plain(log) for log in call.logs],
            "transfers": [_plain(t) for t in call.transfers],
            "state_changes": [_plain(s) for s in call.state_changes],
            "contract_interactions": sorted(call.contract_interactions),
            "gas_by_function_category": dict(call.gas_by_function_category),
            "gas_attribution": [_plain(g) for g in gas_attribution(call)],
            "value_transfers": [_plain(v) for v in value_transfers(call)],
            "success_rates": [_plain(s) for s in call_success_rates(call)],
            "interaction_patterns": _plain(interaction_patterns(call)),
            "suggestions": _advisories(suggestions(call)),
            "warnings": list(call.warnings),
        },
        "struct_log": None,
        "gas_breakdown": {
            "total_gas": r.gas_breakdown.total_gas,
            "entries": [
                dict(_plain(e), total=e.total, percentage=r.gas_breakdown.percentage(e))
                for e in r.gas_breakdown.entries
            ],
            "suggestions": _advisories(r.gas_breakdown.suggestions),
        },
        "validation": {
            "is_valid": r.validation.is_valid,
            "errors": list(r.validation.errors),
            "warnings": list(r.validation.warnings),
        },
    }
    if r.struct is not None:
        s = r.struct
        out["struct_log"] = {
            "summary": _plain(s.summary),
            "opcode_categories": [_plain(x) for x in s.opcode_categories],
            "top_opcodes": [_plain(x) for x in s.top_opcodes],
            "known_contract_operations": [_plain(x) for x in s.known_contract_operations],
            "known_contract_categories": [_plain(x) for x in s.known_contract_categories],
            "warnings": list(s.warnings),
        }
    return out


def block_report_to_dict(r: BlockReport) -> Dict[str, Any]:
    b = r.block
    return {
        "block": r.block_identifier,
        "network": r.network,
        "summary": _plain(b.summary),
        "transactions": [_plain(t) for t in b.transactions],
        "transfers": [_plain(t) for t in b.transfers],
        "internal_calls": [_plain(c) for c in b.internal_calls],
        "function_categories": dict(b.function_categories),
        "unusual_patterns": _advisories(b.unusual_patterns),
        "gas": {
            "total_gas_used": r.gas.total_gas_used,
            "average_gas_per_transaction": r.gas.average_gas_per_transaction,
            "gas_per_successful_transaction": r.gas.gas_per_successful_transaction,
            "high_gas_transactions": [t.tx_hash for t in r.gas.high_gas_transactions],
            "gas_by_category": _plain(r.gas.gas_by_category),
            "cost": _plain(r.gas.cost),
            "suggestions": _advisories(r.gas.suggestions),
        },
        "function_patterns": {
            "function_usage": dict(r.function_patterns.function_usage),
            "category_distribution": dict(r.function_patterns.category_distribution),
            "top_functions": [_plain(f) for f in r.function_patterns.top_functions],
        },
        "volume_flows": _plain(r.volume_flows),
        "internal_stats": _plain(r.internal_stats),
        "transfer_network": network_to_dict(r.transfer_network),
        "topology": _plain(r.topology),
        "activity": {
            "summary": r.activity.summary,
            "highlights": list(r.activity.highlights),
            "recommendations": _advisories(r.activity.recommendations),
            "risk_factors": _advisories(r.activity.risk_factors),
        },
        "warnings": list(b.warnings),
        "validation": {
            "is_valid": r.validation.is_valid,
            "errors": list(r.validation.errors),
            "warnings": list(r.validation.warnings),
        },
    }


def supply_analysis_to_dict(a: SupplyAnalysis) -> Dict[str, Any]:
    return {
        "window_size": a.window_size,
        "metrics": _plain(a.metrics),
        "events": [_plain(e) for e in a.events],
        "trend": [_plain(p) for p in a.trend],
        "warnings": list(a.warnings),
    }
