from __future__ import annotations

import logging
import math
from decimal import Decimal
from typing import Dict, List, Optional, Sequence, Union

from tracescope.config import settings
from tracescope.core.dto import InternalCall, TransactionSummary
from tracescope.core.enums import OpcodeCategory, Severity, Trend
from tracescope.core.models import (
    Advisory,
    CallTraceAnalysis,
    CategoryGasStats,
    CostAnalysis,
    GasAnalysis,
    GasBreakdownEntry,
    GasReport,
    HistoricalComparison,
    StructLogAnalysis,
    UnifiedGasBreakdown,
)
from tracescope.parsers.call_trace_parser import gas_attribution
from tracescope.registry.signatures import UNKNOWN_CONTRACT

logger = logging.getLogger(__name__)

KNOWN_LABEL = "PYUSD"
REGULAR_TRANSACTION = "Regular Transaction"

HIGH_GAS_MULTIPLIER = 2
HIGH_GAS_LIMIT = 10
KNOWN_ABOVE_AVERAGE_MULTIPLIER = 1.5
FUNCTION_VARIANCE_RATIO = 0.3
KNOWN_TX_RATIO = 0.5
TREND_THRESHOLD = 0.1

# report warnings
GAS_PER_SUCCESS_WARNING = 200_000
HIGH_GAS_TX_WARNING = 5
TOTAL_COST_WARNING_ETH = Decimal("1")

# unified breakdown
BREAKDOWN_LIMIT = 10
GAS_CONCENTRATION_PERCENT = 70.0
CALL_FAILURE_PERCENT = 10.0
STORAGE_HEAVY_PERCENT = 30.0
MEMORY_HEAVY_PERCENT = 25.0

_SEVERITY_ORDER = {Severity.HIGH: 3, Severity.MEDIUM: 2, Severity.LOW: 1}

_OPCODE_LABELS = {
    OpcodeCategory.ARITHMETIC.value: "Computation",
    OpcodeCategory.COMPARISON.value: "Computation",
    OpcodeCategory.BITWISE.value: "Computation",
    OpcodeCategory.STORAGE.value: "Storage Operations",
    OpcodeCategory.MEMORY.value: "Memory Operations",
    OpcodeCategory.STACK.value: "Stack Operations",
    OpcodeCategory.FLOW.value: "Control Flow",
    OpcodeCategory.CONTRACT.value: "System Calls",
}


def gas_category(tx: TransactionSummary, known_label: str = KNOWN_LABEL) -> str:
    """Bucket name used for per-category gas stats."""
    if not tx.known_interaction:
        label = REGULAR_TRANSACTION
    elif tx.is_transfer:
        label = f"{known_label} Transfer"
    elif tx.is_mint:
        label = f"{known_label} Mint"
    elif tx.is_burn:
        label = f"{known_label} Burn"
    else:
        label = f"{known_label} {tx.function_category.replace('_', ' ')}"
    if tx.failed:
        label += " (Failed)"
    return label


def _population_std(values: Sequence[int], mean: float) -> float:
    return math.sqrt(sum((v - mean) ** 2 for v in values) / len(values))


def cost_analysis(
    transactions: Sequence[TransactionSummary],
    gas_price_gwei: Union[Decimal, int, str] = settings.DEFAULT_GAS_PRICE_GWEI,
    eth_price: Optional[Decimal] = None,
) -> CostAnalysis:
    gas_price_wei = int(Decimal(str(gas_price_gwei)) * settings.WEI_PER_GWEI)

    total_wei = known_wei = 0
    for tx in transactions:
        cost = tx.gas_used * gas_price_wei
        total_wei += cost
        if tx.known_interaction:
            known_wei += cost

    total_eth = Decimal(total_wei) / settings.WEI_PER_ETH
    return CostAnalysis(
        gas_price_wei=gas_price_wei,
        total_cost_wei=total_wei,
        total_cost_eth=total_eth,
        average_cost_eth=(total_eth / len(transactions)) if transactions else Decimal("0"),
        known_transactions_cost_eth=Decimal(known_wei) / settings.WEI_PER_ETH,
        regular_transactions_cost_eth=Decimal(total_wei - known_wei) / settings.WEI_PER_ETH,
        total_cost_fiat=(total_eth * Decimal(str(eth_price))) if eth_price is not None else None,
    )


def analyze_gas_usage(
    transactions: Sequence[TransactionSummary],
    internal_transactions: Sequence[InternalCall] = (),
    gas_price_gwei: Union[Decimal, int, str] = settings.DEFAULT_GAS_PRICE_GWEI,
    eth_price: Optional[Decimal] = None,
) -> GasAnalysis:
    """
    Block-level gas statistics, cost model and optimization advisories.

    Args:
        transactions: per-transaction summaries (see block_processor)
        internal_transactions: internal calls into known contracts
        gas_price_gwei: gas price applied to every transaction
        eth_price: optional fiat price of 1 ETH for total_cost_fiat
    """
    analysis = GasAnalysis(cost=cost_analysis(transactions, gas_price_gwei, eth_price))
    if not transactions:
        return analysis

    total = sum(tx.gas_used for tx in transactions)
    average = total / len(transactions)
    successful = sum(1 for tx in transactions if not tx.failed)

    analysis.total_gas_used = total
    analysis.average_gas_per_transaction = average
    analysis.gas_per_successful_transaction = (total / successful) if successful else 0.0

    for tx in transactions:
        analysis.gas_by_category.setdefault(gas_category(tx), CategoryGasStats()).add(tx.gas_used)
    for call in internal_transactions:
        analysis.gas_by_category.setdefault(f"Internal: {call.function_name}", CategoryGasStats()).add(call.gas_used)

    heavy = [tx for tx in transactions if tx.gas_used > average * HIGH_GAS_MULTIPLIER]
    heavy.sort(key=lambda tx: tx.gas_used, reverse=True)
    analysis.high_gas_transactions = heavy[:HIGH_GAS_LIMIT]

    analysis.suggestions = _suggestions(transactions, internal_transactions, average)
    logger.debug(
        "gas analysis: %d txs, %d total gas, %d suggestions",
        len(transactions), total, len(analysis.suggestions),
    )
    return analysis


def _suggestions(
    transactions: Sequence[TransactionSummary],
    internal_transactions: Sequence[InternalCall],
    average: float,
) -> List[Advisory]:
    out: List[Advisory] = []

    failed = [tx for tx in transactions if tx.failed]
    if failed:
        out.append(
            Advisory(
                "failed_gas_waste",
                Severity.MEDIUM,
                {"failed_count": len(failed), "wasted_gas": sum(tx.gas_used for tx in failed)},
            )
        )

    above = [tx for tx in transactions if tx.known_interaction and tx.gas_used > average * KNOWN_ABOVE_AVERAGE_MULTIPLIER]
    if above:
        out.append(Advisory("known_contract_above_average_gas", Severity.LOW, {"count": len(above)}))

    deep = [c for c in internal_transactions if c.depth > settings.MAX_INTERNAL_CALL_DEPTH]
    if deep:
        out.append(
            Advisory(
                "deep_internal_calls",
                Severity.MEDIUM,
                {"count": len(deep), "max_depth": settings.MAX_INTERNAL_CALL_DEPTH},
            )
        )

    by_function: Dict[str, List[int]] = {}
    for tx in transactions:
        if tx.known_interaction and tx.function_name:
            by_function.setdefault(tx.function_name, []).append(tx.gas_used)
    for name, usages in by_function.items():
        if len(usages) < 2:
            continue
        mean = sum(usages) / len(usages)
        std = _population_std(usages, mean)
        if std > mean * FUNCTION_VARIANCE_RATIO:
            out.append(
                Advisory(
                    "function_gas_variance",
                    Severity.LOW,
                    {"function": name, "average_gas": mean, "std_dev": std},
                )
            )

    if average > settings.HIGH_AVERAGE_GAS:
        out.append(Advisory("high_average_gas", Severity.MEDIUM, {"average_gas": average}))

    ratio = sum(1 for tx in transactions if tx.known_interaction) / len(transactions)
    if ratio > KNOWN_TX_RATIO:
        out.append(Advisory("known_contract_heavy_block", Severity.LOW, {"ratio": ratio}))

    return out


def gas_report(analysis: GasAnalysis) -> GasReport:
    cost = analysis.cost
    total_eth = cost.total_cost_eth if cost else Decimal("0")
    avg_eth = cost.average_cost_eth if cost else Decimal("0")

    report = GasReport(
        summary=(
            f"Block consumed {analysis.total_gas_used:,} total gas across transactions, "
            f"with an average of {analysis.average_gas_per_transaction:.0f} gas per transaction. "
            f"Total cost: {total_eth:.6f} ETH."
        ),
        key_metrics=[
            ("Total Gas Used", f"{analysis.total_gas_used:,}"),
            ("Average Gas/Tx", f"{analysis.average_gas_per_transaction:.0f}"),
            ("Gas per Successful Tx", f"{analysis.gas_per_successful_transaction:.0f}"),
            ("Total Cost (ETH)", f"{total_eth:.6f}"),
            ("Avg Cost/Tx (ETH)", f"{avg_eth:.8f}"),
            ("High Gas Transactions", str(len(analysis.high_gas_transactions))),
        ],
        recommendations=list(analysis.suggestions),
    )

    if analysis.gas_per_successful_transaction > GAS_PER_SUCCESS_WARNING:
        report.warnings.append(
            Advisory("high_gas_per_success", Severity.MEDIUM, {"gas": analysis.gas_per_successful_transaction})
        )
    if len(analysis.high_gas_transactions) > HIGH_GAS_TX_WARNING:
        report.warnings.append(
            Advisory("high_gas_transactions", Severity.MEDIUM, {"count": len(analysis.high_gas_transactions)})
        )
    if total_eth > TOTAL_COST_WARNING_ETH:
        report.warnings.append(
            Advisory("high_total_cost", Severity.HIGH, {"total_cost_eth": f"{total_eth:.4f}"})
        )
    return report


def _trend(current: float, baseline: float) -> Trend:
    margin = baseline * TREND_THRESHOLD
    if current > baseline + margin:
        return Trend.UP
    if current < baseline - margin:
        return Trend.DOWN
    return Trend.STABLE


def compare_with_historical(current: GasAnalysis, history: Sequence[GasAnalysis]) -> HistoricalComparison:
    """Trend of the current block against the mean of earlier analyses (+/-10% band)."""
    if not history:
        return HistoricalComparison(
            Trend.STABLE, Trend.STABLE, Trend.STABLE,
            insights=(Advisory("no_history", Severity.LOW),),
        )

    n = len(history)
    avg_gas = sum(h.average_gas_per_transaction for h in history) / n
    avg_cost = sum(float(h.cost.total_cost_eth) if h.cost else 0.0 for h in history) / n
    avg_eff = sum(h.gas_per_successful_transaction for h in history) / n
    current_cost = float(current.cost.total_cost_eth) if current.cost else 0.0

    gas_trend = _trend(current.average_gas_per_transaction, avg_gas)
    cost_trend = _trend(current_cost, avg_cost)
    eff_trend = _trend(current.gas_per_successful_transaction, avg_eff)
    change = (current.average_gas_per_transaction / avg_gas - 1) * 100 if avg_gas else 0.0

    insights: List[Advisory] = []
    if gas_trend is Trend.UP:
        insights.append(Advisory("avg_gas_increased", Severity.MEDIUM, {"percent": change}))
    elif gas_trend is Trend.DOWN:
        insights.append(Advisory("avg_gas_decreased", Severity.LOW, {"percent": -change}))
    if cost_trend is Trend.UP:
        insights.append(Advisory("cost_increased", Severity.MEDIUM))
    elif cost_trend is Trend.DOWN:
        insights.append(Advisory("cost_decreased", Severity.LOW))

    return HistoricalComparison(gas_trend, cost_trend, eff_trend, change, tuple(insights))


# ---- Transaction-level: call gas vs opcode gas ----

def _opcode_label(category: str) -> str:
    return _OPCODE_LABELS.get(category, category.capitalize())


def unified_gas_breakdown(
    call_analysis: Optional[CallTraceAnalysis] = None,
    struct_analysis: Optional[StructLogAnalysis] = None,
) -> UnifiedGasBreakdown:
    """
    Cross-reference gas attributed per contract (call trace) with gas spent
    per opcode group (struct log) for the same transaction.
    """
    total = 0
    if call_analysis is not None:
        total = call_analysis.stats.total_gas
    if not total and struct_analysis is not None:
        total = struct_analysis.summary.total_gas_cost

    result = UnifiedGasBreakdown(total_gas=total)
    if not total:
        return result

    opcode_gas: Dict[str, int] = {}
    contract_rows: List[GasBreakdownEntry] = []
    attribution = gas_attribution(call_analysis) if call_analysis is not None else []

    if struct_analysis is not None:
        for share in struct_analysis.opcode_categories:
            label = _opcode_label(share.name)
            opcode_gas[label] = opcode_gas.get(label, 0) + share.gas_used

    for item in attribution:
        label = item.address if item.contract_name == UNKNOWN_CONTRACT else item.contract_name
        contract_rows.append(GasBreakdownEntry(label=label, contract_gas=item.gas_used, contract_address=item.address))

    entries = [GasBreakdownEntry(label=label, opcode_gas=gas) for label, gas in opcode_gas.items()] + contract_rows
    entries.sort(key=lambda e: e.total, reverse=True)
    result.entries = entries[:BREAKDOWN_LIMIT]

    if attribution and attribution[0].percentage > GAS_CONCENTRATION_PERCENT:
        result.suggestions.append(
            Advisory("high_gas_concentration", Severity.HIGH, {"percentage": attribution[0].percentage})
        )
    if call_analysis is not None and call_analysis.stats.total_calls:
        failure = call_analysis.stats.errors / call_analysis.stats.total_calls * 100
        if failure > CALL_FAILURE_PERCENT:
            result.suggestions.append(Advisory("high_call_failure_rate", Severity.MEDIUM, {"failure_rate": failure}))
    if struct_analysis is not None:
        for share in struct_analysis.opcode_categories:
            if share.name == OpcodeCategory.STORAGE.value and share.percentage > STORAGE_HEAVY_PERCENT:
                result.suggestions.append(Advisory("storage_heavy", Severity.HIGH, {"percentage": share.percentage}))
            elif share.name == OpcodeCategory.MEMORY.value and share.percentage > MEMORY_HEAVY_PERCENT:
                result.suggestions.append(Advisory("memory_heavy", Severity.MEDIUM, {"percentage": share.percentage}))

    result.suggestions.sort(key=lambda a: _SEVERITY_ORDER[a.severity], reverse=True)
    return result

