"""
Block-level processing of debug_traceBlockByNumber output (callTracer per
transaction): per-transaction summaries, known-contract function usage,
token transfers, internal calls into known contracts and pattern flags.
"""
from __future__ import annotations

import logging
from collections import Counter
from decimal import Decimal
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Set, Tuple

from tracescope.config import settings
from tracescope.core.dto import InternalCall, TokenTransfer, TransactionSummary
from tracescope.core.enums import FunctionCategory, Severity
from tracescope.core.errors import EmptyTraceError
from tracescope.core.models import (
    ActivitySummary,
    AddressVolume,
    Advisory,
    BlockAnalysis,
    BlockSummary,
    CategoryGasStats,
    FunctionPatterns,
    FunctionUsage,
    InternalCallStats,
    ProcessingStats,
    VolumeBucket,
    VolumeFlows,
)
from tracescope.parsers.hexutil import hex_slice_to_int, parse_quantity
from tracescope.registry.signatures import (
    ADMIN_FUNCTIONS,
    BURN_SELECTOR,
    DEFAULT_REGISTRY,
    MINT_SELECTOR,
    TRANSFER_FROM_SELECTOR,
    TRANSFER_SELECTOR,
    SignatureRegistry,
)

logger = logging.getLogger(__name__)

NOT_AVAILABLE = "N/A"
HIGH_GAS_MULTIPLIER = 3
LARGE_TRANSFER_TOKENS = 1_000_000
BUSY_BLOCK_TRANSFERS = 50
TOP_LIMIT = 10

# bucket edges in whole tokens
VOLUME_BUCKETS: Tuple[Tuple[str, int, Optional[int]], ...] = (
    ("< 100", 0, 100),
    ("100 - 1K", 100, 1_000),
    ("1K - 10K", 1_000, 10_000),
    ("10K - 100K", 10_000, 100_000),
    ("> 100K", 100_000, None),
)


def format_token_amount(raw: int, decimals: int = settings.TOKEN_DECIMALS, symbol: str = "PYUSD") -> str:
    if not raw:
        return f"0 {symbol}"
    value = Decimal(raw) / (Decimal(10) ** decimals)
    return f"{value:,.2f} {symbol}"


# ---- Per-transaction ----

def _decode_top_level(
    selector: str,
    input_data: str,
    from_address: str,
    tx_hash: str,
) -> Tuple[Optional[TokenTransfer], bool, bool, int]:
    """(transfer, is_mint, is_burn, value) for a direct call into a known contract."""
    if selector == TRANSFER_SELECTOR and len(input_data) >= 138:
        amount = hex_slice_to_int(input_data, 74, 138)
        to_param = "0x" + input_data[34:74].lower()
        return TokenTransfer(from_address, to_param, amount, tx_hash=tx_hash), False, False, amount
    if selector == TRANSFER_FROM_SELECTOR and len(input_data) >= 202:
        sender = "0x" + input_data[34:74].lower()
        to_param = "0x" + input_data[98:138].lower()
        amount = hex_slice_to_int(input_data, 138, 202)
        return TokenTransfer(sender, to_param, amount, tx_hash=tx_hash), False, False, amount
    if selector == MINT_SELECTOR and len(input_data) >= 138:
        return None, True, False, hex_slice_to_int(input_data, 74, 138)
    if selector == BURN_SELECTOR and len(input_data) >= 74:
        return None, False, True, hex_slice_to_int(input_data, 10, 74)
    return None, False, False, 0


def _sub_calls(call: Mapping[str, Any]) -> List[Mapping[str, Any]]:
    calls = call.get("calls")
    if not isinstance(calls, list):
        return []
    return [c for c in calls if isinstance(c, dict)]


def _collect_internal_calls(
    top: Mapping[str, Any],
    tx_hash: str,
    registry: SignatureRegistry,
) -> Tuple[List[InternalCall], bool]:
    """
    Walk every sub-call below the top-level call. Depth is relative to the
    top call (its direct sub-calls are depth 0). Returns the calls that hit
    known contracts and whether any did.
    """
    out: List[InternalCall] = []
    stack: List[Tuple[Mapping[str, Any], int, str]] = [
        (c, 0, str(top.get("from") or "")) for c in reversed(_sub_calls(top))
    ]
    while stack:
        call, depth, parent_from = stack.pop()
        to = str(call.get("to") or "").lower()
        sender = str(call.get("from") or parent_from).lower()
        if to and registry.is_known_contract(to):
            input_data = call.get("input") or "0x"
            name = registry.function_info(input_data[:10]).name if len(input_data) >= 10 else "Unknown"
            out.append(
                InternalCall(
                    tx_hash=tx_hash,
                    from_address=sender,
                    to_address=to,
                    to_contract=registry.contract_name(to),
                    function_name=name,
                    call_type=str(call.get("type") or "CALL").upper(),
                    gas_used=parse_quantity(call.get("gasUsed")),
                    depth=depth,
                )
            )
        for child in reversed(_sub_calls(call)):
            stack.append((child, depth + 1, sender))
    return out, bool(out)


def summarize_transaction(
    item: Any,
    index: int,
    registry: SignatureRegistry = DEFAULT_REGISTRY,
) -> Tuple[TransactionSummary, List[TokenTransfer], List[InternalCall]]:
    if not isinstance(item, dict):
        return TransactionSummary(
            tx_index=index,
            tx_hash=f"tx_{index}",
            from_address=NOT_AVAILABLE,
            to_address=NOT_AVAILABLE,
            value_wei=0,
            gas_used=0,
            failed=True,
            known_interaction=False,
            error="malformed trace item",
        ), [], []

    tx_hash = str(item.get("txHash") or f"tx_{index}")
    result = item.get("result")
    if not isinstance(result, dict):
        return TransactionSummary(
            tx_index=index,
            tx_hash=tx_hash,
            from_address=NOT_AVAILABLE,
            to_address=NOT_AVAILABLE,
            value_wei=0,
            gas_used=0,
            failed=True,
            known_interaction=False,
            error=str(item.get("error") or "missing trace result"),
        ), [], []

    error = item.get("error") or result.get("error")
    from_address = str(result.get("from") or NOT_AVAILABLE).lower()
    to_address = str(result.get("to") or NOT_AVAILABLE).lower()
    input_data = result.get("input") or "0x"

    known = to_address != NOT_AVAILABLE and registry.is_known_contract(to_address)
    function_name: Optional[str] = None
    category = FunctionCategory.OTHER.value
    transfers: List[TokenTransfer] = []
    is_mint = is_burn = False
    value = 0

    if known and len(input_data) >= 10:
        selector = input_data[:10].lower()
        info = registry.function_info(selector)
        function_name, category = info.name, info.category
        transfer, is_mint, is_burn, value = _decode_top_level(selector, input_data, from_address, tx_hash)
        if transfer is not None:
            transfers.append(transfer)

    internal_calls, sub_known = _collect_internal_calls(result, tx_hash, registry)

    summary = TransactionSummary(
        tx_index=index,
        tx_hash=tx_hash,
        from_address=from_address,
        to_address=to_address,
        value_wei=parse_quantity(result.get("value")),
        gas_used=parse_quantity(result.get("gasUsed")),
        failed=bool(error),
        known_interaction=known or sub_known,
        function_name=function_name,
        function_category=category,
        is_transfer=bool(transfers),
        is_mint=is_mint,
        is_burn=is_burn,
        transfer_value=value,
        error=str(error) if error else None,
    )
    return summary, transfers, internal_calls


# ---- Block ----

def process_block_trace(
    items: Any,
    block_identifier: str,
    registry: SignatureRegistry = DEFAULT_REGISTRY,
) -> BlockAnalysis:
    """
    Process one block's trace list ([{txHash, result, error?}, ...]).

    A transaction without a result is recorded as failed; only a missing
    block response is fatal.

    Raises:
        EmptyTraceError: when items is None or not a list
    """
    if items is None or not isinstance(items, list):
        raise EmptyTraceError(f"no trace data for block {block_identifier}")

    logger.info("processing %d traces from block %s", len(items), block_identifier)

    analysis = BlockAnalysis(summary=BlockSummary(block_identifier=block_identifier))
    analysis.function_categories = {c.value: 0 for c in FunctionCategory}
    seen: Set[Tuple[str, str, str, int]] = set()

    for index, item in enumerate(items):
        tx, transfers, internal = summarize_transaction(item, index, registry)
        analysis.transactions.append(tx)
        analysis.internal_calls.extend(internal)

        if not isinstance(item, dict) or not isinstance(item.get("result"), dict):
            analysis.warnings.append(f"{tx.tx_hash}: no trace result ({tx.error})")

        if tx.function_name is not None:
            analysis.function_categories[tx.function_category] = (
                analysis.function_categories.get(tx.function_category, 0) + 1
            )

        for t in transfers:
            key = (t.tx_hash, t.from_address, t.to_address, t.amount)
            if key in seen:
                continue
            seen.add(key)
            analysis.transfers.append(t)

    txs = analysis.transactions
    known_count = sum(1 for t in txs if t.known_interaction)
    analysis.summary = BlockSummary(
        block_identifier=block_identifier,
        total_transactions=len(txs),
        total_gas_used=sum(t.gas_used for t in txs),
        failed_traces_count=sum(1 for t in txs if t.failed),
        known_interactions_count=known_count,
        transfer_count=sum(1 for t in txs if t.is_transfer),
        mint_count=sum(1 for t in txs if t.is_mint),
        burn_count=sum(1 for t in txs if t.is_burn),
        transfer_volume=sum(t.transfer_value for t in txs if t.is_transfer),
        known_percentage=(known_count / len(txs) * 100) if txs else 0.0,
    )
    analysis.unusual_patterns = detect_unusual_patterns(txs)
    return analysis


def _function_usage(transactions: Iterable[TransactionSummary]) -> Dict[str, int]:
    return dict(Counter(t.function_name for t in transactions if t.known_interaction and t.function_name))


def detect_unusual_patterns(transactions: Sequence[TransactionSummary]) -> List[Advisory]:
    usage = _function_usage(transactions)
    known = [t for t in transactions if t.known_interaction]
    out: List[Advisory] = []

    if "mint" in usage and "burn" in usage:
        out.append(Advisory("mint_and_burn_same_block", Severity.MEDIUM))

    admin_calls = sum(usage.get(name, 0) for name in ADMIN_FUNCTIONS)
    if admin_calls > settings.ADMIN_BURST_THRESHOLD:
        out.append(Advisory("admin_burst", Severity.HIGH, {"count": admin_calls}))

    failed = sum(1 for t in known if t.failed)
    if failed > len(known) * settings.FAILURE_RATE_THRESHOLD:
        out.append(Advisory("high_failure_rate", Severity.HIGH, {"failed": failed, "total": len(known)}))

    if known:
        avg = sum(t.gas_used for t in known) / len(known)
        heavy = sum(1 for t in known if t.gas_used > avg * HIGH_GAS_MULTIPLIER)
        if heavy:
            out.append(Advisory("unusual_high_gas", Severity.LOW, {"count": heavy}))

    return out


def analyze_function_patterns(transactions: Sequence[TransactionSummary]) -> FunctionPatterns:
    usage = _function_usage(transactions)
    known_total = sum(1 for t in transactions if t.known_interaction)

    distribution = {c.value: 0 for c in FunctionCategory}
    for t in transactions:
        if t.known_interaction and t.function_name:
            distribution[t.function_category] = distribution.get(t.function_category, 0) + 1

    top = [
        FunctionUsage(name, count, (count / known_total * 100) if known_total else 0.0)
        for name, count in usage.items()
    ]
    top.sort(key=lambda f: f.count, reverse=True)

    return FunctionPatterns(
        function_usage=usage,
        category_distribution=distribution,
        top_functions=top[:TOP_LIMIT],
        unusual_patterns=detect_unusual_patterns(transactions),
    )


def _top_addresses(stats: Dict[str, List[int]]) -> List[AddressVolume]:
    out = [AddressVolume(address, volume, count) for address, (volume, count) in stats.items()]
    out.sort(key=lambda a: a.volume, reverse=True)
    return out[:TOP_LIMIT]


def analyze_volume_flows(
    transfers: Sequence[TokenTransfer],
    decimals: int = settings.TOKEN_DECIMALS,
) -> VolumeFlows:
    if not transfers:
        return VolumeFlows()

    unit = 10 ** decimals
    total = sum(t.amount for t in transfers)
    largest = max(transfers, key=lambda t: t.amount)

    buckets: List[VolumeBucket] = []
    for label, low, high in VOLUME_BUCKETS:
        lower = low * unit
        upper = high * unit if high is not None else None
        inside = [t.amount for t in transfers if t.amount >= lower and (upper is None or t.amount < upper)]
        buckets.append(VolumeBucket(label, lower, upper, len(inside), sum(inside)))

    senders: Dict[str, List[int]] = {}
    receivers: Dict[str, List[int]] = {}
    for t in transfers:
        s = senders.setdefault(t.from_address, [0, 0])
        s[0] += t.amount
        s[1] += 1
        r = receivers.setdefault(t.to_address, [0, 0])
        r[0] += t.amount
        r[1] += 1

    return VolumeFlows(
        total_volume=total,
        largest_transfer=largest,
        average_transfer_size=total / len(transfers),
        distribution=buckets,
        top_senders=_top_addresses(senders),
        top_receivers=_top_addresses(receivers),
    )


def analyze_internal_transactions(internal_calls: Sequence[InternalCall]) -> InternalCallStats:
    stats = InternalCallStats(total_internal_calls=len(internal_calls))
    functions_by_contract: Dict[str, List[str]] = {}

    for call in internal_calls:
        stats.contract_interactions[call.to_contract] = stats.contract_interactions.get(call.to_contract, 0) + 1
        stats.function_distribution[call.function_name] = stats.function_distribution.get(call.function_name, 0) + 1
        stats.depth_distribution[call.depth] = stats.depth_distribution.get(call.depth, 0) + 1
        stats.gas_by_function.setdefault(call.function_name, CategoryGasStats()).add(call.gas_used)
        names = functions_by_contract.setdefault(call.to_contract, [])
        if call.function_name not in names:
            names.append(call.function_name)

    ranked = sorted(stats.contract_interactions.items(), key=lambda kv: kv[1], reverse=True)
    stats.top_contracts = [
        (contract, calls, tuple(functions_by_contract.get(contract, ())))
        for contract, calls in ranked[:TOP_LIMIT]
    ]
    return stats


def processing_stats(analysis: BlockAnalysis) -> ProcessingStats:
    txs = analysis.transactions
    total = len(txs)
    known = sum(1 for t in txs if t.known_interaction)
    gas = sum(t.gas_used for t in txs)
    failed = sum(1 for t in txs if t.failed)
    return ProcessingStats(
        total_transactions=total,
        known_transactions=known,
        known_percentage=(known / total * 100) if total else 0.0,
        total_gas_used=gas,
        average_gas_per_transaction=(gas / total) if total else 0.0,
        failure_rate=(failed / total * 100) if total else 0.0,
    )


def activity_summary(
    transfers: Sequence[TokenTransfer],
    internal_calls: Sequence[InternalCall],
    function_categories: Mapping[str, int],
    decimals: int = settings.TOKEN_DECIMALS,
) -> ActivitySummary:
    out = ActivitySummary()

    if transfers:
        total = sum(t.amount for t in transfers)
        out.highlights.append(
            f"{len(transfers)} token transfers with total volume of {format_token_amount(total, decimals)}"
        )
        largest = max(transfers, key=lambda t: t.amount)
        if largest.amount > LARGE_TRANSFER_TOKENS * 10 ** decimals:
            amount = format_token_amount(largest.amount, decimals)
            out.highlights.append(f"Largest single transfer: {amount}")
            out.risk_factors.append(Advisory("large_transfer", Severity.MEDIUM, {"amount": amount}))

    total_calls = sum(function_categories.values())
    if total_calls:
        category, count = max(function_categories.items(), key=lambda kv: kv[1])
        if count > 0:
            out.highlights.append(f"Primary activity: {category.replace('_', ' ')} ({count} calls)")

    if internal_calls:
        out.highlights.append(f"{len(internal_calls)} internal known-contract calls detected")
        max_depth = max(c.depth for c in internal_calls)
        if max_depth > settings.MAX_INTERNAL_CALL_DEPTH:
            out.risk_factors.append(Advisory("deep_call_stack", Severity.MEDIUM, {"depth": max_depth}))

    if len(transfers) > BUSY_BLOCK_TRANSFERS:
        out.recommendations.append(Advisory("busy_block_transfers", Severity.LOW, {"count": len(transfers)}))
    admin = function_categories.get(FunctionCategory.ADMIN.value, 0)
    if admin > 0:
        out.recommendations.append(Advisory("admin_calls_present", Severity.MEDIUM, {"count": admin}))
    supply = function_categories.get(FunctionCategory.SUPPLY_CHANGE.value, 0)
    if supply > 0:
        out.recommendations.append(Advisory("supply_changes_present", Severity.LOW, {"count": supply}))

    out.summary = (
        f"Block contains {total_calls} known-contract interactions across "
        f"{len(transfers)} transfers and {len(internal_calls)} internal calls."
    )
    return out
