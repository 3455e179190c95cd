from __future__ import annotations

import logging
from decimal import Decimal
from typing import Any, Optional, Union

from tracescope.cache.trace_cache import CacheKey, TraceCache
from tracescope.config import settings
from tracescope.core.errors import EmptyTraceError, InvalidStructLogError
from tracescope.core.models import (
    BlockAnalysis,
    BlockReport,
    CallTraceAnalysis,
    StructLogAnalysis,
    TransactionReport,
)
from tracescope.parsers.call_trace_parser import parse_call_trace
from tracescope.parsers.struct_log_parser import parse_struct_logs
from tracescope.ports.trace_source_port import CALL_TRACER, STRUCT_LOG, TraceSourcePort
from tracescope.registry.signatures import DEFAULT_REGISTRY, SignatureRegistry
from tracescope.services.block_processor import (
    activity_summary,
    analyze_function_patterns,
    analyze_internal_transactions,
    analyze_volume_flows,
    process_block_trace,
)
from tracescope.services.gas_analysis import analyze_gas_usage, unified_gas_breakdown
from tracescope.services.transfer_network import analyze_topology, build_transfer_network
from tracescope.services.validation import validate_network, validate_transaction_analysis

logger = logging.getLogger(__name__)

BLOCK_METHOD = "block"


class TraceAnalysisService:
    """
    Fetches raw traces from a TraceSourcePort, runs them through the parsers
    and analyzers, and memoizes the parsed analyses in a TraceCache.

    - Transactions: callTracer tree (required) + structLogger steps (optional)
    - Blocks: debug_traceBlockByNumber with callTracer
    - Cache entries are tagged by tx hash and block id for invalidate()
    """

    def __init__(
        self,
        source: TraceSourcePort,
        cache: Optional[TraceCache] = None,
        registry: SignatureRegistry = DEFAULT_REGISTRY,
    ) -> None:
        self.source = source
        self.cache = cache if cache is not None else TraceCache(cleanup_interval=0)
        self.registry = registry

    # -------------------------
    # Transactions
    # -------------------------

    def analyze_transaction(
        self,
        tx_hash: str,
        network: str = settings.DEFAULT_NETWORK,
        include_struct_logs: bool = True,
    ) -> TransactionReport:
        tx_hash = tx_hash.lower()

        call = self.cache.get_or_compute(
            CacheKey(tx_hash, network, CALL_TRACER),
            lambda: self._call_trace(tx_hash, network),
            tags=(tx_hash,),
        )

        struct: Optional[StructLogAnalysis] = None
        if include_struct_logs:
            struct = self.cache.get_or_compute(
                CacheKey(tx_hash, network, STRUCT_LOG),
                lambda: self._struct_logs(tx_hash, network),
                tags=(tx_hash,),
            )

        return TransactionReport(
            tx_hash=tx_hash,
            network=network,
            call=call,
            struct=struct,
            gas_breakdown=unified_gas_breakdown(call, struct),
            validation=validate_transaction_analysis(call, struct),
        )

    def _call_trace(self, tx_hash: str, network: str) -> CallTraceAnalysis:
        raw = self.source.trace_transaction(tx_hash, network, CALL_TRACER)
        if not raw:
            raise EmptyTraceError(f"no call trace for {tx_hash} on {network}")
        return parse_call_trace(raw, tx_hash=tx_hash, registry=self.registry)

    def _struct_logs(self, tx_hash: str, network: str) -> Optional[StructLogAnalysis]:
        raw = self.source.trace_transaction(tx_hash, network, STRUCT_LOG)
        steps: Any = raw.get("structLogs") if isinstance(raw, dict) else raw
        try:
            return parse_struct_logs(steps, registry=self.registry)
        except InvalidStructLogError as e:
            logger.warning("struct logs unavailable for %s: %s", tx_hash, e)
            return None

    # -------------------------
    # Blocks
    # -------------------------

    def analyze_block(
        self,
        block: Union[int, str],
        network: str = settings.DEFAULT_NETWORK,
        gas_price_gwei: Union[Decimal, int, str] = settings.DEFAULT_GAS_PRICE_GWEI,
        eth_price: Optional[Decimal] = None,
    ) -> BlockReport:
        block_id = str(block).lower()
        key = CacheKey(block_id, network, BLOCK_METHOD)

        analysis: Optional[BlockAnalysis] = self.cache.get(key)
        if analysis is None:
            analysis = process_block_trace(self.source.trace_block(block, network), block_id, self.registry)
            tags = {block_id}
            tags.update(t.tx_hash.lower() for t in analysis.transactions if t.tx_hash)
            self.cache.set(key, analysis, tags=tags)

        graph = build_transfer_network(analysis.transfers)
        return BlockReport(
            block_identifier=block_id,
            network=network,
            block=analysis,
            gas=analyze_gas_usage(analysis.transactions, analysis.internal_calls, gas_price_gwei, eth_price),
            transfer_network=graph,
            topology=analyze_topology(graph),
            function_patterns=analyze_function_patterns(analysis.transactions),
            volume_flows=analyze_volume_flows(analysis.transfers),
            internal_stats=analyze_internal_transactions(analysis.internal_calls),
            activity=activity_summary(analysis.transfers, analysis.internal_calls, analysis.function_categories),
            validation=validate_network(graph),
        )

    # -------------------------
    # Cache
    # -------------------------

    def invalidate(self, tag: str) -> int:
        return self.cache.invalidate_by_dependency(str(tag).lower())
