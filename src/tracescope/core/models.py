from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Dict, List, Optional, Set, Tuple

from tracescope.core.dto import (
    CallTraceNode,
    InternalCall,
    LogEntry,
    StateChange,
    StructLogStep,
    TokenTransfer,
    TransactionSummary,
)
from tracescope.core.enums import (
    NodeRole,
    Severity,
    SupplyEventType,
    SupplyTrend,
    Trend,
)


# Advisories

ADVISORY_TEMPLATES: Dict[str, str] = {
    "high_call_failure_rate": "{failure_rate:.1f}% of calls failed during execution",
    "complex_interaction": "Transaction involves {unique_contracts} contracts with average depth {average_depth:.1f}",
    "high_gas_per_call": "Average gas per call ({average_gas:,.0f}) is above recommended levels",
    "failed_gas_waste": "{failed_count} failed transactions wasted {wasted_gas:,} gas",
    "known_contract_above_average_gas": "{count} known-contract transactions used above-average gas",
    "deep_internal_calls": "{count} internal calls with depth > {max_depth} detected",
    "function_gas_variance": "High variance in gas usage for {function} (avg: {average_gas:.0f}, std dev: {std_dev:.0f})",
    "high_average_gas": "Average gas usage ({average_gas:,.0f}) is high",
    "known_contract_heavy_block": "{ratio:.0%} of transactions touch known contracts; batching may reduce cost",
    "deep_call_stack": "Deep call stack detected (depth: {depth})",
    "mint_and_burn_same_block": "Both mint and burn operations in same block",
    "admin_burst": "High admin activity: {count} admin function calls",
    "high_failure_rate": "High failure rate: {failed}/{total} known-contract transactions failed",
    "unusual_high_gas": "{count} transactions with unusually high gas usage",
    "large_transfer": "Large value transfer detected: {amount}",
    "high_gas_transactions": "{count} transactions used significantly more gas than average",
    "high_gas_per_success": "Gas per successful transaction ({gas:,.0f}) indicates optimization opportunities",
    "high_total_cost": "High total transaction cost: {total_cost_eth} ETH",
    "large_network": "Large network detected ({nodes} nodes): consider filtering to high-value transfers",
    "dense_network": "Dense network (density {density:.2f}): consider raising the minimum transfer value",
    "many_edges_per_node": "Many connections per node: edge bundling might improve readability",
    "high_gas_concentration": "{percentage:.1f}% of gas is used by a single contract",
    "storage_heavy": "{percentage:.1f}% of gas is used for storage operations",
    "memory_heavy": "{percentage:.1f}% of gas is used for memory operations",
    "busy_block_transfers": "High transfer volume ({count} transfers): consider transfer monitoring",
    "admin_calls_present": "Admin function calls detected ({count}): verify authorization",
    "supply_changes_present": "Supply change operations detected ({count}): monitor mint/burn activity",
    "no_history": "No historical data available for comparison",
    "avg_gas_increased": "Average gas usage increased by {percent:.1f}%",
    "avg_gas_decreased": "Average gas usage decreased by {percent:.1f}%",
    "cost_increased": "Transaction costs increased compared to historical average",
    "cost_decreased": "Transaction costs decreased compared to historical average",
}


@dataclass(frozen=True)
class Advisory:
    """
    Structured advisory record. Presentation code decides how to word it;
    message() gives the default English rendering.
    """

    code: str
    severity: Severity = Severity.MEDIUM
    params: Dict[str, Any] = field(default_factory=dict)

    def message(self) -> str:
        template = ADVISORY_TEMPLATES.get(self.code)
        if template is None:
            return self.code
        try:
            return template.format(**self.params)
        except (KeyError, ValueError):
            return self.code


# Call trace

@dataclass
class CallTraceStats:
    total_calls: int = 0
    known_contract_calls: int = 0
    max_call_depth: int = 0
    total_gas: int = 0
    summed_call_gas: int = 0
    errors: int = 0


@dataclass
class CallTraceAnalysis:
    tx_hash: str
    nodes: List[CallTraceNode] = field(default_factory=list)
    logs: List[LogEntry] = field(default_factory=list)
    transfers: List[TokenTransfer] = field(default_factory=list)
    state_changes: List[StateChange] = field(default_factory=list)
    contract_interactions: Set[str] = field(default_factory=set)
    gas_by_function_category: Dict[str, int] = field(default_factory=dict)
    stats: CallTraceStats = field(default_factory=CallTraceStats)
    warnings: List[str] = field(default_factory=list)


@dataclass
class CallHierarchyNode:
    node: CallTraceNode
    children: List["CallHierarchyNode"] = field(default_factory=list)


@dataclass(frozen=True)
class ContractGas:
    address: str
    contract_name: str
    gas_used: int
    call_count: int
    percentage: float


@dataclass(frozen=True)
class ValueTransfer:
    from_address: str
    to_address: str
    value_wei: int
    gas_used: int
    success: bool
    step: int


@dataclass(frozen=True)
class CallSuccessRate:
    address: str
    contract_name: str
    total_calls: int
    successful_calls: int
    failed_calls: int
    success_rate: float


@dataclass(frozen=True)
class InteractionPatterns:
    unique_contracts: int
    most_active_contract: Optional[str]
    most_active_call_count: int
    average_depth: float
    failed_calls: int
    failure_rate: float          # percent
    total_value_wei: int
    complexity_score: float


# Struct log

@dataclass
class StructLogSummary:
    total_steps: int = 0
    total_gas_cost: int = 0
    max_depth: int = 0
    max_stack_depth: int = 0
    max_memory_bytes: int = 0
    known_contract_steps: int = 0
    known_contract_percentage: float = 0.0


@dataclass(frozen=True)
class GasShare:
    name: str
    gas_used: int
    count: int = 0
    percentage: float = 0.0


@dataclass
class StructLogAnalysis:
    steps: List[StructLogStep] = field(default_factory=list)
    summary: StructLogSummary = field(default_factory=StructLogSummary)
    opcode_categories: List[GasShare] = field(default_factory=list)
    top_opcodes: List[GasShare] = field(default_factory=list)
    known_contract_operations: List[GasShare] = field(default_factory=list)
    known_contract_categories: List[GasShare] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)


# Block

@dataclass
class BlockSummary:
    block_identifier: str
    total_transactions: int = 0
    total_gas_used: int = 0
    failed_traces_count: int = 0
    known_interactions_count: int = 0
    transfer_count: int = 0
    mint_count: int = 0
    burn_count: int = 0
    transfer_volume: int = 0
    known_percentage: float = 0.0


@dataclass
class BlockAnalysis:
    summary: BlockSummary
    transactions: List[TransactionSummary] = field(default_factory=list)
    transfers: List[TokenTransfer] = field(default_factory=list)
    internal_calls: List[InternalCall] = field(default_factory=list)
    function_categories: Dict[str, int] = field(default_factory=dict)
    unusual_patterns: List[Advisory] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)


@dataclass(frozen=True)
class FunctionUsage:
    name: str
    count: int
    percentage: float


@dataclass
class FunctionPatterns:
    function_usage: Dict[str, int] = field(default_factory=dict)
    category_distribution: Dict[str, int] = field(default_factory=dict)
    top_functions: List[FunctionUsage] = field(default_factory=list)
    unusual_patterns: List[Advisory] = field(default_factory=list)


@dataclass(frozen=True)
class VolumeBucket:
    label: str
    lower: int              # raw units, inclusive
    upper: Optional[int]    # raw units, exclusive; None = unbounded
    count: int
    volume: int


@dataclass(frozen=True)
class AddressVolume:
    address: str
    volume: int
    count: int


@dataclass
class VolumeFlows:
    total_volume: int = 0
    largest_transfer: Optional[TokenTransfer] = None
    average_transfer_size: float = 0.0
    distribution: List[VolumeBucket] = field(default_factory=list)
    top_senders: List[AddressVolume] = field(default_factory=list)
    top_receivers: List[AddressVolume] = field(default_factory=list)


@dataclass
class InternalCallStats:
    total_internal_calls: int = 0
    contract_interactions: Dict[str, int] = field(default_factory=dict)
    function_distribution: Dict[str, int] = field(default_factory=dict)
    depth_distribution: Dict[int, int] = field(default_factory=dict)
    gas_by_function: Dict[str, CategoryGasStats] = field(default_factory=dict)
    top_contracts: List[Tuple[str, int, Tuple[str, ...]]] = field(default_factory=list)


@dataclass(frozen=True)
class ProcessingStats:
    total_transactions: int
    known_transactions: int
    known_percentage: float
    total_gas_used: int
    average_gas_per_transaction: float
    failure_rate: float     # percent


@dataclass
class ActivitySummary:
    summary: str = ""
    highlights: List[str] = field(default_factory=list)
    recommendations: List[Advisory] = field(default_factory=list)
    risk_factors: List[Advisory] = field(default_factory=list)


# Gas

@dataclass
class CategoryGasStats:
    total_gas: int = 0
    avg_gas: float = 0.0
    count: int = 0

    def add(self, gas_used: int) -> None:
        self.count += 1
        self.total_gas += gas_used
        # incremental mean
        self.avg_gas += (gas_used - self.avg_gas) / self.count


@dataclass(frozen=True)
class CostAnalysis:
    gas_price_wei: int
    total_cost_wei: int
    total_cost_eth: Decimal
    average_cost_eth: Decimal
    known_transactions_cost_eth: Decimal
    regular_transactions_cost_eth: Decimal
    total_cost_fiat: Optional[Decimal] = None


@dataclass
class GasAnalysis:
    total_gas_used: int = 0
    average_gas_per_transaction: float = 0.0
    gas_per_successful_transaction: float = 0.0
    high_gas_transactions: List[TransactionSummary] = field(default_factory=list)
    gas_by_category: Dict[str, CategoryGasStats] = field(default_factory=dict)
    cost: Optional[CostAnalysis] = None
    suggestions: List[Advisory] = field(default_factory=list)


@dataclass(frozen=True)
class HistoricalComparison:
    avg_gas_trend: Trend
    cost_trend: Trend
    efficiency_trend: Trend
    avg_gas_change_percent: float = 0.0
    insights: Tuple[Advisory, ...] = ()


@dataclass
class GasReport:
    summary: str
    key_metrics: List[Tuple[str, str]] = field(default_factory=list)
    recommendations: List[Advisory] = field(default_factory=list)
    warnings: List[Advisory] = field(default_factory=list)


@dataclass(frozen=True)
class GasBreakdownEntry:
    label: str
    contract_gas: int = 0
    opcode_gas: int = 0
    contract_address: Optional[str] = None

    @property
    def total(self) -> int:
        return self.contract_gas + self.opcode_gas


@dataclass
class UnifiedGasBreakdown:
    total_gas: int = 0
    entries: List[GasBreakdownEntry] = field(default_factory=list)
    suggestions: List[Advisory] = field(default_factory=list)

    def percentage(self, entry: GasBreakdownEntry) -> float:
        return (entry.total / self.total_gas * 100) if self.total_gas else 0.0


# Transfer network

@dataclass
class NetworkNode:
    address: str
    in_degree: int = 0
    out_degree: int = 0
    volume_in: int = 0
    volume_out: int = 0

    @property
    def volume(self) -> int:
        return self.volume_in + self.volume_out


@dataclass
class NetworkEdge:
    from_address: str
    to_address: str
    value: int = 0
    count: int = 0


@dataclass
class TransferNetwork:
    nodes: Dict[str, NetworkNode] = field(default_factory=dict)
    edges: Dict[Tuple[str, str], NetworkEdge] = field(default_factory=dict)
    total_volume: int = 0
    max_edge_value: int = 0
    density: float = 0.0
    dot_source: str = ""
    truncated: bool = False


@dataclass(frozen=True)
class CentralNode:
    address: str
    centrality: float
    role: NodeRole


@dataclass(frozen=True)
class Cluster:
    nodes: Tuple[str, ...]
    total_volume: int


@dataclass
class NetworkTopology:
    central_nodes: List[CentralNode] = field(default_factory=list)
    isolated_nodes: List[str] = field(default_factory=list)
    clusters: List[Cluster] = field(default_factory=list)
    critical_paths: List[NetworkEdge] = field(default_factory=list)


@dataclass
class LayoutSuggestion:
    recommended_layout: str
    tips: List[Advisory] = field(default_factory=list)


# Supply history

@dataclass(frozen=True)
class SupplyDataPoint:
    block_number: int
    timestamp: int
    raw_value: Any          # int, hex string or decimal string


@dataclass(frozen=True)
class SupplyEvent:
    block_number: int
    timestamp: int
    event_type: SupplyEventType
    amount: Decimal
    previous_supply: Decimal
    new_supply: Decimal
    growth_rate_percent: Decimal
    is_anomaly: bool


@dataclass(frozen=True)
class SupplyTrendPoint:
    block_number: int
    timestamp: int
    supply: Decimal
    growth_rate_percent: Decimal
    moving_average: Decimal
    upper_bound: Decimal
    lower_bound: Decimal
    is_anomaly: bool
    event_type: Optional[SupplyEventType] = None


@dataclass
class SupplyMetrics:
    total_minted: Decimal = Decimal("0")
    total_burned: Decimal = Decimal("0")
    net_change: Decimal = Decimal("0")
    average_growth_rate: Decimal = Decimal("0")
    max_supply: Decimal = Decimal("0")
    min_supply: Decimal = Decimal("0")
    volatility: Decimal = Decimal("0")
    anomaly_count: int = 0
    trend: SupplyTrend = SupplyTrend.STABLE
    trend_strength: float = 0.0


@dataclass
class SupplyAnalysis:
    trend: List[SupplyTrendPoint] = field(default_factory=list)
    events: List[SupplyEvent] = field(default_factory=list)
    metrics: SupplyMetrics = field(default_factory=SupplyMetrics)
    window_size: int = 0
    warnings: List[str] = field(default_factory=list)


# Validation

@dataclass
class ValidationResult:
    errors: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)

    @property
    def is_valid(self) -> bool:
        return not self.errors


# Reports

@dataclass
class TransactionReport:
    tx_hash: str
    network: str
    call: CallTraceAnalysis
    struct: Optional[StructLogAnalysis] = None
    gas_breakdown: UnifiedGasBreakdown = field(default_factory=UnifiedGasBreakdown)
    validation: ValidationResult = field(default_factory=ValidationResult)


@dataclass
class BlockReport:
    block_identifier: str
    network: str
    block: BlockAnalysis
    gas: GasAnalysis
    transfer_network: TransferNetwork
    topology: NetworkTopology
    function_patterns: FunctionPatterns
    volume_flows: VolumeFlows
    internal_stats: InternalCallStats
    activity: ActivitySummary
    validation: ValidationResult = field(default_factory=ValidationResult)
