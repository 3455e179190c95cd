from dataclasses import dataclass, field
from typing import Any, Dict, Optional


@dataclass(frozen=True)
class CallTraceNode:
    id: str
    parent_id: Optional[str]
    call_type: str
    depth: int
    from_address: str
    to_address: str
    value_wei: int
    gas_used: int           # inclusive, as reported by callTracer
    self_gas: int           # gas_used minus children's gas_used, floored at 0
    input_prefix: str
    output_prefix: str
    error: Optional[str]
    contract_name: str
    function_category: str
    function_name: str = "N/A"
    selector: Optional[str] = None
    is_known_contract: bool = False


@dataclass(frozen=True)
class LogEntry:
    log_index: int
    address: str
    contract_name: str
    topic0: str
    event_name: str
    decoded_fields: Dict[str, Any] = field(default_factory=dict)
    is_transfer: bool = False
    is_approval: bool = False
    details: str = "Not Decoded"


@dataclass(frozen=True)
class TokenTransfer:
    from_address: str
    to_address: str
    amount: int             # raw token units (before decimals)
    gas_used: int = 0
    tx_hash: str = ""


@dataclass(frozen=True)
class StateChange:
    contract_name: str
    function_name: str
    change_type: str
    gas_used: int
    from_address: Optional[str] = None
    to_address: Optional[str] = None
    amount: Optional[int] = None


@dataclass(frozen=True)
class StructLogStep:
    step_index: int
    pc: int
    op: str
    opcode_category: str
    gas: int
    gas_cost: int
    depth: int
    stack_depth: int
    mem_size_bytes: int
    current_contract: Optional[str] = None
    is_known_contract_context: bool = False
    is_known_contract_related: bool = False


@dataclass(frozen=True)
class TransactionSummary:
    tx_index: int
    tx_hash: str
    from_address: str
    to_address: str
    value_wei: int
    gas_used: int
    failed: bool
    known_interaction: bool
    function_name: Optional[str] = None
    function_category: str = "other"
    is_transfer: bool = False
    is_mint: bool = False
    is_burn: bool = False
    transfer_value: int = 0
    error: Optional[str] = None


@dataclass(frozen=True)
class InternalCall:
    tx_hash: str
    from_address: str
    to_address: str
    to_contract: str
    function_name: str
    call_type: str
    gas_used: int
    depth: int
