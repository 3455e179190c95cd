"""
Static signature registry: contract addresses, function selectors, event
topics and opcode groups.

The default registry is seeded with the PYUSD contract set; callers that
analyze other contracts build their own SignatureRegistry with the same
shape. Lookups are pure and never raise.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional

from tracescope.core.enums import FunctionCategory, OpcodeCategory
from tracescope.parsers.hexutil import word_to_address


UNKNOWN_CONTRACT = "Unknown Contract"

TRANSFER_SELECTOR = "0xa9059cbb"
TRANSFER_FROM_SELECTOR = "0x23b872dd"
MINT_SELECTOR = "0x40c10f19"
BURN_SELECTOR = "0x42966c68"

TRANSFER_TOPIC = "0xddf252ad1be2c89b69c2b068fc378daa952ba7f163c4a11628f55a4df523b3ef"
APPROVAL_TOPIC = "0x8c5be1e5ebec7d5bd14f71427d1e84f3dd0314c0f7b2291e5b200ac8c7c3b925"


@dataclass(frozen=True)
class FunctionInfo:
    name: str
    category: str


@dataclass(frozen=True)
class EventDecoder:
    name: str
    decode: Callable[[List[str], str], Dict[str, Any]]


def _decode_value_event(first: str, second: str) -> Callable[[List[str], str], Dict[str, Any]]:
    def decode(topics: List[str], data: str) -> Dict[str, Any]:
        if len(topics) < 3:
            raise ValueError(f"expected 3 topics, got {len(topics)}")
        raw = (data or "0x")[2:] if (data or "").startswith("0x") else (data or "")
        return {
            first: word_to_address(topics[1]),
            second: word_to_address(topics[2]),
            "value": int(raw, 16) if raw else 0,
        }

    return decode


PYUSD_CONTRACTS: Dict[str, str] = {
    "0x6c3ea9036406852006290770bedfcaba0e23a0e8": "PYUSD Token",
    "0x8ecae0b0402e29694b3af35d5943d4631ee568dc": "PYUSD Implementation",
    "0x31d9bdea6f104606c954f8fe6ba614f1bd347ec3": "Supply Control",
}

PYUSD_FUNCTIONS: Dict[str, FunctionInfo] = {
    TRANSFER_SELECTOR: FunctionInfo("transfer", FunctionCategory.TOKEN_MOVEMENT.value),
    TRANSFER_FROM_SELECTOR: FunctionInfo("transferFrom", FunctionCategory.TOKEN_MOVEMENT.value),
    MINT_SELECTOR: FunctionInfo("mint", FunctionCategory.SUPPLY_CHANGE.value),
    BURN_SELECTOR: FunctionInfo("burn", FunctionCategory.SUPPLY_CHANGE.value),
    "0x79cc6790": FunctionInfo("burnFrom", FunctionCategory.SUPPLY_CHANGE.value),
    "0x095ea7b3": FunctionInfo("approve", FunctionCategory.ALLOWANCE.value),
    "0x39509351": FunctionInfo("increaseAllowance", FunctionCategory.ALLOWANCE.value),
    "0xa457c2d7": FunctionInfo("decreaseAllowance", FunctionCategory.ALLOWANCE.value),
    "0x8456cb59": FunctionInfo("pause", FunctionCategory.CONTROL.value),
    "0x3f4ba83a": FunctionInfo("unpause", FunctionCategory.CONTROL.value),
    "0xf2fde38b": FunctionInfo("transferOwnership", FunctionCategory.CONTROL.value),
    "0x2f2ff15d": FunctionInfo("grantRole", FunctionCategory.ADMIN.value),
    "0xd547741f": FunctionInfo("revokeRole", FunctionCategory.ADMIN.value),
    "0x36568abe": FunctionInfo("renounceRole", FunctionCategory.ADMIN.value),
    "0x70a08231": FunctionInfo("balanceOf", FunctionCategory.VIEW.value),
    "0xdd62ed3e": FunctionInfo("allowance", FunctionCategory.VIEW.value),
    "0x18160ddd": FunctionInfo("totalSupply", FunctionCategory.VIEW.value),
    "0x95d89b41": FunctionInfo("symbol", FunctionCategory.VIEW.value),
    "0x06fdde03": FunctionInfo("name", FunctionCategory.VIEW.value),
    "0x313ce567": FunctionInfo("decimals", FunctionCategory.VIEW.value),
    # common DEX entry points seen around PYUSD flows
    "0x38ed1739": FunctionInfo("swapExactTokensForTokens", FunctionCategory.SWAP.value),
    "0x7ff36ab5": FunctionInfo("swapExactETHForTokens", FunctionCategory.SWAP.value),
    "0x18cbafe5": FunctionInfo("swapExactTokensForETH", FunctionCategory.SWAP.value),
    "0xfb3bdb41": FunctionInfo("swapETHForExactTokens", FunctionCategory.SWAP.value),
    "0xac9650d8": FunctionInfo("multicall", FunctionCategory.MULTICALL.value),
    "0x5ae401dc": FunctionInfo("multicall", FunctionCategory.MULTICALL.value),
}

ADMIN_FUNCTIONS = frozenset({"pause", "unpause", "transferOwnership", "grantRole", "revokeRole"})

STANDARD_EVENTS: Dict[str, EventDecoder] = {
    TRANSFER_TOPIC: EventDecoder("Transfer", _decode_value_event("from", "to")),
    APPROVAL_TOPIC: EventDecoder("Approval", _decode_value_event("owner", "spender")),
}

OPCODE_GROUPS: Dict[OpcodeCategory, Iterable[str]] = {
    OpcodeCategory.ARITHMETIC: (
        "ADD", "MUL", "SUB", "DIV", "SDIV", "MOD", "SMOD", "ADDMOD", "MULMOD", "EXP", "SIGNEXTEND",
    ),
    OpcodeCategory.COMPARISON: ("LT", "GT", "SLT", "SGT", "EQ", "ISZERO"),
    OpcodeCategory.BITWISE: ("AND", "OR", "XOR", "NOT", "BYTE", "SHL", "SHR", "SAR"),
    OpcodeCategory.MEMORY: ("MLOAD", "MSTORE", "MSTORE8", "MSIZE", "MCOPY", "KECCAK256", "SHA3"),
    OpcodeCategory.STORAGE: ("SLOAD", "SSTORE", "TLOAD", "TSTORE"),
    OpcodeCategory.FLOW: ("JUMP", "JUMPI", "JUMPDEST", "PC", "STOP", "RETURN", "REVERT", "INVALID"),
    OpcodeCategory.STACK: (
        ("POP", "PUSH0")
        + tuple(f"PUSH{i}" for i in range(1, 33))
        + tuple(f"DUP{i}" for i in range(1, 17))
        + tuple(f"SWAP{i}" for i in range(1, 17))
    ),
    OpcodeCategory.ENVIRONMENT: (
        "ADDRESS", "BALANCE", "ORIGIN", "CALLER", "CALLVALUE", "CALLDATALOAD", "CALLDATASIZE",
        "CALLDATACOPY", "CODESIZE", "CODECOPY", "GASPRICE", "EXTCODESIZE", "EXTCODECOPY",
        "RETURNDATASIZE", "RETURNDATACOPY", "EXTCODEHASH", "BLOCKHASH", "COINBASE", "TIMESTAMP",
        "NUMBER", "DIFFICULTY", "PREVRANDAO", "GASLIMIT", "CHAINID", "SELFBALANCE", "BASEFEE",
        "BLOBHASH", "BLOBBASEFEE", "GAS",
    ),
    OpcodeCategory.CONTRACT: (
        "CREATE", "CREATE2", "CALL", "CALLCODE", "DELEGATECALL", "STATICCALL", "SELFDESTRUCT",
    ),
    OpcodeCategory.LOGGING: ("LOG0", "LOG1", "LOG2", "LOG3", "LOG4"),
}


def _opcode_index(groups: Mapping[OpcodeCategory, Iterable[str]]) -> Dict[str, str]:
    index: Dict[str, str] = {}
    for category, ops in groups.items():
        for op in ops:
            index[op] = category.value
    return index


@dataclass(frozen=True)
class SignatureRegistry:
    contracts: Mapping[str, str] = field(default_factory=dict)
    functions: Mapping[str, FunctionInfo] = field(default_factory=dict)
    events: Mapping[str, EventDecoder] = field(default_factory=dict)
    opcodes: Mapping[str, str] = field(default_factory=lambda: _opcode_index(OPCODE_GROUPS))

    @classmethod
    def build(
        cls,
        contracts: Optional[Mapping[str, str]] = None,
        functions: Optional[Mapping[str, FunctionInfo]] = None,
        events: Optional[Mapping[str, EventDecoder]] = None,
    ) -> "SignatureRegistry":
        return cls(
            contracts={k.lower(): v for k, v in (contracts or {}).items()},
            functions={k.lower(): v for k, v in (functions or {}).items()},
            events={k.lower(): v for k, v in (events if events is not None else STANDARD_EVENTS).items()},
        )

    def contract_name(self, address: Optional[str]) -> str:
        if not address:
            return UNKNOWN_CONTRACT
        return self.contracts.get(str(address).lower(), UNKNOWN_CONTRACT)

    def is_known_contract(self, address: Optional[str]) -> bool:
        return bool(address) and str(address).lower() in self.contracts

    def function_info(self, selector: str) -> FunctionInfo:
        sel = (selector or "").lower()
        info = self.functions.get(sel)
        if info is None:
            return FunctionInfo(f"Unknown ({sel})", FunctionCategory.OTHER.value)
        return info

    def event_decoder(self, topic0: Optional[str]) -> Optional[EventDecoder]:
        if not topic0:
            return None
        return self.events.get(str(topic0).lower())

    def opcode_category(self, op: str) -> str:
        return self.opcodes.get(op, OpcodeCategory.OTHER.value)


DEFAULT_REGISTRY = SignatureRegistry.build(
    contracts=PYUSD_CONTRACTS,
    functions=PYUSD_FUNCTIONS,
    events=STANDARD_EVENTS,
)
