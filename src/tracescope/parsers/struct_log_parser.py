from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

from tracescope.config import settings
from tracescope.core.dto import StructLogStep
from tracescope.core.errors import InvalidStructLogError
from tracescope.core.models import GasShare, StructLogAnalysis, StructLogSummary
from tracescope.parsers.hexutil import decode_stack_address, parse_quantity
from tracescope.registry.signatures import DEFAULT_REGISTRY, SignatureRegistry

logger = logging.getLogger(__name__)

CALL_OPCODES = frozenset({"CALL", "CALLCODE", "STATICCALL", "DELEGATECALL"})
EXIT_OPCODES = frozenset({"RETURN", "REVERT", "STOP", "SELFDESTRUCT"})
KNOWN_TOP_OPERATIONS = 10


def _shares(totals: Dict[str, int], denominator: int, counts: Optional[Dict[str, int]] = None) -> List[GasShare]:
    out = [
        GasShare(
            name=name,
            gas_used=gas,
            count=(counts or {}).get(name, 0),
            percentage=(gas / denominator * 100) if denominator > 0 else 0.0,
        )
        for name, gas in totals.items()
    ]
    out.sort(key=lambda s: s.gas_used, reverse=True)
    return out


def parse_struct_logs(
    struct_logs: Any,
    registry: SignatureRegistry = DEFAULT_REGISTRY,
    top_n: int = settings.TOP_OPCODES_LIMIT,
) -> StructLogAnalysis:
    """
    Per-opcode analysis of a structLogger trace.

    Gas cost of a step is the drop in remaining gas since the previous step
    (never negative). The executing contract per depth is inferred from the
    address argument of CALL-family opcodes and dropped again when the frame
    exits, so steps are only attributed to a contract while it is running.

    Raises:
        InvalidStructLogError: when struct_logs is None or not a list
    """
    if struct_logs is None or not isinstance(struct_logs, list):
        raise InvalidStructLogError("structLogs missing or not a list")

    analysis = StructLogAnalysis()
    steps = analysis.steps
    current_contracts: Dict[int, str] = {}

    first = next((s for s in struct_logs if isinstance(s, dict)), None)
    last_gas = parse_quantity(first.get("gas")) if first else 0
    prev_depth: Optional[int] = None
    skipped = 0

    for i, raw in enumerate(struct_logs):
        if not isinstance(raw, dict):
            skipped += 1
            continue

        gas = parse_quantity(raw["gas"]) if raw.get("gas") is not None else last_gas
        gas_cost = max(0, last_gas - gas)
        depth = parse_quantity(raw.get("depth"))
        op = str(raw.get("op") or "N/A")
        stack = raw.get("stack") or []
        if not isinstance(stack, list):
            stack = []

        # returned into a shallower frame: forget the frames we left
        if prev_depth is not None and depth < prev_depth:
            for d in [d for d in current_contracts if d > depth]:
                del current_contracts[d]

        calls_known = False
        if op in CALL_OPCODES and len(stack) >= 2:
            # geth lists the stack bottom-first; the callee is the second slot from the top
            target = decode_stack_address(stack[-2])
            if target is None:
                current_contracts.pop(depth + 1, None)
                analysis.warnings.append(f"step {i}: could not decode {op} target {stack[-2]!r}")
            else:
                current_contracts[depth + 1] = target
                calls_known = registry.is_known_contract(target)

        current = current_contracts.get(depth)
        in_known = registry.is_known_contract(current)

        mem_size = raw.get("memSize")
        if mem_size is not None:
            mem_bytes = parse_quantity(mem_size)
        else:
            memory = raw.get("memory") or []
            mem_bytes = len(memory) * 32 if isinstance(memory, list) else 0

        steps.append(
            StructLogStep(
                step_index=i,
                pc=parse_quantity(raw.get("pc")),
                op=op,
                opcode_category=registry.opcode_category(op),
                gas=gas,
                gas_cost=gas_cost,
                depth=depth,
                stack_depth=len(stack),
                mem_size_bytes=mem_bytes,
                current_contract=current,
                is_known_contract_context=in_known,
                is_known_contract_related=calls_known or in_known,
            )
        )

        if op in EXIT_OPCODES:
            current_contracts.pop(depth, None)

        last_gas = gas
        prev_depth = depth

    if skipped:
        analysis.warnings.append(f"skipped {skipped} malformed struct log entries")

    total_cost = sum(s.gas_cost for s in steps)
    known_steps = [s for s in steps if s.is_known_contract_context]
    analysis.summary = StructLogSummary(
        total_steps=len(steps),
        total_gas_cost=total_cost,
        max_depth=max((s.depth for s in steps), default=0),
        max_stack_depth=max((s.stack_depth for s in steps), default=0),
        max_memory_bytes=max((s.mem_size_bytes for s in steps), default=0),
        known_contract_steps=len(known_steps),
        known_contract_percentage=(len(known_steps) / len(steps) * 100) if steps else 0.0,
    )

    category_gas: Dict[str, int] = {}
    opcode_gas: Dict[str, int] = {}
    opcode_count: Dict[str, int] = {}
    for s in steps:
        category_gas[s.opcode_category] = category_gas.get(s.opcode_category, 0) + s.gas_cost
        opcode_gas[s.op] = opcode_gas.get(s.op, 0) + s.gas_cost
        opcode_count[s.op] = opcode_count.get(s.op, 0) + 1

    analysis.opcode_categories = _shares({k: v for k, v in category_gas.items() if v > 0}, total_cost)
    analysis.top_opcodes = _shares(
        {k: v for k, v in opcode_gas.items() if v > 0}, total_cost, opcode_count
    )[:top_n]

    if known_steps:
        op_counts: Dict[str, int] = {}
        op_gas: Dict[str, int] = {}
        known_category_gas: Dict[str, int] = {}
        for s in known_steps:
            op_counts[s.op] = op_counts.get(s.op, 0) + 1
            op_gas[s.op] = op_gas.get(s.op, 0) + s.gas_cost
            known_category_gas[s.opcode_category] = known_category_gas.get(s.opcode_category, 0) + s.gas_cost
        operations = [
            GasShare(name=op, gas_used=op_gas[op], count=n, percentage=n / len(known_steps) * 100)
            for op, n in op_counts.items()
        ]
        operations.sort(key=lambda s: s.count, reverse=True)
        analysis.known_contract_operations = operations[:KNOWN_TOP_OPERATIONS]
        analysis.known_contract_categories = _shares(known_category_gas, sum(known_category_gas.values()))

    logger.debug("parsed %d struct log steps (%d in known contracts)", len(steps), len(known_steps))
    return analysis
