from __future__ import annotations

import argparse
import datetime as dt
import json
import logging
import sys
from decimal import Decimal, InvalidOperation
from typing import Any, List, Optional

from tracescope.config import settings
from tracescope.config.logging_config import setup_logging
from tracescope.core.errors import TraceAnalysisError
from tracescope.core.models import SupplyDataPoint
from tracescope.ports.trace_source_port import TraceSourcePort
from tracescope.services.supply_history import analyze_supply_history
from tracescope.services.trace_service import TraceAnalysisService
from tracescope.io.schemas import (
    block_report_to_dict,
    supply_analysis_to_dict,
    transaction_report_to_dict,
)
from tracescope.io.output_writer import (
    write_block_summary_md,
    write_network_dot,
    write_report_json,
    write_supply_summary_md,
    write_transaction_summary_md,
)

from tracescope.adapters.rpc.json_rpc_adapter import JsonRpcTraceAdapter
from tracescope.adapters.static_trace_adapter import StaticTraceAdapter

logger = logging.getLogger(__name__)


def build_arg_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog="tracescope", description="Debug-trace analytics (callTracer + structLogs)")
    p.add_argument("--log-level", default=settings.LOG_LEVEL, help="Logging level")
    p.add_argument("--log-file", help="Also log to this file")
    p.add_argument("--detailed-logs", action="store_true", help="Include file/line in log records")
    sub = p.add_subparsers(dest="command", required=True)

    tx = sub.add_parser("tx", help="Analyze one transaction")
    tx.add_argument("tx_hash", help="Transaction hash")
    tx.add_argument("--network", default=settings.DEFAULT_NETWORK, help="Network name (see settings.RPC_URLS)")
    tx.add_argument("--call-trace", help="callTracer JSON file (skips RPC)")
    tx.add_argument("--struct-logs", help="structLogger JSON file (skips RPC)")
    tx.add_argument("--no-struct-logs", action="store_true", help="Only fetch the call trace")
    tx.add_argument("--out", default="out", help="Output folder")

    block = sub.add_parser("block", help="Analyze every transaction in a block")
    block.add_argument("block", help="Block number, hex number or tag (latest, ...)")
    block.add_argument("--network", default=settings.DEFAULT_NETWORK, help="Network name (see settings.RPC_URLS)")
    block.add_argument("--trace-file", help="debug_traceBlockByNumber JSON file (skips RPC)")
    block.add_argument("--gas-price", type=str, default=str(settings.DEFAULT_GAS_PRICE_GWEI), help="Gas price in gwei")
    block.add_argument("--eth-price", type=str, help="ETH price in fiat for cost estimates")
    block.add_argument("--dot", action="store_true", help="Write the transfer network as Graphviz DOT")
    block.add_argument("--out", default="out", help="Output folder")

    supply = sub.add_parser("supply", help="Analyze a token supply time series")
    supply.add_argument("series", help="JSON list of {block_number, timestamp, value}")
    supply.add_argument("--threshold", type=str, default=str(settings.SUPPLY_ANOMALY_THRESHOLD), help="Anomaly band in standard deviations")
    supply.add_argument("--decimals", type=int, default=settings.TOKEN_DECIMALS, help="Token decimals")
    supply.add_argument("--out", default="out", help="Output folder")
    return p


def _ts() -> str:
    return dt.datetime.now().strftime("%H:%M:%S")


def _load_json(path: str) -> Any:
    with open(path, "r", encoding="utf-8") as f:
        return json.load(f)


def _decimal_arg(value: Optional[str], name: str) -> Optional[Decimal]:
    if value is None:
        return None
    try:
        return Decimal(value)
    except InvalidOperation:
        raise ValueError(f"{name} must be a number, got {value!r}") from None


def load_supply_points(data: Any) -> List[SupplyDataPoint]:
    """Accepts snake_case or camelCase keys; "value" or "raw_value" for the supply."""
    if not isinstance(data, list):
        raise ValueError("supply series must be a JSON list")
    points = []
    for row in data:
        if not isinstance(row, dict):
            continue
        block = row.get("block_number", row.get("blockNumber", 0))
        points.append(
            SupplyDataPoint(
                block_number=int(block, 0) if isinstance(block, str) else int(block),
                timestamp=int(row.get("timestamp", 0)),
                raw_value=row.get("raw_value", row.get("value")),
            )
        )
    return points


def _source_for_tx(args) -> TraceSourcePort:
    if args.call_trace:
        struct = {args.tx_hash: _load_json(args.struct_logs)} if args.struct_logs else {}
        return StaticTraceAdapter(call_traces={args.tx_hash: _load_json(args.call_trace)}, struct_logs=struct)
    return JsonRpcTraceAdapter()


def _run_tx(args) -> int:
    svc = TraceAnalysisService(source=_source_for_tx(args))
    include_struct = not args.no_struct_logs and (args.struct_logs is not None or not args.call_trace)
    print(f"[{_ts()}] Analyzing {args.tx_hash} on {args.network}")
    report = svc.analyze_transaction(args.tx_hash, args.network, include_struct_logs=include_struct)

    json_path = write_report_json(transaction_report_to_dict(report), args.out)
    summary_path = write_transaction_summary_md(report, args.out)
    print(f"Wrote: {json_path}")
    print(f"Wrote: {summary_path}")
    return 0


def _run_block(args) -> int:
    if args.trace_file:
        source: TraceSourcePort = StaticTraceAdapter(blocks={args.block: _load_json(args.trace_file)})
    else:
        source = JsonRpcTraceAdapter()
    svc = TraceAnalysisService(source=source)

    print(f"[{_ts()}] Analyzing block {args.block} on {args.network}")
    report = svc.analyze_block(
        args.block,
        args.network,
        gas_price_gwei=_decimal_arg(args.gas_price, "--gas-price"),
        eth_price=_decimal_arg(args.eth_price, "--eth-price"),
    )

    json_path = write_report_json(block_report_to_dict(report), args.out)
    summary_path = write_block_summary_md(report, args.out)
    print(f"Wrote: {json_path}")
    print(f"Wrote: {summary_path}")
    if args.dot:
        print(f"Wrote: {write_network_dot(report.transfer_network, args.out)}")
    return 0


def _run_supply(args) -> int:
    points = load_supply_points(_load_json(args.series))
    analysis = analyze_supply_history(
        points,
        anomaly_threshold=_decimal_arg(args.threshold, "--threshold"),
        decimals=args.decimals,
    )
    json_path = write_report_json(supply_analysis_to_dict(analysis), args.out)
    summary_path = write_supply_summary_md(analysis, args.out)
    print(f"Wrote: {json_path}")
    print(f"Wrote: {summary_path}")
    return 0


COMMANDS = {
    "tx": _run_tx,
    "block": _run_block,
    "supply": _run_supply,
}


def main(argv: Optional[List[str]] = None) -> int:
    args = build_arg_parser().parse_args(argv)
    setup_logging(args.log_level, log_file=args.log_file, detailed=args.detailed_logs)

    try:
        return COMMANDS[args.command](args)
    except (TraceAnalysisError, OSError, ValueError) as exc:
        logger.debug("command %s failed", args.command, exc_info=True)
        print(f"[{_ts()}] Error: {exc.__class__.__name__}: {exc}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
