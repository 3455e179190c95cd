from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Dict, List

from tracescope.core.models import BlockReport, SupplyAnalysis, TransactionReport, TransferNetwork
from tracescope.parsers.call_trace_parser import gas_attribution
from tracescope.parsers.hexutil import short
from tracescope.services.block_processor import format_token_amount


def _out_path(out_dir: str, filename: str) -> Path:
    p = Path(out_dir)
    p.mkdir(parents=True, exist_ok=True)
    return p / filename


def write_report_json(report: Dict[str, Any], out_dir: str, filename: str = "report.json") -> str:
    out_path = _out_path(out_dir, filename)
    with out_path.open("w", encoding="utf-8") as f:
        json.dump(report, f, indent=2, default=str)
    return str(out_path)


def write_network_dot(network: TransferNetwork, out_dir: str, filename: str = "network.dot") -> str:
    out_path = _out_path(out_dir, filename)
    with out_path.open("w", encoding="utf-8") as f:
        f.write(network.dot_source)
    return str(out_path)


def _bullets(items: List[str], empty: str) -> List[str]:
    if not items:
        return [f"_{empty}_\n", "\n"]
    return [f"- {x}\n" for x in items] + ["\n"]


def write_transaction_summary_md(report: TransactionReport, out_dir: str, filename: str = "summary.md") -> str:
    """
    Short human-readable digest of one transaction's analysis.
    """
    out_path = _out_path(out_dir, filename)
    call = report.call
    stats = call.stats

    lines = []
    lines.append(f"# Transaction {report.tx_hash}\n\n")
    lines.append(f"- Network: **{report.network}**\n")
    lines.append(f"- Calls: **{stats.total_calls}** (known contracts: {stats.known_contract_calls})\n")
    lines.append(f"- Max call depth: **{stats.max_call_depth}**\n")
    lines.append(f"- Gas used: **{stats.total_gas:,}**\n")
    lines.append(f"- Failed calls: **{stats.errors}**\n")
    if report.struct is not None:
        lines.append(f"- Opcode steps: **{report.struct.summary.total_steps:,}**\n")
    lines.append("\n")

    lines.append("## Token Transfers\n\n")
    lines.extend(_bullets(
        [
            f"{format_token_amount(t.amount)} | {short(t.from_address)} -> {short(t.to_address)}"
            for t in call.transfers
        ],
        "No token transfers decoded.",
    ))

    lines.append("## Gas by Contract\n\n")
    lines.extend(_bullets(
        [f"**{g.contract_name}** {g.gas_used:,} gas ({g.percentage:.1f}%)" for g in gas_attribution(call)[:10]],
        "No gas attribution available.",
    ))

    lines.append("## Events\n\n")
    lines.extend(_bullets(
        [f"#{log.log_index} {log.contract_name}: {log.details}" for log in call.logs],
        "No events emitted.",
    ))

    lines.append("## Gas Breakdown\n\n")
    lines.extend(_bullets(
        [
            f"{e.label}: {e.total:,} gas ({report.gas_breakdown.percentage(e):.1f}%)"
            for e in report.gas_breakdown.entries
        ],
        "No gas breakdown available.",
    ))

    lines.append("## Suggestions\n\n")
    lines.extend(_bullets(
        [f"[{a.severity.value}] {a.message()}" for a in report.gas_breakdown.suggestions],
        "No suggestions.",
    ))

    if report.validation.errors or report.validation.warnings:
        lines.append("## Data Quality\n\n")
        lines.extend(_bullets(
            report.validation.errors + report.validation.warnings,
            "No issues.",
        ))

    with out_path.open("w", encoding="utf-8") as f:
        f.writelines(lines)
    return str(out_path)


def write_block_summary_md(report: BlockReport, out_dir: str, filename: str = "summary.md") -> str:
    out_path = _out_path(out_dir, filename)
    s = report.block.summary
    gas = report.gas

    lines = []
    lines.append(f"# Block {report.block_identifier}\n\n")
    lines.append(f"- Network: **{report.network}**\n")
    lines.append(f"- Transactions: **{s.total_transactions}** (failed traces: {s.failed_traces_count})\n")
    lines.append(f"- Known-contract interactions: **{s.known_interactions_count}** ({s.known_percentage:.1f}%)\n")
    lines.append(f"- Transfers / mints / burns: **{s.transfer_count} / {s.mint_count} / {s.burn_count}**\n")
    lines.append(f"- Transfer volume: **{format_token_amount(s.transfer_volume)}**\n")
    lines.append(f"- Gas used: **{s.total_gas_used:,}**\n")
    if gas.cost is not None:
        lines.append(f"- Total cost: **{gas.cost.total_cost_eth:.6f} ETH**\n")
    lines.append("\n")

    lines.append("## Activity\n\n")
    lines.append(f"{report.activity.summary}\n\n")
    lines.extend(_bullets(report.activity.highlights, "Nothing notable."))

    lines.append("## Top Functions\n\n")
    lines.extend(_bullets(
        [f"{f.name}: {f.count} ({f.percentage:.1f}%)" for f in report.function_patterns.top_functions],
        "No known-contract function calls.",
    ))

    lines.append("## Top Senders\n\n")
    lines.extend(_bullets(
        [f"{format_token_amount(a.volume)} | {a.address} ({a.count} transfers)" for a in report.volume_flows.top_senders],
        "No transfers.",
    ))

    lines.append("## Unusual Patterns\n\n")
    lines.extend(_bullets(
        [f"[{a.severity.value}] {a.message()}" for a in report.block.unusual_patterns + report.activity.risk_factors],
        "None detected.",
    ))

    lines.append("## Gas Suggestions\n\n")
    lines.extend(_bullets(
        [f"[{a.severity.value}] {a.message()}" for a in gas.suggestions],
        "No suggestions.",
    ))

    lines.append("## Recommendations\n\n")
    lines.extend(_bullets([a.message() for a in report.activity.recommendations], "None."))

    with out_path.open("w", encoding="utf-8") as f:
        f.writelines(lines)
    return str(out_path)


def write_supply_summary_md(analysis: SupplyAnalysis, out_dir: str, filename: str = "summary.md") -> str:
    out_path = _out_path(out_dir, filename)
    m = analysis.metrics

    lines = []
    lines.append("# Supply History\n\n")
    lines.append(f"- Data points: **{len(analysis.trend)}** (window {analysis.window_size})\n")
    lines.append(f"- Trend: **{m.trend.value}** (strength {m.trend_strength:.2f})\n")
    lines.append(f"- Supply range: **{m.min_supply:,.2f} - {m.max_supply:,.2f}**\n")
    lines.append(f"- Minted / burned: **{m.total_minted:,.2f} / {m.total_burned:,.2f}** (net {m.net_change:,.2f})\n")
    lines.append(f"- Anomalous events: **{m.anomaly_count}**\n\n")

    lines.append("## Events\n\n")
    lines.extend(_bullets(
        [
            f"block {e.block_number}: {e.event_type.value} {e.amount:,.2f}"
            f" ({e.growth_rate_percent:+.2f}%){' ANOMALY' if e.is_anomaly else ''}"
            for e in analysis.events
        ],
        "No supply changes.",
    ))

    if analysis.warnings:
        lines.append("## Warnings\n\n")
        lines.extend(_bullets(analysis.warnings, ""))

    with out_path.open("w", encoding="utf-8") as f:
        f.writelines(lines)
    return str(out_path)
