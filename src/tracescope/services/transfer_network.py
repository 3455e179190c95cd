"""
Directed token-flow graph from a list of transfers: aggregation, pruning,
topology (hubs, authorities, clusters, critical edges) and Graphviz DOT
source for external rendering.
"""
from __future__ import annotations

import logging
import re
from typing import Dict, Iterable, List, Set, Tuple

from tracescope.config import settings
from tracescope.core.dto import TokenTransfer
from tracescope.core.enums import NodeRole, Severity
from tracescope.core.models import (
    Advisory,
    CentralNode,
    Cluster,
    LayoutSuggestion,
    NetworkEdge,
    NetworkNode,
    NetworkTopology,
    TransferNetwork,
)
from tracescope.parsers.hexutil import short

logger = logging.getLogger(__name__)

CENTRAL_MIN_DEGREE = 3
CENTRAL_LIMIT = 10
CLUSTER_SEED_HUBS = 5
CRITICAL_PATH_LIMIT = 10

EMPTY_DOT = 'digraph EmptyNetwork {\n  label="No token transfers found";\n  labelloc=c;\n}\n'

_NODE_ID_RE = re.compile(r"[^a-zA-Z0-9]")


def _density(node_count: int, edge_count: int) -> float:
    if node_count < 2:
        return 0.0
    return edge_count / (node_count * (node_count - 1))


def build_transfer_network(
    transfers: Iterable[TokenTransfer],
    max_nodes: int = settings.NETWORK_MAX_NODES,
    min_value: int = 0,
    layout: str = "fdp",
    show_labels: bool = True,
    decimals: int = settings.TOKEN_DECIMALS,
) -> TransferNetwork:
    """
    Aggregate transfers into (from, to) edges.

    Transfers below min_value are dropped. When more than max_nodes
    addresses remain, the ones with the highest in+out volume are kept and
    edges touching a dropped address are removed.
    """
    kept = [t for t in transfers if t.amount >= min_value]
    if not kept:
        return TransferNetwork(dot_source=EMPTY_DOT)

    edges: Dict[Tuple[str, str], NetworkEdge] = {}
    order: List[str] = []
    seen: Set[str] = set()
    for t in kept:
        key = (t.from_address, t.to_address)
        edge = edges.get(key)
        if edge is None:
            edge = edges[key] = NetworkEdge(from_address=t.from_address, to_address=t.to_address)
        edge.value += t.amount
        edge.count += 1
        for address in key:
            if address not in seen:
                seen.add(address)
                order.append(address)

    truncated = False
    if len(order) > max_nodes:
        volume: Dict[str, int] = {}
        for edge in edges.values():
            volume[edge.from_address] = volume.get(edge.from_address, 0) + edge.value
            volume[edge.to_address] = volume.get(edge.to_address, 0) + edge.value
        order = sorted(order, key=lambda a: volume.get(a, 0), reverse=True)[:max_nodes]
        keep = set(order)
        edges = {k: e for k, e in edges.items() if k[0] in keep and k[1] in keep}
        truncated = True
        logger.info("transfer network truncated to %d of %d nodes", max_nodes, len(seen))

    nodes: Dict[str, NetworkNode] = {a: NetworkNode(address=a) for a in order}
    for edge in edges.values():
        src = nodes[edge.from_address]
        dst = nodes[edge.to_address]
        src.out_degree += 1
        src.volume_out += edge.value
        dst.in_degree += 1
        dst.volume_in += edge.value

    network = TransferNetwork(
        nodes=nodes,
        edges=edges,
        total_volume=sum(e.value for e in edges.values()),
        max_edge_value=max((e.value for e in edges.values()), default=0),
        density=_density(len(nodes), len(edges)),
        truncated=truncated,
    )
    network.dot_source = to_dot(network, layout=layout, show_labels=show_labels, decimals=decimals)
    return network


def analyze_topology(network: TransferNetwork) -> NetworkTopology:
    central: List[CentralNode] = []
    for node in network.nodes.values():
        if node.out_degree >= CENTRAL_MIN_DEGREE and node.volume_out > 0:
            central.append(CentralNode(node.address, node.out_degree + node.volume_out / 1e6, NodeRole.HUB))
        if node.in_degree >= CENTRAL_MIN_DEGREE and node.volume_in > 0:
            central.append(CentralNode(node.address, node.in_degree + node.volume_in / 1e6, NodeRole.AUTHORITY))
    central.sort(key=lambda c: c.centrality, reverse=True)

    isolated = [n.address for n in network.nodes.values() if n.in_degree == 0 and n.out_degree == 0]

    clusters: List[Cluster] = []
    claimed: Set[str] = set()
    hubs = [c for c in central if c.role is NodeRole.HUB][:CLUSTER_SEED_HUBS]
    for hub in hubs:
        if hub.address in claimed:
            continue
        members = [hub.address]
        total = network.nodes[hub.address].volume_out
        for edge in network.edges.values():
            if edge.from_address == hub.address and edge.to_address not in claimed:
                members.append(edge.to_address)
                total += edge.value
                claimed.add(edge.to_address)
        if len(members) > 1:
            clusters.append(Cluster(tuple(members), total))
        claimed.add(hub.address)

    critical: List[NetworkEdge] = []
    if network.edges:
        mean = sum(e.value for e in network.edges.values()) / len(network.edges)
        critical = sorted(
            (e for e in network.edges.values() if e.value > mean),
            key=lambda e: e.value,
            reverse=True,
        )[:CRITICAL_PATH_LIMIT]

    return NetworkTopology(
        central_nodes=central[:CENTRAL_LIMIT],
        isolated_nodes=isolated,
        clusters=clusters,
        critical_paths=critical,
    )


def layout_suggestions(network: TransferNetwork) -> LayoutSuggestion:
    n = len(network.nodes)
    e = len(network.edges)
    density = _density(n, e)
    tips: List[Advisory] = []

    if n <= 10:
        layout = "dot"
    elif n <= 50 and density > 0.1:
        layout = "neato"
    elif n <= 100:
        layout = "fdp"
    else:
        layout = "sfdp"
        tips.append(Advisory("large_network", Severity.LOW, {"nodes": n}))

    if density > 0.3:
        tips.append(Advisory("dense_network", Severity.LOW, {"density": density}))
    if e > n * 2:
        tips.append(Advisory("many_edges_per_node", Severity.LOW))

    return LayoutSuggestion(recommended_layout=layout, tips=tips)


# ---- DOT ----

def _node_id(address: str) -> str:
    return _NODE_ID_RE.sub("_", address)


def _compact_amount(raw: int, decimals: int) -> str:
    if not raw:
        return "0"
    value = raw / 10 ** decimals
    if value >= 1_000_000:
        return f"{value / 1_000_000:.1f}M"
    if value >= 1_000:
        return f"{value / 1_000:.1f}K"
    return f"{value:.2f}"


def to_dot(
    network: TransferNetwork,
    layout: str = "fdp",
    show_labels: bool = True,
    decimals: int = settings.TOKEN_DECIMALS,
) -> str:
    if not network.nodes:
        return EMPTY_DOT

    lines = [
        "digraph PyusdTransferNetwork {",
        f"  layout={layout};",
        "  rankdir=LR;",
        "  node [shape=ellipse, style=filled];",
        "  edge [arrowhead=vee];",
        "  bgcolor=transparent;",
        "",
    ]
    for node in network.nodes.values():
        label = short(node.address) if show_labels else ""
        lines.append(f'  "{_node_id(node.address)}" [label="{label}", fillcolor="#4CAF50", fontsize=10];')
    lines.append("")

    top = network.max_edge_value or 1
    for edge in network.edges.values():
        intensity = edge.value / top
        weight = max(1, round(intensity * 10))
        color = f"#{round(255 * intensity):02x}4444"
        label = _compact_amount(edge.value, decimals) if show_labels else ""
        lines.append(
            f'  "{_node_id(edge.from_address)}" -> "{_node_id(edge.to_address)}" '
            f'[weight={weight}, color="{color}", penwidth={max(1, weight / 2)}, label="{label}", fontsize=8];'
        )
    lines.append("}")
    return "\n".join(lines) + "\n"
