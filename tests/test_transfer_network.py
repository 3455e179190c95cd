import unittest

from tracescope.core.dto import TokenTransfer
from tracescope.core.enums import NodeRole
from tracescope.services.transfer_network import (
    EMPTY_DOT,
    analyze_topology,
    build_transfer_network,
    layout_suggestions,
)
from tracescope.services.validation import validate_network

A = "0x" + "a" * 40
B = "0x" + "b" * 40
C = "0x" + "c" * 40


class TransferNetworkTests(unittest.TestCase):
    def test_edges_are_aggregated(self) -> None:
        network = build_transfer_network([
            TokenTransfer(A, B, 10),
            TokenTransfer(A, B, 5),
            TokenTransfer(B, C, 3),
        ])

        self.assertEqual(set(network.nodes), {A, B, C})
        self.assertEqual(set(network.edges), {(A, B), (B, C)})
        self.assertEqual(network.edges[(A, B)].value, 15)
        self.assertEqual(network.edges[(A, B)].count, 2)
        self.assertEqual(network.edges[(B, C)].value, 3)
        self.assertEqual(network.total_volume, 18)
        self.assertEqual(network.max_edge_value, 15)

        self.assertEqual(network.nodes[B].in_degree, 1)
        self.assertEqual(network.nodes[B].out_degree, 1)
        self.assertEqual(network.nodes[B].volume_in, 15)
        self.assertAlmostEqual(network.density, 2 / 6)
        self.assertTrue(validate_network(network).is_valid)

    def test_dot_source(self) -> None:
        network = build_transfer_network([TokenTransfer(A, B, 2_500_000 * 10**6)], layout="dot")

        dot = network.dot_source
        self.assertTrue(dot.startswith("digraph PyusdTransferNetwork {"))
        self.assertIn("layout=dot;", dot)
        self.assertIn('label="2.5M"', dot)
        self.assertIn(f'"{A}" -> "{B}"', dot)

        hidden = build_transfer_network([TokenTransfer(A, B, 1)], show_labels=False)
        self.assertIn('label=""', hidden.dot_source)

    def test_empty_network(self) -> None:
        network = build_transfer_network([])
        self.assertEqual(network.nodes, {})
        self.assertEqual(network.dot_source, EMPTY_DOT)

        filtered = build_transfer_network([TokenTransfer(A, B, 5)], min_value=10)
        self.assertEqual(filtered.dot_source, EMPTY_DOT)

    def test_truncation_keeps_highest_volume_nodes(self) -> None:
        transfers = [
            TokenTransfer(A, B, 1000),
            TokenTransfer(B, C, 1),
            TokenTransfer(C, "0x" + "d" * 40, 1),
        ]
        network = build_transfer_network(transfers, max_nodes=2)

        self.assertTrue(network.truncated)
        self.assertEqual(set(network.nodes), {A, B})
        self.assertEqual(set(network.edges), {(A, B)})
        self.assertTrue(validate_network(network).is_valid)

    def test_topology(self) -> None:
        sinks = ["0x" + str(i) * 40 for i in range(1, 5)]
        transfers = [TokenTransfer(A, s, 100 * (i + 1)) for i, s in enumerate(sinks)]
        transfers.append(TokenTransfer(B, C, 1))
        topology = analyze_topology(build_transfer_network(transfers))

        self.assertEqual(len(topology.central_nodes), 1)
        hub = topology.central_nodes[0]
        self.assertEqual(hub.address, A)
        self.assertIs(hub.role, NodeRole.HUB)
        self.assertAlmostEqual(hub.centrality, 4 + 1000 / 1e6)

        self.assertEqual(len(topology.clusters), 1)
        self.assertEqual(topology.clusters[0].nodes[0], A)
        self.assertEqual(len(topology.clusters[0].nodes), 5)
        self.assertEqual(topology.isolated_nodes, [])
        # mean edge value is 200.2, so edges of 300 and 400 are critical
        self.assertEqual([e.value for e in topology.critical_paths], [400, 300])

    def test_layout_suggestions(self) -> None:
        small = build_transfer_network([TokenTransfer(A, B, 1)])
        self.assertEqual(layout_suggestions(small).recommended_layout, "dot")

        many = [TokenTransfer("0x%040x" % i, "0x%040x" % (i + 1), 1) for i in range(120)]
        big = build_transfer_network(many, max_nodes=500)
        suggestion = layout_suggestions(big)
        self.assertEqual(suggestion.recommended_layout, "sfdp")
        self.assertEqual(suggestion.tips[0].code, "large_network")


if __name__ == "__main__":
    unittest.main()
