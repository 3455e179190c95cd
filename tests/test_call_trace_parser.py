import unittest

from tracescope.core.enums import FunctionCategory, Severity
from tracescope.core.errors import EmptyTraceError
from tracescope.parsers.call_trace_parser import (
    call_hierarchy,
    gas_attribution,
    interaction_patterns,
    parse_call_trace,
    suggestions,
    value_transfers,
)
from tracescope.registry.signatures import TRANSFER_TOPIC

PYUSD = "0x6c3ea9036406852006290770bedfcaba0e23a0e8"
IMPL = "0x8ecae0b0402e29694b3af35d5943d4631ee568dc"
EOA = "0x" + "a" * 40
RECIPIENT = "0x" + "b" * 40
OTHER = "0x" + "c" * 40


def _transfer_input(to: str, amount: int) -> str:
    return "0xa9059cbb" + "0" * 24 + to[2:] + format(amount, "064x")


def _nested_trace() -> dict:
    transfer_log = {
        "address": PYUSD,
        "topics": [TRANSFER_TOPIC, "0x" + "0" * 24 + EOA[2:], "0x" + "0" * 24 + RECIPIENT[2:]],
        "data": "0x" + format(2_500_000, "064x"),
    }
    return {
        "type": "CALL",
        "from": EOA,
        "to": PYUSD,
        "value": "0x0",
        "gasUsed": hex(65536),
        "input": _transfer_input(RECIPIENT, 2_500_000),
        "output": "0x" + "0" * 63 + "1",
        "calls": [
            {
                "type": "DELEGATECALL",
                "from": PYUSD,
                "to": IMPL,
                "gasUsed": hex(16384),
                "input": _transfer_input(RECIPIENT, 2_500_000),
                "logs": [transfer_log],
                "calls": [
                    {
                        "type": "STATICCALL",
                        "from": IMPL,
                        "to": OTHER,
                        "gasUsed": hex(4096),
                        "input": "0x70a08231" + "0" * 64,
                    }
                ],
            }
        ],
    }


class CallTraceParserTests(unittest.TestCase):
    def test_node_count_and_depths(self) -> None:
        analysis = parse_call_trace(_nested_trace(), tx_hash="0xtx")

        self.assertEqual(len(analysis.nodes), 3)
        self.assertEqual([n.id for n in analysis.nodes], ["node_0", "node_1", "node_2"])
        by_id = {n.id: n for n in analysis.nodes}
        for node in analysis.nodes:
            if node.parent_id is None:
                self.assertEqual(node.depth, 0)
            else:
                self.assertEqual(node.depth, by_id[node.parent_id].depth + 1)
        self.assertEqual(analysis.stats.max_call_depth, 2)

    def test_category_gas_sums_to_root_gas(self) -> None:
        analysis = parse_call_trace(_nested_trace())

        self.assertEqual(sum(analysis.gas_by_function_category.values()), 65536)
        self.assertEqual(analysis.stats.total_gas, 65536)
        self.assertEqual(analysis.gas_by_function_category[FunctionCategory.TOKEN_MOVEMENT.value], 65536 - 4096)
        self.assertEqual(analysis.gas_by_function_category[FunctionCategory.VIEW.value], 4096)

    def test_single_known_transfer_yields_one_token_transfer(self) -> None:
        trace = {
            "type": "CALL",
            "from": EOA,
            "to": PYUSD,
            "gasUsed": "0x5208",
            "input": _transfer_input(RECIPIENT, 1_000_000),
        }
        analysis = parse_call_trace(trace, tx_hash="0xabc")

        self.assertEqual(len(analysis.transfers), 1)
        t = analysis.transfers[0]
        self.assertEqual(t.amount, 1_000_000)
        self.assertEqual(t.from_address, EOA)
        self.assertEqual(t.to_address, RECIPIENT)
        self.assertEqual(t.tx_hash, "0xabc")
        self.assertEqual(analysis.nodes[0].function_category, FunctionCategory.TOKEN_MOVEMENT.value)
        self.assertEqual(analysis.nodes[0].function_name, "transfer")
        self.assertEqual(analysis.state_changes[0].change_type, "transfer")

    def test_transfer_to_unknown_contract_is_not_decoded(self) -> None:
        trace = {"type": "CALL", "from": EOA, "to": OTHER, "gasUsed": "0x1", "input": _transfer_input(RECIPIENT, 5)}
        analysis = parse_call_trace(trace)
        self.assertEqual(analysis.transfers, [])
        self.assertFalse(analysis.nodes[0].is_known_contract)

    def test_transfer_from_is_decoded(self) -> None:
        data = (
            "0x23b872dd"
            + "0" * 24 + EOA[2:]
            + "0" * 24 + RECIPIENT[2:]
            + format(42, "064x")
        )
        trace = {"type": "CALL", "from": OTHER, "to": PYUSD, "gasUsed": "0x10", "input": data}
        analysis = parse_call_trace(trace)
        self.assertEqual(len(analysis.transfers), 1)
        self.assertEqual(analysis.transfers[0].from_address, EOA)
        self.assertEqual(analysis.transfers[0].to_address, RECIPIENT)
        self.assertEqual(analysis.transfers[0].amount, 42)

    def test_interactions_and_logs(self) -> None:
        analysis = parse_call_trace(_nested_trace())

        self.assertEqual(analysis.contract_interactions, {f"{PYUSD}->{IMPL}", f"{IMPL}->{OTHER}"})
        self.assertEqual(len(analysis.logs), 1)
        log = analysis.logs[0]
        self.assertEqual(log.log_index, 0)
        self.assertTrue(log.is_transfer)
        self.assertEqual(log.event_name, "Transfer")
        self.assertEqual(log.contract_name, "PYUSD Token")
        self.assertEqual(log.decoded_fields["value"], 2_500_000)
        self.assertTrue(log.details.startswith("Transfer: 2500000 from 0xaaaa"))

    def test_undecodable_log(self) -> None:
        trace = {
            "type": "CALL",
            "from": EOA,
            "to": PYUSD,
            "gasUsed": "0x1",
            "input": "0x",
            "logs": [
                {"address": PYUSD, "topics": [TRANSFER_TOPIC], "data": "0x"},
                {"address": PYUSD, "topics": ["0x1234"], "data": "0x"},
                "junk",
            ],
        }
        analysis = parse_call_trace(trace)

        self.assertEqual(len(analysis.logs), 2)
        self.assertIn("Decode Error", analysis.logs[0].details)
        self.assertEqual(analysis.logs[1].event_name, "Unknown")
        self.assertEqual(analysis.logs[1].details, "Not Decoded")
        self.assertEqual([l.log_index for l in analysis.logs], [0, 1])
        self.assertTrue(analysis.warnings)

    def test_contract_creation_and_eth_transfer(self) -> None:
        trace = {
            "type": "CREATE",
            "from": EOA,
            "gasUsed": "0x100",
            "input": "0x6080",
            "calls": [{"type": "CALL", "from": OTHER, "to": RECIPIENT, "value": hex(10**18), "gasUsed": "0x0"}],
        }
        analysis = parse_call_trace(trace)

        root, child = analysis.nodes
        self.assertEqual(root.function_name, "Contract Creation")
        self.assertEqual(root.function_category, FunctionCategory.CONTRACT_CREATION.value)
        self.assertEqual(root.to_address, "N/A")
        self.assertEqual(child.function_name, "ETH Transfer")
        self.assertEqual(value_transfers(analysis)[0].value_wei, 10**18)

    def test_empty_trace_raises(self) -> None:
        with self.assertRaises(EmptyTraceError):
            parse_call_trace(None)
        with self.assertRaises(EmptyTraceError):
            parse_call_trace({})
        with self.assertRaises(EmptyTraceError):
            parse_call_trace([{"type": "CALL"}])

    def test_malformed_values_degrade(self) -> None:
        trace = {"type": "CALL", "from": EOA, "to": OTHER, "gasUsed": "nope", "input": "0x12", "calls": [1, None]}
        analysis = parse_call_trace(trace)

        node = analysis.nodes[0]
        self.assertEqual(node.gas_used, 0)
        self.assertEqual(node.function_name, "N/A")
        self.assertEqual(len(analysis.nodes), 1)
        self.assertEqual(len(analysis.warnings), 1)


class CallTraceViewTests(unittest.TestCase):
    def test_hierarchy_rebuilds_tree(self) -> None:
        roots = call_hierarchy(parse_call_trace(_nested_trace()))
        self.assertEqual(len(roots), 1)
        self.assertEqual(len(roots[0].children), 1)
        self.assertEqual(roots[0].children[0].children[0].node.to_address, OTHER)

    def test_gas_attribution_uses_exclusive_gas(self) -> None:
        rows = gas_attribution(parse_call_trace(_nested_trace()))

        self.assertEqual([r.address for r in rows], [PYUSD, IMPL, OTHER])
        self.assertEqual(rows[0].gas_used, 65536 - 16384)
        self.assertAlmostEqual(sum(r.percentage for r in rows), 100.0)

    def test_failure_rate_suggestion(self) -> None:
        trace = _nested_trace()
        trace["calls"][0]["error"] = "execution reverted"
        analysis = parse_call_trace(trace)

        patterns = interaction_patterns(analysis)
        self.assertEqual(patterns.failed_calls, 1)
        codes = {a.code: a for a in suggestions(analysis)}
        self.assertIn("high_call_failure_rate", codes)
        self.assertEqual(codes["high_call_failure_rate"].severity, Severity.HIGH)
        self.assertIn("33.3% of calls failed", codes["high_call_failure_rate"].message())


if __name__ == "__main__":
    unittest.main()
