import unittest
from dataclasses import replace

from tracescope.core.dto import TokenTransfer
from tracescope.core.models import CallTraceAnalysis, NetworkEdge, NetworkNode, StructLogAnalysis
from tracescope.parsers.call_trace_parser import parse_call_trace
from tracescope.parsers.struct_log_parser import parse_struct_logs
from tracescope.services.transfer_network import build_transfer_network
from tracescope.services.validation import (
    validate_call_trace_analysis,
    validate_network,
    validate_struct_log_analysis,
    validate_transaction_analysis,
)

A = "0x" + "a" * 40
B = "0x" + "b" * 40
C = "0x" + "c" * 40


def _call_analysis() -> CallTraceAnalysis:
    return parse_call_trace({
        "type": "CALL",
        "from": A,
        "to": B,
        "gasUsed": hex(5000),
        "input": "0x",
        "calls": [{"type": "CALL", "from": B, "to": C, "gasUsed": hex(1000), "input": "0x"}],
    })


def _struct_analysis() -> StructLogAnalysis:
    return parse_struct_logs([
        {"op": "PUSH1", "gas": 100, "depth": 1},
        {"op": "STOP", "gas": 97, "depth": 1},
    ])


class CallTraceValidationTests(unittest.TestCase):
    def test_clean_trace_is_valid(self) -> None:
        result = validate_call_trace_analysis(_call_analysis())
        self.assertTrue(result.is_valid)
        self.assertEqual(result.errors, [])

    def test_duplicate_and_missing_fields(self) -> None:
        analysis = _call_analysis()
        root, child = analysis.nodes
        analysis.nodes[1] = replace(child, id=root.id, to_address="", gas_used=-1)

        result = validate_call_trace_analysis(analysis)
        self.assertFalse(result.is_valid)
        self.assertIn(f"Call 1: duplicate id {root.id!r}", result.errors)
        self.assertIn("Call 1: missing to address", result.errors)
        self.assertIn("Call 1: invalid gas usage", result.errors)

    def test_dangling_parent_is_a_warning(self) -> None:
        analysis = _call_analysis()
        analysis.nodes[1] = replace(analysis.nodes[1], parent_id="nowhere")

        result = validate_call_trace_analysis(analysis)
        self.assertTrue(result.is_valid)
        self.assertIn("Call 1: parent_id references non-existent call", result.warnings)

    def test_empty_analysis(self) -> None:
        result = validate_call_trace_analysis(CallTraceAnalysis(tx_hash="0x1"))
        self.assertEqual(len(result.errors), 2)
        self.assertIn("Empty call list", result.warnings)


class StructLogValidationTests(unittest.TestCase):
    def test_clean_steps_are_valid(self) -> None:
        self.assertTrue(validate_struct_log_analysis(_struct_analysis()).is_valid)

    def test_missing_opcode_and_negative_cost(self) -> None:
        analysis = _struct_analysis()
        analysis.steps[1] = replace(analysis.steps[1], op="", gas_cost=-5)

        result = validate_struct_log_analysis(analysis)
        self.assertEqual(result.errors, ["Step 1: invalid gas cost", "Step 1: missing opcode"])

    def test_empty_steps(self) -> None:
        result = validate_struct_log_analysis(StructLogAnalysis())
        self.assertFalse(result.is_valid)
        self.assertIn("Empty steps list", result.warnings)


class NetworkValidationTests(unittest.TestCase):
    def test_built_network_is_valid(self) -> None:
        network = build_transfer_network([TokenTransfer(A, B, 10), TokenTransfer(B, C, 5)])
        self.assertTrue(validate_network(network).is_valid)

    def test_broken_network(self) -> None:
        network = build_transfer_network([TokenTransfer(A, B, 10)])
        network.nodes["bogus"] = NetworkNode(address=C)
        network.edges[(A, C)] = NetworkEdge(A, C, value=1, count=0)

        errors = validate_network(network).errors
        self.assertIn(f"Node bogus: key does not match address {C}", errors)
        self.assertIn(f"Edge {A}->{C}: invalid target node", errors)
        self.assertIn(f"Edge {A}->{C}: invalid value or count", errors)


class TransactionValidationTests(unittest.TestCase):
    def test_messages_are_prefixed(self) -> None:
        result = validate_transaction_analysis(CallTraceAnalysis(tx_hash="0x1"), StructLogAnalysis())

        self.assertTrue(all(e.startswith(("StructLog: ", "CallTrace: ")) for e in result.errors))
        self.assertIn("StructLog: Empty steps list", result.warnings)
        self.assertIn("CallTrace: Empty call list", result.warnings)

    def test_nothing_to_validate(self) -> None:
        result = validate_transaction_analysis()
        self.assertTrue(result.is_valid)
        self.assertEqual(result.warnings, ["No trace data provided"])


if __name__ == "__main__":
    unittest.main()
