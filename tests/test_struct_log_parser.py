import unittest

from tracescope.core.enums import OpcodeCategory
from tracescope.core.errors import InvalidStructLogError
from tracescope.parsers.struct_log_parser import parse_struct_logs

PYUSD = "0x6c3ea9036406852006290770bedfcaba0e23a0e8"


def _step(op, gas, depth, stack=None, pc=0, **extra):
    step = {"pc": pc, "op": op, "gas": gas, "gasCost": 3, "depth": depth, "stack": stack or []}
    step.update(extra)
    return step


def _call_into_pyusd():
    return [
        _step("PUSH1", 1000, 1, pc=0),
        _step("PUSH20", 997, 1, pc=2),
        _step("CALL", 994, 1, stack=["0x0", "0x" + "0" * 24 + PYUSD[2:], "0xffff"], pc=23),
        _step("SLOAD", 900, 2, stack=["0x1"], memSize=64),
        _step("SSTORE", 800, 2, stack=["0x1", "0x2"]),
        _step("RETURN", 797, 2),
        _step("POP", 700, 1, stack=["0x1"]),
        _step("STOP", 698, 1),
    ]


class StructLogParserTests(unittest.TestCase):
    def test_gas_cost_telescopes(self) -> None:
        logs = _call_into_pyusd()
        analysis = parse_struct_logs(logs)

        costs = [s.gas_cost for s in analysis.steps]
        self.assertEqual(costs[0], 0)
        self.assertEqual(sum(costs), logs[0]["gas"] - logs[-1]["gas"])
        self.assertEqual(analysis.summary.total_gas_cost, 302)
        self.assertTrue(all(c >= 0 for c in costs))

    def test_contract_context_follows_call_frames(self) -> None:
        analysis = parse_struct_logs(_call_into_pyusd())
        steps = analysis.steps

        call = steps[2]
        self.assertFalse(call.is_known_contract_context)
        self.assertTrue(call.is_known_contract_related)

        for s in steps[3:6]:
            self.assertEqual(s.current_contract, PYUSD)
            self.assertTrue(s.is_known_contract_context)

        # back in the caller after RETURN
        self.assertIsNone(steps[6].current_contract)
        self.assertFalse(steps[6].is_known_contract_context)

        self.assertEqual(analysis.summary.known_contract_steps, 3)
        self.assertAlmostEqual(analysis.summary.known_contract_percentage, 37.5)

    def test_summary_and_categories(self) -> None:
        analysis = parse_struct_logs(_call_into_pyusd())
        summary = analysis.summary

        self.assertEqual(summary.total_steps, 8)
        self.assertEqual(summary.max_depth, 2)
        self.assertEqual(summary.max_stack_depth, 3)
        self.assertEqual(summary.max_memory_bytes, 64)

        categories = {c.name: c for c in analysis.opcode_categories}
        self.assertEqual(categories[OpcodeCategory.STORAGE.value].gas_used, 194)
        self.assertAlmostEqual(sum(c.percentage for c in analysis.opcode_categories), 100.0)
        self.assertEqual(analysis.top_opcodes[0].name, "SSTORE")
        self.assertEqual(analysis.top_opcodes[0].count, 1)

        ops = {o.name: o for o in analysis.known_contract_operations}
        self.assertEqual(set(ops), {"SLOAD", "SSTORE", "RETURN"})
        self.assertEqual(ops["SSTORE"].gas_used, 100)

    def test_top_opcodes_limit(self) -> None:
        logs = [_step(f"PUSH{i}", 1000 - i * 10, 1) for i in range(1, 10)]
        analysis = parse_struct_logs(logs, top_n=3)
        self.assertEqual(len(analysis.top_opcodes), 3)

    def test_memory_fallback_uses_word_count(self) -> None:
        analysis = parse_struct_logs([_step("MSTORE", 100, 1, memory=["00" * 32, "00" * 32])])
        self.assertEqual(analysis.steps[0].mem_size_bytes, 64)

    def test_undecodable_call_target_warns(self) -> None:
        logs = [_step("CALL", 100, 1, stack=["0x0", "not-hex", "0x1"]), _step("STOP", 90, 2)]
        analysis = parse_struct_logs(logs)

        self.assertIsNone(analysis.steps[1].current_contract)
        self.assertEqual(len(analysis.warnings), 1)

    def test_malformed_entries_are_skipped(self) -> None:
        analysis = parse_struct_logs([_step("PUSH1", 10, 1), "junk", None, _step("STOP", 7, 1)])

        self.assertEqual(len(analysis.steps), 2)
        self.assertEqual(analysis.steps[1].step_index, 3)
        self.assertEqual(analysis.steps[1].gas_cost, 3)
        self.assertIn("skipped 2", analysis.warnings[-1])

    def test_empty_list_gives_zeroed_summary(self) -> None:
        analysis = parse_struct_logs([])
        self.assertEqual(analysis.summary.total_steps, 0)
        self.assertEqual(analysis.opcode_categories, [])

    def test_invalid_input_raises(self) -> None:
        with self.assertRaises(InvalidStructLogError):
            parse_struct_logs(None)
        with self.assertRaises(InvalidStructLogError):
            parse_struct_logs({"structLogs": []})


if __name__ == "__main__":
    unittest.main()
