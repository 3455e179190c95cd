import unittest

import requests

from tracescope.adapters.rpc.json_rpc_adapter import JsonRpcTraceAdapter, block_param
from tracescope.adapters.rpc.rate_limiter import backoff_delay
from tracescope.core.errors import DataSourceError, RateLimitError
from tracescope.ports.trace_source_port import STRUCT_LOG


class _Response:
    def __init__(self, payload, status=200) -> None:
        self._payload = payload
        self.status_code = status

    def raise_for_status(self) -> None:
        if self.status_code >= 400:
            raise requests.HTTPError(f"{self.status_code} error")

    def json(self):
        return self._payload


class _FakeSession:
    """Replays queued responses; exceptions in the queue are raised."""

    def __init__(self, *responses) -> None:
        self.responses = list(responses)
        self.posts = []

    def post(self, url, json=None, timeout=None):
        self.posts.append((url, json))
        item = self.responses.pop(0)
        if isinstance(item, Exception):
            raise item
        return item


def _adapter(*responses):
    session = _FakeSession(*responses)
    adapter = JsonRpcTraceAdapter(
        rpc_urls={"mainnet": "http://node"},
        session=session,
        sleep=lambda attempt: None,
    )
    return adapter, session


class JsonRpcTraceAdapterTests(unittest.TestCase):
    def test_call_tracer_request(self) -> None:
        adapter, session = _adapter(_Response({"jsonrpc": "2.0", "id": 1, "result": {"type": "CALL"}}))

        self.assertEqual(adapter.trace_transaction("0xabc", "mainnet"), {"type": "CALL"})
        url, payload = session.posts[0]
        self.assertEqual(url, "http://node")
        self.assertEqual(payload["method"], "debug_traceTransaction")
        self.assertEqual(payload["params"][0], "0xabc")
        self.assertEqual(payload["params"][1]["tracer"], "callTracer")

    def test_struct_log_request_has_no_tracer(self) -> None:
        adapter, session = _adapter(_Response({"result": {"structLogs": []}}))
        adapter.trace_transaction("0xabc", "mainnet", STRUCT_LOG)

        options = session.posts[0][1]["params"][1]
        self.assertNotIn("tracer", options)
        self.assertTrue(options["disableStorage"])

    def test_block_request(self) -> None:
        adapter, session = _adapter(_Response({"result": []}))
        self.assertEqual(adapter.trace_block(255, "mainnet"), [])

        payload = session.posts[0][1]
        self.assertEqual(payload["method"], "debug_traceBlockByNumber")
        self.assertEqual(payload["params"][0], "0xff")

    def test_transport_errors_are_retried(self) -> None:
        adapter, session = _adapter(
            requests.ConnectionError("reset"),
            _Response({}, status=502),
            _Response({"result": {"ok": True}}),
        )
        self.assertEqual(adapter.trace_transaction("0xabc", "mainnet"), {"ok": True})
        self.assertEqual(len(session.posts), 3)

    def test_rate_limit_exhausts_retries(self) -> None:
        limited = {"error": {"code": -32005, "message": "limit exceeded"}}
        adapter, session = _adapter(*[_Response(limited) for _ in range(3)])

        with self.assertRaises(RateLimitError):
            adapter.trace_transaction("0xabc", "mainnet")
        self.assertEqual(len(session.posts), 3)

    def test_rpc_error_is_not_retried(self) -> None:
        adapter, session = _adapter(_Response({"error": {"code": -32000, "message": "transaction not found"}}))

        with self.assertRaises(DataSourceError) as ctx:
            adapter.trace_transaction("0xabc", "mainnet")
        self.assertIn("transaction not found", str(ctx.exception))
        self.assertEqual(len(session.posts), 1)

    def test_unknown_network_and_tracer(self) -> None:
        adapter, _ = _adapter()
        with self.assertRaises(DataSourceError):
            adapter.trace_transaction("0xabc", "nowhere")
        with self.assertRaises(ValueError):
            adapter.trace_transaction("0xabc", "mainnet", "prestateTracer")


class HelperTests(unittest.TestCase):
    def test_block_param(self) -> None:
        self.assertEqual(block_param(16), "0x10")
        self.assertEqual(block_param("16"), "0x10")
        self.assertEqual(block_param("Latest"), "latest")
        self.assertEqual(block_param("0x1F"), "0x1f")
        with self.assertRaises(DataSourceError):
            block_param("yesterday")

    def test_backoff_delay_is_capped(self) -> None:
        for attempt in range(10):
            delay = backoff_delay(attempt)
            self.assertLessEqual(delay, 8.0 * 1.3)
            self.assertGreaterEqual(delay, min(8.0, 0.5 * 2 ** attempt) * 0.7)


if __name__ == "__main__":
    unittest.main()
