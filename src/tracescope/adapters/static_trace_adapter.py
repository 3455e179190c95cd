from tracescope.ports.trace_source_port import CALL_TRACER, STRUCT_LOG, TraceSourcePort
from typing import Any, Dict, List, Optional, Union


class StaticTraceAdapter(TraceSourcePort):
    """In-memory traces keyed by tx hash / block id; the network is ignored."""

    def __init__(self,
                 call_traces: Optional[Dict[str, Dict[str, Any]]] = None,
                 struct_logs: Optional[Dict[str, Any]] = None,
                 blocks: Optional[Dict[str, List[Dict[str, Any]]]] = None,
                 ):
        self._calls = {k.lower(): v for k, v in (call_traces or {}).items()}
        self._structs = {k.lower(): self._wrap(v) for k, v in (struct_logs or {}).items()}
        self._blocks = {str(k).lower(): v for k, v in (blocks or {}).items()}
        self.requests: List[tuple] = []

    @staticmethod
    def _wrap(value):
        # accept a bare structLogs list as well as the full structLogger result
        return {"structLogs": value} if isinstance(value, list) else value

    def trace_transaction(self, tx_hash, network, tracer=CALL_TRACER):
        self.requests.append(("tx", tx_hash, network, tracer))
        if tracer == STRUCT_LOG:
            return self._structs.get(tx_hash.lower())
        return self._calls.get(tx_hash.lower())

    def trace_block(self, block: Union[int, str], network):
        self.requests.append(("block", block, network))
        return self._blocks.get(str(block).lower())
