from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional, Union

CALL_TRACER = "callTracer"
STRUCT_LOG = "structLog"


class TraceSourcePort(ABC):
    """
    Abstract Class for whoever supplies raw debug-trace JSON.
    """

    # --- Single transaction ---

    @abstractmethod
    def trace_transaction(self, tx_hash: str, network: str, tracer: str = CALL_TRACER) -> Optional[Dict[str, Any]]:
        """
        callTracer: the root call frame.
        structLog: the structLogger result, a dict carrying "structLogs".
        None when the source has nothing for tx_hash.
        """
        raise NotImplementedError

    # --- Whole block (callTracer per transaction) ---

    @abstractmethod
    def trace_block(self, block: Union[int, str], network: str) -> Optional[List[Dict[str, Any]]]:
        raise NotImplementedError
