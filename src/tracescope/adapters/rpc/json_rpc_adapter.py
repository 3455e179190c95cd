from typing import Any, Callable, Dict, List, Optional, Union
import itertools
import logging

import requests

from tracescope.config.settings import (
    RPC_URLS,
    RPC_REQUESTS_PER_SEC,
    RPC_TIMEOUT_SEC,
    RPC_MAX_RETRIES,
    TRACE_TIMEOUT,
)

from tracescope.adapters.rpc.rate_limiter import SimpleRateLimiter, backoff_sleep
from tracescope.core.errors import DataSourceError, RateLimitError
from tracescope.ports.trace_source_port import CALL_TRACER, STRUCT_LOG, TraceSourcePort

logger = logging.getLogger(__name__)

# JSON-RPC error codes nodes and providers use for throttling
RATE_LIMIT_CODES = {-32005, -32029, 429}

BLOCK_TAGS = {"latest", "earliest", "pending", "safe", "finalized"}


def block_param(block: Union[int, str]) -> str:
    """Block number or tag as the node expects it."""
    if isinstance(block, int):
        return hex(block)
    b = str(block).strip().lower()
    if b in BLOCK_TAGS or b.startswith("0x"):
        return b
    try:
        return hex(int(b))
    except ValueError as e:
        raise DataSourceError(f"Invalid block identifier: {block!r}") from e


class JsonRpcTraceAdapter(TraceSourcePort):

    def __init__(
        self,
        rpc_urls: Optional[Dict[str, str]] = None,
        session: Optional[requests.Session] = None,
        sleep: Callable[[int], None] = backoff_sleep,
    ) -> None:
        self._urls = dict(rpc_urls or RPC_URLS)
        self._timeout = RPC_TIMEOUT_SEC
        self._max_retries = RPC_MAX_RETRIES
        self._trace_timeout = TRACE_TIMEOUT

        self._rl = SimpleRateLimiter(RPC_REQUESTS_PER_SEC)
        self._session = session or requests.Session()
        self._sleep = sleep
        self._ids = itertools.count(1)

    # ---------- internal ----------

    def _url(self, network: str) -> str:
        try:
            return self._urls[network]
        except KeyError:
            raise DataSourceError(f"No RPC URL configured for network {network!r}") from None

    def _call(self, network: str, method: str, params: List[Any]) -> Any:
        url = self._url(network)
        last_err: Optional[Exception] = None

        for attempt in range(self._max_retries):
            payload = {"jsonrpc": "2.0", "id": next(self._ids), "method": method, "params": params}
            try:
                self._rl.wait()
                resp = self._session.post(url, json=payload, timeout=self._timeout)
                resp.raise_for_status()
                data = resp.json()
            except (requests.RequestException, ValueError) as e:
                logger.warning("%s attempt %d failed: %s", method, attempt + 1, e)
                last_err = e
                self._sleep(attempt)
                continue

            error = data.get("error") if isinstance(data, dict) else None
            if error:
                code = error.get("code") if isinstance(error, dict) else None
                message = str(error.get("message", error)) if isinstance(error, dict) else str(error)
                if code in RATE_LIMIT_CODES or "rate" in message.lower():
                    logger.warning("%s rate limited (attempt %d)", method, attempt + 1)
                    last_err = RateLimitError(message)
                    self._sleep(attempt)
                    continue
                raise DataSourceError(f"{method} failed: {message}")

            if not isinstance(data, dict):
                raise DataSourceError(f"{method}: unexpected response {data!r}")
            return data.get("result")

        if isinstance(last_err, RateLimitError):
            raise last_err
        raise DataSourceError(f"{method} failed after retries: {last_err}")

    # ---------- port methods ----------

    def trace_transaction(self, tx_hash: str, network: str, tracer: str = CALL_TRACER) -> Optional[Dict[str, Any]]:
        if tracer == CALL_TRACER:
            options: Dict[str, Any] = {"tracer": CALL_TRACER, "timeout": self._trace_timeout}
        elif tracer == STRUCT_LOG:
            options = {"disableStorage": True, "timeout": self._trace_timeout}
        else:
            raise ValueError(f"Unsupported tracer: {tracer}")
        logger.info("debug_traceTransaction %s (%s, %s)", tx_hash, tracer, network)
        return self._call(network, "debug_traceTransaction", [tx_hash, options])

    def trace_block(self, block: Union[int, str], network: str) -> Optional[List[Dict[str, Any]]]:
        logger.info("debug_traceBlockByNumber %s (%s)", block, network)
        return self._call(
            network,
            "debug_traceBlockByNumber",
            [block_param(block), {"tracer": CALL_TRACER, "timeout": self._trace_timeout}],
        )
