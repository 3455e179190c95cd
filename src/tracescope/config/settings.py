from decimal import Decimal
import os
from dotenv import load_dotenv
load_dotenv()
# ---- JSON-RPC (debug_* namespace) ----
RPC_URLS = {
    "mainnet": os.environ.get("TRACESCOPE_MAINNET_RPC_URL", "http://localhost:8545"),
    "sepolia": os.environ.get("TRACESCOPE_SEPOLIA_RPC_URL", "http://localhost:8546"),
}
DEFAULT_NETWORK = os.environ.get("TRACESCOPE_NETWORK", "mainnet")

RPC_REQUESTS_PER_SEC = float(os.environ.get("TRACESCOPE_RPC_REQUESTS_PER_SEC", "5.0"))
RPC_TIMEOUT_SEC = 120           # debug traces of large blocks are slow
RPC_MAX_RETRIES = 3
TRACE_TIMEOUT = "120s"          # tracer-side timeout passed to the node

# ---- Pricing ----

# Gas price (gwei) used when the caller does not supply one
DEFAULT_GAS_PRICE_GWEI = Decimal(os.environ.get("TRACESCOPE_GAS_PRICE_GWEI", "20"))
WEI_PER_GWEI = 10**9
WEI_PER_ETH = Decimal("1000000000000000000")

# Raw token units per PYUSD
TOKEN_DECIMALS = 6

# ----- Trace cache -----
CACHE_MAX_ENTRIES = int(os.environ.get("TRACESCOPE_CACHE_MAX_ENTRIES", "50"))
CACHE_MAX_BYTES = int(os.environ.get("TRACESCOPE_CACHE_MAX_BYTES", str(100 * 1024 * 1024)))
CACHE_DEFAULT_TTL_SEC = float(os.environ.get("TRACESCOPE_CACHE_TTL_SEC", str(30 * 60)))
CACHE_CLEANUP_INTERVAL_SEC = 60.0
CACHE_EVICTION_STRATEGY = os.environ.get("TRACESCOPE_CACHE_STRATEGY", "lru")

# ----- Analysis thresholds -----
SUPPLY_ANOMALY_THRESHOLD = Decimal(os.environ.get("TRACESCOPE_SUPPLY_ANOMALY_SIGMA", "2.0"))
SUPPLY_MAX_WINDOW = 10
NETWORK_MAX_NODES = int(os.environ.get("TRACESCOPE_NETWORK_MAX_NODES", "50"))
TOP_OPCODES_LIMIT = 30
ADMIN_BURST_THRESHOLD = 5
FAILURE_RATE_THRESHOLD = 0.1
HIGH_AVERAGE_GAS = 100_000
MAX_INTERNAL_CALL_DEPTH = 3

# ----- Logging -----
LOG_LEVEL = os.environ.get("TRACESCOPE_LOG_LEVEL", "INFO")
