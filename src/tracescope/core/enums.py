from __future__ import annotations

from enum import Enum


class FunctionCategory(str, Enum):
    TOKEN_MOVEMENT = "token_movement"
    SUPPLY_CHANGE = "supply_change"
    ALLOWANCE = "allowance"
    CONTROL = "control"
    ADMIN = "admin"
    VIEW = "view"
    SWAP = "swap"
    MULTICALL = "multicall"
    CONTRACT_CREATION = "contract_creation"
    OTHER = "other"


class OpcodeCategory(str, Enum):
    ARITHMETIC = "arithmetic"
    COMPARISON = "comparison"
    BITWISE = "bitwise"
    MEMORY = "memory"
    STORAGE = "storage"
    FLOW = "flow"
    STACK = "stack"
    ENVIRONMENT = "environment"
    CONTRACT = "contract"
    LOGGING = "logging"
    OTHER = "other"


class Severity(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class SupplyEventType(str, Enum):
    MINT = "mint"
    BURN = "burn"
    TRANSFER = "transfer"
    UNKNOWN = "unknown"


class SupplyTrend(str, Enum):
    INCREASING = "increasing"
    DECREASING = "decreasing"
    STABLE = "stable"
    VOLATILE = "volatile"


class NodeRole(str, Enum):
    HUB = "hub"
    AUTHORITY = "authority"


class Trend(str, Enum):
    UP = "up"
    DOWN = "down"
    STABLE = "stable"


class EvictionStrategy(str, Enum):
    LRU = "lru"
    LFU = "lfu"
    TTL = "ttl"
    SIZE = "size-aware"
