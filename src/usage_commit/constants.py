from typing import Final
from enum import StrEnum

# Rewards are committed as 18-decimal fixed point integers
FIXED_POINT_DECIMALS: Final = 18
FIXED_POINT_SCALE: Final = 10**FIXED_POINT_DECIMALS
UINT256_MAX: Final = 2**256 - 1

DEFAULT_BATCH_SIZE = 50
DEFAULT_GAS_LIMIT = 30_000_000
RECEIPT_POLL_INTERVAL = 2.0
RECEIPT_MAX_WAIT = 600.0
RPC_TIMEOUT = 10.0
STARTUP_TIMEOUT = 60.0
FAILED_BATCHES_FILE = "failed_batches.json"
PRIVATE_KEY_SECRET = "DEPLOYER_PRIVATE_KEY"

CONTRACT_METHOD: Final = "insertUserHistory"

CONTRACT_ABI: Final = [
    {
        "type": "function",
        "name": CONTRACT_METHOD,
        "stateMutability": "nonpayable",
        "inputs": [
            {"name": "userIds", "type": "string[]"},
            {"name": "totalDurations", "type": "uint256[]"},
            {"name": "totalRewardsConsumers", "type": "uint256[]"},
            {"name": "totalRewardsContentOwners", "type": "uint256[]"},
        ],
        "outputs": [],
    },
]


class BatchState(StrEnum):
    BUILT       = "BUILT"
    SIGNED      = "SIGNED"
    SENT        = "SENT"
    CONFIRMED   = "CONFIRMED"
    REVERTED    = "REVERTED"
    SEND_FAILED = "SEND_FAILED"
    WAIT_FAILED = "WAIT_FAILED"
    TIMED_OUT   = "TIMED_OUT"
    CANCELLED   = "CANCELLED"
    SKIPPED     = "SKIPPED"


class ReceiptStatus(StrEnum):
    SUCCESS   = "SUCCESS"
    FAILURE   = "FAILURE"
    TIMEOUT   = "TIMEOUT"
    CANCELLED = "CANCELLED"


TERMINAL_STATES = {
    BatchState.CONFIRMED,
    BatchState.REVERTED,
    BatchState.SEND_FAILED,
    BatchState.WAIT_FAILED,
    BatchState.TIMED_OUT,
    BatchState.CANCELLED,
    BatchState.SKIPPED,
}

# Outcomes where the transaction may or may not have been mined
UNRESOLVED_STATES = {BatchState.WAIT_FAILED, BatchState.TIMED_OUT, BatchState.CANCELLED}

__all__ = [
    "CONTRACT_ABI",
    "CONTRACT_METHOD",
    "DEFAULT_BATCH_SIZE",
    "DEFAULT_GAS_LIMIT",
    "FAILED_BATCHES_FILE",
    "FIXED_POINT_DECIMALS",
    "FIXED_POINT_SCALE",
    "PRIVATE_KEY_SECRET",
    "RECEIPT_MAX_WAIT",
    "RECEIPT_POLL_INTERVAL",
    "RPC_TIMEOUT",
    "STARTUP_TIMEOUT",
    "UINT256_MAX",

    ######
    "BatchState",
    "ReceiptStatus",
    "TERMINAL_STATES",
    "UNRESOLVED_STATES",
]
