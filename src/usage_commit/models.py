"""Record, batch and run data structures."""

import time
from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Any, Mapping

import usage_commit.constants as C
from usage_commit.errors import RecordError

# Row keys accepted for each field; warehouse column names first
_ROW_KEYS = {
    "user_id": ("userId", "user_id"),
    "job_id": ("jobId", "JOB_ID", "job_id"),
    "duration_seconds": ("totalDuration", "durationSeconds", "duration_seconds"),
    "consumer_reward": ("totalRewardsConsumer", "consumerReward", "consumer_reward"),
    "owner_reward": ("totalRewardsContentOwner", "ownerReward", "owner_reward"),
}


def _pick(row: Mapping[str, Any], name: str) -> Any:
    for key in _ROW_KEYS[name]:
        if key in row:
            return row[key]
    raise RecordError(f"row is missing {name!r} (tried {', '.join(_ROW_KEYS[name])})")


def parse_decimal(value: Any) -> Decimal:
    """Parse a reward value into a Decimal without going through binary floats."""
    if isinstance(value, Decimal):
        return value
    if isinstance(value, bool):
        raise RecordError(f"not a decimal value: {value!r}")
    try:
        return Decimal(str(value).strip())
    except InvalidOperation as e:
        raise RecordError(f"not a decimal value: {value!r}") from e


@dataclass(frozen=True, slots=True)
class UsageRecord:
    user_id: str
    job_id: str
    duration_seconds: int
    consumer_reward: Decimal
    owner_reward: Decimal

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "UsageRecord":
        """Build a record from a source row.

        Accepts the warehouse column names (userId, jobId, totalDuration,
        totalRewardsConsumer, totalRewardsContentOwner) as well as the field
        names of this class.
        """
        raw_duration = _pick(row, "duration_seconds")
        try:
            duration = parse_decimal(raw_duration)
        except RecordError:
            raise RecordError(f"duration is not an integer: {raw_duration!r}") from None
        # 60.0 is accepted, 60.7 is not
        if not duration.is_finite() or duration != duration.to_integral_value():
            raise RecordError(f"duration is not an integer: {raw_duration!r}")
        return cls(
            user_id=str(_pick(row, "user_id")),
            job_id=str(_pick(row, "job_id")),
            duration_seconds=int(duration),
            consumer_reward=parse_decimal(_pick(row, "consumer_reward")),
            owner_reward=parse_decimal(_pick(row, "owner_reward")),
        )


@dataclass(frozen=True, slots=True)
class ChainRecord:
    user_id: str
    job_id: str
    duration_seconds: int
    consumer_reward_fixed: int
    owner_reward_fixed: int

    def as_dict(self) -> dict[str, Any]:
        return {
            "userId": self.user_id,
            "jobId": self.job_id,
            "durationSeconds": self.duration_seconds,
            "consumerRewardFixed": self.consumer_reward_fixed,
            "ownerRewardFixed": self.owner_reward_fixed,
        }

    @classmethod
    def from_dict(cls, d: Mapping[str, Any]) -> "ChainRecord":
        try:
            return cls(
                user_id=str(d["userId"]),
                job_id=str(d["jobId"]),
                duration_seconds=int(d["durationSeconds"]),
                consumer_reward_fixed=int(d["consumerRewardFixed"]),
                owner_reward_fixed=int(d["ownerRewardFixed"]),
            )
        except (KeyError, TypeError, ValueError) as e:
            raise RecordError(f"malformed failure record: {d!r}") from e


@dataclass(frozen=True, slots=True)
class Batch:
    index: int
    start: int  # offset of the first record in the full record list
    records: tuple[ChainRecord, ...]

    def __len__(self) -> int:
        return len(self.records)

    @property
    def first(self) -> int:
        return self.start + 1

    @property
    def last(self) -> int:
        return self.start + len(self.records)

    def __str__(self):
        return f"batch {self.index} (records {self.first} to {self.last})"


@dataclass(slots=True)
class TransactionAttempt:
    batch: Batch
    nonce: int
    gas_price: int
    state: C.BatchState = C.BatchState.BUILT
    tx_hash: str | None = None
    reason: str | None = None
    block_number: int | None = None
    created_at: float = field(default_factory=time.time)
    finalized_at: float | None = None

    def finish(self, state: C.BatchState, reason: str | None = None) -> None:
        if state not in C.TERMINAL_STATES:
            raise ValueError(f"{state} is not a final batch state")
        self.state = state
        self.reason = reason
        self.finalized_at = time.time()

    def __str__(self):
        return f"{self.batch} -- nonce={self.nonce} -- {self.state}"


@dataclass(frozen=True, slots=True)
class BatchFailure:
    index: int
    state: C.BatchState
    reason: str | None
    tx_hash: str | None
    records: int
    created_at: float | None = None  # None for batches never attempted
    finalized_at: float | None = None

    @classmethod
    def from_attempt(cls, a: TransactionAttempt) -> "BatchFailure":
        return cls(
            index=a.batch.index,
            state=a.state,
            reason=a.reason,
            tx_hash=a.tx_hash,
            records=len(a.batch),
            created_at=a.created_at,
            finalized_at=a.finalized_at,
        )


@dataclass
class RunReport:
    """Outcome of one engine run.

    A run with failed batches is still a completed run. Callers decide what a
    partial failure means for them via ``ok`` and ``failures``.
    """

    total_records: int = 0
    total_batches: int = 0
    confirmed_batches: int = 0
    skipped_batches: int = 0
    failures: list[BatchFailure] = field(default_factory=list)
    start_nonce: int | None = None
    end_nonce: int | None = None
    failure_file: Path | None = None
    cancelled: bool = False
    started_at: float = field(default_factory=time.time)
    finished_at: float | None = None

    @property
    def failed_batches(self) -> int:
        return sum(1 for f in self.failures if f.state != C.BatchState.SKIPPED)

    @property
    def failed_records(self) -> int:
        return sum(f.records for f in self.failures)

    @property
    def ok(self) -> bool:
        return not self.failures and not self.cancelled

    def as_dict(self) -> dict[str, Any]:
        return {
            "total_records": self.total_records,
            "total_batches": self.total_batches,
            "confirmed_batches": self.confirmed_batches,
            "failed_batches": self.failed_batches,
            "skipped_batches": self.skipped_batches,
            "failed_records": self.failed_records,
            "failures": [
                {
                    "index": f.index,
                    "state": str(f.state),
                    "reason": f.reason,
                    "tx_hash": f.tx_hash,
                    "records": f.records,
                    "created_at": f.created_at,
                    "finalized_at": f.finalized_at,
                }
                for f in self.failures
            ],
            "start_nonce": self.start_nonce,
            "end_nonce": self.end_nonce,
            "failure_file": str(self.failure_file) if self.failure_file else None,
            "cancelled": self.cancelled,
            "ok": self.ok,
            "started_at": self.started_at,
            "finished_at": self.finished_at,
        }
