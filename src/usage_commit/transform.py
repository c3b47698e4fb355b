"""Conversion of usage records into contract-native values."""

import logging
from decimal import ROUND_DOWN, Decimal, localcontext
from typing import Iterable

import usage_commit.constants as C
from usage_commit.errors import RecordError
from usage_commit.models import ChainRecord, UsageRecord, parse_decimal

log = logging.getLogger("usage_commit.transform")

# 78 digits covers 2**256 with room for the fractional part
_PRECISION = 100


def to_fixed(value: Decimal | int | str | float) -> int:
    """Scale a decimal value by 10**18 and truncate toward zero.

    Floats go through their shortest repr, so ``to_fixed(1.5)`` is exactly
    1_500_000_000_000_000_000.
    """
    d = parse_decimal(value)
    if not d.is_finite():
        raise RecordError(f"cannot convert non-finite value {value!r}")
    with localcontext() as ctx:
        ctx.prec = _PRECISION
        scaled = (d * C.FIXED_POINT_SCALE).to_integral_value(rounding=ROUND_DOWN)
    return int(scaled)


def _check_uint256(name: str, value: int, record: UsageRecord) -> int:
    if value < 0 or value > C.UINT256_MAX:
        raise RecordError(f"{name}={value} out of uint256 range for user={record.user_id} job={record.job_id}")
    return value


def _fixed_reward(name: str, value: Decimal, record: UsageRecord) -> int:
    # sign check on the source value; sub-unit negatives would truncate to 0
    d = parse_decimal(value)
    if d.is_finite() and d < 0:
        raise RecordError(f"{name}={d} is negative for user={record.user_id} job={record.job_id}")
    return _check_uint256(name, to_fixed(d), record)


def to_chain_record(record: UsageRecord) -> ChainRecord:
    return ChainRecord(
        user_id=record.user_id,
        job_id=record.job_id,
        duration_seconds=_check_uint256("duration_seconds", record.duration_seconds, record),
        consumer_reward_fixed=_fixed_reward("consumer_reward", record.consumer_reward, record),
        owner_reward_fixed=_fixed_reward("owner_reward", record.owner_reward, record),
    )


def to_chain_records(records: Iterable[UsageRecord]) -> list[ChainRecord]:
    chain_records = [to_chain_record(r) for r in records]
    log.info("Total records prepared for insertion to blockchain: %s", len(chain_records))
    return chain_records
