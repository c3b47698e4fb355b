"""Fixed-point conversion of usage records."""

from __future__ import annotations

from decimal import Decimal
from unittest import TestCase

from usage_commit.errors import RecordError
from usage_commit.models import UsageRecord
from usage_commit.transform import to_chain_record, to_chain_records, to_fixed


def record(consumer="1", owner="2", duration=30, user="u1") -> UsageRecord:
    return UsageRecord(user, "j1", duration, Decimal(consumer), Decimal(owner))


class TestToFixed(TestCase):
    def test_scales_by_10_pow_18(self):
        self.assertEqual(to_fixed(Decimal("1.5")), 1_500_000_000_000_000_000)
        self.assertEqual(to_fixed("1.5"), 1_500_000_000_000_000_000)
        self.assertEqual(to_fixed(1.5), 1_500_000_000_000_000_000)

    def test_zero(self):
        self.assertEqual(to_fixed(0), 0)
        self.assertEqual(to_fixed(Decimal("0.000")), 0)

    def test_truncates_below_one_unit(self):
        self.assertEqual(to_fixed("0.00000000000000000019"), 0)
        self.assertEqual(to_fixed("0.0000000000000000019"), 1)

    def test_truncates_instead_of_rounding(self):
        self.assertEqual(to_fixed("0.9999999999999999999"), 999_999_999_999_999_999)
        self.assertEqual(to_fixed("2.0000000000000000009"), 2_000_000_000_000_000_000)

    def test_float_values_do_not_drift(self):
        self.assertEqual(to_fixed(0.1), 100_000_000_000_000_000)
        self.assertEqual(to_fixed(123456.789), 123_456_789_000_000_000_000_000)

    def test_large_values_are_exact(self):
        value = "98765432109876543210.123456789012345678"
        self.assertEqual(to_fixed(value), 98765432109876543210_123456789012345678)

    def test_non_finite_rejected(self):
        with self.assertRaises(RecordError):
            to_fixed("NaN")
        with self.assertRaises(RecordError):
            to_fixed("Infinity")
        with self.assertRaises(RecordError):
            to_fixed("not a number")


class TestChainRecords(TestCase):
    def test_one_to_one_in_order(self):
        records = [record(user=f"u{i}", consumer=str(i)) for i in range(5)]
        out = to_chain_records(records)
        self.assertEqual([r.user_id for r in out], ["u0", "u1", "u2", "u3", "u4"])
        self.assertEqual(out[3].consumer_reward_fixed, 3 * 10**18)
        self.assertEqual(out[3].owner_reward_fixed, 2 * 10**18)
        self.assertEqual(out[3].duration_seconds, 30)

    def test_empty_input_is_not_an_error(self):
        self.assertEqual(to_chain_records([]), [])
        self.assertEqual(to_chain_records(iter(())), [])

    def test_negative_values_rejected(self):
        with self.assertRaises(RecordError):
            to_chain_record(record(consumer="-1"))
        with self.assertRaises(RecordError):
            to_chain_record(record(duration=-5))

    def test_negative_below_one_unit_rejected(self):
        # would truncate to 0 if the sign were checked after scaling
        with self.assertRaises(RecordError):
            to_chain_record(record(consumer="-0.0000000000000000001"))
        with self.assertRaises(RecordError):
            to_chain_record(record(owner="-0.0000000000000000001"))
        self.assertEqual(to_chain_record(record(consumer="-0")).consumer_reward_fixed, 0)

    def test_uint256_overflow_rejected(self):
        with self.assertRaises(RecordError):
            to_chain_record(record(owner="1e60"))
