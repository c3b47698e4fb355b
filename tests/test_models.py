from __future__ import annotations

from decimal import Decimal
from unittest import TestCase

import usage_commit.constants as C
from usage_commit.errors import RecordError
from usage_commit.models import Batch, BatchFailure, ChainRecord, RunReport, TransactionAttempt, UsageRecord


class TestUsageRecordFromRow(TestCase):
    def test_warehouse_columns(self):
        r = UsageRecord.from_row(
            {
                "userId": "u1",
                "JOB_ID": "j1",
                "totalDuration": 3600,
                "totalRewardsConsumer": "0.125",
                "totalRewardsContentOwner": 2,
                "CHUNK_ID": 4.0,
            }
        )
        self.assertEqual(r, UsageRecord("u1", "j1", 3600, Decimal("0.125"), Decimal("2")))

    def test_field_names(self):
        r = UsageRecord.from_row(
            {"user_id": "u", "job_id": "j", "duration_seconds": "10", "consumer_reward": 0.1, "owner_reward": "0"}
        )
        self.assertEqual(r.duration_seconds, 10)
        self.assertEqual(r.consumer_reward, Decimal("0.1"))

    def test_missing_field(self):
        with self.assertRaises(RecordError) as cm:
            UsageRecord.from_row({"userId": "u1", "jobId": "j1", "totalDuration": 1, "totalRewardsConsumer": 1})
        self.assertIn("owner_reward", str(cm.exception))

    def test_bad_values(self):
        row = {"userId": "u1", "jobId": "j1", "totalDuration": "abc", "totalRewardsConsumer": 1, "totalRewardsContentOwner": 1}
        with self.assertRaises(RecordError):
            UsageRecord.from_row(row)
        row.update(totalDuration=1, totalRewardsConsumer="1.2.3")
        with self.assertRaises(RecordError):
            UsageRecord.from_row(row)

    def test_fractional_duration_rejected(self):
        row = {"userId": "u1", "jobId": "j1", "totalRewardsConsumer": 1, "totalRewardsContentOwner": 1}
        for bad in (Decimal("60.7"), 60.7, "60.5", "Infinity", None):
            with self.assertRaises(RecordError):
                UsageRecord.from_row({**row, "totalDuration": bad})
        self.assertEqual(UsageRecord.from_row({**row, "totalDuration": Decimal("60.0")}).duration_seconds, 60)
        self.assertEqual(UsageRecord.from_row({**row, "totalDuration": 60.0}).duration_seconds, 60)


class TestChainRecord(TestCase):
    def test_artifact_keys(self):
        r = ChainRecord("u1", "j1", 5, 10**18, 2 * 10**18)
        self.assertEqual(
            r.as_dict(),
            {
                "userId": "u1",
                "jobId": "j1",
                "durationSeconds": 5,
                "consumerRewardFixed": 10**18,
                "ownerRewardFixed": 2 * 10**18,
            },
        )
        self.assertEqual(ChainRecord.from_dict(r.as_dict()), r)

    def test_from_dict_rejects_partial(self):
        with self.assertRaises(RecordError):
            ChainRecord.from_dict({"userId": "u1"})


class TestRunReport(TestCase):
    def test_empty_report_is_ok(self):
        report = RunReport()
        self.assertTrue(report.ok)
        self.assertEqual(report.as_dict()["failed_batches"], 0)

    def test_failures_counted(self):
        report = RunReport(total_batches=3, confirmed_batches=1)
        report.failures.append(BatchFailure(1, C.BatchState.SEND_FAILED, "boom", None, 50))
        report.failures.append(BatchFailure(2, C.BatchState.SKIPPED, "cancelled", None, 20))
        self.assertFalse(report.ok)
        self.assertEqual(report.failed_batches, 1)
        self.assertEqual(report.failed_records, 70)
        d = report.as_dict()
        self.assertEqual(d["failures"][0]["state"], "SEND_FAILED")
        self.assertEqual(d["failed_records"], 70)
        self.assertIsNone(d["failures"][1]["created_at"])


class TestTransactionAttempt(TestCase):
    def attempt(self) -> TransactionAttempt:
        batch = Batch(index=0, start=0, records=(ChainRecord("u1", "j1", 5, 1, 2),))
        return TransactionAttempt(batch=batch, nonce=3, gas_price=10)

    def test_finish_stamps_and_carries_into_failure(self):
        a = self.attempt()
        self.assertIsNone(a.finalized_at)
        a.finish(C.BatchState.REVERTED, "receipt status 0")
        self.assertGreaterEqual(a.finalized_at, a.created_at)

        f = BatchFailure.from_attempt(a)
        self.assertEqual((f.created_at, f.finalized_at), (a.created_at, a.finalized_at))
        report = RunReport(failures=[f])
        self.assertEqual(report.as_dict()["failures"][0]["finalized_at"], a.finalized_at)

    def test_finish_needs_a_final_state(self):
        a = self.attempt()
        for state in (C.BatchState.BUILT, C.BatchState.SIGNED, C.BatchState.SENT):
            with self.assertRaises(ValueError):
                a.finish(state)
        self.assertIsNone(a.finalized_at)
