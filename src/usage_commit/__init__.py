from usage_commit.engine import BatchSubmissionEngine, iter_batches
from usage_commit.models import ChainRecord, RunReport, UsageRecord
from usage_commit.transform import to_chain_records, to_fixed

__all__ = [
    "BatchSubmissionEngine",
    "ChainRecord",
    "RunReport",
    "UsageRecord",
    "iter_batches",
    "to_chain_records",
    "to_fixed",
]
