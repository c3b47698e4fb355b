import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Iterable, Iterator, Sequence

from eth_account.signers.local import LocalAccount

import usage_commit.constants as C
from usage_commit.chain import ChainClient, Web3ChainClient, load_account, probe_node
from usage_commit.config import Settings
from usage_commit.errors import ChainConnectionError, ReceiptWaitError, RunSetupError
from usage_commit.models import Batch, BatchFailure, ChainRecord, RunReport, TransactionAttempt, UsageRecord
from usage_commit.nonce import NonceSequencer
from usage_commit.sink import FailureSink
from usage_commit.transform import to_chain_records
from usage_commit.waiter import ConfirmationWaiter

log = logging.getLogger("usage_commit.engine")

_WAIT_TO_STATE = {
    C.ReceiptStatus.SUCCESS: C.BatchState.CONFIRMED,
    C.ReceiptStatus.FAILURE: C.BatchState.REVERTED,
    C.ReceiptStatus.TIMEOUT: C.BatchState.TIMED_OUT,
    C.ReceiptStatus.CANCELLED: C.BatchState.CANCELLED,
}


def iter_batches(records: Sequence[ChainRecord], size: int) -> Iterator[Batch]:
    if size <= 0:
        raise ValueError(f"batch size must be positive, got {size}")
    for index, start in enumerate(range(0, len(records), size)):
        yield Batch(index=index, start=start, records=tuple(records[start : start + size]))


@dataclass(frozen=True)
class RunContext:
    """Chain state read once per run and shared by every batch."""

    chain_id: int
    gas_price: int
    nonces: NonceSequencer


class BatchSubmissionEngine:
    def __init__(
        self,
        settings: Settings,
        client: ChainClient,
        account: LocalAccount,
        *,
        sink: FailureSink | None = None,
        waiter: ConfirmationWaiter | None = None,
        cancel: asyncio.Event | None = None,
    ):
        self.settings = settings
        self.client = client
        self.account = account
        self.cancel = cancel or asyncio.Event()
        self.sink = sink or FailureSink(settings.failure_file)
        self.waiter = waiter or ConfirmationWaiter(
            client,
            poll_interval=settings.receipt_poll_interval,
            max_wait=settings.receipt_max_wait,
            max_attempts=settings.receipt_max_attempts,
            cancel=self.cancel,
        )
        self.attempts: list[TransactionAttempt] = []

    async def prepare(self) -> RunContext:
        address = self.account.address
        try:
            nonces = await NonceSequencer.from_chain(self.client, address)
            gas_price = int(await self.client.get_gas_price())
            chain_id = int(await self.client.get_chain_id())
        except Exception as e:
            raise RunSetupError(f"cannot read run state for {address}: {e.__class__.__name__}: {e}") from e
        log.info("Run setup: account=%s chain_id=%s gas_price=%s nonce=%s", address, chain_id, gas_price, nonces.next())
        return RunContext(chain_id=chain_id, gas_price=gas_price, nonces=nonces)

    async def run(self, records: Iterable[UsageRecord]) -> RunReport:
        """Commit ``records`` batch by batch and report what landed.

        Raises only for run setup problems, before any batch is sent. Batch
        level failures end up in the report and the failure artifact.
        """
        chain_records = to_chain_records(records)
        return await self.run_chain_records(chain_records)

    async def run_chain_records(self, chain_records: Sequence[ChainRecord]) -> RunReport:
        self.attempts = []
        report = RunReport(total_records=len(chain_records))
        if not chain_records:
            log.info("No records to commit")
            report.finished_at = time.time()
            return report

        ctx = await self.prepare()
        report.start_nonce = ctx.nonces.next()
        failed: list[ChainRecord] = []
        batches = list(iter_batches(chain_records, self.settings.batch_size))
        report.total_batches = len(batches)

        for batch in batches:
            if self.cancel.is_set():
                report.cancelled = True
                report.skipped_batches += 1
                report.failures.append(
                    BatchFailure(batch.index, C.BatchState.SKIPPED, "run cancelled before submission", None, len(batch))
                )
                failed.extend(batch.records)
                continue

            attempt = await self._submit(batch, ctx)
            self.attempts.append(attempt)
            if attempt.state == C.BatchState.CONFIRMED:
                report.confirmed_batches += 1
                log.info("Batch %s to %s processed successfully", batch.first, batch.last)
                continue

            if attempt.state == C.BatchState.CANCELLED:
                report.cancelled = True
            report.failures.append(BatchFailure.from_attempt(attempt))
            failed.extend(batch.records)

        report.end_nonce = ctx.nonces.next()
        report.failure_file = self.sink.write(failed)
        report.finished_at = time.time()
        log.info(
            "Run finished: %s/%s batches confirmed, %s failed, %s skipped, nonce %s -> %s",
            report.confirmed_batches,
            report.total_batches,
            report.failed_batches,
            report.skipped_batches,
            report.start_nonce,
            report.end_nonce,
        )
        return report

    def _build(self, batch: Batch, ctx: RunContext, nonce: int) -> dict:
        return {
            "to": self.client.contract_address,
            "data": self.client.encode_call(batch.records),
            "value": 0,
            "nonce": nonce,
            "gas": self.settings.gas_limit,
            "gasPrice": ctx.gas_price,
            "chainId": ctx.chain_id,
        }

    async def _submit(self, batch: Batch, ctx: RunContext) -> TransactionAttempt:
        attempt = TransactionAttempt(batch=batch, nonce=ctx.nonces.next(), gas_price=ctx.gas_price)
        log.debug("%s built", attempt)

        try:
            tx = self._build(batch, ctx, attempt.nonce)
            signed = self.account.sign_transaction(tx)
            attempt.state = C.BatchState.SIGNED
        except Exception as e:
            attempt.finish(C.BatchState.SEND_FAILED, f"cannot build transaction: {e.__class__.__name__}: {e}")
            log.error("%s: %s", batch, attempt.reason)
            return attempt

        try:
            tx_hash = await self.client.send_raw_transaction(signed.raw_transaction)
        except Exception as e:
            attempt.finish(C.BatchState.SEND_FAILED, f"{e.__class__.__name__}: {e}")
            log.error("Error sending transaction for %s: %s", batch, attempt.reason)
            return attempt

        if not tx_hash:
            attempt.finish(C.BatchState.SEND_FAILED, "returned transaction hash is empty")
            log.error("Returned transaction is empty for %s", batch)
            return attempt

        attempt.tx_hash = tx_hash
        attempt.state = C.BatchState.SENT
        log.info("Sent %s nonce=%s tx=%s", batch, attempt.nonce, tx_hash)

        try:
            result = await self.waiter.wait(tx_hash)
        except ReceiptWaitError as e:
            attempt.finish(C.BatchState.WAIT_FAILED, str(e))
            log.error("Error waiting for transaction confirmation. Hash: %s, Error: %s", tx_hash, e.cause)
        else:
            attempt.block_number = result.block_number
            state = _WAIT_TO_STATE[result.status]
            if state == C.BatchState.CONFIRMED:
                attempt.finish(state)
                log.info("Transaction successfully confirmed! Hash: %s block=%s", tx_hash, attempt.block_number)
            elif state == C.BatchState.REVERTED:
                attempt.finish(state, "receipt status 0")
                log.warning("Transaction reverted. Hash: %s block=%s", tx_hash, attempt.block_number)
            else:
                attempt.finish(state, f"no receipt after {result.attempts} polls / {result.elapsed:.1f}s")
                log.warning("Transaction %s unresolved (%s): %s", tx_hash, state, attempt.reason)

        await self._settle_nonce(attempt, ctx)
        return attempt

    async def _settle_nonce(self, attempt: TransactionAttempt, ctx: RunContext) -> None:
        # A receipt, good or bad, proves the slot was spent on-chain
        if attempt.state in (C.BatchState.CONFIRMED, C.BatchState.REVERTED):
            await ctx.nonces.advance()
            return
        if attempt.state in C.UNRESOLVED_STATES and self.settings.resync_nonce_on_wait_failure:
            try:
                await ctx.nonces.resync(self.client, self.account.address)
            except Exception as e:
                log.warning("Could not resync nonce after %s: %s - keeping %s", attempt.state, e, ctx.nonces.next())


async def connect_engine(settings: Settings, *, cancel: asyncio.Event | None = None, probe: bool = True) -> BatchSubmissionEngine:
    """Parse the key, reach the node and wire up an engine. Every failure here is fatal."""
    account = load_account(settings.private_key.get_secret_value())
    if probe:
        try:
            async with asyncio.timeout(settings.startup_timeout):
                await probe_node(settings.rpc_url, timeout=settings.rpc_timeout)
        except TimeoutError:
            raise ChainConnectionError(f"node at {settings.rpc_url} not ready after {settings.startup_timeout}s") from None
    client = Web3ChainClient(settings.rpc_url, settings.contract_address, timeout=settings.rpc_timeout)
    await client.ensure_connected()
    log.info("Connected to %s as %s, contract %s", settings.rpc_url, account.address, client.contract_address)
    return BatchSubmissionEngine(settings, client, account, cancel=cancel)
