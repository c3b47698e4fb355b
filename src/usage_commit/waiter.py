import asyncio
import logging
from dataclasses import dataclass
from time import perf_counter
from typing import Any

import usage_commit.constants as C
from usage_commit.chain import ChainClient
from usage_commit.errors import ReceiptWaitError

log = logging.getLogger("usage_commit.waiter")


@dataclass
class WaitResult:
    status: C.ReceiptStatus
    receipt: Any | None = None
    attempts: int = 0
    elapsed: float = 0.0

    @property
    def block_number(self) -> int | None:
        if self.receipt is None:
            return None
        return _field(self.receipt, "blockNumber")


def _field(receipt: Any, name: str) -> Any:
    try:
        return receipt[name]
    except (KeyError, TypeError):
        return getattr(receipt, name, None)


class ConfirmationWaiter:
    """Poll for a transaction receipt until it resolves, a bound is hit, or the run is cancelled.

    With ``max_wait`` and ``max_attempts`` both None the loop only ends on a
    receipt, a transport error or cancellation.
    """

    def __init__(
        self,
        client: ChainClient,
        *,
        poll_interval: float = C.RECEIPT_POLL_INTERVAL,
        max_wait: float | None = None,
        max_attempts: int | None = None,
        cancel: asyncio.Event | None = None,
    ):
        self.client = client
        self.poll_interval = poll_interval
        self.max_wait = max_wait
        self.max_attempts = max_attempts
        self.cancel = cancel or asyncio.Event()

    async def wait(self, tx_hash: str) -> WaitResult:
        start = perf_counter()
        attempts = 0
        while True:
            if self.cancel.is_set():
                return WaitResult(C.ReceiptStatus.CANCELLED, attempts=attempts, elapsed=perf_counter() - start)

            attempts += 1
            try:
                receipt = await self.client.get_receipt(tx_hash)
            except Exception as e:
                raise ReceiptWaitError(tx_hash, e) from e

            elapsed = perf_counter() - start
            if receipt is not None:
                ok = _field(receipt, "status") == 1
                status = C.ReceiptStatus.SUCCESS if ok else C.ReceiptStatus.FAILURE
                log.debug("Receipt for %s after %s polls: %s", tx_hash, attempts, status)
                return WaitResult(status, receipt=receipt, attempts=attempts, elapsed=elapsed)

            if self.max_attempts is not None and attempts >= self.max_attempts:
                log.warning("Receipt wait gave up on %s after %s polls", tx_hash, attempts)
                return WaitResult(C.ReceiptStatus.TIMEOUT, attempts=attempts, elapsed=elapsed)

            delay = self.poll_interval
            if self.max_wait is not None:
                remaining = self.max_wait - elapsed
                if remaining <= 0:
                    log.warning("Receipt wait timeout tx=%s after %.1fs", tx_hash, elapsed)
                    return WaitResult(C.ReceiptStatus.TIMEOUT, attempts=attempts, elapsed=elapsed)
                delay = min(delay, remaining)

            log.debug("No receipt yet for %s (poll %s), sleeping %.1fs", tx_hash, attempts, delay)
            try:
                await asyncio.wait_for(self.cancel.wait(), timeout=delay)
            except TimeoutError:
                continue
