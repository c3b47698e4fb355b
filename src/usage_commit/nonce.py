import asyncio
import logging

from usage_commit.chain import ChainClient

log = logging.getLogger("usage_commit.nonce")


class NonceSequencer:
    """Next usable transaction nonce for the signing account.

    ``next()`` only reads. The slot is consumed when the caller says so with
    ``advance()``, i.e. once a transaction is known to have reached the
    network. A transaction that never left the process keeps its slot.
    """

    def __init__(self, start: int):
        if start < 0:
            raise ValueError(f"nonce cannot be negative: {start}")
        self.start = start
        self._current = start
        self._lock = asyncio.Lock()

    @classmethod
    async def from_chain(cls, client: ChainClient, address: str) -> "NonceSequencer":
        pending = await client.get_nonce(address)
        log.debug("Initial pending nonce for %s is %s", address, pending)
        return cls(int(pending))

    def next(self) -> int:
        return self._current

    @property
    def consumed(self) -> int:
        return self._current - self.start

    async def advance(self) -> int:
        async with self._lock:
            self._current += 1
            log.debug("Nonce advanced to %s", self._current)
            return self._current

    async def resync(self, client: ChainClient, address: str) -> int:
        """Adopt the chain's pending count if it is ahead of ours.

        Never moves backwards: a lower count from a lagging node would reuse
        slots we already spent.
        """
        async with self._lock:
            pending = int(await client.get_nonce(address))
            if pending > self._current:
                log.info("Nonce resynced from chain %s -> %s", self._current, pending)
                self._current = pending
            elif pending < self._current:
                log.warning("Chain reports pending nonce %s behind local %s - keeping local", pending, self._current)
            return self._current
