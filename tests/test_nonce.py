from __future__ import annotations

from unittest import IsolatedAsyncioTestCase

from fakes import ACCOUNT, FakeChainClient

from usage_commit.nonce import NonceSequencer


class TestNonceSequencer(IsolatedAsyncioTestCase):
    async def test_next_does_not_consume(self):
        n = NonceSequencer(5)
        self.assertEqual(n.next(), 5)
        self.assertEqual(n.next(), 5)
        self.assertEqual(n.consumed, 0)

    async def test_advance(self):
        n = NonceSequencer(5)
        self.assertEqual(await n.advance(), 6)
        self.assertEqual(n.next(), 6)
        await n.advance()
        self.assertEqual(n.consumed, 2)
        self.assertEqual(n.start, 5)

    async def test_from_chain_reads_pending_count(self):
        client = FakeChainClient(nonce=42)
        n = await NonceSequencer.from_chain(client, ACCOUNT.address)
        self.assertEqual(n.next(), 42)

    async def test_resync_moves_forward(self):
        client = FakeChainClient(nonce=10)
        n = NonceSequencer(8)
        self.assertEqual(await n.resync(client, ACCOUNT.address), 10)
        self.assertEqual(n.next(), 10)

    async def test_resync_never_moves_backwards(self):
        client = FakeChainClient(nonce=3)
        n = NonceSequencer(8)
        self.assertEqual(await n.resync(client, ACCOUNT.address), 8)

    def test_negative_start_rejected(self):
        with self.assertRaises(ValueError):
            NonceSequencer(-1)
