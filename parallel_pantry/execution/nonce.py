from __future__ import annotations

import asyncio


class LaneNonceManager:
    """Serializes nonce assignment and broadcast; lanes keep the nonce they were given.

    Signing and broadcasting happen under the lock so sibling lanes never read
    the same pending count. Waiting for receipts happens outside it.
    """

    def __init__(self, web3, address):
        self.w3 = web3
        self.address = address
        self._lock = asyncio.Lock()
        self._next_nonce = None
        self._by_lane: dict[int, int] = {}

    @property
    def lock(self) -> asyncio.Lock:
        return self._lock

    async def nonce_for_lane(self, lane: int, loop) -> int:
        """Caller must hold ``lock``."""
        if lane in self._by_lane:
            return self._by_lane[lane]
        chain_nonce = await loop.run_in_executor(
            None, lambda: self.w3.eth.get_transaction_count(self.address, "pending")
        )
        if self._next_nonce is None or self._next_nonce < chain_nonce:
            self._next_nonce = chain_nonce
        out = self._next_nonce
        self._next_nonce += 1
        self._by_lane[lane] = out
        return out

    async def release_lane(self, lane: int, loop, *, broadcast: bool) -> None:
        """Forget a lane; an unbroadcast nonce is handed back by resyncing from chain."""
        self._by_lane.pop(lane, None)
        if not broadcast:
            self._next_nonce = await loop.run_in_executor(
                None, lambda: self.w3.eth.get_transaction_count(self.address, "pending")
            )
