import asyncio
from contextlib import asynccontextmanager
from typing import Dict, List


class AuctionLocks:
    """One asyncio.Lock per auction id.

    Bids and closes on the same auction run one at a time, in arrival order;
    different auctions never wait on each other. An entry lives only while a
    task holds or waits for it.
    """

    def __init__(self):
        self._entries: Dict[int, List] = {}

    @asynccontextmanager
    async def hold(self, auction_id: int):
        entry = self._entries.get(auction_id)
        if entry is None:
            entry = self._entries[auction_id] = [asyncio.Lock(), 0]
        entry[1] += 1
        try:
            async with entry[0]:
                yield
        finally:
            entry[1] -= 1
            if entry[1] == 0:
                del self._entries[auction_id]

    def __len__(self):
        return len(self._entries)


auction_locks = AuctionLocks()
