"""
SimpleFeed wrapper: a key/value price or date feed on chain.

Keys are the Keccak-256 hash of a human label (`web3.sha3("launchedOn")`),
values are unsigned integers.
"""

from __future__ import annotations

import logging
from typing import Optional

from fxchain.errors import EngineError
from fxchain.types.core import FeedEntry
from fxchain.utils.bytes import from_quantity
from fxchain.utils.hash import label_key

from .chain.base import ChainClient
from .contracts.client import ContractHandle
from .tx.correlator import Correlation, EventMatcher, TransactionCorrelator

log = logging.getLogger(__name__)

LAUNCHED_ON = "launchedOn"


class FeedClient:
    def __init__(
        self,
        feed: ContractHandle,
        correlator: TransactionCorrelator,
        chain: ChainClient,
        *,
        gas_limit: int = 1_000_000,
    ) -> None:
        self.feed = feed
        self.correlator = correlator
        self.chain = chain
        self.gas_limit = int(gas_limit)

    async def set(self, label: str, value: int, sender: str, *, timeout: Optional[float] = None) -> Correlation:
        res = await self.correlator.submit_and_await(
            self.feed,
            "set",
            [label_key(label), int(value)],
            sender=sender,
            gas_limit=self.gas_limit,
            matcher=EventMatcher.all_of_tx(),
            timeout=timeout,
            subject=f"feed {label}",
            transition="set",
        )
        log.info("feed %s = %d (tx=%s)", label, value, res.tx.id)
        return res

    async def get(self, label: str) -> FeedEntry:
        key = label_key(label)
        value = await self.chain.read_only_call(self.feed, "get", [key])
        return FeedEntry(key=key, value=int(value or 0), label=label)

    async def record_launch(self, sender: str, *, timeout: Optional[float] = None) -> FeedEntry:
        """Store the latest block's timestamp under `launchedOn`."""
        block = await self.chain.get_block()
        if block is None:
            raise EngineError("node returned no latest block", subject=f"feed {LAUNCHED_ON}", transition="set")
        ts = from_quantity(block["timestamp"])
        await self.set(LAUNCHED_ON, ts, sender, timeout=timeout)
        return FeedEntry(key=label_key(LAUNCHED_ON), value=ts, block_timestamp=ts, label=LAUNCHED_ON)


__all__ = ["FeedClient", "LAUNCHED_ON"]
