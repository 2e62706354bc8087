"""
fxchain.tx.correlator
=====================

Transaction Correlator: submit a contract call and resolve the event(s) that
*this* transaction produced, never "the next event that happens to arrive".

Protocol
--------
1. Capture the current block number, then submit the call. A rejected
   submission raises SubmissionError and no subscription is opened.
2. Subscribe to the target contract (plus any `watch` contracts, e.g. the
   tokens an engine call moves) from the captured block.
3. Every delivered event is tested for `origin_tx_id == tx.id`; others are
   ignored. Matching events are offered to an EventMatcher.
4. Meanwhile the receipt is polled; RpcErrors while polling are logged and
   retried. A reverted receipt fails fast with
   SubmissionError(reverted=True). A successful receipt tells the matcher how
   many logs the transaction left on the watched addresses, so it can tell
   "complete" apart from "will never be satisfied".
5. The wait is bounded by `timeout` (PendingTimeout) and can be aborted by a
   caller-owned `asyncio.Event` (CorrelationFailure).

The subscription is closed on every exit path.

Example
-------
    corr = TransactionCorrelator(chain, timeout=60)
    res = await corr.submit_and_await(
        engine, "evaluate", [agreement_id],
        sender=party1, gas_limit=10_000_000,
        matcher=EventMatcher.all_of_tx(), watch=[usd, dkk],
    )
    for ev in res.events:
        print(ev.name, ev.as_dict())
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, FrozenSet, List, Optional, Sequence, Tuple

from fxchain.errors import CorrelationFailure, PendingTimeout, RpcError, SubmissionError
from fxchain.types.core import Event, Receipt, TxHandle

from ..chain.base import ChainClient, EventStream
from ..contracts.client import ContractHandle

log = logging.getLogger(__name__)


class EventMatcher:
    """
    Decides when the events of one transaction are complete.

    Build one per correlation with a factory:

    - `first()`          the first event of the transaction
    - `named(*names)`    the first event with one of `names`
    - `count(n)`         the first `n` events
    - `all_of_tx()`      every event of the transaction on the watched
                         addresses (known once the receipt is in; may be zero)
    """

    def __init__(
        self,
        *,
        names: Optional[Sequence[str]] = None,
        count: Optional[int] = None,
        take_all: bool = False,
    ) -> None:
        if count is not None and count < 1:
            raise ValueError("count must be >= 1")
        self.names: Optional[FrozenSet[str]] = frozenset(names) if names else None
        self.wanted = count
        self.take_all = take_all
        self.events: List[Event] = []
        self.seen = 0
        self.expected: Optional[int] = None

    @classmethod
    def first(cls) -> "EventMatcher":
        return cls(count=1)

    @classmethod
    def named(cls, *names: str) -> "EventMatcher":
        if not names:
            raise ValueError("named() needs at least one event name")
        return cls(names=names, count=1)

    @classmethod
    def count(cls, n: int) -> "EventMatcher":
        return cls(count=n)

    @classmethod
    def all_of_tx(cls) -> "EventMatcher":
        return cls(take_all=True)

    def offer(self, event: Event) -> None:
        if self.settled:
            return
        self.seen += 1
        if self.names is None or event.name in self.names:
            self.events.append(event)

    def bind_expected(self, log_count: int) -> None:
        self.expected = int(log_count)

    @property
    def satisfied(self) -> bool:
        if self.take_all:
            return self.expected is not None and self.seen >= self.expected
        return len(self.events) >= int(self.wanted or 1)

    @property
    def exhausted(self) -> bool:
        """All logs of the transaction were seen and the matcher is still unsatisfied."""
        return not self.satisfied and self.expected is not None and self.seen >= self.expected

    @property
    def settled(self) -> bool:
        return self.satisfied or self.exhausted

    def describe(self) -> str:
        if self.take_all:
            return "all events"
        if self.names:
            return "event " + "|".join(sorted(self.names))
        return "first event" if self.wanted == 1 else f"{self.wanted} events"

    def result(self) -> Tuple[Event, ...]:
        if self.take_all:
            return tuple(self.events)
        return tuple(self.events[: int(self.wanted or 1)])


@dataclass(frozen=True)
class Correlation:
    tx: TxHandle
    events: Tuple[Event, ...]
    receipt: Optional[Receipt] = None

    @property
    def event(self) -> Optional[Event]:
        return self.events[0] if self.events else None

    def named(self, name: str) -> Tuple[Event, ...]:
        return tuple(ev for ev in self.events if ev.name == name)


class TransactionCorrelator:
    def __init__(
        self,
        chain: ChainClient,
        *,
        timeout: float = 120.0,
        receipt_poll_interval: float = 1.0,
    ) -> None:
        self.chain = chain
        self.timeout = float(timeout)
        self.receipt_poll_interval = float(receipt_poll_interval)

    async def submit_and_await(
        self,
        contract: ContractHandle,
        method: str,
        args: Sequence[Any],
        *,
        sender: str,
        gas_limit: int,
        matcher: Optional[EventMatcher] = None,
        watch: Sequence[ContractHandle] = (),
        timeout: Optional[float] = None,
        cancel: Optional[asyncio.Event] = None,
        subject: Optional[str] = None,
        transition: Optional[str] = None,
    ) -> Correlation:
        from_block = await self.chain.block_number()
        tx = await self.chain.call(contract, method, args, sender, gas_limit)
        handles = [contract] + [w for w in watch if w.address != contract.address]
        stream = await self.chain.subscribe_events(handles, from_block)
        return await self.correlate(
            tx,
            stream,
            matcher=matcher,
            timeout=timeout,
            cancel=cancel,
            subject=subject or f"{contract.name}@{contract.address}",
            transition=transition or method,
        )

    async def correlate(
        self,
        tx: TxHandle,
        stream: EventStream,
        *,
        matcher: Optional[EventMatcher] = None,
        timeout: Optional[float] = None,
        cancel: Optional[asyncio.Event] = None,
        subject: Optional[str] = None,
        transition: Optional[str] = None,
    ) -> Correlation:
        """Resolve the events of an already-submitted `tx` from `stream`; always closes `stream`."""
        matcher = matcher or EventMatcher.first()
        subject = subject or (tx.target or "")
        transition = transition or tx.method
        bound = self.timeout if timeout is None else float(timeout)
        loop = asyncio.get_running_loop()
        started = loop.time()

        events_task = asyncio.create_task(self._consume(tx, stream, matcher), name=f"correlate.events:{tx.id}")
        receipt_task = asyncio.create_task(self._poll_receipt(tx), name=f"correlate.receipt:{tx.id}")
        cancel_task = asyncio.create_task(cancel.wait()) if cancel is not None else None
        waiting = {t for t in (events_task, receipt_task, cancel_task) if t is not None}
        receipt: Optional[Receipt] = None

        try:
            while True:
                remaining = bound - (loop.time() - started)
                done: set = set()
                if remaining > 0:
                    done, _ = await asyncio.wait(waiting, timeout=remaining, return_when=asyncio.FIRST_COMPLETED)
                if not done:
                    raise PendingTimeout(
                        f"no {matcher.describe()} within {bound:.1f}s",
                        subject=subject,
                        transition=transition,
                        tx_id=tx.id,
                        waited_s=loop.time() - started,
                    )
                if cancel_task is not None and cancel_task in done:
                    raise CorrelationFailure(
                        "cancelled", subject=subject, transition=transition, tx_id=tx.id, waited_s=loop.time() - started
                    )
                if receipt_task in done:
                    waiting.discard(receipt_task)
                    receipt = receipt_task.result()
                    if not receipt.status:
                        raise SubmissionError(
                            "transaction reverted", subject=subject, transition=transition, tx_id=tx.id, reverted=True
                        )
                    matcher.bind_expected(receipt.log_count(stream.addresses))
                if events_task in done:
                    waiting.discard(events_task)
                    events_task.result()
                if matcher.satisfied:
                    log.debug("%s resolved with %d event(s)", tx.id, len(matcher.result()))
                    return Correlation(tx=tx, events=matcher.result(), receipt=receipt)
                if matcher.exhausted:
                    raise CorrelationFailure(
                        f"mined without {matcher.describe()}",
                        subject=subject,
                        transition=transition,
                        tx_id=tx.id,
                        waited_s=loop.time() - started,
                        mined=True,
                    )
                if events_task not in waiting:
                    raise CorrelationFailure(
                        "event stream closed", subject=subject, transition=transition, tx_id=tx.id,
                        waited_s=loop.time() - started,
                    )
        finally:
            tasks = [t for t in (events_task, receipt_task, cancel_task) if t is not None]
            for t in tasks:
                if not t.done():
                    t.cancel()
            # Outcomes of the helpers are superseded by what was raised/returned above
            await asyncio.gather(*tasks, return_exceptions=True)
            await stream.close()

    async def _consume(self, tx: TxHandle, stream: EventStream, matcher: EventMatcher) -> None:
        async for ev in stream:
            if ev.origin_tx_id != tx.id:
                log.debug("ignoring %s from tx %s while waiting for %s", ev.name or "<log>", ev.origin_tx_id, tx.id)
                continue
            matcher.offer(ev)
            if matcher.settled:
                return

    async def _poll_receipt(self, tx: TxHandle) -> Receipt:
        while True:
            try:
                receipt = await self.chain.get_receipt(tx.id)
            except RpcError as e:
                # the correlation bound still applies
                log.warning("receipt of %s unavailable, retrying: %s", tx.id, e)
            else:
                if receipt is not None:
                    return receipt
            await asyncio.sleep(self.receipt_poll_interval)


__all__ = ["EventMatcher", "Correlation", "TransactionCorrelator"]
