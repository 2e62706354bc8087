"""
fxchain.chain.streams
=====================

Event streams over Ethereum log subscriptions.

- `FilterEventStream` installs an `eth_newFilter`, reads the backlog from the
  start block with `eth_getFilterLogs`, then polls `eth_getFilterChanges`.
- `WsEventStream` uses `eth_subscribe("logs")` for push delivery and
  backfills the window between the start block and the subscription with
  `eth_getLogs`.

Both decode logs with the ContractHandle registered for the emitting address,
drop logs flagged `removed` (reorgs), de-duplicate by (tx hash, log index) so
overlapping reads never deliver an event twice, and release the node-side
subscription exactly once no matter how many times `close()` is called.
"""

from __future__ import annotations

import asyncio
import logging
from collections import deque
from typing import Any, Deque, Dict, Iterable, Mapping, Optional, Sequence, Set, Tuple

from fxchain.errors import AbiError, RpcError
from fxchain.types.core import Event
from fxchain.utils.bytes import from_quantity, to_quantity

from ..contracts.client import ContractHandle
from ..rpc.http import RpcClient
from ..rpc.ws import WsClient

log = logging.getLogger(__name__)

_END = object()


def _raw_event(log_obj: Mapping[str, Any]) -> Event:
    """Event for a log whose topic is not in the emitting contract's ABI."""
    block = log_obj.get("blockNumber")
    index = log_obj.get("logIndex")
    return Event(
        origin_tx_id=str(log_obj.get("transactionHash", "")).lower(),
        contract_address=str(log_obj.get("address", "")).lower(),
        name="",
        args=(tuple(log_obj.get("topics") or ()), log_obj.get("data") or "0x"),
        arg_names=("topics", "data"),
        block_number=from_quantity(block) if block is not None else None,
        log_index=from_quantity(index) if index is not None else None,
    )


class BaseEventStream:
    """Buffering, decoding and de-duplication shared by concrete streams."""

    def __init__(self, contracts: Sequence[ContractHandle], from_block: int) -> None:
        if not contracts:
            raise ValueError("an event stream needs at least one contract")
        self._handles: Dict[str, ContractHandle] = {c.address: c for c in contracts}
        self._from_block = int(from_block)
        self._buffer: Deque[Event] = deque()
        self._seen: Set[Tuple[str, Optional[int]]] = set()
        self._closed = False
        self._ended = False

    # ------------------------------------------------------------------ protocol

    @property
    def addresses(self) -> Tuple[str, ...]:
        return tuple(self._handles)

    @property
    def closed(self) -> bool:
        return self._closed

    def __aiter__(self) -> "BaseEventStream":
        return self

    async def __anext__(self) -> Event:
        while True:
            if self._buffer:
                return self._buffer.popleft()
            if self._closed or self._ended:
                raise StopAsyncIteration
            await self._fill()

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._buffer.clear()
        await self._release()

    async def __aenter__(self) -> "BaseEventStream":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:  # noqa: ANN001
        await self.close()

    # ------------------------------------------------------------------ hooks

    async def _fill(self) -> None:
        raise NotImplementedError

    async def _release(self) -> None:
        raise NotImplementedError

    # ------------------------------------------------------------------ helpers

    def _filter_params(self, from_block: Optional[int] = None) -> Dict[str, Any]:
        fb = self._from_block if from_block is None else from_block
        return {"address": list(self._handles), "fromBlock": to_quantity(fb)}

    def _accept(self, logs: Iterable[Any]) -> int:
        added = 0
        for lg in logs or ():
            if not isinstance(lg, Mapping) or lg.get("removed"):
                continue
            handle = self._handles.get(str(lg.get("address", "")).lower())
            if handle is None:
                continue
            try:
                ev = handle.decode_log(lg) or _raw_event(lg)
            except AbiError as e:
                log.debug("undecodable log at %s: %s", handle.address, e)
                ev = _raw_event(lg)
            if ev.key in self._seen:
                continue
            self._seen.add(ev.key)
            self._buffer.append(ev)
            added += 1
        return added


class FilterEventStream(BaseEventStream):
    """Polling stream over `eth_newFilter` / `eth_getFilterChanges`."""

    def __init__(
        self,
        rpc: RpcClient,
        contracts: Sequence[ContractHandle],
        from_block: int,
        *,
        poll_interval: float = 0.5,
    ) -> None:
        super().__init__(contracts, from_block)
        self._rpc = rpc
        self._poll_interval = float(poll_interval)
        self._filter_id: Optional[str] = None

    async def _install(self) -> None:
        self._filter_id = str(await self._rpc.request("eth_newFilter", [self._filter_params()]))
        backlog = await self._rpc.request("eth_getFilterLogs", [self._filter_id])
        n = self._accept(backlog or [])
        log.debug("filter %s installed for %s from block %d (%d backlog logs)", self._filter_id, self.addresses, self._from_block, n)

    async def _fill(self) -> None:
        if self._filter_id is None:
            await self._install()
            return
        await asyncio.sleep(self._poll_interval)
        try:
            changes = await self._rpc.request("eth_getFilterChanges", [self._filter_id])
        except RpcError as e:
            # Nodes drop idle filters; reinstall and rely on de-duplication
            log.warning("filter %s lost (%s); reinstalling", self._filter_id, e.message)
            self._filter_id = None
            return
        self._accept(changes or [])

    async def _release(self) -> None:
        fid, self._filter_id = self._filter_id, None
        if fid is None:
            return
        try:
            await self._rpc.request("eth_uninstallFilter", [fid])
        except RpcError as e:
            log.debug("eth_uninstallFilter(%s) failed: %s", fid, e)


class WsEventStream(BaseEventStream):
    """Push stream over `eth_subscribe("logs")` with an `eth_getLogs` backfill."""

    def __init__(
        self,
        ws: WsClient,
        rpc: RpcClient,
        contracts: Sequence[ContractHandle],
        from_block: int,
    ) -> None:
        super().__init__(contracts, from_block)
        self._ws = ws
        self._rpc = rpc
        self._queue: "asyncio.Queue[Any]" = asyncio.Queue()
        self._sub_id: Optional[str] = None
        self._started = False

    async def _start(self) -> None:
        self._started = True
        self._sub_id = await self._ws.subscribe(
            ["logs", {"address": list(self._handles)}],
            on_event=self._queue.put_nowait,
            on_close=lambda _exc: self._queue.put_nowait(_END),
        )
        backlog = await self._rpc.request("eth_getLogs", [self._filter_params()])
        self._accept(backlog or [])

    async def _fill(self) -> None:
        if not self._started:
            await self._start()
            return
        item = await self._queue.get()
        if item is _END:
            self._ended = True
            self._sub_id = None
            return
        self._accept([item])

    async def _release(self) -> None:
        sid, self._sub_id = self._sub_id, None
        if sid is not None:
            await self._ws.unsubscribe(sid)


__all__ = ["BaseEventStream", "FilterEventStream", "WsEventStream"]
