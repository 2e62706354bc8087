from __future__ import annotations

"""
WebSocket JSON-RPC client (async) for `eth_subscribe` push streams.

- Uses the `websockets` package.
- Correlates requests by `id` and dispatches `eth_subscription` notifications
  to the handler registered for their subscription id.
- A dropped connection fails pending requests and notifies every
  subscription handler through `on_close`, so consumers stop waiting instead
  of hanging on a dead socket.

Example:
    async with WsClient("ws://localhost:8546") as ws:
        sub_id = await ws.subscribe(["logs", {"address": [addr]}], on_event=print)
        ...
        await ws.unsubscribe(sub_id)
"""

import asyncio
import contextlib
import json
import logging
import time
from dataclasses import dataclass, field
from itertools import count
from typing import Any, Callable, Dict, Mapping, Optional, Union

import websockets
from websockets.exceptions import ConnectionClosed

from ..errors import JsonRpcCode, RpcError, from_jsonrpc_error
from ..version import user_agent

log = logging.getLogger(__name__)

JSON = Union[dict, list, str, int, float, bool, None]
OnEvent = Callable[[JSON], None]
OnClose = Callable[[Optional[BaseException]], None]


def _now_ms() -> int:
    return int(time.time() * 1000)


@dataclass
class _Subscription:
    on_event: OnEvent
    on_close: Optional[OnClose] = None


@dataclass
class WsClient:
    url: str
    headers: Optional[Mapping[str, str]] = None
    connect_timeout: float = 10.0
    request_timeout: float = 30.0
    ping_interval: Optional[float] = 20.0
    _id_counter: Any = field(default_factory=lambda: count(start=_now_ms()))
    _ws: Any = field(init=False, default=None)
    _reader_task: Optional[asyncio.Task] = field(init=False, default=None)
    _pending: Dict[int, asyncio.Future] = field(init=False, default_factory=dict)
    _subs: Dict[str, _Subscription] = field(init=False, default_factory=dict)
    _closing: bool = field(init=False, default=False)

    # ------------- context manager -------------

    async def __aenter__(self) -> "WsClient":
        await self.connect()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:  # noqa: ANN001
        await self.close()

    # ------------- lifecycle -------------------

    @property
    def connected(self) -> bool:
        return self._ws is not None

    async def connect(self) -> None:
        """Establish a WebSocket connection and start the reader loop."""
        if self._ws is not None:
            return
        self._closing = False
        hdrs = {"User-Agent": user_agent()}
        if self.headers:
            hdrs.update(dict(self.headers))
        try:
            self._ws = await websockets.connect(
                self.url,
                additional_headers=hdrs,
                ping_interval=self.ping_interval,
                open_timeout=self.connect_timeout,
            )
        except (OSError, asyncio.TimeoutError, websockets.WebSocketException) as e:
            raise RpcError(
                code=JsonRpcCode.TRANSPORT_FAILED, message="WS connect failed", method="connect", data=str(e)
            ) from e
        self._reader_task = asyncio.create_task(self._reader_loop(), name="WsClient.reader")

    async def close(self) -> None:
        """Close the WebSocket, cancel the reader and fail anything still waiting."""
        self._closing = True
        if self._reader_task and not self._reader_task.done():
            self._reader_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._reader_task
        self._reader_task = None
        if self._ws is not None:
            with contextlib.suppress(ConnectionClosed, OSError):
                await self._ws.close()
            self._ws = None
        self._drop_all(None)

    # ------------- RPC primitives --------------

    async def request(self, method: str, params: Optional[list] = None) -> JSON:
        """Send a JSON-RPC request and await the response."""
        if self._ws is None:
            await self.connect()

        rid = next(self._id_counter)
        payload = {"jsonrpc": "2.0", "id": rid, "method": method, "params": list(params or [])}
        fut: asyncio.Future = asyncio.get_running_loop().create_future()
        self._pending[rid] = fut

        try:
            await asyncio.wait_for(
                self._ws.send(json.dumps(payload, separators=(",", ":"))),
                timeout=self.request_timeout,
            )
        except (ConnectionClosed, OSError, asyncio.TimeoutError) as e:
            self._pending.pop(rid, None)
            raise RpcError(code=JsonRpcCode.TRANSPORT_FAILED, message="WS send failed", method=method, data=str(e)) from e

        try:
            return await asyncio.wait_for(fut, timeout=self.request_timeout)
        except asyncio.TimeoutError as e:
            raise RpcError(code=JsonRpcCode.TRANSPORT_FAILED, message="WS request timed out", method=method) from e
        finally:
            self._pending.pop(rid, None)

    # ------------- Subscriptions ----------------

    async def subscribe(self, params: list, *, on_event: OnEvent, on_close: Optional[OnClose] = None) -> str:
        """`eth_subscribe(params)`; returns the subscription id."""
        res = await self.request("eth_subscribe", params)
        sub_id = str(res)
        self._subs[sub_id] = _Subscription(on_event=on_event, on_close=on_close)
        return sub_id

    async def unsubscribe(self, sub_id: str) -> bool:
        """`eth_unsubscribe`; the local handler is removed even if the node call fails."""
        self._subs.pop(sub_id, None)
        if self._ws is None:
            return False
        try:
            ok = await self.request("eth_unsubscribe", [sub_id])
        except RpcError as e:
            log.debug("eth_unsubscribe(%s) failed: %s", sub_id, e)
            ok = False
        return bool(ok)

    # ------------- internals --------------------

    def _drop_all(self, exc: Optional[BaseException]) -> None:
        for fut in list(self._pending.values()):
            if not fut.done():
                fut.set_exception(RpcError(code=JsonRpcCode.TRANSPORT_FAILED, message="WS closed", data=str(exc) if exc else None))
        self._pending.clear()
        subs, self._subs = self._subs, {}
        for sub in subs.values():
            if sub.on_close is not None:
                sub.on_close(exc)

    def _dispatch(self, data: Any) -> None:
        if not isinstance(data, dict):
            return
        # Response to a request
        if "id" in data and data.get("id") is not None:
            fut = self._pending.get(data["id"])
            if fut is None or fut.done():
                return
            if data.get("error") is not None:
                fut.set_exception(from_jsonrpc_error(data["error"]))
            else:
                fut.set_result(data.get("result"))
            return
        # Subscription notification
        if data.get("method") == "eth_subscription":
            params = data.get("params") or {}
            sub = self._subs.get(str(params.get("subscription")))
            if sub is not None:
                sub.on_event(params.get("result"))

    async def _reader_loop(self) -> None:
        """Continuously read frames and dispatch to pending futures or handlers."""
        assert self._ws is not None
        while True:
            try:
                msg = await self._ws.recv()
            except asyncio.CancelledError:
                raise
            except ConnectionClosed as e:
                if not self._closing:
                    log.warning("websocket closed by peer: %s", e)
                    self._ws = None
                    self._drop_all(e)
                return

            try:
                data = json.loads(msg)
            except ValueError:
                log.debug("ignoring non-JSON frame")
                continue
            self._dispatch(data)


__all__ = ["WsClient", "JSON", "OnEvent", "OnClose"]
