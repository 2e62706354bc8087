from __future__ import annotations

"""
HTTP JSON-RPC client (async) for Ethereum-compatible nodes.

- Uses httpx.AsyncClient; one client is shared by every component.
- Retries idempotent calls on transient transport failures and 429/5xx HTTP
  with jittered exponential backoff.
- Never retries transaction submission: a lost response does not mean the
  node dropped the transaction, and a resend could double-submit.

Example:
    from fxchain.rpc.http import RpcClient

    async with RpcClient("http://localhost:8545") as rpc:
        head = await rpc.request("eth_blockNumber")
"""

import asyncio
import json
import logging
import random
import time
from dataclasses import dataclass, field
from itertools import count
from typing import Any, Dict, Iterator, List, Mapping, Optional, Sequence, Tuple, Union

import httpx

from ..errors import JsonRpcCode, RpcError, from_jsonrpc_error
from ..version import user_agent

log = logging.getLogger(__name__)

JSON = Union[dict, list, str, int, float, bool, None]
Params = Union[Sequence[Any], Mapping[str, Any], None]

# Methods whose repetition changes chain state
NON_IDEMPOTENT = frozenset(
    {"eth_sendTransaction", "eth_sendRawTransaction", "personal_sendTransaction"}
)


def _now_ms() -> int:
    return int(time.time() * 1000)


def _is_retriable_http(status: int) -> bool:
    # Typical transient HTTP statuses: 429/502/503/504
    return status in (429, 502, 503, 504)


def _jitter_backoff(base: float, factor: float, attempt: int, jitter: float) -> float:
    # Exponential backoff with jitter in [0, jitter]
    return base * (factor ** max(attempt - 1, 0)) + random.random() * jitter


class _Transient(Exception):
    """Internal marker for retriable transport conditions."""


@dataclass
class RpcClient:
    """Asynchronous JSON-RPC 2.0 client over HTTP."""

    url: str
    timeout: float = 10.0
    max_retries: int = 3
    backoff_base: float = 0.15
    backoff_factor: float = 1.8
    backoff_jitter: float = 0.2
    headers: Optional[Mapping[str, str]] = None
    transport: Optional[httpx.AsyncBaseTransport] = None
    _id_counter: Iterator[int] = field(default_factory=lambda: count(start=_now_ms()))
    _client: Optional[httpx.AsyncClient] = field(init=False, default=None)

    # --- lifecycle -------------------------------------------------------

    def _ensure_client(self) -> httpx.AsyncClient:
        if self._client is None:
            merged: Dict[str, str] = {
                "Content-Type": "application/json",
                "Accept": "application/json",
                "User-Agent": user_agent(),
            }
            if self.headers:
                merged.update(dict(self.headers))
            self._client = httpx.AsyncClient(
                timeout=self.timeout,
                headers=merged,
                transport=self.transport,
            )
        return self._client

    async def __aenter__(self) -> "RpcClient":
        self._ensure_client()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:  # noqa: ANN001
        await self.close()

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    # --- public API ------------------------------------------------------

    async def request(self, method: str, params: Params = None) -> JSON:
        """Perform a single JSON-RPC request and return `result` or raise RpcError."""
        payload = self._make_payload(method, params)
        retries = 0 if method in NON_IDEMPOTENT else self.max_retries
        resp = await self._send_with_retries(method, payload, retries)
        if not isinstance(resp, dict):
            raise RpcError(
                code=JsonRpcCode.INTERNAL_ERROR,
                message="Invalid JSON-RPC response type",
                method=method,
                data=type(resp).__name__,
            )
        if resp.get("error") is not None:
            raise from_jsonrpc_error(resp["error"], method=method)
        if "result" not in resp:
            raise RpcError(
                code=JsonRpcCode.INTERNAL_ERROR,
                message="Malformed JSON-RPC response",
                method=method,
                data=resp,
            )
        return resp["result"]

    async def batch(self, calls: Sequence[Tuple[str, Params]]) -> List[JSON]:
        """Perform a JSON-RPC batch of read-only calls; results in the order of `calls`."""
        for method, _ in calls:
            if method in NON_IDEMPOTENT:
                raise ValueError(f"{method} cannot be batched")
        payloads = [self._make_payload(m, p) for m, p in calls]
        resp = await self._send_with_retries("batch", payloads, self.max_retries)
        if not isinstance(resp, list):
            raise RpcError(code=JsonRpcCode.INTERNAL_ERROR, message="Invalid batch response (not a list)", data=resp)

        by_id: Dict[Any, JSON] = {}
        for item in resp:
            if not isinstance(item, dict) or "id" not in item:
                raise RpcError(code=JsonRpcCode.INTERNAL_ERROR, message="Malformed item in batch response", data=item)
            if item.get("error") is not None:
                raise from_jsonrpc_error(item["error"], method="batch")
            by_id[item["id"]] = item.get("result")

        ordered: List[JSON] = []
        for p in payloads:
            if p["id"] not in by_id:
                raise RpcError(code=JsonRpcCode.INTERNAL_ERROR, message=f"Missing result for id {p['id']}", data=resp)
            ordered.append(by_id[p["id"]])
        return ordered

    # --- internals -------------------------------------------------------

    def _make_payload(self, method: str, params: Params) -> Dict[str, Any]:
        if params is None:
            params = []
        elif isinstance(params, Mapping):
            params = dict(params)
        elif isinstance(params, Sequence) and not isinstance(params, (str, bytes, bytearray)):
            params = list(params)
        else:
            # Coerce single param into positional list
            params = [params]  # type: ignore[list-item]
        return {"jsonrpc": "2.0", "id": next(self._id_counter), "method": method, "params": params}

    async def _send_with_retries(self, method: str, payload: Any, retries: int) -> JSON:
        last_exc: Optional[Exception] = None
        for attempt in range(1, retries + 2):  # N retries -> N+1 attempts
            try:
                return await self._send_once(method, payload)
            except _Transient as e:
                last_exc = e
                if attempt > retries:
                    break
                delay = _jitter_backoff(self.backoff_base, self.backoff_factor, attempt, self.backoff_jitter)
                log.debug("rpc %s transient failure (%s); retry %d in %.2fs", method, e, attempt, delay)
                await asyncio.sleep(delay)
        raise RpcError(
            code=JsonRpcCode.TRANSPORT_FAILED,
            message="RPC transport failed",
            method=method,
            data=str(last_exc),
        )

    async def _send_once(self, method: str, payload: Any) -> JSON:
        client = self._ensure_client()
        body = json.dumps(payload, separators=(",", ":"), ensure_ascii=False)
        try:
            r = await client.post(self.url, content=body)
        except (httpx.TimeoutException, httpx.TransportError) as e:
            raise _Transient(f"{type(e).__name__}: {e}") from e
        if _is_retriable_http(r.status_code):
            raise _Transient(f"HTTP {r.status_code}")
        # Avoid raise_for_status() to keep the JSON-RPC error body visible
        try:
            return r.json()
        except ValueError as e:
            raise RpcError(
                code=JsonRpcCode.INTERNAL_ERROR,
                message="Non-JSON response from RPC",
                method=method,
                data=f"HTTP {r.status_code}: {r.text[:256]}",
                http_status=r.status_code,
            ) from e


__all__ = ["RpcClient", "NON_IDEMPOTENT"]
