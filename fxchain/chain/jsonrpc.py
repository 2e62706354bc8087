"""
fxchain.chain.jsonrpc
=====================

`JsonRpcChainClient`: the ChainClient implementation for Ethereum-compatible
nodes. Transactions are signed by the node (`eth_sendTransaction` from an
unlocked, node-managed account); reads go through `eth_call`.

Example
-------
    cfg = FxConfig.from_env()
    chain = JsonRpcChainClient.from_config(cfg)
    try:
        pending = await chain.deploy(code, sender, cfg.token_gas_limit, artifact="SimpleFeed")
        ...
    finally:
        await chain.close()
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Mapping, Optional, Sequence

from fxchain.config import FxConfig
from fxchain.errors import RpcError, SubmissionError
from fxchain.types.core import PendingDeployment, Receipt, TxHandle
from fxchain.utils.bytes import from_quantity, normalize_address, to_hex, to_quantity

from ..contracts.client import ContractHandle
from ..rpc.http import RpcClient
from ..rpc.ws import WsClient
from .base import EventStream
from .streams import FilterEventStream, WsEventStream

log = logging.getLogger(__name__)


def _parse_receipt(tx_id: str, obj: Mapping[str, Any]) -> Receipt:
    status = obj.get("status")
    contract = obj.get("contractAddress")
    gas = obj.get("gasUsed")
    return Receipt(
        tx_id=tx_id,
        # Pre-Byzantium receipts carry no status; a mined tx is taken as successful
        status=True if status is None else from_quantity(status) == 1,
        block_number=from_quantity(obj.get("blockNumber", 0)),
        contract_address=normalize_address(contract) if contract else None,
        gas_used=from_quantity(gas) if gas is not None else None,
        logs=tuple(obj.get("logs") or ()),
    )


class JsonRpcChainClient:
    """ChainClient over HTTP JSON-RPC, with optional WebSocket log subscriptions."""

    def __init__(
        self,
        rpc: RpcClient,
        ws: Optional[WsClient] = None,
        *,
        filter_poll_interval: float = 0.5,
    ) -> None:
        self.rpc = rpc
        self.ws = ws
        self.filter_poll_interval = float(filter_poll_interval)

    @classmethod
    def from_config(cls, cfg: FxConfig) -> "JsonRpcChainClient":
        rpc = RpcClient(
            url=cfg.rpc_url,
            timeout=cfg.request_timeout,
            max_retries=cfg.max_retries,
            backoff_base=cfg.backoff_base,
            headers={"User-Agent": cfg.user_agent},
        )
        ws = None
        if cfg.ws_url:
            ws = WsClient(
                url=cfg.ws_url,
                headers={"User-Agent": cfg.user_agent},
                connect_timeout=cfg.ws_connect_timeout,
                request_timeout=cfg.request_timeout,
            )
        return cls(rpc, ws, filter_poll_interval=cfg.filter_poll_interval)

    async def close(self) -> None:
        if self.ws is not None:
            await self.ws.close()
        await self.rpc.close()

    async def __aenter__(self) -> "JsonRpcChainClient":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:  # noqa: ANN001
        await self.close()

    # ------------------------------------------------------------------ node info

    async def block_number(self) -> int:
        return from_quantity(await self.rpc.request("eth_blockNumber"))

    async def accounts(self) -> List[str]:
        res = await self.rpc.request("eth_accounts")
        return [normalize_address(a) for a in (res or [])]

    async def get_block(self, number: Optional[int] = None) -> Optional[Dict[str, Any]]:
        tag = "latest" if number is None else to_quantity(number)
        res = await self.rpc.request("eth_getBlockByNumber", [tag, False])
        return res if isinstance(res, dict) else None

    async def client_version(self) -> str:
        return str(await self.rpc.request("web3_clientVersion"))

    async def unlock_account(self, address: str, password: str, duration: int = 0) -> bool:
        return bool(await self.rpc.request("personal_unlockAccount", [address, password, duration]))

    # ------------------------------------------------------------------ deployments

    async def deploy(self, code: bytes, sender: str, gas_limit: int, *, artifact: str = "") -> PendingDeployment:
        tx = {"from": normalize_address(sender), "data": to_hex(code), "gas": to_quantity(gas_limit)}
        try:
            tx_id = await self.rpc.request("eth_sendTransaction", [tx])
        except RpcError as e:
            raise SubmissionError(e.message, subject=f"artifact {artifact or '?'}", transition="deploy") from e
        log.debug("deploy %s submitted as %s", artifact or "<anonymous>", tx_id)
        return PendingDeployment(submitted_tx_id=str(tx_id).lower(), artifact=artifact)

    async def refresh_deployment(self, pending: PendingDeployment) -> PendingDeployment:
        if pending.settled:
            return pending
        receipt = await self.get_receipt(pending.submitted_tx_id)
        if receipt is None:
            return pending
        if not receipt.status:
            pending.fail("reverted")
        elif receipt.contract_address:
            pending.resolve(receipt.contract_address)
        else:
            pending.fail("receipt carries no contract address")
        return pending

    # ------------------------------------------------------------------ calls

    async def call(
        self,
        contract: ContractHandle,
        method: str,
        args: Sequence[Any],
        sender: str,
        gas_limit: int,
        *,
        value: int = 0,
    ) -> TxHandle:
        data = contract.encode_call(method, args)
        tx: Dict[str, Any] = {
            "from": normalize_address(sender),
            "to": contract.address,
            "data": to_hex(data),
            "gas": to_quantity(gas_limit),
        }
        if value:
            tx["value"] = to_quantity(value)
        try:
            tx_id = await self.rpc.request("eth_sendTransaction", [tx])
        except RpcError as e:
            raise SubmissionError(
                e.message, subject=f"{contract.name}@{contract.address}", transition=method
            ) from e
        handle = TxHandle(
            id=str(tx_id).lower(),
            submitter=tx["from"],
            target=contract.address,
            method=method,
            args=tuple(args),
        )
        log.debug("submitted %s as %s", handle.describe(), handle.id)
        return handle

    async def read_only_call(
        self,
        contract: ContractHandle,
        method: str,
        args: Sequence[Any] = (),
        *,
        sender: Optional[str] = None,
    ) -> Any:
        call: Dict[str, Any] = {"to": contract.address, "data": to_hex(contract.encode_call(method, args))}
        if sender:
            call["from"] = normalize_address(sender)
        raw = await self.rpc.request("eth_call", [call, "latest"])
        return contract.decode_output(method, raw, len(args))

    async def get_receipt(self, tx_id: str) -> Optional[Receipt]:
        res = await self.rpc.request("eth_getTransactionReceipt", [tx_id])
        if not isinstance(res, dict):
            return None
        return _parse_receipt(tx_id, res)

    # ------------------------------------------------------------------ events

    async def subscribe_events(self, contracts: Sequence[ContractHandle], from_block: int) -> EventStream:
        if self.ws is not None:
            return WsEventStream(self.ws, self.rpc, contracts, from_block)
        return FilterEventStream(self.rpc, contracts, from_block, poll_interval=self.filter_poll_interval)


__all__ = ["JsonRpcChainClient"]
