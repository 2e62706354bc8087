"""
Minimal interfaces the engine expects from a chain connection.

The deployment tracker, correlator, coordinator and permission layer only
talk to these protocols, never to a transport directly. `JsonRpcChainClient`
is the production implementation; tests pass an in-memory chain.
"""

from __future__ import annotations

from typing import (TYPE_CHECKING, Any, AsyncIterator, Dict, List, Optional,
                    Protocol, Sequence, Tuple, runtime_checkable)

from fxchain.types.core import Event, PendingDeployment, Receipt, TxHandle

if TYPE_CHECKING:  # pragma: no cover
    from fxchain.contracts.client import ContractHandle


@runtime_checkable
class EventStream(Protocol):
    """
    An async iterator of decoded events for a fixed set of addresses.

    `close()` releases the underlying subscription and must be idempotent.
    Iteration ends (StopAsyncIteration) once the stream is closed or its
    source went away.
    """

    @property
    def addresses(self) -> Tuple[str, ...]: ...

    @property
    def closed(self) -> bool: ...

    def __aiter__(self) -> AsyncIterator[Event]: ...

    async def __anext__(self) -> Event: ...

    async def close(self) -> None: ...


@runtime_checkable
class ChainClient(Protocol):
    async def block_number(self) -> int: ...

    async def accounts(self) -> List[str]: ...

    async def get_block(self, number: Optional[int] = None) -> Optional[Dict[str, Any]]: ...

    async def unlock_account(self, address: str, password: str, duration: int = 0) -> bool: ...

    async def deploy(self, code: bytes, sender: str, gas_limit: int, *, artifact: str = "") -> PendingDeployment: ...

    async def refresh_deployment(self, pending: PendingDeployment) -> PendingDeployment: ...

    async def call(
        self,
        contract: "ContractHandle",
        method: str,
        args: Sequence[Any],
        sender: str,
        gas_limit: int,
        *,
        value: int = 0,
    ) -> TxHandle: ...

    async def read_only_call(
        self,
        contract: "ContractHandle",
        method: str,
        args: Sequence[Any] = (),
        *,
        sender: Optional[str] = None,
    ) -> Any: ...

    async def get_receipt(self, tx_id: str) -> Optional[Receipt]: ...

    async def subscribe_events(self, contracts: Sequence["ContractHandle"], from_block: int) -> EventStream: ...


__all__ = ["ChainClient", "EventStream"]
