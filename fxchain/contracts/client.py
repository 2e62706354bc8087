"""
fxchain.contracts.client
========================

`ContractHandle`: a contract address bound to its ABI.

A handle is immutable once bound and is shared read-only by every component
that needs the contract (deployment tracker, correlator, coordinator,
permission layer). It knows how to:

- encode calldata for a method (`encode_call`)
- decode return data (`decode_output`)
- decode raw logs emitted at its address into `Event`s (`decode_log`)

It performs no I/O. Sending transactions and read-only calls goes through a
Chain Client (`fxchain.chain`), which takes the handle as its target.

Example
-------
    abi = source.get_abi("CurrencyToken")
    usd = ContractHandle.bind("CurrencyToken", "0x5f3b...", abi)
    data = usd.encode_call("permit", [engine.address, True])
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, FrozenSet, Mapping, Optional, Sequence

from fxchain.errors import AbiError
from fxchain.types.abi import AbiModel
from fxchain.types.core import Event
from fxchain.utils.bytes import ensure_bytes, from_quantity, normalize_address


@dataclass(frozen=True)
class ContractHandle:
    name: str
    address: str
    model: AbiModel

    @classmethod
    def bind(cls, name: str, address: str, abi: Any) -> "ContractHandle":
        try:
            addr = normalize_address(address)
        except (TypeError, ValueError) as e:
            raise ValueError(f"Invalid contract address for {name}: {address!r}") from e
        model = abi if isinstance(abi, AbiModel) else AbiModel.from_list(abi)
        return cls(name=name, address=addr, model=model)

    # ------------------------------------------------------------------ Accessors

    @property
    def methods(self) -> FrozenSet[str]:
        return frozenset(self.model.functions)

    @property
    def events(self) -> FrozenSet[str]:
        return frozenset(self.model.events)

    def has_method(self, name: str) -> bool:
        return name in self.model.functions

    def is_read_only(self, method: str, arg_count: Optional[int] = None) -> bool:
        fn = self.model.get_function(method, arg_count)
        return fn.get("stateMutability") in ("view", "pure")

    # ------------------------------------------------------------------ Encoding/decoding

    def encode_call(self, method: str, args: Sequence[Any]) -> bytes:
        return self.model.encode_call(method, list(args))

    def decode_output(self, method: str, data: Any, arg_count: Optional[int] = None) -> Any:
        raw = ensure_bytes(data) if data is not None else b""
        try:
            return self.model.decode_output(method, raw, arg_count)
        except AbiError as e:
            raise AbiError(f"decode failed at {self.name}: {e.message}", function=method) from e

    def decode_log(self, log: Mapping[str, Any]) -> Optional[Event]:
        """
        Decode an `eth_getLogs`-shaped log into an Event.

        Returns None for logs from another address or with an unknown topic.
        """
        if str(log.get("address", "")).lower() != self.address:
            return None
        topics = [ensure_bytes(t) for t in (log.get("topics") or [])]
        data = ensure_bytes(log.get("data") or "0x")
        decoded = self.model.decode_log(topics, data)
        if decoded is None:
            return None
        ev, names, values = decoded
        block = log.get("blockNumber")
        index = log.get("logIndex")
        return Event(
            origin_tx_id=str(log.get("transactionHash", "")).lower(),
            contract_address=self.address,
            name=ev["name"],
            args=values,
            arg_names=names,
            block_number=from_quantity(block) if block is not None else None,
            log_index=from_quantity(index) if index is not None else None,
        )

    def __repr__(self) -> str:  # pragma: no cover - trivial
        return f"ContractHandle({self.name}@{self.address})"


__all__ = ["ContractHandle"]
