"""
In-memory chain used by the unit tests.

`FakeChain` implements the ChainClient protocol and simulates the three
contracts the engine lifecycle touches (ContractEngine, CurrencyToken,
SimpleFeed). Calls are ABI-encoded and decoded again with the real codec and
logs are produced in `eth_getLogs` shape, so event decoding and stream
de-duplication run exactly as they do against a node.

Mining
------
- `auto_mine=True`: every transaction is mined as soon as it is submitted.
- `auto_mine=False`: transactions wait in `pending` until `await mine()`;
  `mine(reverse=True)` includes them in reverse submission order.
"""

from __future__ import annotations

import asyncio
from typing import Any, Dict, List, Optional, Sequence, Tuple

from fxchain.chain.streams import BaseEventStream
from fxchain.contracts.client import ContractHandle
from fxchain.errors import RpcError, SubmissionError
from fxchain.types.abi import AbiModel, decode_abi, encode_abi, event_topic
from fxchain.types.core import PendingDeployment, Receipt, TxHandle
from fxchain.utils.bytes import (ensure_bytes, from_quantity, normalize_address,
                                 to_hex, to_quantity)

ZERO = "0x" + "00" * 20
BYTECODE = "0x60016002"
ENDOWMENT = 9_999_999


def account(i: int) -> str:
    return "0x" + f"{0xA0 + i:040x}"


# --- ABIs --------------------------------------------------------------------------

ENGINE_ABI: List[Dict[str, Any]] = [
    {
        "type": "function",
        "name": "fxForward",
        "inputs": [
            {"name": "labelA", "type": "string"},
            {"name": "labelB", "type": "string"},
            {"name": "ccyA", "type": "string"},
            {"name": "ccyB", "type": "string"},
            {"name": "maturity", "type": "uint256"},
            {"name": "notional", "type": "uint256"},
            {"name": "tenor", "type": "uint256"},
        ],
        "outputs": [],
    },
    {
        "type": "function",
        "name": "register",
        "inputs": [
            {"name": "contractId", "type": "uint256"},
            {"name": "labelA", "type": "string"},
            {"name": "partyA", "type": "address"},
            {"name": "labelB", "type": "string"},
            {"name": "partyB", "type": "address"},
            {"name": "ccyA", "type": "string"},
            {"name": "tokenA", "type": "address"},
            {"name": "ccyB", "type": "string"},
            {"name": "tokenB", "type": "address"},
            {"name": "feedLabel", "type": "string"},
            {"name": "feed", "type": "address"},
        ],
        "outputs": [],
    },
    {"type": "function", "name": "sign", "inputs": [{"name": "agreementId", "type": "uint256"}], "outputs": []},
    {"type": "function", "name": "kill", "inputs": [{"name": "agreementId", "type": "uint256"}], "outputs": []},
    {"type": "function", "name": "execute", "inputs": [{"name": "agreementId", "type": "uint256"}], "outputs": []},
    {"type": "event", "name": "ContractCreated", "inputs": [{"name": "contractId", "type": "uint256", "indexed": False}]},
    {
        "type": "event",
        "name": "Registered",
        "inputs": [
            {"name": "agreementId", "type": "uint256", "indexed": True},
            {"name": "contractId", "type": "uint256", "indexed": False},
        ],
    },
    {
        "type": "event",
        "name": "Signed",
        "inputs": [
            {"name": "agreementId", "type": "uint256", "indexed": True},
            {"name": "party", "type": "address", "indexed": False},
        ],
    },
    {"type": "event", "name": "Killed", "inputs": [{"name": "agreementId", "type": "uint256", "indexed": True}]},
    {"type": "event", "name": "Executed", "inputs": [{"name": "agreementId", "type": "uint256", "indexed": True}]},
]

TOKEN_ABI: List[Dict[str, Any]] = [
    {"type": "constructor", "inputs": [{"name": "name", "type": "string"}]},
    {"type": "function", "name": "name", "inputs": [], "outputs": [{"name": "", "type": "string"}], "constant": True},
    {
        "type": "function",
        "name": "balanceOf",
        "inputs": [{"name": "owner", "type": "address"}],
        "outputs": [{"name": "", "type": "uint256"}],
        "stateMutability": "view",
    },
    {
        "type": "function",
        "name": "permissions",
        "inputs": [{"name": "owner", "type": "address"}, {"name": "spender", "type": "address"}],
        "outputs": [{"name": "", "type": "bool"}],
        "stateMutability": "view",
    },
    {
        "type": "function",
        "name": "permit",
        "inputs": [{"name": "spender", "type": "address"}, {"name": "authorized", "type": "bool"}],
        "outputs": [],
    },
    {
        "type": "function",
        "name": "endow",
        "inputs": [{"name": "owner", "type": "address"}, {"name": "amount", "type": "uint256"}],
        "outputs": [],
    },
    {
        "type": "function",
        "name": "transferFrom",
        "inputs": [
            {"name": "from", "type": "address"},
            {"name": "to", "type": "address"},
            {"name": "amount", "type": "uint256"},
        ],
        "outputs": [],
    },
    {
        "type": "event",
        "name": "Transfer",
        "inputs": [
            {"name": "from", "type": "address", "indexed": True},
            {"name": "to", "type": "address", "indexed": True},
            {"name": "amount", "type": "uint256", "indexed": False},
        ],
    },
]

FEED_ABI: List[Dict[str, Any]] = [
    {
        "type": "function",
        "name": "set",
        "inputs": [{"name": "key", "type": "bytes32"}, {"name": "value", "type": "uint256"}],
        "outputs": [],
    },
    {
        "type": "function",
        "name": "get",
        "inputs": [{"name": "key", "type": "bytes32"}],
        "outputs": [{"name": "", "type": "uint256"}],
        "stateMutability": "view",
    },
]

ABIS = {"ContractEngine": ENGINE_ABI, "CurrencyToken": TOKEN_ABI, "SimpleFeed": FEED_ABI}


class FakeSource:
    """ContractSourceProvider over the ABIs above."""

    def get_abi(self, name: str) -> List[Dict[str, Any]]:
        return ABIS[name]

    def get_code(self, name: str) -> str:
        if name not in ABIS:
            raise FileNotFoundError(name)
        return BYTECODE


# --- Contract simulators -------------------------------------------------------------


class Revert(Exception):
    pass


Emitted = List[Tuple[str, str, Tuple[Any, ...]]]  # (address, event, values)


class TokenSim:
    def __init__(self, address: str, name: str) -> None:
        self.address = address
        self.token_name = name
        self.balances: Dict[str, int] = {}
        self.grants: Dict[Tuple[str, str], bool] = {}

    def view(self, method: str, args: Sequence[Any]) -> Any:
        if method == "name":
            return self.token_name
        if method == "balanceOf":
            return self.balances.get(args[0], 0)
        if method == "permissions":
            return self.grants.get((args[0], args[1]), False)
        raise Revert(method)

    def check_transfer(self, src: str, dst: str, amount: int, spender: str) -> None:
        if spender != src and not self.grants.get((src, spender), False):
            raise Revert("not permitted")
        if self.balances.get(src, 0) < amount:
            raise Revert("insufficient balance")

    def transfer(self, src: str, dst: str, amount: int) -> Emitted:
        self.balances[src] = self.balances.get(src, 0) - amount
        self.balances[dst] = self.balances.get(dst, 0) + amount
        return [(self.address, "Transfer", (src, dst, amount))]

    def apply(self, chain: "FakeChain", method: str, args: Sequence[Any], sender: str) -> Emitted:
        if method == "permit":
            self.grants[(sender, args[0])] = bool(args[1])
            return []
        if method == "endow":
            self.balances[args[0]] = self.balances.get(args[0], 0) + args[1]
            return [(self.address, "Transfer", (ZERO, args[0], args[1]))]
        if method == "transferFrom":
            self.check_transfer(args[0], args[1], args[2], sender)
            return self.transfer(args[0], args[1], args[2])
        raise Revert(method)


class FeedSim:
    def __init__(self, address: str) -> None:
        self.address = address
        self.values: Dict[bytes, int] = {}

    def view(self, method: str, args: Sequence[Any]) -> Any:
        if method == "get":
            return self.values.get(bytes(args[0]), 0)
        raise Revert(method)

    def apply(self, chain: "FakeChain", method: str, args: Sequence[Any], sender: str) -> Emitted:
        if method == "set":
            self.values[bytes(args[0])] = args[1]
            return []
        raise Revert(method)


class EngineSim:
    def __init__(self, address: str, first_contract_id: int = 6) -> None:
        self.address = address
        self.next_contract_id = first_contract_id
        self.contracts: Dict[int, Tuple[Any, ...]] = {}
        self.agreements: List[Dict[str, Any]] = []

    def view(self, method: str, args: Sequence[Any]) -> Any:
        raise Revert(method)

    def apply(self, chain: "FakeChain", method: str, args: Sequence[Any], sender: str) -> Emitted:
        if method == "fxForward":
            cid = self.next_contract_id
            self.next_contract_id += 1
            self.contracts[cid] = tuple(args)
            return [(self.address, "ContractCreated", (cid,))]
        if method == "register":
            cid = args[0]
            if cid not in self.contracts:
                return []
            aid = len(self.agreements)
            self.agreements.append(
                {
                    "contract": cid,
                    "parties": (args[2], args[4]),
                    "tokens": (args[6], args[8]),
                    "signed": set(),
                    "killed": False,
                    "executed": False,
                }
            )
            return [(self.address, "Registered", (aid, cid))]
        aid = args[0]
        if aid >= len(self.agreements):
            raise Revert("unknown agreement")
        ag = self.agreements[aid]
        if sender not in ag["parties"] or ag["killed"] or ag["executed"]:
            raise Revert(method)
        if method == "sign":
            ag["signed"].add(sender)
            return [(self.address, "Signed", (aid, sender))]
        if method == "kill":
            ag["killed"] = True
            return [(self.address, "Killed", (aid,))]
        if method == "execute":
            if len(ag["signed"]) != 2:
                raise Revert("not signed")
            notional = self.contracts[ag["contract"]][5]
            a, b = ag["parties"]
            tok_a, tok_b = (chain.sims[t] for t in ag["tokens"])
            tok_a.check_transfer(a, b, notional, self.address)
            tok_b.check_transfer(b, a, notional, self.address)
            out = tok_a.transfer(a, b, notional) + tok_b.transfer(b, a, notional)
            ag["executed"] = True
            return out + [(self.address, "Executed", (aid,))]
        raise Revert(method)


# --- Streams -------------------------------------------------------------------------


class FakeEventStream(BaseEventStream):
    def __init__(self, chain: "FakeChain", contracts: Sequence[ContractHandle], from_block: int) -> None:
        super().__init__(contracts, from_block)
        self._chain = chain
        self._queue: "asyncio.Queue[Optional[List[dict]]]" = asyncio.Queue()
        self._started = False

    def push(self, logs: List[dict]) -> None:
        self._queue.put_nowait(logs)

    def end(self) -> None:
        self._queue.put_nowait(None)

    async def _fill(self) -> None:
        if not self._started:
            self._started = True
            self._accept([lg for lg in self._chain.logs if from_quantity(lg["blockNumber"]) >= self._from_block])
            return
        batch = await self._queue.get()
        if batch is None:
            self._ended = True
            return
        self._accept(batch)

    async def _release(self) -> None:
        self._chain.streams.remove(self)
        self._chain.released += 1


# --- Chain -----------------------------------------------------------------------------


class _Tx:
    def __init__(self, handle: TxHandle, target: Optional[str], method: str, args: Tuple[Any, ...]) -> None:
        self.handle = handle
        self.target = target
        self.method = method
        self.args = args


class FakeChain:
    def __init__(self, *, auto_mine: bool = True, password: str = "123456") -> None:
        self.auto_mine = auto_mine
        self.password = password
        self.block = 100
        self.timestamp = 1_700_000_000
        self.account_list = [account(i) for i in range(4)]
        self.models: Dict[str, AbiModel] = {}
        self.sims: Dict[str, Any] = {}
        self.logs: List[dict] = []
        self.receipts: Dict[str, Receipt] = {}
        self.pending: List[_Tx] = []
        self.submitted: List[TxHandle] = []
        self.streams: List[FakeEventStream] = []
        self.released = 0
        self.unlocked: List[str] = []
        self.reject_next: Optional[str] = None
        self.deploy_delay = 0
        self.never_mine_deploys = False
        self.revert_deploys = False
        self.flaky_reads = 0
        self._deploys: Dict[str, Tuple[str, str, Tuple[Any, ...], int]] = {}
        self._n = 0

    # ------------------------------------------------------------------ helpers

    def _maybe_fail(self, method: str) -> None:
        if self.flaky_reads > 0:
            self.flaky_reads -= 1
            raise RpcError(-32000, "upstream 503 after retries", method=method)

    def _next_hash(self) -> str:
        self._n += 1
        return "0x" + f"{self._n:064x}"

    def _new_address(self) -> str:
        return "0x" + f"{0xC0DE0000 + len(self.sims) + 1:040x}"

    def install(self, artifact: str, *ctor_args: Any) -> ContractHandle:
        """Create a contract directly, without a deployment transaction."""
        addr = self._new_address()
        self._create(artifact, addr, ctor_args)
        return ContractHandle.bind(artifact, addr, ABIS[artifact])

    def _create(self, artifact: str, addr: str, ctor_args: Sequence[Any]) -> None:
        self.models[addr] = AbiModel.from_list(ABIS[artifact])
        if artifact == "CurrencyToken":
            self.sims[addr] = TokenSim(addr, ctor_args[0])
        elif artifact == "SimpleFeed":
            self.sims[addr] = FeedSim(addr)
        else:
            self.sims[addr] = EngineSim(addr)

    def _log(self, address: str, name: str, values: Tuple[Any, ...], tx_id: str, index: int) -> dict:
        ev = self.models[address].get_event(name)
        topics = [to_hex(event_topic(ev))]
        plain_types, plain_values = [], []
        for p, v in zip(ev["inputs"], values):
            if p.get("indexed"):
                topics.append(to_hex(encode_abi([p["type"]], [v])))
            else:
                plain_types.append(p["type"])
                plain_values.append(v)
        return {
            "address": address,
            "topics": topics,
            "data": to_hex(encode_abi(plain_types, plain_values)),
            "transactionHash": tx_id,
            "blockNumber": to_quantity(self.block),
            "logIndex": to_quantity(index),
            "removed": False,
        }

    def _execute(self, tx: _Tx, index_base: int) -> List[dict]:
        sim = self.sims[tx.target]
        try:
            emitted = sim.apply(self, tx.method, tx.args, tx.handle.submitter)
        except Revert:
            self.receipts[tx.handle.id] = Receipt(tx_id=tx.handle.id, status=False, block_number=self.block)
            return []
        logs = [self._log(addr, name, vals, tx.handle.id, index_base + i) for i, (addr, name, vals) in enumerate(emitted)]
        self.receipts[tx.handle.id] = Receipt(
            tx_id=tx.handle.id, status=True, block_number=self.block, logs=tuple(logs)
        )
        return logs

    async def mine(self, *, reverse: bool = False) -> List[dict]:
        """Include all pending transactions in one new block and deliver their logs."""
        batch, self.pending = self.pending, []
        if reverse:
            batch.reverse()
        self.block += 1
        self.timestamp += 15
        new: List[dict] = []
        for tx in batch:
            new.extend(self._execute(tx, len(new)))
        self.logs.extend(new)
        for stream in list(self.streams):
            stream.push(new)
        await asyncio.sleep(0)
        return new

    def drop_streams(self) -> None:
        for stream in list(self.streams):
            stream.end()

    # ------------------------------------------------------------------ ChainClient

    async def block_number(self) -> int:
        return self.block

    async def accounts(self) -> List[str]:
        return list(self.account_list)

    async def get_block(self, number: Optional[int] = None) -> Optional[Dict[str, Any]]:
        return {"number": to_quantity(self.block), "timestamp": to_quantity(self.timestamp)}

    async def unlock_account(self, address: str, password: str, duration: int = 0) -> bool:
        if password != self.password:
            return False
        self.unlocked.append(address)
        return True

    async def deploy(self, code: bytes, sender: str, gas_limit: int, *, artifact: str = "") -> PendingDeployment:
        if self.reject_next:
            reason, self.reject_next = self.reject_next, None
            raise SubmissionError(reason, subject=f"artifact {artifact}", transition="deploy")
        model = AbiModel.from_list(ABIS[artifact])
        ctor = model.constructor.get("inputs", []) if model.constructor else []
        raw = ensure_bytes(code)[len(ensure_bytes(BYTECODE)):]
        args = decode_abi([p["type"] for p in ctor], raw) if ctor else ()
        tx_id = self._next_hash()
        self._deploys[tx_id] = (artifact, normalize_address(sender), tuple(args), self.deploy_delay)
        return PendingDeployment(submitted_tx_id=tx_id, artifact=artifact)

    async def refresh_deployment(self, pending: PendingDeployment) -> PendingDeployment:
        self._maybe_fail("eth_getTransactionReceipt")
        if pending.settled or self.never_mine_deploys:
            return pending
        if self.revert_deploys:
            pending.fail("reverted")
            return pending
        artifact, sender, args, delay = self._deploys[pending.submitted_tx_id]
        if delay > 0:
            self._deploys[pending.submitted_tx_id] = (artifact, sender, args, delay - 1)
            return pending
        addr = self._new_address()
        self._create(artifact, addr, args)
        self.block += 1
        pending.resolve(addr)
        return pending

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
        if self.reject_next:
            reason, self.reject_next = self.reject_next, None
            raise SubmissionError(reason, subject=f"{contract.name}@{contract.address}", transition=method)
        data = contract.encode_call(method, args)
        fn = contract.model.get_function(method, len(args))
        decoded = decode_abi([p["type"] for p in fn.get("inputs", [])], data[4:])
        handle = TxHandle(
            id=self._next_hash(),
            submitter=normalize_address(sender),
            target=contract.address,
            method=method,
            args=tuple(args),
        )
        self.submitted.append(handle)
        self.pending.append(_Tx(handle, contract.address, method, tuple(decoded)))
        if self.auto_mine:
            await self.mine()
        return handle

    async def read_only_call(
        self,
        contract: ContractHandle,
        method: str,
        args: Sequence[Any] = (),
        *,
        sender: Optional[str] = None,
    ) -> Any:
        data = contract.encode_call(method, args)
        fn = contract.model.get_function(method, len(args))
        decoded = decode_abi([p["type"] for p in fn.get("inputs", [])], data[4:])
        result = self.sims[contract.address].view(method, decoded)
        outputs = [p["type"] for p in fn.get("outputs", [])]
        return contract.decode_output(method, encode_abi(outputs, [result]), len(args))

    async def get_receipt(self, tx_id: str) -> Optional[Receipt]:
        self._maybe_fail("eth_getTransactionReceipt")
        return self.receipts.get(tx_id)

    async def subscribe_events(self, contracts: Sequence[ContractHandle], from_block: int) -> FakeEventStream:
        stream = FakeEventStream(self, contracts, from_block)
        self.streams.append(stream)
        return stream
