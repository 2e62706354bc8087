"""
Core value types shared by the chain client, tracker, correlator and coordinator.

Everything here is a small dataclass. Values that cross component boundaries
(TxHandle, Event, Receipt) are frozen; PendingDeployment and Agreement are the
two records that change over time and guard their own transitions.
"""

from __future__ import annotations

import enum
import time
from dataclasses import dataclass, field
from typing import Any, Dict, FrozenSet, List, Mapping, Optional, Sequence, Tuple

from fxchain.errors import PreconditionViolation

Address = str
TxId = str


# --- Transactions -------------------------------------------------------------


@dataclass(frozen=True)
class TxHandle:
    """A submitted transaction. Only ever used as a correlation key."""

    id: TxId
    submitter: Address
    target: Optional[Address]
    method: str
    args: Tuple[Any, ...] = ()
    submitted_at: float = field(default_factory=time.monotonic, compare=False)

    def describe(self) -> str:
        return f"{self.method}@{self.target or '<create>'} from {self.submitter}"


@dataclass(frozen=True)
class Receipt:
    tx_id: TxId
    status: bool
    block_number: int
    contract_address: Optional[Address] = None
    gas_used: Optional[int] = None
    logs: Tuple[Mapping[str, Any], ...] = ()

    def log_count(self, addresses: Optional[Sequence[Address]] = None) -> int:
        """Number of logs emitted by the transaction, optionally only on `addresses`."""
        if addresses is None:
            return len(self.logs)
        wanted = {a.lower() for a in addresses}
        return sum(1 for lg in self.logs if str(lg.get("address", "")).lower() in wanted)


@dataclass(frozen=True)
class Event:
    """A decoded contract log."""

    origin_tx_id: TxId
    contract_address: Address
    name: str
    args: Tuple[Any, ...] = ()
    arg_names: Tuple[str, ...] = ()
    block_number: Optional[int] = None
    log_index: Optional[int] = None

    def get(self, name: str, default: Any = None) -> Any:
        try:
            return self.args[self.arg_names.index(name)]
        except ValueError:
            return default

    def has(self, name: str) -> bool:
        return name in self.arg_names

    def as_dict(self) -> Dict[str, Any]:
        return dict(zip(self.arg_names, self.args))

    @property
    def key(self) -> Tuple[TxId, Optional[int]]:
        """Identity of the log on chain; used to de-duplicate overlapping reads."""
        return (self.origin_tx_id, self.log_index)


# --- Deployments -----------------------------------------------------------------


@dataclass
class PendingDeployment:
    """
    A contract-creation transaction awaiting its address.

    Moves from unresolved to resolved exactly once, or fails permanently.
    """

    submitted_tx_id: TxId
    artifact: str = ""
    resolved_address: Optional[Address] = None
    failure: Optional[str] = None

    @property
    def resolved(self) -> bool:
        return self.resolved_address is not None

    @property
    def failed(self) -> bool:
        return self.failure is not None

    @property
    def settled(self) -> bool:
        return self.resolved or self.failed

    def resolve(self, address: Address) -> None:
        if self.settled:
            raise RuntimeError(f"deployment {self.submitted_tx_id} already settled")
        self.resolved_address = address

    def fail(self, reason: str) -> None:
        if self.settled:
            raise RuntimeError(f"deployment {self.submitted_tx_id} already settled")
        self.failure = reason


# --- Agreements ------------------------------------------------------------------


@dataclass(frozen=True)
class Party:
    label: str
    address: Address


@dataclass(frozen=True)
class FxForwardTerms:
    """
    Terms for the engine's FX-forward contract-creation entry point.

    `maturity` is a unix timestamp; `tenor` is the engine's tenor/rate-index
    parameter and is passed through unchanged.
    """

    party_a: str
    party_b: str
    currency_a: str
    currency_b: str
    maturity: int
    notional: int
    tenor: int

    def as_args(self) -> Tuple[Any, ...]:
        return (
            self.party_a,
            self.party_b,
            self.currency_a,
            self.currency_b,
            int(self.maturity),
            int(self.notional),
            int(self.tenor),
        )


class AgreementState(str, enum.Enum):
    UNREGISTERED = "unregistered"
    REGISTERED = "registered"
    PERMITTED = "permitted"
    PARTIALLY_SIGNED = "partially_signed"
    FULLY_SIGNED = "fully_signed"
    EXECUTED = "executed"
    KILLED = "killed"

    @property
    def terminal(self) -> bool:
        return self in (AgreementState.EXECUTED, AgreementState.KILLED)


SIGNABLE: FrozenSet[AgreementState] = frozenset(
    {AgreementState.REGISTERED, AgreementState.PERMITTED, AgreementState.PARTIALLY_SIGNED}
)
KILLABLE: FrozenSet[AgreementState] = frozenset(
    {
        AgreementState.REGISTERED,
        AgreementState.PERMITTED,
        AgreementState.PARTIALLY_SIGNED,
        AgreementState.FULLY_SIGNED,
    }
)


@dataclass
class Agreement:
    id: int
    contract_id: int
    party_a: Party
    party_b: Party
    tokens: Dict[str, Address]
    feed: Optional[Address] = None
    state: AgreementState = AgreementState.REGISTERED
    signers: List[Address] = field(default_factory=list)
    history: List[Tuple[AgreementState, Optional[TxId]]] = field(default_factory=list)

    @property
    def subject(self) -> str:
        return f"agreement {self.id}"

    @property
    def parties(self) -> Tuple[Party, Party]:
        return (self.party_a, self.party_b)

    def party_for(self, address: Address) -> Optional[Party]:
        for p in self.parties:
            if p.address.lower() == address.lower():
                return p
        return None

    def has_signed(self, address: Address) -> bool:
        return address.lower() in {s.lower() for s in self.signers}

    @property
    def fully_signed(self) -> bool:
        return all(self.has_signed(p.address) for p in self.parties)

    def transition(self, new_state: AgreementState, tx_id: Optional[TxId] = None, *, action: str) -> None:
        if self.state.terminal:
            raise PreconditionViolation(
                f"agreement is {self.state.value}",
                subject=self.subject,
                transition=action,
                condition="terminal_state",
            )
        self.history.append((self.state, tx_id))
        self.state = new_state

    def snapshot(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "contractId": self.contract_id,
            "state": self.state.value,
            "parties": {p.label: p.address for p in self.parties},
            "tokens": dict(self.tokens),
            "feed": self.feed,
            "signers": list(self.signers),
        }


# --- Tokens / feed ---------------------------------------------------------------


@dataclass(frozen=True)
class Permission:
    token: Address
    grantor: Address
    grantee: Address
    authorized: bool


@dataclass(frozen=True)
class FeedEntry:
    key: bytes
    value: int
    block_timestamp: Optional[int] = None
    label: Optional[str] = None


__all__ = [
    "Address",
    "TxId",
    "TxHandle",
    "Receipt",
    "Event",
    "PendingDeployment",
    "Party",
    "FxForwardTerms",
    "AgreementState",
    "SIGNABLE",
    "KILLABLE",
    "Agreement",
    "Permission",
    "FeedEntry",
]
