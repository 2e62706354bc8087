"""
fxchain.agreements.coordinator
==============================

Agreement Coordinator: drives multi-party agreements held by the engine
contract through their lifecycle

    UNREGISTERED -> REGISTERED -> (PERMITTED) -> PARTIALLY_SIGNED
                 -> FULLY_SIGNED -> EXECUTED | KILLED

Every transition is applied only after the Transaction Correlator resolved the
transaction that causes it. Transitions of one agreement are serialized by a
per-agreement lock; different agreements proceed independently.

Engine entry points used (names as in the engine ABI):

    fxForward / fxForwardContract(labelA, labelB, ccyA, ccyB, maturity, notional, tenor)
        -> event with `contractId`
    register(contractId, labelA, partyA, labelB, partyB,
             ccyA, tokenA, ccyB, tokenB, feedLabel, feed)
        -> event with `agreementId`
    sign(agreementId), kill(agreementId), execute/evaluate(agreementId)
"""

from __future__ import annotations

import asyncio
import logging
from typing import Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

from fxchain.errors import CorrelationFailure, PreconditionViolation, SubmissionError
from fxchain.types.core import (KILLABLE, SIGNABLE, Agreement, AgreementState,
                                Event, FxForwardTerms, Party)
from fxchain.utils.bytes import normalize_address

from ..contracts.client import ContractHandle
from ..tokens.permissions import TokenPermissionLayer
from ..tx.correlator import Correlation, EventMatcher, TransactionCorrelator

log = logging.getLogger(__name__)

CREATE_METHODS = ("fxForward", "fxForwardContract")
SETTLE_METHODS = ("execute", "evaluate")


def _find_arg(events: Iterable[Event], name: str) -> Optional[int]:
    for ev in events:
        if ev.has(name):
            return int(ev.get(name))
    return None


class AgreementCoordinator:
    def __init__(
        self,
        correlator: TransactionCorrelator,
        engine: ContractHandle,
        permissions: TokenPermissionLayer,
        *,
        gas_limit: int = 10_000_000,
        timeout: Optional[float] = None,
    ) -> None:
        self.correlator = correlator
        self.engine = engine
        self.permissions = permissions
        self.gas_limit = int(gas_limit)
        self.timeout = timeout
        self._agreements: Dict[int, Agreement] = {}
        self._tokens: Dict[int, Tuple[ContractHandle, ...]] = {}
        self._locks: Dict[int, asyncio.Lock] = {}

    # ------------------------------------------------------------------ lookup

    @property
    def agreements(self) -> Tuple[Agreement, ...]:
        return tuple(self._agreements[k] for k in sorted(self._agreements))

    def get(self, agreement_id: int) -> Agreement:
        try:
            return self._agreements[int(agreement_id)]
        except KeyError:
            raise PreconditionViolation(
                "agreement is not tracked",
                subject=f"agreement {agreement_id}",
                condition="unknown_agreement",
            ) from None

    def state(self, agreement_id: int) -> AgreementState:
        a = self._agreements.get(int(agreement_id))
        return a.state if a is not None else AgreementState.UNREGISTERED

    def tokens_of(self, agreement_id: int) -> Tuple[ContractHandle, ...]:
        return self._tokens.get(int(agreement_id), ())

    # ------------------------------------------------------------------ creation

    def _method(self, candidates: Sequence[str], preferred: Optional[str] = None) -> str:
        if preferred is not None:
            return preferred
        for m in candidates:
            if self.engine.has_method(m):
                return m
        return candidates[0]

    async def create_fx_forward(
        self,
        terms: FxForwardTerms,
        sender: str,
        *,
        method: Optional[str] = None,
        cancel: Optional[asyncio.Event] = None,
    ) -> int:
        """Create an FX forward inside the engine; returns the chain-assigned contract id."""
        method = self._method(CREATE_METHODS, method)
        res = await self.correlator.submit_and_await(
            self.engine,
            method,
            terms.as_args(),
            sender=sender,
            gas_limit=self.gas_limit,
            matcher=EventMatcher.all_of_tx(),
            timeout=self.timeout,
            cancel=cancel,
            subject=f"{terms.party_a}/{terms.party_b} {terms.currency_a}/{terms.currency_b}",
            transition=method,
        )
        contract_id = _find_arg(res.events, "contractId")
        if contract_id is None:
            raise CorrelationFailure(
                "no contractId in engine events",
                subject=f"{terms.currency_a}/{terms.currency_b} forward",
                transition=method,
                tx_id=res.tx.id,
                mined=True,
            )
        log.info("contract %d created (%s/%s notional %d)", contract_id, terms.currency_a, terms.currency_b, terms.notional)
        return contract_id

    async def register(
        self,
        contract_id: int,
        party_a: Party,
        party_b: Party,
        tokens: Mapping[str, ContractHandle],
        feed: Optional[ContractHandle],
        sender: str,
        *,
        feed_label: str = "Feed",
        cancel: Optional[asyncio.Event] = None,
    ) -> Agreement:
        """
        Register `contract_id` between two parties; returns the new Agreement.

        `tokens` maps currency labels to token handles, party A's currency
        first. A revert, or a mined transaction without an agreement id, means
        the contract id was never created: nothing is recorded and the call
        can be retried.
        """
        subject = f"contract {contract_id}"
        if len(tokens) != 2:
            raise PreconditionViolation(
                f"expected two currency tokens, got {len(tokens)}",
                subject=subject,
                transition="register",
                condition="two_tokens",
            )
        (ccy_a, tok_a), (ccy_b, tok_b) = list(tokens.items())
        feed_addr = feed.address if feed is not None else "0x" + "00" * 20
        args = [
            int(contract_id),
            party_a.label,
            party_a.address,
            party_b.label,
            party_b.address,
            ccy_a,
            tok_a.address,
            ccy_b,
            tok_b.address,
            feed_label,
            feed_addr,
        ]
        try:
            res = await self.correlator.submit_and_await(
                self.engine,
                "register",
                args,
                sender=sender,
                gas_limit=self.gas_limit,
                matcher=EventMatcher.all_of_tx(),
                timeout=self.timeout,
                cancel=cancel,
                subject=subject,
                transition="register",
            )
        except SubmissionError as e:
            if not e.reverted:
                raise
            raise PreconditionViolation(
                "registration reverted", subject=subject, transition="register", tx_id=e.tx_id,
                condition="contract_not_created",
            ) from e
        agreement_id = _find_arg(res.events, "agreementId")
        if agreement_id is None:
            raise PreconditionViolation(
                "no agreement id emitted", subject=subject, transition="register", tx_id=res.tx.id,
                condition="contract_not_created",
            )

        agreement = Agreement(
            id=agreement_id,
            contract_id=int(contract_id),
            party_a=Party(party_a.label, normalize_address(party_a.address)),
            party_b=Party(party_b.label, normalize_address(party_b.address)),
            tokens={ccy_a: tok_a.address, ccy_b: tok_b.address},
            feed=feed.address if feed is not None else None,
        )
        agreement.history.append((AgreementState.UNREGISTERED, res.tx.id))
        self._agreements[agreement_id] = agreement
        self._tokens[agreement_id] = (tok_a, tok_b)
        log.info("agreement %d registered for contract %d (tx=%s)", agreement_id, contract_id, res.tx.id)
        async with self._lock(agreement):
            await self._refresh_permitted(agreement)
        return agreement

    def adopt(
        self,
        agreement_id: int,
        contract_id: int,
        party_a: Party,
        party_b: Party,
        tokens: Mapping[str, ContractHandle],
        feed: Optional[ContractHandle] = None,
        *,
        state: AgreementState = AgreementState.REGISTERED,
        signers: Sequence[str] = (),
    ) -> Agreement:
        """Track an agreement registered in an earlier run, at a caller-declared state."""
        if state is AgreementState.UNREGISTERED:
            raise ValueError("cannot adopt an unregistered agreement")
        agreement = Agreement(
            id=int(agreement_id),
            contract_id=int(contract_id),
            party_a=Party(party_a.label, normalize_address(party_a.address)),
            party_b=Party(party_b.label, normalize_address(party_b.address)),
            tokens={label: h.address for label, h in tokens.items()},
            feed=feed.address if feed is not None else None,
            state=state,
            signers=[normalize_address(s) for s in signers],
        )
        self._agreements[agreement.id] = agreement
        self._tokens[agreement.id] = tuple(tokens.values())
        log.info("agreement %d adopted at %s", agreement.id, state.value)
        return agreement

    # ------------------------------------------------------------------ permissions

    async def permit(self, token: ContractHandle, party: Party, authorized: bool = True) -> None:
        """Grant/revoke the engine on `token` for `party` and update affected agreements."""
        await self.permissions.permit(token, party, authorized, timeout=self.timeout)
        for agreement in self.agreements:
            if token.address not in agreement.tokens.values():
                continue
            async with self._lock(agreement):
                await self._refresh_permitted(agreement)

    async def _refresh_permitted(self, agreement: Agreement) -> None:
        if agreement.state not in (AgreementState.REGISTERED, AgreementState.PERMITTED):
            return
        ok = await self.permissions.all_authorized(self.tokens_of(agreement.id), agreement.parties)
        if ok and agreement.state is AgreementState.REGISTERED:
            self._move(agreement, AgreementState.PERMITTED, None, action="permit")
        elif not ok and agreement.state is AgreementState.PERMITTED:
            self._move(agreement, AgreementState.REGISTERED, None, action="permit")

    # ------------------------------------------------------------------ lifecycle

    def _lock(self, agreement: Agreement) -> asyncio.Lock:
        # terminal agreements keep no lock; their transitions are all refused
        if agreement.state.terminal:
            return asyncio.Lock()
        return self._locks.setdefault(agreement.id, asyncio.Lock())

    def _move(self, agreement: Agreement, new: AgreementState, tx_id: Optional[str], *, action: str) -> None:
        old = agreement.state
        agreement.transition(new, tx_id, action=action)
        log.info("agreement %d: %s -> %s via %s (tx=%s)", agreement.id, old.value, new.value, action, tx_id)
        if new.terminal:
            self._locks.pop(agreement.id, None)

    def _counterparty(self, agreement: Agreement, party: str, action: str) -> str:
        addr = normalize_address(party)
        if agreement.party_for(addr) is None:
            raise PreconditionViolation(
                f"{addr} is not a counterparty",
                subject=agreement.subject,
                transition=action,
                condition="not_a_counterparty",
            )
        return addr

    def _require_live(self, agreement: Agreement, action: str) -> None:
        if agreement.state.terminal:
            raise PreconditionViolation(
                f"agreement is {agreement.state.value}",
                subject=agreement.subject,
                transition=action,
                condition="terminal_state",
            )

    async def sign(self, agreement_id: int, party: str, *, cancel: Optional[asyncio.Event] = None) -> Agreement:
        """Record `party`'s signature. Signing twice is a no-op that sends nothing."""
        agreement = self.get(agreement_id)
        async with self._lock(agreement):
            self._require_live(agreement, "sign")
            addr = self._counterparty(agreement, party, "sign")
            if agreement.has_signed(addr):
                log.debug("agreement %d already signed by %s", agreement.id, addr)
                return agreement
            if agreement.state not in SIGNABLE:
                raise PreconditionViolation(
                    f"cannot sign in state {agreement.state.value}",
                    subject=agreement.subject,
                    transition="sign",
                    condition="not_signable",
                )
            res = await self.correlator.submit_and_await(
                self.engine,
                "sign",
                [agreement.id],
                sender=addr,
                gas_limit=self.gas_limit,
                matcher=EventMatcher.first(),
                timeout=self.timeout,
                cancel=cancel,
                subject=agreement.subject,
                transition="sign",
            )
            agreement.signers.append(addr)
            new = AgreementState.FULLY_SIGNED if agreement.fully_signed else AgreementState.PARTIALLY_SIGNED
            self._move(agreement, new, res.tx.id, action="sign")
            return agreement

    async def execute(
        self,
        agreement_id: int,
        party: str,
        *,
        method: Optional[str] = None,
        cancel: Optional[asyncio.Event] = None,
    ) -> Correlation:
        """
        Execute a fully signed agreement.

        Returns the correlation with the engine's event(s) and the token
        Transfer events the transaction produced. A revert means a missing
        permission or balance on chain; the agreement stays FULLY_SIGNED.
        """
        return await self._settle(agreement_id, party, self._method(SETTLE_METHODS, method), cancel)

    async def evaluate(self, agreement_id: int, party: str, *, cancel: Optional[asyncio.Event] = None) -> Correlation:
        return await self._settle(agreement_id, party, self._method(SETTLE_METHODS[::-1]), cancel)

    async def _settle(
        self, agreement_id: int, party: str, method: str, cancel: Optional[asyncio.Event]
    ) -> Correlation:
        agreement = self.get(agreement_id)
        async with self._lock(agreement):
            self._require_live(agreement, method)
            addr = self._counterparty(agreement, party, method)
            if agreement.state is not AgreementState.FULLY_SIGNED:
                raise PreconditionViolation(
                    f"requires both signatures, state is {agreement.state.value}",
                    subject=agreement.subject,
                    transition=method,
                    condition="not_fully_signed",
                )
            tokens = self.tokens_of(agreement.id)
            if not await self.permissions.all_authorized(tokens, agreement.parties):
                raise PreconditionViolation(
                    "engine is not permitted on every token for both parties",
                    subject=agreement.subject,
                    transition=method,
                    condition="missing_permission",
                )
            try:
                res = await self.correlator.submit_and_await(
                    self.engine,
                    method,
                    [agreement.id],
                    sender=addr,
                    gas_limit=self.gas_limit,
                    matcher=EventMatcher.all_of_tx(),
                    watch=tokens,
                    timeout=self.timeout,
                    cancel=cancel,
                    subject=agreement.subject,
                    transition=method,
                )
            except SubmissionError as e:
                if not e.reverted:
                    raise
                raise PreconditionViolation(
                    "reverted on chain",
                    subject=agreement.subject,
                    transition=method,
                    tx_id=e.tx_id,
                    condition="insufficient_permission_or_balance",
                ) from e
            self._move(agreement, AgreementState.EXECUTED, res.tx.id, action=method)
            for ev in res.named("Transfer"):
                log.info("agreement %d transfer on %s: %s", agreement.id, ev.contract_address, ev.as_dict())
            return res

    async def kill(self, agreement_id: int, party: str, *, cancel: Optional[asyncio.Event] = None) -> Agreement:
        agreement = self.get(agreement_id)
        async with self._lock(agreement):
            self._require_live(agreement, "kill")
            addr = self._counterparty(agreement, party, "kill")
            if agreement.state not in KILLABLE:
                raise PreconditionViolation(
                    f"cannot kill in state {agreement.state.value}",
                    subject=agreement.subject,
                    transition="kill",
                    condition="not_killable",
                )
            res = await self.correlator.submit_and_await(
                self.engine,
                "kill",
                [agreement.id],
                sender=addr,
                gas_limit=self.gas_limit,
                matcher=EventMatcher.first(),
                timeout=self.timeout,
                cancel=cancel,
                subject=agreement.subject,
                transition="kill",
            )
            self._move(agreement, AgreementState.KILLED, res.tx.id, action="kill")
            return agreement

    def snapshot(self) -> List[dict]:
        return [a.snapshot() for a in self.agreements]


__all__ = ["AgreementCoordinator", "CREATE_METHODS", "SETTLE_METHODS"]
