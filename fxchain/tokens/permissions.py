"""
Token Permission Layer.

Tracks, per currency token and per party, whether the engine contract may
move that party's funds, and wraps the CurrencyToken calls the engine
lifecycle needs:

    permit(spender, bool)              grant/revoke the engine
    permissions(owner, spender) view   current grant
    balanceOf(owner) view
    endow(owner, amount)               provisioning, deployer only
    transferFrom(from, to, amount)
    name() view
"""

from __future__ import annotations

import logging
from typing import Dict, Iterable, Optional, Tuple, Union

from fxchain.errors import AbiError
from fxchain.types.core import Party, Permission
from fxchain.utils.bytes import normalize_address

from ..chain.base import ChainClient
from ..contracts.client import ContractHandle
from ..tx.correlator import Correlation, EventMatcher, TransactionCorrelator

log = logging.getLogger(__name__)

PartyLike = Union[Party, str]


def _addr(party: PartyLike) -> str:
    return normalize_address(party.address if isinstance(party, Party) else party)


class TokenPermissionLayer:
    def __init__(
        self,
        correlator: TransactionCorrelator,
        chain: ChainClient,
        spender: Union[ContractHandle, str],
        *,
        gas_limit: int = 1_000_000,
    ) -> None:
        self.correlator = correlator
        self.chain = chain
        self.spender = normalize_address(spender.address if isinstance(spender, ContractHandle) else spender)
        self.gas_limit = int(gas_limit)
        self._grants: Dict[Tuple[str, str], bool] = {}

    # ------------------------------------------------------------------ permissions

    def permission(self, token: ContractHandle, party: PartyLike) -> Optional[Permission]:
        """The last known grant for (token, party), without touching the chain."""
        grantor = _addr(party)
        value = self._grants.get((token.address, grantor))
        if value is None:
            return None
        return Permission(token=token.address, grantor=grantor, grantee=self.spender, authorized=value)

    async def permit(
        self,
        token: ContractHandle,
        party: PartyLike,
        authorized: bool = True,
        *,
        timeout: Optional[float] = None,
    ) -> Permission:
        """Grant (or revoke) the engine on `token` for `party`. Repeating a confirmed grant is a no-op."""
        grantor = _addr(party)
        key = (token.address, grantor)
        if key in self._grants and self._grants[key] == bool(authorized):
            log.debug("%s permit for %s already %s", token.name, grantor, authorized)
        else:
            await self.correlator.submit_and_await(
                token,
                "permit",
                [self.spender, bool(authorized)],
                sender=grantor,
                gas_limit=self.gas_limit,
                matcher=EventMatcher.all_of_tx(),
                timeout=timeout,
                subject=f"token {token.name}",
                transition="permit",
            )
            self._grants[key] = bool(authorized)
            log.info("%s: %s %s engine %s", token.name, grantor, "permitted" if authorized else "revoked", self.spender)
        return Permission(token=token.address, grantor=grantor, grantee=self.spender, authorized=bool(authorized))

    async def is_authorized(self, token: ContractHandle, party: PartyLike) -> bool:
        """
        Whether the engine may move `party`'s funds on `token`.

        Only a tracked grant is trusted; anything else is read from the chain,
        so a grant made by another process is picked up on the next check.
        """
        grantor = _addr(party)
        key = (token.address, grantor)
        if self._grants.get(key):
            return True
        if not token.has_method("permissions"):
            return False
        try:
            value = bool(await self.chain.read_only_call(token, "permissions", [grantor, self.spender]))
        except AbiError as e:
            log.warning("%s.permissions unreadable: %s", token.name, e)
            return False
        self._grants[key] = value
        return value

    async def all_authorized(self, tokens: Iterable[ContractHandle], parties: Iterable[PartyLike]) -> bool:
        parties = list(parties)
        for token in tokens:
            for party in parties:
                if not await self.is_authorized(token, party):
                    return False
        return True

    def forget(self, token: Optional[ContractHandle] = None) -> None:
        """Drop tracked grants (for one token or all) so the next check reads the chain."""
        if token is None:
            self._grants.clear()
            return
        for key in [k for k in self._grants if k[0] == token.address]:
            del self._grants[key]

    # ------------------------------------------------------------------ token calls

    async def name(self, token: ContractHandle) -> str:
        return str(await self.chain.read_only_call(token, "name"))

    async def balance_of(self, token: ContractHandle, party: PartyLike) -> int:
        return int(await self.chain.read_only_call(token, "balanceOf", [_addr(party)]))

    async def endow(
        self,
        token: ContractHandle,
        party: PartyLike,
        amount: int,
        sender: str,
        *,
        timeout: Optional[float] = None,
    ) -> Correlation:
        return await self.correlator.submit_and_await(
            token,
            "endow",
            [_addr(party), int(amount)],
            sender=sender,
            gas_limit=self.gas_limit,
            matcher=EventMatcher.all_of_tx(),
            timeout=timeout,
            subject=f"token {token.name}",
            transition="endow",
        )

    async def transfer_from(
        self,
        token: ContractHandle,
        src: PartyLike,
        dst: PartyLike,
        amount: int,
        sender: str,
        *,
        timeout: Optional[float] = None,
    ) -> Correlation:
        return await self.correlator.submit_and_await(
            token,
            "transferFrom",
            [_addr(src), _addr(dst), int(amount)],
            sender=sender,
            gas_limit=self.gas_limit,
            matcher=EventMatcher.all_of_tx(),
            timeout=timeout,
            subject=f"token {token.name}",
            transition="transferFrom",
        )


__all__ = ["TokenPermissionLayer", "PartyLike"]
