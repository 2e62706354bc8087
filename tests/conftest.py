from types import SimpleNamespace

import pytest

from fxchain.agreements.coordinator import AgreementCoordinator
from fxchain.tokens.permissions import TokenPermissionLayer
from fxchain.tx.correlator import TransactionCorrelator
from fxchain.types.core import FxForwardTerms, Party

from .fakes import ENDOWMENT, FakeChain, account



@pytest.fixture
def chain() -> FakeChain:
    return FakeChain()


@pytest.fixture
def correlator(chain: FakeChain) -> TransactionCorrelator:
    return TransactionCorrelator(chain, timeout=2.0, receipt_poll_interval=0.01)


@pytest.fixture
def terms() -> FxForwardTerms:
    return FxForwardTerms(
        party_a="X",
        party_b="Y",
        currency_a="USD",
        currency_b="DKK",
        maturity=1_700_000_060,
        notional=10_000,
        tenor=7,
    )


@pytest.fixture
def world(chain: FakeChain, correlator: TransactionCorrelator) -> SimpleNamespace:
    """Engine, two endowed currency tokens and a feed, as after bootstrap."""
    engine = chain.install("ContractEngine")
    usd = chain.install("CurrencyToken", "USD")
    dkk = chain.install("CurrencyToken", "DKK")
    feed = chain.install("SimpleFeed")
    x = Party("X", account(1))
    y = Party("Y", account(2))
    for token in (usd, dkk):
        for p in (x, y):
            chain.sims[token.address].balances[p.address] = ENDOWMENT
    permissions = TokenPermissionLayer(correlator, chain, engine)
    coordinator = AgreementCoordinator(correlator, engine, permissions, timeout=2.0)
    return SimpleNamespace(
        chain=chain,
        correlator=correlator,
        engine=engine,
        usd=usd,
        dkk=dkk,
        feed=feed,
        master=account(0),
        x=x,
        y=y,
        outsider=account(3),
        permissions=permissions,
        coordinator=coordinator,
    )
