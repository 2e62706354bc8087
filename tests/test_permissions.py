import pytest

from fxchain.tokens.permissions import TokenPermissionLayer

from .fakes import ENDOWMENT


@pytest.mark.asyncio
async def test_permit_is_tracked_and_idempotent(world):
    w = world
    assert w.permissions.permission(w.usd, w.x) is None

    perm = await w.permissions.permit(w.usd, w.x)
    submitted = len(w.chain.submitted)
    again = await w.permissions.permit(w.usd, w.x.address)

    assert perm == again
    assert perm.authorized is True
    assert perm.grantee == w.engine.address
    assert len(w.chain.submitted) == submitted
    assert w.permissions.permission(w.usd, w.x) == perm
    assert w.chain.sims[w.usd.address].grants[(w.x.address, w.engine.address)] is True


@pytest.mark.asyncio
async def test_revoke_then_regrant_submits_each_change(world):
    w = world
    await w.permissions.permit(w.dkk, w.y)
    await w.permissions.permit(w.dkk, w.y, False)
    assert await w.permissions.is_authorized(w.dkk, w.y) is False
    await w.permissions.permit(w.dkk, w.y, True)

    assert [tx.method for tx in w.chain.submitted] == ["permit"] * 3
    assert [tx.args[1] for tx in w.chain.submitted] == [True, False, True]


@pytest.mark.asyncio
async def test_is_authorized_reads_chain_until_granted(world):
    w = world
    w.chain.sims[w.usd.address].grants[(w.y.address, w.engine.address)] = True

    assert await w.permissions.is_authorized(w.usd, w.y) is True
    assert await w.permissions.is_authorized(w.usd, w.x) is False
    assert await w.permissions.all_authorized([w.usd], [w.x, w.y]) is False

    # a grant made by another process is seen on the next check
    other = TokenPermissionLayer(w.correlator, w.chain, w.engine.address)
    await other.permit(w.usd, w.x)
    assert await w.permissions.all_authorized([w.usd], [w.x, w.y]) is True


@pytest.mark.asyncio
async def test_forget_drops_tracked_grants(world):
    w = world
    await w.permissions.permit(w.usd, w.x)
    await w.permissions.permit(w.dkk, w.x)

    w.permissions.forget(w.usd)
    assert w.permissions.permission(w.usd, w.x) is None
    assert w.permissions.permission(w.dkk, w.x).authorized is True

    w.permissions.forget()
    assert w.permissions.permission(w.dkk, w.x) is None
    assert await w.permissions.is_authorized(w.dkk, w.x) is True


@pytest.mark.asyncio
async def test_token_calls(world):
    w = world
    assert await w.permissions.name(w.dkk) == "DKK"
    assert await w.permissions.balance_of(w.dkk, w.x) == ENDOWMENT

    res = await w.permissions.endow(w.dkk, w.outsider, 500, w.master)
    assert res.event.name == "Transfer"
    assert res.event.get("from") == "0x" + "00" * 20
    assert await w.permissions.balance_of(w.dkk, w.outsider) == 500

    await w.permissions.transfer_from(w.dkk, w.outsider, w.x, 200, w.outsider)
    assert await w.permissions.balance_of(w.dkk, w.outsider) == 300
    assert await w.permissions.balance_of(w.dkk, w.x) == ENDOWMENT + 200
