import pytest

from fxchain.errors import EngineError
from fxchain.feed import LAUNCHED_ON, FeedClient
from fxchain.utils.hash import label_key

from .fakes import account


@pytest.mark.asyncio
async def test_set_and_get(chain, correlator):
    feed = FeedClient(chain.install("SimpleFeed"), correlator, chain)

    res = await feed.set("USD/DKK", 645, account(0))
    entry = await feed.get("USD/DKK")

    assert res.events == ()
    assert entry.value == 645
    assert entry.key == label_key("USD/DKK")
    assert (await feed.get("EUR/DKK")).value == 0


@pytest.mark.asyncio
async def test_record_launch_stores_block_timestamp(chain, correlator):
    handle = chain.install("SimpleFeed")
    feed = FeedClient(handle, correlator, chain)

    entry = await feed.record_launch(account(0))

    assert entry.label == LAUNCHED_ON
    assert entry.block_timestamp == 1_700_000_000
    assert chain.sims[handle.address].values[label_key("launchedOn")] == 1_700_000_000
    assert (await feed.get(LAUNCHED_ON)).value == entry.value


@pytest.mark.asyncio
async def test_record_launch_without_block_sends_nothing(chain, correlator):
    feed = FeedClient(chain.install("SimpleFeed"), correlator, chain)

    async def no_block(number=None):
        return None

    chain.get_block = no_block
    with pytest.raises(EngineError) as ei:
        await feed.record_launch(account(0))

    assert ei.value.subject == "feed launchedOn"
    assert ei.value.transition == "set"
    assert chain.submitted == []
