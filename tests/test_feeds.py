import asyncio
import random
from decimal import Decimal

import pytest

from buytracker.errors import FeedUnavailable
from buytracker.feeds.base import PollingPurchaseFeed
from buytracker.feeds.rpc import ChainRpcClient, RpcError
from buytracker.feeds.simulated import SimulatedFeedFactory, SimulatedPurchaseFeed
from buytracker.models import FeedFault, FeedRecovered, Network, PurchaseEvent


class DummyJob:
    def __init__(self, scheduler, job_id: str) -> None:
        self.scheduler = scheduler
        self.id = job_id

    def remove(self) -> None:
        self.scheduler.jobs.pop(self.id)


class DummyScheduler:
    def __init__(self) -> None:
        self.jobs = {}
        self.kwargs = {}

    def add_job(self, func, **kwargs) -> DummyJob:
        job = DummyJob(self, kwargs["id"])
        self.jobs[job.id] = func
        self.kwargs[job.id] = kwargs
        return job


class ScriptedFeed(PollingPurchaseFeed):
    """Each poll pops the next script entry: an exception or a list of events."""

    def __init__(self, script, min_usd: Decimal = Decimal("0"), **kwargs) -> None:
        super().__init__(Network.BNB, "0xtoken", min_usd, DummyScheduler(), **kwargs)
        self.script = list(script)

    async def _fetch(self):
        step = self.script.pop(0)
        if isinstance(step, Exception):
            raise step
        return step


class FakeRpc:
    def __init__(self, heads=None, error: Exception | None = None) -> None:
        self.heads = list(heads or [])
        self.error = error

    async def latest_block(self, network: Network) -> int:
        if self.error is not None:
            raise self.error
        return self.heads.pop(0)


def _event(tx_id: str, usd: str = "10") -> PurchaseEvent:
    return PurchaseEvent(
        tx_id=tx_id,
        token_amount=Decimal("1"),
        native_amount=Decimal("0.01"),
        usd_amount=Decimal(usd),
        buyer_address="0xbuyer",
    )


def _drain(feed) -> list:
    messages = []
    while not feed.events.empty():
        messages.append(feed.events.get_nowait())
    return messages


@pytest.mark.asyncio
async def test_open_schedules_interval_job_and_stop_removes_it() -> None:
    feed = ScriptedFeed([], interval_seconds=12)
    scheduler = feed.scheduler

    await feed.open()
    assert feed.running
    assert list(scheduler.jobs) == [feed.job_id]
    kwargs = scheduler.kwargs[feed.job_id]
    assert kwargs["trigger"] == "interval"
    assert kwargs["seconds"] == 12
    assert kwargs["max_instances"] == 1

    await feed.stop()
    await feed.stop()
    assert scheduler.jobs == {}
    assert feed.stopped
    assert not feed.running


@pytest.mark.asyncio
async def test_stopped_feed_cannot_reopen_or_publish() -> None:
    feed = ScriptedFeed([])
    await feed.open()
    await feed.stop()

    with pytest.raises(RuntimeError):
        await feed.open()
    assert feed.publish(_event("0x1")) is False
    feed.publish_status(FeedRecovered())
    assert feed.events.empty()


@pytest.mark.asyncio
async def test_poll_publishes_events_in_order_above_threshold() -> None:
    feed = ScriptedFeed(
        [[_event("0x1", "20"), _event("0x2", "1"), _event("0x3", "5")]],
        min_usd=Decimal("5"),
    )
    await feed.open()
    await feed._poll()

    assert [event.tx_id for event in _drain(feed)] == ["0x1", "0x3"]
    await feed.stop()


@pytest.mark.asyncio
async def test_repeated_failures_raise_one_fault_then_recover() -> None:
    boom = ConnectionError("rpc down")
    feed = ScriptedFeed([boom, boom, boom, boom, [_event("0x9")]], max_failures=3)
    await feed.open()

    for _ in range(2):
        await feed._poll()
    assert feed.events.empty()

    await feed._poll()
    await feed._poll()
    messages = _drain(feed)
    assert len(messages) == 1
    assert isinstance(messages[0], FeedFault)
    assert messages[0].consecutive_failures == 3
    assert "rpc down" in messages[0].reason

    await feed._poll()
    messages = _drain(feed)
    assert isinstance(messages[0], FeedRecovered)
    assert messages[1].tx_id == "0x9"
    await feed.stop()


@pytest.mark.asyncio
async def test_poll_after_stop_is_ignored() -> None:
    feed = ScriptedFeed([[_event("0x1")]])
    await feed.open()
    await feed.stop()

    await feed._poll()
    assert feed.events.empty()
    assert len(feed.script) == 1


@pytest.mark.asyncio
async def test_simulated_feed_emits_buys_when_head_advances() -> None:
    feed = SimulatedPurchaseFeed(
        Network.BNB,
        "0xtoken",
        Decimal("0"),
        DummyScheduler(),
        native_price_usd=Decimal("500"),
        rpc=FakeRpc(heads=[100, 100, 101]),
        probability=1.0,
        rng=random.Random(7),
    )
    await feed.open()

    assert await feed._fetch() == []
    events = await feed._fetch()
    assert len(events) == 1

    event = events[0]
    assert event.tx_id.startswith("0x") and len(event.tx_id) == 66
    assert event.buyer_address.startswith("0x") and len(event.buyer_address) == 42
    assert event.usd_amount == (event.native_amount * Decimal("500")).quantize(
        Decimal("0.01")
    )
    await feed.stop()


@pytest.mark.asyncio
async def test_simulated_solana_buys_use_base58_ids() -> None:
    feed = SimulatedPurchaseFeed(
        Network.SOLANA,
        "Mint",
        Decimal("0"),
        DummyScheduler(),
        native_price_usd=Decimal("150"),
        probability=1.0,
        rng=random.Random(3),
    )
    await feed.open()
    (event,) = await feed._fetch()

    assert len(event.tx_id) == 88
    assert len(event.buyer_address) == 44
    assert "0" not in event.tx_id
    await feed.stop()


@pytest.mark.asyncio
async def test_simulated_feed_respects_probability() -> None:
    feed = SimulatedPurchaseFeed(
        Network.BNB,
        "0xtoken",
        Decimal("0"),
        DummyScheduler(),
        native_price_usd=Decimal("500"),
        probability=0.0,
    )
    await feed.open()
    assert await feed._fetch() == []
    await feed.stop()


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "error",
    [RpcError("bad gateway"), asyncio.TimeoutError()],
)
async def test_simulated_feed_open_fails_when_rpc_unreachable(error) -> None:
    scheduler = DummyScheduler()
    feed = SimulatedPurchaseFeed(
        Network.BNB,
        "0xtoken",
        Decimal("0"),
        scheduler,
        native_price_usd=Decimal("500"),
        rpc=FakeRpc(error=error),
    )

    with pytest.raises(FeedUnavailable):
        await feed.open()
    assert scheduler.jobs == {}
    assert not feed.running


def test_factory_builds_feed_with_network_price() -> None:
    factory = SimulatedFeedFactory(
        scheduler=DummyScheduler(),
        native_prices_usd={Network.BNB: 600.0, Network.SOLANA: 150.0},
        probability=0.5,
        interval_seconds=9,
    )
    feed = factory(Network.SOLANA, "Mint", Decimal("3"))

    assert isinstance(feed, SimulatedPurchaseFeed)
    assert feed.native_price_usd == Decimal("150.0")
    assert feed.min_usd == Decimal("3")
    assert feed.interval_seconds == 9
    assert feed.probability == 0.5


class RpcResponse:
    def __init__(self, payload) -> None:
        self.payload = payload

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc) -> None:
        return None

    def raise_for_status(self) -> None:
        return None

    async def json(self, content_type=None):
        return self.payload


class RpcSession:
    def __init__(self, payload) -> None:
        self.payload = payload
        self.requests = []

    def post(self, url, json=None, timeout=None):
        self.requests.append((url, json))
        return RpcResponse(self.payload)


RPC_URLS = {Network.BNB: "https://bsc.test", Network.SOLANA: "https://sol.test"}


@pytest.mark.asyncio
@pytest.mark.parametrize(
    ("network", "result", "method", "expected"),
    [
        (Network.BNB, "0x1b4", "eth_blockNumber", 436),
        (Network.SOLANA, 289_000_123, "getSlot", 289_000_123),
    ],
)
async def test_rpc_latest_block(network, result, method, expected) -> None:
    session = RpcSession({"jsonrpc": "2.0", "id": 1, "result": result})
    rpc = ChainRpcClient(session, RPC_URLS)

    assert await rpc.latest_block(network) == expected
    url, body = session.requests[0]
    assert url == RPC_URLS[network]
    assert body["method"] == method


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "payload",
    [
        {"jsonrpc": "2.0", "id": 1, "error": {"code": -32000, "message": "limit"}},
        {"jsonrpc": "2.0", "id": 1, "result": "not-a-number"},
        ["unexpected"],
    ],
)
async def test_rpc_errors_are_reported(payload) -> None:
    rpc = ChainRpcClient(RpcSession(payload), RPC_URLS)

    with pytest.raises(RpcError):
        await rpc.latest_block(Network.BNB)
