"""Ingestion pipeline tests against an in-memory chain.

Tests cover:
- Confirmation depth and batched catch-up
- Reorg detection, rollback to the common ancestor and re-application
- Reorged state equals state built directly from the final chain, across
  confirmation depths and safety margins
- Unrecoverable reorgs and fatal errors halting ingestion until resync
- Duplicate log delivery and transient source failures
"""

import asyncio
from dataclasses import replace

import pytest
import pytest_asyncio
from eth_utils import keccak

from eventtracker.core.database import create_schema, setup_db_session
from eventtracker.models.market import ListingStatus, OfferStatus
from eventtracker.models.statistics import PLATFORM_SCOPE
from eventtracker.services.alerts import HALT, INTEGRITY
from eventtracker.services.exceptions import (
    BlockNotFoundError,
    IngestionHaltedError,
    ReorgUnrecoverableError,
    SchemaMismatchError,
    TransientError,
    UnexpectedIngestionError,
    UnknownEventError,
)
from eventtracker.services.ingestion.checkpoint import Checkpoint, CheckpointStore
from eventtracker.services.ingestion.decoder import EventDecoder
from eventtracker.services.ingestion.events import INT64_MAX
from eventtracker.services.ingestion.pipeline import IngestionPipeline
from eventtracker.uow import create_uow_factory
from fakes import (
    ALICE,
    BOB,
    CAROL,
    PRICE,
    FakeChain,
    encode_log,
    nft_minted,
    offer_accepted,
    offer_made,
    offer_rejected,
    project_created,
    randao_committed,
    randao_revealed,
    sale_filled,
    sale_listed,
    secret,
    snapshot_state,
    transfer,
)

# Chain A, blocks 1..10
HISTORY = {
    1: [
        project_created(0, editions=100),
        randao_committed(1, ALICE, secret(1)),
        randao_committed(1, BOB, secret(2)),
        randao_committed(1, CAROL, secret(4)),
    ],
    2: [
        randao_revealed(1, ALICE, secret(1)),
        randao_revealed(1, BOB, secret(2)),
        randao_revealed(1, CAROL, secret(4)),
    ],
    3: [nft_minted(0), nft_minted(1)],
    4: [nft_minted(2, to=BOB), sale_listed(0, 0, ALICE, PRICE)],
    5: [sale_filled(0, BOB, PRICE), offer_made(0, 2, CAROL, 2 * PRICE)],
    6: [transfer(1, ALICE, CAROL)],
    7: [nft_minted(3)],
    8: [nft_minted(4, to=ALICE), sale_listed(1, 1, CAROL, 3 * PRICE)],
    9: [offer_accepted(0, BOB), transfer(2, BOB, CAROL)],
    10: [nft_minted(5, to=BOB)],
}
HISTORY_EVENTS = sum(len(events) for events in HISTORY.values())

# Chain B replaces blocks 8..10; earlier blocks re-include A's events
FORK = {
    8: [nft_minted(4, to=CAROL)],
    9: [sale_listed(2, 3, ALICE, 5 * PRICE)],
    10: [offer_rejected(0)],
}


def mine_blocks(chain: FakeChain, history: dict, first: int, last: int) -> None:
    for number in range(first, last + 1):
        chain.mine(*history.get(number, ()))


def mine_chain_a(chain: FakeChain, confirmation_depth: int) -> None:
    mine_blocks(chain, HISTORY, 0, 10)
    chain.mine_empty(confirmation_depth)


def mine_chain_b(chain: FakeChain, ancestor: int, confirmation_depth: int) -> None:
    """Replace everything above ``ancestor`` with chain B."""
    chain.fork(len(chain.canonical) - (ancestor + 1))
    mine_blocks(chain, {**HISTORY, **FORK}, ancestor + 1, 10)
    chain.mine_empty(confirmation_depth)


async def sync_until_caught_up(pipeline: IngestionPipeline):
    while True:
        result = await pipeline.sync_once()
        if result.caught_up:
            return result


@pytest_asyncio.fixture
async def direct_uow_factory(tmp_path):
    """Second, independent database for building reference state."""
    session_factory = setup_db_session(f"sqlite+aiosqlite:///{tmp_path / 'direct.db'}")
    await create_schema(session_factory.kw["bind"])
    yield create_uow_factory(session_factory)
    await session_factory.kw["bind"].dispose()


async def load_checkpoint(uow_factory) -> Checkpoint | None:
    async with await uow_factory() as uow:
        return await CheckpointStore(uow).load()


async def load_halt(uow_factory) -> dict | None:
    async with await uow_factory() as uow:
        return await CheckpointStore(uow).get_halt()


# Confirmation depth


@pytest.mark.asyncio
async def test_nothing_applied_below_confirmation_depth(chain, pipeline, uow_factory):
    chain.mine(project_created(0))

    result = await pipeline.sync_once()

    assert result.head == 0
    assert result.applied_blocks == 0
    assert result.checkpoint is None
    assert await load_checkpoint(uow_factory) is None


@pytest.mark.asyncio
async def test_blocks_apply_once_confirmed(chain, pipeline, uow_factory):
    chain.mine(project_created(0))
    chain.mine(nft_minted(0))
    chain.mine(nft_minted(1))

    result = await pipeline.sync_once()

    assert result.checkpoint == Checkpoint(0, chain.canonical[0].hash)
    async with await uow_factory() as uow:
        assert await uow.projects.get_by_id(0) is not None
        assert await uow.nfts.get_by_token_id(0) is None

    chain.mine_empty(2)
    result = await pipeline.sync_once()

    assert result.applied_blocks == 2
    assert result.applied_events == 2
    assert result.checkpoint == Checkpoint(2, chain.canonical[2].hash)
    async with await uow_factory() as uow:
        assert (await uow.projects.get_by_id(0)).editions == 98
        assert await uow.blocks.get_by_number(3) is None


@pytest.mark.asyncio
async def test_catch_up_in_batches(chain, uow_factory, settings):
    settings = settings.model_copy(update={"max_blocks_per_sync": 3})
    pipeline = IngestionPipeline(chain, uow_factory, settings, sleep=lambda _: asyncio.sleep(0))
    mine_chain_a(chain, settings.confirmation_depth)

    first = await pipeline.sync_once()
    assert first.applied_blocks == 3
    assert first.caught_up is False

    last = await sync_until_caught_up(pipeline)

    assert last.checkpoint == Checkpoint(10, chain.canonical[10].hash)
    async with await uow_factory() as uow:
        assert await uow.chain_events.count() == HISTORY_EVENTS


@pytest.mark.asyncio
async def test_caught_up_sync_is_noop(chain, pipeline, uow_factory):
    mine_chain_a(chain, 2)
    await pipeline.sync_once()
    before = await snapshot_state(uow_factory)

    result = await pipeline.sync_once()

    assert result.applied_blocks == 0
    assert result.reverted_blocks == 0
    assert await snapshot_state(uow_factory) == before


@pytest.mark.asyncio
async def test_statistics_follow_market_events(chain, pipeline, uow_factory):
    mine_chain_a(chain, 2)

    result = await pipeline.sync_once()

    assert result.applied_events == HISTORY_EVENTS
    assert result.rejected_events == 0
    async with await uow_factory() as uow:
        stats = await uow.statistics.get(PLATFORM_SCOPE)
    assert stats.sale_count == 2
    assert stats.volume_total == 3 * PRICE
    assert stats.median_price == 3 * PRICE // 2
    assert stats.floor_price == PRICE
    assert stats.open_listing_count == 1
    assert stats.as_of_block == 9


# Reorgs


@pytest.mark.asyncio
async def test_reorg_rolls_back_to_common_ancestor(chain, pipeline, uow_factory):
    mine_chain_a(chain, 2)
    await pipeline.sync_once()
    abandoned = chain.canonical[8].hash

    mine_chain_b(chain, ancestor=7, confirmation_depth=2)
    result = await pipeline.sync_once()

    assert result.reverted_blocks == 3
    assert result.applied_blocks == 3
    assert result.checkpoint == Checkpoint(10, chain.canonical[10].hash)
    async with await uow_factory() as uow:
        assert (await uow.nfts.get_by_token_id(4)).owner == CAROL
        assert await uow.nfts.get_by_token_id(5) is None
        assert (await uow.nfts.get_by_token_id(2)).owner == BOB
        assert await uow.market.get_listing(1) is None
        assert (await uow.market.get_listing(2)).status == ListingStatus.OPEN
        assert (await uow.market.get_offer(0)).status == OfferStatus.REJECTED
        assert await uow.chain_events.get_by_block_hash(abandoned) == []
        assert (await uow.blocks.get_by_number(8)).block_hash == chain.canonical[8].hash
        stats = await uow.statistics.get(PLATFORM_SCOPE)

    assert stats.sale_count == 1
    assert stats.volume_total == PRICE
    assert stats.open_offer_count == 0
    assert stats.best_offer is None


@pytest.mark.asyncio
async def test_reorg_at_checkpoint_height_without_new_blocks(chain, pipeline, uow_factory):
    """A fork of equal height is detected even though no new block is confirmed."""
    mine_chain_a(chain, 2)
    await pipeline.sync_once()

    chain.fork(3)
    mine_blocks(chain, FORK, 10, 10)
    chain.mine_empty(2)
    result = await pipeline.sync_once()

    assert result.reverted_blocks == 1
    assert result.applied_blocks == 1
    assert result.checkpoint == Checkpoint(10, chain.canonical[10].hash)
    async with await uow_factory() as uow:
        assert await uow.nfts.get_by_token_id(5) is None


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "confirmation_depth, safety_margin, ancestor",
    [
        (0, 3, 7),
        (2, 4, 7),
        (5, 1, 7),
        (3, 6, 4),
        (1, 9, 1),
    ],
)
async def test_reorged_state_equals_direct_application(
    uow_factory, direct_uow_factory, settings, confirmation_depth, safety_margin, ancestor
):
    settings = settings.model_copy(
        update={"confirmation_depth": confirmation_depth, "reorg_safety_margin": safety_margin}
    )

    reorged = FakeChain()
    pipeline = IngestionPipeline(reorged, uow_factory, settings, sleep=lambda _: asyncio.sleep(0))
    mine_chain_a(reorged, confirmation_depth)
    await sync_until_caught_up(pipeline)
    mine_chain_b(reorged, ancestor, confirmation_depth)
    result = await sync_until_caught_up(pipeline)

    direct = FakeChain()
    mine_chain_a(direct, confirmation_depth)
    mine_chain_b(direct, ancestor, confirmation_depth)
    direct_result = await sync_until_caught_up(
        IngestionPipeline(direct, direct_uow_factory, settings, sleep=lambda _: asyncio.sleep(0))
    )

    assert result.reverted_blocks == 10 - ancestor
    assert result.checkpoint == direct_result.checkpoint
    assert await snapshot_state(uow_factory) == await snapshot_state(direct_uow_factory)


@pytest.mark.asyncio
async def test_reorg_beyond_lookback_halts(chain, pipeline, uow_factory):
    mine_chain_a(chain, 2)
    await pipeline.sync_once()
    before = await snapshot_state(uow_factory)

    # Diverges at block 2: 8 blocks deep, lookback is 2 + 4
    mine_chain_b(chain, ancestor=2, confirmation_depth=2)
    with pytest.raises(ReorgUnrecoverableError):
        await pipeline.sync_once()

    halt = await load_halt(uow_factory)
    assert halt["error_type"] == "ReorgUnrecoverableError"
    assert halt["block_number"] == 10
    assert await snapshot_state(uow_factory) == before

    with pytest.raises(IngestionHaltedError):
        await pipeline.sync_once()

    async with await uow_factory() as uow:
        alerts = await uow.alerts.get_recent(category=HALT)
    assert len(alerts) == 1
    assert "No common ancestor" in alerts[0].reason


@pytest.mark.asyncio
async def test_resync_clears_halt_and_recovers(chain, pipeline, uow_factory):
    mine_chain_a(chain, 2)
    await pipeline.sync_once()
    mine_chain_b(chain, ancestor=2, confirmation_depth=2)
    with pytest.raises(ReorgUnrecoverableError):
        await pipeline.sync_once()

    checkpoint = await pipeline.resync(block_number=5)

    assert checkpoint.block_number == 5
    assert await load_halt(uow_factory) is None

    # Block 5 of chain A is still 3 blocks above the real ancestor
    result = await pipeline.sync_once()

    assert result.reverted_blocks == 3
    assert result.checkpoint == Checkpoint(10, chain.canonical[10].hash)
    async with await uow_factory() as uow:
        assert (await uow.nfts.get_by_token_id(4)).owner == CAROL


@pytest.mark.asyncio
async def test_resync_without_block_rebuilds_from_start(chain, pipeline, uow_factory):
    mine_chain_a(chain, 2)
    await pipeline.sync_once()

    assert await pipeline.resync() is None
    async with await uow_factory() as uow:
        assert await uow.chain_events.count() == 0
        assert await uow.projects.get_all() == []

    result = await pipeline.sync_once()

    assert result.applied_events == HISTORY_EVENTS
    assert result.checkpoint == Checkpoint(10, chain.canonical[10].hash)


@pytest.mark.asyncio
async def test_resync_to_unknown_block_is_refused(chain, pipeline):
    mine_chain_a(chain, 2)
    await pipeline.sync_once()

    with pytest.raises(ValueError, match="not in the applied lineage"):
        await pipeline.resync(block_number=50)


# Fatal errors


@pytest.mark.asyncio
async def test_schema_mismatch_halts_after_last_good_block(chain, pipeline, uow_factory):
    chain.mine(project_created(0))
    bad = chain.mine(nft_minted(0))
    chain.logs[bad.hash] = [replace(chain.logs[bad.hash][0], data=b"")]
    chain.mine_empty(2)

    with pytest.raises(SchemaMismatchError):
        await pipeline.sync_once()

    assert await load_checkpoint(uow_factory) == Checkpoint(0, chain.canonical[0].hash)
    halt = await load_halt(uow_factory)
    assert halt["error_type"] == "SchemaMismatchError"
    with pytest.raises(IngestionHaltedError):
        await pipeline.sync_once()


@pytest.mark.asyncio
async def test_unknown_events_are_skipped(chain, pipeline, uow_factory):
    block = chain.mine(project_created(0))
    foreign = replace(
        encode_log(project_created(1), block, log_index=1, transaction_index=1),
        topics=(keccak(text="Approval(address,address,uint256)"),),
        data=b"",
    )
    chain.logs[block.hash].append(foreign)
    chain.mine_empty(2)

    result = await pipeline.sync_once()

    assert result.skipped_logs == 1
    assert result.applied_events == 1


@pytest.mark.asyncio
async def test_unknown_events_halt_when_configured(chain, uow_factory, settings):
    settings = settings.model_copy(update={"ignore_unknown_events": False})
    pipeline = IngestionPipeline(chain, uow_factory, settings, sleep=lambda _: asyncio.sleep(0))
    block = chain.mine()
    chain.logs[block.hash] = [
        replace(
            encode_log(project_created(0), block),
            topics=(keccak(text="Approval(address,address,uint256)"),),
            data=b"",
        )
    ]
    chain.mine_empty(2)

    with pytest.raises(UnknownEventError):
        await pipeline.sync_once()

    assert (await load_halt(uow_factory))["error_type"] == "UnknownEventError"


@pytest.mark.asyncio
async def test_log_from_other_block_is_transient(chain, pipeline, uow_factory):
    first = chain.mine(project_created(0))
    second = chain.mine()
    chain.logs[second.hash] = list(chain.logs[first.hash])
    chain.mine_empty(2)

    with pytest.raises(TransientError):
        await pipeline.sync_once()

    assert await load_halt(uow_factory) is None


# Delivery and retries


@pytest.mark.asyncio
async def test_duplicate_delivery_is_applied_once(chain, pipeline, uow_factory):
    chain.duplicate_logs = True
    chain.mine(project_created(0))
    chain.mine(nft_minted(0), nft_minted(1))
    chain.mine_empty(2)

    result = await pipeline.sync_once()

    assert result.applied_events == 3
    assert result.rejected_events == 0
    async with await uow_factory() as uow:
        assert (await uow.projects.get_by_id(0)).editions == 98
        assert await uow.chain_events.count() == 3


@pytest.mark.asyncio
async def test_transient_failures_are_retried(chain, pipeline, uow_factory, sleeps):
    mine_chain_a(chain, 2)
    chain.fail_next("get_logs", 2)
    chain.fail_next("get_head_number")

    result = await pipeline.sync_once()

    assert result.checkpoint.block_number == 10
    assert sleeps == [0, 0, 0]
    assert chain.calls["get_logs"] == 11 + 2


@pytest.mark.asyncio
async def test_retry_backoff_is_capped(chain, uow_factory, settings, sleeps):
    settings = settings.model_copy(update={"retry_base_seconds": 1.0, "retry_max_seconds": 4.0})

    async def record_sleep(delay: float) -> None:
        sleeps.append(delay)

    pipeline = IngestionPipeline(chain, uow_factory, settings, sleep=record_sleep)
    chain.mine_empty(3)
    chain.fail_next("get_head_number", 5)

    await pipeline.sync_once()

    assert sleeps == [1.0, 2.0, 4.0, 4.0, 4.0]


@pytest.mark.asyncio
async def test_block_not_found_restarts_step_without_halting(
    chain, pipeline, uow_factory, monkeypatch
):
    chain.mine_empty(3)

    async def missing(block_number: int):
        raise BlockNotFoundError(f"Block {block_number} not found")

    monkeypatch.setattr(chain, "get_block_by_number", missing)

    with pytest.raises(BlockNotFoundError):
        await pipeline.sync_once()

    assert await load_halt(uow_factory) is None


@pytest.mark.asyncio
async def test_reorg_during_log_prefetch_restarts_step(
    chain, pipeline, uow_factory, monkeypatch
):
    chain.mine(project_created(0))
    chain.mine(nft_minted(0))
    chain.mine_empty(2)
    fetch_logs = chain.get_logs
    reorged = False

    async def reorg_on_first_fetch(block_hash: str):
        nonlocal reorged
        if not reorged:
            reorged = True
            chain.fork(3)
            chain.prune()
            chain.mine(nft_minted(0, to=BOB))
            chain.mine_empty(2)
        return await fetch_logs(block_hash)

    monkeypatch.setattr(chain, "get_logs", reorg_on_first_fetch)

    with pytest.raises(BlockNotFoundError):
        await pipeline.sync_once()

    # The orphaned hash is not retried in place
    assert chain.calls["get_logs"] == 2
    assert await load_checkpoint(uow_factory) is None
    assert await load_halt(uow_factory) is None

    result = await pipeline.sync_once()

    assert result.checkpoint == Checkpoint(1, chain.canonical[1].hash)
    async with await uow_factory() as uow:
        assert (await uow.nfts.get_by_token_id(0)).owner == BOB


def test_backoff_stays_finite_during_long_outages(chain, settings):
    settings = settings.model_copy(update={"retry_base_seconds": 1.0, "retry_max_seconds": 60.0})
    pipeline = IngestionPipeline(chain, None, settings)

    assert pipeline._backoff(5000) == 60.0
    assert pipeline._backoff(10**9) == 60.0


@pytest.mark.asyncio
async def test_retries_continue_past_float_exponent_range(chain, pipeline, sleeps):
    chain.mine_empty(3)
    chain.fail_next("get_head_number", 1100)

    result = await pipeline.sync_once()

    assert result.head == 2
    assert len(sleeps) == 1100


# Unexpected failures


@pytest.mark.asyncio
async def test_unexpected_error_halts_with_alert(chain, uow_factory, settings):
    class BrokenDecoder(EventDecoder):
        def decode(self, log):
            raise RuntimeError("decoder bug")

    pipeline = IngestionPipeline(
        chain, uow_factory, settings, decoder=BrokenDecoder(), sleep=lambda _: asyncio.sleep(0)
    )
    chain.mine(project_created(0))
    chain.mine_empty(2)

    with pytest.raises(UnexpectedIngestionError, match="RuntimeError: decoder bug"):
        await pipeline.sync_once()

    halt = await load_halt(uow_factory)
    assert halt["error_type"] == "UnexpectedIngestionError"
    async with await uow_factory() as uow:
        alerts = await uow.alerts.get_recent(category=HALT)
    assert len(alerts) == 1
    with pytest.raises(IngestionHaltedError):
        await pipeline.sync_once()


# Values outside column range


@pytest.mark.asyncio
async def test_far_future_opening_time_is_stored_as_never(chain, pipeline, uow_factory):
    chain.mine(project_created(0, opening_time=2**64))
    chain.mine(nft_minted(0))
    chain.mine_empty(2)

    result = await pipeline.sync_once()

    assert result.checkpoint.block_number == 1
    assert result.rejected_events == 1
    async with await uow_factory() as uow:
        assert (await uow.projects.get_by_id(0)).opening_time == INT64_MAX
        assert await uow.nfts.get_by_token_id(0) is None


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "event",
    [
        nft_minted(2**64),
        nft_minted(0, project_id=2**40),
        sale_listed(2**32, 0),
        randao_committed(2**255, ALICE, secret(1)),
        project_created(1, editions=2**64),
        project_created(1, name="x" * 300),
    ],
)
async def test_unstorable_values_are_alerted_and_skipped(chain, pipeline, uow_factory, event):
    chain.mine(project_created(0))
    chain.mine(event, nft_minted(0, to=BOB))
    chain.mine_empty(2)

    result = await pipeline.sync_once()

    assert result.checkpoint.block_number == 1
    assert result.applied_events == 2
    assert result.rejected_events == 1
    assert await load_halt(uow_factory) is None
    async with await uow_factory() as uow:
        alerts = await uow.alerts.get_recent(category=INTEGRITY)
        assert (await uow.nfts.get_by_token_id(0)).owner == BOB
    assert len(alerts) == 1
    assert alerts[0].kind == event[0]


@pytest.mark.asyncio
async def test_run_retries_and_stops(chain, uow_factory, settings):
    stop = asyncio.Event()
    delays = []

    async def sleep(delay: float) -> None:
        delays.append(delay)
        stop.set()

    pipeline = IngestionPipeline(chain, uow_factory, settings, sleep=sleep)
    mine_chain_a(chain, 2)
    chain.fail_next("get_block_by_number")

    await pipeline.run(stop)

    assert delays == [0, settings.poll_interval_seconds]
    assert await load_checkpoint(uow_factory) == Checkpoint(10, chain.canonical[10].hash)
