"""Full replay of derived state from the chain event log.

Derived tables are wiped and every logged event is applied again in canonical
order. Since application is a pure fold over the event sequence, the result
equals the state the pipeline built incrementally; this is how derived state is
rebuilt after applier logic changes, without refetching anything from the chain.
"""

import structlog
from sqlalchemy import delete

from eventtracker.core.config import Settings
from eventtracker.models.market import Offer, SaleListing
from eventtracker.models.nft import NFT
from eventtracker.models.project import Project
from eventtracker.models.randao import RandaoCommit, RandaoRound
from eventtracker.services.ingestion.applier import StateApplier
from eventtracker.services.ingestion.checkpoint import CheckpointStore
from eventtracker.services.ingestion.events import (
    PAYLOAD_MODELS,
    BlockHeader,
    ChainEvent,
    EventIdentity,
    EventKind,
)
from eventtracker.services.statistics.aggregator import MarketStatisticsAggregator
from eventtracker.uow import UnitOfWork

logger = structlog.get_logger()

# Children before parents
DERIVED_MODELS = (SaleListing, Offer, NFT, Project, RandaoCommit, RandaoRound)


async def rebuild_from_event_log(uow: UnitOfWork, settings: Settings) -> int:
    """Rebuild every derived table from the logged events.

    Runs inside the caller's unit of work, so the rebuild commits or rolls
    back as a whole.

    Returns:
        Number of events replayed
    """
    records = await uow.chain_events.get_canonical()
    headers = {
        block.block_hash: BlockHeader(
            number=block.block_number,
            hash=block.block_hash,
            parent_hash=block.parent_hash,
            timestamp=block.timestamp,
        )
        for block in await uow.blocks.get_all()
    }

    events = []
    for record in records:
        kind = EventKind(record.kind)
        event = ChainEvent(
            identity=EventIdentity(
                record.block_number, record.block_hash, record.transaction_index, record.log_index
            ),
            kind=kind,
            payload=PAYLOAD_MODELS[kind].model_validate(record.payload),
        )
        header = headers.get(record.block_hash) or BlockHeader(
            number=record.block_number,
            hash=record.block_hash,
            parent_hash="",
            timestamp=record.block_timestamp,
        )
        events.append((event, header))

    logger.info("replay.started", events=len(events), blocks=len(headers))

    for model in DERIVED_MODELS:
        await uow.session.execute(delete(model))
    await uow.statistics.delete_all()
    await uow.chain_events.delete_all()
    uow.session.expunge_all()

    applier = StateApplier(uow, settings)
    rejected = 0
    for event, header in events:
        delta = await applier.apply(event, header)
        if delta is not None and not delta.applied:
            rejected += 1

    checkpoint = await CheckpointStore(uow).load()
    as_of = None
    if checkpoint is not None:
        as_of = headers.get(checkpoint.block_hash)
    await MarketStatisticsAggregator(uow).recompute_all(as_of)

    logger.info("replay.completed", events=len(events), rejected=rejected)
    return len(events)
