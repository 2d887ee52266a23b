"""Ingestion pipeline: confirmed blocks in, derived state out.

Each sync step:
1. Reads the checkpoint and the chain head; only blocks at least
   ``confirmation_depth`` below the head are considered.
2. Walks parent hashes back from the target block to the checkpoint height.
   If the header there is the checkpoint block, the new blocks extend the
   applied chain. Otherwise a reorg happened: the walk continues along the
   new chain, comparing against the stored lineage, until the common
   ancestor is found (at most ``max_reorg_lookback`` blocks deep). Every
   block above the ancestor is rolled back in one transaction.
3. Prefetches the logs of the new blocks concurrently, then applies blocks
   strictly in order, one transaction per block (events, lineage row,
   checkpoint and market statistics commit together).

Fatal errors persist a halt marker and raise an alert; the pipeline refuses to
run again until an operator resyncs.
"""

import asyncio
from collections import OrderedDict
from collections.abc import Awaitable, Callable
from dataclasses import dataclass

import structlog
from sqlalchemy.exc import OperationalError

from eventtracker.core.config import Settings
from eventtracker.models.block import AppliedBlock
from eventtracker.services.alerts import raise_halt_alert
from eventtracker.services.exceptions import (
    BlockNotFoundError,
    IngestionHaltedError,
    PermanentError,
    ReorgUnrecoverableError,
    TransientError,
    UnexpectedIngestionError,
    UnknownEventError,
)
from eventtracker.services.ingestion.applier import StateApplier
from eventtracker.services.ingestion.checkpoint import Checkpoint, CheckpointStore
from eventtracker.services.ingestion.decoder import EventDecoder
from eventtracker.services.ingestion.events import BlockHeader, ChainEvent, RawLog, UnknownKind
from eventtracker.services.ingestion.source import ChainLogSource
from eventtracker.services.statistics.aggregator import MarketStatisticsAggregator
from eventtracker.uow import UnitOfWork

logger = structlog.get_logger()

MAX_BACKOFF_EXPONENT = 32


@dataclass
class SyncResult:
    """Outcome of one sync step."""

    head: int | None = None
    target: int | None = None
    applied_blocks: int = 0
    reverted_blocks: int = 0
    applied_events: int = 0
    rejected_events: int = 0
    skipped_logs: int = 0
    checkpoint: Checkpoint | None = None
    caught_up: bool = True


class HeaderWindow:
    """Bounded cache of recently seen headers, keyed by hash.

    Headers are immutable per hash, so a cached header is valid as long as it
    is kept; the window only bounds memory.
    """

    def __init__(self, capacity: int):
        self.capacity = max(capacity, 1)
        self._headers: OrderedDict[str, BlockHeader] = OrderedDict()

    def add(self, header: BlockHeader) -> None:
        self._headers[header.hash] = header
        self._headers.move_to_end(header.hash)
        while len(self._headers) > self.capacity:
            self._headers.popitem(last=False)

    def get(self, block_hash: str) -> BlockHeader | None:
        return self._headers.get(block_hash)

    def __contains__(self, block_hash: str) -> bool:
        return block_hash in self._headers

    def __len__(self) -> int:
        return len(self._headers)


class IngestionPipeline:
    """Single-writer pipeline keeping derived state in sync with the chain."""

    def __init__(
        self,
        source: ChainLogSource,
        uow_factory: Callable[[], Awaitable[UnitOfWork]],
        settings: Settings,
        decoder: EventDecoder | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        """Initialize pipeline.

        Args:
            source: Chain Log Source to read headers and logs from
            uow_factory: Factory producing UnitOfWork instances
            settings: Application settings (depths, batch size, retry policy)
            decoder: Log decoder (default: bundled contract ABI)
            sleep: Awaitable sleep, replaceable in tests
        """
        self.source = source
        self.uow_factory = uow_factory
        self.settings = settings
        self.decoder = decoder or EventDecoder()
        self.window = HeaderWindow(settings.max_reorg_lookback)
        self._sleep = sleep

    async def run(self, stop_event: asyncio.Event | None = None) -> None:
        """Follow the chain until stopped.

        Transient failures are retried with capped exponential backoff without
        limit. Fatal errors propagate after the halt was recorded.
        """
        logger.info(
            "pipeline.started",
            confirmation_depth=self.settings.confirmation_depth,
            max_reorg_lookback=self.settings.max_reorg_lookback,
        )
        attempt = 0
        while stop_event is None or not stop_event.is_set():
            try:
                result = await self.sync_once()
            except TransientError as e:
                delay = self._backoff(attempt)
                attempt += 1
                logger.warning(
                    "pipeline.sync_failed",
                    error=str(e),
                    error_type=type(e).__name__,
                    attempt=attempt,
                    retry_in=delay,
                )
                await self._sleep(delay)
                continue

            attempt = 0
            if result.caught_up:
                await self._sleep(self.settings.poll_interval_seconds)

        logger.info("pipeline.stopped")

    async def sync_once(self) -> SyncResult:
        """Run one sync step.

        Raises:
            IngestionHaltedError: A halt marker is set
            PermanentError: Fatal error; the halt marker was persisted.
                Errors outside the service hierarchy are wrapped in
                ``UnexpectedIngestionError``
            TransientError: Chain changed under the step; safe to retry
            OperationalError: Database unreachable; nothing was persisted
        """
        try:
            return await self._sync()
        except (IngestionHaltedError, TransientError, OperationalError):
            raise
        except PermanentError as e:
            await self._halt(e)
            raise
        except Exception as e:
            logger.exception("pipeline.unexpected_error", error_type=type(e).__name__)
            error = UnexpectedIngestionError(f"{type(e).__name__}: {e}")
            await self._halt(error)
            raise error from e

    async def resync(self, block_number: int | None = None) -> Checkpoint | None:
        """Operator recovery: clear the halt marker and roll state back.

        Rolls derived state back to ``block_number`` (default: before the
        start block, i.e. empty state) without the lookback limit, so the next
        sync re-applies everything above it.

        Returns:
            The checkpoint after the rollback
        """
        floor = self.settings.start_block - 1
        target = floor if block_number is None else block_number

        async with await self.uow_factory() as uow:
            store = CheckpointStore(uow)
            checkpoint = await store.load()
            if target > floor and await uow.blocks.get_by_number(target) is None:
                raise ValueError(f"Block {target} is not in the applied lineage")
            cleared = await store.clear_halt()

        reverted = 0
        if checkpoint is not None and checkpoint.block_number > target:
            reverted = await self._rollback(target, enforce_lookback=False)

        async with await self.uow_factory() as uow:
            checkpoint = await CheckpointStore(uow).load()

        logger.warning(
            "pipeline.resynced",
            halt_cleared=cleared,
            reverted_blocks=reverted,
            checkpoint=checkpoint.block_number if checkpoint else None,
        )
        return checkpoint

    async def _sync(self) -> SyncResult:
        async with await self.uow_factory() as uow:
            store = CheckpointStore(uow)
            halt = await store.get_halt()
            checkpoint = await store.load()

        if halt is not None:
            raise IngestionHaltedError(f"Ingestion is halted: {halt.get('reason')}")

        head = await self._retry(self.source.get_head_number)
        frontier = head - self.settings.confirmation_depth
        result = SyncResult(head=head, checkpoint=checkpoint)

        floor = self.settings.start_block - 1 if checkpoint is None else checkpoint.block_number
        target = min(frontier, floor + self.settings.max_blocks_per_sync)
        result.target = target

        # Frontier at or behind the checkpoint: nothing confirmed to apply yet
        if target < floor or (checkpoint is None and target == floor):
            return result

        tip = await self._retry(self.source.get_block_by_number, target)
        self.window.add(tip)
        new_headers, at_floor = await self._walk_back(tip, floor)

        if checkpoint is not None and at_floor is not None and at_floor.hash != checkpoint.block_hash:
            ancestor, fork_headers = await self._find_common_ancestor(at_floor, checkpoint)
            new_headers.extend(fork_headers)
            result.reverted_blocks = await self._rollback(ancestor)

        segment = list(reversed(new_headers))
        await self._apply_segment(segment, result)

        result.caught_up = target >= frontier
        return result

    async def _walk_back(
        self, tip: BlockHeader, floor_number: int
    ) -> tuple[list[BlockHeader], BlockHeader | None]:
        """Collect headers from ``tip`` down to ``floor_number + 1``, newest first.

        Returns:
            The collected headers and the header at ``floor_number`` (None
            when the floor is below the start block)
        """
        headers: list[BlockHeader] = []
        header = tip
        while header.number > floor_number:
            headers.append(header)
            if header.number - 1 < self.settings.start_block:
                return headers, None
            header = await self._parent_of(header)
        return headers, header

    async def _find_common_ancestor(
        self, header: BlockHeader, checkpoint: Checkpoint
    ) -> tuple[int, list[BlockHeader]]:
        """Walk the new chain back from the checkpoint height until it meets the lineage.

        Args:
            header: New chain's header at the checkpoint height (mismatching)
            checkpoint: Current checkpoint

        Returns:
            Common ancestor height and the new chain's headers above it, at or
            below the checkpoint height, newest first

        Raises:
            ReorgUnrecoverableError: No ancestor within ``max_reorg_lookback``
        """
        limit = self.settings.max_reorg_lookback
        async with await self.uow_factory() as uow:
            lineage = {
                block.block_number: block
                for block in await uow.blocks.get_after(checkpoint.block_number - limit - 1)
            }

        fork_headers: list[BlockHeader] = []
        while True:
            depth = checkpoint.block_number - header.number + 1
            if depth > limit:
                logger.error(
                    "pipeline.reorg_unrecoverable",
                    checkpoint=checkpoint.block_number,
                    max_reorg_lookback=limit,
                )
                raise ReorgUnrecoverableError(
                    f"No common ancestor within {limit} blocks of checkpoint "
                    f"{checkpoint.block_number}"
                )
            fork_headers.append(header)

            parent_number = header.number - 1
            if parent_number < self.settings.start_block:
                ancestor = parent_number
                break
            stored = lineage.get(parent_number)
            if stored is None:
                raise ReorgUnrecoverableError(
                    f"Applied lineage has no block {parent_number} to compare against"
                )
            if stored.block_hash == header.parent_hash:
                ancestor = parent_number
                break
            header = await self._parent_of(header)

        logger.warning(
            "pipeline.reorg_detected",
            checkpoint=checkpoint.block_number,
            common_ancestor=ancestor,
            depth=checkpoint.block_number - ancestor,
        )
        return ancestor, fork_headers

    async def _rollback(self, ancestor_number: int, enforce_lookback: bool = True) -> int:
        """Revert every applied block above ``ancestor_number`` in one transaction.

        Returns:
            Number of blocks reverted
        """
        async with await self.uow_factory() as uow:
            blocks = await uow.blocks.get_after(ancestor_number)
            if enforce_lookback and len(blocks) > self.settings.max_reorg_lookback:
                raise ReorgUnrecoverableError(
                    f"Rollback of {len(blocks)} blocks exceeds lookback "
                    f"{self.settings.max_reorg_lookback}"
                )

            applier = StateApplier(uow, self.settings)
            reverted_events = 0
            for block in blocks:
                for record in await uow.chain_events.get_by_block_hash(
                    block.block_hash, newest_first=True
                ):
                    await applier.revert(record)
                    reverted_events += 1
                await uow.blocks.delete(block)

            store = CheckpointStore(uow)
            ancestor = await uow.blocks.get_by_number(ancestor_number)
            as_of = None
            if ancestor is None:
                await store.clear()
            else:
                await store.save(Checkpoint(ancestor.block_number, ancestor.block_hash))
                as_of = BlockHeader(
                    number=ancestor.block_number,
                    hash=ancestor.block_hash,
                    parent_hash=ancestor.parent_hash,
                    timestamp=ancestor.timestamp,
                )
            await MarketStatisticsAggregator(uow).recompute_all(as_of)

        logger.warning(
            "pipeline.rolled_back",
            to_block=ancestor_number,
            reverted_blocks=len(blocks),
            reverted_events=reverted_events,
        )
        return len(blocks)

    async def _apply_segment(self, segment: list[BlockHeader], result: SyncResult) -> None:
        if not segment:
            return

        semaphore = asyncio.Semaphore(self.settings.prefetch_concurrency)

        async def prefetch(header: BlockHeader) -> list[RawLog]:
            async with semaphore:
                return await self._retry(self.source.get_logs, header.hash)

        logs_per_block = await asyncio.gather(*(prefetch(header) for header in segment))

        for header, logs in zip(segment, logs_per_block):
            await self._apply_block(header, logs, result)

    async def _apply_block(self, header: BlockHeader, logs: list[RawLog], result: SyncResult) -> None:
        events = self._decode_block(header, logs, result)

        async with await self.uow_factory() as uow:
            store = CheckpointStore(uow)
            checkpoint = await store.load()
            if checkpoint is None:
                if header.number != self.settings.start_block:
                    raise TransientError(
                        f"Block {header.number} is not the start block {self.settings.start_block}"
                    )
            elif (
                checkpoint.block_number != header.number - 1
                or checkpoint.block_hash != header.parent_hash
            ):
                raise TransientError(
                    f"Block {header.number} does not extend checkpoint {checkpoint.block_number}"
                )

            applier = StateApplier(uow, self.settings)
            applied = rejected = 0
            for event in events:
                delta = await applier.apply(event, header)
                if delta is None:
                    continue
                if delta.applied:
                    applied += 1
                else:
                    rejected += 1

            await uow.blocks.add(
                AppliedBlock(
                    block_number=header.number,
                    block_hash=header.hash,
                    parent_hash=header.parent_hash,
                    timestamp=header.timestamp,
                    event_count=len(events),
                )
            )
            new_checkpoint = Checkpoint(header.number, header.hash)
            await store.save(new_checkpoint)

            if applier.touched_projects:
                await MarketStatisticsAggregator(uow).recompute_scopes(
                    applier.touched_projects, as_of=header
                )

        self.window.add(header)
        result.applied_blocks += 1
        result.applied_events += applied
        result.rejected_events += rejected
        result.checkpoint = new_checkpoint

        logger.info(
            "pipeline.block_applied",
            block_number=header.number,
            block_hash=header.hash,
            events=applied,
            rejected=rejected,
        )

    def _decode_block(
        self, header: BlockHeader, logs: list[RawLog], result: SyncResult
    ) -> list[ChainEvent]:
        events = []
        for log in sorted(logs, key=lambda log: (log.transaction_index, log.log_index)):
            if log.block_hash != header.hash:
                raise TransientError(
                    f"Log of block {log.block_hash} returned for block {header.hash}"
                )
            decoded = self.decoder.decode(log)
            if isinstance(decoded, UnknownKind):
                if not self.settings.ignore_unknown_events:
                    raise UnknownEventError(
                        f"Unknown event {decoded.topic0} from {decoded.address} "
                        f"in block {header.number}"
                    )
                logger.debug(
                    "pipeline.unknown_event_skipped",
                    block_number=header.number,
                    log_index=log.log_index,
                    topic0=decoded.topic0,
                )
                result.skipped_logs += 1
                continue
            events.append(decoded)
        return events

    async def _parent_of(self, header: BlockHeader) -> BlockHeader:
        parent = self.window.get(header.parent_hash)
        if parent is None:
            parent = await self._retry(self.source.get_block_by_hash, header.parent_hash)
            self.window.add(parent)
        if parent.number != header.number - 1:
            raise BlockNotFoundError(
                f"Parent {header.parent_hash} of block {header.number} has height {parent.number}"
            )
        return parent

    async def _halt(self, error: PermanentError) -> None:
        async with await self.uow_factory() as uow:
            store = CheckpointStore(uow)
            checkpoint = await store.load()
            block_number = checkpoint.block_number if checkpoint else None
            await store.set_halt(str(error), type(error).__name__, block_number)
            await raise_halt_alert(
                uow,
                str(error),
                block_number=block_number,
                details={"error_type": type(error).__name__},
            )

    def _backoff(self, attempt: int) -> float:
        # Exponent is capped so long outages keep the float finite
        return min(
            self.settings.retry_base_seconds * (2 ** min(attempt, MAX_BACKOFF_EXPONENT)),
            self.settings.retry_max_seconds,
        )

    async def _retry(self, fn, *args):
        """Call a source method, retrying transient failures without limit.

        ``BlockNotFoundError`` is not retried here: a block pinned by hash may
        have been reorged away, so the whole sync step has to start over.
        """
        attempt = 0
        while True:
            try:
                return await fn(*args)
            except BlockNotFoundError:
                raise
            except TransientError as e:
                delay = self._backoff(attempt)
                attempt += 1
                logger.warning(
                    "pipeline.source_retry",
                    call=getattr(fn, "__name__", str(fn)),
                    error=str(e),
                    attempt=attempt,
                    retry_in=delay,
                )
                await self._sleep(delay)
