"""State applier: folds chain events into derived state.

Each event is applied at most once per identity. Application produces a
``StateDelta`` (the before-image of every row it touched) that is stored with
the event in the chain event log, so the event can later be reverted exactly.

Events that violate an invariant the chain should have enforced are not
applied. They are recorded with ``applied=False``, an integrity alert is raised
and processing continues with the next event.
"""

import structlog

from eventtracker.core.config import Settings
from eventtracker.models.chain_event import ChainEventRecord
from eventtracker.models.market import (
    InvalidStateTransition,
    ListingStatus,
    Offer,
    OfferStatus,
    SaleListing,
)
from eventtracker.models.nft import NFT
from eventtracker.models.project import Project
from eventtracker.services.alerts import raise_integrity_alert
from eventtracker.services.exceptions import IntegrityViolation, RandaoProtocolError
from eventtracker.services.ingestion import events as ev
from eventtracker.services.ingestion.delta import DeltaRecorder, StateDelta, restore
from eventtracker.services.ingestion.events import ZERO_ADDRESS, BlockHeader, ChainEvent, EventKind
from eventtracker.services.randomness.engine import RandomnessEngine
from eventtracker.uow import UnitOfWork

logger = structlog.get_logger()


def _same_address(a: str | None, b: str | None) -> bool:
    return a is not None and b is not None and a.lower() == b.lower()


class StateApplier:
    """Applies and reverts events against one unit of work."""

    def __init__(self, uow: UnitOfWork, settings: Settings):
        self.uow = uow
        self.settings = settings
        # Projects whose market state changed since the applier was created
        self.touched_projects: set[int] = set()
        self._handlers = {
            EventKind.PROJECT_CREATED: self._project_created,
            EventKind.PROJECT_UPDATED: self._project_updated,
            EventKind.NFT_MINTED: self._nft_minted,
            EventKind.NFT_REVEALED: self._nft_revealed,
            EventKind.TRANSFER: self._transfer,
            EventKind.SALE_LISTED: self._sale_listed,
            EventKind.SALE_CANCELLED: self._sale_cancelled,
            EventKind.SALE_FILLED: self._sale_filled,
            EventKind.SALE_EXPIRED: self._sale_expired,
            EventKind.OFFER_MADE: self._offer_made,
            EventKind.OFFER_CANCELLED: self._offer_cancelled,
            EventKind.OFFER_ACCEPTED: self._offer_accepted,
            EventKind.OFFER_REJECTED: self._offer_rejected,
            EventKind.RANDAO_COMMITTED: self._randao_committed,
            EventKind.RANDAO_REVEALED: self._randao_revealed,
        }

    async def apply(self, event: ChainEvent, block: BlockHeader) -> StateDelta | None:
        """Apply one event of a canonical block.

        Args:
            event: Decoded event
            block: Header of the block the event belongs to

        Returns:
            The recorded delta, or None if the identity was already applied
        """
        if await self.uow.chain_events.exists(event.identity):
            logger.debug(
                "applier.duplicate_event",
                kind=event.kind.value,
                block_number=event.identity.block_number,
                log_index=event.identity.log_index,
            )
            return None

        recorder = DeltaRecorder(self.uow.session)
        handler = self._handlers[event.kind]
        reason = None
        try:
            problems = event.payload.storage_violations()
            if problems:
                raise IntegrityViolation(f"{event.kind.value} out of range: {'; '.join(problems)}")
            await handler(event.payload, block, recorder)
        except (IntegrityViolation, RandaoProtocolError) as e:
            await recorder.discard()
            reason = str(e)
            await raise_integrity_alert(
                self.uow,
                event.identity,
                event.kind.value,
                reason,
                details={"error_type": type(e).__name__},
            )

        identity = event.identity
        delta = StateDelta(
            block_number=identity.block_number,
            block_hash=identity.block_hash,
            transaction_index=identity.transaction_index,
            log_index=identity.log_index,
            kind=event.kind.value,
            applied=reason is None,
            reason=reason,
            changes=recorder.changes,
        )
        await self.uow.chain_events.add(
            ChainEventRecord(
                block_number=identity.block_number,
                block_hash=identity.block_hash,
                transaction_index=identity.transaction_index,
                log_index=identity.log_index,
                block_timestamp=block.timestamp,
                kind=event.kind.value,
                payload=event.payload.model_dump(mode="json"),
                applied=delta.applied,
                rejection_reason=reason[:1000] if reason else None,
                delta=[change.model_dump(mode="json") for change in delta.changes],
            )
        )

        if delta.applied:
            logger.debug(
                "applier.event_applied",
                kind=event.kind.value,
                block_number=identity.block_number,
                log_index=identity.log_index,
                changes=len(delta.changes),
            )
        return delta

    async def revert(self, record: ChainEventRecord) -> StateDelta:
        """Undo an applied event and drop it from the log.

        Restores every row the event touched to its before-image. Events must
        be reverted in reverse application order.
        """
        delta = StateDelta.from_record(record)
        await restore(self.uow.session, delta.changes)
        await self.uow.chain_events.delete(record)
        logger.debug(
            "applier.event_reverted",
            kind=delta.kind,
            block_number=delta.block_number,
            log_index=delta.log_index,
        )
        return delta

    def _randomness(self, recorder: DeltaRecorder) -> RandomnessEngine:
        return RandomnessEngine(
            self.uow,
            quorum=self.settings.randao_quorum,
            reveal_window_blocks=self.settings.randao_reveal_window_blocks,
            recorder=recorder,
        )

    # Projects

    async def _project_created(
        self, p: ev.ProjectCreated, block: BlockHeader, recorder: DeltaRecorder
    ) -> None:
        if await self.uow.projects.get_by_id(p.project_id) is not None:
            raise IntegrityViolation(f"Project {p.project_id} already exists")
        if p.editions <= 0:
            raise IntegrityViolation(f"Project {p.project_id} has no editions")
        if p.price <= 0:
            raise IntegrityViolation(f"Project {p.project_id} has non-positive price")
        if len(p.beneficiaries) != len(p.percentages):
            raise IntegrityViolation(
                f"Project {p.project_id} has {len(p.beneficiaries)} beneficiaries "
                f"but {len(p.percentages)} percentages"
            )
        if sum(p.percentages) != 100:
            raise IntegrityViolation(
                f"Project {p.project_id} splits sum to {sum(p.percentages)}, expected 100"
            )
        if p.royalty_percentage > 100:
            raise IntegrityViolation(
                f"Project {p.project_id} royalty {p.royalty_percentage} exceeds 100"
            )

        await recorder.insert(
            Project(
                project_id=p.project_id,
                artist=p.artist,
                name=p.name,
                editions=p.editions,
                max_editions=p.editions,
                price=p.price,
                opening_time=p.opening_time,
                code_pointer=p.code_pointer,
                details_pointer=p.details_pointer,
                splits=[[b, pct] for b, pct in zip(p.beneficiaries, p.percentages)],
                royalty_percentage=p.royalty_percentage,
                active=True,
                created_block=block.number,
            )
        )

    async def _project_updated(
        self, p: ev.ProjectUpdated, block: BlockHeader, recorder: DeltaRecorder
    ) -> None:
        project = await self.uow.projects.get_by_id(p.project_id)
        if project is None:
            raise IntegrityViolation(f"Project {p.project_id} does not exist")
        if p.price <= 0:
            raise IntegrityViolation(f"Project {p.project_id} update has non-positive price")
        if p.royalty_percentage > 100:
            raise IntegrityViolation(
                f"Project {p.project_id} royalty {p.royalty_percentage} exceeds 100"
            )

        recorder.track(project)
        project.price = p.price
        project.opening_time = p.opening_time
        project.details_pointer = p.details_pointer
        project.royalty_percentage = p.royalty_percentage
        project.active = p.active
        await recorder.flush()

    # Tokens

    async def _nft_minted(self, p: ev.NFTMinted, block: BlockHeader, recorder: DeltaRecorder) -> None:
        project = await self.uow.projects.get_by_id(p.project_id)
        if project is None:
            raise IntegrityViolation(f"Mint of token {p.token_id} for unknown project {p.project_id}")
        if not project.active:
            raise IntegrityViolation(f"Mint of token {p.token_id} for inactive project {p.project_id}")
        if project.editions <= 0:
            raise IntegrityViolation(
                f"Mint of token {p.token_id} exceeds editions of project {p.project_id}"
            )
        if block.timestamp < project.opening_time:
            raise IntegrityViolation(
                f"Mint of token {p.token_id} at {block.timestamp} before project opening "
                f"{project.opening_time}"
            )
        if p.price_paid < project.price:
            raise IntegrityViolation(
                f"Mint of token {p.token_id} paid {p.price_paid}, project price {project.price}"
            )
        if await self.uow.nfts.get_by_token_id(p.token_id) is not None:
            raise IntegrityViolation(f"Token {p.token_id} already minted")

        seed = await self._randomness(recorder).derive_seed(p.project_id, p.token_id, block.hash)

        recorder.track(project)
        project.editions -= 1
        await recorder.insert(
            NFT(
                token_id=p.token_id,
                project_id=p.project_id,
                owner=p.to,
                seed=seed.value,
                seed_final=seed.final,
                seed_round=seed.round_id,
                minted_block=block.number,
            )
        )

    async def _nft_revealed(
        self, p: ev.NFTRevealed, block: BlockHeader, recorder: DeltaRecorder
    ) -> None:
        nft = await self.uow.nfts.get_by_token_id(p.token_id)
        if nft is None:
            raise IntegrityViolation(f"Reveal of unknown token {p.token_id}")
        if nft.revealed:
            raise IntegrityViolation(f"Token {p.token_id} already revealed")
        if not p.token_uri:
            raise IntegrityViolation(f"Reveal of token {p.token_id} has empty URI")

        recorder.track(nft)
        nft.revealed = True
        nft.token_uri = p.token_uri
        await recorder.flush()

    async def _transfer(self, p: ev.Transfer, block: BlockHeader, recorder: DeltaRecorder) -> None:
        # Mints also emit Transfer from the zero address; NFTMinted already set the owner
        if p.sender == ZERO_ADDRESS:
            return

        nft = await self.uow.nfts.get_by_token_id(p.token_id)
        if nft is None:
            raise IntegrityViolation(f"Transfer of unknown token {p.token_id}")
        if not _same_address(nft.owner, p.sender):
            raise IntegrityViolation(
                f"Transfer of token {p.token_id} from {p.sender}, owner is {nft.owner}"
            )

        recorder.track(nft)
        nft.owner = p.recipient
        await recorder.flush()

    # Sales

    async def _sale_listed(
        self, p: ev.SaleListed, block: BlockHeader, recorder: DeltaRecorder
    ) -> None:
        if await self.uow.market.get_listing(p.listing_id) is not None:
            raise IntegrityViolation(f"Listing {p.listing_id} already exists")
        nft = await self.uow.nfts.get_by_token_id(p.token_id)
        if nft is None:
            raise IntegrityViolation(f"Listing {p.listing_id} of unknown token {p.token_id}")
        if not _same_address(nft.owner, p.seller):
            raise IntegrityViolation(
                f"Listing {p.listing_id} by {p.seller}, token owner is {nft.owner}"
            )
        if p.price <= 0:
            raise IntegrityViolation(f"Listing {p.listing_id} has non-positive price")

        await recorder.insert(
            SaleListing(
                listing_id=p.listing_id,
                token_id=p.token_id,
                project_id=nft.project_id,
                seller=p.seller,
                price=p.price,
                created_block=block.number,
            )
        )
        self.touched_projects.add(nft.project_id)

    async def _close_listing(
        self,
        listing_id: int,
        status: ListingStatus,
        block: BlockHeader,
        recorder: DeltaRecorder,
        buyer: str | None = None,
        price: int | None = None,
    ) -> None:
        listing = await self.uow.market.get_listing(listing_id)
        if listing is None:
            raise IntegrityViolation(f"Listing {listing_id} does not exist")
        if price is not None and price != listing.price:
            raise IntegrityViolation(
                f"Listing {listing_id} filled at {price}, listed at {listing.price}"
            )

        recorder.track(listing)
        try:
            listing.close(status, block.number, block.timestamp)
        except InvalidStateTransition as e:
            raise IntegrityViolation(str(e)) from e
        if buyer is not None:
            listing.buyer = buyer
        await recorder.flush()
        self.touched_projects.add(listing.project_id)

    async def _sale_cancelled(
        self, p: ev.SaleCancelled, block: BlockHeader, recorder: DeltaRecorder
    ) -> None:
        await self._close_listing(p.listing_id, ListingStatus.CANCELLED, block, recorder)

    async def _sale_filled(
        self, p: ev.SaleFilled, block: BlockHeader, recorder: DeltaRecorder
    ) -> None:
        await self._close_listing(
            p.listing_id, ListingStatus.FILLED, block, recorder, buyer=p.buyer, price=p.price
        )

    async def _sale_expired(
        self, p: ev.SaleExpired, block: BlockHeader, recorder: DeltaRecorder
    ) -> None:
        await self._close_listing(p.listing_id, ListingStatus.EXPIRED, block, recorder)

    # Offers

    async def _offer_made(self, p: ev.OfferMade, block: BlockHeader, recorder: DeltaRecorder) -> None:
        if await self.uow.market.get_offer(p.offer_id) is not None:
            raise IntegrityViolation(f"Offer {p.offer_id} already exists")
        nft = await self.uow.nfts.get_by_token_id(p.token_id)
        if nft is None:
            raise IntegrityViolation(f"Offer {p.offer_id} on unknown token {p.token_id}")
        if p.price <= 0:
            raise IntegrityViolation(f"Offer {p.offer_id} has non-positive price")

        await recorder.insert(
            Offer(
                offer_id=p.offer_id,
                token_id=p.token_id,
                project_id=nft.project_id,
                bidder=p.bidder,
                price=p.price,
                created_block=block.number,
            )
        )
        self.touched_projects.add(nft.project_id)

    async def _close_offer(
        self,
        offer_id: int,
        status: OfferStatus,
        block: BlockHeader,
        recorder: DeltaRecorder,
        seller: str | None = None,
    ) -> None:
        offer = await self.uow.market.get_offer(offer_id)
        if offer is None:
            raise IntegrityViolation(f"Offer {offer_id} does not exist")

        recorder.track(offer)
        try:
            offer.close(status, block.number, block.timestamp)
        except InvalidStateTransition as e:
            raise IntegrityViolation(str(e)) from e
        if seller is not None:
            offer.seller = seller
        await recorder.flush()
        self.touched_projects.add(offer.project_id)

    async def _offer_cancelled(
        self, p: ev.OfferCancelled, block: BlockHeader, recorder: DeltaRecorder
    ) -> None:
        await self._close_offer(p.offer_id, OfferStatus.CANCELLED, block, recorder)

    async def _offer_accepted(
        self, p: ev.OfferAccepted, block: BlockHeader, recorder: DeltaRecorder
    ) -> None:
        await self._close_offer(p.offer_id, OfferStatus.ACCEPTED, block, recorder, seller=p.seller)

    async def _offer_rejected(
        self, p: ev.OfferRejected, block: BlockHeader, recorder: DeltaRecorder
    ) -> None:
        await self._close_offer(p.offer_id, OfferStatus.REJECTED, block, recorder)

    # Randomness

    async def _randao_committed(
        self, p: ev.RandaoCommitted, block: BlockHeader, recorder: DeltaRecorder
    ) -> None:
        await self._randomness(recorder).commit(
            p.round_id, p.participant, p.commit_hash, block_number=block.number
        )

    async def _randao_revealed(
        self, p: ev.RandaoRevealed, block: BlockHeader, recorder: DeltaRecorder
    ) -> None:
        await self._randomness(recorder).reveal(
            p.round_id, p.participant, p.secret, block_number=block.number
        )
