"""Typed chain events.

Raw logs from the Chain Log Source are decoded into a ``ChainEvent``: an event
identity, a kind tag and a validated payload model. Contract roles are plain
tagged kinds; there is no class hierarchy per contract.
"""

from dataclasses import dataclass
from enum import Enum
from typing import ClassVar

from eth_utils import to_checksum_address
from pydantic import BaseModel, ConfigDict, Field, NonNegativeInt, field_validator
from pydantic.alias_generators import to_camel

ZERO_ADDRESS = "0x0000000000000000000000000000000000000000"

# Largest values the INTEGER and BIGINT columns hold
INT32_MAX = 2**31 - 1
INT64_MAX = 2**63 - 1

NAME_MAX_LENGTH = 255


class EventKind(str, Enum):
    """Event kinds emitted by the platform contracts."""

    PROJECT_CREATED = "ProjectCreated"
    PROJECT_UPDATED = "ProjectUpdated"
    NFT_MINTED = "NFTMinted"
    NFT_REVEALED = "NFTRevealed"
    TRANSFER = "Transfer"
    SALE_LISTED = "SaleListed"
    SALE_CANCELLED = "SaleCancelled"
    SALE_FILLED = "SaleFilled"
    SALE_EXPIRED = "SaleExpired"
    OFFER_MADE = "OfferMade"
    OFFER_CANCELLED = "OfferCancelled"
    OFFER_ACCEPTED = "OfferAccepted"
    OFFER_REJECTED = "OfferRejected"
    RANDAO_COMMITTED = "RandaoCommitted"
    RANDAO_REVEALED = "RandaoRevealed"


@dataclass(frozen=True)
class BlockHeader:
    """Block header as delivered by the Chain Log Source."""

    number: int
    hash: str
    parent_hash: str
    timestamp: int


@dataclass(frozen=True)
class RawLog:
    """Undecoded log entry of a block."""

    address: str
    topics: tuple[bytes, ...]
    data: bytes
    block_number: int
    block_hash: str
    transaction_index: int
    log_index: int


@dataclass(frozen=True, order=True)
class EventIdentity:
    """Unique identity of a chain event; the idempotency key."""

    block_number: int
    block_hash: str
    transaction_index: int
    log_index: int

    @classmethod
    def of(cls, log: RawLog) -> "EventIdentity":
        return cls(log.block_number, log.block_hash, log.transaction_index, log.log_index)


def _normalize_address(v):
    if isinstance(v, bytes):
        v = "0x" + v.hex()
    return to_checksum_address(v)


def _normalize_word(v):
    if isinstance(v, bytes):
        if len(v) != 32:
            raise ValueError("bytes32 value must be 32 bytes")
        return "0x" + v.hex()
    if not isinstance(v, str) or not v.startswith("0x") or len(v) != 66:
        raise ValueError("bytes32 value must be 0x followed by 64 hex characters")
    int(v[2:], 16)
    return v.lower()


def _clamp_time(v):
    # Any time past BIGINT range is "never"
    return min(v, INT64_MAX) if isinstance(v, int) else v


class EventPayload(BaseModel):
    """Base for decoded payloads; ABI parameter names map through camelCase aliases.

    ``column_limits`` and ``length_limits`` bound the fields that land in
    fixed-width columns. A uint256 or string outside them is valid ABI but
    cannot be stored; see ``storage_violations``.
    """

    model_config = ConfigDict(frozen=True, alias_generator=to_camel, populate_by_name=True)

    column_limits: ClassVar[dict[str, int]] = {}
    length_limits: ClassVar[dict[str, int]] = {}

    def storage_violations(self) -> list[str]:
        """Describe every field whose value does not fit its column."""
        problems = []
        for name, limit in self.column_limits.items():
            value = getattr(self, name)
            if value > limit:
                problems.append(f"{name} {value} exceeds {limit}")
        for name, limit in self.length_limits.items():
            length = len(getattr(self, name))
            if length > limit:
                problems.append(f"{name} is {length} characters, limit {limit}")
        return problems


class ProjectCreated(EventPayload):
    column_limits = {
        "project_id": INT32_MAX,
        "editions": INT32_MAX,
        "royalty_percentage": INT32_MAX,
    }
    length_limits = {"name": NAME_MAX_LENGTH}

    project_id: NonNegativeInt
    artist: str
    name: str
    editions: int
    price: int
    opening_time: NonNegativeInt
    code_pointer: str
    details_pointer: str
    beneficiaries: list[str]
    percentages: list[int]
    royalty_percentage: NonNegativeInt

    @field_validator("artist", mode="before")
    @classmethod
    def validate_artist(cls, v):
        return _normalize_address(v)

    @field_validator("beneficiaries", mode="before")
    @classmethod
    def validate_beneficiaries(cls, v):
        return [_normalize_address(a) for a in v]

    @field_validator("opening_time", mode="before")
    @classmethod
    def validate_opening_time(cls, v):
        return _clamp_time(v)


class ProjectUpdated(EventPayload):
    column_limits = {"project_id": INT32_MAX, "royalty_percentage": INT32_MAX}

    project_id: NonNegativeInt
    price: int
    opening_time: NonNegativeInt
    details_pointer: str
    royalty_percentage: NonNegativeInt
    active: bool

    @field_validator("opening_time", mode="before")
    @classmethod
    def validate_opening_time(cls, v):
        return _clamp_time(v)


class NFTMinted(EventPayload):
    column_limits = {"token_id": INT32_MAX, "project_id": INT32_MAX}

    token_id: NonNegativeInt
    project_id: NonNegativeInt
    to: str
    price_paid: NonNegativeInt

    @field_validator("to", mode="before")
    @classmethod
    def validate_to(cls, v):
        return _normalize_address(v)


class NFTRevealed(EventPayload):
    column_limits = {"token_id": INT32_MAX}

    token_id: NonNegativeInt
    token_uri: str = Field(alias="tokenURI")


class Transfer(EventPayload):
    column_limits = {"token_id": INT32_MAX}

    sender: str = Field(alias="from")
    recipient: str = Field(alias="to")
    token_id: NonNegativeInt

    @field_validator("sender", "recipient", mode="before")
    @classmethod
    def validate_addresses(cls, v):
        return _normalize_address(v)


class SaleListed(EventPayload):
    column_limits = {"listing_id": INT32_MAX, "token_id": INT32_MAX}

    listing_id: NonNegativeInt
    token_id: NonNegativeInt
    seller: str
    price: NonNegativeInt

    @field_validator("seller", mode="before")
    @classmethod
    def validate_seller(cls, v):
        return _normalize_address(v)


class SaleCancelled(EventPayload):
    column_limits = {"listing_id": INT32_MAX}

    listing_id: NonNegativeInt


class SaleFilled(EventPayload):
    column_limits = {"listing_id": INT32_MAX}

    listing_id: NonNegativeInt
    buyer: str
    price: NonNegativeInt

    @field_validator("buyer", mode="before")
    @classmethod
    def validate_buyer(cls, v):
        return _normalize_address(v)


class SaleExpired(EventPayload):
    column_limits = {"listing_id": INT32_MAX}

    listing_id: NonNegativeInt


class OfferMade(EventPayload):
    column_limits = {"offer_id": INT32_MAX, "token_id": INT32_MAX}

    offer_id: NonNegativeInt
    token_id: NonNegativeInt
    bidder: str
    price: NonNegativeInt

    @field_validator("bidder", mode="before")
    @classmethod
    def validate_bidder(cls, v):
        return _normalize_address(v)


class OfferCancelled(EventPayload):
    column_limits = {"offer_id": INT32_MAX}

    offer_id: NonNegativeInt


class OfferAccepted(EventPayload):
    column_limits = {"offer_id": INT32_MAX}

    offer_id: NonNegativeInt
    seller: str

    @field_validator("seller", mode="before")
    @classmethod
    def validate_seller(cls, v):
        return _normalize_address(v)


class OfferRejected(EventPayload):
    column_limits = {"offer_id": INT32_MAX}

    offer_id: NonNegativeInt


class RandaoCommitted(EventPayload):
    column_limits = {"round_id": INT32_MAX}

    round_id: NonNegativeInt
    participant: str
    commit_hash: str

    @field_validator("participant", mode="before")
    @classmethod
    def validate_participant(cls, v):
        return _normalize_address(v)

    @field_validator("commit_hash", mode="before")
    @classmethod
    def validate_commit_hash(cls, v):
        return _normalize_word(v)


class RandaoRevealed(EventPayload):
    column_limits = {"round_id": INT32_MAX}

    round_id: NonNegativeInt
    participant: str
    secret: str

    @field_validator("participant", mode="before")
    @classmethod
    def validate_participant(cls, v):
        return _normalize_address(v)

    @field_validator("secret", mode="before")
    @classmethod
    def validate_secret(cls, v):
        return _normalize_word(v)


PAYLOAD_MODELS: dict[EventKind, type[EventPayload]] = {
    EventKind.PROJECT_CREATED: ProjectCreated,
    EventKind.PROJECT_UPDATED: ProjectUpdated,
    EventKind.NFT_MINTED: NFTMinted,
    EventKind.NFT_REVEALED: NFTRevealed,
    EventKind.TRANSFER: Transfer,
    EventKind.SALE_LISTED: SaleListed,
    EventKind.SALE_CANCELLED: SaleCancelled,
    EventKind.SALE_FILLED: SaleFilled,
    EventKind.SALE_EXPIRED: SaleExpired,
    EventKind.OFFER_MADE: OfferMade,
    EventKind.OFFER_CANCELLED: OfferCancelled,
    EventKind.OFFER_ACCEPTED: OfferAccepted,
    EventKind.OFFER_REJECTED: OfferRejected,
    EventKind.RANDAO_COMMITTED: RandaoCommitted,
    EventKind.RANDAO_REVEALED: RandaoRevealed,
}


@dataclass(frozen=True)
class ChainEvent:
    """Immutable decoded event of a block."""

    identity: EventIdentity
    kind: EventKind
    payload: EventPayload


@dataclass(frozen=True)
class UnknownKind:
    """A log whose topic matches no known event; ignored by the pipeline."""

    identity: EventIdentity
    address: str
    topic0: str | None
