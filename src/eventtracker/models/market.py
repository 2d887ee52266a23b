"""SaleListing and Offer entities - Marketplace state with one-way transitions."""

from enum import Enum
from typing import Optional

from sqlalchemy import Column, String
from sqlmodel import Field, SQLModel

from eventtracker.core.types import Uint256


class ListingStatus(str, Enum):
    """Sale listing lifecycle status."""

    OPEN = "open"
    CANCELLED = "cancelled"
    FILLED = "filled"
    EXPIRED = "expired"


class OfferStatus(str, Enum):
    """Offer lifecycle status."""

    OPEN = "open"
    CANCELLED = "cancelled"
    ACCEPTED = "accepted"
    REJECTED = "rejected"


class InvalidStateTransition(Exception):
    """Raised when a listing or offer is asked to leave a terminal status."""

    pass


class SaleListing(SQLModel, table=True):
    """Fixed-price listing of an NFT."""

    __tablename__ = "sale_listings"  # type: ignore[assignment]

    listing_id: int = Field(primary_key=True)
    token_id: int = Field(foreign_key="nfts.token_id", index=True)
    project_id: int = Field(index=True)
    seller: str = Field(max_length=42)
    buyer: Optional[str] = Field(default=None, max_length=42)
    price: int = Field(sa_column=Column(Uint256, nullable=False))
    status: str = Field(
        default=ListingStatus.OPEN.value, sa_column=Column(String(20), nullable=False, index=True)
    )
    created_block: int
    closed_block: Optional[int] = Field(default=None)
    closed_timestamp: Optional[int] = Field(default=None)

    def close(self, status: ListingStatus, block_number: int, timestamp: int) -> None:
        """Move an open listing to a terminal status.

        Raises:
            InvalidStateTransition: If the listing is not open
        """
        if self.status != ListingStatus.OPEN:
            raise InvalidStateTransition(
                f"Cannot mark listing {self.listing_id} {status.value} from {self.status}. "
                "Listing must be open."
            )
        self.status = status.value
        self.closed_block = block_number
        self.closed_timestamp = timestamp


class Offer(SQLModel, table=True):
    """Bid on an NFT."""

    __tablename__ = "offers"  # type: ignore[assignment]

    offer_id: int = Field(primary_key=True)
    token_id: int = Field(foreign_key="nfts.token_id", index=True)
    project_id: int = Field(index=True)
    bidder: str = Field(max_length=42)
    seller: Optional[str] = Field(default=None, max_length=42)
    price: int = Field(sa_column=Column(Uint256, nullable=False))
    status: str = Field(
        default=OfferStatus.OPEN.value, sa_column=Column(String(20), nullable=False, index=True)
    )
    created_block: int
    closed_block: Optional[int] = Field(default=None)
    closed_timestamp: Optional[int] = Field(default=None)

    def close(self, status: OfferStatus, block_number: int, timestamp: int) -> None:
        """Move an open offer to a terminal status.

        Raises:
            InvalidStateTransition: If the offer is not open
        """
        if self.status != OfferStatus.OPEN:
            raise InvalidStateTransition(
                f"Cannot mark offer {self.offer_id} {status.value} from {self.status}. "
                "Offer must be open."
            )
        self.status = status.value
        self.closed_block = block_number
        self.closed_timestamp = timestamp
