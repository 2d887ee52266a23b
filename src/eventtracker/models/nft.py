"""NFT entity - Minted token with its randomness seed and reveal state."""

from typing import Optional

from sqlmodel import Field, SQLModel


class NFT(SQLModel, table=True):
    """NFTRecord created exactly once by NFTMinted.

    ``seed_final`` is False when no randomness round was finalized at mint time
    and the seed is the deterministic placeholder.
    """

    __tablename__ = "nfts"  # type: ignore[assignment]

    token_id: int = Field(primary_key=True)
    project_id: int = Field(foreign_key="projects.project_id", index=True)
    owner: str = Field(max_length=42, index=True)
    seed: str = Field(max_length=66)
    seed_final: bool = Field(default=False)
    seed_round: Optional[int] = Field(default=None)
    revealed: bool = Field(default=False)
    token_uri: str = Field(default="")
    minted_block: int
