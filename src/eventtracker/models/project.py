"""Project entity - Generative art project with editions and revenue splits."""

from sqlalchemy import JSON, BigInteger, Column
from sqlmodel import Field, SQLModel

from eventtracker.core.types import Uint256


class Project(SQLModel, table=True):
    """ProjectRecord created by ProjectCreated and mutated by ProjectUpdated.

    ``editions`` counts the editions still mintable. ``splits`` is an ordered
    list of ``[beneficiary, percentage]`` pairs summing to 100. Projects are
    never deleted; ``active`` is the soft lifecycle switch.
    """

    __tablename__ = "projects"  # type: ignore[assignment]

    project_id: int = Field(primary_key=True)
    artist: str = Field(max_length=42, index=True)
    name: str = Field(max_length=255)
    editions: int = Field(ge=0)
    max_editions: int = Field(ge=0)
    price: int = Field(sa_column=Column(Uint256, nullable=False))
    opening_time: int = Field(sa_column=Column(BigInteger, nullable=False))
    code_pointer: str = Field(default="")
    details_pointer: str = Field(default="")
    splits: list = Field(sa_column=Column(JSON, nullable=False))
    royalty_percentage: int = Field(ge=0, le=100)
    active: bool = Field(default=True)
    created_block: int
