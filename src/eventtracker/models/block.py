"""AppliedBlock entity - Lineage of blocks whose events are in derived state."""

from sqlmodel import Field, SQLModel


class AppliedBlock(SQLModel, table=True):
    """Header of a block the pipeline has applied.

    Rows are the checkpoint lineage: walking them backwards from the checkpoint
    gives the chain the derived state was built from, which is compared against
    the source's chain when searching for a reorg's common ancestor.
    """

    __tablename__ = "applied_blocks"  # type: ignore[assignment]

    block_number: int = Field(primary_key=True)
    block_hash: str = Field(max_length=66, unique=True)
    parent_hash: str = Field(max_length=66)
    timestamp: int
    event_count: int = Field(default=0)
