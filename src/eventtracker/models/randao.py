"""RandaoRound and RandaoCommit entities - Commit-reveal randomness state."""

from typing import Optional

from sqlmodel import Field, SQLModel

ZERO_WORD = "0x" + "00" * 32


class RandaoRound(SQLModel, table=True):
    """One commit-reveal round.

    ``accumulator`` is the XOR of every accepted secret. Once ``finalized`` is
    set, ``final_value`` is frozen and is the round's random output.
    """

    __tablename__ = "randao_rounds"  # type: ignore[assignment]

    round_id: int = Field(primary_key=True)
    accumulator: str = Field(default=ZERO_WORD, max_length=66)
    commit_count: int = Field(default=0)
    reveal_count: int = Field(default=0)
    opened_block: Optional[int] = Field(default=None)
    finalized: bool = Field(default=False, index=True)
    final_value: Optional[str] = Field(default=None, max_length=66)
    finalized_block: Optional[int] = Field(default=None)


class RandaoCommit(SQLModel, table=True):
    """A participant's commitment in a round (NoCommit is the absence of a row)."""

    __tablename__ = "randao_commits"  # type: ignore[assignment]

    round_id: int = Field(primary_key=True, foreign_key="randao_rounds.round_id")
    participant: str = Field(primary_key=True, max_length=42)
    commit_hash: str = Field(max_length=66)
    revealed: bool = Field(default=False)
    secret: Optional[str] = Field(default=None, max_length=66)
    committed_block: Optional[int] = Field(default=None)
    revealed_block: Optional[int] = Field(default=None)
