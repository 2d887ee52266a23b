"""Checkpoint store.

The checkpoint is the highest block whose events are fully reflected in derived
state, stored as a (number, hash) pair in ``system_state``. It is written in
the same transaction as the block it points to, so a crash never leaves it
ahead of or behind the state.

The ingestion halt marker lives next to it: while set, the pipeline refuses to
run until an operator resyncs.
"""

from dataclasses import dataclass
from datetime import datetime, timezone

from eventtracker.uow import UnitOfWork

CHECKPOINT_KEY = "checkpoint"
HALT_KEY = "ingestion_halt"


@dataclass(frozen=True)
class Checkpoint:
    block_number: int
    block_hash: str


class CheckpointStore:
    """Reads and writes the checkpoint inside a unit of work."""

    def __init__(self, uow: UnitOfWork):
        self.uow = uow

    async def load(self) -> Checkpoint | None:
        """Current checkpoint, or None before the first block is applied."""
        value = await self.uow.system_state.get_state(CHECKPOINT_KEY)
        if value is None:
            return None
        return Checkpoint(block_number=value["block_number"], block_hash=value["block_hash"])

    async def save(self, checkpoint: Checkpoint) -> None:
        await self.uow.system_state.set_state(
            CHECKPOINT_KEY,
            {"block_number": checkpoint.block_number, "block_hash": checkpoint.block_hash},
        )

    async def clear(self) -> None:
        await self.uow.system_state.delete_state(CHECKPOINT_KEY)

    async def get_halt(self) -> dict | None:
        """Persisted halt marker, or None while ingestion may run."""
        return await self.uow.system_state.get_state(HALT_KEY)

    async def set_halt(self, reason: str, error_type: str, block_number: int | None = None) -> None:
        await self.uow.system_state.set_state(
            HALT_KEY,
            {
                "reason": reason,
                "error_type": error_type,
                "block_number": block_number,
                "halted_at": datetime.now(timezone.utc).isoformat(),
            },
        )

    async def clear_halt(self) -> bool:
        """Remove the halt marker.

        Returns:
            True if a marker was removed
        """
        return await self.uow.system_state.delete_state(HALT_KEY)
