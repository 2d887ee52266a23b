"""Commit-reveal randomness engine (Randao).

Participants commit ``keccak256(secret)`` and later reveal the secret. Every
accepted secret is XOR-ed into the round accumulator, so no single participant
controls the result as long as one honest participant reveals. A round
finalizes once ``quorum`` reveals are in; its value is frozen from then on.

Per participant the protocol is NoCommit -> Committed -> Revealed, and
``CommitState`` exposes that view.
"""

from dataclasses import dataclass
from enum import Enum

import structlog
from eth_utils import keccak, to_checksum_address

from eventtracker.models.randao import RandaoCommit, RandaoRound
from eventtracker.services.exceptions import (
    AlreadyCommittedError,
    CommitPhaseClosedError,
    InvalidSecretError,
    NotCommittedError,
    RevealDeadlinePassedError,
    RoundFinalizedError,
)
from eventtracker.services.ingestion.delta import DeltaRecorder
from eventtracker.uow import UnitOfWork

logger = structlog.get_logger()


class CommitState(str, Enum):
    """Participant state within a round."""

    NO_COMMIT = "no_commit"
    COMMITTED = "committed"
    REVEALED = "revealed"


@dataclass(frozen=True)
class MintSeed:
    """Seed assigned to a token at mint time.

    ``final`` is False for the deterministic placeholder used while no round
    has been finalized yet.
    """

    value: str
    final: bool
    round_id: int | None


def _to_word(value: bytes | str) -> bytes:
    if isinstance(value, str):
        value = bytes.fromhex(value[2:] if value.startswith("0x") else value)
    if len(value) != 32:
        raise ValueError("expected a 32-byte value")
    return bytes(value)


def _hex(value: bytes) -> str:
    return "0x" + value.hex()


def commitment_for(secret: bytes | str) -> str:
    """Commitment a participant publishes for ``secret``: keccak256(secret)."""
    return _hex(keccak(_to_word(secret)))


class RandomnessEngine:
    """Commit-reveal state machine over the Randao tables.

    Writes go through a ``DeltaRecorder`` so that when the engine runs inside
    the state applier, the round and commit changes are part of the event's
    reversible delta.
    """

    def __init__(
        self,
        uow: UnitOfWork,
        quorum: int,
        reveal_window_blocks: int = 0,
        recorder: DeltaRecorder | None = None,
    ):
        """Initialize engine.

        Args:
            uow: Unit of work the round state lives in
            quorum: Reveals needed to finalize a round
            reveal_window_blocks: Blocks after a round opens during which
                reveals are accepted (0 disables the deadline)
            recorder: Delta recorder of the event being applied
        """
        self.uow = uow
        self.quorum = quorum
        self.reveal_window_blocks = reveal_window_blocks
        self.recorder = recorder or DeltaRecorder(uow.session)

    async def commit(
        self,
        round_id: int,
        participant: str,
        commit_hash: bytes | str,
        block_number: int | None = None,
    ) -> RandaoCommit:
        """Record a participant's commitment.

        Raises:
            AlreadyCommittedError: Participant already committed in this round
            CommitPhaseClosedError: Round already has reveals (or is finalized)
        """
        participant = to_checksum_address(participant)
        commit_hash_hex = _hex(_to_word(commit_hash))

        existing = await self.uow.randao.get_commit(round_id, participant)
        if existing is not None:
            raise AlreadyCommittedError(
                f"{participant} already committed in round {round_id}"
            )

        round_ = await self.uow.randao.get_round(round_id)
        if round_ is None:
            round_ = RandaoRound(round_id=round_id, commit_count=1, opened_block=block_number)
            await self.recorder.insert(round_)
        else:
            if round_.reveal_count > 0 or round_.finalized:
                raise CommitPhaseClosedError(
                    f"Round {round_id} has {round_.reveal_count} reveals; commit phase is closed"
                )
            self.recorder.track(round_)
            round_.commit_count += 1

        commitment = RandaoCommit(
            round_id=round_id,
            participant=participant,
            commit_hash=commit_hash_hex,
            committed_block=block_number,
        )
        await self.recorder.insert(commitment)
        await self.recorder.flush()

        logger.info(
            "randao.committed",
            round_id=round_id,
            participant=participant,
            commit_count=round_.commit_count,
        )
        return commitment

    async def reveal(
        self,
        round_id: int,
        participant: str,
        secret: bytes | str,
        block_number: int | None = None,
    ) -> bool:
        """Reveal a participant's secret and fold it into the accumulator.

        Revealing the same secret again is a no-op, including after the round
        finalized.

        Returns:
            True if the reveal changed state, False for an identical re-reveal

        Raises:
            NotCommittedError: Participant has no commitment in this round
            InvalidSecretError: keccak256(secret) does not match the commitment;
                state is left unchanged
            RoundFinalizedError: Round already reached quorum
            RevealDeadlinePassedError: Reveal is past the round's reveal window
        """
        participant = to_checksum_address(participant)
        secret_bytes = _to_word(secret)
        secret_hex = _hex(secret_bytes)

        commitment = await self.uow.randao.get_commit(round_id, participant)
        if commitment is None:
            raise NotCommittedError(f"{participant} has no commitment in round {round_id}")

        if commitment_for(secret_bytes) != commitment.commit_hash.lower():
            logger.warning(
                "randao.invalid_secret",
                round_id=round_id,
                participant=participant,
            )
            raise InvalidSecretError(
                f"Secret revealed by {participant} in round {round_id} "
                "does not match the commitment"
            )

        if commitment.revealed:
            logger.debug("randao.reveal_repeated", round_id=round_id, participant=participant)
            return False

        round_ = await self.uow.randao.get_round(round_id)
        if round_ is None:
            # Commit rows always belong to a round
            raise NotCommittedError(f"Round {round_id} does not exist")
        if round_.finalized:
            raise RoundFinalizedError(f"Round {round_id} is finalized")

        if (
            self.reveal_window_blocks
            and block_number is not None
            and round_.opened_block is not None
            and block_number > round_.opened_block + self.reveal_window_blocks
        ):
            raise RevealDeadlinePassedError(
                f"Round {round_id} reveal window closed at block "
                f"{round_.opened_block + self.reveal_window_blocks}"
            )

        self.recorder.track(commitment)
        self.recorder.track(round_)

        commitment.revealed = True
        commitment.secret = secret_hex
        commitment.revealed_block = block_number

        accumulator = int.from_bytes(_to_word(round_.accumulator), "big")
        accumulator ^= int.from_bytes(secret_bytes, "big")
        round_.accumulator = _hex(accumulator.to_bytes(32, "big"))
        round_.reveal_count += 1

        if round_.reveal_count >= self.quorum:
            round_.finalized = True
            round_.final_value = round_.accumulator
            round_.finalized_block = block_number
            logger.info(
                "randao.round_finalized",
                round_id=round_id,
                reveal_count=round_.reveal_count,
                final_value=round_.final_value,
            )

        await self.recorder.flush()
        logger.info(
            "randao.revealed",
            round_id=round_id,
            participant=participant,
            reveal_count=round_.reveal_count,
        )
        return True

    async def finalized_seed(self, round_id: int) -> str | None:
        """Final value of a round, or None while the round is not finalized."""
        round_ = await self.uow.randao.get_round(round_id)
        if round_ is None or not round_.finalized:
            return None
        return round_.final_value

    async def participant_state(self, round_id: int, participant: str) -> CommitState:
        """Where a participant stands in a round."""
        commitment = await self.uow.randao.get_commit(round_id, to_checksum_address(participant))
        if commitment is None:
            return CommitState.NO_COMMIT
        return CommitState.REVEALED if commitment.revealed else CommitState.COMMITTED

    async def derive_seed(self, project_id: int, token_id: int, block_hash: str) -> MintSeed:
        """Seed for a token minted now.

        Uses the latest finalized round:
        ``keccak256(final_value || project_id || token_id)``. Without one, a
        placeholder ``keccak256(block_hash || token_id)`` marked non-final.
        """
        token_word = token_id.to_bytes(32, "big")
        latest = await self.uow.randao.get_latest_finalized()
        if latest is not None and latest.final_value is not None:
            seed = keccak(_to_word(latest.final_value) + project_id.to_bytes(32, "big") + token_word)
            return MintSeed(value=_hex(seed), final=True, round_id=latest.round_id)

        seed = keccak(_to_word(block_hash) + token_word)
        return MintSeed(value=_hex(seed), final=False, round_id=None)
