"""Service error hierarchy for ingestion and randomness operations.

This module defines the exception hierarchy for service-level errors:
- ServiceError: Base for all service errors
- TransientError: Retryable errors (network, rate limits, timeouts)
- PermanentError: Non-retryable errors that halt ingestion
- IntegrityViolation: Event breaks an invariant the chain should have enforced
- RandaoProtocolError: Invalid commit/reveal call, rejected at the call boundary
"""


class ServiceError(Exception):
    """Base exception for all service errors."""

    pass


class TransientError(ServiceError):
    """Transient error that may succeed on retry.

    Examples:
    - Network timeouts
    - Rate limit exceeded (429)
    - Node returned a block from a chain that changed mid-request
    """

    pass


class PermanentError(ServiceError):
    """Permanent error that will not succeed on retry.

    Ingestion halts and an operator has to intervene.
    """

    pass


# Chain Log Source errors
class BlockchainConnectionError(TransientError):
    """Failed to reach the JSON-RPC endpoint or the request failed."""

    pass


class BlockNotFoundError(TransientError):
    """Requested block is not (yet, or no longer) known to the node."""

    pass


# Fatal ingestion errors
class SchemaMismatchError(PermanentError):
    """A log of a known event kind does not decode to its expected shape.

    Signals a version skew between the indexer's ABI and the deployed contracts.
    """

    pass


class UnknownEventError(PermanentError):
    """A log matched no known event while unknown kinds are configured as fatal."""

    pass


class ReorgUnrecoverableError(PermanentError):
    """No common ancestor found within the reorg lookback window."""

    pass


class IngestionHaltedError(PermanentError):
    """Ingestion is halted by a persisted marker and needs an operator resync."""

    pass


class UnexpectedIngestionError(PermanentError):
    """A sync step failed with an error outside the service hierarchy."""

    pass


# Data integrity
class IntegrityViolation(ServiceError):
    """Event violates an invariant; it is skipped and an alert is raised."""

    pass


# Randomness protocol errors
class RandaoProtocolError(ServiceError):
    """Base exception for invalid commit-reveal operations."""

    pass


class AlreadyCommittedError(RandaoProtocolError):
    """Participant already committed in this round."""

    pass


class NotCommittedError(RandaoProtocolError):
    """Participant reveals without a commitment in this round."""

    pass


class InvalidSecretError(RandaoProtocolError):
    """Revealed secret does not hash to the stored commitment."""

    pass


class CommitPhaseClosedError(RandaoProtocolError):
    """Round already has reveals, so new commitments are refused."""

    pass


class RevealDeadlinePassedError(RandaoProtocolError):
    """Reveal arrived after the round's reveal window."""

    pass


class RoundFinalizedError(RandaoProtocolError):
    """Round reached quorum; its value is frozen."""

    pass
