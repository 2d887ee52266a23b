"""Operator alerts.

Alerts are emitted twice: as a structured log line (what log aggregation and
paging hook into) and as an ``IntegrityAlert`` row readable through the API.
"""

import structlog

from eventtracker.models.alert import IntegrityAlert
from eventtracker.services.ingestion.events import EventIdentity
from eventtracker.uow import UnitOfWork

logger = structlog.get_logger()

INTEGRITY = "integrity"
HALT = "halt"


async def raise_integrity_alert(
    uow: UnitOfWork,
    identity: EventIdentity,
    kind: str,
    reason: str,
    details: dict | None = None,
) -> IntegrityAlert:
    """Report an event that was skipped because it violates an invariant."""
    logger.warning(
        "alert.data_integrity",
        kind=kind,
        block_number=identity.block_number,
        block_hash=identity.block_hash,
        transaction_index=identity.transaction_index,
        log_index=identity.log_index,
        reason=reason,
    )
    return await uow.alerts.add(
        IntegrityAlert(
            category=INTEGRITY,
            kind=kind,
            block_number=identity.block_number,
            block_hash=identity.block_hash,
            transaction_index=identity.transaction_index,
            log_index=identity.log_index,
            reason=reason[:1000],
            details=details,
        )
    )


async def raise_halt_alert(
    uow: UnitOfWork, reason: str, block_number: int | None = None, details: dict | None = None
) -> IntegrityAlert:
    """Report that ingestion stopped and needs operator intervention."""
    logger.critical("alert.ingestion_halted", reason=reason, block_number=block_number)
    return await uow.alerts.add(
        IntegrityAlert(
            category=HALT,
            block_number=block_number,
            reason=reason[:1000],
            details=details,
        )
    )
