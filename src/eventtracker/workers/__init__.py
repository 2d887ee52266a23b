"""Background workers for async processing tasks."""

from eventtracker.workers.ingestion_worker import run_ingestion_worker

__all__ = [
    "run_ingestion_worker",
]
