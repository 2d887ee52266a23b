"""EventTracker: reorg-safe chain event indexer with commit-reveal randomness."""

__version__ = "0.1.0"
