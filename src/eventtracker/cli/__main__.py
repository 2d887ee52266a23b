"""CLI entry point for eventtracker.cli module.

Enables execution via: python -m eventtracker.cli
"""

from eventtracker.cli.ingest import main

if __name__ == "__main__":
    raise SystemExit(main())
