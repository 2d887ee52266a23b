"""initial schema

Revision ID: 0001
Revises:
Create Date: 2026-10-18 09:00:00.000000

"""

from typing import Sequence, Union

import sqlalchemy as sa
import sqlmodel

from alembic import op

# revision identifiers, used by Alembic.
revision: str = "0001"
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

ADDRESS = sqlmodel.sql.sqltypes.AutoString(length=42)
HASH = sqlmodel.sql.sqltypes.AutoString(length=66)
WEI = sa.String(length=78)


def upgrade() -> None:
    """Upgrade schema."""
    op.create_table(
        "applied_blocks",
        sa.Column("block_number", sa.Integer(), nullable=False),
        sa.Column("block_hash", HASH, nullable=False),
        sa.Column("parent_hash", HASH, nullable=False),
        sa.Column("timestamp", sa.Integer(), nullable=False),
        sa.Column("event_count", sa.Integer(), nullable=False),
        sa.PrimaryKeyConstraint("block_number"),
        sa.UniqueConstraint("block_hash"),
    )

    op.create_table(
        "chain_events",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("block_number", sa.Integer(), nullable=False),
        sa.Column("block_hash", HASH, nullable=False),
        sa.Column("transaction_index", sa.Integer(), nullable=False),
        sa.Column("log_index", sa.Integer(), nullable=False),
        sa.Column("block_timestamp", sa.Integer(), nullable=False),
        sa.Column("kind", sqlmodel.sql.sqltypes.AutoString(length=50), nullable=False),
        sa.Column("payload", sa.JSON(), nullable=False),
        sa.Column("applied", sa.Boolean(), nullable=False),
        sa.Column(
            "rejection_reason", sqlmodel.sql.sqltypes.AutoString(length=1000), nullable=True
        ),
        sa.Column("delta", sa.JSON(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint(
            "block_number",
            "block_hash",
            "transaction_index",
            "log_index",
            name="uq_chain_events_identity",
        ),
    )
    op.create_index("ix_chain_events_block_number", "chain_events", ["block_number"])
    op.create_index("ix_chain_events_block_hash", "chain_events", ["block_hash"])
    op.create_index("ix_chain_events_kind", "chain_events", ["kind"])

    op.create_table(
        "projects",
        sa.Column("project_id", sa.Integer(), nullable=False),
        sa.Column("artist", ADDRESS, nullable=False),
        sa.Column("name", sqlmodel.sql.sqltypes.AutoString(length=255), nullable=False),
        sa.Column("editions", sa.Integer(), nullable=False),
        sa.Column("max_editions", sa.Integer(), nullable=False),
        sa.Column("price", WEI, nullable=False),
        sa.Column("opening_time", sa.BigInteger(), nullable=False),
        sa.Column("code_pointer", sqlmodel.sql.sqltypes.AutoString(), nullable=False),
        sa.Column("details_pointer", sqlmodel.sql.sqltypes.AutoString(), nullable=False),
        sa.Column("splits", sa.JSON(), nullable=False),
        sa.Column("royalty_percentage", sa.Integer(), nullable=False),
        sa.Column("active", sa.Boolean(), nullable=False),
        sa.Column("created_block", sa.Integer(), nullable=False),
        sa.PrimaryKeyConstraint("project_id"),
    )
    op.create_index("ix_projects_artist", "projects", ["artist"])

    op.create_table(
        "nfts",
        sa.Column("token_id", sa.Integer(), nullable=False),
        sa.Column("project_id", sa.Integer(), nullable=False),
        sa.Column("owner", ADDRESS, nullable=False),
        sa.Column("seed", HASH, nullable=False),
        sa.Column("seed_final", sa.Boolean(), nullable=False),
        sa.Column("seed_round", sa.Integer(), nullable=True),
        sa.Column("revealed", sa.Boolean(), nullable=False),
        sa.Column("token_uri", sqlmodel.sql.sqltypes.AutoString(), nullable=False),
        sa.Column("minted_block", sa.Integer(), nullable=False),
        sa.ForeignKeyConstraint(["project_id"], ["projects.project_id"]),
        sa.PrimaryKeyConstraint("token_id"),
    )
    op.create_index("ix_nfts_project_id", "nfts", ["project_id"])
    op.create_index("ix_nfts_owner", "nfts", ["owner"])

    for table, party, counterparty, key in (
        ("sale_listings", "seller", "buyer", "listing_id"),
        ("offers", "bidder", "seller", "offer_id"),
    ):
        op.create_table(
            table,
            sa.Column(key, sa.Integer(), nullable=False),
            sa.Column("token_id", sa.Integer(), nullable=False),
            sa.Column("project_id", sa.Integer(), nullable=False),
            sa.Column(party, ADDRESS, nullable=False),
            sa.Column(counterparty, ADDRESS, nullable=True),
            sa.Column("price", WEI, nullable=False),
            sa.Column("status", sa.String(length=20), nullable=False),
            sa.Column("created_block", sa.Integer(), nullable=False),
            sa.Column("closed_block", sa.Integer(), nullable=True),
            sa.Column("closed_timestamp", sa.Integer(), nullable=True),
            sa.ForeignKeyConstraint(["token_id"], ["nfts.token_id"]),
            sa.PrimaryKeyConstraint(key),
        )
        op.create_index(f"ix_{table}_token_id", table, ["token_id"])
        op.create_index(f"ix_{table}_project_id", table, ["project_id"])
        op.create_index(f"ix_{table}_status", table, ["status"])

    op.create_table(
        "randao_rounds",
        sa.Column("round_id", sa.Integer(), nullable=False),
        sa.Column("accumulator", HASH, nullable=False),
        sa.Column("commit_count", sa.Integer(), nullable=False),
        sa.Column("reveal_count", sa.Integer(), nullable=False),
        sa.Column("opened_block", sa.Integer(), nullable=True),
        sa.Column("finalized", sa.Boolean(), nullable=False),
        sa.Column("final_value", HASH, nullable=True),
        sa.Column("finalized_block", sa.Integer(), nullable=True),
        sa.PrimaryKeyConstraint("round_id"),
    )
    op.create_index("ix_randao_rounds_finalized", "randao_rounds", ["finalized"])

    op.create_table(
        "randao_commits",
        sa.Column("round_id", sa.Integer(), nullable=False),
        sa.Column("participant", ADDRESS, nullable=False),
        sa.Column("commit_hash", HASH, nullable=False),
        sa.Column("revealed", sa.Boolean(), nullable=False),
        sa.Column("secret", HASH, nullable=True),
        sa.Column("committed_block", sa.Integer(), nullable=True),
        sa.Column("revealed_block", sa.Integer(), nullable=True),
        sa.ForeignKeyConstraint(["round_id"], ["randao_rounds.round_id"]),
        sa.PrimaryKeyConstraint("round_id", "participant"),
    )

    op.create_table(
        "market_statistics",
        sa.Column("scope", sqlmodel.sql.sqltypes.AutoString(length=64), nullable=False),
        sa.Column("project_id", sa.Integer(), nullable=True),
        sa.Column("volume_total", WEI, nullable=False),
        sa.Column("volume_24h", WEI, nullable=False),
        sa.Column("floor_price", WEI, nullable=True),
        sa.Column("median_price", WEI, nullable=True),
        sa.Column("best_offer", WEI, nullable=True),
        sa.Column("sale_count", sa.Integer(), nullable=False),
        sa.Column("open_listing_count", sa.Integer(), nullable=False),
        sa.Column("open_offer_count", sa.Integer(), nullable=False),
        sa.Column("as_of_block", sa.Integer(), nullable=False),
        sa.Column("as_of_timestamp", sa.Integer(), nullable=False),
        sa.PrimaryKeyConstraint("scope"),
    )
    op.create_index("ix_market_statistics_project_id", "market_statistics", ["project_id"])

    op.create_table(
        "integrity_alerts",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("category", sqlmodel.sql.sqltypes.AutoString(length=50), nullable=False),
        sa.Column("kind", sqlmodel.sql.sqltypes.AutoString(length=50), nullable=True),
        sa.Column("block_number", sa.Integer(), nullable=True),
        sa.Column("block_hash", HASH, nullable=True),
        sa.Column("transaction_index", sa.Integer(), nullable=True),
        sa.Column("log_index", sa.Integer(), nullable=True),
        sa.Column("reason", sqlmodel.sql.sqltypes.AutoString(length=1000), nullable=False),
        sa.Column("details", sa.JSON(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_integrity_alerts_category", "integrity_alerts", ["category"])
    op.create_index("ix_integrity_alerts_block_number", "integrity_alerts", ["block_number"])

    op.create_table(
        "system_state",
        sa.Column("key", sqlmodel.sql.sqltypes.AutoString(length=255), nullable=False),
        sa.Column("state_value", sa.JSON(), nullable=True),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint("key"),
    )


def downgrade() -> None:
    """Downgrade schema."""
    op.drop_table("system_state")
    op.drop_table("integrity_alerts")
    op.drop_table("market_statistics")
    op.drop_table("randao_commits")
    op.drop_table("randao_rounds")
    op.drop_table("offers")
    op.drop_table("sale_listings")
    op.drop_table("nfts")
    op.drop_table("projects")
    op.drop_table("chain_events")
    op.drop_table("applied_blocks")
