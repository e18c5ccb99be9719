"""Create connector_configs, ingestion_jobs and api_credentials tables."""

from __future__ import annotations

import sqlalchemy as sa

from alembic import op as alembic_op  # type: ignore[import-untyped]

revision = "20261019_0001"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    """Create the connector, job and credential tables with their indexes."""

    alembic_op.create_table(
        "connector_configs",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("connector_type", sa.String(length=64), nullable=False),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("enabled", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("configuration", sa.JSON(), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("polling_interval_minutes", sa.Integer(), nullable=False, server_default="30"),
        sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.Column("created_by", sa.String(length=255), nullable=True),
        sa.Column("last_sync_time", sa.DateTime(), nullable=True),
        sa.Column("last_sync_cursor", sa.Text(), nullable=True),
        sa.Column("last_successful_sync", sa.DateTime(), nullable=True),
        sa.Column("consecutive_error_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("last_error_message", sa.Text(), nullable=True),
        sa.Column("last_error_time", sa.DateTime(), nullable=True),
        sa.UniqueConstraint("connector_type", "name", name="uq_connector_configs_type_name"),
    )
    alembic_op.create_index(
        "ix_connector_configs_connector_type", "connector_configs", ["connector_type"]
    )
    alembic_op.create_index("ix_connector_configs_enabled", "connector_configs", ["enabled"])

    alembic_op.create_table(
        "ingestion_jobs",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column(
            "connector_config_id",
            sa.Uuid(),
            sa.ForeignKey("connector_configs.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("job_type", sa.String(length=32), nullable=False),
        sa.Column("status", sa.String(length=32), nullable=False),
        sa.Column("started_at", sa.DateTime(), nullable=True),
        sa.Column("completed_at", sa.DateTime(), nullable=True),
        sa.Column("items_processed", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("items_failed", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("last_sync_cursor", sa.Text(), nullable=True),
        sa.Column("error_message", sa.Text(), nullable=True),
        sa.Column("metadata", sa.JSON(), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
    )
    alembic_op.create_index("ix_ingestion_jobs_status", "ingestion_jobs", ["status"])
    alembic_op.create_index(
        "ix_ingestion_jobs_status_started_at", "ingestion_jobs", ["status", "started_at"]
    )
    alembic_op.create_index(
        "ix_ingestion_jobs_config_started_at",
        "ingestion_jobs",
        ["connector_config_id", "started_at"],
    )

    alembic_op.create_table(
        "api_credentials",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column(
            "connector_config_id",
            sa.Uuid(),
            sa.ForeignKey("connector_configs.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("credential_type", sa.String(length=32), nullable=False),
        sa.Column("encrypted_value", sa.Text(), nullable=False),
        sa.Column("expires_at", sa.DateTime(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.Column("last_used", sa.DateTime(), nullable=True),
        sa.Column("usage_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("description", sa.Text(), nullable=True),
    )
    alembic_op.create_index(
        "ix_api_credentials_connector_config_id", "api_credentials", ["connector_config_id"]
    )
    alembic_op.create_index("ix_api_credentials_expires_at", "api_credentials", ["expires_at"])
    alembic_op.create_index(
        "uq_api_credentials_active_type",
        "api_credentials",
        ["connector_config_id", "credential_type"],
        unique=True,
        sqlite_where=sa.text("is_active"),
        postgresql_where=sa.text("is_active"),
    )


def downgrade() -> None:
    """Drop the credential, job and connector tables."""

    alembic_op.drop_index("uq_api_credentials_active_type", table_name="api_credentials")
    alembic_op.drop_index("ix_api_credentials_expires_at", table_name="api_credentials")
    alembic_op.drop_index("ix_api_credentials_connector_config_id", table_name="api_credentials")
    alembic_op.drop_table("api_credentials")

    alembic_op.drop_index("ix_ingestion_jobs_config_started_at", table_name="ingestion_jobs")
    alembic_op.drop_index("ix_ingestion_jobs_status_started_at", table_name="ingestion_jobs")
    alembic_op.drop_index("ix_ingestion_jobs_status", table_name="ingestion_jobs")
    alembic_op.drop_table("ingestion_jobs")

    alembic_op.drop_index("ix_connector_configs_enabled", table_name="connector_configs")
    alembic_op.drop_index("ix_connector_configs_connector_type", table_name="connector_configs")
    alembic_op.drop_table("connector_configs")
