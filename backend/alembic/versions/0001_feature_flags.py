"""feature flags and scoped overrides

Revision ID: 0001_feature_flags
Revises:
Create Date: 2026-02-20 09:11:12
"""
from alembic import op
import sqlalchemy as sa

revision = "0001_feature_flags"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "feature_flags",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("global_default_state", sa.Boolean(), server_default=sa.false(), nullable=False),
        sa.Column("description", sa.Text()),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
            # ORM-managed updated_at (no database trigger).
            nullable=False,
        ),
        sa.UniqueConstraint("name", name="uq_feature_flags_name"),
    )
    op.create_table(
        "feature_flag_overrides",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column(
            "feature_flag_id",
            sa.Integer(),
            sa.ForeignKey("feature_flags.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("scope_kind", sa.String(length=16), nullable=False),
        sa.Column("identifier", sa.String(length=255), nullable=False),
        sa.Column("enabled", sa.Boolean(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
            nullable=False,
        ),
        sa.UniqueConstraint(
            "feature_flag_id",
            "scope_kind",
            "identifier",
            name="uq_feature_flag_overrides_flag_kind_identifier",
        ),
        sa.CheckConstraint(
            "scope_kind IN ('user', 'group', 'region')",
            name="ck_feature_flag_overrides_scope_kind",
        ),
    )
    op.create_index(
        "ix_feature_flag_overrides_feature_flag_id",
        "feature_flag_overrides",
        ["feature_flag_id"],
    )


def downgrade() -> None:
    op.drop_index("ix_feature_flag_overrides_feature_flag_id", table_name="feature_flag_overrides")
    op.drop_table("feature_flag_overrides")
    op.drop_table("feature_flags")
