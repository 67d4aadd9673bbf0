"""Groups and group membership.

Revision ID: 002_groups
Revises: 001_initial
Create Date: 2026-10-19 00:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = "002_groups"
down_revision: Union[str, None] = "001_initial"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

JSON_TYPE = sa.JSON().with_variant(postgresql.JSONB(), "postgresql")


def upgrade() -> None:
    op.create_table(
        "groups",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("name", sa.String(100), nullable=False),
        sa.Column("description", sa.Text, server_default="", nullable=False),
        sa.Column("photo", sa.String, server_default="", nullable=False),
        sa.Column(
            "creator_id",
            sa.String(128),
            sa.ForeignKey("users.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("interests", JSON_TYPE, nullable=False),
        sa.Column("activity", sa.String(100), server_default="", nullable=False),
        sa.Column("location", sa.String(100), nullable=True),
        sa.Column("is_private", sa.Boolean, server_default=sa.false(), nullable=False),
        sa.Column("member_count", sa.Integer, server_default="0", nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.CheckConstraint("member_count >= 0", name="ck_groups_member_count"),
    )
    op.create_index("ix_groups_created_at", "groups", ["created_at"])

    op.create_table(
        "group_members",
        sa.Column(
            "group_id",
            sa.String(36),
            sa.ForeignKey("groups.id", ondelete="CASCADE"),
            primary_key=True,
        ),
        sa.Column(
            "user_id",
            sa.String(128),
            sa.ForeignKey("users.id", ondelete="CASCADE"),
            primary_key=True,
        ),
        sa.Column("status", sa.String(16), server_default="member", nullable=False),
        sa.Column("profile", JSON_TYPE, nullable=False),
        sa.Column("joined_at", sa.DateTime(timezone=True), nullable=False),
        sa.CheckConstraint(
            "status IN ('member', 'pending')", name="ck_group_members_status"
        ),
    )
    op.create_index("ix_group_members_user", "group_members", ["user_id"])


def downgrade() -> None:
    op.drop_index("ix_group_members_user", table_name="group_members")
    op.drop_table("group_members")
    op.drop_index("ix_groups_created_at", table_name="groups")
    op.drop_table("groups")
