"""Initial schema — all 7 Frinder ledger tables.

Revision ID: 001_initial
Revises:
Create Date: 2026-10-19 00:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = "001_initial"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

JSON_TYPE = sa.JSON().with_variant(postgresql.JSONB(), "postgresql")


def upgrade() -> None:
    # ── 1. users (profile provider mirror) ──────────────────────────
    op.create_table(
        "users",
        sa.Column("id", sa.String(128), primary_key=True, comment="Identity-provider uid"),
        sa.Column("email", sa.String, unique=True, index=True, nullable=False),
        sa.Column("display_name", sa.String, nullable=False),
        sa.Column("bio", sa.Text, server_default="", nullable=False),
        sa.Column("age", sa.Integer, nullable=True),
        sa.Column("gender", sa.String, nullable=True),
        sa.Column("city", sa.String, nullable=True),
        sa.Column("country", sa.String, nullable=True),
        sa.Column("university", sa.String, nullable=True),
        sa.Column("photos", JSON_TYPE, nullable=False, comment="Array of photo URLs"),
        sa.Column("interests", JSON_TYPE, nullable=False),
        sa.Column(
            "is_profile_complete",
            sa.Boolean,
            server_default=sa.false(),
            nullable=False,
            index=True,
        ),
        sa.Column("is_banned", sa.Boolean, server_default=sa.false(), nullable=False),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
            nullable=False,
        ),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
    )

    # ── 2. swipes (keyed by actor/target pair) ──────────────────────
    op.create_table(
        "swipes",
        sa.Column(
            "actor_id",
            sa.String(128),
            sa.ForeignKey("users.id", ondelete="CASCADE"),
            primary_key=True,
        ),
        sa.Column(
            "target_id",
            sa.String(128),
            sa.ForeignKey("users.id", ondelete="CASCADE"),
            primary_key=True,
            index=True,
        ),
        sa.Column("direction", sa.String, nullable=False, comment="left / right / superlike"),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
    )

    # ── 3. matches (keyed by sorted member pair) ────────────────────
    op.create_table(
        "matches",
        sa.Column("id", sa.String(260), primary_key=True),
        sa.Column(
            "user_a_id",
            sa.String(128),
            sa.ForeignKey("users.id", ondelete="CASCADE"),
            nullable=False,
            index=True,
        ),
        sa.Column(
            "user_b_id",
            sa.String(128),
            sa.ForeignKey("users.id", ondelete="CASCADE"),
            nullable=False,
            index=True,
        ),
        sa.Column("user_profiles", JSON_TYPE, nullable=False),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
            nullable=False,
        ),
        sa.Column("unmatched", sa.Boolean, server_default=sa.false(), nullable=False),
        sa.Column("unmatched_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("unmatched_by", sa.String(128), nullable=True),
        sa.Column("rematched_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("is_super_like", sa.Boolean, server_default=sa.false(), nullable=False),
        sa.Column("super_liked_by", sa.String(128), nullable=True),
        sa.Column("last_message", sa.Text, nullable=True),
        sa.Column("last_message_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("last_message_sender_id", sa.String(128), nullable=True),
        sa.Column("unread_count_a", sa.Integer, server_default="0", nullable=False),
        sa.Column("unread_count_b", sa.Integer, server_default="0", nullable=False),
    )

    # ── 4. super_like_events ────────────────────────────────────────
    op.create_table(
        "super_like_events",
        sa.Column(
            "from_user_id",
            sa.String(128),
            sa.ForeignKey("users.id", ondelete="CASCADE"),
            primary_key=True,
        ),
        sa.Column(
            "to_user_id",
            sa.String(128),
            sa.ForeignKey("users.id", ondelete="CASCADE"),
            primary_key=True,
            index=True,
        ),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("seen", sa.Boolean, server_default=sa.false(), nullable=False),
    )

    # ── 5. messages ─────────────────────────────────────────────────
    op.create_table(
        "messages",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column(
            "match_id",
            sa.String(260),
            sa.ForeignKey("matches.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("sender_id", sa.String(128), nullable=False),
        sa.Column("text", sa.Text, server_default="", nullable=False),
        sa.Column("message_type", sa.String, server_default="text", nullable=False),
        sa.Column("image_url", sa.String, nullable=True),
        sa.Column("reply_to_id", sa.String(36), nullable=True),
        sa.Column("reply_to_text", sa.Text, nullable=True),
        sa.Column("reply_to_sender_id", sa.String(128), nullable=True),
        sa.Column("read", sa.Boolean, server_default=sa.false(), nullable=False),
        sa.Column("edited", sa.Boolean, server_default=sa.false(), nullable=False),
        sa.Column("edited_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("deleted", sa.Boolean, server_default=sa.false(), nullable=False),
        sa.Column("deleted_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index(
        "ix_messages_match_created", "messages", ["match_id", "created_at"]
    )

    # ── 6. user_credits ─────────────────────────────────────────────
    op.create_table(
        "user_credits",
        sa.Column(
            "user_id",
            sa.String(128),
            sa.ForeignKey("users.id", ondelete="CASCADE"),
            primary_key=True,
        ),
        sa.Column("super_likes", sa.Integer, server_default="0", nullable=False),
        sa.Column(
            "total_super_likes_purchased", sa.Integer, server_default="0", nullable=False
        ),
        sa.Column("swipe_count", sa.Integer, server_default="0", nullable=False),
        sa.Column("last_swipe_count_reset", sa.DateTime(timezone=True), nullable=True),
        sa.Column("last_free_super_like", sa.DateTime(timezone=True), nullable=True),
        sa.CheckConstraint("super_likes >= 0", name="ck_credits_non_negative"),
    )

    # ── 7. user_subscriptions ───────────────────────────────────────
    op.create_table(
        "user_subscriptions",
        sa.Column(
            "user_id",
            sa.String(128),
            sa.ForeignKey("users.id", ondelete="CASCADE"),
            primary_key=True,
        ),
        sa.Column("is_premium", sa.Boolean, server_default=sa.false(), nullable=False),
        sa.Column("is_ad_free", sa.Boolean, server_default=sa.false(), nullable=False),
        sa.Column("premium_expires_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("ad_free_expires_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column(
            "unlimited_super_likes", sa.Boolean, server_default=sa.false(), nullable=False
        ),
        sa.Column(
            "can_see_who_liked_you", sa.Boolean, server_default=sa.false(), nullable=False
        ),
        sa.Column(
            "unlimited_rewinds", sa.Boolean, server_default=sa.false(), nullable=False
        ),
        sa.Column(
            "priority_in_discovery", sa.Boolean, server_default=sa.false(), nullable=False
        ),
        sa.Column(
            "advanced_filters", sa.Boolean, server_default=sa.false(), nullable=False
        ),
        sa.Column("membership_id", sa.String, nullable=True, index=True),
        sa.Column(
            "cancel_at_period_end", sa.Boolean, server_default=sa.false(), nullable=False
        ),
        sa.Column(
            "pro_super_likes_remaining", sa.Integer, server_default="0", nullable=False
        ),
        sa.Column("pro_super_likes_reset_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("last_pro_super_like_used", sa.DateTime(timezone=True), nullable=True),
        sa.CheckConstraint(
            "pro_super_likes_remaining >= 0", name="ck_pro_allotment_non_negative"
        ),
    )


def downgrade() -> None:
    # Drop in reverse order (children / dependents first).
    op.drop_table("user_subscriptions")
    op.drop_table("user_credits")

    op.drop_index("ix_messages_match_created", table_name="messages")
    op.drop_table("messages")

    op.drop_table("super_like_events")
    op.drop_table("matches")
    op.drop_table("swipes")
    op.drop_table("users")
