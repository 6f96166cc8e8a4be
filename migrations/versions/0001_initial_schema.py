"""initial schema: users, audit, clubs, posts, events, challenges

Revision ID: 0001_initial_schema
Revises:
Create Date: 2026-10-18 09:12:40.118302

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '0001_initial_schema'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _id() -> sa.Column:
    return sa.Column("id", sa.String(32), primary_key=True)


def _user_fk(name: str, *, nullable: bool = False, ondelete: str = "CASCADE") -> sa.Column:
    return sa.Column(name, sa.String(32), sa.ForeignKey("users.id", ondelete=ondelete), nullable=nullable)


def _ts(name: str = "created_at", *, nullable: bool = False) -> sa.Column:
    return sa.Column(name, sa.DateTime(), nullable=nullable)


def upgrade() -> None:
    op.create_table(
        "users",
        _id(),
        sa.Column("email", sa.String(320), nullable=False, unique=True),
        sa.Column("name", sa.String(255), nullable=True),
        sa.Column("image_url", sa.String(1024), nullable=True),
        sa.Column("password_hash", sa.String(255), nullable=False),
        sa.Column("site_role", sa.String(32), nullable=False, server_default="USER"),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        _ts(),
    )

    op.create_table(
        "audit_logs",
        _id(),
        _ts("timestamp"),
        sa.Column("request_id", sa.String(64), nullable=True),
        sa.Column("action", sa.String(128), nullable=False),
        _user_fk("user_id", nullable=True, ondelete="SET NULL"),
        sa.Column("target_user_id", sa.String(32), nullable=True),
        sa.Column("resource_type", sa.String(32), nullable=True),
        sa.Column("resource_id", sa.String(64), nullable=True),
        sa.Column("metadata_json", sa.Text(), nullable=True),
        sa.Column("ip_address", sa.String(64), nullable=True),
        sa.Column("user_agent", sa.String(512), nullable=True),
        sa.Column("severity", sa.String(16), nullable=False, server_default="MEDIUM"),
        sa.Column("category", sa.String(32), nullable=False, server_default="USER_ACTION"),
    )
    op.create_index("idx_audit_logs_user", "audit_logs", ["user_id"])
    op.create_index("idx_audit_logs_action", "audit_logs", ["action"])
    op.create_index("idx_audit_logs_resource", "audit_logs", ["resource_type", "resource_id"])
    op.create_index("idx_audit_logs_timestamp", "audit_logs", ["timestamp"])

    op.create_table(
        "clubs",
        _id(),
        sa.Column("name", sa.String(100), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("image_url", sa.String(1024), nullable=True),
        sa.Column("is_private", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("invite_code", sa.String(8), nullable=True, unique=True),
        sa.Column("city", sa.String(100), nullable=True),
        sa.Column("territory", sa.String(100), nullable=True),
        sa.Column("latitude", sa.Float(), nullable=True),
        sa.Column("longitude", sa.Float(), nullable=True),
        sa.Column("max_members", sa.Integer(), nullable=True),
        sa.Column("invite_expiry", sa.DateTime(), nullable=True),
        sa.Column("allow_member_invites", sa.Boolean(), nullable=False, server_default=sa.false()),
        _user_fk("creator_id"),
        _ts(),
        _ts("updated_at"),
    )
    op.create_index("idx_clubs_name", "clubs", ["name"])
    op.create_index("idx_clubs_city", "clubs", ["city"])
    op.create_index("idx_clubs_created_at", "clubs", ["created_at"])

    op.create_table(
        "club_members",
        _id(),
        _user_fk("user_id"),
        sa.Column("club_id", sa.String(32), sa.ForeignKey("clubs.id", ondelete="CASCADE"), nullable=False),
        sa.Column("role", sa.String(16), nullable=False, server_default="MEMBER"),
        _ts("joined_at"),
        sa.UniqueConstraint("user_id", "club_id", name="uq_club_members_user_club"),
    )
    op.create_index("idx_club_members_club", "club_members", ["club_id"])

    op.create_table(
        "club_join_requests",
        _id(),
        _user_fk("user_id"),
        sa.Column("club_id", sa.String(32), sa.ForeignKey("clubs.id", ondelete="CASCADE"), nullable=False),
        sa.Column("status", sa.String(16), nullable=False, server_default="PENDING"),
        sa.Column("message", sa.String(500), nullable=True),
        _user_fk("reviewed_by_id", nullable=True, ondelete="SET NULL"),
        sa.Column("reviewed_at", sa.DateTime(), nullable=True),
        _ts(),
        sa.UniqueConstraint("user_id", "club_id", name="uq_club_join_requests_user_club"),
    )
    op.create_index("idx_club_join_requests_club_status", "club_join_requests", ["club_id", "status"])

    op.create_table(
        "club_bans",
        _id(),
        _user_fk("user_id"),
        sa.Column("club_id", sa.String(32), sa.ForeignKey("clubs.id", ondelete="CASCADE"), nullable=False),
        _user_fk("banned_by_id", nullable=True, ondelete="SET NULL"),
        sa.Column("reason", sa.String(500), nullable=True),
        sa.Column("is_permanent", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("expires_at", sa.DateTime(), nullable=True),
        _ts(),
        sa.UniqueConstraint("user_id", "club_id", name="uq_club_bans_user_club"),
    )

    op.create_table(
        "club_admin_messages",
        _id(),
        sa.Column("club_id", sa.String(32), sa.ForeignKey("clubs.id", ondelete="CASCADE"), nullable=False),
        _user_fk("sender_id", nullable=True, ondelete="SET NULL"),
        sa.Column("message", sa.String(500), nullable=False),
        sa.Column("type", sa.String(16), nullable=False, server_default="info"),
        sa.Column("target_user_ids", sa.JSON(), nullable=False),
        _ts(),
    )
    op.create_index("idx_club_admin_messages_club", "club_admin_messages", ["club_id", "created_at"])

    op.create_table(
        "club_posts",
        _id(),
        sa.Column("club_id", sa.String(32), sa.ForeignKey("clubs.id", ondelete="CASCADE"), nullable=False),
        _user_fk("author_id"),
        sa.Column("content", sa.Text(), nullable=False),
        sa.Column("images", sa.JSON(), nullable=False),
        _ts(),
        _ts("updated_at"),
    )
    op.create_index("idx_club_posts_club_created", "club_posts", ["club_id", "created_at"])

    op.create_table(
        "post_comments",
        _id(),
        sa.Column("post_id", sa.String(32), sa.ForeignKey("club_posts.id", ondelete="CASCADE"), nullable=False),
        _user_fk("author_id"),
        sa.Column("parent_id", sa.String(32), sa.ForeignKey("post_comments.id", ondelete="CASCADE"), nullable=True),
        sa.Column("content", sa.Text(), nullable=False),
        _ts(),
        _ts("updated_at"),
    )
    op.create_index("idx_post_comments_post", "post_comments", ["post_id", "created_at"])

    op.create_table(
        "post_likes",
        _id(),
        _user_fk("user_id"),
        sa.Column("post_id", sa.String(32), sa.ForeignKey("club_posts.id", ondelete="CASCADE"), nullable=False),
        _ts(),
        sa.UniqueConstraint("user_id", "post_id", name="uq_post_likes_user_post"),
    )

    op.create_table(
        "comment_likes",
        _id(),
        _user_fk("user_id"),
        sa.Column("comment_id", sa.String(32), sa.ForeignKey("post_comments.id", ondelete="CASCADE"), nullable=False),
        _ts(),
        sa.UniqueConstraint("user_id", "comment_id", name="uq_comment_likes_user_comment"),
    )

    op.create_table(
        "club_events",
        _id(),
        sa.Column("club_id", sa.String(32), sa.ForeignKey("clubs.id", ondelete="CASCADE"), nullable=False),
        _user_fk("organizer_id"),
        sa.Column("title", sa.String(200), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("date", sa.DateTime(), nullable=False),
        sa.Column("location", sa.String(100), nullable=True),
        sa.Column("latitude", sa.Float(), nullable=True),
        sa.Column("longitude", sa.Float(), nullable=True),
        sa.Column("max_attendees", sa.Integer(), nullable=True),
        _ts(),
        _ts("updated_at"),
    )
    op.create_index("idx_club_events_club_date", "club_events", ["club_id", "date"])

    op.create_table(
        "event_attendees",
        _id(),
        _user_fk("user_id"),
        sa.Column("event_id", sa.String(32), sa.ForeignKey("club_events.id", ondelete="CASCADE"), nullable=False),
        sa.Column("status", sa.String(16), nullable=False, server_default="PENDING"),
        _ts(),
        _ts("updated_at"),
        sa.UniqueConstraint("user_id", "event_id", name="uq_event_attendees_user_event"),
    )

    op.create_table(
        "challenges",
        _id(),
        sa.Column("title", sa.String(200), nullable=False),
        sa.Column("description", sa.Text(), nullable=False),
        sa.Column("type", sa.String(32), nullable=False),
        sa.Column("difficulty", sa.String(16), nullable=False),
        sa.Column("is_pre_made", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("city", sa.String(100), nullable=True),
        sa.Column("territory", sa.String(100), nullable=True),
        sa.Column("is_global", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("parameters", sa.JSON(), nullable=True),
        sa.Column("club_id", sa.String(32), sa.ForeignKey("clubs.id", ondelete="CASCADE"), nullable=True),
        _user_fk("creator_id", nullable=True, ondelete="SET NULL"),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("start_date", sa.DateTime(), nullable=True),
        sa.Column("end_date", sa.DateTime(), nullable=True),
        _ts(),
        _ts("updated_at"),
    )
    op.create_index("idx_challenges_club", "challenges", ["club_id"])
    op.create_index("idx_challenges_premade", "challenges", ["is_pre_made", "is_active"])

    op.create_table(
        "challenge_participants",
        _id(),
        _user_fk("user_id"),
        sa.Column("challenge_id", sa.String(32), sa.ForeignKey("challenges.id", ondelete="CASCADE"), nullable=False),
        sa.Column("score", sa.Float(), nullable=True),
        sa.Column("completed_at", sa.DateTime(), nullable=True),
        sa.Column("evidence", sa.JSON(), nullable=True),
        _ts(),
        sa.UniqueConstraint("user_id", "challenge_id", name="uq_challenge_participants_user_challenge"),
    )

    op.create_table(
        "leaderboard_entries",
        _id(),
        _user_fk("user_id"),
        sa.Column("challenge_id", sa.String(32), sa.ForeignKey("challenges.id", ondelete="CASCADE"), nullable=False),
        sa.Column("scope", sa.String(16), nullable=False),
        sa.Column("scope_value", sa.String(100), nullable=False, server_default=""),
        sa.Column("score", sa.Float(), nullable=False),
        sa.Column("rank", sa.Integer(), nullable=False, server_default="0"),
        _ts(),
        _ts("updated_at"),
        sa.UniqueConstraint("user_id", "challenge_id", "scope", "scope_value", name="uq_leaderboard_entry"),
    )
    op.create_index("idx_leaderboard_scope", "leaderboard_entries", ["challenge_id", "scope", "scope_value", "rank"])


def downgrade() -> None:
    for table in (
        "leaderboard_entries",
        "challenge_participants",
        "challenges",
        "event_attendees",
        "club_events",
        "comment_likes",
        "post_likes",
        "post_comments",
        "club_posts",
        "club_admin_messages",
        "club_bans",
        "club_join_requests",
        "club_members",
        "clubs",
        "audit_logs",
        "users",
    ):
        op.drop_table(table)
