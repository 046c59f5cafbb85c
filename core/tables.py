"""SQLAlchemy Core table definitions for the database schema."""

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Column,
    Date,
    ForeignKey,
    Index,
    Integer,
    MetaData,
    PrimaryKeyConstraint,
    Table,
    Text,
    UniqueConstraint,
    func,
    text,
)
from sqlalchemy.dialects.postgresql import ARRAY, TIMESTAMP, UUID

from .enums import (
    group_member_role_enum,
    membership_status_enum,
    user_role_enum,
)

# Naming convention for constraints (helps Alembic generate better names)
convention = {
    "ix": "ix_%(column_0_label)s",
    "uq": "uq_%(table_name)s_%(column_0_name)s",
    "ck": "ck_%(table_name)s_%(constraint_name)s",
    "fk": "fk_%(table_name)s_%(column_0_name)s_%(referred_table_name)s",
    "pk": "pk_%(table_name)s",
}
metadata = MetaData(naming_convention=convention)

_uuid_pk = dict(primary_key=True, server_default=text("gen_random_uuid()"))


# =====================================================
# 1. PROFILES
# =====================================================
# id mirrors the Supabase auth user id (JWT "sub")
profiles = Table(
    "profiles",
    metadata,
    Column("id", UUID(as_uuid=True), primary_key=True),
    Column("email", Text, nullable=False),
    Column("full_name", Text, nullable=False),
    Column("username", Text, unique=True),
    Column("avatar_url", Text),
    Column("cover_url", Text),
    Column("bio", Text),
    Column("role", user_role_enum, server_default="user"),
    Column("banned_until", TIMESTAMP(timezone=True)),
    Column("current_focus", Text),
    Column("created_at", TIMESTAMP(timezone=True), server_default=func.now()),
    Column("updated_at", TIMESTAMP(timezone=True), server_default=func.now()),
    Index("idx_profiles_role", "role"),
)


# =====================================================
# 2. GROUPS (discussion / chat groups)
# =====================================================
groups = Table(
    "groups",
    metadata,
    Column("id", UUID(as_uuid=True), **_uuid_pk),
    Column("name", Text, nullable=False),
    Column("description", Text, nullable=False, server_default=""),
    Column("image_url", Text),
    Column("members_count", Integer, nullable=False, server_default="0"),
    Column("tags", ARRAY(Text)),
    Column(
        "created_by",
        UUID(as_uuid=True),
        ForeignKey("profiles.id", ondelete="CASCADE"),
        nullable=False,
    ),
    Column("created_at", TIMESTAMP(timezone=True), server_default=func.now()),
    Column("updated_at", TIMESTAMP(timezone=True), server_default=func.now()),
)


group_members = Table(
    "group_members",
    metadata,
    Column("id", UUID(as_uuid=True), **_uuid_pk),
    Column(
        "group_id",
        UUID(as_uuid=True),
        ForeignKey("groups.id", ondelete="CASCADE"),
        nullable=False,
    ),
    Column(
        "user_id",
        UUID(as_uuid=True),
        ForeignKey("profiles.id", ondelete="CASCADE"),
        nullable=False,
    ),
    Column("role", group_member_role_enum, nullable=False, server_default="member"),
    Column("joined_at", TIMESTAMP(timezone=True), server_default=func.now()),
    UniqueConstraint("group_id", "user_id", name="group_members_group_user_unique"),
    Index("idx_group_members_user_id", "user_id"),
)


# =====================================================
# 3. FOCUS GROUPS
# =====================================================
# available_spots / is_full are maintained by database triggers
# (see alembic/versions/001_initial_schema.py)
focus_groups = Table(
    "focus_groups",
    metadata,
    Column("id", UUID(as_uuid=True), **_uuid_pk),
    Column("title", Text, nullable=False),
    Column("description", Text, nullable=False),
    Column(
        "mentor_id",
        UUID(as_uuid=True),
        ForeignKey("profiles.id", ondelete="SET NULL"),
    ),
    Column("mentor_name", Text, nullable=False),
    Column("mentor_role", Text, nullable=False),
    Column("mentor_image_url", Text),
    Column(
        "group_id",
        UUID(as_uuid=True),
        ForeignKey("groups.id", ondelete="SET NULL"),
        unique=True,
    ),
    Column("total_spots", Integer, nullable=False),
    Column("available_spots", Integer, nullable=False),
    Column("is_full", Boolean, nullable=False, server_default="false"),
    Column("start_date", Date),
    Column("end_date", Date),
    Column("tags", ARRAY(Text)),
    Column("created_at", TIMESTAMP(timezone=True), server_default=func.now()),
    CheckConstraint(
        "available_spots >= 0 AND available_spots <= total_spots",
        name="spots_within_capacity",
    ),
    CheckConstraint("total_spots > 0", name="total_spots_positive"),
    Index("idx_focus_groups_mentor_id", "mentor_id"),
)


focus_group_members = Table(
    "focus_group_members",
    metadata,
    Column(
        "focus_group_id",
        UUID(as_uuid=True),
        ForeignKey("focus_groups.id", ondelete="CASCADE"),
        nullable=False,
    ),
    Column(
        "user_id",
        UUID(as_uuid=True),
        ForeignKey("profiles.id", ondelete="CASCADE"),
        nullable=False,
    ),
    Column("status", membership_status_enum, nullable=False),
    Column("joined_at", TIMESTAMP(timezone=True), server_default=func.now()),
    PrimaryKeyConstraint("focus_group_id", "user_id"),
    Index("idx_focus_group_members_user_id", "user_id"),
)


# =====================================================
# 4. MESSAGING
# =====================================================
conversations = Table(
    "conversations",
    metadata,
    Column("id", UUID(as_uuid=True), **_uuid_pk),
    Column(
        "user1_id",
        UUID(as_uuid=True),
        ForeignKey("profiles.id", ondelete="CASCADE"),
        nullable=False,
    ),
    Column(
        "user2_id",
        UUID(as_uuid=True),
        ForeignKey("profiles.id", ondelete="CASCADE"),
        nullable=False,
    ),
    Column("created_at", TIMESTAMP(timezone=True), server_default=func.now()),
    Column("updated_at", TIMESTAMP(timezone=True), server_default=func.now()),
    Index("idx_conversations_user1_id", "user1_id"),
    Index("idx_conversations_user2_id", "user2_id"),
)


messages = Table(
    "messages",
    metadata,
    Column("id", UUID(as_uuid=True), **_uuid_pk),
    Column(
        "conversation_id",
        UUID(as_uuid=True),
        ForeignKey("conversations.id", ondelete="CASCADE"),
        nullable=False,
    ),
    Column(
        "sender_id",
        UUID(as_uuid=True),
        ForeignKey("profiles.id", ondelete="CASCADE"),
        nullable=False,
    ),
    Column("content", Text),
    Column("is_read", Boolean, nullable=False, server_default="false"),
    Column("file_url", Text),
    Column("file_type", Text),
    Column("file_name", Text),
    Column("created_at", TIMESTAMP(timezone=True), server_default=func.now()),
    Index("idx_messages_conversation_id", "conversation_id"),
)


notifications = Table(
    "notifications",
    metadata,
    Column("id", UUID(as_uuid=True), **_uuid_pk),
    Column(
        "user_id",
        UUID(as_uuid=True),
        ForeignKey("profiles.id", ondelete="CASCADE"),
        nullable=False,
    ),
    Column("type", Text, nullable=False),
    Column("content", Text, nullable=False),
    Column("related_id", UUID(as_uuid=True)),
    Column("is_read", Boolean, nullable=False, server_default="false"),
    Column("created_at", TIMESTAMP(timezone=True), server_default=func.now()),
    Index("idx_notifications_user_id", "user_id"),
)


# =====================================================
# 5. CHECK-INS & STREAKS
# =====================================================
daily_check_ins = Table(
    "daily_check_ins",
    metadata,
    Column("id", UUID(as_uuid=True), **_uuid_pk),
    Column(
        "user_id",
        UUID(as_uuid=True),
        ForeignKey("profiles.id", ondelete="CASCADE"),
        nullable=False,
    ),
    Column(
        "group_id",
        UUID(as_uuid=True),
        ForeignKey("groups.id", ondelete="SET NULL"),
    ),
    Column("today_goal", Text, nullable=False),
    Column("yesterday_completed", Text),
    Column("date", Date, nullable=False),
    Column("is_completed", Boolean, nullable=False, server_default="false"),
    Column("created_at", TIMESTAMP(timezone=True), server_default=func.now()),
    UniqueConstraint("user_id", "date", name="daily_check_ins_user_date_unique"),
    Index("idx_daily_check_ins_group_date", "group_id", "date"),
)


user_streaks = Table(
    "user_streaks",
    metadata,
    Column(
        "user_id",
        UUID(as_uuid=True),
        ForeignKey("profiles.id", ondelete="CASCADE"),
        primary_key=True,
    ),
    Column("current_streak", Integer, nullable=False, server_default="0"),
    Column("longest_streak", Integer, nullable=False, server_default="0"),
    Column("last_check_in_date", Date),
    Column("updated_at", TIMESTAMP(timezone=True), server_default=func.now()),
    Index("idx_user_streaks_current", "current_streak"),
)


# Tables whose row changes are pushed to the realtime channel
REALTIME_TABLES = (
    "messages",
    "conversations",
    "notifications",
    "daily_check_ins",
)
