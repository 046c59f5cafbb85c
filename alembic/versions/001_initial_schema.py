"""Initial schema with capacity, membership-count and change-notify triggers.

Revision ID: 001
Revises:
Create Date: 2026-10-19

Capacity columns on focus_groups (available_spots, is_full) are owned by
triggers. The application never writes them after creation.

Row changes on the realtime tables are sent with pg_notify() on the
channel from REALTIME_CHANNEL (default bebusy_changes); the API process
LISTENs on it. Large text columns are dropped from the payload to stay
under the NOTIFY size limit.
"""

from typing import Sequence, Union

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects import postgresql

from core.config import get_realtime_channel
from core.tables import REALTIME_TABLES

# revision identifiers, used by Alembic.
revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


user_role = postgresql.ENUM(
    "user", "mentor", "admin", "banned", name="user_role", create_type=False
)
membership_status = postgresql.ENUM(
    "active", "waitlist", name="membership_status", create_type=False
)
group_member_role = postgresql.ENUM(
    "admin", "member", name="group_member_role", create_type=False
)


def _uuid_pk() -> sa.Column:
    return sa.Column(
        "id",
        postgresql.UUID(as_uuid=True),
        primary_key=True,
        server_default=sa.text("gen_random_uuid()"),
    )


def _fk(name: str, target: str, ondelete: str = "CASCADE", nullable: bool = False) -> sa.Column:
    return sa.Column(
        name,
        postgresql.UUID(as_uuid=True),
        sa.ForeignKey(target, ondelete=ondelete),
        nullable=nullable,
    )


def _created_at() -> sa.Column:
    return sa.Column("created_at", sa.TIMESTAMP(timezone=True), server_default=sa.func.now())


def _updated_at() -> sa.Column:
    return sa.Column("updated_at", sa.TIMESTAMP(timezone=True), server_default=sa.func.now())


def upgrade() -> None:
    op.execute("CREATE TYPE user_role AS ENUM ('user', 'mentor', 'admin', 'banned')")
    op.execute("CREATE TYPE membership_status AS ENUM ('active', 'waitlist')")
    op.execute("CREATE TYPE group_member_role AS ENUM ('admin', 'member')")

    op.create_table(
        "profiles",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("email", sa.Text, nullable=False),
        sa.Column("full_name", sa.Text, nullable=False),
        sa.Column("username", sa.Text, unique=True),
        sa.Column("avatar_url", sa.Text),
        sa.Column("cover_url", sa.Text),
        sa.Column("bio", sa.Text),
        sa.Column("role", user_role, server_default="user"),
        sa.Column("banned_until", sa.TIMESTAMP(timezone=True)),
        sa.Column("current_focus", sa.Text),
        _created_at(),
        _updated_at(),
    )
    op.create_index("idx_profiles_role", "profiles", ["role"])

    op.create_table(
        "groups",
        _uuid_pk(),
        sa.Column("name", sa.Text, nullable=False),
        sa.Column("description", sa.Text, nullable=False, server_default=""),
        sa.Column("image_url", sa.Text),
        sa.Column("members_count", sa.Integer, nullable=False, server_default="0"),
        sa.Column("tags", postgresql.ARRAY(sa.Text)),
        _fk("created_by", "profiles.id"),
        _created_at(),
        _updated_at(),
    )

    op.create_table(
        "group_members",
        _uuid_pk(),
        _fk("group_id", "groups.id"),
        _fk("user_id", "profiles.id"),
        sa.Column("role", group_member_role, nullable=False, server_default="member"),
        sa.Column("joined_at", sa.TIMESTAMP(timezone=True), server_default=sa.func.now()),
        sa.UniqueConstraint("group_id", "user_id", name="group_members_group_user_unique"),
    )
    op.create_index("idx_group_members_user_id", "group_members", ["user_id"])

    op.create_table(
        "focus_groups",
        _uuid_pk(),
        sa.Column("title", sa.Text, nullable=False),
        sa.Column("description", sa.Text, nullable=False),
        _fk("mentor_id", "profiles.id", ondelete="SET NULL", nullable=True),
        sa.Column("mentor_name", sa.Text, nullable=False),
        sa.Column("mentor_role", sa.Text, nullable=False),
        sa.Column("mentor_image_url", sa.Text),
        sa.Column(
            "group_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("groups.id", ondelete="SET NULL"),
            unique=True,
        ),
        sa.Column("total_spots", sa.Integer, nullable=False),
        sa.Column("available_spots", sa.Integer, nullable=False),
        sa.Column("is_full", sa.Boolean, nullable=False, server_default="false"),
        sa.Column("start_date", sa.Date),
        sa.Column("end_date", sa.Date),
        sa.Column("tags", postgresql.ARRAY(sa.Text)),
        _created_at(),
        sa.CheckConstraint(
            "available_spots >= 0 AND available_spots <= total_spots",
            name="ck_focus_groups_spots_within_capacity",
        ),
        sa.CheckConstraint("total_spots > 0", name="ck_focus_groups_total_spots_positive"),
    )
    op.create_index("idx_focus_groups_mentor_id", "focus_groups", ["mentor_id"])

    op.create_table(
        "focus_group_members",
        _fk("focus_group_id", "focus_groups.id"),
        _fk("user_id", "profiles.id"),
        sa.Column("status", membership_status, nullable=False),
        sa.Column("joined_at", sa.TIMESTAMP(timezone=True), server_default=sa.func.now()),
        sa.PrimaryKeyConstraint("focus_group_id", "user_id", name="pk_focus_group_members"),
    )
    op.create_index("idx_focus_group_members_user_id", "focus_group_members", ["user_id"])

    op.create_table(
        "conversations",
        _uuid_pk(),
        _fk("user1_id", "profiles.id"),
        _fk("user2_id", "profiles.id"),
        _created_at(),
        _updated_at(),
    )
    op.create_index("idx_conversations_user1_id", "conversations", ["user1_id"])
    op.create_index("idx_conversations_user2_id", "conversations", ["user2_id"])

    op.create_table(
        "messages",
        _uuid_pk(),
        _fk("conversation_id", "conversations.id"),
        _fk("sender_id", "profiles.id"),
        sa.Column("content", sa.Text),
        sa.Column("is_read", sa.Boolean, nullable=False, server_default="false"),
        sa.Column("file_url", sa.Text),
        sa.Column("file_type", sa.Text),
        sa.Column("file_name", sa.Text),
        _created_at(),
    )
    op.create_index("idx_messages_conversation_id", "messages", ["conversation_id"])

    op.create_table(
        "notifications",
        _uuid_pk(),
        _fk("user_id", "profiles.id"),
        sa.Column("type", sa.Text, nullable=False),
        sa.Column("content", sa.Text, nullable=False),
        sa.Column("related_id", postgresql.UUID(as_uuid=True)),
        sa.Column("is_read", sa.Boolean, nullable=False, server_default="false"),
        _created_at(),
    )
    op.create_index("idx_notifications_user_id", "notifications", ["user_id"])

    op.create_table(
        "daily_check_ins",
        _uuid_pk(),
        _fk("user_id", "profiles.id"),
        _fk("group_id", "groups.id", ondelete="SET NULL", nullable=True),
        sa.Column("today_goal", sa.Text, nullable=False),
        sa.Column("yesterday_completed", sa.Text),
        sa.Column("date", sa.Date, nullable=False),
        sa.Column("is_completed", sa.Boolean, nullable=False, server_default="false"),
        _created_at(),
        sa.UniqueConstraint("user_id", "date", name="daily_check_ins_user_date_unique"),
    )
    op.create_index("idx_daily_check_ins_group_date", "daily_check_ins", ["group_id", "date"])

    op.create_table(
        "user_streaks",
        sa.Column(
            "user_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("profiles.id", ondelete="CASCADE"),
            primary_key=True,
        ),
        sa.Column("current_streak", sa.Integer, nullable=False, server_default="0"),
        sa.Column("longest_streak", sa.Integer, nullable=False, server_default="0"),
        sa.Column("last_check_in_date", sa.Date),
        _updated_at(),
    )
    op.create_index("idx_user_streaks_current", "user_streaks", ["current_streak"])

    # Capacity: recompute available_spots / is_full from active members.
    # Staff can push the active count past total_spots, hence GREATEST.
    op.execute("""
        CREATE OR REPLACE FUNCTION refresh_focus_group_capacity(fg_id uuid)
        RETURNS void AS $$
        DECLARE
            active_count integer;
        BEGIN
            SELECT count(*) INTO active_count
            FROM focus_group_members
            WHERE focus_group_id = fg_id AND status = 'active';

            UPDATE focus_groups
            SET available_spots = GREATEST(total_spots - active_count, 0),
                is_full = GREATEST(total_spots - active_count, 0) = 0
            WHERE id = fg_id;
        END;
        $$ LANGUAGE plpgsql
    """)
    op.execute("""
        CREATE OR REPLACE FUNCTION focus_group_members_changed()
        RETURNS trigger AS $$
        BEGIN
            IF TG_OP = 'DELETE' THEN
                PERFORM refresh_focus_group_capacity(OLD.focus_group_id);
            ELSE
                PERFORM refresh_focus_group_capacity(NEW.focus_group_id);
            END IF;
            RETURN NULL;
        END;
        $$ LANGUAGE plpgsql
    """)
    op.execute("""
        CREATE TRIGGER focus_group_members_capacity
        AFTER INSERT OR UPDATE OR DELETE ON focus_group_members
        FOR EACH ROW EXECUTE FUNCTION focus_group_members_changed()
    """)

    # Capacity guard: a non-staff active row needs a free spot. The row
    # lock on the focus group serializes concurrent applicants.
    op.execute("""
        CREATE OR REPLACE FUNCTION enforce_focus_group_capacity()
        RETURNS trigger AS $$
        DECLARE
            applicant_role user_role;
            spots integer;
        BEGIN
            IF NEW.status <> 'active' THEN
                RETURN NEW;
            END IF;

            SELECT role INTO applicant_role FROM profiles WHERE id = NEW.user_id;
            IF applicant_role IN ('mentor', 'admin') THEN
                RETURN NEW;
            END IF;

            SELECT available_spots INTO spots
            FROM focus_groups
            WHERE id = NEW.focus_group_id
            FOR UPDATE;

            IF spots IS NOT NULL AND spots <= 0 THEN
                RAISE EXCEPTION 'focus group is full' USING ERRCODE = 'check_violation';
            END IF;
            RETURN NEW;
        END;
        $$ LANGUAGE plpgsql
    """)
    op.execute("""
        CREATE TRIGGER focus_group_members_enforce_capacity
        BEFORE INSERT ON focus_group_members
        FOR EACH ROW EXECUTE FUNCTION enforce_focus_group_capacity()
    """)

    # Resizing a focus group recomputes its counters
    op.execute("""
        CREATE OR REPLACE FUNCTION focus_groups_total_spots_changed()
        RETURNS trigger AS $$
        DECLARE
            active_count integer;
        BEGIN
            SELECT count(*) INTO active_count
            FROM focus_group_members
            WHERE focus_group_id = NEW.id AND status = 'active';

            NEW.available_spots := GREATEST(NEW.total_spots - active_count, 0);
            NEW.is_full := NEW.available_spots = 0;
            RETURN NEW;
        END;
        $$ LANGUAGE plpgsql
    """)
    op.execute("""
        CREATE TRIGGER focus_groups_resize
        BEFORE UPDATE OF total_spots ON focus_groups
        FOR EACH ROW
        WHEN (OLD.total_spots IS DISTINCT FROM NEW.total_spots)
        EXECUTE FUNCTION focus_groups_total_spots_changed()
    """)

    op.execute("""
        CREATE OR REPLACE FUNCTION group_members_count_changed()
        RETURNS trigger AS $$
        DECLARE
            target uuid;
        BEGIN
            IF TG_OP = 'DELETE' THEN
                target := OLD.group_id;
            ELSE
                target := NEW.group_id;
            END IF;

            UPDATE groups
            SET members_count = (SELECT count(*) FROM group_members WHERE group_id = target)
            WHERE id = target;
            RETURN NULL;
        END;
        $$ LANGUAGE plpgsql
    """)
    op.execute("""
        CREATE TRIGGER group_members_count
        AFTER INSERT OR DELETE ON group_members
        FOR EACH ROW EXECUTE FUNCTION group_members_count_changed()
    """)

    op.execute("""
        CREATE OR REPLACE FUNCTION notify_row_change()
        RETURNS trigger AS $$
        DECLARE
            dropped text[] := ARRAY['content', 'today_goal', 'yesterday_completed', 'file_url'];
        BEGIN
            PERFORM pg_notify(
                TG_ARGV[0],
                jsonb_build_object(
                    'table', TG_TABLE_NAME,
                    'type', TG_OP,
                    'record', CASE WHEN TG_OP = 'DELETE' THEN NULL ELSE to_jsonb(NEW) - dropped END,
                    'old_record', CASE WHEN TG_OP = 'INSERT' THEN NULL ELSE to_jsonb(OLD) - dropped END
                )::text
            );
            RETURN NULL;
        END;
        $$ LANGUAGE plpgsql
    """)
    channel = get_realtime_channel()
    for table in REALTIME_TABLES:
        op.execute(f"""
            CREATE TRIGGER {table}_notify_change
            AFTER INSERT OR UPDATE OR DELETE ON {table}
            FOR EACH ROW EXECUTE FUNCTION notify_row_change('{channel}')
        """)


def downgrade() -> None:
    for table in REALTIME_TABLES:
        op.execute(f"DROP TRIGGER IF EXISTS {table}_notify_change ON {table}")
    op.execute("DROP FUNCTION IF EXISTS notify_row_change()")

    for table in (
        "user_streaks",
        "daily_check_ins",
        "notifications",
        "messages",
        "conversations",
        "focus_group_members",
        "focus_groups",
        "group_members",
        "groups",
        "profiles",
    ):
        op.drop_table(table)

    op.execute("DROP FUNCTION IF EXISTS group_members_count_changed()")
    op.execute("DROP FUNCTION IF EXISTS focus_groups_total_spots_changed()")
    op.execute("DROP FUNCTION IF EXISTS enforce_focus_group_capacity()")
    op.execute("DROP FUNCTION IF EXISTS focus_group_members_changed()")
    op.execute("DROP FUNCTION IF EXISTS refresh_focus_group_capacity(uuid)")

    op.execute("DROP TYPE IF EXISTS group_member_role")
    op.execute("DROP TYPE IF EXISTS membership_status")
    op.execute("DROP TYPE IF EXISTS user_role")
