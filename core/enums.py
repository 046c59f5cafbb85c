"""SQLAlchemy enum definitions for the database schema."""

import enum

from sqlalchemy import Enum as SQLEnum


# =====================================================
# Python Enum Classes
# =====================================================


class UserRole(str, enum.Enum):
    user = "user"
    mentor = "mentor"
    admin = "admin"
    banned = "banned"


class MembershipStatus(str, enum.Enum):
    active = "active"
    waitlist = "waitlist"


class GroupMemberRole(str, enum.Enum):
    admin = "admin"
    member = "member"


class ChangeType(str, enum.Enum):
    insert = "INSERT"
    update = "UPDATE"
    delete = "DELETE"


STAFF_ROLES = frozenset({UserRole.mentor, UserRole.admin})


# =====================================================
# SQLAlchemy Enum Types
# These reference existing PostgreSQL types (create_type=False)
# =====================================================

user_role_enum = SQLEnum(
    UserRole, name="user_role", create_type=False, native_enum=True
)
membership_status_enum = SQLEnum(
    MembershipStatus, name="membership_status", create_type=False, native_enum=True
)
group_member_role_enum = SQLEnum(
    GroupMemberRole, name="group_member_role", create_type=False, native_enum=True
)
