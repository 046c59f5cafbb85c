"""
Core business logic - platform-agnostic.
Used by the web API; never imports FastAPI.
"""

# Database (SQLAlchemy)
from .database import get_connection, get_transaction, get_engine, close_engine, is_configured

# Enums and errors
from .enums import UserRole, MembershipStatus, GroupMemberRole
from .errors import (
    BeBusyError, NotAuthenticatedError, PermissionDeniedError, BannedError,
    NotFoundError, FocusGroupNotFoundError, AlreadyMemberError, CapacityRaceError,
)

# Role resolution
from .roles import RoleInfo, resolve_role

# Focus groups
from .focus_groups import (
    FocusGroupCapacity, get_capacity, find_membership, route_application,
    apply_to_focus_group, leave_focus_group,
    list_focus_groups, get_focus_group, get_user_focus_groups, get_mentor_focus_groups,
    get_membership_status,
    create_focus_group, update_focus_group, delete_focus_group,
)

# Group chat binding
from .group_chat import bind_member, unbind_member

__all__ = [
    # Database (SQLAlchemy)
    'get_connection', 'get_transaction', 'get_engine', 'close_engine', 'is_configured',
    # Enums
    'UserRole', 'MembershipStatus', 'GroupMemberRole',
    # Errors
    'BeBusyError', 'NotAuthenticatedError', 'PermissionDeniedError', 'BannedError',
    'NotFoundError', 'FocusGroupNotFoundError', 'AlreadyMemberError', 'CapacityRaceError',
    # Roles
    'RoleInfo', 'resolve_role',
    # Focus groups
    'FocusGroupCapacity', 'get_capacity', 'find_membership', 'route_application',
    'apply_to_focus_group', 'leave_focus_group',
    'list_focus_groups', 'get_focus_group', 'get_user_focus_groups', 'get_mentor_focus_groups',
    'get_membership_status',
    'create_focus_group', 'update_focus_group', 'delete_focus_group',
    # Group chat
    'bind_member', 'unbind_member',
]
