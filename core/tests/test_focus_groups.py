"""Tests for focus-group membership and capacity logic."""

import uuid
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from sqlalchemy.exc import IntegrityError

from core.enums import MembershipStatus, UserRole
from core.errors import (
    AlreadyMemberError,
    BannedError,
    CapacityRaceError,
    FocusGroupNotFoundError,
    NotAuthenticatedError,
    PermissionDeniedError,
)
from core.focus_groups import (
    FocusGroupCapacity,
    apply_to_focus_group,
    create_focus_group,
    delete_focus_group,
    get_capacity,
    get_membership_status,
    get_mentor_focus_groups,
    leave_focus_group,
    route_application,
    update_focus_group,
)

USER_ID = uuid.UUID("00000000-0000-0000-0000-000000000001")
FOCUS_GROUP_ID = uuid.UUID("00000000-0000-0000-0000-0000000000f1")
GROUP_ID = uuid.UUID("00000000-0000-0000-0000-0000000000c1")


def _result(first=None, scalar=None, rowcount=None):
    result = MagicMock()
    result.mappings.return_value.first.return_value = first
    result.scalar_one_or_none.return_value = scalar
    result.scalar_one.return_value = scalar
    result.rowcount = rowcount
    return result


def _role_row(role="user"):
    return _result(first={"role": role, "banned_until": None})


def _capacity_row(available=3, total=5, is_full=False, group_id=GROUP_ID):
    return _result(
        first={
            "id": FOCUS_GROUP_ID,
            "total_spots": total,
            "available_spots": available,
            "is_full": is_full,
            "group_id": group_id,
        }
    )


def _membership_row(status="active"):
    return {
        "focus_group_id": FOCUS_GROUP_ID,
        "user_id": USER_ID,
        "status": status,
    }


def _mock_conn(results):
    """AsyncConnection mock whose begin_nested() works as an async context manager."""
    mock_conn = AsyncMock()
    mock_conn.execute = AsyncMock(side_effect=results)
    savepoint = MagicMock()
    savepoint.__aenter__ = AsyncMock(return_value=None)
    savepoint.__aexit__ = AsyncMock(return_value=False)
    mock_conn.begin_nested = MagicMock(return_value=savepoint)
    return mock_conn


def _capacity(available=3, total=5, is_full=False):
    return FocusGroupCapacity(
        focus_group_id=FOCUS_GROUP_ID,
        total_spots=total,
        available_spots=available,
        is_full=is_full,
    )


class TestRouteApplication:
    """Capacity routing for a new membership."""

    def test_user_gets_active_when_spots_left(self):
        assert route_application(UserRole.user, _capacity(available=1)) == MembershipStatus.active

    def test_user_waitlisted_when_full_even_with_spots_reported(self):
        """is_full wins over a stale available_spots value."""
        capacity = _capacity(available=2, is_full=True)
        assert route_application(UserRole.user, capacity) == MembershipStatus.waitlist

    def test_user_waitlisted_when_no_spots(self):
        assert route_application(UserRole.user, _capacity(available=0)) == MembershipStatus.waitlist

    @pytest.mark.parametrize("role", [UserRole.mentor, UserRole.admin])
    def test_staff_active_even_when_full(self, role):
        capacity = _capacity(available=0, is_full=True)
        assert route_application(role, capacity) == MembershipStatus.active


class TestGetCapacity:
    @pytest.mark.asyncio
    async def test_returns_capacity(self):
        mock_conn = _mock_conn([_capacity_row(available=2, total=4)])

        capacity = await get_capacity(mock_conn, FOCUS_GROUP_ID)

        assert capacity.available_spots == 2
        assert capacity.total_spots == 4
        assert capacity.is_full is False
        assert capacity.bound_group_id == GROUP_ID

    @pytest.mark.asyncio
    async def test_missing_focus_group_is_not_found(self):
        """A missing focus group is distinct from a full one."""
        mock_conn = _mock_conn([_result(first=None)])

        with pytest.raises(FocusGroupNotFoundError):
            await get_capacity(mock_conn, FOCUS_GROUP_ID)


class TestApplyToFocusGroup:
    """Apply workflow."""

    @pytest.mark.asyncio
    async def test_user_with_spots_becomes_active_and_joins_chat(self):
        mock_conn = _mock_conn(
            [
                _role_row("user"),
                _result(first=None),  # no membership
                _capacity_row(available=3),
                _result(first=_membership_row("active")),  # insert
                _result(rowcount=1),  # chat bind
            ]
        )

        status = await apply_to_focus_group(mock_conn, USER_ID, FOCUS_GROUP_ID)

        assert status == MembershipStatus.active
        assert mock_conn.execute.call_count == 5
        mock_conn.begin_nested.assert_called_once()

    @pytest.mark.asyncio
    async def test_user_waitlisted_when_full_and_no_chat_bind(self):
        mock_conn = _mock_conn(
            [
                _role_row("user"),
                _result(first=None),
                _capacity_row(available=2, is_full=True),
                _result(first=_membership_row("waitlist")),
            ]
        )

        status = await apply_to_focus_group(mock_conn, USER_ID, FOCUS_GROUP_ID)

        assert status == MembershipStatus.waitlist
        assert mock_conn.execute.call_count == 4
        mock_conn.begin_nested.assert_not_called()

    @pytest.mark.asyncio
    @pytest.mark.parametrize("role", ["mentor", "admin"])
    async def test_staff_bypass_capacity(self, role):
        mock_conn = _mock_conn(
            [
                _role_row(role),
                _result(first=None),
                _capacity_row(available=0, is_full=True),
                _result(first=_membership_row("active")),
                _result(rowcount=1),
            ]
        )

        status = await apply_to_focus_group(mock_conn, USER_ID, FOCUS_GROUP_ID)

        assert status == MembershipStatus.active

    @pytest.mark.asyncio
    async def test_active_without_bound_group_skips_chat(self):
        mock_conn = _mock_conn(
            [
                _role_row("user"),
                _result(first=None),
                _capacity_row(available=3, group_id=None),
                _result(first=_membership_row("active")),
            ]
        )

        status = await apply_to_focus_group(mock_conn, USER_ID, FOCUS_GROUP_ID)

        assert status == MembershipStatus.active
        mock_conn.begin_nested.assert_not_called()

    @pytest.mark.asyncio
    @pytest.mark.parametrize("role", ["user", "mentor", "admin"])
    async def test_existing_membership_conflicts_for_every_role(self, role):
        mock_conn = _mock_conn(
            [
                _role_row(role),
                _result(first=_membership_row("waitlist")),
            ]
        )

        with pytest.raises(AlreadyMemberError) as exc_info:
            await apply_to_focus_group(mock_conn, USER_ID, FOCUS_GROUP_ID)

        assert exc_info.value.status == MembershipStatus.waitlist
        # Nothing inserted
        assert mock_conn.execute.call_count == 2

    @pytest.mark.asyncio
    async def test_missing_focus_group(self):
        mock_conn = _mock_conn(
            [
                _role_row("user"),
                _result(first=None),
                _result(first=None),
            ]
        )

        with pytest.raises(FocusGroupNotFoundError):
            await apply_to_focus_group(mock_conn, USER_ID, FOCUS_GROUP_ID)

    @pytest.mark.asyncio
    async def test_no_identity_is_unauthenticated(self):
        mock_conn = _mock_conn([])

        with pytest.raises(NotAuthenticatedError):
            await apply_to_focus_group(mock_conn, None, FOCUS_GROUP_ID)

        mock_conn.execute.assert_not_called()

    @pytest.mark.asyncio
    async def test_missing_profile_is_unauthenticated(self):
        mock_conn = _mock_conn([_result(first=None)])

        with pytest.raises(NotAuthenticatedError):
            await apply_to_focus_group(mock_conn, USER_ID, FOCUS_GROUP_ID)

    @pytest.mark.asyncio
    async def test_banned_user_rejected(self):
        mock_conn = _mock_conn([_role_row("banned")])

        with pytest.raises(BannedError):
            await apply_to_focus_group(mock_conn, USER_ID, FOCUS_GROUP_ID)

    @pytest.mark.asyncio
    async def test_store_capacity_rejection_surfaces_message(self):
        """Last spot taken between the read and the insert."""
        error = IntegrityError(
            "INSERT INTO focus_group_members",
            {},
            Exception("focus group is full"),
        )
        mock_conn = _mock_conn(
            [
                _role_row("user"),
                _result(first=None),
                _capacity_row(available=1),
                error,
            ]
        )

        with pytest.raises(CapacityRaceError, match="focus group is full"):
            await apply_to_focus_group(mock_conn, USER_ID, FOCUS_GROUP_ID)

        mock_conn.begin_nested.assert_not_called()

    @pytest.mark.asyncio
    async def test_duplicate_key_race_is_conflict(self):
        """Two concurrent applies by the same user: the second hits the primary key."""
        error = IntegrityError(
            "INSERT INTO focus_group_members",
            {},
            Exception('duplicate key value violates unique constraint "pk_focus_group_members"'),
        )
        mock_conn = _mock_conn(
            [
                _role_row("user"),
                _result(first=None),
                _capacity_row(available=1),
                error,
            ]
        )

        with pytest.raises(AlreadyMemberError):
            await apply_to_focus_group(mock_conn, USER_ID, FOCUS_GROUP_ID)

    @pytest.mark.asyncio
    @patch("core.focus_groups.sentry_sdk")
    async def test_chat_bind_failure_keeps_membership(self, mock_sentry):
        """A failed chat bind is logged and reported; apply still succeeds."""
        bind_error = RuntimeError("group_members unavailable")
        mock_conn = _mock_conn(
            [
                _role_row("user"),
                _result(first=None),
                _capacity_row(available=3),
                _result(first=_membership_row("active")),
                bind_error,
            ]
        )

        status = await apply_to_focus_group(mock_conn, USER_ID, FOCUS_GROUP_ID)

        assert status == MembershipStatus.active
        mock_sentry.capture_exception.assert_called_once_with(bind_error)
        # The savepoint saw the exception and rolled back only itself
        savepoint = mock_conn.begin_nested.return_value
        savepoint.__aexit__.assert_awaited_once()
        assert savepoint.__aexit__.await_args.args[0] is RuntimeError


class TestLeaveFocusGroup:
    """Leave workflow."""

    @pytest.mark.asyncio
    async def test_leave_removes_membership_and_chat(self):
        mock_conn = _mock_conn(
            [
                _role_row("user"),
                _result(scalar=GROUP_ID),  # bound group
                _result(first=_membership_row("active")),
                _result(rowcount=1),  # delete membership
                _result(rowcount=1),  # unbind
            ]
        )

        result = await leave_focus_group(mock_conn, USER_ID, FOCUS_GROUP_ID)

        assert result is None
        assert mock_conn.execute.call_count == 5
        mock_conn.begin_nested.assert_called_once()

    @pytest.mark.asyncio
    async def test_leave_twice_is_noop(self):
        """Second leave finds nothing to delete and still succeeds."""
        mock_conn = _mock_conn(
            [
                _role_row("user"),
                _result(scalar=GROUP_ID),
                _result(first=None),
                _result(rowcount=0),
                _result(rowcount=0),
            ]
        )

        await leave_focus_group(mock_conn, USER_ID, FOCUS_GROUP_ID)

    @pytest.mark.asyncio
    async def test_leave_without_bound_group(self):
        mock_conn = _mock_conn(
            [
                _role_row("user"),
                _result(scalar=None),
                _result(first=_membership_row("waitlist")),
                _result(rowcount=1),
            ]
        )

        await leave_focus_group(mock_conn, USER_ID, FOCUS_GROUP_ID)

        mock_conn.begin_nested.assert_not_called()

    @pytest.mark.asyncio
    async def test_banned_user_may_leave(self):
        mock_conn = _mock_conn(
            [
                _role_row("banned"),
                _result(scalar=None),
                _result(first=_membership_row("active")),
                _result(rowcount=1),
            ]
        )

        await leave_focus_group(mock_conn, USER_ID, FOCUS_GROUP_ID)

    @pytest.mark.asyncio
    @patch("core.focus_groups.sentry_sdk")
    async def test_unbind_failure_is_swallowed(self, mock_sentry):
        mock_conn = _mock_conn(
            [
                _role_row("user"),
                _result(scalar=GROUP_ID),
                _result(first=_membership_row("active")),
                _result(rowcount=1),
                RuntimeError("boom"),
            ]
        )

        await leave_focus_group(mock_conn, USER_ID, FOCUS_GROUP_ID)

        mock_sentry.capture_exception.assert_called_once()

    @pytest.mark.asyncio
    async def test_no_identity_is_unauthenticated(self):
        mock_conn = _mock_conn([])

        with pytest.raises(NotAuthenticatedError):
            await leave_focus_group(mock_conn, None, FOCUS_GROUP_ID)


class TestGetMembershipStatus:
    @pytest.mark.asyncio
    async def test_anonymous_is_not_member(self):
        mock_conn = _mock_conn([])

        result = await get_membership_status(mock_conn, None, FOCUS_GROUP_ID)

        assert result == {"is_member": False, "status": None}
        mock_conn.execute.assert_not_called()

    @pytest.mark.asyncio
    async def test_reports_waitlist(self):
        mock_conn = _mock_conn([_result(first=_membership_row("waitlist"))])

        result = await get_membership_status(mock_conn, USER_ID, FOCUS_GROUP_ID)

        assert result == {"is_member": True, "status": "waitlist"}


class TestEndToEndScenarios:
    """Multi-user flows against a capacity-2 focus group."""

    @pytest.mark.asyncio
    async def test_two_users_fill_group_third_waitlisted_mentor_active(self):
        alice, bob, carol, mentor = (uuid.uuid4() for _ in range(4))

        async def apply(user_id, role, available, is_full):
            mock_conn = _mock_conn(
                [
                    _role_row(role),
                    _result(first=None),
                    _capacity_row(available=available, total=2, is_full=is_full),
                    _result(first={"status": "ok"}),
                    _result(rowcount=1),
                ]
            )
            return await apply_to_focus_group(mock_conn, user_id, FOCUS_GROUP_ID)

        assert await apply(alice, "user", 2, False) == MembershipStatus.active
        assert await apply(bob, "user", 1, False) == MembershipStatus.active
        assert await apply(carol, "user", 0, True) == MembershipStatus.waitlist
        assert await apply(mentor, "mentor", 0, True) == MembershipStatus.active

    @pytest.mark.asyncio
    async def test_leave_then_reapply_is_active_again(self):
        mock_leave = _mock_conn(
            [
                _role_row("user"),
                _result(scalar=GROUP_ID),
                _result(first=_membership_row("active")),
                _result(rowcount=1),
                _result(rowcount=1),
            ]
        )
        await leave_focus_group(mock_leave, USER_ID, FOCUS_GROUP_ID)

        mock_apply = _mock_conn(
            [
                _role_row("user"),
                _result(first=None),
                _capacity_row(available=1, total=2),
                _result(first=_membership_row("active")),
                _result(rowcount=1),
            ]
        )
        status = await apply_to_focus_group(mock_apply, USER_ID, FOCUS_GROUP_ID)

        assert status == MembershipStatus.active


class TestMentorManagement:
    @pytest.mark.asyncio
    async def test_mentor_focus_groups_filtered_by_mentor(self):
        rows = [{"id": FOCUS_GROUP_ID, "title": "Deep Work", "mentor_id": USER_ID}]
        result = MagicMock()
        result.mappings.return_value = rows
        mock_conn = _mock_conn([result])

        focus_groups = await get_mentor_focus_groups(mock_conn, USER_ID)

        assert focus_groups == rows
        params = mock_conn.execute.call_args.args[0].compile().params
        assert USER_ID in params.values()

    @pytest.mark.asyncio
    async def test_create_builds_group_chat_and_binds_creator(self):
        created = {"id": FOCUS_GROUP_ID, "title": "Deep Work", "group_id": GROUP_ID}
        mock_conn = _mock_conn(
            [
                _role_row("mentor"),
                _result(scalar=GROUP_ID),  # insert groups
                _result(first=created),  # insert focus_groups
                _result(rowcount=1),  # bind creator
            ]
        )

        result = await create_focus_group(
            mock_conn,
            USER_ID,
            title="Deep Work",
            description="Two hours a day",
            mentor_name="Sam",
            mentor_role="Coach",
            total_spots=4,
        )

        assert result == created
        group_insert = mock_conn.execute.call_args_list[1].args[0]
        params = group_insert.compile().params
        assert params["name"] == "Deep Work - Group Chat"
        assert params["description"] == "Private group chat for Deep Work focus group members"

        focus_group_insert = mock_conn.execute.call_args_list[2].args[0]
        params = focus_group_insert.compile().params
        assert params["available_spots"] == 4
        assert params["is_full"] is False

        bind = mock_conn.execute.call_args_list[3].args[0]
        assert bind.compile().params["role"] == "admin"

    @pytest.mark.asyncio
    async def test_regular_user_cannot_create(self):
        mock_conn = _mock_conn([_role_row("user")])

        with pytest.raises(PermissionDeniedError):
            await create_focus_group(
                mock_conn, USER_ID, "T", "D", "M", "R", total_spots=3
            )

    @pytest.mark.asyncio
    async def test_update_other_mentors_group_is_not_found(self):
        mock_conn = _mock_conn([_role_row("mentor"), _result(first=None)])

        with pytest.raises(FocusGroupNotFoundError):
            await update_focus_group(mock_conn, USER_ID, FOCUS_GROUP_ID, title="New")

    @pytest.mark.asyncio
    async def test_update_ignores_unknown_fields(self):
        updated = {"id": FOCUS_GROUP_ID, "title": "New"}
        mock_conn = _mock_conn([_role_row("admin"), _result(first=updated)])

        result = await update_focus_group(
            mock_conn, USER_ID, FOCUS_GROUP_ID, title="New", available_spots=99
        )

        assert result == updated
        params = mock_conn.execute.call_args_list[1].args[0].compile().params
        assert "available_spots" not in params

    @pytest.mark.asyncio
    async def test_delete_missing_is_not_found(self):
        mock_conn = _mock_conn([_role_row("mentor"), _result(rowcount=0)])

        with pytest.raises(FocusGroupNotFoundError):
            await delete_focus_group(mock_conn, USER_ID, FOCUS_GROUP_ID)
