"""Tests for admin moderation."""

import uuid
from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock, MagicMock

import pytest

from core.enums import UserRole
from core.errors import NotFoundError, PermissionDeniedError
from core.moderation import (
    ban_reason_bio,
    ban_user,
    check_expired_bans,
    get_all_users,
    unban_user,
    update_user_role,
)

ADMIN_ID = uuid.uuid4()
TARGET_ID = uuid.uuid4()
NOW = datetime(2026, 3, 10, 12, 0, tzinfo=timezone.utc)


def _result(first=None):
    result = MagicMock()
    result.mappings.return_value.first.return_value = first
    return result


def _role(role):
    return _result({"role": role, "banned_until": None})


class TestBanReasonBio:
    def test_with_reason(self):
        assert ban_reason_bio("spam") == "[BANNED] spam"

    def test_without_reason(self):
        assert ban_reason_bio(None) == "[BANNED]"


class TestGetAllUsers:
    @pytest.mark.asyncio
    async def test_admin_lists_profiles(self):
        users = MagicMock()
        users.mappings.return_value = [{"id": TARGET_ID, "username": "sam"}]
        mock_conn = AsyncMock()
        mock_conn.execute = AsyncMock(side_effect=[_role("admin"), users])

        result = await get_all_users(mock_conn, ADMIN_ID)

        assert result == [{"id": TARGET_ID, "username": "sam"}]

    @pytest.mark.asyncio
    async def test_mentor_denied(self):
        mock_conn = AsyncMock()
        mock_conn.execute = AsyncMock(return_value=_role("mentor"))

        with pytest.raises(PermissionDeniedError):
            await get_all_users(mock_conn, ADMIN_ID)

        assert mock_conn.execute.call_count == 1


class TestBanUser:
    @pytest.mark.asyncio
    async def test_timed_ban(self):
        mock_conn = AsyncMock()
        mock_conn.execute = AsyncMock(
            side_effect=[_role("admin"), _result({"id": TARGET_ID, "role": "banned"})]
        )

        profile = await ban_user(
            mock_conn, ADMIN_ID, TARGET_ID, reason="spam", duration_hours=24, now=NOW
        )

        assert profile["role"] == "banned"
        params = mock_conn.execute.call_args_list[1].args[0].compile().params
        assert params["role"] == UserRole.banned
        assert params["bio"] == "[BANNED] spam"
        assert params["banned_until"] == NOW + timedelta(hours=24)

    @pytest.mark.asyncio
    async def test_permanent_ban_has_no_expiry(self):
        mock_conn = AsyncMock()
        mock_conn.execute = AsyncMock(
            side_effect=[_role("admin"), _result({"id": TARGET_ID})]
        )

        await ban_user(mock_conn, ADMIN_ID, TARGET_ID)

        params = mock_conn.execute.call_args_list[1].args[0].compile().params
        assert params["banned_until"] is None
        assert params["bio"] == "[BANNED]"

    @pytest.mark.asyncio
    @pytest.mark.parametrize("role", ["user", "mentor", "banned"])
    async def test_requires_admin(self, role):
        mock_conn = AsyncMock()
        mock_conn.execute = AsyncMock(return_value=_role(role))

        with pytest.raises(PermissionDeniedError):
            await ban_user(mock_conn, ADMIN_ID, TARGET_ID)

    @pytest.mark.asyncio
    async def test_cannot_ban_self(self):
        mock_conn = AsyncMock()
        mock_conn.execute = AsyncMock(return_value=_role("admin"))

        with pytest.raises(PermissionDeniedError):
            await ban_user(mock_conn, ADMIN_ID, ADMIN_ID)

    @pytest.mark.asyncio
    async def test_missing_target(self):
        mock_conn = AsyncMock()
        mock_conn.execute = AsyncMock(side_effect=[_role("admin"), _result(None)])

        with pytest.raises(NotFoundError):
            await ban_user(mock_conn, ADMIN_ID, TARGET_ID)


class TestUnbanUser:
    @pytest.mark.asyncio
    async def test_clears_ban_fields(self):
        mock_conn = AsyncMock()
        mock_conn.execute = AsyncMock(
            side_effect=[_role("admin"), _result({"id": TARGET_ID, "role": "user"})]
        )

        await unban_user(mock_conn, ADMIN_ID, TARGET_ID)

        params = mock_conn.execute.call_args_list[1].args[0].compile().params
        assert params["role"] == UserRole.user
        assert params["bio"] is None
        assert params["banned_until"] is None


class TestUpdateUserRole:
    @pytest.mark.asyncio
    async def test_promotes_to_mentor(self):
        mock_conn = AsyncMock()
        mock_conn.execute = AsyncMock(
            side_effect=[_role("admin"), _result({"id": TARGET_ID, "role": "mentor"})]
        )

        profile = await update_user_role(mock_conn, ADMIN_ID, TARGET_ID, "mentor")

        assert profile["role"] == "mentor"

    @pytest.mark.asyncio
    async def test_banned_role_goes_through_ban(self):
        mock_conn = AsyncMock()
        mock_conn.execute = AsyncMock(return_value=_role("admin"))

        with pytest.raises(ValueError):
            await update_user_role(mock_conn, ADMIN_ID, TARGET_ID, UserRole.banned)

    @pytest.mark.asyncio
    async def test_unknown_role(self):
        mock_conn = AsyncMock()
        mock_conn.execute = AsyncMock(return_value=_role("admin"))

        with pytest.raises(ValueError):
            await update_user_role(mock_conn, ADMIN_ID, TARGET_ID, "owner")


class TestCheckExpiredBans:
    @pytest.mark.asyncio
    async def test_returns_unbanned_ids(self):
        mock_conn = AsyncMock()
        mock_result = MagicMock()
        mock_result.scalars.return_value.all.return_value = [TARGET_ID]
        mock_conn.execute = AsyncMock(return_value=mock_result)

        unbanned = await check_expired_bans(mock_conn, now=NOW)

        assert unbanned == [TARGET_ID]
        sql = str(mock_conn.execute.call_args.args[0].compile())
        assert "banned_until IS NOT NULL" in sql
        assert "banned_until <=" in sql
