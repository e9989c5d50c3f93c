"""Tests for student token parsing and school-scoped resolution."""

from unittest.mock import AsyncMock

import pytest
from sqlalchemy.ext.asyncio import AsyncSession

from mealledger.app.exceptions import InvalidTokenFormat, StudentNotFound
from mealledger.app.services.identity import IdentityResolver


class TestParseToken:
    """Token shape checks that never touch storage."""

    def test_extracts_student_number(self):
        resolver = IdentityResolver(prefix="mbgku")
        assert resolver.parse_token("mbgku-1001") == "1001"

    def test_keeps_everything_after_first_dash(self):
        resolver = IdentityResolver(prefix="mbgku")
        assert resolver.parse_token("mbgku-2024-07-A") == "2024-07-A"

    def test_strips_surrounding_whitespace(self):
        resolver = IdentityResolver(prefix="mbgku")
        assert resolver.parse_token("  mbgku-1001\n") == "1001"

    @pytest.mark.parametrize(
        "token",
        ["bad-format", "mbgku", "mbgku-", "MBGKU-1001", "xmbgku-1001", "1001", ""],
    )
    def test_rejects_malformed_tokens(self, token):
        resolver = IdentityResolver(prefix="mbgku")
        with pytest.raises(InvalidTokenFormat) as exc_info:
            resolver.parse_token(token)
        assert exc_info.value.status_code == 400
        assert exc_info.value.error_code == "invalid_token_format"

    def test_prefix_is_escaped(self):
        resolver = IdentityResolver(prefix="a.b")
        assert resolver.parse_token("a.b-7") == "7"
        with pytest.raises(InvalidTokenFormat):
            resolver.parse_token("axb-7")

    def test_default_prefix_from_settings(self):
        assert IdentityResolver().prefix == "mbgku"


class TestResolve:

    @pytest.mark.asyncio
    async def test_malformed_token_performs_no_lookup(self):
        mock_session = AsyncMock(spec=AsyncSession)
        resolver = IdentityResolver(prefix="mbgku")

        with pytest.raises(InvalidTokenFormat):
            await resolver.resolve(mock_session, "bad-format", "school-a")

        mock_session.execute.assert_not_called()

    @pytest.mark.asyncio
    async def test_resolves_student_of_school(self, session, ledger):
        student = await IdentityResolver().resolve(session, "mbgku-1001", ledger.school_a)
        assert student.id == ledger.student_a
        assert student.school_id == ledger.school_a

    @pytest.mark.asyncio
    async def test_same_number_resolves_per_school(self, session, ledger):
        student = await IdentityResolver().resolve(session, "mbgku-1001", ledger.school_b)
        assert student.id == ledger.student_other

    @pytest.mark.asyncio
    async def test_token_from_another_school_is_not_found(self, session, ledger):
        # 1002 only exists at school-a
        with pytest.raises(StudentNotFound) as exc_info:
            await IdentityResolver().resolve(session, "mbgku-1002", ledger.school_b)
        assert exc_info.value.status_code == 404

    @pytest.mark.asyncio
    async def test_unknown_number_is_not_found(self, session, ledger):
        with pytest.raises(StudentNotFound):
            await IdentityResolver().resolve(session, "mbgku-9999", ledger.school_a)
