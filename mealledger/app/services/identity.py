"""Student token parsing and school-scoped student resolution."""

import re
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession

from mealledger.app.core.config import settings
from mealledger.app.db.crud.reference import get_student_by_number
from mealledger.app.db.models import Student
from mealledger.app.exceptions import InvalidTokenFormat, StudentNotFound


class IdentityResolver:
    """Maps a scanned token ``<prefix>-<student_number>`` to a Student.

    Tokens are only meaningful inside one school: the same number at a
    different school never resolves.
    """

    def __init__(self, prefix: Optional[str] = None):
        self.prefix = prefix or settings.student_token_prefix
        self._pattern = re.compile(rf"^{re.escape(self.prefix)}-(.+)$")

    def parse_token(self, token: str) -> str:
        """Extract the student number from a token without touching storage.

        Raises:
            InvalidTokenFormat: token does not have the expected shape
        """
        match = self._pattern.match(token.strip()) if token else None
        if match is None:
            raise InvalidTokenFormat(self.prefix)
        return match.group(1)

    async def lookup(
        self,
        session: AsyncSession,
        student_number: str,
        school_id: str
    ) -> Student:
        student = await get_student_by_number(session, school_id, student_number)
        if student is None:
            raise StudentNotFound()
        return student

    async def resolve(
        self,
        session: AsyncSession,
        token: str,
        school_id: str
    ) -> Student:
        """Parse ``token`` and look the student up within ``school_id``.

        Raises:
            InvalidTokenFormat: malformed token (no lookup performed)
            StudentNotFound: no such student at this school
        """
        student_number = self.parse_token(token)
        return await self.lookup(session, student_number, school_id)
