"""Read-only view of the school directory used for billing inputs"""

import asyncio
from typing import List, Optional, Sequence
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.exc import InterfaceError, OperationalError
from sqlalchemy.ext.asyncio import async_sessionmaker

from app.config import settings
from app.core.exceptions import StoreUnavailable
from app.database import AsyncSessionLocal
from app.models.school import School, Student
from app.schemas.billing import SchoolRef


class SchoolDirectory:
    """
    Lists schools with their active student counts.

    Student counts are read at call time; billing records keep their own
    snapshot of the count used.
    """

    def __init__(self, session_factory: async_sessionmaker = AsyncSessionLocal, timeout: Optional[float] = None) -> None:
        self._session_factory = session_factory
        self._timeout = timeout if timeout is not None else settings.BILLING_STORE_TIMEOUT_SECONDS

    async def list_schools(
        self,
        school_ids: Optional[Sequence[UUID]] = None,
        active_only: bool = True,
    ) -> List[SchoolRef]:
        active_students = (
            select(Student.school_id, func.count(Student.id).label("student_count"))
            .where(Student.is_active.is_(True))
            .group_by(Student.school_id)
            .subquery()
        )
        stmt = (
            select(School.id, School.name, School.is_active, active_students.c.student_count)
            .outerjoin(active_students, active_students.c.school_id == School.id)
            .order_by(School.name)
        )
        if school_ids is not None:
            stmt = stmt.where(School.id.in_(list(school_ids)))
        if active_only:
            stmt = stmt.where(School.is_active.is_(True))

        async def _fetch():
            async with self._session_factory() as session:
                return (await session.execute(stmt)).all()

        try:
            rows = await asyncio.wait_for(_fetch(), self._timeout)
        except asyncio.TimeoutError:
            raise StoreUnavailable("School directory timed out")
        except (OperationalError, InterfaceError) as exc:
            raise StoreUnavailable("School directory unavailable") from exc

        return [
            SchoolRef(
                id=row.id,
                name=row.name,
                is_active=row.is_active,
                active_student_count=row.student_count or 0,
            )
            for row in rows
        ]

    async def get_school(self, school_id: UUID) -> Optional[SchoolRef]:
        schools = await self.list_schools([school_id], active_only=False)
        return schools[0] if schools else None
