from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from uuid import UUID

from gradebook.errors import PermissionDeniedError
from gradebook.models import Course, course_students, User



async def is_student_enrolled(course_id: UUID, student_id: UUID, db: AsyncSession) -> bool:
    result = await db.execute(
        select(course_students).where(
            course_students.c.course_id == course_id,
            course_students.c.student_id == student_id,
        )
    )
    return result.first() is not None


async def ensure_student_enrolled(
    course_id: UUID,
    student_id: UUID,
    db: AsyncSession,
):
    if not await is_student_enrolled(course_id, student_id, db):
        raise PermissionDeniedError("You are not enrolled in this course")


def ensure_course_author(course: Course, current_user: User, action: str = "manage this course"):
    """Only the course instructor may grade or review its questionnaires."""
    if course.instructor_id != current_user.id:
        raise PermissionDeniedError(f"You are not allowed to {action}")
