import asyncio
import uuid

import pytest
from sqlalchemy import func, select, update
from sqlalchemy.exc import OperationalError

from gradebook.errors import ConcurrentGradingError, PersistenceError, SubmissionNotFoundError
from gradebook.models import SeriesAIGrading, SeriesSubmission
from gradebook.schemas.series import AIGradingData, TeacherGradingData
from gradebook.services.grading_reconciler import (
    get_ai_grading,
    save_or_update_ai_grading,
    save_or_update_teacher_grading,
)


async def grading_count(session_factory, submission_id):
    async with session_factory() as session:
        return (await session.execute(
            select(func.count(SeriesAIGrading.id)).where(SeriesAIGrading.submission_id == submission_id)
        )).scalar()


async def stored_status(session_factory, submission_id):
    async with session_factory() as session:
        return (await session.get(SeriesSubmission, submission_id)).status


async def test_ai_grading_marks_submission_graded(db, session_factory, submission, locks):
    grading = await save_or_update_ai_grading(
        db, submission.id, AIGradingData(ai_score=72, ai_feedback="Good start"), locks=locks
    )

    assert grading.ai_score == 72
    assert grading.final_score == 72
    assert grading.graded_at is not None
    assert await stored_status(session_factory, submission.id) == "graded"


async def test_regrading_replaces_the_row(db, session_factory, submission, locks):
    await save_or_update_ai_grading(
        db, submission.id, AIGradingData(ai_score=60, ai_feedback="first"), locks=locks
    )
    await save_or_update_ai_grading(
        db, submission.id, AIGradingData(ai_score=85, ai_feedback="second"), locks=locks
    )

    assert await grading_count(session_factory, submission.id) == 1
    latest = await get_ai_grading(db, submission.id)
    assert latest.ai_score == 85
    assert latest.ai_feedback == "second"


async def test_teacher_review_keeps_ai_fields(db, submission, locks):
    await save_or_update_ai_grading(
        db,
        submission.id,
        AIGradingData(ai_score=70, ai_feedback="AI says fine", grading_criteria_used="depth"),
        locks=locks,
    )

    grading = await save_or_update_teacher_grading(
        db, submission.id, TeacherGradingData(teacher_score=90, teacher_feedback="Better than that"),
        locks=locks,
    )

    assert grading.ai_score == 70
    assert grading.ai_feedback == "AI says fine"
    assert grading.teacher_score == 90
    assert grading.final_score == 90
    assert grading.teacher_reviewed_at is not None


async def test_teacher_review_without_ai_grading_creates_row(db, session_factory, submission, locks):
    grading = await save_or_update_teacher_grading(
        db, submission.id, TeacherGradingData(teacher_score=55), locks=locks
    )

    assert grading.ai_score is None
    assert grading.final_score == 55
    assert grading.graded_at is not None
    assert await grading_count(session_factory, submission.id) == 1
    assert await stored_status(session_factory, submission.id) == "graded"


async def test_unknown_submission_is_reported(db, locks):
    with pytest.raises(SubmissionNotFoundError):
        await save_or_update_ai_grading(
            db, uuid.uuid4(), AIGradingData(ai_score=1, ai_feedback="x"), locks=locks
        )


async def test_failed_commit_leaves_status_untouched(db, session_factory, submission, locks, monkeypatch):
    submission_id = submission.id

    async def failing_commit():
        raise OperationalError("COMMIT", {}, Exception("disk I/O error"))

    monkeypatch.setattr(db, "commit", failing_commit)

    with pytest.raises(PersistenceError):
        await save_or_update_ai_grading(
            db, submission_id, AIGradingData(ai_score=50, ai_feedback="lost"), locks=locks
        )

    assert await stored_status(session_factory, submission_id) == "submitted"
    assert await grading_count(session_factory, submission_id) == 0


async def test_concurrent_ai_gradings_leave_one_row(session_factory, submission, locks):
    async def grade(score):
        async with session_factory() as session:
            await save_or_update_ai_grading(
                session, submission.id, AIGradingData(ai_score=score, ai_feedback=str(score)), locks=locks
            )

    await asyncio.gather(grade(40), grade(95))

    assert await grading_count(session_factory, submission.id) == 1
    async with session_factory() as session:
        grading = await get_ai_grading(session, submission.id)
    assert grading.ai_score in (40, 95)
    assert len(locks) == 0


async def test_stale_teacher_review_raises_conflict(db, session_factory, submission, locks, monkeypatch):
    submission_id = submission.id
    await save_or_update_ai_grading(
        db, submission_id, AIGradingData(ai_score=70, ai_feedback="AI"), locks=locks
    )
    real_commit = db.commit

    # another reviewer commits after this review read the row but before it flushes
    async def commit_after_other_review():
        async with session_factory() as other:
            await other.execute(
                update(SeriesAIGrading)
                .where(SeriesAIGrading.submission_id == submission_id)
                .values(teacher_score=60, version=SeriesAIGrading.version + 1)
            )
            await other.commit()
        await real_commit()

    monkeypatch.setattr(db, "commit", commit_after_other_review)

    with pytest.raises(ConcurrentGradingError):
        await save_or_update_teacher_grading(
            db, submission_id, TeacherGradingData(teacher_score=99), locks=locks
        )

    async with session_factory() as session:
        grading = await get_ai_grading(session, submission_id)
    assert grading.teacher_score == 60
