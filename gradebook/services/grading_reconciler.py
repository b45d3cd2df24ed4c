"""
Persist AI and teacher gradings against a series submission.

There is at most one ``series_ai_gradings`` row per submission and a
submission is ``graded`` exactly when that row exists. Both writers below
keep that true:

* Every write for a submission runs under the caller supplied per-submission
  lock, so two gradings of the same submission never interleave.
* The grading write and the status flip share one database transaction.
  If any statement fails the transaction is rolled back and the submission
  keeps its previous status.

The AI path replaces the row with delete-then-insert in that same
transaction. The unique index on submission_id rejects a duplicate from any
writer that bypasses the lock.
"""

import logging
from datetime import datetime
from typing import Optional
from uuid import UUID

from sqlalchemy import delete, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.exc import StaleDataError

from gradebook.errors import ConcurrentGradingError, PersistenceError, SubmissionNotFoundError
from gradebook.helpers.keyed_lock import KeyedLock
from gradebook.models import SeriesAIGrading, SeriesSubmission, SubmissionStatus
from gradebook.schemas.series import AIGradingData, TeacherGradingData

logger = logging.getLogger(__name__)


async def _get_submission(db: AsyncSession, submission_id: UUID) -> SeriesSubmission:
    try:
        submission = await db.get(SeriesSubmission, submission_id)
    except SQLAlchemyError as e:
        raise PersistenceError(f"failed to load submission {submission_id}") from e

    if submission is None:
        raise SubmissionNotFoundError(submission_id)
    return submission


async def get_ai_grading(db: AsyncSession, submission_id: UUID) -> Optional[SeriesAIGrading]:
    result = await db.execute(
        select(SeriesAIGrading)
        .where(SeriesAIGrading.submission_id == submission_id)
        .order_by(SeriesAIGrading.created_at.desc())
        .limit(1)
    )
    return result.scalar_one_or_none()


async def save_or_update_ai_grading(
    db: AsyncSession,
    submission_id: UUID,
    grading_data: AIGradingData,
    *,
    locks: KeyedLock,
) -> SeriesAIGrading:
    """
    Replace the submission's grading with a fresh AI grading and mark it graded.

    Calling it again for the same submission replaces the previous row.
    """
    async with locks.lock(submission_id):
        submission = await _get_submission(db, submission_id)
        now = datetime.utcnow()

        try:
            await db.execute(
                delete(SeriesAIGrading).where(SeriesAIGrading.submission_id == submission_id)
            )

            grading = SeriesAIGrading(
                submission_id=submission_id,
                ai_score=grading_data.ai_score,
                ai_feedback=grading_data.ai_feedback,
                ai_detailed_feedback=grading_data.ai_detailed_feedback,
                grading_criteria_used=grading_data.grading_criteria_used,
                final_score=(
                    grading_data.final_score
                    if grading_data.final_score is not None
                    else grading_data.ai_score
                ),
                graded_at=now,
                created_at=now,
                updated_at=now,
            )
            db.add(grading)
            await db.flush()

            submission.status = SubmissionStatus.GRADED.value
            submission.updated_at = now

            await db.commit()
        except SQLAlchemyError as e:
            await db.rollback()
            logger.error("Saving AI grading for submission %s failed: %s", submission_id, e)
            raise PersistenceError(f"failed to save AI grading for submission {submission_id}") from e

        await db.refresh(grading)
        logger.info(
            "Saved AI grading %s for submission %s (score %s)",
            grading.id, submission_id, grading.ai_score,
        )
        return grading


async def save_or_update_teacher_grading(
    db: AsyncSession,
    submission_id: UUID,
    teacher_data: TeacherGradingData,
    *,
    locks: KeyedLock,
) -> SeriesAIGrading:
    """
    Record a teacher review on the submission's grading and mark it graded.

    AI fields of an existing row are kept; the teacher score becomes the
    final score. Without an existing row a teacher-only grading is created.
    The row's version column turns a concurrent review into
    ConcurrentGradingError instead of a lost update.
    """
    async with locks.lock(submission_id):
        submission = await _get_submission(db, submission_id)
        now = datetime.utcnow()

        try:
            result = await db.execute(
                select(SeriesAIGrading)
                .where(SeriesAIGrading.submission_id == submission_id)
                .with_for_update()
            )
            grading = result.scalar_one_or_none()

            if grading is None:
                grading = SeriesAIGrading(
                    submission_id=submission_id,
                    graded_at=now,
                    created_at=now,
                )
                db.add(grading)

            grading.teacher_score = teacher_data.teacher_score
            grading.teacher_feedback = teacher_data.teacher_feedback
            grading.teacher_reviewed_at = now
            grading.final_score = teacher_data.teacher_score
            grading.updated_at = now

            submission.status = SubmissionStatus.GRADED.value
            submission.updated_at = now

            await db.commit()
        except StaleDataError as e:
            await db.rollback()
            logger.warning("Concurrent teacher review on submission %s", submission_id)
            raise ConcurrentGradingError(
                f"grading for submission {submission_id} was modified concurrently"
            ) from e
        except SQLAlchemyError as e:
            await db.rollback()
            logger.error("Saving teacher grading for submission %s failed: %s", submission_id, e)
            raise PersistenceError(
                f"failed to save teacher grading for submission {submission_id}"
            ) from e

        await db.refresh(grading)
        logger.info(
            "Saved teacher grading for submission %s (final score %s)",
            submission_id, grading.final_score,
        )
        return grading
