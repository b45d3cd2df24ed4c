import logging
from datetime import datetime
from typing import List, Optional, Set
from uuid import UUID

from sqlalchemy import func, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from gradebook.errors import PersistenceError
from gradebook.models import (
    SeriesAIGrading,
    SeriesSubmission,
    SubmissionStatus,
    VALID_SUBMISSION_STATUSES,
)
from gradebook.schemas.diagnostics import (
    DiagnosisReport,
    InconsistentEntry,
    RepairDetails,
    RepairReport,
)

logger = logging.getLogger(__name__)

ISSUE_INVALID_STATUS = "invalid status"
ISSUE_DRAFT_WITH_TIME = "has submission time but status is draft"
ISSUE_SUBMITTED_WITHOUT_TIME = "status is submitted but no submission time"
ISSUE_GRADING_NOT_GRADED = "has grading record but status is not graded"
ISSUE_GRADED_WITHOUT_GRADING = "status is graded but no grading record"


def _graded_submission_ids():
    return select(SeriesAIGrading.submission_id)


async def diagnose_submission_status(
    db: AsyncSession,
    submission_id: Optional[UUID] = None,
) -> DiagnosisReport:
    """
    Report submissions whose status disagrees with their data.

    Nothing is changed; see fix_submission_status for the repair.
    """
    submissions_query = select(SeriesSubmission)
    gradings_query = _graded_submission_ids()
    if submission_id is not None:
        submissions_query = submissions_query.where(SeriesSubmission.id == submission_id)
        gradings_query = gradings_query.where(SeriesAIGrading.submission_id == submission_id)

    submissions = (await db.execute(submissions_query)).scalars().all()
    graded_ids: Set[UUID] = set((await db.execute(gradings_query)).scalars().all())

    report = DiagnosisReport(total=len(submissions))

    for submission in submissions:
        status = submission.status
        report.by_status[status] = report.by_status.get(status, 0) + 1

        issues: List[str] = []
        if status not in VALID_SUBMISSION_STATUSES:
            if status not in report.invalid_statuses:
                report.invalid_statuses.append(status)
            issues.append(ISSUE_INVALID_STATUS)

        if submission.submitted_at and status == SubmissionStatus.DRAFT.value:
            issues.append(ISSUE_DRAFT_WITH_TIME)

        if not submission.submitted_at and status == SubmissionStatus.SUBMITTED.value:
            issues.append(ISSUE_SUBMITTED_WITHOUT_TIME)

        has_grading = submission.id in graded_ids
        if has_grading and status != SubmissionStatus.GRADED.value:
            issues.append(ISSUE_GRADING_NOT_GRADED)
        if not has_grading and status == SubmissionStatus.GRADED.value:
            issues.append(ISSUE_GRADED_WITHOUT_GRADING)

        for issue in issues:
            report.inconsistent.append(
                InconsistentEntry(
                    id=submission.id,
                    status=status,
                    submitted_at=submission.submitted_at,
                    issue=issue,
                )
            )

    logger.info(
        "Diagnosed %d submissions: %d issues, invalid statuses %s",
        report.total, len(report.inconsistent), report.invalid_statuses,
    )
    return report


async def _ids(db: AsyncSession, *conditions) -> List[UUID]:
    result = await db.execute(select(SeriesSubmission.id).where(*conditions))
    return list(result.scalars().all())


async def _set_status(db: AsyncSession, ids: List[UUID], status: str, now: datetime) -> None:
    if not ids:
        return
    await db.execute(
        update(SeriesSubmission)
        .where(SeriesSubmission.id.in_(ids))
        .values(status=status, updated_at=now)
    )


async def fix_submission_status(db: AsyncSession) -> RepairReport:
    """
    Bring every submission's status in line with its data, in one transaction.

    Rules, applied in order:
      1. unknown status with a submission time  -> submitted
      2. draft with a submission time           -> submitted
      3. has a grading row, status not graded   -> graded
      4. graded without a grading row           -> submitted (or draft when
         it was never submitted)
      5. submitted without a submission time    -> submission time taken from
         the last update, else the creation time
    Unknown statuses without a submission time and without a grading row
    are left alone and listed as unresolved. A second run changes nothing.
    """
    now = datetime.utcnow()
    details = RepairDetails()
    touched: Set[UUID] = set()
    graded_ids = _graded_submission_ids()
    valid = list(VALID_SUBMISSION_STATUSES)

    try:
        ids = await _ids(
            db,
            SeriesSubmission.status.not_in(valid),
            SeriesSubmission.submitted_at.is_not(None),
        )
        await _set_status(db, ids, SubmissionStatus.SUBMITTED.value, now)
        details.invalid_status = len(ids)
        touched.update(ids)

        ids = await _ids(
            db,
            SeriesSubmission.status == SubmissionStatus.DRAFT.value,
            SeriesSubmission.submitted_at.is_not(None),
        )
        await _set_status(db, ids, SubmissionStatus.SUBMITTED.value, now)
        details.draft_with_submission_time = len(ids)
        touched.update(ids)

        ids = await _ids(
            db,
            SeriesSubmission.status != SubmissionStatus.GRADED.value,
            SeriesSubmission.id.in_(graded_ids),
        )
        await _set_status(db, ids, SubmissionStatus.GRADED.value, now)
        details.graded_with_record = len(ids)
        touched.update(ids)

        resubmit_ids = await _ids(
            db,
            SeriesSubmission.status == SubmissionStatus.GRADED.value,
            SeriesSubmission.id.not_in(graded_ids),
            SeriesSubmission.submitted_at.is_not(None),
        )
        redraft_ids = await _ids(
            db,
            SeriesSubmission.status == SubmissionStatus.GRADED.value,
            SeriesSubmission.id.not_in(graded_ids),
            SeriesSubmission.submitted_at.is_(None),
        )
        await _set_status(db, resubmit_ids, SubmissionStatus.SUBMITTED.value, now)
        await _set_status(db, redraft_ids, SubmissionStatus.DRAFT.value, now)
        details.graded_without_record = len(resubmit_ids) + len(redraft_ids)
        touched.update(resubmit_ids)
        touched.update(redraft_ids)

        ids = await _ids(
            db,
            SeriesSubmission.status == SubmissionStatus.SUBMITTED.value,
            SeriesSubmission.submitted_at.is_(None),
        )
        if ids:
            await db.execute(
                update(SeriesSubmission)
                .where(SeriesSubmission.id.in_(ids))
                .values(
                    submitted_at=func.coalesce(
                        SeriesSubmission.updated_at, SeriesSubmission.created_at, now
                    ),
                    updated_at=now,
                )
            )
        details.submitted_without_time = len(ids)
        touched.update(ids)

        unresolved = await _ids(db, SeriesSubmission.status.not_in(valid))

        await db.commit()
    except SQLAlchemyError as e:
        await db.rollback()
        logger.error("Submission status repair failed: %s", e)
        raise PersistenceError("failed to repair submission statuses") from e

    report = RepairReport(fixed_count=len(touched), details=details, unresolved=unresolved)
    logger.info(
        "Repaired %d submissions (%s); %d unresolved",
        report.fixed_count, details.model_dump(), len(unresolved),
    )
    return report
