from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession
from typing import Optional
from uuid import UUID

from gradebook.database import get_db
from gradebook.auth.dependencies import (
    get_ai_client,
    get_grading_cache,
    get_grading_locks,
    is_teacher,
)
from gradebook.errors import GradebookError
from gradebook.helpers.cache import GradingCache
from gradebook.helpers.http_errors import to_http_exception
from gradebook.helpers.keyed_lock import KeyedLock
from gradebook.models import User
from gradebook.schemas.series import (
    BatchGradingRequest,
    BatchGradingResponse,
    SeriesGradingRead,
    SubmissionListResponse,
    TeacherGradeRequest,
)
from gradebook.services import series_questionnaire
from gradebook.services.ai_client import ChatCompletionClient

router = APIRouter(
    prefix="/teacher/series-grading",
    tags=["Teacher Series Grading Endpoints"]
)


@router.get(
    "/submissions/{questionnaire_id}",
    response_model=SubmissionListResponse,
)
async def list_submissions(
    questionnaire_id: UUID,
    status: Optional[str] = Query(None),
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    current_user: User = Depends(is_teacher),
    db: AsyncSession = Depends(get_db),
):
    try:
        return await series_questionnaire.list_submissions(
            db, current_user, questionnaire_id, status=status, page=page, limit=limit
        )
    except GradebookError as e:
        raise to_http_exception(e) from e


@router.post(
    "/grade/{submission_id}",
    response_model=SeriesGradingRead,
)
async def grade_submission(
    submission_id: UUID,
    payload: TeacherGradeRequest,
    current_user: User = Depends(is_teacher),
    db: AsyncSession = Depends(get_db),
    cache: GradingCache = Depends(get_grading_cache),
    locks: KeyedLock = Depends(get_grading_locks),
):
    try:
        return await series_questionnaire.teacher_grade_series(
            db, current_user, submission_id, payload, cache=cache, locks=locks
        )
    except GradebookError as e:
        raise to_http_exception(e) from e


@router.post(
    "/batch-ai-grade/{questionnaire_id}",
    response_model=BatchGradingResponse,
)
async def batch_ai_grade(
    questionnaire_id: UUID,
    payload: BatchGradingRequest = BatchGradingRequest(),
    current_user: User = Depends(is_teacher),
    db: AsyncSession = Depends(get_db),
    client: ChatCompletionClient = Depends(get_ai_client),
    cache: GradingCache = Depends(get_grading_cache),
    locks: KeyedLock = Depends(get_grading_locks),
):
    """
    Grade every submitted (not yet graded) submission of the questionnaire.
    Per-submission failures are reported in the response, not raised.
    """
    try:
        return await series_questionnaire.batch_ai_grading(
            db,
            current_user,
            questionnaire_id,
            payload,
            client=client,
            cache=cache,
            locks=locks,
        )
    except GradebookError as e:
        raise to_http_exception(e) from e
