from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession
from uuid import UUID

from gradebook.database import get_db
from gradebook.auth.dependencies import (
    get_ai_client,
    get_grading_cache,
    get_grading_locks,
    is_student,
)
from gradebook.errors import GradebookError
from gradebook.helpers.cache import GradingCache
from gradebook.helpers.http_errors import to_http_exception
from gradebook.helpers.keyed_lock import KeyedLock
from gradebook.models import User
from gradebook.schemas.series import (
    AIGradeRequest,
    SeriesGradingRead,
    SubmitSeriesAnswersRequest,
    SubmitSeriesAnswersResponse,
)
from gradebook.services import series_questionnaire
from gradebook.services.ai_client import ChatCompletionClient

router = APIRouter(
    prefix="/student/series-submission",
    tags=["Student Series Questionnaire Endpoints"]
)


@router.post(
    "/submit/{questionnaire_id}",
    response_model=SubmitSeriesAnswersResponse,
)
async def submit_series_answers(
    questionnaire_id: UUID,
    payload: SubmitSeriesAnswersRequest,
    current_user: User = Depends(is_student),
    db: AsyncSession = Depends(get_db),
):
    try:
        return await series_questionnaire.submit_series_answers(
            db, current_user, questionnaire_id, payload
        )
    except GradebookError as e:
        raise to_http_exception(e) from e


@router.post(
    "/ai-grade/{submission_id}",
    response_model=SeriesGradingRead,
)
async def request_ai_grading(
    submission_id: UUID,
    payload: AIGradeRequest = AIGradeRequest(),
    current_user: User = Depends(is_student),
    db: AsyncSession = Depends(get_db),
    client: ChatCompletionClient = Depends(get_ai_client),
    cache: GradingCache = Depends(get_grading_cache),
    locks: KeyedLock = Depends(get_grading_locks),
):
    """
    Grade the student's own submitted answers. The submission stays
    'submitted' if grading fails, so the request can simply be retried.
    """
    try:
        return await series_questionnaire.trigger_ai_grading(
            db,
            current_user,
            submission_id,
            client=client,
            cache=cache,
            locks=locks,
            force_regrade=payload.force_regrade,
        )
    except GradebookError as e:
        raise to_http_exception(e) from e


@router.get(
    "/my-grading/{submission_id}",
    response_model=SeriesGradingRead,
)
async def get_my_grading(
    submission_id: UUID,
    current_user: User = Depends(is_student),
    db: AsyncSession = Depends(get_db),
):
    try:
        return await series_questionnaire.get_submission_grading(db, current_user, submission_id)
    except GradebookError as e:
        raise to_http_exception(e) from e
