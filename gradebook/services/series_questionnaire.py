"""
Series questionnaire workflow: learner submissions, AI grading triggers,
teacher review and submission listings.

Every function takes the session plus whatever shared state it needs
(AI client, grading cache, per-submission locks) as arguments; the web layer
owns those objects.
"""

import asyncio
import logging
import math
from datetime import datetime
from typing import Awaitable, Callable, List, Optional
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from gradebook import config
from gradebook.auth.course_access import ensure_course_author, ensure_student_enrolled
from gradebook.errors import (
    GradebookError,
    PermissionDeniedError,
    QuestionnaireNotFoundError,
    SubmissionNotFoundError,
    SubmissionValidationError,
)
from gradebook.helpers.cache import GradingCache
from gradebook.helpers.keyed_lock import KeyedLock
from gradebook.models import (
    Lesson,
    SeriesQuestionnaire,
    SeriesSubmission,
    SubmissionStatus,
    User,
)
from gradebook.schemas.series import (
    AIGradingData,
    BatchGradingItem,
    BatchGradingRequest,
    BatchGradingResponse,
    GradingQuestionInfo,
    GradingQuestionnaireInfo,
    SeriesAnswer,
    SeriesGradingPayload,
    SeriesGradingRead,
    SeriesSubmissionRead,
    SubmissionListResponse,
    SubmitSeriesAnswersRequest,
    SubmitSeriesAnswersResponse,
    TeacherGradeRequest,
    TeacherGradingData,
)
from gradebook.services.ai_client import ChatCompletionClient
from gradebook.services.ai_grading import (
    DEFAULT_GRADING_CRITERIA,
    count_words,
    grade_series_questionnaire,
)
from gradebook.services.grading_reconciler import (
    get_ai_grading,
    save_or_update_ai_grading,
    save_or_update_teacher_grading,
)

logger = logging.getLogger(__name__)


def _grading_cache_key(submission_id: UUID) -> str:
    return GradingCache.generate_key("ai_grading", submission_id)


# ---------------------------
# Loaders
# ---------------------------
async def _load_questionnaire(db: AsyncSession, questionnaire_id: UUID) -> SeriesQuestionnaire:
    result = await db.execute(
        select(SeriesQuestionnaire)
        .options(
            selectinload(SeriesQuestionnaire.questions),
            selectinload(SeriesQuestionnaire.lesson).selectinload(Lesson.course),
        )
        .where(SeriesQuestionnaire.id == questionnaire_id)
    )
    questionnaire = result.scalar_one_or_none()
    if questionnaire is None:
        raise QuestionnaireNotFoundError(questionnaire_id)
    return questionnaire


async def _load_submission(db: AsyncSession, submission_id: UUID) -> SeriesSubmission:
    result = await db.execute(
        select(SeriesSubmission)
        .options(
            selectinload(SeriesSubmission.questionnaire)
            .selectinload(SeriesQuestionnaire.questions),
            selectinload(SeriesSubmission.questionnaire)
            .selectinload(SeriesQuestionnaire.lesson)
            .selectinload(Lesson.course),
        )
        .where(SeriesSubmission.id == submission_id)
    )
    submission = result.scalar_one_or_none()
    if submission is None:
        raise SubmissionNotFoundError(submission_id)
    return submission


def build_grading_payload(
    questionnaire: SeriesQuestionnaire,
    submission: SeriesSubmission,
    grading_criteria: Optional[str] = None,
) -> SeriesGradingPayload:
    return SeriesGradingPayload(
        questionnaire=GradingQuestionnaireInfo(
            title=questionnaire.title,
            description=questionnaire.description,
            ai_grading_prompt=questionnaire.ai_grading_prompt,
            ai_grading_criteria=grading_criteria or questionnaire.ai_grading_criteria,
            max_score=questionnaire.max_score or 100,
        ),
        questions=[
            GradingQuestionInfo(
                id=str(q.id),
                title=q.title,
                content=q.question_text,
                required=bool(q.required),
                word_limit=q.max_words,
            )
            for q in questionnaire.questions
        ],
        answers=[SeriesAnswer.model_validate(a) for a in (submission.answers or [])],
    )


# ---------------------------
# Learner submission
# ---------------------------
def _check_final_answers(questionnaire: SeriesQuestionnaire, answers: List[SeriesAnswer]):
    by_question = {a.question_id: a for a in answers}

    for question in questionnaire.questions:
        answer = by_question.get(str(question.id))
        text = answer.answer_text.strip() if answer else ""

        if not text:
            if question.required:
                raise SubmissionValidationError(f"Question '{question.title}' is required")
            continue

        words = answer.word_count
        if question.min_words and words < question.min_words:
            raise SubmissionValidationError(
                f"Question '{question.title}' needs at least {question.min_words} words"
            )
        if question.max_words and words > question.max_words:
            raise SubmissionValidationError(
                f"Question '{question.title}' allows at most {question.max_words} words"
            )


async def submit_series_answers(
    db: AsyncSession,
    student: User,
    questionnaire_id: UUID,
    request: SubmitSeriesAnswersRequest,
) -> SubmitSeriesAnswersResponse:
    """
    Save a draft or final submission for the student (one row per student
    and questionnaire; saving again updates it).
    """
    questionnaire = await _load_questionnaire(db, questionnaire_id)
    await ensure_student_enrolled(
        course_id=questionnaire.lesson.course_id,
        student_id=student.id,
        db=db,
    )

    if request.status not in (SubmissionStatus.DRAFT.value, SubmissionStatus.SUBMITTED.value):
        raise SubmissionValidationError(f"Cannot save a submission as '{request.status}'")
    is_final = request.status == SubmissionStatus.SUBMITTED.value

    if not is_final and not questionnaire.allow_save_draft:
        raise SubmissionValidationError("This questionnaire does not allow drafts")

    question_ids = {str(q.id) for q in questionnaire.questions}
    unknown = [a.question_id for a in request.answers if a.question_id not in question_ids]
    if unknown:
        raise SubmissionValidationError(f"Unknown question ids: {', '.join(unknown)}")

    answers = [
        SeriesAnswer(
            question_id=a.question_id,
            answer_text=a.answer_text,
            word_count=count_words(a.answer_text),
        )
        for a in request.answers
    ]
    if is_final:
        _check_final_answers(questionnaire, answers)

    result = await db.execute(
        select(SeriesSubmission).where(
            SeriesSubmission.questionnaire_id == questionnaire.id,
            SeriesSubmission.student_id == student.id,
        )
    )
    submission = result.scalar_one_or_none()

    if submission is not None and submission.status == SubmissionStatus.GRADED.value:
        raise SubmissionValidationError("This submission has already been graded")

    now = datetime.utcnow()
    if submission is None:
        submission = SeriesSubmission(
            questionnaire_id=questionnaire.id,
            student_id=student.id,
            created_at=now,
        )
        db.add(submission)

    submission.answers = [a.model_dump() for a in answers]
    submission.status = request.status
    submission.total_words = sum(a.word_count or 0 for a in answers)
    submission.time_spent_minutes = request.time_spent_minutes or 0
    submission.submitted_at = now if is_final else None
    submission.updated_at = now

    await db.commit()
    await db.refresh(submission)

    redirect_to_grading = (
        is_final
        and bool(questionnaire.ai_grading_prompt)
        and bool(questionnaire.ai_grading_criteria)
    )
    logger.info(
        "Saved %s submission %s for questionnaire %s%s",
        submission.status, submission.id, questionnaire.id,
        " (AI grading pending)" if redirect_to_grading else "",
    )

    return SubmitSeriesAnswersResponse(
        submission=SeriesSubmissionRead.model_validate(submission),
        redirect_to_grading=redirect_to_grading,
    )


# ---------------------------
# AI grading
# ---------------------------
async def trigger_ai_grading(
    db: AsyncSession,
    user: User,
    submission_id: UUID,
    *,
    client: ChatCompletionClient,
    cache: GradingCache,
    locks: KeyedLock,
    force_regrade: bool = False,
) -> SeriesGradingRead:
    """
    Grade a submitted series questionnaire with the AI model.

    Without force_regrade an existing grading is returned as is. Only the
    course instructor may force a regrade, since it replaces any teacher
    review. On any failure the submission stays 'submitted' and can be
    graded again later.
    """
    submission = await _load_submission(db, submission_id)
    questionnaire = submission.questionnaire
    course = questionnaire.lesson.course
    is_instructor = course.instructor_id == user.id

    if not is_instructor and submission.student_id != user.id:
        raise PermissionDeniedError("You are not allowed to access this submission")
    if force_regrade and not is_instructor:
        raise PermissionDeniedError("Only the course instructor can request a regrade")

    cache_key = _grading_cache_key(submission_id)
    if not force_regrade:
        cached = cache.get(cache_key)
        if cached is not None:
            return cached

        existing = await get_ai_grading(db, submission_id)
        if existing is not None:
            grading = SeriesGradingRead.model_validate(existing)
            cache.set(cache_key, grading)
            return grading

    gradable = {SubmissionStatus.SUBMITTED.value}
    if force_regrade:
        gradable.add(SubmissionStatus.GRADED.value)
    if submission.status not in gradable:
        raise SubmissionValidationError("Only submitted answers can be graded")

    if not questionnaire.ai_grading_prompt:
        raise SubmissionValidationError(
            "This questionnaire has no AI grading prompt configured"
        )
    criteria = questionnaire.ai_grading_criteria or DEFAULT_GRADING_CRITERIA

    payload = build_grading_payload(questionnaire, submission, grading_criteria=criteria)
    logger.info("Starting AI grading for submission %s", submission_id)
    result = await grade_series_questionnaire(payload, client)

    saved = await save_or_update_ai_grading(
        db,
        submission_id,
        AIGradingData(
            ai_score=result.overall_score,
            ai_feedback=result.overall_feedback,
            ai_detailed_feedback=[d.model_dump() for d in result.detailed_feedback],
            grading_criteria_used=criteria,
        ),
        locks=locks,
    )

    grading = SeriesGradingRead.model_validate(saved)
    cache.set(cache_key, grading)
    return grading


async def batch_ai_grading(
    db: AsyncSession,
    teacher: User,
    questionnaire_id: UUID,
    request: BatchGradingRequest,
    *,
    client: ChatCompletionClient,
    cache: GradingCache,
    locks: KeyedLock,
    delay_seconds: float = config.BATCH_GRADING_DELAY_SECONDS,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> BatchGradingResponse:
    """
    Grade the questionnaire's submitted answers one after another (graded
    ones too when force_regrade is set).

    Failures are collected per submission; one bad submission never stops
    the batch. `delay_seconds` spaces out requests to the AI endpoint.
    """
    questionnaire = await _load_questionnaire(db, questionnaire_id)
    ensure_course_author(questionnaire.lesson.course, teacher, "grade this questionnaire")

    if not questionnaire.ai_grading_prompt or not questionnaire.ai_grading_criteria:
        raise SubmissionValidationError("This questionnaire has no AI grading configured")

    statuses = [SubmissionStatus.SUBMITTED.value]
    if request.force_regrade:
        statuses.append(SubmissionStatus.GRADED.value)

    conditions = [
        SeriesSubmission.questionnaire_id == questionnaire.id,
        SeriesSubmission.status.in_(statuses),
    ]
    if request.submission_ids:
        conditions.append(SeriesSubmission.id.in_(request.submission_ids))

    result = await db.execute(
        select(SeriesSubmission.id)
        .where(*conditions)
        .order_by(SeriesSubmission.submitted_at.asc())
        .limit(config.BATCH_GRADING_LIMIT)
    )
    target_ids = list(result.scalars().all())

    results: List[BatchGradingItem] = []
    for index, submission_id in enumerate(target_ids):
        if not request.force_regrade and await get_ai_grading(db, submission_id) is not None:
            results.append(
                BatchGradingItem(
                    submission_id=submission_id,
                    success=False,
                    error="A grading already exists",
                )
            )
            continue

        try:
            grading = await trigger_ai_grading(
                db,
                teacher,
                submission_id,
                client=client,
                cache=cache,
                locks=locks,
                force_regrade=request.force_regrade,
            )
            results.append(BatchGradingItem(submission_id=submission_id, success=True, grading=grading))
        except GradebookError as e:
            logger.warning("Batch grading failed for submission %s: %s", submission_id, e)
            results.append(BatchGradingItem(submission_id=submission_id, success=False, error=str(e)))

        if index < len(target_ids) - 1 and delay_seconds > 0:
            await sleep(delay_seconds)

    successful = sum(1 for r in results if r.success)
    return BatchGradingResponse(
        total_processed=len(target_ids),
        successful_gradings=successful,
        failed_gradings=len(results) - successful,
        results=results,
    )


# ---------------------------
# Teacher review
# ---------------------------
async def teacher_grade_series(
    db: AsyncSession,
    teacher: User,
    submission_id: UUID,
    request: TeacherGradeRequest,
    *,
    cache: GradingCache,
    locks: KeyedLock,
) -> SeriesGradingRead:
    submission = await _load_submission(db, submission_id)
    questionnaire = submission.questionnaire
    ensure_course_author(questionnaire.lesson.course, teacher, "grade this submission")

    if submission.status not in (SubmissionStatus.SUBMITTED.value, SubmissionStatus.GRADED.value):
        raise SubmissionValidationError("Only submitted answers can be graded")

    max_score = questionnaire.max_score or 100
    if request.teacher_score < 0 or request.teacher_score > max_score:
        raise SubmissionValidationError(f"Score must be between 0 and {max_score}")

    saved = await save_or_update_teacher_grading(
        db,
        submission_id,
        TeacherGradingData(
            teacher_score=request.teacher_score,
            teacher_feedback=request.teacher_feedback,
        ),
        locks=locks,
    )
    cache.delete(_grading_cache_key(submission_id))
    return SeriesGradingRead.model_validate(saved)


async def get_submission_grading(
    db: AsyncSession,
    user: User,
    submission_id: UUID,
) -> SeriesGradingRead:
    submission = await _load_submission(db, submission_id)
    course = submission.questionnaire.lesson.course
    if course.instructor_id != user.id and submission.student_id != user.id:
        raise PermissionDeniedError("You are not allowed to access this submission")

    grading = await get_ai_grading(db, submission_id)
    if grading is None:
        raise SubmissionNotFoundError(submission_id)
    return SeriesGradingRead.model_validate(grading)


async def list_submissions(
    db: AsyncSession,
    teacher: User,
    questionnaire_id: UUID,
    *,
    status: Optional[str] = None,
    page: int = 1,
    limit: int = 20,
) -> SubmissionListResponse:
    questionnaire = await _load_questionnaire(db, questionnaire_id)
    ensure_course_author(questionnaire.lesson.course, teacher, "view these submissions")

    conditions = [SeriesSubmission.questionnaire_id == questionnaire.id]
    if status:
        conditions.append(SeriesSubmission.status == status)

    total = (
        await db.execute(select(func.count(SeriesSubmission.id)).where(*conditions))
    ).scalar() or 0

    result = await db.execute(
        select(SeriesSubmission)
        .where(*conditions)
        .order_by(SeriesSubmission.submitted_at.desc())
        .offset((page - 1) * limit)
        .limit(limit)
    )

    return SubmissionListResponse(
        items=[SeriesSubmissionRead.model_validate(s) for s in result.scalars().all()],
        page=page,
        limit=limit,
        total=total,
        total_pages=math.ceil(total / limit) if limit else 0,
    )
