from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.future import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload
from uuid import UUID
import logging

from gradebook.database import get_db
from gradebook.auth.dependencies import is_student
from gradebook.auth.course_access import ensure_student_enrolled
from gradebook.errors import GradebookError
from gradebook.helpers.http_errors import to_http_exception
from gradebook.helpers.quiz_answer_evaluator import (
    all_questions_answered,
    calculate_quiz_score,
    to_validator_question,
)
from gradebook.models import Lesson, Quiz, QuizQuestion, QuizSubmission, User
from gradebook.schemas.quiz import QuizSubmitRequest, QuizSubmitResponse

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/student/quiz-submission",
    tags=["Student Quiz Submission Endpoints"]
)


@router.post(
    "/submit-quiz/{quiz_id}",
    response_model=QuizSubmitResponse,
    status_code=201,
)
async def submit_quiz(
    quiz_id: UUID,
    payload: QuizSubmitRequest,
    current_user: User = Depends(is_student),
    db: AsyncSession = Depends(get_db),
):
    # --------------------------
    # Fetch quiz with questions
    # --------------------------
    result = await db.execute(
        select(Quiz)
        .options(
            selectinload(Quiz.questions).selectinload(QuizQuestion.options),
            selectinload(Quiz.lesson).selectinload(Lesson.course),
        )
        .where(Quiz.id == quiz_id)
    )
    quiz = result.scalar_one_or_none()

    if not quiz:
        raise HTTPException(404, "Quiz not found")

    # --------------------------
    # Enrollment check
    # --------------------------
    try:
        await ensure_student_enrolled(
            course_id=quiz.lesson.course_id,
            student_id=current_user.id,
            db=db,
        )
    except GradebookError as e:
        raise to_http_exception(e) from e

    # --------------------------
    # Prevent re-submission
    # --------------------------
    result = await db.execute(
        select(QuizSubmission).where(
            QuizSubmission.quiz_id == quiz.id,
            QuizSubmission.student_id == current_user.id,
        )
    )
    if result.scalar_one_or_none():
        raise HTTPException(400, "You have already submitted this quiz")

    # --------------------------
    # Score answers
    # --------------------------
    questions = [to_validator_question(q) for q in quiz.questions]
    quiz_result = calculate_quiz_score(questions, payload.answers)

    submission = QuizSubmission(
        quiz_id=quiz.id,
        student_id=current_user.id,
        answers=payload.answers,
        score=quiz_result.score,
        strict_correct_count=quiz_result.strict_correct_count,
    )
    db.add(submission)
    await db.commit()
    await db.refresh(submission)

    logger.info(
        "Quiz %s submitted by %s: %d%%", quiz.id, current_user.id, quiz_result.score
    )

    return QuizSubmitResponse(
        submission_id=submission.id,
        quiz_id=quiz.id,
        score=quiz_result.score,
        strict_correct_count=quiz_result.strict_correct_count,
        total_questions=quiz_result.total_questions,
        all_answered=all_questions_answered(questions, payload.answers),
        question_results=quiz_result.question_results,
    )
