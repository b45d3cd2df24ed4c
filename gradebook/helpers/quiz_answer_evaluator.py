import math
from typing import Any, Dict, List, Mapping

from gradebook.models import QuestionType, ScoringMode, QuizQuestion as QuizQuestionRow
from gradebook.schemas.quiz import QuizOptionItem, QuizQuestion, QuizResult, ValidationResult


def _worst_result() -> ValidationResult:
    return ValidationResult(is_correct=False, score=0)


def _validate_multiple_choice(question: QuizQuestion, answer: Any) -> ValidationResult:
    if not isinstance(answer, (list, tuple, set)) or not question.correct_options:
        return _worst_result()

    chosen = {str(a) for a in answer}
    correct = set(question.correct_options)

    correct_selections = chosen & correct
    wrong_selections = chosen - correct
    is_strictly_correct = chosen == correct

    scoring_mode = question.scoring_mode or ScoringMode.STRICT.value
    if scoring_mode != ScoringMode.PARTIAL.value:
        return ValidationResult(
            is_correct=is_strictly_correct,
            score=1 if is_strictly_correct else 0,
        )

    raw_score = (len(correct_selections) - len(wrong_selections)) / len(correct)
    partial_score = min(1.0, max(0.0, raw_score))
    return ValidationResult(
        is_correct=is_strictly_correct,
        score=partial_score,
        partial_score=partial_score,
    )


def validate_answer(question: QuizQuestion, answer: Any) -> ValidationResult:
    """
    Score one answer against one question.

    Returns a score in [0, 1]. Malformed answers score 0 instead of raising,
    so a learner's submission can never fail here.
    """
    if question.type in (QuestionType.SINGLE_CHOICE.value, QuestionType.TRUE_FALSE.value):
        is_correct = question.correct_option is not None and answer == question.correct_option
        return ValidationResult(is_correct=is_correct, score=1 if is_correct else 0)

    if question.type == QuestionType.MULTIPLE_CHOICE.value:
        return _validate_multiple_choice(question, answer)

    if question.type == QuestionType.SHORT_ANSWER.value:
        # Presence only; free-text content is graded by the AI questionnaire flow
        has_answer = isinstance(answer, str) and answer.strip() != ""
        return ValidationResult(is_correct=has_answer, score=1 if has_answer else 0)

    return _worst_result()


def calculate_quiz_score(
    questions: List[QuizQuestion],
    answers: Mapping[str, Any],
) -> QuizResult:
    """
    Aggregate per-question results into a 0-100 percentage.
    """
    total_score = 0.0
    strict_correct_count = 0
    question_results: Dict[str, ValidationResult] = {}

    for question in questions:
        answer = answers.get(question.id)

        # Unanswered scores like a wrong answer, but skips validation
        if answer is None or answer == "":
            question_results[question.id] = _worst_result()
            continue

        result = validate_answer(question, answer)
        question_results[question.id] = result

        total_score += result.score
        if result.is_correct:
            strict_correct_count += 1

    average_score = total_score / len(questions) if questions else 0.0

    return QuizResult(
        # Half-up, so 62.5 becomes 63
        score=int(math.floor(average_score * 100 + 0.5)),
        strict_correct_count=strict_correct_count,
        total_questions=len(questions),
        average_score=average_score,
        question_results=question_results,
    )


def all_questions_answered(
    questions: List[QuizQuestion],
    answers: Mapping[str, Any],
) -> bool:
    if not questions:
        return False

    for question in questions:
        answer = answers.get(question.id)
        if question.type == QuestionType.MULTIPLE_CHOICE.value:
            if not isinstance(answer, (list, tuple)) or len(answer) == 0:
                return False
        elif not isinstance(answer, str) or answer.strip() == "":
            return False

    return True


def to_validator_question(row: QuizQuestionRow) -> QuizQuestion:
    """Build the validator's view of a stored quiz question."""
    correct_ids = [str(opt.id) for opt in row.options if opt.is_correct]

    if row.question_type == QuestionType.MULTIPLE_CHOICE.value:
        correct_option = None
        correct_options = correct_ids
    else:
        correct_option = correct_ids[0] if correct_ids else None
        correct_options = None

    return QuizQuestion(
        id=str(row.id),
        type=row.question_type,
        options=[QuizOptionItem(id=str(opt.id), text=opt.option_text) for opt in row.options],
        correct_option=correct_option,
        correct_options=correct_options,
        scoring_mode=row.scoring_mode,
    )
