from pydantic import BaseModel, Field
from typing import Optional, List, Dict, Union
from uuid import UUID

# question id -> option id (single) or option ids (multiple choice) or free text
AnswerValue = Union[str, List[str]]


# ---------------------------
# Validator input / output
# ---------------------------
class QuizOptionItem(BaseModel):
    id: str
    text: Optional[str] = None


class QuizQuestion(BaseModel):
    id: str
    type: str
    options: Optional[List[QuizOptionItem]] = None
    correct_option: Optional[str] = None
    correct_options: Optional[List[str]] = None
    scoring_mode: Optional[str] = None


class ValidationResult(BaseModel):
    is_correct: bool
    score: float = Field(ge=0, le=1)
    partial_score: Optional[float] = None


class QuizResult(BaseModel):
    score: int = Field(ge=0, le=100)
    strict_correct_count: int
    total_questions: int
    average_score: float
    question_results: Dict[str, ValidationResult]


# ---------------------------
# Student quiz submission
# ---------------------------
class QuizSubmitRequest(BaseModel):
    answers: Dict[str, AnswerValue]


class QuizSubmitResponse(BaseModel):
    submission_id: UUID
    quiz_id: UUID
    score: int
    strict_correct_count: int
    total_questions: int
    all_answered: bool
    question_results: Dict[str, ValidationResult]
