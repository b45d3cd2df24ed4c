from pydantic import BaseModel, Field
from typing import Optional, List, Dict, Any
from uuid import UUID
from datetime import datetime


# ---------------------------
# AI grading request payload
# ---------------------------
class GradingQuestionnaireInfo(BaseModel):
    title: str
    description: Optional[str] = None
    ai_grading_prompt: Optional[str] = None
    ai_grading_criteria: Optional[str] = None
    max_score: int = 100


class GradingQuestionInfo(BaseModel):
    id: str
    title: str
    content: str
    required: bool = True
    word_limit: Optional[int] = None


class SeriesAnswer(BaseModel):
    question_id: str
    answer_text: str = ""
    word_count: Optional[int] = None


class SeriesGradingPayload(BaseModel):
    questionnaire: GradingQuestionnaireInfo
    questions: List[GradingQuestionInfo]
    answers: List[SeriesAnswer]


# ---------------------------
# AI grading result (validated model output)
# ---------------------------
class QuestionFeedback(BaseModel):
    question_id: str
    score: float
    feedback: str = ""
    strengths: List[str] = Field(default_factory=list)
    improvements: List[str] = Field(default_factory=list)


class GradingResult(BaseModel):
    overall_score: float = Field(ge=0)
    overall_feedback: str
    detailed_feedback: List[QuestionFeedback] = Field(default_factory=list)
    criteria_scores: Dict[str, float] = Field(default_factory=dict)
    suggestions: List[str] = Field(default_factory=list)


# ---------------------------
# Reconciler inputs
# ---------------------------
class AIGradingData(BaseModel):
    ai_score: float
    ai_feedback: str
    ai_detailed_feedback: Optional[List[Dict[str, Any]]] = None
    final_score: Optional[float] = None
    grading_criteria_used: Optional[str] = None


class TeacherGradingData(BaseModel):
    teacher_score: float = Field(ge=0)
    teacher_feedback: Optional[str] = None


# ---------------------------
# Student submission
# ---------------------------
class SubmitSeriesAnswersRequest(BaseModel):
    answers: List[SeriesAnswer]
    status: str = "submitted"
    time_spent_minutes: Optional[int] = None


class SeriesSubmissionRead(BaseModel):
    id: UUID
    questionnaire_id: UUID
    student_id: UUID
    answers: List[SeriesAnswer]
    status: str
    total_words: Optional[int]
    time_spent_minutes: Optional[int]
    submitted_at: Optional[datetime]
    updated_at: Optional[datetime]

    model_config = {"from_attributes": True}


class SubmitSeriesAnswersResponse(BaseModel):
    submission: SeriesSubmissionRead
    redirect_to_grading: bool


# ---------------------------
# Grading views / teacher actions
# ---------------------------
class SeriesGradingRead(BaseModel):
    id: UUID
    submission_id: UUID
    ai_score: Optional[float]
    ai_feedback: Optional[str]
    ai_detailed_feedback: Optional[List[Dict[str, Any]]]
    grading_criteria_used: Optional[str]
    teacher_score: Optional[float]
    teacher_feedback: Optional[str]
    teacher_reviewed_at: Optional[datetime]
    final_score: Optional[float]
    graded_at: Optional[datetime]
    created_at: Optional[datetime]
    updated_at: Optional[datetime]

    model_config = {"from_attributes": True}


class TeacherGradeRequest(BaseModel):
    teacher_score: float
    teacher_feedback: Optional[str] = None


class AIGradeRequest(BaseModel):
    force_regrade: bool = False


class BatchGradingRequest(BaseModel):
    submission_ids: Optional[List[UUID]] = None
    force_regrade: bool = False


class BatchGradingItem(BaseModel):
    submission_id: UUID
    success: bool
    grading: Optional[SeriesGradingRead] = None
    error: Optional[str] = None


class BatchGradingResponse(BaseModel):
    total_processed: int
    successful_gradings: int
    failed_gradings: int
    results: List[BatchGradingItem]


class SubmissionListResponse(BaseModel):
    items: List[SeriesSubmissionRead]
    page: int
    limit: int
    total: int
    total_pages: int
