import uuid
import enum
from datetime import datetime
from sqlalchemy import (
    Column, String, Boolean, DateTime, Integer, Float, Enum, ForeignKey, Table, Text, JSON, Uuid,
    UniqueConstraint,
)
from sqlalchemy.orm import relationship
from gradebook.database import Base


# ---------------------------
# Role Enum
# ---------------------------
class UserRole(str, enum.Enum):
    ADMIN = "admin"
    STUDENT = "student"
    INSTRUCTOR = "instructor"


# ---------------------------
# Quiz question types
# ---------------------------
class QuestionType(str, enum.Enum):
    SINGLE_CHOICE = "single_choice"
    MULTIPLE_CHOICE = "multiple_choice"
    TRUE_FALSE = "true_false"
    SHORT_ANSWER = "short_answer"


class ScoringMode(str, enum.Enum):
    STRICT = "strict"
    PARTIAL = "partial"


# ---------------------------
# Series submission status
# ---------------------------
class SubmissionStatus(str, enum.Enum):
    DRAFT = "draft"
    SUBMITTED = "submitted"
    GRADED = "graded"


VALID_SUBMISSION_STATUSES = {s.value for s in SubmissionStatus}


# ---------------------------
# User Model
# ---------------------------
class User(Base):
    __tablename__ = "users"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)

    role = Column(Enum(UserRole, name="user_role_enum"), nullable=False)
    name = Column(String(255), nullable=False)
    email = Column(String(255), unique=True, nullable=True)
    is_active = Column(Boolean, default=True)
    created_at = Column(DateTime, default=datetime.utcnow)


# ---------------------------
# Course Model
# ---------------------------
class Course(Base):
    __tablename__ = "courses"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    title = Column(String(255), nullable=False)
    instructor_id = Column(Uuid, ForeignKey("users.id"), nullable=False)

    created_at = Column(DateTime, default=datetime.utcnow)

    instructor = relationship("User")
    lessons = relationship("Lesson", back_populates="course", cascade="all, delete-orphan")


# ---------------------------
# Enrollment (association table)
# ---------------------------
course_students = Table(
    "course_students",
    Base.metadata,
    Column("course_id", Uuid, ForeignKey("courses.id"), primary_key=True),
    Column("student_id", Uuid, ForeignKey("users.id"), primary_key=True),
)


# ---------------------------
# Lesson Model
# ---------------------------
class Lesson(Base):
    __tablename__ = "lessons"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    course_id = Column(Uuid, ForeignKey("courses.id"), nullable=False)

    title = Column(String(255), nullable=False)
    lesson_type = Column(String(50), nullable=False, default="text")
    order_index = Column(Integer, default=0)

    course = relationship("Course", back_populates="lessons")


# ---------------------------
# Quiz Model
# ---------------------------
class Quiz(Base):
    __tablename__ = "quizzes"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    lesson_id = Column(Uuid, ForeignKey("lessons.id"), nullable=False)

    title = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)

    lesson = relationship("Lesson")
    questions = relationship(
        "QuizQuestion",
        back_populates="quiz",
        cascade="all, delete-orphan",
        order_by="QuizQuestion.order_index",
    )
    submissions = relationship("QuizSubmission", back_populates="quiz", cascade="all, delete-orphan")


class QuizQuestion(Base):
    __tablename__ = "quiz_questions"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    quiz_id = Column(Uuid, ForeignKey("quizzes.id"), nullable=False)

    question_text = Column(Text, nullable=False)
    question_type = Column(String(30), nullable=False, default=QuestionType.SINGLE_CHOICE.value)
    # NULL means strict
    scoring_mode = Column(String(20), nullable=True)
    order_index = Column(Integer, default=0)

    quiz = relationship("Quiz", back_populates="questions")
    options = relationship("QuizOption", back_populates="question", cascade="all, delete-orphan")


class QuizOption(Base):
    __tablename__ = "quiz_options"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    question_id = Column(Uuid, ForeignKey("quiz_questions.id"), nullable=False)

    option_text = Column(Text, nullable=False)
    is_correct = Column(Boolean, default=False)

    question = relationship("QuizQuestion", back_populates="options")


class QuizSubmission(Base):
    __tablename__ = "quiz_submissions"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    quiz_id = Column(Uuid, ForeignKey("quizzes.id"), nullable=False)
    student_id = Column(Uuid, ForeignKey("users.id"), nullable=False)

    answers = Column(JSON, nullable=False, default=dict)
    score = Column(Integer, nullable=False, default=0)
    strict_correct_count = Column(Integer, nullable=False, default=0)
    submitted_at = Column(DateTime, default=datetime.utcnow)

    quiz = relationship("Quiz", back_populates="submissions")
    student = relationship("User")

    __table_args__ = (
        UniqueConstraint("quiz_id", "student_id", name="unique_quiz_submission"),
    )


# ---------------------------
# Series Questionnaire Models
# ---------------------------
class SeriesQuestionnaire(Base):
    __tablename__ = "series_questionnaires"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    lesson_id = Column(Uuid, ForeignKey("lessons.id"), nullable=False)

    title = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    instructions = Column(Text, nullable=True)
    ai_grading_prompt = Column(Text, nullable=True)
    ai_grading_criteria = Column(Text, nullable=True)
    max_score = Column(Integer, default=100)
    time_limit_minutes = Column(Integer, nullable=True)
    allow_save_draft = Column(Boolean, default=True)
    skill_tags = Column(JSON, nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    lesson = relationship("Lesson")
    questions = relationship(
        "SeriesQuestion",
        back_populates="questionnaire",
        cascade="all, delete-orphan",
        order_by="SeriesQuestion.order_index",
    )
    submissions = relationship("SeriesSubmission", back_populates="questionnaire", cascade="all, delete-orphan")


class SeriesQuestion(Base):
    __tablename__ = "series_questions"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    questionnaire_id = Column(Uuid, ForeignKey("series_questionnaires.id"), nullable=False)

    title = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    question_text = Column(Text, nullable=False)
    order_index = Column(Integer, default=0)
    required = Column(Boolean, default=True)
    min_words = Column(Integer, nullable=True)
    max_words = Column(Integer, nullable=True)
    placeholder_text = Column(Text, nullable=True)

    questionnaire = relationship("SeriesQuestionnaire", back_populates="questions")


class SeriesSubmission(Base):
    __tablename__ = "series_submissions"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    questionnaire_id = Column(Uuid, ForeignKey("series_questionnaires.id"), nullable=False)
    student_id = Column(Uuid, ForeignKey("users.id"), nullable=False)

    # [{question_id, answer_text, word_count}]
    answers = Column(JSON, nullable=False, default=list)
    # Plain string so that stray values can be found and repaired
    status = Column(String(50), nullable=False, default=SubmissionStatus.DRAFT.value)
    total_words = Column(Integer, default=0)
    time_spent_minutes = Column(Integer, default=0)
    submitted_at = Column(DateTime, nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    questionnaire = relationship("SeriesQuestionnaire", back_populates="submissions")
    student = relationship("User")
    grading = relationship("SeriesAIGrading", back_populates="submission", uselist=False)

    __table_args__ = (
        UniqueConstraint("questionnaire_id", "student_id", name="unique_series_submission"),
    )


class SeriesAIGrading(Base):
    __tablename__ = "series_ai_gradings"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    submission_id = Column(Uuid, ForeignKey("series_submissions.id"), nullable=False, unique=True)

    ai_score = Column(Float, nullable=True)
    ai_feedback = Column(Text, nullable=True)
    ai_detailed_feedback = Column(JSON, nullable=True)
    grading_criteria_used = Column(Text, nullable=True)

    teacher_score = Column(Float, nullable=True)
    teacher_feedback = Column(Text, nullable=True)
    teacher_reviewed_at = Column(DateTime, nullable=True)

    final_score = Column(Float, nullable=True)
    graded_at = Column(DateTime, nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    # Optimistic concurrency counter; a stale UPDATE raises StaleDataError
    version = Column(Integer, nullable=False)

    submission = relationship("SeriesSubmission", back_populates="grading")

    __mapper_args__ = {"version_id_col": version}
