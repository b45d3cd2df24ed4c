import json
from datetime import datetime
from typing import Any, Dict, List

import pytest
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine
from sqlalchemy.orm import sessionmaker

from gradebook.database import Base
from gradebook.helpers.cache import GradingCache
from gradebook.helpers.keyed_lock import KeyedLock
from gradebook.models import (
    Course,
    Lesson,
    SeriesQuestion,
    SeriesQuestionnaire,
    SeriesSubmission,
    SubmissionStatus,
    User,
    UserRole,
    course_students,
)


# ---------------------------
# Database
# ---------------------------
@pytest.fixture
async def engine(tmp_path):
    # File database so that separate sessions use separate connections
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'gradebook.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(bind=engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
def cache():
    return GradingCache(maxsize=64, ttl=60)


@pytest.fixture
def locks():
    return KeyedLock()


# ---------------------------
# Course data
# ---------------------------
@pytest.fixture
async def teacher(db):
    user = User(role=UserRole.INSTRUCTOR, name="Ms. Rivera", email="rivera@example.com")
    db.add(user)
    await db.commit()
    return user


@pytest.fixture
async def student(db):
    user = User(role=UserRole.STUDENT, name="Sam Lee", email="sam@example.com")
    db.add(user)
    await db.commit()
    return user


@pytest.fixture
async def admin(db):
    user = User(role=UserRole.ADMIN, name="Admin", email="admin@example.com")
    db.add(user)
    await db.commit()
    return user


@pytest.fixture
async def lesson(db, teacher, student):
    course = Course(title="Modern History", instructor_id=teacher.id)
    db.add(course)
    await db.flush()

    await db.execute(
        course_students.insert().values(course_id=course.id, student_id=student.id)
    )

    lesson = Lesson(course_id=course.id, title="The Industrial Revolution", lesson_type="series")
    db.add(lesson)
    await db.commit()
    return lesson


@pytest.fixture
async def questionnaire(db, lesson):
    questionnaire = SeriesQuestionnaire(
        lesson_id=lesson.id,
        title="Causes and effects",
        description="Short essays on the industrial revolution",
        ai_grading_prompt="Reward concrete historical examples.",
        ai_grading_criteria="Accuracy 50%, depth 30%, clarity 20%.",
        max_score=100,
        allow_save_draft=True,
    )
    questionnaire.questions = [
        SeriesQuestion(
            title="Causes",
            question_text="What caused the industrial revolution in Britain?",
            order_index=0,
            required=True,
        ),
        SeriesQuestion(
            title="Effects",
            question_text="How did factory work change family life?",
            order_index=1,
            required=True,
        ),
    ]
    db.add(questionnaire)
    await db.commit()
    return questionnaire


def make_submission(
    questionnaire: SeriesQuestionnaire,
    student: User,
    status: str = SubmissionStatus.SUBMITTED.value,
    submitted: bool = True,
    answers: List[Dict[str, Any]] = None,
) -> SeriesSubmission:
    return SeriesSubmission(
        questionnaire_id=questionnaire.id,
        student_id=student.id,
        answers=answers or [],
        status=status,
        submitted_at=datetime.utcnow() if submitted else None,
    )


@pytest.fixture
async def submission(db, questionnaire, student):
    first, second = questionnaire.questions
    row = make_submission(
        questionnaire,
        student,
        answers=[
            {"question_id": str(first.id), "answer_text": "Coal, capital and cheap labour.", "word_count": 5},
            {"question_id": str(second.id), "answer_text": "Parents and children worked long shifts.", "word_count": 6},
        ],
    )
    db.add(row)
    await db.commit()
    return row


# ---------------------------
# AI stand-in
# ---------------------------
class FakeAIClient:
    """Stands in for ChatCompletionClient; returns canned replies in order."""

    def __init__(self, *replies):
        self.replies = list(replies)
        self.calls: List[List[Dict[str, str]]] = []

    async def complete(self, messages, **kwargs):
        self.calls.append(messages)
        reply = self.replies.pop(0) if len(self.replies) > 1 else self.replies[0]
        if isinstance(reply, Exception):
            raise reply
        return reply


def grading_reply(score: float = 82, feedback: str = "Solid answers.") -> str:
    return json.dumps({
        "overall_score": score,
        "overall_feedback": feedback,
        "detailed_feedback": [],
        "criteria_scores": {"accuracy": 40},
        "suggestions": ["Cite sources."],
    })
