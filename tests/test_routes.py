import httpx
import pytest
from sqlalchemy import select

from gradebook.auth.jwt import create_access_token
from gradebook.database import get_db
from gradebook.main import app
from gradebook.models import Quiz, QuizOption, QuizQuestion, SeriesSubmission

from conftest import FakeAIClient, grading_reply, make_submission


@pytest.fixture
async def client(session_factory, cache, locks):
    async def override_get_db():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db
    app.state.grading_cache = cache
    app.state.grading_locks = locks
    app.state.ai_client = FakeAIClient(grading_reply(81))

    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as http:
        yield http

    app.dependency_overrides.clear()


def auth(user):
    token = create_access_token(user.id, user.role.value)
    return {"Authorization": f"Bearer {token}"}


async def test_requests_without_token_are_rejected(client, questionnaire):
    response = await client.post(f"/student/series-submission/submit/{questionnaire.id}", json={"answers": []})
    assert response.status_code in (401, 403)


async def test_students_cannot_use_teacher_routes(client, questionnaire, student):
    response = await client.get(
        f"/teacher/series-grading/submissions/{questionnaire.id}", headers=auth(student)
    )
    assert response.status_code == 403


async def test_submit_then_grade_then_review(client, questionnaire, student, teacher):
    answers = [
        {"question_id": str(q.id), "answer_text": text}
        for q, text in zip(questionnaire.questions, ["Coal and canals", "Long factory shifts"])
    ]

    response = await client.post(
        f"/student/series-submission/submit/{questionnaire.id}",
        json={"answers": answers},
        headers=auth(student),
    )
    assert response.status_code == 200
    body = response.json()
    assert body["redirect_to_grading"] is True
    submission_id = body["submission"]["id"]

    response = await client.post(
        f"/student/series-submission/ai-grade/{submission_id}", headers=auth(student)
    )
    assert response.status_code == 200
    assert response.json()["ai_score"] == 81

    response = await client.post(
        f"/teacher/series-grading/grade/{submission_id}",
        json={"teacher_score": 90, "teacher_feedback": "Convincing"},
        headers=auth(teacher),
    )
    assert response.status_code == 200
    assert response.json()["final_score"] == 90

    response = await client.get(
        f"/student/series-submission/my-grading/{submission_id}", headers=auth(student)
    )
    assert response.status_code == 200
    assert response.json()["ai_score"] == 81
    assert response.json()["teacher_score"] == 90


async def test_grading_errors_map_to_http_statuses(client, submission, student, teacher):
    app.state.ai_client = FakeAIClient("not json at all")
    response = await client.post(
        f"/student/series-submission/ai-grade/{submission.id}", headers=auth(student)
    )
    assert response.status_code == 502

    response = await client.post(
        f"/teacher/series-grading/grade/{submission.id}",
        json={"teacher_score": 500},
        headers=auth(teacher),
    )
    assert response.status_code == 400

    response = await client.get(
        f"/student/series-submission/my-grading/{submission.id}", headers=auth(student)
    )
    assert response.status_code == 404


async def test_admin_can_diagnose_and_repair(client, db, questionnaire, student, admin):
    row = make_submission(questionnaire, student, status="SIGNED_IN", submitted=True)
    db.add(row)
    await db.commit()
    row_id = row.id

    response = await client.get("/admin/submission-status/diagnose", headers=auth(admin))
    assert response.status_code == 200
    assert response.json()["invalid_statuses"] == ["SIGNED_IN"]

    response = await client.post("/admin/submission-status/repair", headers=auth(admin))
    assert response.status_code == 200
    assert response.json()["fixed_count"] == 1

    status = await db.scalar(select(SeriesSubmission.status).where(SeriesSubmission.id == row_id))
    assert status == "submitted"


async def test_quiz_submission_is_scored_once(client, db, lesson, student):
    quiz = Quiz(lesson_id=lesson.id, title="Inventions")
    right = QuizOption(option_text="James Watt", is_correct=True)
    wrong = QuizOption(option_text="Isaac Newton", is_correct=False)
    quiz.questions = [
        QuizQuestion(
            question_text="Who improved the steam engine?",
            question_type="single_choice",
            order_index=0,
            options=[right, wrong],
        ),
        QuizQuestion(
            question_text="Name one textile invention",
            question_type="short_answer",
            order_index=1,
            options=[],
        ),
    ]
    db.add(quiz)
    await db.commit()
    first_question, second_question = quiz.questions

    payload = {"answers": {str(first_question.id): str(right.id), str(second_question.id): ""}}
    response = await client.post(
        f"/student/quiz-submission/submit-quiz/{quiz.id}", json=payload, headers=auth(student)
    )
    assert response.status_code == 201
    body = response.json()
    assert body["score"] == 50
    assert body["strict_correct_count"] == 1
    assert body["all_answered"] is False

    response = await client.post(
        f"/student/quiz-submission/submit-quiz/{quiz.id}", json=payload, headers=auth(student)
    )
    assert response.status_code == 400
