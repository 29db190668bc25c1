from datetime import datetime, timedelta

import httpx
import pytest

from conftest import http_status_error
from vocaquiz.audio import audio_progress
from vocaquiz.main import app
from vocaquiz.models import QuizShare
from vocaquiz.session_engine import QuizSession, SessionState
from vocaquiz.taker_client import QuizTakerClient

WORDS = ["학생", "학교", "친구"]


def create_quiz_via_api(client, headers, words=WORDS, **settings):
    r = client.post(
        "/quizzes/generate",
        json={"words": words, "difficulty": "A1", "translation_language": "en"},
        headers=headers,
    )
    assert r.status_code == 200, r.text
    generated = r.json()
    body = {"title": "Unit 1", "words": words, "problems": generated["problems"], "words_per_set": 2, **settings}
    r = client.post("/quizzes", json=body, headers=headers)
    assert r.status_code == 201, r.text
    return r.json()


def correct_answers(quiz):
    return {p["id"]: p["answer"] for p in quiz["problems"]}


@pytest.fixture
def teacher(login):
    return login("teacher1", role="teacher", display_name="Ms. Kim")


@pytest.fixture
def student(login):
    return login("student1")


# =============================================================================
# AUTHORING
# =============================================================================


def test_generate_and_save_quiz_with_audio(client, teacher, fake_synthesizer):
    quiz = create_quiz_via_api(client, teacher)

    assert sorted(quiz["words"]) == sorted(WORDS)
    assert len({p["id"] for p in quiz["problems"]}) == 3
    assert len(fake_synthesizer.texts) == 3

    r = client.get(f"/quizzes/{quiz['id']}", headers=teacher)
    assert r.status_code == 200
    assert all(p["audio_url"] and p["audio_url"].endswith(".mp3") for p in r.json()["problems"])

    progress = client.get(f"/quizzes/{quiz['id']}/audio/progress", headers=teacher).json()
    assert (progress["current"], progress["total"], progress["running"]) == (3, 3, False)


def test_partial_generation_is_reported(client, teacher, fake_generator):
    fake_generator.failures[2] = http_status_error(429)
    words = [f"단어{i}" for i in range(15)]
    r = client.post("/quizzes/generate", json={"words": words}, headers=teacher)
    assert r.status_code == 200
    body = r.json()
    assert (body["requested"], body["fulfilled"], body["partial"]) == (15, 10, True)
    assert len(body["problems"]) == 10
    assert body["fulfilled_words"] == words[:10]


@pytest.mark.parametrize("failure,status", [(http_status_error(429), 429), (RuntimeError("no content"), 502)])
def test_total_generation_failure(client, teacher, fake_generator, failure, status):
    fake_generator.failures[1] = failure
    r = client.post("/quizzes/generate", json={"words": WORDS}, headers=teacher)
    assert r.status_code == status


def test_students_cannot_author(client, student):
    assert client.post("/quizzes/generate", json={"words": WORDS}, headers=student).status_code == 403


def test_save_rejects_problem_without_blank(client, teacher):
    problem = {"id": "problem-1-0", "word": "학생", "answer": "학생이", "sentence": "학생이 좋아요.", "hint": "", "translation": ""}
    r = client.post("/quizzes", json={"title": "t", "words": ["학생"], "problems": [problem]}, headers=teacher)
    assert r.status_code == 400


def test_edit_problem_updates_answer_key(client, teacher, student):
    quiz = create_quiz_via_api(client, teacher)
    pid = quiz["problems"][0]["id"]

    r = client.patch(f"/quizzes/{quiz['id']}/problems/{pid}", json={"answer": "새답"}, headers=teacher)
    assert r.status_code == 200
    assert (r.json()["id"], r.json()["answer"]) == (pid, "새답")

    answers = {**correct_answers(quiz), pid: "새답"}
    r = client.post(f"/quizzes/{quiz['id']}/submit", json={"answers": answers}, headers=student)
    assert r.json()["score"] == 3


def test_regenerate_problem_keeps_id_and_resynthesises(client, teacher, fake_synthesizer):
    quiz = create_quiz_via_api(client, teacher)
    pid = quiz["problems"][1]["id"]

    r = client.post(f"/quizzes/{quiz['id']}/problems/{pid}/regenerate", headers=teacher)
    assert r.status_code == 200
    assert r.json()["id"] == pid
    assert len(fake_synthesizer.texts) == 4

    view = client.get(f"/quizzes/{quiz['id']}", headers=teacher).json()
    assert [p["id"] for p in view["problems"]] == [p["id"] for p in quiz["problems"]]
    assert next(p for p in view["problems"] if p["id"] == pid)["audio_url"]


def test_regenerating_one_problem_leaves_bulk_audio_progress_alone(client, teacher, fake_synthesizer):
    quiz = create_quiz_via_api(client, teacher)
    pid = quiz["problems"][0]["id"]
    audio_progress.start(quiz["id"], 3)
    audio_progress.advance(quiz["id"], 1, 3)
    try:
        r = client.post(f"/quizzes/{quiz['id']}/problems/{pid}/regenerate", headers=teacher)
        assert r.status_code == 200
        assert len(fake_synthesizer.texts) == 4
        progress = client.get(f"/quizzes/{quiz['id']}/audio/progress", headers=teacher).json()
        assert (progress["current"], progress["total"], progress["running"]) == (1, 3, True)
    finally:
        audio_progress.finish(quiz["id"])


def test_generate_accepts_a_words_per_set_hint(client, teacher, fake_generator):
    r = client.post(
        "/quizzes/generate",
        json={"words": WORDS, "difficulty": "A1", "translation_language": "en", "words_per_set": 2},
        headers=teacher,
    )
    assert r.status_code == 200
    assert r.json()["fulfilled"] == 3
    assert len(fake_generator.calls) == 1


def test_single_problem_audio(client, teacher, fake_synthesizer):
    quiz = create_quiz_via_api(client, teacher)
    pid = quiz["problems"][0]["id"]
    r = client.post(f"/quizzes/{quiz['id']}/problems/{pid}/audio", headers=teacher)
    assert r.status_code == 200
    assert f"/media/quiz-audio/{quiz['id']}/{pid}_" in r.json()["audio_url"]

    fake_synthesizer.fail_for.add(quiz["problems"][0]["word"])
    r = client.post(f"/quizzes/{quiz['id']}/problems/{pid}/audio", headers=teacher)
    assert r.status_code == 502


def test_other_teacher_cannot_read_quiz(client, teacher, login):
    quiz = create_quiz_via_api(client, teacher)
    other = login("teacher2", role="teacher")
    assert client.get(f"/quizzes/{quiz['id']}", headers=other).status_code == 403


# =============================================================================
# TAKING AND RESULTS
# =============================================================================


def test_student_view_has_no_answers(client, teacher, student):
    quiz = create_quiz_via_api(client, teacher)
    r = client.get(f"/quizzes/{quiz['id']}/student", headers=student)
    assert r.status_code == 200
    for problem in r.json()["problems"]:
        assert "answer" not in problem
        assert "[" not in problem["translation"]
        assert "_____" in problem["translation"]


def test_student_view_needs_login(client, teacher):
    quiz = create_quiz_via_api(client, teacher)
    assert client.get(f"/quizzes/{quiz['id']}/student").status_code == 401


def test_submit_result_and_wrong_answer_notebook(client, teacher, student, login):
    quiz = create_quiz_via_api(client, teacher)
    answers = correct_answers(quiz)
    wrong_id = quiz["problems"][2]["id"]
    answers[wrong_id] = "모르겠어요"

    r = client.post(f"/quizzes/{quiz['id']}/submit", json={"answers": answers}, headers=student)
    assert r.status_code == 200
    body = r.json()
    assert (body["success"], body["score"], body["total"]) == (True, 2, 3)

    result = client.get(f"/results/{body['result_id']}", headers=student).json()
    assert result["student_username"] == "student1"
    assert [a["is_correct"] for a in result["answers"]].count(False) == 1

    assert client.get(f"/results/{body['result_id']}", headers=teacher).status_code == 200
    assert client.get(f"/results/{body['result_id']}", headers=login("student2")).status_code == 403

    notes = client.get("/wrong-answers", headers=student).json()
    assert [n["problem_id"] for n in notes] == [wrong_id]
    assert notes[0]["user_answer"] == "모르겠어요"

    listing = client.get(f"/quizzes/{quiz['id']}/results", headers=teacher).json()
    assert [r["id"] for r in listing] == [body["result_id"]]


def test_unknown_quiz_submission(client, student):
    r = client.post("/quizzes/nope/submit", json={"answers": {}}, headers=student)
    assert r.status_code == 404


# =============================================================================
# SHARE LINKS
# =============================================================================


def test_share_link_flow_with_attempt_limit(client, teacher):
    quiz = create_quiz_via_api(client, teacher)
    r = client.post("/shares", json={"quiz_id": quiz["id"]}, headers=teacher)
    assert r.status_code == 201
    share = r.json()
    assert share["max_attempts"] == 3
    assert share["url"].endswith(f"/quiz/share/{share['token']}")

    resolved = client.get(f"/shares/{share['token']}").json()
    assert resolved["teacher_name"] == "Ms. Kim"
    assert resolved["remaining_attempts"] == 3
    assert "answer" not in resolved["quiz"]["problems"][0]

    body = {"anonymous_name": "Guest", "answers": correct_answers(quiz)}
    for remaining in (2, 1, 0):
        r = client.post(f"/shares/{share['token']}/submit", json=body)
        assert r.status_code == 200
        assert r.json()["score"] == 3
        if remaining:
            assert client.get(f"/shares/{share['token']}").json()["remaining_attempts"] == remaining

    assert client.post(f"/shares/{share['token']}/submit", json=body).status_code == 409
    assert client.get(f"/shares/{share['token']}").status_code == 409
    assert len(client.get(f"/quizzes/{quiz['id']}/results", headers=teacher).json()) == 3


def test_share_link_errors(client, teacher, session_factory):
    quiz = create_quiz_via_api(client, teacher)
    assert client.get("/shares/unknowntoken").status_code == 404
    assert client.post("/shares", json={"quiz_id": "missing"}, headers=teacher).status_code == 404

    token = client.post("/shares", json={"quiz_id": quiz["id"], "expires_in_hours": 1}, headers=teacher).json()["token"]
    db = session_factory()
    try:
        share = db.query(QuizShare).filter_by(share_token=token).one()
        share.expires_at = datetime.utcnow() - timedelta(minutes=1)
        db.commit()
    finally:
        db.close()
    assert client.get(f"/shares/{token}").status_code == 410
    assert client.get(f"/shares/{token}/quiz").status_code == 410


def test_blank_guest_name_is_rejected(client, teacher):
    quiz = create_quiz_via_api(client, teacher)
    token = client.post("/shares", json={"quiz_id": quiz["id"]}, headers=teacher).json()["token"]
    r = client.post(f"/shares/{token}/submit", json={"anonymous_name": "   ", "answers": {}})
    assert r.status_code == 400


def test_signed_in_student_can_use_a_members_only_link(client, teacher, student):
    quiz = create_quiz_via_api(client, teacher)
    token = client.post(
        "/shares", json={"quiz_id": quiz["id"], "allow_anonymous": False}, headers=teacher
    ).json()["token"]
    body = {"anonymous_name": "Guest", "answers": correct_answers(quiz)}

    assert client.post(f"/shares/{token}/submit", json=body).status_code == 403

    r = client.post(f"/shares/{token}/submit", json={"answers": correct_answers(quiz)}, headers=student)
    assert r.status_code == 200, r.text
    result = client.get(f"/results/{r.json()['result_id']}", headers=student).json()
    assert result["student_username"] == "student1"
    assert not result["is_anonymous"]
    assert client.get(f"/shares/{token}").json()["remaining_attempts"] == 2


@pytest.mark.asyncio
async def test_guest_session_end_to_end(client, teacher):
    quiz = create_quiz_via_api(client, teacher)
    answers = correct_answers(quiz)
    token = client.post("/shares", json={"quiz_id": quiz["id"]}, headers=teacher).json()["token"]

    http_client = httpx.AsyncClient(transport=httpx.ASGITransport(app=app), base_url="http://testserver")
    taker = QuizTakerClient("http://testserver", http_client=http_client)
    try:
        student_quiz = await taker.fetch_shared_quiz(token)
        session = QuizSession(student_quiz.id, seed="guest")
        session.load(student_quiz)
        while True:
            for problem in session.current_set:
                session.set_answer(problem.id, answers[problem.id])
            if session.is_last_set:
                break
            session.next_set()

        response = await session.submit(taker.shared_grader(token, "Guest"))
        assert session.state is SessionState.COMPLETED
        assert (response.score, response.total) == (3, 3)
        assert (await taker.resolve_share(token)).remaining_attempts == 2
    finally:
        await taker.aclose()
