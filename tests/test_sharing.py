from datetime import datetime, timedelta

import pytest

from vocaquiz.grading import submit_answers
from vocaquiz.models import QuizShare
from vocaquiz.quiz_store import QuizNotFound
from vocaquiz.sharing import (
    ShareAttemptsExhausted,
    ShareExpired,
    ShareInvalid,
    issue_share,
    load_share,
    remaining_attempts,
    resolve_share,
)


def test_issue_uses_default_attempts_and_url_safe_token(make_quiz, db):
    quiz = make_quiz()
    share = issue_share(db, quiz.id, "teacher1")
    assert share.max_attempts == 3
    assert len(share.share_token) == 12
    assert share.expires_at is None
    assert (share.view_count, share.completion_count) == (0, 0)


def test_issue_for_unknown_quiz(db):
    with pytest.raises(QuizNotFound):
        issue_share(db, "missing", "teacher1")


def test_resolve_counts_views_not_completions(make_quiz, db):
    quiz = make_quiz(words=["학생", "학교"])
    share = issue_share(db, quiz.id, "teacher1", max_attempts=2)

    first = resolve_share(db, share.share_token)
    second = resolve_share(db, share.share_token)

    db.expire_all()
    stored = db.get(QuizShare, share.id)
    assert (stored.view_count, stored.completion_count) == (2, 0)
    assert second.remaining_attempts == 2
    assert first.teacher_name == "Ms. Kim"
    assert first.allow_anonymous
    assert [p.word for p in first.quiz.problems] == ["학생", "학교"]
    assert all(not hasattr(p, "answer") for p in first.quiz.problems)
    assert first.quiz.problems[0].translation == "_____ is good."


def test_remaining_attempts_follow_completions(make_quiz, db):
    quiz = make_quiz(words=["학생"])
    share = issue_share(db, quiz.id, "teacher1", max_attempts=2)
    pid = quiz.problems[0]["id"]

    submit_answers(db, quiz.id, {pid: "학생이"}, anonymous_name="guest", share_token=share.share_token)
    assert resolve_share(db, share.share_token).remaining_attempts == 1

    submit_answers(db, quiz.id, {pid: "학생이"}, anonymous_name="guest", share_token=share.share_token)
    with pytest.raises(ShareAttemptsExhausted):
        resolve_share(db, share.share_token)
    db.expire_all()
    assert remaining_attempts(db.get(QuizShare, share.id)) == 0


def test_unknown_token_is_invalid(db):
    with pytest.raises(ShareInvalid):
        resolve_share(db, "doesnotexist")


def test_expired_link(make_quiz, db):
    quiz = make_quiz()
    issued_at = datetime(2024, 1, 1, 12, 0, 0)
    share = issue_share(db, quiz.id, "teacher1", expires_in=timedelta(hours=1), now=issued_at)

    assert load_share(db, share.share_token, now=issued_at + timedelta(minutes=59)).id == share.id
    with pytest.raises(ShareExpired):
        load_share(db, share.share_token, now=issued_at + timedelta(hours=1))
