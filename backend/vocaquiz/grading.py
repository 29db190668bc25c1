"""
Authoritative grader.

The only code that reads the answer key. It compares each submitted answer with
the stored one after dropping all whitespace, stores one immutable result with
the full per-problem breakdown and returns the score. For share-link attempts
the grant's completion count is raised in the same transaction, guarded so it
can never pass max_attempts.
"""

from __future__ import annotations

import logging
import uuid
from datetime import datetime
from typing import Dict, List, Mapping, Optional

from sqlalchemy import update
from sqlalchemy.orm import Session

from .models import QuizAnswerKey, QuizResult, QuizShare, WrongAnswerNote
from .quiz_store import get_quiz
from .schemas import AnswerDetail, SubmitResponse
from .sharing import AnonymousNotAllowed, ShareAttemptsExhausted, load_share
from .text import normalize_answer, unmask_translation

logger = logging.getLogger(__name__)


class AttemptLimitExceeded(ShareAttemptsExhausted):
    """The share link has no attempts left; nothing was stored."""


def is_correct(user_answer: Optional[str], correct_answer: str) -> bool:
    return normalize_answer(user_answer) == normalize_answer(correct_answer)


def grade(problems: List[dict], answer_key: Mapping[str, str], answers: Mapping[str, str]) -> List[AnswerDetail]:
    details: List[AnswerDetail] = []
    for problem in problems:
        problem_id = problem["id"]
        correct_answer = answer_key[problem_id]
        user_answer = answers.get(problem_id) or ""
        details.append(
            AnswerDetail(
                problem_id=problem_id,
                word=problem["word"],
                sentence=problem["sentence"],
                user_answer=user_answer,
                correct_answer=correct_answer,
                is_correct=is_correct(user_answer, correct_answer),
                translation=unmask_translation(problem.get("translation") or ""),
            )
        )
    return details


def _answer_key(db: Session, quiz_id: str, problems: List[dict]) -> Dict[str, str]:
    rows = db.query(QuizAnswerKey).filter(QuizAnswerKey.quiz_id == quiz_id).all()
    key = {row.problem_id: row.correct_answer for row in rows}
    for problem in problems:
        if problem["id"] not in key:
            logger.error("Quiz %s has no answer key row for problem %s", quiz_id, problem["id"])
            key[problem["id"]] = problem.get("answer", "")
    return key


def submit_answers(
    db: Session,
    quiz_id: str,
    answers: Mapping[str, str],
    *,
    student_username: Optional[str] = None,
    anonymous_name: Optional[str] = None,
    share_token: Optional[str] = None,
) -> SubmitResponse:
    quiz = get_quiz(db, quiz_id)
    share: Optional[QuizShare] = None
    if share_token is not None:
        try:
            share = load_share(db, share_token)
        except ShareAttemptsExhausted as exc:
            raise AttemptLimitExceeded(share_token) from exc
        if share.quiz_id != quiz_id:
            raise AnonymousNotAllowed(f"share link is not for quiz {quiz_id}")
        if student_username is None and not share.allow_anonymous:
            raise AnonymousNotAllowed("this link requires signing in")

    problems = list(quiz.problems or [])
    try:
        details = grade(problems, _answer_key(db, quiz_id, problems), answers)
        score = sum(1 for d in details if d.is_correct)

        if share is not None:
            bumped = db.execute(
                update(QuizShare)
                .where(
                    QuizShare.id == share.id,
                    QuizShare.completion_count < QuizShare.max_attempts,
                )
                .values(completion_count=QuizShare.completion_count + 1)
            )
            if bumped.rowcount != 1:
                raise AttemptLimitExceeded(share_token)

        result_id = uuid.uuid4().hex
        result = QuizResult(
            id=result_id,
            quiz_id=quiz_id,
            student_username=student_username,
            anonymous_name=anonymous_name if student_username is None else None,
            is_anonymous=student_username is None,
            share_token=share_token,
            score=score,
            total_questions=len(details),
            answers=[d.model_dump() for d in details],
            completed_at=datetime.utcnow(),
        )
        db.add(result)
        if student_username is not None:
            for d in details:
                if not d.is_correct:
                    db.add(
                        WrongAnswerNote(
                            student_username=student_username,
                            quiz_id=quiz_id,
                            result_id=result_id,
                            problem_id=d.problem_id,
                            word=d.word,
                            sentence=d.sentence,
                            correct_answer=d.correct_answer,
                            user_answer=d.user_answer,
                        )
                    )
        db.commit()
    except AttemptLimitExceeded:
        db.rollback()
        logger.info("Attempt refused for share %s: limit reached", share_token)
        raise
    except Exception:
        db.rollback()
        raise

    logger.info("Graded quiz %s: %d/%d (result %s)", quiz_id, score, len(details), result_id)
    return SubmitResponse(success=True, result_id=result_id, score=score, total=len(details))
