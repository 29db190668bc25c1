"""
Quiz persistence and the two read-models built from it.

The teacher view carries answers. The student view is a different type that has
no answer field, with the answer part of each translation masked. The answer key
lives in its own table and is written alongside every problem change.
"""

from __future__ import annotations

import logging
import uuid
from collections import Counter
from typing import Dict, List, Optional

from sqlalchemy.orm import Session

from .models import Quiz, QuizAnswerKey, QuizProblemAudio, QuizResult
from .schemas import (
    AnswerDetail,
    Problem,
    ProblemContent,
    ProblemUpdate,
    QuizCreateRequest,
    ResultOut,
    StudentProblem,
    StudentQuiz,
    TeacherQuiz,
)
from .text import count_blanks, mask_translation

logger = logging.getLogger(__name__)


class QuizNotFound(LookupError):
    pass


class ProblemNotFound(LookupError):
    pass


class ResultNotFound(LookupError):
    pass


def _stored_problem(problem: Problem) -> Dict[str, str]:
    # Audio URLs are joined in from quiz_problems at read time
    return problem.model_dump(exclude={"audio_url"})


def words_covered_by(words: List[str], problems: List[Problem]) -> List[str]:
    """``words`` restricted to those that have a problem, one entry per problem."""
    remaining = Counter(p.word for p in problems)
    covered: List[str] = []
    for word in words:
        if remaining[word] > 0:
            covered.append(word)
            remaining[word] -= 1
    leftover = [w for w, n in remaining.items() if n > 0]
    if leftover:
        raise ValueError(f"problems reference words not in the word list: {', '.join(leftover)}")
    return covered


def create_quiz(db: Session, teacher_username: str, req: QuizCreateRequest) -> Quiz:
    for problem in req.problems:
        if count_blanks(problem.sentence) != 1:
            raise ValueError(f"sentence for {problem.word!r} must contain exactly one blank")
        if not problem.answer.strip():
            raise ValueError(f"answer for {problem.word!r} is empty")
    words = words_covered_by(req.words, req.problems)
    quiz = Quiz(
        id=uuid.uuid4().hex,
        teacher_username=teacher_username,
        title=req.title.strip(),
        words=words,
        difficulty=req.difficulty,
        translation_language=req.translation_language,
        words_per_set=req.words_per_set,
        timer_enabled=req.timer_enabled,
        timer_seconds=req.timer_seconds,
        problems=[_stored_problem(p) for p in req.problems],
    )
    try:
        db.add(quiz)
        db.flush()
        for problem in req.problems:
            db.add(QuizAnswerKey(quiz_id=quiz.id, problem_id=problem.id, correct_answer=problem.answer, word=problem.word))
            db.add(QuizProblemAudio(quiz_id=quiz.id, problem_id=problem.id, sentence_audio_url=problem.audio_url))
        db.commit()
    except Exception:
        db.rollback()
        raise
    db.refresh(quiz)
    if len(words) < len(req.words):
        logger.info("Quiz %s saved with %d of %d requested words", quiz.id, len(words), len(req.words))
    return quiz


def get_quiz(db: Session, quiz_id: str) -> Quiz:
    quiz = db.get(Quiz, quiz_id)
    if quiz is None:
        raise QuizNotFound(quiz_id)
    return quiz


def audio_urls(db: Session, quiz_id: str) -> Dict[str, Optional[str]]:
    rows = db.query(QuizProblemAudio).filter(QuizProblemAudio.quiz_id == quiz_id).all()
    return {row.problem_id: row.sentence_audio_url for row in rows}


def load_problems(db: Session, quiz: Quiz) -> List[Problem]:
    urls = audio_urls(db, quiz.id)
    return [Problem(**p, audio_url=urls.get(p["id"])) for p in quiz.problems]


def find_problem(db: Session, quiz: Quiz, problem_id: str) -> Problem:
    for problem in load_problems(db, quiz):
        if problem.id == problem_id:
            return problem
    raise ProblemNotFound(problem_id)


def _settings_of(quiz: Quiz) -> dict:
    return {
        "id": quiz.id,
        "title": quiz.title,
        "words": list(quiz.words or []),
        "difficulty": quiz.difficulty,
        "translation_language": quiz.translation_language,
        "words_per_set": quiz.words_per_set,
        "timer_enabled": quiz.timer_enabled,
        "timer_seconds": quiz.timer_seconds,
    }


def teacher_view(db: Session, quiz: Quiz) -> TeacherQuiz:
    return TeacherQuiz(**_settings_of(quiz), problems=load_problems(db, quiz))


def student_view(db: Session, quiz: Quiz) -> StudentQuiz:
    problems = [
        StudentProblem(
            id=p.id,
            word=p.word,
            sentence=p.sentence,
            hint=p.hint,
            translation=mask_translation(p.translation),
            audio_url=p.audio_url,
        )
        for p in load_problems(db, quiz)
    ]
    return StudentQuiz(**_settings_of(quiz), problems=problems)


def save_problem_content(db: Session, quiz: Quiz, problem_id: str, content: ProblemContent, *, clear_audio: bool = False) -> Problem:
    """Write new content for an existing problem. The id, and with it the answer-key row, is kept."""
    if count_blanks(content.sentence) != 1:
        raise ValueError("sentence must contain exactly one blank")
    if not content.answer.strip():
        raise ValueError("answer must not be empty")
    stored = list(quiz.problems or [])
    index = next((i for i, p in enumerate(stored) if p["id"] == problem_id), None)
    if index is None:
        raise ProblemNotFound(problem_id)
    old_word = stored[index]["word"]
    stored[index] = {**stored[index], **content.model_dump(), "id": problem_id}
    try:
        quiz.problems = stored
        if content.word != old_word:
            words = list(quiz.words or [])
            if old_word in words:
                words[words.index(old_word)] = content.word
            quiz.words = words
        key = (
            db.query(QuizAnswerKey)
            .filter(QuizAnswerKey.quiz_id == quiz.id, QuizAnswerKey.problem_id == problem_id)
            .first()
        )
        if key is None:
            key = QuizAnswerKey(quiz_id=quiz.id, problem_id=problem_id)
        key.correct_answer = content.answer
        key.word = content.word
        db.add(key)
        if clear_audio:
            audio = (
                db.query(QuizProblemAudio)
                .filter(QuizProblemAudio.quiz_id == quiz.id, QuizProblemAudio.problem_id == problem_id)
                .first()
            )
            if audio is not None:
                audio.sentence_audio_url = None
                db.add(audio)
        db.add(quiz)
        db.commit()
    except Exception:
        db.rollback()
        raise
    db.refresh(quiz)
    return find_problem(db, quiz, problem_id)


def update_problem(db: Session, quiz: Quiz, problem_id: str, update: ProblemUpdate) -> Problem:
    current = find_problem(db, quiz, problem_id)
    changes = {k: v for k, v in update.model_dump().items() if v is not None}
    content = ProblemContent(**{**current.model_dump(include=set(ProblemContent.model_fields)), **changes})
    return save_problem_content(db, quiz, problem_id, content)


def result_out(result: QuizResult) -> ResultOut:
    return ResultOut(
        id=result.id,
        quiz_id=result.quiz_id,
        student_username=result.student_username,
        anonymous_name=result.anonymous_name,
        is_anonymous=result.is_anonymous,
        score=result.score,
        total_questions=result.total_questions,
        answers=[AnswerDetail(**a) for a in result.answers or []],
        completed_at=result.completed_at,
    )


def get_result(db: Session, result_id: str) -> QuizResult:
    result = db.get(QuizResult, result_id)
    if result is None:
        raise ResultNotFound(result_id)
    return result


def list_results(db: Session, quiz_id: str) -> List[QuizResult]:
    return (
        db.query(QuizResult)
        .filter(QuizResult.quiz_id == quiz_id)
        .order_by(QuizResult.completed_at.desc())
        .all()
    )
