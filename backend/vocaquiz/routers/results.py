from __future__ import annotations

from typing import List

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from ..db import get_db
from ..models import Quiz, WrongAnswerNote
from ..quiz_store import ResultNotFound, get_result, result_out
from ..schemas import ResultOut, WrongAnswerOut
from .auth import User, get_current_user, require_student

router = APIRouter(tags=["results"])


@router.get("/results/{result_id}", response_model=ResultOut)
async def get_one(result_id: str, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    try:
        result = get_result(db, result_id)
    except ResultNotFound:
        raise HTTPException(status_code=404, detail="Result not found")
    if user.role != "admin" and result.student_username != user.username:
        quiz = db.get(Quiz, result.quiz_id)
        if quiz is None or quiz.teacher_username != user.username:
            raise HTTPException(status_code=403, detail="Not allowed to view this result")
    return result_out(result)


@router.get("/wrong-answers", response_model=List[WrongAnswerOut])
async def wrong_answers(user: User = Depends(require_student), db: Session = Depends(get_db)):
    rows = (
        db.query(WrongAnswerNote)
        .filter(WrongAnswerNote.student_username == user.username)
        .order_by(WrongAnswerNote.created_at.desc(), WrongAnswerNote.id.desc())
        .all()
    )
    return [
        WrongAnswerOut(
            quiz_id=r.quiz_id,
            result_id=r.result_id,
            problem_id=r.problem_id,
            word=r.word,
            sentence=r.sentence,
            correct_answer=r.correct_answer,
            user_answer=r.user_answer,
            created_at=r.created_at,
        )
        for r in rows
    ]
