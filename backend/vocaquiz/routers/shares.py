from __future__ import annotations

import logging
from datetime import timedelta
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from ..db import get_db
from ..grading import AttemptLimitExceeded, submit_answers
from ..quiz_store import QuizNotFound, get_quiz, student_view
from ..schemas import (
    ShareIssueRequest,
    ShareIssueResponse,
    ShareResolution,
    ShareSubmitRequest,
    StudentQuiz,
    SubmitResponse,
)
from ..settings import settings
from ..sharing import (
    AnonymousNotAllowed,
    ShareAttemptsExhausted,
    ShareError,
    ShareExpired,
    ShareInvalid,
    issue_share,
    load_share,
    resolve_share,
)
from .auth import User, get_optional_user, require_teacher

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/shares", tags=["shares"])


def share_http_error(exc: ShareError) -> HTTPException:
    if isinstance(exc, ShareInvalid):
        return HTTPException(status_code=404, detail="Invalid share link")
    if isinstance(exc, ShareExpired):
        return HTTPException(status_code=410, detail="This share link has expired")
    if isinstance(exc, ShareAttemptsExhausted):
        return HTTPException(status_code=409, detail="No attempts remaining for this link")
    if isinstance(exc, AnonymousNotAllowed):
        return HTTPException(status_code=403, detail=str(exc))
    return HTTPException(status_code=400, detail=str(exc))


def share_url(token: str) -> str:
    return f"{settings.public_base_url.rstrip('/')}/quiz/share/{token}"


@router.post("", response_model=ShareIssueResponse, status_code=201)
async def issue(req: ShareIssueRequest, user: User = Depends(require_teacher), db: Session = Depends(get_db)):
    try:
        quiz = get_quiz(db, req.quiz_id)
    except QuizNotFound:
        raise HTTPException(status_code=404, detail="Quiz not found")
    if quiz.teacher_username != user.username and user.role != "admin":
        raise HTTPException(status_code=403, detail="Not your quiz")
    expires_in = timedelta(hours=req.expires_in_hours) if req.expires_in_hours else None
    share = issue_share(
        db,
        req.quiz_id,
        user.username,
        allow_anonymous=req.allow_anonymous,
        max_attempts=req.max_attempts,
        expires_in=expires_in,
    )
    return ShareIssueResponse(
        token=share.share_token,
        url=share_url(share.share_token),
        max_attempts=share.max_attempts,
        expires_at=share.expires_at,
    )


@router.get("/{token}", response_model=ShareResolution)
async def resolve(token: str, db: Session = Depends(get_db)):
    try:
        return resolve_share(db, token)
    except ShareError as exc:
        logger.info("Share link %s refused: %s", token, exc.__class__.__name__)
        raise share_http_error(exc)
    except QuizNotFound:
        raise HTTPException(status_code=404, detail="Quiz not found")


@router.get("/{token}/quiz", response_model=StudentQuiz)
async def shared_quiz(token: str, db: Session = Depends(get_db)):
    try:
        share = load_share(db, token)
        return student_view(db, get_quiz(db, share.quiz_id))
    except ShareError as exc:
        raise share_http_error(exc)
    except QuizNotFound:
        raise HTTPException(status_code=404, detail="Quiz not found")


@router.post("/{token}/submit", response_model=SubmitResponse)
async def submit_shared(
    token: str,
    req: ShareSubmitRequest,
    user: Optional[User] = Depends(get_optional_user),
    db: Session = Depends(get_db),
):
    # Signed-in students are graded as themselves; everyone else needs a name
    student_username = user.username if user is not None and user.role == "student" else None
    name = (req.anonymous_name or "").strip() or None
    if student_username is None and name is None:
        raise HTTPException(status_code=400, detail="Please enter your name")
    try:
        share = load_share(db, token)
    except ShareAttemptsExhausted:
        raise HTTPException(status_code=409, detail="No attempts remaining for this link")
    except ShareError as exc:
        raise share_http_error(exc)
    try:
        return submit_answers(
            db,
            share.quiz_id,
            req.answers,
            student_username=student_username,
            anonymous_name=name,
            share_token=token,
        )
    except AttemptLimitExceeded:
        raise HTTPException(status_code=409, detail="No attempts remaining for this link")
    except ShareError as exc:
        raise share_http_error(exc)
    except QuizNotFound:
        raise HTTPException(status_code=404, detail="Quiz not found")
