"""
Share links: token-gated, attempt-limited access to a quiz.

A grant is usable while it has not expired and its completion count is below
max_attempts. Opening a link bumps view_count only; completion_count belongs
to the grader and moves only when a graded attempt is stored.
"""

from __future__ import annotations

import logging
import secrets
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy import update
from sqlalchemy.orm import Session

from .models import AuthUser, QuizShare
from .quiz_store import get_quiz, student_view
from .schemas import ShareResolution
from .settings import settings

logger = logging.getLogger(__name__)

TOKEN_BYTES = 9  # 12 url-safe characters


class ShareError(Exception):
    pass


class ShareInvalid(ShareError):
    pass


class ShareExpired(ShareError):
    pass


class ShareAttemptsExhausted(ShareError):
    pass


class AnonymousNotAllowed(ShareError):
    pass


def new_share_token() -> str:
    return secrets.token_urlsafe(TOKEN_BYTES)


def remaining_attempts(share: QuizShare) -> int:
    return max(0, share.max_attempts - share.completion_count)


def issue_share(
    db: Session,
    quiz_id: str,
    created_by: str,
    *,
    allow_anonymous: bool = True,
    max_attempts: Optional[int] = None,
    expires_in: Optional[timedelta] = None,
    now: Optional[datetime] = None,
) -> QuizShare:
    get_quiz(db, quiz_id)
    now = now or datetime.utcnow()
    share = QuizShare(
        share_token=new_share_token(),
        quiz_id=quiz_id,
        created_by=created_by,
        allow_anonymous=allow_anonymous,
        max_attempts=max_attempts or settings.share_default_max_attempts,
        completion_count=0,
        view_count=0,
        expires_at=(now + expires_in) if expires_in else None,
    )
    try:
        db.add(share)
        db.commit()
    except Exception:
        db.rollback()
        raise
    db.refresh(share)
    logger.info("Share link issued for quiz %s by %s (max %d attempts)", quiz_id, created_by, share.max_attempts)
    return share


def load_share(db: Session, token: str, *, now: Optional[datetime] = None) -> QuizShare:
    """The grant behind ``token`` if it can still be used, otherwise the reason it cannot."""
    share = db.query(QuizShare).filter(QuizShare.share_token == token).first()
    if share is None:
        raise ShareInvalid(token)
    now = now or datetime.utcnow()
    if share.expires_at is not None and share.expires_at <= now:
        raise ShareExpired(token)
    if share.completion_count >= share.max_attempts:
        raise ShareAttemptsExhausted(token)
    return share


def resolve_share(db: Session, token: str, *, now: Optional[datetime] = None) -> ShareResolution:
    share = load_share(db, token, now=now)
    quiz = get_quiz(db, share.quiz_id)
    try:
        db.execute(
            update(QuizShare)
            .where(QuizShare.id == share.id)
            .values(view_count=QuizShare.view_count + 1)
        )
        db.commit()
    except Exception:
        db.rollback()
        raise
    db.refresh(share)
    teacher = db.get(AuthUser, quiz.teacher_username)
    teacher_name = (teacher.display_name if teacher and teacher.display_name else quiz.teacher_username)
    return ShareResolution(
        quiz=student_view(db, quiz),
        teacher_name=teacher_name,
        remaining_attempts=remaining_attempts(share),
        allow_anonymous=share.allow_anonymous,
    )
