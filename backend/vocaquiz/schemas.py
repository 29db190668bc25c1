from __future__ import annotations

from datetime import datetime
from typing import Dict, List, Literal, NewType, Optional

from pydantic import BaseModel, Field, model_validator


# Opaque, immutable join key between a problem, its audio asset and its answer key.
# Never derived from list position or content.
ProblemId = NewType("ProblemId", str)

Difficulty = Literal["A1", "A2", "B1", "B2", "C1", "C2"]
TranslationLanguage = Literal["en", "zh_CN", "zh_TW", "ja", "vi", "th", "id", "es", "fr", "de", "ru"]


# ============================================================================
# PROBLEMS
# ============================================================================

class ProblemContent(BaseModel):
    """Content fields of a problem; the only part an edit or regeneration may touch."""
    word: str
    answer: str
    sentence: str
    hint: str = ""
    translation: str = ""


class Problem(ProblemContent):
    id: ProblemId
    audio_url: Optional[str] = None


class StudentProblem(BaseModel):
    # Deliberately has no answer field: this is what a taking client receives.
    id: ProblemId
    word: str
    sentence: str
    hint: str = ""
    translation: str = ""
    audio_url: Optional[str] = None


class ProblemUpdate(BaseModel):
    word: Optional[str] = None
    answer: Optional[str] = None
    sentence: Optional[str] = None
    hint: Optional[str] = None
    translation: Optional[str] = None


# ============================================================================
# GENERATION
# ============================================================================

class GenerateRequest(BaseModel):
    words: List[str] = Field(min_length=1)
    difficulty: Difficulty = "A1"
    translation_language: TranslationLanguage = "en"


class GenerateResponse(BaseModel):
    problems: List[Problem]
    requested: int
    fulfilled: int
    partial: bool
    fulfilled_words: List[str]


# ============================================================================
# QUIZZES
# ============================================================================

class QuizSettings(BaseModel):
    title: str = Field(min_length=1)
    difficulty: Difficulty = "A1"
    translation_language: TranslationLanguage = "en"
    words_per_set: int = Field(default=5, ge=1)
    timer_enabled: bool = False
    timer_seconds: Optional[int] = Field(default=None, ge=1)

    @model_validator(mode="after")
    def _timer_needs_seconds(self):
        if self.timer_enabled and not self.timer_seconds:
            raise ValueError("timer_seconds is required when timer_enabled is true")
        if not self.timer_enabled:
            self.timer_seconds = None
        return self


class QuizCreateRequest(QuizSettings):
    words: List[str] = Field(min_length=1)
    problems: List[Problem] = Field(min_length=1)

    @model_validator(mode="after")
    def _unique_problem_ids(self):
        ids = [p.id for p in self.problems]
        if len(set(ids)) != len(ids):
            raise ValueError("problem ids must be unique")
        return self


class TeacherQuiz(QuizSettings):
    id: str
    words: List[str]
    problems: List[Problem]


class StudentQuiz(QuizSettings):
    id: str
    words: List[str]
    problems: List[StudentProblem]


# ============================================================================
# GRADING
# ============================================================================

class SubmitRequest(BaseModel):
    answers: Dict[str, str]


class ShareSubmitRequest(SubmitRequest):
    anonymous_name: Optional[str] = Field(default=None, max_length=128)


class SubmitResponse(BaseModel):
    success: bool
    result_id: str
    score: int
    total: int


class AnswerDetail(BaseModel):
    problem_id: ProblemId
    word: str
    sentence: str
    user_answer: str
    correct_answer: str
    is_correct: bool
    translation: str = ""


class ResultOut(BaseModel):
    id: str
    quiz_id: str
    student_username: Optional[str] = None
    anonymous_name: Optional[str] = None
    is_anonymous: bool = False
    score: int
    total_questions: int
    answers: List[AnswerDetail]
    completed_at: datetime


class WrongAnswerOut(BaseModel):
    quiz_id: str
    result_id: str
    problem_id: ProblemId
    word: str
    sentence: str
    correct_answer: str
    user_answer: str
    created_at: datetime


# ============================================================================
# SHARING
# ============================================================================

class ShareIssueRequest(BaseModel):
    quiz_id: str
    allow_anonymous: bool = True
    max_attempts: Optional[int] = Field(default=None, ge=1)
    expires_in_hours: Optional[int] = Field(default=None, ge=1)


class ShareIssueResponse(BaseModel):
    token: str
    url: str
    max_attempts: int
    expires_at: Optional[datetime] = None


class ShareResolution(BaseModel):
    quiz: StudentQuiz
    teacher_name: str
    remaining_attempts: int
    allow_anonymous: bool


# ============================================================================
# AUDIO
# ============================================================================

class AudioProgress(BaseModel):
    current: int = 0
    total: int = 0
    running: bool = False
    failed: List[str] = Field(default_factory=list)
