from __future__ import annotations
from datetime import datetime
from sqlalchemy import Boolean, Column, String, DateTime, ForeignKey, Integer, JSON, Text, UniqueConstraint
from .db import Base


class AuthUser(Base):
	__tablename__ = "auth_users"
	# Primary key is username
	username = Column(String(128), primary_key=True, index=True)
	password_hash = Column(String(256), nullable=False)
	# teacher | student | admin
	role = Column(String(16), default="student", nullable=False)
	display_name = Column(String(128), nullable=True)
	created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
	updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)


class AuthSession(Base):
	__tablename__ = "auth_sessions"
	session_id = Column(String(64), primary_key=True)
	username = Column(String(128), ForeignKey("auth_users.username"), nullable=False, index=True)
	created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
	last_activity_at = Column(DateTime, default=datetime.utcnow, nullable=False)


class Quiz(Base):
	__tablename__ = "quizzes"
	id = Column(String(64), primary_key=True)
	teacher_username = Column(String(128), ForeignKey("auth_users.username"), nullable=False, index=True)
	title = Column(String(256), nullable=False)
	words = Column(JSON, nullable=False, default=list)
	difficulty = Column(String(2), nullable=False)
	translation_language = Column(String(8), nullable=False)
	words_per_set = Column(Integer, default=5, nullable=False)
	timer_enabled = Column(Boolean, default=False, nullable=False)
	timer_seconds = Column(Integer, nullable=True)
	# Teacher read-model: full problems including answers
	problems = Column(JSON, nullable=False, default=list)
	created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
	updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)


class QuizAnswerKey(Base):
	__tablename__ = "quiz_answer_keys"
	__table_args__ = (UniqueConstraint("quiz_id", "problem_id", name="uq_answer_key_problem"),)
	id = Column(Integer, primary_key=True, autoincrement=True)
	quiz_id = Column(String(64), ForeignKey("quizzes.id", ondelete="CASCADE"), nullable=False, index=True)
	problem_id = Column(String(64), nullable=False)
	correct_answer = Column(Text, nullable=False)
	word = Column(String(128), nullable=False)


class QuizProblemAudio(Base):
	__tablename__ = "quiz_problems"
	__table_args__ = (UniqueConstraint("quiz_id", "problem_id", name="uq_problem_audio"),)
	id = Column(Integer, primary_key=True, autoincrement=True)
	quiz_id = Column(String(64), ForeignKey("quizzes.id", ondelete="CASCADE"), nullable=False, index=True)
	problem_id = Column(String(64), nullable=False)
	sentence_audio_url = Column(Text, nullable=True)
	updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)


class QuizResult(Base):
	__tablename__ = "quiz_results"
	id = Column(String(64), primary_key=True)
	quiz_id = Column(String(64), ForeignKey("quizzes.id", ondelete="CASCADE"), nullable=False, index=True)
	student_username = Column(String(128), nullable=True, index=True)
	anonymous_name = Column(String(128), nullable=True)
	is_anonymous = Column(Boolean, default=False, nullable=False)
	share_token = Column(String(64), nullable=True)
	score = Column(Integer, nullable=False)
	total_questions = Column(Integer, nullable=False)
	# [{problem_id, word, sentence, user_answer, correct_answer, is_correct}]
	answers = Column(JSON, nullable=False, default=list)
	completed_at = Column(DateTime, default=datetime.utcnow, nullable=False)


class QuizShare(Base):
	__tablename__ = "quiz_shares"
	id = Column(Integer, primary_key=True, autoincrement=True)
	share_token = Column(String(64), unique=True, nullable=False, index=True)
	quiz_id = Column(String(64), ForeignKey("quizzes.id", ondelete="CASCADE"), nullable=False, index=True)
	created_by = Column(String(128), nullable=False)
	allow_anonymous = Column(Boolean, default=True, nullable=False)
	max_attempts = Column(Integer, default=3, nullable=False)
	completion_count = Column(Integer, default=0, nullable=False)
	view_count = Column(Integer, default=0, nullable=False)
	expires_at = Column(DateTime, nullable=True)
	created_at = Column(DateTime, default=datetime.utcnow, nullable=False)


class WrongAnswerNote(Base):
	__tablename__ = "wrong_answer_notes"
	id = Column(Integer, primary_key=True, autoincrement=True)
	student_username = Column(String(128), nullable=False, index=True)
	quiz_id = Column(String(64), nullable=False)
	result_id = Column(String(64), ForeignKey("quiz_results.id", ondelete="CASCADE"), nullable=False)
	problem_id = Column(String(64), nullable=False)
	word = Column(String(128), nullable=False)
	sentence = Column(Text, nullable=False)
	correct_answer = Column(Text, nullable=False)
	user_answer = Column(Text, nullable=False, default="")
	created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
