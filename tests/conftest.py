import json
import os
import random
import re
import tempfile
from typing import Dict, Iterable, List, Optional

_TMP = tempfile.mkdtemp(prefix="vocaquiz-tests-")
os.environ.setdefault("STORAGE_DIR", os.path.join(_TMP, "storage"))
os.environ.setdefault("LOG_DIR", os.path.join(_TMP, "log"))
os.environ.setdefault("DATABASE_URL", f"sqlite:///{_TMP}/app.db")
os.environ.setdefault("PUBLIC_BASE_URL", "http://testserver")
os.environ.setdefault("LOG_LEVEL", "WARNING")

import httpx
import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from vocaquiz.audio import AudioSynthesisPipeline
from vocaquiz.db import Base, get_db
from vocaquiz.generation import GenerationOrchestrator
from vocaquiz.main import app
from vocaquiz.models import AuthUser
from vocaquiz.quiz_store import create_quiz
from vocaquiz.schemas import Problem, QuizCreateRequest
from vocaquiz.services import get_audio_pipeline_factory, get_orchestrator
from vocaquiz.storage import LocalObjectStorage
from vocaquiz.tts_client import SynthesisError
from vocaquiz.work_queue import SerialWorker


WORDS_LINE_RE = re.compile(r"^Words \(dictionary form\): (.+)$", re.MULTILINE)


# =============================================================================
# FAKE COLLABORATORS
# =============================================================================


def problem_entry(word: str) -> Dict[str, str]:
    return {
        "word": word,
        "answer": f"{word}이",
        "sentence": "( ) 좋아요.",
        "hint": "이/가",
        "translation": f"[{word}] is good.",
    }


def http_status_error(status: int) -> httpx.HTTPStatusError:
    request = httpx.Request("POST", "https://generativelanguage.googleapis.com/v1beta/models/x:generateContent")
    response = httpx.Response(status, request=request)
    return httpx.HTTPStatusError(f"status {status}", request=request, response=response)


class FakeGenerator:
    """Answers every prompt with one well-formed problem per requested word.

    ``failures`` and ``raw`` are keyed by 1-based call number.
    """

    def __init__(self, failures: Optional[Dict[int, Exception]] = None, raw: Optional[Dict[int, str]] = None) -> None:
        self.failures = failures or {}
        self.raw = raw or {}
        self.calls: List[List[str]] = []

    async def generate(self, prompt: str, *, json_mode: bool = False) -> str:
        words = [w.strip() for w in WORDS_LINE_RE.search(prompt).group(1).split(",")]
        self.calls.append(words)
        call = len(self.calls)
        if call in self.failures:
            raise self.failures[call]
        if call in self.raw:
            return self.raw[call]
        return json.dumps({"problems": [problem_entry(w) for w in words]}, ensure_ascii=False)


class FakeSynthesizer:
    content_type = "audio/mpeg"
    extension = "mp3"

    def __init__(self, fail_for: Iterable[str] = ()) -> None:
        self.fail_for = set(fail_for)
        self.texts: List[str] = []
        self.closed = False

    async def synthesize(self, text: str) -> bytes:
        self.texts.append(text)
        if any(marker in text for marker in self.fail_for):
            raise SynthesisError("voice service unavailable", status_code=503)
        return b"ID3" + text.encode("utf-8")

    async def aclose(self) -> None:
        self.closed = True


# =============================================================================
# DATABASE
# =============================================================================


@pytest.fixture
def engine():
    eng = create_engine("sqlite://", connect_args={"check_same_thread": False}, poolclass=StaticPool, future=True)
    Base.metadata.create_all(bind=eng)
    yield eng
    Base.metadata.drop_all(bind=eng)
    eng.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine, future=True)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def storage(tmp_path):
    return LocalObjectStorage(str(tmp_path / "storage"), bucket="quiz-audio", public_base_url="http://testserver")


# =============================================================================
# QUIZ BUILDERS
# =============================================================================


def make_problems(words: Iterable[str], stamp: int = 1700000000000) -> List[Problem]:
    return [Problem(id=f"problem-{stamp}-{i}", **problem_entry(w)) for i, w in enumerate(words)]


@pytest.fixture
def make_quiz(db):
    """Store a quiz owned by ``teacher`` (created on first use) and return it."""

    def _make(words=("학생", "학교", "친구"), teacher="teacher1", **settings):
        if db.get(AuthUser, teacher) is None:
            db.add(AuthUser(username=teacher, password_hash="x", role="teacher", display_name="Ms. Kim"))
            db.commit()
        words = list(words)
        req = QuizCreateRequest(
            title=settings.pop("title", "Unit 1"),
            words=words,
            problems=make_problems(words),
            **settings,
        )
        return create_quiz(db, teacher, req)

    return _make


# =============================================================================
# FASTAPI
# =============================================================================


@pytest.fixture
def fake_generator():
    return FakeGenerator()


@pytest.fixture
def fake_synthesizer():
    return FakeSynthesizer()


@pytest.fixture
def client(session_factory, storage, fake_generator, fake_synthesizer):
    def _get_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    orchestrator = GenerationOrchestrator(
        fake_generator,
        worker=SerialWorker("generation-test"),
        rng=random.Random(7),
    )
    tts_worker = SerialWorker("synthesis-test")

    def _pipeline():
        return AudioSynthesisPipeline(fake_synthesizer, storage, session_factory, worker=tts_worker)

    app.dependency_overrides[get_db] = _get_db
    app.dependency_overrides[get_orchestrator] = lambda: orchestrator
    app.dependency_overrides[get_audio_pipeline_factory] = lambda: _pipeline
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()


@pytest.fixture
def login(client):
    """Register a user through the API and return bearer headers for it."""

    def _login(username: str, role: str = "student", display_name: Optional[str] = None) -> Dict[str, str]:
        r = client.post(
            "/auth/register",
            json={"username": username, "password": "pw-" + username, "role": role, "display_name": display_name},
        )
        assert r.status_code in (201, 409), r.text
        r = client.post("/auth/token", data={"username": username, "password": "pw-" + username})
        assert r.status_code == 200, r.text
        return {"Authorization": f"Bearer {r.json()['access_token']}"}

    return _login
