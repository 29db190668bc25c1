from __future__ import annotations

import logging
from typing import Dict, Optional

import httpx

from .schemas import ShareResolution, StudentQuiz, SubmitResponse
from .session_engine import Grader

logger = logging.getLogger(__name__)


class QuizTakerClient:
    """HTTP client a taking session uses. It only ever reaches the student-safe endpoints."""

    def __init__(self, base_url: str, *, access_token: Optional[str] = None, http_client: Optional[httpx.AsyncClient] = None) -> None:
        headers = {"Authorization": f"Bearer {access_token}"} if access_token else {}
        self._client = http_client or httpx.AsyncClient(base_url=base_url, timeout=30)
        self._headers = headers

    async def _get(self, path: str) -> dict:
        r = await self._client.get(path, headers=self._headers)
        r.raise_for_status()
        return r.json()

    async def _post(self, path: str, payload: dict) -> dict:
        r = await self._client.post(path, json=payload, headers=self._headers)
        r.raise_for_status()
        return r.json()

    async def fetch_student_quiz(self, quiz_id: str) -> StudentQuiz:
        return StudentQuiz(**await self._get(f"/quizzes/{quiz_id}/student"))

    async def submit_answers(self, quiz_id: str, answers: Dict[str, str]) -> SubmitResponse:
        return SubmitResponse(**await self._post(f"/quizzes/{quiz_id}/submit", {"answers": answers}))

    async def resolve_share(self, token: str) -> ShareResolution:
        return ShareResolution(**await self._get(f"/shares/{token}"))

    async def fetch_shared_quiz(self, token: str) -> StudentQuiz:
        return StudentQuiz(**await self._get(f"/shares/{token}/quiz"))

    async def submit_shared(self, token: str, anonymous_name: str, answers: Dict[str, str]) -> SubmitResponse:
        payload = {"anonymous_name": anonymous_name, "answers": answers}
        return SubmitResponse(**await self._post(f"/shares/{token}/submit", payload))

    def shared_grader(self, token: str, anonymous_name: str) -> Grader:
        async def _grade(quiz_id: str, answers: Dict[str, str]) -> SubmitResponse:
            return await self.submit_shared(token, anonymous_name, answers)
        return _grade

    async def aclose(self) -> None:
        await self._client.aclose()
