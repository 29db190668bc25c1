"""
Quiz-taking session engine.

Client-side state machine for one attempt:

    LOADING -> IN_SET(i) -> SUBMITTING -> COMPLETED

Problems arrive without answers and are shuffled once when the session loads,
then split into sets of ``words_per_set``. Moving forward needs every answer in
the current set; moving back is always allowed. Submitting needs the last set
and an answer for every problem, unless the countdown ran out, in which case the
session submits whatever is there. Correctness is never computed here: the
answers go to the grader and its response is the result.
"""

from __future__ import annotations

import asyncio
import logging
import random
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence, Tuple

from .generation import fisher_yates_shuffle
from .schemas import StudentProblem, StudentQuiz, SubmitResponse

logger = logging.getLogger(__name__)

Grader = Callable[[str, Dict[str, str]], Awaitable[SubmitResponse]]


class SessionState(str, Enum):
    LOADING = "loading"
    IN_SET = "in_set"
    SUBMITTING = "submitting"
    COMPLETED = "completed"


class SessionError(Exception):
    pass


class NavigationBlocked(SessionError):
    pass


class SubmissionBlocked(SessionError):
    pass


class SubmissionFailed(SessionError):
    pass


def partition_sets(problems: Sequence[StudentProblem], words_per_set: int) -> List[List[StudentProblem]]:
    size = max(1, int(words_per_set or 1))
    return [list(problems[i:i + size]) for i in range(0, len(problems), size)]


def word_bank_for(seed: Any, quiz_id: str, set_index: int, visit: int, words: Sequence[str]) -> List[str]:
    """Shuffled word bank for one visit to one set; the same inputs always give the same order."""
    return fisher_yates_shuffle(words, random.Random(f"{seed}:{quiz_id}:{set_index}:{visit}"))


def format_time(seconds: int) -> str:
    seconds = max(0, int(seconds))
    return f"{seconds // 60}:{seconds % 60:02d}"


class CountdownTimer:
    """
    One periodic tick. Reaching zero stops the timer and calls ``on_expire`` once.

    A paused timer keeps its task and its remaining seconds but ignores ticks
    until resumed.
    """

    def __init__(self, seconds: int, on_expire: Callable[[], None]) -> None:
        self.remaining = int(seconds)
        self.on_expire = on_expire
        self.running = self.remaining > 0
        self.paused = False
        self._task: Optional[asyncio.Task] = None

    @property
    def expired(self) -> bool:
        return self.remaining <= 0

    def pause(self) -> None:
        self.paused = True

    def resume(self) -> None:
        if self.running:
            self.paused = False

    def tick(self) -> int:
        if not self.running or self.paused:
            return self.remaining
        self.remaining -= 1
        if self.remaining <= 0:
            self.remaining = 0
            self.running = False
            self.on_expire()
        return self.remaining

    def start(self, interval: float = 1.0) -> asyncio.Task:
        if self._task is None or self._task.done():
            self._task = asyncio.get_running_loop().create_task(self._run(interval))
        return self._task

    async def _run(self, interval: float) -> None:
        while self.running:
            await asyncio.sleep(interval)
            self.tick()

    def cancel(self) -> None:
        self.running = False
        task, self._task = self._task, None
        # Expiry cancels from inside the tick; that task simply stops looping
        if task is not None and not task.done() and not self._is_current(task):
            task.cancel()

    @staticmethod
    def _is_current(task: asyncio.Task) -> bool:
        try:
            return asyncio.current_task() is task
        except RuntimeError:
            return False


class AudioPlayer:
    """
    Single-flight clip playback: starting a clip stops the one playing, and
    toggling the playing clip stops it.
    """

    def __init__(
        self,
        start: Optional[Callable[[str], None]] = None,
        stop: Optional[Callable[[], None]] = None,
    ) -> None:
        self._start = start
        self._stop = stop
        self.playing: Optional[str] = None

    def toggle(self, problem_id: str, url: Optional[str]) -> Optional[str]:
        if not url:
            return self.playing
        was_playing = self.playing
        if was_playing is not None:
            self.stop()
        if was_playing == problem_id:
            return None
        self.playing = problem_id
        if self._start is not None:
            self._start(url)
        return self.playing

    def stop(self) -> None:
        if self.playing is not None and self._stop is not None:
            self._stop()
        self.playing = None

    def finished(self, problem_id: str) -> None:
        if self.playing == problem_id:
            self.playing = None


class QuizSession:
    def __init__(self, quiz_id: str, *, seed: Optional[Any] = None) -> None:
        self.quiz_id = quiz_id
        self.seed = seed if seed is not None else random.getrandbits(64)
        self.state = SessionState.LOADING
        self.quiz: Optional[StudentQuiz] = None
        self.problems: List[StudentProblem] = []
        self.sets: List[List[StudentProblem]] = []
        self.set_index = 0
        self.answers: Dict[str, str] = {}
        self.show_translation: Dict[str, bool] = {}
        self.audio = AudioPlayer()
        self.timer: Optional[CountdownTimer] = None
        self.time_expired = False
        self.result: Optional[SubmitResponse] = None
        self.last_error: Optional[str] = None
        self._pending: Optional[Dict[str, str]] = None
        self._visits: Dict[int, int] = {}
        self._word_banks: Dict[Tuple[int, int], List[str]] = {}

    # ------------------------------------------------------------------ setup

    def load(self, quiz: StudentQuiz) -> None:
        if self.state is not SessionState.LOADING:
            raise SessionError("session already loaded")
        if quiz.id != self.quiz_id:
            raise SessionError(f"expected quiz {self.quiz_id}, got {quiz.id}")
        if not quiz.problems:
            raise SessionError("quiz has no problems")
        self.quiz = quiz
        self.problems = fisher_yates_shuffle(quiz.problems, random.Random(f"{self.seed}:{quiz.id}:problems"))
        self.sets = partition_sets(self.problems, quiz.words_per_set)
        self._enter_set(0)
        self.state = SessionState.IN_SET
        if quiz.timer_enabled and quiz.timer_seconds:
            self.timer = CountdownTimer(quiz.timer_seconds, self._on_time_up)

    def close(self) -> None:
        """Teardown on any exit path: stops the countdown and any playing clip."""
        if self.timer is not None:
            self.timer.cancel()
        self.audio.stop()

    # ------------------------------------------------------------------ sets

    @property
    def total_sets(self) -> int:
        return len(self.sets)

    @property
    def current_set(self) -> List[StudentProblem]:
        return self.sets[self.set_index] if self.sets else []

    @property
    def is_last_set(self) -> bool:
        return self.set_index == self.total_sets - 1

    @property
    def time_left(self) -> Optional[int]:
        return self.timer.remaining if self.timer is not None else None

    def range_label(self) -> str:
        size = self.quiz.words_per_set if self.quiz else 1
        first = self.set_index * size + 1
        last = min((self.set_index + 1) * size, len(self.problems))
        return f"{first}-{last} / {len(self.problems)}"

    def _enter_set(self, index: int) -> None:
        self.set_index = index
        self._visits[index] = self._visits.get(index, 0) + 1
        self.show_translation = {}

    def word_bank(self) -> List[str]:
        key = (self.set_index, self._visits.get(self.set_index, 1))
        if key not in self._word_banks:
            words = [p.word for p in self.current_set]
            self._word_banks[key] = word_bank_for(self.seed, self.quiz_id, key[0], key[1], words)
        return list(self._word_banks[key])

    def _require(self, state: SessionState) -> None:
        if self.state is not state:
            raise SessionError(f"not allowed while {self.state.value}")

    def set_answer(self, problem_id: str, value: str) -> None:
        self._require(SessionState.IN_SET)
        if not any(p.id == problem_id for p in self.problems):
            raise SessionError(f"unknown problem {problem_id}")
        self.answers[problem_id] = value

    def _answered(self, problems: Sequence[StudentProblem]) -> bool:
        return all((self.answers.get(p.id) or "").strip() for p in problems)

    def current_set_answered(self) -> bool:
        return self._answered(self.current_set)

    def all_answered(self) -> bool:
        return self._answered(self.problems)

    def next_set(self) -> int:
        self._require(SessionState.IN_SET)
        if self.is_last_set:
            raise NavigationBlocked("already on the last set")
        if not self.current_set_answered():
            raise NavigationBlocked("answer every problem in this set first")
        self._enter_set(self.set_index + 1)
        return self.set_index

    def previous_set(self) -> int:
        self._require(SessionState.IN_SET)
        if self.set_index == 0:
            raise NavigationBlocked("already on the first set")
        self._enter_set(self.set_index - 1)
        return self.set_index

    # ------------------------------------------------------------------ aids

    def toggle_translation(self, problem_id: str) -> bool:
        self.show_translation[problem_id] = not self.show_translation.get(problem_id, False)
        return self.show_translation[problem_id]

    def play_audio(self, problem_id: str) -> Optional[str]:
        problem = next((p for p in self.problems if p.id == problem_id), None)
        return self.audio.toggle(problem_id, problem.audio_url if problem else None)

    # ------------------------------------------------------------------ submit

    def can_submit(self) -> bool:
        return self.state is SessionState.IN_SET and (self.time_expired or (self.is_last_set and self.all_answered()))

    def build_payload(self) -> Dict[str, str]:
        return {p.id: self.answers.get(p.id, "") for p in self.problems}

    def begin_submission(self, *, force: bool = False) -> Dict[str, str]:
        self._require(SessionState.IN_SET)
        if not force and not self.can_submit():
            raise SubmissionBlocked("answer every problem and reach the last set before submitting")
        if self.timer is not None:
            self.timer.pause()
        self.audio.stop()
        self._pending = self.build_payload()
        self.state = SessionState.SUBMITTING
        return dict(self._pending)

    async def send(self, grader: Grader) -> SubmitResponse:
        self._require(SessionState.SUBMITTING)
        payload = dict(self._pending or self.build_payload())
        try:
            response = await grader(self.quiz_id, payload)
            if not response.success:
                raise SubmissionFailed("grader rejected the submission")
        except Exception as exc:
            # Back to an actionable state; the same answers can be sent again
            self.state = SessionState.IN_SET
            self.last_error = str(exc) or exc.__class__.__name__
            logger.warning("Submission for quiz %s failed: %s", self.quiz_id, self.last_error)
            if self.timer is not None:
                self.timer.resume()
            if isinstance(exc, SubmissionFailed):
                raise
            raise SubmissionFailed(self.last_error) from exc
        self.result = response
        self.last_error = None
        self.state = SessionState.COMPLETED
        self.close()
        return response

    async def submit(self, grader: Grader) -> SubmitResponse:
        self.begin_submission(force=self.time_expired)
        return await self.send(grader)

    def _on_time_up(self) -> None:
        self.time_expired = True
        if self.state is SessionState.IN_SET:
            logger.info("Time is up for quiz %s, submitting current answers", self.quiz_id)
            self.begin_submission(force=True)

    async def run_timer(self, grader: Grader, interval: float = 1.0) -> Optional[SubmitResponse]:
        """Drive the countdown; on expiry send the forced submission. Cancel via close()."""
        if self.timer is None:
            return None
        try:
            await self.timer.start(interval)
        except asyncio.CancelledError:
            return None
        if self.state is SessionState.SUBMITTING:
            try:
                return await self.send(grader)
            except SubmissionFailed:
                return None
        return None
