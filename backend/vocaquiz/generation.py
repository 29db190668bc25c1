"""
Generation orchestrator.

Turns a teacher's word list into fill-in-the-blank problems by calling the text
generator once per chunk of words. Chunks run one after another through the
generation worker. When a later chunk fails the problems gathered so far are
returned as a partial result together with the words they cover; when the
first chunk fails the whole call fails.
"""

from __future__ import annotations

import itertools
import json
import logging
import random
import re
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Protocol, Sequence, TypeVar

import httpx

from .prompts import build_generation_prompt
from .schemas import Problem, ProblemContent, ProblemId
from .settings import settings
from .text import complete_sentence, count_blanks, ends_with_terminal_punctuation, has_duplicated_particle
from .work_queue import SerialWorker, generation_worker

logger = logging.getLogger(__name__)

T = TypeVar("T")

_FENCE_OPEN_RE = re.compile(r"^```(?:json)?\s*", re.IGNORECASE)
_FENCE_CLOSE_RE = re.compile(r"\s*```$")


class TextGenerator(Protocol):
    async def generate(self, prompt: str, *, json_mode: bool = False) -> str: ...


class GenerationResponseError(ValueError):
    """The generator answered, but not with the structure we asked for."""


class GenerationError(Exception):
    def __init__(self, message: str, *, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.status_code = status_code


@dataclass
class GenerationResult:
    problems: List[Problem]
    requested_words: List[str]
    fulfilled_words: List[str]
    error: Optional[str] = None

    @property
    def requested(self) -> int:
        return len(self.requested_words)

    @property
    def fulfilled(self) -> int:
        return len(self.fulfilled_words)

    @property
    def partial(self) -> bool:
        return self.fulfilled < self.requested


def clean_words(words: Sequence[str]) -> List[str]:
    return [w.strip() for w in words if w and w.strip()]


def chunk_words(words: Sequence[str], size: int) -> List[List[str]]:
    if size < 1:
        raise ValueError("chunk size must be at least 1")
    return [list(words[i:i + size]) for i in range(0, len(words), size)]


def parse_generation_response(raw: str) -> List[Dict[str, Any]]:
    text = (raw or "").strip()
    if text.startswith("```"):
        text = _FENCE_CLOSE_RE.sub("", _FENCE_OPEN_RE.sub("", text)).strip()
    if not text.startswith("{"):
        raise GenerationResponseError(f"generator did not answer with a JSON object: {text[:80]!r}")
    try:
        data = json.loads(text)
    except ValueError as exc:
        raise GenerationResponseError(f"generator output is not valid JSON: {exc}") from exc
    problems = data.get("problems") if isinstance(data, dict) else None
    if not isinstance(problems, list) or not problems:
        raise GenerationResponseError("generator output has no problems list")
    if not all(isinstance(p, dict) for p in problems):
        raise GenerationResponseError("every problem must be a JSON object")
    return problems


def validate_problem_content(entry: Dict[str, Any], word: str) -> ProblemContent:
    def _field(name: str) -> str:
        value = entry.get(name)
        if value is None:
            return ""
        if not isinstance(value, str):
            raise GenerationResponseError(f"{name} for {word!r} is not a string")
        return value.strip()

    answer = _field("answer")
    sentence = _field("sentence")
    if not answer:
        raise GenerationResponseError(f"empty answer for {word!r}")
    blanks = count_blanks(sentence)
    if blanks != 1:
        raise GenerationResponseError(f"sentence for {word!r} has {blanks} blanks, expected 1")
    if has_duplicated_particle(sentence, answer):
        raise GenerationResponseError(f"sentence for {word!r} repeats the particle after the blank")
    if not ends_with_terminal_punctuation(complete_sentence(sentence, answer)):
        raise GenerationResponseError(f"sentence for {word!r} lacks terminal punctuation")
    return ProblemContent(
        word=word,
        answer=answer,
        sentence=sentence,
        hint=_field("hint"),
        translation=_field("translation"),
    )


def match_entries_to_words(words: Sequence[str], entries: Sequence[Dict[str, Any]]) -> List[Dict[str, Any]]:
    """Order entries like ``words``: exact word matches first, leftovers fill the gaps."""
    available = list(entries)
    slots: List[Optional[Dict[str, Any]]] = []
    for word in words:
        idx = next(
            (i for i, e in enumerate(available) if str(e.get("word", "")).strip() == word.strip()),
            None,
        )
        slots.append(available.pop(idx) if idx is not None else None)
    for i, slot in enumerate(slots):
        if slot is None and available:
            slots[i] = available.pop(0)
    missing = [w for w, s in zip(words, slots) if s is None]
    if missing:
        raise GenerationResponseError(f"generator skipped {len(missing)} word(s): {', '.join(missing)}")
    return [s for s in slots if s is not None]


def fisher_yates_shuffle(items: Sequence[T], rng: Optional[random.Random] = None) -> List[T]:
    rng = rng or random.Random()
    shuffled = list(items)
    for i in range(len(shuffled) - 1, 0, -1):
        j = rng.randint(0, i)
        shuffled[i], shuffled[j] = shuffled[j], shuffled[i]
    return shuffled


class ProblemIdFactory:
    """Ids of the form ``problem-<millis>-<n>``, unique within one generation call."""

    def __init__(self, clock: Callable[[], float] = time.time) -> None:
        self._stamp = int(clock() * 1000)
        self._counter = itertools.count()

    def next_id(self) -> ProblemId:
        return ProblemId(f"problem-{self._stamp}-{next(self._counter)}")


def _status_code_of(exc: BaseException) -> Optional[int]:
    seen: set = set()
    current: Optional[BaseException] = exc
    while current is not None and id(current) not in seen:
        seen.add(id(current))
        if isinstance(current, httpx.HTTPStatusError):
            return current.response.status_code
        # A failed fallback reports the primary call's status, not its own
        primary = getattr(current, "primary_error", None)
        if primary is not None:
            status = _status_code_of(primary)
            if status is not None:
                return status
        current = current.__cause__ or current.__context__
    return None


class GenerationOrchestrator:
    def __init__(
        self,
        client: TextGenerator,
        *,
        chunk_size: Optional[int] = None,
        chunk_attempts: Optional[int] = None,
        worker: Optional[SerialWorker] = None,
        rng: Optional[random.Random] = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.client = client
        self.chunk_size = chunk_size or settings.generation_chunk_size
        self.chunk_attempts = chunk_attempts or settings.generation_chunk_attempts
        self.worker = worker or generation_worker
        self.rng = rng or random.Random()
        self.clock = clock

    async def generate(
        self,
        words: Sequence[str],
        difficulty: str,
        translation_language: str,
        *,
        on_progress: Optional[Callable[[int, int], None]] = None,
        shuffle: bool = True,
    ) -> GenerationResult:
        requested = clean_words(words)
        if not requested:
            raise GenerationError("at least one word is required", status_code=400)

        ids = ProblemIdFactory(self.clock)
        problems: List[Problem] = []
        fulfilled: List[str] = []
        error: Optional[str] = None
        chunks = chunk_words(requested, self.chunk_size)

        for index, chunk in enumerate(chunks):
            try:
                contents = await self._generate_chunk(chunk, difficulty, translation_language)
            except (httpx.HTTPError, GenerationResponseError, RuntimeError) as exc:
                if not problems:
                    logger.error("First generation chunk failed, nothing to return: %s", exc)
                    raise GenerationError(f"quiz generation failed: {exc}", status_code=_status_code_of(exc)) from exc
                error = str(exc) or exc.__class__.__name__
                logger.warning(
                    "Generation chunk %d/%d failed, returning partial result %d/%d: %s",
                    index + 1, len(chunks), len(fulfilled), len(requested), error,
                )
                break
            problems.extend(Problem(id=ids.next_id(), **c.model_dump()) for c in contents)
            fulfilled.extend(chunk)
            if on_progress is not None:
                on_progress(len(fulfilled), len(requested))

        if shuffle:
            problems = fisher_yates_shuffle(problems, self.rng)
        logger.info("Generated %d/%d problems at %s", len(fulfilled), len(requested), difficulty)
        return GenerationResult(problems=problems, requested_words=requested, fulfilled_words=fulfilled, error=error)

    async def regenerate_problem(self, problem: Problem, difficulty: str, translation_language: str) -> Problem:
        """New content for one problem. The id stays; the old audio no longer matches."""
        try:
            (content,) = await self._generate_chunk([problem.word], difficulty, translation_language)
        except (httpx.HTTPError, GenerationResponseError, RuntimeError) as exc:
            raise GenerationError(f"problem regeneration failed: {exc}", status_code=_status_code_of(exc)) from exc
        return problem.model_copy(update={**content.model_dump(), "audio_url": None})

    async def _generate_chunk(self, chunk: List[str], difficulty: str, translation_language: str) -> List[ProblemContent]:
        prompt = build_generation_prompt(chunk, difficulty, translation_language)
        last_error: Optional[GenerationResponseError] = None
        for attempt in range(self.chunk_attempts):
            # Quota, network and service errors propagate without a retry
            raw = await self.worker.run(self.client.generate, prompt, json_mode=True)
            try:
                entries = match_entries_to_words(chunk, parse_generation_response(raw))
                return [validate_problem_content(e, w) for e, w in zip(entries, chunk)]
            except GenerationResponseError as exc:
                last_error = exc
                logger.info("Malformed generation output (attempt %d/%d): %s", attempt + 1, self.chunk_attempts, exc)
        raise last_error or GenerationResponseError(f"no generation attempts made for {', '.join(chunk)}")
