"""
Audio synthesis pipeline.

For every problem the blank is filled with the answer, the sentence is narrated
by the speech service, the clip is uploaded to object storage and its public URL
is written to the problem's audio record. Problems are handled strictly one at a
time through the synthesis worker. A failure on one problem is logged and the
batch moves on; that problem keeps a null URL until it is synthesised again.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional, Protocol, Sequence

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from .models import QuizProblemAudio
from .schemas import AudioProgress, Problem
from .storage import LocalObjectStorage, StorageError
from .text import complete_sentence
from .tts_client import SynthesisError
from .work_queue import SerialWorker, synthesis_worker

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[int, int], None]


class SpeechSynthesizer(Protocol):
    content_type: str
    extension: str

    async def synthesize(self, text: str) -> bytes: ...


def build_utterance(sentence: str, answer: str) -> str:
    return complete_sentence(sentence, answer)


def audio_key(quiz_id: str, problem_id: str, disambiguator: str, extension: str = "mp3") -> str:
    return f"{quiz_id}/{problem_id}_{disambiguator}.{extension}"


@dataclass
class SynthesisReport:
    total: int
    urls: Dict[str, str] = field(default_factory=dict)
    failed: List[str] = field(default_factory=list)


class AudioProgressRegistry:
    """current/total per quiz for the batch currently (or last) running."""

    def __init__(self) -> None:
        self._progress: Dict[str, AudioProgress] = {}

    def start(self, quiz_id: str, total: int) -> None:
        self._progress[quiz_id] = AudioProgress(current=0, total=total, running=True)

    def advance(self, quiz_id: str, current: int, total: int) -> None:
        entry = self._progress.setdefault(quiz_id, AudioProgress(total=total, running=True))
        entry.current = current
        entry.total = total

    def record_failure(self, quiz_id: str, problem_id: str) -> None:
        self._progress.setdefault(quiz_id, AudioProgress()).failed.append(problem_id)

    def finish(self, quiz_id: str) -> None:
        entry = self._progress.get(quiz_id)
        if entry is not None:
            entry.running = False

    def get(self, quiz_id: str) -> AudioProgress:
        entry = self._progress.get(quiz_id)
        return entry.model_copy(deep=True) if entry is not None else AudioProgress()

    def is_running(self, quiz_id: str) -> bool:
        entry = self._progress.get(quiz_id)
        return bool(entry and entry.running)


audio_progress = AudioProgressRegistry()


class AudioSynthesisPipeline:
    def __init__(
        self,
        synthesizer: SpeechSynthesizer,
        storage: LocalObjectStorage,
        session_factory: Callable[[], Session],
        *,
        worker: Optional[SerialWorker] = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.synthesizer = synthesizer
        self.storage = storage
        self.session_factory = session_factory
        self.worker = worker or synthesis_worker
        self.clock = clock

    async def synthesize_problem(self, quiz_id: str, problem: Problem) -> Optional[str]:
        """Synthesise, upload and record audio for one problem. Returns the new URL, or None on failure."""
        text = build_utterance(problem.sentence, problem.answer)
        try:
            clip = await self.worker.run(self.synthesizer.synthesize, text)
            key = audio_key(quiz_id, problem.id, str(int(self.clock() * 1000)), getattr(self.synthesizer, "extension", "mp3"))
            url = self.storage.upload(key, clip, content_type=getattr(self.synthesizer, "content_type", "audio/mpeg"))
            self._record_url(quiz_id, problem.id, url)
        except (SynthesisError, StorageError, SQLAlchemyError) as exc:
            logger.warning("Audio for problem %s of quiz %s failed: %s", problem.id, quiz_id, exc)
            return None
        logger.info("Audio ready for problem %s of quiz %s", problem.id, quiz_id)
        return url

    async def synthesize_all(
        self,
        quiz_id: str,
        problems: Sequence[Problem],
        *,
        on_progress: Optional[ProgressCallback] = None,
    ) -> SynthesisReport:
        report = SynthesisReport(total=len(problems))
        for index, problem in enumerate(problems, start=1):
            url = await self.synthesize_problem(quiz_id, problem)
            if url is None:
                report.failed.append(problem.id)
            else:
                report.urls[problem.id] = url
            if on_progress is not None:
                on_progress(index, report.total)
        logger.info(
            "Audio batch for quiz %s finished: %d ok, %d failed",
            quiz_id, len(report.urls), len(report.failed),
        )
        return report

    async def run_tracked(self, quiz_id: str, problems: Sequence[Problem], registry: AudioProgressRegistry = audio_progress) -> SynthesisReport:
        registry.start(quiz_id, len(problems))
        try:
            report = await self.synthesize_all(
                quiz_id,
                problems,
                on_progress=lambda current, total: registry.advance(quiz_id, current, total),
            )
            for problem_id in report.failed:
                registry.record_failure(quiz_id, problem_id)
            return report
        finally:
            registry.finish(quiz_id)

    async def aclose(self) -> None:
        close = getattr(self.synthesizer, "aclose", None)
        if close is not None:
            await close()

    def _record_url(self, quiz_id: str, problem_id: str, url: str) -> None:
        db = self.session_factory()
        try:
            row = (
                db.query(QuizProblemAudio)
                .filter(QuizProblemAudio.quiz_id == quiz_id, QuizProblemAudio.problem_id == problem_id)
                .first()
            )
            if row is None:
                row = QuizProblemAudio(quiz_id=quiz_id, problem_id=problem_id)
            row.sentence_audio_url = url
            db.add(row)
            db.commit()
        except SQLAlchemyError:
            db.rollback()
            raise
        finally:
            db.close()
