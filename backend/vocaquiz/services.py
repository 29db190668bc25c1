"""FastAPI dependency providers for the external collaborators. Tests override these."""

from __future__ import annotations

import logging
from typing import AsyncIterator, Callable

from fastapi import HTTPException

from .audio import AudioSynthesisPipeline
from .db import get_session_factory
from .gemini_client import GeminiClient
from .generation import GenerationOrchestrator
from .storage import LocalObjectStorage
from .tts_client import ElevenLabsClient

logger = logging.getLogger(__name__)

PipelineFactory = Callable[[], AudioSynthesisPipeline]


async def get_orchestrator() -> AsyncIterator[GenerationOrchestrator]:
    try:
        client = GeminiClient()
    except ValueError as exc:
        raise HTTPException(status_code=503, detail=str(exc))
    try:
        yield GenerationOrchestrator(client)
    finally:
        await client.aclose()


def get_storage() -> LocalObjectStorage:
    return LocalObjectStorage()


def build_audio_pipeline() -> AudioSynthesisPipeline:
    """Raises ValueError when speech synthesis is not configured."""
    return AudioSynthesisPipeline(ElevenLabsClient(), get_storage(), get_session_factory())


def get_audio_pipeline_factory() -> PipelineFactory:
    # A factory, not a pipeline: background jobs outlive the request and own their client
    return build_audio_pipeline
