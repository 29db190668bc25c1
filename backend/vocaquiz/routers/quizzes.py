from __future__ import annotations

import logging
from typing import List, Sequence

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException
from sqlalchemy.orm import Session

from ..audio import audio_progress
from ..db import get_db
from ..generation import GenerationError, GenerationOrchestrator
from ..grading import submit_answers
from ..models import Quiz
from ..quiz_store import (
    ProblemNotFound,
    QuizNotFound,
    create_quiz,
    find_problem,
    get_quiz,
    list_results,
    load_problems,
    result_out,
    save_problem_content,
    student_view,
    teacher_view,
    update_problem,
)
from ..schemas import (
    AudioProgress,
    GenerateRequest,
    GenerateResponse,
    Problem,
    ProblemContent,
    ProblemUpdate,
    QuizCreateRequest,
    ResultOut,
    StudentQuiz,
    SubmitRequest,
    SubmitResponse,
    TeacherQuiz,
)
from ..services import PipelineFactory, get_audio_pipeline_factory, get_orchestrator
from .auth import User, get_current_user, require_student, require_teacher

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/quizzes", tags=["quizzes"])


def generation_http_error(exc: GenerationError) -> HTTPException:
    if exc.status_code == 429:
        return HTTPException(status_code=429, detail="Too many requests to the generator, try again shortly")
    if exc.status_code == 400:
        return HTTPException(status_code=400, detail=str(exc))
    return HTTPException(status_code=502, detail=str(exc))


def _load_quiz(db: Session, quiz_id: str) -> Quiz:
    try:
        return get_quiz(db, quiz_id)
    except QuizNotFound:
        raise HTTPException(status_code=404, detail="Quiz not found")


def _owned_quiz(db: Session, quiz_id: str, user: User) -> Quiz:
    quiz = _load_quiz(db, quiz_id)
    if quiz.teacher_username != user.username and user.role != "admin":
        raise HTTPException(status_code=403, detail="Not your quiz")
    return quiz


async def synthesize_in_background(factory: PipelineFactory, quiz_id: str, problems: Sequence[Problem]) -> None:
    try:
        pipeline = factory()
    except ValueError as exc:
        logger.warning("Audio for quiz %s skipped: %s", quiz_id, exc)
        audio_progress.finish(quiz_id)
        return
    try:
        await pipeline.run_tracked(quiz_id, problems)
    finally:
        await pipeline.aclose()


async def synthesize_one_in_background(factory: PipelineFactory, quiz_id: str, problem: Problem) -> None:
    # Untracked: a single clip must not reset a bulk run's progress
    try:
        pipeline = factory()
    except ValueError as exc:
        logger.warning("Audio for problem %s skipped: %s", problem.id, exc)
        return
    try:
        await pipeline.synthesize_problem(quiz_id, problem)
    finally:
        await pipeline.aclose()


# ============================================================================
# GENERATION AND AUTHORING (teacher)
# ============================================================================

@router.post("/generate", response_model=GenerateResponse)
async def generate(
    req: GenerateRequest,
    user: User = Depends(require_teacher),
    orchestrator: GenerationOrchestrator = Depends(get_orchestrator),
):
    try:
        result = await orchestrator.generate(req.words, req.difficulty, req.translation_language)
    except GenerationError as exc:
        raise generation_http_error(exc)
    logger.info("%s generated %d/%d problems", user.username, result.fulfilled, result.requested)
    return GenerateResponse(
        problems=result.problems,
        requested=result.requested,
        fulfilled=result.fulfilled,
        partial=result.partial,
        fulfilled_words=result.fulfilled_words,
    )


@router.post("", response_model=TeacherQuiz, status_code=201)
async def create(
    req: QuizCreateRequest,
    background_tasks: BackgroundTasks,
    user: User = Depends(require_teacher),
    db: Session = Depends(get_db),
    pipeline_factory: PipelineFactory = Depends(get_audio_pipeline_factory),
):
    try:
        quiz = create_quiz(db, user.username, req)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc))
    view = teacher_view(db, quiz)
    missing_audio = [p for p in view.problems if not p.audio_url]
    if missing_audio:
        audio_progress.start(quiz.id, len(missing_audio))
        background_tasks.add_task(synthesize_in_background, pipeline_factory, quiz.id, missing_audio)
    return view


@router.get("/{quiz_id}", response_model=TeacherQuiz)
async def get_for_teacher(quiz_id: str, user: User = Depends(require_teacher), db: Session = Depends(get_db)):
    return teacher_view(db, _owned_quiz(db, quiz_id, user))


@router.get("/{quiz_id}/student", response_model=StudentQuiz)
async def get_for_student(quiz_id: str, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    return student_view(db, _load_quiz(db, quiz_id))


@router.patch("/{quiz_id}/problems/{problem_id}", response_model=Problem)
async def edit_problem(
    quiz_id: str,
    problem_id: str,
    update: ProblemUpdate,
    user: User = Depends(require_teacher),
    db: Session = Depends(get_db),
):
    quiz = _owned_quiz(db, quiz_id, user)
    try:
        return update_problem(db, quiz, problem_id, update)
    except ProblemNotFound:
        raise HTTPException(status_code=404, detail="Problem not found")
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc))


@router.post("/{quiz_id}/problems/{problem_id}/regenerate", response_model=Problem)
async def regenerate_problem(
    quiz_id: str,
    problem_id: str,
    background_tasks: BackgroundTasks,
    user: User = Depends(require_teacher),
    db: Session = Depends(get_db),
    orchestrator: GenerationOrchestrator = Depends(get_orchestrator),
    pipeline_factory: PipelineFactory = Depends(get_audio_pipeline_factory),
):
    quiz = _owned_quiz(db, quiz_id, user)
    try:
        current = find_problem(db, quiz, problem_id)
    except ProblemNotFound:
        raise HTTPException(status_code=404, detail="Problem not found")
    try:
        fresh = await orchestrator.regenerate_problem(current, quiz.difficulty, quiz.translation_language)
    except GenerationError as exc:
        raise generation_http_error(exc)
    content = ProblemContent(**fresh.model_dump(include=set(ProblemContent.model_fields)))
    saved = save_problem_content(db, quiz, problem_id, content, clear_audio=True)
    background_tasks.add_task(synthesize_one_in_background, pipeline_factory, quiz_id, saved)
    return saved


# ============================================================================
# AUDIO
# ============================================================================

@router.post("/{quiz_id}/audio", response_model=AudioProgress, status_code=202)
async def regenerate_all_audio(
    quiz_id: str,
    background_tasks: BackgroundTasks,
    user: User = Depends(require_teacher),
    db: Session = Depends(get_db),
    pipeline_factory: PipelineFactory = Depends(get_audio_pipeline_factory),
):
    quiz = _owned_quiz(db, quiz_id, user)
    if audio_progress.is_running(quiz_id):
        raise HTTPException(status_code=409, detail="Audio generation already running for this quiz")
    problems = load_problems(db, quiz)
    audio_progress.start(quiz_id, len(problems))
    background_tasks.add_task(synthesize_in_background, pipeline_factory, quiz_id, problems)
    return audio_progress.get(quiz_id)


@router.post("/{quiz_id}/problems/{problem_id}/audio", response_model=Problem)
async def regenerate_single_audio(
    quiz_id: str,
    problem_id: str,
    user: User = Depends(require_teacher),
    db: Session = Depends(get_db),
    pipeline_factory: PipelineFactory = Depends(get_audio_pipeline_factory),
):
    quiz = _owned_quiz(db, quiz_id, user)
    try:
        problem = find_problem(db, quiz, problem_id)
    except ProblemNotFound:
        raise HTTPException(status_code=404, detail="Problem not found")
    try:
        pipeline = pipeline_factory()
    except ValueError as exc:
        raise HTTPException(status_code=503, detail=str(exc))
    try:
        url = await pipeline.synthesize_problem(quiz_id, problem)
    finally:
        await pipeline.aclose()
    if url is None:
        raise HTTPException(status_code=502, detail="Audio generation failed, try again")
    return problem.model_copy(update={"audio_url": url})


@router.get("/{quiz_id}/audio/progress", response_model=AudioProgress)
async def audio_generation_progress(quiz_id: str, user: User = Depends(require_teacher), db: Session = Depends(get_db)):
    _owned_quiz(db, quiz_id, user)
    return audio_progress.get(quiz_id)


# ============================================================================
# TAKING AND RESULTS
# ============================================================================

@router.post("/{quiz_id}/submit", response_model=SubmitResponse)
async def submit(quiz_id: str, req: SubmitRequest, user: User = Depends(require_student), db: Session = Depends(get_db)):
    try:
        return submit_answers(db, quiz_id, req.answers, student_username=user.username)
    except QuizNotFound:
        raise HTTPException(status_code=404, detail="Quiz not found")


@router.get("/{quiz_id}/results", response_model=List[ResultOut])
async def results_for_quiz(quiz_id: str, user: User = Depends(require_teacher), db: Session = Depends(get_db)):
    _owned_quiz(db, quiz_id, user)
    return [result_out(r) for r in list_results(db, quiz_id)]
