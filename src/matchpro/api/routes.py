from __future__ import annotations

import logging
from typing import NoReturn

from fastapi import APIRouter, Depends, HTTPException, Query, WebSocket, WebSocketDisconnect
from sqlalchemy.orm import Session

from matchpro.api.deps import get_blob_store, get_db, get_scoring_client
from matchpro.api.schemas import (
    BatchCacheResponse,
    BatchMatchRequest,
    BatchMatchResponse,
    MatchRequest,
    ResumeTextResponse,
    ResumeUploadRequest,
    ResumeUploadResponse,
    SessionResponse,
    SessionStartRequest,
)
from matchpro.config import get_settings
from matchpro.core.batching import validate_batch_jobs
from matchpro.core.cache import CacheGate
from matchpro.core.hashing import hash_text
from matchpro.core.resolver import PhaseResolver, TwoPhaseResolver
from matchpro.core.resumes import ResumeService
from matchpro.core.retry import with_retry
from matchpro.core.runtime import get_session_registry
from matchpro.core.sessions import TERMINAL_STATUSES
from matchpro.db.repositories import Repository
from matchpro.db.session import SessionLocal
from matchpro.errors import EmptyResultError, InputValidationError, MatchError
from matchpro.scoring.client import ScoringClient
from matchpro.storage.blobs import BlobStore, resume_key
from matchpro.types import BatchRunRequest, DetailViewRequest, DetailViewState, MatchEnvelope

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["api"])


def _raise_http(exc: MatchError) -> NoReturn:
    if isinstance(exc, EmptyResultError):
        raise HTTPException(status_code=exc.status_code, detail={"error": str(exc), "hint": exc.hint}) from exc
    raise HTTPException(status_code=exc.status_code, detail=str(exc)) from exc


def _phase_resolver(db: Session, client: ScoringClient, blobs: BlobStore) -> PhaseResolver:
    repo = Repository(db)
    return PhaseResolver(
        gate=CacheGate(repo, get_settings().cache_version),
        client=client,
        resumes=ResumeService(repo, blobs),
    )


@router.post("/resume", response_model=ResumeUploadResponse)
def upload_resume(
    payload: ResumeUploadRequest,
    db: Session = Depends(get_db),
    blobs: BlobStore = Depends(get_blob_store),
) -> ResumeUploadResponse:
    try:
        record = ResumeService(Repository(db), blobs).register(payload.resume_text)
    except MatchError as exc:
        _raise_http(exc)
    return ResumeUploadResponse(resumeId=record.id, resumeHash=record.resume_hash)


@router.get("/resume-text", response_model=ResumeTextResponse)
def get_resume_text(
    resume_id: str = Query("", alias="resumeId"),
    db: Session = Depends(get_db),
    blobs: BlobStore = Depends(get_blob_store),
) -> ResumeTextResponse:
    try:
        text = ResumeService(Repository(db), blobs).load_text(resume_id)
    except MatchError as exc:
        _raise_http(exc)
    return ResumeTextResponse(resumeId=resume_id, resumeKey=resume_key(resume_id), resumeText=text)


@router.post("/match/batch", response_model=BatchMatchResponse)
async def match_batch(
    payload: BatchMatchRequest,
    db: Session = Depends(get_db),
    client: ScoringClient = Depends(get_scoring_client),
) -> BatchMatchResponse:
    settings = get_settings()
    try:
        validate_batch_jobs(payload.resume_text, payload.jobs)
        results = await with_retry(
            lambda: client.score_batch(payload.resume_text, payload.jobs),
            max_retries=settings.max_batch_retries,
            delay_sec=settings.retry_delay_sec,
            label="Batch match",
        )
    except MatchError as exc:
        logger.warning("Batch match failed jobs=%s: %s", len(payload.jobs), exc)
        _raise_http(exc)

    if payload.resume_id:
        gate = CacheGate(Repository(db), settings.cache_version)
        try:
            gate.store_batch_results(payload.resume_id, hash_text(payload.resume_text), results)
        except Exception:
            logger.exception("Batch persistence failed resume_id=%s", payload.resume_id)

    return BatchMatchResponse(match_results=results)


@router.get("/match/batch-cache", response_model=BatchCacheResponse)
def get_batch_cache(resume_id: str = Query("", alias="resumeId"), db: Session = Depends(get_db)) -> BatchCacheResponse:
    if not resume_id:
        raise HTTPException(status_code=400, detail="Missing resumeId")
    gate = CacheGate(Repository(db), get_settings().cache_version)
    return BatchCacheResponse(results=gate.scoring_results(resume_id))


@router.post("/match", response_model=MatchEnvelope)
async def match_single(
    payload: MatchRequest,
    match_type: str = Query("", alias="type"),
    db: Session = Depends(get_db),
    client: ScoringClient = Depends(get_scoring_client),
    blobs: BlobStore = Depends(get_blob_store),
) -> MatchEnvelope:
    resolver = _phase_resolver(db, client, blobs)
    try:
        if match_type == "scoring":
            return await resolver.resolve_scoring(payload.resumeId, payload.jobId, payload.inputs.job_description)
        if match_type == "details":
            return await resolver.resolve_details(
                payload.resumeId,
                payload.jobId,
                payload.inputs.job_description,
                payload.inputs.overall_from_scoring,
            )
        raise InputValidationError("Invalid type parameter")
    except MatchError as exc:
        logger.warning("Match %s failed job_id=%s: %s", match_type or "?", payload.jobId, exc)
        _raise_http(exc)


@router.post("/match/view", response_model=DetailViewState)
async def match_view(
    payload: DetailViewRequest,
    db: Session = Depends(get_db),
    client: ScoringClient = Depends(get_scoring_client),
    blobs: BlobStore = Depends(get_blob_store),
) -> DetailViewState:
    view = TwoPhaseResolver(_phase_resolver(db, client, blobs))
    try:
        return await view.resolve(payload)
    finally:
        view.close()


@router.post("/match/sessions", response_model=SessionResponse)
async def start_session(
    payload: SessionStartRequest,
    db: Session = Depends(get_db),
    client: ScoringClient = Depends(get_scoring_client),
    blobs: BlobStore = Depends(get_blob_store),
) -> SessionResponse:
    settings = get_settings()
    repo = Repository(db)
    try:
        resume_text = ResumeService(repo, blobs).load_text(payload.resume_id)
    except MatchError as exc:
        _raise_http(exc)

    prior_results = []
    if payload.incremental:
        prior_results = CacheGate(repo, settings.cache_version).scoring_results(payload.resume_id)
    request = BatchRunRequest(
        resume_id=payload.resume_id,
        resume_text=resume_text,
        jobs=payload.jobs,
        incremental=payload.incremental,
        prior_results=prior_results,
        total_count=payload.total_count,
    )
    match_session = get_session_registry().start(
        request, client=client, settings=settings, session_factory=SessionLocal
    )
    return SessionResponse(session_id=match_session.id, state=match_session.state)


@router.get("/match/sessions", response_model=SessionResponse)
def get_latest_session(resume_id: str = Query("", alias="resumeId")) -> SessionResponse:
    if not resume_id:
        raise HTTPException(status_code=400, detail="Missing resumeId")
    match_session = get_session_registry().latest_for_resume(resume_id)
    if match_session is None:
        raise HTTPException(status_code=404, detail="No matching session for resume")
    return SessionResponse(session_id=match_session.id, state=match_session.state)


@router.get("/match/sessions/{session_id}", response_model=SessionResponse)
def get_session(session_id: str) -> SessionResponse:
    match_session = get_session_registry().get(session_id)
    if match_session is None:
        raise HTTPException(status_code=404, detail="Session not found")
    return SessionResponse(session_id=match_session.id, state=match_session.state)


@router.delete("/match/sessions/{session_id}", response_model=SessionResponse)
async def cancel_session(session_id: str) -> SessionResponse:
    match_session = get_session_registry().cancel(session_id)
    if match_session is None:
        raise HTTPException(status_code=404, detail="Session not found")
    return SessionResponse(session_id=match_session.id, state=match_session.state)


@router.websocket("/match/sessions/{session_id}/stream")
async def stream_session(websocket: WebSocket, session_id: str) -> None:
    await websocket.accept()
    registry = get_session_registry()
    match_session = registry.get(session_id)
    if match_session is None:
        await websocket.close(code=4404)
        return

    # Registered before the first snapshot so a terminal event published in between is queued.
    queue = await registry.event_bus.register(session_id)
    try:
        await websocket.send_json(match_session.state.model_dump(mode="json"))
        if match_session.state.status in TERMINAL_STATUSES:
            await websocket.close()
            return

        while True:
            event = await queue.get()
            await websocket.send_json(event)
            if event.get("status") in TERMINAL_STATUSES:
                await websocket.close()
                return
    except WebSocketDisconnect:
        return
    finally:
        await registry.event_bus.unregister(session_id, queue)
