from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from typing import Any

from sqlalchemy.exc import SQLAlchemyError

from matchpro.core.cache import CacheGate
from matchpro.core.cancellation import CancellationToken
from matchpro.core.hashing import hash_text
from matchpro.core.resumes import ResumeService
from matchpro.db.base import utcnow
from matchpro.errors import InputValidationError, MatchCancelled, MatchError, PersistenceError
from matchpro.scoring.client import ScoringClient
from matchpro.scoring.parsing import (
    parse_details_data,
    parse_scoring_data,
    validate_details_data,
    validate_scoring_data,
)
from matchpro.types import (
    DetailsData,
    DetailViewRequest,
    DetailViewState,
    EnvelopeMeta,
    MatchEnvelope,
    MatchType,
    PhaseState,
    ScoringData,
)

logger = logging.getLogger(__name__)


class PhaseResolver:
    """Cache-or-call-and-persist for a single phase of one (resume, job) pair."""

    def __init__(self, *, gate: CacheGate, client: ScoringClient, resumes: ResumeService):
        self.gate = gate
        self.client = client
        self.resumes = resumes

    async def resolve_scoring(
        self,
        resume_id: str,
        job_id: str,
        job_description: str,
        *,
        cancel_token: CancellationToken | None = None,
    ) -> MatchEnvelope:
        async def call(resume_text: str) -> ScoringData:
            outputs = await self.client.score(resume_text, job_description, cancel_token=cancel_token)
            return validate_scoring_data(parse_scoring_data(outputs))

        return await self._resolve("scoring", resume_id, job_id, job_description, call)

    async def resolve_details(
        self,
        resume_id: str,
        job_id: str,
        job_description: str,
        overall_from_scoring: float | None,
        *,
        cancel_token: CancellationToken | None = None,
    ) -> MatchEnvelope:
        if overall_from_scoring is None:
            raise InputValidationError("Missing overall_from_scoring for details request")

        async def call(resume_text: str) -> DetailsData:
            outputs = await self.client.details(
                resume_text, job_description, overall_from_scoring, cancel_token=cancel_token
            )
            return validate_details_data(parse_details_data(outputs))

        return await self._resolve("details", resume_id, job_id, job_description, call)

    async def _resolve(
        self,
        match_type: MatchType,
        resume_id: str,
        job_id: str,
        job_description: str,
        call: Callable[[str], Awaitable[Any]],
    ) -> MatchEnvelope:
        if not job_id or not job_description:
            raise InputValidationError("Missing jobId or job_description")
        if not resume_id:
            raise InputValidationError("Missing resumeId")

        try:
            cached = self.gate.lookup_envelope(resume_id, job_id, match_type)
        except SQLAlchemyError:
            logger.exception("Cache lookup failed resume_id=%s job_id=%s type=%s", resume_id, job_id, match_type)
            cached = None
        if cached is not None:
            return cached

        resume_text = self.resumes.load_text(resume_id)
        data = await call(resume_text)
        envelope = MatchEnvelope(
            meta=EnvelopeMeta(
                jobId=job_id,
                resumeHash=hash_text(resume_text),
                source="dify",
                timestamp=utcnow().isoformat(),
                version=self.gate.version,
                type=match_type,
            ),
            data=data,
        )

        try:
            return self.gate.store(resume_id, envelope)
        except PersistenceError:
            logger.exception("Failed to persist %s result resume_id=%s job_id=%s", match_type, resume_id, job_id)
            return envelope


class TwoPhaseResolver:
    """State machine for one job-detail view: scoring first, then details."""

    def __init__(self, phases: PhaseResolver):
        self.phases = phases
        self.state: DetailViewState | None = None
        self._token: CancellationToken | None = None

    def reset(self, job_id: str) -> tuple[CancellationToken, DetailViewState]:
        if self._token is not None:
            self._token.cancel(f"view switched to job {job_id}")
        self._token = CancellationToken()
        self.state = DetailViewState(job_id=job_id)
        return self._token, self.state

    def close(self) -> None:
        if self._token is not None:
            self._token.cancel("view closed")

    async def resolve(self, request: DetailViewRequest) -> DetailViewState:
        # Bound locally so a superseded run only ever writes to its own abandoned state.
        token, state = self.reset(request.job_id)

        if request.overall is not None and request.scores is not None:
            scoring = MatchEnvelope(
                meta=EnvelopeMeta(
                    jobId=request.job_id,
                    resumeHash=self.phases.resumes.resume_hash(request.resume_id),
                    source="cache",
                    timestamp=utcnow().isoformat(),
                    version=self.phases.gate.version,
                    type="scoring",
                ),
                data=ScoringData(overall=request.overall, scores=request.scores.model_dump()),
            )
        else:
            try:
                scoring = await self.phases.resolve_scoring(
                    request.resume_id, request.job_id, request.job_description, cancel_token=token
                )
            except MatchCancelled:
                logger.debug("Scoring discarded for job_id=%s", request.job_id)
                return state
            except MatchError as exc:
                state.scoring = PhaseState(status="error", error=str(exc), hint=getattr(exc, "hint", None))
                return state

        state.scoring = PhaseState(status="done", envelope=scoring)
        if token.cancelled:
            return state

        state.details = PhaseState(status="pending")
        overall = scoring.data.overall if isinstance(scoring.data, ScoringData) else None
        try:
            details = await self.phases.resolve_details(
                request.resume_id,
                request.job_id,
                request.job_description,
                overall,
                cancel_token=token,
            )
        except MatchCancelled:
            logger.debug("Details discarded for job_id=%s", request.job_id)
            return state
        except MatchError as exc:
            state.details = PhaseState(status="error", error=str(exc), hint=getattr(exc, "hint", None))
            return state

        state.details = PhaseState(status="done", envelope=details)
        return state
