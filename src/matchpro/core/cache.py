from __future__ import annotations

import logging
from collections.abc import Sequence
from datetime import datetime

from sqlalchemy.exc import SQLAlchemyError

from matchpro.db.models import MatchResult
from matchpro.db.repositories import Repository
from matchpro.errors import ConflictError, PersistenceError
from matchpro.types import DetailsData, EnvelopeMeta, MatchEnvelope, MatchSource, MatchSummary, MatchType, ScoringData

logger = logging.getLogger(__name__)


def envelope_from_row(row: MatchResult, *, source: MatchSource | None = None) -> MatchEnvelope:
    data: ScoringData | DetailsData
    if row.type == "scoring":
        data = ScoringData.model_validate(row.data)
    else:
        data = DetailsData.model_validate(row.data)
    return MatchEnvelope(
        meta=EnvelopeMeta(
            jobId=row.job_id,
            resumeHash=row.resume_hash,
            source=source or row.source,
            timestamp=row.timestamp.isoformat(),
            version=row.version,
            type=row.type,
        ),
        data=data,
    )


class CacheGate:
    """Read-before-write access to persisted match results for one cache version."""

    def __init__(self, repo: Repository, version: str):
        self.repo = repo
        self.version = version

    def lookup(self, resume_id: str, job_id: str, match_type: MatchType) -> MatchResult | None:
        if self.repo.get_resume(resume_id) is None:
            return None
        return self.repo.latest_match_result(resume_id, job_id, match_type, self.version)

    def lookup_envelope(self, resume_id: str, job_id: str, match_type: MatchType) -> MatchEnvelope | None:
        row = self.lookup(resume_id, job_id, match_type)
        if row is None:
            return None
        return envelope_from_row(row, source="cache")

    def store(self, resume_id: str, envelope: MatchEnvelope) -> MatchEnvelope:
        """Persist ``envelope``; a concurrent first writer's row wins and is returned instead."""
        meta = envelope.meta
        if self.repo.get_resume(resume_id) is None:
            raise PersistenceError(f"resume {resume_id} not found; cannot store match result")

        try:
            self.repo.insert_match_result(
                resume_id=resume_id,
                job_id=meta.jobId,
                resume_hash=meta.resumeHash,
                source=meta.source,
                version=meta.version,
                match_type=meta.type,
                data=envelope.data.model_dump(),
                timestamp=datetime.fromisoformat(meta.timestamp),
            )
        except ConflictError:
            existing = self.repo.latest_match_result(resume_id, meta.jobId, meta.type, meta.version)
            if existing is None:
                raise
            logger.info(
                "Concurrent write detected resume_id=%s job_id=%s type=%s; using stored row",
                resume_id,
                meta.jobId,
                meta.type,
            )
            return envelope_from_row(existing)
        except SQLAlchemyError as exc:
            self.repo.session.rollback()
            raise PersistenceError(f"failed to store match result: {exc}") from exc
        return envelope

    def store_batch_results(self, resume_id: str, resume_hash: str, results: Sequence[MatchSummary]) -> int:
        """Best-effort persistence of batch scores. Returns the number of rows written."""
        if self.repo.get_resume(resume_id) is None:
            logger.warning("Skipping batch persistence; resume_id=%s not found", resume_id)
            return 0

        written = 0
        for result in results:
            try:
                self.repo.insert_match_result(
                    resume_id=resume_id,
                    job_id=result.job_id,
                    resume_hash=resume_hash,
                    source="batch",
                    version=self.version,
                    match_type="scoring",
                    data={"overall": result.overall, "scores": result.scores.model_dump()},
                )
                written += 1
            except ConflictError:
                logger.debug("Batch result already cached resume_id=%s job_id=%s", resume_id, result.job_id)
            except SQLAlchemyError:
                self.repo.session.rollback()
                logger.exception("Failed to persist batch result resume_id=%s job_id=%s", resume_id, result.job_id)
        return written

    def scoring_results(self, resume_id: str) -> list[MatchSummary]:
        rows = self.repo.list_match_results(resume_id, "scoring", self.version)
        results: list[MatchSummary] = []
        seen: set[str] = set()
        for row in reversed(rows):
            if row.job_id in seen:
                continue
            seen.add(row.job_id)
            data = row.data or {}
            results.append(
                MatchSummary.model_validate(
                    {"job_id": row.job_id, "overall": data.get("overall", 0), "scores": data.get("scores", {})}
                )
            )
        results.reverse()
        return results
