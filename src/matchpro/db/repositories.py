from __future__ import annotations

from datetime import datetime
from typing import Any

from sqlalchemy import and_, delete, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from matchpro.db.base import utcnow
from matchpro.db.models import MatchResult, Resume
from matchpro.errors import ConflictError


class Repository:
    def __init__(self, session: Session):
        self.session = session

    def get_resume(self, resume_id: str) -> Resume | None:
        return self.session.get(Resume, resume_id)

    def get_resume_by_hash(self, resume_hash: str) -> Resume | None:
        return self.session.scalar(select(Resume).where(Resume.resume_hash == resume_hash))

    def create_resume(self, *, resume_id: str, resume_hash: str, storage_key: str = "") -> Resume:
        resume = Resume(id=resume_id, resume_hash=resume_hash, storage_key=storage_key)
        self.session.add(resume)
        try:
            self.session.commit()
        except IntegrityError as exc:
            self.session.rollback()
            raise ConflictError(f"resume with hash {resume_hash[:12]} already exists") from exc
        self.session.refresh(resume)
        return resume

    def set_storage_key(self, resume_id: str, storage_key: str) -> Resume:
        resume = self.session.get(Resume, resume_id)
        if not resume:
            raise ValueError(f"resume {resume_id} not found")
        resume.storage_key = storage_key
        self.session.commit()
        self.session.refresh(resume)
        return resume

    def delete_resume(self, resume_id: str) -> None:
        self.session.execute(delete(MatchResult).where(MatchResult.resume_id == resume_id))
        self.session.execute(delete(Resume).where(Resume.id == resume_id))
        self.session.commit()

    def latest_match_result(
        self,
        resume_id: str,
        job_id: str,
        match_type: str,
        version: str,
    ) -> MatchResult | None:
        statement = (
            select(MatchResult)
            .where(
                and_(
                    MatchResult.resume_id == resume_id,
                    MatchResult.job_id == job_id,
                    MatchResult.type == match_type,
                    MatchResult.version == version,
                )
            )
            .order_by(MatchResult.timestamp.desc(), MatchResult.id.desc())
            .limit(1)
        )
        return self.session.scalar(statement)

    def insert_match_result(
        self,
        *,
        resume_id: str,
        job_id: str,
        resume_hash: str,
        source: str,
        version: str,
        match_type: str,
        data: dict[str, Any],
        timestamp: datetime | None = None,
    ) -> MatchResult:
        row = MatchResult(
            resume_id=resume_id,
            job_id=job_id,
            resume_hash=resume_hash,
            source=source,
            version=version,
            type=match_type,
            data=data,
            timestamp=timestamp or utcnow(),
        )
        self.session.add(row)
        try:
            self.session.commit()
        except IntegrityError as exc:
            self.session.rollback()
            raise ConflictError(
                f"match result already stored resume_id={resume_id} job_id={job_id} "
                f"type={match_type} version={version}"
            ) from exc
        self.session.refresh(row)
        return row

    def list_match_results(self, resume_id: str, match_type: str, version: str) -> list[MatchResult]:
        statement = (
            select(MatchResult)
            .where(
                and_(
                    MatchResult.resume_id == resume_id,
                    MatchResult.type == match_type,
                    MatchResult.version == version,
                )
            )
            .order_by(MatchResult.timestamp.asc(), MatchResult.id.asc())
        )
        return list(self.session.scalars(statement).all())
