from __future__ import annotations

import logging
from dataclasses import dataclass

from matchpro.core.hashing import hash_text, new_resume_id
from matchpro.db.repositories import Repository
from matchpro.errors import ConflictError, InputValidationError, PersistenceError, ResumeNotFoundError
from matchpro.storage.blobs import BlobStore, resume_key

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class ResumeRecord:
    id: str
    resume_hash: str
    storage_key: str
    created: bool = False


class ResumeService:
    def __init__(self, repo: Repository, blobs: BlobStore):
        self.repo = repo
        self.blobs = blobs

    def register(self, resume_text: str) -> ResumeRecord:
        """Store resume text once per unique content and return its record."""
        if not resume_text or not resume_text.strip():
            raise InputValidationError("Missing resume_text")

        resume_hash = hash_text(resume_text)
        existing = self.repo.get_resume_by_hash(resume_hash)
        if existing is not None:
            return ResumeRecord(id=existing.id, resume_hash=existing.resume_hash, storage_key=existing.storage_key)

        try:
            resume = self.repo.create_resume(resume_id=new_resume_id(resume_hash), resume_hash=resume_hash)
        except ConflictError:
            winner = self.repo.get_resume_by_hash(resume_hash)
            if winner is None:
                raise
            return ResumeRecord(id=winner.id, resume_hash=winner.resume_hash, storage_key=winner.storage_key)

        key = resume_key(resume.id)
        try:
            self.blobs.put_text(key, resume_text)
        except Exception as exc:
            logger.error("Blob write failed for resume_id=%s; rolling back row", resume.id)
            self.repo.delete_resume(resume.id)
            raise PersistenceError("Failed to store resume") from exc

        resume = self.repo.set_storage_key(resume.id, key)
        logger.info("Registered resume resume_id=%s hash=%s", resume.id, resume_hash[:12])
        return ResumeRecord(id=resume.id, resume_hash=resume.resume_hash, storage_key=resume.storage_key, created=True)

    def resume_hash(self, resume_id: str) -> str:
        resume = self.repo.get_resume(resume_id) if resume_id else None
        return resume.resume_hash if resume is not None else ""

    def load_text(self, resume_id: str) -> str:
        if not resume_id:
            raise InputValidationError("Missing resumeId")
        resume = self.repo.get_resume(resume_id)
        key = resume.storage_key if resume is not None and resume.storage_key else resume_key(resume_id)
        text = self.blobs.get_text(key)
        if text is None:
            raise ResumeNotFoundError(f"Resume {resume_id} not found")
        return text
