from __future__ import annotations

from typing import Any

from pydantic import BaseModel, Field, field_validator

from matchpro.types import BatchJob, BatchProgressState, JobPosting, MatchSummary


class ResumeUploadRequest(BaseModel):
    resume_text: str = ""


class ResumeUploadResponse(BaseModel):
    resumeId: str
    resumeHash: str


class ResumeTextResponse(BaseModel):
    resumeId: str
    resumeKey: str
    resumeText: str


class BatchMatchRequest(BaseModel):
    resume_text: str = ""
    resume_id: str | None = None
    jobs: list[BatchJob] = Field(default_factory=list)

    @field_validator("jobs", mode="before")
    @classmethod
    def coerce_job_ids(cls, value: Any) -> Any:
        if not isinstance(value, list):
            return value
        return [
            {**item, "id": str(item["id"])} if isinstance(item, dict) and item.get("id") is not None else item
            for item in value
        ]


class BatchMatchResponse(BaseModel):
    match_results: list[MatchSummary]


class BatchCacheResponse(BaseModel):
    results: list[MatchSummary]


class MatchInputs(BaseModel):
    job_description: str = ""
    overall_from_scoring: float | None = None


class MatchRequest(BaseModel):
    jobId: str = ""
    resumeId: str = ""
    inputs: MatchInputs = Field(default_factory=MatchInputs)


class SessionStartRequest(BaseModel):
    resume_id: str = ""
    jobs: list[JobPosting] = Field(default_factory=list)
    incremental: bool = False
    total_count: int | None = None


class SessionResponse(BaseModel):
    session_id: str
    state: BatchProgressState
