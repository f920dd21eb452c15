from __future__ import annotations

from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator

from matchpro.errors import FriendlyError

MatchType = Literal["scoring", "details"]
MatchSource = Literal["cache", "dify", "batch"]
BatchStatus = Literal["idle", "running", "completed", "failed", "cancelled"]
PhaseStatus = Literal["blocked", "pending", "done", "error"]


class JobScores(BaseModel):
    skills: float = 0
    experience: float = 0
    projects: float = 0
    education: float = 0
    soft: float = 0


class MatchSummary(BaseModel):
    job_id: str
    overall: float
    scores: JobScores = Field(default_factory=JobScores)

    @field_validator("job_id", mode="before")
    @classmethod
    def coerce_job_id(cls, value: Any) -> str:
        return str(value)


class BatchJob(BaseModel):
    id: str = ""
    job_description: str = ""


class ScoringData(BaseModel):
    model_config = ConfigDict(extra="forbid")

    overall: float = 0
    scores: dict[str, float] = Field(default_factory=dict)


class AdviceItem(BaseModel):
    title: str = ""
    detail: str = ""


class DetailsData(BaseModel):
    model_config = ConfigDict(extra="forbid")

    advantages: list[str] = Field(default_factory=list)
    disadvantages: list[str] = Field(default_factory=list)
    advice: list[AdviceItem] = Field(default_factory=list)
    overview: str = ""


class EnvelopeMeta(BaseModel):
    jobId: str
    resumeHash: str
    source: MatchSource
    timestamp: str
    version: str
    type: MatchType


class MatchEnvelope(BaseModel):
    meta: EnvelopeMeta
    data: ScoringData | DetailsData


class RemotePolicy(BaseModel):
    from_overseas: bool = False
    from_japan: bool = False


class LanguageRequirements(BaseModel):
    ja: str = ""
    en: str = ""


class JobDescriptionBody(BaseModel):
    who_we_are: str = ""
    products: str = ""
    product_intro: str = ""
    responsibilities: list[str] = Field(default_factory=list)


class JobRequirements(BaseModel):
    must: list[str] = Field(default_factory=list)
    want: list[str] = Field(default_factory=list)


class WorkingConditions(BaseModel):
    working_location: str = ""
    working_hours: str = ""
    work_system: str = ""
    probation: str = ""
    benefits: list[str] = Field(default_factory=list)
    remote_note: str = ""


class JobPosting(BaseModel):
    id: str
    title: str = ""
    company: str = ""
    category: str = ""
    location: str = ""
    tags: list[str] = Field(default_factory=list)
    salary: str = ""
    employment_type: str = ""
    interview_type: str = ""
    remote_policy: RemotePolicy | None = None
    language_requirements: LanguageRequirements = Field(default_factory=LanguageRequirements)
    recruit_from_overseas: bool = False
    description: JobDescriptionBody = Field(default_factory=JobDescriptionBody)
    dev_info: dict[str, Any] = Field(default_factory=dict)
    requirements: JobRequirements = Field(default_factory=JobRequirements)
    candidate_requirements: list[str] = Field(default_factory=list)
    working_conditions: WorkingConditions | None = None
    selection_process: list[str] = Field(default_factory=list)

    @field_validator("id", mode="before")
    @classmethod
    def coerce_id(cls, value: Any) -> str:
        return str(value)


class BatchRunRequest(BaseModel):
    resume_id: str
    resume_text: str
    jobs: list[JobPosting] = Field(default_factory=list)
    incremental: bool = False
    prior_results: list[MatchSummary] = Field(default_factory=list)
    total_count: int | None = None


class BatchProgressState(BaseModel):
    session_id: str = ""
    resume_id: str = ""
    status: BatchStatus = "idle"
    results: list[MatchSummary] = Field(default_factory=list)
    processed_count: int = 0
    total_count: int = 0
    is_complete: bool = False
    error: FriendlyError | None = None


class DetailViewRequest(BaseModel):
    resume_id: str
    job_id: str
    job_description: str
    overall: float | None = None
    scores: JobScores | None = None


class PhaseState(BaseModel):
    status: PhaseStatus
    envelope: MatchEnvelope | None = None
    error: str | None = None
    hint: str | None = None


class DetailViewState(BaseModel):
    job_id: str
    scoring: PhaseState = Field(default_factory=lambda: PhaseState(status="pending"))
    details: PhaseState = Field(default_factory=lambda: PhaseState(status="blocked"))
