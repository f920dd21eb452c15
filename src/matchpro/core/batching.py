from __future__ import annotations

from collections.abc import Sequence
from typing import Any, TypeVar

from matchpro.errors import InputValidationError
from matchpro.types import BatchJob, JobPosting

T = TypeVar("T")


def chunk(items: Sequence[T], size: int) -> list[list[T]]:
    if size <= 0:
        raise ValueError(f"chunk size must be positive, got {size}")
    return [list(items[i : i + size]) for i in range(0, len(items), size)]


def _section(title: str, lines: list[str]) -> list[str]:
    lines = [line for line in lines if line]
    if not lines:
        return []
    return [f"## {title}", *lines, ""]


def _bullets(values: list[str]) -> list[str]:
    return [f"- {value.strip()}" for value in values if value and value.strip()]


def _flatten_stack(prefix: str, value: Any) -> list[str]:
    if isinstance(value, dict):
        lines: list[str] = []
        for key in sorted(value):
            label = f"{prefix} / {key}" if prefix else str(key)
            lines.extend(_flatten_stack(label, value[key]))
        return lines
    if isinstance(value, (list, tuple)):
        items = [str(item).strip() for item in value if str(item).strip()]
        return [f"- {prefix}: {', '.join(items)}"] if items else []
    text = str(value).strip() if value is not None else ""
    return [f"- {prefix}: {text}"] if text else []


def serialize_job_description(job: JobPosting) -> str:
    """Project a posting onto the labeled plain-text form the scoring prompt expects.

    The projection is lossy (logos, dates and display tags are dropped) and stable:
    the same posting always produces the same text.
    """
    header = [
        f"Title: {job.title}" if job.title else "",
        f"Company: {job.company}" if job.company else "",
        f"Category: {job.category}" if job.category else "",
        f"Location: {job.location}" if job.location else "",
        f"Salary: {job.salary}" if job.salary else "",
        f"Employment type: {job.employment_type}" if job.employment_type else "",
    ]

    conditions = []
    if job.remote_policy is not None:
        conditions.append(
            f"Remote from overseas: {'yes' if job.remote_policy.from_overseas else 'no'}; "
            f"remote from Japan: {'yes' if job.remote_policy.from_japan else 'no'}"
        )
    conditions.append(f"Recruits from overseas: {'yes' if job.recruit_from_overseas else 'no'}")
    if job.working_conditions is not None:
        wc = job.working_conditions
        conditions.extend(
            [
                f"Working location: {wc.working_location}" if wc.working_location else "",
                f"Working hours: {wc.working_hours}" if wc.working_hours else "",
                f"Work system: {wc.work_system}" if wc.work_system else "",
                f"Remote note: {wc.remote_note}" if wc.remote_note else "",
            ]
        )

    lang = job.language_requirements
    parts = [
        *_section("Position", header),
        *_section(
            "Language requirements",
            [f"Japanese: {lang.ja}" if lang.ja else "", f"English: {lang.en}" if lang.en else ""],
        ),
        *_section(
            "About the company",
            [job.description.who_we_are, job.description.products, job.description.product_intro],
        ),
        *_section("Responsibilities", _bullets(job.description.responsibilities)),
        *_section("Tech stack", _flatten_stack("", job.dev_info)),
        *_section("Must-have requirements", _bullets(job.requirements.must)),
        *_section("Nice-to-have requirements", _bullets(job.requirements.want)),
        *_section("Candidate profile", _bullets(job.candidate_requirements)),
        *_section("Working conditions", conditions),
    ]
    return "\n".join(parts).strip()


def to_batch_jobs(jobs: Sequence[JobPosting]) -> list[BatchJob]:
    return [BatchJob(id=job.id, job_description=serialize_job_description(job)) for job in jobs]


def validate_batch_jobs(resume_text: str, jobs: Sequence[BatchJob]) -> None:
    if not resume_text or not resume_text.strip():
        raise InputValidationError("Invalid request: resume_text and jobs array are required")
    if not jobs:
        raise InputValidationError("Jobs array cannot be empty")
    for job in jobs:
        if not job.id or not job.job_description:
            raise InputValidationError("Each job must have id and job_description")
