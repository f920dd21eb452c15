import pytest

from matchpro.core.batching import chunk, serialize_job_description, to_batch_jobs, validate_batch_jobs
from matchpro.errors import InputValidationError
from matchpro.types import BatchJob, JobPosting


def _posting(**overrides) -> JobPosting:
    payload = {
        "id": 7,
        "title": "Backend Engineer",
        "company": "Acme",
        "location": "Tokyo",
        "language_requirements": {"ja": "Business", "en": "Fluent"},
        "description": {"who_we_are": "We build payments.", "responsibilities": ["Design APIs", " "]},
        "dev_info": {"backend": {"languages": ["Python", "Go"]}, "cloud": "AWS"},
        "requirements": {"must": ["3+ years Python"], "want": ["Kubernetes"]},
    }
    payload.update(overrides)
    return JobPosting.model_validate(payload)


def test_chunk_preserves_order_and_sizes() -> None:
    items = list(range(7))
    chunks = chunk(items, 3)
    assert chunks == [[0, 1, 2], [3, 4, 5], [6]]
    assert [x for group in chunks for x in group] == items


def test_chunk_empty_input_yields_no_chunks() -> None:
    assert chunk([], 3) == []


@pytest.mark.parametrize("size", [0, -1])
def test_chunk_rejects_non_positive_size(size: int) -> None:
    with pytest.raises(ValueError):
        chunk([1, 2], size)


def test_serialize_job_description_is_labeled_and_stable() -> None:
    job = _posting()
    text = serialize_job_description(job)

    assert text == serialize_job_description(_posting())
    assert "Title: Backend Engineer" in text
    assert "## Must-have requirements\n- 3+ years Python" in text
    assert "- backend / languages: Python, Go" in text
    assert "- cloud: AWS" in text
    assert "- Design APIs" in text
    assert "## Nice-to-have requirements" in text


def test_serialize_job_description_skips_empty_sections() -> None:
    text = serialize_job_description(JobPosting(id="1", title="Engineer"))
    assert "## Tech stack" not in text
    assert "## Responsibilities" not in text
    assert text.startswith("## Position")


def test_to_batch_jobs_coerces_ids_to_strings() -> None:
    jobs = to_batch_jobs([_posting()])
    assert jobs[0].id == "7"
    assert jobs[0].job_description


def test_validate_batch_jobs_messages() -> None:
    with pytest.raises(InputValidationError, match="resume_text and jobs array are required"):
        validate_batch_jobs("  ", [BatchJob(id="1", job_description="x")])
    with pytest.raises(InputValidationError, match="cannot be empty"):
        validate_batch_jobs("resume", [])
    with pytest.raises(InputValidationError, match="must have id and job_description"):
        validate_batch_jobs("resume", [BatchJob(id="1", job_description="")])
