from __future__ import annotations

import asyncio
import os
import shutil
import tempfile
from pathlib import Path
from typing import Any

import pytest

_TEST_ROOT = Path(tempfile.mkdtemp(prefix="matchpro-tests-"))
os.environ["APP_ENV"] = "test"
os.environ["DATABASE_URL"] = f"sqlite:///{_TEST_ROOT / 'matchpro.db'}"
os.environ["DATA_DIR"] = str(_TEST_ROOT)
os.environ["BLOB_DIR"] = str(_TEST_ROOT / "blobs")
os.environ["RETRY_DELAY_SEC"] = "0"
os.environ["DIFY_WORKFLOW_URL"] = ""
os.environ["DIFY_API_KEY"] = ""
os.environ["DIFY_API_KEY_FOR_BATCH_MATCHING"] = ""

from matchpro.config import get_settings  # noqa: E402
from matchpro.core import runtime  # noqa: E402
from matchpro.core.cancellation import CancellationToken  # noqa: E402
from matchpro.db.base import Base  # noqa: E402
from matchpro.db.session import engine  # noqa: E402
from matchpro.errors import UpstreamRejectionError  # noqa: E402
from matchpro.types import BatchJob, JobScores, MatchSummary  # noqa: E402

SCORING_OUTPUTS = {
    "overall": 82,
    "scores": {"skills": 85, "experience": 80, "projects": 78, "education": 70, "soft": 88},
}
DETAILS_OUTPUTS = {
    "advantages": ["Strong Python background"],
    "disadvantages": ["No Kubernetes experience"],
    "advice": [{"title": "Highlight APIs", "detail": "Lead with the FastAPI work."}],
    "overview": "Good fit overall.",
}


class FakeScoringClient:
    """In-process scoring client. Failing job ids make every batch containing them fail."""

    def __init__(self, *, delay_sec: float = 0.0):
        self.delay_sec = delay_sec
        self.failing_job_ids: set[str] = set()
        self.extra_results: list[MatchSummary] = []
        self.scoring_outputs: dict[str, Any] = dict(SCORING_OUTPUTS)
        self.details_outputs: dict[str, Any] = dict(DETAILS_OUTPUTS)
        self.batch_calls: list[list[str]] = []
        self.score_calls: list[str] = []
        self.details_calls: list[tuple[str, float]] = []

    async def _guarded(self, coro, cancel_token: CancellationToken | None):
        if cancel_token is None:
            return await coro
        return await cancel_token.guard(coro)

    async def score_batch(self, resume_text, jobs, *, cancel_token=None):
        self.batch_calls.append([job.id for job in jobs])

        async def _call() -> list[MatchSummary]:
            if self.delay_sec:
                await asyncio.sleep(self.delay_sec)
            if any(job.id in self.failing_job_ids for job in jobs):
                raise UpstreamRejectionError("Dify HTTP 500: upstream error", http_status=500)
            results = [summary_for(job) for job in jobs]
            return results + list(self.extra_results)

        return await self._guarded(_call(), cancel_token)

    async def score(self, resume_text, job_description, *, cancel_token=None):
        self.score_calls.append(job_description)

        async def _call() -> dict[str, Any]:
            if self.delay_sec:
                await asyncio.sleep(self.delay_sec)
            return dict(self.scoring_outputs)

        return await self._guarded(_call(), cancel_token)

    async def details(self, resume_text, job_description, overall_from_scoring, *, cancel_token=None):
        self.details_calls.append((job_description, overall_from_scoring))

        async def _call() -> dict[str, Any]:
            if self.delay_sec:
                await asyncio.sleep(self.delay_sec)
            return dict(self.details_outputs)

        return await self._guarded(_call(), cancel_token)


def summary_for(job: BatchJob) -> MatchSummary:
    return MatchSummary(
        job_id=job.id,
        overall=75,
        scores=JobScores(skills=80, experience=70, projects=75, education=60, soft=85),
    )


@pytest.fixture(autouse=True)
def reset_db() -> None:
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
    shutil.rmtree(get_settings().blob_dir, ignore_errors=True)
    runtime._EVENT_BUS = None
    runtime._SESSION_REGISTRY = None
    yield


@pytest.fixture
def fake_client() -> FakeScoringClient:
    return FakeScoringClient()
