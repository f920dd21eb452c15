from __future__ import annotations

import asyncio
import json
from pathlib import Path
from typing import NoReturn

import typer
import uvicorn
from pydantic import TypeAdapter

from matchpro.api.app import create_app
from matchpro.config import get_settings
from matchpro.core.batching import serialize_job_description
from matchpro.core.cache import CacheGate
from matchpro.core.orchestrator import BatchOrchestrator
from matchpro.core.resolver import PhaseResolver, TwoPhaseResolver
from matchpro.core.resumes import ResumeService
from matchpro.db.init import init_database
from matchpro.db.repositories import Repository
from matchpro.db.session import SessionLocal
from matchpro.errors import MatchError
from matchpro.logging_config import configure_logging
from matchpro.scoring.client import DifyWorkflowClient
from matchpro.storage.blobs import LocalBlobStore
from matchpro.types import BatchRunRequest, DetailViewRequest, JobPosting

app = typer.Typer(help="MatchPro CLI")
resume_app = typer.Typer(help="Resume registry commands")
match_app = typer.Typer(help="Job matching commands")

app.add_typer(resume_app, name="resume")
app.add_typer(match_app, name="match")

_INITIALIZED = False


def ensure_initialized() -> None:
    global _INITIALIZED
    if _INITIALIZED:
        return
    init_database()
    _INITIALIZED = True


def _load_jobs(path: Path) -> list[JobPosting]:
    payload = json.loads(path.read_text(encoding="utf-8"))
    if isinstance(payload, dict):
        payload = payload.get("jobs", [])
    return TypeAdapter(list[JobPosting]).validate_python(payload)


def _fail(exc: MatchError) -> NoReturn:
    typer.echo(json.dumps({"error": str(exc), "status_code": exc.status_code}, indent=2), err=True)
    raise typer.Exit(code=1)


@app.command("init")
def init_cmd() -> None:
    """Initialize data directories and database tables."""
    configure_logging()
    result = init_database()
    typer.echo(json.dumps({"ok": True, **result}, indent=2))


@resume_app.command("upload")
def resume_upload(file: Path = typer.Option(..., "--file", exists=True, readable=True)) -> None:
    configure_logging()
    ensure_initialized()
    settings = get_settings()
    with SessionLocal() as db:
        service = ResumeService(Repository(db), LocalBlobStore(settings.blob_dir))
        try:
            record = service.register(file.read_text(encoding="utf-8"))
        except MatchError as exc:
            _fail(exc)
        typer.echo(
            json.dumps(
                {"resumeId": record.id, "resumeHash": record.resume_hash, "created": record.created},
                indent=2,
            )
        )


@match_app.command("batch")
def match_batch(
    resume_id: str = typer.Option(..., "--resume-id"),
    jobs: Path = typer.Option(..., "--jobs", exists=True, readable=True),
    incremental: bool = typer.Option(False, "--incremental"),
    total: int | None = typer.Option(None, "--total"),
) -> None:
    """Score every job in the file against a stored resume, printing one line per snapshot."""
    configure_logging()
    ensure_initialized()
    settings = get_settings()
    postings = _load_jobs(jobs)

    with SessionLocal() as db:
        repo = Repository(db)
        try:
            resume_text = ResumeService(repo, LocalBlobStore(settings.blob_dir)).load_text(resume_id)
        except MatchError as exc:
            _fail(exc)

        prior = CacheGate(repo, settings.cache_version).scoring_results(resume_id) if incremental else []
        request = BatchRunRequest(
            resume_id=resume_id,
            resume_text=resume_text,
            jobs=postings,
            incremental=incremental,
            prior_results=prior,
            total_count=total,
        )
        orchestrator = BatchOrchestrator(db, client=DifyWorkflowClient(settings), settings=settings)

        async def _run() -> str:
            status = "idle"
            async for snapshot in orchestrator.run_batch(request):
                typer.echo(snapshot.model_dump_json())
                status = snapshot.status
            return status

        final_status = asyncio.run(_run())

    if final_status == "failed":
        raise typer.Exit(code=1)


@match_app.command("view")
def match_view(
    resume_id: str = typer.Option(..., "--resume-id"),
    jobs: Path = typer.Option(..., "--jobs", exists=True, readable=True),
    job_id: str = typer.Option(..., "--job-id"),
) -> None:
    """Resolve scoring and then details for a single job."""
    configure_logging()
    ensure_initialized()
    settings = get_settings()
    posting = next((job for job in _load_jobs(jobs) if job.id == job_id), None)
    if posting is None:
        raise typer.BadParameter(f"job {job_id} not found in {jobs}")

    with SessionLocal() as db:
        repo = Repository(db)
        phases = PhaseResolver(
            gate=CacheGate(repo, settings.cache_version),
            client=DifyWorkflowClient(settings),
            resumes=ResumeService(repo, LocalBlobStore(settings.blob_dir)),
        )
        view = TwoPhaseResolver(phases)
        request = DetailViewRequest(
            resume_id=resume_id,
            job_id=job_id,
            job_description=serialize_job_description(posting),
        )
        state = asyncio.run(view.resolve(request))
        typer.echo(state.model_dump_json(indent=2))


@match_app.command("cache")
def match_cache(resume_id: str = typer.Option(..., "--resume-id")) -> None:
    configure_logging()
    ensure_initialized()
    settings = get_settings()
    with SessionLocal() as db:
        results = CacheGate(Repository(db), settings.cache_version).scoring_results(resume_id)
        typer.echo(json.dumps({"results": [item.model_dump() for item in results]}, indent=2))


@app.command("serve")
def serve(
    host: str | None = typer.Option(None, "--host"),
    port: int | None = typer.Option(None, "--port"),
) -> None:
    configure_logging()
    ensure_initialized()
    settings = get_settings()
    app_instance = create_app()
    uvicorn.run(app_instance, host=host or settings.app_host, port=port or settings.app_port)
