from __future__ import annotations

import logging
from collections.abc import AsyncIterator, Sequence

from sqlalchemy.orm import Session

from matchpro.config import Settings, get_settings
from matchpro.core.batching import chunk, to_batch_jobs
from matchpro.core.cache import CacheGate
from matchpro.core.cancellation import CancellationToken
from matchpro.core.events import EventBus
from matchpro.core.hashing import hash_text
from matchpro.core.retry import with_retry
from matchpro.core.runtime import get_event_bus
from matchpro.db.repositories import Repository
from matchpro.errors import ALL_BATCHES_FAILED, MatchCancelled
from matchpro.scoring.client import ScoringClient
from matchpro.types import BatchJob, BatchProgressState, BatchRunRequest, MatchSummary

logger = logging.getLogger(__name__)


class BatchOrchestrator:
    """Scores an ordered job list chunk by chunk, one outstanding call at a time.

    Chunk failures are logged and skipped; the run fails only when no chunk
    added anything. Cancellation stops the run without a terminal outcome.
    """

    def __init__(
        self,
        session: Session,
        *,
        client: ScoringClient,
        settings: Settings | None = None,
        event_bus: EventBus | None = None,
    ):
        self.session = session
        self.settings = settings or get_settings()
        self.client = client
        self.repo = Repository(session)
        self.gate = CacheGate(self.repo, self.settings.cache_version)
        self.event_bus = event_bus or get_event_bus()

    async def score_chunk(
        self,
        resume_text: str,
        jobs: list[BatchJob],
        *,
        cancel_token: CancellationToken | None = None,
        label: str = "batch",
    ) -> list[MatchSummary]:
        return await with_retry(
            lambda: self.client.score_batch(resume_text, jobs, cancel_token=cancel_token),
            max_retries=self.settings.max_batch_retries,
            delay_sec=self.settings.retry_delay_sec,
            cancel_token=cancel_token,
            label=label,
        )

    async def run_batch(
        self,
        request: BatchRunRequest,
        *,
        cancel_token: CancellationToken | None = None,
        session_id: str = "",
    ) -> AsyncIterator[BatchProgressState]:
        token = cancel_token or CancellationToken()
        accumulator: list[MatchSummary] = list(request.prior_results) if request.incremental else []
        seen = {item.job_id for item in accumulator}
        initial_count = len(accumulator)

        pending = [job for job in request.jobs if job.id not in seen]
        if request.incremental and request.total_count is not None:
            total_count = request.total_count
        else:
            total_count = initial_count + len(pending)

        state = BatchProgressState(
            session_id=session_id,
            resume_id=request.resume_id,
            status="running",
            results=list(accumulator),
            processed_count=initial_count,
            total_count=total_count,
        )
        logger.info(
            "Batch run started session_id=%s resume_id=%s incremental=%s pending=%s total=%s",
            session_id,
            request.resume_id,
            request.incremental,
            len(pending),
            total_count,
        )

        if not pending:
            state.status = "completed"
            state.is_complete = True
            await self._emit(state)
            yield state.model_copy(deep=True)
            return

        await self._emit(state)
        yield state.model_copy(deep=True)

        resume_hash = hash_text(request.resume_text)
        batches = chunk(pending, self.settings.batch_size)
        succeeded = 0
        for index, batch in enumerate(batches, start=1):
            if token.cancelled:
                state.status = "cancelled"
                logger.info("Batch run cancelled session_id=%s before chunk=%s", session_id, index)
                return

            try:
                results = await self.score_chunk(
                    request.resume_text,
                    to_batch_jobs(batch),
                    cancel_token=token,
                    label=f"Batch {index}/{len(batches)}",
                )
            except MatchCancelled:
                state.status = "cancelled"
                logger.info("Batch run cancelled session_id=%s during chunk=%s", session_id, index)
                return
            except Exception as exc:
                logger.warning(
                    "Batch %s/%s failed session_id=%s jobs=%s: %s",
                    index,
                    len(batches),
                    session_id,
                    [job.id for job in batch],
                    exc,
                )
                continue

            fresh: list[MatchSummary] = []
            for item in results:
                if item.job_id in seen:
                    continue
                seen.add(item.job_id)
                fresh.append(item)

            if fresh:
                succeeded += 1
                accumulator.extend(fresh)
                self._persist(request.resume_id, resume_hash, fresh)

            state.results = list(accumulator)
            state.processed_count = len(accumulator)
            await self._emit(state)
            yield state.model_copy(deep=True)

        if succeeded == 0 and len(accumulator) == initial_count:
            state.status = "failed"
            state.error = ALL_BATCHES_FAILED
            logger.error("All batches failed session_id=%s resume_id=%s", session_id, request.resume_id)
        else:
            state.status = "completed"
            state.is_complete = True
            logger.info(
                "Batch run completed session_id=%s processed=%s/%s",
                session_id,
                state.processed_count,
                state.total_count,
            )

        await self._emit(state)
        yield state.model_copy(deep=True)

    async def run_to_completion(
        self,
        request: BatchRunRequest,
        *,
        cancel_token: CancellationToken | None = None,
        session_id: str = "",
    ) -> BatchProgressState | None:
        last: BatchProgressState | None = None
        async for snapshot in self.run_batch(request, cancel_token=cancel_token, session_id=session_id):
            last = snapshot
        return last

    def _persist(self, resume_id: str, resume_hash: str, results: Sequence[MatchSummary]) -> None:
        try:
            self.gate.store_batch_results(resume_id, resume_hash, results)
        except Exception:
            logger.exception("Batch persistence failed resume_id=%s", resume_id)

    async def _emit(self, state: BatchProgressState) -> None:
        if not state.session_id:
            return
        await self.event_bus.publish(state.session_id, state.model_dump(mode="json"))
