from __future__ import annotations

import asyncio
import logging
import uuid
from collections.abc import Callable
from dataclasses import dataclass, field

from sqlalchemy.orm import Session

from matchpro.config import Settings
from matchpro.core.cancellation import CancellationToken
from matchpro.core.events import EventBus
from matchpro.core.orchestrator import BatchOrchestrator
from matchpro.errors import describe_error
from matchpro.scoring.client import ScoringClient
from matchpro.types import BatchProgressState, BatchRunRequest

logger = logging.getLogger(__name__)

TERMINAL_STATUSES = {"completed", "failed", "cancelled"}


@dataclass
class MatchSession:
    id: str
    resume_id: str
    token: CancellationToken
    state: BatchProgressState
    task: asyncio.Task | None = field(default=None, repr=False)

    @property
    def running(self) -> bool:
        return self.task is not None and not self.task.done()

    @property
    def finished(self) -> bool:
        return self.state.status in TERMINAL_STATUSES


class MatchSessionRegistry:
    """Owns the background batch runs and their latest progress snapshots.

    Finished sessions are kept only while they are the latest for their resume,
    and at most ``max_finished`` of those are retained.
    """

    def __init__(self, event_bus: EventBus, *, max_finished: int = 100):
        self.event_bus = event_bus
        self.max_finished = max_finished
        self._sessions: dict[str, MatchSession] = {}

    def __len__(self) -> int:
        return len(self._sessions)

    def start(
        self,
        request: BatchRunRequest,
        *,
        client: ScoringClient,
        settings: Settings,
        session_factory: Callable[[], Session],
    ) -> MatchSession:
        for previous in self.for_resume(request.resume_id):
            if previous.running:
                previous.token.cancel("superseded by a new matching session")
            if not request.incremental:
                self._sessions.pop(previous.id, None)

        session_id = uuid.uuid4().hex
        match_session = MatchSession(
            id=session_id,
            resume_id=request.resume_id,
            token=CancellationToken(),
            state=BatchProgressState(session_id=session_id, resume_id=request.resume_id, status="running"),
        )
        self._sessions[session_id] = match_session
        match_session.task = asyncio.create_task(
            self._drive(match_session, request, client=client, settings=settings, session_factory=session_factory)
        )
        return match_session

    async def _drive(
        self,
        match_session: MatchSession,
        request: BatchRunRequest,
        *,
        client: ScoringClient,
        settings: Settings,
        session_factory: Callable[[], Session],
    ) -> None:
        try:
            with session_factory() as db:
                orchestrator = BatchOrchestrator(db, client=client, settings=settings, event_bus=self.event_bus)
                async for snapshot in orchestrator.run_batch(
                    request, cancel_token=match_session.token, session_id=match_session.id
                ):
                    match_session.state = snapshot
        except asyncio.CancelledError:
            match_session.state.status = "cancelled"
            self.prune()
            raise
        except Exception as exc:
            logger.exception("Matching session crashed session_id=%s", match_session.id)
            match_session.state.status = "failed"
            match_session.state.error = describe_error(exc)
            await self._publish(match_session)
        else:
            if match_session.token.cancelled and not match_session.finished:
                match_session.state.status = "cancelled"
                logger.info("Matching session cancelled session_id=%s", match_session.id)
                await self._publish(match_session)
        self.prune()

    async def _publish(self, match_session: MatchSession) -> None:
        await self.event_bus.publish(match_session.id, match_session.state.model_dump(mode="json"))

    def prune(self) -> None:
        latest: dict[str, str] = {}
        for item in self._sessions.values():
            latest[item.resume_id] = item.id

        finished = [item for item in self._sessions.values() if item.finished]
        for item in finished:
            if latest[item.resume_id] != item.id:
                self._sessions.pop(item.id, None)

        kept = [item for item in finished if item.id in self._sessions]
        for item in kept[: max(len(kept) - self.max_finished, 0)]:
            self._sessions.pop(item.id, None)

    def get(self, session_id: str) -> MatchSession | None:
        return self._sessions.get(session_id)

    def for_resume(self, resume_id: str) -> list[MatchSession]:
        return [item for item in self._sessions.values() if item.resume_id == resume_id]

    def latest_for_resume(self, resume_id: str) -> MatchSession | None:
        sessions = self.for_resume(resume_id)
        return sessions[-1] if sessions else None

    def cancel(self, session_id: str) -> MatchSession | None:
        match_session = self._sessions.get(session_id)
        if match_session is None:
            return None
        match_session.token.cancel("cancelled by caller")
        if match_session.state.status == "running" and not match_session.running:
            match_session.state.status = "cancelled"
        return match_session
