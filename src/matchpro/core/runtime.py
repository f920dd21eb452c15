from __future__ import annotations

from typing import TYPE_CHECKING

from matchpro.config import get_settings
from matchpro.core.events import EventBus

if TYPE_CHECKING:
    from matchpro.core.sessions import MatchSessionRegistry

_EVENT_BUS: EventBus | None = None
_SESSION_REGISTRY: MatchSessionRegistry | None = None


def get_event_bus() -> EventBus:
    global _EVENT_BUS
    if _EVENT_BUS is None:
        _EVENT_BUS = EventBus()
    return _EVENT_BUS


def get_session_registry() -> MatchSessionRegistry:
    global _SESSION_REGISTRY
    if _SESSION_REGISTRY is None:
        # sessions imports the orchestrator, which imports this module.
        from matchpro.core.sessions import MatchSessionRegistry

        _SESSION_REGISTRY = MatchSessionRegistry(
            get_event_bus(), max_finished=get_settings().max_finished_sessions
        )
    return _SESSION_REGISTRY
