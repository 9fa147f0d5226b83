"""Event kinds and payloads delivered to tracker subscribers."""

from __future__ import annotations

from enum import StrEnum

from pydantic import BaseModel, ConfigDict


class TrackerEvent(StrEnum):
    LATEST = "latest"
    SYNC = "sync"
    ERROR = "error"
    # Internal observability signals.
    STARTED = "_started"
    ENDED = "_ended"
    WAITING_FOR_NEXT_ITERATION = "_waiting_for_next_iteration"


#: Event kinds whose listener count decides whether the poll loop runs.
DRIVING_EVENTS: frozenset[str] = frozenset({TrackerEvent.LATEST, TrackerEvent.SYNC})


class SyncEvent(BaseModel):
    """Payload of a ``sync`` event: the tracked value moved forward."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    old_value: str | None
    new_value: str
