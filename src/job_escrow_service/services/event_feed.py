"""Per-job event feed, written inside the same transaction as the change it describes."""

from __future__ import annotations

import asyncio
import json
import time
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

from job_escrow_service.core.exceptions import ValidationError

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

    from job_escrow_service.services.store import EngineStore

MAX_PAGE_SIZE = 500


def _now_iso() -> str:
    return datetime.now(UTC).isoformat(timespec="microseconds").replace("+00:00", "Z")


class EventFeed:
    """
    Append-only log of job, proposal, and escrow events.

    ``publish`` must be called from inside ``EngineStore.transaction()`` so an
    event exists exactly when the change it describes was committed.
    """

    def __init__(
        self,
        store: EngineStore,
        batch_size: int,
        poll_interval_seconds: float,
        keepalive_interval_seconds: float,
    ) -> None:
        self._store = store
        self._batch_size = batch_size
        self._poll_interval = poll_interval_seconds
        self._keepalive_interval = keepalive_interval_seconds

    def publish(self, job_id: str, event_type: str, payload: dict[str, Any]) -> int:
        return self._store.append_event(job_id, event_type, payload, _now_iso())

    def list_events(
        self, job_id: str, after: int = 0, limit: int | None = None
    ) -> list[dict[str, Any]]:
        """Events for a job with ``event_id > after``, oldest first."""
        if after < 0:
            raise ValidationError("INVALID_PARAMETER", "after must be non-negative")
        page_size = self._batch_size if limit is None else limit
        if page_size < 1 or page_size > MAX_PAGE_SIZE:
            raise ValidationError(
                "INVALID_PARAMETER",
                f"limit must be between 1 and {MAX_PAGE_SIZE}",
            )
        return self._store.list_events(job_id, after, page_size)

    async def stream(self, job_id: str, last_event_id: int = 0) -> AsyncIterator[dict[str, Any]]:
        """Async generator that yields SSE frames for a job's events."""
        cursor = last_event_id
        last_keepalive = time.monotonic()

        yield {"retry": 3000}

        while True:
            batch = self._store.list_events(job_id, cursor, self._batch_size)
            if batch:
                for event in batch:
                    yield {
                        "event": event["event_type"],
                        "data": json.dumps(event, default=str),
                        "id": str(event["event_id"]),
                    }
                    cursor = event["event_id"]
                last_keepalive = time.monotonic()
            else:
                elapsed = time.monotonic() - last_keepalive
                if elapsed >= self._keepalive_interval:
                    yield {"comment": "keepalive"}
                    last_keepalive = time.monotonic()
                await asyncio.sleep(self._poll_interval)
