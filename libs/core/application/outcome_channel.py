"""Fan-out hand-off of terminal job outcomes to subscribers."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass

from libs.core.domain.entities import AnalysisResult, JobStatus


@dataclass(frozen=True)
class JobOutcome:
    """Published once per job that reaches completed or failed."""

    job_id: str
    stream_id: str
    status: JobStatus
    result: AnalysisResult | None = None
    error: str | None = None


class OutcomeChannel:
    def __init__(self) -> None:
        self._subscribers: list[asyncio.Queue[JobOutcome]] = []

    def subscribe(self) -> asyncio.Queue[JobOutcome]:
        queue: asyncio.Queue[JobOutcome] = asyncio.Queue()
        self._subscribers.append(queue)
        return queue

    def unsubscribe(self, queue: asyncio.Queue[JobOutcome]) -> None:
        if queue in self._subscribers:
            self._subscribers.remove(queue)

    def publish(self, outcome: JobOutcome) -> None:
        for queue in self._subscribers:
            queue.put_nowait(outcome)

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)
