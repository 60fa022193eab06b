"""Per-job progress event streams for Server-Sent Events (SSE)

Each onboarding job gets a multicast stream: the pipeline publishes into it,
any number of subscribers read the same events. A bounded replay buffer lets a
client that connects after the run started catch up. Once a job's stream is
closed it is removed from the registry; subscribing afterwards yields nothing.

All operations run on the event loop and never await while touching the
registry, so publish/subscribe/close are safe to call from independent tasks.
"""

import asyncio
import json
import logging
from collections import deque
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Deque, Dict, Optional, Set

logger = logging.getLogger(__name__)

EVENT_PROGRESS = "progress"
EVENT_DONE = "done"
EVENT_FAILED = "failed"
EVENT_HEARTBEAT = "heartbeat"


@dataclass(frozen=True)
class ProgressEvent:
    event: str
    data: Any

    def to_sse(self) -> str:
        """Format as ``event: <name>\\ndata: <json>\\n\\n``"""
        payload = json.dumps(self.data, ensure_ascii=False)
        return f"event: {self.event}\ndata: {payload}\n\n"


_CLOSED = object()


@dataclass
class _JobStream:
    replay: Deque[ProgressEvent]
    subscribers: Set[asyncio.Queue] = field(default_factory=set)


class ProgressPublisher:
    """Registry of job id -> multicast event stream"""

    def __init__(self, replay_size: int = 32):
        self.replay_size = replay_size
        self._streams: Dict[str, _JobStream] = {}

    def open(self, job_id: str) -> None:
        """Register a stream for a job that is about to start publishing"""
        self._streams.setdefault(job_id, _JobStream(replay=deque(maxlen=self.replay_size)))

    def publish(self, job_id: str, event: str, data: Any) -> None:
        """Push an event to every current subscriber; dropped if the job has no stream"""
        stream = self._streams.get(job_id)
        if stream is None:
            logger.debug("No stream for job, event dropped", extra={"job_id": job_id, "event": event})
            return

        item = ProgressEvent(event=event, data=data)
        stream.replay.append(item)
        for queue in stream.subscribers:
            queue.put_nowait(item)

    def close(self, job_id: str) -> None:
        """End the job's stream; current subscribers finish after draining"""
        stream = self._streams.pop(job_id, None)
        if stream is None:
            return
        for queue in stream.subscribers:
            queue.put_nowait(_CLOSED)

    async def subscribe(
        self, job_id: str, heartbeat_interval: Optional[float] = None
    ) -> AsyncIterator[ProgressEvent]:
        """
        Yield the job's events until the stream closes.

        Replayed history comes first. With ``heartbeat_interval`` set, a
        heartbeat event is yielded whenever no event arrived in that window.
        """
        stream = self._streams.get(job_id)
        if stream is None:
            return

        queue: asyncio.Queue = asyncio.Queue()
        for item in stream.replay:
            queue.put_nowait(item)
        stream.subscribers.add(queue)

        try:
            while True:
                try:
                    if heartbeat_interval is None:
                        item = await queue.get()
                    else:
                        item = await asyncio.wait_for(queue.get(), timeout=heartbeat_interval)
                except asyncio.TimeoutError:
                    yield ProgressEvent(event=EVENT_HEARTBEAT, data={"alive": True})
                    continue

                if item is _CLOSED:
                    return
                yield item
        finally:
            stream.subscribers.discard(queue)
