"""Live heatmap polling.

While a session is live, a poller re-reads the feeds every few seconds and
rebuilds the class heatmap when the inputs changed. Every cycle takes a
sequence number; a result is applied only if no newer cycle was issued while
it was being computed, so subscribers never see an older matrix replace a
newer one.
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncContextManager, Awaitable, Callable, Dict, List, Optional

from engagement_timeline.config import settings
from engagement_timeline.core.fingerprint import MemoGuard
from engagement_timeline.core.modes import Mode, mode_label
from engagement_timeline.services.engagement_service import (
    build_heatmap,
    fetch_session_inputs,
    heatmap_payload,
)
from engagement_timeline.services.feed_service import FeedSource, SqlFeedSource

logger = logging.getLogger(__name__)

FeedFactory = Callable[[], AsyncContextManager[FeedSource]]
Publisher = Callable[[str, Dict[str, Any]], Awaitable[None]]


@asynccontextmanager
async def sql_feed_factory():
    from engagement_timeline.database import AsyncSessionLocal

    async with AsyncSessionLocal() as db:
        yield SqlFeedSource(db)


class RecomputeScheduler:
    def __init__(self) -> None:
        self.issued = 0
        self.applied = 0

    def next_sequence(self) -> int:
        self.issued += 1
        return self.issued

    def can_apply(self, sequence: int) -> bool:
        return sequence == self.issued and sequence > self.applied

    def mark_applied(self, sequence: int) -> None:
        self.applied = sequence


class SessionContext:
    """Per-session state shared by polling cycles."""

    def __init__(self, session_code: str, guard: Optional[MemoGuard] = None):
        self.session_code = session_code
        self.mode_override: Optional[Mode] = None
        self.guard = guard or MemoGuard()
        self.scheduler = RecomputeScheduler()
        self.latest: Optional[Dict[str, Any]] = None

    def set_mode_override(self, mode: Optional[Mode]) -> None:
        self.mode_override = mode
        self.guard.reset()

    def fingerprint_input(self, inputs: Dict[str, Any]) -> Dict[str, Any]:
        return {
            "inputs": inputs,
            "mode_override": mode_label(self.mode_override) if self.mode_override is not None else None,
        }


class LiveHeatmapPoller:
    def __init__(
        self,
        context: SessionContext,
        feed_factory: FeedFactory,
        publish: Publisher,
        interval_seconds: float,
    ):
        self.context = context
        self._feed_factory = feed_factory
        self._publish = publish
        self.interval_seconds = interval_seconds
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def run_cycle(self) -> bool:
        """Run one poll; returns True when a new result was applied and published."""
        context = self.context
        sequence = context.scheduler.next_sequence()

        try:
            async with self._feed_factory() as feed:
                inputs = await fetch_session_inputs(feed, context.session_code)
        except Exception:
            logger.exception("Feed fetch failed for session %s; keeping previous heatmap", context.session_code)
            return False

        fingerprint = context.guard.fingerprint(context.fingerprint_input(inputs))
        if not context.guard.is_new(fingerprint):
            logger.debug("Session %s unchanged, skipping recompute", context.session_code)
            return False

        mode_override = context.mode_override
        try:
            matrix = build_heatmap(inputs, mode_override=mode_override)
        except ValueError:
            logger.exception("Heatmap build failed for session %s", context.session_code)
            return False
        payload = heatmap_payload(context.session_code, matrix, mode_override)

        if not context.scheduler.can_apply(sequence):
            logger.debug("Discarding superseded heatmap #%d for session %s", sequence, context.session_code)
            return False
        context.scheduler.mark_applied(sequence)
        context.guard.remember(fingerprint)
        context.latest = payload
        logger.info(
            "Heatmap #%d for session %s: %s",
            sequence, context.session_code,
            f"{payload['tick_count']} ticks x {len(payload['students'])} students" if payload["has_data"] else "no data",
        )
        await self._publish(context.session_code, payload)
        return True

    async def _loop(self) -> None:
        while True:
            await self.run_cycle()
            await asyncio.sleep(self.interval_seconds)

    def start(self) -> None:
        if self.running:
            return
        self._task = asyncio.create_task(self._loop(), name=f"heatmap-poller-{self.context.session_code}")

    async def stop(self) -> None:
        task, self._task = self._task, None
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass


class LiveSessionHub:
    """Registry of session contexts, pollers and websocket subscribers."""

    def __init__(self, feed_factory: Optional[FeedFactory] = None, interval_seconds: Optional[float] = None):
        self._feed_factory = feed_factory or sql_feed_factory
        self._interval = interval_seconds if interval_seconds is not None else settings.POLL_INTERVAL_SECONDS
        self._lock = asyncio.Lock()
        self._contexts: Dict[str, SessionContext] = {}
        self._pollers: Dict[str, LiveHeatmapPoller] = {}
        self._subscribers: Dict[str, List[Any]] = {}

    async def context(self, session_code: str) -> SessionContext:
        async with self._lock:
            context = self._contexts.get(session_code)
            if context is None:
                context = SessionContext(session_code)
                self._contexts[session_code] = context
            return context

    def find(self, session_code: str) -> Optional[SessionContext]:
        """The session's context if it is live or watched, without registering one."""
        return self._contexts.get(session_code)

    def _release(self, session_code: str) -> None:
        # Caller holds the lock
        if session_code not in self._pollers and not self._subscribers.get(session_code):
            self._contexts.pop(session_code, None)

    def is_running(self, session_code: str) -> bool:
        poller = self._pollers.get(session_code)
        return poller is not None and poller.running

    async def start(self, session_code: str) -> SessionContext:
        context = await self.context(session_code)
        async with self._lock:
            poller = self._pollers.get(session_code)
            if poller is None:
                poller = LiveHeatmapPoller(context, self._feed_factory, self.publish, self._interval)
                self._pollers[session_code] = poller
            poller.start()
        logger.info("Live heatmap polling started for session %s", session_code)
        return context

    async def stop(self, session_code: str) -> None:
        async with self._lock:
            poller = self._pollers.pop(session_code, None)
            self._release(session_code)
        if poller is not None:
            await poller.stop()
            logger.info("Live heatmap polling stopped for session %s", session_code)

    async def set_mode_override(self, session_code: str, mode: Optional[Mode]) -> SessionContext:
        context = await self.context(session_code)
        context.set_mode_override(mode)
        poller = self._pollers.get(session_code)
        if poller is not None and poller.running:
            await poller.run_cycle()
        return context

    async def subscribe(self, session_code: str, websocket: Any) -> None:
        async with self._lock:
            self._subscribers.setdefault(session_code, []).append(websocket)

    async def unsubscribe(self, session_code: str, websocket: Any) -> None:
        async with self._lock:
            subscribers = self._subscribers.get(session_code, [])
            self._subscribers[session_code] = [item for item in subscribers if item is not websocket]
            if not self._subscribers[session_code]:
                self._subscribers.pop(session_code, None)
            self._release(session_code)

    async def publish(self, session_code: str, payload: Dict[str, Any]) -> None:
        async with self._lock:
            subscribers = list(self._subscribers.get(session_code, []))
        message = {
            "type": "heatmap_update" if payload.get("has_data") else "no_data",
            "heatmap": payload,
        }
        for websocket in subscribers:
            try:
                await websocket.send_json(message)
            except Exception:
                logger.warning("Dropping heatmap subscriber for session %s", session_code)
                await self.unsubscribe(session_code, websocket)

    async def shutdown(self) -> None:
        async with self._lock:
            pollers = list(self._pollers.values())
            self._pollers.clear()
        for poller in pollers:
            await poller.stop()


live_hub = LiveSessionHub()
