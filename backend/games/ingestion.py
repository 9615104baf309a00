"""
Message ingestion pump — polls the live chat and forwards new messages.

One cycle:
  1. Skip entirely if a previous cycle is still in flight
  2. Fetch the page after the current cursor
  3. On transient failure: log, keep the cursor, wait for the next tick
  4. Drop messages already in the fingerprint cache, record the rest
  5. Hand each new message, in feed order, to the dispatcher

A message id goes into the cache before it is dispatched, so input that
later fails to parse or blows up a handler is never reprocessed.
"""
import asyncio
import logging
from typing import Awaitable, Callable, List, Optional, Protocol, Set

from games.errors import FeedClosed, TransientFeedError
from models.commands import RawMessage

logger = logging.getLogger(__name__)

MessageHandler = Callable[[RawMessage], Awaitable[None]]


class ChatFeed(Protocol):
    async def fetch_page(self, live_chat_id: str, page_token: Optional[str] = None): ...


class FingerprintCache:
    """
    Bounded set of seen message ids. When the cap is exceeded the whole set
    is cleared — an approximation, not an LRU. The cursor already keeps old
    pages from coming back, the cache only catches overlap at page edges.
    """

    def __init__(self, cap: int = 1000):
        self.cap = cap
        self._ids: Set[str] = set()

    def __contains__(self, message_id: str) -> bool:
        return message_id in self._ids

    def __len__(self) -> int:
        return len(self._ids)

    def add(self, message_id: str) -> None:
        self._ids.add(message_id)
        if len(self._ids) > self.cap:
            logger.info("[pump] fingerprint cache exceeded %d ids, clearing", self.cap)
            self._ids.clear()
            self._ids.add(message_id)

    def seen(self, message_id: str) -> bool:
        """Record `message_id`; return True if it was already there."""
        if message_id in self._ids:
            return True
        self.add(message_id)
        return False

    def clear(self) -> None:
        self._ids.clear()


class IngestionPump:

    def __init__(
        self,
        feed: ChatFeed,
        handler: MessageHandler,
        interval: float,
        cache: Optional[FingerprintCache] = None,
    ):
        self.feed = feed
        self.handler = handler
        self.interval = interval
        self.cache = cache or FingerprintCache()
        self.live_chat_id: Optional[str] = None
        self.cursor: Optional[str] = None
        self.last_error: Optional[str] = None
        # Minimum delay the feed asked for on its last page
        self.server_interval = 0.0
        self._in_flight = False
        self._task: Optional[asyncio.Task] = None

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    # ── Lifecycle ──────────────────────────────────────────────────────────────

    def start(self, live_chat_id: str) -> None:
        """Begin polling `live_chat_id` from a fresh cursor."""
        self.stop()
        self.live_chat_id = live_chat_id
        self._task = asyncio.create_task(self._loop(), name="ingestion-pump")
        logger.info(f"[pump] polling {live_chat_id} every {self.interval:.0f}s")

    def stop(self) -> None:
        if self._task and not self._task.done() and self._task is not asyncio.current_task():
            self._task.cancel()
        self._task = None
        self.live_chat_id = None
        self.cursor = None
        self.server_interval = 0.0
        self.cache.clear()

    # ── Polling ────────────────────────────────────────────────────────────────

    async def poll_once(self) -> List[RawMessage]:
        """
        Fetch one page and return the messages not seen before, in feed order.
        Returns [] when another fetch is in flight or the fetch failed.

        Raises:
            FeedClosed: the chat is gone; the caller should stop polling
        """
        if self._in_flight or not self.live_chat_id:
            return []
        self._in_flight = True
        try:
            try:
                page = await self.feed.fetch_page(self.live_chat_id, self.cursor)
            except TransientFeedError as exc:
                self.last_error = exc.message
                logger.warning("[pump] skipping cycle: %s", exc.message)
                return []
            self.last_error = None
            self.server_interval = (page.polling_interval_ms or 0) / 1000
            # Cursor moves only after a successful fetch
            self.cursor = page.next_page_token or self.cursor
            return [m for m in page.messages if not self.cache.seen(m.id)]
        finally:
            self._in_flight = False

    @property
    def next_delay(self) -> float:
        return max(self.interval, self.server_interval)

    async def run_cycle(self) -> int:
        """Poll once and dispatch. Returns the number of messages dispatched."""
        messages = await self.poll_once()
        for message in messages:
            try:
                await self.handler(message)
            except Exception:
                logger.exception("[pump] handler failed for message %s", message.id)
        return len(messages)

    async def _loop(self) -> None:
        while True:
            try:
                await self.run_cycle()
            except FeedClosed as exc:
                logger.warning("[pump] %s — stopping", exc.message)
                self.last_error = exc.message
                self.live_chat_id = None
                return
            except Exception:
                logger.exception("[pump] cycle crashed; retrying next tick")
            await asyncio.sleep(self.next_delay)
