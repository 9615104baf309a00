"""
Broadcast fan-out — pushes every state transition to all connected viewers.

Viewers are overlay pages and operator dashboards connected on /ws/viewer.
Delivery is fire-and-forget and at-least-once: a failed send drops that
viewer, it never blocks or fails the transition that caused it. Clients
render idempotent state, so duplicates are harmless.

In-process listeners (the chat announcer) receive the same events.
"""
import asyncio
import logging
from typing import Any, Awaitable, Callable, Dict, List, Optional, Set, Union

from fastapi import WebSocket

from models.game import BroadcastEvent

logger = logging.getLogger(__name__)

Listener = Callable[[str, Dict[str, Any]], Awaitable[None]]


class BroadcastHub:
    """
    Tracks viewer WebSocket connections.
    Safe for asyncio single-threaded event loop (no extra locking needed).
    """

    def __init__(self):
        self._viewers: Dict[str, WebSocket] = {}
        self._listeners: List[Listener] = []
        # Listener deliveries still in flight
        self._pending: Set[asyncio.Task] = set()

    # ── Lifecycle ──────────────────────────────────────────────────────────────

    async def connect(self, viewer_id: str, ws: WebSocket) -> None:
        await ws.accept()
        self._viewers[viewer_id] = ws
        logger.debug(f"[hub] viewer {viewer_id} connected ({self.count()} total)")

    def disconnect(self, viewer_id: str) -> None:
        self._viewers.pop(viewer_id, None)

    def count(self) -> int:
        return len(self._viewers)

    def add_listener(self, listener: Listener) -> None:
        self._listeners.append(listener)

    # ── Sending ────────────────────────────────────────────────────────────────

    async def send_to(self, viewer_id: str, message: Dict) -> None:
        """Send a private message to a single viewer."""
        ws = self._viewers.get(viewer_id)
        if ws:
            try:
                await ws.send_json(message)
            except Exception as exc:
                logger.warning(f"[hub] send_to {viewer_id} failed: {exc}")
                self.disconnect(viewer_id)

    async def broadcast(
        self,
        event: Union[BroadcastEvent, str],
        payload: Optional[Dict[str, Any]] = None,
    ) -> None:
        """Broadcast an event to every viewer and listener."""
        name = event.value if isinstance(event, BroadcastEvent) else event
        payload = payload or {}
        message = {"type": name, **payload}
        for vid, ws in list(self._viewers.items()):
            try:
                await ws.send_json(message)
            except Exception as exc:
                logger.warning(f"[hub] broadcast {name} to {vid} failed: {exc}")
                self.disconnect(vid)
        for listener in self._listeners:
            # Listeners may do network I/O; never hold up the transition
            task = asyncio.create_task(self._notify(listener, name, payload))
            self._pending.add(task)
            task.add_done_callback(self._pending.discard)

    @staticmethod
    async def _notify(listener: Listener, name: str, payload: Dict[str, Any]) -> None:
        try:
            await listener(name, payload)
        except Exception:
            logger.warning("[hub] listener failed for %s", name, exc_info=True)


hub = BroadcastHub()
