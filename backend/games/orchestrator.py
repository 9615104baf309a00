"""
Orchestrator — the single coordinator for the live-feed games.

Owns:
  - the ingestion pump (chat → commands)
  - the lobby, the elimination game and the duel game
  - the shared GameSlot (mutual exclusion between the two games)
  - the timer registry and the lock every mutation runs under

Data flow: pump → interpreter → lobby | active game → roster store + hub.

Every public coroutine below takes the lock, and so do timer callbacks.
Nothing inside the games takes the lock itself.
"""
import asyncio
import logging
from typing import Any, Dict, List, Optional, Set

from config import Settings, settings as default_settings
from games.duel import DuelGame
from games.elimination import EliminationGame
from games.errors import PreconditionFailed
from games.ingestion import FingerprintCache, IngestionPump
from games.interpreter import interpret
from games.lobby import GameSlot, LobbyManager
from games.timers import TimerRegistry, TimerRole
from models.commands import (
    Command, JoinCommand, NoiseCommand, NumberCommand, RawMessage, StartGameCommand,
)
from models.game import BroadcastEvent, FeedInfo, GameKind, LobbyStatus, Participant
from services.broadcast import BroadcastHub
from services.roster_store import RosterStore
from services.youtube_client import YouTubeChatClient

logger = logging.getLogger(__name__)


class Orchestrator:

    def __init__(
        self,
        store: RosterStore,
        hub: BroadcastHub,
        feed: YouTubeChatClient,
        config: Optional[Settings] = None,
    ):
        cfg = config or default_settings
        self.config = cfg
        self.store = store
        self.hub = hub
        self.feed = feed
        self.feed_info: Optional[FeedInfo] = None

        self._lock = asyncio.Lock()
        self.timers = TimerRegistry(self._lock, on_error=self._on_timer_error)
        self.slot = GameSlot()
        self.lobby = LobbyManager(
            store, hub, self.timers, self.slot,
            debounce_seconds=cfg.auto_start_debounce_seconds,
            auto_start=self._auto_start if cfg.auto_start_game != "off" else None,
        )
        self.elimination = EliminationGame(
            store, hub, self.timers, self.slot, self.lobby,
            token_seconds=cfg.elimination_token_seconds,
            tick_seconds=cfg.tick_seconds,
            reset_delay_seconds=cfg.elimination_reset_delay_seconds,
        )
        self.duel = DuelGame(
            store, hub, self.timers, self.slot, self.lobby,
            countdown_seconds=cfg.duel_countdown_seconds,
            tick_seconds=cfg.tick_seconds,
            result_display_seconds=cfg.duel_result_display_seconds,
        )
        self.pump = IngestionPump(
            feed,
            self.handle_message,
            interval=cfg.poll_interval,
            cache=FingerprintCache(cfg.fingerprint_cache_size),
        )
        self._next_alternate = GameKind.DUEL
        self._posts: Set[asyncio.Task] = set()

        if feed.can_post:
            hub.add_listener(self._announce)

    # ── Inbound chat ───────────────────────────────────────────────────────────

    async def handle_message(self, message: RawMessage) -> None:
        """Pump handler: one already-deduplicated chat message."""
        command = interpret(message)
        if isinstance(command, NoiseCommand):
            return
        async with self._lock:
            await self._dispatch(command)

    async def inject(self, message: RawMessage) -> bool:
        """Feed a locally-sourced message through the same dedupe + dispatch path."""
        if self.pump.cache.seen(message.id):
            return False
        await self.handle_message(message)
        return True

    async def _dispatch(self, command: Command) -> None:
        if isinstance(command, JoinCommand):
            joined = await self.lobby.handle_join(
                command.author_external_id, command.author_name, command.author_avatar_url
            )
            if joined is not None:
                if self.feed.can_post:
                    waiting = len(await self.store.list_active())
                    self._post(f"🎮 {joined.username} joined the game! ({waiting} waiting)")
                await self.lobby.maybe_auto_start()

        elif isinstance(command, NumberCommand):
            if self.slot.active == GameKind.DUEL:
                await self.duel.answer(command.author_external_id, command.value)
            elif self.slot.active == GameKind.ELIMINATION:
                await self.elimination.pass_token(command.author_external_id, command.value)

        elif isinstance(command, StartGameCommand):
            if not self.config.allow_chat_start:
                return
            try:
                await self._start(command.game)
            except PreconditionFailed as exc:
                logger.info(f"[chat] {command.author_name} start {command.game.value} refused: {exc.message}")

        else:
            logger.debug("Unhandled command kind %s", command.kind)

    # ── Game starts ────────────────────────────────────────────────────────────

    async def _start(self, kind: GameKind) -> Dict[str, Any]:
        if kind == GameKind.DUEL:
            session = await self.duel.start()
            return {
                "game": kind.value,
                "leftPlayer": session.left_player.to_public(),
                "rightPlayer": session.right_player.to_public(),
            }
        holder_id = await self.elimination.start()
        return {"game": kind.value, "holderId": holder_id}

    async def _auto_start(self) -> None:
        policy = self.config.auto_start_game
        if policy == "alternate":
            kind = self._next_alternate
            self._next_alternate = (
                GameKind.ELIMINATION if kind == GameKind.DUEL else GameKind.DUEL
            )
        else:
            kind = GameKind(policy)
        try:
            await self._start(kind)
        except PreconditionFailed as exc:
            logger.info(f"[lobby] auto-start {kind.value} refused: {exc.message}")

    async def start_duel(self) -> Dict[str, Any]:
        async with self._lock:
            return await self._start(GameKind.DUEL)

    async def start_elimination(self) -> Dict[str, Any]:
        async with self._lock:
            return await self._start(GameKind.ELIMINATION)

    # ── Operator controls ──────────────────────────────────────────────────────

    async def _teardown_games(self) -> None:
        self.timers.cancel_all()
        self.elimination.cancel()
        await self.duel.cancel()

    async def reset(self) -> None:
        """Cancel every timer and game, return everyone to active."""
        async with self._lock:
            await self._teardown_games()
            await self.lobby.reset_all()
            await self.hub.broadcast(BroadcastEvent.GAME_RESET, {})
        logger.info("[orchestrator] reset")

    async def clear_roster(self) -> None:
        async with self._lock:
            await self._teardown_games()
            await self.lobby.clear_all()
            await self.hub.broadcast(BroadcastEvent.GAME_RESET, {})

    async def eliminate(self, participant_id: int) -> None:
        async with self._lock:
            await self.elimination.eliminate(participant_id)

    async def disconnect(self, external_id: str) -> str:
        """
        A participant left the stream. Returns what happened:
        "duel_cancelled", "eliminated" or "ignored".
        """
        async with self._lock:
            if await self.duel.abort(external_id):
                return "duel_cancelled"
            if self.elimination.is_active:
                p = await self.store.get_by_external_id(external_id)
                if p is not None and p.lobby_status == LobbyStatus.ACTIVE:
                    await self.elimination.eliminate(p.id)
                    return "eliminated"
        return "ignored"

    async def list_active(self) -> List[Participant]:
        return await self.lobby.list_active()

    # ── Feed sync ──────────────────────────────────────────────────────────────

    async def start_sync(self, target: str) -> FeedInfo:
        """
        Resolve `target` to a live chat and start polling it. Any running game
        is cancelled and the lobby reset: the new feed starts from Idle.

        Raises:
            InvalidTarget, NoActiveFeed, TransientFeedError
        """
        info = await self.feed.resolve(target)
        async with self._lock:
            self.pump.stop()
            if not self.slot.is_free:
                await self._teardown_games()
                await self.lobby.reset_all()
                await self.hub.broadcast(BroadcastEvent.GAME_RESET, {})
            self.feed_info = info
            self.pump.start(info.live_chat_id)
        logger.info(f"[orchestrator] synced to {info.video_id} ({info.title!r})")
        return info

    def stop_monitoring(self) -> None:
        self.pump.stop()
        self.feed_info = None
        logger.info("[orchestrator] monitoring stopped")

    # ── Recovery ───────────────────────────────────────────────────────────────

    async def reconcile(self) -> int:
        """
        Bring the persisted roster in line with in-memory state. After a
        restart nobody can be mid-duel, so stale in_game rows go back to active.
        """
        async with self._lock:
            if self.duel.is_active:
                return 0
            stale = await self.store.list_by_status(LobbyStatus.IN_GAME)
            for p in stale:
                await self.store.update_status(p.id, LobbyStatus.ACTIVE)
            if not self.elimination.is_active and self.slot.is_free:
                eliminated = await self.store.list_by_status(LobbyStatus.ELIMINATED)
                for p in eliminated:
                    await self.store.update_status(p.id, LobbyStatus.ACTIVE)
                stale += eliminated
        if stale:
            logger.info(f"[orchestrator] reconciled {len(stale)} stale participants")
        return len(stale)

    async def shutdown(self) -> None:
        self.pump.stop()
        self.timers.cancel_all()
        await self.feed.aclose()

    async def _on_timer_error(self, role: TimerRole, exc: Exception) -> None:
        await self.hub.broadcast(
            BroadcastEvent.ERROR,
            {"message": f"{role.value} failed: {exc}. Use reset to recover."},
        )

    # ── Views ──────────────────────────────────────────────────────────────────

    async def snapshot(self) -> Dict[str, Any]:
        """Full state for a newly connected viewer."""
        active = await self.store.list_active()
        return {
            "type": "snapshot",
            "participants": [p.to_public() for p in active],
            "activeGame": self.slot.active.value if self.slot.active else None,
            "elimination": self.elimination.snapshot(),
            "duel": self.duel.snapshot(),
        }

    async def stats(self) -> Dict[str, Any]:
        active = await self.store.list_active()
        duel = self.duel.snapshot()
        return {
            "isMonitoring": self.pump.is_running,
            "liveChatId": self.pump.live_chat_id,
            "videoId": self.feed_info.video_id if self.feed_info else None,
            "lastFeedError": self.pump.last_error,
            "waitingCount": len(active),
            "activeGame": self.slot.active.value if self.slot.active else None,
            "duel": {
                "phase": duel["phase"],
                "left": duel["leftPlayer"]["username"] if duel["leftPlayer"] else None,
                "right": duel["rightPlayer"]["username"] if duel["rightPlayer"] else None,
            },
            "elimination": self.elimination.snapshot(),
            "viewers": self.hub.count(),
        }

    # ── Chat announcements ─────────────────────────────────────────────────────

    async def _announce(self, event: str, payload: Dict[str, Any]) -> None:
        if not self.pump.live_chat_id:
            return
        text = _announcement(event, payload)
        if text:
            await self.feed.post_message(self.pump.live_chat_id, text)

    def _post(self, text: str) -> None:
        """Post a chat line without holding up the caller."""
        if not self.pump.live_chat_id:
            return
        task = asyncio.create_task(self.feed.post_message(self.pump.live_chat_id, text))
        self._posts.add(task)
        task.add_done_callback(self._posts.discard)


def _announcement(event: str, payload: Dict[str, Any]) -> Optional[str]:
    if event == BroadcastEvent.DUEL_STARTED.value:
        return (
            f"⚔️ New duel! {payload['leftPlayer']['username']} 🆚 "
            f"{payload['rightPlayer']['username']} 🎯"
        )
    if event == BroadcastEvent.DUEL_COUNTDOWN.value and payload.get("seconds") == 5:
        return "⏰ 5 seconds left... get ready! 🔫"
    if event == BroadcastEvent.DUEL_TARGET_REVEALED.value:
        return f"🎯 The number is {payload['number']} - type it fast! ⚡"
    if event == BroadcastEvent.DUEL_RESOLVED.value:
        seconds = payload["reactionTimeMs"] / 1000
        return f"🎉 {payload['shooter']['username']} wins the duel! 💥 ({seconds:.2f}s)"
    if event == BroadcastEvent.ELIMINATION_WINNER.value:
        return f"👑 {payload['participant']['username']} is the last one standing!"
    if event == BroadcastEvent.GAME_RESET.value:
        return "🔄 Game reset! Type !join to play 🎮"
    return None


_orchestrator: Optional[Orchestrator] = None


def get_orchestrator() -> Orchestrator:
    """Lazy singleton, usable as a FastAPI dependency: Depends(get_orchestrator)."""
    global _orchestrator
    if _orchestrator is None:
        from services.broadcast import hub
        from services.roster_store import get_roster_store
        _orchestrator = Orchestrator(get_roster_store(), hub, YouTubeChatClient())
    return _orchestrator
