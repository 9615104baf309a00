"""
Lobby manager — owns "who is active", join handling and auto-start.

The lobby is every participant whose persisted status is `active`. Joins
write through to the roster store immediately; the waiting list broadcast
to viewers is always re-read from the store so it cannot drift from it.
"""
import logging
from typing import Awaitable, Callable, List, Optional

from games.timers import TimerRegistry, TimerRole
from models.game import BroadcastEvent, GameKind, LobbyStatus, Participant
from services.broadcast import BroadcastHub
from services.roster_store import RosterStore

logger = logging.getLogger(__name__)

MIN_PLAYERS = 2


class GameSlot:
    """
    The single "which game, if any, is active" flag shared by both games.
    Claimed at game start and released only after the post-game reset, so
    a new game can never start on top of a result screen.
    """

    def __init__(self):
        self.active: Optional[GameKind] = None

    @property
    def is_free(self) -> bool:
        return self.active is None

    def claim(self, kind: GameKind) -> bool:
        if self.active is not None:
            return False
        self.active = kind
        return True

    def release(self, kind: GameKind) -> None:
        if self.active == kind:
            self.active = None


class LobbyManager:

    def __init__(
        self,
        store: RosterStore,
        hub: BroadcastHub,
        timers: TimerRegistry,
        slot: GameSlot,
        debounce_seconds: float,
        auto_start: Optional[Callable[[], Awaitable[None]]] = None,
    ):
        self.store = store
        self.hub = hub
        self.timers = timers
        self.slot = slot
        self.debounce_seconds = debounce_seconds
        self.auto_start = auto_start
        # Set by the elimination machine while its round is live, so eliminated
        # participants cannot rejoin until the post-game reset.
        self.elimination_live: Callable[[], bool] = lambda: False

    async def handle_join(
        self, external_id: str, display_name: str, avatar_url: Optional[str] = None
    ) -> Optional[Participant]:
        """
        Idempotent join. Creates the participant as active, or flips an
        inactive one back to active. In-game participants are left alone.
        Returns the participant if anything changed, else None.
        """
        existing = await self.store.get_by_external_id(external_id)
        if existing is None:
            participant = await self.store.create(external_id, display_name, avatar_url)
            logger.info(f"[lobby] {display_name} joined as #{participant.id}")
        elif existing.lobby_status == LobbyStatus.ACTIVE:
            return None
        elif existing.lobby_status == LobbyStatus.IN_GAME:
            logger.debug(f"[lobby] {display_name} is mid-duel; join ignored")
            return None
        elif self.elimination_live():
            logger.info(f"[lobby] {display_name} was eliminated this round; join ignored")
            return None
        else:
            participant = await self.store.update_status(existing.id, LobbyStatus.ACTIVE)
            logger.info(f"[lobby] #{existing.id} {display_name} rejoined")

        await self.broadcast_roster()
        return participant

    async def list_active(self) -> List[Participant]:
        return await self.store.list_active()

    async def broadcast_roster(self) -> None:
        active = await self.store.list_active()
        await self.hub.broadcast(
            BroadcastEvent.ROSTER_CHANGED,
            {"participants": [p.to_public() for p in active]},
        )

    async def maybe_auto_start(self) -> bool:
        """
        Arm the debounce timer if a game could start now. The window runs
        from the first qualifying join; later joins ride along with it, so a
        steady stream of joins still starts a game once the window closes.
        """
        if self.auto_start is None or not self.slot.is_free:
            return False
        if self.timers.is_armed(TimerRole.AUTO_START_DEBOUNCE):
            return True
        active = await self.store.list_active()
        if len(active) < MIN_PLAYERS:
            return False
        self.timers.schedule(
            TimerRole.AUTO_START_DEBOUNCE, self.debounce_seconds, self._debounce_fired
        )
        return True

    async def _debounce_fired(self) -> None:
        # Conditions may have changed during the window (manual start, reset)
        if not self.slot.is_free:
            logger.info(f"[lobby] auto-start skipped: {self.slot.active.value} already running")
            return
        active = await self.store.list_active()
        if len(active) < MIN_PLAYERS:
            logger.info(f"[lobby] auto-start skipped: only {len(active)} active")
            return
        await self.auto_start()

    def cancel_auto_start(self) -> None:
        self.timers.cancel(TimerRole.AUTO_START_DEBOUNCE)

    async def reset_all(self) -> None:
        """Every participant back to active. Idempotent."""
        await self.store.reset_all()
        await self.broadcast_roster()

    async def clear_all(self) -> None:
        """Destructive wipe of the roster."""
        self.cancel_auto_start()
        await self.store.delete_all()
        logger.info("[lobby] roster cleared")
        await self.broadcast_roster()
