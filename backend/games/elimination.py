"""
Elimination game — pass-the-token.

States: Idle → TokenActive → Idle

One active participant holds the token. The holder passes it by typing
another active participant's number; if the expiry timer runs out first,
the holder is eliminated. The round continues with a fresh random holder
until one participant is left standing.

The token timer ticks every `tick_seconds` and broadcasts the remaining
time. Every path out of TokenActive cancels it.
"""
import logging
import random
from typing import Optional

from games.errors import NotFound, PreconditionFailed
from games.lobby import MIN_PLAYERS, GameSlot, LobbyManager
from games.timers import TimerRegistry, TimerRole
from models.game import BroadcastEvent, EliminationSession, GameKind, LobbyStatus, Participant
from services.broadcast import BroadcastHub
from services.roster_store import RosterStore

logger = logging.getLogger(__name__)


class EliminationGame:

    def __init__(
        self,
        store: RosterStore,
        hub: BroadcastHub,
        timers: TimerRegistry,
        slot: GameSlot,
        lobby: LobbyManager,
        token_seconds: int = 30,
        tick_seconds: float = 1.0,
        reset_delay_seconds: float = 8.0,
        rng: Optional[random.Random] = None,
    ):
        self.store = store
        self.hub = hub
        self.timers = timers
        self.slot = slot
        self.lobby = lobby
        self.token_seconds = token_seconds
        self.tick_seconds = tick_seconds
        self.reset_delay_seconds = reset_delay_seconds
        self.rng = rng or random.Random()
        self.session: Optional[EliminationSession] = None
        lobby.elimination_live = lambda: self.session is not None

    @property
    def is_active(self) -> bool:
        return self.session is not None

    # ── Start ──────────────────────────────────────────────────────────────────

    async def start(self) -> int:
        """
        Start a round with a random holder. Returns the holder's id.

        Raises:
            PreconditionFailed: another game holds the slot, or < 2 active
        """
        if not self.slot.is_free:
            raise PreconditionFailed(f"A {self.slot.active.value} game is already running")
        active = await self.store.list_active()
        if len(active) < MIN_PLAYERS:
            raise PreconditionFailed(
                f"Need at least {MIN_PLAYERS} active participants (have {len(active)})"
            )
        self.slot.claim(GameKind.ELIMINATION)
        self.lobby.cancel_auto_start()
        holder = self.rng.choice(active)
        logger.info(f"[elimination] started with {len(active)} participants")
        await self._assign(holder)
        return holder.id

    async def _assign(self, holder: Participant) -> None:
        self.session = EliminationSession(
            holder_id=holder.id, remaining_seconds=self.token_seconds
        )
        logger.info(f"[elimination] token → #{holder.id} {holder.username}")
        await self.hub.broadcast(
            BroadcastEvent.TOKEN_ASSIGNED,
            {"holderId": holder.id, "seconds": self.token_seconds},
        )
        self.timers.schedule(TimerRole.HOLDER_EXPIRY, self.tick_seconds, self._tick)

    async def _tick(self) -> None:
        if self.session is None:
            return
        self.session.remaining_seconds -= 1
        remaining = self.session.remaining_seconds
        await self.hub.broadcast(BroadcastEvent.TOKEN_TICK, {"seconds": max(remaining, 0)})
        if remaining <= 0:
            self.timers.cancel(TimerRole.HOLDER_EXPIRY)
            await self._eliminate(self.session.holder_id)
        else:
            self.timers.schedule(TimerRole.HOLDER_EXPIRY, self.tick_seconds, self._tick)

    # ── Token pass ─────────────────────────────────────────────────────────────

    async def pass_token(self, sender_external_id: str, target_id: int) -> bool:
        """
        Accept a pass only from the current holder, and only to another
        active participant. Returns True if the token moved.
        """
        if self.session is None:
            return False
        holder = await self.store.get(self.session.holder_id)
        if holder is None or holder.external_id != sender_external_id:
            return False
        if target_id == holder.id:
            return False
        target = await self.store.get(target_id)
        if target is None or target.lobby_status != LobbyStatus.ACTIVE:
            logger.debug(f"[elimination] #{holder.id} tried to pass to inactive #{target_id}")
            return False
        await self._assign(target)
        return True

    # ── Elimination ────────────────────────────────────────────────────────────

    async def eliminate(self, participant_id: int) -> None:
        """
        Operator-triggered elimination. Same outcome checks as expiry.

        Raises:
            PreconditionFailed: no round is running or the target is not active
            NotFound: no participant has that id
        """
        if self.session is None:
            raise PreconditionFailed("No elimination round is running")
        target = await self.store.get(participant_id)
        if target is None:
            raise NotFound(f"Participant #{participant_id} not found")
        if target.lobby_status != LobbyStatus.ACTIVE:
            raise PreconditionFailed(f"Participant #{participant_id} is not an active player")
        await self._eliminate(participant_id)

    async def _eliminate(self, participant_id: int) -> None:
        was_holder = self.session is not None and self.session.holder_id == participant_id
        await self.store.update_status(participant_id, LobbyStatus.ELIMINATED)
        await self.store.record_result(participant_id, won=False)
        logger.info(f"[elimination] #{participant_id} eliminated")
        await self.hub.broadcast(
            BroadcastEvent.PARTICIPANT_ELIMINATED, {"participantId": participant_id}
        )
        await self.lobby.broadcast_roster()

        remaining = await self.store.list_active()
        if len(remaining) == 1:
            await self._declare_winner(remaining[0])
        elif not remaining:
            logger.warning("[elimination] nobody left standing; resetting lobby")
            self._destroy()
            await self.finish()
        elif was_holder:
            await self._assign(self.rng.choice(remaining))

    async def _declare_winner(self, winner: Participant) -> None:
        self._destroy()
        updated = await self.store.record_result(winner.id, won=True)
        logger.info(f"[elimination] #{winner.id} {winner.username} wins")
        await self.hub.broadcast(
            BroadcastEvent.ELIMINATION_WINNER,
            {"participant": (updated or winner).to_public()},
        )
        # Slot stays claimed through the winner screen
        self.timers.schedule(TimerRole.RESULT_DISPLAY, self.reset_delay_seconds, self.finish)

    # ── Teardown ───────────────────────────────────────────────────────────────

    def _destroy(self) -> None:
        self.timers.cancel(TimerRole.HOLDER_EXPIRY)
        self.session = None

    def cancel(self) -> None:
        """Drop the round without a winner. The caller resets the lobby."""
        self._destroy()
        self.timers.cancel(TimerRole.RESULT_DISPLAY)
        self.slot.release(GameKind.ELIMINATION)

    async def finish(self) -> None:
        """Post-game reset: everyone back to active, slot released."""
        self.cancel()
        await self.lobby.reset_all()
        await self.hub.broadcast(BroadcastEvent.GAME_RESET, {})
        await self.lobby.maybe_auto_start()

    def snapshot(self) -> dict:
        if self.session is None:
            return {"holderId": None, "seconds": None}
        return {
            "holderId": self.session.holder_id,
            "seconds": self.session.remaining_seconds,
        }
