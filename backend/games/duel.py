"""
Duel game — reaction race between two participants.

States: Idle → Countdown → Revealed → Resolved → Idle

Two active participants are drawn at random and marked in_game. After a
countdown a 4-digit target is revealed; the first combatant to type it
wins. Reaction time is measured from the reveal on the monotonic clock.

Resolution is guarded by the phase: only the first correct answer seen in
Revealed resolves, a second correct answer finds the duel Resolved and is
ignored.
"""
import logging
import random
import time
from typing import Optional

from games.errors import PreconditionFailed
from games.lobby import MIN_PLAYERS, GameSlot, LobbyManager
from games.timers import TimerRegistry, TimerRole
from models.game import (
    BroadcastEvent, DuelPhase, DuelPlayer, DuelSession, GameKind, LobbyStatus,
)
from services.broadcast import BroadcastHub
from services.roster_store import RosterStore

logger = logging.getLogger(__name__)

TARGET_MIN = 1000
TARGET_MAX = 9999


class DuelGame:

    def __init__(
        self,
        store: RosterStore,
        hub: BroadcastHub,
        timers: TimerRegistry,
        slot: GameSlot,
        lobby: LobbyManager,
        countdown_seconds: int = 10,
        tick_seconds: float = 1.0,
        result_display_seconds: float = 5.0,
        rng: Optional[random.Random] = None,
        clock=time.monotonic,
    ):
        self.store = store
        self.hub = hub
        self.timers = timers
        self.slot = slot
        self.lobby = lobby
        self.countdown_seconds = countdown_seconds
        self.tick_seconds = tick_seconds
        self.result_display_seconds = result_display_seconds
        self.rng = rng or random.Random()
        self.clock = clock
        self.session: Optional[DuelSession] = None

    @property
    def is_active(self) -> bool:
        return self.session is not None

    @property
    def phase(self) -> Optional[DuelPhase]:
        return self.session.phase if self.session else None

    # ── Start ──────────────────────────────────────────────────────────────────

    async def start(self) -> DuelSession:
        """
        Draw two combatants and begin the countdown.

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
        self.slot.claim(GameKind.DUEL)
        self.lobby.cancel_auto_start()

        left, right = self.rng.sample(active, 2)
        self.session = DuelSession(
            left_player=DuelPlayer.from_participant(left, "left"),
            right_player=DuelPlayer.from_participant(right, "right"),
            countdown_remaining=self.countdown_seconds,
        )
        for p in (left, right):
            await self.store.update_status(p.id, LobbyStatus.IN_GAME)

        logger.info(f"[duel] #{left.id} {left.username} vs #{right.id} {right.username}")
        await self.hub.broadcast(BroadcastEvent.DUEL_STARTED, {
            "leftPlayer": self.session.left_player.to_public(),
            "rightPlayer": self.session.right_player.to_public(),
        })
        # Combatants leave the visible waiting list
        await self.lobby.broadcast_roster()

        await self.hub.broadcast(
            BroadcastEvent.DUEL_COUNTDOWN, {"seconds": self.session.countdown_remaining}
        )
        self.timers.schedule(TimerRole.COUNTDOWN, self.tick_seconds, self._countdown_tick)
        return self.session

    async def _countdown_tick(self) -> None:
        if self.session is None or self.session.phase != DuelPhase.COUNTDOWN:
            return
        self.session.countdown_remaining -= 1
        if self.session.countdown_remaining <= 0:
            self.timers.cancel(TimerRole.COUNTDOWN)
            await self._reveal()
            return
        await self.hub.broadcast(
            BroadcastEvent.DUEL_COUNTDOWN, {"seconds": self.session.countdown_remaining}
        )
        self.timers.schedule(TimerRole.COUNTDOWN, self.tick_seconds, self._countdown_tick)

    async def _reveal(self) -> None:
        self.session.target_number = self.rng.randint(TARGET_MIN, TARGET_MAX)
        self.session.start_timestamp = self.clock()
        self.session.phase = DuelPhase.REVEALED
        logger.info(f"[duel] target revealed: {self.session.target_number}")
        await self.hub.broadcast(
            BroadcastEvent.DUEL_TARGET_REVEALED, {"number": self.session.target_number}
        )

    # ── Answers ────────────────────────────────────────────────────────────────

    async def answer(self, external_id: str, number: int) -> bool:
        """
        Handle a numeric message. Returns True only if it resolved the duel.
        Wrong numbers, non-combatants and late answers are silently ignored.
        """
        session = self.session
        if session is None or session.phase != DuelPhase.REVEALED:
            return False
        shooter = session.combatant(external_id)
        if shooter is None or not shooter.is_alive:
            return False
        if number != session.target_number:
            return False
        await self._resolve(shooter)
        return True

    async def _resolve(self, shooter: DuelPlayer) -> None:
        session = self.session
        # Claim the resolution before any await so a racing answer sees RESOLVED
        session.phase = DuelPhase.RESOLVED
        reaction_ms = int(round((self.clock() - session.start_timestamp) * 1000))
        victim = session.opponent_of(shooter)
        victim.is_alive = False

        for p in session.players:
            await self.store.update_status(p.id, LobbyStatus.ACTIVE)
        await self.store.record_result(shooter.id, won=True, reaction_time_ms=reaction_ms)
        await self.store.record_result(victim.id, won=False)

        logger.info(f"[duel] #{shooter.id} {shooter.username} wins in {reaction_ms}ms")
        await self.hub.broadcast(BroadcastEvent.DUEL_RESOLVED, {
            "shooter": shooter.to_public(),
            "victim": victim.to_public(),
            "reactionTimeMs": reaction_ms,
        })
        self.timers.schedule(
            TimerRole.RESULT_DISPLAY, self.result_display_seconds, self.finish
        )

    # ── Disconnection & teardown ──────────────────────────────────────────────

    def is_combatant(self, external_id: str) -> bool:
        return self.session is not None and self.session.combatant(external_id) is not None

    async def abort(self, external_id: str) -> bool:
        """
        A combatant left mid-duel: cancel without a winner, restore both
        combatants and reset the lobby. Returns False if they were not fighting.
        """
        if not self.is_combatant(external_id) or self.session.phase == DuelPhase.RESOLVED:
            return False
        logger.info(f"[duel] combatant {external_id} disconnected; duel cancelled")
        await self.finish()
        return True

    async def cancel(self) -> None:
        """Drop the duel, restoring combatants still marked in_game."""
        self.timers.cancel(TimerRole.COUNTDOWN)
        self.timers.cancel(TimerRole.RESULT_DISPLAY)
        session, self.session = self.session, None
        if session is not None and session.phase != DuelPhase.RESOLVED:
            for p in session.players:
                await self.store.update_status(p.id, LobbyStatus.ACTIVE)
        self.slot.release(GameKind.DUEL)

    async def finish(self) -> None:
        """Post-game reset: session destroyed, lobby reset, slot released."""
        await self.cancel()
        await self.lobby.reset_all()
        await self.hub.broadcast(BroadcastEvent.GAME_RESET, {})
        await self.lobby.maybe_auto_start()

    def snapshot(self) -> dict:
        s = self.session
        if s is None:
            return {"phase": None, "leftPlayer": None, "rightPlayer": None, "targetNumber": None}
        return {
            "phase": s.phase.value,
            "leftPlayer": s.left_player.to_public(),
            "rightPlayer": s.right_player.to_public(),
            "countdown": s.countdown_remaining if s.phase == DuelPhase.COUNTDOWN else None,
            "targetNumber": s.target_number,
        }
