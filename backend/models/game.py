from pydantic import BaseModel, Field
from typing import Optional, List, Dict, Any, Literal
from enum import Enum
from datetime import datetime, timezone


def _utcnow() -> datetime:
    """Timezone-aware UTC datetime (replaces deprecated datetime.utcnow)."""
    return datetime.now(timezone.utc)


class LobbyStatus(str, Enum):
    ACTIVE = "active"          # waiting in the lobby, eligible for either game
    IN_GAME = "in_game"        # currently a duel combatant
    ELIMINATED = "eliminated"  # knocked out of the running elimination round


class GameKind(str, Enum):
    DUEL = "duel"
    ELIMINATION = "elimination"


class DuelPhase(str, Enum):
    COUNTDOWN = "countdown"
    REVEALED = "revealed"
    RESOLVED = "resolved"


class BroadcastEvent(str, Enum):
    ROSTER_CHANGED = "roster-changed"
    TOKEN_ASSIGNED = "elimination-token-assigned"
    TOKEN_TICK = "elimination-token-tick"
    PARTICIPANT_ELIMINATED = "participant-eliminated"
    ELIMINATION_WINNER = "elimination-winner"
    DUEL_STARTED = "duel-started"
    DUEL_COUNTDOWN = "duel-countdown"
    DUEL_TARGET_REVEALED = "duel-target-revealed"
    DUEL_RESOLVED = "duel-resolved"
    GAME_RESET = "game-reset"
    ERROR = "error"


class Participant(BaseModel):
    id: int
    external_id: str                 # YouTube channel id, the identity
    username: str                    # display name, collisions allowed
    avatar_url: Optional[str] = None
    lobby_status: LobbyStatus = LobbyStatus.ACTIVE
    wins: int = 0
    losses: int = 0
    total_games: int = 0
    avg_reaction_time: Optional[float] = None  # milliseconds, duel wins only
    reaction_samples: int = 0
    joined_at: datetime = Field(default_factory=_utcnow)

    def to_public(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "externalId": self.external_id,
            "username": self.username,
            "avatarUrl": self.avatar_url,
            "lobbyStatus": self.lobby_status.value,
            "wins": self.wins,
            "losses": self.losses,
            "totalGames": self.total_games,
            "avgReactionTime": self.avg_reaction_time,
        }


class DuelPlayer(BaseModel):
    """Snapshot of a participant taken when a duel starts."""
    id: int
    external_id: str
    username: str
    avatar_url: Optional[str] = None
    position: Literal["left", "right"]
    is_alive: bool = True

    @classmethod
    def from_participant(cls, p: Participant, position: str) -> "DuelPlayer":
        return cls(
            id=p.id,
            external_id=p.external_id,
            username=p.username,
            avatar_url=p.avatar_url,
            position=position,
        )

    def to_public(self) -> Dict[str, Any]:
        # Overlays never see external_id
        return {
            "id": self.id,
            "username": self.username,
            "avatarUrl": self.avatar_url,
            "position": self.position,
            "isAlive": self.is_alive,
        }


class EliminationSession(BaseModel):
    holder_id: int
    remaining_seconds: int


class DuelSession(BaseModel):
    left_player: DuelPlayer
    right_player: DuelPlayer
    phase: DuelPhase = DuelPhase.COUNTDOWN
    countdown_remaining: int = 0
    target_number: Optional[int] = None
    start_timestamp: Optional[float] = None  # monotonic clock at reveal

    @property
    def players(self) -> List[DuelPlayer]:
        return [self.left_player, self.right_player]

    def combatant(self, external_id: str) -> Optional[DuelPlayer]:
        for p in self.players:
            if p.external_id == external_id:
                return p
        return None

    def opponent_of(self, player: DuelPlayer) -> DuelPlayer:
        return self.right_player if player.id == self.left_player.id else self.left_player


# ── Feed metadata ─────────────────────────────────────────────────────────────

class FeedInfo(BaseModel):
    video_id: str
    live_chat_id: str
    title: str = ""
    thumbnail_url: Optional[str] = None


# ── HTTP request/response models ──────────────────────────────────────────────

class SyncRequest(BaseModel):
    url: str


class ChatInjectRequest(BaseModel):
    external_id: str
    username: str
    text: str
    avatar_url: Optional[str] = None
    message_id: Optional[str] = None
