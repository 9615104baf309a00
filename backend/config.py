from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict
from typing import Optional, List, Literal, Dict


# Polling cadence (seconds) per aggressiveness level. YouTube charges quota per
# liveChatMessages.list call, so "high" is only sensible for short streams.
POLL_INTERVALS: Dict[str, float] = {
    "low": 20.0,
    "normal": 8.0,
    "high": 3.0,
}


class Settings(BaseSettings):
    google_cloud_project: str = ""
    firestore_emulator_host: Optional[str] = None
    roster_backend: Literal["firestore", "memory"] = "firestore"

    # ── Live chat feed ────────────────────────────────────────────────────────
    youtube_api_key: str = ""
    youtube_oauth_token: Optional[str] = None  # enables chat announcements
    youtube_api_base: str = "https://www.googleapis.com/youtube/v3"
    feed_timeout_seconds: float = 10.0
    poll_aggressiveness: Literal["low", "normal", "high"] = "normal"
    fingerprint_cache_size: int = Field(default=1000, ge=10)

    # ── Game timing ───────────────────────────────────────────────────────────
    auto_start_game: Literal["duel", "elimination", "alternate", "off"] = "duel"
    auto_start_debounce_seconds: float = Field(default=3.0, ge=0)
    tick_seconds: float = Field(default=1.0, gt=0)
    duel_countdown_seconds: int = Field(default=10, ge=5, le=10)
    duel_result_display_seconds: float = Field(default=5.0, ge=0)
    elimination_token_seconds: int = Field(default=30, ge=1)
    elimination_reset_delay_seconds: float = Field(default=8.0, ge=0)
    allow_chat_start: bool = True

    # CORS origins: set ALLOWED_ORIGINS env var for production (JSON list)
    allowed_origins: List[str] = [
        "http://localhost:5173",
        "http://localhost:3000",
        "http://127.0.0.1:5173",
    ]
    debug: bool = False

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_ignore_empty=True,
    )

    @property
    def poll_interval(self) -> float:
        return POLL_INTERVALS[self.poll_aggressiveness]


settings = Settings()
