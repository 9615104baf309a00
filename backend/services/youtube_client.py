"""
YouTube Data API v3 client — the live chat feed behind the ingestion pump.

Only three calls are used:
  GET  videos?part=snippet,liveStreamingDetails   — resolve a video to its live chat
  GET  liveChat/messages                          — one page of chat since a page token
  POST liveChat/messages                          — optional announcements (needs OAuth)

Reads authenticate with an API key. Posting needs a user OAuth bearer token;
without one, announcements are skipped.
"""
from __future__ import annotations

import logging
import re
from datetime import datetime
from typing import List, Optional

import httpx
from pydantic import BaseModel

from config import settings
from games.errors import FeedClosed, InvalidTarget, NoActiveFeed, TransientFeedError
from models.commands import RawMessage
from models.game import FeedInfo

logger = logging.getLogger(__name__)

_VIDEO_ID_RE = re.compile(r"^[A-Za-z0-9_-]{11}$")
_VIDEO_URL_RE = re.compile(
    r"(?:youtube\.com/(?:[^/]+/.+/|(?:v|e(?:mbed)?|live|shorts)/|.*[?&]v=)|youtu\.be/)"
    r"([A-Za-z0-9_-]{11})"
)

# Error reasons from the API that mean the chat is gone for good.
_CLOSED_REASONS = {"liveChatEnded", "liveChatNotFound", "liveChatDisabled"}


class ChatPage(BaseModel):
    messages: List[RawMessage]
    next_page_token: Optional[str] = None
    polling_interval_ms: Optional[int] = None


def extract_video_id(target: str) -> str:
    """
    Accept a bare 11-character video id or any common YouTube URL form:
    watch?v=, youtu.be/, /live/, /embed/, /v/, /shorts/.

    Raises:
        InvalidTarget: if no video id can be found
    """
    candidate = (target or "").strip()
    if _VIDEO_ID_RE.match(candidate):
        return candidate
    match = _VIDEO_URL_RE.search(candidate)
    if match:
        return match.group(1)
    raise InvalidTarget(candidate, "Invalid YouTube URL or video id")


def _error_reason(response: httpx.Response) -> str:
    try:
        errors = response.json().get("error", {}).get("errors", [])
    except ValueError:
        return ""
    return errors[0].get("reason", "") if errors else ""


def _parse_message(item: dict) -> Optional[RawMessage]:
    snippet = item.get("snippet") or {}
    author = item.get("authorDetails") or {}
    if not item.get("id") or not author.get("channelId"):
        return None
    published = snippet.get("publishedAt")
    return RawMessage(
        id=item["id"],
        author_external_id=author["channelId"],
        author_name=author.get("displayName") or "Unknown",
        author_avatar_url=author.get("profileImageUrl"),
        text=(snippet.get("displayMessage") or "").strip(),
        published_at=datetime.fromisoformat(published.replace("Z", "+00:00")) if published else None,
    )


class YouTubeChatClient:
    """
    Thin async wrapper over the REST API. A shared httpx.AsyncClient is kept
    for connection reuse; pass `client` to inject a transport in tests.
    """

    def __init__(
        self,
        api_key: Optional[str] = None,
        oauth_token: Optional[str] = None,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.api_key = api_key if api_key is not None else settings.youtube_api_key
        self.oauth_token = oauth_token if oauth_token is not None else settings.youtube_oauth_token
        self._client = client or httpx.AsyncClient(
            base_url=settings.youtube_api_base,
            timeout=settings.feed_timeout_seconds,
        )

    @property
    def can_post(self) -> bool:
        return bool(self.oauth_token)

    async def aclose(self) -> None:
        await self._client.aclose()

    async def resolve(self, target: str) -> FeedInfo:
        """
        Resolve a URL or video id to its live chat.

        Raises:
            InvalidTarget: malformed target or no such video
            NoActiveFeed: the video exists but has no active live chat
            TransientFeedError: network or quota failure
        """
        video_id = extract_video_id(target)
        try:
            response = await self._client.get(
                "/videos",
                params={
                    "part": "snippet,liveStreamingDetails",
                    "id": video_id,
                    "key": self.api_key,
                },
            )
        except httpx.HTTPError as exc:
            raise TransientFeedError(f"Video lookup failed: {exc}") from exc

        if response.status_code != 200:
            raise TransientFeedError(
                f"Video lookup returned HTTP {response.status_code} ({_error_reason(response) or 'unknown'})"
            )

        items = response.json().get("items") or []
        if not items:
            raise InvalidTarget(video_id)

        video = items[0]
        live_chat_id = (video.get("liveStreamingDetails") or {}).get("activeLiveChatId")
        if not live_chat_id:
            raise NoActiveFeed(video_id)

        snippet = video.get("snippet") or {}
        thumbnails = snippet.get("thumbnails") or {}
        thumb = (thumbnails.get("high") or thumbnails.get("default") or {}).get("url")
        return FeedInfo(
            video_id=video_id,
            live_chat_id=live_chat_id,
            title=snippet.get("title", ""),
            thumbnail_url=thumb,
        )

    async def fetch_page(self, live_chat_id: str, page_token: Optional[str] = None) -> ChatPage:
        """
        Fetch the next page of chat since `page_token`.

        Raises:
            TransientFeedError: network error, quota, rate limit, 5xx
            FeedClosed: the chat ended or was disabled
        """
        params = {
            "liveChatId": live_chat_id,
            "part": "snippet,authorDetails",
            "maxResults": 200,
            "key": self.api_key,
        }
        if page_token:
            params["pageToken"] = page_token
        try:
            response = await self._client.get("/liveChat/messages", params=params)
        except httpx.HTTPError as exc:
            raise TransientFeedError(f"Chat fetch failed: {exc}") from exc

        if response.status_code != 200:
            reason = _error_reason(response)
            if reason in _CLOSED_REASONS:
                raise FeedClosed(f"Live chat closed ({reason})")
            raise TransientFeedError(
                f"Chat fetch returned HTTP {response.status_code} ({reason or 'unknown'})"
            )

        data = response.json()
        messages = []
        for item in data.get("items") or []:
            # Only plain text messages can carry commands
            if (item.get("snippet") or {}).get("type", "textMessageEvent") != "textMessageEvent":
                continue
            msg = _parse_message(item)
            if msg is not None:
                messages.append(msg)
        return ChatPage(
            messages=messages,
            next_page_token=data.get("nextPageToken"),
            polling_interval_ms=data.get("pollingIntervalMillis"),
        )

    async def post_message(self, live_chat_id: str, text: str) -> bool:
        """Post a line into the live chat. Returns False (and logs) on any failure."""
        if not self.oauth_token:
            return False
        try:
            response = await self._client.post(
                "/liveChat/messages",
                params={"part": "snippet"},
                headers={"Authorization": f"Bearer {self.oauth_token}"},
                json={
                    "snippet": {
                        "liveChatId": live_chat_id,
                        "type": "textMessageEvent",
                        "textMessageDetails": {"messageText": text[:200]},
                    }
                },
            )
        except httpx.HTTPError as exc:
            logger.warning("[youtube] post_message failed: %s", exc)
            return False
        if response.status_code >= 300:
            logger.warning(
                "[youtube] post_message HTTP %s (%s)",
                response.status_code, _error_reason(response) or "unknown",
            )
            return False
        return True
