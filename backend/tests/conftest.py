import asyncio
import itertools
import os
import sys
from typing import Any, Dict, List, Optional

import pytest
import pytest_asyncio

# Ensure the backend root (containing config.py, games/, services/) is on sys.path
CURRENT_DIR = os.path.dirname(__file__)
BACKEND_ROOT = os.path.abspath(os.path.join(CURRENT_DIR, '..'))
if BACKEND_ROOT not in sys.path:
    sys.path.insert(0, BACKEND_ROOT)

from config import Settings
from games.errors import FeedClosed
from games.orchestrator import Orchestrator
from models.commands import RawMessage
from models.game import FeedInfo
from services.broadcast import BroadcastHub
from services.roster_store import InMemoryRosterStore
from services.youtube_client import ChatPage


class RecordingSocket:
    """Stands in for a viewer WebSocket; keeps every message it was sent."""

    def __init__(self):
        self.sent: List[Dict[str, Any]] = []

    async def accept(self):
        pass

    async def send_json(self, message):
        self.sent.append(message)

    def types(self) -> List[str]:
        return [m["type"] for m in self.sent]

    def of_type(self, name: str) -> List[Dict[str, Any]]:
        return [m for m in self.sent if m["type"] == name]


class FakeFeed:
    """Scripted chat feed: each fetch pops the next page (or raises it)."""

    def __init__(self, pages=None, can_post=False):
        self.pages = list(pages or [])
        self.fetch_calls: List[Optional[str]] = []
        self.posted: List[str] = []
        self.can_post = can_post
        self.closed = False

    async def resolve(self, target: str) -> FeedInfo:
        return FeedInfo(video_id=target, live_chat_id=f"chat-{target}", title="Test stream")

    async def fetch_page(self, live_chat_id: str, page_token: Optional[str] = None) -> ChatPage:
        self.fetch_calls.append(page_token)
        if not self.pages:
            raise FeedClosed("Live chat closed (liveChatEnded)")
        page = self.pages.pop(0)
        if isinstance(page, Exception):
            raise page
        return page

    async def post_message(self, live_chat_id: str, text: str) -> bool:
        self.posted.append(text)
        return True

    async def aclose(self) -> None:
        self.closed = True


_message_ids = itertools.count(1)


def chat(author: str, text: str, name: Optional[str] = None) -> RawMessage:
    return RawMessage(
        id=f"m{next(_message_ids)}",
        author_external_id=author,
        author_name=name or author.title(),
        text=text,
    )


async def eventually(predicate, timeout: float = 2.0) -> None:
    """Poll `predicate` until it holds; timers run on the real event loop."""
    deadline = asyncio.get_running_loop().time() + timeout
    while not predicate():
        if asyncio.get_running_loop().time() > deadline:
            raise AssertionError("condition not met before timeout")
        await asyncio.sleep(0.005)


@pytest.fixture()
def fast_settings():
    return Settings(
        roster_backend="memory",
        youtube_api_key="test-key",
        auto_start_game="off",
        auto_start_debounce_seconds=0.03,
        tick_seconds=0.01,
        duel_countdown_seconds=5,
        duel_result_display_seconds=0.03,
        elimination_token_seconds=3,
        elimination_reset_delay_seconds=0.03,
    )


@pytest.fixture()
def store():
    return InMemoryRosterStore()


@pytest.fixture()
def viewer():
    return RecordingSocket()


@pytest_asyncio.fixture()
async def hub(viewer):
    h = BroadcastHub()
    await h.connect("viewer-1", viewer)
    return h


@pytest.fixture()
def feed():
    return FakeFeed()


@pytest_asyncio.fixture()
async def orch(store, hub, feed, fast_settings):
    o = Orchestrator(store, hub, feed, fast_settings)
    yield o
    o.pump.stop()
    o.timers.cancel_all()
    await asyncio.sleep(0)
