"""End-to-end scenarios across pump, lobby and both games."""

import asyncio
import logging

import pytest

from conftest import FakeFeed, chat, eventually
from games.orchestrator import Orchestrator
from games.timers import TimerRole
from models.game import GameKind, LobbyStatus
from services.youtube_client import ChatPage


def build(store, hub, feed, fast_settings, **overrides):
    return Orchestrator(store, hub, feed, fast_settings.model_copy(update=overrides))


async def join_all(orch, *externals):
    for ext in externals:
        await orch.inject(chat(ext, "join"))


class TestChatFlow:

    @pytest.mark.asyncio
    async def test_joins_from_feed_auto_start_a_duel(self, store, hub, viewer, fast_settings):
        feed = FakeFeed([
            ChatPage(messages=[chat("a", "!join"), chat("b", "دخول"), chat("c", "hello")], next_page_token="t1"),
        ])
        orch = build(store, hub, feed, fast_settings, auto_start_game="duel")
        orch.pump.interval = 0.01

        await orch.start_sync("dQw4w9WgXcQ")
        await eventually(lambda: viewer.of_type("duel-started"))

        assert orch.slot.active == GameKind.DUEL
        assert len(viewer.of_type("duel-started")) == 1
        await orch.shutdown()
        assert feed.closed

    @pytest.mark.asyncio
    async def test_duplicate_message_id_processed_once(self, orch, store):
        msg = chat("a", "join")
        assert await orch.inject(msg) is True
        assert await orch.inject(msg) is False
        assert len(await store.list_active()) == 1

    @pytest.mark.asyncio
    async def test_numbers_without_a_game_are_ignored(self, orch, viewer):
        await join_all(orch, "a", "b")
        before = list(viewer.sent)
        await orch.inject(chat("a", "2"))
        assert viewer.sent == before

    @pytest.mark.asyncio
    async def test_chat_start_keyword(self, orch):
        await join_all(orch, "a", "b")
        await orch.inject(chat("a", "!bomb"))
        assert orch.slot.active == GameKind.ELIMINATION

    @pytest.mark.asyncio
    async def test_chat_start_refusal_is_logged_not_raised(self, orch, caplog):
        caplog.set_level(logging.INFO)
        await join_all(orch, "a")
        await orch.inject(chat("a", "!duel"))
        assert orch.slot.is_free
        assert "refused" in caplog.text

    @pytest.mark.asyncio
    async def test_chat_start_can_be_disabled(self, store, hub, feed, fast_settings):
        orch = build(store, hub, feed, fast_settings, allow_chat_start=False)
        await join_all(orch, "a", "b")
        await orch.inject(chat("a", "!duel"))
        assert orch.slot.is_free


class TestAutoStartPolicy:

    @pytest.mark.asyncio
    async def test_alternate_switches_games(self, store, hub, viewer, feed, fast_settings):
        orch = build(store, hub, feed, fast_settings, auto_start_game="alternate")
        await join_all(orch, "a", "b")
        await eventually(lambda: orch.slot.active == GameKind.DUEL)

        await orch.reset()
        await join_all(orch, "c")
        await eventually(lambda: orch.slot.active == GameKind.ELIMINATION)
        orch.timers.cancel_all()

    @pytest.mark.asyncio
    async def test_next_game_follows_post_game_reset(self, store, hub, viewer, feed, fast_settings):
        orch = build(store, hub, feed, fast_settings, auto_start_game="duel")
        await join_all(orch, "a", "b")
        await eventually(lambda: viewer.of_type("duel-target-revealed"))
        session = orch.duel.session
        await orch.inject(chat(session.left_player.external_id, str(session.target_number)))

        await eventually(lambda: len(viewer.of_type("duel-started")) == 2)
        assert viewer.types().index("game-reset") < len(viewer.types()) - 1
        orch.timers.cancel_all()

    @pytest.mark.asyncio
    async def test_busy_chat_still_auto_starts(self, store, hub, viewer, feed, fast_settings):
        orch = build(
            store, hub, feed, fast_settings,
            auto_start_game="duel", auto_start_debounce_seconds=0.1,
        )
        for i in range(20):
            await orch.inject(chat(f"ch-{i}", "join"))
            await asyncio.sleep(0.06)
            if orch.slot.active is not None:
                break

        assert orch.slot.active == GameKind.DUEL
        orch.timers.cancel_all()

    @pytest.mark.asyncio
    async def test_manual_reset_does_not_restart(self, store, hub, viewer, feed, fast_settings):
        orch = build(store, hub, feed, fast_settings, auto_start_game="duel")
        await join_all(orch, "a", "b")
        await eventually(lambda: orch.slot.active == GameKind.DUEL)

        await orch.reset()
        await asyncio.sleep(0.1)

        assert orch.slot.is_free
        assert not orch.timers.is_armed(TimerRole.AUTO_START_DEBOUNCE)


class TestOperatorControls:

    @pytest.mark.asyncio
    async def test_resync_cancels_running_game(self, orch, viewer, store, feed):
        feed.pages = [ChatPage(messages=[]) for _ in range(10)]
        await orch.start_sync("aaaaaaaaaaa")
        await join_all(orch, "a", "b")
        await orch.start_duel()

        info = await orch.start_sync("bbbbbbbbbbb")

        assert info.live_chat_id == "chat-bbbbbbbbbbb"
        assert orch.pump.live_chat_id == "chat-bbbbbbbbbbb"
        assert orch.slot.is_free
        assert "game-reset" in viewer.types()
        assert len(await store.list_active()) == 2

    @pytest.mark.asyncio
    async def test_stop_monitoring(self, orch):
        await orch.start_sync("aaaaaaaaaaa")
        orch.stop_monitoring()
        assert not orch.pump.is_running
        assert (await orch.stats())["isMonitoring"] is False

    @pytest.mark.asyncio
    async def test_clear_roster_ends_games(self, orch, store):
        await join_all(orch, "a", "b", "c")
        await orch.start_elimination()
        await orch.clear_roster()

        assert orch.slot.is_free
        assert not orch.elimination.is_active
        assert await store.list_active() == []

    @pytest.mark.asyncio
    async def test_disconnect_during_elimination_eliminates(self, orch, store):
        await join_all(orch, "a", "b", "c")
        await orch.start_elimination()
        holder = orch.elimination.session.holder_id
        leaver = next(p for p in await store.list_active() if p.id != holder)

        assert await orch.disconnect(leaver.external_id) == "eliminated"
        assert (await store.get(leaver.id)).lobby_status == LobbyStatus.ELIMINATED

    @pytest.mark.asyncio
    async def test_reconcile_restores_stale_in_game(self, orch, store):
        a = await store.create("a", "A")
        b = await store.create("b", "B")
        await store.update_status(a.id, LobbyStatus.IN_GAME)
        await store.update_status(b.id, LobbyStatus.ELIMINATED)

        assert await orch.reconcile() == 2
        assert {p.id for p in await store.list_active()} == {a.id, b.id}

    @pytest.mark.asyncio
    async def test_timer_failure_is_broadcast(self, orch, viewer):
        async def broken():
            raise RuntimeError("store unavailable")

        orch.timers.schedule(TimerRole.COUNTDOWN, 0, broken)
        await eventually(lambda: viewer.of_type("error"))
        assert "store unavailable" in viewer.of_type("error")[0]["message"]


class TestViews:

    @pytest.mark.asyncio
    async def test_snapshot_and_stats(self, orch, viewer):
        await join_all(orch, "a", "b", "c")
        await orch.start_duel()

        snap = await orch.snapshot()
        assert snap["type"] == "snapshot"
        assert snap["activeGame"] == "duel"
        assert len(snap["participants"]) == 1
        assert snap["duel"]["phase"] == "countdown"

        stats = await orch.stats()
        assert stats["waitingCount"] == 1
        assert stats["activeGame"] == "duel"
        assert stats["duel"]["left"] is not None
        assert stats["elimination"] == {"holderId": None, "seconds": None}
        assert stats["viewers"] == 1


class TestAnnouncements:

    @pytest.mark.asyncio
    async def test_duel_start_is_announced_in_chat(self, store, hub, fast_settings):
        feed = FakeFeed([ChatPage(messages=[]) for _ in range(50)], can_post=True)
        orch = build(store, hub, feed, fast_settings)
        await orch.start_sync("aaaaaaaaaaa")
        await join_all(orch, "a", "b")
        await orch.start_duel()

        await eventually(lambda: any("New duel" in t for t in feed.posted))
        await orch.shutdown()

    @pytest.mark.asyncio
    async def test_no_announcements_without_feed(self, store, hub, fast_settings):
        feed = FakeFeed(can_post=True)
        orch = build(store, hub, feed, fast_settings)
        await join_all(orch, "a", "b")
        await orch.start_duel()
        await asyncio.sleep(0.02)

        assert feed.posted == []
        orch.timers.cancel_all()

    @pytest.mark.asyncio
    async def test_join_is_announced_with_waiting_count(self, store, hub, fast_settings):
        feed = FakeFeed([ChatPage(messages=[]) for _ in range(50)], can_post=True)
        orch = build(store, hub, feed, fast_settings)
        await orch.start_sync("aaaaaaaaaaa")
        await orch.inject(chat("a", "join", name="Alice"))
        await orch.inject(chat("b", "join", name="Bob"))
        await orch.inject(chat("b", "join", name="Bob"))

        await eventually(lambda: "🎮 Bob joined the game! (2 waiting)" in feed.posted)
        assert sum("joined the game" in t for t in feed.posted) == 2
        await orch.shutdown()
