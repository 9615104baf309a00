"""Tests for join handling, roster broadcasts and the auto-start debounce."""

import asyncio

import pytest

from conftest import eventually
from games.lobby import GameSlot, LobbyManager
from games.timers import TimerRegistry, TimerRole
from models.game import GameKind, LobbyStatus


@pytest.fixture()
def lock():
    return asyncio.Lock()


@pytest.fixture()
def lobby(store, hub, lock):
    return LobbyManager(store, hub, TimerRegistry(lock), GameSlot(), debounce_seconds=0.03)


class TestGameSlot:

    def test_claim_is_exclusive(self):
        slot = GameSlot()
        assert slot.claim(GameKind.DUEL)
        assert not slot.claim(GameKind.ELIMINATION)
        assert slot.active == GameKind.DUEL

    def test_release_only_by_owner(self):
        slot = GameSlot()
        slot.claim(GameKind.DUEL)
        slot.release(GameKind.ELIMINATION)
        assert slot.active == GameKind.DUEL
        slot.release(GameKind.DUEL)
        assert slot.is_free


class TestJoin:

    @pytest.mark.asyncio
    async def test_new_participant_is_created_active(self, lobby, store, viewer):
        p = await lobby.handle_join("ch-a", "Alice", "https://img/a.png")

        assert p.id == 1
        assert p.lobby_status == LobbyStatus.ACTIVE
        roster = viewer.of_type("roster-changed")[-1]["participants"]
        assert [r["username"] for r in roster] == ["Alice"]

    @pytest.mark.asyncio
    async def test_join_is_idempotent(self, lobby, store, viewer):
        await lobby.handle_join("ch-a", "Alice")
        again = await lobby.handle_join("ch-a", "Alice")

        assert again is None
        assert len(await store.list_active()) == 1
        assert len(viewer.of_type("roster-changed")) == 1

    @pytest.mark.asyncio
    async def test_duplicate_display_names_are_distinct_participants(self, lobby, store):
        a = await lobby.handle_join("ch-a", "Sam")
        b = await lobby.handle_join("ch-b", "Sam")
        assert a.id != b.id
        assert len(await store.list_active()) == 2

    @pytest.mark.asyncio
    async def test_eliminated_participant_rejoins(self, lobby, store):
        p = await lobby.handle_join("ch-a", "Alice")
        await store.update_status(p.id, LobbyStatus.ELIMINATED)

        rejoined = await lobby.handle_join("ch-a", "Alice")

        assert rejoined.id == p.id
        assert rejoined.lobby_status == LobbyStatus.ACTIVE

    @pytest.mark.asyncio
    async def test_eliminated_stays_out_while_round_is_live(self, lobby, store):
        p = await lobby.handle_join("ch-a", "Alice")
        await store.update_status(p.id, LobbyStatus.ELIMINATED)
        lobby.elimination_live = lambda: True

        assert await lobby.handle_join("ch-a", "Alice") is None
        assert (await store.get(p.id)).lobby_status == LobbyStatus.ELIMINATED

    @pytest.mark.asyncio
    async def test_in_game_participant_is_left_alone(self, lobby, store):
        p = await lobby.handle_join("ch-a", "Alice")
        await store.update_status(p.id, LobbyStatus.IN_GAME)

        assert await lobby.handle_join("ch-a", "Alice") is None
        assert (await store.get(p.id)).lobby_status == LobbyStatus.IN_GAME

    @pytest.mark.asyncio
    async def test_active_list_is_ordered_by_join_time(self, lobby):
        for ext in ("c", "a", "b"):
            await lobby.handle_join(ext, ext.upper())
        assert [p.external_id for p in await lobby.list_active()] == ["c", "a", "b"]


class TestAutoStart:

    @pytest.mark.asyncio
    async def test_burst_of_joins_starts_once(self, lobby):
        starts = []

        async def auto_start():
            starts.append(1)

        lobby.auto_start = auto_start
        for ext in ("a", "b", "c", "d"):
            await lobby.handle_join(ext, ext)
            await lobby.maybe_auto_start()
            await asyncio.sleep(0.005)

        await eventually(lambda: starts)
        await asyncio.sleep(0.05)
        assert starts == [1]

    @pytest.mark.asyncio
    async def test_steady_joins_do_not_postpone_start(self, lobby):
        starts = []

        async def auto_start():
            starts.append(1)

        lobby.auto_start = auto_start
        lobby.debounce_seconds = 0.1
        # One join every 60ms for well over a debounce window
        for i in range(20):
            await lobby.handle_join(f"ch-{i}", f"P{i}")
            await lobby.maybe_auto_start()
            await asyncio.sleep(0.06)

        assert len(starts) >= 1

    @pytest.mark.asyncio
    async def test_needs_two_active(self, lobby):
        lobby.auto_start = lambda: None
        await lobby.handle_join("a", "A")
        assert await lobby.maybe_auto_start() is False
        assert not lobby.timers.is_armed(TimerRole.AUTO_START_DEBOUNCE)

    @pytest.mark.asyncio
    async def test_disabled_without_policy(self, lobby):
        await lobby.handle_join("a", "A")
        await lobby.handle_join("b", "B")
        assert await lobby.maybe_auto_start() is False

    @pytest.mark.asyncio
    async def test_fire_rechecks_slot(self, lobby):
        starts = []

        async def auto_start():
            starts.append(1)

        lobby.auto_start = auto_start
        await lobby.handle_join("a", "A")
        await lobby.handle_join("b", "B")
        assert await lobby.maybe_auto_start()
        # A manual start wins the race during the debounce window
        lobby.slot.claim(GameKind.DUEL)

        await asyncio.sleep(0.08)
        assert starts == []


class TestResetAndClear:

    @pytest.mark.asyncio
    async def test_reset_all_restores_everyone(self, lobby, store):
        a = await lobby.handle_join("a", "A")
        b = await lobby.handle_join("b", "B")
        await store.update_status(a.id, LobbyStatus.ELIMINATED)
        await store.update_status(b.id, LobbyStatus.IN_GAME)

        await lobby.reset_all()
        await lobby.reset_all()

        assert {p.id for p in await store.list_active()} == {a.id, b.id}

    @pytest.mark.asyncio
    async def test_clear_all_wipes_roster(self, lobby, store, viewer):
        await lobby.handle_join("a", "A")
        await lobby.clear_all()

        assert await store.list_active() == []
        assert viewer.of_type("roster-changed")[-1]["participants"] == []
