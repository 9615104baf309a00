import asyncio
import itertools
import os
from abc import ABC, abstractmethod
from typing import Optional, List, Dict, Any

from models.game import Participant, LobbyStatus, _utcnow
from config import settings

_BATCH_LIMIT = 450


class RosterStore(ABC):
    """
    Narrow persistence contract for the participant roster.
    The orchestrator writes through on every transition and treats the store
    as read-your-writes consistent within this process.
    """

    @abstractmethod
    async def get(self, participant_id: int) -> Optional[Participant]: ...

    @abstractmethod
    async def get_by_external_id(self, external_id: str) -> Optional[Participant]: ...

    @abstractmethod
    async def get_by_username(self, username: str) -> Optional[Participant]: ...

    @abstractmethod
    async def create(
        self, external_id: str, username: str, avatar_url: Optional[str] = None
    ) -> Participant: ...

    @abstractmethod
    async def update_status(
        self, participant_id: int, status: LobbyStatus
    ) -> Optional[Participant]: ...

    @abstractmethod
    async def list_by_status(self, status: LobbyStatus) -> List[Participant]:
        """Participants with the given status, oldest join first."""

    @abstractmethod
    async def reset_all(self) -> None: ...

    @abstractmethod
    async def delete_all(self) -> None: ...

    @abstractmethod
    async def record_result(
        self, participant_id: int, won: bool, reaction_time_ms: Optional[int] = None
    ) -> Optional[Participant]: ...

    async def list_active(self) -> List[Participant]:
        return await self.list_by_status(LobbyStatus.ACTIVE)


def apply_result(
    p: Participant, won: bool, reaction_time_ms: Optional[int]
) -> Dict[str, Any]:
    """Compute the aggregate-stat updates for one finished game."""
    updates: Dict[str, Any] = {
        "wins": p.wins + (1 if won else 0),
        "losses": p.losses + (0 if won else 1),
        "total_games": p.total_games + 1,
    }
    if reaction_time_ms is not None:
        n = p.reaction_samples
        prev = p.avg_reaction_time or 0.0
        updates["avg_reaction_time"] = (prev * n + reaction_time_ms) / (n + 1)
        updates["reaction_samples"] = n + 1
    return updates


class InMemoryRosterStore(RosterStore):
    """Process-local roster. Used for offline play and in tests."""

    def __init__(self):
        self._rows: Dict[int, Participant] = {}
        self._ids = itertools.count(1)

    async def get(self, participant_id: int) -> Optional[Participant]:
        p = self._rows.get(participant_id)
        return p.model_copy() if p else None

    async def get_by_external_id(self, external_id: str) -> Optional[Participant]:
        for p in self._rows.values():
            if p.external_id == external_id:
                return p.model_copy()
        return None

    async def get_by_username(self, username: str) -> Optional[Participant]:
        for p in self._rows.values():
            if p.username == username:
                return p.model_copy()
        return None

    async def create(
        self, external_id: str, username: str, avatar_url: Optional[str] = None
    ) -> Participant:
        existing = await self.get_by_external_id(external_id)
        if existing:
            return existing
        p = Participant(
            id=next(self._ids),
            external_id=external_id,
            username=username,
            avatar_url=avatar_url,
        )
        self._rows[p.id] = p
        return p.model_copy()

    async def update_status(
        self, participant_id: int, status: LobbyStatus
    ) -> Optional[Participant]:
        p = self._rows.get(participant_id)
        if not p:
            return None
        p.lobby_status = status
        return p.model_copy()

    async def list_by_status(self, status: LobbyStatus) -> List[Participant]:
        rows = [p for p in self._rows.values() if p.lobby_status == status]
        return [p.model_copy() for p in sorted(rows, key=lambda p: (p.joined_at, p.id))]

    async def reset_all(self) -> None:
        for p in self._rows.values():
            p.lobby_status = LobbyStatus.ACTIVE

    async def delete_all(self) -> None:
        self._rows.clear()

    async def record_result(
        self, participant_id: int, won: bool, reaction_time_ms: Optional[int] = None
    ) -> Optional[Participant]:
        p = self._rows.get(participant_id)
        if not p:
            return None
        for key, value in apply_result(p, won, reaction_time_ms).items():
            setattr(p, key, value)
        return p.model_copy()


class FirestoreRosterStore(RosterStore):
    """
    Firestore-backed roster using run_in_executor to avoid blocking the
    event loop. Documents live in `participants/{id}`; integer ids come from
    a transactional counter in `meta/participant_counter` so overlays can
    label seats with short numbers.
    """

    def __init__(self):
        if settings.firestore_emulator_host:
            os.environ["FIRESTORE_EMULATOR_HOST"] = settings.firestore_emulator_host
        # Lazy import so the service can be instantiated before GCP creds exist
        from google.cloud import firestore
        self._firestore = firestore
        self.db = firestore.Client(project=settings.google_cloud_project or None)

    def _run(self, fn):
        """Run a sync Firestore call in the default thread pool."""
        loop = asyncio.get_running_loop()
        return loop.run_in_executor(None, fn)

    # ── Collection helpers ────────────────────────────────────────────────────

    def _participants_ref(self):
        return self.db.collection("participants")

    def _participant_ref(self, participant_id: int):
        return self._participants_ref().document(str(participant_id))

    def _counter_ref(self):
        return self.db.collection("meta").document("participant_counter")

    @staticmethod
    def _to_participant(doc) -> Participant:
        return Participant(**doc.to_dict())

    def _next_id(self) -> int:
        firestore = self._firestore
        counter = self._counter_ref()

        @firestore.transactional
        def _increment(transaction) -> int:
            snap = counter.get(transaction=transaction)
            current = (snap.to_dict() or {}).get("next", 0) if snap.exists else 0
            transaction.set(counter, {"next": current + 1})
            return current + 1

        return _increment(self.db.transaction())

    def _first(self, field: str, value: Any) -> Optional[Participant]:
        docs = list(self._participants_ref().where(field, "==", value).limit(1).stream())
        return self._to_participant(docs[0]) if docs else None

    # ── Reads ─────────────────────────────────────────────────────────────────

    async def get(self, participant_id: int) -> Optional[Participant]:
        doc = await self._run(lambda: self._participant_ref(participant_id).get())
        if doc.exists:
            return self._to_participant(doc)
        return None

    async def get_by_external_id(self, external_id: str) -> Optional[Participant]:
        return await self._run(lambda: self._first("external_id", external_id))

    async def get_by_username(self, username: str) -> Optional[Participant]:
        return await self._run(lambda: self._first("username", username))

    async def list_by_status(self, status: LobbyStatus) -> List[Participant]:
        docs = await self._run(
            lambda: list(
                self._participants_ref().where("lobby_status", "==", status.value).stream()
            )
        )
        rows = [self._to_participant(d) for d in docs]
        # Sorted client-side: ordering server-side needs a composite index
        return sorted(rows, key=lambda p: (p.joined_at, p.id))

    # ── Writes ────────────────────────────────────────────────────────────────

    async def create(
        self, external_id: str, username: str, avatar_url: Optional[str] = None
    ) -> Participant:
        existing = await self.get_by_external_id(external_id)
        if existing:
            return existing
        new_id = await self._run(self._next_id)
        p = Participant(
            id=new_id,
            external_id=external_id,
            username=username,
            avatar_url=avatar_url,
            joined_at=_utcnow(),
        )
        data = p.model_dump(mode="json")
        await self._run(lambda: self._participant_ref(new_id).set(data))
        return p

    async def update_status(
        self, participant_id: int, status: LobbyStatus
    ) -> Optional[Participant]:
        ref = self._participant_ref(participant_id)
        doc = await self._run(ref.get)
        if not doc.exists:
            return None
        await self._run(lambda: ref.update({"lobby_status": status.value}))
        p = self._to_participant(doc)
        p.lobby_status = status
        return p

    def _commit_in_batches(self, refs, op) -> None:
        # Firestore caps a batched write at 500 operations
        batch, pending = self.db.batch(), 0
        for ref in refs:
            op(batch, ref)
            pending += 1
            if pending == _BATCH_LIMIT:
                batch.commit()
                batch, pending = self.db.batch(), 0
        if pending:
            batch.commit()

    async def reset_all(self) -> None:
        def _reset():
            refs = [
                d.reference for d in self._participants_ref().stream()
                if (d.to_dict() or {}).get("lobby_status") != LobbyStatus.ACTIVE.value
            ]
            self._commit_in_batches(
                refs, lambda b, r: b.update(r, {"lobby_status": LobbyStatus.ACTIVE.value})
            )
        await self._run(_reset)

    async def delete_all(self) -> None:
        def _delete():
            refs = [d.reference for d in self._participants_ref().stream()]
            refs.append(self._counter_ref())
            self._commit_in_batches(refs, lambda b, r: b.delete(r))
        await self._run(_delete)

    async def record_result(
        self, participant_id: int, won: bool, reaction_time_ms: Optional[int] = None
    ) -> Optional[Participant]:
        p = await self.get(participant_id)
        if not p:
            return None
        updates = apply_result(p, won, reaction_time_ms)
        await self._run(lambda: self._participant_ref(participant_id).update(updates))
        return p.model_copy(update=updates)


_roster_store: Optional[RosterStore] = None


def get_roster_store() -> RosterStore:
    """Lazy singleton — initialised on first call, not at import time.
    This prevents credential errors from crashing the app before FastAPI boots.
    """
    global _roster_store
    if _roster_store is None:
        if settings.roster_backend == "memory":
            _roster_store = InMemoryRosterStore()
        else:
            _roster_store = FirestoreRosterStore()
    return _roster_store
