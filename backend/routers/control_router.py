"""
Operator HTTP endpoints.

Routes:
  POST   /api/sync                                  — Resolve a stream and start polling its chat
  POST   /api/monitoring/stop                       — Stop polling (games keep running)
  POST   /api/game/start-duel                       — Start a duel now
  POST   /api/game/start-elimination                — Start an elimination round now
  POST   /api/game/reset                            — Cancel every game and timer, everyone back to active
  POST   /api/game/eliminate/{participant_id}       — Eliminate a participant from the live round
  GET    /api/participants                          — Active participants, oldest join first
  DELETE /api/participants                          — Wipe the roster
  POST   /api/participants/{external_id}/disconnect — A participant left the stream
  POST   /api/chat                                  — Inject a chat message (offline play)
  GET    /api/stats                                 — Monitoring + game summary

Refusals surface as OrchestratorError subclasses and are mapped to status
codes by the handler registered in main.py.
"""
import logging
import uuid

from fastapi import APIRouter, Depends

from games.orchestrator import Orchestrator, get_orchestrator
from models.commands import RawMessage
from models.game import ChatInjectRequest, SyncRequest

logger = logging.getLogger(__name__)

router = APIRouter(tags=["control"])


# ── Feed ───────────────────────────────────────────────────────────────────────

@router.post("/sync")
async def start_sync(body: SyncRequest, orch: Orchestrator = Depends(get_orchestrator)):
    """Resolve `url` (URL or bare video id) and start monitoring its live chat."""
    info = await orch.start_sync(body.url)
    return {
        "success": True,
        "videoId": info.video_id,
        "liveChatId": info.live_chat_id,
        "title": info.title,
        "thumbnailUrl": info.thumbnail_url,
    }


@router.post("/monitoring/stop")
async def stop_monitoring(orch: Orchestrator = Depends(get_orchestrator)):
    orch.stop_monitoring()
    return {"success": True}


# ── Games ──────────────────────────────────────────────────────────────────────

@router.post("/game/start-duel")
async def start_duel(orch: Orchestrator = Depends(get_orchestrator)):
    started = await orch.start_duel()
    return {"success": True, **started}


@router.post("/game/start-elimination")
async def start_elimination(orch: Orchestrator = Depends(get_orchestrator)):
    started = await orch.start_elimination()
    return {"success": True, **started}


@router.post("/game/reset")
async def reset_game(orch: Orchestrator = Depends(get_orchestrator)):
    await orch.reset()
    return {"success": True}


@router.post("/game/eliminate/{participant_id}")
async def eliminate_participant(participant_id: int, orch: Orchestrator = Depends(get_orchestrator)):
    await orch.eliminate(participant_id)
    return {"success": True, "participantId": participant_id}


# ── Roster ─────────────────────────────────────────────────────────────────────

@router.get("/participants")
async def list_participants(orch: Orchestrator = Depends(get_orchestrator)):
    active = await orch.list_active()
    return {"participants": [p.to_public() for p in active], "count": len(active)}


@router.delete("/participants")
async def clear_participants(orch: Orchestrator = Depends(get_orchestrator)):
    await orch.clear_roster()
    logger.info("Roster cleared by operator")
    return {"success": True}


@router.post("/participants/{external_id}/disconnect")
async def disconnect_participant(external_id: str, orch: Orchestrator = Depends(get_orchestrator)):
    outcome = await orch.disconnect(external_id)
    return {"success": True, "outcome": outcome}


# ── Chat injection & stats ────────────────────────────────────────────────────

@router.post("/chat")
async def inject_chat(body: ChatInjectRequest, orch: Orchestrator = Depends(get_orchestrator)):
    """
    Push a message through the same dedupe + interpret + dispatch path as
    the live feed. Re-sending the same `message_id` is a no-op.
    """
    message = RawMessage(
        id=body.message_id or f"local-{uuid.uuid4()}",
        author_external_id=body.external_id,
        author_name=body.username,
        author_avatar_url=body.avatar_url,
        text=body.text,
    )
    accepted = await orch.inject(message)
    return {"success": True, "accepted": accepted, "messageId": message.id}


@router.get("/stats")
async def get_stats(orch: Orchestrator = Depends(get_orchestrator)):
    return await orch.stats()
