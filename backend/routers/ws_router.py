"""
WebSocket hub endpoint for overlay viewers and operator dashboards.

URL: /ws/viewer?viewerId={viewer_id}

Connection flow:
  1. Accept connection and register with the broadcast hub
  2. Send private "snapshot" message with roster + current game state
  3. Message loop (_dispatch_message)
  4. On disconnect: unregister

Client → server message types handled here:
  ping               — keep-alive heartbeat → responds with "pong"
  admin_reset        — cancel every game and timer, everyone back to active
  admin_clear_queue  — wipe the roster
  start_duel         — start a duel now
  start_elimination  — start an elimination round now

Every game event is pushed to all viewers by the hub; these handlers only
reply privately on refusal.
"""
import json
import logging
import uuid
from typing import Optional

from fastapi import APIRouter, Depends, Query, WebSocket, WebSocketDisconnect

from games.errors import OrchestratorError
from games.orchestrator import Orchestrator, get_orchestrator

logger = logging.getLogger(__name__)

router = APIRouter(tags=["websocket"])


@router.websocket("/ws/viewer")
async def viewer_endpoint(
    ws: WebSocket,
    viewerId: Optional[str] = Query(None, description="Stable id; generated if omitted"),
    orch: Orchestrator = Depends(get_orchestrator),
):
    viewer_id = viewerId or str(uuid.uuid4())
    hub = orch.hub

    await hub.connect(viewer_id, ws)
    await hub.send_to(viewer_id, await orch.snapshot())

    # ── Message loop ───────────────────────────────────────────────────────────
    try:
        while True:
            raw = await ws.receive_text()
            try:
                data = json.loads(raw)
            except json.JSONDecodeError:
                await hub.send_to(viewer_id, {
                    "type": "error",
                    "message": "Invalid JSON",
                    "code": "PARSE_ERROR",
                })
                continue
            msg_type = data.get("type", "") if isinstance(data, dict) else ""
            await _handle_message(orch, viewer_id, msg_type)

    except WebSocketDisconnect:
        pass
    finally:
        hub.disconnect(viewer_id)
        logger.debug(f"[hub] viewer {viewer_id} disconnected ({hub.count()} left)")


# ── Message dispatcher ─────────────────────────────────────────────────────────

async def _handle_message(orch: Orchestrator, viewer_id: str, msg_type: str) -> None:
    try:
        await _dispatch_message(orch, viewer_id, msg_type)
    except OrchestratorError as exc:
        await orch.hub.send_to(viewer_id, {
            "type": "error",
            "message": exc.message,
            "code": type(exc).__name__,
        })
    except WebSocketDisconnect:
        raise
    except Exception:
        logger.exception("[hub] unhandled error for viewer %s (type=%s)", viewer_id, msg_type)
        await orch.hub.send_to(viewer_id, {
            "type": "error", "message": "Internal server error", "code": "SERVER_ERROR"
        })


async def _dispatch_message(orch: Orchestrator, viewer_id: str, msg_type: str) -> None:
    if msg_type == "ping":
        await orch.hub.send_to(viewer_id, {"type": "pong"})

    elif msg_type == "admin_reset":
        await orch.reset()

    elif msg_type == "admin_clear_queue":
        await orch.clear_roster()

    elif msg_type == "start_duel":
        await orch.start_duel()

    elif msg_type == "start_elimination":
        await orch.start_elimination()

    else:
        await orch.hub.send_to(viewer_id, {
            "type": "error",
            "message": f"Unknown message type: '{msg_type}'",
            "code": "UNKNOWN_TYPE",
        })
