"""
Error taxonomy for the orchestrator.

Every error carries the HTTP status the control surface answers with, so
main.py can map all of them through one exception handler.
"""


class OrchestratorError(Exception):
    """Base class for every refusal or failure the orchestrator reports."""
    status_code = 500

    def __init__(self, message: str = ""):
        self.message = message or self.__class__.__name__
        super().__init__(self.message)


# ── Feed errors ───────────────────────────────────────────────────────────────

class TransientFeedError(OrchestratorError):
    """Network failure, quota or rate limit. Skip the cycle, retry next tick."""
    status_code = 502


class FeedClosed(OrchestratorError):
    """The live chat ended or was disabled. Polling stops."""
    status_code = 410


# ── Caller errors ─────────────────────────────────────────────────────────────

class InvalidInput(OrchestratorError):
    """Malformed request. Rejected before any state is touched."""
    status_code = 400


class InvalidTarget(InvalidInput):
    """The sync target does not resolve to a stream."""
    def __init__(self, target: str, reason: str = "Stream not found"):
        self.target = target
        super().__init__(f"{reason}: {target!r}")


class NoActiveFeed(OrchestratorError):
    """The stream exists but has no live chat."""
    status_code = 409

    def __init__(self, video_id: str):
        self.video_id = video_id
        super().__init__(f"Video {video_id} is not live or has no chat")


class PreconditionFailed(OrchestratorError):
    """Valid request refused in the current state (game running, too few players)."""
    status_code = 409


class NotFound(OrchestratorError):
    status_code = 404
