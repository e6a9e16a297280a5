from .participants import mark_offline, resolve_participant, toggle_progress, touch_last_seen
from .sessions import SessionService, generate_session_code

__all__ = [
    "SessionService",
    "generate_session_code",
    "mark_offline",
    "resolve_participant",
    "toggle_progress",
    "touch_last_seen",
]
