from .channels import ChannelHandle, ChannelManager, ChannelState
from .fetcher import Fetcher
from .health import HealthCheckLoop
from .heartbeat import Heartbeat
from .live_session import Attachment, LiveSession
from .polling import PollingFallbackController
from .projection import ProjectionStore
from .reconnect import GroupState, ReconnectionSupervisor, backoff_delay_ms
from .registry import AttachmentRegistry
from .scope import SyncRole, SyncScope
from .summary import participant_completion, present_participants, task_completion

__all__ = [
    "Attachment",
    "AttachmentRegistry",
    "ChannelHandle",
    "ChannelManager",
    "ChannelState",
    "Fetcher",
    "GroupState",
    "HealthCheckLoop",
    "Heartbeat",
    "LiveSession",
    "PollingFallbackController",
    "ProjectionStore",
    "ReconnectionSupervisor",
    "SyncRole",
    "SyncScope",
    "backoff_delay_ms",
    "participant_completion",
    "present_participants",
    "task_completion",
]
