from .channel import Channel, LoopbackChannel
from .events import ConnectionStatus, EventBus, EventType, Severity, queue_listener
from .heartbeat import HeartbeatMonitor
from .session import Role, Session
from .stream import StreamChannel

__all__ = [
    "Channel",
    "LoopbackChannel",
    "StreamChannel",
    "ConnectionStatus",
    "EventBus",
    "EventType",
    "Severity",
    "queue_listener",
    "HeartbeatMonitor",
    "Role",
    "Session",
]
