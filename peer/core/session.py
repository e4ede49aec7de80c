from __future__ import annotations

import time
from dataclasses import dataclass, field
from enum import StrEnum

from shared.utils.common import generate_session_id

from .channel import Channel


class Role(StrEnum):
    INITIATOR = "initiator"  # created the room
    RESPONDER = "responder"  # joined it


@dataclass
class Session:
    """Holds the state of the one live peer relationship."""

    role: Role
    channel: Channel
    session_id: str = field(default_factory=lambda: generate_session_id("session"))
    created_at: float = field(default_factory=time.time)
    active: bool = True

    @property
    def is_open(self) -> bool:
        return self.active and self.channel.is_open

    @property
    def age(self) -> float:
        return time.time() - self.created_at


__all__ = ["Role", "Session"]
