"""Logical events produced by command handlers.

The engine never talks to the transport; it returns events tagged with an
audience and the Socket.IO layer fans them out.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict


class Audience(str, Enum):
    ROOM = 'room'
    PLAYER = 'player'


@dataclass(frozen=True)
class Event:
    name: str
    payload: Dict[str, Any] = field(default_factory=dict)
    audience: Audience = Audience.ROOM
    target: str = ''  # room code or player identity

    @property
    def to_room(self) -> bool:
        return self.audience is Audience.ROOM


def room_event(code: str, name: str, **payload: Any) -> Event:
    return Event(name=name, payload=payload, audience=Audience.ROOM, target=code)


def player_event(identity: str, name: str, **payload: Any) -> Event:
    return Event(name=name, payload=payload, audience=Audience.PLAYER, target=identity)
