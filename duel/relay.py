"""Room-scoped fan-out of authority-protocol events."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, List

from duel import protocol
from duel.rooms import RoomRegistry


@dataclass(frozen=True)
class Delivery:
    connection_id: int
    message: Dict[str, Any]


class RelayBus:
    """
    Forwards a peer's event to the other occupant(s) of its room.

    The bus looks at ``type`` and ``roomId`` only: it renames the event and
    picks recipients, it never judges whether the payload makes sense for
    the game. Events that fail the shape check, or that name a room the
    sender does not occupy, are dropped without a reply.
    """

    def __init__(self, registry: RoomRegistry) -> None:
        self.registry = registry
        self.dropped = 0

    def route(self, sender: int, msg: Dict[str, Any]) -> List[Delivery]:
        payload = protocol.validate(msg)
        if payload is None or payload["type"] not in protocol.RELAYED_AS:
            self.dropped += 1
            return []

        kind = payload["type"]
        room_id = payload["roomId"]
        if self.registry.room_of(sender) != room_id:
            self.dropped += 1
            return []

        outgoing = protocol.relayed(kind, payload)
        echo = kind in protocol.ECHO_TO_SENDER
        return [
            Delivery(cid, dict(outgoing))
            for cid in self.registry.members(room_id)
            if echo or cid != sender
        ]
