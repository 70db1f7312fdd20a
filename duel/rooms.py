# duel/rooms.py
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from duel.constants import ROLES, ROLE_P1, opponent_role

REJECT_FULL = "full"


@dataclass
class Slot:
    connection_id: int
    user_id: str
    username: Optional[str] = None


@dataclass
class Room:
    room_id: str
    slots: Dict[str, Optional[Slot]] = field(default_factory=lambda: {role: None for role in ROLES})

    def roster(self) -> List[Dict[str, Any]]:
        """Ordered slot summaries: player1 first, empty slots as nulls."""
        out = []
        for role in ROLES:
            s = self.slots[role]
            out.append({
                "role": role,
                "userId": s.user_id if s else None,
                "username": s.username if s else None,
            })
        return out

    def occupants(self) -> List[int]:
        return [s.connection_id for s in self.slots.values() if s is not None]

    def role_of_connection(self, connection_id: int) -> Optional[str]:
        for role, s in self.slots.items():
            if s is not None and s.connection_id == connection_id:
                return role
        return None

    def role_of_user(self, user_id: str) -> Optional[str]:
        for role, s in self.slots.items():
            if s is not None and s.user_id == user_id:
                return role
        return None

    @property
    def is_empty(self) -> bool:
        return all(s is None for s in self.slots.values())


@dataclass
class JoinResult:
    room_id: str
    role: Optional[str] = None
    rejected: Optional[str] = None
    reconnected: bool = False
    # connection whose slot was taken over by this join, if it was a different one
    displaced: Optional[int] = None
    roster: List[Dict[str, Any]] = field(default_factory=list)
    # the room this connection left to make this join, if any
    left: Optional["LeaveResult"] = None

    @property
    def ok(self) -> bool:
        return self.role is not None


@dataclass
class LeaveResult:
    room_id: str
    role: str
    roster: List[Dict[str, Any]]
    room_closed: bool
    remaining: List[int]


class RoomRegistry:
    """
    Two-slot role registry keyed by room id.

    All mutations are plain synchronous calls; the relay server runs them on
    a single event loop, so a disconnect and a join racing for the same slot
    are applied in arrival order.
    """

    def __init__(self) -> None:
        self.rooms: Dict[str, Room] = {}
        self._membership: Dict[int, str] = {}  # connection id -> room id

    def __len__(self) -> int:
        return len(self.rooms)

    def get(self, room_id: str) -> Optional[Room]:
        return self.rooms.get(room_id)

    def room_of(self, connection_id: int) -> Optional[str]:
        return self._membership.get(connection_id)

    def role_of(self, connection_id: int) -> Optional[str]:
        room_id = self._membership.get(connection_id)
        room = self.rooms.get(room_id) if room_id is not None else None
        return room.role_of_connection(connection_id) if room else None

    def members(self, room_id: str) -> List[int]:
        room = self.rooms.get(room_id)
        return room.occupants() if room else []

    def join(self, room_id: str, connection_id: int, user_id: str,
             username: Optional[str] = None, preferred_role: str = ROLE_P1) -> JoinResult:
        room = self.rooms.get(room_id)
        created = room is None
        if room is None:
            room = Room(room_id)

        preferred = preferred_role if preferred_role in ROLES else ROLE_P1
        other = opponent_role(preferred)

        # A user (or connection) already seated here reclaims its own slot, so the
        # same userId never ends up holding both roles.
        held = room.role_of_user(user_id) or room.role_of_connection(connection_id)
        reconnected = held is not None
        if held is not None:
            role = held
        elif room.slots[preferred] is None:
            role = preferred
        elif room.slots[other] is None:
            role = other
        else:
            return JoinResult(room_id=room_id, rejected=REJECT_FULL, roster=room.roster())

        # A connection holds at most one slot: moving to another seat frees the old one
        current = room.role_of_connection(connection_id)
        if current is not None and current != role:
            room.slots[current] = None

        left = None
        previous = self._membership.get(connection_id)
        if previous is not None and previous != room_id:
            left = self.leave(connection_id)

        displaced = None
        old = room.slots[role]
        if old is not None and old.connection_id != connection_id:
            displaced = old.connection_id
            # The stale connection no longer owns anything; its disconnect becomes a no-op
            self._membership.pop(displaced, None)

        room.slots[role] = Slot(connection_id=connection_id, user_id=user_id, username=username)
        if created:
            self.rooms[room_id] = room
        self._membership[connection_id] = room_id
        return JoinResult(room_id=room_id, role=role, reconnected=reconnected,
                          displaced=displaced, roster=room.roster(), left=left)

    def leave(self, connection_id: int) -> Optional[LeaveResult]:
        """Release the slot held by ``connection_id``; drop the room once empty."""
        room_id = self._membership.pop(connection_id, None)
        if room_id is None:
            return None
        room = self.rooms.get(room_id)
        if room is None:
            return None
        role = room.role_of_connection(connection_id)
        if role is None:
            return None
        room.slots[role] = None
        closed = room.is_empty
        if closed:
            del self.rooms[room_id]
        return LeaveResult(room_id=room_id, role=role, roster=room.roster(),
                           room_closed=closed, remaining=room.occupants())
