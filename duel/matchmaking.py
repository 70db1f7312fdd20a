# duel/matchmaking.py
import random
import string
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional

from duel import protocol
from duel.constants import ROLE_P1, ROLE_P2


@dataclass
class QueueEntry:
    connection_id: int
    user_id: str
    username: Optional[str]
    joined_at: float


@dataclass(frozen=True)
class Notice:
    connection_id: int
    message: Dict[str, Any]


_ALPHABET = string.ascii_lowercase + string.digits


def new_room_id(now_fn: Callable[[], float] = time.time, rng: Optional[random.Random] = None) -> str:
    rng = rng or random
    token = "".join(rng.choice(_ALPHABET) for _ in range(9))
    return f"room_{int(now_fn() * 1000)}_{token}"


def _status(status: str, message: str, **extra: Any) -> Dict[str, Any]:
    out = {"type": protocol.MATCHMAKING_STATUS, "status": status, "message": message}
    out.update(extra)
    return out


class MatchmakingQueue:
    """FIFO pairing of waiting users into fresh room ids."""

    def __init__(self, room_id_factory: Callable[[], str] = new_room_id,
                 now_fn: Callable[[], float] = time.time) -> None:
        self._queue: List[QueueEntry] = []
        self._room_id_factory = room_id_factory
        self._now = now_fn

    def __len__(self) -> int:
        return len(self._queue)

    def __contains__(self, user_id: str) -> bool:
        return any(e.user_id == user_id for e in self._queue)

    def join(self, connection_id: int, user_id: str, username: Optional[str] = None) -> List[Notice]:
        if user_id in self:
            return [Notice(connection_id, _status("already_in_queue", "You are already in the queue"))]

        self._queue.append(QueueEntry(connection_id, user_id, username, self._now()))
        if len(self._queue) < 2:
            return [Notice(connection_id, _status("waiting", "Looking for rival ...",
                                                  queueLength=len(self._queue)))]

        first = self._queue.pop(0)
        second = self._queue.pop(0)
        room_id = self._room_id_factory()
        print(f"[match] {first.username} vs {second.username} (room {room_id})")
        return [
            Notice(first.connection_id, self._found(room_id, second, ROLE_P1)),
            Notice(second.connection_id, self._found(room_id, first, ROLE_P2)),
        ]

    @staticmethod
    def _found(room_id: str, opponent: QueueEntry, role: str) -> Dict[str, Any]:
        return {
            "type": protocol.MATCH_FOUND,
            "roomId": room_id,
            "opponent": {"username": opponent.username, "userId": opponent.user_id},
            "playerRole": role,
        }

    def cancel(self, connection_id: int, user_id: str) -> List[Notice]:
        for i, e in enumerate(self._queue):
            if e.user_id == user_id:
                del self._queue[i]
                return [Notice(connection_id, _status("cancelled", "Canceled successfully"))]
        return []

    def drop_connection(self, connection_id: int) -> bool:
        before = len(self._queue)
        self._queue = [e for e in self._queue if e.connection_id != connection_id]
        return len(self._queue) != before
