"""Wire vocabulary and authority rules for the duel relay protocol.

Every message is a JSON object with a ``type`` field. Clients send the
*origin* names below; the relay renames them (see ``RELAYED_AS``) before
fanning them out to the other occupant of the room.

Only the host (``player1``) may originate fighter spawns, shield breaches
and the terminal ``gameOver``. Kill reports come from whichever peer's own
projectile hit the fighter. The relay does not enforce any of this; peers
apply ``AuthorityRules`` to themselves and every receiver applies its rules
idempotently, so duplicates and late arrivals are harmless.
"""
from __future__ import annotations

import math
from typing import Any, Callable, Dict, List, Optional

from duel.constants import HOST_ROLE, RESULTS, ROLE_P1, ROLE_P2, SIDES

# ---- Client -> relay -------------------------------------------------------
JOIN = "joinGameRoom"
JOIN_ALIAS = "join"
TURRET = "turretUpdate"
FIRE = "fire"
SPAWN = "spawnFighters"
FIGHTER_DOWN = "fighterDown"
BREACH = "breach"
GAME_OVER = "gameOver"
CHEAT = "cheatToggle"
MATCHMAKING_JOIN = "joinMatchmaking"
MATCHMAKING_CANCEL = "cancelMatchmaking"

# ---- Relay -> client -------------------------------------------------------
ROLE_ASSIGNED = "roleAssigned"
ROOM_JOINED = "roomJoined"
ROOM_FULL = "roomFull"
ROOM_ROSTER = "roomRoster"
OPPONENT_TURRET = "opponentTurret"
OPPONENT_FIRE = "opponentFire"
FIGHTER_SPAWN = "fighterSpawn"
OPPONENT_CHEAT = "opponentCheat"
MATCH_FOUND = "matchFound"
MATCHMAKING_STATUS = "matchmakingStatus"

RELAYED_AS: Dict[str, str] = {
    TURRET: OPPONENT_TURRET,
    FIRE: OPPONENT_FIRE,
    SPAWN: FIGHTER_SPAWN,
    FIGHTER_DOWN: FIGHTER_DOWN,
    BREACH: BREACH,
    GAME_OVER: GAME_OVER,
    CHEAT: OPPONENT_CHEAT,
}
ORIGIN_OF: Dict[str, str] = {v: k for k, v in RELAYED_AS.items()}

# gameOver is broadcast to the whole room, sender included
ECHO_TO_SENDER = frozenset({GAME_OVER})

HOST_ONLY = frozenset({SPAWN, BREACH, GAME_OVER})


class AuthorityRules:
    """Which protocol events a peer in ``role`` may originate."""

    def __init__(self, role: str) -> None:
        self.role = role

    @property
    def is_host(self) -> bool:
        return self.role == HOST_ROLE

    def may_originate(self, kind: str) -> bool:
        if kind in HOST_ONLY:
            return self.is_host
        return kind in RELAYED_AS

    def owns(self, owner_role: str) -> bool:
        """True when a projectile fired by ``owner_role`` is ours to report."""
        return owner_role == self.role


# ---- Validation ------------------------------------------------------------
# Validators return a normalised payload or None for malformed input.

def _number(v: Any) -> Optional[float]:
    if isinstance(v, bool) or not isinstance(v, (int, float)):
        return None
    v = float(v)
    return v if math.isfinite(v) else None


def _ident(v: Any) -> Optional[str]:
    if isinstance(v, bool):
        return None
    if isinstance(v, int):
        return str(v)
    if isinstance(v, str) and v.strip():
        return v.strip()
    return None


def _numbers(msg: Dict[str, Any], names, optional=()) -> Optional[Dict[str, float]]:
    out: Dict[str, float] = {}
    for name in names:
        v = _number(msg.get(name))
        if v is None:
            return None
        out[name] = v
    for name in optional:
        v = _number(msg.get(name, 0.0))
        out[name] = 0.0 if v is None else v
    return out


def _turret(msg):
    return _numbers(msg, ("angle",), optional=("ts",))


def _fire(msg):
    return _numbers(msg, ("x", "y", "vx", "vy"), optional=("ts",))


def _fighter(f: Any) -> Optional[Dict[str, Any]]:
    if not isinstance(f, dict):
        return None
    fid = _ident(f.get("id"))
    side = f.get("side")
    nums = _numbers(f, ("x", "y", "vx", "vy"))
    if fid is None or side not in SIDES or nums is None:
        return None
    out: Dict[str, Any] = {"id": fid, "side": side}
    out.update(nums)
    r = _number(f.get("r"))
    if r is not None and r > 0:
        out["r"] = r
    return out


def _spawn(msg):
    fighters = msg.get("fighters")
    if not isinstance(fighters, list) or not fighters:
        return None
    parsed = [_fighter(f) for f in fighters]
    if any(f is None for f in parsed):
        return None
    return {"fighters": parsed}


def _down(msg):
    fid = _ident(msg.get("id"))
    return None if fid is None else {"id": fid}


def _breach(msg):
    side = msg.get("side")
    if side not in SIDES:
        return None
    out: Dict[str, Any] = {"side": side}
    fid = _ident(msg.get("id"))
    if fid is not None:
        out["id"] = fid
    return out


def _game_over(msg):
    winner = msg.get("winner")
    if winner not in RESULTS:
        return None
    lives = msg.get("lives")
    if lives is None:
        return {"winner": winner, "lives": None}
    if not isinstance(lives, dict):
        return None
    parsed = {}
    for side in SIDES:
        v = _number(lives.get(side))
        if v is None:
            return None
        parsed[side] = max(0, int(v))
    return {"winner": winner, "lives": parsed}


def _cheat(msg):
    return {"enabled": bool(msg.get("enabled"))}


def _join(msg):
    user_id = _ident(msg.get("userId"))
    if user_id is None:
        return None
    username = msg.get("username")
    role = msg.get("role", msg.get("preferredRole"))
    return {
        "userId": user_id,
        "username": username if isinstance(username, str) and username else None,
        "role": ROLE_P2 if role == ROLE_P2 else ROLE_P1,
    }


def _matchmaking(msg):
    user_id = _ident(msg.get("userId"))
    if user_id is None:
        return None
    username = msg.get("username")
    return {"userId": user_id, "username": username if isinstance(username, str) else None}


_PAYLOAD_VALIDATORS: Dict[str, Callable[[Dict[str, Any]], Optional[Dict[str, Any]]]] = {
    TURRET: _turret,
    FIRE: _fire,
    SPAWN: _spawn,
    FIGHTER_DOWN: _down,
    BREACH: _breach,
    GAME_OVER: _game_over,
    CHEAT: _cheat,
    JOIN: _join,
    MATCHMAKING_JOIN: _matchmaking,
    MATCHMAKING_CANCEL: _matchmaking,
}

# Room-scoped messages must name the room they are for
_ROOM_SCOPED = frozenset(RELAYED_AS) | {JOIN}


def validate_payload(kind: str, msg: Dict[str, Any]) -> Optional[Dict[str, Any]]:
    """Shape-check the fields of an event of origin type ``kind``."""
    fn = _PAYLOAD_VALIDATORS.get(kind)
    if fn is None or not isinstance(msg, dict):
        return None
    return fn(msg)


def validate(msg: Any) -> Optional[Dict[str, Any]]:
    """
    Validate a client -> relay message. Returns ``{"type", ["roomId"], ...}``
    with only known fields, or None when the message must be dropped.
    """
    if not isinstance(msg, dict):
        return None
    kind = msg.get("type")
    if kind == JOIN_ALIAS:
        kind = JOIN
    if not isinstance(kind, str):
        return None
    payload = validate_payload(kind, msg)
    if payload is None:
        return None
    out: Dict[str, Any] = {"type": kind}
    if kind in _ROOM_SCOPED:
        room_id = _ident(msg.get("roomId"))
        if room_id is None:
            return None
        out["roomId"] = room_id
    out.update(payload)
    return out


def relayed(kind: str, payload: Dict[str, Any]) -> Dict[str, Any]:
    """Build the outgoing (renamed) message for a validated origin event."""
    out = {k: v for k, v in payload.items() if k not in ("type", "roomId")}
    out["type"] = RELAYED_AS[kind]
    return out


def roster_message(roster: List[Dict[str, Any]]) -> Dict[str, Any]:
    return {"type": ROOM_ROSTER, "roster": roster}
