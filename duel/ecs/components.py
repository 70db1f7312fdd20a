"""Core ECS components of the duel simulation."""
from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


@dataclass
class Position:
    """Arena-space position (canvas pixels, Y down)."""
    x: float = 0.0
    y: float = 0.0


@dataclass
class Velocity:
    """Pixels per second."""
    vx: float = 0.0
    vy: float = 0.0


@dataclass
class Projectile:
    """A bolt fired by ``owner_role``; only its Position changes after creation."""
    owner_role: str
    origin_time: float
    remote_ts: float = 0.0


class LifeState(Enum):
    ALIVE = "alive"
    DEAD = "dead"


class BreachState(Enum):
    UNBREACHED = "unbreached"
    BREACHED = "breached"


@dataclass
class Fighter:
    """
    Hostile fighter shared by both peers under the host-assigned ``fid``.

    ``life`` and ``breach`` are one-way state machines: each has a single
    legal transition, and the transition methods report whether this call
    performed it. Callers gate one-time side effects (explosions, kill
    reports, life deductions) on that return value.
    """
    fid: str
    side: str
    radius: float = 40.0
    life: LifeState = LifeState.ALIVE
    breach: BreachState = BreachState.UNBREACHED
    died_at: float = 0.0

    @property
    def alive(self) -> bool:
        return self.life is LifeState.ALIVE

    @property
    def breached(self) -> bool:
        return self.breach is BreachState.BREACHED

    def kill(self, now_t: float) -> bool:
        if self.life is not LifeState.ALIVE:
            return False
        self.life = LifeState.DEAD
        self.died_at = now_t
        return True

    def mark_breached(self) -> bool:
        if self.breach is not BreachState.UNBREACHED:
            return False
        self.breach = BreachState.BREACHED
        return True


@dataclass
class Effect:
    """Short-lived marker (explosion or shield flash) for the presentation layer."""
    life: float
    t: float = 0.0
    kind: str = "explosion"
