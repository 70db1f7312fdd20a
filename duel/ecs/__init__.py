"""Entity-component system used by the per-peer duel simulation."""
from .components import BreachState, Effect, Fighter, LifeState, Position, Projectile, Velocity
from .systems import (
    BreachEvent,
    BreachSystem,
    EffectSystem,
    FighterSystem,
    KillEvent,
    ProjectileSystem,
    SpawnSystem,
)
from .world import System, World

__all__ = [
    "World",
    "System",
    "Position",
    "Velocity",
    "Projectile",
    "Fighter",
    "LifeState",
    "BreachState",
    "Effect",
    "ProjectileSystem",
    "FighterSystem",
    "BreachSystem",
    "SpawnSystem",
    "EffectSystem",
    "KillEvent",
    "BreachEvent",
]
