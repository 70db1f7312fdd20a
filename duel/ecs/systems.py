"""ECS systems executed, in order, by each ``DuelSimulation.advance`` step."""
from __future__ import annotations

import random
import string
from dataclasses import dataclass
from typing import Any, Callable, Dict, List

from duel.constants import SIDE_LEFT, SIDE_RIGHT, SIDES, opposite_side, role_side
from duel.geometry import Arena, circle_hit, hits_shield, in_bounds, scene_anchors, shield_for_side

from .components import Effect, Fighter, Position, Projectile, Velocity
from .world import System, World


@dataclass
class KillEvent:
    fid: str
    owner_role: str
    x: float
    y: float


@dataclass
class BreachEvent:
    fid: str
    defender_side: str


class ProjectileSystem(System):
    """Integrates bolts, culls them by age/bounds and resolves their hits."""

    def __init__(self, world: World, arena: Arena, gameplay_cfg: Dict[str, Any],
                 now_fn: Callable[[], float]) -> None:
        super().__init__(world)
        self.arena = arena
        self.lifetime = float(gameplay_cfg.get("bullet_lifetime", 2.2))
        self.margin = float(gameplay_cfg.get("bullet_margin", 200.0))
        self._now = now_fn
        self.kill_events: List[KillEvent] = []

    def update(self, dt: float) -> None:
        self.kill_events.clear()
        now_t = self._now()
        shields = {side: shield_for_side(self.arena, side) for side in SIDES}

        for entity, (pos, vel, shot) in self.world.snapshot(Position, Velocity, Projectile):
            pos.x += vel.vx * dt
            pos.y += vel.vy * dt

            if (now_t - shot.origin_time) >= self.lifetime or not in_bounds(self.arena, pos.x, pos.y, self.margin):
                self.world.remove_entity(entity)
                continue

            # A bolt only interacts with the enemy ship's shield and the fighters launched from that side
            target_side = opposite_side(role_side(shot.owner_role))
            if hits_shield(pos.x, pos.y, shields[target_side]):
                self.world.remove_entity(entity)
                continue

            victim = self._first_hit(pos, target_side)
            if victim is None:
                continue
            self.world.remove_entity(entity)
            fighter, fpos = victim
            if fighter.kill(now_t):
                self.kill_events.append(KillEvent(fighter.fid, shot.owner_role, fpos.x, fpos.y))

    def _first_hit(self, pos: Position, side: str):
        for _, (fpos, fighter) in self.world.query(Position, Fighter):
            if not fighter.alive or fighter.side != side:
                continue
            if circle_hit(pos.x, pos.y, fpos.x, fpos.y, fighter.radius):
                return fighter, fpos
        return None


class FighterSystem(System):
    """Moves live fighters and culls the ones that left the arena or finished exploding."""

    def __init__(self, world: World, arena: Arena, gameplay_cfg: Dict[str, Any],
                 now_fn: Callable[[], float]) -> None:
        super().__init__(world)
        self.arena = arena
        self.margin = float(gameplay_cfg.get("fighter_margin", 120.0))
        self.linger = float(gameplay_cfg.get("explosion_life", 0.45))
        self._now = now_fn

    def update(self, dt: float) -> None:
        now_t = self._now()
        for entity, (pos, vel, fighter) in self.world.snapshot(Position, Velocity, Fighter):
            if fighter.alive:
                pos.x += vel.vx * dt
                pos.y += vel.vy * dt
                if not in_bounds(self.arena, pos.x, pos.y, self.margin):
                    self.world.remove_entity(entity)
            elif now_t - fighter.died_at >= self.linger:
                self.world.remove_entity(entity)


class BreachSystem(System):
    """Host only: detects the first time each live fighter touches the shield it attacks."""

    def __init__(self, world: World, arena: Arena) -> None:
        super().__init__(world)
        self.arena = arena
        self.breach_events: List[BreachEvent] = []

    def update(self, dt: float) -> None:
        self.breach_events.clear()
        shields = {side: shield_for_side(self.arena, side) for side in SIDES}
        for _, (pos, fighter) in self.world.query(Position, Fighter):
            if not fighter.alive or fighter.breached:
                continue
            # Right-side fighters attack the left ship and vice versa
            defender = opposite_side(fighter.side)
            if hits_shield(pos.x, pos.y, shields[defender]) and fighter.mark_breached():
                self.breach_events.append(BreachEvent(fighter.fid, defender))


_ID_ALPHABET = string.ascii_lowercase + string.digits


class SpawnSystem(System):
    """Host only: emits a symmetric fighter pair every ``spawn_interval`` seconds."""

    def __init__(self, world: World, arena: Arena, gameplay_cfg: Dict[str, Any],
                 now_fn: Callable[[], float], rng: random.Random) -> None:
        super().__init__(world)
        self.arena = arena
        self.interval = float(gameplay_cfg.get("spawn_interval", 2.0))
        self.base_speed = float(gameplay_cfg.get("fighter_speed", 600.0))
        self.radius = float(gameplay_cfg.get("fighter_radius", 40.0))
        self.band = float(gameplay_cfg.get("spawn_band", 500.0))
        self.ramp = float(gameplay_cfg.get("speed_ramp_per_sec", 0.01))
        self.ramp_cap = float(gameplay_cfg.get("speed_ramp_cap", 3.0))
        self._now = now_fn
        self._rng = rng
        # First pair goes out on the first step
        self._last_spawn = -self.interval
        self._seq = 0
        self.batches: List[List[Dict[str, Any]]] = []

    def speed_multiplier(self, elapsed: float) -> float:
        return min(self.ramp_cap, 1.0 + self.ramp * max(0.0, elapsed))

    def _new_id(self, prefix: str) -> str:
        self._seq += 1
        token = "".join(self._rng.choice(_ID_ALPHABET) for _ in range(4))
        return f"{prefix}_{self._seq}_{token}"

    def update(self, dt: float) -> None:
        self.batches.clear()
        now_t = self._now()
        if now_t - self._last_spawn < self.interval:
            return
        self._last_spawn = now_t

        mid_y, _, _ = scene_anchors(self.arena)
        speed = self.base_speed * self.speed_multiplier(now_t)
        y_left = mid_y - self.band + self._rng.random() * 2 * self.band
        y_right = mid_y - self.band + self._rng.random() * 2 * self.band
        self.batches.append([
            {"id": self._new_id("L"), "side": SIDE_LEFT, "x": self.arena.width * 0.02, "y": y_left,
             "vx": speed, "vy": 0.0, "r": self.radius},
            {"id": self._new_id("R"), "side": SIDE_RIGHT, "x": self.arena.width * 0.98, "y": y_right,
             "vx": -speed, "vy": 0.0, "r": self.radius},
        ])


class EffectSystem(System):
    """Ages explosion/flash markers and drops finished ones."""

    def update(self, dt: float) -> None:
        for entity, (effect,) in self.world.snapshot(Effect):
            effect.t += dt
            if effect.t >= effect.life:
                self.world.remove_entity(entity)
