"""Per-peer duel simulation.

Each peer runs one ``DuelSimulation`` for its own role. The same code serves
both roles; ``AuthorityRules`` decides which steps are active (the host spawns
fighters, detects shield breaches and declares the end of the game) and
which events this peer is allowed to announce. Everything the opponent does
reaches this world only through ``apply_event``.

Outbound protocol messages are published on the ``OUTBOUND`` topic of the
simulation's ``EventBus``; the caller adds the room id and ships them.
"""
from __future__ import annotations

import math
import random
from typing import Any, Callable, Dict, List, Optional, Tuple

from engine import config
from duel import protocol
from duel.constants import RESULT_TIE, SIDE_LEFT, SIDE_RIGHT, SIDES, opponent_role, role_side
from duel.ecs import (
    BreachEvent,
    BreachSystem,
    Effect,
    EffectSystem,
    Fighter,
    FighterSystem,
    KillEvent,
    Position,
    Projectile,
    ProjectileSystem,
    SpawnSystem,
    Velocity,
    World,
)
from duel.event_bus import GAME_ENDED, OUTBOUND, EventBus
from duel.geometry import Arena, clamp, shield_for_side, turret_muzzle
from duel.state import DuelState, Occupant, PlayerInput, TerminalState


def decide_winner(lives: Dict[str, int]) -> Optional[str]:
    """Winner once a side is out of lives; None while both still stand."""
    left_out = lives[SIDE_LEFT] <= 0
    right_out = lives[SIDE_RIGHT] <= 0
    if left_out and right_out:
        return RESULT_TIE
    if left_out:
        return SIDE_RIGHT
    if right_out:
        return SIDE_LEFT
    return None


class DuelSimulation:
    def __init__(
        self,
        role: str,
        gameplay_cfg: Optional[Dict[str, Any]] = None,
        arena: Optional[Arena] = None,
        bus: Optional[EventBus] = None,
        rng: Optional[random.Random] = None,
    ) -> None:
        self.role = role
        self.side = role_side(role)
        self.rules = protocol.AuthorityRules(role)
        self.cfg = gameplay_cfg if gameplay_cfg is not None else config.section("gameplay")
        self.arena = arena or Arena.from_config()
        self.bus = bus or EventBus()
        self.rng = rng or random.Random()

        g = self.cfg
        self.max_dt = float(g.get("max_dt", 0.033))
        self.turret_speed = float(g.get("turret_speed_rad", 1.2))
        self.turret_limit = math.pi * float(g.get("turret_limit_frac_pi", 0.39))
        self.turret_send_interval = float(g.get("turret_send_interval", 0.033))
        self.fire_cooldown = float(g.get("fire_cooldown", 0.18))
        self.bullet_speed = float(g.get("bullet_speed", 1800.0))
        self.max_projectiles = int(g.get("max_projectiles", 400))
        self.fighter_radius = float(g.get("fighter_radius", 40.0))
        self.explosion_life = float(g.get("explosion_life", 0.45))
        self.flash_life = float(g.get("breach_flash_life", 0.35))
        self.fallback_seconds = float(g.get("terminal_fallback_seconds", 3.0))
        self.id_retention = float(g.get("resolved_id_retention", 30.0))

        # Session time: advanced only by advance(), drives TTLs, timers and difficulty
        self.clock = 0.0
        lives = int(g.get("starting_lives", 20))
        self.state = DuelState(
            me=Occupant(role),
            opponent=Occupant(opponent_role(role)),
            lives={side: lives for side in SIDES},
        )
        self.input = PlayerInput()

        self.world = World()
        self.projectile_system = ProjectileSystem(self.world, self.arena, g, self._now)
        self.fighter_system = FighterSystem(self.world, self.arena, g, self._now)
        self.breach_system = BreachSystem(self.world, self.arena)
        self.spawn_system = SpawnSystem(self.world, self.arena, g, self._now, self.rng)
        self.effect_system = EffectSystem(self.world)

        self._last_turret_send = -math.inf
        self._last_fire = -math.inf
        # Resolved fighter ids -> clock at resolution, kept after the cull so late events stay no-ops
        self._downed: Dict[str, float] = {}
        self._breached: Dict[str, float] = {}
        self._fallback_at: Optional[float] = None

        self._handlers: Dict[str, Callable[[Dict[str, Any]], bool]] = {
            protocol.TURRET: self._on_opponent_turret,
            protocol.FIRE: self._on_opponent_fire,
            protocol.SPAWN: self._on_fighter_spawn,
            protocol.FIGHTER_DOWN: self._on_fighter_down,
            protocol.BREACH: self._on_breach,
            protocol.GAME_OVER: self._on_game_over,
            protocol.CHEAT: self._on_opponent_cheat,
        }

    def _now(self) -> float:
        return self.clock

    # ---------- Read-only views ----------
    @property
    def is_host(self) -> bool:
        return self.rules.is_host

    @property
    def me(self) -> Occupant:
        return self.state.me

    @property
    def opponent(self) -> Occupant:
        return self.state.opponent

    @property
    def lives(self) -> Dict[str, int]:
        return self.state.lives

    @property
    def terminal(self) -> Optional[TerminalState]:
        return self.state.terminal

    @property
    def game_ended(self) -> bool:
        return self.state.game_ended

    def fighter(self, fid: str) -> Optional[Fighter]:
        entity = self.world.find(fid)
        return self.world.get_component(entity, Fighter) if entity is not None else None

    def fighters(self) -> List[Tuple[Fighter, Position]]:
        return [(f, pos) for _, (f, pos) in self.world.query(Fighter, Position)]

    def projectiles(self) -> List[Tuple[Projectile, Position]]:
        return [(p, pos) for _, (p, pos) in self.world.query(Projectile, Position)]

    def effects(self) -> List[Tuple[Effect, Position]]:
        return [(e, pos) for _, (e, pos) in self.world.query(Effect, Position)]

    def describe(self) -> Dict[str, Any]:
        return {
            "role": self.role,
            "clock": round(self.clock, 3),
            "lives": dict(self.lives),
            "fighters": sum(1 for f, _ in self.fighters() if f.alive),
            "projectiles": self.world.count(Projectile),
            "ended": self.game_ended,
            "winner": self.terminal.winner if self.terminal else None,
        }

    # ---------- Frame step ----------
    def advance(self, dt: float) -> None:
        dt = clamp(float(dt), 0.0, self.max_dt)
        self.clock += dt

        if not self.game_ended:
            self._apply_input(dt)

        self.projectile_system.update(dt)
        for kill in self.projectile_system.kill_events:
            self._on_local_kill(kill)

        self.fighter_system.update(dt)

        if self.rules.is_host and not self.game_ended:
            self.breach_system.update(dt)
            for breach in self.breach_system.breach_events:
                if self.game_ended:
                    break
                self._on_local_breach(breach)

        if self.rules.is_host and not self.game_ended:
            self.spawn_system.update(dt)
            for batch in self.spawn_system.batches:
                for spec in batch:
                    self._adopt_fighter(spec)
                self._send(protocol.SPAWN, fighters=[dict(spec) for spec in batch])

        self.effect_system.update(dt)
        self._check_fallback()
        self._forget_resolved()

    def _apply_input(self, dt: float) -> None:
        me = self.state.me
        rotate = clamp(float(self.input.rotate), -1.0, 1.0)
        me.angle = clamp(me.angle + rotate * self.turret_speed * dt, -self.turret_limit, self.turret_limit)

        if self.clock - self._last_turret_send > self.turret_send_interval:
            self._last_turret_send = self.clock
            self._send(protocol.TURRET, angle=me.angle, ts=self.clock)

        if self.input.fire:
            self.fire()

    # ---------- Local actions ----------
    def fire(self) -> bool:
        """Fire one bolt from our turret if the cooldown allows it."""
        if self.game_ended or self.clock - self._last_fire < self.fire_cooldown:
            return False
        self._last_fire = self.clock
        (x, y), (dx, dy) = turret_muzzle(self.arena, self.side, self.state.me.angle)
        vx, vy = dx * self.bullet_speed, dy * self.bullet_speed
        self._add_projectile(x, y, vx, vy, self.role)
        self._send(protocol.FIRE, x=x, y=y, vx=vx, vy=vy, ts=self.clock)
        return True

    def toggle_cheat(self) -> bool:
        me = self.state.me
        me.cheat = not me.cheat
        self._send(protocol.CHEAT, enabled=me.cheat)
        return me.cheat

    def _send(self, kind: str, **payload: Any) -> None:
        if not self.rules.may_originate(kind):
            return
        msg: Dict[str, Any] = {"type": kind}
        msg.update(payload)
        self.bus.emit(OUTBOUND, msg)

    def _add_projectile(self, x: float, y: float, vx: float, vy: float, owner: str,
                        remote_ts: float = 0.0) -> None:
        self.world.create_entity(None, Position(x, y), Velocity(vx, vy),
                                 Projectile(owner, self.clock, remote_ts))
        excess = self.world.count(Projectile) - self.max_projectiles
        if excess > 0:
            # Entity ids grow monotonically, so the smallest ids are the oldest bolts
            for entity in sorted(self.world.components_of_type(Projectile))[:excess]:
                self.world.remove_entity(entity)

    def _add_effect(self, x: float, y: float, life: float, kind: str) -> None:
        self.world.create_entity(None, Position(x, y), Effect(life=life, kind=kind))

    def _adopt_fighter(self, spec: Dict[str, Any]) -> bool:
        fid = spec["id"]
        if fid in self._downed or self.world.find(fid) is not None:
            return False
        fighter = Fighter(fid=fid, side=spec["side"], radius=float(spec.get("r", self.fighter_radius)))
        if fid in self._breached:
            fighter.mark_breached()
        self.world.create_entity(fid, Position(spec["x"], spec["y"]),
                                 Velocity(spec["vx"], spec["vy"]), fighter)
        return True

    def _on_local_kill(self, kill: KillEvent) -> None:
        self._downed.setdefault(kill.fid, self.clock)
        self._add_effect(kill.x, kill.y, self.explosion_life, "explosion")
        # Only the peer whose bolt it was reports the kill
        if self.rules.owns(kill.owner_role):
            self._send(protocol.FIGHTER_DOWN, id=kill.fid)

    def _on_local_breach(self, breach: BreachEvent) -> None:
        self._breached.setdefault(breach.fid, self.clock)
        self._deduct(breach.defender_side)
        self._send(protocol.BREACH, side=breach.defender_side, id=breach.fid)
        winner = decide_winner(self.state.lives)
        if winner is not None and self._latch(winner):
            self._send(protocol.GAME_OVER, winner=winner, lives=dict(self.state.lives))

    def _deduct(self, side: str) -> None:
        self.state.deduct_life(side)
        shield = shield_for_side(self.arena, side)
        self._add_effect(shield.cx, shield.cy, self.flash_life, "breach")

    def _latch(self, winner: str, lives: Optional[Dict[str, int]] = None, fallback: bool = False) -> bool:
        if not self.state.latch_terminal(winner, lives, fallback=fallback):
            return False
        self._fallback_at = None
        self.bus.emit(GAME_ENDED, self.state.terminal)
        return True

    def _check_fallback(self) -> None:
        if self._fallback_at is None or self.game_ended or self.clock < self._fallback_at:
            return
        self._latch(decide_winner(self.state.lives) or RESULT_TIE, fallback=True)

    def _forget_resolved(self) -> None:
        """Drop resolved ids whose entity is gone and that are older than the retention window."""
        cutoff = self.clock - self.id_retention
        for table in (self._downed, self._breached):
            stale = [fid for fid, t in table.items() if t < cutoff and self.world.find(fid) is None]
            for fid in stale:
                del table[fid]

    # ---------- Inbound (relayed) events ----------
    def apply_event(self, msg: Dict[str, Any]) -> bool:
        """
        Apply a relayed protocol message to this peer's mirror.

        Returns True when the message changed local state. Stale or duplicate
        events (already-dead fighter, already-counted breach, game already
        over) and malformed ones return False and change nothing.
        """
        if not isinstance(msg, dict):
            return False
        kind = protocol.ORIGIN_OF.get(msg.get("type"))
        if kind is None:
            return False
        payload = protocol.validate_payload(kind, msg)
        if payload is None:
            return False
        return self._handlers[kind](payload)

    def _on_opponent_turret(self, payload: Dict[str, Any]) -> bool:
        self.state.opponent.angle = payload["angle"]
        return True

    def _on_opponent_cheat(self, payload: Dict[str, Any]) -> bool:
        self.state.opponent.cheat = payload["enabled"]
        return True

    def _on_opponent_fire(self, payload: Dict[str, Any]) -> bool:
        # TTL runs from local receipt; the sender's ts is on another clock
        self._add_projectile(payload["x"], payload["y"], payload["vx"], payload["vy"],
                             self.state.opponent.role, remote_ts=payload["ts"])
        return True

    def _on_fighter_spawn(self, payload: Dict[str, Any]) -> bool:
        if self.rules.is_host:
            return False
        added = [self._adopt_fighter(spec) for spec in payload["fighters"]]
        return any(added)

    def _on_fighter_down(self, payload: Dict[str, Any]) -> bool:
        fid = payload["id"]
        self._downed.setdefault(fid, self.clock)
        entity = self.world.find(fid)
        if entity is None:
            return False
        fighter = self.world.get_component(entity, Fighter)
        pos = self.world.get_component(entity, Position)
        if fighter is None or not fighter.kill(self.clock):
            return False
        self._add_effect(pos.x, pos.y, self.explosion_life, "explosion")
        return True

    def _on_breach(self, payload: Dict[str, Any]) -> bool:
        if self.rules.is_host or self.game_ended:
            return False
        fid = payload.get("id")
        if fid is not None:
            if fid in self._breached:
                return False
            self._breached.setdefault(fid, self.clock)
            fighter = self.fighter(fid)
            if fighter is not None:
                fighter.mark_breached()
        self._deduct(payload["side"])
        if self._fallback_at is None and decide_winner(self.state.lives) is not None:
            self._fallback_at = self.clock + self.fallback_seconds
        return True

    def _on_game_over(self, payload: Dict[str, Any]) -> bool:
        return self._latch(payload["winner"], payload.get("lives"))
