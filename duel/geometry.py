# duel/geometry.py
import math
from dataclasses import dataclass
from typing import Any, Dict, Optional, Tuple

from engine import config
from duel.constants import SIDE_LEFT, side_direction

# ---- Arena constants -------------------------------------------------------
# Canvas space: X right, Y down, origin top-left. Both peers share it.

@dataclass(frozen=True)
class Arena:
    width: float = 3200.0
    height: float = 1800.0
    left_ship_frac: float = 0.17
    right_ship_frac: float = 0.83
    ship_w: float = 1000.0
    ship_h: float = 500.0
    turret_inset: float = 300.0
    turret_drop: float = 90.0
    barrel_len: float = 100.0

    @classmethod
    def from_config(cls, cfg: Optional[Dict[str, Any]] = None) -> "Arena":
        if cfg is None:
            cfg = config.section("arena")
        base = cls()
        return cls(**{
            name: float(cfg.get(name, getattr(base, name)))
            for name in base.__dataclass_fields__
        })

    @property
    def shield_rx(self) -> float:
        return self.ship_w * 0.5

    @property
    def shield_ry(self) -> float:
        return self.ship_h * 1.5

    @property
    def shield_offset(self) -> float:
        return self.ship_w * 0.05


@dataclass(frozen=True)
class Shield:
    cx: float
    cy: float
    rx: float
    ry: float
    direction: int  # +1 faces +X, -1 faces -X


# ---- Anchors ---------------------------------------------------------------

def scene_anchors(arena: Arena) -> Tuple[float, float, float]:
    """(mid_y, left_x, right_x) of the two destroyers."""
    return (arena.height * 0.5,
            arena.width * arena.left_ship_frac,
            arena.width * arena.right_ship_frac)


def ship_anchor(arena: Arena, side: str) -> Tuple[float, float]:
    mid_y, left_x, right_x = scene_anchors(arena)
    return (left_x if side == SIDE_LEFT else right_x), mid_y


def shield_for_side(arena: Arena, side: str) -> Shield:
    ship_x, mid_y = ship_anchor(arena, side)
    d = side_direction(side)
    return Shield(cx=ship_x + d * arena.shield_offset, cy=mid_y,
                  rx=arena.shield_rx, ry=arena.shield_ry, direction=d)


def turret_base(arena: Arena, side: str) -> Tuple[float, float]:
    ship_x, mid_y = ship_anchor(arena, side)
    return ship_x + side_direction(side) * arena.turret_inset, mid_y + arena.turret_drop


def turret_muzzle(arena: Arena, side: str, angle: float) -> Tuple[Tuple[float, float], Tuple[float, float]]:
    """
    Barrel tip and unit shot direction for a turret.
    The angle is measured from the side's forward axis, so the same angle
    mirrors across the two ships.
    """
    bx, by = turret_base(arena, side)
    dx = math.cos(angle) * side_direction(side)
    dy = math.sin(angle)
    return (bx + dx * arena.barrel_len, by + dy * arena.barrel_len), (dx, dy)


# ---- Containment tests -----------------------------------------------------

def in_ellipse(px: float, py: float, shield: Shield) -> bool:
    nx = (px - shield.cx) / shield.rx
    ny = (py - shield.cy) / shield.ry
    return (nx * nx + ny * ny) <= 1.0


def in_front_half(px: float, py: float, shield: Shield) -> bool:
    # Points exactly on the centre line are neither front nor back
    return (px - shield.cx) * shield.direction > 0.0


def hits_shield(px: float, py: float, shield: Shield) -> bool:
    """True when the point lies in the front (forward-facing) half of the shield."""
    return in_ellipse(px, py, shield) and in_front_half(px, py, shield)


def circle_hit(px: float, py: float, cx: float, cy: float, radius: float) -> bool:
    dx, dy = px - cx, py - cy
    return dx * dx + dy * dy <= radius * radius


def in_bounds(arena: Arena, x: float, y: float, margin: float) -> bool:
    return (-margin < x < arena.width + margin) and (-margin < y < arena.height + margin)


def clamp(v: float, lo: float, hi: float) -> float:
    return max(lo, min(hi, v))
