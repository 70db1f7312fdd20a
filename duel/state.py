# duel/state.py
from dataclasses import dataclass, field
from typing import Dict, Optional

from duel.constants import SIDES


@dataclass
class Occupant:
    """One side's turret as seen by this peer (own state, or the opponent mirror)."""
    role: str
    angle: float = 0.0       # radians from the ship's forward axis
    cheat: bool = False


@dataclass
class PlayerInput:
    rotate: float = 0.0      # -1 up, +1 down
    fire: bool = False


@dataclass
class TerminalState:
    winner: str              # left | right | tie
    lives: Dict[str, int]
    fallback: bool = False   # latched by the local timeout, not by a host broadcast


def _starting_lives(n: int) -> Dict[str, int]:
    return {side: n for side in SIDES}


@dataclass
class DuelState:
    me: Occupant
    opponent: Occupant
    lives: Dict[str, int] = field(default_factory=lambda: _starting_lives(20))
    terminal: Optional[TerminalState] = None

    @property
    def game_ended(self) -> bool:
        return self.terminal is not None

    def deduct_life(self, side: str) -> int:
        self.lives[side] = max(0, self.lives[side] - 1)
        return self.lives[side]

    def latch_terminal(self, winner: str, lives: Optional[Dict[str, int]] = None,
                       fallback: bool = False) -> bool:
        """Set the terminal state once. Later calls are no-ops and return False."""
        if self.terminal is not None:
            return False
        if lives:
            # Counters never increase, whatever the reported final values say
            for side in SIDES:
                if side in lives:
                    self.lives[side] = max(0, min(self.lives[side], int(lives[side])))
        self.terminal = TerminalState(winner=winner, lives=dict(self.lives), fallback=fallback)
        return True
