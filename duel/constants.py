# duel/constants.py
ROLE_P1 = "player1"
ROLE_P2 = "player2"
ROLES = (ROLE_P1, ROLE_P2)

# player1 owns the left destroyer, player2 the right one
SIDE_LEFT = "left"
SIDE_RIGHT = "right"
SIDES = (SIDE_LEFT, SIDE_RIGHT)
RESULT_TIE = "tie"
RESULTS = (SIDE_LEFT, SIDE_RIGHT, RESULT_TIE)

HOST_ROLE = ROLE_P1


def opponent_role(role: str) -> str:
    return ROLE_P2 if role == ROLE_P1 else ROLE_P1


def role_side(role: str) -> str:
    return SIDE_LEFT if role == ROLE_P1 else SIDE_RIGHT


def opposite_side(side: str) -> str:
    return SIDE_RIGHT if side == SIDE_LEFT else SIDE_LEFT


def side_direction(side: str) -> int:
    """+1 when the side's ship faces +X (left ship), -1 otherwise."""
    return 1 if side == SIDE_LEFT else -1
