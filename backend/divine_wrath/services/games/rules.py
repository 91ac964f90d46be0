"""Game constants and grid geometry."""

import math
from typing import Dict, FrozenSet

MAX_PLAYERS = 4
SUSPECT_COUNT = 3
GRID_CELLS = tuple(range(1, 10))

ROUND_OPTIONS = (3, 4, 5)
DEFAULT_ROUNDS = 3
TURNS_PER_ROUND = 3

# Verification budget: reset per round, accumulates per turn
BASE_VERIFICATIONS = 2
VERIFICATIONS_PER_TURN = 2

MAX_CONSECUTIVE_GOD_ROUNDS = 2

MORTAL_SURVIVES_TURN = 20
TRUE_SELF_CLAIM = 20
GOD_FINDS_MORTAL = 40
GOD_PENALTY_MISS = -20
GOD_PENALTY_HIT_BONUS = 15  # on top of GOD_FINDS_MORTAL

ROW_COLUMN_VALUES = (1, 2, 3)

# Orthogonal neighbours on the 3x3 grid
ADJACENCY: Dict[int, FrozenSet[int]] = {
    1: frozenset({2, 4}),
    2: frozenset({1, 3, 5}),
    3: frozenset({2, 6}),
    4: frozenset({1, 5, 7}),
    5: frozenset({2, 4, 6, 8}),
    6: frozenset({3, 5, 9}),
    7: frozenset({4, 8}),
    8: frozenset({5, 7, 9}),
    9: frozenset({6, 8}),
}


def row_of(position: int) -> int:
    return math.ceil(position / 3)


def column_of(position: int) -> int:
    return ((position - 1) % 3) + 1


def are_adjacent(a: int, b: int) -> bool:
    return b in ADJACENCY.get(a, frozenset())
