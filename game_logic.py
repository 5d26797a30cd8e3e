from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Iterable, Mapping, Sequence

logger = logging.getLogger(__name__)

GRID_SIZE = 10
QUARTERS = (1, 2, 3, 4)
BONUS_QUARTERS = (2, 4)


class RuleType(str, Enum):
    WINNER = "winner"
    ADJACENT = "adjacent"
    DIAGONAL = "diagonal"
    REVERSE = "reverse"


RULE_PRIZES: dict[RuleType, int] = {
    RuleType.WINNER: 2400,
    RuleType.ADJACENT: 150,
    RuleType.DIAGONAL: 100,
    RuleType.REVERSE: 200,
}

ADJACENT_OFFSETS: tuple[tuple[int, int], ...] = ((1, 0), (-1, 0), (0, 1), (0, -1))
DIAGONAL_OFFSETS: tuple[tuple[int, int], ...] = ((1, 1), (1, -1), (-1, 1), (-1, -1))


class InvalidBoardConfig(ValueError):
    """A score digit could not be located in the board's digit permutation."""


def parse_digits(value: str) -> list[int] | None:
    if not value:
        return None
    try:
        data = json.loads(value)
    except json.JSONDecodeError:
        return None
    if not isinstance(data, list) or len(data) != GRID_SIZE:
        return None
    digits: list[int] = []
    for x in data:
        if not isinstance(x, int) or isinstance(x, bool) or x < 0 or x > 9:
            return None
        digits.append(x)
    if len(set(digits)) != GRID_SIZE:
        return None
    return digits


def digits_to_json(digits: Iterable[int]) -> str:
    return json.dumps(list(digits), separators=(",", ":"))


def square_id(row: int, col: int) -> int:
    return row * GRID_SIZE + col


def row_col_from_id(square_id_: int) -> tuple[int, int]:
    return divmod(square_id_, GRID_SIZE)


@dataclass(frozen=True)
class ScoreEvent:
    quarter: int
    home_score: int
    away_score: int

    def __post_init__(self) -> None:
        if self.quarter not in QUARTERS:
            raise ValueError(f"quarter must be one of {QUARTERS}, got {self.quarter!r}")
        if self.home_score < 0 or self.away_score < 0:
            raise ValueError("scores must be non-negative")

    @property
    def has_reverse_bonus(self) -> bool:
        return self.quarter in BONUS_QUARTERS


@dataclass(frozen=True)
class WinningCell:
    row: int
    col: int
    rules: frozenset[RuleType]
    prize: int

    @property
    def square_id(self) -> int:
        return square_id(self.row, self.col)

    @property
    def label(self) -> str:
        return cell_label(self.rules)


@dataclass(frozen=True)
class Claim:
    quarter: int
    row: int
    col: int
    participant_id: Any
    participant_name: str | None


@dataclass(frozen=True)
class PrizeEntry:
    row: int
    col: int
    label: str
    prize: int


@dataclass(frozen=True)
class ParticipantPrizeSummary:
    participant_id: Any
    participant_name: str | None
    total_prize: int
    entries: tuple[PrizeEntry, ...]


class _CellAccumulator:
    """Collects rule landings per cell, preserving first-visit order."""

    def __init__(self) -> None:
        self._rules: dict[tuple[int, int], set[RuleType]] = {}
        self._prizes: dict[tuple[int, int], int] = {}

    def add(self, row: int, col: int, rule: RuleType) -> None:
        key = (row, col)
        if key not in self._rules:
            self._rules[key] = set()
            self._prizes[key] = 0
        self._rules[key].add(rule)
        self._prizes[key] += RULE_PRIZES[rule]

    def cells(self) -> list[WinningCell]:
        return [
            WinningCell(row=r, col=c, rules=frozenset(rules), prize=self._prizes[(r, c)])
            for (r, c), rules in self._rules.items()
        ]


def _wrap(x: int, size: int) -> int:
    return (x + size) % size


def _position(digits: Sequence[int], digit: int) -> int | None:
    try:
        pos = list(digits).index(digit)
    except (ValueError, TypeError):
        return None
    # Overlong arrays can place a digit past the last row or column.
    return pos if pos < GRID_SIZE else None


def _locate(digits: Sequence[int], digit: int, *, axis: str) -> int:
    pos = _position(digits, digit)
    if pos is None:
        raise InvalidBoardConfig(f"digit {digit} not found in {axis} digits {digits!r}")
    return pos


def _place_rules(acc: _CellAccumulator, row: int, col: int, grid_size: int) -> None:
    acc.add(row, col, RuleType.WINNER)
    for dr, dc in ADJACENT_OFFSETS:
        acc.add(_wrap(row + dr, grid_size), _wrap(col + dc, grid_size), RuleType.ADJACENT)
    for dr, dc in DIAGONAL_OFFSETS:
        acc.add(_wrap(row + dr, grid_size), _wrap(col + dc, grid_size), RuleType.DIAGONAL)


def place_rules(row: int, col: int, *, grid_size: int = GRID_SIZE) -> list[WinningCell]:
    """Winner, adjacent and diagonal cells around (row, col) on a cyclic grid.

    Offsets that land on the same cell merge into one entry and each adds its own prize.
    """
    acc = _CellAccumulator()
    _place_rules(acc, row, col, grid_size)
    return acc.cells()


def reverse_bonus_digits(score: ScoreEvent) -> tuple[int, int]:
    # Home and away swap before the +5 shift.
    return (score.away_score + 5) % 10, (score.home_score + 5) % 10


def resolve(score: ScoreEvent, row_digits: Sequence[int], col_digits: Sequence[int]) -> list[WinningCell]:
    """Compute every winning cell for a quarter's score.

    Rows carry the home team's digits and columns the away team's. Cells come back in
    first-visit order: winner, the four adjacent offsets, the four diagonal offsets, then the
    reverse bonus (quarters 2 and 4 only). Raises InvalidBoardConfig when a score digit is
    missing from either permutation; nothing is returned in that case.
    """
    home_digit = score.home_score % 10
    away_digit = score.away_score % 10
    win_row = _locate(row_digits, home_digit, axis="row")
    win_col = _locate(col_digits, away_digit, axis="column")

    acc = _CellAccumulator()
    _place_rules(acc, win_row, win_col, GRID_SIZE)

    if score.has_reverse_bonus:
        bonus_home_digit, bonus_away_digit = reverse_bonus_digits(score)
        bonus_row = _position(row_digits, bonus_home_digit)
        bonus_col = _position(col_digits, bonus_away_digit)
        if bonus_row is not None and bonus_col is not None:
            acc.add(bonus_row, bonus_col, RuleType.REVERSE)
        else:
            logger.debug("reverse bonus digits %s not on board", (bonus_home_digit, bonus_away_digit))

    return acc.cells()


def prize_total(cells: Iterable[WinningCell]) -> int:
    return sum(c.prize for c in cells)


def cell_label(rules: Iterable[RuleType]) -> str:
    rules = set(rules)
    bonus = RuleType.REVERSE in rules
    for rule, name in (
        (RuleType.WINNER, "Winner"),
        (RuleType.ADJACENT, "Adjacent"),
        (RuleType.DIAGONAL, "Diagonal"),
    ):
        if rule in rules:
            return f"{name} & Bonus" if bonus else name
    return "Bonus"


def claims_by_cell(claims: Iterable[Claim], quarter: int) -> dict[tuple[int, int], Claim]:
    return {(c.row, c.col): c for c in claims if c.quarter == quarter}


def aggregate(
    cells: Iterable[WinningCell],
    claims: Mapping[tuple[int, int], Claim],
) -> list[ParticipantPrizeSummary]:
    """Join winning cells against claims and total the prizes per participant.

    Unclaimed cells are dropped. Participants appear in the order of their first winning
    cell, and each participant's entries keep cell order.
    """
    grouped: dict[Any, list[tuple[Claim, WinningCell]]] = {}
    for cell in cells:
        claim = claims.get((cell.row, cell.col))
        if claim is None:
            continue
        grouped.setdefault(claim.participant_id, []).append((claim, cell))

    summaries: list[ParticipantPrizeSummary] = []
    for participant_id, matches in grouped.items():
        entries = tuple(
            PrizeEntry(row=cell.row, col=cell.col, label=cell.label, prize=cell.prize)
            for claim, cell in matches
        )
        summaries.append(
            ParticipantPrizeSummary(
                participant_id=participant_id,
                participant_name=matches[0][0].participant_name,
                total_prize=sum(e.prize for e in entries),
                entries=entries,
            )
        )
    return summaries


def resolve_winners(
    score: ScoreEvent,
    row_digits: Sequence[int],
    col_digits: Sequence[int],
    claims: Mapping[tuple[int, int], Claim],
) -> list[ParticipantPrizeSummary]:
    return aggregate(resolve(score, row_digits, col_digits), claims)

