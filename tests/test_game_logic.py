"""Unit tests for the winner-resolution engine."""

import random

import pytest

from game_logic import (
    Claim,
    InvalidBoardConfig,
    PrizeEntry,
    RuleType,
    ScoreEvent,
    aggregate,
    cell_label,
    claims_by_cell,
    digits_to_json,
    parse_digits,
    place_rules,
    prize_total,
    resolve,
    resolve_winners,
    reverse_bonus_digits,
    row_col_from_id,
    square_id,
)

IDENTITY = list(range(10))


def _cell_map(cells):
    return {(c.row, c.col): c for c in cells}


def _claim(row, col, pid, name=None, quarter=1):
    return Claim(quarter=quarter, row=row, col=col, participant_id=pid, participant_name=name)


class TestDigits:
    """Digit permutation parsing and square ids."""

    def test_parse_valid_permutation(self):
        assert parse_digits("[3,1,4,0,5,9,2,6,8,7]") == [3, 1, 4, 0, 5, 9, 2, 6, 8, 7]

    def test_parse_round_trips_compact_json(self):
        digits = [9, 8, 7, 6, 5, 4, 3, 2, 1, 0]
        assert digits_to_json(digits) == "[9,8,7,6,5,4,3,2,1,0]"
        assert parse_digits(digits_to_json(digits)) == digits

    @pytest.mark.parametrize(
        "value",
        [
            "",
            "not json",
            "[0,1,2]",
            "[0,0,2,3,4,5,6,7,8,9]",
            "[0,1,2,3,4,5,6,7,8,10]",
            '{"a": 1}',
            "[true,1,2,3,4,5,6,7,8,9]",
        ],
    )
    def test_parse_rejects_bad_input(self, value):
        assert parse_digits(value) is None

    def test_square_id_round_trip(self):
        assert square_id(8, 5) == 85
        assert row_col_from_id(85) == (8, 5)
        assert row_col_from_id(0) == (0, 0)


class TestScoreEvent:
    def test_rejects_quarter_out_of_range(self):
        with pytest.raises(ValueError):
            ScoreEvent(quarter=5, home_score=0, away_score=0)
        with pytest.raises(ValueError):
            ScoreEvent(quarter=0, home_score=0, away_score=0)

    def test_rejects_negative_score(self):
        with pytest.raises(ValueError):
            ScoreEvent(quarter=1, home_score=-1, away_score=0)

    def test_bonus_quarters(self):
        assert not ScoreEvent(1, 0, 0).has_reverse_bonus
        assert ScoreEvent(2, 0, 0).has_reverse_bonus
        assert not ScoreEvent(3, 0, 0).has_reverse_bonus
        assert ScoreEvent(4, 0, 0).has_reverse_bonus

    def test_reverse_bonus_digits_swap_then_shift(self):
        """10-3 reverses to 3-10, +5 gives 8-15, last digits 8 and 5."""
        assert reverse_bonus_digits(ScoreEvent(2, 10, 3)) == (8, 5)


class TestResolve:
    """Grid Resolver behaviour."""

    def test_first_quarter_scenario(self):
        cells = resolve(ScoreEvent(quarter=1, home_score=10, away_score=3), IDENTITY, IDENTITY)
        assert [(c.row, c.col) for c in cells] == [
            (0, 3),
            (1, 3), (9, 3), (0, 4), (0, 2),
            (1, 4), (1, 2), (9, 4), (9, 2),
        ]
        assert cells[0].rules == frozenset({RuleType.WINNER})
        assert cells[0].prize == 2400
        assert all(c.rules == frozenset({RuleType.ADJACENT}) and c.prize == 150 for c in cells[1:5])
        assert all(c.rules == frozenset({RuleType.DIAGONAL}) and c.prize == 100 for c in cells[5:])
        assert prize_total(cells) == 3400

    def test_second_quarter_adds_reverse_bonus(self):
        cells = resolve(ScoreEvent(quarter=2, home_score=10, away_score=3), IDENTITY, IDENTITY)
        assert len(cells) == 10
        bonus = cells[-1]
        assert (bonus.row, bonus.col) == (8, 5)
        assert bonus.rules == frozenset({RuleType.REVERSE})
        assert bonus.prize == 200
        assert bonus.label == "Bonus"
        assert prize_total(cells) == 3600

    def test_no_bonus_in_third_quarter(self):
        cells = resolve(ScoreEvent(quarter=3, home_score=10, away_score=3), IDENTITY, IDENTITY)
        assert (8, 5) not in _cell_map(cells)
        assert prize_total(cells) == 3400

    def test_reverse_bonus_merges_into_winner(self):
        """5-0 reverses to 0-5, +5 gives 5-10: the bonus lands on the winning square."""
        cells = resolve(ScoreEvent(quarter=4, home_score=5, away_score=0), IDENTITY, IDENTITY)
        assert len(cells) == 9
        winner = cells[0]
        assert (winner.row, winner.col) == (5, 0)
        assert winner.rules == frozenset({RuleType.WINNER, RuleType.REVERSE})
        assert winner.prize == 2600
        assert winner.label == "Winner & Bonus"
        assert prize_total(cells) == 3600

    def test_reverse_bonus_merges_into_diagonal(self):
        rows = [0, 8, 1, 2, 3, 4, 5, 6, 7, 9]
        cols = [0, 1, 2, 3, 5, 4, 6, 7, 8, 9]
        cells = resolve(ScoreEvent(quarter=2, home_score=10, away_score=3), rows, cols)
        by_cell = _cell_map(cells)
        assert len(cells) == 9
        merged = by_cell[(1, 4)]
        assert merged.rules == frozenset({RuleType.DIAGONAL, RuleType.REVERSE})
        assert merged.prize == 300
        assert merged.label == "Diagonal & Bonus"
        # Merging keeps the first-visit position of the diagonal entry.
        assert [(c.row, c.col) for c in cells].index((1, 4)) == 5

    def test_wraparound_from_row_zero(self):
        cells = resolve(ScoreEvent(quarter=1, home_score=0, away_score=0), IDENTITY, IDENTITY)
        coords = set(_cell_map(cells))
        assert (9, 0) in coords
        assert (0, 9) in coords
        assert (9, 9) in coords
        assert all(0 <= r <= 9 and 0 <= c <= 9 for r, c in coords)

    def test_wraparound_from_row_nine(self):
        cells = resolve(ScoreEvent(quarter=1, home_score=9, away_score=9), IDENTITY, IDENTITY)
        coords = set(_cell_map(cells))
        assert (0, 9) in coords
        assert (9, 0) in coords
        assert (0, 0) in coords

    def test_permutation_positions_are_used(self):
        rows = [7, 3, 0, 9, 1, 2, 4, 5, 6, 8]
        cols = [2, 9, 5, 1, 0, 3, 8, 4, 7, 6]
        cells = resolve(ScoreEvent(quarter=1, home_score=21, away_score=17), rows, cols)
        winner = cells[0]
        assert rows[winner.row] == 1
        assert cols[winner.col] == 7

    def test_missing_winning_digit_raises(self):
        rows = [1, 1, 2, 3, 4, 5, 6, 7, 8, 9]
        with pytest.raises(InvalidBoardConfig):
            resolve(ScoreEvent(quarter=1, home_score=10, away_score=3), rows, IDENTITY)

    def test_digit_past_grid_edge_raises(self):
        rows = [1, 2, 3, 4, 5, 6, 7, 8, 9, 1, 1, 0]
        with pytest.raises(InvalidBoardConfig):
            resolve(ScoreEvent(quarter=1, home_score=10, away_score=3), rows, IDENTITY)

    def test_bonus_digit_past_grid_edge_skips_bonus(self):
        rows = [0, 1, 2, 3, 4, 5, 6, 7, 9, 1, 8]
        cells = resolve(ScoreEvent(quarter=2, home_score=10, away_score=3), rows, IDENTITY)
        assert all(0 <= c.row < 10 and 0 <= c.col < 10 for c in cells)
        assert all(RuleType.REVERSE not in c.rules for c in cells)

    def test_missing_column_digit_raises(self):
        cols = [0, 1, 2, 4, 4, 5, 6, 7, 8, 9]
        with pytest.raises(InvalidBoardConfig):
            resolve(ScoreEvent(quarter=2, home_score=10, away_score=3), IDENTITY, cols)

    def test_non_sequence_digits_raise_typed_error(self):
        with pytest.raises(InvalidBoardConfig):
            resolve(ScoreEvent(quarter=1, home_score=10, away_score=3), None, IDENTITY)

    def test_invalid_board_config_is_value_error(self):
        assert issubclass(InvalidBoardConfig, ValueError)

    def test_missing_bonus_digit_skips_bonus(self):
        rows = [0, 1, 2, 3, 4, 5, 6, 7, 9, 9]
        cells = resolve(ScoreEvent(quarter=2, home_score=10, away_score=3), rows, IDENTITY)
        assert all(RuleType.REVERSE not in c.rules for c in cells)
        assert prize_total(cells) == 3400

    def test_idempotent(self):
        score = ScoreEvent(quarter=4, home_score=27, away_score=24)
        rng = random.Random(7)
        rows, cols = IDENTITY[:], IDENTITY[:]
        rng.shuffle(rows)
        rng.shuffle(cols)
        assert resolve(score, rows, cols) == resolve(score, rows, cols)

    def test_properties_hold_for_all_digit_pairs(self):
        rng = random.Random(2024)
        for _ in range(5):
            rows, cols = IDENTITY[:], IDENTITY[:]
            rng.shuffle(rows)
            rng.shuffle(cols)
            for quarter in (1, 2, 3, 4):
                for home in range(10):
                    for away in range(10):
                        score = ScoreEvent(quarter=quarter, home_score=home + 20, away_score=away + 30)
                        cells = resolve(score, rows, cols)
                        winners = [c for c in cells if RuleType.WINNER in c.rules]
                        assert len(winners) == 1
                        assert rows[winners[0].row] == home
                        assert cols[winners[0].col] == away
                        assert len({(c.row, c.col) for c in cells}) == len(cells)
                        assert len(cells) <= 10
                        expected = 3600 if quarter in (2, 4) else 3400
                        assert prize_total(cells) == expected


class TestPlaceRulesCollisions:
    """Offsets that collide on small synthetic grids merge and keep their full prizes."""

    def test_two_by_two_grid(self):
        cells = place_rules(0, 0, grid_size=2)
        by_cell = _cell_map(cells)
        assert [(c.row, c.col) for c in cells] == [(0, 0), (1, 0), (0, 1), (1, 1)]
        assert by_cell[(0, 0)].prize == 2400
        assert by_cell[(1, 0)].prize == 300
        assert by_cell[(0, 1)].prize == 300
        assert by_cell[(1, 1)].prize == 400
        assert by_cell[(1, 1)].rules == frozenset({RuleType.DIAGONAL})
        assert prize_total(cells) == 3400

    def test_single_cell_grid(self):
        cells = place_rules(0, 0, grid_size=1)
        assert len(cells) == 1
        assert cells[0].rules == frozenset({RuleType.WINNER, RuleType.ADJACENT, RuleType.DIAGONAL})
        assert cells[0].prize == 3400
        assert cells[0].label == "Winner"

    def test_default_grid_has_nine_distinct_cells(self):
        assert len(place_rules(4, 4)) == 9


class TestCellLabel:
    @pytest.mark.parametrize(
        "rules,expected",
        [
            ({RuleType.WINNER}, "Winner"),
            ({RuleType.WINNER, RuleType.REVERSE}, "Winner & Bonus"),
            ({RuleType.WINNER, RuleType.ADJACENT}, "Winner"),
            ({RuleType.ADJACENT}, "Adjacent"),
            ({RuleType.ADJACENT, RuleType.REVERSE}, "Adjacent & Bonus"),
            ({RuleType.ADJACENT, RuleType.DIAGONAL}, "Adjacent"),
            ({RuleType.DIAGONAL}, "Diagonal"),
            ({RuleType.DIAGONAL, RuleType.REVERSE}, "Diagonal & Bonus"),
            ({RuleType.REVERSE}, "Bonus"),
        ],
    )
    def test_priority(self, rules, expected):
        assert cell_label(rules) == expected


class TestAggregate:
    """Claim Aggregator behaviour."""

    def test_unclaimed_cells_are_dropped(self):
        cells = resolve(ScoreEvent(quarter=1, home_score=10, away_score=3), IDENTITY, IDENTITY)
        assert aggregate(cells, {}) == []

    def test_groups_by_participant(self):
        cells = resolve(ScoreEvent(quarter=2, home_score=10, away_score=3), IDENTITY, IDENTITY)
        claims = {
            (0, 3): _claim(0, 3, 1, "Alice"),
            (8, 5): _claim(8, 5, 1, "Alice"),
            (9, 4): _claim(9, 4, 2, "Bob"),
            (5, 5): _claim(5, 5, 3, "Carol"),
        }
        summaries = aggregate(cells, claims)
        assert [s.participant_id for s in summaries] == [1, 2]

        alice = summaries[0]
        assert alice.participant_name == "Alice"
        assert alice.total_prize == 2600
        assert [(e.row, e.col, e.label, e.prize) for e in alice.entries] == [
            (0, 3, "Winner", 2400),
            (8, 5, "Bonus", 200),
        ]

        bob = summaries[1]
        assert bob.total_prize == 100
        assert bob.entries[0].label == "Diagonal"
        assert bob.entries == (PrizeEntry(row=9, col=4, label="Diagonal", prize=100),)

    def test_total_equals_claimed_cell_prizes(self):
        rng = random.Random(11)
        cells = resolve(ScoreEvent(quarter=4, home_score=14, away_score=7), IDENTITY, IDENTITY)
        claims = {}
        for r in range(10):
            for c in range(10):
                if rng.random() < 0.5:
                    claims[(r, c)] = _claim(r, c, rng.randint(1, 4), quarter=4)
        summaries = aggregate(cells, claims)
        claimed_mass = sum(c.prize for c in cells if (c.row, c.col) in claims)
        assert sum(s.total_prize for s in summaries) == claimed_mass
        assert all(s.entries for s in summaries)

    def test_missing_name_passes_through(self):
        cells = resolve(ScoreEvent(quarter=1, home_score=10, away_score=3), IDENTITY, IDENTITY)
        summaries = aggregate(cells, {(0, 3): _claim(0, 3, "u1", None)})
        assert summaries[0].participant_name is None
        assert summaries[0].total_prize == 2400

    def test_merged_cell_prize_is_reported_once(self):
        cells = resolve(ScoreEvent(quarter=2, home_score=5, away_score=0), IDENTITY, IDENTITY)
        summaries = aggregate(cells, {(5, 0): _claim(5, 0, 9, "Dana", quarter=2)})
        assert len(summaries[0].entries) == 1
        entry = summaries[0].entries[0]
        assert entry.label == "Winner & Bonus"
        assert entry.prize == 2600

    def test_resolve_winners_combines_both_steps(self):
        score = ScoreEvent(quarter=1, home_score=10, away_score=3)
        claims = {(1, 3): _claim(1, 3, 5, "Eve")}
        summaries = resolve_winners(score, IDENTITY, IDENTITY, claims)
        assert summaries[0].total_prize == 150
        assert summaries[0].entries[0].label == "Adjacent"


class TestClaimsByCell:
    def test_filters_to_quarter(self):
        claims = [_claim(0, 0, 1, quarter=1), _claim(0, 0, 2, quarter=2), _claim(3, 4, 3, quarter=2)]
        lookup = claims_by_cell(claims, 2)
        assert set(lookup) == {(0, 0), (3, 4)}
        assert lookup[(0, 0)].participant_id == 2
