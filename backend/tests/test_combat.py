import pytest

from warfog.errors import ValidationError
from warfog.services.combat import apply_attacks, resolve_turn, validate_moves

FULL = [2, 2, 2, 2, 2]


def test_defended_silos_take_no_damage():
    silos, hits, blocked = apply_attacks(FULL, attacks=[0, 1, 2], defenses=[0, 1])
    assert silos == [2, 2, 1, 2, 2]
    assert hits == [2]
    assert blocked == [0, 1]


def test_destroyed_silo_is_not_hit_again():
    silos, hits, blocked = apply_attacks([0, 1, 2, 2, 2], attacks=[0, 1, 4], defenses=[2, 3])
    assert silos == [0, 0, 2, 2, 1]
    assert hits == [1, 4]
    assert blocked == []
    assert min(silos) >= 0


def test_turn_continues_below_three_destroyed():
    outcome = resolve_turn(FULL, [3, 4], [0, 1, 2], FULL, [0, 1], [2, 3, 4])
    assert outcome.player1_silos == [2, 2, 1, 2, 2]
    assert outcome.player2_silos == [2, 2, 1, 2, 2]
    assert not outcome.game_over
    assert outcome.winner_slot is None


def test_player_with_three_destroyed_loses():
    p2 = [0, 0, 1, 2, 2]
    outcome = resolve_turn(FULL, [0, 1], [2, 3, 4], p2, [3, 4], [0, 1, 2])
    assert outcome.player2_destroyed == 3
    assert outcome.game_over
    assert outcome.winner_slot == 1
    assert not outcome.is_draw


def test_simultaneous_destruction_is_a_draw():
    worn = [0, 0, 1, 2, 2]
    outcome = resolve_turn(worn, [0, 1], [2, 3, 4], worn, [0, 1], [2, 3, 4])
    assert outcome.player1_destroyed == 3
    assert outcome.player2_destroyed == 3
    assert outcome.is_draw


@pytest.mark.parametrize('defenses,attacks', [
    ([0], [1, 2, 3]),
    ([0, 1], [1, 2]),
    ([0, 5], [1, 2, 3]),
    ([0, 1], [1, 2, -1]),
    ([0, 0], [1, 2, 3]),
    ([0, 1], [2, 2, 3]),
    ([0, 'a'], [1, 2, 3]),
    ([0, True], [1, 2, 3]),
    (None, [1, 2, 3]),
])
def test_invalid_moves_rejected(defenses, attacks):
    with pytest.raises(ValidationError):
        validate_moves(defenses, attacks)
