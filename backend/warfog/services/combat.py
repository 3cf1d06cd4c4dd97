"""Simultaneous combat resolution for one turn.

Pure(ish) domain logic: takes silo HP lists and both players' moves, returns
the new HP lists and a per-turn record. No database access.
"""
from dataclasses import dataclass, field
from typing import List, Optional

from warfog.errors import ValidationError
from warfog.models import SILO_COUNT

DEFENSES_PER_TURN = 2
ATTACKS_PER_TURN = 3
DESTROYED_TO_LOSE = 3


@dataclass
class TurnOutcome:
    player1_silos: List[int]
    player2_silos: List[int]
    # attacks that landed / were shielded, keyed by attacker
    player1_hits: List[int] = field(default_factory=list)
    player1_blocked: List[int] = field(default_factory=list)
    player2_hits: List[int] = field(default_factory=list)
    player2_blocked: List[int] = field(default_factory=list)
    player1_destroyed: int = 0
    player2_destroyed: int = 0
    game_over: bool = False
    # 1 or 2; None with game_over means a draw
    winner_slot: Optional[int] = None

    @property
    def is_draw(self) -> bool:
        return self.game_over and self.winner_slot is None


def _validate_indices(name: str, values, expected_len: int) -> List[int]:
    if not isinstance(values, (list, tuple)) or len(values) != expected_len:
        raise ValidationError(f"{name} must be a list of {expected_len} silo indices")
    cleaned = []
    for v in values:
        if isinstance(v, bool) or not isinstance(v, int) or not 0 <= v < SILO_COUNT:
            raise ValidationError(f"{name} contains invalid silo index {v!r}")
        cleaned.append(v)
    if len(set(cleaned)) != len(cleaned):
        raise ValidationError(f"{name} must not repeat a silo")
    return cleaned


def validate_moves(defenses, attacks):
    return (
        _validate_indices('defenses', defenses, DEFENSES_PER_TURN),
        _validate_indices('attacks', attacks, ATTACKS_PER_TURN),
    )


def destroyed_count(silos: List[int]) -> int:
    return sum(1 for hp in silos if hp <= 0)


def apply_attacks(target_silos: List[int], attacks: List[int], defenses: List[int]):
    """Damage ``target_silos`` with ``attacks``; returns (silos, hits, blocked).

    A defended silo takes nothing. An already destroyed silo takes nothing and
    is not reported.
    """
    silos = list(target_silos)
    shielded = set(defenses)
    hits, blocked = [], []
    for idx in attacks:
        if idx in shielded:
            blocked.append(idx)
            continue
        if silos[idx] <= 0:
            continue
        silos[idx] = max(0, silos[idx] - 1)
        hits.append(idx)
    return silos, hits, blocked


def resolve_turn(player1_silos, player1_defenses, player1_attacks,
                 player2_silos, player2_defenses, player2_attacks) -> TurnOutcome:
    new_p2, p1_hits, p1_blocked = apply_attacks(player2_silos, player1_attacks, player2_defenses)
    new_p1, p2_hits, p2_blocked = apply_attacks(player1_silos, player2_attacks, player1_defenses)

    outcome = TurnOutcome(
        player1_silos=new_p1,
        player2_silos=new_p2,
        player1_hits=p1_hits,
        player1_blocked=p1_blocked,
        player2_hits=p2_hits,
        player2_blocked=p2_blocked,
        player1_destroyed=destroyed_count(new_p1),
        player2_destroyed=destroyed_count(new_p2),
    )
    p1_lost = outcome.player1_destroyed >= DESTROYED_TO_LOSE
    p2_lost = outcome.player2_destroyed >= DESTROYED_TO_LOSE
    if p1_lost or p2_lost:
        outcome.game_over = True
        if p1_lost and not p2_lost:
            outcome.winner_slot = 2
        elif p2_lost and not p1_lost:
            outcome.winner_slot = 1
    return outcome


def turn_record(turn: int, outcome: TurnOutcome, before_p1, before_p2,
                p1_moves, p2_moves) -> dict:
    """Replay record for one resolved turn."""
    return {
        'turn': turn,
        'player1_defenses': p1_moves[0],
        'player1_attacks': p1_moves[1],
        'player2_defenses': p2_moves[0],
        'player2_attacks': p2_moves[1],
        'player1_hits': outcome.player1_hits,
        'player1_blocked': outcome.player1_blocked,
        'player2_hits': outcome.player2_hits,
        'player2_blocked': outcome.player2_blocked,
        # silos each side lost this turn
        'player1_silos_lost': outcome.player1_destroyed - destroyed_count(before_p1),
        'player2_silos_lost': outcome.player2_destroyed - destroyed_count(before_p2),
        'game_over': outcome.game_over,
        'winner_slot': outcome.winner_slot,
    }
