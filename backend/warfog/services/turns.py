"""Turn submission and resolution.

Submissions and resolution are both conditional updates on the game_state
row keyed by ``current_turn``: a player can lock in once per turn, and only
the caller whose update still sees both players ready for that turn applies
the combat result.
"""
import json
import time

from flask import current_app
from sqlalchemy import func, or_, update

from warfog import db
from warfog.errors import ActionAlreadySubmitted, MatchNotFound, SettlementConflict, ValidationError
from warfog.models import GameState, Match, MATCH_COMPLETED, MATCH_FORFEIT, PHASE_GAME_OVER, PHASE_PLANNING
from warfog.services import ledger, settlement
from warfog.services.combat import resolve_turn, turn_record, validate_moves
from warfog.services.notify import notify_match
from warfog.store import execute_conditional


def get_match(match_id) -> Match:
    match = db.session.get(Match, match_id) if match_id is not None else None
    if not match:
        raise MatchNotFound(match_id)
    return match


def submit_turn(match_id, player_id, defenses, attacks, now=None) -> dict:
    defenses, attacks = validate_moves(defenses, attacks)
    now = now or time.time()
    match = get_match(match_id)
    slot = match.slot_of(player_id)
    if slot is None:
        raise ValidationError(f"Player {player_id} is not in match {match_id}")
    if not match.is_open:
        raise ValidationError(f"Match {match_id} is not active")
    state = match.game_state
    if state is None or state.turn_phase != PHASE_PLANNING:
        raise ValidationError(f"Match {match_id} is not accepting moves")

    turn = state.current_turn
    ready_col = GameState.player1_ready if slot == 1 else GameState.player2_ready
    prefix = f'player{slot}'
    try:
        written = execute_conditional(
            update(GameState)
            .where(
                GameState.match_id == match_id,
                GameState.current_turn == turn,
                GameState.turn_phase == PHASE_PLANNING,
                ready_col.is_(False),
            )
            .values(**{
                f'{prefix}_defenses': json.dumps(defenses),
                f'{prefix}_attacks': json.dumps(attacks),
                f'{prefix}_ready': True,
                # first submission of the turn starts the abandonment clock
                'turn_started_at': func.coalesce(GameState.turn_started_at, now),
            })
        )
        if written != 1:
            raise ActionAlreadySubmitted(f"Player {player_id} already submitted turn {turn}")
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise

    current_app.logger.info(f"[turn-submit] match={match_id} turn={turn} player={player_id}")
    notify_match(match_id)

    outcome = try_resolve(match_id, turn, now=now)
    if outcome is None:
        return {'status': 'waiting', 'turnResolved': False}
    return {
        'status': 'resolved',
        'turnResolved': True,
        'gameOver': outcome['game_over'],
        'winnerId': outcome['winner_id'],
    }


def try_resolve(match_id, turn: int, now=None):
    """Resolve ``turn`` if both players are ready.

    Returns None while waiting on the opponent, otherwise the resolved view
    (also when a concurrent caller did the resolving).
    """
    now = now or time.time()
    db.session.expire_all()
    state = GameState.query.filter_by(match_id=match_id).first()
    if state is None:
        raise MatchNotFound(match_id)
    if state.current_turn != turn or state.turn_phase != PHASE_PLANNING:
        return _resolved_view(match_id)
    if not (state.player1_ready and state.player2_ready):
        return None

    match = state.match
    before_p1, before_p2 = state.silos(1), state.silos(2)
    p1_moves, p2_moves = state.moves(1), state.moves(2)
    outcome = resolve_turn(before_p1, p1_moves[0], p1_moves[1], before_p2, p2_moves[0], p2_moves[1])
    record = turn_record(turn, outcome, before_p1, before_p2, p1_moves, p2_moves)
    history = json.loads(state.turn_history) if state.turn_history else []
    history.append(record)

    values = {
        'player1_silos': json.dumps(outcome.player1_silos),
        'player2_silos': json.dumps(outcome.player2_silos),
        'player1_ready': False,
        'player2_ready': False,
        'turn_started_at': None,
        'turn_resolved_at': now,
        'last_turn_result': json.dumps(record),
        'turn_history': json.dumps(history),
    }
    if outcome.game_over:
        values['turn_phase'] = PHASE_GAME_OVER
    else:
        values['current_turn'] = turn + 1

    winner_id = None
    if outcome.winner_slot == 1:
        winner_id = match.player1_id
    elif outcome.winner_slot == 2:
        winner_id = match.player2_id

    result = None
    try:
        claimed = execute_conditional(
            update(GameState)
            .where(
                GameState.match_id == match_id,
                GameState.current_turn == turn,
                GameState.turn_phase == PHASE_PLANNING,
                GameState.player1_ready.is_(True),
                GameState.player2_ready.is_(True),
            )
            .values(**values)
        )
        if claimed != 1:
            db.session.rollback()
            return _resolved_view(match_id)
        if outcome.game_over:
            reason = 'draw' if outcome.is_draw else 'bases_destroyed'
            result = settlement.finalize(match, winner_id, MATCH_COMPLETED, reason, now=now)
        db.session.commit()
    except SettlementConflict:
        # A forfeit got there first; leave the board as it was
        db.session.rollback()
        return _resolved_view(match_id)
    except Exception:
        db.session.rollback()
        raise

    current_app.logger.info(
        f"[turn-resolve] match={match_id} turn={turn} hits p1={outcome.player1_hits} p2={outcome.player2_hits} "
        f"destroyed p1={outcome.player1_destroyed} p2={outcome.player2_destroyed} game_over={outcome.game_over}"
    )
    if result is not None:
        settlement.complete(result, now=now)
    else:
        notify_match(match_id)
    return {'game_over': outcome.game_over, 'winner_id': winner_id}


def _resolved_view(match_id) -> dict:
    match = get_match(match_id)
    return {'game_over': not match.is_open, 'winner_id': match.winner_id}


def resign(match_id, player_id, now=None) -> dict:
    match = get_match(match_id)
    if match.slot_of(player_id) is None:
        raise ValidationError(f"Player {player_id} is not in match {match_id}")
    return settlement.settle_match(
        match_id,
        match.opponent_of(player_id),
        status=MATCH_FORFEIT,
        reason='resigned',
        forfeited_by=player_id,
        now=now,
    )


def get_state(match_id, viewer_id=None) -> dict:
    match = get_match(match_id)
    state = match.game_state
    return {
        'gameState': state.to_dict(viewer_slot=match.slot_of(viewer_id)) if state else None,
        'match': match.to_dict(),
        'resignation': match.resignation(),
    }


def match_history(player_id, limit: int = 20) -> list:
    """Finished matches for ``player_id``, newest first, from their side."""
    ledger.get_player(player_id)
    matches = (
        Match.query.filter(
            Match.status.in_((MATCH_COMPLETED, MATCH_FORFEIT)),
            or_(Match.player1_id == player_id, Match.player2_id == player_id),
        )
        .order_by(Match.ended_at.desc(), Match.id.desc())
        .limit(limit)
        .all()
    )
    history = []
    for match in matches:
        if match.winner_id is None:
            result = 'draw'
        else:
            result = 'win' if match.winner_id == player_id else 'loss'
        slot = match.slot_of(player_id)
        entry = match.to_dict()
        entry.update({
            'opponent_id': match.opponent_of(player_id),
            'result': result,
            'rating_change': match.player1_rating_change if slot == 1 else match.player2_rating_change,
        })
        history.append(entry)
    return history
