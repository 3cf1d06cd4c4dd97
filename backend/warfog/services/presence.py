"""Heartbeat-based disconnect detection.

Heartbeats are stamped on the game_state row so any worker can judge
presence; a player silent for longer than the grace period forfeits through
the normal settlement path.
"""
import time

from flask import current_app
from sqlalchemy import or_, update

from warfog import db
from warfog.models import GameState, MATCH_FORFEIT, PHASE_GAME_OVER
from warfog.services import settlement
from warfog.services.turns import get_match
from warfog.store import execute_conditional


def record_heartbeat(match_id, player_id, now=None) -> bool:
    now = now or time.time()
    match = get_match(match_id)
    slot = match.slot_of(player_id)
    if slot is None or not match.is_open:
        return False
    column = f'player{slot}_last_seen_at'
    touched = execute_conditional(
        update(GameState).where(GameState.match_id == match_id).values(**{column: now})
    )
    db.session.commit()
    return touched == 1


def forfeit_if_absent(match_id, player_id, grace_sec, now=None):
    """Forfeit ``player_id`` unless they sent a heartbeat within ``grace_sec``."""
    now = now or time.time()
    db.session.expire_all()
    match = get_match(match_id)
    slot = match.slot_of(player_id)
    if slot is None or not match.is_open or match.game_state is None:
        return None
    last_seen = getattr(match.game_state, f'player{slot}_last_seen_at')
    if last_seen is not None and last_seen > now - grace_sec:
        return None
    # A heartbeat landing after the read above cancels the forfeit
    seen_col = getattr(GameState, f'player{slot}_last_seen_at')
    guard = (
        update(GameState)
        .where(
            GameState.match_id == match_id,
            or_(seen_col.is_(None), seen_col <= now - grace_sec),
        )
        .values(turn_phase=PHASE_GAME_OVER)
    )
    result = settlement.settle_match(
        match_id,
        match.opponent_of(player_id),
        status=MATCH_FORFEIT,
        reason='disconnect',
        forfeited_by=player_id,
        now=now,
        guard=guard,
    )
    if result['settled']:
        current_app.logger.info(f"[presence-forfeit] match={match_id} player={player_id} last_seen={last_seen}")
    return result
