"""Recurring sweeps for abandoned turns and stale queue entries.

Each sweep is a plain function that can be called from a test, the ``flask
sweep`` command, or the background loops started by ``start_sweepers``. The
loops only share the database with request handlers.
"""
from decimal import Decimal
import time
from typing import List

from flask import current_app
from sqlalchemy import update

from warfog import db, socketio
from warfog.models import GameState, Match, QueueEntry, MATCH_ACTIVE, MATCH_FORFEIT, PHASE_GAME_OVER, PHASE_PLANNING
from warfog.services import settlement
from warfog.services.fees import collect_fees_quietly
from warfog.services.ledger import get_platform_ledger
from warfog.services.matchmaking import expire_entry


def sweep_abandoned_turns(now=None) -> List[int]:
    """Forfeit matches where one player locked in and the other went silent."""
    now = now or time.time()
    timeout = int(current_app.config.get('TURN_TIMEOUT_SEC', 60))
    cutoff = now - timeout
    stale = (
        db.session.query(
            GameState.match_id, GameState.current_turn, GameState.player1_ready, GameState.player2_ready,
            Match.player1_id, Match.player2_id,
        )
        .join(Match, Match.id == GameState.match_id)
        .filter(
            Match.status == MATCH_ACTIVE,
            GameState.turn_phase == PHASE_PLANNING,
            GameState.player1_ready != GameState.player2_ready,
            GameState.turn_started_at.isnot(None),
            GameState.turn_started_at < cutoff,
        )
        .all()
    )
    forfeited = []
    for match_id, turn, p1_ready, p2_ready, p1_id, p2_id in stale:
        winner_id, loser_id = (p1_id, p2_id) if p1_ready else (p2_id, p1_id)
        # The silent player may have submitted since the query
        guard = (
            update(GameState)
            .where(
                GameState.match_id == match_id,
                GameState.current_turn == turn,
                GameState.turn_phase == PHASE_PLANNING,
                GameState.player1_ready.is_(bool(p1_ready)),
                GameState.player2_ready.is_(bool(p2_ready)),
                GameState.turn_started_at < cutoff,
            )
            .values(turn_phase=PHASE_GAME_OVER)
        )
        result = settlement.settle_match(
            match_id, winner_id,
            status=MATCH_FORFEIT, reason='turn_timeout', forfeited_by=loser_id, now=now, guard=guard,
        )
        if result['settled']:
            current_app.logger.info(f"[sweep-forfeit] match={match_id} winner={winner_id} loser={loser_id}")
            forfeited.append(match_id)
    return forfeited


def sweep_stale_queue(now=None) -> List[int]:
    """Refund and drop queue entries older than STALE_QUEUE_SEC."""
    now = now or time.time()
    cutoff = now - int(current_app.config.get('STALE_QUEUE_SEC', 300))
    entries = (
        db.session.query(QueueEntry.id, QueueEntry.player_id)
        .filter(QueueEntry.joined_at < cutoff)
        .all()
    )
    expired = []
    for entry_id, player_id in entries:
        # None: the player left or got matched since the query
        if expire_entry(entry_id, reason='stale') is not None:
            expired.append(player_id)
    return expired


def _retry_fee_collection() -> None:
    threshold = Decimal(str(current_app.config.get('FEE_COLLECTION_THRESHOLD', 5.0)))
    accumulated = Decimal(str(get_platform_ledger().accumulated_fees or 0))
    db.session.commit()
    if accumulated >= threshold:
        collect_fees_quietly(current_app._get_current_object())


def _loop(app, name: str, interval: int, jobs) -> None:
    app.logger.info(f"[sweeper-start] {name} every {interval}s")
    while True:
        socketio.sleep(interval)
        with app.app_context():
            for job in jobs:
                try:
                    job()
                except Exception:
                    db.session.rollback()
                    app.logger.error(f"[sweeper-error] {name} {job.__name__}", exc_info=True)


def start_sweepers(app) -> None:
    """Start both sweep loops as background tasks. No-ops in TESTING mode."""
    if app.config.get('TESTING') or not app.config.get('ENABLE_SWEEPERS', True):
        return
    socketio.start_background_task(
        _loop, app, 'abandoned-turns',
        int(app.config.get('ABANDONED_SWEEP_INTERVAL_SEC', 30)),
        [sweep_abandoned_turns],
    )
    # Fee payouts that failed earlier are retried on the slower cadence
    socketio.start_background_task(
        _loop, app, 'stale-queue',
        int(app.config.get('STALE_QUEUE_SWEEP_INTERVAL_SEC', 300)),
        [sweep_stale_queue, _retry_fee_collection],
    )
