"""Matchmaking queue with escrow and exactly-once pairing.

Pairing claims both queue rows with one conditional DELETE; only the
transaction that removes exactly those two rows creates the match. Everyone
else gets ``RaceLost`` and falls back to ``queued``.
"""
from decimal import Decimal
import json
import time

from flask import current_app
from sqlalchemy import delete, func, or_
from sqlalchemy.exc import IntegrityError

from warfog import db
from warfog.errors import AlreadyQueued, RaceLost, ValidationError
from warfog.models import (
    GameState, Match, QueueEntry, MATCH_ACTIVE, OPEN_MATCH_STATUSES,
    SILO_COUNT, SILO_MAX_HP, TX_ESCROW, TX_REFUND,
)
from warfog.services import ledger
from warfog.services.notify import notify_player
from warfog.store import execute_conditional, transactional

# How many opponents to try before settling for "queued"
PAIR_CANDIDATES = 5


def join_queue(player_id, wager_amount=0) -> dict:
    wager = ledger.to_amount(wager_amount if wager_amount is not None else 0)
    _enqueue(player_id, wager)
    return _pair(player_id, wager)


def join_specific(player_id, target_player_id) -> dict:
    """Queue up against one waiting player, inheriting their wager tier."""
    if player_id == target_player_id:
        raise ValidationError("Cannot challenge yourself")
    ledger.get_player(player_id)
    target = QueueEntry.query.filter_by(player_id=target_player_id).first()
    if not target:
        raise ValidationError(f"Player {target_player_id} is not waiting in the queue")
    wager = Decimal(str(target.wager_amount))
    _enqueue(player_id, wager)
    return _pair(player_id, wager, target_player_id=target_player_id)


def leave_queue(player_id) -> Decimal:
    """Leave the queue and get the escrow back. Not queued is a no-op."""
    ledger.get_player(player_id)
    entry = QueueEntry.query.filter_by(player_id=player_id).first()
    if not entry:
        return Decimal('0')
    refunded = expire_entry(entry.id, reason='leave')
    return refunded if refunded is not None else Decimal('0')


@transactional
def expire_entry(entry_id: int, reason: str = 'stale'):
    """Delete one queue row and refund its wager; None if it was already gone."""
    entry = db.session.get(QueueEntry, entry_id)
    if not entry:
        return None
    player_id, wager = entry.player_id, Decimal(str(entry.wager_amount))
    removed = execute_conditional(delete(QueueEntry).where(QueueEntry.id == entry_id))
    if removed != 1:
        return None
    ledger.credit_balance(player_id, wager, TX_REFUND)
    current_app.logger.info(f"[queue-{reason}] player={player_id} refunded={wager}")
    return wager


def remove_entries_for(player_ids) -> Decimal:
    """Drop any residual queue rows for ``player_ids``, refunding escrow.

    Runs inside the caller's transaction.
    """
    refunded = Decimal('0')
    rows = (
        db.session.query(QueueEntry.id, QueueEntry.player_id, QueueEntry.wager_amount)
        .filter(QueueEntry.player_id.in_(list(player_ids)))
        .all()
    )
    for entry_id, owner_id, amount in rows:
        wager = Decimal(str(amount))
        if execute_conditional(delete(QueueEntry).where(QueueEntry.id == entry_id)) == 1:
            ledger.credit_balance(owner_id, wager, TX_REFUND)
            refunded += wager
    return refunded


def find_open_match(player_id):
    return (
        Match.query.filter(
            Match.status.in_(OPEN_MATCH_STATUSES),
            or_(Match.player1_id == player_id, Match.player2_id == player_id),
        )
        .order_by(Match.id.desc())
        .first()
    )


def queue_status(player_id) -> dict:
    ledger.get_player(player_id)
    entry = QueueEntry.query.filter_by(player_id=player_id).first()
    if entry:
        return {'status': 'queued', 'wagerAmount': float(entry.wager_amount), 'joinedAt': entry.joined_at}
    match = find_open_match(player_id)
    if match:
        return {'status': 'matched', 'matchId': match.id}
    return {'status': 'idle'}


def queue_counts() -> list:
    rows = (
        db.session.query(QueueEntry.wager_amount, func.count(QueueEntry.id))
        .group_by(QueueEntry.wager_amount)
        .order_by(QueueEntry.wager_amount)
        .all()
    )
    return [{'wagerAmount': float(wager), 'waiting': count} for wager, count in rows]


def _enqueue(player_id, wager: Decimal) -> None:
    """Escrow the wager and insert the queue row in one transaction."""
    ledger.get_player(player_id)
    if QueueEntry.query.filter_by(player_id=player_id).first():
        raise AlreadyQueued(player_id)
    try:
        if wager > 0:
            ledger.debit_balance(player_id, wager, TX_ESCROW)
        db.session.add(QueueEntry(player_id=player_id, wager_amount=wager, joined_at=time.time()))
        db.session.commit()
    except IntegrityError:
        # unique(player_id): a concurrent join won, the debit goes with the rollback
        db.session.rollback()
        raise AlreadyQueued(player_id)
    except Exception:
        db.session.rollback()
        raise
    current_app.logger.info(f"[queue-join] player={player_id} wager={wager}")


def _pair(player_id, wager: Decimal, target_player_id=None) -> dict:
    query = QueueEntry.query.filter(
        QueueEntry.wager_amount == wager,
        QueueEntry.player_id != player_id,
    )
    if target_player_id is not None:
        query = query.filter(QueueEntry.player_id == target_player_id)
    # Plain ids: a successful claim commits and deletes the candidate row
    waiting_ids = [
        row.player_id
        for row in query.with_entities(QueueEntry.player_id)
        .order_by(QueueEntry.joined_at)
        .limit(PAIR_CANDIDATES)
        .all()
    ]

    for waiting_id in waiting_ids:
        try:
            match_id = _claim_pair(waiting_id, player_id, wager)
        except RaceLost:
            if not QueueEntry.query.filter_by(player_id=player_id).first():
                break
            continue
        notify_player(waiting_id, 'match_found', {'match_id': match_id})
        return {'status': 'matched', 'matchId': match_id}

    # Another joiner may have consumed our own entry in the meantime
    if not QueueEntry.query.filter_by(player_id=player_id).first():
        match = find_open_match(player_id)
        if match:
            return {'status': 'matched', 'matchId': match.id}
    return {'status': 'queued'}


@transactional
def _claim_pair(waiting_player_id, joining_player_id, wager: Decimal) -> int:
    removed = execute_conditional(
        delete(QueueEntry).where(
            QueueEntry.player_id.in_([waiting_player_id, joining_player_id]),
            QueueEntry.wager_amount == wager,
        )
    )
    if removed != 2:
        raise RaceLost(f"Queue entries for {waiting_player_id}/{joining_player_id} already consumed")

    now = time.time()
    match = Match(
        player1_id=waiting_player_id,
        player2_id=joining_player_id,
        wager_amount=wager,
        status=MATCH_ACTIVE,
        created_at=now,
        started_at=now,
    )
    db.session.add(match)
    db.session.flush()
    full = json.dumps([SILO_MAX_HP] * SILO_COUNT)
    db.session.add(GameState(match_id=match.id, current_turn=1, player1_silos=full, player2_silos=full))
    current_app.logger.info(
        f"[pair] match={match.id} p1={waiting_player_id} p2={joining_player_id} wager={wager}"
    )
    return match.id
