"""Settlement: the single place a match leaves ``active``.

``finalize`` claims the match with a conditional status update and moves
funds inside the caller's transaction; the first caller wins and every later
one gets ``SettlementConflict``. Stats and rating are applied afterwards in
their own transaction and never undo a committed payout.
"""
from decimal import Decimal, ROUND_DOWN
import time

from flask import current_app
from sqlalchemy import update

from warfog import db, socketio
from warfog.errors import MatchNotFound, SettlementConflict, ValidationError
from warfog.models import (
    GameState, Match, MATCH_FORFEIT, OPEN_MATCH_STATUSES, PHASE_GAME_OVER, TX_PAYOUT, TX_REFUND,
)
from warfog.services import ledger
from warfog.services.fees import collect_fees_quietly
from warfog.services.matchmaking import remove_entries_for
from warfog.services.notify import notify_match
from warfog.services.rating import apply_rating_change, rating_change
from warfog.store import execute_conditional

FORFEIT_REASONS = ('turn_timeout', 'disconnect', 'resigned')


def finalize(match: Match, winner_id, status: str, reason: str, forfeited_by=None, now=None) -> dict:
    """Claim ``match`` and move its funds. Caller commits."""
    now = now or time.time()
    claimed = execute_conditional(
        update(Match)
        .where(Match.id == match.id, Match.status.in_(OPEN_MATCH_STATUSES))
        .values(
            status=status,
            winner_id=winner_id,
            end_reason=reason,
            forfeited_by_id=forfeited_by,
            ended_at=now,
        )
    )
    if claimed != 1:
        raise SettlementConflict(match.id)
    # No turn may resolve on a finished match
    execute_conditional(
        update(GameState).where(GameState.match_id == match.id).values(turn_phase=PHASE_GAME_OVER)
    )

    wager = Decimal(str(match.wager_amount or 0))
    result = {
        'match_id': match.id,
        'winner_id': winner_id,
        'loser_id': match.opponent_of(winner_id) if winner_id else None,
        'draw': winner_id is None,
        'status': status,
        'end_reason': reason,
        'total_pot': Decimal('0'),
        'winner_payout': Decimal('0'),
        'platform_fee': Decimal('0'),
        'platform_fees_accumulated': None,
    }
    if wager > 0:
        if winner_id is None:
            # Draw: each escrow goes back to its owner
            ledger.credit_balance(match.player1_id, wager, TX_REFUND, match_id=match.id)
            ledger.credit_balance(match.player2_id, wager, TX_REFUND, match_id=match.id)
        else:
            pot = wager * 2
            fee = (pot * Decimal(str(current_app.config.get('FEE_RATE', 0.05)))).quantize(
                ledger.AMOUNT_QUANTUM, rounding=ROUND_DOWN
            )
            payout = pot - fee
            ledger.credit_balance(winner_id, payout, TX_PAYOUT, match_id=match.id)
            result['total_pot'] = pot
            result['winner_payout'] = payout
            result['platform_fee'] = fee
            if fee > 0:
                result['platform_fees_accumulated'] = ledger.add_platform_fee(fee)

    remove_entries_for([match.player1_id, match.player2_id])
    current_app.logger.info(
        f"[settle] match={match.id} status={status} reason={reason} winner={winner_id} "
        f"pot={result['total_pot']} payout={result['winner_payout']} fee={result['platform_fee']}"
    )
    return result


def complete(result: dict, now=None) -> None:
    """Post-commit work for a freshly finalized match: stats, rating, fees, push."""
    now = now or time.time()
    _apply_stats(result, now)
    _maybe_trigger_fee_collection(result.get('platform_fees_accumulated'))
    notify_match(result['match_id'])


def settle_match(match_id, winner_id, status=MATCH_FORFEIT, reason='disconnect', forfeited_by=None,
                 now=None, guard=None) -> dict:
    """Idempotent settlement entry point for forfeit and disconnect paths.

    ``guard`` is an optional conditional UPDATE run in the same transaction
    before the match is claimed. It re-checks whatever the caller decided on
    (a stale turn, a silent player); if it touches no row the settlement is
    skipped as if another caller had finalized first.
    """
    match = db.session.get(Match, match_id) if match_id is not None else None
    if not match:
        raise MatchNotFound(match_id)
    if match.slot_of(winner_id) is None:
        raise ValidationError(f"Player {winner_id} is not in match {match_id}")
    if status == MATCH_FORFEIT and forfeited_by is None:
        forfeited_by = match.opponent_of(winner_id)

    try:
        if guard is not None and execute_conditional(guard) != 1:
            raise SettlementConflict(match_id)
        result = finalize(match, winner_id, status, reason, forfeited_by=forfeited_by, now=now)
        db.session.commit()
    except SettlementConflict:
        db.session.rollback()
        db.session.refresh(match)
        current_app.logger.info(f"[settle-skip] match={match_id} status={match.status}")
        return {
            'settled': False,
            'match_id': match.id,
            'status': match.status,
            'winner_id': match.winner_id,
        }
    except Exception:
        db.session.rollback()
        raise

    complete(result, now=now)
    return {'settled': True, **_public(result)}


def _public(result: dict) -> dict:
    out = dict(result)
    for key in ('total_pot', 'winner_payout', 'platform_fee', 'platform_fees_accumulated'):
        if out.get(key) is not None:
            out[key] = float(out[key])
    return out


def _apply_stats(result: dict, now: float) -> None:
    match_id = result['match_id']
    try:
        match = db.session.get(Match, match_id)
        if result['draw']:
            ledger.record_draw(match.player1_id, now)
            ledger.record_draw(match.player2_id, now)
            match.player1_rating_change = 0
            match.player2_rating_change = 0
        else:
            winner = ledger.get_player(result['winner_id'])
            loser = ledger.get_player(result['loser_id'])
            k = int(current_app.config.get('RATING_K', 16))
            floor = int(current_app.config.get('RATING_FLOOR', 100))
            win_delta = rating_change(winner.rating, loser.rating, True, k)
            loss_delta = rating_change(loser.rating, winner.rating, False, k)
            applied = {
                winner.id: apply_rating_change(winner.rating, win_delta, floor) - winner.rating,
                loser.id: apply_rating_change(loser.rating, loss_delta, floor) - loser.rating,
            }
            ledger.record_win(winner.id, win_delta, now)
            ledger.record_loss(loser.id, loss_delta, now)
            match.player1_rating_change = applied[match.player1_id]
            match.player2_rating_change = applied[match.player2_id]
        db.session.add(match)
        db.session.commit()
        current_app.logger.info(
            f"[settle-stats] match={match_id} rating p1={match.player1_rating_change} p2={match.player2_rating_change}"
        )
    except Exception:
        # Funds are already committed; stats are reconciled later
        db.session.rollback()
        current_app.logger.error(f"[settle-stats-failed] match={match_id}", exc_info=True)


def _maybe_trigger_fee_collection(accumulated) -> None:
    if accumulated is None:
        return
    threshold = Decimal(str(current_app.config.get('FEE_COLLECTION_THRESHOLD', 5.0)))
    if accumulated < threshold:
        return
    current_app.logger.info(f"[fees-threshold] accumulated={accumulated} threshold={threshold}")
    app = current_app._get_current_object()
    if app.config.get('TESTING'):
        collect_fees_quietly(app)
    else:
        socketio.start_background_task(collect_fees_quietly, app)
