"""Concurrent callers on a shared file database: one winner, no double effects."""
import json
import threading
from decimal import Decimal

from sqlalchemy import update

from warfog import db
from warfog.errors import RaceLost
from warfog.models import GameState, Match, Player, QueueEntry
from warfog.services.matchmaking import _claim_pair, join_queue
from warfog.services.turns import try_resolve


def _race(app, fn, *arg_sets):
    """Run ``fn`` once per argument tuple, all released together."""
    barrier = threading.Barrier(len(arg_sets))
    results, errors = [], []

    def worker(args):
        with app.app_context():
            barrier.wait()
            try:
                results.append(fn(*args))
            except Exception as exc:
                errors.append(exc)
            finally:
                db.session.remove()

    threads = [threading.Thread(target=worker, args=(args,)) for args in arg_sets]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join(timeout=60)
    return results, errors


def _players(count, balance=1):
    ids = []
    for n in range(count):
        player = Player(username=f'racer-{n}', balance=Decimal(str(balance)))
        db.session.add(player)
        db.session.flush()
        ids.append(player.id)
    db.session.commit()
    return ids


def test_waiting_entry_paired_once(file_app):
    a, b, c = _players(3)
    for pid in (a, b, c):
        db.session.add(QueueEntry(player_id=pid, wager_amount=0, joined_at=1.0))
    db.session.commit()

    results, errors = _race(file_app, _claim_pair, (a, b, Decimal('0')), (a, c, Decimal('0')))

    assert len(results) == 1
    assert len(errors) == 1 and isinstance(errors[0], RaceLost)
    db.session.expire_all()
    assert Match.query.count() == 1
    assert GameState.query.count() == 1
    # the losing joiner is still waiting
    loser = c if Match.query.first().player2_id == b else b
    assert QueueEntry.query.filter_by(player_id=loser).count() == 1


def test_turn_resolved_once(file_app):
    a, b = _players(2)
    join_queue(a, 0)
    match_id = join_queue(b, 0)['matchId']
    db.session.execute(
        update(GameState)
        .where(GameState.match_id == match_id)
        .values(
            player1_defenses='[3, 4]', player1_attacks='[0, 1, 2]', player1_ready=True,
            player2_defenses='[0, 1]', player2_attacks='[2, 3, 4]', player2_ready=True,
            turn_started_at=1.0,
        )
    )
    db.session.commit()

    results, errors = _race(file_app, try_resolve, (match_id, 1), (match_id, 1))

    assert errors == []
    assert results == [{'game_over': False, 'winner_id': None}] * 2
    db.session.expire_all()
    state = GameState.query.filter_by(match_id=match_id).first()
    assert state.current_turn == 2
    assert state.silos(1) == [2, 2, 1, 2, 2]
    assert state.silos(2) == [2, 2, 1, 2, 2]
    assert len(json.loads(state.turn_history)) == 1
