import pytest

from warfog import db
from warfog.errors import RaceLost
from warfog.models import GameState, Match, Player, QueueEntry


def test_first_join_queues_second_pairs(client, make_player, fetch):
    a = make_player(balance=1)
    b = make_player(balance=1)
    res = client.post('/api/matchmaking/join', json={'playerId': a, 'wagerAmount': 0})
    assert res.status_code == 200
    assert res.get_json() == {'status': 'queued'}

    res = client.post('/api/matchmaking/join', json={'playerId': b, 'wagerAmount': 0})
    data = res.get_json()
    assert data['status'] == 'matched'

    match = fetch(Match, data['matchId'])
    assert match.status == 'active'
    assert (match.player1_id, match.player2_id) == (a, b)
    state = GameState.query.filter_by(match_id=match.id).first()
    assert state.current_turn == 1
    assert state.silos(1) == [2, 2, 2, 2, 2]
    assert state.silos(2) == [2, 2, 2, 2, 2]
    assert QueueEntry.query.count() == 0


def test_different_wager_tiers_do_not_pair(client, make_player):
    a = make_player(balance=1)
    b = make_player(balance=1)
    assert client.post('/api/matchmaking/join', json={'playerId': a, 'wagerAmount': 0.1}).get_json()['status'] == 'queued'
    assert client.post('/api/matchmaking/join', json={'playerId': b, 'wagerAmount': 0}).get_json()['status'] == 'queued'
    tiers = client.get('/api/matchmaking/queue').get_json()['tiers']
    assert [t['waiting'] for t in tiers] == [1, 1]


def test_wagered_join_escrows_balance(client, make_player, fetch):
    a = make_player(balance=1)
    client.post('/api/matchmaking/join', json={'playerId': a, 'wagerAmount': 0.1})
    assert float(fetch(Player, a).balance) == pytest.approx(0.9)


def test_insufficient_balance_rejected_without_side_effects(client, make_player, fetch):
    a = make_player(balance=0.05)
    res = client.post('/api/matchmaking/join', json={'playerId': a, 'wagerAmount': 0.1})
    assert res.status_code == 400
    assert 'Insufficient balance' in res.get_json()['error']
    assert QueueEntry.query.count() == 0
    assert float(fetch(Player, a).balance) == pytest.approx(0.05)


def test_join_twice_rejected_and_not_debited_twice(client, make_player, fetch):
    a = make_player(balance=1)
    client.post('/api/matchmaking/join', json={'playerId': a, 'wagerAmount': 0.1})
    res = client.post('/api/matchmaking/join', json={'playerId': a, 'wagerAmount': 0.1})
    assert res.status_code == 409
    assert float(fetch(Player, a).balance) == pytest.approx(0.9)


def test_join_rejects_bad_input(client, make_player):
    a = make_player(balance=1)
    assert client.post('/api/matchmaking/join', json={'wagerAmount': 0}).status_code == 400
    assert client.post('/api/matchmaking/join', json={'playerId': a, 'wagerAmount': -1}).status_code == 400
    assert client.post('/api/matchmaking/join', json={'playerId': a, 'wagerAmount': 'lots'}).status_code == 400
    assert client.post('/api/matchmaking/join', json={'playerId': 9999, 'wagerAmount': 0}).status_code == 404


def test_leave_refunds_escrow(client, make_player, fetch):
    a = make_player(balance=1)
    client.post('/api/matchmaking/join', json={'playerId': a, 'wagerAmount': 0.25})
    res = client.post('/api/matchmaking/leave', json={'playerId': a})
    assert res.get_json()['refundedAmount'] == pytest.approx(0.25)
    assert float(fetch(Player, a).balance) == pytest.approx(1.0)
    assert QueueEntry.query.count() == 0


def test_leave_when_not_queued_is_noop(client, make_player):
    a = make_player(balance=1)
    res = client.post('/api/matchmaking/leave', json={'playerId': a})
    assert res.status_code == 200
    assert res.get_json()['refundedAmount'] == 0


def test_leave_after_being_matched_is_noop(client, make_match, fetch):
    match_id, p1, _ = make_match(wager=0.1)
    res = client.post('/api/matchmaking/leave', json={'playerId': p1})
    assert res.get_json()['refundedAmount'] == 0
    assert float(fetch(Player, p1).balance) == pytest.approx(0.9)
    assert fetch(Match, match_id).status == 'active'


def test_join_specific_targets_one_player(client, make_player):
    a = make_player(balance=1)
    b = make_player(balance=1)
    c = make_player(balance=1)
    client.post('/api/matchmaking/join', json={'playerId': a, 'wagerAmount': 0.1})
    client.post('/api/matchmaking/join', json={'playerId': b, 'wagerAmount': 0.2})
    res = client.post('/api/matchmaking/joinSpecific', json={'playerId': c, 'targetPlayerId': b})
    data = res.get_json()
    assert data['status'] == 'matched'
    match = db.session.get(Match, data['matchId'])
    assert (match.player1_id, match.player2_id) == (b, c)
    assert float(match.wager_amount) == pytest.approx(0.2)
    # a is still waiting in its own tier
    assert QueueEntry.query.filter_by(player_id=a).count() == 1


def test_join_specific_requires_waiting_target(client, make_player):
    a = make_player(balance=1)
    b = make_player(balance=1)
    res = client.post('/api/matchmaking/joinSpecific', json={'playerId': a, 'targetPlayerId': b})
    assert res.status_code == 400
    assert QueueEntry.query.count() == 0
    res = client.post('/api/matchmaking/joinSpecific', json={'playerId': a, 'targetPlayerId': a})
    assert res.status_code == 400


def test_queue_entry_consumed_only_once(client, make_player):
    from warfog.services.matchmaking import _claim_pair
    from decimal import Decimal
    a = make_player(balance=1)
    b = make_player(balance=1)
    c = make_player(balance=1)
    for pid in (a, b, c):
        db.session.add(QueueEntry(player_id=pid, wager_amount=0, joined_at=1.0))
    db.session.commit()

    first = _claim_pair(a, b, Decimal('0'))
    # c racing for the same waiting entry loses and creates nothing
    with pytest.raises(RaceLost):
        _claim_pair(a, c, Decimal('0'))
    assert Match.query.count() == 1
    assert db.session.get(Match, first).player2_id == b
    assert QueueEntry.query.filter_by(player_id=c).count() == 1


def test_queue_status_reports_each_stage(client, make_player):
    a = make_player(balance=1)
    b = make_player(balance=1)
    assert client.get(f'/api/matchmaking/status/{a}').get_json() == {'status': 'idle'}
    client.post('/api/matchmaking/join', json={'playerId': a, 'wagerAmount': 0})
    assert client.get(f'/api/matchmaking/status/{a}').get_json()['status'] == 'queued'
    match_id = client.post('/api/matchmaking/join', json={'playerId': b, 'wagerAmount': 0}).get_json()['matchId']
    assert client.get(f'/api/matchmaking/status/{a}').get_json() == {'status': 'matched', 'matchId': match_id}


def test_wager_beyond_nine_decimals_rejected(client, make_player, fetch):
    a = make_player(balance=1)
    res = client.post('/api/matchmaking/join', json={'playerId': a, 'wagerAmount': '0.1234567891'})
    assert res.status_code == 400
    assert QueueEntry.query.count() == 0
    assert float(fetch(Player, a).balance) == pytest.approx(1.0)


def test_escrow_and_refund_are_logged(client, make_player):
    a = make_player(balance=1)
    client.post('/api/matchmaking/join', json={'playerId': a, 'wagerAmount': 0.25})
    client.post('/api/matchmaking/leave', json={'playerId': a})
    rows = client.get(f'/api/players/{a}/transactions').get_json()['transactions']
    assert [(row['kind'], row['amount']) for row in rows] == [('refund', 0.25), ('escrow', -0.25)]
