from warfog import db
from warfog.models import GameState, Match


def _events(sio_client, name):
    return [msg for msg in sio_client.get_received('/ws') if msg['name'] == name]


def test_connect_greets_client(sio_client):
    assert sio_client.is_connected('/ws')
    assert _events(sio_client, 'connected')


def test_join_match_records_presence(sio_client, make_match, fetch):
    match_id, p1, _ = make_match()
    sio_client.emit('join_match', {'match_id': match_id, 'player_id': p1}, namespace='/ws')
    joined = _events(sio_client, 'joined')
    assert joined[-1]['args'][0] == {'room': f'match:{match_id}'}

    state = GameState.query.filter_by(match_id=match_id).first()
    db.session.refresh(state)
    assert state.player1_last_seen_at is not None
    assert state.player2_last_seen_at is None


def test_heartbeat_answers_pong(sio_client, make_match):
    match_id, p1, _ = make_match()
    sio_client.emit('join_match', {'match_id': match_id, 'player_id': p1}, namespace='/ws')
    sio_client.get_received('/ws')
    sio_client.emit('heartbeat', {'match_id': match_id}, namespace='/ws')
    pongs = _events(sio_client, 'pong')
    assert pongs and pongs[0]['args'][0] == {'match_id': match_id}


def test_join_match_requires_match_id(sio_client):
    sio_client.emit('join_match', {}, namespace='/ws')
    assert _events(sio_client, 'error')


def test_turn_submission_pushes_state_update(sio_client, make_match, submit):
    match_id, p1, _ = make_match()
    sio_client.emit('join_match', {'match_id': match_id}, namespace='/ws')
    sio_client.get_received('/ws')
    submit(match_id, p1, [3, 4], [0, 1, 2])
    updates = _events(sio_client, 'state_update')
    assert updates and updates[0]['args'][0] == {'match_id': match_id}


def test_disconnect_forfeits_absent_player(sio_client, make_match, fetch):
    match_id, p1, p2 = make_match()
    sio_client.emit('join_match', {'match_id': match_id, 'player_id': p1}, namespace='/ws')
    sio_client.disconnect(namespace='/ws')

    match = fetch(Match, match_id)
    assert match.status == 'forfeit'
    assert match.end_reason == 'disconnect'
    assert match.winner_id == p2
    assert match.forfeited_by_id == p1


def test_spectator_disconnect_does_not_forfeit(sio_client, make_match, fetch):
    match_id, _, _ = make_match()
    sio_client.emit('join_match', {'match_id': match_id}, namespace='/ws')
    sio_client.disconnect(namespace='/ws')
    assert fetch(Match, match_id).status == 'active'


def test_waiting_player_told_about_match(sio_client, client, make_player):
    a = make_player()
    b = make_player()
    sio_client.emit('watch_player', {'player_id': a}, namespace='/ws')
    client.post('/api/matchmaking/join', json={'playerId': a, 'wagerAmount': 0})
    match_id = client.post('/api/matchmaking/join', json={'playerId': b, 'wagerAmount': 0}).get_json()['matchId']
    found = _events(sio_client, 'match_found')
    assert found and found[0]['args'][0] == {'match_id': match_id}
