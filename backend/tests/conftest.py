import json
import os
import sys
from decimal import Decimal

import httpx
import pytest

# Ensure the backend root (containing the `warfog` package) is on sys.path
CURRENT_DIR = os.path.dirname(__file__)
BACKEND_ROOT = os.path.abspath(os.path.join(CURRENT_DIR, '..'))
if BACKEND_ROOT not in sys.path:
    sys.path.insert(0, BACKEND_ROOT)

from warfog import create_app, db, socketio


class TestConfig:
    TESTING = True
    SECRET_KEY = os.environ.get('SECRET_KEY', 'test-secret')
    SQLALCHEMY_DATABASE_URI = 'sqlite://'
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    FEE_RATE = 0.05
    FEE_COLLECTION_THRESHOLD = 5.0
    PLATFORM_WALLET = 'PlatformWa11et1111111111111111111111111111'
    PAYOUT_URL = 'http://payouts.test/transfer'
    PAYOUT_TIMEOUT_SEC = 1
    RATING_K = 16
    DEFAULT_RATING = 500
    RATING_FLOOR = 100
    TURN_TIMEOUT_SEC = 60
    STALE_QUEUE_SEC = 300
    PRESENCE_GRACE_SEC = 10
    ENABLE_SWEEPERS = False


@pytest.fixture()
def flask_app():
    application = create_app(TestConfig)
    with application.app_context():
        # Ensure models are imported so tables are created
        import warfog.models  # noqa: F401
        db.create_all()
        yield application
        db.session.remove()
        db.drop_all()


@pytest.fixture()
def client(flask_app):
    return flask_app.test_client()


@pytest.fixture()
def sio_client(flask_app):
    test_client = socketio.test_client(
        flask_app,
        flask_test_client=flask_app.test_client(),
        namespace='/ws'
    )
    yield test_client
    try:
        test_client.disconnect(namespace='/ws')
    except Exception:
        pass


@pytest.fixture()
def make_player(flask_app):
    from warfog.models import Player

    def _make(balance=0, rating=500, username='pilot'):
        player = Player(username=username, balance=Decimal(str(balance)), rating=rating)
        db.session.add(player)
        db.session.commit()
        return player.id

    return _make


@pytest.fixture()
def fetch(flask_app):
    """Fresh read of a row, bypassing the session identity map."""
    def _fetch(model, ident):
        db.session.expire_all()
        return db.session.get(model, ident)

    return _fetch


@pytest.fixture()
def make_match(client, make_player):
    """Pair two players through the queue; returns (match_id, player1_id, player2_id)."""
    def _make(wager=0, balance=1, p1_rating=500, p2_rating=500):
        p1 = make_player(balance=balance, rating=p1_rating, username='alpha')
        p2 = make_player(balance=balance, rating=p2_rating, username='bravo')
        first = client.post('/api/matchmaking/join', json={'playerId': p1, 'wagerAmount': wager}).get_json()
        assert first['status'] == 'queued'
        second = client.post('/api/matchmaking/join', json={'playerId': p2, 'wagerAmount': wager}).get_json()
        assert second['status'] == 'matched'
        return second['matchId'], p1, p2

    return _make


@pytest.fixture()
def set_silos(flask_app):
    from warfog.models import GameState

    def _set(match_id, player1=None, player2=None):
        state = GameState.query.filter_by(match_id=match_id).first()
        if player1 is not None:
            state.player1_silos = json.dumps(player1)
        if player2 is not None:
            state.player2_silos = json.dumps(player2)
        db.session.add(state)
        db.session.commit()

    return _set


@pytest.fixture()
def submit(client):
    def _submit(match_id, player_id, defenses, attacks):
        return client.post('/api/game/submitTurn', json={
            'matchId': match_id,
            'playerId': player_id,
            'defenses': defenses,
            'attacks': attacks,
        })

    return _submit


@pytest.fixture()
def payouts(monkeypatch):
    """Record payout requests; set ``fail`` to make the service unreachable."""
    calls = []
    state = {'fail': False}

    def fake_post(url, json=None, timeout=None):
        calls.append({'url': url, 'json': json})
        if state['fail']:
            raise httpx.ConnectError('payout service down', request=httpx.Request('POST', url))
        return httpx.Response(200, json={'signature': 'sig-1'}, request=httpx.Request('POST', url))

    monkeypatch.setattr(httpx, 'post', fake_post)
    return calls, state


@pytest.fixture()
def file_app(tmp_path):
    """App on a file-backed SQLite database so worker threads get their own connections."""
    class FileConfig(TestConfig):
        SQLALCHEMY_DATABASE_URI = f"sqlite:///{tmp_path / 'warfog.db'}"
        SQLALCHEMY_ENGINE_OPTIONS = {'connect_args': {'check_same_thread': False, 'timeout': 30}}

    application = create_app(FileConfig)
    with application.app_context():
        import warfog.models  # noqa: F401
        db.create_all()
        yield application
        db.session.remove()
        db.drop_all()
