from flask_socketio import join_room, leave_room, emit
from flask import current_app, request
from warfog import socketio, db
from warfog.errors import WarfogError
from warfog.services.presence import forfeit_if_absent, record_heartbeat
from typing import Dict, Any


def handle_connect():
    emit('connected', {'message': 'Connected to /ws'})


def handle_disconnect(*args):
    # A player socket that drops mid-match gets PRESENCE_GRACE_SEC to come back
    ctx = _sid_to_ctx.pop(_get_sid(), None)
    if not ctx or ctx.get('match_id') is None or ctx.get('player_id') is None:
        return
    app = current_app._get_current_object()
    if app.config.get('TESTING'):
        _check_presence(app, ctx['match_id'], ctx['player_id'], 0)
        return
    grace = int(app.config.get('PRESENCE_GRACE_SEC', 10))
    socketio.start_background_task(_check_presence_later, app, ctx['match_id'], ctx['player_id'], grace)


def handle_join_match(data):
    match_id = _as_int((data or {}).get('match_id'))
    player_id = _as_int((data or {}).get('player_id'))
    if match_id is None:
        emit('error', {'message': 'match_id is required'})
        return
    room = f"match:{match_id}"
    join_room(room)
    if player_id is not None:
        _sid_to_ctx[_get_sid()] = {'match_id': match_id, 'player_id': player_id}
        _heartbeat(match_id, player_id)
    emit('joined', {'room': room})


def handle_leave_match(data):
    match_id = _as_int((data or {}).get('match_id'))
    if match_id is None:
        emit('error', {'message': 'match_id is required'})
        return
    room = f"match:{match_id}"
    leave_room(room)
    ctx = _sid_to_ctx.get(_get_sid())
    if ctx and ctx.get('match_id') == match_id:
        # Spectating ends; presence tracking stops without a forfeit
        _sid_to_ctx.pop(_get_sid(), None)
    emit('left', {'room': room})


def handle_watch_player(data):
    player_id = _as_int((data or {}).get('player_id'))
    if player_id is None:
        emit('error', {'message': 'player_id is required'})
        return
    room = f"player:{player_id}"
    join_room(room)
    emit('joined', {'room': room})


def handle_heartbeat(data):
    ctx = _sid_to_ctx.get(_get_sid()) or {}
    match_id = _as_int((data or {}).get('match_id')) or ctx.get('match_id')
    player_id = _as_int((data or {}).get('player_id')) or ctx.get('player_id')
    if match_id is not None and player_id is not None:
        _heartbeat(match_id, player_id)
    emit('pong', data or {})

# ---- Presence helpers ----

_sid_to_ctx: Dict[str, Dict[str, Any]] = {}

def _get_sid() -> str:
    # type: ignore: request.sid exists in Socket.IO context
    return request.sid  # type: ignore

def _as_int(value):
    try:
        return int(value) if value is not None else None
    except (TypeError, ValueError):
        return None

def _heartbeat(match_id: int, player_id: int) -> None:
    try:
        record_heartbeat(match_id, player_id)
    except WarfogError as exc:
        emit('error', {'message': exc.message})

def _check_presence(app, match_id: int, player_id: int, grace: int) -> None:
    try:
        forfeit_if_absent(match_id, player_id, grace)
    except WarfogError as exc:
        app.logger.info(f"[presence-skip] match={match_id} player={player_id}: {exc.message}")
    except Exception:
        db.session.rollback()
        app.logger.error(f"[presence-error] match={match_id} player={player_id}", exc_info=True)

def _check_presence_later(app, match_id: int, player_id: int, grace: int) -> None:
    socketio.sleep(grace)
    with app.app_context():
        _check_presence(app, match_id, player_id, grace)


def register_socketio_handlers(testing: bool = False) -> None:
    """Register Socket.IO event handlers.

    Always register on namespace '/ws'. When testing is True, also mirror
    handlers on the default namespace '/' to accommodate the test harness.
    """
    namespaces = ['/ws', '/'] if testing else ['/ws']
    for namespace in namespaces:
        socketio.on_event('connect', handle_connect, namespace=namespace)
        socketio.on_event('disconnect', handle_disconnect, namespace=namespace)
        socketio.on_event('join_match', handle_join_match, namespace=namespace)
        socketio.on_event('leave_match', handle_leave_match, namespace=namespace)
        socketio.on_event('watch_player', handle_watch_player, namespace=namespace)
        socketio.on_event('heartbeat', handle_heartbeat, namespace=namespace)
        socketio.on_event('ping', handle_heartbeat, namespace=namespace)
