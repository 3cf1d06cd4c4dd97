from warfog import socketio


def notify_match(match_id: int) -> None:
    """Tell subscribed clients to re-fetch the match state."""
    socketio.emit('state_update', {'match_id': match_id}, to=f"match:{match_id}", namespace='/ws')


def notify_player(player_id: int, event: str, payload: dict) -> None:
    socketio.emit(event, payload, to=f"player:{player_id}", namespace='/ws')
