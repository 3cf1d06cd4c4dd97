from flask import Blueprint, jsonify, request
from warfog.api import int_field
from warfog.services import turns


game = Blueprint('game', __name__)


@game.route('/submitTurn', methods=['POST'])
def submit_turn():
    data = request.get_json(silent=True) or {}
    match_id = int_field(data, 'matchId')
    player_id = int_field(data, 'playerId')
    if match_id is None or player_id is None:
        return jsonify({'error': 'matchId and playerId are required'}), 400
    result = turns.submit_turn(match_id, player_id, data.get('defenses'), data.get('attacks'))
    return jsonify(result)


@game.route('/state/<int:match_id>', methods=['GET'])
def get_state(match_id):
    # Only the viewer's own pending moves are revealed
    viewer_id = request.args.get('playerId', type=int)
    return jsonify(turns.get_state(match_id, viewer_id=viewer_id))


@game.route('/resign', methods=['POST'])
def resign():
    data = request.get_json(silent=True) or {}
    match_id = int_field(data, 'matchId')
    player_id = int_field(data, 'playerId')
    if match_id is None or player_id is None:
        return jsonify({'error': 'matchId and playerId are required'}), 400
    return jsonify(turns.resign(match_id, player_id))
