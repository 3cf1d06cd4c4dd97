from flask import Blueprint, jsonify, request
from warfog.api import int_field
from warfog.services import matchmaking as svc


matchmaking = Blueprint('matchmaking', __name__)


@matchmaking.route('/join', methods=['POST'])
def join():
    data = request.get_json(silent=True) or {}
    player_id = int_field(data, 'playerId')
    if player_id is None:
        return jsonify({'error': 'playerId is required'}), 400
    return jsonify(svc.join_queue(player_id, data.get('wagerAmount', 0)))


@matchmaking.route('/joinSpecific', methods=['POST'])
def join_specific():
    data = request.get_json(silent=True) or {}
    player_id = int_field(data, 'playerId')
    target_player_id = int_field(data, 'targetPlayerId')
    if player_id is None or target_player_id is None:
        return jsonify({'error': 'playerId and targetPlayerId are required'}), 400
    return jsonify(svc.join_specific(player_id, target_player_id))


@matchmaking.route('/leave', methods=['POST'])
def leave():
    data = request.get_json(silent=True) or {}
    player_id = int_field(data, 'playerId')
    if player_id is None:
        return jsonify({'error': 'playerId is required'}), 400
    refunded = svc.leave_queue(player_id)
    return jsonify({'refundedAmount': float(refunded)})


@matchmaking.route('/status/<int:player_id>', methods=['GET'])
def status(player_id):
    return jsonify(svc.queue_status(player_id))


@matchmaking.route('/queue', methods=['GET'])
def queue():
    return jsonify({'tiers': svc.queue_counts()})
