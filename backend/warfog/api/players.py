from flask import Blueprint, jsonify, request
from warfog import db
from warfog.services import ledger, turns, wallet


players = Blueprint('players', __name__)


@players.route('', methods=['POST'])
def create_player():
    """Guest on first contact, or get-or-create by wallet address."""
    data = request.get_json(silent=True) or {}
    player = ledger.create_player(
        username=data.get('username') or '',
        wallet_address=data.get('walletAddress'),
    )
    db.session.commit()
    return jsonify(player.to_dict()), 201


@players.route('/<int:player_id>', methods=['GET'])
def get_player(player_id):
    return jsonify(ledger.get_player(player_id).to_dict())


@players.route('/<int:player_id>/wallet', methods=['POST'])
def link_wallet(player_id):
    data = request.get_json(silent=True) or {}
    wallet_address = data.get('walletAddress')
    if not wallet_address:
        return jsonify({'error': 'walletAddress is required'}), 400
    player = ledger.link_wallet(player_id, wallet_address)
    db.session.commit()
    return jsonify(player.to_dict())


@players.route('/<int:player_id>/deposit', methods=['POST'])
def deposit(player_id):
    """Credit a confirmed deposit; ``reference`` is the transfer signature."""
    data = request.get_json(silent=True) or {}
    if data.get('amount') is None:
        return jsonify({'error': 'amount is required'}), 400
    return jsonify(wallet.deposit(player_id, data['amount'], reference=data.get('reference')))


@players.route('/<int:player_id>/withdraw', methods=['POST'])
def withdraw(player_id):
    data = request.get_json(silent=True) or {}
    if data.get('amount') is None:
        return jsonify({'error': 'amount is required'}), 400
    return jsonify(wallet.withdraw(player_id, data['amount']))


@players.route('/<int:player_id>/transactions', methods=['GET'])
def transactions(player_id):
    limit = min(request.args.get('limit', 50, type=int), 200)
    return jsonify({'transactions': ledger.list_transactions(player_id, limit=limit)})


@players.route('/<int:player_id>/matches', methods=['GET'])
def matches(player_id):
    limit = min(request.args.get('limit', 20, type=int), 100)
    return jsonify({'matches': turns.match_history(player_id, limit=limit)})
