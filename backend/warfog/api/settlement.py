from flask import Blueprint, jsonify, request
from warfog.api import int_field
from warfog.models import MATCH_FORFEIT
from warfog.services.fees import collect_fees as svc_collect_fees
from warfog.services.settlement import FORFEIT_REASONS, settle_match


settlement = Blueprint('settlement', __name__)


@settlement.route('/match/settle', methods=['POST'])
def settle():
    """Idempotent; a second call for the same match reports settled=False."""
    data = request.get_json(silent=True) or {}
    match_id = int_field(data, 'matchId')
    winner_id = int_field(data, 'winnerId')
    if match_id is None or winner_id is None:
        return jsonify({'error': 'Missing matchId or winnerId'}), 400
    reason = data.get('reason') or 'disconnect'
    if reason not in FORFEIT_REASONS:
        return jsonify({'error': f'Unknown reason {reason}'}), 400
    return jsonify(settle_match(match_id, winner_id, status=MATCH_FORFEIT, reason=reason))


@settlement.route('/fees/collect', methods=['POST'])
def collect_fees():
    return jsonify(svc_collect_fees())
