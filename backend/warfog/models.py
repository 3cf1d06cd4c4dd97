from warfog import db
import json
import time

SILO_COUNT = 5
SILO_MAX_HP = 2

MATCH_WAITING = 'waiting'
MATCH_ACTIVE = 'active'
MATCH_COMPLETED = 'completed'
MATCH_FORFEIT = 'forfeit'
OPEN_MATCH_STATUSES = (MATCH_WAITING, MATCH_ACTIVE)

PHASE_PLANNING = 'planning'
PHASE_GAME_OVER = 'game_over'


def _money(value):
    return float(value) if value is not None else 0.0


def _loads(raw, default=None):
    if not raw:
        return default
    try:
        return json.loads(raw)
    except ValueError:
        return default


class Player(db.Model):
    __tablename__ = 'player'
    id = db.Column(db.Integer, primary_key=True)
    username = db.Column(db.String(64), nullable=False, default='')
    wallet_address = db.Column(db.String(64), unique=True, nullable=True, index=True)
    is_guest = db.Column(db.Boolean, default=True, nullable=False)
    # Escrow-eligible funds; only ever changed with SQL-side increments
    balance = db.Column(db.Numeric(18, 9), default=0, nullable=False)
    rating = db.Column(db.Integer, default=500, nullable=False)
    wins = db.Column(db.Integer, default=0, nullable=False)
    losses = db.Column(db.Integer, default=0, nullable=False)
    current_streak = db.Column(db.Integer, default=0, nullable=False)
    longest_streak = db.Column(db.Integer, default=0, nullable=False)
    created_at = db.Column(db.Float, default=time.time, nullable=False)
    last_played_at = db.Column(db.Float, nullable=True)

    def to_dict(self):
        return {
            'id': self.id,
            'username': self.username,
            'wallet_address': self.wallet_address,
            'is_guest': self.is_guest,
            'balance': _money(self.balance),
            'rating': self.rating,
            'wins': self.wins,
            'losses': self.losses,
            'current_streak': self.current_streak,
            'longest_streak': self.longest_streak,
            'last_played_at': self.last_played_at,
        }


class QueueEntry(db.Model):
    __tablename__ = 'queue_entry'
    id = db.Column(db.Integer, primary_key=True)
    # unique: at most one entry per player
    player_id = db.Column(db.Integer, db.ForeignKey('player.id'), unique=True, nullable=False)
    wager_amount = db.Column(db.Numeric(18, 9), default=0, nullable=False, index=True)
    joined_at = db.Column(db.Float, default=time.time, nullable=False, index=True)

    def to_dict(self):
        return {
            'player_id': self.player_id,
            'wager_amount': _money(self.wager_amount),
            'joined_at': self.joined_at,
        }


class Match(db.Model):
    __tablename__ = 'pvp_match'
    id = db.Column(db.Integer, primary_key=True)
    player1_id = db.Column(db.Integer, db.ForeignKey('player.id'), nullable=False)
    player2_id = db.Column(db.Integer, db.ForeignKey('player.id'), nullable=False)
    wager_amount = db.Column(db.Numeric(18, 9), default=0, nullable=False)
    status = db.Column(db.String(16), default=MATCH_ACTIVE, nullable=False, index=True)  # waiting, active, completed, forfeit
    winner_id = db.Column(db.Integer, db.ForeignKey('player.id'), nullable=True)
    end_reason = db.Column(db.String(32), nullable=True)  # bases_destroyed, draw, turn_timeout, disconnect, resigned
    forfeited_by_id = db.Column(db.Integer, db.ForeignKey('player.id'), nullable=True)
    player1_rating_change = db.Column(db.Integer, nullable=True)
    player2_rating_change = db.Column(db.Integer, nullable=True)
    created_at = db.Column(db.Float, default=time.time, nullable=False)
    started_at = db.Column(db.Float, nullable=True)
    ended_at = db.Column(db.Float, nullable=True)
    game_state = db.relationship('GameState', back_populates='match', uselist=False)

    def slot_of(self, player_id):
        """1 or 2 for a participant, None otherwise."""
        if player_id == self.player1_id:
            return 1
        if player_id == self.player2_id:
            return 2
        return None

    def opponent_of(self, player_id):
        return self.player2_id if player_id == self.player1_id else self.player1_id

    @property
    def is_open(self):
        return self.status in OPEN_MATCH_STATUSES

    def resignation(self):
        if self.status != MATCH_FORFEIT or not self.forfeited_by_id:
            return None
        return {
            'player_id': self.forfeited_by_id,
            'reason': self.end_reason,
            'at': self.ended_at,
        }

    def to_dict(self):
        return {
            'id': self.id,
            'player1_id': self.player1_id,
            'player2_id': self.player2_id,
            'wager_amount': _money(self.wager_amount),
            'status': self.status,
            'winner_id': self.winner_id,
            'end_reason': self.end_reason,
            'player1_rating_change': self.player1_rating_change,
            'player2_rating_change': self.player2_rating_change,
            'created_at': self.created_at,
            'started_at': self.started_at,
            'ended_at': self.ended_at,
        }


class GameState(db.Model):
    __tablename__ = 'game_state'
    id = db.Column(db.Integer, primary_key=True)
    match_id = db.Column(db.Integer, db.ForeignKey('pvp_match.id'), unique=True, nullable=False)
    current_turn = db.Column(db.Integer, default=1, nullable=False)
    turn_phase = db.Column(db.String(16), default=PHASE_PLANNING, nullable=False)
    # JSON-encoded int lists
    player1_silos = db.Column(db.Text, nullable=False)
    player2_silos = db.Column(db.Text, nullable=False)
    player1_defenses = db.Column(db.Text, nullable=True)
    player1_attacks = db.Column(db.Text, nullable=True)
    player2_defenses = db.Column(db.Text, nullable=True)
    player2_attacks = db.Column(db.Text, nullable=True)
    player1_ready = db.Column(db.Boolean, default=False, nullable=False)
    player2_ready = db.Column(db.Boolean, default=False, nullable=False)
    turn_started_at = db.Column(db.Float, nullable=True)
    turn_resolved_at = db.Column(db.Float, nullable=True)
    last_turn_result = db.Column(db.Text, nullable=True)
    turn_history = db.Column(db.Text, nullable=True)
    # Heartbeats from the /ws channel
    player1_last_seen_at = db.Column(db.Float, nullable=True)
    player2_last_seen_at = db.Column(db.Float, nullable=True)
    match = db.relationship('Match', back_populates='game_state')

    def silos(self, slot):
        return _loads(self.player1_silos if slot == 1 else self.player2_silos, [])

    def moves(self, slot):
        if slot == 1:
            return _loads(self.player1_defenses), _loads(self.player1_attacks)
        return _loads(self.player2_defenses), _loads(self.player2_attacks)

    def is_ready(self, slot):
        return bool(self.player1_ready if slot == 1 else self.player2_ready)

    def to_dict(self, viewer_slot=None):
        """Serialize for polling clients.

        A submission for the unresolved turn stays hidden from everyone but
        its author; once resolved the moves are kept for replay.
        """
        payload = {
            'match_id': self.match_id,
            'current_turn': self.current_turn,
            'turn_phase': self.turn_phase,
            'turn_started_at': self.turn_started_at,
            'turn_resolved_at': self.turn_resolved_at,
            'last_turn_result': _loads(self.last_turn_result),
            'turn_history': _loads(self.turn_history, []),
        }
        for slot in (1, 2):
            defenses, attacks = self.moves(slot)
            if self.is_ready(slot) and viewer_slot != slot:
                defenses, attacks = None, None
            prefix = f'player{slot}'
            payload[f'{prefix}_silos'] = self.silos(slot)
            payload[f'{prefix}_ready'] = self.is_ready(slot)
            payload[f'{prefix}_defenses'] = defenses
            payload[f'{prefix}_attacks'] = attacks
        return payload


class PlatformLedger(db.Model):
    """Single-row platform fee accumulator."""
    __tablename__ = 'platform_ledger'
    id = db.Column(db.Integer, primary_key=True)
    accumulated_fees = db.Column(db.Numeric(18, 9), default=0, nullable=False)
    # Amount claimed by a collection whose payout has not been confirmed yet
    pending_payout = db.Column(db.Numeric(18, 9), default=0, nullable=False)
    total_collected = db.Column(db.Numeric(18, 9), default=0, nullable=False)
    updated_at = db.Column(db.Float, default=time.time, nullable=False)

    def to_dict(self):
        return {
            'accumulated_fees': _money(self.accumulated_fees),
            'pending_payout': _money(self.pending_payout),
            'total_collected': _money(self.total_collected),
        }


TX_DEPOSIT = 'deposit'
TX_WITHDRAW = 'withdraw'
TX_ESCROW = 'escrow'
TX_REFUND = 'refund'
TX_PAYOUT = 'payout'


class Transaction(db.Model):
    """Append-only log of every balance movement."""
    __tablename__ = 'ledger_transaction'
    id = db.Column(db.Integer, primary_key=True)
    player_id = db.Column(db.Integer, db.ForeignKey('player.id'), nullable=False, index=True)
    kind = db.Column(db.String(16), nullable=False)  # deposit, withdraw, escrow, refund, payout
    # signed from the player's point of view
    amount = db.Column(db.Numeric(18, 9), nullable=False)
    match_id = db.Column(db.Integer, db.ForeignKey('pvp_match.id'), nullable=True)
    # deposit signature or payout receipt; a deposit reference is credited once
    reference = db.Column(db.String(128), unique=True, nullable=True)
    created_at = db.Column(db.Float, default=time.time, nullable=False)

    def to_dict(self):
        return {
            'id': self.id,
            'player_id': self.player_id,
            'kind': self.kind,
            'amount': _money(self.amount),
            'match_id': self.match_id,
            'reference': self.reference,
            'created_at': self.created_at,
        }
