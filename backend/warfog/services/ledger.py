"""Player ledger gateway.

Balance, stats and rating writes are SQL-side increments so concurrent
matches sharing a player never lose an update. None of these helpers commit;
the caller owns the transaction. Every balance change also appends a
``Transaction`` row in that same transaction.
"""
from decimal import Decimal, InvalidOperation
import time

from flask import current_app
from sqlalchemy import case, update
from sqlalchemy.exc import IntegrityError

from warfog import db
from warfog.errors import InsufficientBalance, PlayerNotFound, ValidationError, WalletAlreadyLinked
from warfog.models import Player, PlatformLedger, Transaction
from warfog.store import execute_conditional

LEDGER_ROW_ID = 1

# Matches Numeric(18, 9) on every money column
AMOUNT_QUANTUM = Decimal('1e-9')
MAX_AMOUNT = Decimal('1e9')


def to_amount(value) -> Decimal:
    """Parse a client supplied amount; rejects negatives and garbage.

    Amounts with more than 9 decimal places are rejected rather than
    rounded, so what is debited is exactly what gets stored and refunded.
    """
    if isinstance(value, bool):
        raise ValidationError(f"Invalid amount {value!r}")
    try:
        amount = Decimal(str(value))
    except (ArithmeticError, ValueError, TypeError):
        raise ValidationError(f"Invalid amount {value!r}")
    if not amount.is_finite() or amount < 0 or amount >= MAX_AMOUNT:
        raise ValidationError(f"Invalid amount {value!r}")
    try:
        quantized = amount.quantize(AMOUNT_QUANTUM)
    except InvalidOperation:
        raise ValidationError(f"Invalid amount {value!r}")
    if quantized != amount:
        raise ValidationError(f"Amount {value!r} has more than 9 decimal places")
    return quantized


def get_player(player_id) -> Player:
    player = db.session.get(Player, player_id) if player_id is not None else None
    if not player:
        raise PlayerNotFound(player_id)
    return player


def create_player(username: str = '', wallet_address=None) -> Player:
    """Guest on first contact, or the player linked to ``wallet_address``."""
    if wallet_address:
        existing = Player.query.filter_by(wallet_address=wallet_address).first()
        if existing:
            return existing
    player = Player(
        username=username or '',
        wallet_address=wallet_address or None,
        is_guest=not wallet_address,
        rating=int(current_app.config.get('DEFAULT_RATING', 500)),
    )
    db.session.add(player)
    try:
        db.session.flush()
    except IntegrityError:
        # A concurrent request created the wallet's player first
        db.session.rollback()
        existing = Player.query.filter_by(wallet_address=wallet_address).first()
        if existing is None:
            raise
        return existing
    return player


def link_wallet(player_id: int, wallet_address: str) -> Player:
    player = get_player(player_id)
    if player.wallet_address == wallet_address:
        return player
    owner = Player.query.filter_by(wallet_address=wallet_address).first()
    if owner is not None:
        raise WalletAlreadyLinked(wallet_address)
    player.wallet_address = wallet_address
    player.is_guest = False
    db.session.add(player)
    try:
        db.session.flush()
    except IntegrityError:
        db.session.rollback()
        raise WalletAlreadyLinked(wallet_address)
    return player


def record_transaction(player_id: int, kind: str, amount: Decimal, match_id=None, reference=None) -> None:
    db.session.add(Transaction(
        player_id=player_id,
        kind=kind,
        amount=amount,
        match_id=match_id,
        reference=reference,
        created_at=time.time(),
    ))


def list_transactions(player_id: int, limit: int = 50) -> list:
    get_player(player_id)
    rows = (
        Transaction.query.filter_by(player_id=player_id)
        .order_by(Transaction.id.desc())
        .limit(limit)
        .all()
    )
    return [row.to_dict() for row in rows]


def debit_balance(player_id: int, amount: Decimal, kind: str, match_id=None) -> None:
    """Take ``amount``; raises InsufficientBalance without touching the row."""
    debited = execute_conditional(
        update(Player)
        .where(Player.id == player_id, Player.balance >= amount)
        .values(balance=Player.balance - amount)
    )
    if debited != 1:
        raise InsufficientBalance(player_id, amount)
    record_transaction(player_id, kind, -amount, match_id=match_id)


def credit_balance(player_id: int, amount: Decimal, kind: str, match_id=None, reference=None) -> None:
    if amount <= 0:
        return
    execute_conditional(
        update(Player)
        .where(Player.id == player_id)
        .values(balance=Player.balance + amount)
    )
    record_transaction(player_id, kind, amount, match_id=match_id, reference=reference)


def record_win(player_id: int, rating_delta: int, now: float) -> None:
    floor = int(current_app.config.get('RATING_FLOOR', 100))
    execute_conditional(
        update(Player)
        .where(Player.id == player_id)
        .values(
            wins=Player.wins + 1,
            current_streak=Player.current_streak + 1,
            longest_streak=case(
                (Player.current_streak + 1 > Player.longest_streak, Player.current_streak + 1),
                else_=Player.longest_streak,
            ),
            rating=_floored_rating(rating_delta, floor),
            last_played_at=now,
        )
    )


def record_loss(player_id: int, rating_delta: int, now: float) -> None:
    floor = int(current_app.config.get('RATING_FLOOR', 100))
    execute_conditional(
        update(Player)
        .where(Player.id == player_id)
        .values(
            losses=Player.losses + 1,
            current_streak=0,
            rating=_floored_rating(rating_delta, floor),
            last_played_at=now,
        )
    )


def record_draw(player_id: int, now: float) -> None:
    execute_conditional(
        update(Player)
        .where(Player.id == player_id)
        .values(current_streak=0, last_played_at=now)
    )


def _floored_rating(delta: int, floor: int):
    return case(
        (Player.rating + delta < floor, floor),
        else_=Player.rating + delta,
    )


# ---- Platform fee ledger ----

def get_platform_ledger() -> PlatformLedger:
    row = db.session.get(PlatformLedger, LEDGER_ROW_ID)
    if row is None:
        row = PlatformLedger(id=LEDGER_ROW_ID)
        db.session.add(row)
        db.session.flush()
    return row


def add_platform_fee(amount: Decimal) -> Decimal:
    """Atomically accumulate ``amount``; returns the new accumulated total."""
    get_platform_ledger()
    execute_conditional(
        update(PlatformLedger)
        .where(PlatformLedger.id == LEDGER_ROW_ID)
        .values(
            accumulated_fees=PlatformLedger.accumulated_fees + amount,
            updated_at=time.time(),
        )
    )
    total = db.session.query(PlatformLedger.accumulated_fees).filter(
        PlatformLedger.id == LEDGER_ROW_ID
    ).scalar()
    return Decimal(str(total or 0))
