"""Player deposits and withdrawals.

A withdrawal debits the balance with a conditional update and commits before
the payout is requested, so the funds cannot be wagered while the transfer is
in flight. A failed payout credits them back.
"""
from decimal import Decimal

from flask import current_app
from sqlalchemy.exc import IntegrityError

from warfog import db
from warfog.errors import DuplicateTransaction, ExternalPayoutFailure, ValidationError
from warfog.models import TX_DEPOSIT, TX_REFUND, TX_WITHDRAW
from warfog.services import ledger
from warfog.services.fees import send_payout


def _positive_amount(value) -> Decimal:
    amount = ledger.to_amount(value)
    if amount <= 0:
        raise ValidationError("Amount must be positive")
    return amount


def _balance(player_id) -> float:
    db.session.expire_all()
    return float(ledger.get_player(player_id).balance)


def deposit(player_id, amount, reference=None) -> dict:
    """Credit a confirmed deposit. ``reference`` is credited at most once."""
    amount = _positive_amount(amount)
    ledger.get_player(player_id)
    try:
        ledger.credit_balance(player_id, amount, TX_DEPOSIT, reference=reference or None)
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        raise DuplicateTransaction(f"Deposit {reference} was already credited")
    except Exception:
        db.session.rollback()
        raise
    current_app.logger.info(f"[deposit] player={player_id} amount={amount} ref={reference}")
    return {'deposited': float(amount), 'balance': _balance(player_id)}


def withdraw(player_id, amount) -> dict:
    amount = _positive_amount(amount)
    player = ledger.get_player(player_id)
    destination = player.wallet_address
    if not destination:
        raise ValidationError("Link a wallet before withdrawing")

    try:
        ledger.debit_balance(player_id, amount, TX_WITHDRAW)
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise

    current_app.logger.info(f"[withdraw] player={player_id} amount={amount} to={destination}")
    try:
        receipt = send_payout(amount, destination, memo='withdrawal')
    except ExternalPayoutFailure:
        try:
            ledger.credit_balance(player_id, amount, TX_REFUND)
            db.session.commit()
        except Exception:
            db.session.rollback()
            current_app.logger.error(f"[withdraw-restore-failed] player={player_id} amount={amount}", exc_info=True)
            raise
        current_app.logger.warning(f"[withdraw-failed] player={player_id} amount={amount} restored")
        raise

    return {
        'withdrawn': float(amount),
        'destination': destination,
        'receipt': receipt,
        'balance': _balance(player_id),
    }
