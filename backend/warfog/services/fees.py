"""Platform fee collection.

The accumulated fees are moved into ``pending_payout`` with a conditional
update before the external payout is attempted, so at most one collection is
ever in flight. A failed payout puts the amount back for the next attempt.
"""
from decimal import Decimal
import time

import httpx
from flask import current_app
from sqlalchemy import update

from warfog import db
from warfog.errors import ExternalPayoutFailure
from warfog.models import PlatformLedger
from warfog.services.ledger import LEDGER_ROW_ID, get_platform_ledger
from warfog.store import execute_conditional


def send_payout(amount: Decimal, destination: str, memo: str) -> dict:
    """POST a transfer request to the configured payout service.

    Used for platform fee collection and player withdrawals.
    """
    url = current_app.config.get('PAYOUT_URL')
    if not url:
        raise ExternalPayoutFailure('Payout service not configured')
    timeout = float(current_app.config.get('PAYOUT_TIMEOUT_SEC', 10))
    try:
        response = httpx.post(
            url,
            json={'destination': destination, 'amount': str(amount), 'memo': memo},
            timeout=timeout,
        )
        response.raise_for_status()
    except httpx.HTTPError as exc:
        raise ExternalPayoutFailure(f'Payout failed: {exc}') from exc
    try:
        return response.json()
    except ValueError:
        return {}


def collect_fees() -> dict:
    destination = current_app.config.get('PLATFORM_WALLET')
    if not destination:
        raise ExternalPayoutFailure('Platform wallet not configured')

    ledger_row = get_platform_ledger()
    db.session.commit()
    amount = Decimal(str(ledger_row.accumulated_fees or 0))
    if amount <= 0:
        return {'collected': False, 'amount': 0.0, 'message': 'No fees to collect'}

    claimed = execute_conditional(
        update(PlatformLedger)
        .where(PlatformLedger.id == LEDGER_ROW_ID, PlatformLedger.pending_payout == 0)
        .values(
            accumulated_fees=PlatformLedger.accumulated_fees - amount,
            pending_payout=amount,
            updated_at=time.time(),
        )
    )
    db.session.commit()
    if claimed != 1:
        current_app.logger.info("[fees-collect-skip] collection already in flight")
        return {'collected': False, 'amount': 0.0, 'message': 'Fee collection already in progress'}

    current_app.logger.info(f"[fees-collect] amount={amount} to={destination}")
    try:
        receipt = send_payout(amount, destination, memo='platform-fees')
    except ExternalPayoutFailure:
        execute_conditional(
            update(PlatformLedger)
            .where(PlatformLedger.id == LEDGER_ROW_ID)
            .values(
                accumulated_fees=PlatformLedger.accumulated_fees + amount,
                pending_payout=0,
                updated_at=time.time(),
            )
        )
        db.session.commit()
        current_app.logger.warning(f"[fees-collect-failed] amount={amount} restored for retry")
        raise

    execute_conditional(
        update(PlatformLedger)
        .where(PlatformLedger.id == LEDGER_ROW_ID)
        .values(
            pending_payout=0,
            total_collected=PlatformLedger.total_collected + amount,
            updated_at=time.time(),
        )
    )
    db.session.commit()
    current_app.logger.info(f"[fees-collected] amount={amount}")
    return {
        'collected': True,
        'amount': float(amount),
        'recipient': destination,
        'receipt': receipt,
    }


def collect_fees_quietly(app) -> None:
    """Fire-and-forget wrapper used by the settlement threshold trigger."""
    with app.app_context():
        try:
            collect_fees()
        except ExternalPayoutFailure as exc:
            app.logger.warning(f"[fees-auto-collect] {exc.message}")
        except Exception:
            db.session.rollback()
            app.logger.error("[fees-auto-collect] unexpected failure", exc_info=True)
