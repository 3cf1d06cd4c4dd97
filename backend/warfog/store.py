"""
Transaction helpers over the Flask-SQLAlchemy session.

Contended rows (queue entries, game state, match status, balances, the fee
ledger) are only ever changed through a single conditional UPDATE/DELETE whose
affected-row count tells the caller whether it won the race. Reading a row and
writing it back from Python is never used for those columns.
"""
from functools import wraps

from flask import current_app

from warfog import db
from warfog.errors import WarfogError


def execute_conditional(stmt) -> int:
    """Run an UPDATE/DELETE and return how many rows it touched.

    The ORM identity map is not synchronized; callers re-read or expire
    objects they need afterwards.
    """
    result = db.session.execute(stmt.execution_options(synchronize_session=False))
    return result.rowcount


def transactional(func):
    """Commit after ``func`` returns, roll back and re-raise if it raises.

    Do not nest: helpers called from a transactional function must not commit.
    """
    @wraps(func)
    def wrapper(*args, **kwargs):
        try:
            result = func(*args, **kwargs)
            db.session.commit()
            return result
        except WarfogError as exc:
            db.session.rollback()
            current_app.logger.info(f"[txn-abort] {func.__name__}: {exc.message}")
            raise
        except Exception as exc:
            db.session.rollback()
            current_app.logger.error(f"[txn-failed] {func.__name__}: {exc}", exc_info=True)
            raise

    return wrapper
