"""
Domain exceptions.

Raised by the service layer and rendered as JSON by the error handler
registered in ``create_app``. ``RaceLost`` and ``SettlementConflict`` never
reach a client: callers convert them into benign results.
"""


class WarfogError(Exception):
    """Base class for every domain error."""
    status_code = 500

    def __init__(self, message=None):
        super().__init__(message or self.__class__.__name__)
        self.message = message or self.__class__.__name__


# ============ Validation ============

class ValidationError(WarfogError):
    """Malformed request; nothing was mutated."""
    status_code = 400


class PlayerNotFound(ValidationError):
    status_code = 404

    def __init__(self, player_id):
        self.player_id = player_id
        super().__init__(f"Player {player_id} not found")


class MatchNotFound(ValidationError):
    status_code = 404

    def __init__(self, match_id):
        self.match_id = match_id
        super().__init__(f"Match {match_id} not found")


class AlreadyQueued(ValidationError):
    status_code = 409

    def __init__(self, player_id):
        self.player_id = player_id
        super().__init__(f"Player {player_id} is already queued")


class ActionAlreadySubmitted(ValidationError):
    """Player already locked in moves for the current turn."""
    status_code = 409


class WalletAlreadyLinked(ValidationError):
    status_code = 409

    def __init__(self, wallet_address):
        self.wallet_address = wallet_address
        super().__init__(f"Wallet {wallet_address} is linked to another player")


class DuplicateTransaction(ValidationError):
    """A deposit reference that was already credited."""
    status_code = 409


# ============ Funds ============

class InsufficientBalance(WarfogError):
    status_code = 400

    def __init__(self, player_id, wager):
        self.player_id = player_id
        self.wager = wager
        super().__init__(f"Insufficient balance for wager {wager}")


# ============ Races (internal) ============

class RaceLost(WarfogError):
    """Another request consumed the row we were about to claim."""
    status_code = 409


class SettlementConflict(WarfogError):
    """Match was already finalized by an earlier caller."""
    status_code = 409

    def __init__(self, match_id):
        self.match_id = match_id
        super().__init__(f"Match {match_id} already finalized")


# ============ External ============

class ExternalPayoutFailure(WarfogError):
    status_code = 502
