"""
Structured errors raised by the reward engines.

Every RewardError carries a stable `kind` and a `context` dict so route handlers
and operator tooling can report the exact reason (remaining cooldown, violated
minimum, offending status) without parsing messages.
"""
from decimal import Decimal
from typing import Any, Dict, Optional


class RewardError(Exception):
    """Base reward engine exception"""

    kind = "reward_error"
    http_status = 400

    def __init__(self, message: Optional[str] = None, **context: Any):
        self.context: Dict[str, Any] = context
        super().__init__(message or self.kind.replace("_", " "))

    @property
    def message(self) -> str:
        return str(self)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": False,
            "error": self.kind,
            "message": self.message,
            "context": {k: _jsonable(v) for k, v in self.context.items()},
        }


def _jsonable(value):
    if hasattr(value, "isoformat"):
        return value.isoformat()
    if isinstance(value, Decimal):
        return str(value)
    return value


# ==========================================================
#                  PRECONDITIONS
# ==========================================================
class TooEarly(RewardError):
    kind = "too_early"
    http_status = 409

    def __init__(self, seconds_remaining: int, next_allowed_at=None):
        super().__init__(
            f"Next round allowed in {seconds_remaining} seconds",
            seconds_remaining=seconds_remaining,
            next_allowed_at=next_allowed_at,
        )
        self.seconds_remaining = seconds_remaining


class AlreadyProcessed(RewardError):
    kind = "already_processed"
    http_status = 409


class InvalidTransition(RewardError):
    kind = "invalid_transition"
    http_status = 409


class RoundNotFound(RewardError):
    kind = "round_not_found"
    http_status = 404


class WithdrawalNotFound(RewardError):
    kind = "withdrawal_not_found"
    http_status = 404


class UserNotFound(RewardError):
    kind = "user_not_found"
    http_status = 404


class NotClaimable(RewardError):
    kind = "not_claimable"


class BelowMinimum(RewardError):
    kind = "below_minimum"


class InsufficientBalance(RewardError):
    kind = "insufficient_balance"


class NoWallet(RewardError):
    kind = "no_wallet"


class UnsupportedAsset(RewardError):
    kind = "unsupported_asset"


class NoActiveTiers(RewardError):
    kind = "no_active_tiers"
    http_status = 409


class NothingToSnapshot(RewardError):
    kind = "nothing_to_snapshot"
    http_status = 409


class ConfigurationError(RewardError):
    kind = "configuration_error"


class InvalidReferral(RewardError):
    kind = "invalid_referral"


# ==========================================================
#                  TRANSFER RAIL
# ==========================================================
class TransferError(Exception):
    """Base error for the outbound transfer capability"""

    def __init__(self, message: str, tx_hash: Optional[str] = None):
        super().__init__(message)
        self.tx_hash = tx_hash


class TransferFailed(TransferError):
    """Rejected or reverted; no funds left the relayer."""


class InsufficientLiquidity(TransferFailed):
    pass


class TransferIndeterminate(TransferError):
    """Broadcast but the outcome is unknown. Never resolve automatically."""
