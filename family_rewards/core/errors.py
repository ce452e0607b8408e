"""Exception types for the rewards core.

Every error carries the HTTP status and a stable machine-readable ``code``
so the API layer can render it without knowing the individual classes.
"""
from __future__ import annotations


class RewardsError(Exception):
    """Base exception for rewards errors."""

    status_code: int = 500
    code: str = "internal_error"

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message

    def to_dict(self) -> dict[str, str]:
        return {"error": self.message, "code": self.code}


class InvalidPayloadError(RewardsError):
    """Malformed, missing or mistyped input. Nothing was changed."""

    status_code = 400
    code = "invalid_payload"


class RuleViolationError(RewardsError):
    """Well-formed request refused by a business rule. Nothing was changed."""

    status_code = 400

    def __init__(self, message: str, code: str) -> None:
        super().__init__(message)
        self.code = code


class InsufficientPointsError(RuleViolationError):
    """Raised when a redemption costs more than the member's balance."""

    def __init__(self, member_id: str, stars: int, cost: int) -> None:
        self.member_id = member_id
        self.stars = stars
        self.cost = cost
        super().__init__(
            f"Not enough points: {member_id} has {stars}, reward costs {cost}",
            code="insufficient_points",
        )


class NothingToUndoError(RuleViolationError):
    """Raised when undoing a redemption that was never made."""

    def __init__(self, member_id: str, reward_key: str) -> None:
        self.member_id = member_id
        self.reward_key = reward_key
        super().__init__(
            f"Nothing to undo: {member_id} has no redemption of {reward_key}",
            code="nothing_to_undo",
        )


class PersistenceError(RewardsError):
    """The state document could not be written; the mutation was not applied."""

    status_code = 500
    code = "persistence_failed"
