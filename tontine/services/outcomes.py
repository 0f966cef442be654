"""
VALIDATION OUTCOMES
===================

Every policy decision of the validation engine is returned as a
ValidationResult rather than raised. Only store failures and broken
invariants raise (ValidationStoreError).
"""

from dataclasses import dataclass
from enum import Enum
from typing import Optional


class Outcome(Enum):
    OK = 'ok'
    DUPLICATE_PENDING = 'duplicate_pending'
    RESOURCE_NOT_FOUND = 'resource_not_found'
    REQUEST_NOT_FOUND = 'request_not_found'
    FORBIDDEN = 'forbidden'
    WRONG_STATE = 'wrong_state'
    INVALID_INPUT = 'invalid_input'
    INVALID_CODE = 'invalid_code'
    EXPIRED = 'expired'
    ATTEMPTS_EXCEEDED = 'attempts_exceeded'
    ALREADY_CONSUMED = 'already_consumed'


class ValidationError(Exception):
    """Base exception for validation operations"""

    def __init__(self, message, outcome=None):
        super().__init__(message)
        self.outcome = outcome


class ValidationStoreError(ValidationError):
    """Raised when the store is unavailable or an invariant is broken"""
    pass


@dataclass
class ValidationResult:
    outcome: Outcome
    message: str
    request: Optional[object] = None
    attempts_remaining: Optional[int] = None

    @property
    def ok(self):
        return self.outcome is Outcome.OK


def success(message, request=None, **kwargs):
    return ValidationResult(Outcome.OK, message, request=request, **kwargs)


def failure(outcome, message, request=None, **kwargs):
    return ValidationResult(outcome, message, request=request, **kwargs)

