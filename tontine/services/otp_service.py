"""
ONE-TIME CODE SERVICE
=====================

Issues and verifies the 6-digit codes held in validation code slots.

RULES:
1. Only a salted HMAC of the code is stored; the plaintext is returned once
2. A code lives CODE_TTL (15 minutes by default)
3. A slot accepts at most MAX_ATTEMPTS submissions, then it is locked
4. An expired code is rejected without spending an attempt
5. attempts and verified are changed with conditional UPDATEs so two
   concurrent submissions can never both succeed
"""

import hashlib
import hmac
import secrets
from collections import namedtuple
from datetime import timedelta

from werkzeug.security import gen_salt

from tontine.extensions import db
from tontine.models import ValidationCodeSlot
from tontine.services.outcomes import Outcome, ValidationStoreError

CODE_LENGTH = 6
MAX_ATTEMPTS = 3
DEFAULT_CODE_TTL = timedelta(minutes=15)
SALT_LENGTH = 16

CodeCheck = namedtuple('CodeCheck', ['outcome', 'attempts_remaining'])


def generate_code():
    """Uniform random code, zero-padded to CODE_LENGTH digits."""
    return f"{secrets.randbelow(10 ** CODE_LENGTH):0{CODE_LENGTH}d}"


def hash_code(code, salt):
    return hmac.new(salt.encode(), code.encode(), hashlib.sha256).hexdigest()


def attempts_remaining(slot):
    return max(MAX_ATTEMPTS - slot.attempts, 0)


def is_locked(slot):
    return slot.attempts >= MAX_ATTEMPTS


# ============================================================
# ISSUE
# ============================================================

def issue_code(slot, now, ttl=DEFAULT_CODE_TTL):
    """
    Write a fresh code into a slot that has not been persisted with one yet.

    Returns the plaintext code for out-of-band delivery.
    """
    if slot.verified:
        raise ValidationStoreError(f"Slot {slot.id} is already verified")

    code = generate_code()
    salt = gen_salt(SALT_LENGTH)

    slot.salt = salt
    slot.code_hash = hash_code(code, salt)
    slot.issued_at = now
    slot.expires_at = now + ttl
    slot.attempts = 0
    slot.code_notified = False

    return code


def reissue_code(slot, now, ttl=DEFAULT_CODE_TTL):
    """
    Replace the code of an already-issued slot (resend).

    Refused once the slot is verified or locked: a locked slot stays
    locked for the lifetime of the request.

    Returns: (Outcome, plaintext code or None)
    """
    code = generate_code()
    salt = gen_salt(SALT_LENGTH)

    updated = ValidationCodeSlot.query.filter(
        ValidationCodeSlot.id == slot.id,
        ValidationCodeSlot.verified.is_(False),
        ValidationCodeSlot.attempts < MAX_ATTEMPTS
    ).update({
        ValidationCodeSlot.salt: salt,
        ValidationCodeSlot.code_hash: hash_code(code, salt),
        ValidationCodeSlot.issued_at: now,
        ValidationCodeSlot.expires_at: now + ttl,
        ValidationCodeSlot.attempts: 0,
        ValidationCodeSlot.code_notified: False,
    }, synchronize_session=False)

    db.session.refresh(slot)

    if updated == 1:
        return Outcome.OK, code
    if slot.verified:
        return Outcome.WRONG_STATE, None
    return Outcome.ATTEMPTS_EXCEEDED, None


# ============================================================
# VERIFY
# ============================================================

def verify_code(slot, submitted_code, now):
    """
    Check a submitted code against a slot.

    Order of checks: already verified, expired (no attempt spent),
    locked, then one attempt is spent and the hash compared in
    constant time.

    Returns: CodeCheck(outcome, attempts_remaining)
    """
    if slot.verified or not slot.is_issued():
        return CodeCheck(Outcome.WRONG_STATE, attempts_remaining(slot))

    if now > slot.expires_at:
        return CodeCheck(Outcome.EXPIRED, attempts_remaining(slot))

    if is_locked(slot):
        return CodeCheck(Outcome.ATTEMPTS_EXCEEDED, 0)

    issued_hash = slot.code_hash

    # Spend one attempt, but only against the code we just looked at
    claimed = ValidationCodeSlot.query.filter(
        ValidationCodeSlot.id == slot.id,
        ValidationCodeSlot.verified.is_(False),
        ValidationCodeSlot.attempts < MAX_ATTEMPTS,
        ValidationCodeSlot.code_hash == issued_hash
    ).update({
        ValidationCodeSlot.attempts: ValidationCodeSlot.attempts + 1
    }, synchronize_session=False)

    db.session.refresh(slot)

    if claimed == 0:
        if slot.verified:
            return CodeCheck(Outcome.WRONG_STATE, attempts_remaining(slot))
        if is_locked(slot):
            return CodeCheck(Outcome.ATTEMPTS_EXCEEDED, 0)
        # Code was replaced by a resend in the meantime
        return CodeCheck(Outcome.INVALID_CODE, attempts_remaining(slot))

    submitted = '' if submitted_code is None else str(submitted_code)
    candidate = hash_code(submitted.strip(), slot.salt)
    if not hmac.compare_digest(candidate, issued_hash):
        return CodeCheck(Outcome.INVALID_CODE, attempts_remaining(slot))

    marked = ValidationCodeSlot.query.filter(
        ValidationCodeSlot.id == slot.id,
        ValidationCodeSlot.verified.is_(False)
    ).update({
        ValidationCodeSlot.verified: True,
        ValidationCodeSlot.verified_at: now,
    }, synchronize_session=False)

    db.session.refresh(slot)

    if marked == 0:
        return CodeCheck(Outcome.WRONG_STATE, attempts_remaining(slot))

    return CodeCheck(Outcome.OK, attempts_remaining(slot))
