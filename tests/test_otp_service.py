"""Tests for one-time code issuance and verification."""

from datetime import timedelta

import pytest

from conftest import REASON, START, wrong_code
from tontine.models import ValidationCodeSlot
from tontine.services.otp_service import (
    CODE_LENGTH,
    MAX_ATTEMPTS,
    DEFAULT_CODE_TTL,
    generate_code,
    hash_code,
    issue_code,
    verify_code,
)
from tontine.services.outcomes import Outcome, ValidationStoreError


@pytest.fixture
def issued(workflow, notifier, admin, treasurer, member):
    """First slot of a fresh request and its plaintext code."""
    request = workflow.create('delete-account', member.id, admin, REASON).request
    return request.get_slot(1), notifier.code_for(admin.id)


class TestGenerateCode:

    def test_fixed_width_digits(self):
        for _ in range(200):
            code = generate_code()
            assert len(code) == CODE_LENGTH
            assert code.isdigit()

    def test_not_constant(self):
        assert len({generate_code() for _ in range(50)}) > 1


class TestHashCode:

    def test_deterministic_per_salt(self):
        assert hash_code('123456', 'salt-a') == hash_code('123456', 'salt-a')
        assert hash_code('123456', 'salt-a') != hash_code('123456', 'salt-b')

    def test_not_plaintext(self):
        assert '123456' not in hash_code('123456', 'salt-a')


class TestIssueCode:

    def test_fills_slot(self):
        slot = ValidationCodeSlot(position=1, approver_id=1, required_role='admin')
        code = issue_code(slot, START)

        assert slot.code_hash == hash_code(code, slot.salt)
        assert slot.issued_at == START
        assert slot.expires_at == START + DEFAULT_CODE_TTL
        assert slot.attempts == 0

    def test_fresh_salt_each_time(self):
        first = ValidationCodeSlot(position=1, approver_id=1, required_role='admin')
        second = ValidationCodeSlot(position=1, approver_id=1, required_role='admin')
        issue_code(first, START)
        issue_code(second, START)
        assert first.salt != second.salt

    def test_custom_ttl(self):
        slot = ValidationCodeSlot(position=1, approver_id=1, required_role='admin')
        issue_code(slot, START, ttl=timedelta(minutes=5))
        assert slot.expires_at == START + timedelta(minutes=5)

    def test_verified_slot_refused(self):
        slot = ValidationCodeSlot(position=1, approver_id=1, required_role='admin', verified=True)
        with pytest.raises(ValidationStoreError):
            issue_code(slot, START)


class TestVerifyCode:

    def test_correct_code(self, issued):
        slot, code = issued
        check = verify_code(slot, code, START)

        assert check.outcome is Outcome.OK
        assert slot.verified is True
        assert slot.verified_at == START
        assert slot.attempts == 1

    def test_wrong_code_spends_attempt(self, issued):
        slot, code = issued
        check = verify_code(slot, wrong_code(code), START)

        assert check.outcome is Outcome.INVALID_CODE
        assert check.attempts_remaining == MAX_ATTEMPTS - 1
        assert slot.verified is False

    def test_correct_code_refused_once_locked(self, issued):
        slot, code = issued
        for _ in range(MAX_ATTEMPTS):
            verify_code(slot, wrong_code(code), START)

        check = verify_code(slot, code, START)
        assert check.outcome is Outcome.ATTEMPTS_EXCEEDED
        assert slot.verified is False
        assert slot.attempts == MAX_ATTEMPTS

    def test_expired_code_keeps_attempts(self, issued):
        slot, code = issued
        later = START + DEFAULT_CODE_TTL + timedelta(seconds=1)

        for submitted in (code, wrong_code(code)):
            check = verify_code(slot, submitted, later)
            assert check.outcome is Outcome.EXPIRED
        assert slot.attempts == 0
        assert slot.verified is False

    def test_boundary_is_still_valid(self, issued):
        slot, code = issued
        assert verify_code(slot, code, START + DEFAULT_CODE_TTL).outcome is Outcome.OK

    def test_already_verified(self, issued):
        slot, code = issued
        verify_code(slot, code, START)

        assert verify_code(slot, code, START).outcome is Outcome.WRONG_STATE

    def test_whitespace_is_ignored(self, issued):
        slot, code = issued
        assert verify_code(slot, f" {code} ", START).outcome is Outcome.OK

