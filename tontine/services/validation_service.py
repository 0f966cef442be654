"""
VALIDATION WORKFLOW SERVICE
===========================

Dual-control (maker-checker) gate for sensitive administrative actions.

STATE MACHINE:
    pending --(slot 1 verified, more slots left)--> stage1_verified
    pending | stage1_verified --(last slot verified)--> completed
    pending | stage1_verified --(final approver rejects)--> rejected
    pending | stage1_verified --(deadline passed)--> expired

CRITICAL RULES:
1. One open request per (action_type, resource_id), enforced by a
   partial unique index, not only by the pre-check
2. Every status change is a conditional UPDATE on the expected status
3. Approvers verify strictly in slot order
4. A completed request authorizes its action exactly once (consume)
5. Audit and notifications run after the commit; their failures are
   logged and never undo the transition
6. Policy refusals are returned as ValidationResult, never raised
"""

import logging
from contextlib import contextmanager
from datetime import datetime, timedelta

from sqlalchemy import and_, func, or_
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm.attributes import set_committed_value

from tontine.extensions import db
from tontine.models import (
    ValidationRequest, ValidationCodeSlot, ActionType, ResourceType, Role,
    ValidationStatus, NON_TERMINAL_STATUSES
)
from tontine.services.authorization_service import (
    can_initiate, can_hold_slot, can_verify, can_reject, can_view_request, can_execute
)
from tontine.services.identity_service import Principal, UserDirectory, ResourceResolver
from tontine.services.notification_service import NotificationEvent
from tontine.services.otp_service import (
    DEFAULT_CODE_TTL, MAX_ATTEMPTS, attempts_remaining, issue_code, reissue_code, verify_code
)
from tontine.services.outcomes import (
    Outcome, ValidationStoreError, success, failure
)
from tontine.services.policy_service import get_policy

logger = logging.getLogger(__name__)

REASON_MIN_LENGTH = 10
REASON_MAX_LENGTH = 500
DEFAULT_REQUEST_TTL = timedelta(hours=24)


class SystemClock:
    """Naive UTC wall clock, matching the DateTime columns."""

    def now(self):
        return datetime.utcnow()


@contextmanager
def _store_guard(operation):
    """Turn store failures into an opaque ValidationStoreError."""
    try:
        yield
    except ValidationStoreError:
        db.session.rollback()
        logger.critical("Validation invariant broken during %s", operation, exc_info=True)
        raise
    except SQLAlchemyError as e:
        db.session.rollback()
        logger.critical("Validation store failure during %s", operation, exc_info=True)
        raise ValidationStoreError(f"{operation} failed") from e


def _validate_reason(reason, label="Reason"):
    text = (reason or '').strip()
    if not REASON_MIN_LENGTH <= len(text) <= REASON_MAX_LENGTH:
        return None, f"{label} must be between {REASON_MIN_LENGTH} and {REASON_MAX_LENGTH} characters"
    return text, None


def _parse_action(action_type):
    if isinstance(action_type, ActionType):
        return action_type
    try:
        return ActionType(action_type)
    except ValueError:
        return None


def _parse_resource(resource_type):
    try:
        return ResourceType(resource_type)
    except ValueError:
        return None


def _approver(slot):
    return Principal(id=slot.approver_id, role=Role.parse(slot.required_role))


def _initiator(request):
    return Principal(id=request.initiator_id, role=Role.parse(request.initiator_role))


class ValidationWorkflow:
    """
    The dual-control controller.

    Collaborators are injected so the workflow runs without a wall clock,
    a mail server or a particular user store:
        notifier.notify(principal, event, payload) -> NotificationResult
        audit.record(principal, action, resource_ref, outcome, details=None)
        clock.now() -> datetime
    """

    def __init__(self, notifier, audit, clock=None, directory=None, resolver=None,
                 policies=None, code_ttl=DEFAULT_CODE_TTL, request_ttl=DEFAULT_REQUEST_TTL):
        self.notifier = notifier
        self.audit = audit
        self.clock = clock or SystemClock()
        self.directory = directory or UserDirectory()
        self.resolver = resolver or ResourceResolver()
        self.policies = policies
        self.code_ttl = code_ttl
        self.request_ttl = request_ttl

    # ============================================================
    # CREATE
    # ============================================================

    def create(self, action_type, resource_id, initiator, reason,
               approver_ids=None, resource_type=None, additional_info=None):
        """
        Open a validation request and issue the first approver's code.

        approver_ids: optional list of user ids, one per approval step.
        When omitted the initiator takes any step matching their role and
        the remaining steps go to the first active user holding the role.
        """
        now = self.clock.now()

        action = _parse_action(action_type)
        if action is None:
            return failure(Outcome.INVALID_INPUT, f"Unknown action type: {action_type}")

        policy = get_policy(action, self.policies)
        allowed, refusal = can_initiate(initiator, policy)
        if not allowed:
            return failure(Outcome.FORBIDDEN, refusal)

        if resource_type is not None and _parse_resource(resource_type) != policy.resource_type:
            return failure(Outcome.INVALID_INPUT,
                           f"{action.value} applies to a {policy.resource_type.value}")

        reason, problem = _validate_reason(reason)
        if problem:
            return failure(Outcome.INVALID_INPUT, problem)

        with _store_guard('create'):
            if self.directory.get_principal(initiator.id) is None:
                return failure(Outcome.FORBIDDEN, "Initiator account is not active")

            existing = self._open_request_for(action, resource_id, now)
            if existing is not None:
                return failure(Outcome.DUPLICATE_PENDING,
                               "A request is already in progress for this resource", existing)

            snapshot = self.resolver.resolve(policy.resource_type, resource_id)
            if snapshot is None:
                return failure(Outcome.RESOURCE_NOT_FOUND,
                               f"{policy.resource_type.value.capitalize()} {resource_id} not found")

            approvers, refusal = self._assign_approvers(policy, initiator, approver_ids)
            if refusal is not None:
                return refusal

            request = ValidationRequest(
                action_type=action.value,
                resource_type=policy.resource_type.value,
                resource_id=resource_id,
                initiator_id=initiator.id,
                initiator_role=initiator.role.value,
                reason=reason,
                resource_name=snapshot.name,
                resource_contact=snapshot.contact,
                additional_info=additional_info,
                status=ValidationStatus.PENDING.value,
                created_at=now,
                expires_at=now + self.request_ttl,
            )
            for position, (principal, role) in enumerate(zip(approvers, policy.approver_roles), start=1):
                request.slots.append(ValidationCodeSlot(
                    position=position,
                    approver_id=principal.id,
                    required_role=role.value,
                ))

            first_slot = request.slots[0]
            code = issue_code(first_slot, now, self.code_ttl)

            db.session.add(request)
            try:
                db.session.commit()
            except IntegrityError:
                # Lost the race against a concurrent create for the same resource
                db.session.rollback()
                logger.info("Concurrent create refused for %s on resource %s",
                            action.value, resource_id)
                return failure(Outcome.DUPLICATE_PENDING,
                               "A request is already in progress for this resource")

        logger.info("Validation request %s opened by user %s: %s on %s %s",
                    request.id, initiator.id, action.value, policy.resource_type.value, resource_id)

        self._after_transition(request, initiator, 'validation.created', request.status)
        self._send_code(request, first_slot, code)

        return success("Validation request created. The first approver has received a code.", request)

    def _open_request_for(self, action, resource_id, now):
        """Return the open request for (action, resource), expiring it first if it is due."""
        open_requests = ValidationRequest.query.filter(
            ValidationRequest.action_type == action.value,
            ValidationRequest.resource_id == resource_id,
            ValidationRequest.status.in_(NON_TERMINAL_STATUSES)
        ).all()

        if len(open_requests) > 1:
            raise ValidationStoreError(
                f"{len(open_requests)} open requests for {action.value} on resource {resource_id}"
            )

        if not open_requests:
            return None

        existing = open_requests[0]
        if existing.is_past_deadline(now) and self._expire(existing, now):
            return None
        return existing

    def _assign_approvers(self, policy, initiator, approver_ids):
        if approver_ids is not None and len(approver_ids) != len(policy.approver_roles):
            return None, failure(Outcome.INVALID_INPUT,
                                 f"{policy.action_type.value} needs exactly "
                                 f"{len(policy.approver_roles)} approver(s)")

        assigned = []
        taken = set()
        for index, role in enumerate(policy.approver_roles):
            if approver_ids is not None:
                principal = self.directory.get_principal(approver_ids[index])
            elif initiator.role == role and initiator.id not in taken:
                principal = initiator
            else:
                principal = self.directory.first_with_role(role, exclude=taken | {initiator.id})

            allowed, refusal = can_hold_slot(principal, role)
            if not allowed:
                return None, failure(Outcome.INVALID_INPUT, refusal)

            if principal.id in taken:
                return None, failure(Outcome.INVALID_INPUT,
                                     "Each approval step must be held by a different person")

            assigned.append(principal)
            taken.add(principal.id)

        if assigned[-1].id == initiator.id:
            return None, failure(Outcome.INVALID_INPUT,
                                 "The final approver cannot be the initiator")

        return assigned, None

    # ============================================================
    # VERIFY
    # ============================================================

    def verify_party(self, request_id, principal, code):
        """
        Submit an approver's code.

        On success the request moves to 'stage1_verified' (and the next
        approver receives a code) or to 'completed' when this was the last
        step.
        """
        now = self.clock.now()

        with _store_guard('verify_party'):
            request = self._load(request_id)
            if request is None:
                return failure(Outcome.REQUEST_NOT_FOUND, "Validation request not found")

            allowed, slot = can_verify(self.directory.get_principal(principal.id), request)
            if not allowed:
                return failure(Outcome.FORBIDDEN, slot, request)

            refusal = self._check_open(request, now)
            if refusal is not None:
                return refusal

            if slot.verified:
                return failure(Outcome.WRONG_STATE, "You have already confirmed this request", request)

            if slot is not request.current_slot():
                return failure(Outcome.WRONG_STATE, "Waiting for an earlier approver", request)
            check = verify_code(slot, code, now)

            if check.outcome is not Outcome.OK:
                # Keep the spent attempt
                db.session.commit()
                logger.warning("Code check failed for request %s slot %s: %s (%s left)",
                               request.id, slot.position, check.outcome.value,
                               check.attempts_remaining)
                return failure(check.outcome, self._code_message(check),
                               request, attempts_remaining=check.attempts_remaining)

            next_slot = request.current_slot()
            if next_slot is None:
                moved = self._transition(request, NON_TERMINAL_STATUSES, ValidationStatus.COMPLETED,
                                         completed_at=now)
                next_code = None
            else:
                moved = self._transition(request, NON_TERMINAL_STATUSES, ValidationStatus.STAGE1_VERIFIED,
                                         stage1_verified_at=now)
                next_code = issue_code(next_slot, now, self.code_ttl) if moved else None

            if not moved:
                db.session.rollback()
                return failure(Outcome.WRONG_STATE, "The request changed state; try again",
                               self._load(request_id))

            db.session.commit()

        if next_slot is None:
            logger.info("Validation request %s completed", request.id)
            self._after_transition(request, principal, 'validation.completed', request.status)
            self._announce_completion(request)
            return success("Validation complete. The action can now be executed.", request,
                           attempts_remaining=check.attempts_remaining)

        logger.info("Validation request %s step %s confirmed by user %s",
                    request.id, slot.position, principal.id)
        self._after_transition(request, principal, 'validation.stage1_verified', request.status)
        self._notify(_initiator(request), NotificationEvent.VERIFIED,
                     self._payload(request, position=slot.position))
        self._send_code(request, next_slot, next_code)
        return success("Code confirmed. The next approver has received a code.", request,
                       attempts_remaining=check.attempts_remaining)

    @staticmethod
    def _code_message(check):
        if check.outcome is Outcome.INVALID_CODE:
            return f"Incorrect code. {check.attempts_remaining} attempt(s) remaining"
        if check.outcome is Outcome.ATTEMPTS_EXCEEDED:
            return (f"Maximum of {MAX_ATTEMPTS} attempts reached. "
                    "This request is locked; open a new one")
        if check.outcome is Outcome.EXPIRED:
            return "Code expired"
        return "This code can no longer be used"

    # ============================================================
    # REJECT
    # ============================================================

    def reject(self, request_id, principal, reason):
        """Final approver refuses the request."""
        now = self.clock.now()

        with _store_guard('reject'):
            request = self._load(request_id)
            if request is None:
                return failure(Outcome.REQUEST_NOT_FOUND, "Validation request not found")

            allowed, refusal = can_reject(self.directory.get_principal(principal.id), request)
            if not allowed:
                return failure(Outcome.FORBIDDEN, refusal, request)

            rejection_reason, problem = _validate_reason(reason, "Rejection reason")
            if problem:
                return failure(Outcome.INVALID_INPUT, problem, request)

            refusal = self._check_open(request, now)
            if refusal is not None:
                return refusal

            moved = self._transition(request, NON_TERMINAL_STATUSES, ValidationStatus.REJECTED,
                                     rejected_at=now, rejected_by=principal.id,
                                     rejection_reason=rejection_reason)
            if not moved:
                db.session.rollback()
                return failure(Outcome.WRONG_STATE, "The request is already closed",
                               self._load(request_id))

            db.session.commit()

        logger.info("Validation request %s rejected by user %s", request.id, principal.id)
        self._after_transition(request, principal, 'validation.rejected', request.status,
                               details={'rejection_reason': rejection_reason})
        self._notify(_initiator(request), NotificationEvent.REJECTED,
                     self._payload(request, rejection_reason=rejection_reason))
        return success("Request rejected.", request)

    # ============================================================
    # RESEND
    # ============================================================

    def resend(self, request_id, principal):
        """Issue a fresh code to the approver whose turn it is."""
        now = self.clock.now()

        with _store_guard('resend'):
            request = self._load(request_id)
            if request is None:
                return failure(Outcome.REQUEST_NOT_FOUND, "Validation request not found")

            allowed, slot = can_verify(self.directory.get_principal(principal.id), request)
            if not allowed:
                return failure(Outcome.FORBIDDEN, "Only the assigned approver can request a new code",
                               request)

            refusal = self._check_open(request, now)
            if refusal is not None:
                return refusal

            if slot.verified or slot is not request.current_slot():
                return failure(Outcome.WRONG_STATE, "No code is outstanding for you", request)

            outcome, code = reissue_code(slot, now, self.code_ttl)
            if outcome is not Outcome.OK:
                db.session.rollback()
                message = ("Maximum attempts reached; this request cannot be resumed"
                           if outcome is Outcome.ATTEMPTS_EXCEEDED
                           else "You have already confirmed this request")
                return failure(outcome, message, request,
                               attempts_remaining=attempts_remaining(slot))

            db.session.commit()

        self._after_transition(request, principal, 'validation.code_resent', request.status,
                               details={'position': slot.position})
        self._send_code(request, slot, code)
        return success("A new code has been sent.", request, attempts_remaining=MAX_ATTEMPTS)

    # ============================================================
    # EXPIRY
    # ============================================================

    def expire_sweep(self, now=None):
        """
        Expire every open request whose deadline or outstanding code has run out.

        Safe to run concurrently and repeatedly: each request is moved by a
        conditional UPDATE, so only one sweeper wins it.

        Returns: list of request ids this call expired
        """
        now = now or self.clock.now()

        with _store_guard('expire_sweep'):
            outstanding_code_expired = ValidationRequest.slots.any(and_(
                ValidationCodeSlot.verified.is_(False),
                ValidationCodeSlot.code_hash.isnot(None),
                ValidationCodeSlot.expires_at < now
            ))
            due = ValidationRequest.query.filter(
                ValidationRequest.status.in_(NON_TERMINAL_STATUSES),
                or_(ValidationRequest.expires_at < now, outstanding_code_expired)
            ).order_by(ValidationRequest.id).all()

            expired = []
            for request in due:
                if self._transition(request, NON_TERMINAL_STATUSES, ValidationStatus.EXPIRED,
                                    expired_at=now):
                    expired.append(request)

            db.session.commit()

        for request in expired:
            self._announce_expiry(request)

        if expired:
            logger.info("Expired %d validation request(s)", len(expired))

        return [request.id for request in expired]

    def _expire(self, request, now):
        """Expire a single request found past its deadline on read."""
        if not self._transition(request, NON_TERMINAL_STATUSES, ValidationStatus.EXPIRED,
                                expired_at=now):
            return False
        db.session.commit()
        self._announce_expiry(request)
        return True

    def _announce_expiry(self, request):
        self._after_transition(request, None, 'validation.expired', request.status)
        payload = self._payload(request)
        for party in self._parties(request):
            self._notify(party, NotificationEvent.EXPIRED, payload)

    # ============================================================
    # EXECUTION GATE
    # ============================================================

    def check_authorized(self, request_id):
        """True only for a completed request that has not been consumed yet."""
        with _store_guard('check_authorized'):
            request = self._load(request_id)
            return bool(
                request is not None
                and request.status == ValidationStatus.COMPLETED.value
                and not request.is_consumed()
            )

    def consume(self, request_id, principal=None, action_type=None, resource_id=None, apply=None):
        """
        Atomically mark a completed request as used.

        apply: optional callable(request) run in the same transaction after
        the claim; if it raises, the claim is rolled back with it and the
        exception propagates.
        """
        now = self.clock.now()

        with _store_guard('consume'):
            request = self._load(request_id)
            if request is None:
                return failure(Outcome.REQUEST_NOT_FOUND, "Validation request not found")

            expected_action = _parse_action(action_type) if action_type is not None else None
            if action_type is not None and (expected_action is None
                                            or request.action_type != expected_action.value):
                return failure(Outcome.FORBIDDEN, "This request authorizes a different action", request)

            if resource_id is not None and request.resource_id != resource_id:
                return failure(Outcome.FORBIDDEN, "This request authorizes a different resource", request)

            if principal is not None:
                allowed, refusal = can_execute(principal, request)
                if not allowed:
                    return failure(Outcome.FORBIDDEN, refusal, request)

            claimed = ValidationRequest.query.filter(
                ValidationRequest.id == request.id,
                ValidationRequest.status == ValidationStatus.COMPLETED.value,
                ValidationRequest.consumed_at.is_(None)
            ).update({
                'consumed_at': now,
                'consumed_by': principal.id if principal else None,
            }, synchronize_session=False)

            if claimed == 0:
                db.session.rollback()
                request = self._load(request_id)
                if request.consumed_at is not None:
                    return failure(Outcome.ALREADY_CONSUMED,
                                   "This validation has already been used", request)
                return failure(Outcome.WRONG_STATE,
                               f"Validation is not complete. Current status: {request.status}", request)

            if apply is not None:
                try:
                    db.session.refresh(request)
                    apply(request)
                except Exception:
                    db.session.rollback()
                    raise

            db.session.commit()

        logger.info("Validation request %s consumed for %s", request.id, request.action_type)
        self._after_transition(request, principal, 'validation.consumed', 'consumed')
        return success("Action authorized.", request)

    # ============================================================
    # READS
    # ============================================================

    def get_request(self, request_id, principal):
        """Fetch a request for its initiator or one of its approvers."""
        with _store_guard('get_request'):
            request = self._load(request_id)
            if request is None:
                return failure(Outcome.REQUEST_NOT_FOUND, "Validation request not found")

            allowed, refusal = can_view_request(principal, request)
            if not allowed:
                return failure(Outcome.FORBIDDEN, refusal)

            return success("OK", request)

    def list_pending_for(self, principal):
        """Open requests on which the principal is an approver, newest first."""
        now = self.clock.now()
        with _store_guard('list_pending_for'):
            requests = ValidationRequest.query.join(ValidationRequest.slots).filter(
                ValidationCodeSlot.approver_id == principal.id,
                ValidationRequest.status.in_(NON_TERMINAL_STATUSES)
            ).order_by(ValidationRequest.created_at.desc()).all()
            return [r for r in requests if not r.is_past_deadline(now)]

    def list_initiated_by(self, principal, status=None):
        with _store_guard('list_initiated_by'):
            query = ValidationRequest.query.filter_by(initiator_id=principal.id)
            if status:
                query = query.filter_by(status=status)
            return query.order_by(ValidationRequest.created_at.desc()).all()

    def get_stats(self, since=None, until=None):
        """Request counts per status, optionally bounded by creation date."""
        with _store_guard('get_stats'):
            query = db.session.query(ValidationRequest.status, func.count(ValidationRequest.id))
            if since:
                query = query.filter(ValidationRequest.created_at >= since)
            if until:
                query = query.filter(ValidationRequest.created_at <= until)
            counts = dict(query.group_by(ValidationRequest.status).all())

        stats = {status.value: counts.get(status.value, 0) for status in ValidationStatus}
        stats['total'] = sum(counts.values())
        return stats

    def describe_request(self, request):
        """Serializable view of a request. Never includes hashes or salts."""
        now = self.clock.now()
        status = request.status
        if status in NON_TERMINAL_STATUSES and request.is_past_deadline(now):
            status = ValidationStatus.EXPIRED.value

        return {
            'id': request.id,
            'action_type': request.action_type,
            'resource_type': request.resource_type,
            'resource_id': request.resource_id,
            'metadata': request.metadata_snapshot,
            'reason': request.reason,
            'status': status,
            'initiator': {'id': request.initiator_id, 'role': request.initiator_role},
            'approvers': [
                {
                    'position': slot.position,
                    'approver_id': slot.approver_id,
                    'required_role': slot.required_role,
                    'verified': slot.verified,
                    'verified_at': _iso(slot.verified_at),
                    'attempts_remaining': attempts_remaining(slot),
                    'code_expires_at': _iso(slot.expires_at),
                }
                for slot in request.slots
            ],
            'created_at': _iso(request.created_at),
            'expires_at': _iso(request.expires_at),
            'completed_at': _iso(request.completed_at),
            'rejected_at': _iso(request.rejected_at),
            'rejection_reason': request.rejection_reason,
            'expired_at': _iso(request.expired_at),
            'consumed': request.consumed_at is not None,
        }

    # ============================================================
    # INTERNALS
    # ============================================================

    def _load(self, request_id):
        return db.session.get(ValidationRequest, request_id, populate_existing=True)

    def _check_open(self, request, now):
        """Refuse work on a closed request; expire it on the spot if it is due."""
        if request.status == ValidationStatus.EXPIRED.value:
            return failure(Outcome.EXPIRED, "This request has expired", request)

        if request.is_terminal():
            return failure(Outcome.WRONG_STATE, f"This request is already {request.status}", request)

        if request.is_past_deadline(now):
            self._expire(request, now)
            return failure(Outcome.EXPIRED, "This request has expired", request)

        return None

    def _transition(self, request, from_statuses, to_status, **fields):
        """Compare-and-swap the status; True if this call made the move."""
        values = {'status': to_status.value}
        values.update(fields)

        updated = ValidationRequest.query.filter(
            ValidationRequest.id == request.id,
            ValidationRequest.status.in_(list(from_statuses))
        ).update(values, synchronize_session=False)

        if updated > 1:
            raise ValidationStoreError(f"Status update touched {updated} rows for request {request.id}")

        if updated == 1:
            for key, value in values.items():
                set_committed_value(request, key, value)
        return updated == 1

    def _parties(self, request):
        """Initiator plus approvers, each once."""
        parties = [_initiator(request)]
        for slot in request.slots:
            if slot.approver_id not in {p.id for p in parties}:
                parties.append(_approver(slot))
        return parties

    def _payload(self, request, **extra):
        payload = {
            'request_id': request.id,
            'action_type': request.action_type,
            'resource_type': request.resource_type,
            'resource_id': request.resource_id,
            'resource_name': request.resource_name,
        }
        payload.update(extra)
        return payload

    def _send_code(self, request, slot, code):
        result = self._notify(_approver(slot), NotificationEvent.CODE_ISSUED,
                              self._payload(request, code=code, position=slot.position,
                                            expires_at=slot.expires_at))
        if result is not None and result.success:
            self._mark_delivered(ValidationCodeSlot, slot.id, 'code_notified')

    def _announce_completion(self, request):
        payload = self._payload(request)
        delivered = False
        for party in self._parties(request):
            result = self._notify(party, NotificationEvent.COMPLETED, payload)
            delivered = delivered or (result is not None and result.success)
        if delivered:
            self._mark_delivered(ValidationRequest, request.id, 'completion_notified')

    def _notify(self, principal, event, payload):
        try:
            result = self.notifier.notify(principal, event, payload)
        except Exception:
            logger.exception("Notifier raised on %s for request %s",
                             event.value, payload.get('request_id'))
            return None

        if not result.success:
            logger.error("Notification %s for request %s to user %s failed: %s",
                         event.value, payload.get('request_id'), principal.id, result.error)
        return result

    def _mark_delivered(self, model, row_id, flag):
        try:
            model.query.filter_by(id=row_id).update({flag: True}, synchronize_session=False)
            db.session.commit()
        except SQLAlchemyError:
            db.session.rollback()
            logger.exception("Could not record delivery flag %s on %s %s", flag, model.__name__, row_id)

    def _after_transition(self, request, actor, action, outcome, details=None):
        """Post-commit hook: audit the transition. Never undoes it."""
        try:
            self.audit.record(actor, action, ('validation_request', request.id), outcome,
                              details=details)
        except Exception:
            logger.exception("Audit record %s for request %s failed", action, request.id)


def _iso(value):
    return value.isoformat() if value else None
