from datetime import datetime
from enum import Enum

from flask_login import UserMixin
from werkzeug.security import generate_password_hash, check_password_hash

from tontine.extensions import db


# ============================================================
# ENUMS
# ============================================================
class Role(Enum):
    """Closed set of platform roles."""
    ADMIN = 'admin'
    TREASURER = 'treasurer'
    MEMBER = 'member'

    @classmethod
    def parse(cls, value):
        """
        Normalize a stored or submitted role spelling.

        Accepts the historical spellings ('Admin', 'Tresorier', 'Trésorier',
        'Membre') so that nothing past the identity boundary compares raw
        role strings.
        """
        if isinstance(value, cls):
            return value
        key = (value or '').strip().lower()
        aliases = {
            'admin': cls.ADMIN,
            'administrator': cls.ADMIN,
            'treasurer': cls.TREASURER,
            'tresorier': cls.TREASURER,
            'trésorier': cls.TREASURER,
            'member': cls.MEMBER,
            'membre': cls.MEMBER,
        }
        if key not in aliases:
            raise ValueError(f"Unknown role: {value!r}")
        return aliases[key]


class ResourceType(Enum):
    ACCOUNT = 'account'
    GROUP = 'group'


class ActionType(Enum):
    """Sensitive operations that require dual-control validation."""
    DELETE_ACCOUNT = 'delete-account'
    DELETE_GROUP = 'delete-group'
    BLOCK_GROUP = 'block-group'
    UNBLOCK_GROUP = 'unblock-group'
    ACTIVATE_ACCOUNT = 'activate-account'
    DEACTIVATE_ACCOUNT = 'deactivate-account'


class ValidationStatus(Enum):
    PENDING = 'pending'
    STAGE1_VERIFIED = 'stage1_verified'
    COMPLETED = 'completed'
    REJECTED = 'rejected'
    EXPIRED = 'expired'


class GroupStatus(Enum):
    ACTIVE = 'active'
    BLOCKED = 'blocked'


NON_TERMINAL_STATUSES = (
    ValidationStatus.PENDING.value,
    ValidationStatus.STAGE1_VERIFIED.value,
)

TERMINAL_STATUSES = (
    ValidationStatus.COMPLETED.value,
    ValidationStatus.REJECTED.value,
    ValidationStatus.EXPIRED.value,
)


# ============================================================
# USER MODEL
# ============================================================
class User(UserMixin, db.Model):
    """
    A platform account.

    Accounts are never physically removed: 'delete-account' stamps
    deleted_at so past validation requests and audit entries keep
    pointing at a real row.
    """
    __tablename__ = 'users'

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(100), nullable=False)
    email = db.Column(db.String(120), unique=True, nullable=False)
    phone = db.Column(db.String(30))
    password_hash = db.Column(db.String(256), nullable=False)
    role = db.Column(db.String(20), default=Role.MEMBER.value, nullable=False)
    is_active = db.Column(db.Boolean, default=True, nullable=False)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    deactivated_at = db.Column(db.DateTime)
    deleted_at = db.Column(db.DateTime)

    groups_created = db.relationship('Group', backref='creator', lazy='dynamic')
    notifications = db.relationship('Notification', backref='user', lazy='dynamic')

    def set_password(self, password):
        """Hash and set the user's password."""
        self.password_hash = generate_password_hash(password)

    def check_password(self, password):
        """Verify password against stored hash."""
        return check_password_hash(self.password_hash, password)

    def is_deleted(self):
        return self.deleted_at is not None

    def __repr__(self):
        return f'<User {self.name}>'


# ============================================================
# GROUP MODEL
# ============================================================
class Group(db.Model):
    """
    A rotating-savings group (tontine).

    Blocking freezes contributions and draws; deletion is a soft delete.
    """
    __tablename__ = 'groups'

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(100), nullable=False)
    description = db.Column(db.String(500))
    created_by = db.Column(db.Integer, db.ForeignKey('users.id'), nullable=False)
    status = db.Column(db.String(20), default=GroupStatus.ACTIVE.value, nullable=False)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    blocked_at = db.Column(db.DateTime)
    deleted_at = db.Column(db.DateTime)

    def is_blocked(self):
        return self.status == GroupStatus.BLOCKED.value

    def is_deleted(self):
        return self.deleted_at is not None

    def __repr__(self):
        return f'<Group {self.name}>'


# ============================================================
# VALIDATION REQUEST MODEL
# ============================================================
class ValidationRequest(db.Model):
    """
    A dual-control request gating one sensitive action on one resource.

    Lifecycle:
    1. Created with status='pending'; the first approver receives a code
    2. First approver verifies -> 'stage1_verified' (two-party policies)
    3. Last approver verifies -> 'completed'
    4. 'rejected' / 'expired' end the request without authorizing anything
    5. A completed request authorizes the action once (consumed_at)

    CRITICAL: status only moves forward. Terminal rows are never updated
    except for consumed_at on a completed request.
    """
    __tablename__ = 'validation_requests'

    id = db.Column(db.Integer, primary_key=True)
    action_type = db.Column(db.String(40), nullable=False, index=True)
    resource_type = db.Column(db.String(20), nullable=False)
    resource_id = db.Column(db.Integer, nullable=False, index=True)

    # Frozen at creation
    initiator_id = db.Column(db.Integer, db.ForeignKey('users.id'), nullable=False, index=True)
    initiator_role = db.Column(db.String(20), nullable=False)
    reason = db.Column(db.String(500), nullable=False)

    # Resource snapshot, so the request stays readable after a rename or removal
    resource_name = db.Column(db.String(255))
    resource_contact = db.Column(db.String(255))
    additional_info = db.Column(db.JSON)

    status = db.Column(db.String(20), default=ValidationStatus.PENDING.value,
                       nullable=False, index=True)

    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)
    expires_at = db.Column(db.DateTime, nullable=False)
    stage1_verified_at = db.Column(db.DateTime)
    completed_at = db.Column(db.DateTime)
    rejected_at = db.Column(db.DateTime)
    rejected_by = db.Column(db.Integer, db.ForeignKey('users.id'))
    rejection_reason = db.Column(db.String(500))
    expired_at = db.Column(db.DateTime)

    # Execution gate
    consumed_at = db.Column(db.DateTime)
    consumed_by = db.Column(db.Integer, db.ForeignKey('users.id'))

    completion_notified = db.Column(db.Boolean, default=False, nullable=False)

    initiator = db.relationship('User', foreign_keys=[initiator_id])
    slots = db.relationship('ValidationCodeSlot', backref='request',
                            order_by='ValidationCodeSlot.position',
                            cascade='all, delete-orphan')

    # At most one open request per (action, resource). The partial index is
    # what closes the check-then-insert race between concurrent creators.
    __table_args__ = (
        db.Index(
            'uq_validation_open_per_resource',
            'action_type', 'resource_id',
            unique=True,
            sqlite_where=db.text("status IN ('pending', 'stage1_verified')"),
            postgresql_where=db.text("status IN ('pending', 'stage1_verified')"),
        ),
        db.Index('ix_validation_status_created', 'status', 'created_at'),
    )

    def is_terminal(self):
        return self.status in TERMINAL_STATUSES

    def is_consumed(self):
        return self.consumed_at is not None

    def get_slot(self, position):
        for slot in self.slots:
            if slot.position == position:
                return slot
        return None

    def slot_for(self, principal_id):
        """Return the slot assigned to a principal, if any."""
        for slot in self.slots:
            if slot.approver_id == principal_id:
                return slot
        return None

    def current_slot(self):
        """First slot that still needs verification."""
        for slot in self.slots:
            if not slot.verified:
                return slot
        return None

    def last_slot(self):
        return self.slots[-1] if self.slots else None

    def involves(self, principal_id):
        return self.initiator_id == principal_id or self.slot_for(principal_id) is not None

    def is_past_deadline(self, now):
        """Overall deadline, or the outstanding code's expiry, has passed."""
        if now > self.expires_at:
            return True
        slot = self.current_slot()
        return slot is not None and slot.is_expired(now)

    @property
    def metadata_snapshot(self):
        return {
            'resource_name': self.resource_name,
            'resource_contact': self.resource_contact,
            'additional_info': self.additional_info,
        }

    def __repr__(self):
        return f'<ValidationRequest {self.action_type} resource={self.resource_id} status={self.status}>'


# ============================================================
# VALIDATION CODE SLOT MODEL
# ============================================================
class ValidationCodeSlot(db.Model):
    """
    One approver's seat on a validation request.

    Only the salted hash of the one-time code is stored. attempts never
    exceeds MAX_ATTEMPTS and verified never reverts to False.
    """
    __tablename__ = 'validation_code_slots'

    id = db.Column(db.Integer, primary_key=True)
    request_id = db.Column(db.Integer, db.ForeignKey('validation_requests.id'), nullable=False)
    position = db.Column(db.Integer, nullable=False)  # 1-based, verification order
    approver_id = db.Column(db.Integer, db.ForeignKey('users.id'), nullable=False, index=True)
    required_role = db.Column(db.String(20), nullable=False)

    code_hash = db.Column(db.String(64))
    salt = db.Column(db.String(32))
    issued_at = db.Column(db.DateTime)
    expires_at = db.Column(db.DateTime)
    attempts = db.Column(db.Integer, default=0, nullable=False)
    verified = db.Column(db.Boolean, default=False, nullable=False)
    verified_at = db.Column(db.DateTime)
    code_notified = db.Column(db.Boolean, default=False, nullable=False)

    approver = db.relationship('User', foreign_keys=[approver_id])

    __table_args__ = (
        db.UniqueConstraint('request_id', 'position', name='unique_request_slot'),
    )

    def is_issued(self):
        return self.code_hash is not None

    def is_expired(self, now):
        return self.is_issued() and not self.verified and now > self.expires_at

    def __repr__(self):
        return f'<ValidationCodeSlot request={self.request_id} position={self.position}>'


# ============================================================
# AUDIT LOG MODEL
# ============================================================
class AuditLog(db.Model):
    """Append-only trail of validation transitions."""
    __tablename__ = 'audit_logs'

    id = db.Column(db.Integer, primary_key=True)
    actor_id = db.Column(db.Integer, db.ForeignKey('users.id'))  # None for the sweeper
    actor_role = db.Column(db.String(20))
    action = db.Column(db.String(50), nullable=False, index=True)
    resource_type = db.Column(db.String(40), nullable=False)
    resource_id = db.Column(db.Integer, nullable=False)
    outcome = db.Column(db.String(50), nullable=False)
    details = db.Column(db.JSON)
    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)

    def __repr__(self):
        return f'<AuditLog {self.action} {self.resource_type}={self.resource_id} {self.outcome}>'


# ============================================================
# NOTIFICATION MODEL
# ============================================================
class Notification(db.Model):
    """In-app notification. Never carries a plaintext one-time code."""
    __tablename__ = 'notifications'

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey('users.id'), nullable=False, index=True)
    event = db.Column(db.String(30), nullable=False)
    title = db.Column(db.String(200), nullable=False)
    message = db.Column(db.String(1000), nullable=False)
    reference_id = db.Column(db.Integer)
    is_read = db.Column(db.Boolean, default=False, nullable=False)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    def __repr__(self):
        return f'<Notification user={self.user_id} {self.event}>'
