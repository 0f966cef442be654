"""
IDENTITY SERVICE
================

The boundary between authenticated users and the validation engine.
Roles are normalized here, once; the engine only ever sees Principal.
"""

import logging
from collections import namedtuple

from tontine.extensions import db
from tontine.models import User, Group, Role, ResourceType

logger = logging.getLogger(__name__)

Principal = namedtuple('Principal', ['id', 'role'])
ResourceSnapshot = namedtuple('ResourceSnapshot', ['name', 'contact'])


def principal_for(user):
    """Build a Principal from an authenticated User."""
    return Principal(id=user.id, role=Role.parse(user.role))


# ============================================================
# PRINCIPAL RESOLVER
# ============================================================

class UserDirectory:
    """Looks up principals and their contact details from the users table."""

    def get_principal(self, user_id):
        user = self.get_active_user(user_id)
        if not user:
            return None
        return principal_for(user)

    def get_active_user(self, user_id):
        user = db.session.get(User, user_id)
        if not user or not user.is_active or user.is_deleted():
            return None
        return user

    def first_with_role(self, role, exclude=()):
        """First active principal holding a role, oldest account first."""
        candidates = User.query.filter(
            User.is_active.is_(True),
            User.deleted_at.is_(None)
        ).order_by(User.id).all()

        for user in candidates:
            if user.id in exclude:
                continue
            try:
                if Role.parse(user.role) == role:
                    return principal_for(user)
            except ValueError:
                logger.warning("User %s has an unrecognised role %r", user.id, user.role)
        return None

    def contact_for(self, principal_id):
        """Return (name, email, phone) for notification delivery."""
        user = db.session.get(User, principal_id)
        if not user:
            return None
        return user.name, user.email, user.phone


# ============================================================
# RESOURCE RESOLVER
# ============================================================

class ResourceResolver:
    """Resolves the display snapshot captured on a validation request."""

    def resolve(self, resource_type, resource_id):
        """Return a ResourceSnapshot, or None when the resource does not exist."""
        if resource_type == ResourceType.ACCOUNT:
            user = db.session.get(User, resource_id)
            if not user or user.is_deleted():
                return None
            return ResourceSnapshot(name=f"{user.name} ({user.email})", contact=user.email)

        if resource_type == ResourceType.GROUP:
            group = db.session.get(Group, resource_id)
            if not group or group.is_deleted():
                return None
            contact = group.creator.email if group.creator else None
            return ResourceSnapshot(name=group.name, contact=contact)

        return None
