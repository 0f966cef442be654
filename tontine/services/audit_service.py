"""
AUDIT SERVICE
=============

Writes one AuditLog row per validation transition, in its own commit
after the transition has been committed.
"""

from tontine.extensions import db
from tontine.models import AuditLog


class SqlAuditSink:

    def record(self, principal, action, resource_ref, outcome, details=None):
        """
        principal: Principal or None (sweeper)
        resource_ref: (resource_type, resource_id)
        """
        resource_type, resource_id = resource_ref
        try:
            db.session.add(AuditLog(
                actor_id=principal.id if principal else None,
                actor_role=principal.role.value if principal else None,
                action=action,
                resource_type=resource_type,
                resource_id=resource_id,
                outcome=outcome,
                details=details,
            ))
            db.session.commit()
        except Exception:
            db.session.rollback()
            raise


def get_audit_trail(resource_type, resource_id):
    return AuditLog.query.filter_by(
        resource_type=resource_type,
        resource_id=resource_id
    ).order_by(AuditLog.created_at.asc(), AuditLog.id.asc()).all()
