"""
Services Package
================

Business logic layer for the dual-control validation engine.

All validation and authorization operations are handled here.
Routes should call these services, not manipulate models directly.
"""

from tontine.services.outcomes import (
    Outcome,
    ValidationResult,
    ValidationError,
    ValidationStoreError
)

from tontine.services.authorization_service import (
    can_initiate,
    can_hold_slot,
    can_verify,
    can_reject,
    can_view_request,
    can_execute
)

from tontine.services.identity_service import (
    Principal,
    principal_for,
    UserDirectory,
    ResourceResolver
)

from tontine.services.notification_service import (
    NotificationEvent,
    InAppNotifier,
    MailjetNotifier,
    CompositeNotifier,
    build_notifier
)

from tontine.services.audit_service import SqlAuditSink

from tontine.services.validation_service import (
    ValidationWorkflow,
    SystemClock
)

from tontine.services.gated_action_service import (
    execute_gated_action,
    GatedActionError
)
