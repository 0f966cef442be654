"""
GATED ACTION SERVICE
====================

Executes the sensitive mutation a completed validation request authorizes.

The request is consumed and the mutation applied in ONE transaction:
- a consumed request can never authorize a second execution
- a mutation that fails leaves the request unconsumed
"""

import logging

from tontine.extensions import db
from tontine.models import User, Group, ActionType, GroupStatus

logger = logging.getLogger(__name__)


class GatedActionError(Exception):
    """Raised when the authorized mutation cannot be applied"""
    pass


# ============================================================
# MUTATIONS
# ============================================================

def _get_account(request):
    user = db.session.get(User, request.resource_id)
    if not user or user.is_deleted():
        raise GatedActionError(f"Account {request.resource_id} no longer exists")
    return user


def _get_group(request):
    group = db.session.get(Group, request.resource_id)
    if not group or group.is_deleted():
        raise GatedActionError(f"Group {request.resource_id} no longer exists")
    return group


def delete_account(request, now):
    user = _get_account(request)
    user.is_active = False
    user.deleted_at = now


def activate_account(request, now):
    user = _get_account(request)
    if user.is_active:
        raise GatedActionError("Account is already active")
    user.is_active = True
    user.deactivated_at = None


def deactivate_account(request, now):
    user = _get_account(request)
    if not user.is_active:
        raise GatedActionError("Account is already inactive")
    user.is_active = False
    user.deactivated_at = now


def delete_group(request, now):
    group = _get_group(request)
    group.deleted_at = now


def block_group(request, now):
    group = _get_group(request)
    if group.is_blocked():
        raise GatedActionError("Group is already blocked")
    group.status = GroupStatus.BLOCKED.value
    group.blocked_at = now


def unblock_group(request, now):
    group = _get_group(request)
    if not group.is_blocked():
        raise GatedActionError("Group is not blocked")
    group.status = GroupStatus.ACTIVE.value
    group.blocked_at = None


MUTATIONS = {
    ActionType.DELETE_ACCOUNT.value: delete_account,
    ActionType.ACTIVATE_ACCOUNT.value: activate_account,
    ActionType.DEACTIVATE_ACCOUNT.value: deactivate_account,
    ActionType.DELETE_GROUP.value: delete_group,
    ActionType.BLOCK_GROUP.value: block_group,
    ActionType.UNBLOCK_GROUP.value: unblock_group,
}


# ============================================================
# EXECUTE
# ============================================================

def execute_gated_action(workflow, request_id, principal, action_type=None, resource_id=None):
    """
    Consume a completed request and apply its mutation.

    Returns the workflow's ValidationResult. Raises GatedActionError when
    the mutation itself is impossible; the request then stays usable.
    """
    now = workflow.clock.now()

    def apply(request):
        mutation = MUTATIONS.get(request.action_type)
        if mutation is None:
            raise GatedActionError(f"No executor for {request.action_type}")
        mutation(request, now)

    result = workflow.consume(
        request_id,
        principal=principal,
        action_type=action_type,
        resource_id=resource_id,
        apply=apply,
    )

    if result.ok:
        logger.info("User %s executed %s on %s %s", principal.id, result.request.action_type,
                    result.request.resource_type, result.request.resource_id)
    return result
