"""
CENTRALIZED AUTHORIZATION SERVICE
==================================

All permission checks for validation requests live here.
Every check returns (allowed, reason); the workflow turns a refusal
into a FORBIDDEN result.

NEVER bypass these checks!
"""

from tontine.models import Role


# ============================================================
# INITIATION
# ============================================================

def can_initiate(principal, policy):
    """
    Check if a principal may open a request for an action.

    Requirements:
    - Action must be gated by a policy
    - Principal must hold one of the policy's initiator roles
    """
    if policy is None:
        return False, "This action does not go through dual-control validation"

    if principal.role not in policy.initiator_roles:
        allowed = ', '.join(role.value for role in policy.initiator_roles)
        return False, f"Only {allowed} can request {policy.action_type.value}"

    return True, None


# ============================================================
# APPROVER SLOTS
# ============================================================

def can_hold_slot(principal, required_role):
    """
    Check if a principal satisfies a slot's role constraint.
    """
    if principal is None:
        return False, "Approver not found or inactive"

    if principal.role != required_role:
        return False, f"Approver {principal.id} must hold the {required_role.value} role"

    return True, None


def can_verify(principal, request):
    """
    Check if a principal has a slot on the request and still holds its role.

    principal: the freshly resolved Principal, or None when the account
    is no longer active.
    Returns the slot as the second element on success.
    """
    if principal is None:
        return False, "Your account is not active"

    slot = request.slot_for(principal.id)
    if slot is None:
        return False, "You are not an approver on this request"

    if principal.role != Role.parse(slot.required_role):
        return False, f"This step requires the {slot.required_role} role"

    return True, slot


# ============================================================
# REJECTION
# ============================================================

def can_reject(principal, request):
    """
    Check if a principal may reject a request.

    Requirements:
    - Principal must be active
    - Principal must be the terminal approver (the checker)
    - Principal must still hold the role of that step
    """
    if principal is None:
        return False, "Your account is not active"

    last = request.last_slot()
    if last is None or last.approver_id != principal.id:
        return False, "Only the final approver can reject this request"

    if principal.role != Role.parse(last.required_role):
        return False, f"Rejecting requires the {last.required_role} role"

    return True, None


# ============================================================
# READ ACCESS
# ============================================================

def can_view_request(principal, request):
    """Only the initiator and the assigned approvers can see a request."""
    if not request.involves(principal.id):
        return False, "You do not have access to this request"
    return True, None


# ============================================================
# EXECUTION
# ============================================================

def can_execute(principal, request):
    """
    Check if a principal may run the gated action of a completed request.

    Requirements:
    - Principal must be the initiator of the request
    """
    if request.initiator_id != principal.id:
        return False, "Only the initiator can execute the validated action"
    return True, None

