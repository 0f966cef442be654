"""
ACTION POLICIES
===============

Which roles may open a validation request for each sensitive action,
and which roles must confirm it, in order.

Default (dual control, admin initiates / treasurer confirms):
    slot 1 -> an admin (normally the initiator, confirming intent)
    slot 2 -> a treasurer (the checker, who may also reject)

A policy with a single approver role gives a one-party flow: the
request goes straight from 'pending' to 'completed'.
"""

from dataclasses import dataclass
from typing import Tuple

from tontine.models import ActionType, ResourceType, Role


@dataclass(frozen=True)
class ActionPolicy:
    action_type: ActionType
    resource_type: ResourceType
    initiator_roles: Tuple[Role, ...]
    approver_roles: Tuple[Role, ...]

    @property
    def is_dual(self):
        return len(self.approver_roles) > 1


def _dual(action_type, resource_type):
    return ActionPolicy(
        action_type=action_type,
        resource_type=resource_type,
        initiator_roles=(Role.ADMIN,),
        approver_roles=(Role.ADMIN, Role.TREASURER),
    )


DEFAULT_POLICIES = {
    ActionType.DELETE_ACCOUNT: _dual(ActionType.DELETE_ACCOUNT, ResourceType.ACCOUNT),
    ActionType.ACTIVATE_ACCOUNT: _dual(ActionType.ACTIVATE_ACCOUNT, ResourceType.ACCOUNT),
    ActionType.DEACTIVATE_ACCOUNT: _dual(ActionType.DEACTIVATE_ACCOUNT, ResourceType.ACCOUNT),
    ActionType.DELETE_GROUP: _dual(ActionType.DELETE_GROUP, ResourceType.GROUP),
    ActionType.BLOCK_GROUP: _dual(ActionType.BLOCK_GROUP, ResourceType.GROUP),
    ActionType.UNBLOCK_GROUP: _dual(ActionType.UNBLOCK_GROUP, ResourceType.GROUP),
}


def get_policy(action_type, policies=None):
    """Return the policy for an action type, or None if it is not gated."""
    return (policies or DEFAULT_POLICIES).get(action_type)
