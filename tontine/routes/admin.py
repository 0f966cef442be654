"""
ADMIN ROUTES
============

Sensitive administrative actions. Each one runs only against a
completed validation request, which it consumes.
"""

from flask import Blueprint, jsonify, request
from flask_login import login_required, current_user

from tontine import get_workflow
from tontine.models import ActionType
from tontine.routes.validations import result_response
from tontine.services.gated_action_service import execute_gated_action, GatedActionError
from tontine.services.identity_service import principal_for
from tontine.services.outcomes import Outcome

admin_bp = Blueprint('admin', __name__, url_prefix='/admin')

ACCOUNT_ACTIONS = {
    'delete': ActionType.DELETE_ACCOUNT,
    'activate': ActionType.ACTIVATE_ACCOUNT,
    'deactivate': ActionType.DEACTIVATE_ACCOUNT,
}

GROUP_ACTIONS = {
    'delete': ActionType.DELETE_GROUP,
    'block': ActionType.BLOCK_GROUP,
    'unblock': ActionType.UNBLOCK_GROUP,
}


def _run(action_type, resource_id):
    data = request.get_json(silent=True) or {}
    request_id = data.get('validation_request_id')

    if not isinstance(request_id, int):
        return jsonify({
            'outcome': Outcome.INVALID_INPUT.value,
            'message': 'This action requires a completed validation request '
                       '(validation_request_id). Open one at /validations first.',
        }), 400

    try:
        result = execute_gated_action(
            get_workflow(),
            request_id,
            principal_for(current_user),
            action_type=action_type,
            resource_id=resource_id,
        )
    except GatedActionError as e:
        return jsonify({'outcome': 'action_failed', 'message': str(e)}), 422

    return result_response(result)


# ============== ACCOUNT ACTIONS ==============
@admin_bp.route('/accounts/<int:user_id>/<action>', methods=['POST'])
@login_required
def account_action(user_id, action):
    if action not in ACCOUNT_ACTIONS:
        return jsonify({'message': f'Unknown account action: {action}'}), 404
    return _run(ACCOUNT_ACTIONS[action], user_id)


# ============== GROUP ACTIONS ==============
@admin_bp.route('/groups/<int:group_id>/<action>', methods=['POST'])
@login_required
def group_action(group_id, action):
    if action not in GROUP_ACTIONS:
        return jsonify({'message': f'Unknown group action: {action}'}), 404
    return _run(GROUP_ACTIONS[action], group_id)
