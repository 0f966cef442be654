"""
VALIDATION ROUTES
=================

JSON endpoints over the dual-control workflow.
Every refusal from the workflow is mapped to an HTTP status here;
the workflow itself never raises for policy refusals.
"""

from datetime import datetime

from flask import Blueprint, jsonify, request
from flask_login import login_required, current_user

from tontine import get_workflow
from tontine.services.identity_service import principal_for
from tontine.models import Role
from tontine.services.outcomes import Outcome

validations_bp = Blueprint('validations', __name__, url_prefix='/validations')

HTTP_STATUS = {
    Outcome.OK: 200,
    Outcome.DUPLICATE_PENDING: 409,
    Outcome.RESOURCE_NOT_FOUND: 404,
    Outcome.REQUEST_NOT_FOUND: 404,
    Outcome.FORBIDDEN: 403,
    Outcome.WRONG_STATE: 409,
    Outcome.INVALID_INPUT: 400,
    Outcome.INVALID_CODE: 400,
    Outcome.EXPIRED: 410,
    Outcome.ATTEMPTS_EXCEEDED: 429,
    Outcome.ALREADY_CONSUMED: 409,
}


def result_response(result, success_status=200):
    """Serialize a ValidationResult."""
    body = {
        'outcome': result.outcome.value,
        'message': result.message,
    }
    if result.attempts_remaining is not None:
        body['attempts_remaining'] = result.attempts_remaining
    if result.ok and result.request is not None:
        body['request'] = get_workflow().describe_request(result.request)

    status = success_status if result.ok else HTTP_STATUS[result.outcome]
    return jsonify(body), status


def _json():
    return request.get_json(silent=True) or {}


# ============== CREATE REQUEST ==============
@validations_bp.route('', methods=['POST'])
@login_required
def create_request():
    data = _json()

    resource_id = data.get('resource_id')
    if not isinstance(resource_id, int):
        return jsonify({'outcome': Outcome.INVALID_INPUT.value,
                        'message': 'resource_id must be an integer'}), 400

    approver_ids = data.get('approver_ids')
    if approver_ids is not None and (not isinstance(approver_ids, list)
                                     or not all(isinstance(i, int) for i in approver_ids)):
        return jsonify({'outcome': Outcome.INVALID_INPUT.value,
                        'message': 'approver_ids must be a list of integers'}), 400

    result = get_workflow().create(
        action_type=data.get('action_type'),
        resource_id=resource_id,
        initiator=principal_for(current_user),
        reason=data.get('reason'),
        approver_ids=approver_ids,
        resource_type=data.get('resource_type'),
        additional_info=data.get('additional_info'),
    )
    return result_response(result, success_status=201)


# ============== VERIFY CODE ==============
@validations_bp.route('/<int:request_id>/verify', methods=['POST'])
@login_required
def verify_code(request_id):
    code = str(_json().get('code') or '')
    result = get_workflow().verify_party(request_id, principal_for(current_user), code)
    return result_response(result)


# ============== REJECT ==============
@validations_bp.route('/<int:request_id>/reject', methods=['POST'])
@login_required
def reject_request(request_id):
    result = get_workflow().reject(request_id, principal_for(current_user), _json().get('reason'))
    return result_response(result)


# ============== RESEND CODE ==============
@validations_bp.route('/<int:request_id>/resend', methods=['POST'])
@login_required
def resend_code(request_id):
    result = get_workflow().resend(request_id, principal_for(current_user))
    return result_response(result)


# ============== PENDING FOR ME ==============
@validations_bp.route('/pending')
@login_required
def pending_requests():
    workflow = get_workflow()
    requests = workflow.list_pending_for(principal_for(current_user))
    return jsonify({
        'total': len(requests),
        'requests': [workflow.describe_request(r) for r in requests],
    })


# ============== MY REQUESTS ==============
@validations_bp.route('/mine')
@login_required
def my_requests():
    workflow = get_workflow()
    requests = workflow.list_initiated_by(principal_for(current_user),
                                          status=request.args.get('status'))
    return jsonify({
        'total': len(requests),
        'requests': [workflow.describe_request(r) for r in requests],
    })


# ============== STATS ==============
@validations_bp.route('/stats')
@login_required
def stats():
    if principal_for(current_user).role == Role.MEMBER:
        return jsonify({'outcome': Outcome.FORBIDDEN.value,
                        'message': 'Admin or treasurer access required'}), 403

    try:
        since = _parse_date(request.args.get('since'))
        until = _parse_date(request.args.get('until'))
    except ValueError:
        return jsonify({'outcome': Outcome.INVALID_INPUT.value,
                        'message': 'Dates must be ISO formatted'}), 400

    return jsonify(get_workflow().get_stats(since=since, until=until))


# ============== REQUEST DETAILS ==============
@validations_bp.route('/<int:request_id>')
@login_required
def request_details(request_id):
    result = get_workflow().get_request(request_id, principal_for(current_user))
    return result_response(result)


def _parse_date(value):
    return datetime.fromisoformat(value) if value else None
