"""
AUTHENTICATION ROUTES
=====================
"""

from flask import Blueprint, jsonify, request
from flask_login import login_user, logout_user, login_required, current_user

from tontine.models import User, Role

auth_bp = Blueprint('auth', __name__, url_prefix='/auth')


@auth_bp.route('/login', methods=['POST'])
def login():
    data = request.get_json(silent=True) or {}
    email = (data.get('email') or '').strip()
    password = data.get('password') or ''

    user = User.query.filter_by(email=email).first()

    if not user or not user.check_password(password):
        return jsonify({'error': 'Invalid email or password'}), 401

    if not user.is_active or user.is_deleted():
        return jsonify({'error': 'This account is disabled'}), 403

    login_user(user, remember=bool(data.get('remember')))
    return jsonify({
        'id': user.id,
        'name': user.name,
        'role': Role.parse(user.role).value,
    })


@auth_bp.route('/logout', methods=['POST'])
@login_required
def logout():
    logout_user()
    return jsonify({'message': 'You have been logged out.'})


@auth_bp.route('/me')
@login_required
def me():
    return jsonify({
        'id': current_user.id,
        'name': current_user.name,
        'email': current_user.email,
        'role': Role.parse(current_user.role).value,
    })
