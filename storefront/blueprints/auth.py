from flask import Blueprint, jsonify
from flask_login import (
    login_user,
    logout_user,
    login_required,
    current_user,
)
from storefront.extensions import db
from storefront.models import User, UserRole
from storefront.services.audit_service import log_audit
from storefront.utils import clean_text, get_json_body, iso
from datetime import datetime
import logging
import re

logger = logging.getLogger(__name__)

bp = Blueprint('auth', __name__)

EMAIL_RE = re.compile(r'^[^@\s]+@[^@\s]+\.[^@\s]+$')
MIN_PASSWORD_LENGTH = 8


def _user_payload(user):
    return {
        'id': user.id,
        'email': user.email,
        'name': user.name,
        'role': user.role.value,
        'created_at': iso(user.created_at),
        'last_login_at': iso(user.last_login_at),
    }


@bp.route('/api/auth/login', methods=['POST'])
def login():
    data = get_json_body()
    email = (clean_text(data.get('email')) or '').lower()
    password = data.get('password') or ''

    if not email or not password:
        return jsonify({'error': 'Email and password cannot be empty'}), 400

    user = User.query.filter_by(email=email).first()

    if user and user.check_password(password) and user.is_active:
        login_user(user, remember=True)
        user.last_login_at = datetime.utcnow()
        db.session.commit()

        log_audit(
            actor=user,
            action='LOGIN_SUCCESS',
            target_type='USER',
            target_id=user.id,
            payload={'event': 'login_success'}
        )
        return jsonify({'ok': True, 'user': _user_payload(user)})

    log_audit(
        actor_role='ANONYMOUS',
        action='LOGIN_FAILED',
        target_type='USER',
        payload={
            'reason': 'invalid_credentials' if user else 'user_not_found'})
    return jsonify({'error': 'Invalid email or password'}), 401


@bp.route('/api/auth/register', methods=['POST'])
def register():
    data = get_json_body()
    email = (clean_text(data.get('email')) or '').lower()
    password = data.get('password') or ''
    name = clean_text(data.get('name'))

    if not email or not password:
        return jsonify({'error': 'Email and password cannot be empty'}), 400
    if not EMAIL_RE.match(email):
        return jsonify({'error': 'Invalid email address'}), 400
    if len(password) < MIN_PASSWORD_LENGTH:
        return jsonify({
            'error': (
                f'Password must be at least {MIN_PASSWORD_LENGTH} '
                'characters')
        }), 400
    if User.query.filter_by(email=email).first():
        return jsonify({'error': 'Email already registered'}), 400

    # Admin accounts are seeded, never self-registered
    user = User(email=email, name=name, role=UserRole.CUSTOMER)
    user.set_password(password)
    db.session.add(user)
    db.session.commit()

    login_user(user, remember=True)

    log_audit(
        actor=user,
        action='REGISTER',
        target_type='USER',
        target_id=user.id,
        payload={'email': email}
    )
    logger.info(f"New customer registered: {email}")
    return jsonify({'ok': True, 'user': _user_payload(user)}), 201


@bp.route('/api/auth/logout', methods=['POST'])
@login_required
def logout():
    user = current_user._get_current_object()
    log_audit(
        actor=user,
        action='LOGOUT',
        target_type='USER',
        target_id=user.id
    )
    logout_user()
    return jsonify({'ok': True})


@bp.route('/api/auth/me', methods=['GET'])
@login_required
def me():
    return jsonify({'user': _user_payload(current_user)})
