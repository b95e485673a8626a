from flask import request, jsonify, current_app
from flask_login import current_user
from functools import wraps
import hmac
import logging

logger = logging.getLogger(__name__)

# Exact paths that never require login
LOGIN_WHITELIST = [
    '/api/auth/login',
    '/api/auth/register',
]

# Endpoints that authenticate scheduled jobs themselves
CRON_PATHS = [
    '/api/admin/issues/auto-close',
]


def is_public_api_path(path: str) -> bool:
    if path in LOGIN_WHITELIST:
        return True
    if path in CRON_PATHS:
        return True
    if path.startswith('/api/public/'):
        return True
    return False


def setup_auth_middleware(app):

    @app.before_request
    def require_login():
        path = request.path

        if not path.startswith('/api/'):
            return None

        if is_public_api_path(path):
            return None

        # Check login status
        if not current_user.is_authenticated:
            return jsonify({'error': 'Not logged in',
                           'login_required': True}), 401

        return None


def role_required(*allowed_roles):
    def decorator(f):
        @wraps(f)
        def decorated_function(*args, **kwargs):
            if not current_user.is_authenticated:
                return jsonify({'error': 'Not logged in'}), 401

            # allowed_roles is a list of role names.
            if current_user.role.value not in allowed_roles:
                logger.warning(
                    "User %s attempted to access roles %s, current role: %s",
                    current_user.id,
                    allowed_roles,
                    current_user.role.value,
                )
                return jsonify({'error': 'Insufficient permissions'}), 403

            return f(*args, **kwargs)
        return decorated_function
    return decorator


def has_cron_secret() -> bool:
    secret = current_app.config.get('CRON_SECRET') or ''
    if not secret:
        return False
    header = request.headers.get('Authorization', '')
    return hmac.compare_digest(header, f'Bearer {secret}')


def cron_or_admin_required(f):
    """Allow either ``Authorization: Bearer <CRON_SECRET>`` or an admin."""
    @wraps(f)
    def decorated_function(*args, **kwargs):
        if has_cron_secret():
            return f(*args, **kwargs)
        if not current_user.is_authenticated:
            return jsonify({'error': 'Unauthorized'}), 401
        if current_user.role.value != 'ADMIN':
            logger.warning(
                "User %s attempted to run a scheduled job endpoint",
                current_user.id,
            )
            return jsonify({'error': 'Unauthorized'}), 401
        return f(*args, **kwargs)
    return decorated_function
