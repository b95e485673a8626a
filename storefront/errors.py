from flask import jsonify, request
from werkzeug.exceptions import HTTPException
import logging

logger = logging.getLogger(__name__)


class ServiceError(Exception):
    """A workflow rule was violated; carries the HTTP status to report."""

    status_code = 400

    def __init__(self, message, status_code=None):
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code


class NotFoundError(ServiceError):
    status_code = 404


class PermissionDeniedError(ServiceError):
    status_code = 403


def register_error_handlers(app):

    @app.errorhandler(ServiceError)
    def handle_service_error(exc):
        logger.info(
            "Service error on %s %s: %s",
            request.method,
            request.path,
            exc.message,
        )
        return jsonify({'error': exc.message}), exc.status_code

    @app.errorhandler(HTTPException)
    def handle_http_error(exc):
        if not request.path.startswith('/api/'):
            return exc
        return jsonify({'error': exc.description}), exc.code
