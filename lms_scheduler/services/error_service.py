"""
Error Service for centralized error handling and logging
Provides the scheduling error taxonomy and consistent JSON error responses
"""
import logging
import traceback
import uuid
from datetime import datetime
from typing import Dict, Any
from flask import request, jsonify, current_app, has_request_context
from functools import wraps


class ErrorCode:
    """Standard error codes"""
    VALIDATION_ERROR = "VALIDATION_ERROR"
    NOT_FOUND = "NOT_FOUND"
    UNAUTHORIZED = "UNAUTHORIZED"
    FORBIDDEN = "FORBIDDEN"
    CONFLICT = "CONFLICT"
    DATABASE_ERROR = "DATABASE_ERROR"
    INTERNAL_ERROR = "INTERNAL_ERROR"
    INVALID_INPUT = "INVALID_INPUT"
    RECONCILIATION_WARNING = "RECONCILIATION_WARNING"


class ErrorService:
    """Centralized error handling service"""

    def __init__(self):
        self.logger = logging.getLogger(__name__)

    def log_error(self, error: Exception, context: Dict[str, Any] = None) -> str:
        """
        Log error with context information

        Args:
            error: Exception object
            context: Additional context information

        Returns:
            Error ID for tracking
        """
        error_id = self._generate_error_id()

        error_info = {
            'error_id': error_id,
            'timestamp': datetime.utcnow().isoformat(),
            'error_type': type(error).__name__,
            'error_message': str(error),
            'traceback': traceback.format_exc(),
            'context': context or {}
        }

        # Add request context if available
        if has_request_context():
            error_info['request'] = {
                'method': request.method,
                'url': request.url,
                'remote_addr': request.remote_addr
            }

        self.logger.error(f"Error {error_id}: {error_info}")
        return error_id

    def create_error_response(self,
                            error_code: str,
                            message: str,
                            details: Dict[str, Any] = None,
                            status_code: int = 400) -> tuple:
        """
        Create standardized error response

        Args:
            error_code: Standard error code
            message: Human-readable error message
            details: Additional error details
            status_code: HTTP status code

        Returns:
            Tuple of (response, status_code)
        """
        response_data = {
            'success': False,
            'error': {
                'code': error_code,
                'message': message,
                'timestamp': datetime.utcnow().isoformat()
            }
        }

        if details:
            response_data['error']['details'] = details

        return jsonify(response_data), status_code

    def handle_not_found_error(self, resource: str = "Resource") -> tuple:
        """Handle not found errors"""
        return self.create_error_response(
            ErrorCode.NOT_FOUND,
            f"{resource} not found",
            status_code=404
        )

    def handle_unauthorized_error(self, message: str = "Authentication required") -> tuple:
        """Handle unauthorized errors"""
        return self.create_error_response(
            ErrorCode.UNAUTHORIZED,
            message,
            status_code=401
        )

    def handle_database_error(self, error: Exception) -> tuple:
        """Handle database errors"""
        error_id = self.log_error(error, {'type': 'database_error'})

        if current_app.debug:
            message = str(error)
        else:
            message = "Database operation failed"

        return self.create_error_response(
            ErrorCode.DATABASE_ERROR,
            message,
            {'error_id': error_id},
            500
        )

    def handle_internal_error(self, error: Exception) -> tuple:
        """Handle internal server errors"""
        error_id = self.log_error(error, {'type': 'internal_error'})

        if current_app.debug:
            message = str(error)
            details = {'error_id': error_id, 'traceback': traceback.format_exc()}
        else:
            message = "Internal server error"
            details = {'error_id': error_id}

        return self.create_error_response(
            ErrorCode.INTERNAL_ERROR,
            message,
            details,
            500
        )

    def _generate_error_id(self) -> str:
        """Generate unique error ID"""
        return str(uuid.uuid4())[:8].upper()


# Global error service instance
error_service = ErrorService()


class APIError(Exception):
    """Custom exception for API errors"""

    def __init__(self, error_code: str, message: str, status_code: int = 400, details: Dict[str, Any] = None):
        self.error_code = error_code
        self.message = message
        self.status_code = status_code
        self.details = details
        super().__init__(message)


class ValidationError(APIError):
    """Malformed or out-of-range input, raised before any mutation"""

    def __init__(self, errors: Dict[str, Any], message: str = "Validation failed"):
        super().__init__(
            ErrorCode.VALIDATION_ERROR,
            message,
            400,
            {'validation_errors': errors}
        )
        self.validation_errors = errors


class ConflictError(APIError):
    """Tutor double booking, capacity exceeded, or a session that cannot be joined"""

    def __init__(self, message: str, details: Dict[str, Any] = None):
        super().__init__(
            ErrorCode.CONFLICT,
            message,
            409,
            details
        )


class NotFoundError(APIError):
    """Custom exception for not found errors"""

    def __init__(self, resource: str = "Resource"):
        super().__init__(
            ErrorCode.NOT_FOUND,
            f"{resource} not found",
            404
        )
        self.resource = resource


class UnauthorizedError(APIError):
    """Custom exception for unauthorized errors"""

    def __init__(self, message: str = "Authentication required"):
        super().__init__(
            ErrorCode.UNAUTHORIZED,
            message,
            401
        )


class AuthorizationError(APIError):
    """Cross-center or wrong-role access"""

    def __init__(self, message: str = "Access forbidden"):
        super().__init__(
            ErrorCode.FORBIDDEN,
            message,
            403
        )


class ReconciliationWarning(Exception):
    """Billing side effects failed after the primary mutation succeeded.

    Never rendered as an error response; callers attach to_dict() to the
    successful response instead.
    """

    def __init__(self, class_id, step: str, message: str, context: Dict[str, Any] = None):
        self.class_id = class_id
        self.step = step
        self.message = message
        self.context = context or {}
        super().__init__(f"Billing reconciliation failed at {step} for class {class_id}: {message}")

    def to_dict(self):
        return {
            'code': ErrorCode.RECONCILIATION_WARNING,
            'class_id': self.class_id,
            'step': self.step,
            'message': self.message
        }


def handle_errors(func):
    """
    Decorator for automatic error handling in routes

    APIError subclasses propagate to the registered handlers; anything else
    is rolled back and rendered as a generic failure.
    """
    @wraps(func)
    def wrapper(*args, **kwargs):
        try:
            return func(*args, **kwargs)
        except APIError:
            raise
        except ValueError as e:
            from lms_scheduler import db
            db.session.rollback()
            return error_service.create_error_response(
                ErrorCode.INVALID_INPUT,
                str(e),
                status_code=400
            )
        except Exception as e:
            from lms_scheduler import db
            from sqlalchemy.exc import SQLAlchemyError
            db.session.rollback()
            if isinstance(e, SQLAlchemyError):
                return error_service.handle_database_error(e)
            return error_service.handle_internal_error(e)

    return wrapper


# Error handlers for Flask app
def register_error_handlers(app):
    """Register error handlers with Flask app"""

    @app.errorhandler(APIError)
    def handle_api_error(error):
        return error_service.create_error_response(
            error.error_code,
            error.message,
            error.details,
            error.status_code
        )

    @app.errorhandler(404)
    def handle_route_not_found(error):
        return error_service.handle_not_found_error("Endpoint")

    @app.errorhandler(500)
    def handle_internal_server_error(error):
        return error_service.handle_internal_error(error)
