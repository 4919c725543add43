# Error taxonomy shared by the services and the HTTP layer
from flask import current_app, jsonify


class BookingEngineError(Exception):
    """Base class for every error the booking engine raises on purpose."""

    status_code = 500
    reason = "error"

    def __init__(self, message, reason=None):
        super().__init__(message)
        self.message = message
        if reason:
            self.reason = reason

    def to_dict(self):
        return {"status": "error", "message": self.message, "reason": self.reason}


class ValidationError(BookingEngineError):
    """Malformed input or a failed business rule. Nothing was written."""

    status_code = 400
    reason = "validation_error"


class NotFoundError(BookingEngineError):
    status_code = 404
    reason = "not_found"


class ConflictError(BookingEngineError):
    """Slot taken, deal sold out, double claim. Re-query and retry."""

    status_code = 409
    reason = "conflict"


class InvalidStateTransition(BookingEngineError):
    status_code = 409
    reason = "invalid_transition"


class StoreError(BookingEngineError):
    """Persistence failure (connection loss, aborted transaction)."""

    status_code = 503
    reason = "store_error"


class AuthError(BookingEngineError):
    status_code = 401
    reason = "unauthorized"

    def __init__(self, message, status_code=401):
        super().__init__(message, "forbidden" if status_code == 403 else None)
        self.status_code = status_code


def register_error_handlers(app):
    """Render engine errors as the JSON error envelope used by every blueprint."""

    @app.errorhandler(BookingEngineError)
    def handle_engine_error(error):
        if error.status_code >= 500:
            current_app.logger.error(f"{type(error).__name__}: {error.message}")
        else:
            current_app.logger.info(f"{type(error).__name__}: {error.message}")
        return jsonify(error.to_dict()), error.status_code
