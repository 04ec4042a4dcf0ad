# queue_server/app/errors.py


class QueueError(Exception):
    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(QueueError):
    """Missing or malformed input."""
    status_code = 400


class NotFoundError(QueueError):
    """Unknown or inactive branch, service, counter or token."""
    status_code = 404


class ConflictError(QueueError):
    """Token number collision within a (branch, service, day) scope."""
    status_code = 409


class InvalidTransitionError(QueueError):
    status_code = 409
