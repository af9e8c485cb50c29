"""
Exceptions raised by the domain modules. Each carries the HTTP status the
web layer should answer with.
"""


class SaintfestError(ValueError):
    status = 400

    def __init__(self, message: str, status: int = None):
        super().__init__(message)
        self.message = message
        if status is not None:
            self.status = status


class NotFound(SaintfestError):
    status = 404


class Conflict(SaintfestError):
    status = 409


class VoteRejected(SaintfestError):
    status = 403
