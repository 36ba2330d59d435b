"""Errors raised inside the relay.

None of these ever reach a client: the lifecycle handler and the dispatcher
log them and drop the event that caused them.
"""


class RelayError(Exception):
    """Base class for relay failures.

    Attributes:
        code: machine readable error code (e.g. "PERSISTENCE_ERROR").
        message: human readable description.
        extra: any additional context (table, conversation id, ...).
    """

    code = "RELAY_ERROR"

    def __init__(self, message: str, **extra):
        self.message = message
        self.extra = extra
        super().__init__(message)

    def __str__(self) -> str:
        if not self.extra:
            return self.message
        ctx = ", ".join(f"{k}={v}" for k, v in self.extra.items())
        return f"{self.message} ({ctx})"


class MalformedFrameError(RelayError):
    """A client frame that is not JSON, not an object, or lacks required fields."""

    code = "MALFORMED_FRAME"


class PersistenceError(RelayError):
    """An insert/update/select against the datastore failed or timed out."""

    code = "PERSISTENCE_ERROR"


class PersistenceTimeout(PersistenceError):
    """A datastore call hit the configured timeout.

    The statement was not cancelled, so it may or may not have taken effect.
    """

    code = "PERSISTENCE_TIMEOUT"
