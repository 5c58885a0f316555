class MeetMateError(Exception):
    """Base class for errors raised by the session lifecycle."""


class ValidationError(MeetMateError):
    """A request is missing required fields."""


class ConflictError(MeetMateError):
    """A recording session is already active."""


class NotFoundError(MeetMateError):
    """No session exists with the given id."""


class InvalidStateError(MeetMateError):
    """The session is not in a state that allows the operation."""


class NoDataError(MeetMateError):
    """Stop was requested but no audio was captured."""


class CaptureError(MeetMateError):
    """The capture adapter could not be started."""


class PipelineError(MeetMateError):
    """Processing failed and the session was marked failed."""


class SessionCancelledError(MeetMateError):
    """Processing stopped at a checkpoint because the user cancelled."""


class LoggingError(MeetMateError):
    """A ledger event could not be written."""
