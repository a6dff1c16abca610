"""Errors raised by the scheduling core and its collaborators.

Every error carries the HTTP status the API layer answers with, so routes can
let them propagate and a single exception handler turns them into responses.
"""


class SchedulingError(Exception):
    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class NotFound(SchedulingError):
    """A requested record does not exist, or is inactive."""

    status_code = 404


class ConfigurationMissing(SchedulingError):
    """Office setup gap, e.g. no business hours for the requested day."""

    status_code = 500


class DataIntegrity(SchedulingError):
    """Stored schedule data is corrupt (bad HH:MM, inverted window)."""

    status_code = 500


class AmbiguousLocalTime(SchedulingError):
    """A wall-clock time maps to zero or two instants at a DST transition."""

    status_code = 422


class SlotUnavailable(SchedulingError):
    status_code = 409


class InvalidStatusTransition(SchedulingError):
    status_code = 400


class DuplicateName(SchedulingError):
    """A settings record with that name already exists."""

    status_code = 400
