"""Error taxonomy for the outreach console.

Synchronous errors carry the HTTP status the JSON views answer with.
Background errors (monitor, normalization) are never returned to a caller;
they end up in a record's ``error`` field.
"""


class OutreachError(Exception):
    status_code = 500

    def __init__(self, message, details=None):
        super().__init__(message)
        self.message = message
        self.details = details

    def as_dict(self):
        payload = {"error": self.message}
        if self.details:
            payload["details"] = self.details
        return payload


class ValidationError(OutreachError):
    """Missing or invalid request fields."""
    status_code = 400


class ConfigurationError(OutreachError):
    """A required external credential is not configured."""
    status_code = 500


class NotFoundError(OutreachError):
    status_code = 404


class LaunchError(OutreachError):
    """The external provider refused to start a job."""
    status_code = 502


class MonitorError(OutreachError):
    """Failure while reconciling a detached job."""


class JobTimeout(MonitorError):
    pass


class NormalizationError(OutreachError):
    """A single result item could not be mapped or stored."""
