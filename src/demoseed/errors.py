from typing import Optional


class SeederError(Exception):
    """Base class for errors that abort an import run."""


class SourceUnavailable(SeederError):
    """The event log could not be opened or read."""


class DeliveryError(SeederError):
    """A destination write failed or the backend answered with an error status.

    The message is the backend's response body (or the transport error text) so
    it can be surfaced to operators verbatim.
    """

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class ImportCancelled(SeederError):
    """The run was asked to stop between batches."""


class UnknownDestination(SeederError, KeyError):
    def __str__(self):
        return str(self.args[0]) if self.args else "unknown destination"
