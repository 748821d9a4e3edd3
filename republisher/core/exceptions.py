"""
Exception types shared across services and clients.
"""


class PreconditionError(ValueError):
    """Operation rejected because its inputs are not in a usable state."""


class CatalogClientError(Exception):
    """Content catalog request failed."""


class HostingClientError(Exception):
    """Hosting platform request failed."""


class UploadAttemptError(Exception):
    """
    An upload attempt failed and the retry policy has been applied.

    Attributes:
        status: Status recorded for the job ('failed' or 'skipped')
        retry_count: Failed attempts recorded after this one
    """

    def __init__(self, message: str, status: str, retry_count: int):
        super().__init__(message)
        self.status = status
        self.retry_count = retry_count
