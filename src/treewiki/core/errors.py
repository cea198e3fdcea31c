"""Error taxonomy shared by the tree engine, the stores and the HTTP layer."""


class WikiError(Exception):
    """Base class for all wiki errors."""

    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ConfigurationError(WikiError):
    """The document store location is missing or unusable."""

    status_code = 500


class ValidationError(WikiError):
    """Malformed input, rejected before any write."""

    status_code = 400


class NotFoundError(WikiError):
    """A referenced page or menu does not exist."""

    status_code = 404


class TransientIOError(WikiError):
    """The document store is unreachable or timed out."""

    status_code = 503
