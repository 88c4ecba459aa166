class CredhookError(Exception):
    """Base error for Credhook."""


class RecoverableError(CredhookError):
    """Indicates the operation can be retried safely."""


class ValidationError(CredhookError):
    """Input validation failure."""
