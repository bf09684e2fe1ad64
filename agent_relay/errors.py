"""
Error taxonomy for the relay.

Components raise these; the HTTP layer maps each kind to a status code.
"""


class RelayError(Exception):
    """Base exception for relay errors"""
    pass


class ValidationError(RelayError):
    """Missing or malformed input (empty name, empty content, bad cursor)"""
    pass


class AuthError(RelayError):
    """Credential not recognised"""
    pass


class MissingKeyError(AuthError):
    """No credential supplied at all"""
    pass


class AdmissionError(RelayError):
    """Agent is still inside its send cooldown"""

    def __init__(self, message: str, retry_after: int = 0):
        super().__init__(message)
        self.retry_after = retry_after


class StorageError(RelayError):
    """Durable store failed"""
    pass
