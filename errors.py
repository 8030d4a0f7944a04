"""
Errors raised by the Secret Santa coordinator.

Every error carries the HTTP status the API answers with.
"""


class SantaError(Exception):
    status_code = 400

    def __init__(self, message: str = ""):
        super().__init__(message or self.__class__.__name__)


# ---------------------------
# Precondition violations
# ---------------------------

class AlreadyStarted(SantaError):
    """join() after matches were generated."""
    status_code = 409


class NotAssignedYet(SantaError):
    status_code = 409


class AlreadyAssigned(SantaError):
    status_code = 409


class Unauthorized(SantaError):
    status_code = 403


class DuplicateParticipant(SantaError):
    status_code = 409


class NotAParticipant(SantaError):
    status_code = 403


class MissingPublicKey(SantaError):
    """User decrypt needs the public key registered at join time."""
    status_code = 400


# ---------------------------
# Resource exhaustion
# ---------------------------

class InsufficientParticipants(SantaError):
    status_code = 409


class DerangementGenerationFailed(SantaError):
    status_code = 500


# ---------------------------
# Decryption callback integrity
# ---------------------------

class UnknownRequest(SantaError):
    status_code = 404


class AlreadyProcessed(SantaError):
    status_code = 409


class InvalidDecryptionProof(SantaError):
    status_code = 401
