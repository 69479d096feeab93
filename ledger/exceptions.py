"""
Custom exceptions of the achievement ledger.
"""


class LedgerError(Exception):
    """Base exception for all ledger errors."""
    status_code = 500
    retryable = False


class ValidationError(LedgerError):
    """Malformed or missing input."""
    status_code = 400


class InvalidReferenceError(ValidationError):
    """A referenced row does not exist (foreign key violation)."""
    pass


class NotFoundError(LedgerError):
    """Requested entity does not exist."""
    status_code = 404


class CertificateNotFoundError(NotFoundError):
    """Certificate not found."""
    pass


class StudentNotFoundError(NotFoundError):
    """Student not found."""
    pass


class AchievementNotFoundError(NotFoundError):
    """Achievement not found or does not belong to the student."""
    pass


class ConflictError(LedgerError):
    """State or uniqueness conflict."""
    status_code = 409


class CertificateAlreadyRevokedError(ConflictError):
    """Certificate was revoked earlier."""
    pass


class DuplicateCertificateNumberError(ConflictError):
    """Another issuance took the same certificate number."""
    retryable = True


class DuplicateVerificationTokenError(ConflictError):
    """Verification token collided with an existing one."""
    retryable = True


class UpstreamError(LedgerError):
    """A backing service is unavailable or failed."""
    status_code = 503


class DatabaseError(UpstreamError):
    """Database error."""
    pass


class StorageError(UpstreamError):
    """Object storage error."""
    pass


class RenderError(LedgerError):
    """PDF or QR code could not be produced."""
    pass
