"""
Custom exception classes
"""
from fastapi import HTTPException


class VinDocError(Exception):
    """Base class for errors raised by the alert and voice pipelines"""


class ConfigurationError(VinDocError):
    """Raised when vendor credentials or run options are missing or invalid"""


class InvalidAlertInput(VinDocError):
    """Raised when a single vehicle or service record cannot be evaluated"""


class PersistenceUnavailableError(VinDocError):
    """Raised when a dedup or cooldown read/write fails and the run must fail closed"""


class VendorError(VinDocError):
    """Raised when a third-party vendor call times out or returns an error"""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class MailDeliveryError(VendorError):
    """Raised when the mail channel rejects or times out a send"""


class VoiceVendorError(VendorError):
    """Raised when the voice vendor fails to accept a call request"""


class AdviceGenerationError(VendorError):
    """Raised when the text-generation service returns nothing usable"""


class WorkerAuthError(HTTPException):
    """Raised when a scheduler call carries a bad worker token"""
    def __init__(self, detail: str = "Invalid or missing x-worker-token", status_code: int = 401):
        super().__init__(
            status_code=status_code,
            detail=detail
        )


class WebhookAuthError(HTTPException):
    """Raised when a vendor webhook carries a bad shared secret"""
    def __init__(self):
        super().__init__(
            status_code=401,
            detail="Unauthorized webhook request"
        )
