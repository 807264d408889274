"""
Error taxonomy for the access lifecycle.

Every error carries the HTTP status it maps to at the API boundary and a
short machine-readable kind. Business-rule rejections are 4xx; adapter and
store failures are 5xx.
"""


class AccessError(Exception):
    status_code = 500
    error = "internal_error"

    def __init__(self, message: str = None):
        self.message = message or (self.__class__.__doc__ or "").strip() or self.error
        super().__init__(self.message)


# Input validation / business-rule rejections

class InvalidInput(AccessError):
    """Invalid or missing input"""
    status_code = 400
    error = "invalid_input"


class PaymentNotCompleted(AccessError):
    """Payment not completed"""
    status_code = 400
    error = "payment_not_completed"


class InvalidCredential(AccessError):
    """Invalid access code"""
    status_code = 401
    error = "invalid_credential"


class InvalidSession(AccessError):
    """Invalid or expired session token"""
    status_code = 401
    error = "invalid_session"


class AccessExpired(AccessError):
    """Access has expired"""
    status_code = 403
    error = "expired"


class AccountDisabled(AccessError):
    """Account is disabled"""
    status_code = 403
    error = "disabled"


class AccountNotFound(AccessError):
    """No account found for this email"""
    status_code = 404
    error = "not_found"


# Store-level conflicts, resolved by the lifecycle manager

class DuplicateIdentity(AccessError):
    """An account already exists for this email"""
    status_code = 400
    error = "duplicate_identity"


class DuplicatePayment(AccessError):
    """Payment reference already applied"""
    status_code = 400
    error = "duplicate_payment"


# Operational failures

class StoreError(AccessError):
    """Account store failure"""
    status_code = 500
    error = "store_error"


class PaymentProviderError(AccessError):
    """Payment provider unavailable"""
    status_code = 500
    error = "payment_provider_error"


class CredentialGenerationError(AccessError):
    """Could not generate a unique access code"""
    status_code = 500
    error = "credential_generation_failed"
