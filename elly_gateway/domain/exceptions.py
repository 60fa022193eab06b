"""Domain-specific exceptions"""


class DomainException(Exception):
    """Base exception for domain layer"""

    pass


class ConfigurationError(DomainException):
    """Unknown bank code or missing base configuration"""

    pass


class ExternalServiceError(DomainException):
    """Bank API returned an error, timed out, or sent an unreadable body"""

    def __init__(self, message: str, bank: str | None = None, status_code: int | None = None):
        super().__init__(message)
        self.bank = bank
        self.status_code = status_code


class ValidationError(DomainException):
    """Input is malformed (e.g. no client id can be derived for the user)"""

    pass


class UserNotFoundError(DomainException):
    """User id has no account record"""

    pass


class DomainError(DomainException):
    """Operation is not allowed or not available in the current state"""

    pass


class MissingConsentError(DomainError):
    """Bank consent is required for the operation but not approved"""

    pass


class PaymentNotSupportedError(DomainError):
    """Payment transfers and reserve accounts are not available"""

    pass
